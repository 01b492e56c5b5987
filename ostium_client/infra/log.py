from __future__ import annotations

import logging
import sys

_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def get_logger(name: str, level: str | int = "INFO") -> logging.Logger:
    log = logging.getLogger(name)
    log.setLevel(level if isinstance(level, int) else str(level).upper())
    if not any(getattr(h, "_ostium", False) for h in log.handlers):
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(_FORMAT))
        handler._ostium = True
        log.addHandler(handler)
        log.propagate = False
    return log
