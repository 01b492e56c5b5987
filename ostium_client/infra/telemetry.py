from __future__ import annotations

import json
import threading
import time
from pathlib import Path
from typing import Any

TX_EVENTS = frozenset({"tx_signed", "tx_broadcast", "tx_confirmed", "tx_failed", "tx_dry_run"})


class RuntimeEventLogger:
    """JSONL trail of every transaction this process signed or sent.

    The trail is what lets an operator re-query a hash after a confirmation
    timeout instead of resubmitting.
    """

    def __init__(self, data_dir: str, filename: str = "execution_events.jsonl"):
        self.path = Path(data_dir).expanduser() / filename
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    def emit(self, event: str, **fields: Any) -> None:
        if event not in TX_EVENTS:
            raise ValueError(f"unknown execution event {event!r}")
        row = {"ts": round(time.time(), 3), "event": event}
        row.update({k: v for k, v in fields.items() if v not in (None, "")})
        line = json.dumps(row, separators=(",", ":"), ensure_ascii=True, default=str)
        with self._lock, self.path.open("a", encoding="utf-8") as f:
            f.write(line + "\n")

    def read(self, *, tx_hash: str | None = None) -> list[dict[str, Any]]:
        if not self.path.exists():
            return []
        with self._lock, self.path.open("r", encoding="utf-8") as f:
            rows = [json.loads(line) for line in f if line.strip()]
        if tx_hash:
            rows = [r for r in rows if str(r.get("tx_hash", "")).lower() == tx_hash.lower()]
        return rows

    def unconfirmed(self) -> list[str]:
        """Hashes that were (or may have been) broadcast with no confirmed or failed receipt."""
        pending: dict[str, None] = {}
        for row in self.read():
            tx_hash = str(row.get("tx_hash", "")).lower()
            if not tx_hash:
                continue
            if row["event"] == "tx_broadcast" or row.get("outcome") == "unknown":
                pending[tx_hash] = None
            elif row["event"] == "tx_confirmed" or (row["event"] == "tx_failed" and row.get("stage") == "receipt"):
                pending.pop(tx_hash, None)
        return list(pending)
