from .app import App, run_main

__all__ = ["App", "run_main"]
