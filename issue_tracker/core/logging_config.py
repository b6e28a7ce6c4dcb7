"""Root logging setup shared by the web app and the migrate script."""

from __future__ import annotations

import logging

from pythonjsonlogger.json import JsonFormatter

from issue_tracker.core.config import settings

_CONFIGURED = False


def setup_logging(level: str | None = None) -> None:
    """Install a single JSON stream handler on the root logger (idempotent)."""
    global _CONFIGURED
    if _CONFIGURED:
        return

    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter("%(asctime)s %(levelname)s %(name)s %(message)s"))

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel((level or settings.LOG_LEVEL or "INFO").upper())
    logging.captureWarnings(True)
    _CONFIGURED = True


__all__ = ["setup_logging"]
