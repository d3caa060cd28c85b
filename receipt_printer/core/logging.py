"""
Logging setup for Receipt Printer.

Records carry two correlation fields, both "-" when absent:
- request_id: the Flask request that triggered the work (API threads)
- job_id: the background job being processed (worker threads pass it via `extra`)

RECEIPTPRINTER_LOG_LEVEL picks the level (default INFO) and
RECEIPTPRINTER_JSON_LOGS=true switches to one JSON object per line. Output goes
to journald when systemd-python is installed, else to stderr.
"""

from __future__ import annotations

import json
import logging
import os
from typing import Optional, Union

# Chatty at INFO/DEBUG: escpos logs every open/close, urllib3 every pool connection
NOISY_LOGGERS = ("escpos", "urllib3", "PIL")


def _env_flag(name: str) -> bool:
    return os.environ.get(name, "false").lower() in ("1", "true", "yes")


class RequestIdFilter(logging.Filter):
    """
    Fill request_id, path and job_id on every record.

    Worker threads have no Flask request context; they get "-" for the request
    fields and keep whatever job_id they logged with.
    """

    def filter(self, record: logging.LogRecord) -> bool:  # type: ignore[override]
        from flask import g, has_request_context, request  # lazy import

        if has_request_context():
            record.request_id = getattr(g, "request_id", "-")
            record.path = request.path
        else:
            record.request_id = "-"
            record.path = "-"
        if not hasattr(record, "job_id"):
            record.job_id = "-"
        return True


class JsonFormatter(logging.Formatter):
    """One JSON object per record: ts, level, logger, msg and the correlation fields."""

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        out = {
            "ts": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "request_id": getattr(record, "request_id", "-"),
            "job_id": getattr(record, "job_id", "-"),
        }
        path = getattr(record, "path", "-")
        if path != "-":
            out["path"] = path
        if record.exc_info:
            out["exc"] = self.formatException(record.exc_info)
        return json.dumps(out, ensure_ascii=False)


def _resolve_level(level: Optional[Union[int, str]]) -> int:
    if level is None:
        level = os.environ.get("RECEIPTPRINTER_LOG_LEVEL", "INFO")
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(level.strip().upper())
    return resolved if isinstance(resolved, int) else logging.INFO


def configure_logging(level: Optional[Union[int, str]] = None) -> logging.Logger:
    """
    Install a single handler on the root logger and return it.

    Safe to call repeatedly (every create_app() does): existing root handlers
    are replaced, and Flask's app logger is routed through the root.
    """
    root = logging.getLogger()
    root.setLevel(_resolve_level(level))
    root.handlers = []

    formatter: logging.Formatter
    if _env_flag("RECEIPTPRINTER_JSON_LOGS"):
        formatter = JsonFormatter()
    else:
        formatter = logging.Formatter("[%(asctime)s] %(levelname)s %(name)s req=%(request_id)s job=%(job_id)s %(message)s")

    try:
        from systemd.journal import JournalHandler  # type: ignore

        handler: logging.Handler = JournalHandler()
    except (ImportError, OSError):
        handler = logging.StreamHandler()
    handler.setFormatter(formatter)
    handler.addFilter(RequestIdFilter())
    root.addHandler(handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(root.level, logging.WARNING))

    flask_logger = logging.getLogger("flask.app")
    flask_logger.handlers = []
    flask_logger.propagate = True

    return root


__all__ = ["JsonFormatter", "NOISY_LOGGERS", "RequestIdFilter", "configure_logging"]
