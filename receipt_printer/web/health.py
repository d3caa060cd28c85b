from __future__ import annotations

"""
Health endpoints for Receipt Printer.

This blueprint exposes `/healthz`, reporting:
- Overall status ("ok" or "degraded")
- Background worker status and queue size (via receipt_printer.printing.worker.worker_status)
- Presence of saved config
- The printer session's connection state
"""

import json
from typing import Any, Dict

from flask import Blueprint, current_app

from receipt_printer.core.config import load_config
from receipt_printer.printing.connection import Failed
from receipt_printer.printing.worker import worker_status

health_bp = Blueprint("health", __name__)


@health_bp.get("/healthz")
def healthz():
    status: Dict[str, Any] = {"status": "ok"}
    status.update(worker_status())
    if not status["worker_started"] or status["workers_alive"] == 0:
        status["status"] = "degraded"
        status["reason"] = "worker_not_running"

    try:
        status["config_present"] = load_config() is not None
    except (OSError, json.JSONDecodeError) as e:
        current_app.logger.warning("Config unreadable: %s", e)
        status["config_present"] = False
        status["status"] = "degraded"
        status.setdefault("reason", "config_invalid")

    session = current_app.extensions.get("receipt_printer")
    if session is not None:
        state = session.state
        status["connection"] = state.to_dict()
        status["busy"] = session.busy
        if isinstance(state, Failed) and status["status"] == "ok":
            status["status"] = "degraded"
            status["reason"] = f"printer_{state.reason}"

    return status, 200
