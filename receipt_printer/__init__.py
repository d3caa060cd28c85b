"""
Receipt Printer package

This module provides an application factory with minimal wiring:
- Configures logging via receipt_printer.core.logging
- Builds the printer session from the saved config (58mm defaults when absent)
- Creates a Flask app serving the JSON API and health endpoint
- Optionally ensures the background workers are started
"""

from __future__ import annotations

import importlib
import json
import logging
import uuid
from collections.abc import Sequence
from typing import Optional

from flask import Flask, g

from receipt_printer.core.config import env_int, load_config, session_config_from
from receipt_printer.core.logging import configure_logging

logger = logging.getLogger(__name__)


def _register_blueprint(app: Flask, import_path: str, attr: str) -> None:
    mod = importlib.import_module(import_path)
    app.register_blueprint(getattr(mod, attr))
    app.logger.info("Registered blueprint: %s.%s", import_path, attr)


def _set_request_id() -> None:
    """
    Assign a request ID for logging if not already set.
    """
    g.request_id = getattr(g, "request_id", uuid.uuid4().hex)


def _build_session():
    from receipt_printer.printing.session import PrintSession

    try:
        cfg = load_config()
    except (OSError, json.JSONDecodeError) as e:
        logger.warning("Ignoring unreadable config, using defaults: %s", e)
        cfg = None
    return PrintSession(session_config_from(cfg))


def create_app(
    config_overrides: Optional[dict] = None,
    blueprints: Optional[Sequence[tuple[str, str]]] = None,
    register_worker: bool = True,
    session=None,
) -> Flask:
    """
    Application factory.

    Parameters:
    - config_overrides: values to inject into app.config after defaults
    - blueprints: optional list of (import_path, attribute) tuples to register
    - register_worker: if True, starts the background workers
    - session: PrintSession to serve; built from the saved config when None

    Returns:
    - Flask app instance
    """
    app = Flask("receipt_printer")
    app.config["MAX_CONTENT_LENGTH"] = env_int("RECEIPTPRINTER_MAX_CONTENT_LENGTH", 16 * 1024 * 1024)

    configure_logging()
    app.logger.info("Receipt Printer app created")

    app.url_map.strict_slashes = False
    app.extensions["receipt_printer"] = session if session is not None else _build_session()

    @app.before_request
    def _before_request():
        _set_request_id()

    default_blueprints = [
        ("receipt_printer.web.api", "api_bp"),  # versioned JSON API
        ("receipt_printer.web.health", "health_bp"),  # health endpoint
    ]
    for import_path, attr in blueprints or default_blueprints:
        _register_blueprint(app, import_path, attr)

    if register_worker:
        from receipt_printer.printing.worker import ensure_worker

        ensure_worker()
        app.logger.info("Background workers ensured")

    if config_overrides:
        app.config.update(config_overrides)

    return app


__all__ = ["create_app"]
