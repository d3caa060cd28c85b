"""
Core utilities for Receipt Printer.

This package groups non-Flask helpers used across the app:
- config: config path, JSON load/save, printer session parameters
- errors: the typed failure hierarchy shared by every component
- logging: Request ID aware logging filters/formatters and root logger config

Exports are explicit to keep static analyzers (e.g., Pyright) happy.
"""

from .config import (
    PrinterSessionConfig,
    default_config_path,
    get_config_path,
    get_io_timeout,
    load_config,
    save_config,
    session_config_from,
)
from .errors import PrintError
from .logging import (
    JsonFormatter,
    RequestIdFilter,
    configure_logging,
)

__all__ = [
    # config
    "PrinterSessionConfig",
    "default_config_path",
    "get_config_path",
    "get_io_timeout",
    "load_config",
    "save_config",
    "session_config_from",
    # errors
    "PrintError",
    # logging
    "configure_logging",
    "RequestIdFilter",
    "JsonFormatter",
]
