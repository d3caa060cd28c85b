"""
Config utilities for Receipt Printer.

Responsibilities:
- Resolve the config path with environment and XDG support
- Provide JSON load/save helpers for the app's config
- Build the immutable printer session parameters from a config mapping
"""

from __future__ import annotations

import json
import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

DEFAULT_DOTS_PER_LINE = 384
DEFAULT_PAPER_WIDTH_MM = 48.0
DEFAULT_CHARS_PER_LINE = 32
DEFAULT_PRINTER_DPI = 203
DEFAULT_CHARSET = "cp437"
DEFAULT_IO_TIMEOUT = 10.0


@dataclass(frozen=True)
class PrinterSessionConfig:
    """
    Printer parameters fixed for the lifetime of a session.

    dots_per_line is the print head width in dots and doubles as the raster
    width used when preparing images for this session.
    """

    dots_per_line: int = DEFAULT_DOTS_PER_LINE
    paper_width_mm: float = DEFAULT_PAPER_WIDTH_MM
    chars_per_line: int = DEFAULT_CHARS_PER_LINE
    printer_dpi: int = DEFAULT_PRINTER_DPI
    charset: str = DEFAULT_CHARSET

    def __post_init__(self) -> None:
        if self.dots_per_line <= 0:
            raise ValueError("dots_per_line must be positive")
        if self.chars_per_line <= 0:
            raise ValueError("chars_per_line must be positive")
        if self.paper_width_mm <= 0:
            raise ValueError("paper_width_mm must be positive")


def default_config_path() -> str:
    """
    Resolve the default config path using:
    1) $XDG_CONFIG_HOME/receiptprinter/config.json
    2) ~/.config/receiptprinter/config.json
    """
    xdg = os.environ.get("XDG_CONFIG_HOME")
    if xdg:
        return str(Path(xdg) / "receiptprinter" / "config.json")
    return str(Path.home() / ".config" / "receiptprinter" / "config.json")


def get_config_path() -> str:
    """
    Return the config path honoring RECEIPTPRINTER_CONFIG_PATH override.
    """
    return os.environ.get("RECEIPTPRINTER_CONFIG_PATH", default_config_path())


def env_float(name: str, default: float) -> float:
    try:
        return float(os.environ.get(name, default))
    except (TypeError, ValueError):
        return default


def env_int(name: str, default: int) -> int:
    try:
        return int(os.environ.get(name, default))
    except (TypeError, ValueError):
        return default


def get_io_timeout() -> float:
    """
    I/O timeout in seconds for connect and write, from RECEIPTPRINTER_IO_TIMEOUT.
    """
    return env_float("RECEIPTPRINTER_IO_TIMEOUT", DEFAULT_IO_TIMEOUT)


def load_config(path: Optional[str] = None) -> Optional[dict[str, Any]]:
    """
    Load the JSON config if it exists; return None if missing.

    The path is resolved at call time so environment overrides set after
    import (tests, service wrappers) are honored.

    Raises:
        json.JSONDecodeError if the file exists but contains invalid JSON.
        OSError for I/O errors other than missing file.
    """
    cfg_path = Path(path or get_config_path())
    if not cfg_path.exists():
        return None
    with cfg_path.open("r", encoding="utf-8") as f:
        return json.load(f)


def save_config(data: dict[str, Any], path: Optional[str] = None) -> None:
    """
    Save the JSON config, creating parent directories as needed.

    Writes atomically by using a temporary file and os.replace().
    Raises OSError on I/O failures.
    """
    cfg_path = Path(path or get_config_path())
    cfg_dir = cfg_path.parent
    cfg_dir.mkdir(parents=True, exist_ok=True)

    tmp_path = cfg_path.with_suffix(cfg_path.suffix + ".tmp")
    with tmp_path.open("w", encoding="utf-8") as f:
        json.dump(data, f, indent=2)
        f.flush()
        os.fsync(f.fileno())
    os.replace(tmp_path, cfg_path)


def session_config_from(config: Optional[Mapping[str, Any]]) -> PrinterSessionConfig:
    """
    Build a PrinterSessionConfig from a loaded config mapping.
    Missing keys fall back to the 58mm/203dpi defaults (384 dots, 32 chars).
    """
    cfg = config or {}
    return PrinterSessionConfig(
        dots_per_line=int(cfg.get("dots_per_line", DEFAULT_DOTS_PER_LINE)),
        paper_width_mm=float(cfg.get("paper_width_mm", DEFAULT_PAPER_WIDTH_MM)),
        chars_per_line=int(cfg.get("chars_per_line", DEFAULT_CHARS_PER_LINE)),
        printer_dpi=int(cfg.get("printer_dpi", DEFAULT_PRINTER_DPI)),
        charset=str(cfg.get("charset") or DEFAULT_CHARSET),
    )


__all__ = [
    "DEFAULT_IO_TIMEOUT",
    "PrinterSessionConfig",
    "default_config_path",
    "env_float",
    "env_int",
    "get_config_path",
    "get_io_timeout",
    "load_config",
    "save_config",
    "session_config_from",
]
