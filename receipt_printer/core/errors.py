"""
Error taxonomy for Receipt Printer.

Every failure raised by the printing core derives from PrintError and carries a
stable `kind` string. The kind survives translation into status messages, job
records and API responses so callers can branch on the failure category rather
than on human-readable text.
"""

from __future__ import annotations

from typing import Optional


class PrintError(Exception):
    """Base class for all printing-core failures."""

    kind = "print_error"

    def __init__(self, message: Optional[str] = None) -> None:
        super().__init__(message or self.kind.replace("_", " "))

    def to_dict(self) -> dict[str, str]:
        return {"error": str(self), "kind": self.kind}


# Connection


class ConnectError(PrintError):
    kind = "connect_error"


class AlreadyConnecting(ConnectError):
    kind = "already_connecting"


class AlreadyConnected(ConnectError):
    kind = "already_connected"


class DeviceUnreachable(ConnectError):
    kind = "device_unreachable"

    def __init__(self, reason: str) -> None:
        super().__init__(f"device unreachable: {reason}")
        self.reason = reason


class DisconnectError(PrintError):
    kind = "disconnect_error"


class NotConnected(PrintError):
    kind = "not_connected"


class IoError(PrintError):
    """Transport failure while writing to an open connection."""

    kind = "io_error"


class Timeout(IoError):
    kind = "timeout"


class ConnectionLost(IoError):
    kind = "connection_lost"


# Images


class InvalidImage(PrintError):
    kind = "invalid_image"


class ImageUnavailable(InvalidImage):
    """An external image (URL, upload) could not be fetched or decoded."""

    kind = "image_unavailable"


# Markup


class MarkupError(PrintError):
    kind = "markup_error"

    def __init__(self, tag: str, message: Optional[str] = None) -> None:
        super().__init__(message or f"{self.kind.replace('_', ' ')}: {tag}")
        self.tag = tag


class UnknownTag(MarkupError):
    kind = "unknown_tag"


class UnterminatedTag(MarkupError):
    kind = "unterminated_tag"


# Encoding


class EncodeError(PrintError):
    kind = "encode_error"


class WidthMismatch(EncodeError):
    kind = "width_mismatch"


class UnsupportedSymbology(EncodeError):
    kind = "unsupported_symbology"

    def __init__(self, symbology: str) -> None:
        super().__init__(f"unsupported symbology: {symbology}")
        self.symbology = symbology


class InvalidBarcodeData(EncodeError):
    kind = "invalid_barcode_data"


# Orchestration


class JobInProgress(PrintError):
    kind = "job_in_progress"


class JobCancelled(PrintError):
    kind = "job_cancelled"


__all__ = [
    "AlreadyConnected",
    "AlreadyConnecting",
    "ConnectError",
    "ConnectionLost",
    "DeviceUnreachable",
    "DisconnectError",
    "EncodeError",
    "ImageUnavailable",
    "InvalidBarcodeData",
    "InvalidImage",
    "IoError",
    "JobCancelled",
    "JobInProgress",
    "MarkupError",
    "NotConnected",
    "PrintError",
    "Timeout",
    "UnknownTag",
    "UnsupportedSymbology",
    "UnterminatedTag",
    "WidthMismatch",
]
