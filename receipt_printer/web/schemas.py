from __future__ import annotations

"""
Pydantic schemas for the Receipt Printer API (v1).

These models validate incoming connection and print requests and provide a
typed structure for the worker. Limits are applied via the validation context
passed at runtime, allowing env-driven constraints without circular imports.
"""

import re
from typing import Dict, Optional

from pydantic import BaseModel, Field, ValidationInfo, field_validator, model_validator

from receipt_printer.printing.worker import PrintRequest

_HANDLE_RE = re.compile(r"^[A-Za-z0-9_.-]{1,64}$")


def _has_control_chars(s: str) -> bool:
    return any((ord(c) < 32 and c not in "\n\r\t") or ord(c) == 127 for c in s)


def _is_http_url(s: str) -> bool:
    return s.startswith(("http://", "https://"))


class ConnectRequest(BaseModel):
    """Request to connect the printer session to a device."""
    address: str = Field(
        description="Printer address: Bluetooth MAC (optionally /channel), serial port, or host:port",
        min_length=1,
        max_length=200,
        examples=["AA:BB:CC:DD:EE:FF", "/dev/rfcomm0", "serial:/dev/ttyUSB0@19200", "192.168.1.50:9100"],
    )

    @field_validator("address")
    @classmethod
    def _address_rules(cls, v: str) -> str:
        v = (v or "").strip()
        if not v:
            raise ValueError("address required")
        if _has_control_chars(v) or any(c.isspace() for c in v):
            raise ValueError("address must not contain whitespace or control characters")
        return v


class PrintJobRequest(BaseModel):
    """Request to print receipt markup or a single image."""
    markup: Optional[str] = Field(
        default=None,
        description="Receipt markup: one line per printed line, [L]/[C]/[R] alignment, <b>, <img>, <qrcode>, <barcode>",
        examples=["[C]<b>TEST RECEIPT</b>\n[L]Item A[R]10.00"],
    )
    image_base64: Optional[str] = Field(
        default=None,
        description="A single image to print, base64 or a data URL",
    )
    image_url: Optional[str] = Field(
        default=None,
        description="A single image to print, downloaded by the worker",
        examples=["https://example.com/logo.png"],
    )
    images: Dict[str, str] = Field(
        default_factory=dict,
        description="Images referenced by <img>handle</img> in the markup, as base64/data URL or http(s) URL",
    )
    image_optional: bool = Field(
        default=False,
        description="Print without images that cannot be loaded instead of failing the job",
    )
    cut: bool = Field(default=False, description="Cut the paper after printing")

    @field_validator("markup")
    @classmethod
    def _markup_rules(cls, v: Optional[str], info: ValidationInfo) -> Optional[str]:
        if v is None:
            return v
        limits = (info.context or {}).get("limits", {})
        max_len = int(limits.get("MAX_MARKUP_LEN", 8000))
        if len(v) > max_len:
            raise ValueError(f"markup too long (max {max_len})")
        if _has_control_chars(v):
            raise ValueError("control characters not allowed")
        return v

    @field_validator("image_url")
    @classmethod
    def _url_rules(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not _is_http_url(v.strip()):
            raise ValueError("image_url must be an http(s) URL")
        return v.strip() if v is not None else v

    @field_validator("images")
    @classmethod
    def _images_rules(cls, v: Dict[str, str], info: ValidationInfo) -> Dict[str, str]:
        limits = (info.context or {}).get("limits", {})
        max_images = int(limits.get("MAX_IMAGES", 8))
        if len(v) > max_images:
            raise ValueError(f"too many images (max {max_images})")
        for handle, ref in v.items():
            if not _HANDLE_RE.match(handle):
                raise ValueError(f"invalid image handle: {handle!r}")
            if not ref or not ref.strip():
                raise ValueError(f"image {handle!r} is empty")
        return v

    @model_validator(mode="after")
    def _one_source(self) -> "PrintJobRequest":
        given = [x for x in (self.markup, self.image_base64, self.image_url) if x is not None]
        if len(given) != 1:
            raise ValueError("provide exactly one of markup, image_base64 or image_url")
        if self.images and self.markup is None:
            raise ValueError("images are only used with markup")
        return self

    def to_print_request(self) -> PrintRequest:
        return PrintRequest(
            markup=self.markup,
            image=self.image_url or self.image_base64,
            images=dict(self.images),
            image_optional=self.image_optional,
            cut=self.cut,
        )


class Links(BaseModel):
    """Hypermedia links for API navigation."""
    self: str = Field(description="Link to this resource")
    connection: str = Field(description="Link to the connection status endpoint")


class JobAcceptedResponse(BaseModel):
    """Response when a job is accepted by the worker queue."""
    id: str = Field(description="Unique identifier for the submitted job")
    status: str = Field(description="Current job status", examples=["queued", "running", "success", "error"])
    links: Links = Field(description="Related resource links")


class ConnectionStatus(BaseModel):
    """Observable state of the printer session."""
    state: str = Field(examples=["idle", "connecting", "connected", "failed"])
    reason: Optional[str] = Field(default=None, description="Failure reason when state is 'failed'")
    address: Optional[str] = None
    busy: bool = Field(default=False, description="A print job is queued or running")
    last_message: Optional[str] = None
    last_error_kind: Optional[str] = None
