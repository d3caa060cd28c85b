"""
Fetching and decoding external images.

The printing core only accepts decoded bitmaps; this module turns URLs, uploads
and base64 payloads into Pillow images for the worker and the API.
"""

from __future__ import annotations

import base64
import binascii
import io
import logging
from typing import Optional

import requests
from PIL import Image, UnidentifiedImageError

from receipt_printer.core.config import get_io_timeout
from receipt_printer.core.errors import ImageUnavailable

logger = logging.getLogger(__name__)

MAX_IMAGE_BYTES = 20 * 1024 * 1024


def decode_bitmap(data: bytes) -> Image.Image:
    """Decode encoded image bytes (PNG, JPEG, ...) into a fully loaded Pillow image."""
    if not data:
        raise ImageUnavailable("image data is empty")
    try:
        img = Image.open(io.BytesIO(data))
        img.load()
    except (UnidentifiedImageError, OSError, Image.DecompressionBombError) as e:
        raise ImageUnavailable(f"could not decode image: {e}") from e
    return img


def decode_base64_bitmap(text: str) -> Image.Image:
    """Accepts plain base64 or a data URL (data:image/png;base64,...)."""
    payload = text.split(",", 1)[1] if text.startswith("data:") else text
    try:
        raw = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ImageUnavailable(f"image is not valid base64: {e}") from e
    return decode_bitmap(raw)


def fetch_bitmap(url: str, timeout: Optional[float] = None) -> Image.Image:
    """
    Download and decode the image at `url`.

    Raises:
        ImageUnavailable on network errors, non-2xx responses, oversized bodies
        or undecodable content.
    """
    timeout = get_io_timeout() if timeout is None else timeout
    logger.info("Downloading image %s", url)
    body = bytearray()
    try:
        with requests.get(url, timeout=timeout, stream=True) as r:
            r.raise_for_status()
            for chunk in r.iter_content(chunk_size=64 * 1024):
                body += chunk
                if len(body) > MAX_IMAGE_BYTES:
                    raise ImageUnavailable(f"image at {url} is larger than {MAX_IMAGE_BYTES} bytes")
    except requests.RequestException as e:
        raise ImageUnavailable(f"failed to download {url}: {e}") from e
    return decode_bitmap(bytes(body))


def load_bitmap(ref: str, timeout: Optional[float] = None) -> Image.Image:
    """Resolve an http(s) URL or a base64/data URL reference."""
    if ref.startswith(("http://", "https://")):
        return fetch_bitmap(ref, timeout)
    return decode_base64_bitmap(ref)


__all__ = ["MAX_IMAGE_BYTES", "decode_base64_bitmap", "decode_bitmap", "fetch_bitmap", "load_bitmap"]
