"""
Image preparation for thermal printing.

Turns arbitrary Pillow images (RGBA, RGB, grayscale, palette; any size) into
packed 1-bit rasters no wider than the print head:

- Grayscale uses ITU-R 601-2 luma (0.299R + 0.587G + 0.114B); alpha is ignored
- Binarization uses a fixed threshold: gray > 127 is paper, everything else ink
- Downscaling is a single box-filter (area-averaging) pass
- Sources larger than LARGE_IMAGE_THRESHOLD on either side are converted and
  resampled band by band, so peak memory stays at the source plus one band
  plus the output; no full-size grayscale copy is ever allocated

Also provides the hex payload format used by `<img>` markup tags, which is the
ESC/POS `GS v 0` raster command rendered as uppercase hex.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Iterator
from dataclasses import dataclass
from typing import Union

from PIL import Image, ImageOps

from receipt_printer.core.errors import InvalidImage

logger = logging.getLogger(__name__)

THRESHOLD = 127
LARGE_IMAGE_THRESHOLD = 2000
BAND_ROWS = 32
RASTER_MAX_BLOCK_ROWS = 256

GS_V0 = b"\x1d\x76\x30"
GS_V0_HEADER_LEN = 8

# Gray level -> "ink" level; after conversion to mode "1" a set bit means a black dot.
_INK_LUT = [255 if v <= THRESHOLD else 0 for v in range(256)]


@dataclass(frozen=True)
class RasterBitmap:
    """
    A packed monochrome bitmap ready for the print head.

    Rows are packed MSB-first and padded to a whole byte. A set bit is a black dot.
    """

    width: int
    height: int
    data: bytes

    def __post_init__(self) -> None:
        if self.width <= 0 or self.height <= 0:
            raise InvalidImage(f"raster must have a positive size, got {self.width}x{self.height}")
        expected = self.bytes_per_row * self.height
        if len(self.data) != expected:
            raise InvalidImage(f"raster data is {len(self.data)} bytes, expected {expected}")

    @property
    def bytes_per_row(self) -> int:
        return (self.width + 7) // 8

    def row(self, y: int) -> bytes:
        start = y * self.bytes_per_row
        return self.data[start : start + self.bytes_per_row]

    @classmethod
    def from_ink_image(cls, img: Image.Image) -> "RasterBitmap":
        """Pack a mode '1' image in which non-zero pixels are ink."""
        if img.mode != "1":
            raise InvalidImage(f"expected a mode '1' ink image, got {img.mode!r}")
        return cls(img.width, img.height, img.tobytes())

    def ink_image(self) -> Image.Image:
        """Mode '1' image where set pixels are ink (the packed layout as-is)."""
        return Image.frombytes("1", (self.width, self.height), self.data)

    def to_image(self) -> Image.Image:
        """
        Render back to a grayscale 'L' image: black ink (0) on white paper (255).
        """
        return ImageOps.invert(self.ink_image().convert("L"))

    def padded_to(self, width: int, align: str = "center") -> "RasterBitmap":
        """
        Place this raster inside a wider blank field.

        align is one of "left", "center", "right".
        """
        if width < self.width:
            raise ValueError(f"cannot pad a {self.width}-dot raster into {width} dots")
        if width == self.width:
            return self
        if align == "right":
            offset = width - self.width
        elif align == "center":
            offset = (width - self.width) // 2
        else:
            offset = 0
        canvas = Image.new("1", (width, self.height), 0)
        canvas.paste(self.ink_image(), (offset, 0))
        return RasterBitmap.from_ink_image(canvas)

    def count_ink(self) -> int:
        """Number of black dots (bits set), ignoring row padding."""
        total = 0
        full, rem = divmod(self.width, 8)
        mask = (0xFF << (8 - rem)) & 0xFF if rem else 0
        for y in range(self.height):
            row = self.row(y)
            total += sum(bin(b).count("1") for b in row[:full])
            if rem:
                total += bin(row[full] & mask).count("1")
        return total


Bitmap = Union[Image.Image, RasterBitmap]


def _validate_source(bitmap: object) -> Image.Image:
    if isinstance(bitmap, RasterBitmap):
        return bitmap.to_image()
    if not isinstance(bitmap, Image.Image):
        raise InvalidImage(f"unsupported bitmap type: {type(bitmap).__name__}")
    width, height = bitmap.size
    if width <= 0 or height <= 0:
        raise InvalidImage(f"zero-area bitmap {width}x{height}")
    try:
        bitmap.load()
    except (OSError, ValueError) as e:
        raise InvalidImage(f"bitmap could not be decoded: {e}") from e
    return bitmap


def _to_gray(img: Image.Image) -> Image.Image:
    if img.mode == "L":
        return img
    return img.convert("L")


def _binarize(gray: Image.Image) -> RasterBitmap:
    ink = gray.point(_INK_LUT).convert("1", dither=Image.Dither.NONE)
    return RasterBitmap.from_ink_image(ink)


def _banded_downscale(img: Image.Image, width: int, height: int) -> Image.Image:
    """
    Area-average `img` down to (width, height) one horizontal band at a time.

    Each band is cropped from the source, converted to gray and box-resampled
    with fractional source bounds, so bands join without seams.
    """
    src_w, src_h = img.size
    rows_per_out = src_h / float(height)
    out = Image.new("L", (width, height), 255)
    for oy0 in range(0, height, BAND_ROWS):
        oy1 = min(height, oy0 + BAND_ROWS)
        sy0 = oy0 * rows_per_out
        sy1 = min(float(src_h), oy1 * rows_per_out)
        top = int(math.floor(sy0))
        bottom = max(top + 1, min(src_h, int(math.ceil(sy1))))
        band = _to_gray(img.crop((0, top, src_w, bottom)))
        scaled = band.resize(
            (width, oy1 - oy0),
            Image.Resampling.BOX,
            box=(0.0, sy0 - top, float(src_w), sy1 - top),
        )
        out.paste(scaled, (0, oy0))
    return out


def target_size(width: int, height: int, max_width_px: int) -> tuple[int, int]:
    """
    Output size for a source of (width, height) limited to max_width_px.
    Aspect ratio is preserved; height is rounded and never below one dot.
    """
    if width <= max_width_px:
        return width, height
    scale = max_width_px / float(width)
    return max_width_px, max(1, int(round(height * scale)))


def resize_to_width(bitmap: Bitmap, max_width_px: int) -> RasterBitmap:
    """
    Fit a bitmap to the print head and binarize it.

    Args:
        bitmap: A Pillow image of any mode and size, or a RasterBitmap.
        max_width_px: Maximum raster width in dots (usually dots_per_line).

    Returns:
        A RasterBitmap no wider than max_width_px. Bitmaps already narrow enough
        keep their size; wider ones are scaled to exactly max_width_px.

    Raises:
        InvalidImage for zero-area, undecodable or unsupported inputs.
    """
    if max_width_px <= 0:
        raise InvalidImage(f"max width must be positive, got {max_width_px}")
    if isinstance(bitmap, RasterBitmap) and bitmap.width <= max_width_px:
        # Already binary: re-thresholding would reproduce the same bits
        return bitmap
    img = _validate_source(bitmap)
    src_w, src_h = img.size
    new_w, new_h = target_size(src_w, src_h, max_width_px)

    if (new_w, new_h) == (src_w, src_h):
        return _binarize(_to_gray(img))

    if src_w > LARGE_IMAGE_THRESHOLD or src_h > LARGE_IMAGE_THRESHOLD:
        logger.info("Downscaling large image %dx%d -> %dx%d in bands", src_w, src_h, new_w, new_h)
        gray = _banded_downscale(img, new_w, new_h)
    else:
        logger.debug("Downscaling image %dx%d -> %dx%d", src_w, src_h, new_w, new_h)
        gray = _to_gray(img).resize((new_w, new_h), Image.Resampling.BOX)
    return _binarize(gray)


def bitmap_from_rgba(width: int, height: int, buffer: Union[bytes, bytearray, memoryview]) -> Image.Image:
    """
    Wrap a decoded RGBA pixel buffer (4 bytes per pixel, row-major) as a Pillow image
    without copying it.
    """
    if width <= 0 or height <= 0:
        raise InvalidImage(f"zero-area bitmap {width}x{height}")
    expected = width * height * 4
    if len(buffer) != expected:
        raise InvalidImage(f"RGBA buffer is {len(buffer)} bytes, expected {expected}")
    return Image.frombuffer("RGBA", (width, height), buffer, "raw", "RGBA", 0, 1)


def iter_raster_blocks(raster: RasterBitmap, max_rows: int = RASTER_MAX_BLOCK_ROWS) -> Iterator[bytes]:
    """
    Yield `GS v 0` raster commands covering the bitmap, at most max_rows rows each.
    """
    width_bytes = raster.bytes_per_row
    for y0 in range(0, raster.height, max_rows):
        rows = min(max_rows, raster.height - y0)
        start = y0 * width_bytes
        yield (
            GS_V0
            + b"\x00"
            + width_bytes.to_bytes(2, "little")
            + rows.to_bytes(2, "little")
            + raster.data[start : start + rows * width_bytes]
        )


def raster_to_hex(raster: RasterBitmap) -> str:
    """
    Encode a raster as the uppercase hex payload accepted inside `<img>` tags.
    """
    return b"".join(iter_raster_blocks(raster)).hex().upper()


def raster_from_hex(payload: str) -> RasterBitmap:
    """
    Decode an `<img>` hex payload (one or more `GS v 0` blocks of equal width).

    The pixel width is recovered as a whole number of bytes (width_bytes * 8).
    """
    try:
        raw = bytes.fromhex("".join(payload.split()))
    except ValueError as e:
        raise InvalidImage(f"image payload is not valid hex: {e}") from e
    if not raw:
        raise InvalidImage("empty image payload")

    width_bytes = None
    chunks = []
    height = 0
    pos = 0
    while pos < len(raw):
        header = raw[pos : pos + GS_V0_HEADER_LEN]
        if len(header) < GS_V0_HEADER_LEN or header[:3] != GS_V0:
            raise InvalidImage(f"image payload is not a raster command at byte {pos}")
        xb = int.from_bytes(header[4:6], "little")
        rows = int.from_bytes(header[6:8], "little")
        if xb == 0 or rows == 0:
            raise InvalidImage("raster block with zero size")
        if width_bytes is None:
            width_bytes = xb
        elif xb != width_bytes:
            raise InvalidImage("raster blocks have different widths")
        size = xb * rows
        body = raw[pos + GS_V0_HEADER_LEN : pos + GS_V0_HEADER_LEN + size]
        if len(body) != size:
            raise InvalidImage("raster block is truncated")
        chunks.append(body)
        height += rows
        pos += GS_V0_HEADER_LEN + size

    return RasterBitmap(width_bytes * 8, height, b"".join(chunks))  # type: ignore[operator]


__all__ = [
    "LARGE_IMAGE_THRESHOLD",
    "RASTER_MAX_BLOCK_ROWS",
    "THRESHOLD",
    "Bitmap",
    "RasterBitmap",
    "bitmap_from_rgba",
    "iter_raster_blocks",
    "raster_from_hex",
    "raster_to_hex",
    "resize_to_width",
    "target_size",
]
