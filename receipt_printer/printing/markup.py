"""
Markup compiler for receipt text.

The markup is line oriented:

    [C]<b>MY STORE</b>
    [L]Coffee            [R]$3.50
    [L]--------------------------------
    [C]<qrcode size='6'>https://example.com</qrcode>
    [C]<barcode type='ean13' height='50'>5901234123457</barcode>
    [C]<img>logo</img>

- A line may begin with `[L]`, `[C]` or `[R]` (default left); further
  alignment tags inside the line open new columns.
- `<b>...</b>` toggles emphasis within a line.
- `<img>`, `<qrcode>` and `<barcode>` embed elements. `<img>` takes either the
  name of a pre-rasterized image supplied by the caller or a hex raster payload.
- Lines made only of `-` or `=` (three or more) become a full-width rule.
- Blank lines feed one line.

Formatting problems are raised, never skipped: a printed receipt with a silently
missing line is worse than a failed job.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Mapping
from typing import Dict, List, Optional

from receipt_printer.core.errors import InvalidImage, UnknownTag, UnterminatedTag

from .directives import (
    Align,
    AlignedText,
    Barcode,
    Cut,
    LineFeed,
    PrintDirective,
    PrintJob,
    QrCode,
    RasterImage,
    Rule,
    TextColumn,
    TextRun,
)
from .images import RasterBitmap, raster_from_hex

logger = logging.getLogger(__name__)

ImageMap = Mapping[str, Optional[RasterBitmap]]

_ALIGN_PREFIX_RE = re.compile(r"\[([LCR])\]")
_TOKEN_START_RE = re.compile(r"\[[LCR]\]|</?[A-Za-z]")
_TAG_RE = re.compile(
    r"""<(/?)([A-Za-z][A-Za-z0-9_-]*)((?:\s+[^\s=<>/]+\s*=\s*(?:'[^']*'|"[^"]*"))*)\s*>""",
)
_TAG_NAME_RE = re.compile(r"</?([A-Za-z][A-Za-z0-9_-]*)")
_ATTR_RE = re.compile(r"""([^\s=<>/]+)\s*=\s*(?:'([^']*)'|"([^"]*)")""")
_RULE_RE = re.compile(r"-{3,}|={3,}")

ELEMENT_TAGS = ("img", "qrcode", "barcode")
ALLOWED_ATTRS: Dict[str, tuple[str, ...]] = {
    "b": (),
    "img": (),
    "qrcode": ("size",),
    "barcode": ("type", "height"),
}
SYMBOLOGY_ALIASES = {
    "EAN13": "EAN13",
    "EAN-13": "EAN13",
    "128": "CODE128",
    "CODE128": "CODE128",
    "CODE-128": "CODE128",
}
DEFAULT_BARCODE_HEIGHT = 80
DEFAULT_QR_SIZE = 6


def _parse_attrs(name: str, raw: str) -> Dict[str, str]:
    attrs: Dict[str, str] = {}
    for m in _ATTR_RE.finditer(raw):
        key = m.group(1).lower()
        if key not in ALLOWED_ATTRS[name]:
            raise UnknownTag(name, f"unknown attribute {key!r} on <{name}>")
        attrs[key] = m.group(2) if m.group(2) is not None else (m.group(3) or "")
    return attrs


def _int_attr(name: str, attrs: Mapping[str, str], key: str, default: int) -> int:
    value = attrs.get(key)
    if value is None or not value.strip():
        return default
    try:
        return int(value.strip())
    except ValueError:
        raise UnknownTag(name, f"attribute {key!r} on <{name}> must be an integer, got {value!r}") from None


def normalize_symbology(value: Optional[str]) -> str:
    """Canonical symbology name; unrecognized names are returned uppercased for the encoder to reject."""
    v = (value or "ean13").strip().upper()
    return SYMBOLOGY_ALIASES.get(v, v)


class _LineBuilder:
    """Accumulates runs and columns for one markup line."""

    def __init__(self, align: Align) -> None:
        self.align = align
        self.bold = False
        self.directives: List[PrintDirective] = []
        self._columns: List[TextColumn] = []
        self._runs: List[TextRun] = []
        self._buf: List[str] = []
        self.has_element = False
        self.dropped_element = False

    def text(self, s: str) -> None:
        if s:
            self._buf.append(s)

    def set_bold(self, on: bool) -> None:
        self._flush_run()
        self.bold = on

    def new_column(self, align: Align) -> None:
        self._flush_column()
        self.align = align

    def element(self, directive: PrintDirective) -> None:
        self.flush_text()
        self.has_element = True
        self.directives.append(directive)

    def _flush_run(self) -> None:
        if self._buf:
            self._runs.append(TextRun("".join(self._buf), self.bold))
            self._buf = []

    def _flush_column(self) -> None:
        self._flush_run()
        if self._runs:
            self._columns.append(TextColumn(self.align, tuple(self._runs)))
            self._runs = []

    def flush_text(self) -> None:
        self._flush_column()
        if not self._columns:
            return
        columns = tuple(self._columns)
        self._columns = []
        if not any(c.text.strip() for c in columns):
            return
        self.directives.append(AlignedText.from_columns(columns))


class MarkupCompiler:
    """
    Compiles markup text to a PrintJob.

    images maps `<img>` handles to rasters prepared by the caller; a handle mapped
    to None marks an image that could not be obtained. With image_optional, such
    images (and undecodable payloads) are dropped instead of failing the job.
    """

    def __init__(self, images: Optional[ImageMap] = None, image_optional: bool = False) -> None:
        self.images: ImageMap = images or {}
        self.image_optional = image_optional

    def compile(self, text: str, cut: bool = False) -> PrintJob:
        lines = text.replace("\r\n", "\n").split("\n")
        if lines and lines[-1] == "":
            lines.pop()
        job: List[PrintDirective] = []
        for lineno, line in enumerate(lines, 1):
            job.extend(self._compile_line(line, lineno))
        if cut:
            job.append(Cut())
        return tuple(job)

    def _compile_line(self, line: str, lineno: int) -> List[PrintDirective]:
        pos = 0
        align = Align.LEFT
        m = _ALIGN_PREFIX_RE.match(line)
        if m:
            align = Align.from_tag(m.group(1))
            pos = m.end()

        rest = line[pos:]
        if not rest.strip():
            return [LineFeed()]
        if _RULE_RE.fullmatch(rest.strip()):
            return [Rule(rest.strip()[0])]

        builder = _LineBuilder(align)
        while pos < len(line):
            token = _TOKEN_START_RE.search(line, pos)
            if token is None:
                builder.text(line[pos:])
                break
            builder.text(line[pos : token.start()])
            if token.group(0).startswith("["):
                builder.new_column(Align.from_tag(token.group(0)[1]))
                pos = token.end()
                continue
            pos = self._compile_tag(line, token.start(), builder, lineno)

        if builder.bold:
            raise UnterminatedTag("b", f"<b> is not closed on line {lineno}")
        builder.flush_text()
        if not builder.directives and not builder.dropped_element:
            # Markup-only or whitespace-only lines still advance the paper
            return [LineFeed()]
        return builder.directives

    def _compile_tag(self, line: str, start: int, builder: _LineBuilder, lineno: int) -> int:
        m = _TAG_RE.match(line, start)
        if m is None:
            name_match = _TAG_NAME_RE.match(line, start)
            name = name_match.group(1).lower() if name_match else line[start:]
            raise UnknownTag(name, f"malformed tag <{name}...> on line {lineno}")

        closing, name, raw_attrs = m.group(1) == "/", m.group(2).lower(), m.group(3)
        if name not in ALLOWED_ATTRS:
            raise UnknownTag(f"/{name}" if closing else name)

        if closing:
            if name == "b" and builder.bold:
                builder.set_bold(False)
                return m.end()
            raise UnknownTag(f"/{name}", f"unexpected </{name}> on line {lineno}")

        attrs = _parse_attrs(name, raw_attrs)
        if name == "b":
            builder.set_bold(True)
            return m.end()

        close_tag = f"</{name}>"
        close_at = line.lower().find(close_tag, m.end())
        if close_at < 0:
            raise UnterminatedTag(name, f"<{name}> is not closed on line {lineno}")
        content = line[m.end() : close_at]
        directive = self._element(name, attrs, content, builder.align, lineno)
        if directive is None:
            builder.dropped_element = True
        else:
            builder.element(directive)
        return close_at + len(close_tag)

    def _element(
        self,
        name: str,
        attrs: Mapping[str, str],
        content: str,
        align: Align,
        lineno: int,
    ) -> Optional[PrintDirective]:
        if name == "qrcode":
            return QrCode(content, _int_attr(name, attrs, "size", DEFAULT_QR_SIZE), align)
        if name == "barcode":
            return Barcode(
                normalize_symbology(attrs.get("type")),
                content.strip(),
                _int_attr(name, attrs, "height", DEFAULT_BARCODE_HEIGHT),
                align,
            )
        try:
            return RasterImage(self._resolve_image(content.strip()), align)
        except InvalidImage as e:
            if not self.image_optional:
                raise
            logger.warning("Skipping optional image on line %d: %s", lineno, e)
            return None

    def _resolve_image(self, payload: str) -> RasterBitmap:
        if payload in self.images:
            raster = self.images[payload]
            if raster is None:
                raise InvalidImage(f"image {payload!r} is unavailable")
            if not isinstance(raster, RasterBitmap):
                raise InvalidImage(f"image {payload!r} has not been rasterized")
            return raster
        if not payload:
            raise InvalidImage("empty <img> payload")
        return raster_from_hex(payload)


def compile_markup(
    text: str,
    *,
    images: Optional[ImageMap] = None,
    image_optional: bool = False,
    cut: bool = False,
) -> PrintJob:
    """
    Compile markup to an immutable PrintJob.

    Raises:
        UnknownTag: unknown tag, unknown attribute, bad attribute value, stray closing tag.
        UnterminatedTag: `<b>` or an embedded element left open at end of line.
        InvalidImage: an `<img>` that cannot be resolved (unless image_optional).
    """
    return MarkupCompiler(images, image_optional).compile(text, cut=cut)


__all__ = ["MarkupCompiler", "compile_markup", "normalize_symbology"]
