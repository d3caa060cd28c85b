"""
ESC/POS command encoder.

Renders a compiled PrintJob into the byte stream understood by ESC/POS thermal
printers. Commands are issued on a python-escpos `Dummy` printer, which buffers
them instead of sending them anywhere; the buffered output is the job's bytes.
Encoding is a pure function of (job, config): the same input always yields the
same bytes, which keeps golden-byte tests meaningful.

Text is written in the session charset as-is; no code page switching is sent.
"""

from __future__ import annotations

import logging
from typing import Iterable, List

from escpos.constants import QR_ECLEVEL_M, QR_MODEL_2
from escpos.exceptions import Error as EscposError
from escpos.printer import Dummy

from receipt_printer.core.config import PrinterSessionConfig
from receipt_printer.core.errors import InvalidBarcodeData, UnsupportedSymbology, WidthMismatch

from .directives import (
    Align,
    AlignedText,
    Barcode,
    Cut,
    LineFeed,
    PrintDirective,
    QrCode,
    RasterImage,
    Rule,
    TextColumn,
    TextRun,
)
from .images import RASTER_MAX_BLOCK_ROWS

logger = logging.getLogger(__name__)

BARCODE_MODULE_WIDTH = 2
SUPPORTED_SYMBOLOGIES = frozenset(["EAN13", "CODE128", "QR"])
CODE128_MAX_PAYLOAD = 255

QR_MAX_BYTES = 7089
QR_MIN_SIZE, QR_MAX_SIZE = 1, 16


def _text(p: Dummy, text: str, config: PrinterSessionConfig) -> None:
    p._raw(text.encode(config.charset, errors="replace"))


def _line_start(p: Dummy, align: Align, bold: bool = False) -> None:
    # Two calls so alignment always precedes emphasis in the stream
    p.set(align=align.value)
    p.set(bold=bold)


def _layout_columns(columns: Iterable[TextColumn], width: int) -> List[TextRun]:
    """
    Lay out a multi-column line over `width` characters.

    Left columns flow from the current position, centered columns are centered on
    the line, right columns are pushed against the right margin. Columns are never
    reordered or truncated; when the text overflows no padding is inserted.
    """
    cols = [c for c in columns if c.text]
    lengths = [len(c.text) for c in cols]
    out: List[TextRun] = []
    pos = 0
    for i, col in enumerate(cols):
        remaining = sum(lengths[i:])
        if i == 0 or col.align == Align.LEFT:
            target = pos
        elif col.align == Align.CENTER:
            target = min((width - lengths[i]) // 2, width - remaining)
        else:
            target = width - remaining
        target = max(pos, target)
        if target > pos:
            out.append(TextRun(" " * (target - pos)))
        out.extend(r for r in col.runs if r.text)
        pos = target + lengths[i]
    return out


def _emit_runs(p: Dummy, runs: Iterable[TextRun], config: PrinterSessionConfig, bold: bool = False) -> None:
    """Text with bold toggles between runs; `bold` is the state already set on the printer."""
    for run in runs:
        if run.bold != bold and run.text.strip():
            p.set(bold=run.bold)
            bold = run.bold
        _text(p, run.text, config)
    if bold:
        p.set(bold=False)


def _emit_aligned_text(p: Dummy, d: AlignedText, config: PrinterSessionConfig) -> None:
    columns = d.columns or (TextColumn(d.align, (TextRun(d.content, d.bold),)),)
    if len(columns) == 1:
        runs = columns[0].runs
        first_bold = next((r.bold for r in runs if r.text.strip()), False)
        _line_start(p, d.align, first_bold)
        _emit_runs(p, runs, config, bold=first_bold)
    else:
        _line_start(p, Align.LEFT)
        _emit_runs(p, _layout_columns(columns, config.chars_per_line), config)
    p.control("LF")


def _emit_rule(p: Dummy, d: Rule, config: PrinterSessionConfig) -> None:
    char = (d.char or "-")[:1]
    _line_start(p, Align.LEFT)
    _text(p, char * config.chars_per_line, config)
    p.control("LF")


def _emit_raster(p: Dummy, d: RasterImage, config: PrinterSessionConfig) -> None:
    if d.width > config.dots_per_line:
        raise WidthMismatch(f"image is {d.width} dots wide, printer line is {config.dots_per_line}")
    img = d.raster.padded_to(config.dots_per_line, d.align.value).to_image()
    p.set(align=Align.LEFT.value)
    for top in range(0, img.height, RASTER_MAX_BLOCK_ROWS):
        block = img.crop((0, top, img.width, min(img.height, top + RASTER_MAX_BLOCK_ROWS)))
        try:
            p.image(block, impl="bitImageRaster", high_density_vertical=True, high_density_horizontal=True)
        except EscposError as e:
            raise WidthMismatch(str(e)) from e


def _code128_payload(data: str) -> str:
    """Code set B prefix; a literal '{' is doubled so it is not read as a shift."""
    if not data or not data.isascii() or not data.isprintable():
        raise InvalidBarcodeData(f"CODE128 needs printable ASCII, got {data!r}")
    payload = "{B" + data.replace("{", "{{")
    if len(payload) > CODE128_MAX_PAYLOAD:
        raise InvalidBarcodeData(f"CODE128 payload is {len(payload)} bytes, max {CODE128_MAX_PAYLOAD}")
    return payload


def _emit_barcode(p: Dummy, d: Barcode, config: PrinterSessionConfig) -> None:
    symbology = d.symbology.upper()
    if symbology == "QR":
        _emit_qr(p, QrCode(d.data, align=d.align), config)
        return
    if symbology not in SUPPORTED_SYMBOLOGIES:
        raise UnsupportedSymbology(d.symbology)

    if symbology == "EAN13":
        if not d.data.isascii() or not d.data.isdigit() or len(d.data) not in (12, 13):
            raise InvalidBarcodeData(f"EAN13 needs 12 or 13 digits, got {d.data!r}")
        payload = d.data
    else:
        payload = _code128_payload(d.data)

    p.set(align=d.align.value)
    try:
        p.barcode(
            payload,
            symbology,
            height=max(1, min(255, int(d.height))),
            width=BARCODE_MODULE_WIDTH,
            pos="BELOW",
            font="A",
            align_ct=False,
            function_type="B",
        )
    except EscposError as e:
        raise InvalidBarcodeData(str(e)) from e
    p.control("LF")


def _emit_qr(p: Dummy, d: QrCode, config: PrinterSessionConfig) -> None:
    nbytes = len(d.data.encode("utf-8"))
    if not nbytes:
        raise InvalidBarcodeData("QR code data is empty")
    if nbytes > QR_MAX_BYTES:
        raise InvalidBarcodeData(f"QR code data is {nbytes} bytes, max {QR_MAX_BYTES}")
    p.set(align=d.align.value)
    p.qr(
        d.data,
        ec=QR_ECLEVEL_M,
        size=max(QR_MIN_SIZE, min(QR_MAX_SIZE, int(d.size))),
        model=QR_MODEL_2,
        native=True,
    )
    p.control("LF")


def _emit(p: Dummy, d: PrintDirective, config: PrinterSessionConfig) -> None:
    if isinstance(d, AlignedText):
        _emit_aligned_text(p, d, config)
    elif isinstance(d, Rule):
        _emit_rule(p, d, config)
    elif isinstance(d, RasterImage):
        _emit_raster(p, d, config)
    elif isinstance(d, Barcode):
        _emit_barcode(p, d, config)
    elif isinstance(d, QrCode):
        _emit_qr(p, d, config)
    elif isinstance(d, LineFeed):
        p.control("LF")
    elif isinstance(d, Cut):
        p.cut(mode="PART")
    else:
        raise TypeError(f"not a print directive: {d!r}")


def encode_directive(d: PrintDirective, config: PrinterSessionConfig) -> bytes:
    """Bytes for a single directive, without the job's leading initialize."""
    p = Dummy()
    _emit(p, d, config)
    return p.output


def encode(job: Iterable[PrintDirective], config: PrinterSessionConfig) -> bytes:
    """
    Encode a PrintJob to ESC/POS bytes.

    Raises:
        WidthMismatch: a raster wider than config.dots_per_line.
        UnsupportedSymbology: a barcode outside EAN13, CODE128 and QR.
        InvalidBarcodeData: barcode or QR data the symbology cannot carry.
    """
    p = Dummy()
    p.hw("INIT")
    for d in job:
        _emit(p, d, config)
    out = p.output
    logger.debug("Encoded job to %d bytes", len(out))
    return out


__all__ = ["SUPPORTED_SYMBOLOGIES", "encode", "encode_directive"]
