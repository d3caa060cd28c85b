"""
Print directives: the compiled, printer-independent form of a receipt.

A PrintJob is an immutable, ordered tuple of directives produced by the markup
compiler (or built directly for bitmap prints) and consumed once by the encoder.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Tuple, Union

from .images import RasterBitmap


class Align(str, Enum):
    LEFT = "left"
    CENTER = "center"
    RIGHT = "right"

    @classmethod
    def from_tag(cls, tag: str) -> "Align":
        return {"L": cls.LEFT, "C": cls.CENTER, "R": cls.RIGHT}[tag.upper()]


@dataclass(frozen=True)
class TextRun:
    text: str
    bold: bool = False


@dataclass(frozen=True)
class TextColumn:
    """One `[L]`/`[C]`/`[R]` segment of a line."""

    align: Align
    runs: Tuple[TextRun, ...]

    @property
    def text(self) -> str:
        return "".join(r.text for r in self.runs)


@dataclass(frozen=True)
class AlignedText:
    align: Align
    bold: bool
    content: str
    columns: Tuple[TextColumn, ...] = ()

    @classmethod
    def from_columns(cls, columns: Tuple[TextColumn, ...]) -> "AlignedText":
        runs = [r for c in columns for r in c.runs if r.text]
        return cls(
            align=columns[0].align,
            bold=bool(runs) and all(r.bold for r in runs),
            content="".join(c.text for c in columns),
            columns=columns,
        )

    @classmethod
    def plain(cls, text: str, align: Align = Align.LEFT, bold: bool = False) -> "AlignedText":
        return cls(align, bold, text, (TextColumn(align, (TextRun(text, bold),)),))


@dataclass(frozen=True)
class Rule:
    char: str = "-"


@dataclass(frozen=True)
class RasterImage:
    raster: RasterBitmap
    align: Align = Align.CENTER

    @property
    def width(self) -> int:
        return self.raster.width

    @property
    def height(self) -> int:
        return self.raster.height


@dataclass(frozen=True)
class Barcode:
    symbology: str
    data: str
    height: int = 80
    align: Align = Align.CENTER


@dataclass(frozen=True)
class QrCode:
    data: str
    size: int = 6
    align: Align = Align.CENTER


@dataclass(frozen=True)
class LineFeed:
    pass


@dataclass(frozen=True)
class Cut:
    pass


PrintDirective = Union[AlignedText, Rule, RasterImage, Barcode, QrCode, LineFeed, Cut]
PrintJob = Tuple[PrintDirective, ...]


__all__ = [
    "Align",
    "AlignedText",
    "Barcode",
    "Cut",
    "LineFeed",
    "PrintDirective",
    "PrintJob",
    "QrCode",
    "RasterImage",
    "Rule",
    "TextColumn",
    "TextRun",
]
