"""
Ready-made receipt markup.

Builders return markup strings for the common receipts the app prints: a test
page, a store receipt with a logo, image prints, a product card, and QR or
barcode labels. Images are referenced by handle (`<img>handle</img>`) and must
be supplied to the compiler/session as rasters under the same name.
"""

from __future__ import annotations

import re
from collections.abc import Sequence
from typing import Optional, Tuple

SEPARATOR = "--------------------------------"
DOUBLE_SEPARATOR = "================================"

_TAG_START_RE = re.compile(r"<(?=/?[A-Za-z])")
_ALIGN_TAG_RE = re.compile(r"\[([LCR])\]")


def clean(text: object) -> str:
    """Make caller-supplied text safe to splice into a markup line."""
    s = " ".join(str(text).splitlines())
    s = _TAG_START_RE.sub("< ", s)
    return _ALIGN_TAG_RE.sub(r"(\1)", s)


def money(amount: float, currency: str = "$") -> str:
    return f"{currency}{amount:.2f}"


def _pad_label(label: str, width: int = 18) -> str:
    return clean(label).ljust(width)


def demo_receipt() -> str:
    return "\n".join(
        [
            "[C]<b>TEST RECEIPT</b>",
            "[L]Item A        [R]10.00",
            "[L]Item B        [R]20.00",
            "[L]------------------------",
            "[R]<b>Total: 30.00</b>",
            "",
            "",
        ]
    )


def store_receipt(
    items: Sequence[Tuple[str, float]],
    *,
    store_name: str = "MY STORE NAME",
    address_line: str = "123 Main Street",
    phone: str = "Tel: (123) 456-7890",
    date: Optional[str] = None,
    time: Optional[str] = None,
    tax_rate: float = 0.10,
    logo: Optional[str] = "logo",
) -> str:
    """
    Store receipt with optional logo, item lines, subtotal, tax and total.
    `date` and `time` are preformatted by the caller.
    """
    subtotal = round(sum(price for _, price in items), 2)
    tax = round(subtotal * tax_rate, 2)
    total = round(subtotal + tax, 2)

    lines = []
    if logo:
        lines.append(f"[C]<img>{logo}</img>")
    lines += [
        f"[C]<b>{clean(store_name)}</b>",
        f"[C]{clean(address_line)}",
        f"[C]{clean(phone)}",
        f"[C]{DOUBLE_SEPARATOR}",
        "[L]",
    ]
    if date:
        lines.append(f"[L]Date: {clean(date)}")
    if time:
        lines.append(f"[L]Time: {clean(time)}")
    lines += [
        "[L]",
        "[L]<b>Items:</b>",
        f"[L]{SEPARATOR}",
    ]
    for name, price in items:
        lines.append(f"[L]{_pad_label(name)}[R]{money(price)}")
    lines += [
        f"[L]{SEPARATOR}",
        f"[L]{_pad_label('Subtotal:')}[R]{money(subtotal)}",
        f"[L]{_pad_label(f'Tax ({tax_rate * 100:.0f}%):')}[R]{money(tax)}",
        f"[L]{DOUBLE_SEPARATOR}",
        f"[L]<b>TOTAL:</b>     [R]<b>{money(total)}</b>",
        "[L]",
        "[C]<b>Thank You!</b>",
        "[C]Please Come Again",
        "",
        "",
    ]
    return "\n".join(lines)


def image_receipt(image: str, title: str = "Image from URL", caption: Optional[str] = None) -> str:
    lines = [f"[C]<b>{clean(title)}</b>", f"[C]<img>{image}</img>"]
    if caption:
        lines.append(f"[C]{clean(caption)}")
    return "\n".join(lines + ["", ""])


def large_image_receipt(image: str, original: Tuple[int, int], printed: Tuple[int, int]) -> str:
    return "\n".join(
        [
            "[C]<b>Large Image Print</b>",
            f"[C]Original: {original[0]}x{original[1]}",
            f"[C]Printed: {printed[0]}x{printed[1]}",
            f"[C]<img>{image}</img>",
            "",
            "",
        ]
    )


def product_receipt(name: str, price: float, image: Optional[str] = "product") -> str:
    """
    Product card. When `image` is a handle the caller may leave it unresolved
    and compile with image_optional to print the card without a picture.
    """
    lines = ["[C]<b>PRODUCT RECEIPT</b>", f"[C]{DOUBLE_SEPARATOR}"]
    if image:
        lines.append(f"[C]<img>{image}</img>")
    lines += [
        f"[C]<b>{clean(name)}</b>",
        f"[C]Price: {money(price)}",
        f"[C]{DOUBLE_SEPARATOR}",
        "[C]Thank you!",
        "",
        "",
    ]
    return "\n".join(lines)


def qr_receipt(data: str, size: int = 8) -> str:
    return "\n".join(
        [
            "[C]<b>Scan QR Code</b>",
            f"[C]<qrcode size='{int(size)}'>{clean(data)}</qrcode>",
            "[C]Thank you!",
            "",
            "",
        ]
    )


def barcode_receipt(data: str, symbology: str = "ean13", height: int = 50) -> str:
    return "\n".join(
        [
            "[C]<b>Product Barcode</b>",
            f"[C]<barcode type='{clean(symbology)}' height='{int(height)}'>{clean(data)}</barcode>",
            "",
            "",
        ]
    )


__all__ = [
    "barcode_receipt",
    "clean",
    "image_receipt",
    "large_image_receipt",
    "money",
    "product_receipt",
    "qr_receipt",
    "store_receipt",
    "demo_receipt",
]
