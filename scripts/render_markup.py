#!/usr/bin/env python3
"""
Offline ESC/POS renderer for Receipt Printer.

Compiles receipt markup (from a file, stdin or a built-in demo receipt) with
the same pipeline the service uses and writes the ESC/POS bytes to a file, or
sends them straight to a printer address.

Usage:
  python scripts/render_markup.py receipt.txt -o receipt.bin
  python scripts/render_markup.py --demo qr --hex
  python scripts/render_markup.py receipt.txt --image logo=logo.png --send AA:BB:CC:DD:EE:FF

Exit code:
  0  on success
  1  if compiling, encoding or printing fails
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import Dict, List, Optional


def _ensure_sys_path():
    """
    Ensure the project root (the directory containing 'receipt_printer') is on
    sys.path so `import receipt_printer` works regardless of where the script
    is run from.
    """
    project_root = Path(__file__).resolve().parents[1]
    if str(project_root) not in sys.path:
        sys.path.insert(0, str(project_root))


def _parse_images(pairs: List[str]) -> Dict[str, str]:
    images: Dict[str, str] = {}
    for pair in pairs:
        name, sep, path = pair.partition("=")
        if not sep or not name or not path:
            raise SystemExit(f"--image expects handle=path, got {pair!r}")
        images[name] = path
    return images


def _demo_markup(name: str) -> str:
    from receipt_printer.printing import receipts

    demos = {
        "test": receipts.demo_receipt,
        "store": lambda: receipts.store_receipt([("Coffee", 3.5), ("Bagel", 2.25)], logo=None),
        "qr": lambda: receipts.qr_receipt("https://example.com"),
        "barcode": lambda: receipts.barcode_receipt("1234567890128"),
    }
    if name not in demos:
        raise SystemExit(f"unknown demo {name!r}; choose from {', '.join(sorted(demos))}")
    return demos[name]()


def main(argv: Optional[List[str]] = None) -> int:
    ap = argparse.ArgumentParser(description="Render receipt markup to ESC/POS bytes.")
    ap.add_argument("markup", nargs="?", help="Markup file ('-' for stdin)")
    ap.add_argument("--demo", help="Render a built-in receipt instead (test, store, qr, barcode)")
    ap.add_argument("--image", action="append", default=[], metavar="HANDLE=PATH", help="Image for <img>HANDLE</img>")
    ap.add_argument("--cut", action="store_true", help="Cut the paper at the end")
    ap.add_argument("-o", "--output", help="Write bytes to this file")
    ap.add_argument("--hex", action="store_true", help="Print a hex dump to stdout")
    ap.add_argument("--send", metavar="ADDRESS", help="Connect to ADDRESS and print")
    args = ap.parse_args(argv)

    _ensure_sys_path()
    from receipt_printer.core.config import load_config, session_config_from
    from receipt_printer.core.errors import PrintError
    from receipt_printer.core.logging import configure_logging
    from receipt_printer.printing.imagesource import decode_bitmap
    from receipt_printer.printing.session import PrintSession

    configure_logging()

    if args.demo:
        markup = _demo_markup(args.demo)
    elif args.markup == "-":
        markup = sys.stdin.read()
    elif args.markup:
        markup = Path(args.markup).read_text(encoding="utf-8")
    else:
        ap.error("provide a markup file or --demo")

    session = PrintSession(session_config_from(load_config()))
    try:
        images = {name: decode_bitmap(Path(path).read_bytes()) for name, path in _parse_images(args.image).items()}
        data = session.render(markup, images=images, cut=args.cut)
        if args.output:
            Path(args.output).write_bytes(data)
            print(f"Wrote {len(data)} bytes to {args.output}")
        if args.hex:
            print(data.hex(" "))
        if args.send:
            session.connect(args.send)
            try:
                session.submit(markup, images=images, cut=args.cut)
            finally:
                session.disconnect()
            print(session.last_message)
    except (PrintError, OSError) as e:
        print(f"[FAIL] {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
