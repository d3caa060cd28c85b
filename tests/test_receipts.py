from receipt_printer.core.config import PrinterSessionConfig
from receipt_printer.printing import receipts
from receipt_printer.printing.directives import AlignedText, Barcode, LineFeed, QrCode, RasterImage, Rule
from receipt_printer.printing.encoder import encode
from receipt_printer.printing.images import RasterBitmap
from receipt_printer.printing.markup import compile_markup

LOGO = RasterBitmap(16, 2, b"\xff" * 4)


def test_clean_neutralises_markup():
    assert receipts.clean("Fish <b>&</b> Chips") == "Fish < b>&< /b> Chips"
    assert receipts.clean("[R]ight\nnow") == "(R)ight now"
    assert receipts.clean("a < b") == "a < b"


def test_demo_receipt_compiles_and_encodes():
    job = compile_markup(receipts.demo_receipt())
    assert job[0].content == "TEST RECEIPT" and job[0].bold
    assert Rule("-") in job
    assert job[-1] == LineFeed()
    assert encode(job, PrinterSessionConfig()).startswith(b"\x1b@\x1ba\x01\x1bE\x01TEST RECEIPT")


def test_store_receipt_totals_and_logo():
    markup = receipts.store_receipt([("Coffee", 3.50), ("Bagel", 2.25)], date="2024-01-01", time="09:30")
    job = compile_markup(markup, images={"logo": LOGO})
    assert job[0] == RasterImage(LOGO)
    texts = [d.content for d in job if isinstance(d, AlignedText)]
    assert "Date: 2024-01-01" in texts
    assert any(t.startswith("Subtotal:") and t.endswith("$5.75") for t in texts)
    assert any(t.startswith("Coffee") and t.endswith("$3.50") for t in texts)


def test_store_receipt_escapes_item_names():
    markup = receipts.store_receipt([("<xyz> deal", 1.0)], logo=None)
    job = compile_markup(markup)
    assert any("< xyz> deal" in d.content for d in job if isinstance(d, AlignedText))


def test_product_receipt_prints_without_its_image():
    job = compile_markup(receipts.product_receipt("Widget", 9.99), images={"product": None}, image_optional=True)
    assert not any(isinstance(d, RasterImage) for d in job)
    assert "Price: $9.99" in [d.content for d in job if isinstance(d, AlignedText)]


def test_code_receipts():
    job = compile_markup(receipts.qr_receipt("https://example.com", size=8))
    assert QrCode("https://example.com", 8) in job

    job = compile_markup(receipts.barcode_receipt("5901234123457"))
    assert Barcode("EAN13", "5901234123457", 50) in job


def test_large_image_receipt_reports_sizes():
    job = compile_markup(receipts.large_image_receipt("img", (6000, 4000), (384, 256)), images={"img": LOGO})
    texts = [d.content for d in job if isinstance(d, AlignedText)]
    assert "Original: 6000x4000" in texts and "Printed: 384x256" in texts
