import pytest

from receipt_printer.core.errors import InvalidImage, UnknownTag, UnterminatedTag
from receipt_printer.printing.directives import (
    Align,
    AlignedText,
    Barcode,
    Cut,
    LineFeed,
    QrCode,
    RasterImage,
    Rule,
    TextRun,
)
from receipt_printer.printing.images import RasterBitmap, raster_to_hex
from receipt_printer.printing.markup import compile_markup, normalize_symbology

LOGO = RasterBitmap(8, 1, b"\xff")


def test_bold_title_and_two_column_line():
    job = compile_markup("[C]<b>TEST</b>\n[L]Item A        [R]10.00")
    assert len(job) == 2

    title, item = job
    assert isinstance(title, AlignedText)
    assert (title.align, title.bold, title.content) == (Align.CENTER, True, "TEST")

    assert isinstance(item, AlignedText)
    assert (item.align, item.bold, item.content) == (Align.LEFT, False, "Item A        10.00")
    assert [c.align for c in item.columns] == [Align.LEFT, Align.RIGHT]
    assert item.columns[1].text == "10.00"


def test_cut_only_when_requested():
    assert not any(isinstance(d, Cut) for d in compile_markup("[L]hello"))
    assert compile_markup("[L]hello", cut=True)[-1] == Cut()


def test_unknown_tag_fails_the_whole_job():
    with pytest.raises(UnknownTag) as ei:
        compile_markup("[C]<b>ok</b>\n[L]hello <xyz>world</xyz>")
    assert ei.value.tag == "xyz"
    assert ei.value.kind == "unknown_tag"


def test_stray_closing_tag_is_unknown():
    with pytest.raises(UnknownTag) as ei:
        compile_markup("[L]hello</b>")
    assert ei.value.tag == "/b"


def test_unclosed_tags_are_unterminated():
    with pytest.raises(UnterminatedTag) as ei:
        compile_markup("[L]<b>bold to the end")
    assert ei.value.tag == "b"
    with pytest.raises(UnterminatedTag) as ei:
        compile_markup("[C]<qrcode>https://example.com")
    assert ei.value.tag == "qrcode"


def test_unknown_or_bad_attributes_are_rejected():
    with pytest.raises(UnknownTag):
        compile_markup("[C]<qrcode color='red'>x</qrcode>")
    with pytest.raises(UnknownTag):
        compile_markup("[C]<barcode height='tall'>5901234123457</barcode>")


def test_mixed_emphasis_keeps_runs():
    (line,) = compile_markup("[L]Total: <b>30.00</b>")
    assert line.bold is False
    assert line.columns[0].runs == (TextRun("Total: ", False), TextRun("30.00", True))


def test_rules_and_blank_lines():
    job = compile_markup("[L]one\n\n[L]-----\n=====\n[C]\n[L]--")
    assert job[1] == LineFeed()
    assert job[2] == Rule("-")
    assert job[3] == Rule("=")
    assert job[4] == LineFeed()
    assert isinstance(job[5], AlignedText) and job[5].content == "--"


def test_crlf_and_trailing_newline():
    job = compile_markup("[L]a\r\n[L]b\n")
    assert [d.content for d in job] == ["a", "b"]


def test_barcode_and_qr_elements():
    job = compile_markup(
        "[C]<barcode type='ean13' height='50'>5901234123457</barcode>\n"
        "[R]<barcode type=\"128\">ABC-1</barcode>\n"
        "[C]<qrcode>https://example.com</qrcode>\n"
        "[L]<qrcode size='9'>hi</qrcode>"
    )
    assert job[0] == Barcode("EAN13", "5901234123457", 50, Align.CENTER)
    assert job[1] == Barcode("CODE128", "ABC-1", 80, Align.RIGHT)
    assert job[2] == QrCode("https://example.com", 6, Align.CENTER)
    assert job[3] == QrCode("hi", 9, Align.LEFT)


def test_normalize_symbology():
    assert normalize_symbology(None) == "EAN13"
    assert normalize_symbology("ean-13") == "EAN13"
    assert normalize_symbology("code128") == "CODE128"
    assert normalize_symbology("upca") == "UPCA"


def test_img_by_handle_and_by_hex_payload():
    job = compile_markup("[C]<img>logo</img>", images={"logo": LOGO})
    assert job == (RasterImage(LOGO, Align.CENTER),)

    job = compile_markup(f"[R]<img>{raster_to_hex(LOGO)}</img>")
    assert job == (RasterImage(LOGO, Align.RIGHT),)


def test_missing_image_fails_unless_optional():
    with pytest.raises(InvalidImage):
        compile_markup("[C]<img>logo</img>", images={"logo": None})
    with pytest.raises(InvalidImage):
        compile_markup("[C]<img>not-hex</img>")

    job = compile_markup("[C]<img>logo</img>\n[C]hi", images={"logo": None}, image_optional=True)
    assert len(job) == 1
    assert job[0].content == "hi"


def test_element_and_text_on_one_line_keep_order():
    job = compile_markup("[C]Scan: <qrcode>x</qrcode> thanks")
    assert [type(d) for d in job] == [AlignedText, QrCode, AlignedText]
    assert job[0].content == "Scan: "
    assert job[2].content == " thanks"


@pytest.mark.parametrize("line", ["<b></b>", "[L]   [R]  ", "[C]<b> </b>"])
def test_lines_without_printable_text_feed_one_line(line):
    assert compile_markup(f"[C]top\n{line}\n[C]bottom")[1] == LineFeed()
