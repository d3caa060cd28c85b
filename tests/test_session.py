import threading

import pytest
from PIL import Image

from receipt_printer.core.config import PrinterSessionConfig
from receipt_printer.core.errors import (
    ConnectionLost,
    JobCancelled,
    JobInProgress,
    NotConnected,
    UnknownTag,
)
from receipt_printer.printing.connection import Idle
from receipt_printer.printing.encoder import encode
from receipt_printer.printing.markup import compile_markup
from receipt_printer.printing.session import CancelToken

MARKUP = "[C]<b>TEST</b>\n[L]Item A        [R]10.00"
CUT = b"\x1dV\x01"


def test_submit_writes_one_encoded_stream(session, factory):
    messages = []
    session.subscribe(messages.append)
    session.connect("tcp://printer:9100")

    written = session.submit(MARKUP)

    expected = encode(compile_markup(MARKUP), PrinterSessionConfig())
    assert factory.transport.writes == [expected]
    assert written == len(expected)
    assert session.last_message == "Print Success"
    assert session.last_error_kind is None
    assert messages == ["Connected to tcp://printer:9100", "Print Success"]


def test_errors_keep_their_kind(session, factory):
    with pytest.raises(NotConnected):
        session.submit(MARKUP)
    assert session.last_error_kind == "not_connected"
    assert session.last_message.startswith("Print Failed")

    session.connect("tcp://printer:9100")
    with pytest.raises(UnknownTag):
        session.submit("[L]<xyz>nope</xyz>")
    assert session.last_error_kind == "unknown_tag"
    assert factory.transport.writes == []


def test_concurrent_submit_is_rejected(session, factory):
    session.connect("tcp://printer:9100")
    transport = factory.transport
    transport.write_gate = threading.Event()
    results = []

    t = threading.Thread(target=lambda: results.append(session.submit(MARKUP)))
    t.start()
    assert transport.write_entered.wait(5)
    assert session.busy

    with pytest.raises(JobInProgress):
        session.submit("[L]second job")

    transport.write_gate.set()
    t.join(5)

    assert transport.writes == [encode(compile_markup(MARKUP), PrinterSessionConfig())]
    assert len(results) == 1
    assert not session.busy
    # the slot is free again
    session.submit("[L]third job")
    assert len(transport.writes) == 2


def test_disconnect_during_write_fails_with_connection_lost(session, factory):
    session.connect("tcp://printer:9100")
    transport = factory.transport
    transport.write_gate = threading.Event()
    transport.fail_write = OSError("socket closed")
    errors = []

    def _submit():
        try:
            session.submit(MARKUP)
        except Exception as e:
            errors.append(e)

    t = threading.Thread(target=_submit)
    t.start()
    assert transport.write_entered.wait(5)
    session.disconnect()
    transport.write_gate.set()
    t.join(5)

    assert len(errors) == 1 and isinstance(errors[0], ConnectionLost)
    assert session.last_error_kind == "connection_lost"
    assert session.state == Idle()


def test_disconnect_before_write_cancels_reserved_job(session, factory):
    session.connect("tcp://printer:9100")
    reservation = session.reserve()
    session.disconnect()

    with pytest.raises(ConnectionLost):
        session.submit(MARKUP, reservation=reservation)
    assert factory.transport.writes == []
    assert not session.busy


def test_caller_cancellation(session, factory):
    session.connect("tcp://printer:9100")
    token = CancelToken()
    token.cancel()
    with pytest.raises(JobCancelled):
        session.submit(MARKUP, cancel=token)
    assert factory.transport.writes == []
    session.submit(MARKUP)
    assert len(factory.transport.writes) == 1


def test_bitmap_source_prints_a_centered_raster(session, factory):
    session.connect("tcp://printer:9100")
    session.submit(Image.new("L", (384, 2), 0), cut=True)
    data = factory.transport.writes[0]
    assert data.startswith(b"\x1b@" + b"\x1ba\x00" + b"\x1dv0\x00\x30\x00\x02\x00" + b"\xff" * 96)
    assert data.endswith(CUT)


def test_images_are_resized_to_the_line_width(session, factory):
    session.connect("tcp://printer:9100")
    session.submit("[C]<img>logo</img>", images={"logo": Image.new("L", (800, 400), 0)})
    assert b"\x1dv0\x00\x30\x00\xc0\x00" in factory.transport.writes[0]


def test_product_receipt_without_image_still_prints(session, factory):
    session.connect("tcp://printer:9100")
    session.print_product_receipt("Widget", 9.99, image=None)
    data = factory.transport.writes[0]
    assert b"\x1dv0" not in data
    assert b"Widget" in data and b"$9.99" in data
    assert data.endswith(CUT)
    assert session.last_message == "Product receipt printed!"


def test_receipt_helpers(session, factory):
    session.connect("tcp://printer:9100")
    session.print_test_receipt()
    session.print_qr_code("https://example.com")
    session.print_barcode("5901234123457")
    session.print_large_bitmap(Image.new("L", (800, 400), 255))
    session.print_image(Image.new("RGB", (100, 50), "black"), caption="A caption")
    session.print_receipt_with_logo(Image.new("L", (200, 100), 0), [("Coffee", 3.5), ("Bagel", 2.25)], date="2024-01-01")

    writes = factory.transport.writes
    assert len(writes) == 6
    assert b"TEST RECEIPT" in writes[0]
    assert b"1P0https://example.com" in writes[1]
    assert b"5901234123457" in writes[2]
    assert b"Original: 800x400" in writes[3] and b"Printed: 384x192" in writes[3]
    assert b"A caption" in writes[4]
    assert b"Coffee" in writes[5] and b"$5.75" in writes[5]
    assert b"\x1dv0" in writes[5]
    assert session.last_message == "Receipt with logo printed!"


def test_describe_reports_state_and_last_message(session):
    session.connect("tcp://printer:9100")
    status = session.describe()
    assert status["state"] == "connected"
    assert status["address"] == "tcp://printer:9100"
    assert status["busy"] is False
    assert status["last_message"] == "Connected to tcp://printer:9100"
