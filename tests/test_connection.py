import threading

import pytest

from receipt_printer.core.errors import (
    AlreadyConnected,
    AlreadyConnecting,
    ConnectionLost,
    DeviceUnreachable,
    DisconnectError,
    IoError,
    NotConnected,
    Timeout,
)
from receipt_printer.printing.connection import Connected, Connecting, Failed, Idle


def _record(manager):
    seen = []
    manager.subscribe(seen.append)
    return seen


def test_connect_and_write(manager, factory):
    seen = _record(manager)
    manager.connect("tcp://printer:9100")

    assert manager.state == Connected()
    assert manager.address == "tcp://printer:9100"
    assert seen == [Connecting(), Connected()]

    manager.write_bytes(b"\x1b@hello")
    assert factory.transport.writes == [b"\x1b@hello"]


def test_connect_twice_is_rejected(manager, factory):
    manager.connect("tcp://printer:9100")
    with pytest.raises(AlreadyConnected):
        manager.connect("tcp://other:9100")
    assert manager.state == Connected()
    assert factory.calls == ["tcp://printer:9100"]


def test_connect_while_connecting_is_rejected(manager, factory):
    factory.gate = threading.Event()
    t = threading.Thread(target=manager.connect, args=("tcp://printer:9100",))
    t.start()
    assert factory.entered.wait(5)

    with pytest.raises(AlreadyConnecting):
        manager.connect("tcp://printer:9100")
    assert manager.state == Connecting()

    with pytest.raises(DisconnectError):
        manager.disconnect()

    factory.gate.set()
    t.join(5)
    assert manager.state == Connected()
    assert len(factory.calls) == 1


def test_write_when_not_connected_does_no_io(manager, factory):
    with pytest.raises(NotConnected):
        manager.write_bytes(b"data")
    assert factory.calls == []
    assert manager.state == Idle()


def test_connect_failure_moves_to_failed_and_can_retry(manager, factory):
    factory.error = DeviceUnreachable("no route to host")
    with pytest.raises(DeviceUnreachable):
        manager.connect("tcp://printer:9100")
    assert manager.state == Failed("no route to host")

    factory.error = None
    manager.connect("tcp://printer:9100")
    assert manager.state == Connected()


def test_raw_os_error_on_connect_becomes_device_unreachable(manager, factory):
    factory.error = ConnectionRefusedError("refused")
    with pytest.raises(DeviceUnreachable):
        manager.connect("tcp://printer:9100")
    assert isinstance(manager.state, Failed)


def test_connect_timeout(manager, factory):
    factory.error = Timeout("slow")
    with pytest.raises(Timeout):
        manager.connect("tcp://printer:9100")
    assert manager.state == Failed("timeout")


def test_disconnect_always_ends_idle(manager, factory):
    manager.disconnect()
    assert manager.state == Idle()

    manager.connect("tcp://printer:9100")
    factory.transport.fail_close = OSError("already closed")
    manager.disconnect()
    assert manager.state == Idle()
    assert factory.transport.closed

    with pytest.raises(NotConnected):
        manager.write_bytes(b"x")


def test_write_timeout_moves_to_failed(manager, factory):
    manager.connect("tcp://printer:9100")
    factory.transport.fail_write = Timeout("write timed out")
    with pytest.raises(Timeout):
        manager.write_bytes(b"x")
    assert manager.state == Failed("timeout")
    assert factory.transport.closed


def test_write_failure_moves_to_idle(manager, factory):
    manager.connect("tcp://printer:9100")
    factory.transport.fail_write = BrokenPipeError("peer went away")
    with pytest.raises(IoError):
        manager.write_bytes(b"x")
    assert manager.state == Idle()


def test_disconnect_during_write_is_connection_lost(manager, factory):
    manager.connect("tcp://printer:9100")
    transport = factory.transport
    transport.write_gate = threading.Event()
    transport.fail_write = OSError("socket closed")
    errors = []

    def _write():
        try:
            manager.write_bytes(b"payload")
        except Exception as e:
            errors.append(e)

    t = threading.Thread(target=_write)
    t.start()
    assert transport.write_entered.wait(5)
    manager.disconnect()
    transport.write_gate.set()
    t.join(5)

    assert len(errors) == 1 and isinstance(errors[0], ConnectionLost)
    assert manager.state == Idle()


def test_failing_listener_does_not_break_transitions(manager):
    def _boom(state):
        raise RuntimeError("listener bug")

    manager.subscribe(_boom)
    manager.connect("tcp://printer:9100")
    assert manager.state == Connected()


def test_unsubscribe(manager):
    seen = []
    unsubscribe = manager.subscribe(seen.append)
    unsubscribe()
    manager.connect("tcp://printer:9100")
    assert seen == []


@pytest.mark.parametrize("error", [OverflowError("port out of range"), UnicodeError("label too long"), RuntimeError()])
def test_unexpected_factory_error_still_ends_failed(manager, factory, error):
    factory.error = error
    with pytest.raises(DeviceUnreachable):
        manager.connect("tcp://printer:9100")
    assert isinstance(manager.state, Failed)
    assert manager.state.reason

    factory.error = None
    manager.connect("tcp://printer:9100")
    assert manager.state == Connected()


def test_bad_address_with_real_factory_ends_failed():
    from receipt_printer.printing.connection import ConnectionManager
    from receipt_printer.printing.transports import open_transport

    manager = ConnectionManager(open_transport, io_timeout=0.1)
    for address in ("tcp://127.0.0.1:99999999999999999999", "tcp://" + "a" * 300 + ":9100"):
        with pytest.raises(DeviceUnreachable):
            manager.connect(address)
        assert isinstance(manager.state, Failed)
    manager.disconnect()
    assert manager.state == Idle()
