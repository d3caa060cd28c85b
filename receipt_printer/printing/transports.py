"""
Byte-stream transports for ESC/POS printers.

The printing core only needs `write(bytes)` and `close()`. This module provides
the concrete bindings and picks one from the printer address:

- "AA:BB:CC:DD:EE:FF" or "AA:BB:CC:DD:EE:FF/2"   Bluetooth RFCOMM socket (SPP)
- "/dev/rfcomm0", "COM5", "serial:/dev/ttyUSB0@19200"   Serial port (escpos Serial)
- "tcp://192.168.1.50:9100" or "192.168.1.50:9100"     Raw TCP (escpos Network)

Open failures raise DeviceUnreachable; an operation exceeding the timeout
raises Timeout; any other failure on an open transport raises IoError.
"""

from __future__ import annotations

import logging
import re
import socket
from dataclasses import dataclass
from typing import Any, Optional, Protocol

import serial
from escpos.exceptions import Error as EscposError
from escpos.printer import Network, Serial

from receipt_printer.core.errors import DeviceUnreachable, IoError, Timeout

logger = logging.getLogger(__name__)

CHUNK_SIZE = 512
DEFAULT_RFCOMM_CHANNEL = 1
DEFAULT_SERIAL_BAUDRATE = 9600
DEFAULT_TCP_PORT = 9100
MAX_RFCOMM_CHANNEL = 30
MAX_TCP_PORT = 65535
MAX_HOSTNAME_LEN = 253

_MAC_RE = re.compile(r"^((?:[0-9A-Fa-f]{2}:){5}[0-9A-Fa-f]{2})(?:/(\d{1,3}))?$")
_SERIAL_RE = re.compile(r"^serial:(?P<port>[^@]+)(?:@(?P<baud>\d{1,7}))?$")
_COM_RE = re.compile(r"^COM\d+$", re.IGNORECASE)
_TCP_RE = re.compile(r"^(?:tcp://)?(?P<host>[^:/\s\[\]]+)(?::(?P<port>\d{1,5}))?$")
_HOST_LABEL_RE = re.compile(r"^[A-Za-z0-9](?:[A-Za-z0-9-]{0,61}[A-Za-z0-9])?$")


class Transport(Protocol):
    def write(self, data: bytes) -> None: ...

    def close(self) -> None: ...


@dataclass(frozen=True)
class PrinterAddress:
    kind: str  # "rfcomm" | "serial" | "tcp"
    target: str
    option: int


def _valid_host(host: str) -> bool:
    if len(host) > MAX_HOSTNAME_LEN:
        return False
    return all(_HOST_LABEL_RE.match(label) for label in host.rstrip(".").split("."))


def parse_address(address: str) -> PrinterAddress:
    """
    Classify a printer address without opening anything.

    Raises:
        DeviceUnreachable for addresses that match no supported transport, or
        whose host, port, channel or baud rate is out of range.
    """
    addr = (address or "").strip()
    m = _MAC_RE.match(addr)
    if m:
        channel = int(m.group(2) or DEFAULT_RFCOMM_CHANNEL)
        if not 1 <= channel <= MAX_RFCOMM_CHANNEL:
            raise DeviceUnreachable(f"RFCOMM channel {channel} out of range 1-{MAX_RFCOMM_CHANNEL}")
        return PrinterAddress("rfcomm", m.group(1).upper(), channel)
    m = _SERIAL_RE.match(addr)
    if m:
        baud = int(m.group("baud") or DEFAULT_SERIAL_BAUDRATE)
        if baud <= 0:
            raise DeviceUnreachable(f"invalid baud rate {baud}")
        return PrinterAddress("serial", m.group("port"), baud)
    if addr.startswith("/dev/") or _COM_RE.match(addr):
        return PrinterAddress("serial", addr, DEFAULT_SERIAL_BAUDRATE)
    m = _TCP_RE.match(addr)
    if m and (addr.startswith("tcp://") or m.group("port")):
        host = m.group("host")
        port = int(m.group("port") or DEFAULT_TCP_PORT)
        if not _valid_host(host):
            raise DeviceUnreachable(f"invalid host name {host[:64]!r}")
        if not 1 <= port <= MAX_TCP_PORT:
            raise DeviceUnreachable(f"TCP port {port} out of range 1-{MAX_TCP_PORT}")
        return PrinterAddress("tcp", host, port)
    raise DeviceUnreachable(f"unsupported address {address!r}")


class EscposTransport:
    """
    Writes through an opened python-escpos printer (Network or Serial).

    Job bytes are already complete ESC/POS streams, so they are passed through
    unchanged in CHUNK_SIZE pieces.
    """

    def __init__(self, printer: Any, label: str, chunk_size: int = CHUNK_SIZE) -> None:
        self._printer = printer
        self.label = label
        self.chunk_size = chunk_size

    @classmethod
    def open_network(cls, host: str, port: int, timeout: Optional[float]) -> "EscposTransport":
        printer = Network(host, port=port, timeout=timeout)
        try:
            printer.open()
        except EscposError as e:
            if isinstance(e.__context__, socket.timeout):
                raise Timeout(f"connecting to {host}:{port} timed out") from e
            raise DeviceUnreachable(f"{host}:{port}: {e.__context__ or e}") from e
        return cls(printer, f"tcp://{host}:{port}")

    @classmethod
    def open_serial(cls, port: str, baudrate: int, timeout: Optional[float]) -> "EscposTransport":
        printer = Serial(devfile=port, baudrate=baudrate, timeout=timeout)
        try:
            printer.open()
        except EscposError as e:
            raise DeviceUnreachable(f"{port}: {e.__context__ or e}") from e
        # escpos opens the port without a write timeout
        printer.device.write_timeout = timeout
        return cls(printer, f"serial:{port}")

    def write(self, data: bytes) -> None:
        try:
            for start in range(0, len(data), self.chunk_size):
                self._printer._raw(data[start : start + self.chunk_size])
            flush = getattr(self._printer.device, "flush", None)
            if flush is not None:
                flush()
        except (socket.timeout, serial.SerialTimeoutException) as e:
            raise Timeout(f"write to {self.label} timed out") from e
        except (serial.SerialException, OSError) as e:
            raise IoError(f"write to {self.label} failed: {e}") from e

    def close(self) -> None:
        self._printer.close()


class SocketTransport:
    """Bluetooth RFCOMM stream socket (escpos has no Bluetooth printer class)."""

    def __init__(self, sock: socket.socket, label: str, chunk_size: int = CHUNK_SIZE) -> None:
        self._sock = sock
        self.label = label
        self.chunk_size = chunk_size

    @classmethod
    def open_rfcomm(cls, mac: str, channel: int, timeout: Optional[float]) -> "SocketTransport":
        family = getattr(socket, "AF_BLUETOOTH", None)
        proto = getattr(socket, "BTPROTO_RFCOMM", None)
        if family is None or proto is None:
            raise DeviceUnreachable("Bluetooth RFCOMM sockets are not available on this platform")
        sock = socket.socket(family, socket.SOCK_STREAM, proto)
        sock.settimeout(timeout)
        try:
            sock.connect((mac, channel))
        except socket.timeout as e:
            sock.close()
            raise Timeout(f"connecting to {mac} timed out") from e
        except OSError as e:
            sock.close()
            raise DeviceUnreachable(f"{mac}: {e}") from e
        return cls(sock, f"rfcomm://{mac}/{channel}")

    def write(self, data: bytes) -> None:
        view = memoryview(data)
        try:
            for start in range(0, len(view), self.chunk_size):
                self._sock.sendall(view[start : start + self.chunk_size])
        except socket.timeout as e:
            raise Timeout(f"write to {self.label} timed out") from e
        except OSError as e:
            raise IoError(f"write to {self.label} failed: {e}") from e

    def close(self) -> None:
        try:
            self._sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            # Peer already gone; closing the descriptor below is what matters
            pass
        self._sock.close()


def open_transport(address: str, timeout: Optional[float] = None) -> Transport:
    """
    Open the transport matching `address` (see module docstring for formats).
    """
    target = parse_address(address)
    logger.info("Opening %s transport to %s", target.kind, target.target)
    if target.kind == "rfcomm":
        return SocketTransport.open_rfcomm(target.target, target.option, timeout)
    if target.kind == "serial":
        return EscposTransport.open_serial(target.target, target.option, timeout)
    return EscposTransport.open_network(target.target, target.option, timeout)


__all__ = [
    "CHUNK_SIZE",
    "EscposTransport",
    "PrinterAddress",
    "SocketTransport",
    "Transport",
    "open_transport",
    "parse_address",
]
