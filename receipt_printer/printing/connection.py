"""
Printer connection lifecycle.

The ConnectionManager exclusively owns the transport to one printer and its
state machine:

    Idle --connect--> Connecting --ok--> Connected
                      Connecting --error--> Failed(reason)
    Connected --disconnect / write failure--> Idle
    Connected --write timeout--> Failed("timeout")
    Failed --disconnect--> Idle, Failed --connect--> Connecting

Listeners registered with subscribe() are called on every transition, from the
thread that caused it and outside the manager's lock.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Callable, ClassVar, List, Optional

from receipt_printer.core.config import get_io_timeout
from receipt_printer.core.errors import (
    AlreadyConnected,
    AlreadyConnecting,
    ConnectError,
    ConnectionLost,
    DeviceUnreachable,
    DisconnectError,
    IoError,
    NotConnected,
    Timeout,
)

from .transports import Transport, open_transport

logger = logging.getLogger(__name__)


class ConnectionState:
    name: ClassVar[str] = "unknown"

    def to_dict(self) -> dict:
        return {"state": self.name, "reason": getattr(self, "reason", None)}


@dataclass(frozen=True)
class Idle(ConnectionState):
    name: ClassVar[str] = "idle"


@dataclass(frozen=True)
class Connecting(ConnectionState):
    name: ClassVar[str] = "connecting"


@dataclass(frozen=True)
class Connected(ConnectionState):
    name: ClassVar[str] = "connected"


@dataclass(frozen=True)
class Failed(ConnectionState):
    reason: str
    name: ClassVar[str] = "failed"


StateListener = Callable[[ConnectionState], None]
TransportFactory = Callable[[str, Optional[float]], Transport]


class ConnectionManager:
    def __init__(
        self,
        transport_factory: TransportFactory = open_transport,
        io_timeout: Optional[float] = None,
    ) -> None:
        self._factory = transport_factory
        self.io_timeout = get_io_timeout() if io_timeout is None else io_timeout
        self._lock = threading.RLock()
        self._write_lock = threading.Lock()
        self._state: ConnectionState = Idle()
        self._transport: Optional[Transport] = None
        self._address: Optional[str] = None
        # Bumped whenever the transport is released, so a write can tell it lost its connection
        self._generation = 0
        self._listeners: List[StateListener] = []

    @property
    def state(self) -> ConnectionState:
        with self._lock:
            return self._state

    @property
    def address(self) -> Optional[str]:
        with self._lock:
            return self._address

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        """Register a state listener; returns a callable that unregisters it."""
        with self._lock:
            self._listeners.append(listener)

        def _unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return _unsubscribe

    def _notify(self, state: ConnectionState) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(state)
            except Exception:
                logger.exception("Connection state listener failed")

    def connect(self, address: str) -> None:
        """
        Open a transport to `address` and move to Connected.

        Raises:
            AlreadyConnecting / AlreadyConnected without changing state.
            DeviceUnreachable or Timeout after moving to Failed; any other
            error from the transport factory is reported as DeviceUnreachable.
        """
        with self._lock:
            if isinstance(self._state, Connecting):
                raise AlreadyConnecting(f"already connecting to {self._address}")
            if isinstance(self._state, Connected):
                raise AlreadyConnected(f"already connected to {self._address}")
            self._state = Connecting()
            self._address = address
        logger.info("Connecting to printer %s", address)
        self._notify(Connecting())

        try:
            transport = self._factory(address, self.io_timeout)
        except Timeout:
            self._finish_connect(Failed("timeout"))
            raise
        except DeviceUnreachable as e:
            self._finish_connect(Failed(e.reason))
            raise
        except ConnectError as e:
            self._finish_connect(Failed(str(e)))
            raise
        except Exception as e:
            # Anything else from the factory still has to leave Connecting
            reason = str(e) or type(e).__name__
            if not isinstance(e, OSError):
                logger.exception("Unexpected error opening transport to %s", address)
            self._finish_connect(Failed(reason))
            raise DeviceUnreachable(reason) from e

        with self._lock:
            self._transport = transport
        self._finish_connect(Connected())
        logger.info("Connected to printer %s", address)

    def _finish_connect(self, state: ConnectionState) -> None:
        with self._lock:
            self._state = state
        if isinstance(state, Failed):
            logger.warning("Connection to %s failed: %s", self._address, state.reason)
        self._notify(state)

    def disconnect(self) -> None:
        """
        Release the transport and return to Idle.

        Close failures are logged and otherwise ignored: the manager always ends
        up Idle. Disconnecting while Idle is a no-op.

        Raises:
            DisconnectError if a connect() is still in progress.
        """
        with self._lock:
            if isinstance(self._state, Connecting):
                raise DisconnectError("cannot disconnect while a connection attempt is in progress")
            if isinstance(self._state, Idle):
                return
            transport, self._transport = self._transport, None
            self._state = Idle()
            self._generation += 1
            address = self._address
        self._close_quietly(transport)
        logger.info("Disconnected from printer %s", address)
        self._notify(Idle())

    def _close_quietly(self, transport: Optional[Transport]) -> None:
        if transport is None:
            return
        try:
            transport.close()
        except Exception as e:
            logger.warning("Closing printer transport failed (ignored): %s", e)

    def _drop(self, generation: int, state: ConnectionState) -> None:
        with self._lock:
            if generation != self._generation:
                return
            transport, self._transport = self._transport, None
            self._state = state
            self._generation += 1
        self._close_quietly(transport)
        self._notify(state)

    def write_bytes(self, buf: bytes) -> None:
        """
        Write `buf` to the printer. Writes from different threads never interleave.

        Raises:
            NotConnected if not Connected (no I/O is attempted).
            Timeout after moving to Failed("timeout").
            ConnectionLost if the connection was released while writing.
            IoError after moving to Idle.
        """
        with self._lock:
            if not isinstance(self._state, Connected) or self._transport is None:
                raise NotConnected(f"printer is {self._state.name}")
            transport = self._transport
            generation = self._generation

        with self._write_lock:
            try:
                transport.write(buf)
            except (IoError, OSError) as e:
                with self._lock:
                    lost = generation != self._generation
                if lost:
                    raise ConnectionLost("connection was closed during the write") from e
                if isinstance(e, Timeout):
                    logger.warning("Write to printer %s timed out", self._address)
                    self._drop(generation, Failed("timeout"))
                    raise
                logger.warning("Write to printer %s failed: %s", self._address, e)
                self._drop(generation, Idle())
                if isinstance(e, IoError):
                    raise
                raise IoError(str(e)) from e


__all__ = [
    "Connected",
    "Connecting",
    "ConnectionManager",
    "ConnectionState",
    "Failed",
    "Idle",
]
