# Ensure the repository root is on sys.path so `receipt_printer` can be imported in tests.

import sys
import threading
from pathlib import Path
from typing import List, Optional

import pytest


def _ensure_repo_root_on_syspath() -> None:
    # This file lives at: <repo_root>/tests/conftest.py
    # We want to add <repo_root> to sys.path (if not already present).
    here = Path(__file__).resolve()
    repo_root = here.parent.parent
    repo_str = str(repo_root)
    if repo_str not in sys.path:
        sys.path.insert(0, repo_str)


_ensure_repo_root_on_syspath()

from receipt_printer.core.config import PrinterSessionConfig  # noqa: E402
from receipt_printer.printing.connection import ConnectionManager  # noqa: E402
from receipt_printer.printing.session import PrintSession  # noqa: E402


class FakeTransport:
    """Captures written bytes; can block inside write() and fail on demand."""

    def __init__(self) -> None:
        self.writes: List[bytes] = []
        self.closed = False
        self.fail_write: Optional[BaseException] = None
        self.fail_close: Optional[BaseException] = None
        self.write_entered = threading.Event()
        self.write_gate: Optional[threading.Event] = None

    def write(self, data: bytes) -> None:
        self.write_entered.set()
        if self.write_gate is not None:
            assert self.write_gate.wait(5), "write gate never opened"
        if self.fail_write is not None:
            raise self.fail_write
        self.writes.append(bytes(data))

    def close(self) -> None:
        self.closed = True
        if self.fail_close is not None:
            raise self.fail_close


class FakeFactory:
    """Transport factory recording calls; optionally blocks or raises while opening."""

    def __init__(self) -> None:
        self.calls: List[str] = []
        self.transports: List[FakeTransport] = []
        self.error: Optional[BaseException] = None
        self.entered = threading.Event()
        self.gate: Optional[threading.Event] = None

    def __call__(self, address: str, timeout: Optional[float] = None) -> FakeTransport:
        self.calls.append(address)
        self.entered.set()
        if self.gate is not None:
            assert self.gate.wait(5), "factory gate never opened"
        if self.error is not None:
            raise self.error
        t = FakeTransport()
        self.transports.append(t)
        return t

    @property
    def transport(self) -> FakeTransport:
        return self.transports[-1]


@pytest.fixture(autouse=True)
def _isolated_config(tmp_path, monkeypatch):
    monkeypatch.setenv("RECEIPTPRINTER_CONFIG_PATH", str(tmp_path / "config.json"))


@pytest.fixture
def factory() -> FakeFactory:
    return FakeFactory()


@pytest.fixture
def manager(factory) -> ConnectionManager:
    return ConnectionManager(factory, io_timeout=1.0)


@pytest.fixture
def session(manager) -> PrintSession:
    return PrintSession(PrinterSessionConfig(), manager)
