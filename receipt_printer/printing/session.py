"""
Print job orchestration for one printer session.

A PrintSession owns the printer's ConnectionManager and runs each job through
the pipeline:

    resolve images -> compile markup -> encode ESC/POS -> one write_bytes call

Only one job may be in flight per session. ESC/POS is a stateful stream, so a
second job is refused with JobInProgress instead of being interleaved on the
wire. Disconnecting while a job is in flight fails that job with ConnectionLost.

The session is also the single place where failures become user-facing status:
`last_message` / `last_error_kind` and the message listeners. Errors keep their
original type when re-raised.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Mapping, Sequence
from typing import Callable, Dict, List, Optional, Tuple, Union

from PIL import Image

from receipt_printer.core.config import PrinterSessionConfig
from receipt_printer.core.errors import (
    ConnectionLost,
    InvalidImage,
    JobCancelled,
    JobInProgress,
    NotConnected,
    PrintError,
)

from . import receipts
from .connection import ConnectionManager, ConnectionState, Failed, Idle, TransportFactory
from .directives import Align, Cut, PrintJob, RasterImage
from .encoder import encode
from .images import Bitmap, RasterBitmap, resize_to_width, target_size
from .markup import compile_markup
from .transports import open_transport

logger = logging.getLogger(__name__)

PrintSource = Union[str, Image.Image, RasterBitmap]
ImageInputs = Mapping[str, Optional[Bitmap]]
MessageListener = Callable[[str], None]


class CancelToken:
    """
    Cooperative cancellation for a single job.

    The job checks the token between stages; cancel() records the error the job
    should fail with.
    """

    def __init__(self) -> None:
        self._event = threading.Event()
        self._error: Optional[PrintError] = None

    def cancel(self, error: Optional[PrintError] = None) -> None:
        if not self._event.is_set():
            self._error = error or JobCancelled("job was cancelled")
            self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def error(self) -> Optional[PrintError]:
        return self._error

    def raise_if_cancelled(self) -> None:
        if self._event.is_set() and self._error is not None:
            raise self._error


class JobReservation:
    """The session's single in-flight slot, held from reservation until release()."""

    def __init__(self, session: "PrintSession", token: CancelToken) -> None:
        self._session = session
        self.token = token
        self._released = False
        self._release_lock = threading.Lock()

    def release(self) -> None:
        with self._release_lock:
            if self._released:
                return
            self._released = True
        self._session._release(self)


class PrintSession:
    def __init__(
        self,
        config: Optional[PrinterSessionConfig] = None,
        connection: Optional[ConnectionManager] = None,
        *,
        transport_factory: Optional[TransportFactory] = None,
        io_timeout: Optional[float] = None,
    ) -> None:
        self.config = config or PrinterSessionConfig()
        self.connection = connection or ConnectionManager(transport_factory or open_transport, io_timeout)
        self._job_lock = threading.Lock()
        self._lock = threading.Lock()
        self._active: Optional[JobReservation] = None
        self._last_message: Optional[str] = None
        self._last_error_kind: Optional[str] = None
        self._listeners: List[MessageListener] = []
        self.connection.subscribe(self._on_state_change)

    # Observable status

    @property
    def state(self) -> ConnectionState:
        return self.connection.state

    @property
    def last_message(self) -> Optional[str]:
        with self._lock:
            return self._last_message

    @property
    def last_error_kind(self) -> Optional[str]:
        with self._lock:
            return self._last_error_kind

    @property
    def busy(self) -> bool:
        with self._lock:
            return self._active is not None

    def subscribe(self, listener: MessageListener) -> None:
        with self._lock:
            self._listeners.append(listener)

    def describe(self) -> Dict[str, object]:
        status: Dict[str, object] = dict(self.state.to_dict())
        status.update(
            {
                "address": self.connection.address,
                "busy": self.busy,
                "last_message": self.last_message,
                "last_error_kind": self.last_error_kind,
            }
        )
        return status

    def _publish(self, message: str, error: Optional[PrintError] = None) -> None:
        with self._lock:
            self._last_message = message
            self._last_error_kind = error.kind if error is not None else None
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(message)
            except Exception:
                logger.exception("Status listener failed")

    def _on_state_change(self, state: ConnectionState) -> None:
        if not isinstance(state, (Idle, Failed)):
            return
        with self._lock:
            active = self._active
        if active is not None:
            logger.warning("Printer connection ended while a job was in flight; cancelling it")
            active.token.cancel(ConnectionLost("printer disconnected while the job was in flight"))

    # Connection

    def connect(self, address: str) -> None:
        try:
            self.connection.connect(address)
        except PrintError as e:
            self._publish(f"Connection failed: {e}", e)
            raise
        self._publish(f"Connected to {address}")

    def disconnect(self) -> None:
        try:
            self.connection.disconnect()
        except PrintError as e:
            self._publish(f"Error disconnecting: {e}", e)
            raise
        self._publish("Disconnected")

    # Jobs

    def reserve(self, cancel: Optional[CancelToken] = None) -> JobReservation:
        """
        Claim the in-flight slot without blocking.

        Raises:
            JobInProgress if another job holds the slot.
        """
        if not self._job_lock.acquire(blocking=False):
            raise JobInProgress("another print job is in progress on this printer")
        reservation = JobReservation(self, cancel or CancelToken())
        with self._lock:
            self._active = reservation
        return reservation

    def _release(self, reservation: JobReservation) -> None:
        with self._lock:
            if self._active is reservation:
                self._active = None
        self._job_lock.release()

    def resolve_images(self, images: Optional[ImageInputs], image_optional: bool = False) -> Dict[str, Optional[RasterBitmap]]:
        """
        Rasterize caller-supplied images to the session's line width.

        Missing (None) or broken images stay None when image_optional is set, so
        the compiler drops them; otherwise the InvalidImage propagates.
        """
        resolved: Dict[str, Optional[RasterBitmap]] = {}
        for name, bitmap in (images or {}).items():
            if bitmap is None:
                if not image_optional:
                    raise InvalidImage(f"image {name!r} is unavailable")
                resolved[name] = None
                continue
            try:
                resolved[name] = resize_to_width(bitmap, self.config.dots_per_line)
            except InvalidImage as e:
                if not image_optional:
                    raise
                logger.warning("Dropping optional image %r: %s", name, e)
                resolved[name] = None
        return resolved

    def build_job(
        self,
        source: PrintSource,
        *,
        images: Optional[ImageInputs] = None,
        image_optional: bool = False,
        cut: bool = False,
    ) -> PrintJob:
        if isinstance(source, str):
            rasters = self.resolve_images(images, image_optional)
            return compile_markup(source, images=rasters, image_optional=image_optional, cut=cut)
        if isinstance(source, (Image.Image, RasterBitmap)):
            raster = resize_to_width(source, self.config.dots_per_line)
            job: Tuple = (RasterImage(raster, Align.CENTER),)
            return job + (Cut(),) if cut else job
        raise InvalidImage(f"unsupported print source: {type(source).__name__}")

    def render(self, source: PrintSource, **kwargs) -> bytes:
        """Compile and encode without touching the connection."""
        return encode(self.build_job(source, **kwargs), self.config)

    def submit(
        self,
        source: PrintSource,
        *,
        images: Optional[ImageInputs] = None,
        image_optional: bool = False,
        cut: bool = False,
        cancel: Optional[CancelToken] = None,
        reservation: Optional[JobReservation] = None,
        success_message: str = "Print Success",
    ) -> int:
        """
        Print `source` (markup text, a Pillow image or a RasterBitmap).

        Returns the number of bytes written.

        Raises:
            JobInProgress if another job is in flight (nothing is written).
            ConnectionLost if the printer was disconnected during the job.
            Any other PrintError from the stage that failed; later stages are skipped.
        """
        held = reservation or self.reserve(cancel)
        try:
            data = self.render(source, images=images, image_optional=image_optional, cut=cut)
            held.token.raise_if_cancelled()
            try:
                self.connection.write_bytes(data)
            except NotConnected as e:
                if held.token.cancelled and held.token.error is not None:
                    raise held.token.error from e
                raise
        except PrintError as e:
            logger.warning("Print job failed (%s): %s", e.kind, e)
            self._publish(f"Print Failed: {e}", e)
            raise
        finally:
            held.release()
        logger.info("Print job written (%d bytes)", len(data))
        self._publish(success_message)
        return len(data)

    # Receipts

    def print_test_receipt(self) -> int:
        return self.submit(receipts.demo_receipt())

    def print_receipt_with_logo(
        self,
        logo: Optional[Bitmap],
        items: Sequence[Tuple[str, float]],
        **fields,
    ) -> int:
        markup = receipts.store_receipt(items, logo="logo" if logo is not None else None, **fields)
        images = {"logo": logo} if logo is not None else None
        return self.submit(markup, images=images, cut=True, success_message="Receipt with logo printed!")

    def print_image(self, bitmap: Bitmap, title: str = "Image from URL", caption: Optional[str] = None) -> int:
        markup = receipts.image_receipt("image", title=title, caption=caption)
        return self.submit(markup, images={"image": bitmap}, cut=True, success_message="Image printed successfully!")

    def print_large_bitmap(self, bitmap: Bitmap) -> int:
        if isinstance(bitmap, RasterBitmap):
            original = (bitmap.width, bitmap.height)
        else:
            original = bitmap.size
        printed = target_size(original[0], original[1], self.config.dots_per_line)
        logger.info("Large image %dx%d will print at %dx%d", original[0], original[1], printed[0], printed[1])
        markup = receipts.large_image_receipt("image", original, printed)
        return self.submit(markup, images={"image": bitmap}, cut=True, success_message="Large image printed!")

    def print_product_receipt(self, name: str, price: float, image: Optional[Bitmap] = None) -> int:
        """Product card; a missing or broken product image is left out rather than failing the job."""
        markup = receipts.product_receipt(name, price, image="product")
        return self.submit(
            markup,
            images={"product": image},
            image_optional=True,
            cut=True,
            success_message="Product receipt printed!",
        )

    def print_qr_code(self, data: str = "https://example.com", size: int = 8) -> int:
        return self.submit(receipts.qr_receipt(data, size), cut=True, success_message="QR Code printed!")

    def print_barcode(self, data: str = "1234567890128", symbology: str = "ean13", height: int = 50) -> int:
        return self.submit(
            receipts.barcode_receipt(data, symbology, height),
            cut=True,
            success_message="Barcode printed!",
        )


__all__ = ["CancelToken", "JobReservation", "PrintSession", "PrintSource"]
