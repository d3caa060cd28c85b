"""
Background workers and job state for Receipt Printer.

This module owns:
- A pool of job lanes (one queue and one thread each) for connect and print jobs;
  every job for a session goes to the same lane, so they run in submission order
- A control thread for disconnects, so a disconnect is never stuck behind the job it cancels
- An in-memory job registry with a basic lifecycle (queued -> running -> success/error)
- Public helpers to enqueue jobs and query their status

It is Flask-agnostic so it can be used from both the API and scripts. Failures
are recorded on the job with the error's `kind`; they are never raised out of
the worker threads.
"""

from __future__ import annotations

import logging
import queue
import threading
import uuid
import weakref
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from PIL import Image

from receipt_printer.core.config import env_int
from receipt_printer.core.errors import ImageUnavailable, PrintError

from .imagesource import load_bitmap
from .session import JobReservation, PrintSession

logger = logging.getLogger(__name__)

WORKER_COUNT = max(1, env_int("RECEIPTPRINTER_WORKERS", 2))
JOB_QUEUES: List["queue.Queue[Dict[str, Any]]"] = [queue.Queue() for _ in range(WORKER_COUNT)]
CONTROL_QUEUE: queue.Queue[Dict[str, Any]] = queue.Queue()
JOBS: Dict[str, Dict[str, Any]] = {}
JOBS_LOCK = threading.RLock()
JOBS_CHANGED = threading.Condition(JOBS_LOCK)
JOBS_MAX = env_int("RECEIPTPRINTER_JOBS_MAX", 200)

WORKER_THREADS: List[threading.Thread] = []
CONTROL_THREAD: Optional[threading.Thread] = None
WORKER_STARTED = False
_START_LOCK = threading.Lock()

SESSION_LANES: "weakref.WeakKeyDictionary[PrintSession, int]" = weakref.WeakKeyDictionary()
_LANE_LOCK = threading.Lock()
_next_lane = 0

TERMINAL_STATUSES = ("success", "error")


@dataclass(frozen=True)
class PrintRequest:
    """
    A print job as submitted by a caller.

    Exactly one of `markup` or `image` is expected. `image` and the values of
    `images` are references: an http(s) URL or base64 (optionally a data URL).
    `images` maps `<img>` handles in the markup to those references.
    """

    markup: Optional[str] = None
    image: Optional[str] = None
    images: Mapping[str, str] = field(default_factory=dict)
    image_optional: bool = False
    cut: bool = False

    def describe(self) -> Dict[str, Any]:
        return {
            "source": "markup" if self.markup is not None else "image",
            "image_count": len(self.images) + (1 if self.image else 0),
            "cut": self.cut,
        }


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _prune_jobs_if_needed() -> None:
    with JOBS_LOCK:
        while len(JOBS) > JOBS_MAX:
            oldest = min(JOBS.values(), key=lambda j: j.get("created_at", ""))
            JOBS.pop(oldest["id"], None)


def _create_job(kind: str, meta: Optional[Dict[str, Any]] = None) -> str:
    job_id = uuid.uuid4().hex
    now = _utc_now_iso()
    job = {
        "id": job_id,
        "type": kind,
        "status": "queued",
        "created_at": now,
        "updated_at": now,
    }
    if meta:
        job.update(meta)
    with JOBS_LOCK:
        JOBS[job_id] = job
        _prune_jobs_if_needed()
    return job_id


def _update_job(job_id: Optional[str], **updates: Any) -> None:
    if not job_id:
        return
    with JOBS_CHANGED:
        job = JOBS.get(job_id)
        if not job:
            return
        job.update(updates)
        job["updated_at"] = _utc_now_iso()
        JOBS_CHANGED.notify_all()


def _error_fields(error: Exception) -> Dict[str, Any]:
    kind = error.kind if isinstance(error, PrintError) else "internal_error"
    return {"status": "error", "error": str(error), "error_kind": kind}


def _load_images(refs: Mapping[str, str], image_optional: bool) -> Dict[str, Optional[Image.Image]]:
    loaded: Dict[str, Optional[Image.Image]] = {}
    for name, ref in refs.items():
        try:
            loaded[name] = load_bitmap(ref)
        except ImageUnavailable as e:
            if not image_optional:
                raise
            logger.warning("Optional image %r unavailable, printing without it: %s", name, e)
            loaded[name] = None
    return loaded


def _run_print(session: PrintSession, request: PrintRequest, reservation: JobReservation) -> int:
    try:
        if request.markup is not None:
            images = _load_images(request.images, request.image_optional)
            return session.submit(
                request.markup,
                images=images,
                image_optional=request.image_optional,
                cut=request.cut,
                reservation=reservation,
            )
        if not request.image:
            raise ImageUnavailable("print request has neither markup nor an image")
        bitmap = load_bitmap(request.image)
        return session.submit(bitmap, cut=request.cut, reservation=reservation)
    finally:
        reservation.release()


def _process(job: Dict[str, Any]) -> None:
    kind = job.get("type")
    job_id = job.get("job_id")
    session: PrintSession = job["session"]
    log_extra = {"job_id": job_id or "-"}
    _update_job(job_id, status="running")
    logger.info("Job %s (%s) running", job_id, kind, extra=log_extra)
    result: Dict[str, Any]
    try:
        if kind == "connect":
            session.connect(job["address"])
            result = {"status": "success", "state": session.state.name}
        elif kind == "disconnect":
            session.disconnect()
            result = {"status": "success", "state": session.state.name}
        elif kind == "print":
            result = {"status": "success", "bytes_written": _run_print(session, job["request"], job["reservation"])}
        else:
            logger.warning("Unknown job type: %s", kind, extra=log_extra)
            result = {"status": "error", "error": "unknown job type", "error_kind": "unknown_job_type"}
        if result["status"] == "success":
            logger.info("Job %s (%s) succeeded", job_id, kind, extra=log_extra)
    except PrintError as e:
        logger.warning("Job %s (%s) failed: %s", job_id, kind, e, extra=log_extra)
        result = _error_fields(e)
    except Exception as e:
        logger.exception("Job %s (%s) crashed", job_id, kind, extra=log_extra)
        result = _error_fields(e)
    _update_job(job_id, message=session.last_message, **result)


def _worker_loop(q: "queue.Queue[Dict[str, Any]]") -> None:
    """Never raises; failures end up on the job record."""
    while True:
        job = q.get()
        try:
            _process(job)
        finally:
            q.task_done()


def ensure_worker() -> None:
    """
    Ensure the worker pool and the control thread are started (idempotent).
    """
    global CONTROL_THREAD, WORKER_STARTED
    with _START_LOCK:
        for i, q in enumerate(JOB_QUEUES):
            if i < len(WORKER_THREADS) and WORKER_THREADS[i].is_alive():
                continue
            t = threading.Thread(target=_worker_loop, args=(q,), daemon=True, name=f"receipt-printer-worker-{i}")
            t.start()
            if i < len(WORKER_THREADS):
                WORKER_THREADS[i] = t
            else:
                WORKER_THREADS.append(t)
        if CONTROL_THREAD is None or not CONTROL_THREAD.is_alive():
            CONTROL_THREAD = threading.Thread(
                target=_worker_loop, args=(CONTROL_QUEUE,), daemon=True, name="receipt-printer-control"
            )
            CONTROL_THREAD.start()
        if not WORKER_STARTED:
            logger.info("Background print workers started (lanes=%d)", WORKER_COUNT)
        WORKER_STARTED = True


def _queue_for(session: PrintSession) -> "queue.Queue[Dict[str, Any]]":
    """The session's lane, assigned round-robin on first use."""
    global _next_lane
    with _LANE_LOCK:
        lane = SESSION_LANES.get(session)
        if lane is None:
            lane = _next_lane % WORKER_COUNT
            _next_lane += 1
            SESSION_LANES[session] = lane
    return JOB_QUEUES[lane]


def enqueue_connect(session: PrintSession, address: str) -> str:
    job_id = _create_job("connect", meta={"address": address})
    _queue_for(session).put({"type": "connect", "job_id": job_id, "session": session, "address": address})
    logger.info("enqueue_connect: created job id=%s address=%s", job_id, address)
    return job_id


def enqueue_disconnect(session: PrintSession) -> str:
    job_id = _create_job("disconnect")
    CONTROL_QUEUE.put({"type": "disconnect", "job_id": job_id, "session": session})
    logger.info("enqueue_disconnect: created job id=%s", job_id)
    return job_id


def enqueue_print(session: PrintSession, request: PrintRequest) -> str:
    """
    Enqueue a print job. Returns the job id.

    The session's in-flight slot is claimed here, before queueing.

    Raises:
        JobInProgress if the session already has a job queued or running.
    """
    reservation = session.reserve()
    job_id = _create_job("print", meta=request.describe())
    q = _queue_for(session)
    q.put(
        {"type": "print", "job_id": job_id, "session": session, "request": request, "reservation": reservation}
    )
    logger.info("enqueue_print: created job id=%s queue_size=%d", job_id, q.qsize())
    return job_id


def get_job(job_id: str) -> Optional[Dict[str, Any]]:
    with JOBS_LOCK:
        job = JOBS.get(job_id)
        return dict(job) if job else None


def wait_for_job(job_id: str, timeout: Optional[float] = None) -> Optional[Dict[str, Any]]:
    """
    Block until the job reaches success/error or `timeout` elapses.
    Returns the job record as last seen (None for unknown ids).
    """
    with JOBS_CHANGED:
        JOBS_CHANGED.wait_for(
            lambda: JOBS.get(job_id, {}).get("status", "error") in TERMINAL_STATUSES,
            timeout=timeout,
        )
        job = JOBS.get(job_id)
        return dict(job) if job else None


def list_jobs() -> List[Dict[str, Any]]:
    """
    Return a list of jobs sorted by created_at descending.
    """
    with JOBS_LOCK:
        items = [dict(v) for v in JOBS.values()]
    items.sort(key=lambda j: j.get("created_at", ""), reverse=True)
    return items


def worker_status() -> Dict[str, Any]:
    return {
        "worker_started": WORKER_STARTED,
        "workers_alive": sum(1 for t in WORKER_THREADS if t.is_alive()),
        "control_alive": bool(CONTROL_THREAD and CONTROL_THREAD.is_alive()),
        "queue_size": sum(q.qsize() for q in JOB_QUEUES),
    }


__all__ = [
    "CONTROL_QUEUE",
    "JOBS",
    "JOBS_MAX",
    "JOB_QUEUES",
    "PrintRequest",
    "enqueue_connect",
    "enqueue_disconnect",
    "enqueue_print",
    "ensure_worker",
    "get_job",
    "list_jobs",
    "wait_for_job",
    "worker_status",
]
