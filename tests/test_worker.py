import threading

import pytest
from PIL import Image

from receipt_printer.core.errors import ImageUnavailable, JobInProgress
from receipt_printer.printing import worker
from receipt_printer.printing.worker import PrintRequest


@pytest.fixture
def running_worker():
    worker.ensure_worker()
    return worker


def _finish(job_id):
    job = worker.wait_for_job(job_id, timeout=5)
    assert job is not None
    assert job["status"] in ("success", "error"), job
    return job


def test_connect_then_print(running_worker, session, factory):
    job = _finish(worker.enqueue_connect(session, "tcp://printer:9100"))
    assert job["status"] == "success"
    assert job["state"] == "connected"
    assert job["message"] == "Connected to tcp://printer:9100"

    job = _finish(worker.enqueue_print(session, PrintRequest(markup="[C]<b>Hello</b>", cut=True)))
    assert job["status"] == "success", job
    assert job["type"] == "print"
    assert job["bytes_written"] == len(factory.transport.writes[0])
    assert factory.transport.writes[0].endswith(b"\x1dV\x01")


def test_failed_job_records_error_kind(running_worker, session):
    job = _finish(worker.enqueue_print(session, PrintRequest(markup="[L]hi")))
    assert job["status"] == "error"
    assert job["error_kind"] == "not_connected"

    session.connect("tcp://printer:9100")
    job = _finish(worker.enqueue_print(session, PrintRequest(markup="[L]<xyz>x</xyz>")))
    assert job["error_kind"] == "unknown_tag"
    assert not session.busy


def test_print_claims_the_slot_at_enqueue(session):
    reservation = session.reserve()
    try:
        with pytest.raises(JobInProgress):
            worker.enqueue_print(session, PrintRequest(markup="[L]hi"))
    finally:
        reservation.release()


def test_image_urls_are_loaded_in_the_worker(running_worker, session, factory, monkeypatch):
    loaded = []

    def _load(ref, timeout=None):
        loaded.append(ref)
        if "missing" in ref:
            raise ImageUnavailable(f"404 for {ref}")
        return Image.new("L", (100, 40), 0)

    monkeypatch.setattr(worker, "load_bitmap", _load)
    session.connect("tcp://printer:9100")

    job = _finish(
        worker.enqueue_print(
            session,
            PrintRequest(markup="[C]<img>logo</img>", images={"logo": "https://example.com/logo.png"}),
        )
    )
    assert job["status"] == "success", job
    assert b"\x1dv0" in factory.transport.writes[-1]

    job = _finish(
        worker.enqueue_print(
            session,
            PrintRequest(markup="[C]<img>pic</img>\n[C]caption", images={"pic": "https://example.com/missing.png"}),
        )
    )
    assert job["error_kind"] == "image_unavailable"

    job = _finish(
        worker.enqueue_print(
            session,
            PrintRequest(
                markup="[C]<img>pic</img>\n[C]caption",
                images={"pic": "https://example.com/missing.png"},
                image_optional=True,
            ),
        )
    )
    assert job["status"] == "success", job
    assert b"caption" in factory.transport.writes[-1]

    job = _finish(worker.enqueue_print(session, PrintRequest(image="https://example.com/photo.jpg")))
    assert job["status"] == "success", job
    assert loaded[-1] == "https://example.com/photo.jpg"


def test_disconnect_job(running_worker, session):
    session.connect("tcp://printer:9100")
    job = _finish(worker.enqueue_disconnect(session))
    assert job["status"] == "success"
    assert job["state"] == "idle"


def test_registry_is_bounded(monkeypatch):
    monkeypatch.setattr(worker, "JOBS", {})
    monkeypatch.setattr(worker, "JOBS_MAX", 2)
    ids = [worker._create_job("connect") for _ in range(3)]
    assert len(worker.JOBS) == 2
    assert ids[-1] in worker.JOBS
    assert worker.get_job("nope") is None
    assert [j["id"] for j in worker.list_jobs()][0] in ids


def test_worker_status_shape(running_worker):
    status = worker.worker_status()
    assert status["worker_started"] is True
    assert status["workers_alive"] >= 1
    assert status["control_alive"] is True
    assert "queue_size" in status


def test_print_queued_behind_connect_runs_after_it(running_worker, session, factory):
    factory.gate = threading.Event()
    connect_id = worker.enqueue_connect(session, "tcp://printer:9100")
    assert factory.entered.wait(5)

    print_id = worker.enqueue_print(session, PrintRequest(markup="[C]hello"))
    assert worker.get_job(print_id)["status"] == "queued"

    factory.gate.set()
    assert _finish(connect_id)["status"] == "success"
    job = _finish(print_id)
    assert job["status"] == "success", job
    assert b"hello" in factory.transport.writes[0]


def test_a_session_keeps_its_lane(session, manager):
    from receipt_printer.printing.session import PrintSession

    lane = worker._queue_for(session)
    assert worker._queue_for(session) is lane
    other = PrintSession(session.config, manager)
    assert worker._queue_for(other) in worker.JOB_QUEUES
