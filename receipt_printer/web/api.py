from __future__ import annotations

"""
JSON API (v1) for Receipt Printer.

Endpoints:
- GET    /api/v1/connection     : Session state, reason and last status message
- POST   /api/v1/connection     : Connect to {"address": ...} (async). Returns 202 + Location
- DELETE /api/v1/connection     : Disconnect; cancels an in-flight print job
- POST   /api/v1/jobs           : Submit a print job (async). Returns 202 + Location
- GET    /api/v1/jobs           : Recent jobs, newest first
- GET    /api/v1/jobs/<job_id>  : Fetch job status

Errors are returned as {"error": str, "kind": str}.
"""

from typing import Dict

from flask import Blueprint, current_app, jsonify, request, url_for
from pydantic import ValidationError

from receipt_printer.core.config import env_float, env_int
from receipt_printer.core.errors import (
    AlreadyConnected,
    AlreadyConnecting,
    DisconnectError,
    JobInProgress,
    NotConnected,
    PrintError,
)
from receipt_printer.printing.connection import Connected, Connecting
from receipt_printer.printing.session import PrintSession
from receipt_printer.printing.worker import (
    enqueue_connect,
    enqueue_disconnect,
    enqueue_print,
    get_job,
    list_jobs,
    wait_for_job,
    worker_status,
)

from . import schemas

api_bp = Blueprint("api", __name__, url_prefix="/api/v1")

MAX_MARKUP_LEN = env_int("RECEIPTPRINTER_MAX_MARKUP_LEN", 8000)
MAX_IMAGES = env_int("RECEIPTPRINTER_MAX_IMAGES", 8)
DISCONNECT_WAIT_SECONDS = env_float("RECEIPTPRINTER_DISCONNECT_WAIT", 15.0)

CONFLICT_ERRORS = (JobInProgress, AlreadyConnecting, AlreadyConnected, NotConnected, DisconnectError)


def _json_error(msg: str, code: int = 400, kind: str = "bad_request"):
    return jsonify({"error": msg, "kind": kind}), code


def _print_error(e: PrintError):
    code = 409 if isinstance(e, CONFLICT_ERRORS) else 400
    return jsonify(e.to_dict()), code


def _session() -> PrintSession:
    return current_app.extensions["receipt_printer"]


def _workers_ready() -> bool:
    status = worker_status()
    return bool(status["worker_started"]) and status["workers_alive"] > 0


def _validation_error(e: ValidationError):
    try:
        msg = e.errors()[0].get("msg") or str(e)
    except (IndexError, AttributeError):
        msg = str(e)
    return _json_error(msg, 400, "validation_error")


def _accepted(job_id: str):
    api_href = url_for("api.job_status", job_id=job_id)
    resp_model = schemas.JobAcceptedResponse(
        id=job_id,
        status="queued",
        links=schemas.Links(self=api_href, connection=url_for("api.connection_status")),
    )
    resp = jsonify(resp_model.model_dump())
    resp.status_code = 202
    resp.headers["Location"] = api_href
    return resp


@api_bp.get("/connection")
def connection_status():
    return schemas.ConnectionStatus(**_session().describe()).model_dump()


@api_bp.post("/connection")
def connect():
    if not request.is_json:
        return _json_error("Expected application/json body", 415)
    try:
        req = schemas.ConnectRequest.model_validate(request.get_json(silent=True) or {})
    except ValidationError as e:
        return _validation_error(e)
    if not _workers_ready():
        return _json_error("Background worker is not running", 503, "worker_unavailable")

    session = _session()
    state = session.state
    if isinstance(state, Connecting):
        return _print_error(AlreadyConnecting(f"already connecting to {session.connection.address}"))
    if isinstance(state, Connected):
        return _print_error(AlreadyConnected(f"already connected to {session.connection.address}"))

    job_id = enqueue_connect(session, req.address)
    return _accepted(job_id)


@api_bp.delete("/connection")
def disconnect():
    """
    Disconnect and wait briefly for the result so the caller sees the final state.
    """
    if not _workers_ready():
        return _json_error("Background worker is not running", 503, "worker_unavailable")
    session = _session()
    job_id = enqueue_disconnect(session)
    job = wait_for_job(job_id, timeout=DISCONNECT_WAIT_SECONDS) or {}
    body: Dict[str, object] = dict(session.describe())
    body["job"] = job_id
    if job.get("status") == "error":
        body.update({"error": job.get("error"), "kind": job.get("error_kind")})
        return jsonify(body), 409 if job.get("error_kind") == DisconnectError.kind else 400
    if job.get("status") != "success":
        return jsonify(body), 202
    return jsonify(body), 200


@api_bp.post("/jobs")
def submit_job():
    """
    Accept a JSON print job, validate, and enqueue it.
    Returns 202 Accepted with a Location header to the job status resource.
    """
    if not request.is_json:
        return _json_error("Expected application/json body", 415)

    data = request.get_json(silent=True) or {}
    try:
        req = schemas.PrintJobRequest.model_validate(
            data,
            context={"limits": {"MAX_MARKUP_LEN": MAX_MARKUP_LEN, "MAX_IMAGES": MAX_IMAGES}},
        )
    except ValidationError as e:
        return _validation_error(e)
    if not _workers_ready():
        return _json_error("Background worker is not running", 503, "worker_unavailable")

    try:
        job_id = enqueue_print(_session(), req.to_print_request())
    except PrintError as e:
        current_app.logger.info("Print job rejected: %s", e)
        return _print_error(e)
    return _accepted(job_id)


@api_bp.get("/jobs")
def jobs_index():
    return {"jobs": list_jobs()}


@api_bp.get("/jobs/<job_id>")
def job_status(job_id: str):
    """
    Return job status JSON, 404 if not found.
    """
    job = get_job(job_id)
    if job:
        return job
    return _json_error("not_found", 404, "not_found")
