"""Master/slave API endpoints.

This is the thin FastAPI adapter. It parses JSON requests, converts them to
internal models, and calls the processor. Core errors map to HTTP status:
InvalidInput → 400, StorageUnavailable → 503.
"""

from __future__ import annotations

import json

import structlog
from fastapi import APIRouter, Query, Request
from fastapi.responses import JSONResponse

from skyrelay.core.errors import InvalidInput, StorageUnavailable
from skyrelay.core.models import MasterReport, TransmissionReport, first_present

log = structlog.get_logger()

router = APIRouter(prefix="/api/v1/master-slave")


def _error(status_code: int, error: str, message: str = "") -> JSONResponse:
    content = {"success": False, "error": error}
    if message:
        content["message"] = message
    return JSONResponse(content=content, status_code=status_code)


def _storage_error(exc: StorageUnavailable) -> JSONResponse:
    log.error("storage_unavailable", error=str(exc))
    return _error(503, "Storage unavailable", str(exc))


async def _json_body(request: Request) -> dict | None:
    """Parse the request body as a JSON object, or return None."""
    try:
        body = json.loads(await request.body())
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None
    return body if isinstance(body, dict) else None


@router.post("/set-master")
async def set_master(request: Request) -> JSONResponse:
    """Designate the master unit. Body: {"masterId": "uav-1"}"""
    from skyrelay.main import get_processor

    body = await _json_body(request)
    if body is None:
        return _error(400, "invalid JSON")

    try:
        assignment = await get_processor().set_master(first_present(body, "masterId", "masterUAVId"))
    except InvalidInput as exc:
        return _error(400, str(exc))
    except StorageUnavailable as exc:
        return _storage_error(exc)

    return JSONResponse(content={
        "success": True,
        "message": f"Master unit set to {assignment.master_id}",
        "master": assignment.to_dict(),
    })


@router.get("/master")
async def get_master() -> JSONResponse:
    """Return the current master assignment, 404 if none was ever made."""
    from skyrelay.main import get_processor

    try:
        assignment = await get_processor().get_master()
    except StorageUnavailable as exc:
        return _storage_error(exc)

    if assignment is None:
        return _error(404, "No master unit assigned")
    return JSONResponse(content={"success": True, "master": assignment.to_dict()})


@router.post("/slave-data")
async def receive_slave_data(request: Request) -> JSONResponse:
    """Receive one transmission from a slave unit.

    The report succeeds as long as slaveId and masterId are present, even
    when some or all attached detections fail to relay.
    """
    from skyrelay.main import get_processor

    body = await _json_body(request)
    if body is None:
        return _error(400, "invalid JSON")

    report = TransmissionReport.from_dict(body)
    try:
        receipt, outcome = await get_processor().report_transmission(report)
    except InvalidInput as exc:
        return _error(400, str(exc))
    except StorageUnavailable as exc:
        return _storage_error(exc)

    return JSONResponse(content={
        "success": True,
        "message": "Slave data received and processed",
        "data": receipt.to_dict(),
        "relay": {"relayed": outcome.relayed, "failed": outcome.failed},
    })


@router.get("/aggregated-data")
async def get_aggregated_data(
    master_id: str | None = Query(default=None, alias="masterId"),
    limit: str | None = Query(default=None),
) -> JSONResponse:
    """Return the per-slave aggregate for a master.

    ``limit`` selects how many of the latest transmissions are merged; a
    missing or non-positive value falls back to the default (100).
    """
    from skyrelay.main import get_processor

    try:
        snapshot = await get_processor().get_aggregate(master_id, limit)
    except InvalidInput:
        return _error(400, "masterId query parameter is required")
    except StorageUnavailable as exc:
        return _storage_error(exc)

    return JSONResponse(content={"success": True, "data": snapshot.to_dict()})


@router.get("/slaves")
async def get_slaves(
    master_id: str | None = Query(default=None, alias="masterId"),
) -> JSONResponse:
    """List the slave units that reported to a master, most recent first."""
    from skyrelay.main import get_processor

    try:
        slaves = await get_processor().list_slaves(master_id)
    except InvalidInput:
        return _error(400, "masterId query parameter is required")
    except StorageUnavailable as exc:
        return _storage_error(exc)

    return JSONResponse(content={
        "success": True,
        "masterId": master_id,
        "slaves": slaves,
        "count": len(slaves),
    })


@router.post("/master-data")
async def receive_master_data(request: Request) -> JSONResponse:
    """Master uploads its own state; responds with the consolidated picture."""
    from skyrelay.main import get_processor

    body = await _json_body(request)
    if body is None:
        return _error(400, "invalid JSON")

    try:
        complete = await get_processor().report_master(MasterReport.from_dict(body))
    except InvalidInput as exc:
        return _error(400, str(exc))
    except StorageUnavailable as exc:
        return _storage_error(exc)

    return JSONResponse(content={
        "success": True,
        "message": "Master aggregated data received",
        "data": complete.to_dict(),
    })
