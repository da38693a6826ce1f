"""Health check and monitoring endpoints."""

from __future__ import annotations

from fastapi import APIRouter

from skyrelay.core.errors import StorageNotInitialized, StorageUnavailable

router = APIRouter(prefix="/api/v1")


@router.get("/health")
async def health() -> dict:
    """Basic health check."""
    from skyrelay.main import get_stats, get_storage

    storage = get_storage()
    storage_ok = await storage.ping()
    try:
        detections_stored = await storage.count_detections() if storage_ok else -1
    except (StorageNotInitialized, StorageUnavailable):
        detections_stored = -1

    snapshot = get_stats().snapshot()
    return {
        "status": "ok" if storage_ok else "degraded",
        "version": "0.1.0",
        "uptime_seconds": snapshot["uptime_seconds"],
        "storage_reachable": storage_ok,
        "detections_stored": detections_stored,
    }


@router.get("/stats")
async def stats() -> dict:
    """Detailed fleet statistics including active unit counts.

    The ``active_units`` section shows:
    - ``total``: units seen in the last N seconds (configurable window)
    - ``slaves``: units currently reporting as slaves
    - ``masters``: units assigned or addressed as master
    - ``window_seconds``: the time window used for "active" calculation
    """
    from skyrelay.main import get_stats

    return get_stats().snapshot()


@router.get("/config")
async def get_client_config() -> dict:
    """Configuration endpoint for fleet units and dashboards."""
    from skyrelay.main import get_config

    config = get_config()
    return {
        "default_query_limit": config.limits.default_query_limit,
        "active_window_seconds": config.limits.active_window_seconds,
        "push_aggregate_on_transmission": config.events.push_aggregate_on_transmission,
    }
