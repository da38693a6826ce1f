"""Transmission log — append-only record of slave reports.

Wraps a TransmissionStorage port with validation, capture-time defaults and
the lazy-schema policy: reads against an uninitialized store initialize it
and return an empty result, writes initialize it and retry exactly once.
"""

from __future__ import annotations

from dataclasses import replace
from typing import Any, TYPE_CHECKING

import structlog

from skyrelay.core.errors import StorageNotInitialized, StorageUnavailable
from skyrelay.core.models import (
    TRANSMISSION_RECEIVED,
    Event,
    format_timestamp,
    require_identifier,
    utc_now,
)

if TYPE_CHECKING:
    from skyrelay.core.models import (
        Clock,
        StoredTransmission,
        TransmissionReport,
    )
    from skyrelay.storage.base import TransmissionStorage

log = structlog.get_logger()

DEFAULT_QUERY_LIMIT = 100
# Largest integer SQLite can bind; bigger limits are clamped to it.
MAX_QUERY_LIMIT = 2**63 - 1


def normalize_limit(limit: Any, default: int = DEFAULT_QUERY_LIMIT) -> int:
    """Return ``limit`` as a positive int, or ``default`` if it is not one."""
    if isinstance(limit, bool):
        return default
    if isinstance(limit, int):
        value = limit
    elif isinstance(limit, str):
        try:
            value = int(limit.strip())
        except ValueError:
            return default
    else:
        return default
    if value <= 0:
        return default
    return min(value, MAX_QUERY_LIMIT)


class TransmissionLog:
    """Ordered log of transmissions, queryable by master and by slave."""

    def __init__(
        self,
        storage: TransmissionStorage,
        clock: Clock = utc_now,
        default_limit: int = DEFAULT_QUERY_LIMIT,
    ) -> None:
        self._storage = storage
        self._clock = clock
        self._default_limit = default_limit

    @property
    def default_limit(self) -> int:
        return self._default_limit

    async def append(self, report: TransmissionReport) -> tuple[StoredTransmission, list[Event]]:
        """Validate and store one report.

        Returns the stored record and a ``transmission_received`` event whose
        payload carries unit ids, location, battery, link metrics and the
        detection count, but not the detections themselves.
        """
        report = replace(
            report,
            slave_id=require_identifier(report.slave_id, "slaveId"),
            master_id=require_identifier(report.master_id, "masterId"),
        )

        captured_at = format_timestamp(self._clock())
        timestamp = report.timestamp or captured_at

        try:
            stored = await self._storage.append(report, timestamp, captured_at)
        except StorageNotInitialized as exc:
            log.warning("transmission_log_uninitialized", resource=exc.resource,
                        action="initialize_and_retry")
            await self._storage.initialize()
            try:
                stored = await self._storage.append(report, timestamp, captured_at)
            except StorageNotInitialized as retry_exc:
                raise StorageUnavailable(
                    f"{retry_exc.resource} still missing after initialization"
                ) from retry_exc

        log.info("transmission_appended", slave=stored.slave_id,
                 master=stored.master_id, record_id=stored.record_id,
                 detections=stored.detections_count)

        event = Event(
            name=TRANSMISSION_RECEIVED,
            payload={
                "slaveId": stored.slave_id,
                "masterId": stored.master_id,
                "location": stored.location.to_dict(),
                "batteryLevel": stored.battery_level,
                "isacMode": stored.isac_mode,
                "signalStrength": stored.signal_strength,
                "dataRate": stored.data_rate,
                "detectionsCount": stored.detections_count,
                "timestamp": captured_at,
            },
            emitted_at=captured_at,
        )
        return stored, [event]

    async def query_by_master(self, master_id: str, limit: Any = None) -> list[StoredTransmission]:
        """Latest ``limit`` arrivals for a master, caller timestamp descending."""
        limit = normalize_limit(limit, self._default_limit)
        try:
            return await self._storage.query_by_master(master_id, limit)
        except StorageNotInitialized:
            await self._initialize_after_miss()
            return []

    async def query_by_slave(self, slave_id: str, limit: Any = None) -> list[StoredTransmission]:
        """Latest ``limit`` arrivals from a slave, caller timestamp descending."""
        limit = normalize_limit(limit, self._default_limit)
        try:
            return await self._storage.query_by_slave(slave_id, limit)
        except StorageNotInitialized:
            await self._initialize_after_miss()
            return []

    async def distinct_slaves(self, master_id: str) -> list[str]:
        """Slave ids that ever reported to ``master_id``, most recently active first."""
        try:
            return await self._storage.distinct_slaves(master_id)
        except StorageNotInitialized:
            await self._initialize_after_miss()
            return []

    async def _initialize_after_miss(self) -> None:
        log.warning("transmission_log_uninitialized", action="initialize")
        await self._storage.initialize()
