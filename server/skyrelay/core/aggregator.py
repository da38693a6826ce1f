"""Aggregator — merges a master's transmission window into per-slave summaries.

Reads the latest transmissions for a master and folds them, in the order
the log returns them, into one SlaveSummary per slave. "Latest" fields
follow the greatest caller timestamp, not arrival order: a summary only
takes a transmission's state when its timestamp is strictly newer than the
one already recorded, so on a tie the first one seen stays.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, TYPE_CHECKING

import structlog

from skyrelay.core.models import format_timestamp, utc_now

if TYPE_CHECKING:
    from skyrelay.core.models import (
        Clock,
        LinkMetrics,
        Location,
        MasterReport,
        StoredTransmission,
    )
    from skyrelay.core.transmission_log import TransmissionLog

log = structlog.get_logger()


@dataclass
class SlaveSummary:
    slave_id: str
    transmissions: list[dict] = field(default_factory=list)
    total_detections: int = 0
    latest_location: Location | None = None
    latest_battery: float | None = None
    latest_link_metrics: LinkMetrics | None = None
    last_update: str | None = None

    def add_transmission(self, transmission: StoredTransmission) -> None:
        self.transmissions.append(transmission.history_entry())
        self.total_detections += transmission.detections_count

        if self.last_update is None or transmission.timestamp > self.last_update:
            self.latest_location = transmission.location
            self.latest_battery = transmission.battery_level
            self.latest_link_metrics = transmission.link_metrics
            self.last_update = transmission.timestamp

    def to_dict(self) -> dict:
        return {
            "slaveId": self.slave_id,
            "transmissions": list(self.transmissions),
            "totalDetections": self.total_detections,
            "latestLocation": self.latest_location.to_dict() if self.latest_location else None,
            "latestBattery": self.latest_battery,
            "latestLinkMetrics": (
                self.latest_link_metrics.to_dict() if self.latest_link_metrics else None
            ),
            "lastUpdate": self.last_update,
        }


@dataclass
class AggregateSnapshot:
    master_id: str
    total_slaves: int = 0
    total_transmissions: int = 0
    total_detections: int = 0
    slaves: dict[str, SlaveSummary] = field(default_factory=dict)
    # Not part of equality: two snapshots of unchanged data compare equal.
    generated_at: str = field(default="", compare=False)

    def to_dict(self) -> dict:
        return {
            "masterId": self.master_id,
            "totalSlaves": self.total_slaves,
            "totalTransmissions": self.total_transmissions,
            "totalDetections": self.total_detections,
            "slaves": {slave_id: s.to_dict() for slave_id, s in self.slaves.items()},
            "timestamp": self.generated_at,
        }


def merge_transmissions(master_id: str, transmissions: list[StoredTransmission]) -> AggregateSnapshot:
    """Fold transmissions into a snapshot. Pure function of its input."""
    snapshot = AggregateSnapshot(master_id=master_id)
    for transmission in transmissions:
        summary = snapshot.slaves.get(transmission.slave_id)
        if summary is None:
            summary = SlaveSummary(slave_id=transmission.slave_id)
            snapshot.slaves[transmission.slave_id] = summary
        summary.add_transmission(transmission)
        snapshot.total_transmissions += 1
        snapshot.total_detections += transmission.detections_count

    snapshot.total_slaves = len(snapshot.slaves)
    return snapshot


class Aggregator:
    """Read-side view over the TransmissionLog. Never writes."""

    def __init__(self, transmission_log: TransmissionLog, clock: Clock = utc_now) -> None:
        self._log = transmission_log
        self._clock = clock

    async def aggregate(self, master_id: str, limit: Any = None) -> AggregateSnapshot:
        transmissions = await self._log.query_by_master(master_id, limit)
        snapshot = merge_transmissions(master_id, transmissions)
        snapshot.generated_at = format_timestamp(self._clock())
        log.debug("aggregate_computed", master=master_id,
                  slaves=snapshot.total_slaves,
                  transmissions=snapshot.total_transmissions,
                  detections=snapshot.total_detections)
        return snapshot


@dataclass
class MasterAggregate:
    """The master's own state plus the consolidated picture of its slaves."""
    master_id: str
    master_data: MasterReport
    aggregated: AggregateSnapshot
    generated_at: str = field(default="", compare=False)

    def to_dict(self) -> dict:
        return {
            "masterId": self.master_id,
            "masterData": self.master_data.to_dict(),
            "aggregatedSlaveData": self.aggregated.to_dict(),
            "timestamp": self.generated_at,
        }
