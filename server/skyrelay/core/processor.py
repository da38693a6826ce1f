"""Fleet processor — validates inbound reports and drives the core components.

This is the core business logic. It depends on the storage and notifier
protocols, not concrete implementations. Components return their results
together with the events to emit; the processor owns event delivery.
"""

from __future__ import annotations

from typing import Any, TYPE_CHECKING

import structlog

from skyrelay.core.aggregator import MasterAggregate
from skyrelay.core.errors import InvalidInput, StorageUnavailable
from skyrelay.core.models import (
    AGGREGATE_PRODUCED,
    Event,
    TransmissionReceipt,
    format_timestamp,
    require_identifier,
    utc_now,
)

if TYPE_CHECKING:
    from skyrelay.core.aggregator import AggregateSnapshot, Aggregator
    from skyrelay.core.models import (
        Clock,
        MasterAssignment,
        MasterReport,
        TransmissionReport,
    )
    from skyrelay.core.registry import MasterRegistry
    from skyrelay.core.relay import DetectionRelay, RelayOutcome
    from skyrelay.core.stats import FleetStats
    from skyrelay.core.transmission_log import TransmissionLog
    from skyrelay.events.base import EventNotifier

log = structlog.get_logger()

# Window a master's upstream report is aggregated over.
MASTER_REPORT_LIMIT = 100


class FleetProcessor:
    """Entry point for every inbound command and query."""

    def __init__(
        self,
        registry: MasterRegistry,
        transmission_log: TransmissionLog,
        relay: DetectionRelay,
        aggregator: Aggregator,
        notifier: EventNotifier,
        stats: FleetStats,
        clock: Clock = utc_now,
        push_aggregate_on_transmission: bool = False,
    ) -> None:
        self._registry = registry
        self._log = transmission_log
        self._relay = relay
        self._aggregator = aggregator
        self._notifier = notifier
        self._stats = stats
        self._clock = clock
        self._push_aggregate = push_aggregate_on_transmission

    async def set_master(self, master_id: Any) -> MasterAssignment:
        try:
            assignment, events = await self._registry.set_master(master_id)
        except StorageUnavailable:
            self._stats.record_storage_error()
            raise

        self._stats.record_assignment(assignment.master_id)
        await self._notify(events)
        return assignment

    async def get_master(self) -> MasterAssignment | None:
        try:
            return await self._registry.get_master()
        except StorageUnavailable:
            self._stats.record_storage_error()
            raise

    async def report_transmission(
        self, report: TransmissionReport,
    ) -> tuple[TransmissionReceipt, RelayOutcome]:
        """Store a slave report and relay its detections.

        Succeeds whenever the report itself is valid, even if every attached
        detection fails to relay.
        """
        try:
            stored, events = await self._log.append(report)
        except InvalidInput:
            self._stats.record_rejected()
            raise
        except StorageUnavailable:
            self._stats.record_storage_error()
            raise

        self._stats.record_transmission(stored.slave_id, stored.master_id,
                                        stored.detections_count)

        outcome = await self._relay.relay(stored, report.detections)
        self._stats.record_relay(outcome.relayed, outcome.failed)
        events.extend(outcome.events)

        if self._push_aggregate:
            try:
                snapshot = await self._aggregator.aggregate(stored.master_id)
            except StorageUnavailable:
                self._stats.record_storage_error()
                log.error("aggregate_push_failed", master=stored.master_id,
                          exc_info=True)
            else:
                self._stats.record_aggregate()
                events.append(self._aggregate_event(snapshot.to_dict(), snapshot.generated_at))

        await self._notify(events)

        receipt = TransmissionReceipt(
            slave_id=stored.slave_id,
            master_id=stored.master_id,
            timestamp=stored.timestamp,
            detections_count=stored.detections_count,
        )
        return receipt, outcome

    async def get_aggregate(self, master_id: Any, limit: Any = None) -> AggregateSnapshot:
        master_id = require_identifier(master_id, "masterId")
        try:
            return await self._aggregator.aggregate(master_id, limit)
        except StorageUnavailable:
            self._stats.record_storage_error()
            raise

    async def list_slaves(self, master_id: Any) -> list[str]:
        master_id = require_identifier(master_id, "masterId")
        try:
            return await self._log.distinct_slaves(master_id)
        except StorageUnavailable:
            self._stats.record_storage_error()
            raise

    async def report_master(self, report: MasterReport) -> MasterAggregate:
        """Combine a master's own state with the aggregate of its slaves and
        publish the result upstream."""
        master_id = require_identifier(report.master_id, "masterId")
        try:
            snapshot = await self._aggregator.aggregate(master_id, MASTER_REPORT_LIMIT)
        except StorageUnavailable:
            self._stats.record_storage_error()
            raise

        complete = MasterAggregate(
            master_id=master_id,
            master_data=report,
            aggregated=snapshot,
            generated_at=format_timestamp(self._clock()),
        )
        self._stats.record_master(master_id)
        self._stats.record_aggregate()
        await self._notify([self._aggregate_event(complete.to_dict(), complete.generated_at)])

        log.info("master_report_aggregated", master=master_id,
                 slaves=snapshot.total_slaves,
                 detections=snapshot.total_detections)
        return complete

    @staticmethod
    def _aggregate_event(payload: dict, emitted_at: str) -> Event:
        return Event(name=AGGREGATE_PRODUCED, payload=payload, emitted_at=emitted_at)

    async def _notify(self, events: list[Event]) -> None:
        """Deliver events fire-and-forget; delivery failures are only logged."""
        for event in events:
            try:
                await self._notifier.emit(event)
            except Exception:
                log.error("event_delivery_failed", event_name=event.name,
                          exc_info=True)
                self._stats.record_event(delivered=False)
            else:
                self._stats.record_event(delivered=True)
