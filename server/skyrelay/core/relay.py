"""Detection relay — forwards slave detections to the detection store.

Detections are relayed one at a time in list order. A failing detection is
logged and skipped; it never blocks or rolls back the others.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Callable, Sequence, TYPE_CHECKING

import structlog

from skyrelay.core.models import (
    DEFAULT_DETECTION_TYPE,
    DETECTION_RELAYED,
    DETECTION_STATUS_DETECTED,
    DetectionRecord,
    Event,
    format_timestamp,
    utc_now,
)

if TYPE_CHECKING:
    from skyrelay.core.models import Clock, DetectionInput, StoredTransmission
    from skyrelay.storage.base import DetectionStorage

log = structlog.get_logger()

# Marks detections that reached the store through a slave report.
SOURCE_SLAVE = "slave"


def _new_detection_id() -> str:
    return str(uuid.uuid4())


@dataclass
class RelayOutcome:
    relayed: int = 0
    failed: int = 0
    events: list[Event] = field(default_factory=list)

    @property
    def partial_failure(self) -> bool:
        return self.failed > 0


def build_detection_record(
    transmission: StoredTransmission,
    detection: DetectionInput,
    id_factory: Callable[[], str] = _new_detection_id,
) -> DetectionRecord:
    """Canonical record for one detection.

    The reporting unit is always the slave that produced the detection,
    never the master it reported through.
    """
    return DetectionRecord(
        id=detection.id or id_factory(),
        coordinates=detection.coordinates,
        confidence=detection.confidence,
        detection_type=detection.type or DEFAULT_DETECTION_TYPE,
        reporting_unit_id=transmission.slave_id,
        timestamp=detection.timestamp or transmission.timestamp,
        status=DETECTION_STATUS_DETECTED,
        additional_info=detection.additional_info,
    )


class DetectionRelay:

    def __init__(
        self,
        sink: DetectionStorage,
        clock: Clock = utc_now,
        id_factory: Callable[[], str] = _new_detection_id,
    ) -> None:
        self._sink = sink
        self._clock = clock
        self._id_factory = id_factory

    async def relay(
        self,
        transmission: StoredTransmission,
        detections: Sequence[DetectionInput],
    ) -> RelayOutcome:
        """Relay each detection; return how many succeeded and their events."""
        outcome = RelayOutcome()
        if not detections:
            return outcome

        log.info("detections_relaying", slave=transmission.slave_id,
                 count=len(detections))

        for index, detection in enumerate(detections):
            record = build_detection_record(transmission, detection, self._id_factory)
            try:
                stored = await self._sink.store_detection(record)
            except Exception:
                outcome.failed += 1
                log.error("detection_relay_failed", slave=transmission.slave_id,
                          detection_id=record.id, index=index, exc_info=True)
                continue

            outcome.relayed += 1
            outcome.events.append(Event(
                name=DETECTION_RELAYED,
                payload={
                    "detection": stored.to_dict(),
                    "unitData": {
                        "unitId": transmission.slave_id,
                        "location": transmission.location.to_dict(),
                        "isacMode": transmission.isac_mode,
                        "signalStrength": transmission.signal_strength,
                        "source": SOURCE_SLAVE,
                    },
                },
                emitted_at=format_timestamp(self._clock()),
            ))

        if outcome.partial_failure:
            log.warning("partial_relay_failure", slave=transmission.slave_id,
                        relayed=outcome.relayed, failed=outcome.failed)
        return outcome
