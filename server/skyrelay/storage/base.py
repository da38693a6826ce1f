"""Storage interfaces (ports) for transmissions, master assignment and detections.

Adapters raise StorageNotInitialized when their schema is missing and
StorageUnavailable for any other backend failure.
"""

from __future__ import annotations

from typing import Protocol, TYPE_CHECKING

if TYPE_CHECKING:
    from skyrelay.core.models import (
        DetectionRecord,
        MasterAssignment,
        StoredTransmission,
        TransmissionReport,
    )


class TransmissionStorage(Protocol):
    """Port: ordered append log of slave transmissions."""

    async def initialize(self) -> None: ...

    async def append(
        self, report: TransmissionReport, timestamp: str, received_at: str,
    ) -> StoredTransmission: ...

    async def query_by_master(self, master_id: str, limit: int) -> list[StoredTransmission]: ...

    async def query_by_slave(self, slave_id: str, limit: int) -> list[StoredTransmission]: ...

    async def distinct_slaves(self, master_id: str) -> list[str]: ...


class AssignmentStorage(Protocol):
    """Port: single-slot master assignment record."""

    async def initialize(self) -> None: ...

    async def save_assignment(self, assignment: MasterAssignment) -> None: ...

    async def load_assignment(self) -> MasterAssignment | None: ...


class DetectionStorage(Protocol):
    """Port: canonical store for relayed detections."""

    async def store_detection(self, record: DetectionRecord) -> DetectionRecord: ...
