"""Master registry — the single currently-designated master unit.

The registry is an owned object wired at startup, not process-wide state.
Every assignment overwrites the previous one; there is no history.
"""

from __future__ import annotations

from typing import Any, TYPE_CHECKING

import structlog

from skyrelay.core.errors import StorageNotInitialized, StorageUnavailable
from skyrelay.core.models import (
    ASSIGNMENT_CHANGED,
    Event,
    MasterAssignment,
    format_timestamp,
    require_identifier,
    utc_now,
)

if TYPE_CHECKING:
    from skyrelay.core.models import Clock
    from skyrelay.storage.base import AssignmentStorage

log = structlog.get_logger()


class MasterRegistry:

    def __init__(self, storage: AssignmentStorage, clock: Clock = utc_now) -> None:
        self._storage = storage
        self._clock = clock

    async def set_master(self, master_id: Any) -> tuple[MasterAssignment, list[Event]]:
        """Designate ``master_id`` as master.

        Re-assigning the current master is not a no-op: the record is
        rewritten and an ``assignment_changed`` event is still returned.
        """
        master_id = require_identifier(master_id, "masterId")
        now = format_timestamp(self._clock())
        assignment = MasterAssignment(master_id=master_id, assigned_at=now, updated_at=now)

        try:
            await self._storage.save_assignment(assignment)
        except StorageNotInitialized as exc:
            log.warning("master_registry_uninitialized", resource=exc.resource,
                        action="initialize_and_retry")
            await self._storage.initialize()
            try:
                await self._storage.save_assignment(assignment)
            except StorageNotInitialized as retry_exc:
                raise StorageUnavailable(
                    f"{retry_exc.resource} still missing after initialization"
                ) from retry_exc

        log.info("master_assigned", master=master_id)
        event = Event(
            name=ASSIGNMENT_CHANGED,
            payload={"masterId": master_id, "timestamp": now},
            emitted_at=now,
        )
        return assignment, [event]

    async def get_master(self) -> MasterAssignment | None:
        """Return the current assignment, or None if no master was ever set."""
        try:
            return await self._storage.load_assignment()
        except StorageNotInitialized:
            log.warning("master_registry_uninitialized", action="initialize")
            await self._storage.initialize()
            return None
