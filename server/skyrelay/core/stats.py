"""Fleet statistics and active-unit tracking.

Tracks in-memory counters and a sliding window of recently active units.
No framework dependencies.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass

ROLE_SLAVE = "slave"
ROLE_MASTER = "master"


@dataclass
class UnitActivity:
    """Tracks a single unit's recent activity."""
    last_seen: float          # time.monotonic() timestamp
    role: str                 # "slave" or "master"
    transmissions_sent: int = 0


class FleetStats:
    """Thread-safe fleet statistics with active-unit tracking.

    A unit is "active" if it reported (as a slave) or was addressed as
    master within ``active_window_seconds`` (default 120s). A unit that is
    seen in both roles keeps the role it was last seen in.
    """

    def __init__(self, active_window_seconds: float = 120.0) -> None:
        self._lock = threading.Lock()
        self._started_at = time.time()
        self._active_window = active_window_seconds

        # Counters
        self.transmissions_received: int = 0
        self.transmissions_rejected: int = 0
        self.detections_received: int = 0
        self.detections_relayed: int = 0
        self.detections_failed: int = 0
        self.assignments: int = 0
        self.aggregates_produced: int = 0
        self.events_emitted: int = 0
        self.event_delivery_errors: int = 0
        self.storage_errors: int = 0

        # Unit tracking: unit_id → UnitActivity
        self._units: dict[str, UnitActivity] = {}

    def _touch(self, unit_id: str, role: str, now: float, transmissions: int = 0) -> None:
        """Caller holds lock."""
        unit = self._units.get(unit_id)
        if unit is None:
            self._units[unit_id] = UnitActivity(
                last_seen=now, role=role, transmissions_sent=transmissions,
            )
        else:
            unit.last_seen = now
            unit.role = role
            unit.transmissions_sent += transmissions

    def record_transmission(self, slave_id: str, master_id: str, detections: int) -> None:
        """Record that a slave report was accepted."""
        now = time.monotonic()
        with self._lock:
            self.transmissions_received += 1
            self.detections_received += detections
            self._touch(slave_id, ROLE_SLAVE, now, transmissions=1)
            if master_id not in self._units:
                self._touch(master_id, ROLE_MASTER, now)

    def record_master(self, master_id: str) -> None:
        """Record that a master was assigned or reported in."""
        now = time.monotonic()
        with self._lock:
            self._touch(master_id, ROLE_MASTER, now)

    def record_assignment(self, master_id: str) -> None:
        with self._lock:
            self.assignments += 1
        self.record_master(master_id)

    def record_relay(self, relayed: int, failed: int) -> None:
        with self._lock:
            self.detections_relayed += relayed
            self.detections_failed += failed

    def record_rejected(self, count: int = 1) -> None:
        with self._lock:
            self.transmissions_rejected += count

    def record_aggregate(self) -> None:
        with self._lock:
            self.aggregates_produced += 1

    def record_event(self, delivered: bool) -> None:
        with self._lock:
            if delivered:
                self.events_emitted += 1
            else:
                self.event_delivery_errors += 1

    def record_storage_error(self) -> None:
        with self._lock:
            self.storage_errors += 1

    def _prune_stale_units(self, now: float) -> None:
        """Remove units not seen within the active window. Caller holds lock."""
        cutoff = now - self._active_window
        stale = [uid for uid, unit in self._units.items() if unit.last_seen < cutoff]
        for uid in stale:
            del self._units[uid]

    def snapshot(self) -> dict:
        """Return a JSON-serializable snapshot of all stats."""
        now_mono = time.monotonic()
        with self._lock:
            self._prune_stale_units(now_mono)

            active_slaves = sum(
                1 for unit in self._units.values() if unit.role == ROLE_SLAVE
            )
            active_masters = sum(
                1 for unit in self._units.values() if unit.role == ROLE_MASTER
            )

            return {
                "uptime_seconds": round(time.time() - self._started_at, 1),
                "transmissions_received": self.transmissions_received,
                "transmissions_rejected": self.transmissions_rejected,
                "detections_received": self.detections_received,
                "detections_relayed": self.detections_relayed,
                "detections_failed": self.detections_failed,
                "assignments": self.assignments,
                "aggregates_produced": self.aggregates_produced,
                "events_emitted": self.events_emitted,
                "event_delivery_errors": self.event_delivery_errors,
                "storage_errors": self.storage_errors,
                "active_units": {
                    "total": len(self._units),
                    "slaves": active_slaves,
                    "masters": active_masters,
                    "window_seconds": self._active_window,
                },
            }
