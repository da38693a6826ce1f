"""Event notifier interface (port) for outbound fleet events."""

from __future__ import annotations

from typing import Protocol, TYPE_CHECKING

if TYPE_CHECKING:
    from skyrelay.core.models import Event


class EventNotifier(Protocol):
    """Port: delivers events to whatever pushes them to dashboards."""

    async def emit(self, event: Event) -> None: ...
