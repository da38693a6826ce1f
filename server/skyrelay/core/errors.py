"""SkyRelay error taxonomy.

Validation errors surface immediately, storage errors propagate unchanged,
and detection relay errors never leave the relay.
"""

from __future__ import annotations


class FleetRelayError(Exception):
    """Base class for all errors raised by the SkyRelay core."""


class InvalidInput(FleetRelayError):
    """A required identifier is missing or empty. Caller error, never retried."""


class StorageUnavailable(FleetRelayError):
    """The underlying store is unreachable or failed a read/write."""


class StorageNotInitialized(FleetRelayError):
    """The store's schema does not exist yet.

    Raised by storage adapters instead of a driver-specific error so the
    core can initialize and retry without inspecting error messages.
    """

    def __init__(self, resource: str) -> None:
        super().__init__(f"storage resource {resource!r} is not initialized")
        self.resource = resource
