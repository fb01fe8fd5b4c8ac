"""Error vocabulary shared by the core and adapters.

Adapters translate library-specific failures into these types at their
boundary so the dispatcher only ever sees one taxonomy.
"""

from __future__ import annotations


class RelayError(Exception):
    """Base class for every error raised by relaydesk."""


class ConfigError(RelayError):
    """Required configuration is missing or invalid."""


class MalformedPayload(RelayError):
    """An inbound payload cannot be normalized; only this event is aborted."""


class ProvisioningFailed(RelayError):
    """Thread creation failed; the routing entry is kept for a later retry."""


class RoutingUnavailable(RelayError):
    """A relay cannot proceed because the entry or its thread is missing."""


class UnknownEventKind(RelayError):
    """The platform delivered an event type the dispatcher does not handle."""

    def __init__(self, event_type: str) -> None:
        super().__init__(f"Unknown event type: {event_type}")
        self.event_type = event_type


class SendFailed(RelayError):
    """A platform send, edit, or delete call failed."""


class GenerationFailed(RelayError):
    """The AI answer generator could not produce a draft."""
