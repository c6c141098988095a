"""Structural errors raised to callers of the public engine operations.

Transient failures of external collaborators (text generation, search,
metrics, persistence) are never raised from here; they are logged at the
call site and answered with a fallback. The classes below signal a caller
contract violation: a referenced district, agent, conversation or event
does not exist, or a participant is already busy.
"""

from typing import Iterable


class CityPulseError(Exception):
    """Base class for all structural errors raised by the engine."""


class DistrictNotFoundError(CityPulseError):
    """Raised when a district id is not known to the district directory."""

    def __init__(self, district_id: str) -> None:
        self.district_id = district_id
        super().__init__(f"District not found: {district_id}")


class NoDistrictsAvailableError(CityPulseError):
    """Raised when an event must be targeted but the directory is empty."""

    def __init__(self) -> None:
        super().__init__(
            "No districts available. Register at least one district with the "
            "district directory before generating events."
        )


class AgentNotFoundError(CityPulseError):
    """Raised when an agent id was never registered."""

    def __init__(self, agent_id: str) -> None:
        self.agent_id = agent_id
        super().__init__(f"Agent not registered: {agent_id}")


class ConversationNotFoundError(CityPulseError):
    """Raised when a conversation id is not active."""

    def __init__(self, conversation_id: str) -> None:
        self.conversation_id = conversation_id
        super().__init__(f"Active conversation not found: {conversation_id}")


class EventNotFoundError(CityPulseError):
    """Raised when resolving an event that is not in the active-event index."""

    def __init__(self, event_id: str) -> None:
        self.event_id = event_id
        super().__init__(f"Active event not found: {event_id}")


class ParticipantBusyError(CityPulseError):
    """Raised when a participant is already part of an active conversation."""

    def __init__(self, agent_ids: Iterable[str]) -> None:
        self.agent_ids = list(agent_ids)
        super().__init__(
            "One or more participants are already in active conversations: "
            + ", ".join(self.agent_ids)
        )
