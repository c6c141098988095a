"""
Pydantic schemas for the CityPulse engine.

All data structures shared between the scheduler, the conversation manager
and the event pipeline are defined here.

Design Philosophy:
- Agents carry a numeric trait vector; social behaviour is derived from it
- Routine entries and event templates are immutable catalog data
- Conversations and active events are addressed by opaque string ids
- Range checks live on the models so invalid values never enter the engine
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Set, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _unit(description: Optional[str] = None) -> Any:
    return Field(..., ge=0.0, le=1.0, description=description)


def clamp_unit(value: float) -> float:
    """Clamp a score into the closed unit interval."""
    return max(0.0, min(1.0, float(value)))


# ============================================================================
# Agent Schemas
# ============================================================================


class AgentTraits(BaseModel):
    """Numeric personality vector, every score within [0, 1].

    The five core traits are required. The optional traits are only used by
    scenarios that want richer prompts; the engine itself reads enthusiasm,
    curiosity, empathy and creativity.
    """

    analytical_thinking: float = _unit()
    creativity: float = _unit()
    empathy: float = _unit()
    curiosity: float = _unit()
    enthusiasm: float = _unit()
    decisiveness: Optional[float] = Field(None, ge=0.0, le=1.0)
    adaptability: Optional[float] = Field(None, ge=0.0, le=1.0)
    communication: Optional[float] = Field(None, ge=0.0, le=1.0)
    formality: Optional[float] = Field(None, ge=0.0, le=1.0)


class Agent(BaseModel):
    """Static identity of a simulated resident (WHO the agent is)."""

    id: str = Field(..., description="Unique agent identifier")
    name: str = Field(..., description="Display name used in prompts and logs")
    role: str = Field("resident", description="Role in the city (planner, engineer, ...)")
    personality: str = Field("", description="One-line personality summary for prompts")
    interests: List[str] = Field(default_factory=list, description="Topics the agent cares about")
    traits: AgentTraits
    # Home district. Activity grouping only considers agents whose regular
    # locations include the district being processed.
    district_id: Optional[str] = Field(None, description="Home district id")


class RoutineEntry(BaseModel):
    """One recurring slot of an agent's daily routine.

    Frozen: routines are never edited in place. Regenerating an agent's routine
    replaces the whole list.
    """

    model_config = ConfigDict(frozen=True)

    time_slot: int = Field(..., ge=0, le=23, description="Hour of day the entry applies to")
    activity: str = Field(..., description="Activity label (lunch_break, morning_coffee, ...)")
    location: str = Field(..., description="Where the activity usually happens")
    topics: Tuple[str, ...] = Field(default_factory=tuple, description="Candidate conversation topics")
    social_probability: float = _unit()


class RoutinePlan(BaseModel):
    """Structured routine returned by the text generator (exactly five entries)."""

    routines: List[RoutineEntry] = Field(..., min_length=5, max_length=5)


class PersonalityProfile(BaseModel):
    """Social reading of the trait vector used by the compatibility scorer."""

    extroversion: float = Field(0.5, ge=0.0, le=1.0)
    cultural_openness: float = Field(0.5, ge=0.0, le=1.0)
    community_orientation: float = Field(0.5, ge=0.0, le=1.0)

    @classmethod
    def from_traits(cls, traits: AgentTraits) -> "PersonalityProfile":
        return cls(
            extroversion=traits.enthusiasm,
            cultural_openness=traits.curiosity,
            community_orientation=traits.empathy,
        )


class AgentInteraction(BaseModel):
    """A single remembered interaction with another agent."""

    agent_id: str
    kind: str = "conversation"
    sentiment: float = _unit()
    timestamp: datetime


class SocialProfile(BaseModel):
    """Mutable social state owned 1:1 by a registered agent.

    Friends are stored as ids only (weak references); the profile never holds
    another agent object.
    """

    friends: Set[str] = Field(default_factory=set)
    regular_locations: List[str] = Field(default_factory=list)
    recent_interactions: List[AgentInteraction] = Field(default_factory=list)
    cultural_preferences: List[str] = Field(default_factory=list)
    routines: List[RoutineEntry] = Field(default_factory=list)
    personality: PersonalityProfile = Field(default_factory=PersonalityProfile)

    def routine_at(self, hour: int) -> Optional[RoutineEntry]:
        """Return the first routine entry scheduled for ``hour``."""
        for entry in self.routines:
            if entry.time_slot == hour:
                return entry
        return None


# ============================================================================
# District & Context Schemas
# ============================================================================


class District(BaseModel):
    """A city district as seen through the district directory."""

    id: str
    name: str
    type: str = Field("mixed", description="residential, commercial, mixed, ...")
    traditions: List[str] = Field(default_factory=list)
    cultural_events: List[Dict[str, Any]] = Field(
        default_factory=list,
        description="Current cultural events, each with at least a title",
    )
    positivity: float = Field(0.5, ge=0.0, le=1.0)
    engagement: float = Field(0.5, ge=0.0, le=1.0)


class CulturalContext(BaseModel):
    events: List[Dict[str, Any]] = Field(default_factory=list)
    traditions: List[str] = Field(default_factory=list)

    def event_labels(self) -> List[str]:
        """Titles and types of the current events."""
        labels: List[str] = []
        for event in self.events:
            for key in ("title", "type"):
                value = event.get(key)
                if isinstance(value, str) and value:
                    labels.append(value)
        return labels


class SocialMood(BaseModel):
    positivity: float = Field(0.5, ge=0.0, le=1.0)
    engagement: float = Field(0.5, ge=0.0, le=1.0)


class ConversationContext(BaseModel):
    """Everything the manager needs to open a conversation in a district."""

    district_id: str
    activity: str
    social_mood: SocialMood = Field(default_factory=SocialMood)
    cultural_context: CulturalContext = Field(default_factory=CulturalContext)


# ============================================================================
# Conversation Schemas
# ============================================================================


class ConversationStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"


class Message(BaseModel):
    """One utterance in a conversation. Append-only."""

    id: str
    sender_id: str
    content: str
    timestamp: datetime
    sentiment: Optional[float] = Field(None, ge=0.0, le=1.0)
    topics: List[str] = Field(default_factory=list)


class SocialSnapshot(BaseModel):
    community_mood: float = Field(0.5, ge=0.0, le=1.0)
    engagement: float = Field(0.5, ge=0.0, le=1.0)
    activity_type: str = ""
    participants: int = 0


class CulturalSnapshot(BaseModel):
    current_events: List[Dict[str, Any]] = Field(default_factory=list)
    traditions: List[str] = Field(default_factory=list)


class Conversation(BaseModel):
    """A bounded exchange among a fixed participant set.

    Lifecycle is one-way: ``active`` until the aging task (or an explicit
    caller) completes it. Participants are a tuple so the set cannot change
    after creation.
    """

    id: str
    participants: Tuple[str, ...] = Field(..., min_length=1)
    messages: List[Message] = Field(default_factory=list)
    topic: str
    district_id: str
    location: str
    activity: str
    started_at: datetime
    last_update: datetime
    status: ConversationStatus = ConversationStatus.ACTIVE
    sentiment: float = Field(0.5, ge=0.0, le=1.0)
    social_context: Optional[SocialSnapshot] = None
    cultural_context: Optional[CulturalSnapshot] = None
    ended_at: Optional[datetime] = None

    @property
    def is_active(self) -> bool:
        return self.status == ConversationStatus.ACTIVE

    @property
    def last_sender(self) -> Optional[str]:
        return self.messages[-1].sender_id if self.messages else None

    def summary(self) -> Dict[str, Any]:
        """Compact description handed to the district directory."""
        return {
            "id": self.id,
            "participants": list(self.participants),
            "topic": self.topic,
            "location": self.location,
            "activity": self.activity,
            "sentiment": self.sentiment,
            "message_count": len(self.messages),
            "status": self.status.value,
        }


# ============================================================================
# Event Schemas
# ============================================================================


class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class SpreadPattern(str, Enum):
    LINEAR = "linear"
    EXPONENTIAL = "exponential"
    CLUSTERED = "clustered"


class TimeOfDay(str, Enum):
    MORNING = "morning"
    AFTERNOON = "afternoon"
    EVENING = "evening"
    NIGHT = "night"


class MetricImpact(BaseModel):
    """A delta applied to one city metric for a duration."""

    model_config = ConfigDict(frozen=True)

    category: str = Field(..., description="Metric category (social, sustainability, ...)")
    metric: str = Field(..., description="Metric name, optionally dotted as category.metric")
    change: float = Field(..., description="Signed delta")
    duration_seconds: float = Field(..., ge=0.0)

    @property
    def metric_name(self) -> str:
        # "social.healthcareAccessScore" and "healthcareAccessScore" address the same metric
        return self.metric.split(".")[-1]


class CascadeSpec(BaseModel):
    model_config = ConfigDict(frozen=True)

    probability: float = _unit()
    related_events: Tuple[str, ...] = Field(default_factory=tuple)
    spread_pattern: SpreadPattern = SpreadPattern.LINEAR


class TimeContext(BaseModel):
    model_config = ConfigDict(frozen=True)

    preferred_time_of_day: Optional[TimeOfDay] = None
    weather_sensitive: bool = False
    seasonal_factor: Optional[str] = None


class EventTemplate(BaseModel):
    """Static description of a possible city-wide disruption."""

    model_config = ConfigDict(frozen=True)

    id: str
    title: str
    description: str
    severity: float = _unit()
    priority: Priority
    impacts: Tuple[MetricImpact, ...] = Field(default_factory=tuple)
    required_agents: Tuple[str, ...] = Field(default_factory=tuple)
    district_types: Tuple[str, ...] = Field(default_factory=tuple)
    cascade: Optional[CascadeSpec] = None
    time_context: TimeContext = Field(default_factory=TimeContext)

    @field_validator("severity", mode="before")
    @classmethod
    def _round_severity(cls, value: float) -> float:
        # Repeated 0.8 scaling accumulates float noise; keep severities readable
        return round(float(value), 6)

    @property
    def max_duration_seconds(self) -> float:
        return max((impact.duration_seconds for impact in self.impacts), default=0.0)


class ActiveEvent(BaseModel):
    """A template bound to a concrete district until it is resolved."""

    event: EventTemplate
    district_id: str
    created_at: datetime
    depth: int = Field(0, ge=0, description="0 for primary events, +1 per cascade step")

    @property
    def id(self) -> str:
        return self.event.id


class SearchMatch(BaseModel):
    id: str
    score: float = 0.0
    metadata: Dict[str, Any] = Field(default_factory=dict)
