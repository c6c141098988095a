"""
CityPulse - autonomous scheduling and event-cascade engine for simulated cities.

Agents follow daily routines and strike up conversations; the city injects
random events whose metric impacts can cascade into further events.

Text generation, similarity search, metrics and district storage are
injected collaborators. In-memory implementations are included so the
engine runs standalone.
"""

__version__ = "0.1.0"

# Main engine components
from .engine import CityEngine, CityEventEngine, interaction_probability
from .scheduler import TaskScheduler, ScheduledJob
from .clock import Clock, SystemClock, SimulatedClock, time_of_day
from .bus import (
    EventBus,
    CONVERSATION_STARTED,
    MESSAGE_ADDED,
    CONVERSATION_ENDED,
    EVENT_GENERATED,
    EVENT_RESOLVED,
)
from .randomness import RandomSource, ScriptedRandom

# Agents and conversations
from .routines import ActivityRegistry, STATIC_ROUTINE, IDLE_ACTIVITY
from .compatibility import CompatibilityScorer, compatibility_score
from .conversations import ConversationManager

# Events
from .events import EVENT_CATALOG, EventSelector, DistrictTargeter, template_by_title
from .impacts import ImpactPropagator, build_update
from .cascade import CascadeScheduler, derive_secondary

# Collaborator interfaces
from .collaborators import (
    TextGenerator,
    SearchIndex,
    InMemorySearchIndex,
    MetricsSink,
    InMemoryMetrics,
    DistrictDirectory,
    InMemoryDistrictDirectory,
    ContextProvider,
    DistrictContextProvider,
)
from .persistence import ConversationStore, InMemoryConversationStore, JsonConversationStore
from .llm_utils import LLMTextGenerator

# Errors
from .errors import (
    CityPulseError,
    DistrictNotFoundError,
    NoDistrictsAvailableError,
    AgentNotFoundError,
    ConversationNotFoundError,
    EventNotFoundError,
    ParticipantBusyError,
)

# Core schemas
from .schemas import (
    Agent,
    AgentTraits,
    RoutineEntry,
    SocialProfile,
    PersonalityProfile,
    District,
    CulturalContext,
    SocialMood,
    ConversationContext,
    Conversation,
    ConversationStatus,
    Message,
    EventTemplate,
    MetricImpact,
    CascadeSpec,
    TimeContext,
    ActiveEvent,
    Priority,
    SpreadPattern,
    TimeOfDay,
)

__all__ = [
    # Engine
    "CityEngine",
    "CityEventEngine",
    "interaction_probability",
    "TaskScheduler",
    "ScheduledJob",
    "Clock",
    "SystemClock",
    "SimulatedClock",
    "time_of_day",
    "EventBus",
    "CONVERSATION_STARTED",
    "MESSAGE_ADDED",
    "CONVERSATION_ENDED",
    "EVENT_GENERATED",
    "EVENT_RESOLVED",
    "RandomSource",
    "ScriptedRandom",
    # Agents and conversations
    "ActivityRegistry",
    "STATIC_ROUTINE",
    "IDLE_ACTIVITY",
    "CompatibilityScorer",
    "compatibility_score",
    "ConversationManager",
    # Events
    "EVENT_CATALOG",
    "EventSelector",
    "DistrictTargeter",
    "template_by_title",
    "ImpactPropagator",
    "build_update",
    "CascadeScheduler",
    "derive_secondary",
    # Collaborators
    "TextGenerator",
    "SearchIndex",
    "InMemorySearchIndex",
    "MetricsSink",
    "InMemoryMetrics",
    "DistrictDirectory",
    "InMemoryDistrictDirectory",
    "ContextProvider",
    "DistrictContextProvider",
    "ConversationStore",
    "InMemoryConversationStore",
    "JsonConversationStore",
    "LLMTextGenerator",
    # Errors
    "CityPulseError",
    "DistrictNotFoundError",
    "NoDistrictsAvailableError",
    "AgentNotFoundError",
    "ConversationNotFoundError",
    "EventNotFoundError",
    "ParticipantBusyError",
    # Schemas
    "Agent",
    "AgentTraits",
    "RoutineEntry",
    "SocialProfile",
    "PersonalityProfile",
    "District",
    "CulturalContext",
    "SocialMood",
    "ConversationContext",
    "Conversation",
    "ConversationStatus",
    "Message",
    "EventTemplate",
    "MetricImpact",
    "CascadeSpec",
    "TimeContext",
    "ActiveEvent",
    "Priority",
    "SpreadPattern",
    "TimeOfDay",
]
