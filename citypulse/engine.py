"""
Engine wiring: the event pipeline and the periodic city tasks.

``CityEventEngine`` runs one event end to end:

    select template -> target district -> index event -> apply impacts
    -> record active event -> record agent visits -> arm cascades -> publish

``CityEngine`` owns the registry, scorer, conversation manager and event
engine, and registers the five periodic tasks with a ``TaskScheduler``:

    activity_reassignment     every ACTIVITY_INTERVAL_SECONDS
    conversation_discovery    every DISCOVERY_INTERVAL_SECONDS
    social_graph_maintenance  every SOCIAL_GRAPH_INTERVAL_SECONDS
    conversation_aging        every AGING_INTERVAL_SECONDS
    event_generation          every EVENT_INTERVAL_SECONDS, fires with EVENT_PROBABILITY
"""

from __future__ import annotations

from collections import OrderedDict
from typing import Dict, Iterable, List, Optional

from .bus import EVENT_GENERATED, EVENT_RESOLVED, EventBus
from .cascade import CascadeScheduler
from .clock import Clock, SystemClock
from .collaborators import (
    ContextProvider,
    DistrictContextProvider,
    DistrictDirectory,
    MetricsSink,
    SearchIndex,
    TextGenerator,
)
from .compatibility import CompatibilityScorer
from .config import Config
from .conversations import ConversationManager
from .errors import EventNotFoundError, ParticipantBusyError
from .events import DistrictTargeter, EventSelector
from .impacts import ImpactPropagator
from .logging_utils import log_deterministic, log_error, log_info, log_success
from .persistence import ConversationStore
from .randomness import RandomSource
from .routines import ActivityRegistry, activity_key
from .scheduler import TaskScheduler
from .schemas import (
    ActiveEvent,
    Agent,
    Conversation,
    ConversationContext,
    CulturalContext,
    EventTemplate,
    RoutineEntry,
    SocialMood,
    SocialProfile,
)

BASE_INTERACTION_PROBABILITY = 0.3
ACTIVITY_MODIFIERS: Dict[str, float] = {
    "morning_coffee": 0.4,
    "lunch_break": 0.5,
    "cultural_event": 0.6,
    "evening_leisure": 0.4,
}
ENGAGEMENT_WEIGHT = 0.2
CULTURAL_EVENT_BONUS = 0.2
MAX_INTERACTION_PROBABILITY = 0.9


def interaction_probability(activity: str, mood: SocialMood, cultural: CulturalContext) -> float:
    """Chance that an activity bucket starts a conversation this discovery tick."""
    probability = BASE_INTERACTION_PROBABILITY + ACTIVITY_MODIFIERS.get(activity_key(activity), 0.0)
    probability += mood.engagement * ENGAGEMENT_WEIGHT
    if cultural.events:
        probability += CULTURAL_EVENT_BONUS
    return min(MAX_INTERACTION_PROBABILITY, probability)


# ============================================================================
# Event pipeline
# ============================================================================


class CityEventEngine:
    """Generates, tracks and resolves city events."""

    def __init__(
        self,
        directory: DistrictDirectory,
        metrics: MetricsSink,
        scheduler: TaskScheduler,
        bus: EventBus,
        *,
        search_index: Optional[SearchIndex] = None,
        rng: Optional[RandomSource] = None,
        selector: Optional[EventSelector] = None,
        max_cascade_depth: Optional[int] = None,
        active_limit: Optional[int] = None,
    ) -> None:
        self.directory = directory
        self.scheduler = scheduler
        self.clock = scheduler.clock
        self.bus = bus
        self.search_index = search_index
        self.rng = rng or RandomSource()
        self.selector = selector or EventSelector(rng=self.rng)
        self.targeter = DistrictTargeter(directory, search_index, self.rng)
        self.propagator = ImpactPropagator(metrics)
        self.cascade = CascadeScheduler(scheduler, self.rng, max_depth=max_cascade_depth)
        self.active_limit = active_limit or Config.ACTIVE_EVENT_LIMIT
        self.active_events: "OrderedDict[str, ActiveEvent]" = OrderedDict()
        self.weather: Optional[str] = None

    def get_active_events(self) -> List[ActiveEvent]:
        return list(self.active_events.values())

    def current_event_titles(self) -> List[str]:
        return [active.event.title for active in self.active_events.values()]

    async def generate_event(
        self,
        template: Optional[EventTemplate] = None,
        depth: int = 0,
        *,
        weather: Optional[str] = None,
    ) -> ActiveEvent:
        """Run one event through the full pipeline.

        ``weather`` overrides the engine's current weather label for template
        selection; it has no effect when ``template`` is given.

        Raises:
            NoDistrictsAvailableError: If no district is registered.
        """
        now = self.clock.now()
        event = template or self.selector.select(now, weather or self.weather)
        district = await self.targeter.target(event)

        if self.search_index is not None:
            try:
                vector = await self.search_index.embed(
                    f"{event.title} {event.description} priority:{event.priority.value} "
                    f"district:{district.name}"
                )
                await self.search_index.upsert(
                    f"event-{event.id}",
                    vector,
                    {
                        "type": "event",
                        "event_id": event.id,
                        "priority": event.priority.value,
                        "district_id": district.id,
                        "timestamp": now.isoformat(),
                        "cascading": depth > 0,
                    },
                )
            except Exception as exc:
                log_error(f"Could not index event '{event.title}': {exc}")

        try:
            await self.propagator.apply(event)
        except Exception as exc:
            log_error(f"Metric update failed for '{event.title}', skipping propagation: {exc}")

        active = ActiveEvent(event=event, district_id=district.id, created_at=now, depth=depth)
        self.active_events[event.id] = active
        while len(self.active_events) > self.active_limit:
            _, evicted = self.active_events.popitem(last=False)
            log_deterministic(f"Active event index full, evicted '{evicted.event.title}'")

        for agent_id in event.required_agents:
            try:
                await self.directory.record_agent_visit(district.id, agent_id)
            except Exception as exc:
                log_error(f"Could not record visit of {agent_id}: {exc}")

        self.cascade.handle(active, self.generate_event)

        log_success(
            f"Event '{event.title}' ({event.priority.value}, severity {event.severity:.2f}) "
            f"hit {district.name}" + (f" [cascade depth {depth}]" if depth else "")
        )
        self.bus.publish(
            EVENT_GENERATED,
            {
                "event": event.model_dump(mode="json"),
                "district_id": district.id,
                "depth": depth,
                "timestamp": now.isoformat(),
            },
        )
        return active

    async def resolve_event(self, event_id: str) -> ActiveEvent:
        """Revert an event's impacts and drop it from the index.

        Raises:
            EventNotFoundError: If ``event_id`` is not active.
        """
        active = self.active_events.get(event_id)
        if active is None:
            raise EventNotFoundError(event_id)
        await self.propagator.revert(active.event)
        del self.active_events[event_id]
        log_info(f"Event '{active.event.title}' resolved")
        self.bus.publish(
            EVENT_RESOLVED,
            {"event_id": event_id, "district_id": active.district_id, "timestamp": self.clock.now().isoformat()},
        )
        return active


# ============================================================================
# City engine
# ============================================================================


class CityEngine:
    """Wires collaborators into the registry, conversation and event components."""

    def __init__(
        self,
        directory: DistrictDirectory,
        metrics: MetricsSink,
        *,
        search_index: Optional[SearchIndex] = None,
        text_generator: Optional[TextGenerator] = None,
        store: Optional[ConversationStore] = None,
        context_provider: Optional[ContextProvider] = None,
        clock: Optional[Clock] = None,
        rng: Optional[RandomSource] = None,
        bus: Optional[EventBus] = None,
        event_probability: Optional[float] = None,
        weather: Optional[str] = None,
    ) -> None:
        self.directory = directory
        self.clock = clock or SystemClock()
        self.rng = rng or RandomSource()
        self.bus = bus or EventBus()
        self.store = store
        self.context_provider = context_provider or DistrictContextProvider(directory)
        self.event_probability = (
            Config.EVENT_PROBABILITY if event_probability is None else event_probability
        )

        self.scheduler = TaskScheduler(self.clock)
        self.registry = ActivityRegistry(text_generator, search_index)
        self.scorer = CompatibilityScorer(self.registry, self.rng)
        self.conversations = ConversationManager(
            self.registry,
            self.bus,
            self.clock,
            directory=directory,
            store=store,
            text_generator=text_generator,
            rng=self.rng,
        )
        self.events = CityEventEngine(
            directory,
            metrics,
            self.scheduler,
            self.bus,
            search_index=search_index,
            rng=self.rng,
        )
        self.events.weather = weather
        self._tasks_registered = False

    # ------------------------------------------------------------------
    # Agents
    # ------------------------------------------------------------------

    async def register_agent(
        self,
        agent: Agent,
        *,
        regular_locations: Optional[Iterable[str]] = None,
        routines: Optional[List[RoutineEntry]] = None,
    ) -> SocialProfile:
        return await self.registry.register_agent(
            agent, regular_locations=regular_locations, routines=routines
        )

    # ------------------------------------------------------------------
    # Periodic task bodies
    # ------------------------------------------------------------------

    async def reassign_activities(self) -> Dict[str, Dict[str, List[str]]]:
        hour = self.clock.now().hour
        groupings: Dict[str, Dict[str, List[str]]] = {}
        for district in await self.directory.get_all_districts():
            groupings[district.id] = self.registry.group_by_activity(district.id, hour)
        return groupings

    async def discover_conversations(self) -> List[Conversation]:
        """Roll for a conversation in every activity bucket with two free agents."""
        opened: List[Conversation] = []
        for district in await self.directory.get_all_districts():
            groups = self.registry.district_activities.get(district.id)
            if groups is None:
                groups = self.registry.group_by_activity(district.id, self.clock.now().hour)
            if not any(len(self.conversations.available(ids)) >= 2 for ids in groups.values()):
                continue

            try:
                cultural = await self.context_provider.get_cultural_context(district.id)
                mood = await self.context_provider.get_social_mood(district.id)
            except Exception as exc:
                log_error(f"No context for district {district.name}, skipping discovery: {exc}")
                continue

            for activity, agent_ids in groups.items():
                candidates = self.conversations.available(agent_ids)
                if len(candidates) < 2:
                    continue
                if not self.rng.chance(interaction_probability(activity, mood, cultural)):
                    continue
                group = self.scorer.select_group(candidates, activity, cultural)
                context = ConversationContext(
                    district_id=district.id,
                    activity=activity,
                    social_mood=mood,
                    cultural_context=cultural,
                )
                try:
                    opened.append(await self.conversations.open_conversation(group, context))
                except ParticipantBusyError as exc:
                    log_deterministic(f"Skipped {activity} in {district.name}: {exc}")
        return opened

    async def maintain_social_graph(self) -> int:
        return self.registry.maintain_social_graph(self.clock.now())

    async def age_conversations(self) -> Dict[str, int]:
        return await self.conversations.age_conversations()

    def set_weather(self, label: Optional[str]) -> None:
        """Current weather label; adverse weather favours weather-sensitive events."""
        self.events.weather = label

    async def maybe_generate_event(self) -> Optional[ActiveEvent]:
        if not self.rng.chance(self.event_probability):
            return None
        return await self.events.generate_event()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def schedule_tasks(self) -> None:
        if self._tasks_registered:
            return
        self.scheduler.every("activity_reassignment", Config.ACTIVITY_INTERVAL_SECONDS, self.reassign_activities)
        self.scheduler.every("conversation_discovery", Config.DISCOVERY_INTERVAL_SECONDS, self.discover_conversations)
        self.scheduler.every(
            "social_graph_maintenance", Config.SOCIAL_GRAPH_INTERVAL_SECONDS, self.maintain_social_graph
        )
        self.scheduler.every("conversation_aging", Config.AGING_INTERVAL_SECONDS, self.age_conversations)
        self.scheduler.every("event_generation", Config.EVENT_INTERVAL_SECONDS, self.maybe_generate_event)
        self._tasks_registered = True
        log_deterministic("Registered 5 periodic tasks")

    async def start(self) -> None:
        """Open the store and run the scheduler until ``stop()``."""
        if self.store is not None:
            await self.store.initialize()
        self.schedule_tasks()
        await self.scheduler.run()

    async def advance(self, seconds: float) -> int:
        """Simulation-time driver (requires a ``SimulatedClock``)."""
        self.schedule_tasks()
        executed = await self.scheduler.advance(seconds)
        await self.bus.drain()
        return executed

    def stop(self) -> None:
        self.scheduler.stop()

    async def close(self) -> None:
        await self.bus.drain()
        if self.store is not None:
            await self.store.close()
