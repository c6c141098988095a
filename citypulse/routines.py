"""Activity registry: agent profiles, daily routines and the social graph.

Every registered agent owns exactly one ``SocialProfile``. The registry is
the only writer of those profiles:

- ``register_agent`` builds the profile and asks the text generator for a
  five-entry routine (static template on any failure)
- ``group_by_activity`` partitions a district's agents by what their routine
  says they are doing this hour
- ``record_interaction`` / ``maintain_social_graph`` keep the bounded
  interaction history and derive friendships from it
"""

from __future__ import annotations

import json
import re
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional

from pydantic import ValidationError

from .collaborators import SearchIndex, TextGenerator
from .config import Config
from .errors import AgentNotFoundError
from .logging_utils import log_deterministic, log_error, log_llm
from .schemas import (
    Agent,
    AgentInteraction,
    PersonalityProfile,
    RoutineEntry,
    RoutinePlan,
    SocialProfile,
    clamp_unit,
)

IDLE_ACTIVITY = "idle"

STATIC_ROUTINE: tuple[RoutineEntry, ...] = (
    RoutineEntry(
        time_slot=9,
        activity="Morning Activity",
        location="District Center",
        topics=("weather", "news", "community"),
        social_probability=0.7,
    ),
    RoutineEntry(
        time_slot=12,
        activity="Lunch Break",
        location="Local Café",
        topics=("food", "culture", "events"),
        social_probability=0.8,
    ),
    RoutineEntry(
        time_slot=15,
        activity="Afternoon Work",
        location="Office",
        topics=("projects", "collaboration"),
        social_probability=0.6,
    ),
    RoutineEntry(
        time_slot=17,
        activity="Community Meeting",
        location="Community Center",
        topics=("development", "planning"),
        social_probability=0.9,
    ),
    RoutineEntry(
        time_slot=19,
        activity="Evening Recreation",
        location="Park",
        topics=("leisure", "hobbies"),
        social_probability=0.7,
    ),
)

ROUTINE_SYSTEM_PROMPT = (
    "You are a schedule generator. Respond only with a JSON object of the form "
    '{"routines": [{"time_slot": 0-23, "activity": str, "location": str, '
    '"topics": [str], "social_probability": 0-1}]}. Generate exactly 5 entries.'
)

_FENCE = re.compile(r"```(?:json)?", re.IGNORECASE)
_CAMEL_KEYS = {
    "timeSlot": "time_slot",
    "possibleTopics": "topics",
    "socialProbability": "social_probability",
}


def activity_key(label: str) -> str:
    """Normalise an activity label: ``"Lunch Break"`` -> ``"lunch_break"``."""
    return re.sub(r"[\s\-]+", "_", label.strip().lower())


def static_routine() -> List[RoutineEntry]:
    return list(STATIC_ROUTINE)


def parse_routine_text(text: str) -> List[RoutineEntry]:
    """Parse generator output into exactly five routine entries.

    Accepts either ``{"routines": [...]}`` or a bare JSON array, with or
    without Markdown code fences, and camelCase keys.

    Raises:
        ValueError: If the text is not JSON.
        ValidationError: If the entries do not match ``RoutineEntry``.
    """
    cleaned = _FENCE.sub("", text).strip()
    payload = json.loads(cleaned)
    if isinstance(payload, list):
        payload = {"routines": payload}
    if isinstance(payload, dict) and isinstance(payload.get("routines"), list):
        payload["routines"] = [
            {_CAMEL_KEYS.get(key, key): value for key, value in entry.items()}
            if isinstance(entry, dict)
            else entry
            for entry in payload["routines"]
        ]
    return RoutinePlan.model_validate(payload).routines


class ActivityRegistry:
    """Registered agents, their social profiles and per-district activity groupings."""

    def __init__(
        self,
        text_generator: Optional[TextGenerator] = None,
        search_index: Optional[SearchIndex] = None,
        *,
        interaction_limit: Optional[int] = None,
        retention_seconds: Optional[float] = None,
        friendship_threshold: Optional[float] = None,
    ) -> None:
        self.text_generator = text_generator
        self.search_index = search_index
        self.interaction_limit = interaction_limit or Config.INTERACTION_HISTORY_LIMIT
        self.retention_seconds = (
            retention_seconds if retention_seconds is not None else Config.INTERACTION_RETENTION_SECONDS
        )
        self.friendship_threshold = (
            friendship_threshold
            if friendship_threshold is not None
            else Config.FRIENDSHIP_SENTIMENT_THRESHOLD
        )
        self.agents: Dict[str, Agent] = {}
        self.profiles: Dict[str, SocialProfile] = {}
        # Last grouping per district: activity label -> agent ids
        self.district_activities: Dict[str, Dict[str, List[str]]] = {}

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    async def register_agent(
        self,
        agent: Agent,
        *,
        regular_locations: Optional[Iterable[str]] = None,
        routines: Optional[List[RoutineEntry]] = None,
    ) -> SocialProfile:
        """Register ``agent`` and build its social profile.

        Re-registering an agent replaces its profile wholesale. When
        ``routines`` is omitted the text generator is asked for one.
        """
        if regular_locations is None:
            regular_locations = [agent.district_id] if agent.district_id else []
        if routines is None:
            routines = await self.generate_routines(agent)

        profile = SocialProfile(
            regular_locations=list(regular_locations),
            cultural_preferences=list(agent.interests),
            routines=list(routines),
            personality=PersonalityProfile.from_traits(agent.traits),
        )
        self.agents[agent.id] = agent
        self.profiles[agent.id] = profile
        log_deterministic(
            f"Registered {agent.name} ({agent.role}) with {len(profile.routines)} routine entries"
        )
        return profile

    async def generate_routines(self, agent: Agent) -> List[RoutineEntry]:
        """Ask the text generator for a routine, falling back to the static template."""
        cached = await self._cached_routines(agent)
        if cached is not None:
            return cached

        if self.text_generator is None:
            return static_routine()

        prompt = (
            f"Generate a daily schedule for {agent.name} ({agent.role}). "
            f"Personality: {agent.personality or 'unspecified'}. "
            f"Interests: {', '.join(agent.interests) or 'none listed'}."
        )
        log_llm(f"Generating routine for {agent.name}")
        try:
            text = await self.text_generator.generate(prompt, system_prompt=ROUTINE_SYSTEM_PROMPT)
            routines = parse_routine_text(text)
        except (ValueError, ValidationError) as exc:
            log_error(f"Routine for {agent.name} did not parse, using static template: {exc}")
            return static_routine()
        except Exception as exc:
            log_error(f"Routine generation failed for {agent.name}, using static template: {exc}")
            return static_routine()

        await self._cache_routines(agent, routines)
        return routines

    async def _cached_routines(self, agent: Agent) -> Optional[List[RoutineEntry]]:
        if self.search_index is None:
            return None
        try:
            vector = await self.search_index.embed(f"{agent.role} {agent.personality} routines")
            matches = await self.search_index.query(
                vector, filter={"type": "agent_routine", "agent_id": agent.id}, top_k=1
            )
            if matches and matches[0].metadata.get("routines"):
                return parse_routine_text(matches[0].metadata["routines"])
        except Exception as exc:
            log_error(f"Routine cache lookup failed for {agent.name}: {exc}")
        return None

    async def _cache_routines(self, agent: Agent, routines: List[RoutineEntry]) -> None:
        if self.search_index is None:
            return
        payload = json.dumps({"routines": [entry.model_dump(mode="json") for entry in routines]})
        try:
            vector = await self.search_index.embed(f"{agent.role} {agent.personality} routines")
            await self.search_index.upsert(
                f"routine-{agent.id}",
                vector,
                {"type": "agent_routine", "agent_id": agent.id, "routines": payload},
            )
        except Exception as exc:
            log_error(f"Routine cache write failed for {agent.name}: {exc}")

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def get_agent(self, agent_id: str) -> Agent:
        agent = self.agents.get(agent_id)
        if agent is None:
            raise AgentNotFoundError(agent_id)
        return agent

    def get_profile(self, agent_id: str) -> SocialProfile:
        profile = self.profiles.get(agent_id)
        if profile is None:
            raise AgentNotFoundError(agent_id)
        return profile

    def routine_for(self, agent_id: str, hour: int) -> Optional[RoutineEntry]:
        return self.get_profile(agent_id).routine_at(hour)

    def agents_in_district(self, district_id: str) -> List[str]:
        return [
            agent_id
            for agent_id, profile in self.profiles.items()
            if district_id in profile.regular_locations
        ]

    # ------------------------------------------------------------------
    # Activity grouping
    # ------------------------------------------------------------------

    def group_by_activity(self, district_id: str, hour: int) -> Dict[str, List[str]]:
        """Partition the district's agents by their routine activity at ``hour``.

        Agents without an entry for the hour land in the ``idle`` bucket.
        Insertion order follows registration order.
        """
        groups: Dict[str, List[str]] = {}
        for agent_id in self.agents_in_district(district_id):
            entry = self.profiles[agent_id].routine_at(hour)
            label = entry.activity if entry is not None else IDLE_ACTIVITY
            groups.setdefault(label, []).append(agent_id)
        self.district_activities[district_id] = groups
        return groups

    # ------------------------------------------------------------------
    # Social graph
    # ------------------------------------------------------------------

    def record_interaction(
        self,
        agent_id: str,
        other_id: str,
        sentiment: float,
        timestamp: datetime,
        kind: str = "conversation",
    ) -> None:
        profile = self.get_profile(agent_id)
        profile.recent_interactions.append(
            AgentInteraction(
                agent_id=other_id, kind=kind, sentiment=clamp_unit(sentiment), timestamp=timestamp
            )
        )
        overflow = len(profile.recent_interactions) - self.interaction_limit
        if overflow > 0:
            del profile.recent_interactions[:overflow]

    def maintain_social_graph(self, now: datetime) -> int:
        """Drop stale interactions and promote warm contacts to friends.

        Returns the number of friendships added.
        """
        cutoff = now - timedelta(seconds=self.retention_seconds)
        added = 0
        for profile in self.profiles.values():
            profile.recent_interactions = [
                interaction
                for interaction in profile.recent_interactions
                if interaction.timestamp >= cutoff
            ]
            for interaction in profile.recent_interactions:
                if (
                    interaction.sentiment > self.friendship_threshold
                    and interaction.agent_id not in profile.friends
                ):
                    profile.friends.add(interaction.agent_id)
                    added += 1
        if added:
            log_deterministic(f"Social graph maintenance added {added} friendship(s)")
        return added
