"""
Conversation lifecycle manager.

Owns every conversation from the moment participants are chosen until it is
completed and archived. State machine is one-way:

    active --(idle timeout | max duration | max messages | explicit)--> completed

Invariants maintained here:
- an agent id appears in at most one active conversation
- message timestamps strictly increase within a conversation
- conversation sentiment is the mean of the last three message sentiments

Text generation is optional. Openers fall back to a contextual greeting and
turns fall back to the best-scoring templated candidate, so a provider
outage never stops a conversation.
"""

from __future__ import annotations

import asyncio
import re
from collections import deque
from datetime import datetime, timedelta
from typing import Deque, Dict, List, Optional, Sequence
from uuid import uuid4

from .bus import CONVERSATION_ENDED, CONVERSATION_STARTED, MESSAGE_ADDED, EventBus
from .clock import Clock, time_of_day
from .collaborators import DistrictDirectory, TextGenerator
from .config import Config
from .errors import ConversationNotFoundError, ParticipantBusyError
from .logging_utils import log_deterministic, log_error, log_info, log_llm, verbose_enabled
from .persistence import ConversationStore
from .randomness import RandomSource
from .routines import ActivityRegistry, activity_key
from .schemas import (
    Agent,
    Conversation,
    ConversationContext,
    ConversationStatus,
    CulturalSnapshot,
    Message,
    SocialProfile,
    SocialSnapshot,
    clamp_unit,
)


# ============================================================================
# Static content pools (keyed by normalised activity label)
# ============================================================================

LOCATION_POOLS: Dict[str, tuple[str, ...]] = {
    "morning_coffee": ("Local Café", "Coffee Shop", "Breakfast Diner"),
    "lunch_break": ("Restaurant", "Food Court", "Park"),
    "cultural_event": ("Community Center", "Cultural Hub", "Event Space"),
    "evening_leisure": ("Plaza", "Park", "Recreation Center"),
}
DEFAULT_LOCATIONS = ("District Center",)

TOPIC_POOLS: Dict[str, tuple[str, ...]] = {
    "morning_coffee": ("local cafe scene", "morning routines", "district development"),
    "lunch_break": ("local restaurants", "food culture", "community gatherings"),
    "evening_leisure": ("entertainment venues", "community events", "district lifestyle"),
    "cultural_event": ("cultural festivals", "local traditions", "arts and culture"),
}
DEFAULT_TOPICS = ("district life",)

ACTIVITY_GREETINGS: Dict[str, tuple[str, ...]] = {
    "morning_coffee": ("The coffee smells amazing today!", "Nothing better than starting the day here."),
    "lunch_break": ("The lunch crowd is lively today!", "Have you tried today's special?"),
    "evening_leisure": (
        "Such a pleasant evening for relaxing here.",
        "The sunset view from here is beautiful.",
    ),
    "cultural_event": (
        "The atmosphere is wonderful tonight!",
        "These events really bring the community together.",
    ),
}

ACTIVITY_RESPONSES: Dict[str, tuple[str, ...]] = {
    "morning_coffee": (
        "This is my favorite way to start the day.",
        "The morning atmosphere here is so energizing.",
    ),
    "lunch_break": ("The local food scene keeps getting better!", "Have you tried any new spots lately?"),
    "evening_leisure": (
        "Nothing better than unwinding here after a busy day.",
        "The evening crowd here is always so pleasant.",
    ),
    "cultural_event": (
        "These events really showcase our district's character.",
        "I'm always impressed by our local cultural initiatives.",
    ),
}
DEFAULT_ACTIVITY_RESPONSES = ("It's nice being here.", "The atmosphere is great today.")

EXPRESSIVE_MARKER = " 😊"
CULTURAL_QUESTION = " What's your take on our district's cultural scene?"
COMMUNITY_REMARK = " I love how our community comes together here."
TRAIT_THRESHOLD = 0.7

HISTORY_WINDOW = timedelta(days=7)


# ============================================================================
# Text analysis
# ============================================================================

_POSITIVE = frozenset(
    "amazing beautiful best energizing enjoy enjoyed excellent fantastic favorite glad good great "
    "happy impressed impressive love lovely lively nice perfect pleasant positive proud thanks "
    "vibrant welcome wonderful".split()
)
_NEGATIVE = frozenset(
    "angry annoying awful bad boring concerned crowded disappointed dislike hate noisy poor "
    "problem sad stressful terrible tired unhappy unsafe upset worried worse worst".split()
)
_WORD = re.compile(r"[a-z']+")

TOPIC_PATTERNS: Dict[str, re.Pattern[str]] = {
    "technology": re.compile(
        r"\b(tech|computer|software|hardware|ai|digital|code|programming|internet)\b", re.I
    ),
    "science": re.compile(
        r"\b(science|physics|chemistry|biology|research|experiment|theory|scientific)\b", re.I
    ),
    "philosophy": re.compile(
        r"\b(philosophy|existence|consciousness|reality|truth|meaning|ethics|moral)\b", re.I
    ),
    "nature": re.compile(
        r"\b(nature|environment|climate|weather|ecosystem|planet|earth|natural)\b", re.I
    ),
    "arts": re.compile(r"\b(art|music|literature|poetry|creative|artistic|culture|design)\b", re.I),
    "community": re.compile(r"\b(community|neighbou?rs?|together|district|gathering)\b", re.I),
    "food": re.compile(r"\b(food|lunch|coffee|restaurant|cafe|café|breakfast|dinner)\b", re.I),
}


def estimate_sentiment(text: str) -> float:
    """Lexicon sentiment in [0, 1]; 0.5 is neutral."""
    words = _WORD.findall(text.lower())
    positive = sum(1 for word in words if word in _POSITIVE)
    negative = sum(1 for word in words if word in _NEGATIVE)
    return clamp_unit(0.5 + 0.1 * (positive - negative))


def detect_topics(text: str) -> List[str]:
    return [topic for topic, pattern in TOPIC_PATTERNS.items() if pattern.search(text)]


def conversation_sentiment(messages: Sequence[Message]) -> float:
    """Mean sentiment of the last (up to) three messages; unset counts as neutral."""
    recent = messages[-3:]
    if not recent:
        return 0.5
    values = [0.5 if m.sentiment is None else m.sentiment for m in recent]
    return clamp_unit(sum(values) / len(values))


def personalize(text: str, profile: SocialProfile) -> str:
    """Append trait-driven markers to an utterance."""
    personality = profile.personality
    if personality.extroversion > TRAIT_THRESHOLD:
        text += EXPRESSIVE_MARKER
    if personality.cultural_openness > TRAIT_THRESHOLD:
        text += CULTURAL_QUESTION
    if personality.community_orientation > TRAIT_THRESHOLD:
        text += COMMUNITY_REMARK
    return text


def score_response(candidate: str, topic: str, agent: Agent) -> float:
    """Relevance of a templated candidate to the topic and the speaker's traits."""
    score = 0.0
    if topic and topic.lower() in candidate.lower():
        score += 0.3
    traits = agent.traits
    if traits.empathy > TRAIT_THRESHOLD and "community" in candidate:
        score += 0.2
    if traits.creativity > TRAIT_THRESHOLD and "unique" in candidate:
        score += 0.2
    if traits.enthusiasm > TRAIT_THRESHOLD and "great" in candidate:
        score += 0.2
    return score


def select_best_response(candidates: Sequence[str], topic: str, agent: Agent) -> str:
    """Highest-scoring candidate; the earliest one wins ties."""
    best, best_score = candidates[0], score_response(candidates[0], topic, agent)
    for candidate in candidates[1:]:
        candidate_score = score_response(candidate, topic, agent)
        if candidate_score > best_score:
            best, best_score = candidate, candidate_score
    return best


# ============================================================================
# Manager
# ============================================================================


class ConversationManager:
    """Opens, continues, ages and completes conversations."""

    def __init__(
        self,
        registry: ActivityRegistry,
        bus: EventBus,
        clock: Clock,
        *,
        directory: Optional[DistrictDirectory] = None,
        store: Optional[ConversationStore] = None,
        text_generator: Optional[TextGenerator] = None,
        rng: Optional[RandomSource] = None,
        llm_responses: Optional[bool] = None,
        generation_timeout: Optional[float] = None,
        history_limit: Optional[int] = None,
    ) -> None:
        self.registry = registry
        self.bus = bus
        self.clock = clock
        self.directory = directory
        self.store = store
        self.text_generator = text_generator
        self.rng = rng or RandomSource()
        self.llm_responses = Config.LLM_RESPONSES if llm_responses is None else llm_responses
        self.generation_timeout = generation_timeout or Config.TEXT_GENERATION_TIMEOUT_SECONDS
        self.active: Dict[str, Conversation] = {}
        self.completed: Deque[Conversation] = deque(
            maxlen=history_limit or Config.CONVERSATION_HISTORY_LIMIT
        )
        # agent id -> active conversation id
        self._busy: Dict[str, str] = {}

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def is_busy(self, agent_id: str) -> bool:
        return agent_id in self._busy

    def available(self, agent_ids: Sequence[str]) -> List[str]:
        """Filter ``agent_ids`` down to agents not in an active conversation."""
        return [agent_id for agent_id in agent_ids if agent_id not in self._busy]

    def get_conversation(self, conversation_id: str) -> Conversation:
        conversation = self.active.get(conversation_id)
        if conversation is None:
            raise ConversationNotFoundError(conversation_id)
        return conversation

    def active_conversations(self) -> List[Conversation]:
        return list(self.active.values())

    # ------------------------------------------------------------------
    # Open
    # ------------------------------------------------------------------

    async def open_conversation(
        self, participants: Sequence[str], context: ConversationContext
    ) -> Conversation:
        """Open a conversation and emit its opening message.

        Raises:
            ValueError: Fewer than two distinct participants.
            AgentNotFoundError: A participant was never registered.
            ParticipantBusyError: A participant is already in an active conversation.
        """
        participants = tuple(dict.fromkeys(participants))
        if len(participants) < 2:
            raise ValueError("A conversation needs at least two distinct participants")
        agents = [self.registry.get_agent(agent_id) for agent_id in participants]
        busy = [agent_id for agent_id in participants if agent_id in self._busy]
        if busy:
            raise ParticipantBusyError(busy)

        now = self.clock.now()
        key = activity_key(context.activity)
        cultural = context.cultural_context
        conversation = Conversation(
            id=f"conv-{uuid4().hex[:12]}",
            participants=participants,
            topic=self._choose_topic(key, context),
            district_id=context.district_id,
            location=self.rng.choice(LOCATION_POOLS.get(key, DEFAULT_LOCATIONS)),
            activity=context.activity,
            started_at=now,
            last_update=now,
            social_context=SocialSnapshot(
                community_mood=context.social_mood.positivity,
                engagement=context.social_mood.engagement,
                activity_type=context.activity,
                participants=len(participants),
            ),
            cultural_context=CulturalSnapshot(
                current_events=list(cultural.events), traditions=list(cultural.traditions)
            ),
        )
        # Claim participants before the first await so concurrent ticks see them busy
        self.active[conversation.id] = conversation
        for agent_id in participants:
            self._busy[agent_id] = conversation.id

        log_deterministic(
            f"Conversation {conversation.id} opened at {conversation.location} "
            f"({context.activity}) about '{conversation.topic}' with "
            + ", ".join(agent.name for agent in agents)
        )
        self.bus.publish(
            CONVERSATION_STARTED,
            {
                "conversation_id": conversation.id,
                "district_id": conversation.district_id,
                "participants": list(participants),
                "location": conversation.location,
                "activity": conversation.activity,
                "topic": conversation.topic,
                "timestamp": now.isoformat(),
            },
        )

        opener = await self._opening_text(agents[0], conversation)
        self._append_message(conversation, agents[0].id, opener)

        if self.directory is not None:
            try:
                await self.directory.track_conversation(conversation.district_id, conversation.summary())
            except Exception as exc:
                log_error(f"Could not report conversation {conversation.id} to district directory: {exc}")

        return conversation

    def _choose_topic(self, key: str, context: ConversationContext) -> str:
        cultural = context.cultural_context
        for event in cultural.events:
            title = event.get("title")
            if isinstance(title, str) and title:
                return title
        pool = list(TOPIC_POOLS.get(key, DEFAULT_TOPICS)) + list(cultural.traditions)
        return self.rng.choice(pool)

    async def _opening_text(self, initiator: Agent, conversation: Conversation) -> str:
        profile = self.registry.get_profile(initiator.id)
        text: Optional[str] = None
        if self.text_generator is not None:
            system_prompt = (
                f"You are {initiator.name}, a {initiator.role} with the following personality: "
                f"{initiator.personality or 'friendly'}. Generate a natural conversation opener "
                "(1-2 sentences) that fits your character and the context."
            )
            prompt = (
                f"You are starting a conversation at {conversation.location} during "
                f"{conversation.activity}. The topic is: {conversation.topic}"
            )
            text = await self._generate(prompt, system_prompt, f"opener for {conversation.id}")
        if not text:
            text = self._greeting(conversation)
        return personalize(text, profile)

    def _greeting(self, conversation: Conversation) -> str:
        period = time_of_day(self.clock.now().hour).value
        location, activity = conversation.location, conversation.activity
        greetings = [
            f"Nice {period}! The {location} is lovely today.",
            f"Great to see familiar faces at {location}!",
            f"Perfect {period} for {activity}, isn't it?",
            f"Always enjoy {activity} here at {location}.",
        ]
        greetings.extend(ACTIVITY_GREETINGS.get(activity_key(activity), ()))
        return self.rng.choice(greetings)

    # ------------------------------------------------------------------
    # Continue
    # ------------------------------------------------------------------

    def next_speaker(self, conversation: Conversation) -> str:
        """Participant after the last sender, wrapping around."""
        participants = conversation.participants
        last = conversation.last_sender
        if last is None or last not in participants:
            return participants[0]
        return participants[(participants.index(last) + 1) % len(participants)]

    async def continue_conversation(self, conversation_id: str) -> Message:
        """Append one response from the next speaker.

        Raises:
            ConversationNotFoundError: If the conversation is not active.
        """
        conversation = self.get_conversation(conversation_id)
        speaker = self.registry.get_agent(self.next_speaker(conversation))
        candidates = self.response_candidates(speaker, conversation)
        text = select_best_response(candidates, conversation.topic, speaker)

        if self.llm_responses and self.text_generator is not None:
            generated = await self._generate(
                self._response_prompt(speaker, conversation),
                f"You are {speaker.name}, a {speaker.role}. {speaker.personality}".strip(),
                f"turn in {conversation.id}",
            )
            if generated:
                text = generated

        # The aging task may have completed it while we were waiting
        if not conversation.is_active:
            raise ConversationNotFoundError(conversation_id)
        return self._append_message(conversation, speaker.id, text)

    def response_candidates(self, agent: Agent, conversation: Conversation) -> List[str]:
        """Five templated responses: activity, cultural, social, location, history."""
        candidates = [
            self.rng.choice(
                ACTIVITY_RESPONSES.get(activity_key(conversation.activity), DEFAULT_ACTIVITY_RESPONSES)
            ),
            self._cultural_response(conversation),
            self._social_response(conversation),
            self.rng.choice(
                (
                    f"{conversation.location} has such a unique atmosphere.",
                    f"I always enjoy spending time at {conversation.location}.",
                    f"{conversation.location} really brings our community together.",
                    f"The ambiance at {conversation.location} is perfect for these gatherings.",
                )
            ),
        ]
        historical = self._historical_response(agent, conversation)
        if historical:
            candidates.append(historical)
        return candidates

    def _cultural_response(self, conversation: Conversation) -> str:
        cultural = conversation.cultural_context
        if cultural is None:
            return "Our district has such a unique character."
        if cultural.current_events:
            event = cultural.current_events[0]
            label = event.get("title") or event.get("type") or "latest event"
            return f"Have you heard about the {label}? It's creating quite a buzz in our community."
        if cultural.traditions:
            return f"I love how we maintain traditions like {cultural.traditions[0]} in our district."
        return "The cultural atmosphere here is always so vibrant."

    def _social_response(self, conversation: Conversation) -> str:
        social = conversation.social_context
        if social is None:
            return "It's nice to interact with our community."
        return self.rng.choice(
            (
                "The community mood seems "
                f"{'very positive' if social.community_mood > 0.7 else 'interesting'} today.",
                f"It's great to see {social.participants} people participating in these activities.",
                "The engagement level in our community is "
                f"{'impressive' if social.engagement > 0.7 else 'growing'}.",
            )
        )

    def _historical_response(self, agent: Agent, conversation: Conversation) -> str:
        cutoff = self.clock.now() - HISTORY_WINDOW
        past = [
            c
            for c in self.completed
            if c.district_id == conversation.district_id
            and agent.id in c.participants
            and c.started_at >= cutoff
        ]
        if not past:
            return ""
        average = sum(c.sentiment for c in past) / len(past)
        if average > 0.7:
            return f"Speaking of this, we've had some great conversations about {past[0].topic} here before."
        return f"This reminds me of our previous discussions about {past[0].topic}."

    def _response_prompt(self, speaker: Agent, conversation: Conversation) -> str:
        transcript = "\n".join(
            f"{self._name(m.sender_id)}: {m.content}" for m in conversation.messages[-3:]
        )
        return (
            f"You are at {conversation.location} during {conversation.activity}, talking about "
            f"{conversation.topic}.\nRecent messages:\n{transcript}\n\n"
            f"Reply as {speaker.name} in 1-2 sentences."
        )

    def _name(self, agent_id: str) -> str:
        agent = self.registry.agents.get(agent_id)
        return agent.name if agent else agent_id

    async def _generate(self, prompt: str, system_prompt: str, label: str) -> Optional[str]:
        log_llm(f"Requesting {label}")
        try:
            text = await asyncio.wait_for(
                self.text_generator.generate(prompt, system_prompt=system_prompt),
                timeout=self.generation_timeout,
            )
        except asyncio.TimeoutError:
            log_error(f"Text generation timed out after {self.generation_timeout:g}s ({label})")
            return None
        except Exception as exc:
            log_error(f"Text generation failed ({label}), using template: {exc}")
            return None
        text = (text or "").strip()
        return text or None

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    def _append_message(self, conversation: Conversation, sender_id: str, content: str) -> Message:
        timestamp = self.clock.now()
        if conversation.messages and timestamp <= conversation.messages[-1].timestamp:
            timestamp = conversation.messages[-1].timestamp + timedelta(microseconds=1)

        message = Message(
            id=f"msg-{uuid4().hex[:12]}",
            sender_id=sender_id,
            content=content,
            timestamp=timestamp,
            sentiment=estimate_sentiment(content),
            topics=detect_topics(content),
        )
        conversation.messages.append(message)
        conversation.last_update = timestamp
        conversation.sentiment = conversation_sentiment(conversation.messages)

        if verbose_enabled():
            log_info(f"{self._name(sender_id)} @ {conversation.location}: {content}")
        self.bus.publish(
            MESSAGE_ADDED,
            {
                "conversation_id": conversation.id,
                "district_id": conversation.district_id,
                "message": message.model_dump(mode="json"),
                "sentiment": conversation.sentiment,
            },
        )
        return message

    # ------------------------------------------------------------------
    # Complete
    # ------------------------------------------------------------------

    async def complete_conversation(self, conversation_id: str) -> Conversation:
        """Close an active conversation, persist it and update the social graph.

        Raises:
            ConversationNotFoundError: If the conversation is not active.
        """
        conversation = self.get_conversation(conversation_id)
        now = self.clock.now()
        conversation.status = ConversationStatus.COMPLETED
        conversation.ended_at = now

        del self.active[conversation.id]
        for agent_id in conversation.participants:
            if self._busy.get(agent_id) == conversation.id:
                del self._busy[agent_id]
        self.completed.append(conversation)

        for agent_id in conversation.participants:
            for other_id in conversation.participants:
                if other_id != agent_id:
                    self.registry.record_interaction(agent_id, other_id, conversation.sentiment, now)

        if self.store is not None:
            try:
                await self.store.save_conversation(conversation)
            except Exception as exc:
                log_error(f"Failed to persist conversation {conversation.id}: {exc}")

        log_deterministic(
            f"Conversation {conversation.id} completed after {len(conversation.messages)} "
            f"message(s), sentiment {conversation.sentiment:.2f}"
        )
        self.bus.publish(
            CONVERSATION_ENDED,
            {
                "conversation_id": conversation.id,
                "district_id": conversation.district_id,
                "summary": conversation.summary(),
                "timestamp": now.isoformat(),
            },
        )
        return conversation

    # ------------------------------------------------------------------
    # Aging
    # ------------------------------------------------------------------

    async def age_conversations(
        self,
        *,
        idle_seconds: Optional[float] = None,
        timeout_seconds: Optional[float] = None,
        max_seconds: Optional[float] = None,
        max_messages: Optional[int] = None,
    ) -> Dict[str, int]:
        """Complete stale conversations and nudge idle ones.

        Returns counts of ``completed`` and ``continued`` conversations.
        """
        idle_seconds = Config.CONVERSATION_IDLE_SECONDS if idle_seconds is None else idle_seconds
        timeout_seconds = Config.CONVERSATION_TIMEOUT_SECONDS if timeout_seconds is None else timeout_seconds
        max_seconds = Config.MAX_CONVERSATION_SECONDS if max_seconds is None else max_seconds
        max_messages = Config.MAX_CONVERSATION_MESSAGES if max_messages is None else max_messages

        completed = continued = 0
        for conversation in list(self.active.values()):
            if not conversation.is_active:
                continue
            now = self.clock.now()
            idle = (now - conversation.last_update).total_seconds()
            age = (now - conversation.started_at).total_seconds()
            if idle > timeout_seconds or age > max_seconds or len(conversation.messages) >= max_messages:
                await self.complete_conversation(conversation.id)
                completed += 1
            elif idle > idle_seconds:
                try:
                    await self.continue_conversation(conversation.id)
                    continued += 1
                except ConversationNotFoundError:
                    continue
        return {"completed": completed, "continued": continued}
