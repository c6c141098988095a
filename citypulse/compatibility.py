"""Social compatibility scoring for spontaneous conversations."""

from __future__ import annotations

from typing import List, Optional, Sequence, Tuple

from .randomness import RandomSource
from .routines import ActivityRegistry, activity_key
from .schemas import CulturalContext, SocialProfile

EXTROVERSION_WEIGHT = 0.3
CULTURAL_OPENNESS_WEIGHT = 0.2
COMMUNITY_WEIGHT = 0.2
ROUTINE_MATCH_BONUS = 0.2
SHARED_INTEREST_BONUS = 0.3


def compatibility_score(
    profile: SocialProfile,
    interests: Sequence[str],
    activity: str,
    cultural_context: Optional[CulturalContext] = None,
) -> float:
    """Score one agent's readiness to join a conversation about ``activity``."""
    personality = profile.personality
    score = (
        EXTROVERSION_WEIGHT * personality.extroversion
        + CULTURAL_OPENNESS_WEIGHT * personality.cultural_openness
        + COMMUNITY_WEIGHT * personality.community_orientation
    )

    wanted = activity_key(activity)
    if any(activity_key(entry.activity) == wanted for entry in profile.routines):
        score += ROUTINE_MATCH_BONUS

    if cultural_context is not None:
        themes = {label.lower() for label in cultural_context.traditions}
        themes.update(label.lower() for label in cultural_context.event_labels())
        if themes.intersection(interest.lower() for interest in interests):
            score += SHARED_INTEREST_BONUS

    return score


class CompatibilityScorer:
    """Ranks candidate agents and draws an interaction group of 2-3."""

    def __init__(self, registry: ActivityRegistry, rng: Optional[RandomSource] = None) -> None:
        self.registry = registry
        self.rng = rng or RandomSource()

    def rank(
        self,
        candidates: Sequence[str],
        activity: str,
        cultural_context: Optional[CulturalContext] = None,
    ) -> List[Tuple[str, float]]:
        """Return ``(agent_id, score)`` pairs, best first; ties keep input order.

        Raises:
            AgentNotFoundError: If a candidate was never registered.
        """
        scored = [
            (
                agent_id,
                compatibility_score(
                    self.registry.get_profile(agent_id),
                    self.registry.get_agent(agent_id).interests,
                    activity,
                    cultural_context,
                ),
            )
            for agent_id in candidates
        ]
        # sorted() is stable, so equal scores keep their input order
        return sorted(scored, key=lambda pair: pair[1], reverse=True)

    def select_group(
        self,
        candidates: Sequence[str],
        activity: str,
        cultural_context: Optional[CulturalContext] = None,
    ) -> List[str]:
        """Pick the top 2 or 3 candidates (size drawn uniformly, capped at the pool)."""
        ranked = self.rank(candidates, activity, cultural_context)
        if not ranked:
            return []
        size = min(self.rng.randint(2, 3), len(ranked))
        return [agent_id for agent_id, _ in ranked[:size]]
