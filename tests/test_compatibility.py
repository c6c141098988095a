"""Compatibility scoring and group selection."""

import pytest

from citypulse.compatibility import CompatibilityScorer
from citypulse.errors import AgentNotFoundError
from citypulse.randomness import RandomSource
from citypulse.routines import ActivityRegistry
from citypulse.schemas import CulturalContext

from conftest import lunch_routine, make_agent


class FixedSize(RandomSource):
    def __init__(self, size: int) -> None:
        super().__init__(0)
        self.size = size

    def randint(self, low: int, high: int) -> int:
        return self.size


async def _registry(*agents, routines=None) -> ActivityRegistry:
    registry = ActivityRegistry()
    for agent in agents:
        await registry.register_agent(agent, routines=routines if routines is not None else [])
    return registry


@pytest.mark.asyncio
async def test_score_combines_personality_routine_and_interests():
    agent = make_agent("ava", enthusiasm=1.0, interests=["Jazz"])
    registry = await _registry(agent, routines=lunch_routine(activity="Lunch Break"))
    scorer = CompatibilityScorer(registry)

    [(agent_id, score)] = scorer.rank(
        ["ava"], "lunch_break", CulturalContext(traditions=["jazz"])
    )

    # 0.3*1.0 + 0.2*0.5 + 0.2*0.5 + routine 0.2 + shared interest 0.3
    assert agent_id == "ava"
    assert score == pytest.approx(1.0)


@pytest.mark.asyncio
async def test_event_titles_count_as_shared_interest():
    agent = make_agent("ava", interests=["Food Festival"])
    registry = await _registry(agent)
    scorer = CompatibilityScorer(registry)

    [(_, with_event)] = scorer.rank(["ava"], "idle", CulturalContext(events=[{"title": "Food Festival"}]))
    [(_, without_event)] = scorer.rank(["ava"], "idle", CulturalContext())

    assert with_event - without_event == pytest.approx(0.3)


@pytest.mark.asyncio
async def test_ranking_is_descending_and_stable_for_ties():
    registry = await _registry(
        make_agent("ava"), make_agent("ben"), make_agent("cal", enthusiasm=0.9)
    )
    scorer = CompatibilityScorer(registry)

    ranked = scorer.rank(["ava", "ben", "cal"], "idle")

    assert [agent_id for agent_id, _ in ranked] == ["cal", "ava", "ben"]


@pytest.mark.asyncio
async def test_group_size_is_capped_at_candidate_count():
    registry = await _registry(make_agent("ava"), make_agent("ben"))
    scorer = CompatibilityScorer(registry, FixedSize(3))

    assert scorer.select_group(["ava", "ben"], "idle") == ["ava", "ben"]


@pytest.mark.asyncio
async def test_group_takes_top_scorers():
    registry = await _registry(
        make_agent("ava", enthusiasm=0.1),
        make_agent("ben", enthusiasm=0.9),
        make_agent("cal", enthusiasm=0.8),
        make_agent("dan", enthusiasm=0.2),
    )
    scorer = CompatibilityScorer(registry, FixedSize(2))

    assert scorer.select_group(["ava", "ben", "cal", "dan"], "idle") == ["ben", "cal"]


@pytest.mark.asyncio
async def test_group_size_is_two_or_three():
    agents = [make_agent(f"a{index}") for index in range(5)]
    registry = await _registry(*agents)
    scorer = CompatibilityScorer(registry, RandomSource(seed=7))

    sizes = {len(scorer.select_group([a.id for a in agents], "idle")) for _ in range(50)}

    assert sizes <= {2, 3}


@pytest.mark.asyncio
async def test_unknown_candidate_raises():
    registry = await _registry(make_agent("ava"))
    scorer = CompatibilityScorer(registry)

    with pytest.raises(AgentNotFoundError):
        scorer.rank(["ava", "ghost"], "idle")
