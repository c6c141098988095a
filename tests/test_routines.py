"""Activity registry: routine generation, grouping and the social graph."""

import json
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from citypulse.collaborators import InMemorySearchIndex
from citypulse.errors import AgentNotFoundError
from citypulse.routines import (
    IDLE_ACTIVITY,
    STATIC_ROUTINE,
    ActivityRegistry,
    activity_key,
    parse_routine_text,
)

from conftest import NOON, lunch_routine, make_agent


def _camel_routine_json() -> str:
    entries = [
        {
            "timeSlot": hour,
            "activity": f"Activity {hour}",
            "location": "Plaza",
            "possibleTopics": ["news"],
            "socialProbability": 0.5,
        }
        for hour in (8, 10, 12, 14, 18)
    ]
    return "```json\n" + json.dumps(entries) + "\n```"


def test_activity_key_normalises_labels():
    assert activity_key("Lunch Break") == "lunch_break"
    assert activity_key("evening-leisure") == "evening_leisure"


def test_parse_routine_text_accepts_fenced_camel_case_array():
    routines = parse_routine_text(_camel_routine_json())
    assert [entry.time_slot for entry in routines] == [8, 10, 12, 14, 18]
    assert routines[0].topics == ("news",)


@pytest.mark.asyncio
async def test_generated_routine_is_used():
    generator = AsyncMock()
    generator.generate.return_value = _camel_routine_json()
    registry = ActivityRegistry(generator)

    profile = await registry.register_agent(make_agent("ava"))

    assert len(profile.routines) == 5
    assert profile.routines[2].activity == "Activity 12"
    generator.generate.assert_awaited_once()


@pytest.mark.asyncio
async def test_generator_failure_falls_back_to_static_routine():
    generator = AsyncMock()
    generator.generate.side_effect = RuntimeError("provider down")
    registry = ActivityRegistry(generator)

    profile = await registry.register_agent(make_agent("ava"))

    assert profile.routines == list(STATIC_ROUTINE)


@pytest.mark.asyncio
async def test_unparseable_routine_falls_back_to_static_routine():
    generator = AsyncMock()
    generator.generate.return_value = "Sure! Here is a schedule: wake up, work, sleep."
    registry = ActivityRegistry(generator)

    profile = await registry.register_agent(make_agent("ava"))

    assert profile.routines == list(STATIC_ROUTINE)


@pytest.mark.asyncio
async def test_generated_routine_is_cached_in_search_index():
    generator = AsyncMock()
    generator.generate.return_value = _camel_routine_json()
    registry = ActivityRegistry(generator, InMemorySearchIndex())
    agent = make_agent("ava")

    first = await registry.register_agent(agent)
    second = await registry.register_agent(agent)

    assert first.routines == second.routines
    assert generator.generate.await_count == 1


@pytest.mark.asyncio
async def test_profile_reflects_agent():
    registry = ActivityRegistry()
    agent = make_agent("ava", enthusiasm=0.9, interests=["jazz"])

    profile = await registry.register_agent(agent, routines=lunch_routine())

    assert profile.regular_locations == ["d1"]
    assert profile.cultural_preferences == ["jazz"]
    assert profile.personality.extroversion == 0.9
    assert registry.routine_for("ava", 12).activity == "lunch_break"
    assert registry.routine_for("ava", 13) is None


@pytest.mark.asyncio
async def test_group_by_activity_uses_idle_bucket():
    registry = ActivityRegistry()
    await registry.register_agent(make_agent("ava"), routines=lunch_routine())
    await registry.register_agent(make_agent("ben"), routines=lunch_routine(hour=9))
    await registry.register_agent(make_agent("cal", district_id="d2"), routines=lunch_routine())

    groups = registry.group_by_activity("d1", 12)

    assert groups == {"lunch_break": ["ava"], IDLE_ACTIVITY: ["ben"]}
    assert registry.district_activities["d1"] == groups


def test_unknown_agent_raises():
    registry = ActivityRegistry()
    with pytest.raises(AgentNotFoundError):
        registry.get_profile("ghost")


@pytest.mark.asyncio
async def test_interaction_history_is_bounded():
    registry = ActivityRegistry(interaction_limit=3)
    await registry.register_agent(make_agent("ava"), routines=[])

    for index in range(5):
        registry.record_interaction("ava", f"peer{index}", 0.5, NOON)

    interactions = registry.get_profile("ava").recent_interactions
    assert [i.agent_id for i in interactions] == ["peer2", "peer3", "peer4"]


@pytest.mark.asyncio
async def test_social_graph_maintenance_prunes_and_befriends():
    registry = ActivityRegistry()
    await registry.register_agent(make_agent("ava"), routines=[])
    registry.record_interaction("ava", "old", 0.95, NOON - timedelta(hours=25))
    registry.record_interaction("ava", "ben", 0.9, NOON)
    registry.record_interaction("ava", "cal", 0.5, NOON)

    added = registry.maintain_social_graph(NOON)

    profile = registry.get_profile("ava")
    assert added == 1
    assert profile.friends == {"ben"}
    assert [i.agent_id for i in profile.recent_interactions] == ["ben", "cal"]
