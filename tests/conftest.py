"""Shared factories for the CityPulse test suite."""

from datetime import datetime, timezone

import pytest

from citypulse.schemas import Agent, AgentTraits, District, RoutineEntry


NOON = datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)


def make_agent(
    agent_id: str,
    *,
    enthusiasm: float = 0.5,
    curiosity: float = 0.5,
    empathy: float = 0.5,
    creativity: float = 0.5,
    interests=None,
    district_id: str = "d1",
) -> Agent:
    return Agent(
        id=agent_id,
        name=agent_id.capitalize(),
        role="resident",
        personality="friendly",
        interests=list(interests or []),
        traits=AgentTraits(
            analytical_thinking=0.5,
            creativity=creativity,
            empathy=empathy,
            curiosity=curiosity,
            enthusiasm=enthusiasm,
        ),
        district_id=district_id,
    )


def lunch_routine(hour: int = 12, activity: str = "lunch_break") -> list[RoutineEntry]:
    return [
        RoutineEntry(
            time_slot=hour,
            activity=activity,
            location="Restaurant",
            topics=("food",),
            social_probability=0.8,
        )
    ]


@pytest.fixture
def district() -> District:
    return District(id="d1", name="Old Town", type="mixed", engagement=0.5)
