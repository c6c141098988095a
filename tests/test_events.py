"""Event catalog selection and district targeting."""

from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest

from citypulse.collaborators import InMemoryDistrictDirectory, InMemorySearchIndex
from citypulse.errors import NoDistrictsAvailableError
from citypulse.events import EVENT_CATALOG, DistrictTargeter, EventSelector, template_by_title
from citypulse.randomness import RandomSource
from citypulse.schemas import District, TimeContext, TimeOfDay


def at(hour: int) -> datetime:
    return datetime(2025, 3, 1, hour, 0, tzinfo=timezone.utc)


def titles(templates) -> set:
    return {template.title for template in templates}


def test_candidates_follow_time_of_day():
    selector = EventSelector()

    assert titles(selector.candidates(at(9))) == {"Cultural District Unrest", "Public Health Alert"}
    assert titles(selector.candidates(at(14))) == {"Smart Grid Fluctuation"}
    assert titles(selector.candidates(at(19))) == {"Environmental Crisis"}
    assert titles(selector.candidates(at(2))) == {"Infrastructure Emergency"}


def test_adverse_weather_narrows_to_weather_sensitive_templates():
    selector = EventSelector()

    assert titles(selector.candidates(at(9), weather="Storm")) == {"Public Health Alert"}
    assert titles(selector.candidates(at(9), weather="sunny")) == {
        "Cultural District Unrest",
        "Public Health Alert",
    }


def test_templates_without_preference_always_match():
    flexible = template_by_title("Smart Grid Fluctuation").model_copy(
        update={"id": "flex", "time_context": TimeContext()}
    )
    selector = EventSelector(catalog=[flexible])

    assert selector.candidates(at(3)) == [flexible]


def test_selection_falls_back_to_full_catalog():
    afternoon_only = [template_by_title("Smart Grid Fluctuation")]
    selector = EventSelector(catalog=afternoon_only)

    chosen = selector.select(at(9))

    assert chosen.title == "Smart Grid Fluctuation"


def test_every_selection_gets_a_fresh_id():
    selector = EventSelector(rng=RandomSource(seed=1))
    catalog_ids = {template.id for template in EVENT_CATALOG}

    first = selector.select(at(9))
    second = selector.select(at(9))

    assert first.id != second.id
    assert first.id not in catalog_ids
    assert first.time_context.preferred_time_of_day == TimeOfDay.MORNING


def test_template_lookup_by_title():
    assert template_by_title("Public Health Alert").severity == 0.8
    with pytest.raises(KeyError):
        template_by_title("Alien Invasion")


# ============================================================================
# Targeting
# ============================================================================


HEALTH = District(id="health", name="Health Quarter", type="mixed")
MARKET = District(id="market", name="Market Row", type="commercial")


@pytest.mark.asyncio
async def test_search_match_selects_district():
    index = InMemorySearchIndex()
    await index.index_district(HEALTH, "respiratory complaints clinic hospital")
    await index.index_district(MARKET, "shops trade stalls")
    targeter = DistrictTargeter(InMemoryDistrictDirectory([MARKET, HEALTH]), index)

    district = await targeter.target(template_by_title("Public Health Alert"))

    assert district.id == "health"


@pytest.mark.asyncio
async def test_zero_matches_fall_back_to_random_district():
    targeter = DistrictTargeter(InMemoryDistrictDirectory([HEALTH, MARKET]), InMemorySearchIndex())

    district = await targeter.target(template_by_title("Public Health Alert"))

    assert district.id in {"health", "market"}


@pytest.mark.asyncio
async def test_match_for_unknown_district_falls_back():
    index = InMemorySearchIndex()
    await index.index_district(HEALTH, "respiratory complaints")
    targeter = DistrictTargeter(InMemoryDistrictDirectory([MARKET]), index)

    district = await targeter.target(template_by_title("Public Health Alert"))

    assert district.id == "market"


@pytest.mark.asyncio
async def test_lookup_failure_falls_back_to_random_district():
    index = AsyncMock()
    index.embed.side_effect = ConnectionError("vector store offline")
    targeter = DistrictTargeter(InMemoryDistrictDirectory([HEALTH]), index)

    district = await targeter.target(template_by_title("Public Health Alert"))

    assert district.id == "health"


@pytest.mark.asyncio
async def test_empty_directory_raises():
    targeter = DistrictTargeter(InMemoryDistrictDirectory(), InMemorySearchIndex())

    with pytest.raises(NoDistrictsAvailableError):
        await targeter.target(template_by_title("Public Health Alert"))
