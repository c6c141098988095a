"""Impact propagation, cascades and event resolution."""

from unittest.mock import AsyncMock

import pytest

from citypulse.bus import EVENT_GENERATED, EVENT_RESOLVED, EventBus
from citypulse.cascade import CascadeScheduler, derive_secondary
from citypulse.clock import SimulatedClock
from citypulse.collaborators import InMemoryDistrictDirectory, InMemoryMetrics
from citypulse.engine import CityEventEngine
from citypulse.errors import EventNotFoundError, NoDistrictsAvailableError
from citypulse.events import template_by_title
from citypulse.impacts import build_update
from citypulse.randomness import ScriptedRandom
from citypulse.scheduler import TaskScheduler
from citypulse.schemas import ActiveEvent, District, MetricImpact, SpreadPattern

from conftest import NOON

PUBLIC_HEALTH = template_by_title("Public Health Alert")


def _event_engine(*, rng_values=(0.5,), max_cascade_depth=None, districts=None, metrics=None):
    clock = SimulatedClock(NOON)
    scheduler = TaskScheduler(clock)
    directory = InMemoryDistrictDirectory(
        districts if districts is not None else [District(id="d1", name="Old Town")]
    )
    bus = EventBus()
    engine = CityEventEngine(
        directory,
        metrics or InMemoryMetrics(),
        scheduler,
        bus,
        rng=ScriptedRandom(list(rng_values)),
        max_cascade_depth=max_cascade_depth,
    )
    return engine, scheduler, directory, bus


def test_build_update_nests_by_category():
    assert build_update(PUBLIC_HEALTH) == {
        "social": {"healthcareAccessScore": -0.3},
        "sustainability": {"airQualityIndex": 200},
    }
    assert build_update(PUBLIC_HEALTH, reset=True) == {
        "social": {"healthcareAccessScore": 0.0},
        "sustainability": {"airQualityIndex": 0.0},
    }


def test_build_update_sums_impacts_on_the_same_metric():
    doubled = PUBLIC_HEALTH.model_copy(
        update={
            "impacts": (
                MetricImpact(category="social", metric="healthcareAccessScore", change=-0.3, duration_seconds=60),
                MetricImpact(category="social", metric="social.healthcareAccessScore", change=-0.1, duration_seconds=60),
            )
        }
    )

    assert build_update(doubled)["social"]["healthcareAccessScore"] == pytest.approx(-0.4)
    assert build_update(doubled, reset=True) == {"social": {"healthcareAccessScore": 0.0}}


def test_derive_secondary_weakens_primary():
    secondary = derive_secondary(PUBLIC_HEALTH, "school_closure")

    assert secondary.title == "school_closure following Public Health Alert"
    assert secondary.severity == pytest.approx(0.64)
    assert [i.change for i in secondary.impacts] == pytest.approx([-0.21, 140.0])
    assert [i.duration_seconds for i in secondary.impacts] == [24 * 3600, 12 * 3600]
    assert secondary.required_agents == ("elena", "olivia")
    assert secondary.priority == PUBLIC_HEALTH.priority
    assert secondary.cascade == PUBLIC_HEALTH.cascade
    assert secondary.id != PUBLIC_HEALTH.id


def test_delay_depends_on_spread_pattern():
    cascade = CascadeScheduler(TaskScheduler(SimulatedClock(NOON)), ScriptedRandom([0.25]))

    assert cascade.delay_for(SpreadPattern.EXPONENTIAL) == pytest.approx(900)
    assert cascade.delay_for(SpreadPattern.LINEAR) == 1800
    assert cascade.delay_for(SpreadPattern.CLUSTERED) == 1800


@pytest.mark.parametrize(
    "max_depth, depth, armed",
    [(3, 0, 2), (3, 3, 0), (0, 0, 0), (-1, 50, 2)],
)
def test_cascade_depth_bound(max_depth, depth, armed):
    scheduler = TaskScheduler(SimulatedClock(NOON))
    cascade = CascadeScheduler(scheduler, ScriptedRandom([0.0]), max_depth=max_depth)
    active = ActiveEvent(event=PUBLIC_HEALTH, district_id="d1", created_at=NOON, depth=depth)

    jobs = cascade.handle(active, AsyncMock())

    assert len(jobs) == armed
    assert scheduler.pending == armed


def test_failed_trial_arms_nothing():
    scheduler = TaskScheduler(SimulatedClock(NOON))
    cascade = CascadeScheduler(scheduler, ScriptedRandom([0.6]), max_depth=3)
    active = ActiveEvent(event=PUBLIC_HEALTH, district_id="d1", created_at=NOON)

    assert cascade.handle(active, AsyncMock()) == []
    assert scheduler.pending == 0


def test_event_without_cascade_spec_arms_nothing():
    scheduler = TaskScheduler(SimulatedClock(NOON))
    cascade = CascadeScheduler(scheduler, ScriptedRandom([0.0]))
    active = ActiveEvent(event=template_by_title("Smart Grid Fluctuation"), district_id="d1", created_at=NOON)

    assert cascade.handle(active, AsyncMock()) == []


# ============================================================================
# Event pipeline
# ============================================================================


@pytest.mark.asyncio
async def test_public_health_alert_applies_one_batched_update_and_cascades():
    engine, scheduler, directory, bus = _event_engine(rng_values=(0.5,), max_cascade_depth=3)
    generated = []
    bus.subscribe(EVENT_GENERATED, generated.append)

    active = await engine.generate_event(PUBLIC_HEALTH)

    assert engine.propagator.metrics.calls == [
        {"social": {"healthcareAccessScore": -0.3}, "sustainability": {"airQualityIndex": 200}}
    ]
    assert active.district_id == "d1"
    assert directory.visits["d1"] == ["elena", "olivia", "raj"]
    assert scheduler.pending == 2
    assert generated[0]["event"]["title"] == "Public Health Alert"

    # 0.5 * 3600 s exponential delay
    await scheduler.advance(1800)

    secondaries = [a for a in engine.get_active_events() if a.depth == 1]
    assert len(secondaries) == 2
    assert all(a.event.severity == pytest.approx(0.64) for a in secondaries)
    assert {a.event.title.split(" following ")[0] for a in secondaries} == {
        "school_closure",
        "emergency_measures",
    }
    assert len(engine.propagator.metrics.calls) == 3


@pytest.mark.asyncio
async def test_resolution_reverts_in_one_call_and_drops_event():
    engine, _, _, bus = _event_engine(max_cascade_depth=0)
    resolved = []
    bus.subscribe(EVENT_RESOLVED, resolved.append)
    active = await engine.generate_event(PUBLIC_HEALTH)

    await engine.resolve_event(active.id)

    calls = engine.propagator.metrics.calls
    assert len(calls) == 2
    assert calls[-1] == {
        "social": {"healthcareAccessScore": 0.0},
        "sustainability": {"airQualityIndex": 0.0},
    }
    assert active.id not in engine.active_events
    assert resolved == [{"event_id": active.id, "district_id": "d1", "timestamp": NOON.isoformat()}]

    with pytest.raises(EventNotFoundError):
        await engine.resolve_event(active.id)


@pytest.mark.asyncio
async def test_metrics_failure_does_not_abort_pipeline():
    metrics = AsyncMock()
    metrics.update_metrics.side_effect = ConnectionError("metrics store down")
    engine, *_ = _event_engine(max_cascade_depth=0, metrics=metrics)

    active = await engine.generate_event(PUBLIC_HEALTH)

    assert active.id in engine.active_events


@pytest.mark.asyncio
async def test_directory_failure_does_not_abort_pipeline():
    engine, scheduler, directory, bus = _event_engine(rng_values=(0.0,), max_cascade_depth=3)
    directory.record_agent_visit = AsyncMock(side_effect=ConnectionError("directory down"))
    generated = []
    bus.subscribe(EVENT_GENERATED, generated.append)

    active = await engine.generate_event(PUBLIC_HEALTH)

    assert directory.record_agent_visit.await_count == 3
    assert active.id in engine.active_events
    assert len(engine.propagator.metrics.calls) == 1
    assert scheduler.pending == 2
    assert [payload["event"]["id"] for payload in generated] == [active.id]


@pytest.mark.asyncio
async def test_generate_without_districts_raises():
    engine, *_ = _event_engine(districts=[])

    with pytest.raises(NoDistrictsAvailableError):
        await engine.generate_event()


@pytest.mark.asyncio
async def test_active_event_index_evicts_oldest():
    engine, *_ = _event_engine(max_cascade_depth=0)
    engine.active_limit = 2

    first = await engine.generate_event(PUBLIC_HEALTH.model_copy(update={"id": "e1"}))
    await engine.generate_event(PUBLIC_HEALTH.model_copy(update={"id": "e2"}))
    await engine.generate_event(PUBLIC_HEALTH.model_copy(update={"id": "e3"}))

    assert list(engine.active_events) == ["e2", "e3"]
    assert first.id not in engine.active_events
