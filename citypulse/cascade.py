"""Cascading secondary events.

A primary event with a cascade spec gets one Bernoulli trial. On success every
related label is scheduled as a secondary event after a delay that depends on
the spread pattern. Secondary events re-enter the full event pipeline, so they
may cascade again; ``max_depth`` bounds how far that goes.
"""

from __future__ import annotations

from typing import Awaitable, Callable, List, Optional
from uuid import uuid4

from .config import Config
from .logging_utils import log_deterministic
from .randomness import RandomSource
from .scheduler import ScheduledJob, TaskScheduler
from .schemas import ActiveEvent, EventTemplate, SpreadPattern

SEVERITY_FACTOR = 0.8
CHANGE_FACTOR = 0.7
DURATION_FACTOR = 0.5
SECONDARY_AGENT_LIMIT = 2
MAX_EXPONENTIAL_DELAY = 60 * 60
FIXED_DELAY = 30 * 60

EmitSecondary = Callable[[EventTemplate, int], Awaitable[object]]


def derive_secondary(primary: EventTemplate, label: str) -> EventTemplate:
    """Synthesize a weaker follow-up event from ``primary``."""
    return EventTemplate(
        id=str(uuid4()),
        title=f"{label} following {primary.title}",
        description=f"Secondary event triggered by {primary.description}",
        severity=primary.severity * SEVERITY_FACTOR,
        priority=primary.priority,
        impacts=tuple(
            impact.model_copy(
                update={
                    "change": impact.change * CHANGE_FACTOR,
                    "duration_seconds": impact.duration_seconds * DURATION_FACTOR,
                }
            )
            for impact in primary.impacts
        ),
        required_agents=primary.required_agents[:SECONDARY_AGENT_LIMIT],
        district_types=primary.district_types,
        cascade=primary.cascade,
        time_context=primary.time_context,
    )


class CascadeScheduler:
    def __init__(
        self,
        scheduler: TaskScheduler,
        rng: Optional[RandomSource] = None,
        *,
        max_depth: Optional[int] = None,
    ) -> None:
        self.scheduler = scheduler
        self.rng = rng or RandomSource()
        self.max_depth = Config.MAX_CASCADE_DEPTH if max_depth is None else max_depth

    def delay_for(self, pattern: SpreadPattern) -> float:
        if pattern == SpreadPattern.EXPONENTIAL:
            return self.rng.uniform(0.0, MAX_EXPONENTIAL_DELAY)
        return float(FIXED_DELAY)

    def can_cascade(self, depth: int) -> bool:
        return self.max_depth < 0 or depth < self.max_depth

    def handle(self, active: ActiveEvent, emit: EmitSecondary) -> List[ScheduledJob]:
        """Maybe arm one timer per related label. Returns the armed timers."""
        spec = active.event.cascade
        if spec is None or not spec.related_events or not self.can_cascade(active.depth):
            return []
        if not self.rng.chance(spec.probability):
            return []

        jobs: List[ScheduledJob] = []
        for label in spec.related_events:
            secondary = derive_secondary(active.event, label)
            delay = self.delay_for(spec.spread_pattern)
            jobs.append(
                self.scheduler.call_later(
                    delay,
                    self._deliver(emit, secondary, active.depth + 1),
                    name=f"cascade:{label}",
                )
            )
            log_deterministic(
                f"Cascade '{secondary.title}' armed in {delay / 60:.1f} min (depth {active.depth + 1})"
            )
        return jobs

    @staticmethod
    def _deliver(emit: EmitSecondary, event: EventTemplate, depth: int) -> Callable[[], Awaitable[object]]:
        async def _fire() -> object:
            return await emit(event, depth)

        return _fire
