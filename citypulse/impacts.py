"""Translate event impacts into batched metric updates."""

from __future__ import annotations

from typing import Dict

from .collaborators import MetricsSink, MetricUpdate
from .logging_utils import log_deterministic
from .schemas import EventTemplate


def build_update(event: EventTemplate, *, reset: bool = False) -> MetricUpdate:
    """Nested ``category -> metric -> delta`` payload; every value 0 when ``reset``.

    Impacts addressing the same metric are summed.
    """
    updates: Dict[str, Dict[str, float]] = {}
    for impact in event.impacts:
        metrics = updates.setdefault(impact.category, {})
        metrics[impact.metric_name] = 0.0 if reset else metrics.get(impact.metric_name, 0.0) + impact.change
    return updates


class ImpactPropagator:
    """Applies and reverts an event's metric deltas, one sink call each."""

    def __init__(self, metrics: MetricsSink) -> None:
        self.metrics = metrics

    async def apply(self, event: EventTemplate) -> MetricUpdate:
        updates = build_update(event)
        await self.metrics.update_metrics(updates)
        log_deterministic(f"Applied {len(event.impacts)} impact(s) for '{event.title}'")
        return updates

    async def revert(self, event: EventTemplate) -> MetricUpdate:
        updates = build_update(event, reset=True)
        await self.metrics.update_metrics(updates)
        return updates
