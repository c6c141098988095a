"""Static event catalog, time-aware template selection and district targeting."""

from __future__ import annotations

from datetime import datetime
from typing import Iterable, List, Optional, Sequence
from uuid import uuid4

from .clock import time_of_day
from .collaborators import DistrictDirectory, SearchIndex
from .errors import NoDistrictsAvailableError
from .logging_utils import log_deterministic, log_error
from .randomness import RandomSource
from .schemas import (
    CascadeSpec,
    District,
    EventTemplate,
    MetricImpact,
    Priority,
    SpreadPattern,
    TimeContext,
    TimeOfDay,
)

HOUR = 60 * 60

# ============================================================================
# Catalog
# ============================================================================

EVENT_CATALOG: tuple[EventTemplate, ...] = (
    EventTemplate(
        id="smart-grid-fluctuation",
        title="Smart Grid Fluctuation",
        description="Energy grid showing unusual patterns in renewable integration",
        severity=0.7,
        priority=Priority.HIGH,
        impacts=(
            MetricImpact(category="infrastructure", metric="smartGridEfficiency", change=-0.3, duration_seconds=3 * HOUR),
            MetricImpact(category="sustainability", metric="renewableEnergyRatio", change=-0.2, duration_seconds=3 * HOUR),
        ),
        required_agents=("raj", "olivia"),
        district_types=("residential", "commercial"),
        time_context=TimeContext(
            preferred_time_of_day=TimeOfDay.AFTERNOON, weather_sensitive=True, seasonal_factor="summer"
        ),
    ),
    EventTemplate(
        id="cultural-district-unrest",
        title="Cultural District Unrest",
        description="Community tensions rising over heritage building renovation",
        severity=0.6,
        priority=Priority.MEDIUM,
        impacts=(
            MetricImpact(category="social", metric="communityWellbeing", change=-0.4, duration_seconds=12 * HOUR),
            MetricImpact(category="economy", metric="businessFormationRate", change=-0.2, duration_seconds=24 * HOUR),
        ),
        required_agents=("elena", "sophia"),
        district_types=("mixed", "commercial"),
        cascade=CascadeSpec(
            probability=0.4,
            related_events=("protest", "media_coverage"),
            spread_pattern=SpreadPattern.CLUSTERED,
        ),
        time_context=TimeContext(
            preferred_time_of_day=TimeOfDay.MORNING, weather_sensitive=False, seasonal_factor="spring"
        ),
    ),
    EventTemplate(
        id="public-health-alert",
        title="Public Health Alert",
        description="Unusual pattern of respiratory complaints in district",
        severity=0.8,
        priority=Priority.CRITICAL,
        impacts=(
            MetricImpact(category="social", metric="healthcareAccessScore", change=-0.3, duration_seconds=48 * HOUR),
            MetricImpact(category="sustainability", metric="airQualityIndex", change=200, duration_seconds=24 * HOUR),
        ),
        required_agents=("elena", "olivia", "raj"),
        district_types=("residential", "mixed"),
        cascade=CascadeSpec(
            probability=0.6,
            related_events=("school_closure", "emergency_measures"),
            spread_pattern=SpreadPattern.EXPONENTIAL,
        ),
        time_context=TimeContext(
            preferred_time_of_day=TimeOfDay.MORNING, weather_sensitive=True, seasonal_factor="winter"
        ),
    ),
    EventTemplate(
        id="infrastructure-emergency",
        title="Infrastructure Emergency",
        description="Critical infrastructure failure affecting district services",
        severity=0.9,
        priority=Priority.CRITICAL,
        impacts=(
            MetricImpact(category="infrastructure", metric="smartGridEfficiency", change=-0.5, duration_seconds=24 * HOUR),
            MetricImpact(category="social", metric="communityWellbeing", change=-0.2, duration_seconds=24 * HOUR),
        ),
        required_agents=("raj", "marcus", "elena"),
        district_types=("commercial", "mixed"),
        cascade=CascadeSpec(
            probability=0.5,
            related_events=("power_outage", "traffic_disruption"),
            spread_pattern=SpreadPattern.LINEAR,
        ),
        time_context=TimeContext(preferred_time_of_day=TimeOfDay.NIGHT, weather_sensitive=True),
    ),
    EventTemplate(
        id="environmental-crisis",
        title="Environmental Crisis",
        description="Environmental emergency situation degrading air and water quality",
        severity=0.9,
        priority=Priority.CRITICAL,
        impacts=(
            MetricImpact(category="sustainability", metric="airQualityIndex", change=150, duration_seconds=48 * HOUR),
            MetricImpact(category="sustainability", metric="renewableEnergyRatio", change=-0.1, duration_seconds=24 * HOUR),
        ),
        required_agents=("olivia", "elena", "raj"),
        district_types=("residential", "mixed"),
        cascade=CascadeSpec(
            probability=0.5,
            related_events=("evacuation_advisory", "public_health_concern"),
            spread_pattern=SpreadPattern.EXPONENTIAL,
        ),
        time_context=TimeContext(
            preferred_time_of_day=TimeOfDay.EVENING, weather_sensitive=True, seasonal_factor="summer"
        ),
    ),
)

ADVERSE_WEATHER = frozenset(
    {"storm", "thunderstorm", "rain", "heavy_rain", "snow", "blizzard", "heatwave", "fog", "hail", "wind"}
)


def is_adverse_weather(label: Optional[str]) -> bool:
    return bool(label) and label.strip().lower().replace(" ", "_") in ADVERSE_WEATHER


def template_by_title(title: str, catalog: Iterable[EventTemplate] = EVENT_CATALOG) -> EventTemplate:
    for template in catalog:
        if template.title == title:
            return template
    raise KeyError(f"No event template titled '{title}'")


# ============================================================================
# Selection
# ============================================================================


class EventSelector:
    """Picks a template fitting the current time of day (and weather, when known)."""

    def __init__(
        self,
        catalog: Sequence[EventTemplate] = EVENT_CATALOG,
        rng: Optional[RandomSource] = None,
    ) -> None:
        if not catalog:
            raise ValueError("EventSelector needs at least one template")
        self.catalog = tuple(catalog)
        self.rng = rng or RandomSource()

    def candidates(self, now: datetime, weather: Optional[str] = None) -> List[EventTemplate]:
        """Templates matching the time of day, narrowed by weather when that leaves any."""
        period = time_of_day(now.hour)
        matching = [
            template
            for template in self.catalog
            if template.time_context.preferred_time_of_day in (None, period)
        ]
        if matching and is_adverse_weather(weather):
            sensitive = [t for t in matching if t.time_context.weather_sensitive]
            if sensitive:
                matching = sensitive
        return matching

    def select(self, now: datetime, weather: Optional[str] = None) -> EventTemplate:
        """Choose a template and stamp it with a fresh id. Never fails."""
        pool = self.candidates(now, weather) or list(self.catalog)
        template = self.rng.choice(pool)
        return template.model_copy(update={"id": str(uuid4())})


# ============================================================================
# District targeting
# ============================================================================


class DistrictTargeter:
    """Routes an event to the most relevant district, or a random one."""

    def __init__(
        self,
        directory: DistrictDirectory,
        search_index: Optional[SearchIndex] = None,
        rng: Optional[RandomSource] = None,
    ) -> None:
        self.directory = directory
        self.search_index = search_index
        self.rng = rng or RandomSource()

    async def target(self, event: EventTemplate) -> District:
        """
        Raises:
            NoDistrictsAvailableError: If the directory has no districts.
        """
        districts = await self.directory.get_all_districts()
        if not districts:
            raise NoDistrictsAvailableError()

        if self.search_index is not None:
            try:
                vector = await self.search_index.embed(f"{event.title} {event.description}")
                matches = await self.search_index.query(
                    vector, filter={"type": "district_context"}, top_k=1
                )
                if matches:
                    district_id = matches[0].metadata.get("district_id")
                    for district in districts:
                        if district.id == district_id:
                            log_deterministic(f"'{event.title}' matched district {district.name}")
                            return district
            except Exception as exc:
                log_error(f"District lookup failed for '{event.title}', choosing at random: {exc}")

        return self.rng.choice(districts)
