"""
Collaborator interfaces consumed by the engine.

The engine owns scheduling and cascades only. Text generation, similarity
search, metrics storage and the district directory are external services
injected as strategies. Each interface ships with a small in-memory
implementation so the engine runs standalone and tests need no network.

Contracts:
- TextGenerator.generate may raise; callers fall back to static content.
- SearchIndex.query may return no matches; that is "no match", not an error.
- MetricsSink.update_metrics receives one nested partial update per event.
- DistrictDirectory is consulted before any event or conversation is
  targeted at a district; unknown ids raise DistrictNotFoundError.
"""

from __future__ import annotations

import hashlib
import math
import re
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, List, Optional

from .errors import DistrictNotFoundError
from .schemas import CulturalContext, District, SearchMatch, SocialMood

MetricUpdate = Dict[str, Dict[str, float]]


# ============================================================================
# Text Generation
# ============================================================================


class TextGenerator(ABC):
    """Opaque text generation service (LLM or otherwise)."""

    @abstractmethod
    async def generate(self, prompt: str, *, system_prompt: str = "") -> str:
        """Return generated text for ``prompt``.

        Raises:
            Exception: Any provider failure. Callers must fall back.
        """


# ============================================================================
# Embedding / Search
# ============================================================================


class SearchIndex(ABC):
    """Nearest-neighbour lookup over embedded text."""

    @abstractmethod
    async def embed(self, text: str) -> List[float]:
        """Embed ``text`` into a vector."""

    @abstractmethod
    async def query(
        self,
        vector: List[float],
        filter: Optional[Dict[str, Any]] = None,
        top_k: int = 1,
    ) -> List[SearchMatch]:
        """Return up to ``top_k`` matches whose metadata satisfies ``filter``."""

    @abstractmethod
    async def upsert(self, id: str, vector: List[float], metadata: Dict[str, Any]) -> None:
        """Insert or replace an entry."""


_TOKEN = re.compile(r"[a-z0-9]+")


class InMemorySearchIndex(SearchIndex):
    """Hashed bag-of-words embeddings with cosine similarity.

    Good enough to route "respiratory complaints" to a district described as
    "hospital quarter"; not meant to compete with a real vector store.
    """

    def __init__(self, dimensions: int = 64, min_score: float = 0.1) -> None:
        self.dimensions = dimensions
        self.min_score = min_score
        self.entries: Dict[str, tuple[List[float], Dict[str, Any]]] = {}

    async def embed(self, text: str) -> List[float]:
        vector = [0.0] * self.dimensions
        for token in _TOKEN.findall(text.lower()):
            digest = hashlib.md5(token.encode("utf-8")).digest()
            vector[int.from_bytes(digest[:4], "big") % self.dimensions] += 1.0
        norm = math.sqrt(sum(value * value for value in vector))
        return [value / norm for value in vector] if norm else vector

    async def query(
        self,
        vector: List[float],
        filter: Optional[Dict[str, Any]] = None,
        top_k: int = 1,
    ) -> List[SearchMatch]:
        matches: List[SearchMatch] = []
        for entry_id, (stored, metadata) in self.entries.items():
            if filter and any(metadata.get(key) != value for key, value in filter.items()):
                continue
            score = sum(a * b for a, b in zip(vector, stored))
            if score >= self.min_score:
                matches.append(SearchMatch(id=entry_id, score=score, metadata=metadata))
        matches.sort(key=lambda match: match.score, reverse=True)
        return matches[:top_k]

    async def upsert(self, id: str, vector: List[float], metadata: Dict[str, Any]) -> None:
        self.entries[id] = (list(vector), dict(metadata))

    async def index_district(self, district: District, description: str = "") -> None:
        """Register a district profile under the ``district_context`` type."""
        text = " ".join(
            part for part in (district.name, district.type, description, *district.traditions) if part
        )
        await self.upsert(
            f"district-{district.id}",
            await self.embed(text),
            {"type": "district_context", "district_id": district.id},
        )


# ============================================================================
# Metrics
# ============================================================================


class MetricsSink(ABC):
    """Receives batched metric updates keyed by category then metric name."""

    @abstractmethod
    async def update_metrics(self, updates: MetricUpdate) -> None:
        """Apply a nested partial update. Idempotent per call."""


class InMemoryMetrics(MetricsSink):
    """Records every batched call and keeps the latest value per metric."""

    def __init__(self) -> None:
        self.values: Dict[str, Dict[str, float]] = {}
        self.calls: List[MetricUpdate] = []

    async def update_metrics(self, updates: MetricUpdate) -> None:
        self.calls.append({category: dict(metrics) for category, metrics in updates.items()})
        for category, metrics in updates.items():
            self.values.setdefault(category, {}).update(metrics)


# ============================================================================
# District Directory
# ============================================================================


class DistrictDirectory(ABC):
    """Source of truth for districts and per-district activity logs."""

    @abstractmethod
    async def get_all_districts(self) -> List[District]:
        ...

    @abstractmethod
    async def get_district(self, district_id: str) -> Optional[District]:
        ...

    @abstractmethod
    async def record_agent_visit(self, district_id: str, agent_id: str) -> None:
        ...

    @abstractmethod
    async def track_conversation(self, district_id: str, summary: Dict[str, Any]) -> None:
        ...


class InMemoryDistrictDirectory(DistrictDirectory):
    """Dict-backed directory. Visits and conversation summaries are kept per district."""

    def __init__(self, districts: Iterable[District] = ()) -> None:
        self.districts: Dict[str, District] = {}
        self.visits: Dict[str, List[str]] = {}
        self.conversations: Dict[str, List[Dict[str, Any]]] = {}
        for district in districts:
            self.add_district(district)

    def add_district(self, district: District) -> None:
        self.districts[district.id] = district
        self.visits.setdefault(district.id, [])
        self.conversations.setdefault(district.id, [])

    async def get_all_districts(self) -> List[District]:
        return list(self.districts.values())

    async def get_district(self, district_id: str) -> Optional[District]:
        return self.districts.get(district_id)

    async def record_agent_visit(self, district_id: str, agent_id: str) -> None:
        if district_id not in self.districts:
            raise DistrictNotFoundError(district_id)
        self.visits[district_id].append(agent_id)

    async def track_conversation(self, district_id: str, summary: Dict[str, Any]) -> None:
        if district_id not in self.districts:
            raise DistrictNotFoundError(district_id)
        self.conversations[district_id].append(dict(summary))


# ============================================================================
# Cultural / Social Context
# ============================================================================


class ContextProvider(ABC):
    """Supplies the cultural context and community mood of a district."""

    @abstractmethod
    async def get_cultural_context(self, district_id: str) -> CulturalContext:
        ...

    @abstractmethod
    async def get_social_mood(self, district_id: str) -> SocialMood:
        ...


class DistrictContextProvider(ContextProvider):
    """Reads traditions, events and mood straight from the district record."""

    def __init__(self, directory: DistrictDirectory) -> None:
        self.directory = directory

    async def _district(self, district_id: str) -> District:
        district = await self.directory.get_district(district_id)
        if district is None:
            raise DistrictNotFoundError(district_id)
        return district

    async def get_cultural_context(self, district_id: str) -> CulturalContext:
        district = await self._district(district_id)
        return CulturalContext(events=district.cultural_events, traditions=district.traditions)

    async def get_social_mood(self, district_id: str) -> SocialMood:
        district = await self._district(district_id)
        return SocialMood(positivity=district.positivity, engagement=district.engagement)
