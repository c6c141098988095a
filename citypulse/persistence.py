"""
ConversationStore interface for pluggable conversation storage.

Completed conversations are written once, when the lifecycle manager closes
them. Storage is OPTIONAL: the engine runs entirely in-memory by default.

Two included implementations:
1. InMemoryConversationStore - dict-based, data lost on exit (tests, prototyping)
2. JsonConversationStore - one pretty-printed JSON file per conversation

Usage pattern:
    store = JsonConversationStore("conversations")
    await store.initialize()
    await store.save_conversation(conversation)
    await store.close()

All methods are async so slow backends (databases, object stores) never
block a scheduler tick. File I/O runs in a worker thread via
``asyncio.to_thread``.
"""

import asyncio
import json
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, List, Optional

from .schemas import Conversation


class ConversationStore(ABC):
    """Abstract base class for conversation persistence.

    Method categories:
    1. Lifecycle: initialize(), close()
    2. Writes: save_conversation() (replace by id)
    3. Reads: get_conversation(), list_conversations()
    """

    @abstractmethod
    async def initialize(self) -> None:
        """Prepare the backend (open pools, create directories)."""
        pass

    @abstractmethod
    async def close(self) -> None:
        """Release backend resources."""
        pass

    @abstractmethod
    async def save_conversation(self, conversation: Conversation) -> None:
        """
        Persist a conversation, replacing any earlier copy with the same id.

        Raises:
            Exception: If the write fails. Callers log and continue.
        """
        pass

    @abstractmethod
    async def get_conversation(self, conversation_id: str) -> Optional[Conversation]:
        """Return the stored conversation or None when unknown."""
        pass

    @abstractmethod
    async def list_conversations(
        self, district_id: Optional[str] = None, limit: Optional[int] = None
    ) -> List[Conversation]:
        """
        Return stored conversations ordered by start time (oldest first).

        Args:
            district_id: Only return conversations held in this district
            limit: Return at most this many of the most recent conversations
        """
        pass


def _select(
    conversations: List[Conversation], district_id: Optional[str], limit: Optional[int]
) -> List[Conversation]:
    selected = [c for c in conversations if district_id is None or c.district_id == district_id]
    selected.sort(key=lambda c: c.started_at)
    if limit is not None:
        selected = selected[-limit:] if limit > 0 else []
    return selected


class InMemoryConversationStore(ConversationStore):
    """Dict-backed store. Copies on write so later mutation cannot leak in."""

    def __init__(self) -> None:
        self.conversations: Dict[str, Conversation] = {}

    async def initialize(self) -> None:
        pass

    async def close(self) -> None:
        pass

    async def save_conversation(self, conversation: Conversation) -> None:
        self.conversations[conversation.id] = conversation.model_copy(deep=True)

    async def get_conversation(self, conversation_id: str) -> Optional[Conversation]:
        stored = self.conversations.get(conversation_id)
        return stored.model_copy(deep=True) if stored else None

    async def list_conversations(
        self, district_id: Optional[str] = None, limit: Optional[int] = None
    ) -> List[Conversation]:
        return [c.model_copy(deep=True) for c in _select(list(self.conversations.values()), district_id, limit)]


class JsonConversationStore(ConversationStore):
    """File-based store: ``{base_path}/{conversation_id}.json``.

    Good for small runs and debugging; a transcript can be inspected by
    opening the file. Not suitable for concurrent writers.
    """

    def __init__(self, base_path: Path | str = "conversations"):
        self.base_path = Path(base_path)

    async def initialize(self) -> None:
        await asyncio.to_thread(self.base_path.mkdir, parents=True, exist_ok=True)

    async def close(self) -> None:
        # Nothing to clean up for JSON persistence
        return None

    def _path(self, conversation_id: str) -> Path:
        return self.base_path / f"{conversation_id}.json"

    async def save_conversation(self, conversation: Conversation) -> None:
        await asyncio.to_thread(self.base_path.mkdir, parents=True, exist_ok=True)
        data = conversation.model_dump(mode="json")
        await asyncio.to_thread(
            self._path(conversation.id).write_text, json.dumps(data, indent=2), "utf-8"
        )

    async def get_conversation(self, conversation_id: str) -> Optional[Conversation]:
        path = self._path(conversation_id)
        if not path.exists():
            return None
        content = await asyncio.to_thread(path.read_text, "utf-8")
        return Conversation.model_validate(json.loads(content))

    async def list_conversations(
        self, district_id: Optional[str] = None, limit: Optional[int] = None
    ) -> List[Conversation]:
        if not self.base_path.exists():
            return []

        def _load_all() -> List[Conversation]:
            return [
                Conversation.model_validate(json.loads(path.read_text("utf-8")))
                for path in sorted(self.base_path.glob("*.json"))
            ]

        conversations = await asyncio.to_thread(_load_all)
        return _select(conversations, district_id, limit)
