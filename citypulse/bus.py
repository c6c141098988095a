"""Publish/subscribe fan-out for engine notifications.

The bus is constructed once and injected into every component that emits
notifications. Publishing is fire-and-forget:

- synchronous handlers run inline; an exception is logged and the remaining
  handlers still run
- coroutine handlers are scheduled as tasks on the running loop so a slow
  subscriber never blocks the emitter

Transport (websockets, district broadcasts, analytics) lives entirely in the
subscribers.
"""

from __future__ import annotations

import asyncio
import inspect
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Set, Union

from .logging_utils import log_error

CONVERSATION_STARTED = "conversation:started"
MESSAGE_ADDED = "message:added"
CONVERSATION_ENDED = "conversation:ended"
EVENT_GENERATED = "eventGenerated"
EVENT_RESOLVED = "eventResolved"

TOPICS = (
    CONVERSATION_STARTED,
    MESSAGE_ADDED,
    CONVERSATION_ENDED,
    EVENT_GENERATED,
    EVENT_RESOLVED,
)

Handler = Callable[[Dict[str, Any]], Union[None, Awaitable[None]]]


@dataclass
class EventBus:
    """Explicitly constructed pub/sub component (no process-wide singleton)."""

    _handlers: Dict[str, List[Handler]] = field(default_factory=lambda: defaultdict(list))
    _pending: Set[asyncio.Task] = field(default_factory=set)

    def subscribe(self, topic: str, handler: Handler) -> Callable[[], None]:
        """Register ``handler`` for ``topic`` and return an unsubscribe callable."""
        if topic not in TOPICS:
            raise ValueError(f"Unknown topic '{topic}'. Expected one of: {', '.join(TOPICS)}")
        self._handlers[topic].append(handler)

        def _unsubscribe() -> None:
            if handler in self._handlers[topic]:
                self._handlers[topic].remove(handler)

        return _unsubscribe

    def publish(self, topic: str, payload: Dict[str, Any]) -> None:
        for handler in list(self._handlers.get(topic, [])):
            try:
                result = handler(payload)
            except Exception as exc:
                log_error(f"[Bus] Subscriber for '{topic}' failed: {exc}")
                continue
            if inspect.isawaitable(result):
                self._schedule(topic, result)

    def _schedule(self, topic: str, awaitable: Awaitable[None]) -> None:
        async def _guard() -> None:
            try:
                await awaitable
            except Exception as exc:
                log_error(f"[Bus] Async subscriber for '{topic}' failed: {exc}")

        task = asyncio.get_running_loop().create_task(_guard())
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def drain(self) -> None:
        """Wait for scheduled async handlers (used on shutdown and in tests)."""
        while self._pending:
            await asyncio.gather(*list(self._pending))
