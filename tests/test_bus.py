"""Fire-and-forget notification fan-out."""

import asyncio

import pytest

from citypulse.bus import CONVERSATION_STARTED, EVENT_GENERATED, EventBus


@pytest.mark.asyncio
async def test_sync_subscriber_failure_is_isolated(capsys):
    bus = EventBus()
    received = []

    def broken(payload):
        raise RuntimeError("subscriber bug")

    bus.subscribe(EVENT_GENERATED, broken)
    bus.subscribe(EVENT_GENERATED, received.append)

    bus.publish(EVENT_GENERATED, {"id": 1})

    assert received == [{"id": 1}]
    assert "subscriber bug" in capsys.readouterr().out


@pytest.mark.asyncio
async def test_async_subscriber_does_not_block_publisher():
    bus = EventBus()
    gate = asyncio.Event()
    received = []

    async def slow(payload):
        await gate.wait()
        received.append(payload)

    bus.subscribe(CONVERSATION_STARTED, slow)

    bus.publish(CONVERSATION_STARTED, {"conversation_id": "c1"})
    assert received == []

    gate.set()
    await bus.drain()
    assert received == [{"conversation_id": "c1"}]


@pytest.mark.asyncio
async def test_async_subscriber_failure_is_logged_not_raised(capsys):
    bus = EventBus()

    async def broken(payload):
        raise RuntimeError("async bug")

    bus.subscribe(EVENT_GENERATED, broken)
    bus.publish(EVENT_GENERATED, {})
    await bus.drain()

    assert "async bug" in capsys.readouterr().out


def test_unknown_topic_and_unsubscribe():
    bus = EventBus()
    received = []

    with pytest.raises(ValueError):
        bus.subscribe("conversation:exploded", received.append)

    unsubscribe = bus.subscribe(EVENT_GENERATED, received.append)
    unsubscribe()
    bus.publish(EVENT_GENERATED, {"id": 2})

    assert received == []
