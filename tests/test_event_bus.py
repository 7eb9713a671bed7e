"""
EventBus delivery semantics.
"""
import pytest

from monitoring.event_bus import EventBus, EventTopic


@pytest.mark.asyncio
async def test_delivers_in_subscription_order():
    bus = EventBus()
    seen = []

    async def first(payload):
        seen.append(("first", payload))

    async def second(payload):
        seen.append(("second", payload))

    bus.subscribe(EventTopic.POSITION_OPENED, first)
    bus.subscribe(EventTopic.POSITION_OPENED, second)
    await bus.publish(EventTopic.POSITION_OPENED, "p1")
    assert seen == [("first", "p1"), ("second", "p1")]


@pytest.mark.asyncio
async def test_failing_subscriber_is_isolated():
    bus = EventBus()
    seen = []

    async def broken(payload):
        raise RuntimeError("subscriber bug")

    async def healthy(payload):
        seen.append(payload)

    bus.subscribe(EventTopic.TRADE_FAILED, broken)
    bus.subscribe(EventTopic.TRADE_FAILED, healthy)
    await bus.publish(EventTopic.TRADE_FAILED, "evt")
    assert seen == ["evt"]


@pytest.mark.asyncio
async def test_topics_are_independent_and_counted():
    bus = EventBus()
    seen = []

    async def handler(payload):
        seen.append(payload)

    bus.subscribe(EventTopic.POSITION_CLOSED, handler)
    await bus.publish(EventTopic.POSITION_UPDATED, "ignored")
    await bus.publish("positionClosed", "closed")
    assert seen == ["closed"]
    assert bus.published_count(EventTopic.POSITION_UPDATED) == 1
    assert bus.published_count(EventTopic.POSITION_CLOSED) == 1


@pytest.mark.asyncio
async def test_unsubscribe():
    bus = EventBus()
    seen = []

    async def handler(payload):
        seen.append(payload)

    bus.subscribe(EventTopic.POSITION_OPENED, handler)
    bus.unsubscribe(EventTopic.POSITION_OPENED, handler)
    await bus.publish(EventTopic.POSITION_OPENED, "p")
    assert seen == []


def test_buses_do_not_share_subscribers():
    a, b = EventBus(), EventBus()

    async def handler(payload):
        pass

    a.subscribe(EventTopic.POSITION_OPENED, handler)
    assert b._handlers.get(EventTopic.POSITION_OPENED) is None
