"""Event stream delivery."""

import asyncio

import pytest

from cablectrl.events import AutoStopTriggered, Disconnected, EventStream


@pytest.mark.asyncio
async def test_subscribers_receive_events_in_order():
    stream = EventStream()
    first = stream.subscribe()
    second = stream.subscribe()

    stream.publish(Disconnected(expected=False))
    stream.publish(AutoStopTriggered(elapsed=5.0))

    assert first.drain() == [Disconnected(expected=False), AutoStopTriggered(elapsed=5.0)]
    assert await second.get(timeout=0.1) == Disconnected(expected=False)


@pytest.mark.asyncio
async def test_full_subscriber_drops_instead_of_blocking():
    stream = EventStream()
    slow = stream.subscribe(maxsize=2)

    for i in range(5):
        stream.publish(AutoStopTriggered(elapsed=float(i)))

    assert [e.elapsed for e in slow.drain()] == [0.0, 1.0]


@pytest.mark.asyncio
async def test_closed_subscription_stops_receiving():
    stream = EventStream()
    with stream.subscribe() as subscription:
        assert stream.subscriber_count == 1
    assert stream.subscriber_count == 0

    stream.publish(Disconnected(expected=True))
    assert subscription.drain() == []


@pytest.mark.asyncio
async def test_get_times_out():
    stream = EventStream()
    subscription = stream.subscribe()
    with pytest.raises(asyncio.TimeoutError):
        await subscription.get(timeout=0.01)


@pytest.mark.asyncio
async def test_async_iteration():
    stream = EventStream()
    subscription = stream.subscribe()
    stream.publish(Disconnected(expected=True))

    async for event in subscription:
        assert event == Disconnected(expected=True)
        subscription.close()
