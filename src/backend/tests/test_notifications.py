import asyncio

from oracle.models.schemas import EventType, LifecycleEvent
from oracle.services.notifications import EventBus


def _event(subject_id="m1", event_type=EventType.RESOLUTION_STARTED):
    return LifecycleEvent(event_type=event_type, subject_id=subject_id)


def test_sync_subscribers_receive_events_inline():
    bus = EventBus()
    seen = []
    bus.subscribe(seen.append)

    bus.publish(_event())

    assert [e.subject_id for e in seen] == ["m1"]


def test_failing_subscriber_does_not_block_others():
    bus = EventBus()
    seen = []

    def broken(event):
        raise RuntimeError("subscriber down")

    bus.subscribe(broken)
    bus.subscribe(seen.append)

    bus.publish(_event())

    assert len(seen) == 1


def test_async_subscribers_are_scheduled():
    bus = EventBus()
    seen = []

    async def handler(event):
        seen.append(event.event_type)

    async def failing(event):
        raise RuntimeError("async subscriber down")

    async def scenario():
        bus.subscribe(handler)
        bus.subscribe(failing)
        bus.publish(_event(event_type=EventType.CONSENSUS_FORMED))
        await asyncio.sleep(0)
        await asyncio.sleep(0)

    asyncio.run(scenario())

    assert seen == [EventType.CONSENSUS_FORMED]


def test_unsubscribe_is_idempotent():
    bus = EventBus()
    seen = []
    bus.subscribe(seen.append)
    bus.unsubscribe(seen.append)
    bus.unsubscribe(seen.append)

    bus.publish(_event())

    assert seen == []
    assert bus.subscriber_count == 0


def test_stream_filters_by_market_and_unsubscribes_on_exit():
    bus = EventBus()

    async def scenario():
        async with bus.stream("m1") as queue:
            bus.publish(_event("m2"))
            bus.publish(_event("m1"))
            received = await asyncio.wait_for(queue.get(), timeout=1)
            return received, queue.qsize(), bus.subscriber_count

    received, remaining, subscribers = asyncio.run(scenario())

    assert received.subject_id == "m1"
    assert remaining == 0
    assert subscribers == 1
    assert bus.subscriber_count == 0


def test_full_stream_drops_events():
    bus = EventBus()

    async def scenario():
        async with bus.stream(maxsize=2) as queue:
            for i in range(5):
                bus.publish(_event(f"m{i}"))
            return queue.qsize()

    assert asyncio.run(scenario()) == 2
