import asyncio

import pytest

from voice_match.core.event_bus import EventBus, HandlerConfig
from voice_match.core.queues import BoundedQueue, OverflowPolicy


@pytest.mark.asyncio
async def test_bounded_queue_drop_oldest_keeps_newest_items():
    queue = BoundedQueue(2, OverflowPolicy.DROP_OLDEST)

    assert await queue.put(1) is True
    assert await queue.put(2) is True
    assert await queue.put(3) is False

    assert [await queue.get(), await queue.get()] == [2, 3]


@pytest.mark.asyncio
async def test_bounded_queue_drop_newest_rejects_incoming_item():
    queue = BoundedQueue(1, OverflowPolicy.DROP_NEWEST)

    await queue.put("a")
    assert await queue.put("b") is False

    assert await queue.get() == "a"
    assert len(queue) == 0


@pytest.mark.asyncio
async def test_bounded_queue_join_waits_for_task_done_and_clear():
    queue = BoundedQueue(10)
    await queue.put("x")
    await queue.put("y")

    await queue.get()
    joiner = asyncio.create_task(queue.join())
    await asyncio.sleep(0)
    assert not joiner.done()

    queue.task_done()
    assert await queue.clear() == 1
    await asyncio.wait_for(joiner, timeout=1)


def test_bounded_queue_requires_positive_size():
    with pytest.raises(ValueError):
        BoundedQueue(0)


@pytest.mark.asyncio
async def test_single_worker_handler_sees_events_in_publish_order():
    bus = EventBus("test")
    seen = []

    async def _handler(event):
        # yield mid-handler so out-of-order processing would show up
        await asyncio.sleep(0)
        seen.append(event)

    await bus.register_handler(HandlerConfig(name="ordered", concurrency=1), _handler)
    for index in range(20):
        await bus.publish(index)
    await bus.drain()

    assert seen == list(range(20))
    await bus.shutdown()


@pytest.mark.asyncio
async def test_handler_failure_is_logged_and_does_not_stop_the_worker(caplog):
    bus = EventBus("test")
    seen = []

    async def _handler(event):
        if event == "bad":
            raise RuntimeError("boom")
        seen.append(event)

    await bus.register_handler(HandlerConfig(name="fragile"), _handler)
    await bus.publish("bad")
    await bus.publish("good")
    await bus.drain()

    assert seen == ["good"]
    assert "Handler fragile failed" in caplog.text
    await bus.shutdown()


@pytest.mark.asyncio
async def test_clear_discards_pending_events():
    bus = EventBus("test")
    release = asyncio.Event()
    seen = []

    async def _handler(event):
        await release.wait()
        seen.append(event)

    await bus.register_handler(HandlerConfig(name="slow"), _handler)
    for event in ("first", "second", "third"):
        await bus.publish(event)
    await asyncio.sleep(0)

    removed = await bus.clear()
    release.set()
    await bus.drain()

    assert removed == 2
    assert seen == ["first"]
    await bus.shutdown()


@pytest.mark.asyncio
async def test_duplicate_handler_name_is_rejected():
    bus = EventBus("test")

    async def _handler(event):
        return None

    await bus.register_handler(HandlerConfig(name="dup"), _handler)
    with pytest.raises(ValueError):
        await bus.register_handler(HandlerConfig(name="dup"), _handler)
    await bus.shutdown()
