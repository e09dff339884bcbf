"""Tests for the bounded dispatch queue."""

import asyncio

import pytest

from agentpool.errors import DispatchQueueClosedError
from agentpool.queue import DispatchQueue


@pytest.mark.asyncio
async def test_items_are_handled():
    handled = []

    async def handler(item):
        handled.append(item)

    queue = DispatchQueue(handler, max_workers=2)
    await queue.start()
    for i in range(5):
        await queue.submit(i)

    while len(handled) < 5:
        await asyncio.sleep(0.01)
    await queue.close()

    assert sorted(handled) == [0, 1, 2, 3, 4]


@pytest.mark.asyncio
async def test_worker_count_bounds_concurrency():
    gate = asyncio.Event()
    running = 0
    peak = 0

    async def handler(item):
        nonlocal running, peak
        running += 1
        peak = max(peak, running)
        await gate.wait()
        running -= 1

    queue = DispatchQueue(handler, max_workers=2, max_pending=10)
    await queue.start()
    for i in range(6):
        await queue.submit(i)
    await asyncio.sleep(0.05)

    assert queue.active_count == 2
    assert queue.pending_count == 4

    gate.set()
    await queue.close(grace_period=1.0)
    assert peak == 2


@pytest.mark.asyncio
async def test_submit_blocks_when_full():
    gate = asyncio.Event()

    async def handler(item):
        await gate.wait()

    queue = DispatchQueue(handler, max_workers=1, max_pending=1)
    await queue.start()
    await queue.submit("running")
    await asyncio.sleep(0.01)
    await queue.submit("waiting")

    blocked = asyncio.create_task(queue.submit("overflow"))
    await asyncio.sleep(0.05)
    assert not blocked.done()

    gate.set()
    await asyncio.wait_for(blocked, timeout=1.0)
    await queue.close()


@pytest.mark.asyncio
async def test_handler_errors_do_not_kill_workers():
    handled = []

    async def handler(item):
        if item == "bad":
            raise ValueError("bad item")
        handled.append(item)

    queue = DispatchQueue(handler, max_workers=1)
    await queue.start()
    await queue.submit("bad")
    await queue.submit("good")

    while not handled:
        await asyncio.sleep(0.01)
    await queue.close()

    assert handled == ["good"]


@pytest.mark.asyncio
async def test_submit_rejected_before_start_and_after_close():
    async def handler(item):
        pass

    queue = DispatchQueue(handler)
    with pytest.raises(DispatchQueueClosedError):
        await queue.submit(1)

    await queue.start()
    assert queue.running is True
    await queue.close()

    assert queue.running is False
    with pytest.raises(DispatchQueueClosedError):
        await queue.submit(1)


@pytest.mark.asyncio
async def test_close_discards_queued_and_reports_stragglers():
    started = asyncio.Event()
    handled = []

    async def handler(item):
        handled.append(item)
        started.set()
        await asyncio.sleep(10)

    queue = DispatchQueue(handler, max_workers=1, max_pending=5)
    await queue.start()
    await queue.submit("slow")
    await queue.submit("never")
    await started.wait()

    outstanding = await queue.close(grace_period=0.05)

    assert outstanding == 1
    assert handled == ["slow"]
    assert queue.pending_count == 0

    for worker in queue._workers:
        worker.cancel()


def test_rejects_empty_pool():
    async def handler(item):
        pass

    with pytest.raises(ValueError):
        DispatchQueue(handler, max_workers=0)


@pytest.mark.asyncio
async def test_close_hands_discarded_items_back():
    gate = asyncio.Event()
    discarded = []

    async def handler(item):
        await gate.wait()

    queue = DispatchQueue(handler, max_workers=1, on_discard=discarded.append)
    await queue.start()
    for item in ("a", "b", "c"):
        await queue.submit(item)
    await asyncio.sleep(0.01)

    asyncio.get_running_loop().call_later(0.05, gate.set)
    assert await queue.close(grace_period=1.0) == 0

    assert discarded == ["b", "c"]


@pytest.mark.asyncio
async def test_discard_errors_are_logged_not_raised():
    gate = asyncio.Event()

    async def handler(item):
        await gate.wait()

    def explode(item):
        raise RuntimeError("cannot settle")

    queue = DispatchQueue(handler, max_workers=1, on_discard=explode)
    await queue.start()
    await queue.submit("running")
    await queue.submit("queued")
    await asyncio.sleep(0.01)

    gate.set()
    await queue.close(grace_period=1.0)

    assert queue.pending_count == 0


@pytest.mark.asyncio
async def test_restart_after_close():
    handled = []

    async def handler(item):
        handled.append(item)

    queue = DispatchQueue(handler, max_workers=2)
    await queue.start()
    await queue.close()

    await queue.start()
    assert queue.running is True
    await queue.submit("after restart")

    while not handled:
        await asyncio.sleep(0.01)
    await queue.close()

    assert handled == ["after restart"]
