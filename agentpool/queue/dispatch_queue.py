"""Bounded in-process queue feeding a fixed pool of dispatch workers."""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

from agentpool.errors import DispatchQueueClosedError

logger = logging.getLogger(__name__)

Handler = Callable[[Any], Awaitable[None]]
DiscardHandler = Callable[[Any], None]


class DispatchQueue:
    """
    Asyncio work queue with a fixed number of workers.

    At most ``max_workers`` items run at once and at most ``max_pending``
    wait; ``submit`` blocks while the queue is full, pushing backpressure
    onto whoever produces work.
    """

    def __init__(
        self,
        handler: Handler,
        max_workers: int = 4,
        max_pending: int = 100,
        name: str = "dispatch",
        on_discard: Optional[DiscardHandler] = None
    ):
        """
        Initialize dispatch queue.

        Args:
            handler: Coroutine function run once per submitted item
            max_workers: Number of concurrent workers
            max_pending: Queue capacity before submit blocks
            name: Label used in logs and worker task names
            on_discard: Called with each item dropped unhandled by close()
        """
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        self.handler = handler
        self.on_discard = on_discard
        self.max_workers = max_workers
        self.max_pending = max_pending
        self.name = name

        self._queue: Optional[asyncio.Queue] = None
        self._workers: list[asyncio.Task] = []
        self._busy: set[asyncio.Task] = set()
        self._closed = False

    @property
    def running(self) -> bool:
        return bool(self._workers) and not self._closed

    @property
    def pending_count(self) -> int:
        """Items waiting for a worker."""
        return self._queue.qsize() if self._queue else 0

    @property
    def active_count(self) -> int:
        """Items currently being handled."""
        return len(self._busy)

    async def start(self) -> None:
        """
        Spawn the worker pool. Must be called from a running event loop.

        A closed queue can be started again; workers left over from the
        previous run finish their current item and exit.
        """
        if self.running:
            return
        self._queue = asyncio.Queue(maxsize=self.max_pending)
        self._closed = False
        self._workers = []
        for i in range(self.max_workers):
            worker = asyncio.create_task(
                self._worker_loop(self._queue), name=f"{self.name}-worker-{i}"
            )
            self._workers.append(worker)
        logger.info(f"Started {self.name} queue with {self.max_workers} workers")

    async def submit(self, item: Any) -> None:
        """
        Add an item, waiting for room if the queue is full.

        Raises:
            DispatchQueueClosedError: If the queue is closed or never started
        """
        if self._closed or self._queue is None:
            raise DispatchQueueClosedError(f"{self.name} queue is not accepting work")
        await self._queue.put(item)
        logger.debug(f"Queued item on {self.name} (depth {self._queue.qsize()})")

    async def _worker_loop(self, queue: asyncio.Queue) -> None:
        current = asyncio.current_task()
        while self._serving(queue):
            item = await queue.get()
            if not self._serving(queue):
                queue.task_done()
                self._discard(item)
                break

            self._busy.add(current)
            try:
                await self.handler(item)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Error in {self.name} worker: {e}", exc_info=True)
            finally:
                self._busy.discard(current)
                queue.task_done()

    def _serving(self, queue: asyncio.Queue) -> bool:
        return not self._closed and queue is self._queue

    def _discard(self, item: Any) -> None:
        if self.on_discard is None:
            return
        try:
            self.on_discard(item)
        except Exception as e:
            logger.error(f"Error discarding item from {self.name}: {e}", exc_info=True)

    async def close(self, grace_period: float = 10.0) -> int:
        """
        Stop accepting work and wait for running items.

        Items still queued are discarded and passed to ``on_discard``. Idle
        workers are cancelled; busy ones are left to finish for up to
        ``grace_period`` seconds and are not interrupted after that.

        Args:
            grace_period: Seconds to wait for running items

        Returns:
            Number of items still running when the wait ended
        """
        if self._closed:
            return len(self._busy)
        self._closed = True

        discarded = 0
        if self._queue is not None:
            while not self._queue.empty():
                item = self._queue.get_nowait()
                self._queue.task_done()
                self._discard(item)
                discarded += 1
        if discarded:
            logger.warning(f"Discarded {discarded} queued items on {self.name}")

        busy = set(self._busy)
        for worker in self._workers:
            if worker not in busy:
                worker.cancel()

        outstanding = 0
        if busy:
            _, still_running = await asyncio.wait(busy, timeout=grace_period)
            outstanding = len(still_running)
            if outstanding:
                logger.warning(
                    f"Timeout waiting for {self.name} workers: {outstanding} still running"
                )

        self._workers = [w for w in self._workers if not w.done()]
        logger.info(f"Closed {self.name} queue")
        return outstanding
