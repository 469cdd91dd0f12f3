"""
ingest/workers.py

IngestWorkerPool — N asyncio tasks draining the ingest queue into a
FlowConsumer.

Each worker runs consume() in a thread (asyncio.to_thread) so up to N
messages are classified concurrently; the AggregateStore lock serialises the
parts that must not overlap. Cancellation (shutdown) is handled here, the
flow table itself has no cancellation semantics.

Failure handling:
  - An unexpected exception from one message is logged, counted in
    METRICS.messages_failed and the worker moves on to the next item.
  - InvariantViolation is fatal: the worker stops and on_fatal(exc) is
    called so the process can shut down instead of ingesting into a broken
    flow table.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable

from ..aggregation import InvariantViolation
from ..metrics import METRICS
from .consumer import FlowConsumer

logger = logging.getLogger(__name__)


class IngestWorkerPool:
    """
    Args:
        queue:    asyncio.Queue of (RawFlowMessage, extra) pairs.
        consumer: FlowConsumer to hand messages to.
        workers:  Number of concurrent workers.
        on_fatal: Called once with the exception when a worker dies.
    """

    def __init__(
        self,
        queue: asyncio.Queue,
        consumer: FlowConsumer,
        workers: int = 4,
        on_fatal: Callable[[BaseException], None] | None = None,
    ) -> None:
        if workers < 1:
            raise ValueError("workers must be >= 1")
        self._queue = queue
        self._consumer = consumer
        self._workers = workers
        self._on_fatal = on_fatal
        self._tasks: list[asyncio.Task] = []

    def start(self) -> None:
        if self._tasks:
            return
        self._tasks = [
            asyncio.create_task(self._run(i), name=f"ingest-{i}")
            for i in range(self._workers)
        ]
        for task in self._tasks:
            task.add_done_callback(self._worker_done)
        logger.info("Started %d ingest worker(s)", self._workers)

    async def stop(self) -> None:
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        logger.info("Ingest workers stopped")

    async def _run(self, worker_id: int) -> None:
        logger.debug("Ingest worker %d started", worker_id)
        while True:
            msg, extra = await self._queue.get()
            try:
                await asyncio.to_thread(self._consumer.consume, msg, extra)
            except InvariantViolation:
                logger.critical("Ingest worker %d hit a flow table invariant violation", worker_id)
                raise
            except Exception:
                METRICS.messages_failed.inc()
                logger.exception("Ingest worker %d failed on %r — skipping", worker_id, msg)
            finally:
                self._queue.task_done()

    def _worker_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is None:
            return
        logger.critical("Ingest worker %s died: %s", task.get_name(), exc)
        if self._on_fatal is not None:
            self._on_fatal(exc)

    @property
    def size(self) -> int:
        return self._workers

    @property
    def alive(self) -> int:
        """Number of worker tasks still running."""
        return sum(1 for t in self._tasks if not t.done())
