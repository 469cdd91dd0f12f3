"""
backend/pipeline.py

The ingest asyncio.Queue and the ring-buffer safe_put() helper used by the
collector to enqueue without blocking.

Queue sizing:
  ingest_queue = 10_000  — absorbs exporter bursts before the ingest workers

safe_put() drops the *oldest* item when the queue is full (ring-buffer
semantics) rather than blocking the collector.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from .metrics import METRICS

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Queue definition — import from other modules
# ---------------------------------------------------------------------------

# Lazily initialised so tests can create fresh queues without import side effects.
# Call init_queues() once at startup (done inside main.py).

ingest_queue: asyncio.Queue | None = None


def init_queues(ingest_size: int = 10_000) -> asyncio.Queue:
    """
    Initialise the ingest queue and return it.
    Must be called from within a running asyncio event loop.
    """
    global ingest_queue
    ingest_queue = asyncio.Queue(maxsize=ingest_size)
    logger.info("Pipeline queue initialised — ingest=%d", ingest_size)
    return ingest_queue


# ---------------------------------------------------------------------------
# Ring-buffer put helper
# ---------------------------------------------------------------------------

def safe_put(queue: asyncio.Queue, item: Any) -> bool:
    """
    Non-blocking enqueue with ring-buffer drop semantics.

    If the queue is full, the *oldest* item is discarded to make room,
    METRICS.messages_dropped is incremented, and a warning is logged.

    Returns:
        True  — item was enqueued successfully.
        False — item could not be enqueued.
    """
    if queue.full():
        try:
            queue.get_nowait()  # discard oldest item
            queue.task_done()
            METRICS.messages_dropped.inc()
            logger.warning(
                "Queue full (%d/%d) — oldest item dropped to make room",
                queue.qsize(),
                queue.maxsize,
            )
        except asyncio.QueueEmpty:
            pass  # queue was drained between the full() check and get_nowait()

    try:
        queue.put_nowait(item)
        return True
    except asyncio.QueueFull:
        METRICS.messages_dropped.inc()
        logger.error("safe_put: queue still full after drop — item lost")
        return False
