"""
ingest/collector.py

JsonFlowCollector — receives already-decoded flow messages as JSON over UDP
and puts them on the ingest queue.

Expected datagram payload: a JSON object or a list of JSON objects, each
holding RawFlowMessage fields (snake_case) plus an optional "extra" object
with enrichment attributes:

    {"src_addr": "10.0.0.1", "dst_addr": "10.0.0.2", "proto": 6,
     "src_port": 43512, "dst_port": 443, "bytes": 1200, "packets": 3,
     "time_received": 1700000000, "time_flow_start": 1699999990,
     "time_flow_end": 1700000000, "extra": {"DPName": "br-int"}}

Objects that fail to decode are skipped; a datagram with no usable object is
counted in METRICS.datagrams_invalid.

Thread safety: datagram_received() runs on the event loop thread only.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

from ..metrics import METRICS
from ..models import RawFlowMessage
from ..pipeline import safe_put

logger = logging.getLogger(__name__)

IngestItem = tuple[RawFlowMessage, dict[str, Any]]


def decode_datagram(data: bytes) -> list[IngestItem]:
    """Decode one datagram into (message, extra) pairs; [] if nothing usable."""
    try:
        obj = json.loads(data.decode("utf-8", errors="ignore").strip())
    except (json.JSONDecodeError, RecursionError):
        return []

    objects = obj if isinstance(obj, list) else [obj]
    items: list[IngestItem] = []
    for item in objects:
        if not isinstance(item, dict):
            continue
        extra = item.get("extra") or {}
        if not isinstance(extra, dict):
            extra = {}
        try:
            msg = RawFlowMessage.from_dict(item)
        except (TypeError, ValueError) as exc:
            logger.debug("Skipping undecodable flow object: %s", exc)
            continue
        items.append((msg, extra))
    return items


class _CollectorProtocol(asyncio.DatagramProtocol):
    def __init__(self, queue: asyncio.Queue) -> None:
        self._queue = queue

    def datagram_received(self, data: bytes, addr) -> None:
        METRICS.datagrams_received.inc()
        items = decode_datagram(data)
        if not items:
            METRICS.datagrams_invalid.inc()
            logger.debug("Invalid datagram from %s (%d bytes)", addr, len(data))
            return
        for item in items:
            safe_put(self._queue, item)

    def error_received(self, exc: Exception) -> None:
        logger.warning("Collector socket error: %s", exc)


class JsonFlowCollector:
    """
    Listens for JSON flow datagrams and feeds the ingest queue.

    Lifecycle:
        collector = JsonFlowCollector(queue, host="0.0.0.0", port=2055)
        await collector.start()
        # ... event loop runs ...
        collector.stop()
    """

    def __init__(self, queue: asyncio.Queue, host: str = "0.0.0.0", port: int = 2055) -> None:
        self._queue = queue
        self._host = host
        self._port = int(port)
        self._transport: asyncio.DatagramTransport | None = None

    async def start(self) -> None:
        if self._transport is not None:
            logger.warning("JsonFlowCollector.start() called but already running")
            return
        loop = asyncio.get_running_loop()
        self._transport, _ = await loop.create_datagram_endpoint(
            lambda: _CollectorProtocol(self._queue),
            local_addr=(self._host, self._port),
        )
        logger.info("Collecting JSON flows on udp://%s:%d", self._host, self._port)

    def stop(self) -> None:
        if self._transport is None:
            return
        self._transport.close()
        self._transport = None
        logger.info("JsonFlowCollector stopped — metrics: %s", METRICS.as_dict())

    @property
    def is_running(self) -> bool:
        return self._transport is not None

    def __repr__(self) -> str:  # pragma: no cover
        return (
            f"JsonFlowCollector(host={self._host!r}, port={self._port}, "
            f"running={self.is_running})"
        )
