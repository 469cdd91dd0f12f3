"""
api/ws_manager.py

WebSocketManager — the clients subscribed to live flow table snapshots.

main.flows_broadcaster() serialises one FlowTableResponse per interval and
pushes the same text frame to every client on the "flows" channel. A client
whose send fails is unsubscribed; it reconnects to /ws/flows to resume.

Thread safety: asyncio only. Snapshot building happens under the
AggregateStore lock before broadcast() is awaited, never in here.
"""

from __future__ import annotations

import json
import logging
from collections import defaultdict

from fastapi import WebSocket

logger = logging.getLogger(__name__)

FLOWS_CHANNEL = "flows"


class WebSocketManager:
    """Subscribers per channel; FLOWS_CHANNEL carries the flow table."""

    def __init__(self) -> None:
        self._channels: dict[str, set[WebSocket]] = defaultdict(set)
        self.stats: dict[str, int] = {
            "snapshots_sent": 0,
            "clients_dropped": 0,
        }

    async def connect(self, websocket: WebSocket, channel: str = FLOWS_CHANNEL) -> None:
        await websocket.accept()
        self._channels[channel].add(websocket)
        logger.debug(
            "Snapshot subscriber joined %r — %d subscribed",
            channel,
            len(self._channels[channel]),
        )

    async def disconnect(self, websocket: WebSocket, channel: str = FLOWS_CHANNEL) -> None:
        self._channels[channel].discard(websocket)
        logger.debug(
            "Snapshot subscriber left %r — %d subscribed",
            channel,
            len(self._channels[channel]),
        )

    async def broadcast(self, channel: str, snapshot: dict) -> None:
        """
        Push one serialised snapshot to every subscriber of *channel*.

        The frame is encoded once; subscribers whose send raises are dropped.
        """
        subscribers = list(self._channels[channel])
        if not subscribers:
            return

        frame = json.dumps(snapshot, default=str)
        failed: list[WebSocket] = []
        for ws in subscribers:
            try:
                await ws.send_text(frame)
            except Exception as exc:
                logger.debug("Dropping snapshot subscriber on %r: %s", channel, exc)
                failed.append(ws)

        for ws in failed:
            self._channels[channel].discard(ws)
        self.stats["snapshots_sent"] += len(subscribers) - len(failed)
        self.stats["clients_dropped"] += len(failed)

    def connection_count(self, channel: str = FLOWS_CHANNEL) -> int:
        return len(self._channels[channel])

    def all_counts(self) -> dict[str, int]:
        return {ch: len(conns) for ch, conns in self._channels.items()}
