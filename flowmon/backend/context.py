"""
backend/context.py

AppContext — the objects shared by the ingest workers and the API.

Built once in main.py and passed explicitly to everything that needs it;
nothing in the flow table is reachable through module-level globals.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from .aggregation import AggregateStore
from .api.ws_manager import WebSocketManager
from .config import Settings
from .ingest import EnricherChain, FlowConsumer

logger = logging.getLogger(__name__)


@dataclass
class AppContext:
    settings: Settings
    store: AggregateStore
    consumer: FlowConsumer
    ws: WebSocketManager = field(default_factory=WebSocketManager)

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        enrichers: EnricherChain | None = None,
    ) -> "AppContext":
        """
        Build the flow table described by *settings*.

        Raises UnknownFieldError / InvalidSortKeyError for a bad
        AGGREGATE_KEYS / DEFAULT_SORT_KEY combination.
        """
        store = AggregateStore(
            mode=settings.TABLE_MODE,
            active_keys=settings.AGGREGATE_KEYS or None,
            sort_key=settings.DEFAULT_SORT_KEY,
        )
        consumer = FlowConsumer(store, enrichers)
        logger.info(
            "Flow table ready — mode=%s keys=%s sort=%s enrichers=%s",
            settings.TABLE_MODE,
            list(store.active_keys),
            store.sort_key,
            consumer.enrichers.names or "none",
        )
        return cls(settings=settings, store=store, consumer=consumer)
