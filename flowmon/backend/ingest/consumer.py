"""
ingest/consumer.py

FlowConsumer — the decoder-facing entry point of the flow table.

consume() is called once per decoded flow message, possibly from several
worker threads at the same time. It runs the enricher chain, hands the
message to AggregateStore.process_message() and keeps the ingest counters.

Errors raised by the flow table for a single message are logged and counted
here; they never propagate back into the decoder.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping

from ..aggregation import AggregateStore, FlowTableError, InvariantViolation
from ..metrics import METRICS
from ..models import RawFlowMessage
from .enrichers import EnricherChain

logger = logging.getLogger(__name__)


class FlowConsumer:
    """
    Bridges decoded messages into an AggregateStore.

    Args:
        store:     The flow table.
        enrichers: Enricher chain run on every message (optional).
    """

    def __init__(
        self,
        store: AggregateStore,
        enrichers: EnricherChain | None = None,
    ) -> None:
        self.store = store
        self.enrichers = enrichers if enrichers is not None else EnricherChain()

    def consume(
        self,
        msg: RawFlowMessage,
        extra: Mapping[str, Any] | None = None,
    ) -> bool:
        """
        Enrich and ingest one message.

        Returns True if the flow table accepted it. InvariantViolation is a
        programming error and is re-raised.
        """
        METRICS.messages_received.inc()
        attrs = self.enrichers.apply(msg, extra)
        try:
            self.store.process_message(msg, attrs)
        except InvariantViolation:
            raise
        except FlowTableError as exc:
            METRICS.messages_failed.inc()
            logger.error("Flow message rejected by flow table: %s", exc)
            return False
        except (TypeError, ValueError) as exc:
            METRICS.messages_failed.inc()
            logger.warning("Malformed flow message %r: %s", msg, exc)
            return False
        METRICS.messages_processed.inc()
        return True
