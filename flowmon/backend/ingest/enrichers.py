"""
ingest/enrichers.py

Enricher chain — adds attributes to a decoded flow before it reaches the
flow table.

An enricher receives the decoded message and the attribute map built so far
and returns the (possibly extended) map. Enrichers run in registration order,
so a later enricher can build on attributes an earlier one added (e.g. an
ACL lookup keyed on the logical flow UUID).

An enricher that raises is logged and skipped: its attributes are simply
omitted and the flow is still ingested.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable, Mapping, Protocol

from ..metrics import METRICS
from ..models import RawFlowMessage

logger = logging.getLogger(__name__)


class Enricher(Protocol):
    """Required interface for an enricher."""

    name: str

    def enrich(self, msg: RawFlowMessage, extra: dict[str, Any]) -> dict[str, Any]:
        """Return *extra* updated with this enricher's attributes."""
        ...


class StaticEnricher:
    """
    Adds a fixed attribute map to every flow.

    Useful for tagging everything a collector receives (e.g. the datapath
    name of the bridge it listens for) and for tests.
    """

    def __init__(self, attributes: Mapping[str, Any], name: str = "static") -> None:
        self.name = name
        self._attributes = dict(attributes)

    def enrich(self, msg: RawFlowMessage, extra: dict[str, Any]) -> dict[str, Any]:
        return {**extra, **self._attributes}


class EnricherChain:
    """Runs enrichers in a fixed order over an accumulating attribute map."""

    def __init__(self, enrichers: Iterable[Enricher] = ()) -> None:
        self._enrichers: list[Enricher] = list(enrichers)

    def register(self, enricher: Enricher) -> None:
        if any(e.name == enricher.name for e in self._enrichers):
            raise ValueError(f"duplicate enricher name {enricher.name}")
        self._enrichers.append(enricher)

    @property
    def names(self) -> list[str]:
        return [e.name for e in self._enrichers]

    def apply(
        self,
        msg: RawFlowMessage,
        extra: Mapping[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Return the merged attribute map for *msg*."""
        attrs: dict[str, Any] = dict(extra or {})
        for enricher in self._enrichers:
            try:
                result = enricher.enrich(msg, dict(attrs))
            except Exception as exc:
                METRICS.enricher_errors.inc()
                logger.warning("Enricher %r failed: %s", enricher.name, exc)
                continue
            if result is not None:
                attrs = dict(result)
        return attrs

    def __len__(self) -> int:
        return len(self._enrichers)
