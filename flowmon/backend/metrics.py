"""
backend/metrics.py

Lightweight thread-safe counters for the ingestion pipeline.
No external dependencies — uses Python's threading.Lock.

Usage:
    from flowmon.backend.metrics import METRICS
    METRICS.messages_received.inc()
    print(METRICS.as_dict())
"""

import threading


class Counter:
    """A thread-safe integer counter."""

    __slots__ = ("_value", "_lock")

    def __init__(self) -> None:
        self._value = 0
        self._lock = threading.Lock()

    def inc(self, amount: int = 1) -> None:
        with self._lock:
            self._value += amount

    def reset(self) -> None:
        with self._lock:
            self._value = 0

    @property
    def value(self) -> int:
        with self._lock:
            return self._value

    def __repr__(self) -> str:  # pragma: no cover
        return f"Counter({self._value})"


class Metrics:
    """Singleton holding all ingestion counters."""

    def __init__(self) -> None:
        # --- Collector ---
        self.datagrams_received: Counter = Counter()
        """UDP datagrams read by the JSON collector."""

        self.datagrams_invalid: Counter = Counter()
        """Datagrams that did not decode into at least one flow message."""

        self.messages_dropped: Counter = Counter()
        """Decoded messages dropped because the ingest queue was full."""

        # --- Consumer ---
        self.messages_received: Counter = Counter()
        """Messages handed to FlowConsumer.consume()."""

        self.messages_processed: Counter = Counter()
        """Messages the flow table accepted."""

        self.messages_failed: Counter = Counter()
        """Messages rejected by the normalizer or the flow table."""

        self.enricher_errors: Counter = Counter()
        """Enricher calls that raised (their attributes were omitted)."""

    def as_dict(self) -> dict:
        """Return all counters as a plain dict (safe for JSON serialisation)."""
        return {
            name: attr.value
            for name, attr in vars(self).items()
            if isinstance(attr, Counter)
        }

    def reset_all(self) -> None:
        """Reset every counter to zero (useful in tests)."""
        for attr in vars(self).values():
            if isinstance(attr, Counter):
                attr.reset()


# Module-level singleton — import from here everywhere
METRICS = Metrics()
