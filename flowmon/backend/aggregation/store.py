"""
aggregation/store.py

AggregateStore — full flow history plus the ranked list of aggregates.

Design constraints:
  - History is append-only and never evicted; every reconfiguration rebuilds
    the aggregates from it, so changing the grouping never loses data.
  - The aggregate list is a partition of the history under the active key
    fields and is always sorted, highest rank first, by the active comparator.
  - A matched aggregate is removed and re-inserted with a binary search
    (its rank just changed). Ties keep insertion order: the re-inserted
    aggregate goes after every existing aggregate of equal rank.
  - Reconfiguration is all-or-nothing: validation happens before anything is
    touched and the rebuilt list is swapped in only once complete.

Thread safety:
  process_message() may be called from several ingest threads at once.
  One exclusive lock guards the aggregates, the active keys, the comparator
  and the counters. History has its own lock; rebuilds copy a length-stable
  slice of it. Snapshots are built under the exclusive lock, so a reader never
  sees a half-rebuilt list.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from operator import attrgetter
from typing import Any, Callable, Iterable, Mapping

from ..models import RawFlowMessage
from .aggregate import FlowAggregate
from .errors import (
    FieldNotAggregatedError,
    InvalidSortKeyError,
    InvariantViolation,
    UnknownFieldError,
)
from .fields import FieldTable, TableMode, build_field_table
from .models import FlowRecord
from .normalizer import normalize

logger = logging.getLogger(__name__)

Rank = Callable[[FlowAggregate], Any]

# Sort keys computed from the aggregate metrics rather than from a key field.
RESERVED_SORT_KEYS: dict[str, Rank] = {
    "LastTimeReceived": attrgetter("last_time_received"),
    "Rate":             attrgetter("last_bps"),
    "Rate(kBps)":       attrgetter("last_bps"),
    "TotalBytes":       attrgetter("total_bytes"),
    "TotalPackets":     attrgetter("total_packets"),
}
DEFAULT_SORT_KEY = "LastTimeReceived"

METRIC_COLUMNS: tuple[str, ...] = ("TotalBytes", "TotalPackets", "Rate(kBps)")

NOT_AGGREGATED = "-"
ERROR_MARKER = "err"


def _field_rank(name: str) -> Rank:
    def rank(agg: FlowAggregate) -> Any:
        return agg.sort_value(name)
    return rank


# ---------------------------------------------------------------------------
# Snapshot objects handed to readers
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class AggregateView:
    """Copy of one aggregate at snapshot time."""

    keys: dict[str, str]
    """Rendered value of each active key field."""

    cells: dict[str, str]
    """Every table column rendered for display ('-' when not aggregated)."""

    member_count: int
    total_bytes: int
    total_packets: int
    first_time_received: int
    first_time_flow_start: int
    last_time_received: int
    last_time_flow_end: int
    last_bps: int
    last_delta_bps: int
    trend: str


@dataclass(frozen=True, slots=True)
class StoreSnapshot:
    """Consistent read-only view of the store."""

    aggregates: tuple[AggregateView, ...]
    columns: tuple[str, ...]
    active_keys: tuple[str, ...]
    sort_key: str
    messages_processed: int
    history_size: int
    total_aggregates: int
    mode: str
    stats: dict[str, int] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# AggregateStore
# ---------------------------------------------------------------------------

class AggregateStore:
    """
    Classifies flow records into aggregates and keeps them ranked.

    Args:
        mode:        Table mode selecting the field vocabulary.
        active_keys: Initial grouping fields. None → every visible column.
        sort_key:    Initial comparator (reserved metric name or active field).
        fields:      Pre-built field table (overrides *mode*).

    Raises:
        UnknownFieldError / InvalidSortKeyError for an invalid initial configuration.
    """

    def __init__(
        self,
        mode: TableMode | str = TableMode.NORMAL,
        active_keys: Iterable[str] | None = None,
        sort_key: str = DEFAULT_SORT_KEY,
        fields: FieldTable | None = None,
    ) -> None:
        self.fields: FieldTable = fields if fields is not None else build_field_table(mode)

        self._lock = threading.Lock()
        self._history_lock = threading.Lock()

        self._history: list[FlowRecord] = []
        self._aggregates: list[FlowAggregate] = []
        self._active_keys: tuple[str, ...] = self.fields.ordered(
            self.fields.names if active_keys is None else active_keys
        )
        self._sort_name = sort_key
        self._rank: Rank = self._comparator_for(sort_key, self._active_keys)
        self._messages: int = 0

        self.stats: dict[str, int] = {
            "messages_processed": 0,
            "match_errors": 0,
            "aggregates": 0,
            "reconfigurations": 0,
        }
        logger.debug(
            "AggregateStore initialised — mode=%s keys=%s sort=%s",
            self.fields.mode.value,
            list(self._active_keys),
            sort_key,
        )

    # ------------------------------------------------------------------
    # Ingest
    # ------------------------------------------------------------------

    def process_message(
        self,
        raw: RawFlowMessage,
        enrichment: Mapping[str, Any] | None = None,
    ) -> None:
        """Normalize one decoded message and classify it (see process_record)."""
        self.process_record(normalize(raw, enrichment))

    def process_record(self, record: FlowRecord) -> None:
        """
        Add *record* to its aggregate (or a new one) and to the history.

        Raises UnknownFieldError if matching hits a field missing from the
        table; in that case neither the aggregates nor the history change.
        """
        with self._lock:
            try:
                self._classify(self._aggregates, record, self._active_keys, self._rank)
            except UnknownFieldError:
                self.stats["match_errors"] += 1
                raise
            with self._history_lock:
                self._history.append(record)
            self._messages += 1
            self.stats["messages_processed"] = self._messages
            self.stats["aggregates"] = len(self._aggregates)
        logger.debug("Processed %r", record)

    # ------------------------------------------------------------------
    # Reconfiguration
    # ------------------------------------------------------------------

    def set_active_keys(self, keys: Iterable[str]) -> tuple[str, ...]:
        """
        Replace the grouping fields and rebuild every aggregate from history.

        Returns the new key set in column order. Raises UnknownFieldError
        (no state change) if any name is unknown.
        """
        keys = self.fields.ordered(keys)
        with self._lock:
            self._regroup_locked(keys)
        return keys

    def toggle_aggregate_field(self, name: str) -> tuple[str, ...]:
        """Add *name* to the grouping fields, or remove it if present."""
        self.fields.get(name)
        with self._lock:
            current = set(self._active_keys)
            current ^= {name}
            keys = self.fields.ordered(current)
            self._regroup_locked(keys)
        return keys

    def set_comparator(self, name: str) -> None:
        """
        Rank aggregates by *name* and rebuild the ordering from history.

        *name* is a reserved metric (LastTimeReceived, Rate, TotalBytes,
        TotalPackets) or a field that is part of the active keys.
        Raises InvalidSortKeyError with no state change otherwise.
        """
        with self._lock:
            try:
                rank = self._comparator_for(name, self._active_keys)
            except InvalidSortKeyError as exc:
                logger.warning("Sort request rejected: %s", exc)
                raise
            aggregates = self._rebuild(self._active_keys, rank)
            self._sort_name = name
            self._rank = rank
            self._aggregates = aggregates
            self.stats["reconfigurations"] += 1
            self.stats["aggregates"] = len(aggregates)
        logger.info("Sorting by %s — %d aggregates", name, len(aggregates))

    # ------------------------------------------------------------------
    # Readers
    # ------------------------------------------------------------------

    def snapshot(self, limit: int | None = None) -> StoreSnapshot:
        """Return a consistent copy of the ranked aggregates and configuration."""
        with self._lock:
            active = self._active_keys
            columns = (
                *self.fields.names,
                *(k for k in active if k not in self.fields.names),
            )
            aggregates = self._aggregates if limit is None else self._aggregates[:limit]
            views = tuple(self._view(agg, columns, active) for agg in aggregates)
            with self._history_lock:
                history_size = len(self._history)
            return StoreSnapshot(
                aggregates=views,
                columns=columns,
                active_keys=active,
                sort_key=self._sort_name,
                messages_processed=self._messages,
                history_size=history_size,
                total_aggregates=len(self._aggregates),
                mode=self.fields.mode.value,
                stats=dict(self.stats),
            )

    @property
    def active_keys(self) -> tuple[str, ...]:
        with self._lock:
            return self._active_keys

    @property
    def sort_key(self) -> str:
        with self._lock:
            return self._sort_name

    @property
    def messages_processed(self) -> int:
        with self._lock:
            return self._messages

    def aggregates(self) -> list[FlowAggregate]:
        """Shallow copy of the ranked aggregate list (objects are live)."""
        with self._lock:
            return list(self._aggregates)

    def history(self) -> tuple[FlowRecord, ...]:
        with self._history_lock:
            return tuple(self._history)

    def __len__(self) -> int:
        with self._lock:
            return len(self._aggregates)

    # ------------------------------------------------------------------
    # Internal helpers — callers hold self._lock
    # ------------------------------------------------------------------

    def _comparator_for(self, name: str, active: tuple[str, ...]) -> Rank:
        if name in RESERVED_SORT_KEYS:
            return RESERVED_SORT_KEYS[name]
        if name not in self.fields:
            raise InvalidSortKeyError(name, "unknown column")
        if name not in active:
            raise FieldNotAggregatedError(name)
        return _field_rank(name)

    def _regroup_locked(self, keys: tuple[str, ...]) -> None:
        sort_name, rank = self._sort_name, self._rank
        if sort_name not in RESERVED_SORT_KEYS and sort_name not in keys:
            logger.info(
                "Sort field %s left the aggregate — sorting by %s",
                sort_name,
                DEFAULT_SORT_KEY,
            )
            sort_name, rank = DEFAULT_SORT_KEY, RESERVED_SORT_KEYS[DEFAULT_SORT_KEY]

        aggregates = self._rebuild(keys, rank)

        self._active_keys = keys
        self._sort_name = sort_name
        self._rank = rank
        self._aggregates = aggregates
        self.stats["reconfigurations"] += 1
        self.stats["aggregates"] = len(aggregates)
        logger.info(
            "Aggregate keys set to %s — %d aggregates rebuilt from %d flows",
            list(keys),
            len(aggregates),
            self._messages,
        )

    def _rebuild(self, keys: tuple[str, ...], rank: Rank) -> list[FlowAggregate]:
        """Replay the history into a fresh aggregate list."""
        with self._history_lock:
            history = self._history[:]
        aggregates: list[FlowAggregate] = []
        for record in history:
            self._classify(aggregates, record, keys, rank)
        return aggregates

    def _classify(
        self,
        aggregates: list[FlowAggregate],
        record: FlowRecord,
        keys: tuple[str, ...],
        rank: Rank,
    ) -> FlowAggregate:
        for i, agg in enumerate(aggregates):
            if agg.append_if_matches(record):
                del aggregates[i]
                self._insert_sorted(aggregates, agg, rank)
                return agg

        agg = FlowAggregate(keys, self.fields)
        if not agg.append_if_matches(record):
            logger.critical("Empty aggregate refused %r", record)
            raise InvariantViolation(f"empty aggregate refused {record!r}")
        self._insert_sorted(aggregates, agg, rank)
        return agg

    @staticmethod
    def _insert_sorted(
        aggregates: list[FlowAggregate],
        agg: FlowAggregate,
        rank: Rank,
    ) -> None:
        # first position whose element ranks strictly below agg
        value = rank(agg)
        lo, hi = 0, len(aggregates)
        while lo < hi:
            mid = (lo + hi) // 2
            if rank(aggregates[mid]) < value:
                hi = mid
            else:
                lo = mid + 1
        aggregates.insert(lo, agg)

    def _view(
        self,
        agg: FlowAggregate,
        columns: tuple[str, ...],
        active: tuple[str, ...],
    ) -> AggregateView:
        keys: dict[str, str] = {}
        cells: dict[str, str] = {}
        for name in columns:
            if name not in active:
                cells[name] = NOT_AGGREGATED
                continue
            try:
                value = agg.field_string(name)
            except UnknownFieldError as exc:
                logger.error("Cannot render column: %s", exc)
                value = ERROR_MARKER
            keys[name] = value
            cells[name] = value
        cells["TotalBytes"] = str(agg.total_bytes)
        cells["TotalPackets"] = str(agg.total_packets)
        cells["Rate(kBps)"] = f"{agg.last_bps / 1000:.1f} {agg.trend}"

        return AggregateView(
            keys=keys,
            cells=cells,
            member_count=agg.member_count,
            total_bytes=agg.total_bytes,
            total_packets=agg.total_packets,
            first_time_received=agg.first_time_received,
            first_time_flow_start=agg.first_time_flow_start,
            last_time_received=agg.last_time_received,
            last_time_flow_end=agg.last_time_flow_end,
            last_bps=agg.last_bps,
            last_delta_bps=agg.last_delta_bps,
            trend=agg.trend,
        )
