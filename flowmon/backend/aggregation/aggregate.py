"""
aggregation/aggregate.py

FlowAggregate — a group of FlowRecords that agree on the active key fields.

Matching rules:
  - An empty aggregate accepts any record; that record's key values become
    the aggregate's identity.
  - Otherwise a record is accepted only if every active key field equals the
    first member's value (exact equality, no ranges or wildcards).
  - An empty key set matches everything.

Counters on append:
  - total_bytes / total_packets accumulate.
  - first_time_received / first_time_flow_start are first-write-wins
    (set only while still zero).
  - last_time_received / last_time_flow_end are last-write-wins: the most
    recently appended record decides, even if it arrived out of order.

Thread safety: NOT thread-safe. The AggregateStore lock guards every call.
"""

from __future__ import annotations

import logging
from typing import Any, Sequence

from .fields import FieldTable
from .models import FlowRecord

logger = logging.getLogger(__name__)


class FlowAggregate:
    """
    Cumulative view over the member records of one aggregate.

    Args:
        key_fields: Active key-field names, shared by every aggregate of a store.
        fields:     Field table used to read key values by name.
    """

    def __init__(self, key_fields: Sequence[str], fields: FieldTable) -> None:
        self.key_fields: tuple[str, ...] = tuple(key_fields)
        self._fields = fields
        self.flows: list[FlowRecord] = []

        self.total_bytes: int = 0
        self.total_packets: int = 0

        self.first_time_received: int = 0
        self.first_time_flow_start: int = 0
        self.last_time_received: int = 0
        self.last_time_flow_end: int = 0

        self.last_bps: int = 0
        """Bytes per second over [first_time_flow_start, last_time_flow_end]."""

        self.last_delta_bps: int = 0
        """Signed change of last_bps caused by the latest append."""

    # ------------------------------------------------------------------
    # Matching
    # ------------------------------------------------------------------

    def matches(self, record: FlowRecord) -> bool:
        """
        Return whether *record* belongs to this aggregate.

        Raises UnknownFieldError if an active key field is not in the table.
        """
        if not self.flows:
            return True
        first = self.flows[0].key
        for name in self.key_fields:
            if self._fields.value(first, name) != self._fields.value(record.key, name):
                return False
        return True

    def append_if_matches(self, record: FlowRecord) -> bool:
        """
        Append *record* if it matches; return whether it was appended.

        No state changes when the record does not match or when matching raises.
        """
        if not self.matches(record):
            return False
        self._append(record)
        return True

    def _append(self, record: FlowRecord) -> None:
        self.flows.append(record)
        self.total_bytes += record.bytes
        self.total_packets += record.packets

        if self.first_time_received == 0:
            self.first_time_received = record.time_received
        if self.first_time_flow_start == 0:
            self.first_time_flow_start = record.time_flow_start
        self.last_time_received = record.time_received
        self.last_time_flow_end = record.time_flow_end

        self._update_rate()

    def _update_rate(self) -> None:
        duration = self.last_time_flow_end - self.first_time_flow_start
        rate = int(self.total_bytes / duration) if duration != 0 else 0
        self.last_delta_bps = rate - self.last_bps
        self.last_bps = rate

    # ------------------------------------------------------------------
    # Field access (identity = first member)
    # ------------------------------------------------------------------

    def field_value(self, name: str) -> Any:
        """Raw value of key field *name*; raises UnknownFieldError."""
        spec = self._fields.get(name)
        if not self.flows:
            return None
        return spec.extract(self.flows[0].key)

    def field_string(self, name: str) -> str:
        """Rendered value of key field *name*; raises UnknownFieldError."""
        spec = self._fields.get(name)
        if not self.flows:
            return ""
        return spec.render(spec.extract(self.flows[0].key))

    def sort_value(self, name: str) -> Any:
        spec = self._fields.get(name)
        if not self.flows:
            return None
        return spec.sort_key(spec.extract(self.flows[0].key))

    # ------------------------------------------------------------------
    # Derived properties
    # ------------------------------------------------------------------

    @property
    def member_count(self) -> int:
        return len(self.flows)

    @property
    def trend(self) -> str:
        """'↑', '=' or '↓' from the sign of last_delta_bps."""
        if self.last_delta_bps > 0:
            return "↑"
        if self.last_delta_bps < 0:
            return "↓"
        return "="

    def __repr__(self) -> str:
        return (
            f"FlowAggregate(keys={list(self.key_fields)} "
            f"members={len(self.flows)} "
            f"bytes={self.total_bytes} "
            f"pkts={self.total_packets} "
            f"bps={self.last_bps})"
        )
