"""
aggregation/errors.py

Exceptions raised by the flow table.

FlowTableError            — base class, catch this at the ingestion boundary
UnknownFieldError         — a field name that the active table mode does not know
InvalidSortKeyError       — a sort request that was rejected (no state change)
FieldNotAggregatedError   — sort requested on a known field outside the active keys
InvariantViolation        — a fresh aggregate refused its first record (programming error)
"""

from __future__ import annotations


class FlowTableError(Exception):
    """Base class for every error raised by the aggregation package."""


class UnknownFieldError(FlowTableError, KeyError):
    """Raised when a field name is not part of the field table."""

    def __init__(self, field_name: str) -> None:
        self.field_name = field_name
        super().__init__(field_name)

    def __str__(self) -> str:
        return f"unknown flow field {self.field_name!r}"


class InvalidSortKeyError(FlowTableError, ValueError):
    """Raised by set_comparator() when the requested key cannot be used."""

    def __init__(self, key: str, reason: str = "not a sortable column") -> None:
        self.key = key
        self.reason = reason
        super().__init__(key, reason)

    def __str__(self) -> str:
        return f"cannot sort by {self.key!r}: {self.reason}"


class FieldNotAggregatedError(InvalidSortKeyError):
    """The field exists but aggregates carry no single value for it."""

    def __init__(self, key: str) -> None:
        super().__init__(key, "field is not part of the aggregate")


class InvariantViolation(FlowTableError, RuntimeError):
    """An empty aggregate must always accept its first record."""
