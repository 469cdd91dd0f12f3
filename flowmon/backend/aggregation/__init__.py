"""
aggregation/__init__.py

Public API for the aggregation sub-package.
"""

from .aggregate import FlowAggregate
from .errors import (
    FieldNotAggregatedError,
    FlowTableError,
    InvalidSortKeyError,
    InvariantViolation,
    UnknownFieldError,
)
from .fields import FieldSpec, FieldTable, TableMode, build_field_table
from .models import FlowKey, FlowRecord
from .normalizer import normalize
from .store import (
    DEFAULT_SORT_KEY,
    METRIC_COLUMNS,
    RESERVED_SORT_KEYS,
    AggregateStore,
    AggregateView,
    StoreSnapshot,
)

__all__ = [
    "AggregateStore",
    "AggregateView",
    "StoreSnapshot",
    "FlowAggregate",
    "FlowKey",
    "FlowRecord",
    "FieldSpec",
    "FieldTable",
    "TableMode",
    "build_field_table",
    "normalize",
    "DEFAULT_SORT_KEY",
    "METRIC_COLUMNS",
    "RESERVED_SORT_KEYS",
    "FlowTableError",
    "UnknownFieldError",
    "InvalidSortKeyError",
    "FieldNotAggregatedError",
    "InvariantViolation",
]
