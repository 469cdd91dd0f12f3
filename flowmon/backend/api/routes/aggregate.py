"""
api/routes/aggregate.py

PUT  /api/aggregate                — replace the grouping key set
POST /api/aggregate/{field}/toggle — add/remove one field from the key set
PUT  /api/sort                     — change the ranking comparator

Every call rebuilds the aggregates from the full history before returning.
Invalid requests are rejected without touching the flow table:
unknown field → 404, unusable sort key → 422.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException

from ...aggregation import AggregateStore, InvalidSortKeyError, UnknownFieldError
from ..deps import get_store
from ..serializers import (
    AggregateKeysRequest,
    AggregateKeysResponse,
    SortRequest,
    SortResponse,
)

logger = logging.getLogger(__name__)
router = APIRouter(tags=["aggregate"])


def _keys_response(store: AggregateStore) -> AggregateKeysResponse:
    snap = store.snapshot(limit=0)
    return AggregateKeysResponse(
        active_keys=list(snap.active_keys),
        sort_key=snap.sort_key,
        total_aggregates=snap.total_aggregates,
    )


@router.put("/aggregate", response_model=AggregateKeysResponse)
def set_aggregate_keys(
    request: AggregateKeysRequest,
    store: AggregateStore = Depends(get_store),
) -> AggregateKeysResponse:
    """Group flows by exactly *keys* (an empty list puts every flow in one aggregate)."""
    try:
        store.set_active_keys(request.keys)
    except UnknownFieldError as exc:
        logger.warning("Aggregate update rejected: %s", exc)
        raise HTTPException(status_code=404, detail=str(exc))
    return _keys_response(store)


@router.post("/aggregate/{field}/toggle", response_model=AggregateKeysResponse)
def toggle_aggregate_field(
    field: str,
    store: AggregateStore = Depends(get_store),
) -> AggregateKeysResponse:
    try:
        store.toggle_aggregate_field(field)
    except UnknownFieldError as exc:
        logger.warning("Aggregate toggle rejected: %s", exc)
        raise HTTPException(status_code=404, detail=str(exc))
    return _keys_response(store)


@router.put("/sort", response_model=SortResponse)
def set_sort_key(
    request: SortRequest,
    store: AggregateStore = Depends(get_store),
) -> SortResponse:
    try:
        store.set_comparator(request.key)
    except InvalidSortKeyError as exc:
        raise HTTPException(status_code=422, detail=str(exc))
    snap = store.snapshot(limit=0)
    return SortResponse(sort_key=snap.sort_key, total_aggregates=snap.total_aggregates)
