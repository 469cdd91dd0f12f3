"""
api/routes/flows.py

GET /api/flows   — ranked aggregates (consistent snapshot of the flow table)
GET /api/fields  — column vocabulary, active keys and sortable keys
"""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Query

from ...aggregation import METRIC_COLUMNS, RESERVED_SORT_KEYS, AggregateStore
from ..deps import get_store
from ..serializers import FieldsResponse, FlowTableResponse

router = APIRouter(tags=["flows"])


@router.get("/flows", response_model=FlowTableResponse)
def list_flows(
    limit: Annotated[int | None, Query(ge=1, le=10_000)] = None,
    store: AggregateStore = Depends(get_store),
) -> FlowTableResponse:
    """Return the aggregates in rank order, optionally truncated to *limit*."""
    return FlowTableResponse.from_snapshot(store.snapshot(limit=limit))


@router.get("/fields", response_model=FieldsResponse)
def list_fields(store: AggregateStore = Depends(get_store)) -> FieldsResponse:
    active = list(store.active_keys)
    return FieldsResponse(
        mode=store.fields.mode.value,
        columns=store.fields.names,
        fields=list(store.fields),
        active_keys=active,
        metric_columns=list(METRIC_COLUMNS),
        sort_keys=[*RESERVED_SORT_KEYS, *active],
        sort_key=store.sort_key,
    )
