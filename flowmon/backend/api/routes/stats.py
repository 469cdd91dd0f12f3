"""
api/routes/stats.py

GET /api/stats — flow table counters + ingest counters
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from ...context import AppContext
from ...metrics import METRICS
from ..deps import get_context
from ..serializers import StatsResponse

router = APIRouter(prefix="/stats", tags=["stats"])


@router.get("", response_model=StatsResponse)
def get_stats(ctx: AppContext = Depends(get_context)) -> StatsResponse:
    """Return flow table counters plus live ingest counters."""
    snap = ctx.store.snapshot(limit=0)
    return StatsResponse(
        messages_processed=snap.messages_processed,
        history_size=snap.history_size,
        total_aggregates=snap.total_aggregates,
        store=snap.stats,
        ingest=METRICS.as_dict(),
        ws_connections=ctx.ws.all_counts(),
    )
