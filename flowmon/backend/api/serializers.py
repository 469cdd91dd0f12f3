"""
api/serializers.py

Request / response models for the flow table API.
"""

from __future__ import annotations

from pydantic import BaseModel, Field

from ..aggregation import AggregateView, StoreSnapshot


class AggregateResponse(BaseModel):
    keys: dict[str, str]
    cells: dict[str, str]
    member_count: int
    total_bytes: int
    total_packets: int
    first_time_received: int
    first_time_flow_start: int
    last_time_received: int
    last_time_flow_end: int
    rate_bps: int
    rate_delta_bps: int
    trend: str

    @classmethod
    def from_view(cls, v: AggregateView) -> "AggregateResponse":
        return cls(
            keys=v.keys,
            cells=v.cells,
            member_count=v.member_count,
            total_bytes=v.total_bytes,
            total_packets=v.total_packets,
            first_time_received=v.first_time_received,
            first_time_flow_start=v.first_time_flow_start,
            last_time_received=v.last_time_received,
            last_time_flow_end=v.last_time_flow_end,
            rate_bps=v.last_bps,
            rate_delta_bps=v.last_delta_bps,
            trend=v.trend,
        )


class FlowTableResponse(BaseModel):
    mode: str
    columns: list[str]
    active_keys: list[str]
    sort_key: str
    messages_processed: int
    history_size: int
    total_aggregates: int
    aggregates: list[AggregateResponse]

    @classmethod
    def from_snapshot(cls, snap: StoreSnapshot) -> "FlowTableResponse":
        return cls(
            mode=snap.mode,
            columns=list(snap.columns),
            active_keys=list(snap.active_keys),
            sort_key=snap.sort_key,
            messages_processed=snap.messages_processed,
            history_size=snap.history_size,
            total_aggregates=snap.total_aggregates,
            aggregates=[AggregateResponse.from_view(v) for v in snap.aggregates],
        )


class FieldsResponse(BaseModel):
    mode: str
    columns: list[str]
    fields: list[str]
    active_keys: list[str]
    metric_columns: list[str]
    sort_keys: list[str]
    sort_key: str


class AggregateKeysRequest(BaseModel):
    keys: list[str] = Field(default_factory=list)


class AggregateKeysResponse(BaseModel):
    active_keys: list[str]
    sort_key: str
    total_aggregates: int


class SortRequest(BaseModel):
    key: str


class SortResponse(BaseModel):
    sort_key: str
    total_aggregates: int


class StatsResponse(BaseModel):
    messages_processed: int
    history_size: int
    total_aggregates: int
    store: dict[str, int]
    ingest: dict[str, int]
    ws_connections: dict[str, int]
