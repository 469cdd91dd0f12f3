"""
aggregation/models.py

Data models for the flow table.

FlowKey    — immutable set of key fields describing one flow
FlowRecord — one ingested flow: FlowKey + byte/packet counters + timestamps

Both are frozen: once the normalizer builds a FlowRecord it is owned by the
store's history and never mutated again.
"""

from __future__ import annotations

import ipaddress
from dataclasses import dataclass
from typing import Union

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]


# ---------------------------------------------------------------------------
# FlowKey — every field usable for grouping or display
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class FlowKey:
    """
    Key fields of a flow.

    Base fields come from the decoded flow message. The lf_* / dp_* /
    of_table fields (logical flow / datapath) and acl_* fields (policy
    decision) are filled from enrichment attributes and stay empty when no
    enricher provided them.
    """

    flow_direction: int = 0
    in_if: int = 0
    out_if: int = 0

    # Ethernet
    src_mac: str = "00:00:00:00:00:00"
    dst_mac: str = "00:00:00:00:00:00"
    etype: int = 0
    vlan_id: int = 0

    # Network
    src_addr: IPAddress | None = None
    dst_addr: IPAddress | None = None
    proto: int = 0

    # Transport
    src_port: int = 0
    dst_port: int = 0
    svc_port: int = 0
    """Non-ephemeral side of the connection (see normalizer.service_port)."""

    tcp_flags: int = 0
    icmp_type: int = 0
    icmp_code: int = 0

    # Logical flow / datapath (enrichment)
    lf_uuid: str = ""
    lf_match: str = ""
    lf_actions: str = ""
    lf_pipeline: str = ""
    lf_stage: str = ""
    dp_type: str = ""
    dp_name: str = ""
    of_table: int = 0

    # Policy decision (enrichment)
    acl_name: str = ""
    acl_direction: str = ""
    acl_action: str = ""

    def __repr__(self) -> str:
        return (
            f"FlowKey({self.src_addr}:{self.src_port}"
            f"→{self.dst_addr}:{self.dst_port}"
            f"/{self.proto})"
        )


# ---------------------------------------------------------------------------
# FlowRecord — one ingested flow message
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class FlowRecord:
    """A FlowKey plus the metrics reported for it."""

    key: FlowKey

    bytes: int = 0
    packets: int = 0

    time_received: int = 0
    """Unix seconds at which the collector received the message."""

    time_flow_start: int = 0
    time_flow_end: int = 0

    forwarding_status: int = 0

    def __repr__(self) -> str:
        return (
            f"FlowRecord({self.key!r} "
            f"bytes={self.bytes} "
            f"pkts={self.packets} "
            f"start={self.time_flow_start} end={self.time_flow_end})"
        )
