"""
backend/models.py

Shared dataclasses for the ingestion boundary.

RawFlowMessage is the contract between whatever decodes flow exports
(NetFlow / IPFIX / sFlow collectors, the JSON collector in ingest/) and the
flow table. It mirrors the fields of a decoded flow message; nothing here is
interpreted yet — the normalizer in aggregation/normalizer.py does that.
"""

from __future__ import annotations

from dataclasses import dataclass, fields
from typing import Any, Mapping


# ---------------------------------------------------------------------------
# Stage 1 — Decoder output
# ---------------------------------------------------------------------------

@dataclass(slots=True)
class RawFlowMessage:
    """One decoded flow record, exactly as the exporter reported it."""

    flow_direction: int = 0
    """0 = ingress, 1 = egress."""

    in_if: int = 0
    out_if: int = 0

    src_mac: int = 0
    """48-bit MAC address packed in an integer."""

    dst_mac: int = 0
    etype: int = 0
    vlan_id: int = 0

    src_addr: bytes | str | int = b""
    """Packed address bytes (4 or 16), a textual address or its integer value."""

    dst_addr: bytes | str | int = b""
    proto: int = 0

    src_port: int = 0
    dst_port: int = 0
    tcp_flags: int = 0
    icmp_type: int = 0
    icmp_code: int = 0

    bytes: int = 0
    packets: int = 0

    time_received: int = 0
    time_flow_start: int = 0
    time_flow_end: int = 0

    forwarding_status: int = 0

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> "RawFlowMessage":
        """
        Build a message from a plain dict (e.g. decoded JSON).

        Unknown keys are ignored and missing keys keep their defaults.
        Address fields must be strings or integers and are kept as given;
        every other field is coerced to int.
        Raises ValueError / TypeError on values that cannot be coerced.
        """
        kwargs: dict[str, Any] = {}
        for f in fields(cls):
            if f.name not in d:
                continue
            value = d[f.name]
            if f.name in ("src_addr", "dst_addr"):
                if value is None:
                    value = b""
                elif isinstance(value, bool) or not isinstance(value, (str, int)):
                    raise TypeError(f"{f.name} must be a string or an integer")
                kwargs[f.name] = value
            else:
                kwargs[f.name] = int(value)
        return cls(**kwargs)
