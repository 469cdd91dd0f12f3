"""
aggregation/normalizer.py

Converts a RawFlowMessage plus an enrichment attribute map into an immutable
FlowRecord.

Design:
  - Pure and deterministic: same input → equal FlowRecord, no side effects.
  - Missing enrichment attributes map to "" / 0, never to an error.
  - No cross-field validation; the exporter is trusted.
"""

from __future__ import annotations

import ipaddress
import logging
from typing import Any, Mapping

from ..models import RawFlowMessage
from .models import FlowKey, FlowRecord, IPAddress

logger = logging.getLogger(__name__)

# Linux default ephemeral range is 32768-60999; anything below is a service.
EPHEMERAL_PORT_MIN = 32768

# enrichment attribute → FlowKey attribute
_STRING_ATTRIBUTES: dict[str, str] = {
    "LFUUID":       "lf_uuid",
    "LFMatch":      "lf_match",
    "LFAction":     "lf_actions",
    "LFPipeline":   "lf_pipeline",
    "LFStage":      "lf_stage",
    "DPType":       "dp_type",
    "DPName":       "dp_name",
    "ACLName":      "acl_name",
    "ACLDirection": "acl_direction",
    "ACLAction":    "acl_action",
}
_INT_ATTRIBUTES: dict[str, str] = {
    "OFTable": "of_table",
}


def service_port(src_port: int, dst_port: int) -> int:
    """Return the non-ephemeral port of a connection, 0 if both are ephemeral."""
    if src_port < EPHEMERAL_PORT_MIN:
        return src_port
    if dst_port < EPHEMERAL_PORT_MIN:
        return dst_port
    return 0


def mac_from_int(value: int) -> str:
    """48-bit integer → 'aa:bb:cc:dd:ee:ff'."""
    raw = (value & 0xFFFF_FFFF_FFFF).to_bytes(6, "big")
    return ":".join(f"{b:02x}" for b in raw)


def parse_address(value: bytes | str | int | None) -> IPAddress | None:
    """
    Packed (4/16 bytes), textual or integer address → ipaddress object.

    None, b"" and "" mean no address. Raises ValueError for a malformed
    address and TypeError for any other value type.
    """
    if value is None:
        return None
    if isinstance(value, int) and not isinstance(value, bool):
        return ipaddress.ip_address(value)
    if isinstance(value, str):
        return ipaddress.ip_address(value) if value else None
    if isinstance(value, (bytes, bytearray)):
        return ipaddress.ip_address(bytes(value)) if value else None
    raise TypeError(f"address must be bytes, str or int, got {type(value).__name__}")


def _enrichment(extra: Mapping[str, Any]) -> dict[str, Any]:
    attrs: dict[str, Any] = {}
    for name, attr in _STRING_ATTRIBUTES.items():
        value = extra.get(name)
        if value is not None:
            attrs[attr] = str(value)
    for name, attr in _INT_ATTRIBUTES.items():
        value = extra.get(name)
        if value is None:
            continue
        try:
            attrs[attr] = int(value)
        except (TypeError, ValueError):
            logger.debug("Ignoring non-integer enrichment %s=%r", name, value)
    return attrs


def normalize(
    raw: RawFlowMessage,
    enrichment: Mapping[str, Any] | None = None,
) -> FlowRecord:
    """
    Build a FlowRecord from a decoded message and its enrichment attributes.

    Args:
        raw:        Decoded flow message.
        enrichment: Flat attribute map produced by the enricher chain
                    (LFUUID, DPName, ACLName, OFTable, ...). May be None.

    Raises:
        ValueError: the message carries an address that is not 4/16 bytes
                    or not a valid textual address.
    """
    key = FlowKey(
        flow_direction=raw.flow_direction,
        in_if=raw.in_if,
        out_if=raw.out_if,
        src_mac=mac_from_int(raw.src_mac),
        dst_mac=mac_from_int(raw.dst_mac),
        etype=raw.etype,
        vlan_id=raw.vlan_id,
        src_addr=parse_address(raw.src_addr),
        dst_addr=parse_address(raw.dst_addr),
        proto=raw.proto,
        src_port=raw.src_port,
        dst_port=raw.dst_port,
        svc_port=service_port(raw.src_port, raw.dst_port),
        tcp_flags=raw.tcp_flags,
        icmp_type=raw.icmp_type,
        icmp_code=raw.icmp_code,
        **_enrichment(enrichment or {}),
    )
    return FlowRecord(
        key=key,
        bytes=raw.bytes,
        packets=raw.packets,
        time_received=raw.time_received,
        time_flow_start=raw.time_flow_start,
        time_flow_end=raw.time_flow_end,
        forwarding_status=raw.forwarding_status,
    )
