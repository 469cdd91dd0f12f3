"""
aggregation/fields.py

Field table — maps column names to typed accessors over FlowKey.

Every lookup by name (matching, rendering, sorting) goes through a FieldTable
built once per TableMode. Names the table does not know raise
UnknownFieldError instead of failing later inside a comparison.

Modes:
    normal   — base traffic columns
    ovn      — base + logical flow / datapath columns
    ovn_acl  — base + ACL (policy decision) columns
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from operator import attrgetter
from typing import Any, Callable, Iterable, Iterator

from .errors import UnknownFieldError
from .models import FlowKey

logger = logging.getLogger(__name__)


class TableMode(str, Enum):
    NORMAL  = "normal"
    OVN     = "ovn"
    OVN_ACL = "ovn_acl"


# ---------------------------------------------------------------------------
# Value renderers
# ---------------------------------------------------------------------------

_DIRECTIONS = {0: "INGRESS", 1: "EGRESS"}
_ETYPES = {0x800: "IPv4", 0x806: "ARP", 0x86DD: "IPv6"}
_PROTOS = {0x01: "ICMP", 0x06: "TCP", 0x11: "UDP", 0x3A: "ICMPv6"}


def _hex(value: int) -> str:
    return f"0x{value:x}"


def _dec(value: Any) -> str:
    return str(value)


def _direction(value: int) -> str:
    return _DIRECTIONS.get(value, "unknown")


def _etype(value: int) -> str:
    return _ETYPES.get(value, _hex(value))


def _proto(value: int) -> str:
    return _PROTOS.get(value, _hex(value))


def _address(value: Any) -> str:
    return "" if value is None else str(value)


def _address_sort_key(value: Any) -> tuple[int, int]:
    # IPv4 and IPv6 objects do not compare with each other
    if value is None:
        return (0, 0)
    return (value.version, int(value))


def _identity(value: Any) -> Any:
    return value


# ---------------------------------------------------------------------------
# FieldSpec / FieldTable
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class FieldSpec:
    """How to read, print and order one column."""

    name: str
    extract: Callable[[FlowKey], Any]
    render: Callable[[Any], str] = _dec
    sort_key: Callable[[Any], Any] = _identity


def _spec(name: str, attr: str, render=_dec, sort_key=_identity) -> FieldSpec:
    return FieldSpec(name=name, extract=attrgetter(attr), render=render, sort_key=sort_key)


BASE_FIELDS: tuple[FieldSpec, ...] = (
    _spec("InIf",          "in_if"),
    _spec("OutIf",         "out_if"),
    _spec("SrcMac",        "src_mac"),
    _spec("DstMac",        "dst_mac"),
    _spec("VlanID",        "vlan_id"),
    _spec("Etype",         "etype",          render=_etype),
    _spec("SrcAddr",       "src_addr",       render=_address, sort_key=_address_sort_key),
    _spec("DstAddr",       "dst_addr",       render=_address, sort_key=_address_sort_key),
    _spec("Proto",         "proto",          render=_proto),
    _spec("SrcPort",       "src_port"),
    _spec("DstPort",       "dst_port"),
    _spec("SvcPort",       "svc_port"),
    _spec("FlowDirection", "flow_direction", render=_direction),
)

# Known in every mode but not shown as columns by default.
HIDDEN_FIELDS: tuple[FieldSpec, ...] = (
    _spec("TCPFlags", "tcp_flags", render=_hex),
    _spec("ICMPType", "icmp_type", render=_hex),
    _spec("ICMPCode", "icmp_code", render=_hex),
)

OVN_FIELDS: tuple[FieldSpec, ...] = (
    _spec("LFUUID",     "lf_uuid"),
    _spec("LFMatch",    "lf_match"),
    _spec("LFActions",  "lf_actions"),
    _spec("LFPipeline", "lf_pipeline"),
    _spec("LFStage",    "lf_stage"),
    _spec("DPType",     "dp_type"),
    _spec("DPName",     "dp_name"),
    _spec("OFTable",    "of_table"),
)

OVN_ACL_FIELDS: tuple[FieldSpec, ...] = (
    _spec("ACLName",      "acl_name"),
    _spec("ACLDirection", "acl_direction"),
    _spec("ACLAction",    "acl_action"),
)

_MODE_EXTENSIONS: dict[TableMode, tuple[FieldSpec, ...]] = {
    TableMode.NORMAL:  (),
    TableMode.OVN:     OVN_FIELDS,
    TableMode.OVN_ACL: OVN_ACL_FIELDS,
}


class FieldTable:
    """
    Name → FieldSpec lookup for one table mode.

    `names` is the ordered list of visible columns (base columns followed by
    the mode's extension columns). Hidden fields can still be used as
    aggregate keys or looked up by name.
    """

    def __init__(
        self,
        columns: Iterable[FieldSpec],
        hidden: Iterable[FieldSpec] = (),
        mode: TableMode = TableMode.NORMAL,
    ) -> None:
        self.mode = mode
        self._columns: tuple[FieldSpec, ...] = tuple(columns)
        self._specs: dict[str, FieldSpec] = {}
        for spec in (*self._columns, *hidden):
            if spec.name in self._specs:
                raise ValueError(f"duplicate field {spec.name!r}")
            self._specs[spec.name] = spec
        # column position, hidden fields sort after every visible one
        self._order = {name: i for i, name in enumerate(self._specs)}

    @property
    def names(self) -> list[str]:
        return [spec.name for spec in self._columns]

    def get(self, name: str) -> FieldSpec:
        try:
            return self._specs[name]
        except KeyError:
            raise UnknownFieldError(name) from None

    def value(self, key: FlowKey, name: str) -> Any:
        return self.get(name).extract(key)

    def render(self, key: FlowKey, name: str) -> str:
        spec = self.get(name)
        return spec.render(spec.extract(key))

    def sort_value(self, key: FlowKey, name: str) -> Any:
        spec = self.get(name)
        return spec.sort_key(spec.extract(key))

    def ordered(self, names: Iterable[str]) -> tuple[str, ...]:
        """
        Validate *names* and return them de-duplicated in column order.

        Raises UnknownFieldError on the first unknown name.
        """
        unique = set()
        for name in names:
            self.get(name)
            unique.add(name)
        return tuple(sorted(unique, key=self._order.__getitem__))

    def __contains__(self, name: object) -> bool:
        return name in self._specs

    def __iter__(self) -> Iterator[str]:
        return iter(self._specs)

    def __len__(self) -> int:
        return len(self._specs)

    def __repr__(self) -> str:
        return f"FieldTable(mode={self.mode.value!r}, columns={len(self._columns)})"


def build_field_table(mode: TableMode | str = TableMode.NORMAL) -> FieldTable:
    """Build the field table for a mode (base fields + the mode's extension set)."""
    mode = TableMode(mode)
    table = FieldTable(
        columns=(*BASE_FIELDS, *_MODE_EXTENSIONS[mode]),
        hidden=HIDDEN_FIELDS,
        mode=mode,
    )
    logger.debug("Field table built — mode=%s columns=%s", mode.value, table.names)
    return table
