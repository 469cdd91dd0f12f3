"""
tests/test_store.py

Tests for AggregateStore — classification, ranking, reconfiguration from
history, snapshots and concurrent ingestion.

Records are built from RawFlowMessage objects so every test also exercises
the normalizer; no collector or event loop is involved.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor

import pytest

from flowmon.backend.aggregation import (
    AggregateStore,
    FieldNotAggregatedError,
    FlowAggregate,
    InvalidSortKeyError,
    UnknownFieldError,
    normalize,
)
from flowmon.backend.models import RawFlowMessage

FIVE_TUPLE = ["SrcAddr", "DstAddr", "Proto", "SrcPort", "DstPort"]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def msg(
    src="10.0.0.1",
    dst="10.0.0.2",
    proto=6,
    sport=43512,
    dport=443,
    nbytes=100,
    packets=1,
    received=1_000,
    start=990,
    end=1_000,
) -> RawFlowMessage:
    return RawFlowMessage(
        src_addr=src,
        dst_addr=dst,
        proto=proto,
        src_port=sport,
        dst_port=dport,
        etype=0x800,
        bytes=nbytes,
        packets=packets,
        time_received=received,
        time_flow_start=start,
        time_flow_end=end,
    )


def ingest(store: AggregateStore, *messages: RawFlowMessage) -> None:
    for m in messages:
        store.process_message(m)


def totals(store: AggregateStore) -> list[tuple[int, int, int]]:
    return [(a.total_bytes, a.total_packets, a.member_count) for a in store.aggregates()]


@pytest.fixture
def store() -> AggregateStore:
    return AggregateStore(active_keys=FIVE_TUPLE)


# ---------------------------------------------------------------------------
# Acceptance scenarios
# ---------------------------------------------------------------------------

class TestScenarios:

    def test_identical_five_tuple_collapses_into_one_aggregate(self, store):
        ingest(
            store,
            msg(nbytes=100, packets=1),
            msg(nbytes=200, packets=2),
            msg(nbytes=300, packets=3),
        )
        assert len(store) == 1
        agg = store.aggregates()[0]
        assert agg.total_bytes == 600
        assert agg.total_packets == 6
        assert agg.member_count == 3

    def test_source_port_key_splits_aggregates(self):
        store = AggregateStore(active_keys=["SrcPort"])
        ingest(store, msg(sport=40000), msg(sport=40001))
        assert len(store) == 2
        assert [a.member_count for a in store.aggregates()] == [1, 1]

    def test_empty_key_set_matches_everything(self, store):
        ingest(
            store,
            msg(src="10.0.0.1"), msg(src="10.0.0.1"), msg(src="10.0.0.1"),
            msg(src="10.0.0.9"), msg(src="10.0.0.9"),
        )
        store.set_active_keys(["SrcAddr"])
        assert len(store) == 2

        store.set_active_keys([])
        assert len(store) == 1
        assert store.aggregates()[0].member_count == 5
        assert store.active_keys == ()

    def test_unknown_sort_key_is_rejected_without_changes(self, store):
        ingest(store, msg(sport=40000, received=1), msg(sport=40001, received=2))
        before = store.aggregates()

        with pytest.raises(InvalidSortKeyError):
            store.set_comparator("UnknownField")

        assert store.sort_key == "LastTimeReceived"
        assert store.aggregates() == before


# ---------------------------------------------------------------------------
# Construction
# ---------------------------------------------------------------------------

class TestConstruction:

    def test_default_keys_are_every_visible_column(self):
        store = AggregateStore()
        assert store.active_keys == tuple(store.fields.names)
        assert store.sort_key == "LastTimeReceived"

    def test_unknown_initial_key_raises(self):
        with pytest.raises(UnknownFieldError):
            AggregateStore(active_keys=["Bogus"])

    def test_unknown_initial_sort_key_raises(self):
        with pytest.raises(InvalidSortKeyError):
            AggregateStore(sort_key="Bogus")

    def test_initial_sort_on_inactive_field_raises(self):
        with pytest.raises(FieldNotAggregatedError):
            AggregateStore(active_keys=["SrcAddr"], sort_key="DstPort")

    def test_stats_initialized(self):
        store = AggregateStore()
        assert store.stats == {
            "messages_processed": 0,
            "match_errors": 0,
            "aggregates": 0,
            "reconfigurations": 0,
        }


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------

class TestClassification:

    def test_history_keeps_every_record_in_order(self, store):
        ingest(store, msg(nbytes=1), msg(nbytes=2), msg(sport=1, nbytes=3))
        assert [r.bytes for r in store.history()] == [1, 2, 3]
        assert store.messages_processed == 3
        assert store.stats["messages_processed"] == 3
        assert store.stats["aggregates"] == 2

    def test_aggregates_partition_the_history(self, store):
        ports = [40000, 40001, 40000, 40002, 40001, 40000]
        ingest(store, *(msg(sport=p) for p in ports))

        members = [r for a in store.aggregates() for r in a.flows]
        assert sorted(members, key=id) == sorted(store.history(), key=id)

        identities = set()
        for agg in store.aggregates():
            values = {r.key.src_port for r in agg.flows}
            assert len(values) == 1
            identities |= values
        assert identities == {40000, 40001, 40002}

    def test_totals_are_conserved_across_key_sets(self, store):
        messages = [
            msg(src=f"10.0.0.{i % 3}", sport=40000 + i % 4, nbytes=i * 10, packets=i)
            for i in range(1, 13)
        ]
        ingest(store, *messages)
        expected_bytes = sum(m.bytes for m in messages)
        expected_packets = sum(m.packets for m in messages)

        for keys in (FIVE_TUPLE, ["SrcAddr"], ["SrcPort"], [], ["SrcAddr", "SrcPort"]):
            store.set_active_keys(keys)
            aggs = store.aggregates()
            assert sum(a.total_bytes for a in aggs) == expected_bytes
            assert sum(a.total_packets for a in aggs) == expected_packets
            assert sum(a.member_count for a in aggs) == len(messages)

    def test_match_error_leaves_store_untouched(self, store, monkeypatch):
        ingest(store, msg())

        def broken(key, name):
            raise UnknownFieldError(name)

        monkeypatch.setattr(store.fields, "value", broken)
        with pytest.raises(UnknownFieldError):
            store.process_message(msg(nbytes=999))

        assert len(store.history()) == 1
        assert store.messages_processed == 1
        assert store.stats["match_errors"] == 1
        assert store.aggregates()[0].total_bytes == 100

    def test_bad_address_raises_before_classification(self, store):
        with pytest.raises(ValueError):
            store.process_message(msg(src="not-an-ip"))
        assert store.history() == ()


# ---------------------------------------------------------------------------
# Ranking
# ---------------------------------------------------------------------------

class TestRanking:

    def test_default_ranks_most_recent_first(self, store):
        ingest(
            store,
            msg(sport=40000, received=10),
            msg(sport=40001, received=30),
            msg(sport=40002, received=20),
        )
        assert [a.last_time_received for a in store.aggregates()] == [30, 20, 10]

    def test_matched_aggregate_moves_to_its_new_rank(self, store):
        store.set_comparator("TotalBytes")
        ingest(
            store,
            msg(sport=40000, nbytes=100),
            msg(sport=40001, nbytes=500),
            msg(sport=40002, nbytes=300),
        )
        assert [a.total_bytes for a in store.aggregates()] == [500, 300, 100]

        store.process_message(msg(sport=40000, nbytes=1_000))
        assert [a.total_bytes for a in store.aggregates()] == [1_100, 500, 300]

    def test_total_packets_ranks_by_packets(self, store):
        ingest(
            store,
            msg(sport=40000, nbytes=9_000, packets=1),
            msg(sport=40001, nbytes=10, packets=50),
        )
        store.set_comparator("TotalPackets")
        assert [a.total_packets for a in store.aggregates()] == [50, 1]

    def test_rate_ranks_by_bytes_per_second(self, store):
        ingest(
            store,
            msg(sport=40000, nbytes=1_000, start=0, end=100),
            msg(sport=40001, nbytes=1_000, start=0, end=10),
        )
        store.set_comparator("Rate(kBps)")
        assert [a.last_bps for a in store.aggregates()] == [100, 10]

    def test_sort_by_active_key_field(self, store):
        ingest(store, msg(sport=40001), msg(sport=40003), msg(sport=40002))
        store.set_comparator("SrcPort")
        ports = [a.field_value("SrcPort") for a in store.aggregates()]
        assert ports == [40003, 40002, 40001]
        assert store.sort_key == "SrcPort"

    def test_sort_by_address_orders_numerically(self, store):
        ingest(store, msg(src="10.0.0.9"), msg(src="10.0.0.10"), msg(src="10.0.0.2"))
        store.set_comparator("SrcAddr")
        addrs = [a.field_string("SrcAddr") for a in store.aggregates()]
        assert addrs == ["10.0.0.10", "10.0.0.9", "10.0.0.2"]

    def test_sort_by_inactive_field_is_rejected(self):
        store = AggregateStore(active_keys=["SrcPort"])
        ingest(store, msg())
        with pytest.raises(FieldNotAggregatedError):
            store.set_comparator("DstPort")
        assert store.sort_key == "LastTimeReceived"

    def test_ties_keep_insertion_order(self, store):
        ingest(
            store,
            msg(sport=40000, nbytes=100, received=5),
            msg(sport=40001, nbytes=100, received=5),
            msg(sport=40002, nbytes=100, received=5),
        )
        order = [a.field_value("SrcPort") for a in store.aggregates()]
        assert order == [40000, 40001, 40002]

        store.set_comparator("TotalBytes")
        assert [a.field_value("SrcPort") for a in store.aggregates()] == order

    def test_reinserted_tie_goes_after_equal_ranks(self, store):
        store.set_comparator("TotalBytes")
        ingest(
            store,
            msg(sport=40000, nbytes=50),
            msg(sport=40001, nbytes=100),
            msg(sport=40000, nbytes=50),
        )
        ports = [a.field_value("SrcPort") for a in store.aggregates()]
        assert ports == [40001, 40000]

    def test_set_comparator_counts_a_reconfiguration(self, store):
        store.set_comparator("TotalBytes")
        assert store.stats["reconfigurations"] == 1


# ---------------------------------------------------------------------------
# Reconfiguration
# ---------------------------------------------------------------------------

class TestReconfiguration:

    def test_set_active_keys_returns_column_order(self, store):
        keys = store.set_active_keys(["DstPort", "SrcAddr", "DstPort"])
        assert keys == ("SrcAddr", "DstPort")
        assert store.active_keys == ("SrcAddr", "DstPort")

    def test_unknown_key_leaves_configuration_unchanged(self, store):
        ingest(store, msg(sport=40000), msg(sport=40001))
        before = store.aggregates()

        with pytest.raises(UnknownFieldError):
            store.set_active_keys(["SrcAddr", "Bogus"])

        assert store.active_keys == tuple(FIVE_TUPLE)
        assert store.aggregates() == before
        assert store.stats["reconfigurations"] == 0

    def test_toggle_removes_and_adds(self, store):
        assert store.toggle_aggregate_field("SrcPort") == ("SrcAddr", "DstAddr", "Proto", "DstPort")
        assert store.toggle_aggregate_field("SrcPort") == tuple(FIVE_TUPLE)

    def test_toggle_twice_restores_the_same_aggregates(self, store):
        ingest(store, *(msg(sport=40000 + i % 3, nbytes=i) for i in range(9)))
        before = totals(store)

        store.toggle_aggregate_field("SrcPort")
        assert len(store) == 1
        store.toggle_aggregate_field("SrcPort")

        assert totals(store) == before

    def test_toggle_unknown_field_raises(self, store):
        with pytest.raises(UnknownFieldError):
            store.toggle_aggregate_field("Bogus")
        assert store.active_keys == tuple(FIVE_TUPLE)

    def test_sort_resets_when_its_field_leaves_the_keys(self, store):
        ingest(store, msg())
        store.set_comparator("SrcPort")
        store.toggle_aggregate_field("SrcPort")
        assert store.sort_key == "LastTimeReceived"

    def test_reserved_sort_survives_regrouping(self, store):
        store.set_comparator("TotalBytes")
        store.set_active_keys(["SrcAddr"])
        assert store.sort_key == "TotalBytes"

    def test_hidden_field_can_be_a_key(self, store):
        ingest(store, msg(), msg())
        store.set_active_keys(["TCPFlags"])
        assert len(store) == 1
        assert "TCPFlags" in store.snapshot().columns


# ---------------------------------------------------------------------------
# Snapshots
# ---------------------------------------------------------------------------

class TestSnapshot:

    def test_snapshot_renders_columns(self):
        store = AggregateStore(active_keys=["SrcAddr", "Proto"])
        ingest(store, msg(nbytes=1_000, start=100, end=110))

        snap = store.snapshot()
        view = snap.aggregates[0]
        assert view.keys == {"SrcAddr": "10.0.0.1", "Proto": "TCP"}
        assert view.cells["SrcAddr"] == "10.0.0.1"
        assert view.cells["DstAddr"] == "-"
        assert view.cells["TotalBytes"] == "1000"
        assert view.cells["TotalPackets"] == "1"
        assert view.cells["Rate(kBps)"] == "0.1 ↑"
        assert snap.active_keys == ("SrcAddr", "Proto")
        assert snap.mode == "normal"

    def test_render_failure_marks_the_cell(self, store, monkeypatch):
        ingest(store, msg())

        def broken(self, name):
            raise UnknownFieldError(name)

        monkeypatch.setattr(FlowAggregate, "field_string", broken)
        view = store.snapshot().aggregates[0]
        assert view.cells["SrcAddr"] == "err"
        assert view.cells["TotalBytes"] == "100"

    def test_limit_truncates_but_reports_total(self, store):
        ingest(store, msg(sport=40000), msg(sport=40001), msg(sport=40002))
        snap = store.snapshot(limit=1)
        assert len(snap.aggregates) == 1
        assert snap.total_aggregates == 3
        assert snap.history_size == 3

    def test_snapshot_is_detached_from_the_store(self, store):
        ingest(store, msg())
        snap = store.snapshot()
        ingest(store, msg())
        assert snap.aggregates[0].member_count == 1
        assert snap.messages_processed == 1


# ---------------------------------------------------------------------------
# Table modes
# ---------------------------------------------------------------------------

class TestModes:

    def test_ovn_mode_groups_by_enrichment(self):
        store = AggregateStore(mode="ovn", active_keys=["DPName"])
        store.process_message(msg(), {"DPName": "br-int"})
        store.process_message(msg(), {"DPName": "br-ex"})
        store.process_message(msg(), {"DPName": "br-int"})
        counts = {a.field_string("DPName"): a.member_count for a in store.aggregates()}
        assert counts == {"br-int": 2, "br-ex": 1}

    def test_ovn_acl_mode_knows_acl_fields(self):
        store = AggregateStore(mode="ovn_acl", active_keys=["ACLName", "ACLAction"])
        store.process_message(msg(), {"ACLName": "allow-web", "ACLAction": "allow"})
        assert store.aggregates()[0].field_string("ACLAction") == "allow"

    def test_normal_mode_rejects_ovn_fields(self):
        store = AggregateStore()
        with pytest.raises(UnknownFieldError):
            store.set_active_keys(["DPName"])


# ---------------------------------------------------------------------------
# Concurrency
# ---------------------------------------------------------------------------

class TestConcurrency:

    def test_parallel_ingest_conserves_totals(self, store):
        messages = [msg(sport=40000 + i % 10, nbytes=i, received=i) for i in range(400)]

        with ThreadPoolExecutor(max_workers=8) as pool:
            list(pool.map(store.process_message, messages))

        aggs = store.aggregates()
        assert len(aggs) == 10
        assert sum(a.total_bytes for a in aggs) == sum(range(400))
        assert sum(a.member_count for a in aggs) == 400
        assert store.messages_processed == 400

    def test_regrouping_during_ingest_loses_nothing(self, store):
        messages = [msg(sport=40000 + i % 5, nbytes=1) for i in range(300)]

        def regroup(i: int) -> None:
            store.set_active_keys(["SrcPort"] if i % 2 else FIVE_TUPLE)

        with ThreadPoolExecutor(max_workers=8) as pool:
            futures = [pool.submit(store.process_message, m) for m in messages]
            futures += [pool.submit(regroup, i) for i in range(20)]
            for f in futures:
                f.result()

        store.set_active_keys([])
        assert store.aggregates()[0].total_bytes == 300
        assert len(store.history()) == 300

    def test_ranking_holds_after_parallel_ingest(self, store):
        store.set_comparator("TotalBytes")
        messages = [msg(sport=40000 + i % 7, nbytes=i) for i in range(200)]
        with ThreadPoolExecutor(max_workers=4) as pool:
            list(pool.map(store.process_message, messages))

        ranked = [a.total_bytes for a in store.aggregates()]
        assert ranked == sorted(ranked, reverse=True)


def test_normalize_is_reexported():
    record = normalize(msg())
    assert record.key.svc_port == 443
