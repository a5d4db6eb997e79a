from __future__ import annotations

import pytest

from wanroute.core.errors import RouteNotFound
from wanroute.model.routing import RoutingTable, make_entry


def _primary_backup() -> RoutingTable:
    table = RoutingTable(node_id=1)
    table.install(make_entry("10.1.2.0/24", next_hop=2, link_id=2, metric=10))
    table.install(make_entry("10.1.2.0/24", next_hop=2, link_id=3, metric=100))
    return table


def test_lookup_prefers_lowest_metric() -> None:
    table = _primary_backup()
    entry = table.lookup("10.1.2.2")
    assert entry is not None
    assert entry.link_id == 2
    assert entry.metric == 10


def test_failover_to_next_lowest_metric_when_primary_link_down() -> None:
    table = _primary_backup()
    table.install(make_entry("10.1.2.0/24", next_hop=2, link_id=4, metric=50))
    table.invalidate(2)
    entry = table.lookup("10.1.2.2")
    assert entry is not None
    assert entry.link_id == 4
    assert entry.metric == 50


def test_all_candidates_down_returns_not_found() -> None:
    table = _primary_backup()
    table.invalidate(2)
    table.invalidate(3)
    assert table.lookup("10.1.2.2") is None
    with pytest.raises(RouteNotFound):
        table.resolve("10.1.2.2")


def test_invalidate_keeps_entries_and_revalidate_fails_back() -> None:
    table = _primary_backup()
    affected = table.invalidate(2)
    assert [e.link_id for e in affected] == [2]
    assert len(table) == 2
    assert [row["eligible"] for row in table.snapshot()] == [False, True]

    table.revalidate(2)
    entry = table.lookup("10.1.2.2")
    assert entry is not None and entry.link_id == 2


def test_single_candidate_failure_yields_not_found_until_recovery() -> None:
    table = RoutingTable(node_id=0)
    table.install(make_entry("10.1.1.0/24", next_hop=1, link_id=1))
    table.invalidate(1)
    assert table.lookup("10.1.1.2") is None
    table.revalidate(1)
    assert table.lookup("10.1.1.2") is not None


def test_install_twice_is_idempotent() -> None:
    table = _primary_backup()
    before = table.lookup("10.1.2.9")
    changed = table.install(make_entry("10.1.2.0/24", next_hop=2, link_id=2, metric=10))
    assert changed is False
    assert len(table) == 2
    assert table.lookup("10.1.2.9") == before


def test_reinstall_replaces_metric_and_keeps_insertion_order() -> None:
    table = RoutingTable(node_id=1)
    table.install(make_entry("10.9.0.0/16", next_hop=2, link_id=2, metric=10))
    table.install(make_entry("10.9.0.0/16", next_hop=3, link_id=3, metric=10))
    assert table.lookup("10.9.1.1").link_id == 2

    assert table.install(make_entry("10.9.0.0/16", next_hop=2, link_id=2, metric=200)) is True
    assert len(table) == 2
    assert table.lookup("10.9.1.1").link_id == 3

    table.install(make_entry("10.9.0.0/16", next_hop=2, link_id=2, metric=10))
    assert table.lookup("10.9.1.1").link_id == 2


def test_equal_metric_ties_follow_insertion_order() -> None:
    table = RoutingTable(node_id=1)
    table.install(make_entry("10.5.0.0/24", next_hop=4, link_id=4, metric=5))
    table.install(make_entry("10.5.0.0/24", next_hop=5, link_id=5, metric=5))
    assert table.lookup("10.5.0.1").next_hop == 4
    table.invalidate(4)
    assert table.lookup("10.5.0.1").next_hop == 5


def test_longest_prefix_wins_and_falls_back_to_shorter_prefix() -> None:
    table = RoutingTable(node_id=1)
    table.install(make_entry("10.2.0.0/16", next_hop=7, link_id=7, metric=1))
    table.install(make_entry("10.2.1.0/24", next_hop=8, link_id=8, metric=50))
    assert table.lookup("10.2.1.1").link_id == 8
    assert table.lookup("10.2.9.1").link_id == 7

    table.invalidate(8)
    assert table.lookup("10.2.1.1").link_id == 7


def test_remove_and_unmatched_destination() -> None:
    table = _primary_backup()
    assert table.lookup("192.168.0.1") is None
    assert table.remove("10.1.2.0/24", next_hop=2, link_id=3) is True
    assert table.remove("10.1.2.0/24", next_hop=2, link_id=3) is False
    assert len(table) == 1
    table.remove("10.1.2.0/24", next_hop=2)
    assert len(table) == 0
    assert table.entries() == []
