from __future__ import annotations

import json
import logging
from pathlib import Path

import pytest

from wanroute.core.errors import InvalidTopologyReference
from wanroute.core.eventlog import EventLog
from wanroute.core.link_state import LinkStateController
from wanroute.core.scheduler import EventScheduler
from wanroute.core.topology import Topology
from wanroute.core.types import LinkState
from wanroute.model.routing import RoutingTable, make_entry


def build_line():
    topo = Topology.line(3)
    tables = {n: RoutingTable(n) for n in topo.nodes()}
    tables[0].install(make_entry("10.0.2.0/24", next_hop=1, link_id=1))
    tables[1].install(make_entry("10.0.2.0/24", next_hop=2, link_id=2))
    tables[2].install(make_entry("10.0.1.0/24", next_hop=1, link_id=2))
    return topo, tables


def test_down_invalidates_bound_routes_on_every_node() -> None:
    topo, tables = build_line()
    ctl = LinkStateController(topo, tables)

    assert ctl.apply(2, LinkState.DOWN, 1.0) is True
    assert not topo.is_up(2)
    assert tables[1].lookup("10.0.2.2") is None
    assert tables[2].lookup("10.0.1.1") is None
    # node 0 routes over link 1 and keeps its entry
    assert tables[0].lookup("10.0.2.2") is not None
    assert [t.as_dict() for t in ctl.timeline] == [{"time": 1.0, "link_id": 2, "state": "down"}]


def test_duplicate_event_is_logged_and_ignored(caplog: pytest.LogCaptureFixture) -> None:
    topo, tables = build_line()
    ctl = LinkStateController(topo, tables)
    ctl.apply(2, LinkState.DOWN, 1.0)

    with caplog.at_level(logging.WARNING, logger="wanroute.link_state"):
        assert ctl.apply(2, LinkState.DOWN, 2.0) is False
    assert ctl.duplicates == 1
    assert len(ctl.timeline) == 1
    assert "already down" in caplog.text

    assert ctl.apply(1, LinkState.UP, 3.0) is False
    assert ctl.duplicates == 2


def test_up_revalidates_entries() -> None:
    topo, tables = build_line()
    ctl = LinkStateController(topo, tables)
    ctl.apply(2, LinkState.DOWN, 1.0)
    ctl.apply(2, LinkState.UP, 4.0)

    entry = tables[1].lookup("10.0.2.2")
    assert entry is not None and entry.link_id == 2
    assert [t.state for t in ctl.timeline] == [LinkState.DOWN, LinkState.UP]


def test_sync_suppresses_links_that_start_down() -> None:
    topo, tables = build_line()
    topo.set_link_state(1, LinkState.DOWN)
    LinkStateController(topo, tables).sync()
    assert tables[0].lookup("10.0.2.2") is None
    assert tables[1].lookup("10.0.2.2") is not None


def test_scheduled_transitions_apply_in_time_order(tmp_path: Path) -> None:
    topo, tables = build_line()
    logger = EventLog(tmp_path / "events.jsonl")
    ctl = LinkStateController(topo, tables, logger)
    sched = EventScheduler()
    ctl.schedule(sched, 3.0, 2, LinkState.UP)
    ctl.schedule(sched, 1.0, 2, LinkState.DOWN)

    with pytest.raises(InvalidTopologyReference):
        ctl.schedule(sched, 2.0, 99, LinkState.DOWN)

    assert sched.queued() == [(1.0, "link"), (3.0, "link")]
    sched.run_until(5.0)
    logger.close()

    assert [(t.time, t.state) for t in ctl.timeline] == [(1.0, LinkState.DOWN), (3.0, LinkState.UP)]
    lines = (tmp_path / "events.jsonl").read_text(encoding="utf-8").splitlines()
    events = [json.loads(line) for line in lines]
    assert [e["event"] for e in events] == ["link_state", "link_state"]
    assert events[0]["affected"] == 2


def test_event_log_counts_without_a_file() -> None:
    topo, tables = build_line()
    logger = EventLog()
    ctl = LinkStateController(topo, tables, logger)
    ctl.apply(2, LinkState.DOWN, 1.0)
    ctl.apply(2, LinkState.DOWN, 2.0)
    ctl.apply(2, LinkState.UP, 3.0)

    assert logger.seq == 3
    assert logger.summary() == {"link_duplicate": 1, "link_state": 2}
