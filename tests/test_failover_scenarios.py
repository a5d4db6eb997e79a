from __future__ import annotations

from pathlib import Path
from typing import Any, Dict

import pytest

from wanroute.core.engine import Simulation, time_split
from wanroute.core.errors import InvalidTopologyReference
from wanroute.core.types import LinkState
from wanroute.runtime.config import load_scenario, parse_scenario

REPO_ROOT = Path(__file__).resolve().parents[1]

PRIMARY_DELAY = 0.0028192 + 0.0024096
BACKUP_DELAY = 0.0028192 + 0.012048


def bank_cfg(**overrides: Any) -> Dict[str, Any]:
    cfg: Dict[str, Any] = {
        "name": "bank",
        "seed": 1,
        "duration": 15.0,
        "nodes": [
            {"id": 0, "role": "client", "name": "Branch-C"},
            {"id": 1, "role": "router", "name": "DC-A"},
            {"id": 2, "role": "server", "name": "DR-B"},
        ],
        "links": [
            {"id": 1, "u": 0, "v": 1, "bandwidth": "5Mbps", "delay": "2ms", "network": "10.1.1.0/24"},
            {"id": 2, "u": 1, "v": 2, "bandwidth": "10Mbps", "delay": "2ms", "network": "10.1.2.0/24"},
            {"id": 3, "u": 1, "v": 2, "bandwidth": "2Mbps", "delay": "10ms", "network": "10.1.3.0/24"},
        ],
        "routes": [
            {"node": 0, "prefix": "10.1.2.0/24", "next_hop": "10.1.1.2"},
            {"node": 1, "prefix": "10.1.2.0/24", "next_hop": "10.1.2.2", "metric": 10},
            {"node": 1, "prefix": "10.1.2.0/24", "next_hop": "10.1.3.2", "metric": 100},
        ],
        "faults": [{"time": 5.0, "link": 2, "state": "down"}],
        "flows": [
            {
                "src": 0,
                "dst": "10.1.2.2",
                "protocol": "udp",
                "port": 5000,
                "start": 2.0,
                "stop": 14.0,
                "interval": 0.1,
                "size": 512,
            }
        ],
    }
    cfg.update(overrides)
    return cfg


def run(cfg: Dict[str, Any]):
    return Simulation(parse_scenario(cfg)).run()


def test_primary_failure_switches_to_backup_without_loss() -> None:
    result = run(bank_cfg())

    assert len(result.flow_table) == 1
    row = result.flow_table[0]
    assert row["tx_packets"] == 120
    assert row["rx_packets"] == 120
    assert row["loss_rate"] == 0.0
    assert row["traffic_class"] == "high_priority"

    for rec in result.packets:
        hop = rec.hop_at(1)
        assert hop is not None
        if rec.time < 5.0:
            assert (hop.link_id, hop.metric) == (2, 10)
            assert rec.delay == pytest.approx(PRIMARY_DELAY)
        else:
            assert (hop.link_id, hop.metric) == (3, 100)
            assert rec.delay == pytest.approx(BACKUP_DELAY)

    split = time_split(result, node=1, at=5.0)
    assert split["before"] == {10: 30}
    assert split["after"] == {100: 90}
    assert result.link_timeline_rows() == [{"time": 5.0, "link_id": 2, "state": "down"}]


def test_primary_recovery_fails_back() -> None:
    cfg = bank_cfg(
        faults=[
            {"time": 5.0, "link": 2, "state": "down"},
            {"time": 8.0, "link": 2, "state": "up"},
        ]
    )
    sim = Simulation(parse_scenario(cfg))
    table_size = len(sim.tables[1])
    result = sim.run()

    assert len(sim.tables[1]) == table_size
    metrics = {t: m for t, m in result.route_via(1)}
    assert metrics[4.9] == 10
    assert metrics[5.0] == 100
    assert metrics[7.9] == 100
    assert metrics[8.0] == 10
    assert metrics[13.9] == 10
    assert result.flow_table[0]["rx_packets"] == 120
    assert [t.state for t in result.link_timeline] == [LinkState.DOWN, LinkState.UP]


def test_cancelled_recovery_leaves_primary_down() -> None:
    cfg = bank_cfg(
        faults=[
            {"time": 5.0, "link": 2, "state": "down"},
            {"time": 8.0, "link": 2, "state": "up"},
        ]
    )
    sim = Simulation(parse_scenario(cfg))
    assert len(sim.fault_tokens) == 2
    assert sim.cancel_fault(1) is True
    assert sim.cancel_fault(1) is False
    result = sim.run()

    assert not sim.topology.is_up(2)
    assert [(t.time, t.state) for t in result.link_timeline] == [(5.0, LinkState.DOWN)]
    assert all(m == 100 for t, m in result.route_via(1) if t >= 5.0)
    assert time_split(result, node=1, at=5.0)["after"] == {100: 90}
    assert result.flow_table[0]["rx_packets"] == 120


def test_fault_cannot_be_cancelled_after_it_fired() -> None:
    sim = Simulation(parse_scenario(bank_cfg()))
    sim.scheduler.run_until(6.0)
    assert sim.cancel_fault(0) is False
    assert not sim.topology.is_up(2)


def test_no_usable_route_loses_every_packet() -> None:
    cfg = bank_cfg(faults=[])
    cfg["links"][1]["state"] = "down"
    cfg["links"][2]["state"] = "down"
    result = run(cfg)

    row = result.flow_table[0]
    assert row["tx_packets"] == 120
    assert row["rx_packets"] == 0
    assert row["loss_rate"] == 1.0
    assert row["avg_delay"] is None
    assert row["avg_jitter"] is None
    assert row["loss_reasons"] == {"no_route": 120}
    assert result.link_timeline == []


def test_identical_runs_produce_identical_digests() -> None:
    a = run(bank_cfg())
    b = run(bank_cfg())
    assert a.stats_digest == b.stats_digest
    assert a.route_tables == b.route_tables

    lossy = {"channel": {"loss_prob": 0.2}, "seed": 7}
    c = run(bank_cfg(**lossy))
    d = run(bank_cfg(**lossy))
    assert c.stats_digest == d.stats_digest
    assert c.flow_table[0]["loss_reasons"].get("channel", 0) > 0
    assert c.stats_digest != a.stats_digest


@pytest.mark.parametrize(
    "overrides",
    [
        {"faults": [{"time": 5.0, "link": 9, "state": "down"}]},
        {"routes": [{"node": 1, "prefix": "10.1.2.0/24", "next_hop": "10.9.9.9"}]},
        {"routes": [{"node": 4, "prefix": "10.1.2.0/24", "next_hop": 1}]},
        {"routes": [{"node": 0, "prefix": "10.1.2.0/24", "next_hop": 2, "link": 1}]},
        {"flows": [{"src": 7, "dst": "10.1.2.2", "port": 5000, "start": 1.0, "stop": 2.0}]},
        {"flows": [{"src": 0, "dst": "172.16.0.1", "port": 5000, "start": 1.0, "stop": 2.0}]},
    ],
)
def test_bad_references_abort_construction(overrides: Dict[str, Any]) -> None:
    with pytest.raises(InvalidTopologyReference):
        Simulation(parse_scenario(bank_cfg(**overrides)))


def test_ambiguous_next_hop_between_parallel_links_is_rejected() -> None:
    cfg = bank_cfg(routes=[{"node": 1, "prefix": "10.1.2.0/24", "next_hop": 2}])
    with pytest.raises(InvalidTopologyReference):
        Simulation(parse_scenario(cfg))

    cfg = bank_cfg(routes=[{"node": 1, "prefix": "10.1.2.0/24", "next_hop": 2, "link": 3}])
    sim = Simulation(parse_scenario(cfg))
    entry = sim.tables[1].lookup("10.1.2.2")
    assert entry is not None and entry.link_id == 3


def test_repeated_down_event_is_ignored() -> None:
    cfg = bank_cfg(
        faults=[
            {"time": 5.0, "link": 2, "state": "down"},
            {"time": 6.0, "link": 2, "state": "down"},
        ]
    )
    sim = Simulation(parse_scenario(cfg))
    result = sim.run()
    assert sim.controller.duplicates == 1
    assert len(result.link_timeline) == 1
    assert result.flow_table[0]["rx_packets"] == 120


def test_packet_arriving_after_deadline_counts_as_in_flight() -> None:
    cfg = bank_cfg(
        duration=2.003,
        flows=[],
        traffic=[{"time": 2.0, "src": 0, "dst": "10.1.2.2", "protocol": "udp", "port": 9000}],
    )
    result = run(cfg)
    row = result.flow_table[0]
    assert row["tx_packets"] == 1
    assert row["rx_packets"] == 0
    assert row["loss_reasons"] == {"in_flight": 1}
    assert row["traffic_class"] == "best_effort"


def test_hop_limit_stops_routing_loops() -> None:
    cfg = bank_cfg(
        hop_limit=8,
        faults=[],
        routes=[
            {"node": 0, "prefix": "10.1.2.0/24", "next_hop": 1},
            {"node": 1, "prefix": "10.1.2.0/24", "next_hop": 0},
        ],
    )
    result = run(cfg)
    assert result.flow_table[0]["loss_reasons"] == {"ttl_expired": 120}
    assert len(result.packets[0].hops) == 8


def test_failing_subscriber_does_not_abort_run() -> None:
    sim = Simulation(parse_scenario(bank_cfg()))

    def broken(kind: str, payload: Dict[str, Any]) -> None:
        raise KeyError("missing field")

    sim.scheduler.subscribe("packet_send", broken)
    result = sim.run()
    assert result.flow_table[0]["rx_packets"] == 120
    assert result.class_counts == {"high_priority": 120}
    assert sim.scheduler.observer_errors == 120


def test_snapshots_and_class_counts() -> None:
    result = run(bank_cfg(snapshot_interval=1.0))
    assert [s["time"] for s in result.snapshots] == [float(t) for t in range(1, 16)]
    assert result.snapshots[0]["tx_packets"] == 0
    assert result.snapshots[-1]["tx_packets"] == 120
    assert result.class_counts == {"high_priority": 120}


def test_interas_exchange_failure_loses_traffic_until_recovery() -> None:
    scenario = load_scenario(REPO_ROOT / "configs" / "interas_advertise.yaml")
    result = Simulation(scenario).run()

    row = result.flow_table[0]
    assert row["tx_packets"] == 190
    assert row["rx_packets"] == 130
    assert row["loss_reasons"] == {"no_route": 60}
    lost_times = [p.time for p in result.packets if not p.delivered]
    assert min(lost_times) == 12.0
    assert max(lost_times) == pytest.approx(17.9)


def test_bundled_bank_config_matches_failover_behaviour() -> None:
    scenario = load_scenario(REPO_ROOT / "configs" / "regional_bank_failover.yaml")
    assert scenario.hop_limit == 64
    result = Simulation(scenario).run()
    assert result.flow_table[0]["rx_packets"] == 120
    assert time_split(result, node=1, at=5.0)["after"] == {100: 90}
