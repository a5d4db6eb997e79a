from __future__ import annotations

from typing import Any, Dict, List, Optional

FLOW_FIELDS = [
    "flow",
    "protocol",
    "src_addr",
    "src_port",
    "dst_addr",
    "dst_port",
    "traffic_class",
    "tx_packets",
    "rx_packets",
    "lost_packets",
    "loss_rate",
    "avg_delay",
    "avg_jitter",
    "throughput_kbps",
]

SUMMARY_FIELDS = [
    "run_id",
    "name",
    "seed",
    "flows",
    "tx_packets",
    "rx_packets",
    "lost_packets",
    "loss_rate",
    "avg_delay",
    "link_transitions",
    "first_failure",
    "stats_digest",
]


def compute_metrics(run: Dict[str, Any]) -> Dict[str, Any]:
    totals = run.get("totals", {})
    timeline = run.get("link_timeline", [])
    return {
        "run_id": run.get("run_id"),
        "name": run.get("name"),
        "seed": run.get("seed"),
        "flows": totals.get("flows", 0),
        "tx_packets": totals.get("tx_packets", 0),
        "rx_packets": totals.get("rx_packets", 0),
        "lost_packets": totals.get("lost_packets", 0),
        "loss_rate": totals.get("loss_rate"),
        "avg_delay": totals.get("avg_delay"),
        "link_transitions": len(timeline),
        "first_failure": _first_failure(timeline),
        "stats_digest": run.get("stats_digest"),
    }


def _first_failure(timeline: List[Dict[str, Any]]) -> Optional[float]:
    for row in timeline:
        if row.get("state") == "down":
            return float(row["time"])
    return None
