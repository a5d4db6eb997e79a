from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from wanroute.core.types import FlowKey, SimTime, TrafficClass

NA = "N/A"


@dataclass
class FlowStats:
    tx_packets: int = 0
    rx_packets: int = 0
    tx_bytes: int = 0
    rx_bytes: int = 0
    lost_packets: int = 0
    delay_sum: float = 0.0
    jitter_sum: float = 0.0
    last_delay: Optional[float] = None
    time_first_tx: Optional[SimTime] = None
    time_last_tx: Optional[SimTime] = None
    time_first_rx: Optional[SimTime] = None
    time_last_rx: Optional[SimTime] = None
    traffic_class: Optional[TrafficClass] = None
    loss_reasons: Counter = field(default_factory=Counter)

    @property
    def loss_rate(self) -> Optional[float]:
        if self.tx_packets == 0:
            return None
        return (self.tx_packets - self.rx_packets) / self.tx_packets

    @property
    def average_delay(self) -> Optional[float]:
        if self.rx_packets == 0:
            return None
        return self.delay_sum / self.rx_packets

    @property
    def average_jitter(self) -> Optional[float]:
        # one jitter sample per consecutive pair of received packets
        if self.rx_packets < 2:
            return None
        return self.jitter_sum / (self.rx_packets - 1)

    @property
    def throughput_kbps(self) -> Optional[float]:
        if self.rx_packets == 0 or self.time_first_tx is None or self.time_last_rx is None:
            return None
        span = self.time_last_rx - self.time_first_tx
        if span <= 0:
            return None
        return self.rx_bytes * 8.0 / span / 1000.0


class FlowStatsAggregator:
    """Per-flow delivery counters for one run.

    Only sums and counts are stored; every average is derived on query, so repeated
    queries never drift.
    """

    def __init__(self) -> None:
        self._flows: Dict[FlowKey, FlowStats] = {}

    def _get(self, key: FlowKey) -> FlowStats:
        stats = self._flows.get(key)
        if stats is None:
            stats = FlowStats()
            self._flows[key] = stats
        return stats

    def on_sent(
        self,
        key: FlowKey,
        time: SimTime,
        size: int = 0,
        traffic_class: Optional[TrafficClass] = None,
    ) -> None:
        stats = self._get(key)
        stats.tx_packets += 1
        stats.tx_bytes += int(size)
        if stats.time_first_tx is None:
            stats.time_first_tx = time
        stats.time_last_tx = time
        if stats.traffic_class is None and traffic_class is not None:
            stats.traffic_class = traffic_class

    def on_received(self, key: FlowKey, time: SimTime, delay: float, size: int = 0) -> None:
        stats = self._get(key)
        stats.rx_packets += 1
        stats.rx_bytes += int(size)
        stats.delay_sum += delay
        if stats.last_delay is not None:
            stats.jitter_sum += abs(delay - stats.last_delay)
        stats.last_delay = delay
        if stats.time_first_rx is None:
            stats.time_first_rx = time
        stats.time_last_rx = time

    def on_lost(self, key: FlowKey, reason: str = "no_route") -> None:
        stats = self._get(key)
        stats.lost_packets += 1
        stats.loss_reasons[reason] += 1

    def flows(self) -> List[FlowKey]:
        return sorted(self._flows)

    def stats(self, key: FlowKey) -> Optional[FlowStats]:
        return self._flows.get(key)

    def loss_rate(self, key: FlowKey) -> Optional[float]:
        stats = self._flows.get(key)
        return stats.loss_rate if stats else None

    def average_delay(self, key: FlowKey) -> Optional[float]:
        stats = self._flows.get(key)
        return stats.average_delay if stats else None

    def average_jitter(self, key: FlowKey) -> Optional[float]:
        stats = self._flows.get(key)
        return stats.average_jitter if stats else None

    def row(self, key: FlowKey) -> Dict[str, Any]:
        s = self._flows[key]
        return {
            **key.as_dict(),
            "flow": str(key),
            "traffic_class": s.traffic_class.value if s.traffic_class else None,
            "tx_packets": s.tx_packets,
            "rx_packets": s.rx_packets,
            "lost_packets": s.lost_packets,
            "loss_rate": s.loss_rate,
            "avg_delay": s.average_delay,
            "avg_jitter": s.average_jitter,
            "throughput_kbps": s.throughput_kbps,
            "loss_reasons": dict(sorted(s.loss_reasons.items())),
        }

    def table(self) -> List[Dict[str, Any]]:
        return [self.row(key) for key in self.flows()]

    def totals(self) -> Dict[str, Any]:
        tx = sum(s.tx_packets for s in self._flows.values())
        rx = sum(s.rx_packets for s in self._flows.values())
        lost = sum(s.lost_packets for s in self._flows.values())
        delay = sum(s.delay_sum for s in self._flows.values())
        return {
            "flows": len(self._flows),
            "tx_packets": tx,
            "rx_packets": rx,
            "lost_packets": lost,
            "loss_rate": (tx - rx) / tx if tx else None,
            "avg_delay": delay / rx if rx else None,
        }


def format_value(value: Any, scale: float = 1.0, digits: int = 3) -> str:
    if value is None:
        return NA
    if isinstance(value, float):
        return f"{value * scale:.{digits}f}"
    return str(value)


def format_table(rows: List[Dict[str, Any]]) -> str:
    """Plain-text flow table; delays in ms, undefined metrics shown as N/A."""
    header = ["flow", "class", "tx", "rx", "loss%", "delay_ms", "jitter_ms", "kbps"]
    lines = [header]
    for r in rows:
        lines.append(
            [
                r["flow"],
                r["traffic_class"] or NA,
                str(r["tx_packets"]),
                str(r["rx_packets"]),
                format_value(r["loss_rate"], 100.0, 2),
                format_value(r["avg_delay"], 1000.0),
                format_value(r["avg_jitter"], 1000.0),
                format_value(r["throughput_kbps"], 1.0, 2),
            ]
        )
    widths = [max(len(line[i]) for line in lines) for i in range(len(header))]
    return "\n".join("  ".join(cell.ljust(w) for cell, w in zip(line, widths)).rstrip() for line in lines)
