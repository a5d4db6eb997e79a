from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

NodeId = int
LinkId = int
Metric = int
SimTime = float
Payload = Dict[str, Any]


class LinkState(str, Enum):
    UP = "up"
    DOWN = "down"


class TrafficClass(str, Enum):
    BEST_EFFORT = "best_effort"
    HIGH_PRIORITY = "high_priority"
    SUSPICIOUS = "suspicious"
    WEB = "web"


class Protocol(str, Enum):
    TCP = "tcp"
    UDP = "udp"

    @property
    def number(self) -> int:
        return 6 if self is Protocol.TCP else 17

    @classmethod
    def parse(cls, value: Any) -> "Protocol":
        if isinstance(value, Protocol):
            return value
        if isinstance(value, int) or str(value).isdigit():
            num = int(value)
            if num == 6:
                return cls.TCP
            if num == 17:
                return cls.UDP
            raise ValueError(f"Unsupported IP protocol number: {num}")
        return cls(str(value).strip().lower())


@dataclass(frozen=True)
class Node:
    node_id: NodeId
    role: str = "router"
    name: str = ""
    advertise: Tuple[str, ...] = ()

    @property
    def label(self) -> str:
        return self.name or f"n{self.node_id}"


@dataclass(frozen=True, order=True)
class FlowKey:
    src_addr: str
    dst_addr: str
    src_port: int
    dst_port: int
    protocol: str

    def as_dict(self) -> Dict[str, Any]:
        return {
            "src_addr": self.src_addr,
            "dst_addr": self.dst_addr,
            "src_port": self.src_port,
            "dst_port": self.dst_port,
            "protocol": self.protocol,
        }

    def __str__(self) -> str:
        return (
            f"{self.protocol}:{self.src_addr}:{self.src_port}"
            f"->{self.dst_addr}:{self.dst_port}"
        )


@dataclass(frozen=True)
class PacketDescriptor:
    time: SimTime
    src: NodeId
    dst: str
    protocol: Protocol
    port: int
    size: int = 512
    src_port: Optional[int] = None


@dataclass(frozen=True)
class LinkTransition:
    time: SimTime
    link_id: LinkId
    state: LinkState

    def as_dict(self) -> Dict[str, Any]:
        return {"time": self.time, "link_id": self.link_id, "state": self.state.value}


@dataclass(frozen=True)
class Hop:
    node: NodeId
    next_hop: NodeId
    link_id: LinkId
    metric: Metric
    prefix: str


@dataclass
class PacketRecord:
    seq: int
    time: SimTime
    flow: FlowKey
    traffic_class: TrafficClass
    hops: List[Hop] = field(default_factory=list)
    delivered: bool = False
    loss_reason: Optional[str] = None
    delay: Optional[float] = None

    def hop_at(self, node: NodeId) -> Optional[Hop]:
        for hop in self.hops:
            if hop.node == node:
                return hop
        return None

    def as_dict(self) -> Dict[str, Any]:
        return {
            "seq": self.seq,
            "time": self.time,
            "flow": str(self.flow),
            "traffic_class": self.traffic_class.value,
            "hops": [(h.node, h.next_hop, h.link_id, h.metric) for h in self.hops],
            "delivered": self.delivered,
            "loss_reason": self.loss_reason,
            "delay": self.delay,
        }


@dataclass
class RunResult:
    name: str
    duration: SimTime
    flow_table: List[Dict[str, Any]]
    link_timeline: List[LinkTransition]
    snapshots: List[Dict[str, Any]]
    route_tables: Dict[NodeId, List[Dict[str, Any]]]
    packets: List[PacketRecord]
    totals: Dict[str, Any]
    stats_digest: str
    events_applied: int
    class_counts: Dict[str, int] = field(default_factory=dict)

    def link_timeline_rows(self) -> List[Dict[str, Any]]:
        return [t.as_dict() for t in self.link_timeline]

    def route_via(self, node: NodeId) -> List[Tuple[SimTime, Optional[int]]]:
        """(send time, metric used at ``node``) for every packet, None when not routed there."""
        out: List[Tuple[SimTime, Optional[int]]] = []
        for rec in self.packets:
            hop = rec.hop_at(node)
            out.append((rec.time, hop.metric if hop else None))
        return out
