from __future__ import annotations

import ipaddress
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml

from wanroute.core.classifier import ClassRule, parse_rules
from wanroute.core.errors import ConfigError
from wanroute.core.types import LinkState, Protocol
from wanroute.utils.units import parse_rate, parse_time


@dataclass(frozen=True)
class NodeConfig:
    node_id: int
    role: str = "router"
    name: str = ""
    advertise: Tuple[str, ...] = ()


@dataclass(frozen=True)
class LinkConfig:
    link_id: int
    u: int
    v: int
    bandwidth: float
    delay: float
    cost: int = 1
    network: Optional[str] = None
    state: LinkState = LinkState.UP


@dataclass(frozen=True)
class RouteConfig:
    node: int
    prefix: str
    next_hop: int | str
    metric: int = 0
    link: Optional[int] = None
    interface: Optional[int] = None


@dataclass(frozen=True)
class FaultConfig:
    time: float
    link: int
    state: LinkState


@dataclass(frozen=True)
class TrafficConfig:
    time: float
    src: int
    dst: int | str
    protocol: Protocol
    port: int
    size: int = 512
    src_port: Optional[int] = None


@dataclass(frozen=True)
class FlowConfig:
    """Periodic sender: one packet every ``interval`` from ``start`` until ``stop``."""

    src: int
    dst: int | str
    protocol: Protocol
    port: int
    start: float
    stop: float
    interval: float
    size: int = 512
    max_packets: int = 0
    src_port: Optional[int] = None

    def send_times(self) -> List[float]:
        times: List[float] = []
        k = 0
        while True:
            t = round(self.start + k * self.interval, 9)
            if t >= self.stop:
                break
            if self.max_packets and k >= self.max_packets:
                break
            times.append(t)
            k += 1
        return times


@dataclass(frozen=True)
class ChannelConfig:
    loss_prob: float = 0.0


@dataclass(frozen=True)
class ScenarioConfig:
    name: str
    seed: int
    duration: float
    nodes: List[NodeConfig]
    links: List[LinkConfig]
    routes: List[RouteConfig] = field(default_factory=list)
    faults: List[FaultConfig] = field(default_factory=list)
    traffic: List[TrafficConfig] = field(default_factory=list)
    flows: List[FlowConfig] = field(default_factory=list)
    channel: ChannelConfig = ChannelConfig()
    propose_routes: bool = False
    propose_metric: Optional[int] = None
    snapshot_interval: float = 0.0
    hop_limit: int = 64
    classifier_rules: Optional[Tuple[ClassRule, ...]] = None
    output_dir: str = "results/runs"


def load_effective_config(config_path: str | Path) -> Dict[str, Any]:
    """Experiment file deep-merged over ``configs/defaults.yaml`` of the same tree."""
    cfg_path = Path(config_path).resolve()
    parts = cfg_path.parts
    if "configs" in parts:
        cfg_idx = parts.index("configs")
        root = Path(*parts[:cfg_idx]) if cfg_idx > 0 else Path("/")
    else:
        root = cfg_path.parent
    defaults_path = root / "configs" / "defaults.yaml"

    cfg: Dict[str, Any] = {}
    if defaults_path.exists() and defaults_path != cfg_path:
        cfg = _read_yaml(defaults_path)
    return _merge(cfg, _read_yaml(cfg_path))


def _read_yaml(path: Path) -> Dict[str, Any]:
    with path.open("r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ConfigError(f"{path}: top level must be a mapping")
    return data


def _merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    # sections such as channel merge key by key; lists (links, faults) replace wholesale
    out = dict(base)
    for key, value in override.items():
        if isinstance(out.get(key), dict) and isinstance(value, dict):
            out[key] = _merge(out[key], value)
        else:
            out[key] = value
    return out


def load_scenario(path: str | Path) -> ScenarioConfig:
    return parse_scenario(load_effective_config(path))


def parse_scenario(raw: Dict[str, Any]) -> ScenarioConfig:
    try:
        return _parse(raw)
    except ConfigError:
        raise
    except (KeyError, TypeError, ValueError) as exc:
        raise ConfigError(f"invalid scenario: {_describe(exc)}") from exc


def _describe(exc: Exception) -> str:
    if isinstance(exc, KeyError):
        return f"missing key {exc.args[0]!r}"
    return str(exc)


def _parse(raw: Dict[str, Any]) -> ScenarioConfig:
    if not isinstance(raw, dict):
        raise ConfigError("scenario must be a mapping")
    if "links" not in raw:
        raise ConfigError("missing 'links' section")

    nodes = _parse_nodes(raw.get("nodes", 0), raw["links"])
    links = [_parse_link(idx, item) for idx, item in enumerate(raw["links"], start=1)]
    routes = [
        RouteConfig(
            node=int(item["node"]),
            prefix=_prefix(item),
            next_hop=_node_or_address(item["next_hop"]),
            metric=int(item.get("metric", 0)),
            link=int(item["link"]) if item.get("link") is not None else None,
            interface=int(item["interface"]) if item.get("interface") is not None else None,
        )
        for item in raw.get("routes", []) or []
    ]
    faults = [
        FaultConfig(
            time=parse_time(item["time"]),
            link=int(item["link"]),
            state=LinkState(str(item.get("state", "down")).lower()),
        )
        for item in raw.get("faults", []) or []
    ]
    traffic = [
        TrafficConfig(
            time=parse_time(item["time"]),
            src=int(item["src"]),
            dst=_node_or_address(item["dst"]),
            protocol=Protocol.parse(item.get("protocol", "udp")),
            port=_port(item["port"]),
            size=int(item.get("size", 512)),
            src_port=_port(item["src_port"]) if item.get("src_port") is not None else None,
        )
        for item in raw.get("traffic", []) or []
    ]
    flows = [_parse_flow(item, raw) for item in raw.get("flows", []) or []]

    channel_raw = dict(raw.get("channel", {}) or {})
    rules_raw = raw.get("classifier", {}) or {}
    rules = parse_rules(rules_raw["rules"]) if rules_raw.get("rules") else None

    duration = parse_time(raw.get("duration", 10.0))
    if duration <= 0:
        raise ConfigError("duration must be > 0")
    hop_limit = int(raw.get("hop_limit", 64))
    if hop_limit <= 0:
        raise ConfigError("hop_limit must be > 0")
    propose = raw.get("propose_routes", False)
    propose_metric = None
    if isinstance(propose, dict):
        propose_metric = int(propose["metric"]) if propose.get("metric") is not None else None
        propose = bool(propose.get("enabled", True))

    return ScenarioConfig(
        name=str(raw.get("name", "run")),
        seed=int(raw.get("seed", 1)),
        duration=duration,
        nodes=nodes,
        links=links,
        routes=routes,
        faults=faults,
        traffic=traffic,
        flows=flows,
        channel=ChannelConfig(loss_prob=float(channel_raw.get("loss_prob", 0.0))),
        propose_routes=bool(propose),
        propose_metric=propose_metric,
        snapshot_interval=parse_time(raw.get("snapshot_interval", 0.0)),
        hop_limit=hop_limit,
        classifier_rules=rules,
        output_dir=str(raw.get("output_dir", "results/runs")),
    )


def _parse_nodes(raw_nodes: Any, raw_links: List[Dict[str, Any]]) -> List[NodeConfig]:
    if isinstance(raw_nodes, int):
        count = raw_nodes
        if count <= 0:
            count = 1 + max((max(int(l["u"]), int(l["v"])) for l in raw_links), default=-1)
        return [NodeConfig(node_id=i) for i in range(count)]
    nodes = []
    for idx, item in enumerate(raw_nodes):
        nodes.append(
            NodeConfig(
                node_id=int(item.get("id", idx)),
                role=str(item.get("role", "router")),
                name=str(item.get("name", "")),
                advertise=tuple(str(p) for p in item.get("advertise", []) or []),
            )
        )
    ids = [n.node_id for n in nodes]
    if len(set(ids)) != len(ids):
        raise ConfigError(f"duplicate node ids: {sorted(ids)}")
    return nodes


def _parse_link(idx: int, item: Dict[str, Any]) -> LinkConfig:
    return LinkConfig(
        link_id=int(item.get("id", idx)),
        u=int(item["u"]),
        v=int(item["v"]),
        bandwidth=parse_rate(item.get("bandwidth", "5Mbps")),
        delay=parse_time(item.get("delay", "2ms")),
        cost=int(item.get("cost", 1)),
        network=str(item["network"]) if item.get("network") else None,
        state=LinkState(str(item.get("state", "up")).lower()),
    )


def _parse_flow(item: Dict[str, Any], raw: Dict[str, Any]) -> FlowConfig:
    interval = parse_time(item.get("interval", "100ms"))
    if interval <= 0:
        raise ConfigError("flow interval must be > 0")
    return FlowConfig(
        src=int(item["src"]),
        dst=_node_or_address(item["dst"]),
        protocol=Protocol.parse(item.get("protocol", "udp")),
        port=_port(item["port"]),
        start=parse_time(item.get("start", 0.0)),
        stop=parse_time(item.get("stop", raw.get("duration", 10.0))),
        interval=interval,
        size=int(item.get("size", 512)),
        max_packets=int(item.get("max_packets", 0)),
        src_port=_port(item["src_port"]) if item.get("src_port") is not None else None,
    )


def _prefix(item: Dict[str, Any]) -> str:
    prefix = str(item["prefix"])
    if "/" not in prefix and item.get("mask") is not None:
        prefix = f"{prefix}/{item['mask']}"
    return str(ipaddress.IPv4Network(prefix, strict=False))


def _node_or_address(value: Any) -> int | str:
    if isinstance(value, int):
        return value
    text = str(value).strip()
    return int(text) if text.isdigit() else text


def _port(value: Any) -> int:
    port = int(value)
    if not (0 <= port <= 65535):
        raise ValueError(f"port out of range: {port}")
    return port
