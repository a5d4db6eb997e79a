from __future__ import annotations

import ipaddress
import logging
from collections import Counter
from typing import Any, Dict, List, Optional, Tuple

from wanroute.core.channel import Channel
from wanroute.core.classifier import DEFAULT_RULES, TrafficClassifier
from wanroute.core.digest import hash_stats_table
from wanroute.core.errors import InvalidTopologyReference, RouteNotFound
from wanroute.core.eventlog import EventLog
from wanroute.core.link_state import LinkStateController
from wanroute.core.policy import StaticFailoverPolicy
from wanroute.core.scheduler import EventScheduler, EventToken
from wanroute.core.topology import Topology
from wanroute.core.types import (
    FlowKey,
    Hop,
    NodeId,
    PacketDescriptor,
    PacketRecord,
    RunResult,
    SimTime,
)
from wanroute.model.routing import RouteEntry, RoutingTable, make_entry
from wanroute.model.stats import FlowStatsAggregator
from wanroute.protocols.advertise import propose_routes
from wanroute.runtime.config import RouteConfig, ScenarioConfig

log = logging.getLogger("wanroute.engine")

EPHEMERAL_PORT_BASE = 49153


class PacketCounter:
    """Passive observer of packet sends, counting per traffic class and per source node."""

    def __init__(self) -> None:
        self.total = 0
        self.by_class: Counter = Counter()
        self.by_node: Counter = Counter()

    def __call__(self, kind: str, payload: Dict[str, Any]) -> None:
        self.total += 1
        self.by_class[payload["traffic_class"]] += 1
        self.by_node[payload["src"]] += 1


def build_topology(scenario: ScenarioConfig) -> Topology:
    topology = Topology()
    for node in scenario.nodes:
        topology.add_node(node.node_id, role=node.role, name=node.name, advertise=node.advertise)
    for link in scenario.links:
        topology.add_link(
            link.u,
            link.v,
            link.bandwidth,
            link.delay,
            cost=link.cost,
            network=link.network,
            link_id=link.link_id,
        )
        topology.set_link_state(link.link_id, link.state)
    return topology


def resolve_route(topology: Topology, route: RouteConfig) -> RouteEntry:
    """Turn a configured route into a RouteEntry bound to a concrete link."""
    node = topology.node(route.node).node_id
    if isinstance(route.next_hop, str):
        owner = topology.owner_of(route.next_hop)
        if owner is None:
            raise InvalidTopologyReference("address", route.next_hop, f"route on node {node}")
        next_hop, link_id = owner
        if route.link is not None and route.link != link_id:
            raise InvalidTopologyReference("link", route.link, f"{route.next_hop} is on link {link_id}")
    else:
        next_hop = topology.node(route.next_hop).node_id
        if route.link is not None:
            link_id = route.link
        else:
            between = topology.links_between(node, next_hop)
            if len(between) != 1:
                raise InvalidTopologyReference(
                    "link",
                    None,
                    f"{len(between)} links between {node} and {next_hop}; name one explicitly",
                )
            link_id = between[0].link_id
    link = topology.link(link_id)
    if {link.u, link.v} != {node, next_hop}:
        raise InvalidTopologyReference("link", link_id, f"does not join {node} and {next_hop}")
    interface = route.interface
    if interface is None:
        interface = topology.interface_index(node, link_id)
    return make_entry(route.prefix, next_hop, link_id, route.metric, interface)


class Simulation:
    """One deterministic run: routes, faults and traffic on a fixed topology.

    Every reference in the scenario is checked while the simulation is built, so a bad
    node, link or address aborts construction instead of surfacing mid-run.
    """

    def __init__(
        self,
        scenario: ScenarioConfig,
        logger: Optional[EventLog] = None,
        classifier: Optional[TrafficClassifier] = None,
    ) -> None:
        self.scenario = scenario
        self.duration = float(scenario.duration)
        self.logger = logger or EventLog(path=None)
        self.topology = build_topology(scenario)
        self.tables: Dict[NodeId, RoutingTable] = {n: RoutingTable(n) for n in self.topology.nodes()}
        self.scheduler = EventScheduler()
        self.aggregator = FlowStatsAggregator()
        self.classifier = classifier or TrafficClassifier(scenario.classifier_rules or DEFAULT_RULES)
        self.policy = StaticFailoverPolicy()
        self.channel = Channel(loss_prob=scenario.channel.loss_prob, seed=scenario.seed)
        self.controller = LinkStateController(self.topology, self.tables, self.logger)
        self.counter = PacketCounter()
        self.scheduler.subscribe("packet_send", self.counter)
        self.packets: List[PacketRecord] = []
        self.snapshots: List[Dict[str, Any]] = []
        self.fault_tokens: List[EventToken] = []
        self._src_ports: Dict[Tuple[Any, ...], int] = {}
        self._next_port: Dict[NodeId, int] = {}

        self._install_routes()
        self.controller.sync()
        self._schedule_faults()
        self._schedule_traffic()
        self._schedule_snapshots()

    def _install_routes(self) -> None:
        if self.scenario.propose_routes:
            for proposal in propose_routes(self.topology, metric=self.scenario.propose_metric):
                self.tables[proposal.node].install(proposal.entry)
        for route in self.scenario.routes:
            entry = resolve_route(self.topology, route)
            self.tables[route.node].install(entry)
        for node, table in sorted(self.tables.items()):
            log.debug("node %s: %d route entries installed", node, len(table))

    def _schedule_faults(self) -> None:
        for fault in self.scenario.faults:
            self.fault_tokens.append(
                self.controller.schedule(self.scheduler, fault.time, fault.link, fault.state)
            )

    def cancel_fault(self, index: int) -> bool:
        """Withdraw the ``index``-th configured fault before it fires.

        Cancelling a recovery turns the preceding failure into a permanent outage.
        Returns False when the fault already fired or was cancelled.
        """
        fault = self.scenario.faults[index]
        cancelled = self.scheduler.cancel(self.fault_tokens[index])
        if cancelled:
            log.info("fault cancelled: link %s %s at t=%.3fs", fault.link, fault.state.value, fault.time)
        return cancelled

    def _schedule_traffic(self) -> None:
        for item in self.scenario.traffic:
            desc = PacketDescriptor(
                time=item.time,
                src=item.src,
                dst=self._destination(item.dst),
                protocol=item.protocol,
                port=item.port,
                size=item.size,
                src_port=item.src_port,
            )
            self._schedule_packet(desc, ("traffic", desc.src, desc.dst, desc.protocol, desc.port))
        for idx, flow in enumerate(self.scenario.flows):
            dst = self._destination(flow.dst)
            for t in flow.send_times():
                desc = PacketDescriptor(
                    time=t,
                    src=flow.src,
                    dst=dst,
                    protocol=flow.protocol,
                    port=flow.port,
                    size=flow.size,
                    src_port=flow.src_port,
                )
                self._schedule_packet(desc, ("flow", idx))

    def _schedule_snapshots(self) -> None:
        interval = self.scenario.snapshot_interval
        if interval <= 0:
            return
        k = 1
        while True:
            t = round(k * interval, 9)
            if t > self.duration:
                break
            self.scheduler.schedule(t, self._snapshot, kind="snapshot")
            k += 1

    def _destination(self, dst: int | str) -> str:
        if isinstance(dst, int):
            return self.topology.primary_address(self.topology.node(dst).node_id)
        try:
            ipaddress.IPv4Address(dst)
        except ValueError:
            raise InvalidTopologyReference("address", dst, "traffic destination") from None
        if self.topology.owner_of(dst) is None:
            raise InvalidTopologyReference("address", dst, "no node owns it")
        return dst

    def _schedule_packet(self, desc: PacketDescriptor, socket: Tuple[Any, ...]) -> None:
        self.topology.node(desc.src)
        src_addr = self.topology.primary_address(desc.src)
        src_port = desc.src_port if desc.src_port is not None else self._ephemeral_port(desc.src, socket)
        key = FlowKey(
            src_addr=src_addr,
            dst_addr=desc.dst,
            src_port=src_port,
            dst_port=desc.port,
            protocol=desc.protocol.value,
        )
        self.scheduler.schedule(
            desc.time,
            lambda: self._send(desc, key),
            kind="packet",
            payload={"flow": str(key)},
        )

    def _ephemeral_port(self, node: NodeId, socket: Tuple[Any, ...]) -> int:
        sock = (node, *socket)
        if sock not in self._src_ports:
            port = self._next_port.get(node, EPHEMERAL_PORT_BASE)
            self._src_ports[sock] = port
            self._next_port[node] = port + 1
        return self._src_ports[sock]

    def _send(self, desc: PacketDescriptor, key: FlowKey) -> None:
        now = self.scheduler.now
        traffic_class = self.classifier.classify(desc.protocol, desc.port)
        record = PacketRecord(seq=len(self.packets) + 1, time=now, flow=key, traffic_class=traffic_class)
        self.packets.append(record)
        self.scheduler.publish(
            "packet_send",
            {"time": now, "src": desc.src, "flow": key, "traffic_class": traffic_class.value},
        )
        self.aggregator.on_sent(key, now, desc.size, traffic_class)

        try:
            delay = self._forward(record, desc.src, desc.dst, desc.size)
        except RouteNotFound as exc:
            record.loss_reason = "no_route"
            log.debug("t=%.3fs packet %d dropped: %s", now, record.seq, exc)
        else:
            if delay is not None and now + delay > self.duration:
                record.loss_reason = "in_flight"
            elif delay is not None:
                record.delivered = True
                record.delay = delay
                self.aggregator.on_received(key, now + delay, delay, desc.size)

        if not record.delivered:
            self.aggregator.on_lost(key, record.loss_reason or "unknown")
        self.logger.log("packet", **record.as_dict())

    def _forward(self, record: PacketRecord, src: NodeId, dst: str, size: int) -> Optional[float]:
        node = src
        elapsed = 0.0
        while not self.topology.owns(node, dst):
            if len(record.hops) >= self.scenario.hop_limit:
                record.loss_reason = "ttl_expired"
                return None
            entry = self.policy.resolve(self.tables[node], dst)
            link = self.topology.link(entry.link_id)
            record.hops.append(
                Hop(
                    node=node,
                    next_hop=entry.next_hop,
                    link_id=entry.link_id,
                    metric=entry.metric,
                    prefix=str(entry.prefix),
                )
            )
            hop_delay = self.channel.transmit(link, size)
            if hop_delay is None:
                record.loss_reason = "channel"
                return None
            elapsed += hop_delay
            node = entry.next_hop
        return elapsed

    def _snapshot(self) -> None:
        row = {"time": self.scheduler.now, **self.aggregator.totals()}
        self.snapshots.append(row)
        self.logger.log("snapshot", **row)

    def route_tables(self) -> Dict[NodeId, List[Dict[str, Any]]]:
        return {node: table.snapshot() for node, table in sorted(self.tables.items())}

    def run(self) -> RunResult:
        log.info(
            "run %s: %d nodes, %d links, %d events queued, deadline %.3fs",
            self.scenario.name,
            len(self.topology.nodes()),
            len(self.topology.links()),
            self.scheduler.pending,
            self.duration,
        )
        executed = self.scheduler.run_until(self.duration)
        flow_table = self.aggregator.table()
        totals = self.aggregator.totals()
        digest = hash_stats_table(flow_table)
        self.logger.log("run_complete", events=executed, digest=digest, **totals)
        self.logger.close()
        log.info(
            "run %s complete: tx=%d rx=%d lost=%d link transitions=%d",
            self.scenario.name,
            totals["tx_packets"],
            totals["rx_packets"],
            totals["lost_packets"],
            len(self.controller.timeline),
        )
        return RunResult(
            name=self.scenario.name,
            duration=self.duration,
            flow_table=flow_table,
            link_timeline=list(self.controller.timeline),
            snapshots=list(self.snapshots),
            route_tables=self.route_tables(),
            packets=list(self.packets),
            totals=totals,
            stats_digest=digest,
            events_applied=executed,
            class_counts=dict(sorted(self.counter.by_class.items())),
        )


def simulate(scenario: ScenarioConfig, logger: Optional[EventLog] = None) -> RunResult:
    return Simulation(scenario, logger=logger).run()


def time_split(result: RunResult, node: NodeId, at: SimTime) -> Dict[str, Counter]:
    """Metrics used at ``node`` by packets sent before and from ``at`` onwards."""
    before: Counter = Counter()
    after: Counter = Counter()
    for t, metric in result.route_via(node):
        (before if t < at else after)[metric] += 1
    return {"before": before, "after": after}
