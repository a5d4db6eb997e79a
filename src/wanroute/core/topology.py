from __future__ import annotations

import ipaddress
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple

from wanroute.core.errors import InvalidTopologyReference
from wanroute.core.types import LinkId, LinkState, Node, NodeId


@dataclass
class Link:
    link_id: LinkId
    u: NodeId
    v: NodeId
    bandwidth: float
    delay: float
    cost: int = 1
    network: Optional[ipaddress.IPv4Network] = None
    state: LinkState = LinkState.UP

    @property
    def is_up(self) -> bool:
        return self.state is LinkState.UP

    def other(self, node: NodeId) -> NodeId:
        if node == self.u:
            return self.v
        if node == self.v:
            return self.u
        raise InvalidTopologyReference("endpoint", node, f"link {self.link_id}")

    def address_of(self, node: NodeId) -> Optional[str]:
        if self.network is None:
            return None
        hosts = self.network.hosts()
        first = next(hosts)
        second = next(hosts)
        if node == self.u:
            return str(first)
        if node == self.v:
            return str(second)
        return None

    def as_dict(self) -> Dict[str, object]:
        return {
            "link_id": self.link_id,
            "u": self.u,
            "v": self.v,
            "bandwidth": self.bandwidth,
            "delay": self.delay,
            "cost": self.cost,
            "network": str(self.network) if self.network else None,
            "state": self.state.value,
        }


class Topology:
    """Nodes and point-to-point links.

    The graph shape is fixed once built; only link state changes during a run, and only
    through :class:`wanroute.core.link_state.LinkStateController`.
    """

    def __init__(self) -> None:
        self._nodes: Dict[NodeId, Node] = {}
        self._links: Dict[LinkId, Link] = {}
        self._ifaces: Dict[NodeId, List[LinkId]] = {}
        self._owners: Dict[str, Tuple[NodeId, LinkId]] = {}

    def add_node(
        self,
        node_id: NodeId,
        role: str = "router",
        name: str = "",
        advertise: Iterable[str] = (),
    ) -> Node:
        node = Node(
            node_id=int(node_id),
            role=str(role),
            name=str(name),
            advertise=tuple(str(p) for p in advertise),
        )
        self._nodes[node.node_id] = node
        self._ifaces.setdefault(node.node_id, [])
        return node

    def add_link(
        self,
        u: NodeId,
        v: NodeId,
        bandwidth: float,
        delay: float,
        cost: int = 1,
        network: str | ipaddress.IPv4Network | None = None,
        link_id: LinkId | None = None,
    ) -> Link:
        for end in (u, v):
            if end not in self._nodes:
                raise InvalidTopologyReference("node", end, "link endpoint")
        if u == v:
            raise ValueError(f"Link endpoints must differ: {u}")
        lid = int(link_id) if link_id is not None else len(self._links) + 1
        if lid in self._links:
            raise ValueError(f"Duplicate link id: {lid}")
        net = ipaddress.IPv4Network(network, strict=True) if network else None
        if net is not None and net.num_addresses < 4 and net.prefixlen != 31:
            raise ValueError(f"Network {net} has fewer than two host addresses")
        link = Link(
            link_id=lid,
            u=int(u),
            v=int(v),
            bandwidth=float(bandwidth),
            delay=float(delay),
            cost=int(cost),
            network=net,
        )
        for end in (link.u, link.v):
            addr = link.address_of(end)
            if addr is not None:
                if addr in self._owners:
                    raise ValueError(f"Address {addr} assigned twice")
                self._owners[addr] = (end, lid)
        self._links[lid] = link
        self._ifaces[link.u].append(lid)
        self._ifaces[link.v].append(lid)
        return link

    def nodes(self) -> List[NodeId]:
        return sorted(self._nodes)

    def node(self, node_id: NodeId) -> Node:
        try:
            return self._nodes[node_id]
        except KeyError:
            raise InvalidTopologyReference("node", node_id) from None

    def has_node(self, node_id: NodeId) -> bool:
        return node_id in self._nodes

    def link(self, link_id: LinkId) -> Link:
        try:
            return self._links[link_id]
        except KeyError:
            raise InvalidTopologyReference("link", link_id) from None

    def has_link(self, link_id: LinkId) -> bool:
        return link_id in self._links

    def links(self) -> List[Link]:
        return [self._links[k] for k in sorted(self._links)]

    def links_between(self, u: NodeId, v: NodeId) -> List[Link]:
        return [
            self._links[lid]
            for lid in self._ifaces.get(u, [])
            if self._links[lid].other(u) == v
        ]

    def neighbors(self, node: NodeId) -> Dict[NodeId, List[LinkId]]:
        out: Dict[NodeId, List[LinkId]] = {}
        for lid in self._ifaces.get(node, []):
            out.setdefault(self._links[lid].other(node), []).append(lid)
        return out

    def interface_index(self, node: NodeId, link_id: LinkId) -> int:
        """Interfaces are numbered from 1 in attachment order; 0 is loopback."""
        ifaces = self._ifaces.get(node, [])
        if link_id not in ifaces:
            raise InvalidTopologyReference("interface", link_id, f"node {node}")
        return ifaces.index(link_id) + 1

    def addresses(self, node: NodeId) -> List[str]:
        out = []
        for lid in self._ifaces.get(node, []):
            addr = self._links[lid].address_of(node)
            if addr is not None:
                out.append(addr)
        return out

    def primary_address(self, node: NodeId) -> str:
        addrs = self.addresses(node)
        if not addrs:
            raise InvalidTopologyReference("address", node, "node has no addressed link")
        return addrs[0]

    def owner_of(self, address: str) -> Optional[Tuple[NodeId, LinkId]]:
        return self._owners.get(str(address))

    def owns(self, node: NodeId, address: str) -> bool:
        owner = self._owners.get(str(address))
        return owner is not None and owner[0] == node

    def is_up(self, link_id: LinkId) -> bool:
        return self.link(link_id).is_up

    def set_link_state(self, link_id: LinkId, state: LinkState) -> None:
        self.link(link_id).state = state

    def snapshot(self) -> List[Dict[str, object]]:
        return [link.as_dict() for link in self.links()]

    @classmethod
    def from_links(
        cls,
        n_nodes: int,
        links: Iterable[Tuple[int, int, float, float, str | None]],
    ) -> "Topology":
        t = cls()
        for i in range(n_nodes):
            t.add_node(i)
        for u, v, bandwidth, delay, network in links:
            t.add_link(u, v, bandwidth, delay, network=network)
        return t

    @classmethod
    def line(cls, n_nodes: int, bandwidth: float = 5e6, delay: float = 0.002) -> "Topology":
        t = cls()
        for i in range(n_nodes):
            t.add_node(i)
        for i in range(n_nodes - 1):
            t.add_link(i, i + 1, bandwidth, delay, network=f"10.0.{i + 1}.0/24")
        return t
