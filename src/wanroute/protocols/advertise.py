from __future__ import annotations

import ipaddress
from dataclasses import dataclass
from typing import Dict, List, Optional

from wanroute.core.topology import Topology
from wanroute.core.types import Metric, NodeId
from wanroute.model.routing import RouteEntry, make_entry


@dataclass(frozen=True)
class ProposedRoute:
    node: NodeId
    entry: RouteEntry
    origin: NodeId


def propose_routes(topology: Topology, metric: Optional[Metric] = None) -> List[ProposedRoute]:
    """One-hop announcement of each node's ``advertise`` prefixes to its direct neighbours.

    Every link (u, v) carries v's prefixes to u with next hop v, and u's to v. The metric
    is the link cost unless ``metric`` overrides it. Nothing is exchanged at run time;
    the result is installed once before the run starts.
    """
    prefixes: Dict[NodeId, List[ipaddress.IPv4Network]] = {}
    for node_id in topology.nodes():
        nets = {ipaddress.IPv4Network(p, strict=False) for p in topology.node(node_id).advertise}
        prefixes[node_id] = sorted(nets, key=lambda n: (int(n.network_address), n.prefixlen))

    proposals: List[ProposedRoute] = []
    for link in topology.links():
        for receiver, origin in ((link.u, link.v), (link.v, link.u)):
            for net in prefixes.get(origin, []):
                proposals.append(
                    ProposedRoute(
                        node=receiver,
                        origin=origin,
                        entry=make_entry(
                            net,
                            next_hop=origin,
                            link_id=link.link_id,
                            metric=link.cost if metric is None else metric,
                            interface=topology.interface_index(receiver, link.link_id),
                        ),
                    )
                )
    proposals.sort(key=lambda p: (p.node, p.entry.link_id, int(p.entry.prefix.network_address)))
    return proposals
