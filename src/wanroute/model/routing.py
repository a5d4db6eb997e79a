from __future__ import annotations

import ipaddress
from dataclasses import dataclass, replace
from typing import Dict, Iterable, List, Optional, Set, Tuple

from wanroute.core.errors import RouteNotFound
from wanroute.core.types import LinkId, Metric, NodeId


@dataclass(frozen=True)
class RouteEntry:
    prefix: ipaddress.IPv4Network
    next_hop: NodeId
    link_id: LinkId
    metric: Metric = 0
    interface: int = 1
    seq: int = 0

    @property
    def key(self) -> Tuple[ipaddress.IPv4Network, NodeId, LinkId]:
        return (self.prefix, self.next_hop, self.link_id)

    def sort_key(self) -> Tuple[int, int]:
        return (self.metric, self.seq)

    def as_dict(self) -> Dict[str, object]:
        return {
            "prefix": str(self.prefix),
            "next_hop": self.next_hop,
            "link_id": self.link_id,
            "metric": self.metric,
            "interface": self.interface,
        }


def make_entry(
    prefix: str | ipaddress.IPv4Network,
    next_hop: NodeId,
    link_id: LinkId,
    metric: Metric = 0,
    interface: int = 1,
) -> RouteEntry:
    return RouteEntry(
        prefix=ipaddress.IPv4Network(prefix, strict=False),
        next_hop=int(next_hop),
        link_id=int(link_id),
        metric=int(metric),
        interface=int(interface),
    )


class RoutingTable:
    """Candidate routes of one node, ranked by metric.

    Entries bound to a failed link stay in the table but are skipped by :meth:`lookup`
    until the link is revalidated, so the backup ordering survives a failure and
    failback needs no reinstallation.
    """

    def __init__(self, node_id: NodeId) -> None:
        self.node_id = int(node_id)
        self._routes: Dict[ipaddress.IPv4Network, List[RouteEntry]] = {}
        self._suppressed: Set[LinkId] = set()
        self._seq = 0

    def install(self, entry: RouteEntry) -> bool:
        """Add ``entry``; an existing (prefix, next hop, link) keeps its place and takes the new metric."""
        bucket = self._routes.setdefault(entry.prefix, [])
        for idx, current in enumerate(bucket):
            if current.key == entry.key:
                updated = replace(entry, seq=current.seq)
                if updated == current:
                    return False
                bucket[idx] = updated
                bucket.sort(key=RouteEntry.sort_key)
                return True
        self._seq += 1
        bucket.append(replace(entry, seq=self._seq))
        bucket.sort(key=RouteEntry.sort_key)
        return True

    def install_many(self, entries: Iterable[RouteEntry]) -> int:
        return sum(1 for e in entries if self.install(e))

    def remove(
        self,
        prefix: str | ipaddress.IPv4Network,
        next_hop: NodeId,
        link_id: Optional[LinkId] = None,
    ) -> bool:
        net = ipaddress.IPv4Network(prefix, strict=False)
        bucket = self._routes.get(net, [])
        kept = [
            e
            for e in bucket
            if not (e.next_hop == next_hop and (link_id is None or e.link_id == link_id))
        ]
        if len(kept) == len(bucket):
            return False
        if kept:
            self._routes[net] = kept
        else:
            self._routes.pop(net, None)
        return True

    def invalidate(self, link_id: LinkId) -> List[RouteEntry]:
        """Suppress entries bound to ``link_id``; returns the entries affected."""
        self._suppressed.add(link_id)
        return self._bound_to(link_id)

    def revalidate(self, link_id: LinkId) -> List[RouteEntry]:
        self._suppressed.discard(link_id)
        return self._bound_to(link_id)

    def is_eligible(self, entry: RouteEntry) -> bool:
        return entry.link_id not in self._suppressed

    def candidates(self, prefix: str | ipaddress.IPv4Network) -> List[RouteEntry]:
        return list(self._routes.get(ipaddress.IPv4Network(prefix, strict=False), []))

    def lookup(self, destination: str) -> Optional[RouteEntry]:
        """Longest matching prefix with an eligible entry, then lowest metric, then install order."""
        addr = ipaddress.IPv4Address(destination)
        matching = sorted(
            (net for net in self._routes if addr in net),
            key=lambda n: n.prefixlen,
            reverse=True,
        )
        for net in matching:
            for entry in self._routes[net]:
                if self.is_eligible(entry):
                    return entry
        return None

    def resolve(self, destination: str) -> RouteEntry:
        entry = self.lookup(destination)
        if entry is None:
            raise RouteNotFound(self.node_id, destination)
        return entry

    def entries(self) -> List[RouteEntry]:
        out: List[RouteEntry] = []
        for net in sorted(self._routes, key=lambda n: (int(n.network_address), n.prefixlen)):
            out.extend(self._routes[net])
        return out

    def snapshot(self) -> List[Dict[str, object]]:
        rows = []
        for entry in self.entries():
            row = entry.as_dict()
            row["eligible"] = self.is_eligible(entry)
            rows.append(row)
        return rows

    def _bound_to(self, link_id: LinkId) -> List[RouteEntry]:
        return [e for e in self.entries() if e.link_id == link_id]

    def __len__(self) -> int:
        return sum(len(b) for b in self._routes.values())
