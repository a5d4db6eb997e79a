from __future__ import annotations

from typing import Optional

from wanroute.model.routing import RouteEntry, RoutingTable


class StaticFailoverPolicy:
    """Active route = best eligible pre-ranked candidate, re-evaluated on every lookup.

    There is no hold-down, dampening or convergence delay: a route is usable from the
    instant its link is Up and unusable from the instant it goes Down.
    """

    name = "static"

    def select(self, table: RoutingTable, destination: str) -> Optional[RouteEntry]:
        return table.lookup(destination)

    def resolve(self, table: RoutingTable, destination: str) -> RouteEntry:
        return table.resolve(destination)
