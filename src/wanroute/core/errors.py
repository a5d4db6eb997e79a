from __future__ import annotations

from typing import Any


class WanrouteError(Exception):
    """Base class for errors raised by the routing engine."""


class ConfigError(WanrouteError):
    pass


class InvalidTopologyReference(WanrouteError):
    """A route, fault or traffic entry names a node, link or address that does not exist."""

    def __init__(self, kind: str, ref: Any, context: str = "") -> None:
        self.kind = kind
        self.ref = ref
        self.context = context
        where = f" ({context})" if context else ""
        super().__init__(f"unknown {kind}: {ref!r}{where}")


class RouteNotFound(WanrouteError):
    def __init__(self, node: int, destination: str) -> None:
        self.node = node
        self.destination = destination
        super().__init__(f"node {node} has no usable route to {destination}")


class DuplicateLinkEvent(WanrouteError):
    def __init__(self, link_id: int, state: str, time: float) -> None:
        self.link_id = link_id
        self.state = state
        self.time = time
        super().__init__(f"link {link_id} already {state} at t={time:g}s")
