"""Setup-time route sources."""

from wanroute.protocols.advertise import ProposedRoute, propose_routes

__all__ = ["ProposedRoute", "propose_routes"]
