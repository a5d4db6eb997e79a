"""Static multi-path routing and link failover simulator."""

__version__ = "0.1.0"
