"""Routing-table and flow-statistics models."""

from wanroute.model.routing import RouteEntry, RoutingTable, make_entry
from wanroute.model.stats import FlowStats, FlowStatsAggregator, format_table

__all__ = [
    "FlowStats",
    "FlowStatsAggregator",
    "RouteEntry",
    "RoutingTable",
    "format_table",
    "make_entry",
]
