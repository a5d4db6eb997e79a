"""Scenario configuration."""

from wanroute.runtime.config import ScenarioConfig, load_scenario, parse_scenario

__all__ = ["ScenarioConfig", "load_scenario", "parse_scenario"]
