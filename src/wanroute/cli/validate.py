from __future__ import annotations

from typing import Any, Dict

from wanroute.core.engine import Simulation
from wanroute.core.errors import WanrouteError
from wanroute.runtime.config import parse_scenario


def validate_config(cfg: Dict[str, Any]) -> list[str]:
    errors: list[str] = []

    if "links" not in cfg:
        errors.append("Missing 'links' config")
    elif not isinstance(cfg["links"], list) or not cfg["links"]:
        errors.append("'links' must be a non-empty list")
    if not cfg.get("traffic") and not cfg.get("flows"):
        errors.append("Need at least one of 'traffic' or 'flows'")
    for key in ("routes", "faults", "traffic", "flows"):
        if key in cfg and cfg[key] is not None and not isinstance(cfg[key], list):
            errors.append(f"'{key}' must be a list")
    if errors:
        return errors

    try:
        scenario = parse_scenario(cfg)
        Simulation(scenario)
    except (WanrouteError, ValueError) as exc:
        errors.append(str(exc))
    return errors
