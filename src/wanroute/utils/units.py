from __future__ import annotations

import re
from typing import Any

_RATE_UNITS = {
    "bps": 1.0,
    "kbps": 1e3,
    "mbps": 1e6,
    "gbps": 1e9,
}

_TIME_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "min": 60.0,
}

_VALUE_RE = re.compile(r"^\s*([0-9]*\.?[0-9]+(?:[eE][-+]?[0-9]+)?)\s*([a-zA-Z]*)\s*$")


def _split(value: str) -> tuple[float, str]:
    match = _VALUE_RE.match(value)
    if not match:
        raise ValueError(f"Cannot parse quantity: {value!r}")
    return float(match.group(1)), match.group(2).lower()


def parse_rate(value: Any) -> float:
    """Data rate in bits per second. Bare numbers are already bits per second."""
    if isinstance(value, (int, float)):
        return float(value)
    number, unit = _split(str(value))
    if not unit:
        return number
    if unit not in _RATE_UNITS:
        raise ValueError(f"Unknown rate unit in {value!r}")
    return number * _RATE_UNITS[unit]


def parse_time(value: Any) -> float:
    """Duration in seconds. Bare numbers are already seconds."""
    if isinstance(value, (int, float)):
        return float(value)
    number, unit = _split(str(value))
    if not unit:
        return number
    if unit not in _TIME_UNITS:
        raise ValueError(f"Unknown time unit in {value!r}")
    return number * _TIME_UNITS[unit]
