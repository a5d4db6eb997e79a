from __future__ import annotations

import hashlib
import json
from typing import Any, Dict, List


def _digest(payload: Any) -> str:
    text = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def hash_stats_table(rows: List[Dict[str, Any]]) -> str:
    """Order-insensitive digest of a flow statistics table."""
    normalized = sorted(rows, key=lambda r: json.dumps(r, sort_keys=True, default=str))
    return _digest(normalized)


def hash_route_tables(route_tables: Dict[int, List[Dict[str, Any]]]) -> str:
    normalized: Dict[str, List[Dict[str, Any]]] = {}
    for node, rows in sorted(route_tables.items()):
        normalized[str(node)] = sorted(
            rows, key=lambda r: (str(r["prefix"]), int(r["metric"]), int(r["next_hop"]), int(r["link_id"]))
        )
    return _digest(normalized)
