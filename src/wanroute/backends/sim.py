from __future__ import annotations

import logging
from typing import Any, Dict

from wanroute.core.engine import Simulation
from wanroute.core.eventlog import EventLog
from wanroute.eval.metrics import FLOW_FIELDS
from wanroute.runtime.config import parse_scenario
from wanroute.utils.io import new_run_dir, write_csv, write_json

log = logging.getLogger("wanroute.backend")


class SimBackend:
    """Runs one scenario and writes result.json, flows.csv and events.jsonl.

    ``write=False`` keeps everything in memory, which is what sweeps and tests use.
    """

    def __init__(self, write: bool = True, include_packets: bool = False) -> None:
        self.write = write
        self.include_packets = include_packets

    def run(self, config: Dict[str, Any]) -> Dict[str, Any]:
        scenario = parse_scenario(config)

        run_id = scenario.name
        run_dir = None
        logger = EventLog(path=None)
        if self.write:
            run_id, run_dir = new_run_dir(scenario.output_dir, scenario.name)
            logger = EventLog(run_dir / "events.jsonl")

        try:
            sim = Simulation(scenario, logger=logger)
        except Exception:
            logger.close()
            raise
        result = sim.run()

        payload: Dict[str, Any] = {
            "run_id": run_id,
            "name": scenario.name,
            "seed": scenario.seed,
            "duration": result.duration,
            "flows": result.flow_table,
            "link_timeline": result.link_timeline_rows(),
            "snapshots": result.snapshots,
            "route_tables": {str(k): v for k, v in result.route_tables.items()},
            "totals": result.totals,
            "class_counts": result.class_counts,
            "stats_digest": result.stats_digest,
            "events_applied": result.events_applied,
            "event_counts": logger.summary(),
            "topology_links": sim.topology.snapshot(),
        }
        if self.include_packets:
            payload["packets"] = [p.as_dict() for p in result.packets]

        if run_dir is not None:
            write_json(run_dir / "result.json", payload)
            write_json(run_dir / "config.effective.json", config)
            write_csv(run_dir / "flows.csv", result.flow_table, FLOW_FIELDS)
            payload["run_dir"] = str(run_dir)
            log.info("results written to %s", run_dir)
        return payload
