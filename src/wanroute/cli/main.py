from __future__ import annotations

import argparse
import json
import logging
from typing import Any, Dict, List

from wanroute.cli.run_sim import run_sim
from wanroute.cli.validate import validate_config
from wanroute.core.classifier import classify
from wanroute.core.engine import Simulation
from wanroute.core.errors import WanrouteError
from wanroute.eval.metrics import SUMMARY_FIELDS
from wanroute.eval.plot import plot_delivery
from wanroute.eval.summarize import summarize_runs
from wanroute.eval.sweep import run_sweep
from wanroute.model.stats import format_table
from wanroute.runtime.config import load_effective_config, parse_scenario
from wanroute.utils.io import write_csv

log = logging.getLogger("wanroute.cli")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="wanroute",
        description="Static multi-path routing and link failover simulator",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging verbosity.",
    )
    sub = parser.add_subparsers(dest="cmd", required=True)

    p_run = sub.add_parser("run", help="Run a scenario")
    p_run.add_argument("--config", required=True)
    p_run.add_argument("--out", default="", help="Override output_dir")
    p_run.add_argument("--format", choices=["json", "table"], default="table")
    p_run.add_argument("--packets", action="store_true", help="Keep per-packet records in result.json")
    p_run.add_argument("--no-write", action="store_true", help="Do not write a run directory")

    p_validate = sub.add_parser("validate", help="Validate a scenario file")
    p_validate.add_argument("--config", required=True)

    p_routes = sub.add_parser("routes", help="Print the routing tables installed before the run")
    p_routes.add_argument("--config", required=True)

    p_classify = sub.add_parser("classify", help="Classify a (protocol, port) pair")
    p_classify.add_argument("--proto", required=True)
    p_classify.add_argument("--port", type=int, required=True)

    p_sweep = sub.add_parser("sweep", help="Run a failure-time / loss sweep")
    p_sweep.add_argument("--config", required=True)
    p_sweep.add_argument("--workers", type=int, default=1)
    p_sweep.add_argument("--out", default="", help="Optional CSV output path")

    p_sum = sub.add_parser("summarize", help="Summarize run directories into CSV")
    p_sum.add_argument("--runs", required=True)
    p_sum.add_argument("--out", required=True)

    p_plot = sub.add_parser("plot", help="Plot packet delays of a run")
    p_plot.add_argument("--in", dest="result_json", required=True)
    p_plot.add_argument("--out", required=True)

    return parser


def render_run(result: Dict[str, Any]) -> str:
    lines = [f"run {result['run_id']} ({result['duration']:g}s)", "", format_table(result["flows"]), ""]
    timeline = result.get("link_timeline", [])
    if timeline:
        lines.append("link timeline:")
        for row in timeline:
            lines.append(f"  t={row['time']:g}s link {row['link_id']} {row['state'].upper()}")
    else:
        lines.append("link timeline: no transitions")
    lines.append(f"stats digest: {result['stats_digest']}")
    return "\n".join(lines)


def render_routes(tables: Dict[int, List[Dict[str, Any]]]) -> str:
    lines = []
    for node, rows in sorted(tables.items()):
        lines.append(f"node {node}:")
        if not rows:
            lines.append("  (no routes)")
        for r in rows:
            flag = "" if r["eligible"] else "  [down]"
            lines.append(
                f"  {r['prefix']:<18} via n{r['next_hop']} link {r['link_id']} "
                f"if {r['interface']} metric {r['metric']}{flag}"
            )
    return "\n".join(lines)


def main(argv: List[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.cmd == "run":
        try:
            result = run_sim(
                args.config,
                output_dir=args.out or None,
                include_packets=args.packets,
                write=not args.no_write,
            )
        except WanrouteError as exc:
            log.error("%s", exc)
            return 2
        if args.format == "json":
            print(json.dumps(result, indent=2, ensure_ascii=False, sort_keys=True, default=str))
        else:
            print(render_run(result))
        return 0

    if args.cmd == "validate":
        cfg = load_effective_config(args.config)
        errors = validate_config(cfg)
        if errors:
            print(json.dumps({"ok": False, "errors": errors}, ensure_ascii=False, indent=2))
            return 1
        print(json.dumps({"ok": True}, ensure_ascii=False, indent=2))
        return 0

    if args.cmd == "routes":
        try:
            sim = Simulation(parse_scenario(load_effective_config(args.config)))
        except (WanrouteError, ValueError) as exc:
            log.error("%s", exc)
            return 2
        print(render_routes(sim.route_tables()))
        return 0

    if args.cmd == "classify":
        print(classify(args.proto, args.port).value)
        return 0

    if args.cmd == "sweep":
        rows = run_sweep(load_effective_config(args.config), workers=args.workers)
        if args.out:
            write_csv(args.out, rows, SUMMARY_FIELDS)
        print(json.dumps(rows, indent=2, ensure_ascii=False))
        return 0

    if args.cmd == "summarize":
        n = summarize_runs(args.runs, args.out)
        print(json.dumps({"runs": n, "out": args.out}))
        return 0

    if args.cmd == "plot":
        plot_delivery(args.result_json, args.out)
        return 0

    return 1


if __name__ == "__main__":
    raise SystemExit(main())
