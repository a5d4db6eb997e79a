from __future__ import annotations

import copy
import logging
from concurrent.futures import ProcessPoolExecutor
from typing import Any, Dict, List

from wanroute.backends.sim import SimBackend
from wanroute.eval.metrics import compute_metrics

log = logging.getLogger("wanroute.sweep")


def expand_sweep(base_cfg: Dict[str, Any]) -> List[Dict[str, Any]]:
    """One config per (failure time, loss probability, seed) combination.

    ``sweep.failure_times`` replaces the time of every Down fault; an entry of ``null``
    removes the faults entirely, giving a no-failure baseline.
    """
    sweep = dict(base_cfg.get("sweep", {}) or {})
    failure_times = sweep.get("failure_times") or ["keep"]
    loss_probs = sweep.get("loss_probs") or [None]
    seeds = sweep.get("seeds") or [int(base_cfg.get("seed", 1))]

    variants = []
    for ft in failure_times:
        for lp in loss_probs:
            for seed in seeds:
                cfg = copy.deepcopy(base_cfg)
                cfg.pop("sweep", None)
                cfg["seed"] = int(seed)
                tag = [str(base_cfg.get("name", "run"))]
                if ft is None:
                    cfg["faults"] = []
                    tag.append("nofail")
                elif ft != "keep":
                    cfg["faults"] = [
                        dict(f, time=ft) if str(f.get("state", "down")).lower() == "down" else dict(f)
                        for f in cfg.get("faults", [])
                    ]
                    tag.append(f"f{ft}")
                if lp is not None:
                    cfg["channel"] = dict(cfg.get("channel", {}) or {}, loss_prob=float(lp))
                    tag.append(f"l{lp}")
                tag.append(f"s{seed}")
                cfg["name"] = "_".join(tag)
                variants.append(cfg)
    return variants


def _run_one(cfg: Dict[str, Any]) -> Dict[str, Any]:
    return SimBackend(write=False).run(cfg)


def run_sweep(base_cfg: Dict[str, Any], workers: int = 1) -> List[Dict[str, Any]]:
    """Run every variant; each process owns its own scheduler and topology."""
    variants = expand_sweep(base_cfg)
    log.info("sweep: %d variants, %d workers", len(variants), workers)
    if workers <= 1:
        runs = [_run_one(cfg) for cfg in variants]
    else:
        with ProcessPoolExecutor(max_workers=workers) as pool:
            runs = list(pool.map(_run_one, variants))
    return [compute_metrics(run) for run in runs]
