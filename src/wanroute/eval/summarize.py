from __future__ import annotations

import argparse
import json
from pathlib import Path

from wanroute.eval.metrics import SUMMARY_FIELDS, compute_metrics
from wanroute.utils.io import write_csv


def summarize_runs(runs_dir: str, out_csv: str) -> int:
    runs_path = Path(runs_dir)
    rows = []
    for result_file in sorted(runs_path.rglob("result.json")):
        with result_file.open("r", encoding="utf-8") as f:
            run = json.load(f)
        rows.append(compute_metrics(run))
    write_csv(out_csv, rows, SUMMARY_FIELDS)
    return len(rows)


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Summarize run results into CSV")
    parser.add_argument("--runs", required=True, help="Directory containing run folders")
    parser.add_argument("--out", required=True, help="Output CSV path")
    args = parser.parse_args()
    summarize_runs(args.runs, args.out)
