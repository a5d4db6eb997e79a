from __future__ import annotations

import argparse
import json
from pathlib import Path
from typing import Any, Dict, List


def plot_delivery(result_json: str, out_png: str) -> None:
    """Per-packet delay over time, with link transitions marked as vertical lines.

    Needs a result produced with packet records (``wanroute run --packets``).
    """
    try:
        import matplotlib

        matplotlib.use("Agg")
        import matplotlib.pyplot as plt
    except Exception as exc:  # pragma: no cover
        raise RuntimeError("matplotlib is required for plotting") from exc

    with Path(result_json).open("r", encoding="utf-8") as f:
        run: Dict[str, Any] = json.load(f)
    packets: List[Dict[str, Any]] = run.get("packets", [])
    if not packets:
        raise ValueError(f"{result_json} has no packet records; rerun with --packets")

    delivered = [(p["time"], p["delay"] * 1000.0) for p in packets if p["delivered"]]
    lost = [p["time"] for p in packets if not p["delivered"]]

    plt.figure(figsize=(10, 4))
    if delivered:
        xs, ys = zip(*delivered)
        plt.scatter(xs, ys, s=6, label="delivered")
    if lost:
        plt.scatter(lost, [0.0] * len(lost), s=6, marker="x", color="red", label="lost")
    for row in run.get("link_timeline", []):
        color = "red" if row["state"] == "down" else "green"
        plt.axvline(row["time"], color=color, linestyle="--", linewidth=1)
    plt.xlabel("Send time (s)")
    plt.ylabel("One-way delay (ms)")
    plt.title(run.get("name", ""))
    plt.legend(loc="upper left")
    plt.tight_layout()
    Path(out_png).parent.mkdir(parents=True, exist_ok=True)
    plt.savefig(out_png, dpi=150)
    plt.close()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Plot packet delays of one run")
    parser.add_argument("--in", dest="result_json", required=True)
    parser.add_argument("--out", dest="out_png", required=True)
    args = parser.parse_args()
    plot_delivery(args.result_json, args.out_png)
