# bench/benchmark.py
from __future__ import annotations

import json
from pathlib import Path
import pandas as pd

from pairbook.ledger import Ordering
from pairbook.metrics import summarize_latency_ns
from pairbook.sim import SimConfig, Simulator
from pairbook.viz import plot_latency_hist


def main() -> None:
    rows = []
    for ordering in Ordering:
        cfg = SimConfig(seed=123, n_events=50_000, ordering=ordering)
        art = Simulator(cfg).run()
        rows.append({**summarize_latency_ns(art.latencies_ns), "ordering": ordering.name, "fills": len(art.fills)})
        if ordering is Ordering.SCAN:
            Path("results").mkdir(parents=True, exist_ok=True)
            lat_png = plot_latency_hist(art.latencies_ns, "results")

    pd.DataFrame(rows).to_csv("results/benchmark_summary.csv", index=False)
    print(json.dumps({"benchmark": rows, "latency_hist": lat_png}, indent=2))


if __name__ == "__main__":
    main()
