# pairbook/cli.py
from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

import pandas as pd

from .ledger import Ordering
from .metrics import fill_summary, summarize_latency_ns
from .sim import SimArtifacts, SimConfig, Simulator, save_artifacts
from .viz import plot_fill_prices, plot_latency_hist, plot_ledger_series


def setup_logging(level: str = "INFO") -> None:
    numeric_level = getattr(logging, level.upper(), logging.INFO)
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    ))
    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(numeric_level)


def run_sim(args: argparse.Namespace) -> None:
    cfg = SimConfig(
        seed=args.seed,
        n_events=args.n_events,
        n_traders=args.n_traders,
        p_buy=args.p_buy,
        p_cancel=args.p_cancel,
        mid0=args.mid,
        sigma_ticks=args.sigma_ticks,
        size_mean=args.size_mean,
        size_min=args.size_min,
        ordering=Ordering[args.ordering.upper()],
        snapshot_every=args.snapshot_every,
    )
    sim = Simulator(cfg)
    art: SimArtifacts = sim.run()
    out_dir = args.report
    paths = save_artifacts(art, out_dir)
    fig_paths = plot_ledger_series(art.snapshots, out_dir)
    fills_png = plot_fill_prices(art.fills, out_dir)
    lat_png = plot_latency_hist(art.latencies_ns, out_dir)
    summary = summarize_latency_ns(art.latencies_ns)

    print(json.dumps({
        "saved": {**paths, **fig_paths, "fills": fills_png, "latency_hist": lat_png},
        "counts": {
            "orders": art.order_count,
            "fills": len(art.fills),
            "cancels": art.cancel_count,
            "rejects": art.reject_count,
        },
        "fills_summary": fill_summary(art.fills),
        "conserved": bool(art.conservation["balanced"].all()),
        "latency_summary": summary,
    }, indent=2))


def run_bench(args: argparse.Namespace) -> None:
    cfg = SimConfig(
        seed=args.seed,
        n_events=args.n_events,
        ordering=Ordering[args.ordering.upper()],
        snapshot_every=max(args.n_events // 50, 1),
    )
    sim = Simulator(cfg)
    art = sim.run()
    out_dir = args.report
    Path(out_dir).mkdir(parents=True, exist_ok=True)
    lat_png = plot_latency_hist(art.latencies_ns, out_dir)
    summary = summarize_latency_ns(art.latencies_ns)
    df = pd.DataFrame([{**summary, "ordering": cfg.ordering.name, "n_events": cfg.n_events}])
    csv = Path(out_dir) / "benchmark_summary.csv"
    df.to_csv(csv, index=False)
    print(json.dumps({"benchmark": summary, "latency_hist": lat_png, "csv": str(csv)}, indent=2))


def main() -> None:
    parser = argparse.ArgumentParser(prog="pairbook", description="Two-asset matching engine simulator")
    parser.add_argument("--log-level", type=str, default="WARNING")
    sub = parser.add_subparsers(dest="cmd", required=True)
    orderings = [o.name.lower() for o in Ordering]

    p_sim = sub.add_parser("sim", help="Run simulation and save artifacts")
    p_sim.add_argument("--seed", type=int, default=30)
    p_sim.add_argument("--n-events", type=int, default=20_000)
    p_sim.add_argument("--n-traders", type=int, default=25)
    p_sim.add_argument("--p-buy", type=float, default=0.5)
    p_sim.add_argument("--p-cancel", type=float, default=0.10)
    p_sim.add_argument("--mid", type=int, default=1_000)
    p_sim.add_argument("--sigma-ticks", type=float, default=4.0)
    p_sim.add_argument("--size-mean", type=float, default=50.0)
    p_sim.add_argument("--size-min", type=int, default=1)
    p_sim.add_argument("--ordering", choices=orderings, default="scan")
    p_sim.add_argument("--snapshot-every", type=int, default=250)
    p_sim.add_argument("--report", type=str, default="results")
    p_sim.set_defaults(func=run_sim)

    p_bench = sub.add_parser("bench", help="Run microbenchmark")
    p_bench.add_argument("--seed", type=int, default=30)
    p_bench.add_argument("--n-events", type=int, default=50_000)
    p_bench.add_argument("--ordering", choices=orderings, default="scan")
    p_bench.add_argument("--report", type=str, default="results")
    p_bench.set_defaults(func=run_bench)

    args = parser.parse_args()
    setup_logging(args.log_level)
    args.func(args)


if __name__ == "__main__":
    main()
