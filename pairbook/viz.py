# pairbook/viz.py
from __future__ import annotations

from pathlib import Path
from typing import Dict

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd

from .metrics import ledger_series_from_snapshots


def _save(figdir: Path, name: str) -> str:
    p = figdir / name
    plt.tight_layout()
    plt.savefig(p)
    plt.close()
    return str(p)


def plot_ledger_series(snaps: pd.DataFrame, out_dir: str) -> Dict[str, str]:
    series = ledger_series_from_snapshots(snaps)
    figdir = Path(out_dir) / "figures"
    figdir.mkdir(parents=True, exist_ok=True)
    paths: Dict[str, str] = {}

    # (file stem, title, y label, {legend label: series})
    panels = [
        ("spread", "Best ask - best bid", "B per A", {"spread": series.spread}),
        ("midprice", "Mid of best bid and best ask", "B per A", {"mid": series.mid}),
        ("depths", "Resting units of A", "units of A", {
            "bid for (buy side)": series.buy_depth,
            "offered (sell side)": series.sell_depth,
        }),
        ("imbalance", "Buy/sell imbalance of resting A", "(buy - sell) / (buy + sell)", {"imbalance": series.imbalance}),
    ]
    for stem, title, ylabel, lines in panels:
        plt.figure()
        for label, s in lines.items():
            plt.plot(snaps["event"], s.values, label=label)
        if len(lines) > 1:
            plt.legend()
        plt.title(title)
        plt.xlabel("engine call")
        plt.ylabel(ylabel)
        paths[f"{stem}_png"] = _save(figdir, f"{stem}.png")

    return paths


def plot_fill_prices(fills: pd.DataFrame, out_dir: str) -> str:
    figdir = Path(out_dir) / "figures"
    figdir.mkdir(parents=True, exist_ok=True)
    plt.figure()
    if not fills.empty:
        plt.scatter(fills["ts"], fills["price"], s=np.clip(fills["amount"], 1, 50), alpha=0.4)
    plt.title("Fill prices")
    plt.xlabel("engine sequence")
    plt.ylabel("price (B per A)")
    return _save(figdir, "fills.png")


def plot_latency_hist(latencies_ns: np.ndarray, out_dir: str) -> str:
    figdir = Path(out_dir) / "figures"
    figdir.mkdir(parents=True, exist_ok=True)
    plt.figure()
    us = latencies_ns / 1_000.0
    plt.hist(us, bins=50)
    plt.title("Engine call latency (μs)")
    plt.xlabel("latency (μs)")
    plt.ylabel("count")
    return _save(figdir, "latency_hist.png")
