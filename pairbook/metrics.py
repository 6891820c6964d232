# pairbook/metrics.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable

import numpy as np
import pandas as pd

from .custody import Asset, InMemoryCustody


@dataclass(slots=True)
class LedgerSeries:
    """Per-snapshot view of the resting ledger. Prices in B per A, depths in units of A."""
    spread: pd.Series
    mid: pd.Series
    buy_depth: pd.Series
    sell_depth: pd.Series
    imbalance: pd.Series


def ledger_series_from_snapshots(df: pd.DataFrame) -> LedgerSeries:
    quotes = df[["best_bid", "best_ask"]].astype(float)
    spread = (quotes["best_ask"] - quotes["best_bid"]).ffill()
    mid = quotes.mean(axis=1, skipna=False).ffill()
    buy_depth = df["buy_depth"].astype(float)
    sell_depth = df["sell_depth"].astype(float)
    total = buy_depth + sell_depth
    # 0 when both sides are empty
    imbalance = ((buy_depth - sell_depth) / total.where(total > 0)).fillna(0.0)
    return LedgerSeries(spread=spread, mid=mid, buy_depth=buy_depth, sell_depth=sell_depth, imbalance=imbalance)


def summarize_latency_ns(latencies: np.ndarray) -> Dict[str, float]:
    if latencies.size == 0:
        return {"count": 0, "p50_ns": 0.0, "p90_ns": 0.0, "p99_ns": 0.0, "mean_ns": 0.0, "ops_per_sec": 0.0}
    p50, p90, p99 = (float(v) for v in np.percentile(latencies, [50, 90, 99]))
    mean_ns = float(latencies.mean())
    return {
        "count": int(latencies.size),
        "p50_ns": p50,
        "p90_ns": p90,
        "p99_ns": p99,
        "mean_ns": mean_ns,
        "ops_per_sec": 1e9 / mean_ns if mean_ns > 0 else 0.0,
    }


def fill_summary(fills: pd.DataFrame) -> Dict[str, float]:
    """Traded volume in A, quote paid in B and the volume-weighted price."""
    if fills.empty:
        return {"trades": 0, "volume_a": 0, "volume_b": 0, "vwap": 0.0}
    volume_a = int(fills["amount"].sum())
    volume_b = int(fills["quote"].sum())
    return {"trades": int(len(fills)), "volume_a": volume_a, "volume_b": volume_b, "vwap": volume_b / volume_a}


def conservation_report(custody: InMemoryCustody, assets: Iterable[Asset]) -> pd.DataFrame:
    """Per asset: everything debited must sit in escrow or have been credited out."""
    rows = []
    for asset in assets:
        t = custody.totals(asset)
        rows.append({**t, "asset": asset, "balanced": t["debited"] == t["escrowed"] + t["credited"]})
    return pd.DataFrame(rows, columns=["asset", "debited", "credited", "escrowed", "balanced"])
