# pairbook/sim.py
from __future__ import annotations

import logging
import math
import time
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import numpy as np
import pandas as pd

from .custody import InMemoryCustody
from .engine import EngineConfig, MatchingEngine
from .errors import InsufficientFundsOrApproval
from .ledger import Ordering
from .metrics import conservation_report
from .models import Fill, Side

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class SimConfig:
    seed: int = 30
    n_events: int = 20_000
    n_traders: int = 25
    p_buy: float = 0.5
    p_cancel: float = 0.10
    mid0: int = 1_000
    sigma_ticks: float = 4.0
    size_mean: float = 50.0
    size_min: int = 1
    fund_base: int = 1_000_000
    fund_quote: int = 1_000_000_000
    ordering: Ordering = Ordering.SCAN
    snapshot_every: int = 250


@dataclass(slots=True)
class SimArtifacts:
    fills: pd.DataFrame
    snapshots: pd.DataFrame
    latencies_ns: np.ndarray
    order_count: int
    cancel_count: int
    reject_count: int
    conservation: pd.DataFrame


class Simulator:
    def __init__(self, cfg: SimConfig) -> None:
        self.cfg = cfg
        self.rs = np.random.RandomState(cfg.seed)
        self.custody = InMemoryCustody()
        self.engine = MatchingEngine(self.custody, EngineConfig(ordering=cfg.ordering))
        self.traders: List[str] = [f"trader-{k}" for k in range(cfg.n_traders)]
        for t in self.traders:
            self.custody.deposit(self.engine.cfg.base_asset, t, cfg.fund_base)
            self.custody.deposit(self.engine.cfg.quote_asset, t, cfg.fund_quote)

    def _gen_size(self) -> int:
        size = int(self.rs.lognormal(mean=math.log(self.cfg.size_mean), sigma=0.5))
        return max(size, self.cfg.size_min)

    def _side(self) -> Side:
        return Side.BUY if self.rs.rand() < self.cfg.p_buy else Side.SELL

    def _limit_price_near_mid(self, side: Side) -> int:
        # buyers lean below mid and sellers above, with enough spread to cross often
        skew = -1.0 if side is Side.BUY else 1.0
        ticks = int(round(self.rs.normal(loc=skew, scale=self.cfg.sigma_ticks)))
        return max(1, self.cfg.mid0 + ticks)

    def _trader(self) -> str:
        return self.traders[self.rs.randint(0, len(self.traders))]

    def run(self) -> SimArtifacts:
        cfg = self.cfg
        latencies: List[int] = []
        fills: List[Fill] = []
        snaps: List[Tuple[int, Optional[int], Optional[int], int, int]] = []
        orders = cancels = rejects = 0

        for i in range(cfg.n_events):
            if self.rs.rand() < cfg.p_cancel:
                victim = self._random_resting_id()
                if victim is not None:
                    t0 = time.perf_counter_ns()
                    self.engine.cancel(victim)
                    latencies.append(time.perf_counter_ns() - t0)
                    cancels += 1
            else:
                side = self._side()
                price = self._limit_price_near_mid(side)
                amount = self._gen_size()
                owner = self._trader()
                submit = self.engine.submit_buy if side is Side.BUY else self.engine.submit_sell
                t0 = time.perf_counter_ns()
                try:
                    result = submit(owner, amount, price)
                except InsufficientFundsOrApproval:
                    rejects += 1
                else:
                    orders += 1
                    fills.extend(result.fills)
                latencies.append(time.perf_counter_ns() - t0)

            if (i + 1) % cfg.snapshot_every == 0:
                snaps.append((
                    i + 1,
                    self.engine.best_bid(),
                    self.engine.best_ask(),
                    self.engine.depth(Side.BUY),
                    self.engine.depth(Side.SELL),
                ))

        logger.info("Simulation done: %d orders, %d fills, %d cancels, %d rejects", orders, len(fills), cancels, rejects)
        fills_df = pd.DataFrame([asdict(f) for f in fills], columns=[
            "buy_id", "sell_id", "buyer", "seller", "amount", "price", "quote", "ts",
        ])
        snap_df = pd.DataFrame(snaps, columns=["event", "best_bid", "best_ask", "buy_depth", "sell_depth"])
        assets = [self.engine.cfg.base_asset, self.engine.cfg.quote_asset]
        return SimArtifacts(
            fills=fills_df,
            snapshots=snap_df,
            latencies_ns=np.array(latencies, dtype=np.int64),
            order_count=orders,
            cancel_count=cancels,
            reject_count=rejects,
            conservation=conservation_report(self.custody, assets),
        )

    def _random_resting_id(self) -> Optional[int]:
        ids = self.engine.resting_ids()
        if not ids:
            return None
        return ids[self.rs.randint(0, len(ids))]


def save_artifacts(art: SimArtifacts, out_dir: str) -> Dict[str, str]:
    ts = pd.Timestamp.now(tz="UTC").strftime("%Y%m%d_%H%M%S")
    base = Path(out_dir)
    base.mkdir(parents=True, exist_ok=True)
    files = {}
    fills_path = base / f"fills_{ts}.csv"
    art.fills.to_csv(fills_path, index=False)
    files["fills_csv"] = str(fills_path)

    snaps_path = base / f"snapshots_{ts}.csv"
    art.snapshots.to_csv(snaps_path, index=False)
    files["snapshots_csv"] = str(snaps_path)

    lat_path = base / f"latencies_{ts}.csv"
    pd.DataFrame({"latency_ns": art.latencies_ns}).to_csv(lat_path, index=False)
    files["latencies_csv"] = str(lat_path)

    cons_path = base / f"conservation_{ts}.csv"
    art.conservation.to_csv(cons_path, index=False)
    files["conservation_csv"] = str(cons_path)

    return files
