# pairbook/engine.py
from __future__ import annotations

import logging
import numbers
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Iterator, List, Optional, Tuple

from .custody import Asset, Custody
from .errors import (
    InvalidAmount,
    InvalidPrice,
    NotOrderOwner,
    NumericOverflow,
    OrderNotFound,
    ReentrantCall,
)
from .events import Event, Listener, OrderCancelled, OrderFilled, OrderPlaced
from .ledger import Checkpoint, OrderLedger, Ordering
from .models import Fill, Order, OrderId, Owner, Side

logger = logging.getLogger(__name__)

UINT256_MAX = 2**256 - 1


@dataclass(slots=True)
class EngineConfig:
    base_asset: Asset = "A"     # traded asset
    quote_asset: Asset = "B"    # prices are units of quote per unit of base
    max_value: int = UINT256_MAX
    ordering: Ordering = Ordering.SCAN
    check_invariants: bool = False


@dataclass(slots=True)
class Submission:
    order: Order
    fills: List[Fill] = field(default_factory=list)

    @property
    def resting(self) -> bool:
        return self.order.is_active

    @property
    def filled(self) -> int:
        return sum(f.amount for f in self.fills)


class MatchingEngine:
    """
    Limit-order matching for a single base/quote pair with custody escrow.

    Each call (submit or cancel) runs to completion before the next is
    admitted. A submission escrows funds, rests the order, then crosses the
    ledger: buy orders are walked by position and each is matched against
    the first crossing sell order by position, repeatedly, until a full pass
    trades nothing. Trades settle at the sell order's price.

    If any step after the escrow debit fails, every custody movement made by
    the call is reversed and the ledger is restored, so the call leaves no
    trace apart from the consumed order id.
    """

    def __init__(self, custody: Custody, config: Optional[EngineConfig] = None) -> None:
        self.cfg = config or EngineConfig()
        self.custody = custody
        self.ledger = OrderLedger(self.cfg.ordering)
        self.fills: List[Fill] = []
        self._next_id: OrderId = 1
        self._seq: int = 0
        self._lock = threading.RLock()
        self._busy = False
        self._listeners: List[Listener] = []
        self._pending: List[Event] = []
        self._journal: List[Tuple[Callable[..., None], Tuple[Any, ...]]] = []

    def subscribe(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def _publish(self, events: List[Event]) -> None:
        for event in events:
            for listener in self._listeners:
                try:
                    listener(event)
                except Exception:
                    logger.exception("Event listener failed on %s(id=%s)", type(event).__name__, event.id)

    def submit_buy(self, owner: Owner, amount: int, price: int) -> Submission:
        return self._submit(Side.BUY, owner, amount, price)

    def submit_sell(self, owner: Owner, amount: int, price: int) -> Submission:
        return self._submit(Side.SELL, owner, amount, price)

    def cancel(self, order_id: OrderId, owner: Optional[Owner] = None) -> Order:
        with self._exclusive():
            loc = self.ledger.find(order_id)
            if loc is None:
                raise OrderNotFound(f"order {order_id} is not resting", {"order_id": order_id})
            side, idx = loc
            order = self.ledger.at(side, idx)
            if owner is not None and order.owner != owner:
                raise NotOrderOwner(f"order {order_id} is not owned by {owner!r}", {"order_id": order_id})
            asset, amount = self._escrow_for(side, order.remaining, order.price)
            self.custody.credit(asset, order.owner, amount)
            self.ledger.remove(side, idx)
            event = OrderCancelled(order.id, order.owner, order.remaining, order.price, side)
            logger.info("Order cancelled: %s #%d %d @ %d, released %d %s", side.name, order.id, order.remaining, order.price, amount, asset)
        self._publish([event])
        return replace(order)

    # queries hold the engine lock; a same-thread query from custody re-enters it

    def list_buy_orders(self) -> List[Order]:
        with self._lock:
            return [replace(o) for o in self.ledger.enumerate(Side.BUY)]

    def list_sell_orders(self) -> List[Order]:
        with self._lock:
            return [replace(o) for o in self.ledger.enumerate(Side.SELL)]

    def best_bid(self) -> Optional[int]:
        with self._lock:
            return max((o.price for o in self.ledger.enumerate(Side.BUY)), default=None)

    def best_ask(self) -> Optional[int]:
        with self._lock:
            return min((o.price for o in self.ledger.enumerate(Side.SELL)), default=None)

    def depth(self, side: Side) -> int:
        with self._lock:
            return sum(o.remaining for o in self.ledger.enumerate(side))

    def resting_ids(self) -> List[OrderId]:
        with self._lock:
            return self.ledger.ids()

    def assert_invariants(self) -> None:
        with self._lock:
            self.ledger.assert_invariants()
            bb = self.best_bid()
            ba = self.best_ask()
            if bb is not None and ba is not None:
                assert bb < ba, f"Crossed ledger left resting: best_bid={bb} best_ask={ba}"

    @contextmanager
    def _exclusive(self) -> Iterator[None]:
        with self._lock:
            if self._busy:
                raise ReentrantCall("engine call made while another call is in progress")
            self._busy = True
            try:
                yield
            finally:
                self._busy = False

    def _checked(self, value: Any, what: str) -> int:
        if isinstance(value, bool) or not isinstance(value, numbers.Integral):
            raise (InvalidAmount if what == "amount" else InvalidPrice)(
                f"{what} must be an integer, got {value!r}", {what: value}
            )
        value = int(value)
        if value <= 0:
            raise (InvalidAmount if what == "amount" else InvalidPrice)(
                f"{what} must be positive, got {value}", {what: value}
            )
        if value > self.cfg.max_value:
            raise NumericOverflow(f"{what} {value} exceeds {self.cfg.max_value}", {what: value})
        return value

    def _quote(self, amount: int, price: int) -> int:
        value = amount * price
        if value > self.cfg.max_value:
            raise NumericOverflow(
                f"quote {amount} * {price} exceeds {self.cfg.max_value}",
                {"amount": amount, "price": price},
            )
        return value

    def _escrow_for(self, side: Side, amount: int, price: int) -> Tuple[Asset, int]:
        if side is Side.BUY:
            return self.cfg.quote_asset, self._quote(amount, price)
        return self.cfg.base_asset, amount

    def _submit(self, side: Side, owner: Owner, amount: Any, price: Any) -> Submission:
        amount = self._checked(amount, "amount")
        price = self._checked(price, "price")
        asset, escrow = self._escrow_for(side, amount, price)

        with self._exclusive():
            cp = self.ledger.checkpoint()
            fills_before = len(self.fills)
            self._journal = []
            self._pending = []
            try:
                self._debit(asset, owner, escrow)
                order = Order(id=self._next_id, owner=owner, side=side, amount=amount, price=price)
                self._next_id += 1
                self._seq += 1
                order.ts = self._seq
                self.ledger.insert(order)
                self._pending.append(OrderPlaced(order.id, owner, amount, price, side))
                logger.info("Order placed: %s #%d %d @ %d by %r", side.name, order.id, amount, price, owner)
                fills = self._cross()
            except Exception:
                self._rollback(cp, fills_before)
                raise
            events, self._pending, self._journal = self._pending, [], []
            if self.cfg.check_invariants:
                self.assert_invariants()
            snapshot = replace(order)

        self._publish(events)
        return Submission(order=snapshot, fills=fills)

    def _debit(self, asset: Asset, owner: Owner, amount: int) -> None:
        self.custody.debit(asset, owner, amount)
        self._journal.append((self.custody.refund, (asset, owner, amount)))

    def _credit(self, asset: Asset, owner: Owner, amount: int) -> None:
        self.custody.credit(asset, owner, amount)
        self._journal.append((self.custody.reclaim, (asset, owner, amount)))

    def _rollback(self, cp: Checkpoint, fills_before: int) -> None:
        undone = len(self._journal)
        for undo, args in reversed(self._journal):
            undo(*args)
        self.ledger.restore(cp)
        del self.fills[fills_before:]
        self._journal = []
        self._pending = []
        if undone:
            logger.error("Submission aborted, reversed %d custody movements", undone)

    def _cross(self) -> List[Fill]:
        fills: List[Fill] = []
        progress = True
        while progress:
            progress = False
            i = 0
            while i < self.ledger.size(Side.BUY):
                buy = self.ledger.at(Side.BUY, i)
                j = 0
                while j < self.ledger.size(Side.SELL):
                    sell = self.ledger.at(Side.SELL, j)
                    if buy.price < sell.price:
                        j += 1
                        continue
                    fills.append(self._execute(buy, sell))
                    progress = True
                    # removal refills slot j (or i), so rescan the same position
                    if not sell.is_active:
                        self.ledger.remove(Side.SELL, j)
                    if not buy.is_active:
                        self.ledger.remove(Side.BUY, i)
                        break
                else:
                    i += 1
        return fills

    def _execute(self, buy: Order, sell: Order) -> Fill:
        amount = min(buy.remaining, sell.remaining)
        price = sell.price
        quote = self._quote(amount, price)
        improvement = self._quote(amount, buy.price) - quote

        self._credit(self.cfg.base_asset, buy.owner, amount)
        self._credit(self.cfg.quote_asset, sell.owner, quote)
        if improvement:
            self._credit(self.cfg.quote_asset, buy.owner, improvement)

        buy.remaining -= amount
        sell.remaining -= amount
        self._seq += 1
        fill = Fill(
            buy_id=buy.id,
            sell_id=sell.id,
            buyer=buy.owner,
            seller=sell.owner,
            amount=amount,
            price=price,
            quote=quote,
            ts=self._seq,
        )
        self.fills.append(fill)
        self._pending.append(OrderFilled(buy.id, buy.owner, amount, price, Side.BUY))
        self._pending.append(OrderFilled(sell.id, sell.owner, amount, price, Side.SELL))
        logger.debug("Fill: buy #%d / sell #%d %d @ %d", buy.id, sell.id, amount, price)
        return fill
