# tests/test_core_unit.py
from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from pairbook.custody import InMemoryCustody
from pairbook.engine import EngineConfig, MatchingEngine
from pairbook.errors import (
    InsufficientFundsOrApproval,
    InvalidAmount,
    InvalidInput,
    InvalidPrice,
    NotOrderOwner,
    NumericOverflow,
    OrderNotFound,
    ReentrantCall,
    SettlementFailure,
)
from pairbook.events import EventLog, OrderCancelled, OrderFilled, OrderPlaced
from pairbook.ledger import Ordering
from pairbook.models import Side

PEOPLE = ("alice", "bob", "carol", "dave")


def make_engine(custody=None, **cfg):
    custody = custody or InMemoryCustody()
    for who in PEOPLE:
        custody.deposit("A", who, 1_000)
        custody.deposit("B", who, 100_000)
    cfg.setdefault("check_invariants", True)
    eng = MatchingEngine(custody, EngineConfig(**cfg))
    log = EventLog()
    eng.subscribe(log)
    return eng, custody, log


def test_full_match_empties_both_sides():
    eng, custody, log = make_engine()
    eng.submit_buy("alice", 10, 5)
    res = eng.submit_sell("bob", 10, 5)
    assert len(res.fills) == 1
    f = res.fills[0]
    assert (f.amount, f.price, f.quote) == (10, 5, 50)
    assert eng.list_buy_orders() == [] and eng.list_sell_orders() == []
    assert not res.resting
    assert custody.balance_of("A", "alice") == 1_010
    assert custody.balance_of("B", "alice") == 99_950
    assert custody.balance_of("A", "bob") == 990
    assert custody.balance_of("B", "bob") == 100_050
    assert custody.escrowed["A"] == 0 and custody.escrowed["B"] == 0
    assert log.events == [
        OrderPlaced(1, "alice", 10, 5, Side.BUY),
        OrderPlaced(2, "bob", 10, 5, Side.SELL),
        OrderFilled(1, "alice", 10, 5, Side.BUY),
        OrderFilled(2, "bob", 10, 5, Side.SELL),
    ]


def test_partial_fill_leaves_buy_resting():
    eng, custody, _ = make_engine()
    eng.submit_buy("alice", 15, 5)
    res = eng.submit_sell("bob", 10, 5)
    assert res.filled == 10
    buys = eng.list_buy_orders()
    assert len(buys) == 1
    assert buys[0].remaining == 5 and buys[0].amount == 15
    assert eng.list_sell_orders() == []
    assert custody.escrowed["B"] == 25


def test_no_cross_when_ask_above_bid():
    eng, _, log = make_engine()
    eng.submit_buy("alice", 10, 5)
    res = eng.submit_sell("bob", 10, 6)
    assert res.fills == [] and res.resting
    assert [o.id for o in eng.list_buy_orders()] == [1]
    assert [o.id for o in eng.list_sell_orders()] == [2]
    assert log.of_type(OrderFilled) == []


def test_two_trades_across_four_orders():
    eng, _, _ = make_engine()
    eng.submit_buy("alice", 10, 5)
    eng.submit_buy("carol", 5, 6)
    first = eng.submit_sell("bob", 8, 5)
    second = eng.submit_sell("dave", 5, 6)
    fills = first.fills + second.fills
    assert [(f.buy_id, f.sell_id, f.amount, f.price) for f in fills] == [(1, 3, 8, 5), (2, 4, 5, 6)]
    assert sum(f.amount for f in fills) == 13
    assert sum(f.quote for f in fills) == 8 * 5 + 5 * 6
    assert eng.list_sell_orders() == []
    # 15 units were bid against 13 offered; the first buy keeps 2 resting
    assert [(o.id, o.remaining) for o in eng.list_buy_orders()] == [(1, 2)]


def test_zero_amount_rejected_without_side_effects():
    eng, custody, log = make_engine()
    with pytest.raises(InvalidInput):
        eng.submit_buy("alice", 0, 5)
    assert len(eng.ledger) == 0
    assert dict(custody.debited) == {}
    assert len(log) == 0


@pytest.mark.parametrize(
    "amount,price,exc",
    [
        (-1, 5, InvalidAmount),
        (1.5, 5, InvalidAmount),
        (True, 5, InvalidAmount),
        (10, 0, InvalidPrice),
        (10, -3, InvalidPrice),
        (10, "5", InvalidPrice),
    ],
)
def test_invalid_inputs(amount, price, exc):
    eng, _, _ = make_engine()
    with pytest.raises(exc):
        eng.submit_sell("bob", amount, price)
    assert len(eng.ledger) == 0


def test_quote_overflow_rejected_before_escrow():
    eng, custody, _ = make_engine(max_value=1_000)
    with pytest.raises(NumericOverflow):
        eng.submit_buy("alice", 100, 11)
    with pytest.raises(NumericOverflow):
        eng.submit_sell("bob", 1_001, 1)
    assert dict(custody.debited) == {}
    eng.submit_buy("alice", 100, 10)
    assert custody.escrowed["B"] == 1_000


def test_insufficient_funds_creates_nothing():
    eng, custody, log = make_engine()
    with pytest.raises(InsufficientFundsOrApproval):
        eng.submit_buy("eve", 1, 1)
    custody.deposit("A", "eve", 50, approve=False)
    with pytest.raises(InsufficientFundsOrApproval):
        eng.submit_sell("eve", 10, 1)
    assert len(eng.ledger) == 0 and len(log) == 0
    # failed debits never consume an id
    assert eng.submit_buy("alice", 1, 1).order.id == 1


def test_trade_settles_at_sell_price_and_refunds_improvement():
    eng, custody, log = make_engine()
    eng.submit_sell("bob", 10, 4)
    res = eng.submit_buy("alice", 10, 6)
    assert res.fills[0].price == 4
    assert custody.balance_of("B", "bob") == 100_040
    assert custody.balance_of("B", "alice") == 100_000 - 40
    assert custody.escrowed["B"] == 0
    assert [e.price for e in log.of_type(OrderFilled)] == [4, 4]


def test_scan_matches_first_crossing_sell_by_position():
    eng, _, _ = make_engine(ordering=Ordering.SCAN)
    eng.submit_sell("bob", 5, 7)
    eng.submit_sell("bob", 5, 5)
    eng.submit_sell("carol", 5, 6)
    res = eng.submit_buy("alice", 5, 7)
    assert (res.fills[0].sell_id, res.fills[0].price) == (1, 7)


def test_price_time_matches_best_ask_first():
    eng, _, _ = make_engine(ordering=Ordering.PRICE_TIME)
    eng.submit_sell("bob", 5, 7)
    eng.submit_sell("bob", 5, 5)
    eng.submit_sell("carol", 5, 6)
    res = eng.submit_buy("alice", 5, 7)
    assert (res.fills[0].sell_id, res.fills[0].price) == (2, 5)


def test_swap_removal_changes_next_match():
    eng, _, _ = make_engine(ordering=Ordering.SCAN)
    eng.submit_sell("bob", 5, 5)
    eng.submit_sell("bob", 5, 9)
    eng.submit_sell("carol", 5, 9)
    eng.submit_sell("dave", 5, 6)
    eng.submit_buy("alice", 5, 10)
    assert [o.id for o in eng.list_sell_orders()] == [4, 2, 3]
    res = eng.submit_buy("alice", 5, 10)
    assert res.fills[0].sell_id == 4


def test_one_buy_sweeps_several_sells():
    eng, custody, _ = make_engine()
    eng.submit_sell("bob", 3, 4)
    eng.submit_sell("carol", 3, 5)
    eng.submit_sell("dave", 3, 9)
    res = eng.submit_buy("alice", 10, 6)
    assert [(f.sell_id, f.amount) for f in res.fills] == [(1, 3), (2, 3)]
    assert res.order.remaining == 4
    assert custody.escrowed["B"] == 4 * 6
    eng.assert_invariants()


@pytest.mark.parametrize("ordering", list(Ordering))
def test_settlement_failure_rolls_back_whole_submission(ordering):
    eng, custody, log = make_engine(ordering=ordering)
    eng.submit_buy("alice", 5, 5)
    eng.submit_buy("carol", 5, 5)
    custody.freeze("carol")
    log.clear()
    with pytest.raises(SettlementFailure):
        eng.submit_sell("bob", 10, 5)
    assert [(o.id, o.remaining) for o in eng.list_buy_orders()] == [(1, 5), (2, 5)]
    assert eng.list_sell_orders() == []
    assert custody.balance_of("A", "alice") == 1_000
    assert custody.balance_of("A", "bob") == 1_000
    assert custody.allowance_of("A", "bob") == 1_000
    assert custody.balance_of("B", "bob") == 100_000
    assert custody.totals("A") == {"debited": 0, "credited": 0, "escrowed": 0}
    assert custody.escrowed["B"] == 50
    assert eng.fills == [] and len(log) == 0
    eng.assert_invariants()

    custody.unfreeze("carol")
    res = eng.submit_sell("bob", 10, 5)
    assert res.order.id == 4
    assert res.filled == 10


@pytest.mark.parametrize("ordering", list(Ordering))
def test_reentrant_submission_fails_fast(ordering):
    class ReentrantCustody(InMemoryCustody):
        engine = None

        def credit(self, asset, payee, amount):
            if self.engine is not None:
                self.engine.submit_buy("mallory", 1, 1)
            super().credit(asset, payee, amount)

    custody = ReentrantCustody()
    eng, _, _ = make_engine(custody, ordering=ordering)
    eng.submit_buy("alice", 10, 5)
    custody.engine = eng
    with pytest.raises(ReentrantCall):
        eng.submit_sell("bob", 10, 5)
    assert [(o.id, o.remaining) for o in eng.list_buy_orders()] == [(1, 10)]
    assert custody.balance_of("A", "bob") == 1_000
    eng.assert_invariants()

    custody.engine = None
    assert eng.submit_sell("bob", 10, 5).filled == 10


def test_cancel_refunds_unfilled_escrow():
    eng, custody, log = make_engine()
    eng.submit_buy("alice", 15, 5)
    eng.submit_sell("bob", 10, 5)
    cancelled = eng.cancel(1, owner="alice")
    assert cancelled.remaining == 5
    assert eng.list_buy_orders() == []
    assert custody.balance_of("B", "alice") == 100_000 - 50
    assert custody.escrowed["B"] == 0
    assert log.of_type(OrderCancelled) == [OrderCancelled(1, "alice", 5, 5, Side.BUY)]


def test_cancel_sell_returns_base_asset():
    eng, custody, _ = make_engine()
    eng.submit_sell("bob", 7, 9)
    eng.cancel(1)
    assert custody.balance_of("A", "bob") == 1_000
    assert custody.escrowed["A"] == 0


def test_cancel_errors():
    eng, _, _ = make_engine()
    eng.submit_sell("bob", 7, 9)
    with pytest.raises(NotOrderOwner):
        eng.cancel(1, owner="alice")
    with pytest.raises(OrderNotFound):
        eng.cancel(42)
    eng.cancel(1)
    with pytest.raises(OrderNotFound):
        eng.cancel(1)


def test_cancel_settlement_failure_leaves_order_resting():
    eng, custody, log = make_engine()
    eng.submit_buy("alice", 10, 5)
    custody.freeze("alice")
    log.clear()
    with pytest.raises(SettlementFailure):
        eng.cancel(1)
    assert [(o.id, o.remaining) for o in eng.list_buy_orders()] == [(1, 10)]
    assert custody.escrowed["B"] == 50
    assert custody.balance_of("B", "alice") == 100_000 - 50
    assert log.of_type(OrderCancelled) == []
    eng.assert_invariants()

    custody.unfreeze("alice")
    eng.cancel(1)
    assert eng.list_buy_orders() == []
    assert custody.escrowed["B"] == 0


def test_ids_never_reused():
    eng, _, _ = make_engine()
    a = eng.submit_buy("alice", 1, 1).order.id
    eng.cancel(a)
    b = eng.submit_buy("alice", 1, 1).order.id
    assert b > a


def test_queries_return_copies():
    eng, _, _ = make_engine()
    eng.submit_buy("alice", 10, 5)
    snap = eng.list_buy_orders()[0]
    snap.remaining = 0
    assert eng.list_buy_orders()[0].remaining == 10
    assert eng.best_bid() == 5 and eng.best_ask() is None
    assert eng.depth(Side.BUY) == 10


def test_listener_failure_does_not_affect_matching(caplog):
    custody = InMemoryCustody()
    for who in PEOPLE:
        custody.deposit("A", who, 1_000)
        custody.deposit("B", who, 100_000)
    eng = MatchingEngine(custody, EngineConfig(check_invariants=True))
    log = EventLog()

    def broken(event):
        raise RuntimeError("sink down")

    eng.subscribe(broken)
    eng.subscribe(log)
    with caplog.at_level(logging.ERROR, logger="pairbook.engine"):
        eng.submit_buy("alice", 10, 5)
        res = eng.submit_sell("bob", 10, 5)
    assert res.filled == 10
    assert "Event listener failed" in caplog.text
    assert len(log.of_type(OrderFilled)) == 2


def test_concurrent_submissions_are_serialised():
    custody = InMemoryCustody()
    owners = [f"t{k}" for k in range(8)]
    for who in owners:
        custody.deposit("A", who, 10_000)
        custody.deposit("B", who, 1_000_000)
    eng = MatchingEngine(custody, EngineConfig(check_invariants=True))

    def trader(k):
        who = owners[k]
        for n in range(50):
            if (n + k) % 2:
                eng.submit_buy(who, 1 + n % 7, 10 + (n * k) % 5)
            else:
                eng.submit_sell(who, 1 + n % 5, 9 + (n + k) % 5)

    with ThreadPoolExecutor(max_workers=4) as pool:
        list(pool.map(trader, range(len(owners))))

    eng.assert_invariants()
    for asset in ("A", "B"):
        t = custody.totals(asset)
        assert t["debited"] == t["escrowed"] + t["credited"]
    assert custody.escrowed["A"] == eng.depth(Side.SELL)
    assert custody.escrowed["B"] == sum(o.remaining * o.price for o in eng.list_buy_orders())


def test_queries_never_observe_a_call_in_progress():
    eng, _, _ = make_engine()
    stop = threading.Event()
    bad = []

    def writer():
        try:
            for _ in range(30):
                for _ in range(20):
                    eng.submit_sell("bob", 1, 5)
                eng.submit_buy("alice", 20, 5)
        finally:
            stop.set()

    def reader():
        while not stop.is_set():
            sells = eng.list_sell_orders()
            ids = [o.id for o in sells]
            if any(o.remaining <= 0 for o in sells) or len(ids) != len(set(ids)):
                bad.append(sells)

    threads = [threading.Thread(target=writer), threading.Thread(target=reader)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=30)
    assert not bad
    assert eng.list_sell_orders() == []
    eng.assert_invariants()
