# pairbook/ledger.py
from __future__ import annotations

import bisect
from dataclasses import dataclass
from enum import Enum, auto
from typing import Callable, Dict, Iterator, List, Optional, Tuple

from .errors import DuplicateOrder, IndexOutOfRange, InvalidAmount
from .models import Order, OrderId, Side


class Ordering(Enum):
    SCAN = auto()        # append on insert, swap-with-last on removal
    PRICE_TIME = auto()  # kept sorted by best price then ts, stable removal


@dataclass(slots=True, frozen=True)
class Checkpoint:
    buys: Tuple[Order, ...]
    sells: Tuple[Order, ...]
    remaining: Dict[OrderId, int]


def _priority_key(side: Side) -> Callable[[Order], Tuple[int, int]]:
    if side is Side.BUY:
        return lambda o: (-o.price, o.ts)
    return lambda o: (o.price, o.ts)


class OrderLedger:
    """
    Open buy and sell orders, one list per side.

    Positions are not stable across a removal on the same side: under
    Ordering.SCAN the last order is moved into the vacated slot, under
    Ordering.PRICE_TIME later orders shift down by one.
    Invariants:
      - every resident order has remaining > 0
      - ids are unique across both sides
    """

    def __init__(self, ordering: Ordering = Ordering.SCAN) -> None:
        self.ordering = ordering
        self._buys: List[Order] = []
        self._sells: List[Order] = []
        self._ids: Dict[OrderId, Side] = {}

    def _book(self, side: Side) -> List[Order]:
        return self._buys if side is Side.BUY else self._sells

    def __len__(self) -> int:
        return len(self._buys) + len(self._sells)

    def __contains__(self, order_id: OrderId) -> bool:
        return order_id in self._ids

    def ids(self) -> List[OrderId]:
        return list(self._ids)

    def size(self, side: Side) -> int:
        return len(self._book(side))

    def at(self, side: Side, index: int) -> Order:
        book = self._book(side)
        if not 0 <= index < len(book):
            raise IndexOutOfRange(f"no {side.name} order at index {index}", {"size": len(book)})
        return book[index]

    def insert(self, order: Order) -> None:
        if order.id in self._ids:
            raise DuplicateOrder(f"order {order.id} already resting", {"order_id": order.id})
        if not order.is_active:
            raise InvalidAmount(f"order {order.id} has nothing remaining to rest", {"order_id": order.id})
        book = self._book(order.side)
        if self.ordering is Ordering.PRICE_TIME:
            bisect.insort_right(book, order, key=_priority_key(order.side))
        else:
            book.append(order)
        self._ids[order.id] = order.side

    def remove(self, side: Side, index: int) -> Order:
        book = self._book(side)
        if not 0 <= index < len(book):
            raise IndexOutOfRange(f"no {side.name} order at index {index}", {"size": len(book)})
        if self.ordering is Ordering.PRICE_TIME:
            order = book.pop(index)
        else:
            order = book[index]
            book[index] = book[-1]
            book.pop()
        del self._ids[order.id]
        return order

    def enumerate(self, side: Side) -> Iterator[Order]:
        # live view of the side, not a snapshot; do not mutate while iterating
        return iter(self._book(side))

    def find(self, order_id: OrderId) -> Optional[Tuple[Side, int]]:
        side = self._ids.get(order_id)
        if side is None:
            return None
        for i, o in enumerate(self._book(side)):
            if o.id == order_id:
                return (side, i)
        return None

    def checkpoint(self) -> Checkpoint:
        return Checkpoint(
            buys=tuple(self._buys),
            sells=tuple(self._sells),
            remaining={o.id: o.remaining for o in (*self._buys, *self._sells)},
        )

    def restore(self, cp: Checkpoint) -> None:
        for o in (*cp.buys, *cp.sells):
            o.remaining = cp.remaining[o.id]
        self._buys = list(cp.buys)
        self._sells = list(cp.sells)
        self._ids = {o.id: o.side for o in (*self._buys, *self._sells)}

    def assert_invariants(self) -> None:
        seen = set()
        for side in (Side.BUY, Side.SELL):
            book = self._book(side)
            for o in book:
                assert o.side is side, f"order {o.id} on wrong side"
                assert o.is_active, f"order {o.id} resting with remaining={o.remaining}"
                assert o.id not in seen, f"duplicate order id {o.id}"
                seen.add(o.id)
            if self.ordering is Ordering.PRICE_TIME:
                key = _priority_key(side)
                keys = [key(o) for o in book]
                assert keys == sorted(keys), f"priority violated on {side.name}"
        assert seen == set(self._ids), "id index out of sync"
