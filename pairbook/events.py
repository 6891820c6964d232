# pairbook/events.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, List, Type, TypeVar, Union

from .models import OrderId, Owner, Side


@dataclass(frozen=True, slots=True)
class OrderPlaced:
    id: OrderId
    owner: Owner
    amount: int
    price: int
    side: Side


@dataclass(frozen=True, slots=True)
class OrderFilled:
    # one per trade leg; price is the trade price
    id: OrderId
    owner: Owner
    amount: int
    price: int
    side: Side


@dataclass(frozen=True, slots=True)
class OrderCancelled:
    # amount is the unfilled remainder released from escrow
    id: OrderId
    owner: Owner
    amount: int
    price: int
    side: Side


Event = Union[OrderPlaced, OrderFilled, OrderCancelled]
Listener = Callable[[Event], None]

E = TypeVar("E", OrderPlaced, OrderFilled, OrderCancelled)


class EventLog:
    """Listener that keeps every event it receives, in order."""

    def __init__(self) -> None:
        self.events: List[Event] = []

    def __call__(self, event: Event) -> None:
        self.events.append(event)

    def __len__(self) -> int:
        return len(self.events)

    def of_type(self, kind: Type[E]) -> List[E]:
        return [e for e in self.events if isinstance(e, kind)]

    def clear(self) -> None:
        self.events.clear()
