# pairbook/models.py
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Hashable, Optional


class Side(Enum):
    BUY = 1
    SELL = -1


OrderId = int
Owner = Hashable


@dataclass(slots=True)
class Order:
    """
    Resting limit order for the A/B pair.
    - amount: original quantity of asset A (positive int)
    - remaining: quantity of A still to trade; the order leaves the ledger at 0
    - price: units of B per unit of A, fixed for the life of the order
    - ts: engine sequence number at placement
    """
    id: OrderId
    owner: Owner
    side: Side
    amount: int
    price: int
    ts: int = 0
    remaining: Optional[int] = None

    def __post_init__(self) -> None:
        if self.amount <= 0:
            raise ValueError("amount must be positive")
        if self.price <= 0:
            raise ValueError("price must be positive")
        if self.remaining is None:
            self.remaining = self.amount

    @property
    def is_active(self) -> bool:
        return (self.remaining or 0) > 0


@dataclass(slots=True)
class Fill:
    """
    One executed trade. price is always the sell order's limit price.
    quote: amount * price units of asset B paid to the seller
    """
    buy_id: OrderId
    sell_id: OrderId
    buyer: Owner
    seller: Owner
    amount: int
    price: int
    quote: int
    ts: int
