# pairbook/__init__.py
"""
Two-asset limit-order matching engine with custody escrow.

Export the primary types and entry points for convenience.
"""
from .custody import Custody, InMemoryCustody
from .engine import EngineConfig, MatchingEngine, Submission
from .errors import (
    ExchangeError,
    IndexOutOfRange,
    InsufficientFundsOrApproval,
    InvalidAmount,
    InvalidInput,
    InvalidPrice,
    NumericOverflow,
    OrderNotFound,
    ReentrantCall,
    SettlementFailure,
)
from .events import EventLog, OrderCancelled, OrderFilled, OrderPlaced
from .ledger import OrderLedger, Ordering
from .models import Fill, Order, Side

__all__ = [
    "Custody",
    "InMemoryCustody",
    "EngineConfig",
    "MatchingEngine",
    "Submission",
    "ExchangeError",
    "IndexOutOfRange",
    "InsufficientFundsOrApproval",
    "InvalidAmount",
    "InvalidInput",
    "InvalidPrice",
    "NumericOverflow",
    "OrderNotFound",
    "ReentrantCall",
    "SettlementFailure",
    "EventLog",
    "OrderCancelled",
    "OrderFilled",
    "OrderPlaced",
    "OrderLedger",
    "Ordering",
    "Fill",
    "Order",
    "Side",
]

__version__ = "0.1.0"
