# pairbook/errors.py
"""
Exception hierarchy raised by the ledger, custody and matching engine.

Every error is raised synchronously to the caller of the engine operation
that hit it; nothing is retried.
"""
from __future__ import annotations

from typing import Any, Dict, Optional


class ExchangeError(Exception):
    """Base class for all pairbook errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}


class InvalidInput(ExchangeError):
    """Non-positive or non-integer amount/price, rejected before any side effect."""


class InvalidAmount(InvalidInput):
    pass


class InvalidPrice(InvalidInput):
    pass


class NumericOverflow(InvalidInput):
    """A quote value (amount * price) exceeds the engine's integer bound."""


class InsufficientFundsOrApproval(ExchangeError):
    """Custody could not debit the escrow for a new order."""


class SettlementFailure(ExchangeError):
    """A credit failed mid-trade; the whole submission is rolled back."""


class IndexOutOfRange(ExchangeError, IndexError):
    """Internal removal referenced a ledger slot that does not exist."""


class ReentrantCall(ExchangeError):
    """An engine operation was entered while another one was in flight."""


class OrderNotFound(ExchangeError):
    pass


class NotOrderOwner(ExchangeError):
    pass


class DuplicateOrder(ExchangeError):
    pass
