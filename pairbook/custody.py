# pairbook/custody.py
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections import defaultdict
from typing import DefaultDict, Dict, Set, Tuple

from .errors import InsufficientFundsOrApproval, SettlementFailure
from .models import Owner

logger = logging.getLogger(__name__)

Asset = str


class Custody(ABC):
    """
    Asset custody collaborator used by the engine.

    debit moves funds from a participant into venue escrow; credit releases
    escrowed funds to a participant. refund and reclaim undo a debit and a
    credit respectively, and are only called by the engine while rolling back
    a failed submission.
    """

    @abstractmethod
    def debit(self, asset: Asset, payer: Owner, amount: int) -> None:
        """Raise InsufficientFundsOrApproval if payer cannot fund amount."""

    @abstractmethod
    def credit(self, asset: Asset, payee: Owner, amount: int) -> None:
        """Raise SettlementFailure if the release cannot be completed."""

    @abstractmethod
    def refund(self, asset: Asset, payer: Owner, amount: int) -> None:
        ...

    @abstractmethod
    def reclaim(self, asset: Asset, payee: Owner, amount: int) -> None:
        ...


class InMemoryCustody(Custody):
    """
    Balances, allowances and venue escrow held in dicts.

    Owners must both hold a balance and have approved the venue for at least
    the debited amount. Credits to a frozen owner fail, which lets callers
    exercise settlement rollback.
    """

    def __init__(self) -> None:
        self.balances: DefaultDict[Tuple[Asset, Owner], int] = defaultdict(int)
        self.allowances: DefaultDict[Tuple[Asset, Owner], int] = defaultdict(int)
        self.escrowed: DefaultDict[Asset, int] = defaultdict(int)
        self.debited: DefaultDict[Asset, int] = defaultdict(int)
        self.credited: DefaultDict[Asset, int] = defaultdict(int)
        self.frozen: Set[Owner] = set()

    def deposit(self, asset: Asset, owner: Owner, amount: int, approve: bool = True) -> None:
        if amount < 0:
            raise ValueError("deposit must be non-negative")
        self.balances[(asset, owner)] += amount
        if approve:
            self.allowances[(asset, owner)] += amount

    def approve(self, asset: Asset, owner: Owner, amount: int) -> None:
        if amount < 0:
            raise ValueError("allowance must be non-negative")
        self.allowances[(asset, owner)] = amount

    def balance_of(self, asset: Asset, owner: Owner) -> int:
        return self.balances.get((asset, owner), 0)

    def allowance_of(self, asset: Asset, owner: Owner) -> int:
        return self.allowances.get((asset, owner), 0)

    def freeze(self, owner: Owner) -> None:
        self.frozen.add(owner)

    def unfreeze(self, owner: Owner) -> None:
        self.frozen.discard(owner)

    def debit(self, asset: Asset, payer: Owner, amount: int) -> None:
        key = (asset, payer)
        balance = self.balances.get(key, 0)
        allowance = self.allowances.get(key, 0)
        if balance < amount or allowance < amount:
            raise InsufficientFundsOrApproval(
                f"cannot debit {amount} {asset} from {payer!r}",
                {"asset": asset, "owner": payer, "amount": amount, "balance": balance, "allowance": allowance},
            )
        self.balances[key] = balance - amount
        self.allowances[key] = allowance - amount
        self.escrowed[asset] += amount
        self.debited[asset] += amount
        logger.debug("debit %s %s from %r", amount, asset, payer)

    def credit(self, asset: Asset, payee: Owner, amount: int) -> None:
        if payee in self.frozen:
            raise SettlementFailure(f"payee {payee!r} is frozen", {"asset": asset, "owner": payee, "amount": amount})
        if self.escrowed.get(asset, 0) < amount:
            raise SettlementFailure(
                f"escrow holds {self.escrowed.get(asset, 0)} {asset}, cannot release {amount}",
                {"asset": asset, "owner": payee, "amount": amount},
            )
        self.escrowed[asset] -= amount
        self.balances[(asset, payee)] += amount
        self.credited[asset] += amount
        logger.debug("credit %s %s to %r", amount, asset, payee)

    def refund(self, asset: Asset, payer: Owner, amount: int) -> None:
        self.escrowed[asset] -= amount
        self.debited[asset] -= amount
        self.balances[(asset, payer)] += amount
        self.allowances[(asset, payer)] += amount

    def reclaim(self, asset: Asset, payee: Owner, amount: int) -> None:
        self.balances[(asset, payee)] -= amount
        self.credited[asset] -= amount
        self.escrowed[asset] += amount

    def totals(self, asset: Asset) -> Dict[str, int]:
        return {
            "debited": self.debited.get(asset, 0),
            "credited": self.credited.get(asset, 0),
            "escrowed": self.escrowed.get(asset, 0),
        }
