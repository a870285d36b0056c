"""
Payment collaborator — MNEE balance checks and transfers.

The pipeline only depends on PaymentGateway. SimulatedPaymentGateway keeps an
in-memory ledger and hands out 0xDEMO… hashes; it backs demo runs and tests.
Real settlement is an external concern.
"""
from __future__ import annotations

import logging
import random
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from .errors import PaymentError

logger = logging.getLogger("tenderswarm.payments")

TX_HASH_LENGTH = 66
DEMO_PREFIX = "0xDEMO"
ERROR_PREFIX = "0xERROR"
ZERO_ADDRESS = "0x" + "0" * 40
DEMO_PAYER = "0x000000000000000000000000000000000000dEaD"


def marked_tx_hash(prefix: str, rng: Optional[random.Random] = None) -> str:
    """A 66-char hash-shaped marker, e.g. 0xDEMO3fa9…, padded with zeros."""
    rng = rng or random.Random()
    body = f"{rng.getrandbits(128):032x}{rng.getrandbits(128):032x}"
    return (prefix + body)[:TX_HASH_LENGTH].ljust(TX_HASH_LENGTH, "0")


def is_marked(tx_hash: str) -> bool:
    return tx_hash.startswith((DEMO_PREFIX, ERROR_PREFIX))


@dataclass(frozen=True)
class BalanceCheck:
    has_balance: bool
    balance: float
    required: float


@dataclass(frozen=True)
class TransferResult:
    hash: str
    success: bool


class PaymentGateway(ABC):
    """All three calls are fallible network calls; failures raise PaymentError."""

    @abstractmethod
    async def verify_balance(self, address: str, amount: float) -> BalanceCheck:
        ...

    @abstractmethod
    async def transfer_mnee(self, from_address: str, to_address: str,
                            amount: float) -> TransferResult:
        ...

    @abstractmethod
    async def get_balance(self, address: str) -> float:
        ...


class SimulatedPaymentGateway(PaymentGateway):
    """
    In-memory ledger. Unknown addresses start at default_balance. Transfers
    debit the sender and credit the recipient; an overdraft raises
    PaymentError.
    """

    def __init__(self, default_balance: float = 1_000.0,
                 rng: Optional[random.Random] = None) -> None:
        self.default_balance = default_balance
        self.rng = rng or random.Random()
        self._balances: dict[str, float] = {}
        self.transfers: list[tuple[str, str, float, str]] = []

    def _balance(self, address: str) -> float:
        return self._balances.setdefault(address.lower(), self.default_balance)

    async def verify_balance(self, address: str, amount: float) -> BalanceCheck:
        balance = self._balance(address)
        return BalanceCheck(has_balance=balance >= amount, balance=balance, required=amount)

    async def transfer_mnee(self, from_address: str, to_address: str,
                            amount: float) -> TransferResult:
        if amount < 0:
            raise PaymentError(f"Negative transfer amount: {amount}")
        balance = self._balance(from_address)
        if balance < amount:
            raise PaymentError(
                f"Insufficient MNEE balance: {balance:.4f} < {amount:.4f}"
            )
        self._balances[from_address.lower()] = balance - amount
        self._balances[to_address.lower()] = self._balance(to_address) + amount
        tx = marked_tx_hash(DEMO_PREFIX, self.rng)
        self.transfers.append((from_address, to_address, amount, tx))
        logger.debug(f"Simulated transfer {amount:.4f} MNEE {from_address} → {to_address}")
        return TransferResult(hash=tx, success=True)

    async def get_balance(self, address: str) -> float:
        return self._balance(address)
