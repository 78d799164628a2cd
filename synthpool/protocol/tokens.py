"""Fungible token interface and an in-memory ledger implementation."""

import logging
from decimal import Decimal
from typing import Callable, Dict, Optional, Protocol, Tuple

from synthpool.core.errors import InsufficientBalance, InvalidAmount

logger = logging.getLogger(__name__)

TransferHook = Callable[[str, str, Decimal], None]


class FungibleToken(Protocol):
    """Standard fungible asset operations consumed by the pool."""

    symbol: str

    def balance_of(self, owner: str) -> Decimal:
        ...

    def mint(self, to: str, amount: Decimal) -> None:
        ...

    def burn(self, owner: str, amount: Decimal) -> None:
        ...

    def transfer(self, sender: str, recipient: str, amount: Decimal) -> None:
        ...

    def checkpoint(self) -> object:
        ...

    def restore(self, checkpoint: object) -> None:
        ...


class InMemoryToken:
    """
    Dictionary-backed token ledger.

    on_transfer, when set, is called after every transfer has been applied,
    the way receive hooks on some token standards call back into the
    recipient.
    """

    def __init__(self, symbol: str, on_transfer: Optional[TransferHook] = None):
        self.symbol = symbol
        self.on_transfer = on_transfer
        self._balances: Dict[str, Decimal] = {}
        self.total_supply = Decimal("0")

    def balance_of(self, owner: str) -> Decimal:
        return self._balances.get(owner, Decimal("0"))

    def mint(self, to: str, amount: Decimal) -> None:
        self._check_amount(amount)
        self._balances[to] = self.balance_of(to) + amount
        self.total_supply += amount

    def burn(self, owner: str, amount: Decimal) -> None:
        self._check_amount(amount)
        balance = self.balance_of(owner)
        if balance < amount:
            raise InsufficientBalance(f"{owner} holds {balance} {self.symbol}, cannot burn {amount}")
        self._balances[owner] = balance - amount
        self.total_supply -= amount

    def transfer(self, sender: str, recipient: str, amount: Decimal) -> None:
        self._check_amount(amount)
        balance = self.balance_of(sender)
        if balance < amount:
            raise InsufficientBalance(f"{sender} holds {balance} {self.symbol}, cannot send {amount}")
        self._balances[sender] = balance - amount
        self._balances[recipient] = self.balance_of(recipient) + amount
        logger.debug(f"{self.symbol} transfer {sender} -> {recipient}: {amount}")
        if self.on_transfer is not None:
            self.on_transfer(sender, recipient, amount)

    def checkpoint(self) -> Tuple[Dict[str, Decimal], Decimal]:
        return dict(self._balances), self.total_supply

    def restore(self, checkpoint: Tuple[Dict[str, Decimal], Decimal]) -> None:
        """Reset balances and supply without calling on_transfer."""
        balances, total_supply = checkpoint
        self._balances = dict(balances)
        self.total_supply = total_supply

    @staticmethod
    def _check_amount(amount: Decimal) -> None:
        if amount < 0:
            raise InvalidAmount(f"Token amount must be non-negative: {amount}")
