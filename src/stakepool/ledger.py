"""
stakepool/ledger.py

Interface to the external fungible-token ledger.

The engine holds funds in a single custody account on the ledger. It pulls
deposits and top-ups with transfer_from() and pays out with transfer().
"""

import logging
from abc import ABC, abstractmethod
from typing import Dict, Optional

logger = logging.getLogger("stakepool.ledger")


class TokenLedger(ABC):
    """Abstract base class for ledger asset backends."""

    @abstractmethod
    def transfer(self, recipient: str, amount: int) -> bool:
        """Move amount from the custody account to recipient."""
        pass

    @abstractmethod
    def transfer_from(self, sender: str, recipient: str, amount: int) -> bool:
        """Move amount from sender to recipient."""
        pass

    @abstractmethod
    def balance_of(self, account: str) -> int:
        """Get an account's balance."""
        pass


class InMemoryLedger(TokenLedger):
    """
    Dictionary-backed ledger.

    Usage:
        ledger = InMemoryLedger(owner="stakepool")
        ledger.mint("alice", 1_000 * UNIT)
    """

    def __init__(self, owner: str, balances: Optional[Dict[str, int]] = None):
        self.owner = owner
        self._balances: Dict[str, int] = dict(balances or {})

    def mint(self, account: str, amount: int) -> None:
        self._balances[account] = self._balances.get(account, 0) + amount

    def _move(self, sender: str, recipient: str, amount: int) -> bool:
        if amount < 0:
            return False
        balance = self._balances.get(sender, 0)
        if balance < amount:
            logger.debug(f"Transfer of {amount} from {sender} refused: balance {balance}")
            return False
        self._balances[sender] = balance - amount
        self._balances[recipient] = self._balances.get(recipient, 0) + amount
        return True

    def transfer(self, recipient: str, amount: int) -> bool:
        return self._move(self.owner, recipient, amount)

    def transfer_from(self, sender: str, recipient: str, amount: int) -> bool:
        return self._move(sender, recipient, amount)

    def balance_of(self, account: str) -> int:
        return self._balances.get(account, 0)

    def get_balances(self) -> Dict[str, int]:
        return dict(self._balances)
