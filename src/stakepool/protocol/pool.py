"""
stakepool/protocol/pool.py

Rewards Pool Accountant.

Tracks the liquidity available to pay yield and the principal held in
custody. Payouts are all-or-nothing: a payout larger than the available
yield is refused outright.
"""

import logging
from dataclasses import dataclass, asdict, replace

from ..errors import InsufficientPool, InvalidAmount, TransferFailed
from ..ledger import TokenLedger

logger = logging.getLogger("stakepool.protocol.pool")


@dataclass
class PoolState:
    """Pool counters."""
    total_deposited: int = 0
    total_yield_paid: int = 0
    available_yield: int = 0

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "PoolState":
        return cls(
            total_deposited=int(data.get("total_deposited", 0)),
            total_yield_paid=int(data.get("total_yield_paid", 0)),
            available_yield=int(data.get("available_yield", 0)),
        )


class RewardsPool:
    """
    Solvency-bounded rewards pool backed by a ledger custody account.

    Usage:
        pool = RewardsPool(ledger, custody_address="stakepool")
        pool.top_up("treasury", 1_000 * UNIT)
        pool.payout("alice", 5 * UNIT)
    """

    def __init__(self, ledger: TokenLedger, custody_address: str, state: PoolState = None):
        self.ledger = ledger
        self.custody_address = custody_address
        self.state = state or PoolState()

    @property
    def available_yield(self) -> int:
        return self.state.available_yield

    @property
    def total_yield_paid(self) -> int:
        return self.state.total_yield_paid

    @property
    def total_deposited(self) -> int:
        return self.state.total_deposited

    def can_cover(self, amount: int) -> bool:
        return amount <= self.state.available_yield

    # ========================================================================
    # LEDGER TRANSFERS
    # ========================================================================

    def _pull(self, sender: str, amount: int) -> None:
        try:
            ok = self.ledger.transfer_from(sender, self.custody_address, amount)
        except Exception as e:
            raise TransferFailed(f"transfer of {amount} from {sender} failed: {e}") from e
        if not ok:
            raise TransferFailed(f"transfer of {amount} from {sender} refused")

    def _push(self, recipient: str, amount: int) -> None:
        try:
            ok = self.ledger.transfer(recipient, amount)
        except Exception as e:
            raise TransferFailed(f"transfer of {amount} to {recipient} failed: {e}") from e
        if not ok:
            raise TransferFailed(f"transfer of {amount} to {recipient} refused")

    # ========================================================================
    # POOL OPERATIONS
    # ========================================================================

    def top_up(self, sender: str, amount: int) -> None:
        """Pull amount from sender and make it available for yield."""
        if amount <= 0:
            raise InvalidAmount(f"top-up amount must be positive, got {amount}")
        self._pull(sender, amount)
        self.state.available_yield += amount
        logger.info(f"Pool topped up by {amount} from {sender} (available {self.state.available_yield})")

    def reserve(self, amount: int) -> None:
        """
        Debit yield from the pool without a transfer.

        Used when yield is compounded into a stake and stays in custody.
        """
        if amount > self.state.available_yield:
            raise InsufficientPool(amount, self.state.available_yield)
        self.state.available_yield -= amount
        self.state.total_yield_paid += amount

    def payout(self, recipient: str, amount: int, principal: int = 0) -> None:
        """
        Pay amount of yield, plus optional principal, to recipient.

        Counters are updated before the transfer; callers restore a
        snapshot if the transfer fails.
        """
        self.reserve(amount)
        if principal:
            self.release_principal(principal)
        total = amount + principal
        if total > 0:
            self._push(recipient, total)
        logger.debug(f"Paid {amount} yield + {principal} principal to {recipient}")

    def receive_principal(self, sender: str, amount: int) -> None:
        self._pull(sender, amount)
        self.state.total_deposited += amount

    def add_principal(self, amount: int) -> None:
        """Count compounded yield as principal."""
        self.state.total_deposited += amount

    def release_principal(self, amount: int) -> None:
        self.state.total_deposited -= amount

    def refund_principal(self, recipient: str, amount: int) -> None:
        """Return principal only; never touches available yield."""
        self.release_principal(amount)
        self._push(recipient, amount)

    # ========================================================================
    # SNAPSHOTS
    # ========================================================================

    def snapshot(self) -> PoolState:
        return replace(self.state)

    def restore(self, state: PoolState) -> None:
        self.state = replace(state)

    def get_stats(self) -> dict:
        return self.state.to_dict()
