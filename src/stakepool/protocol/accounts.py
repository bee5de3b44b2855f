"""
stakepool/protocol/accounts.py

Per-account stake records and their lifecycle states.
"""

from dataclasses import dataclass, asdict, replace
from enum import Enum


class StakeState(Enum):
    """Lifecycle state of an account's stake."""
    EMPTY = "empty"
    STAKED = "staked"
    UNSTAKE_PENDING = "unstake_pending"
    EMERGENCY_PENDING = "emergency_pending"


@dataclass
class AccountStake:
    """
    Stake record for one account.

    unstake_request_time of 0 means no request is pending. An empty record
    always has no pending request.
    """
    amount: int = 0                     # Principal, including compounded yield
    last_accrual_time: int = 0          # Yield accrues from here
    unstake_request_time: int = 0       # Accrual stops here (0 = not requested)
    first_deposit: bool = False         # Yield-start delay still applies
    emergency_requested: bool = False   # Request armed by emergency_exit

    @property
    def state(self) -> StakeState:
        if self.amount == 0:
            return StakeState.EMPTY
        if self.unstake_request_time == 0:
            return StakeState.STAKED
        if self.emergency_requested:
            return StakeState.EMERGENCY_PENDING
        return StakeState.UNSTAKE_PENDING

    @property
    def is_pending(self) -> bool:
        return self.unstake_request_time != 0

    def copy(self) -> "AccountStake":
        return replace(self)

    def clear(self) -> None:
        """Zero the record after a withdrawal or emergency exit."""
        self.amount = 0
        self.last_accrual_time = 0
        self.unstake_request_time = 0
        self.first_deposit = False
        self.emergency_requested = False

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "AccountStake":
        return cls(
            amount=int(data.get("amount", 0)),
            last_accrual_time=int(data.get("last_accrual_time", 0)),
            unstake_request_time=int(data.get("unstake_request_time", 0)),
            first_deposit=bool(data.get("first_deposit", False)),
            emergency_requested=bool(data.get("emergency_requested", False)),
        )
