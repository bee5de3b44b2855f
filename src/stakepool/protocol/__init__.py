"""
stakepool/protocol/

Period-based accrual and stake lifecycle.
"""

from .periods import PeriodEntry, PeriodRateTable
from .accounts import AccountStake, StakeState
from .accrual import AccrualSegment, accrue, accrual_segments, segment_yield
from .pool import PoolState, RewardsPool
from .staking import StakingManager

__all__ = [
    "PeriodEntry",
    "PeriodRateTable",
    "AccountStake",
    "StakeState",
    "AccrualSegment",
    "accrue",
    "accrual_segments",
    "segment_yield",
    "PoolState",
    "RewardsPool",
    "StakingManager",
]
