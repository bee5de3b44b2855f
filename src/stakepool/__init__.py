"""
stakepool - Period-based token staking engine

Accounts deposit a ledger asset, accrue yield priced by a schedule of
quarterly periods, and withdraw principal plus yield after a cooldown.
An emergency exit always returns principal, even when the rewards pool
cannot cover accrued yield.

Usage:
    from stakepool import StakingManager, StakingConfig, InMemoryLedger, UNIT

    ledger = InMemoryLedger(owner="stakepool")
    ledger.mint("admin", 10_000 * UNIT)
    ledger.mint("alice", 100 * UNIT)

    manager = StakingManager(ledger, StakingConfig(admin="admin"))
    manager.top_up("admin", 10_000 * UNIT)
    manager.deposit("alice", 100 * UNIT)

Async Usage:
    from stakepool.service import StakingService
    from stakepool.storage import StateStore, FileBackend

    service = StakingService(manager, store=StateStore("main", FileBackend()))
    await service.start()
    await service.claim("alice")

Metrics Usage:
    from stakepool.metrics import StakingMetrics

    metrics = StakingMetrics(manager)
    prometheus_output = metrics.collect()
"""

from .config import (
    StakingConfig,
    UNIT,
    PERIOD_LENGTH,
    PROGRAM_DURATION,
    SECONDS_PER_YEAR,
    MAX_LOCK_TIME,
)
from .errors import (
    StakingError,
    InputError,
    InvalidAmount,
    ZeroRate,
    NonSequential,
    InvalidParameter,
    StateConflict,
    NoStake,
    AlreadyPending,
    NotPending,
    NoYield,
    TemporalError,
    StillInCooldown,
    PeriodAlreadyEnded,
    ProgramEnded,
    SolvencyError,
    InsufficientPool,
    TransferFailed,
    Unauthorized,
)
from .events import (
    StakingEvent,
    Deposited,
    UnstakeRequested,
    Withdrawn,
    YieldClaimed,
    RateUpdated,
    PoolToppedUp,
    EmergencyWithdrawn,
    ParameterUpdated,
)
from .ledger import TokenLedger, InMemoryLedger
from .protocol import (
    PeriodEntry,
    PeriodRateTable,
    AccountStake,
    StakeState,
    AccrualSegment,
    accrue,
    accrual_segments,
    PoolState,
    RewardsPool,
    StakingManager,
)

__version__ = "0.1.0"

__all__ = [
    # Config
    "StakingConfig",
    "UNIT",
    "PERIOD_LENGTH",
    "PROGRAM_DURATION",
    "SECONDS_PER_YEAR",
    "MAX_LOCK_TIME",
    # Errors
    "StakingError",
    "InputError",
    "InvalidAmount",
    "ZeroRate",
    "NonSequential",
    "InvalidParameter",
    "StateConflict",
    "NoStake",
    "AlreadyPending",
    "NotPending",
    "NoYield",
    "TemporalError",
    "StillInCooldown",
    "PeriodAlreadyEnded",
    "ProgramEnded",
    "SolvencyError",
    "InsufficientPool",
    "TransferFailed",
    "Unauthorized",
    # Events
    "StakingEvent",
    "Deposited",
    "UnstakeRequested",
    "Withdrawn",
    "YieldClaimed",
    "RateUpdated",
    "PoolToppedUp",
    "EmergencyWithdrawn",
    "ParameterUpdated",
    # Ledger
    "TokenLedger",
    "InMemoryLedger",
    # Protocol
    "PeriodEntry",
    "PeriodRateTable",
    "AccountStake",
    "StakeState",
    "AccrualSegment",
    "accrue",
    "accrual_segments",
    "PoolState",
    "RewardsPool",
    "StakingManager",
]
