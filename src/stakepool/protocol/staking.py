"""
stakepool/protocol/staking.py

Stake Lifecycle Controller.

Drives each account through its lifecycle:

    EMPTY --deposit--> STAKED --request_unstake--> UNSTAKE_PENDING --withdraw--> EMPTY
    STAKED --deposit / claim / claim_and_restake--> STAKED
    STAKED --emergency_exit--> EMERGENCY_PENDING --emergency_exit--> EMPTY
    UNSTAKE_PENDING --emergency_exit (after cooldown)--> EMPTY

Yield is computed by the accrual calculator against the period rate table
and paid from the rewards pool. emergency_exit returns principal only and
is never blocked by pool solvency.

Every operation is atomic: account and pool state are snapshotted on entry
and restored if anything raises, and events are only delivered after the
operation commits.
"""

import time
import logging
from contextlib import contextmanager
from typing import Callable, Dict, Iterator, List, Optional

from ..config import MAX_LOCK_TIME, StakingConfig
from ..errors import (
    AlreadyPending,
    InvalidAmount,
    InvalidParameter,
    NoStake,
    NotPending,
    NoYield,
    StakingError,
    StillInCooldown,
    Unauthorized,
)
from ..events import (
    Deposited,
    EmergencyWithdrawn,
    EventCallback,
    EventEmitter,
    ParameterUpdated,
    PoolToppedUp,
    RateUpdated,
    StakingEvent,
    UnstakeRequested,
    Withdrawn,
    YieldClaimed,
)
from ..ledger import TokenLedger
from .accounts import AccountStake, StakeState
from .accrual import accrue
from .periods import PeriodEntry, PeriodRateTable
from .pool import PoolState, RewardsPool

logger = logging.getLogger("stakepool.protocol.staking")


def _check_amount(amount: int) -> None:
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise InvalidAmount(f"amount must be a positive integer, got {amount!r}")


class StakingManager:
    """
    Per-account stake state machine on top of a rewards pool.

    Usage:
        ledger = InMemoryLedger(owner="stakepool")
        manager = StakingManager(ledger, StakingConfig(admin="admin"))

        manager.top_up("admin", 1_000 * UNIT)
        manager.deposit("alice", 100 * UNIT)

        # Later
        manager.claim("alice")
        manager.request_unstake("alice")
        manager.withdraw("alice")   # after the cooldown
    """

    def __init__(
        self,
        ledger: TokenLedger,
        config: Optional[StakingConfig] = None,
        clock: Optional[Callable[[], int]] = None,
        table: Optional[PeriodRateTable] = None,
        pool_state: Optional[PoolState] = None,
    ):
        """
        Initialize StakingManager.

        Args:
            ledger: Ledger asset backend holding custody funds
            config: Engine parameters (defaults to StakingConfig())
            clock: Returns the current Unix time; used when an operation
                is called without an explicit now
            table: Existing rate table (restored state)
            pool_state: Existing pool counters (restored state)
        """
        self.config = config or StakingConfig()
        if not 0 <= self.config.cooldown <= MAX_LOCK_TIME:
            raise InvalidParameter(f"cooldown must be within [0, {MAX_LOCK_TIME}]")
        if self.config.yield_start_delay < 0:
            raise InvalidParameter("yield_start_delay must be non-negative")

        self.ledger = ledger
        self.table = table or PeriodRateTable(
            program_start=self.config.program_start,
            initial_rate_bps=self.config.initial_rate_bps,
        )
        self.pool = RewardsPool(ledger, self.config.custody_address, pool_state)
        self.cooldown = self.config.cooldown
        self.yield_start_delay = self.config.yield_start_delay

        self._accounts: Dict[str, AccountStake] = {}
        self._events = EventEmitter()
        self._clock = clock or (lambda: int(time.time()))

    # ========================================================================
    # INTERNALS
    # ========================================================================

    def _now(self, now: Optional[int]) -> int:
        return self._clock() if now is None else int(now)

    def _require_admin(self, caller: str) -> None:
        if caller != self.config.admin:
            raise Unauthorized(f"{caller} is not the administrator")

    def _require_stake(self, account: str) -> AccountStake:
        stake = self._accounts.get(account)
        if stake is None or stake.amount == 0:
            raise NoStake(f"{account} has no stake")
        return stake

    @contextmanager
    def _atomic(self, operation: str, account: Optional[str] = None) -> Iterator[List[StakingEvent]]:
        """Run one operation; restore state on error, then deliver events."""
        pool_snapshot = self.pool.snapshot()
        existing = self._accounts.get(account) if account is not None else None
        stake_snapshot = existing.copy() if existing is not None else None
        pending: List[StakingEvent] = []

        try:
            yield pending
        except Exception as e:
            self.pool.restore(pool_snapshot)
            if account is not None:
                if stake_snapshot is not None:
                    self._accounts[account] = stake_snapshot
                else:
                    self._accounts.pop(account, None)
            if isinstance(e, StakingError):
                logger.warning(f"{operation} rejected for {account or 'pool'}: {type(e).__name__}: {e}")
            raise

        for event in pending:
            self._events.emit(event)

    # ========================================================================
    # EVENTS
    # ========================================================================

    def on_event(self, callback: EventCallback) -> None:
        """Register a callback for every committed event."""
        self._events.subscribe(callback)

    def remove_event_callback(self, callback: EventCallback) -> None:
        self._events.unsubscribe(callback)

    # ========================================================================
    # ACCOUNT OPERATIONS
    # ========================================================================

    def deposit(self, account: str, amount: int, now: Optional[int] = None) -> int:
        """
        Deposit amount and compound any pending yield.

        Restarts the yield-start delay for the whole resulting balance.
        Fails with InsufficientPool if pending yield cannot be covered.

        Returns:
            New staked amount
        """
        now = self._now(now)
        _check_amount(amount)

        with self._atomic("deposit", account) as events:
            stake = self._accounts.setdefault(account, AccountStake())

            compounded = accrue(stake, now, self.table, self.yield_start_delay)
            if compounded > 0:
                self.pool.reserve(compounded)
                self.pool.add_principal(compounded)
                stake.amount += compounded
                events.append(YieldClaimed(account, compounded, restaked=True))

            stake.amount += amount
            stake.first_deposit = True
            stake.last_accrual_time = now
            stake.unstake_request_time = 0
            stake.emergency_requested = False

            self.pool.receive_principal(account, amount)
            events.append(Deposited(account, amount))

        logger.info(f"{account} deposited {amount} (compounded {compounded}, staked {stake.amount})")
        return stake.amount

    def request_unstake(self, account: str, now: Optional[int] = None) -> int:
        """
        Start the cooldown; accrual stops at this moment.

        Returns:
            Timestamp of the request
        """
        now = self._now(now)

        with self._atomic("request_unstake", account) as events:
            stake = self._require_stake(account)
            if stake.is_pending:
                raise AlreadyPending(f"{account} already requested unstake at {stake.unstake_request_time}")
            stake.unstake_request_time = now
            events.append(UnstakeRequested(account, stake.amount))

        logger.info(f"{account} requested unstake of {stake.amount}")
        return now

    def withdraw(self, account: str, now: Optional[int] = None) -> int:
        """
        Pay out principal plus yield once the cooldown has passed.

        Returns:
            Total amount transferred
        """
        now = self._now(now)

        with self._atomic("withdraw", account) as events:
            stake = self._require_stake(account)
            if not stake.is_pending:
                raise NotPending(f"{account} has not requested unstake")
            ready_at = stake.unstake_request_time + self.cooldown
            if now <= ready_at:
                raise StillInCooldown(ready_at)

            reward = accrue(stake, now, self.table, self.yield_start_delay)
            principal = stake.amount
            del self._accounts[account]
            self.pool.payout(account, reward, principal=principal)
            events.append(Withdrawn(account, principal + reward))

        logger.info(f"{account} withdrew {principal} principal + {reward} yield")
        return principal + reward

    def claim(self, account: str, now: Optional[int] = None) -> int:
        """
        Pay out accrued yield.

        A zero claim is a no-op: no transfer, no event.

        Returns:
            Yield paid
        """
        now = self._now(now)

        with self._atomic("claim", account) as events:
            stake = self._accounts.get(account)
            reward = accrue(stake, now, self.table, self.yield_start_delay) if stake else 0
            if reward == 0:
                return 0
            stake.last_accrual_time = now
            stake.first_deposit = False
            self.pool.payout(account, reward)
            events.append(YieldClaimed(account, reward))

        logger.info(f"{account} claimed {reward}")
        return reward

    def claim_and_restake(self, account: str, now: Optional[int] = None) -> int:
        """
        Add accrued yield to the stake without moving funds.

        Cancels a pending unstake request. Does not re-arm the yield-start
        delay.

        Returns:
            Yield restaked
        """
        now = self._now(now)

        with self._atomic("claim_and_restake", account) as events:
            stake = self._accounts.get(account)
            reward = accrue(stake, now, self.table, self.yield_start_delay) if stake else 0
            if reward == 0:
                raise NoYield(f"{account} has no yield to restake")

            self.pool.reserve(reward)
            self.pool.add_principal(reward)
            stake.amount += reward
            stake.last_accrual_time = now
            stake.unstake_request_time = 0
            stake.emergency_requested = False
            stake.first_deposit = False
            events.append(YieldClaimed(account, reward, restaked=True))

        logger.info(f"{account} restaked {reward} (staked {stake.amount})")
        return reward

    def emergency_exit(self, account: str, now: Optional[int] = None) -> int:
        """
        Two-call principal recovery.

        From STAKED the first call arms the cooldown and returns 0. From
        EMERGENCY_PENDING or UNSTAKE_PENDING, once the cooldown has passed,
        the principal is refunded and the account emptied. Accrued yield is
        forfeited.

        Returns:
            Principal refunded (0 when the call only armed the cooldown)
        """
        now = self._now(now)

        with self._atomic("emergency_exit", account) as events:
            stake = self._require_stake(account)
            if stake.state == StakeState.STAKED:
                self._arm_emergency(account, stake, now, events)
                refunded = 0
            else:
                refunded = self._complete_emergency(account, stake, now, events)

        return refunded

    def _arm_emergency(
        self,
        account: str,
        stake: AccountStake,
        now: int,
        events: List[StakingEvent],
    ) -> None:
        stake.unstake_request_time = now
        stake.emergency_requested = True
        events.append(UnstakeRequested(account, stake.amount))
        logger.info(f"{account} armed emergency exit (ready after {now + self.cooldown})")

    def _complete_emergency(
        self,
        account: str,
        stake: AccountStake,
        now: int,
        events: List[StakingEvent],
    ) -> int:
        ready_at = stake.unstake_request_time + self.cooldown
        if now <= ready_at:
            raise StillInCooldown(ready_at)
        principal = stake.amount
        del self._accounts[account]
        self.pool.refund_principal(account, principal)
        events.append(EmergencyWithdrawn(account, principal))
        logger.warning(f"{account} emergency-withdrew {principal} principal, yield forfeited")
        return principal

    # ========================================================================
    # ADMINISTRATION
    # ========================================================================

    def set_period(
        self,
        caller: str,
        index: int,
        rate_bps: int,
        now: Optional[int] = None,
    ) -> PeriodEntry:
        """Set the annual rate for a period (admin only)."""
        self._require_admin(caller)
        now = self._now(now)
        with self._atomic("set_period") as events:
            entry = self.table.set_period(index, rate_bps, now)
            events.append(RateUpdated(index, rate_bps, entry.start_time))
        return entry

    def set_cooldown(self, caller: str, seconds: int) -> None:
        """Set the unstake cooldown, bounded by MAX_LOCK_TIME (admin only)."""
        self._require_admin(caller)
        if not 0 <= seconds <= MAX_LOCK_TIME:
            raise InvalidParameter(f"cooldown must be within [0, {MAX_LOCK_TIME}], got {seconds}")
        with self._atomic("set_cooldown") as events:
            self.cooldown = seconds
            events.append(ParameterUpdated("cooldown", seconds))
        logger.info(f"Cooldown set to {seconds}s")

    def set_yield_start_delay(self, caller: str, seconds: int) -> None:
        """Set the post-deposit yield-start delay (admin only)."""
        self._require_admin(caller)
        if seconds < 0:
            raise InvalidParameter(f"yield_start_delay must be non-negative, got {seconds}")
        with self._atomic("set_yield_start_delay") as events:
            self.yield_start_delay = seconds
            events.append(ParameterUpdated("yield_start_delay", seconds))
        logger.info(f"Yield-start delay set to {seconds}s")

    def top_up(self, caller: str, amount: int) -> int:
        """
        Fund the rewards pool from the caller's balance (admin only).

        Returns:
            Available yield after the top-up
        """
        self._require_admin(caller)
        _check_amount(amount)
        with self._atomic("top_up") as events:
            self.pool.top_up(caller, amount)
            events.append(PoolToppedUp(amount))
        return self.pool.available_yield

    # ========================================================================
    # VIEWS
    # ========================================================================

    def get_stake(self, account: str) -> AccountStake:
        """Copy of the account's stake record (empty if none)."""
        stake = self._accounts.get(account)
        return stake.copy() if stake else AccountStake()

    def stake_state(self, account: str) -> StakeState:
        return self.get_stake(account).state

    def accounts(self) -> List[str]:
        return [a for a, s in self._accounts.items() if s.amount > 0]

    def pending_yield(self, account: str, now: Optional[int] = None) -> int:
        stake = self._accounts.get(account)
        if stake is None:
            return 0
        return accrue(stake, self._now(now), self.table, self.yield_start_delay)

    def withdrawable_at(self, account: str) -> Optional[int]:
        """First timestamp at which withdraw() succeeds, or None if not pending."""
        stake = self._accounts.get(account)
        if stake is None or not stake.is_pending:
            return None
        return stake.unstake_request_time + self.cooldown + 1

    def total_pending_yield(self, now: Optional[int] = None) -> int:
        now = self._now(now)
        return sum(
            accrue(stake, now, self.table, self.yield_start_delay)
            for stake in self._accounts.values()
        )

    def get_stats(self, now: Optional[int] = None) -> dict:
        """Get statistics about stakes and the pool."""
        now = self._now(now)
        states = [s.state for s in self._accounts.values()]
        pending_yield = self.total_pending_yield(now)
        return {
            "accounts": sum(1 for s in states if s != StakeState.EMPTY),
            "staked": states.count(StakeState.STAKED),
            "unstake_pending": states.count(StakeState.UNSTAKE_PENDING),
            "emergency_pending": states.count(StakeState.EMERGENCY_PENDING),
            "total_deposited": self.pool.total_deposited,
            "total_yield_paid": self.pool.total_yield_paid,
            "available_yield": self.pool.available_yield,
            "pending_yield": pending_yield,
            "solvent": pending_yield <= self.pool.available_yield,
            "periods_configured": len(self.table),
            "current_period": self.table.current_index(now),
            "current_rate_bps": self.table[self.table.lookup(now)].annual_rate_bps,
            "cooldown": self.cooldown,
            "yield_start_delay": self.yield_start_delay,
            "program_end": self.table.program_end,
        }

    # ========================================================================
    # SERIALIZATION
    # ========================================================================

    def to_dict(self) -> dict:
        """Snapshot of all persisted state."""
        config = self.config.to_dict()
        config["cooldown"] = self.cooldown
        config["yield_start_delay"] = self.yield_start_delay
        return {
            "config": config,
            "periods": self.table.to_dict(),
            "pool": self.pool.state.to_dict(),
            "accounts": {a: s.to_dict() for a, s in self._accounts.items()},
        }

    @classmethod
    def from_dict(
        cls,
        data: dict,
        ledger: TokenLedger,
        clock: Optional[Callable[[], int]] = None,
    ) -> "StakingManager":
        """Rebuild a manager from a to_dict() snapshot."""
        manager = cls(
            ledger,
            config=StakingConfig.from_dict(data["config"]),
            clock=clock,
            table=PeriodRateTable.from_dict(data["periods"]),
            pool_state=PoolState.from_dict(data.get("pool", {})),
        )
        manager._accounts = {
            account: AccountStake.from_dict(record)
            for account, record in data.get("accounts", {}).items()
        }
        return manager
