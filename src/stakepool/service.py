"""
stakepool/service.py

Async facade over StakingManager for use inside a trio application.

StakingManager assumes serialized callers. StakingService restores that
guarantee for concurrent tasks: each account operation holds the account's
lock and the global pool lock while it computes yield, debits the pool and
persists the resulting snapshot.

Usage:
    service = StakingService(manager, store=StateStore("main", FileBackend()))
    await service.start()

    await service.deposit("alice", 100 * UNIT)
    await service.claim("alice")
"""

import logging
from collections import defaultdict
from typing import Any, Callable, Dict, Optional

import trio

from .ledger import TokenLedger
from .protocol.accounts import StakeState
from .protocol.periods import PeriodEntry
from .protocol.staking import StakingManager
from .storage import StateStore

logger = logging.getLogger("stakepool.service")

DEFAULT_SNAPSHOT_INTERVAL = 300  # 5 minutes


class StakingService:
    """Lock-guarded, persisting wrapper around a StakingManager."""

    def __init__(
        self,
        manager: StakingManager,
        store: Optional[StateStore] = None,
    ):
        self.manager = manager
        self.store = store
        self._account_locks: Dict[str, trio.Lock] = defaultdict(trio.Lock)
        self._pool_lock = trio.Lock()
        self._started = False
        self._snapshot_scope: Optional[trio.CancelScope] = None

    @classmethod
    async def restore(
        cls,
        store: StateStore,
        ledger: TokenLedger,
        default: Callable[[], StakingManager],
        clock: Optional[Callable[[], int]] = None,
    ) -> "StakingService":
        """
        Build a service from the stored snapshot, or from default() if the
        store is empty.
        """
        manager = await store.load(ledger, clock=clock)
        if manager is None:
            logger.info(f"No stored state for {store.namespace}, starting fresh")
            manager = default()
        return cls(manager, store=store)

    # ========================================================================
    # LIFECYCLE
    # ========================================================================

    async def start(self, nursery: Optional[trio.Nursery] = None) -> bool:
        """
        Start the service.

        Args:
            nursery: Optional trio nursery for periodic snapshots

        Returns:
            True if started successfully
        """
        if self._started:
            return True
        if nursery is not None and self.store is not None:
            nursery.start_soon(self._snapshot_loop, DEFAULT_SNAPSHOT_INTERVAL)
        self._started = True
        logger.info("StakingService started")
        return True

    async def stop(self) -> None:
        if self._snapshot_scope is not None:
            self._snapshot_scope.cancel()
            self._snapshot_scope = None
        async with self._pool_lock:
            await self._persist_committed("stop")
        self._started = False
        logger.info("StakingService stopped")

    async def _snapshot_loop(self, interval: int) -> None:
        """Background task persisting the state periodically."""
        self._snapshot_scope = trio.CancelScope()
        with self._snapshot_scope:
            while True:
                await trio.sleep(interval)
                async with self._pool_lock:
                    await self.persist()

    async def persist(self) -> bool:
        if self.store is None:
            return True
        return await self.store.save(self.manager)

    async def _persist_committed(self, operation: str) -> None:
        if not await self.persist():
            logger.error(f"State after {operation} is committed in memory but was not persisted")

    # ========================================================================
    # SERIALIZED EXECUTION
    # ========================================================================

    async def _run_for_account(self, account: str, operation: Callable[..., Any], *args) -> Any:
        lock = self._account_locks[account]
        try:
            async with lock:
                async with self._pool_lock:
                    result = operation(account, *args)
                    await self._persist_committed(operation.__name__)
                    return result
        finally:
            self._release_account_lock(account, lock)

    def _release_account_lock(self, account: str, lock: trio.Lock) -> None:
        """Forget the lock of an account left without a stake once nobody holds or awaits it."""
        if self.manager.stake_state(account) != StakeState.EMPTY:
            return
        stats = lock.statistics()
        if stats.locked or stats.tasks_waiting:
            return
        if self._account_locks.get(account) is lock:
            del self._account_locks[account]

    async def _run_admin(self, operation: Callable[..., Any], *args) -> Any:
        async with self._pool_lock:
            result = operation(*args)
            await self._persist_committed(operation.__name__)
            return result

    # ========================================================================
    # ACCOUNT OPERATIONS
    # ========================================================================

    async def deposit(self, account: str, amount: int, now: Optional[int] = None) -> int:
        return await self._run_for_account(account, self.manager.deposit, amount, now)

    async def request_unstake(self, account: str, now: Optional[int] = None) -> int:
        return await self._run_for_account(account, self.manager.request_unstake, now)

    async def withdraw(self, account: str, now: Optional[int] = None) -> int:
        return await self._run_for_account(account, self.manager.withdraw, now)

    async def claim(self, account: str, now: Optional[int] = None) -> int:
        return await self._run_for_account(account, self.manager.claim, now)

    async def claim_and_restake(self, account: str, now: Optional[int] = None) -> int:
        return await self._run_for_account(account, self.manager.claim_and_restake, now)

    async def emergency_exit(self, account: str, now: Optional[int] = None) -> int:
        return await self._run_for_account(account, self.manager.emergency_exit, now)

    # ========================================================================
    # ADMINISTRATION
    # ========================================================================

    async def set_period(
        self,
        caller: str,
        index: int,
        rate_bps: int,
        now: Optional[int] = None,
    ) -> PeriodEntry:
        return await self._run_admin(self.manager.set_period, caller, index, rate_bps, now)

    async def set_cooldown(self, caller: str, seconds: int) -> None:
        return await self._run_admin(self.manager.set_cooldown, caller, seconds)

    async def set_yield_start_delay(self, caller: str, seconds: int) -> None:
        return await self._run_admin(self.manager.set_yield_start_delay, caller, seconds)

    async def top_up(self, caller: str, amount: int) -> int:
        return await self._run_admin(self.manager.top_up, caller, amount)

    # ========================================================================
    # VIEWS
    # ========================================================================

    def pending_yield(self, account: str, now: Optional[int] = None) -> int:
        return self.manager.pending_yield(account, now)

    def get_stats(self, now: Optional[int] = None) -> dict:
        return self.manager.get_stats(now)
