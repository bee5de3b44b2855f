"""
Tests for stakepool/protocol/staking.py

Tests the stake lifecycle: deposit, unstake, withdraw, claim, restake,
emergency exit, administration and pool solvency.
"""

import pytest
from unittest.mock import Mock

from stakepool.config import MAX_LOCK_TIME, PERIOD_LENGTH, SECONDS_PER_DAY, UNIT, StakingConfig
from stakepool.errors import (
    AlreadyPending,
    InsufficientPool,
    InvalidAmount,
    InvalidParameter,
    NonSequential,
    NoStake,
    NotPending,
    NoYield,
    StillInCooldown,
    TransferFailed,
    Unauthorized,
)
from stakepool.events import (
    Deposited,
    EmergencyWithdrawn,
    ParameterUpdated,
    PoolToppedUp,
    RateUpdated,
    UnstakeRequested,
    Withdrawn,
    YieldClaimed,
)
from stakepool.ledger import InMemoryLedger, TokenLedger
from stakepool.protocol.accounts import StakeState
from stakepool.protocol.accrual import segment_yield
from stakepool.protocol.staking import StakingManager


START = 1_700_000_000
DAY = SECONDS_PER_DAY
COOLDOWN = 7 * DAY
HALF_YEAR = 365 * DAY // 2
CUSTODY = "stakepool"
ADMIN = "admin"


# ============================================================================
# TEST DATA
# ============================================================================

def create_test_config(yield_start_delay: int = 0, cooldown: int = COOLDOWN) -> StakingConfig:
    return StakingConfig(
        admin=ADMIN,
        custody_address=CUSTODY,
        initial_rate_bps=1000,
        program_start=START,
        cooldown=cooldown,
        yield_start_delay=yield_start_delay,
    )


def create_test_ledger() -> InMemoryLedger:
    ledger = InMemoryLedger(owner=CUSTODY)
    ledger.mint(ADMIN, 10_000 * UNIT)
    ledger.mint("alice", 1_000 * UNIT)
    ledger.mint("bob", 1_000 * UNIT)
    return ledger


def create_test_manager(ledger=None, top_up: int = 1_000 * UNIT, **config_kwargs) -> StakingManager:
    """Create a manager with a funded rewards pool and a frozen clock."""
    ledger = ledger or create_test_ledger()
    manager = StakingManager(ledger, create_test_config(**config_kwargs), clock=lambda: START)
    if top_up:
        manager.top_up(ADMIN, top_up)
    return manager


def record_events(manager: StakingManager) -> list:
    events = []
    manager.on_event(events.append)
    return events


def assert_empty_invariant(manager: StakingManager, *accounts: str) -> None:
    for account in accounts:
        stake = manager.get_stake(account)
        if stake.amount == 0:
            assert stake.unstake_request_time == 0


@pytest.fixture
def ledger():
    return create_test_ledger()


@pytest.fixture
def manager(ledger):
    return create_test_manager(ledger)


# ============================================================================
# DEPOSIT TESTS
# ============================================================================

class TestDeposit:

    def test_deposit_creates_stake(self, manager, ledger):
        events = record_events(manager)

        staked = manager.deposit("alice", 100 * UNIT, now=START)

        assert staked == 100 * UNIT
        stake = manager.get_stake("alice")
        assert stake.first_deposit is True
        assert stake.last_accrual_time == START
        assert manager.stake_state("alice") == StakeState.STAKED
        assert manager.pool.total_deposited == 100 * UNIT
        assert ledger.balance_of("alice") == 900 * UNIT
        assert events == [Deposited("alice", 100 * UNIT)]

    @pytest.mark.parametrize("amount", [0, -5, 1.5, True])
    def test_invalid_amount(self, manager, ledger, amount):
        with pytest.raises(InvalidAmount):
            manager.deposit("alice", amount, now=START)
        assert manager.stake_state("alice") == StakeState.EMPTY
        assert ledger.balance_of("alice") == 1_000 * UNIT

    def test_deposit_compounds_pending_yield(self, manager):
        events = record_events(manager)
        manager.deposit("alice", 100 * UNIT, now=START)
        pending = manager.pending_yield("alice", now=START + 30 * DAY)

        staked = manager.deposit("alice", 50 * UNIT, now=START + 30 * DAY)

        assert pending > 0
        assert staked == 150 * UNIT + pending
        assert manager.pool.total_yield_paid == pending
        assert manager.pool.total_deposited == staked
        assert YieldClaimed("alice", pending, restaked=True) in events

    def test_deposit_restarts_delay_for_whole_balance(self):
        manager = create_test_manager(yield_start_delay=DAY)
        manager.deposit("alice", 100 * UNIT, now=START)
        manager.deposit("alice", 1 * UNIT, now=START + 10 * DAY)

        assert manager.pending_yield("alice", now=START + 10 * DAY + DAY) == 0
        assert manager.pending_yield("alice", now=START + 12 * DAY) == segment_yield(
            manager.get_stake("alice").amount, 1000, DAY
        )

    def test_deposit_fails_when_pool_cannot_cover_yield(self, ledger):
        manager = create_test_manager(ledger, top_up=1 * UNIT)
        manager.deposit("alice", 100 * UNIT, now=START)
        before = manager.get_stake("alice")

        with pytest.raises(InsufficientPool):
            manager.deposit("alice", 10 * UNIT, now=START + HALF_YEAR)

        assert manager.get_stake("alice") == before
        assert ledger.balance_of("alice") == 900 * UNIT
        assert manager.pool.available_yield == 1 * UNIT

    def test_deposit_cancels_pending_unstake(self, manager):
        manager.deposit("alice", 100 * UNIT, now=START)
        manager.emergency_exit("alice", now=START + DAY)
        manager.deposit("alice", 1 * UNIT, now=START + 2 * DAY)

        stake = manager.get_stake("alice")
        assert stake.unstake_request_time == 0
        assert stake.emergency_requested is False
        assert manager.stake_state("alice") == StakeState.STAKED

    def test_refused_pull_leaves_no_stake(self, manager):
        with pytest.raises(TransferFailed):
            manager.deposit("pauper", 5 * UNIT, now=START)
        assert manager.stake_state("pauper") == StakeState.EMPTY
        assert manager.pool.total_deposited == 0


# ============================================================================
# UNSTAKE / WITHDRAW TESTS
# ============================================================================

class TestUnstakeAndWithdraw:

    def test_request_without_stake(self, manager):
        with pytest.raises(NoStake):
            manager.request_unstake("alice", now=START)

    def test_request_twice(self, manager):
        manager.deposit("alice", 100 * UNIT, now=START)
        manager.request_unstake("alice", now=START + DAY)
        with pytest.raises(AlreadyPending):
            manager.request_unstake("alice", now=START + 2 * DAY)

    def test_request_freezes_accrual(self, manager):
        events = record_events(manager)
        manager.deposit("alice", 100 * UNIT, now=START)
        manager.request_unstake("alice", now=START + 30 * DAY)

        frozen = manager.pending_yield("alice", now=START + 30 * DAY)
        assert manager.pending_yield("alice", now=START + 300 * DAY) == frozen
        assert manager.stake_state("alice") == StakeState.UNSTAKE_PENDING
        assert UnstakeRequested("alice", 100 * UNIT) in events

    def test_withdraw_requires_request(self, manager):
        manager.deposit("alice", 100 * UNIT, now=START)
        with pytest.raises(NotPending):
            manager.withdraw("alice", now=START + 30 * DAY)

    def test_withdraw_without_stake(self, manager):
        with pytest.raises(NoStake):
            manager.withdraw("alice", now=START)

    def test_withdraw_in_cooldown(self, manager):
        manager.deposit("alice", 100 * UNIT, now=START)
        manager.request_unstake("alice", now=START + 30 * DAY)

        with pytest.raises(StillInCooldown) as exc_info:
            manager.withdraw("alice", now=START + 30 * DAY + COOLDOWN)
        assert exc_info.value.ready_at == START + 30 * DAY + COOLDOWN
        assert manager.withdrawable_at("alice") == START + 30 * DAY + COOLDOWN + 1

    def test_withdraw_pays_principal_and_yield(self, manager, ledger):
        events = record_events(manager)
        manager.deposit("alice", 100 * UNIT, now=START)
        manager.request_unstake("alice", now=START + 30 * DAY)
        expected_yield = segment_yield(100 * UNIT, 1000, 30 * DAY)

        total = manager.withdraw("alice", now=START + 30 * DAY + COOLDOWN + 1)

        assert total == 100 * UNIT + expected_yield
        assert ledger.balance_of("alice") == 1_000 * UNIT + expected_yield
        assert manager.stake_state("alice") == StakeState.EMPTY
        assert manager.pool.total_deposited == 0
        assert manager.pool.total_yield_paid == expected_yield
        assert events[-1] == Withdrawn("alice", total)
        assert_empty_invariant(manager, "alice")

    def test_failed_transfer_restores_state(self):
        mock_ledger = Mock(spec=TokenLedger)
        mock_ledger.transfer_from = Mock(return_value=True)
        mock_ledger.transfer = Mock(return_value=False)
        manager = create_test_manager(mock_ledger)
        events = record_events(manager)
        manager.deposit("alice", 100 * UNIT, now=START)
        manager.request_unstake("alice", now=START + 30 * DAY)
        stake_before = manager.get_stake("alice")
        pool_before = manager.pool.snapshot()

        with pytest.raises(TransferFailed):
            manager.withdraw("alice", now=START + 60 * DAY)

        assert manager.get_stake("alice") == stake_before
        assert manager.pool.state == pool_before
        assert not any(isinstance(e, Withdrawn) for e in events)


# ============================================================================
# CLAIM TESTS
# ============================================================================

class TestClaim:

    def test_claim_one_period(self, manager, ledger):
        """100 tokens at 10% for one 90-day period."""
        manager.deposit("alice", 100 * UNIT, now=START)
        available = manager.pool.available_yield
        expected = 100 * UNIT * 1000 * 7_776_000 // (10_000 * 31_536_000)

        claimed = manager.claim("alice", now=START + PERIOD_LENGTH)

        assert claimed == expected
        assert manager.pool.available_yield == available - expected
        assert ledger.balance_of("alice") == 900 * UNIT + expected
        stake = manager.get_stake("alice")
        assert stake.last_accrual_time == START + PERIOD_LENGTH
        assert stake.first_deposit is False

    def test_second_claim_is_noop(self, manager):
        events = record_events(manager)
        manager.deposit("alice", 100 * UNIT, now=START)
        manager.claim("alice", now=START + 10 * DAY)
        count = len(events)

        assert manager.claim("alice", now=START + 10 * DAY) == 0
        assert len(events) == count

    def test_claim_inside_delay(self):
        manager = create_test_manager(yield_start_delay=DAY)
        manager.deposit("alice", 100 * UNIT, now=START)
        assert manager.claim("alice", now=START + DAY) == 0
        assert manager.get_stake("alice").first_deposit is True

    def test_claim_without_stake(self, manager):
        assert manager.claim("nobody", now=START) == 0

    def test_claim_insufficient_pool(self, ledger):
        manager = create_test_manager(ledger, top_up=1 * UNIT)
        manager.deposit("alice", 100 * UNIT, now=START)
        with pytest.raises(InsufficientPool):
            manager.claim("alice", now=START + HALF_YEAR)
        assert manager.get_stake("alice").last_accrual_time == START

    def test_claim_after_unstake_request(self, manager):
        manager.deposit("alice", 100 * UNIT, now=START)
        manager.request_unstake("alice", now=START + 20 * DAY)

        assert manager.claim("alice", now=START + 25 * DAY) == segment_yield(100 * UNIT, 1000, 20 * DAY)
        assert manager.claim("alice", now=START + 50 * DAY) == 0


# ============================================================================
# CLAIM AND RESTAKE TESTS
# ============================================================================

class TestClaimAndRestake:

    def test_no_yield(self, manager):
        manager.deposit("alice", 100 * UNIT, now=START)
        with pytest.raises(NoYield):
            manager.claim_and_restake("alice", now=START)

    def test_restake_adds_to_principal(self, manager, ledger):
        manager.deposit("alice", 100 * UNIT, now=START)
        reward = manager.claim_and_restake("alice", now=START + 30 * DAY)

        assert reward == segment_yield(100 * UNIT, 1000, 30 * DAY)
        assert manager.get_stake("alice").amount == 100 * UNIT + reward
        assert manager.pool.total_deposited == 100 * UNIT + reward
        assert manager.pool.total_yield_paid == reward
        assert ledger.balance_of("alice") == 900 * UNIT

    def test_restake_does_not_rearm_delay(self):
        manager = create_test_manager(yield_start_delay=DAY)
        manager.deposit("alice", 100 * UNIT, now=START)
        manager.claim_and_restake("alice", now=START + 10 * DAY)

        stake = manager.get_stake("alice")
        assert stake.first_deposit is False
        assert manager.pending_yield("alice", now=START + 10 * DAY + 3600) > 0

    def test_restake_cancels_unstake(self, manager):
        manager.deposit("alice", 100 * UNIT, now=START)
        manager.request_unstake("alice", now=START + 10 * DAY)
        manager.claim_and_restake("alice", now=START + 11 * DAY)
        assert manager.stake_state("alice") == StakeState.STAKED

    def test_restake_insufficient_pool(self, ledger):
        manager = create_test_manager(ledger, top_up=1 * UNIT)
        manager.deposit("alice", 100 * UNIT, now=START)
        with pytest.raises(InsufficientPool):
            manager.claim_and_restake("alice", now=START + HALF_YEAR)
        assert manager.get_stake("alice").amount == 100 * UNIT


# ============================================================================
# EMERGENCY EXIT TESTS
# ============================================================================

class TestEmergencyExit:

    def test_no_stake(self, manager):
        with pytest.raises(NoStake):
            manager.emergency_exit("alice", now=START)

    def test_two_call_protocol(self, manager, ledger):
        events = record_events(manager)
        manager.deposit("alice", 100 * UNIT, now=START)

        assert manager.emergency_exit("alice", now=START + 10 * DAY) == 0
        assert manager.stake_state("alice") == StakeState.EMERGENCY_PENDING

        with pytest.raises(StillInCooldown):
            manager.emergency_exit("alice", now=START + 10 * DAY + COOLDOWN)

        refunded = manager.emergency_exit("alice", now=START + 10 * DAY + COOLDOWN + 1)

        assert refunded == 100 * UNIT
        assert ledger.balance_of("alice") == 1_000 * UNIT
        assert manager.stake_state("alice") == StakeState.EMPTY
        assert manager.pool.total_deposited == 0
        assert events[-1] == EmergencyWithdrawn("alice", 100 * UNIT)
        assert_empty_invariant(manager, "alice")

    def test_exit_from_unstake_pending(self, manager, ledger):
        manager.deposit("alice", 100 * UNIT, now=START)
        manager.request_unstake("alice", now=START + DAY)
        available = manager.pool.available_yield
        assert manager.stake_state("alice") == StakeState.UNSTAKE_PENDING

        with pytest.raises(StillInCooldown):
            manager.emergency_exit("alice", now=START + DAY + 1)
        with pytest.raises(StillInCooldown):
            manager.emergency_exit("alice", now=START + DAY + COOLDOWN)
        assert manager.stake_state("alice") == StakeState.UNSTAKE_PENDING

        refunded = manager.emergency_exit("alice", now=START + DAY + COOLDOWN + 1)

        assert refunded == 100 * UNIT
        assert ledger.balance_of("alice") == 1_000 * UNIT
        assert manager.pool.available_yield == available
        assert manager.pool.total_yield_paid == 0
        assert_empty_invariant(manager, "alice")

    def test_withdraw_from_emergency_pending(self, manager, ledger):
        manager.deposit("alice", 100 * UNIT, now=START)
        manager.emergency_exit("alice", now=START + 10 * DAY)
        assert manager.stake_state("alice") == StakeState.EMERGENCY_PENDING

        with pytest.raises(StillInCooldown):
            manager.withdraw("alice", now=START + 10 * DAY + COOLDOWN)

        expected_yield = manager.pending_yield("alice", now=START + 10 * DAY + COOLDOWN + 1)
        total = manager.withdraw("alice", now=START + 10 * DAY + COOLDOWN + 1)

        assert expected_yield > 0
        assert total == 100 * UNIT + expected_yield
        assert ledger.balance_of("alice") == 1_000 * UNIT + expected_yield
        assert manager.pool.total_yield_paid == expected_yield
        assert_empty_invariant(manager, "alice")

    def test_insolvent_pool_principal_recovery(self, ledger):
        """Pool holds 1 token, account accrued 5: withdraw fails, exit returns principal."""
        manager = create_test_manager(ledger, top_up=1 * UNIT)
        manager.deposit("alice", 100 * UNIT, now=START)
        manager.request_unstake("alice", now=START + HALF_YEAR)
        assert manager.pending_yield("alice", now=START + HALF_YEAR) == 5 * UNIT

        with pytest.raises(InsufficientPool):
            manager.withdraw("alice", now=START + HALF_YEAR + COOLDOWN + 1)
        assert ledger.balance_of("alice") == 900 * UNIT

        refunded = manager.emergency_exit("alice", now=START + HALF_YEAR + COOLDOWN + 1)

        assert refunded == 100 * UNIT
        assert ledger.balance_of("alice") == 1_000 * UNIT
        assert manager.pool.available_yield == 1 * UNIT
        assert manager.pool.total_yield_paid == 0
        assert manager.stake_state("alice") == StakeState.EMPTY

    def test_insolvent_pool_two_call_exit(self, ledger):
        manager = create_test_manager(ledger, top_up=1 * UNIT)
        manager.deposit("alice", 100 * UNIT, now=START)

        manager.emergency_exit("alice", now=START + HALF_YEAR)
        refunded = manager.emergency_exit("alice", now=START + HALF_YEAR + COOLDOWN + 1)

        assert refunded == 100 * UNIT
        assert manager.pool.available_yield == 1 * UNIT


# ============================================================================
# ADMINISTRATION TESTS
# ============================================================================

class TestAdministration:

    def test_non_admin_rejected(self, manager):
        with pytest.raises(Unauthorized):
            manager.set_period("alice", 1, 800, now=START)
        with pytest.raises(Unauthorized):
            manager.top_up("alice", 1 * UNIT)
        with pytest.raises(Unauthorized):
            manager.set_cooldown("alice", DAY)
        with pytest.raises(Unauthorized):
            manager.set_yield_start_delay("alice", DAY)

    def test_set_period_emits_rate_updated(self, manager):
        events = record_events(manager)
        manager.set_period(ADMIN, 1, 800, now=START)
        assert events == [RateUpdated(1, 800, START + PERIOD_LENGTH)]

    def test_set_period_non_sequential(self, manager):
        with pytest.raises(NonSequential):
            manager.set_period(ADMIN, 2, 800, now=START)
        manager.set_period(ADMIN, 1, 800, now=START)
        manager.set_period(ADMIN, 2, 700, now=START)
        assert len(manager.table) == 3

    def test_cooldown_bounded(self, manager):
        with pytest.raises(InvalidParameter):
            manager.set_cooldown(ADMIN, MAX_LOCK_TIME + 1)
        manager.set_cooldown(ADMIN, MAX_LOCK_TIME)
        assert manager.cooldown == MAX_LOCK_TIME

    def test_yield_start_delay(self, manager):
        events = record_events(manager)
        with pytest.raises(InvalidParameter):
            manager.set_yield_start_delay(ADMIN, -1)
        manager.set_yield_start_delay(ADMIN, 2 * DAY)
        assert manager.yield_start_delay == 2 * DAY
        assert events == [ParameterUpdated("yield_start_delay", 2 * DAY)]

    def test_top_up(self, manager, ledger):
        events = record_events(manager)
        available = manager.top_up(ADMIN, 5 * UNIT)
        assert available == 1_005 * UNIT
        assert events == [PoolToppedUp(5 * UNIT)]

    def test_config_cooldown_validated(self, ledger):
        with pytest.raises(InvalidParameter):
            StakingManager(ledger, create_test_config(cooldown=MAX_LOCK_TIME + 1))


# ============================================================================
# VIEW / SERIALIZATION TESTS
# ============================================================================

class TestViewsAndSnapshots:

    def test_stats(self, manager):
        manager.deposit("alice", 100 * UNIT, now=START)
        manager.deposit("bob", 50 * UNIT, now=START)
        manager.request_unstake("bob", now=START + DAY)

        stats = manager.get_stats(now=START + 2 * DAY)

        assert stats["accounts"] == 2
        assert stats["staked"] == 1
        assert stats["unstake_pending"] == 1
        assert stats["total_deposited"] == 150 * UNIT
        assert stats["solvent"] is True
        assert stats["current_rate_bps"] == 1000
        assert stats["pending_yield"] == manager.total_pending_yield(now=START + 2 * DAY)

    def test_default_clock(self, manager):
        manager.deposit("alice", 100 * UNIT)
        assert manager.get_stake("alice").last_accrual_time == START

    def test_snapshot_round_trip(self, manager, ledger):
        manager.set_period(ADMIN, 1, 700, now=START)
        manager.deposit("alice", 100 * UNIT, now=START)
        manager.emergency_exit("alice", now=START + 100 * DAY)

        restored = StakingManager.from_dict(manager.to_dict(), ledger)

        assert restored.get_stake("alice") == manager.get_stake("alice")
        assert restored.pool.state == manager.pool.state
        assert restored.table.entries == manager.table.entries
        assert restored.stake_state("alice") == StakeState.EMERGENCY_PENDING
        now = START + 120 * DAY
        assert restored.pending_yield("alice", now) == manager.pending_yield("alice", now)

    def test_failing_observer_does_not_abort(self, manager):
        manager.on_event(Mock(side_effect=RuntimeError("indexer down")))
        assert manager.deposit("alice", 100 * UNIT, now=START) == 100 * UNIT
