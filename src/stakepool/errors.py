"""
stakepool/errors.py

Exception taxonomy for staking operations.

Every exception aborts the operation that raised it; no partial state
change survives.
"""


class StakingError(Exception):
    """Base class for all staking errors."""
    pass


# ============================================================================
# INPUT ERRORS (caller-correctable)
# ============================================================================

class InputError(StakingError):
    """Malformed request."""
    pass


class InvalidAmount(InputError):
    """Amount must be a positive integer."""
    pass


class ZeroRate(InputError):
    """A period rate of zero was supplied."""
    pass


class NonSequential(InputError):
    """A period index was set before the preceding index exists."""
    pass


class InvalidParameter(InputError):
    """An administrative parameter is out of bounds."""
    pass


# ============================================================================
# STATE CONFLICTS (wrong operation for the account's state)
# ============================================================================

class StateConflict(StakingError):
    """Operation does not apply to the account's current state."""
    pass


class NoStake(StateConflict):
    pass


class AlreadyPending(StateConflict):
    pass


class NotPending(StateConflict):
    pass


class NoYield(StateConflict):
    pass


# ============================================================================
# TEMPORAL ERRORS (retry later)
# ============================================================================

class TemporalError(StakingError):
    """Operation is not allowed at this time."""
    pass


class StillInCooldown(TemporalError):
    def __init__(self, ready_at: int):
        super().__init__(f"cooldown ends after {ready_at}")
        self.ready_at = ready_at


class PeriodAlreadyEnded(TemporalError):
    pass


class ProgramEnded(TemporalError):
    pass


# ============================================================================
# SOLVENCY / TRANSFER / ACCESS
# ============================================================================

class SolvencyError(StakingError):
    """Rewards pool cannot cover the requested payout."""
    pass


class InsufficientPool(SolvencyError):
    def __init__(self, required: int, available: int):
        super().__init__(
            f"rewards pool has {available} available, {required} required; "
            f"use emergency_exit to recover principal"
        )
        self.required = required
        self.available = available


class TransferFailed(StakingError):
    """The underlying ledger transfer failed."""
    pass


class Unauthorized(StakingError):
    """Caller lacks the administrative role."""
    pass
