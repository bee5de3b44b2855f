"""
stakepool/protocol/accrual.py

Reward Accrual Calculator.

Yield for a stake is computed by walking the Period Rate Table from the
stake's accrual start to a cutoff, pricing each segment at the rate of the
period it falls in:

    segment_yield = amount * rate_bps * elapsed // (BPS_DENOMINATOR * SECONDS_PER_YEAR)

The cutoff is the earliest of now, the pending unstake request and the
program end. Rounding truncates per segment.
"""

import logging
from dataclasses import dataclass, asdict
from typing import List

from ..config import BPS_DENOMINATOR, SECONDS_PER_YEAR
from .accounts import AccountStake
from .periods import PeriodRateTable

logger = logging.getLogger("stakepool.protocol.accrual")


@dataclass
class AccrualSegment:
    """Yield earned within a single period."""
    period_index: int
    start: int
    end: int
    rate_bps: int
    amount: int

    @property
    def elapsed(self) -> int:
        return self.end - self.start

    def to_dict(self) -> dict:
        return asdict(self)


def segment_yield(amount: int, rate_bps: int, elapsed: int) -> int:
    """Yield on amount at rate_bps for elapsed seconds, truncated."""
    return amount * rate_bps * elapsed // (BPS_DENOMINATOR * SECONDS_PER_YEAR)


def accrual_cutoff(stake: AccountStake, now: int, table: PeriodRateTable) -> int:
    """Latest time yield may accrue to for this stake."""
    request = stake.unstake_request_time if stake.unstake_request_time != 0 else now
    return min(now, request, table.program_end)


def accrual_segments(
    stake: AccountStake,
    now: int,
    table: PeriodRateTable,
    yield_start_delay: int,
) -> List[AccrualSegment]:
    """
    Per-period breakdown of the yield owed to stake at now.

    Args:
        stake: Account stake record (not modified)
        now: Current timestamp
        table: Period rate schedule
        yield_start_delay: Wait after a deposit before yield starts

    Returns:
        List of AccrualSegment, one per period touched
    """
    if stake.amount == 0:
        return []

    if stake.first_deposit and now <= stake.last_accrual_time + yield_start_delay:
        return []

    cutoff = accrual_cutoff(stake, now, table)
    cursor = stake.last_accrual_time
    if stake.first_deposit:
        cursor += yield_start_delay
    cursor = max(cursor, table.program_start)

    segments = []
    # At most one segment per configured period
    for _ in range(len(table)):
        if cursor >= cutoff:
            break
        index = table.lookup(cursor)
        next_start = table.next_start(index)
        segment_end = cutoff if next_start is None else min(next_start, cutoff)
        rate = table[index].annual_rate_bps
        segments.append(AccrualSegment(
            period_index=index,
            start=cursor,
            end=segment_end,
            rate_bps=rate,
            amount=segment_yield(stake.amount, rate, segment_end - cursor),
        ))
        cursor = segment_end

    return segments


def accrue(
    stake: AccountStake,
    now: int,
    table: PeriodRateTable,
    yield_start_delay: int,
) -> int:
    """Total yield owed to stake at now."""
    segments = accrual_segments(stake, now, table, yield_start_delay)
    total = sum(s.amount for s in segments)
    if segments:
        logger.debug(
            f"Accrued {total} over {len(segments)} period(s) "
            f"[{segments[0].start}, {segments[-1].end})"
        )
    return total
