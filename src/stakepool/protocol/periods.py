"""
stakepool/protocol/periods.py

Period Rate Table.

The program runs for PROGRAM_YEARS from its start time and is split into
fixed-length periods (one quarter each). Every period carries one annual
rate in basis points. Entry i covers
[start + i * PERIOD_LENGTH, start of entry i+1), and the last defined entry
extends until the program ends.

Rules for setting a period:
- Rate must be non-zero
- The period must start before the program ends
- The period must not have ended yet
- Indices are filled in order (no gaps); existing ones may be overwritten
"""

import logging
from dataclasses import dataclass, asdict
from typing import Iterator, List, Optional

from ..config import PERIOD_LENGTH, PROGRAM_DURATION
from ..errors import (
    InvalidParameter,
    NonSequential,
    PeriodAlreadyEnded,
    ProgramEnded,
    ZeroRate,
)

logger = logging.getLogger("stakepool.protocol.periods")


@dataclass
class PeriodEntry:
    """One priced period."""
    start_time: int             # Unix timestamp the period opens
    annual_rate_bps: int        # Annual rate in basis points

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "PeriodEntry":
        return cls(
            start_time=int(data["start_time"]),
            annual_rate_bps=int(data["annual_rate_bps"]),
        )


class PeriodRateTable:
    """
    Ordered schedule of (period start, annual rate) entries.

    Usage:
        table = PeriodRateTable(program_start=start, initial_rate_bps=1000)
        table.set_period(1, 800, now=now)
        index = table.lookup(some_time)
    """

    def __init__(
        self,
        program_start: int,
        initial_rate_bps: int,
        period_length: int = PERIOD_LENGTH,
        program_duration: int = PROGRAM_DURATION,
    ):
        if initial_rate_bps == 0:
            raise ZeroRate("initial rate must be non-zero")
        if initial_rate_bps < 0:
            raise InvalidParameter(f"rate must be positive, got {initial_rate_bps}")
        self.program_start = program_start
        self.period_length = period_length
        self.program_end = program_start + program_duration
        self._entries: List[PeriodEntry] = [PeriodEntry(program_start, initial_rate_bps)]

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[PeriodEntry]:
        return iter(self._entries)

    def __getitem__(self, index: int) -> PeriodEntry:
        return self._entries[index]

    @property
    def entries(self) -> List[PeriodEntry]:
        return list(self._entries)

    @property
    def max_periods(self) -> int:
        """Number of periods that start before the program ends."""
        duration = self.program_end - self.program_start
        return -(-duration // self.period_length)

    def period_start(self, index: int) -> int:
        return self.program_start + index * self.period_length

    def period_end(self, index: int) -> int:
        return self.period_start(index) + self.period_length

    def next_start(self, index: int) -> Optional[int]:
        """Start of the entry after index, or None if index is the last."""
        if index + 1 < len(self._entries):
            return self._entries[index + 1].start_time
        return None

    def set_period(self, index: int, annual_rate_bps: int, now: int) -> PeriodEntry:
        """
        Append or overwrite the rate for a period.

        Args:
            index: Period index (0-based from program start)
            annual_rate_bps: Annual rate in basis points
            now: Current timestamp

        Returns:
            The stored PeriodEntry
        """
        if annual_rate_bps == 0:
            raise ZeroRate(f"period {index}: rate must be non-zero")
        if annual_rate_bps < 0 or index < 0:
            raise InvalidParameter(f"period {index}: invalid rate {annual_rate_bps}")

        start = self.period_start(index)
        if start >= self.program_end:
            raise ProgramEnded(f"period {index} starts at {start}, program ends at {self.program_end}")
        if now >= start + self.period_length:
            raise PeriodAlreadyEnded(f"period {index} ended at {start + self.period_length}")
        if index > len(self._entries):
            raise NonSequential(f"period {index - 1} must be set before period {index}")

        entry = PeriodEntry(start_time=start, annual_rate_bps=annual_rate_bps)
        if index == len(self._entries):
            self._entries.append(entry)
        else:
            self._entries[index] = entry

        logger.info(f"Period {index} rate set to {annual_rate_bps} bps (starts {start})")
        return entry

    def lookup(self, time: int) -> int:
        """
        Index of the entry whose coverage contains time.

        Times at or after program end map to the last index.
        """
        last = len(self._entries) - 1
        for i in range(len(self._entries)):
            if i == last or time < self._entries[i + 1].start_time:
                return i
        return last

    def current_index(self, now: int) -> int:
        """Calendar period index for now, whether or not it is priced."""
        if now < self.program_start:
            return 0
        return min((now - self.program_start) // self.period_length, self.max_periods - 1)

    def to_dict(self) -> dict:
        return {
            "program_start": self.program_start,
            "program_end": self.program_end,
            "period_length": self.period_length,
            "entries": [e.to_dict() for e in self._entries],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "PeriodRateTable":
        entries = [PeriodEntry.from_dict(e) for e in data["entries"]]
        program_start = int(data["program_start"])
        table = cls(
            program_start=program_start,
            initial_rate_bps=entries[0].annual_rate_bps,
            period_length=int(data.get("period_length", PERIOD_LENGTH)),
            program_duration=int(data["program_end"]) - program_start,
        )
        table._entries = entries
        return table
