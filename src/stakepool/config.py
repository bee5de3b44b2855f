"""
stakepool/config.py

Configuration constants and data classes for stakepool.
"""

import os
import time
import logging
from dataclasses import dataclass, asdict
from typing import Optional

logger = logging.getLogger("stakepool.config")


# Base units per whole token (18 decimals, like most fungible ledgers)
UNIT = 10 ** 18

# Time constants (seconds)
SECONDS_PER_DAY = 86400
SECONDS_PER_YEAR = 365 * SECONDS_PER_DAY

# Rates are quoted in basis points (1/100 of a percent)
BPS_DENOMINATOR = 10000

# Rate schedule layout
PERIOD_LENGTH = 90 * SECONDS_PER_DAY    # one quarter
PROGRAM_YEARS = 5
PROGRAM_DURATION = PROGRAM_YEARS * SECONDS_PER_YEAR

# Upper bound for the unstake cooldown
MAX_LOCK_TIME = 30 * SECONDS_PER_DAY

# Defaults
DEFAULT_COOLDOWN = 7 * SECONDS_PER_DAY
DEFAULT_YIELD_START_DELAY = 1 * SECONDS_PER_DAY
DEFAULT_INITIAL_RATE_BPS = 1000         # 10% APR
DEFAULT_CUSTODY_ADDRESS = "stakepool"
DEFAULT_ADMIN = "admin"

# Environment variable prefix for from_env()
ENV_PREFIX = "STAKEPOOL_"


@dataclass
class StakingConfig:
    """
    Engine parameters.

    program_start of 0 means "now" and is resolved when the config is
    created.
    """
    admin: str = DEFAULT_ADMIN
    custody_address: str = DEFAULT_CUSTODY_ADDRESS
    initial_rate_bps: int = DEFAULT_INITIAL_RATE_BPS
    program_start: int = 0
    cooldown: int = DEFAULT_COOLDOWN
    yield_start_delay: int = DEFAULT_YIELD_START_DELAY

    def __post_init__(self):
        if self.program_start == 0:
            self.program_start = int(time.time())

    @property
    def program_end(self) -> int:
        return self.program_start + PROGRAM_DURATION

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "StakingConfig":
        return cls(
            admin=data.get("admin", DEFAULT_ADMIN),
            custody_address=data.get("custody_address", DEFAULT_CUSTODY_ADDRESS),
            initial_rate_bps=int(data.get("initial_rate_bps", DEFAULT_INITIAL_RATE_BPS)),
            program_start=int(data.get("program_start", 0)),
            cooldown=int(data.get("cooldown", DEFAULT_COOLDOWN)),
            yield_start_delay=int(data.get("yield_start_delay", DEFAULT_YIELD_START_DELAY)),
        )

    @classmethod
    def from_env(cls, environ: Optional[dict] = None) -> "StakingConfig":
        """
        Build a config from STAKEPOOL_* environment variables.

        Recognized: STAKEPOOL_ADMIN, STAKEPOOL_CUSTODY_ADDRESS,
        STAKEPOOL_INITIAL_RATE_BPS, STAKEPOOL_PROGRAM_START,
        STAKEPOOL_COOLDOWN, STAKEPOOL_YIELD_START_DELAY.
        Unparseable integers fall back to the default with a warning.
        """
        env = os.environ if environ is None else environ
        data = {}
        for name in ("admin", "custody_address"):
            value = env.get(ENV_PREFIX + name.upper())
            if value:
                data[name] = value
        for name in ("initial_rate_bps", "program_start", "cooldown", "yield_start_delay"):
            value = env.get(ENV_PREFIX + name.upper())
            if value is None or value == "":
                continue
            try:
                data[name] = int(value)
            except ValueError:
                logger.warning(f"Invalid {ENV_PREFIX}{name.upper()}={value!r}, using default")
        return cls.from_dict(data)
