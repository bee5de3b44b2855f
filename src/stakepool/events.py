"""
stakepool/events.py

Domain events emitted once per committed state transition.

External observers (indexers, metrics) subscribe through
StakingManager.on_event().
"""

import logging
from dataclasses import dataclass, asdict
from typing import Callable, List

logger = logging.getLogger("stakepool.events")


@dataclass(frozen=True)
class StakingEvent:
    """Base class for domain events."""

    @property
    def name(self) -> str:
        return type(self).__name__

    def to_dict(self) -> dict:
        data = asdict(self)
        data["event"] = self.name
        return data


@dataclass(frozen=True)
class Deposited(StakingEvent):
    account: str
    amount: int


@dataclass(frozen=True)
class UnstakeRequested(StakingEvent):
    account: str
    amount: int


@dataclass(frozen=True)
class Withdrawn(StakingEvent):
    account: str
    total_amount: int


@dataclass(frozen=True)
class YieldClaimed(StakingEvent):
    account: str
    amount: int
    restaked: bool = False


@dataclass(frozen=True)
class RateUpdated(StakingEvent):
    period_index: int
    rate_bps: int
    period_start: int


@dataclass(frozen=True)
class PoolToppedUp(StakingEvent):
    amount: int


@dataclass(frozen=True)
class EmergencyWithdrawn(StakingEvent):
    account: str
    principal: int


@dataclass(frozen=True)
class ParameterUpdated(StakingEvent):
    parameter: str
    value: int


EventCallback = Callable[[StakingEvent], None]


class EventEmitter:
    """Fan-out of events to registered callbacks."""

    def __init__(self):
        self._callbacks: List[EventCallback] = []

    def subscribe(self, callback: EventCallback) -> None:
        self._callbacks.append(callback)

    def unsubscribe(self, callback: EventCallback) -> None:
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    def emit(self, event: StakingEvent) -> None:
        logger.debug(f"Event {event.name}: {event.to_dict()}")
        for callback in self._callbacks:
            try:
                callback(event)
            except Exception as e:
                logger.warning(f"Event callback error for {event.name}: {e}")
