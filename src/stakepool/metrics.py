"""
stakepool/metrics.py

Prometheus metrics collection for stakepool.

Exposes pool solvency, stake counts and event counters in the Prometheus
text exposition format.
"""

import time
import logging
from collections import Counter
from typing import Dict, Optional

from .events import StakingEvent, YieldClaimed
from .protocol.staking import StakingManager

logger = logging.getLogger("stakepool.metrics")


class StakingMetrics:
    """
    Prometheus metrics collector for a StakingManager.

    Usage:
        metrics = StakingMetrics(manager)
        prometheus_output = metrics.collect()
    """

    METRICS = {
        "stakepool_accounts": {
            "type": "gauge",
            "help": "Number of accounts with a non-zero stake, by state",
        },
        "stakepool_total_deposited": {
            "type": "gauge",
            "help": "Principal held in custody (base units)",
        },
        "stakepool_total_yield_paid": {
            "type": "counter",
            "help": "Yield paid or compounded since program start (base units)",
        },
        "stakepool_available_yield": {
            "type": "gauge",
            "help": "Yield liquidity available in the rewards pool (base units)",
        },
        "stakepool_pending_yield": {
            "type": "gauge",
            "help": "Yield accrued but not yet claimed (base units)",
        },
        "stakepool_solvent": {
            "type": "gauge",
            "help": "Whether the pool covers all pending yield (1=yes, 0=no)",
        },
        "stakepool_current_rate_bps": {
            "type": "gauge",
            "help": "Annual rate of the active period in basis points",
        },
        "stakepool_periods_configured": {
            "type": "gauge",
            "help": "Number of priced periods in the rate table",
        },
        "stakepool_events_total": {
            "type": "counter",
            "help": "Committed events, by type",
        },
        "stakepool_restaked_yield_total": {
            "type": "counter",
            "help": "Yield compounded into stakes since collector start (base units)",
        },
        "stakepool_uptime_seconds": {
            "type": "counter",
            "help": "Collector uptime in seconds",
        },
    }

    def __init__(self, manager: StakingManager):
        """
        Initialize metrics collector.

        Args:
            manager: StakingManager to collect metrics from; the collector
                subscribes to its events
        """
        self.manager = manager
        self._start_time = time.time()
        self._event_counts: Counter = Counter()
        self._restaked_yield = 0
        manager.on_event(self.record_event)

    def record_event(self, event: StakingEvent) -> None:
        self._event_counts[event.name] += 1
        if isinstance(event, YieldClaimed) and event.restaked:
            self._restaked_yield += event.amount

    def collect(self, now: Optional[int] = None) -> str:
        """
        Collect all metrics and return in Prometheus format.

        Returns:
            Prometheus-formatted metrics string
        """
        lines = []

        def add_header(name: str):
            metric_def = self.METRICS.get(name, {})
            lines.append(f"# HELP {name} {metric_def.get('help', '')}")
            lines.append(f"# TYPE {name} {metric_def.get('type', 'gauge')}")

        def add_metric(name: str, value: float, labels: Dict[str, str] = None):
            add_header(name)
            add_sample(name, value, labels)

        def add_sample(name: str, value: float, labels: Dict[str, str] = None):
            if labels:
                label_str = ",".join(f'{k}="{v}"' for k, v in labels.items())
                lines.append(f"{name}{{{label_str}}} {value}")
            else:
                lines.append(f"{name} {value}")

        try:
            stats = self.manager.get_stats(now)

            add_header("stakepool_accounts")
            for state in ("staked", "unstake_pending", "emergency_pending"):
                add_sample("stakepool_accounts", stats[state], {"state": state})

            add_metric("stakepool_total_deposited", stats["total_deposited"])
            add_metric("stakepool_total_yield_paid", stats["total_yield_paid"])
            add_metric("stakepool_available_yield", stats["available_yield"])
            add_metric("stakepool_pending_yield", stats["pending_yield"])
            add_metric("stakepool_solvent", 1 if stats["solvent"] else 0)
            add_metric("stakepool_current_rate_bps", stats["current_rate_bps"])
            add_metric("stakepool_periods_configured", stats["periods_configured"])

            if self._event_counts:
                add_header("stakepool_events_total")
                for name in sorted(self._event_counts):
                    add_sample("stakepool_events_total", self._event_counts[name], {"event": name})

            add_metric("stakepool_restaked_yield_total", self._restaked_yield)
            add_metric("stakepool_uptime_seconds", time.time() - self._start_time)

        except Exception as e:
            logger.error(f"Error collecting metrics: {e}")
            lines.append(f"# Error collecting metrics: {e}")

        return "\n".join(lines) + "\n"

    def get_event_counts(self) -> Dict[str, int]:
        return dict(self._event_counts)

    def reset_counters(self) -> None:
        """Reset all counters (useful for testing)."""
        self._event_counts.clear()
        self._restaked_yield = 0
