"""
stakepool/cli.py

Command-line tools for inspecting rate schedules and stored state.

Run with: stakepool --help
"""

import json
import logging
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from pathlib import Path

import click
import trio

from .config import PERIOD_LENGTH, SECONDS_PER_DAY, UNIT
from .errors import StakingError
from .protocol.accounts import AccountStake
from .protocol.accrual import accrual_segments
from .protocol.periods import PeriodRateTable
from .storage import FileBackend, StateStore

logger = logging.getLogger("stakepool.cli")


def _to_base_units(amount: str) -> int:
    try:
        value = Decimal(amount)
    except InvalidOperation:
        raise click.BadParameter(f"not a number: {amount}")
    if not value.is_finite():
        raise click.BadParameter(f"not a number: {amount}")
    base_units = int(value * UNIT)
    if base_units <= 0:
        raise click.BadParameter(f"amount must be at least one base unit: {amount}")
    return base_units


def _format_tokens(base_units: int) -> str:
    return f"{Decimal(base_units) / UNIT:.6f}"


def _format_time(timestamp: int) -> str:
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")


def _parse_schedule(schedule: str) -> dict:
    """Parse "1:800,2:600" into {1: 800, 2: 600}."""
    rates = {}
    for item in filter(None, (s.strip() for s in schedule.split(","))):
        try:
            index, rate = item.split(":")
            rates[int(index)] = int(rate)
        except ValueError:
            raise click.BadParameter(f"expected INDEX:RATE_BPS, got {item!r}")
    return rates


@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging")
def main(verbose):
    """Period-based staking yield tools."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format='%(asctime)s [%(name)s] %(levelname)s: %(message)s'
    )


@main.command()
@click.argument("amount")
@click.option("--rate-bps", default=1000, show_default=True, help="Rate for period 0")
@click.option("--schedule", default="", help="Rates for later periods, e.g. 1:800,2:600")
@click.option("--days", default=90, show_default=True, help="Days staked")
@click.option("--delay-days", default=0, show_default=True, help="Yield-start delay in days")
@click.option("--start-day", default=0, show_default=True, help="Deposit day relative to program start")
def quote(amount, rate_bps, schedule, days, delay_days, start_day):
    """Quote the yield on AMOUNT tokens staked for --days."""
    principal = _to_base_units(amount)
    program_start = 0
    try:
        table = PeriodRateTable(program_start=program_start, initial_rate_bps=rate_bps)
        for index, rate in sorted(_parse_schedule(schedule).items()):
            # Pricing ahead of time: every period is still open at program start
            table.set_period(index, rate, now=program_start)
    except StakingError as e:
        raise click.ClickException(f"{type(e).__name__}: {e}")

    deposit_time = program_start + start_day * SECONDS_PER_DAY
    stake = AccountStake(
        amount=principal,
        last_accrual_time=deposit_time,
        first_deposit=True,
    )
    now = deposit_time + days * SECONDS_PER_DAY
    segments = accrual_segments(stake, now, table, delay_days * SECONDS_PER_DAY)

    for segment in segments:
        click.echo(
            f"period {segment.period_index:>2}  {segment.rate_bps:>6} bps  "
            f"{segment.elapsed / SECONDS_PER_DAY:>8.2f} days  {_format_tokens(segment.amount)}"
        )
    click.echo(f"total yield: {_format_tokens(sum(s.amount for s in segments))}")


@main.command()
@click.option("--start", type=int, default=0, help="Program start (Unix time)")
@click.option("--count", type=int, default=None, help="Number of periods to list")
def periods(start, count):
    """List the calendar periods of a program."""
    table = PeriodRateTable(program_start=start, initial_rate_bps=1)
    total = table.max_periods if count is None else min(count, table.max_periods)
    for index in range(total):
        period_start = table.period_start(index)
        period_end = min(table.period_end(index), table.program_end)
        click.echo(f"{index:>2}  {_format_time(period_start)}  ->  {_format_time(period_end)}")
    click.echo(f"program ends {_format_time(table.program_end)} ({PERIOD_LENGTH // SECONDS_PER_DAY}-day periods)")


@main.command()
@click.option("--state-dir", type=click.Path(file_okay=False, path_type=Path), required=True)
@click.option("--namespace", default="default", show_default=True)
def status(state_dir, namespace):
    """Show the pool and accounts from a stored snapshot."""
    store = StateStore(namespace, backend=FileBackend(state_dir))
    snapshot = trio.run(store.load_raw)
    if snapshot is None:
        raise click.ClickException(f"no stored state for namespace {namespace!r}")

    state = snapshot["state"]
    click.echo(json.dumps({
        "saved_at": snapshot.get("saved_at"),
        "pool": state["pool"],
        "periods": [e["annual_rate_bps"] for e in state["periods"]["entries"]],
        "accounts": len(state["accounts"]),
        "cooldown": state["config"]["cooldown"],
        "yield_start_delay": state["config"]["yield_start_delay"],
    }, indent=2))


if __name__ == "__main__":
    main()
