"""Command-line interface for the lending position sync engine."""
from __future__ import annotations

import argparse
import asyncio
import logging
import sys
import time

from .config import AppConfig, load_config
from .errors import LendingError
from .logging_setup import configure_logging
from .models import ActivityKind, ActivityRecord, Snapshot, to_units
from .services import (
    IntentState,
    LendingEngine,
    Operation,
    TransactionOutcome,
    ValidationResult,
)
from .services.ticker import InterestTick

logger = logging.getLogger(__name__)

_OPERATIONS = {op.value: op for op in Operation}


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse CLI parser."""
    parser = argparse.ArgumentParser(
        prog="lendsync",
        description="Lending position sync, risk and pre-flight engine",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to config.yaml (default: config.yaml in project root)",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)",
    )

    sub = parser.add_subparsers(dest="command")

    sub.add_parser("status", help="Sync once and print the position snapshot")
    sub.add_parser("history", help="Print the account's recent deposits, borrows and repayments")
    watch = sub.add_parser("watch", help="Poll continuously with risk alerts")
    watch.add_argument(
        "--no-ticker", action="store_true", help="Do not print the interest ticker"
    )

    for name in ("deposit", "withdraw", "borrow", "repay"):
        op_parser = sub.add_parser(name, help=f"Pre-flight and submit a {name}")
        op_parser.add_argument("amount", help="Amount in token units, e.g. 1.5")

    liquidate = sub.add_parser("liquidate", help="Pre-flight and submit a liquidation")
    liquidate.add_argument("target", help="Address of the account to liquidate")
    liquidate.add_argument("amount", help="Debt to cover in borrow token units")

    return parser


def format_snapshot(snapshot: Snapshot, engine: LendingEngine, config: AppConfig) -> str:
    proto = config.protocol
    position = snapshot.position
    if position is None:
        return "No position data (sync failed, see log)."

    now = int(time.time())
    assessment = engine.classify(position.health_factor)
    hf = "∞" if not position.has_debt else f"{position.health_factor:.4f}"
    lines = [
        f"Account:       {position.account}",
        f"Collateral:    {to_units(position.collateral_amount, proto.collateral_decimals):f} {proto.collateral_symbol}",
        f"Principal:     {to_units(position.principal_debt, proto.borrow_decimals):f} {proto.borrow_symbol}",
        f"Pending int.:  {to_units(snapshot.projected_interest(now), proto.borrow_decimals):f} {proto.borrow_symbol}",
        f"Health factor: {hf} ({assessment.band.value}"
        + (", LIQUIDATABLE)" if assessment.liquidatable else ")"),
    ]
    if position.has_debt:
        for label, amount in snapshot.interest_projections().items():
            lines.append(
                f"Interest {label:<5} +{to_units(amount, proto.borrow_decimals):f} {proto.borrow_symbol}"
            )
    if snapshot.balances is not None:
        lines.append(
            f"Wallet:        {to_units(snapshot.balances.collateral_token, proto.collateral_decimals):f} "
            f"{proto.collateral_symbol} / "
            f"{to_units(snapshot.balances.borrow_token, proto.borrow_decimals):f} {proto.borrow_symbol}"
        )
    if snapshot.aggregate is not None:
        lines.append(
            f"Protocol debt: {to_units(snapshot.aggregate.total_borrowed, proto.borrow_decimals):f} "
            f"{proto.borrow_symbol}"
        )
    for feed, reading in snapshot.oracles.items():
        lines.append(f"Oracle {feed.value:<10} {reading.value:f} (age {reading.age(now)}s)")
    return "\n".join(lines)


def format_activity(records: tuple[ActivityRecord, ...], config: AppConfig) -> str:
    proto = config.protocol
    if not records:
        return "No recent activity."
    lines = []
    for record in records:
        if record.kind is ActivityKind.DEPOSIT:
            amount, symbol = to_units(record.amount, proto.collateral_decimals), proto.collateral_symbol
        else:
            amount, symbol = to_units(record.amount, proto.borrow_decimals), proto.borrow_symbol
        lines.append(
            f"#{record.block_number:<10} {record.kind.value:<8} {amount:f} {symbol}  {record.tx_hash}"
        )
    return "\n".join(lines)


def format_result(result: ValidationResult | TransactionOutcome) -> str:
    if isinstance(result, ValidationResult):
        return f"Rejected before submission [{result.error.kind.value}]: {result.error.message}"
    if result.error is None:
        hashes = ", ".join(s.tx_hash for s in result.steps if s.tx_hash)
        return f"Confirmed: {hashes}"
    step = result.steps[result.failed_step]
    text = (
        f"{result.state.value.capitalize()} at step {result.failed_step + 1} "
        f"({step.call.description}) [{result.error.kind.value}]: {result.error.message}"
    )
    if result.state is IntentState.UNCONFIRMED:
        text += f"\nSubmitted as {step.tx_hash}; check it on chain before retrying"
    if result.partially_completed:
        done = ", ".join(s.call.description for s in result.completed_steps)
        text += f"\nAlready confirmed: {done} (do not repeat these steps)"
    return text


async def _watch(engine: LendingEngine, account: str, config: AppConfig, ticker: bool) -> None:
    proto = config.protocol

    def on_tick(tick: InterestTick) -> None:
        print(
            f"\rDebt {to_units(tick.total_debt, proto.borrow_decimals):f} {proto.borrow_symbol} "
            f"(+{to_units(tick.pending_interest, proto.borrow_decimals):f})",
            end="",
            flush=True,
        )

    engine.start(account, on_tick=on_tick if ticker else None)
    logger.info("Watching %s (Ctrl+C to stop)", account)
    try:
        await asyncio.Event().wait()
    finally:
        engine.stop()


async def _run(args: argparse.Namespace) -> int:
    """Execute the selected command; returns the exit code."""
    configure_logging(args.log_level)
    config = load_config(args.config)
    engine = LendingEngine(config)

    try:
        account = await engine.connect()
    except LendingError as e:
        logger.error("Could not connect wallet: %s", e.message)
        return 1

    if args.command == "status":
        snapshot = await engine.sync_once(account)
        print(format_snapshot(snapshot, engine, config))
        return 0 if snapshot.position is not None else 1

    if args.command == "history":
        try:
            records = await engine.recent_activity(account)
        except LendingError as e:
            logger.error("Could not read activity: %s", e.message)
            return 1
        print(format_activity(records, config))
        return 0

    if args.command == "watch":
        await _watch(engine, account, config, ticker=not args.no_ticker)
        return 0

    operation = _OPERATIONS[args.command]
    try:
        intent = engine.build_intent(
            operation, args.amount, account, target=getattr(args, "target", None)
        )
    except LendingError as e:
        print(f"Rejected before submission [{e.kind.value}]: {e.message}")
        return 1

    engine.start(account)
    try:
        result = await engine.submit(intent)
        print(format_result(result))
        if isinstance(result, TransactionOutcome) and result.error is None:
            await engine.scheduler.wait_idle()
            print(format_snapshot(engine.current_snapshot(), engine, config))
            return 0
        return 1
    finally:
        engine.stop()


def main() -> None:
    """Entry point."""
    parser = build_parser()
    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    try:
        sys.exit(asyncio.run(_run(args)))
    except KeyboardInterrupt:
        sys.exit(130)
