"""Shared test fixtures, sample data and in-memory fakes."""
from __future__ import annotations

import asyncio
import math
import textwrap
from pathlib import Path

import pytest

from lendsync.config import (
    AppConfig,
    ChainConfig,
    NotificationsConfig,
    ProtocolConfig,
    SyncConfig,
    TelegramConfig,
    ThresholdsConfig,
    WalletConfig,
)
from lendsync.errors import LendingError, UnknownRevertError, UserRejectedError
from lendsync.interest import borrow_rate_per_second
from lendsync.models import (
    ActivityRecord,
    Feed,
    LedgerCall,
    OracleReading,
    Position,
    ProtocolAggregate,
    ProtocolConstants,
    Receipt,
    WalletBalances,
)
from lendsync.services.preflight import TransactionPreflight
from lendsync.services.scheduler import PositionSyncScheduler

NOW = 1_700_000_000
DAY = 24 * 60 * 60

# Digit-only addresses are already in checksum form.
ACCOUNT = "0x" + "1" * 40
OTHER_ACCOUNT = "0x" + "2" * 40
PROTOCOL = "0x" + "3" * 40
COLLATERAL_TOKEN = "0x" + "4" * 40
BORROW_TOKEN = "0x" + "5" * 40
BORROWER = "0x" + "6" * 40

ONE_WETH = 10**18
ONE_USDC = 10**6

CONSTANTS = ProtocolConstants(
    liquidation_threshold_pct=80,
    liquidation_bonus_pct=10,
    borrow_rate_per_second=borrow_rate_per_second(1000),
    max_price_age=7 * DAY,
)


def make_reading(
    price_usd: int, feed: Feed, updated_at: int = NOW - 60, decimals: int = 8
) -> OracleReading:
    return OracleReading(
        price=price_usd * 10**decimals,
        updated_at=updated_at,
        decimals=decimals,
        feed_id=feed.value,
    )


def make_position(
    account: str = ACCOUNT,
    collateral: int = 0,
    debt: int = 0,
    health_factor: float | None = None,
    last_accrual: int = 0,
) -> Position:
    if health_factor is None:
        health_factor = math.inf if debt == 0 else 2.0
    return Position(
        account=account,
        collateral_amount=collateral,
        principal_debt=debt,
        last_accrual_time=last_accrual,
        health_factor=health_factor,
    )


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakeLedger:
    """In-memory ledger gateway. ``gates`` hold position reads until set."""

    protocol_address = PROTOCOL
    collateral_token = COLLATERAL_TOKEN
    borrow_token = BORROW_TOKEN

    def __init__(self) -> None:
        self.positions: dict[str, Position] = {}
        self.balances: dict[str, WalletBalances] = {}
        self.readings = {
            Feed.COLLATERAL: make_reading(3000, Feed.COLLATERAL),
            Feed.BORROW: make_reading(1, Feed.BORROW),
        }
        self.constants = CONSTANTS
        self.constants_error: LendingError | None = None
        self.total_borrowed = 0
        self.allowances: dict[str, int] = {}
        self.simulate_error: LendingError | None = None
        self.replay_error: LendingError = UnknownRevertError("replayed revert")
        self.position_error: Exception | None = None
        self.gates: dict[str, asyncio.Event] = {}
        self.activity: tuple[ActivityRecord, ...] = ()

        self.position_calls: list[str] = []
        self.oracle_calls = 0
        self.simulated: list[LedgerCall] = []

    async def get_position(self, account: str) -> Position:
        self.position_calls.append(account)
        gate = self.gates.get(account)
        if gate is not None:
            await gate.wait()
        if self.position_error is not None:
            raise self.position_error
        return self.positions.get(account) or make_position(account)

    async def get_balances(self, account: str) -> WalletBalances:
        return self.balances.get(account, WalletBalances(0, 0))

    async def get_protocol_aggregate(self) -> ProtocolAggregate:
        return ProtocolAggregate(total_borrowed=self.total_borrowed)

    async def get_oracle_reading(self, feed: Feed) -> OracleReading:
        self.oracle_calls += 1
        return self.readings[feed]

    async def get_protocol_constants(self) -> ProtocolConstants:
        if self.constants_error is not None:
            raise self.constants_error
        return self.constants

    async def get_allowance(self, token: str, owner: str) -> int:
        return self.allowances.get(token, 0)

    async def get_recent_activity(self, account: str) -> tuple[ActivityRecord, ...]:
        return self.activity

    def deposit_call(self, amount: int) -> LedgerCall:
        return LedgerCall(PROTOCOL, f"deposit:{amount}", "deposit")

    def withdraw_call(self, amount: int) -> LedgerCall:
        return LedgerCall(PROTOCOL, f"withdraw:{amount}", "withdraw")

    def borrow_call(self, amount: int) -> LedgerCall:
        return LedgerCall(PROTOCOL, f"borrow:{amount}", "borrow")

    def repay_call(self, amount: int) -> LedgerCall:
        return LedgerCall(PROTOCOL, f"repay:{amount}", "repay")

    def liquidate_call(self, target: str, debt_to_cover: int) -> LedgerCall:
        return LedgerCall(PROTOCOL, f"liquidate:{target}:{debt_to_cover}", "liquidate")

    def approve_call(self, token: str, amount: int) -> LedgerCall:
        return LedgerCall(token, f"approve:{amount}", "approve")

    async def simulate(self, call: LedgerCall, account: str) -> None:
        self.simulated.append(call)
        if self.simulate_error is not None:
            raise self.simulate_error

    async def explain_failure(
        self, call: LedgerCall, account: str, block_number: int
    ) -> LendingError:
        return self.replay_error


class FakeWallet:
    """Signs everything unless told to reject, fail or revert a step by description."""

    def __init__(self, account: str = ACCOUNT) -> None:
        self.account = account
        self.connect_error: LendingError | None = None
        self.reject: set[str] = set()
        self.revert: set[str] = set()
        self.submit_errors: dict[str, LendingError] = {}
        self.confirm_errors: dict[str, LendingError] = {}
        self.submitted: list[LedgerCall] = []

    async def connect(self) -> str:
        if self.connect_error is not None:
            raise self.connect_error
        return self.account

    async def sign_and_submit(self, call: LedgerCall) -> str:
        if call.description in self.reject:
            raise UserRejectedError()
        if call.description in self.submit_errors:
            raise self.submit_errors[call.description]
        self.submitted.append(call)
        return f"0x{len(self.submitted):064x}"

    async def wait_for_confirmation(self, tx_hash: str) -> Receipt:
        call = self.submitted[int(tx_hash, 16) - 1]
        if call.description in self.confirm_errors:
            raise self.confirm_errors[call.description]
        return Receipt(tx_hash=tx_hash, success=call.description not in self.revert, block_number=123)


# ---------------------------------------------------------------------------
# Config fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def sample_sync_config() -> SyncConfig:
    # Long intervals: tests drive ticks explicitly.
    return SyncConfig(
        position_interval_seconds=3600,
        aggregate_interval_seconds=3600,
        oracle_interval_seconds=3600,
        ticker_interval_seconds=3600,
    )


@pytest.fixture()
def sample_chain_config() -> ChainConfig:
    return ChainConfig(
        rpc_endpoints=("https://rpc1.example.com", "https://rpc2.example.com"),
        rpc_timeout=10,
        confirmation_poll_seconds=0,
    )


@pytest.fixture()
def sample_protocol_config() -> ProtocolConfig:
    return ProtocolConfig(
        lending_protocol=PROTOCOL,
        collateral_token=COLLATERAL_TOKEN,
        borrow_token=BORROW_TOKEN,
    )


@pytest.fixture()
def sample_app_config(
    sample_sync_config: SyncConfig,
    sample_chain_config: ChainConfig,
    sample_protocol_config: ProtocolConfig,
) -> AppConfig:
    return AppConfig(
        sync=sample_sync_config,
        chain=sample_chain_config,
        protocol=sample_protocol_config,
        wallet=WalletConfig(address=ACCOUNT),
        notifications=NotificationsConfig(
            telegram=TelegramConfig(
                enabled=True,
                alert_bot_token="fake-alert-token",
                log_bot_token="fake-log-token",
                chat_id="12345",
            ),
        ),
    )


# ---------------------------------------------------------------------------
# Engine fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def ledger() -> FakeLedger:
    return FakeLedger()


@pytest.fixture()
def wallet() -> FakeWallet:
    return FakeWallet()


@pytest.fixture()
def scheduler(ledger: FakeLedger, sample_sync_config: SyncConfig) -> PositionSyncScheduler:
    return PositionSyncScheduler(ledger, sample_sync_config, clock=lambda: NOW)


@pytest.fixture()
def preflight(
    ledger: FakeLedger,
    wallet: FakeWallet,
    scheduler: PositionSyncScheduler,
    sample_protocol_config: ProtocolConfig,
) -> TransactionPreflight:
    return TransactionPreflight(
        ledger,
        wallet,
        scheduler,
        sample_protocol_config,
        thresholds=ThresholdsConfig().to_risk_thresholds(),
        clock=lambda: NOW,
    )


# ---------------------------------------------------------------------------
# Config YAML fixture
# ---------------------------------------------------------------------------

SAMPLE_YAML = textwrap.dedent(f"""\
    sync:
      position_interval_seconds: 5
      aggregate_interval_seconds: 20
      oracle_interval_seconds: 20
      thresholds:
        healthy: 1.6
        warning: 1.25
        liquidation: 1.0
    chain:
      rpc_endpoints: ["https://rpc.example.com"]
      rpc_timeout: 10
    protocol:
      collateral_symbol: WETH
      borrow_symbol: USDC
      contracts:
        lending_protocol: "{PROTOCOL}"
        collateral_token: "{COLLATERAL_TOKEN}"
        borrow_token: "{BORROW_TOKEN}"
      constants:
        liquidation_threshold_pct: 75
        annual_rate_bps: 500
    wallet:
      address: "{ACCOUNT}"
    notifications:
      telegram:
        enabled: true
        alert_bot_token: "tok1"
        log_bot_token: "tok2"
        chat_id: 999
""")


@pytest.fixture()
def sample_yaml_path(tmp_path: Path) -> Path:
    cfg_file = tmp_path / "config.yaml"
    cfg_file.write_text(SAMPLE_YAML)
    return cfg_file
