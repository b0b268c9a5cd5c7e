"""Transaction pre-flight validation, submission and failure decoding.

An intent moves through::

    DRAFTED -> VALIDATING -> READY | REJECTED
    READY -> SUBMITTING -> REJECTED | AWAITING_CONFIRMATION
    AWAITING_CONFIRMATION -> CONFIRMED | REVERTED | UNCONFIRMED

REJECTED after READY means the step was never broadcast. UNCONFIRMED means
it was broadcast but no receipt was obtained, so it may still be mined.

Validation runs local sanity checks, then oracle checks for price-sensitive
operations, then a dry-run of the first ledger call. Nothing is signed unless
all three pass.
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable

import aiohttp
from eth_utils import is_address

from ..config import ProtocolConfig
from ..errors import (
    HealthFactorViolationError,
    InsufficientBalanceError,
    InsufficientCollateralError,
    InvalidInputError,
    LendingError,
    NoCollateralError,
    NoDebtError,
    RpcError,
)
from ..interest import projected_interest_per_second
from ..interfaces.ledger import LedgerGateway
from ..interfaces.wallet import Wallet
from ..models import (
    Feed,
    LedgerCall,
    OracleReading,
    Position,
    ProtocolConstants,
    Receipt,
    WalletBalances,
)
from ..oracles.validator import ensure_usable
from ..protocols.lending.decoder import decode_failure
from ..risk import DEFAULT_THRESHOLDS, RiskThresholds, position_health_factor
from .scheduler import PositionSyncScheduler, Resource

logger = logging.getLogger(__name__)


class Operation(str, Enum):
    DEPOSIT = "deposit"
    WITHDRAW = "withdraw"
    BORROW = "borrow"
    REPAY = "repay"
    LIQUIDATE = "liquidate"


class IntentState(str, Enum):
    DRAFTED = "drafted"
    VALIDATING = "validating"
    READY = "ready"
    REJECTED = "rejected"
    SUBMITTING = "submitting"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    CONFIRMED = "confirmed"
    REVERTED = "reverted"
    UNCONFIRMED = "unconfirmed"


@dataclass(frozen=True)
class TransactionIntent:
    operation: Operation
    amount: int
    account: str
    target: str | None = None


@dataclass(frozen=True)
class ValidationResult:
    intent: TransactionIntent
    accepted: bool
    error: LendingError | None = None
    steps: tuple[LedgerCall, ...] = ()

    @property
    def state(self) -> IntentState:
        return IntentState.READY if self.accepted else IntentState.REJECTED


@dataclass(frozen=True)
class StepOutcome:
    call: LedgerCall
    tx_hash: str | None
    confirmed: bool
    error: LendingError | None = None


@dataclass(frozen=True)
class TransactionOutcome:
    intent: TransactionIntent
    state: IntentState
    steps: tuple[StepOutcome, ...]
    error: LendingError | None = None
    failed_step: int | None = None
    history: tuple[IntentState, ...] = ()

    @property
    def completed_steps(self) -> tuple[StepOutcome, ...]:
        return tuple(s for s in self.steps if s.confirmed)

    @property
    def partially_completed(self) -> bool:
        """Some sub-steps landed on chain but the intent as a whole did not."""
        return self.state is not IntentState.CONFIRMED and bool(self.completed_steps)


class TransactionPreflight:
    """Validates intents against local and ledger state before submitting them."""

    def __init__(
        self,
        gateway: LedgerGateway,
        wallet: Wallet,
        scheduler: PositionSyncScheduler,
        config: ProtocolConfig,
        thresholds: RiskThresholds = DEFAULT_THRESHOLDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._gateway = gateway
        self._wallet = wallet
        self._scheduler = scheduler
        self._config = config
        self._thresholds = thresholds
        self._clock = clock

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    async def validate(self, intent: TransactionIntent) -> ValidationResult:
        """Run every pre-flight stage; never signs or submits anything."""
        logger.info(
            "Intent %s %d: %s -> %s",
            intent.operation.value,
            intent.amount,
            IntentState.DRAFTED.value,
            IntentState.VALIDATING.value,
        )
        try:
            position = await self._check_local(intent)
            await self._check_prices(intent, position)
            steps = await self._build_and_simulate(intent)
        except (LendingError, RpcError, aiohttp.ClientError, asyncio.TimeoutError) as e:
            error = decode_failure(e)
            logger.warning(
                "Intent %s rejected (%s): %s",
                intent.operation.value,
                error.kind.value,
                error.message,
            )
            return ValidationResult(intent=intent, accepted=False, error=error)

        logger.info("Intent %s ready (%d steps)", intent.operation.value, len(steps))
        return ValidationResult(intent=intent, accepted=True, steps=steps)

    async def _position(self, account: str) -> Position:
        snapshot = self._scheduler.current_snapshot()
        if snapshot.position is not None and snapshot.account == account:
            return snapshot.position
        return await self._gateway.get_position(account)

    async def _balances(self, account: str) -> WalletBalances:
        snapshot = self._scheduler.current_snapshot()
        if snapshot.balances is not None and snapshot.account == account:
            return snapshot.balances
        return await self._gateway.get_balances(account)

    async def _check_local(self, intent: TransactionIntent) -> Position:
        """Stage 1: amount sanity against what is known about the account."""
        if intent.amount <= 0:
            raise InvalidInputError("Amount must be more than zero")

        op = intent.operation
        position = await self._position(intent.account)

        if op is Operation.DEPOSIT:
            balances = await self._balances(intent.account)
            if intent.amount > balances.collateral_token:
                raise InsufficientBalanceError(
                    f"Insufficient {self._config.collateral_symbol} balance to deposit"
                )

        elif op is Operation.WITHDRAW:
            if position.collateral_amount == 0:
                raise NoCollateralError("No collateral deposited to withdraw")
            if intent.amount > position.collateral_amount:
                raise InsufficientCollateralError(
                    "Cannot withdraw more collateral than deposited"
                )

        elif op is Operation.BORROW:
            if position.collateral_amount == 0:
                raise NoCollateralError(
                    f"No collateral deposited. Deposit {self._config.collateral_symbol} first."
                )

        elif op is Operation.REPAY:
            if not position.has_debt:
                raise NoDebtError("Nothing to repay")
            balances = await self._balances(intent.account)
            if intent.amount > balances.borrow_token:
                raise InsufficientBalanceError(
                    f"Insufficient {self._config.borrow_symbol} balance to repay"
                )

        elif op is Operation.LIQUIDATE:
            await self._check_liquidation_target(intent)
            balances = await self._balances(intent.account)
            if intent.amount > balances.borrow_token:
                raise InsufficientBalanceError(
                    f"Insufficient {self._config.borrow_symbol} balance to cover debt"
                )

        return position

    async def _check_liquidation_target(self, intent: TransactionIntent) -> None:
        if not intent.target or not is_address(intent.target):
            raise InvalidInputError(f"Invalid liquidation target {intent.target!r}")
        target = await self._gateway.get_position(intent.target)
        if not target.has_debt:
            raise NoDebtError("Target account has no debt to liquidate")
        if target.health_factor >= self._thresholds.liquidation:
            raise HealthFactorViolationError(
                f"Cannot liquidate: health factor is {target.health_factor:.2f} "
                f"(must be < {self._thresholds.liquidation:.1f})"
            )

    def _is_price_sensitive(self, intent: TransactionIntent, position: Position) -> bool:
        if intent.operation in (Operation.BORROW, Operation.LIQUIDATE):
            return True
        return intent.operation is Operation.WITHDRAW and position.has_debt

    async def _check_prices(self, intent: TransactionIntent, position: Position) -> None:
        """Stage 2: both feeds must be usable; borrow/withdraw must stay solvent."""
        if not self._is_price_sensitive(intent, position):
            return

        constants = await self._scheduler.ensure_constants()
        collateral_reading, borrow_reading = await asyncio.gather(
            self._gateway.get_oracle_reading(Feed.COLLATERAL),
            self._gateway.get_oracle_reading(Feed.BORROW),
        )
        now = int(self._clock())
        for reading in (collateral_reading, borrow_reading):
            ensure_usable(reading, now, constants.max_price_age)

        if intent.operation is Operation.WITHDRAW:
            resulting = self._resulting_health_factor(
                position.collateral_amount - intent.amount,
                self._current_debt(position, constants, now),
                collateral_reading,
                borrow_reading,
                constants,
            )
        elif intent.operation is Operation.BORROW:
            resulting = self._resulting_health_factor(
                position.collateral_amount,
                self._current_debt(position, constants, now) + intent.amount,
                collateral_reading,
                borrow_reading,
                constants,
            )
        else:
            return

        if resulting < self._thresholds.liquidation:
            raise HealthFactorViolationError(
                f"{intent.operation.value.capitalize()} would drop health factor to "
                f"{resulting:.4f} (minimum {self._thresholds.liquidation:.1f})"
            )

    @staticmethod
    def _current_debt(position: Position, constants: ProtocolConstants, now: int) -> int:
        return position.principal_debt + projected_interest_per_second(
            position.principal_debt,
            position.last_accrual_time,
            now,
            constants.borrow_rate_per_second,
            constants.precision,
        )

    def _resulting_health_factor(
        self,
        collateral: int,
        debt: int,
        collateral_reading: OracleReading,
        borrow_reading: OracleReading,
        constants: ProtocolConstants,
    ) -> float:
        return position_health_factor(
            collateral,
            debt,
            collateral_reading,
            borrow_reading,
            constants.liquidation_threshold_pct,
            self._config.collateral_decimals,
            self._config.borrow_decimals,
        )

    async def _build_and_simulate(self, intent: TransactionIntent) -> tuple[LedgerCall, ...]:
        """Stage 3: build the ordered sub-steps and dry-run the first one.

        The main call of a compound operation depends on its approval, so it
        is only simulated when the existing allowance already covers it.
        """
        gw = self._gateway
        op = intent.operation
        token: str | None = None

        if op is Operation.DEPOSIT:
            main, token = gw.deposit_call(intent.amount), gw.collateral_token
        elif op is Operation.REPAY:
            main, token = gw.repay_call(intent.amount), gw.borrow_token
        elif op is Operation.LIQUIDATE:
            main, token = gw.liquidate_call(intent.target, intent.amount), gw.borrow_token
        elif op is Operation.WITHDRAW:
            main = gw.withdraw_call(intent.amount)
        else:
            main = gw.borrow_call(intent.amount)

        steps: tuple[LedgerCall, ...] = (main,)
        if token is not None:
            allowance = await gw.get_allowance(token, intent.account)
            if allowance < intent.amount:
                steps = (gw.approve_call(token, intent.amount), main)
            else:
                logger.debug("Existing allowance %d covers %s", allowance, op.value)

        await gw.simulate(steps[0], intent.account)
        return steps

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    async def submit(
        self, intent: TransactionIntent
    ) -> ValidationResult | TransactionOutcome:
        """Validate, then sign and confirm each sub-step strictly in order."""
        try:
            account = await self._wallet.connect()
        except LendingError as e:
            return ValidationResult(intent=intent, accepted=False, error=e)
        if account.lower() != intent.account.lower():
            return ValidationResult(
                intent=intent,
                accepted=False,
                error=InvalidInputError(
                    f"Intent account {intent.account} is not the connected wallet {account}"
                ),
            )

        result = await self.validate(intent)
        if not result.accepted:
            return result

        history = [IntentState.DRAFTED, IntentState.VALIDATING, IntentState.READY]
        outcomes: list[StepOutcome] = []

        for index, call in enumerate(result.steps):
            history.append(IntentState.SUBMITTING)
            logger.info("Step %d/%d (%s): submitting", index + 1, len(result.steps), call.description)
            tx_hash: str | None = None
            receipt: Receipt | None = None
            try:
                tx_hash = await self._wallet.sign_and_submit(call)
                history.append(IntentState.AWAITING_CONFIRMATION)
                receipt = await self._wallet.wait_for_confirmation(tx_hash)
                if not receipt.success:
                    failure = await self._gateway.explain_failure(
                        call, intent.account, receipt.block_number
                    )
                    raise failure
            except (LendingError, RpcError, aiohttp.ClientError, asyncio.TimeoutError) as e:
                error = decode_failure(e)
                if tx_hash is None:
                    state = IntentState.REJECTED
                elif receipt is None:
                    state = IntentState.UNCONFIRMED
                else:
                    state = IntentState.REVERTED
                history.append(state)
                outcomes.append(StepOutcome(call, tx_hash, confirmed=False, error=error))
                logger.warning(
                    "Step %d (%s) %s: %s%s",
                    index + 1,
                    call.description,
                    state.value,
                    error.message,
                    " (earlier steps already confirmed)" if index else "",
                )
                return TransactionOutcome(
                    intent=intent,
                    state=state,
                    steps=tuple(outcomes),
                    error=error,
                    failed_step=index,
                    history=tuple(history),
                )
            outcomes.append(StepOutcome(call, tx_hash, confirmed=True))
            logger.info("Step %d (%s) confirmed: %s", index + 1, call.description, tx_hash)

        history.append(IntentState.CONFIRMED)
        self._scheduler.request_resync(Resource.POSITION, Resource.AGGREGATE)
        return TransactionOutcome(
            intent=intent,
            state=IntentState.CONFIRMED,
            steps=tuple(outcomes),
            history=tuple(history),
        )
