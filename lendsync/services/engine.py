"""Engine facade: wires gateway, wallet, scheduler, pre-flight and alerts from config."""
from __future__ import annotations

import logging
from decimal import Decimal, InvalidOperation
from typing import Callable

from ..chains.evm import EvmClient
from ..config import AppConfig
from ..errors import InvalidInputError
from ..interest import borrow_rate_per_second
from ..interfaces.notifier import Notifier
from ..models import ActivityRecord, ProtocolConstants, Snapshot, from_units
from ..notifications import TelegramNotifier
from ..protocols.lending import LendingProtocolGateway
from ..risk import RiskAssessment, classify
from ..wallets import NodeWallet
from .alerts import RiskAlerter
from .preflight import (
    Operation,
    TransactionIntent,
    TransactionOutcome,
    TransactionPreflight,
    ValidationResult,
)
from .scheduler import PositionSyncScheduler
from .ticker import InterestTick, InterestTicker

logger = logging.getLogger(__name__)

_COLLATERAL_OPERATIONS = (Operation.DEPOSIT, Operation.WITHDRAW)


def fallback_constants(config: AppConfig) -> ProtocolConstants:
    """Protocol constants from static configuration."""
    proto = config.protocol
    return ProtocolConstants(
        liquidation_threshold_pct=proto.liquidation_threshold_pct,
        liquidation_bonus_pct=proto.liquidation_bonus_pct,
        borrow_rate_per_second=borrow_rate_per_second(proto.annual_rate_bps),
        max_price_age=proto.max_price_age_seconds,
        source="config",
    )


class LendingEngine:
    """Everything the presentation layer talks to."""

    def __init__(self, config: AppConfig) -> None:
        self._config = config
        self._thresholds = config.sync.thresholds.to_risk_thresholds()

        self.client = EvmClient(config.chain)
        self.gateway = LendingProtocolGateway(self.client, config.protocol)
        self.wallet = NodeWallet(self.client, config.chain, config.wallet.address or None)
        self.scheduler = PositionSyncScheduler(
            self.gateway, config.sync, fallback_constants=fallback_constants(config)
        )
        self.preflight = TransactionPreflight(
            self.gateway,
            self.wallet,
            self.scheduler,
            config.protocol,
            thresholds=self._thresholds,
        )

        self._notifiers: list[Notifier] = []
        if config.notifications.telegram.enabled:
            self._notifiers.append(TelegramNotifier(config.notifications.telegram))
        self.alerter = RiskAlerter(
            self._notifiers,
            thresholds=self._thresholds,
            collateral_decimals=config.protocol.collateral_decimals,
            borrow_decimals=config.protocol.borrow_decimals,
        )
        self._unsubscribe_alerts: Callable[[], None] | None = None
        self._ticker: InterestTicker | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def connect(self) -> str:
        return await self.wallet.connect()

    def start(self, account: str, on_tick: Callable[[InterestTick], None] | None = None) -> None:
        if self._unsubscribe_alerts is None:
            self._unsubscribe_alerts = self.scheduler.subscribe(self.alerter)
        self.scheduler.start(account)
        if on_tick is not None:
            self._ticker = InterestTicker(
                self.scheduler, on_tick, self._config.sync.ticker_interval_seconds
            )
            self._ticker.start()

    def stop(self) -> None:
        if self._ticker is not None:
            self._ticker.stop()
            self._ticker = None
        if self._unsubscribe_alerts is not None:
            self._unsubscribe_alerts()
            self._unsubscribe_alerts = None
        self.scheduler.stop()

    async def sync_once(self, account: str) -> Snapshot:
        """Fetch every resource for ``account`` once and return the snapshot."""
        self.scheduler.start(account)
        try:
            await self.scheduler.wait_idle()
            return self.scheduler.current_snapshot()
        finally:
            self.scheduler.stop()

    # ------------------------------------------------------------------
    # Presentation surface
    # ------------------------------------------------------------------

    def current_snapshot(self) -> Snapshot:
        return self.scheduler.current_snapshot()

    def subscribe(self, callback: Callable[[Snapshot], None]) -> Callable[[], None]:
        return self.scheduler.subscribe(callback)

    def classify(self, health_factor: float | None = None) -> RiskAssessment | None:
        """Classify ``health_factor``, or the current position's when omitted."""
        if health_factor is None:
            position = self.current_snapshot().position
            if position is None:
                return None
            health_factor = position.health_factor
        return classify(health_factor, self._thresholds)

    def build_intent(
        self,
        operation: Operation,
        amount: str,
        account: str,
        target: str | None = None,
    ) -> TransactionIntent:
        """Parse a human amount into native units of the asset the operation moves."""
        decimals = (
            self._config.protocol.collateral_decimals
            if operation in _COLLATERAL_OPERATIONS
            else self._config.protocol.borrow_decimals
        )
        try:
            raw = from_units(amount, decimals)
        except (InvalidOperation, ValueError, OverflowError) as e:
            raise InvalidInputError(f"Invalid amount {amount!r}: {e}") from e
        return TransactionIntent(operation=operation, amount=raw, account=account, target=target)

    async def submit(
        self, intent: TransactionIntent
    ) -> ValidationResult | TransactionOutcome:
        return await self.preflight.submit(intent)

    async def recent_activity(self, account: str) -> tuple[ActivityRecord, ...]:
        return await self.gateway.get_recent_activity(account)
