"""Risk alerts: notifies when an account's risk band worsens."""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any

from ..interfaces.notifier import Notifier
from ..models import Snapshot, to_units
from ..risk import DEFAULT_THRESHOLDS, RiskAssessment, RiskBand, RiskThresholds, classify

logger = logging.getLogger(__name__)

_SEVERITY = {RiskBand.HEALTHY: 0, RiskBand.WARNING: 1, RiskBand.DANGER: 2}

_STATUS = {
    RiskBand.HEALTHY: "✅ Healthy",
    RiskBand.WARNING: "⚠️ WARNING",
    RiskBand.DANGER: "🚨 DANGER",
}


class RiskAlerter:
    """Snapshot subscriber that tracks the band per account."""

    def __init__(
        self,
        notifiers: list[Notifier],
        thresholds: RiskThresholds = DEFAULT_THRESHOLDS,
        collateral_decimals: int = 18,
        borrow_decimals: int = 6,
    ) -> None:
        self._notifiers = notifiers
        self._thresholds = thresholds
        self._collateral_decimals = collateral_decimals
        self._borrow_decimals = borrow_decimals
        self._last_band: dict[str, RiskBand] = {}
        self._pending: set[asyncio.Task[Any]] = set()

    @staticmethod
    def _format_wallet(address: str) -> str:
        if len(address) > 16:
            return f"{address[:10]}...{address[-6:]}"
        return address

    @staticmethod
    def _now_str() -> str:
        return datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")

    def _format_hf(self, assessment: RiskAssessment) -> str:
        hf = assessment.health_factor
        return "∞" if hf == float("inf") else f"{hf:.2f}"

    def build_alert(self, snapshot: Snapshot, assessment: RiskAssessment) -> str:
        position = snapshot.position
        collateral = to_units(position.collateral_amount, self._collateral_decimals)
        debt = to_units(position.principal_debt, self._borrow_decimals)
        lines = [
            f"{_STATUS[assessment.band]}: HF {self._format_hf(assessment)}",
            "",
            f"Collateral: {collateral:f}",
            f"Debt: {debt:f}",
        ]
        if assessment.liquidatable:
            lines += ["", "Position is LIQUIDATABLE!"]
        elif assessment.band is RiskBand.DANGER:
            lines += ["", "⚠️ Add collateral or repay debt immediately!"]
        else:
            lines += ["", "Consider adding collateral or repaying part of the debt."]
        lines += [
            "",
            f"Wallet: {self._format_wallet(position.account)}",
            f"{self._now_str()} UTC",
        ]
        return "\n".join(lines)

    def __call__(self, snapshot: Snapshot) -> None:
        position = snapshot.position
        if position is None:
            return

        assessment = classify(position.health_factor, self._thresholds)
        previous = self._last_band.get(position.account)
        self._last_band[position.account] = assessment.band
        if previous is None and assessment.band is RiskBand.HEALTHY:
            return
        if previous == assessment.band:
            return

        if previous is None or _SEVERITY[assessment.band] > _SEVERITY[previous]:
            logger.warning(
                "Risk band for %s is now %s (HF %s)",
                position.account,
                assessment.band.value,
                self._format_hf(assessment),
            )
            message = self.build_alert(snapshot, assessment)
            self._dispatch("send_alert", message, subject=_STATUS[assessment.band])
        else:
            logger.info(
                "Risk band for %s recovered to %s", position.account, assessment.band.value
            )
            self._dispatch("send_log", f"{_STATUS[assessment.band]}: risk band recovered")

    def _dispatch(self, method: str, message: str, **kwargs: Any) -> None:
        for notifier in self._notifiers:
            task = asyncio.create_task(self._send(notifier, method, message, **kwargs))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)

    @staticmethod
    async def _send(notifier: Notifier, method: str, message: str, **kwargs: Any) -> None:
        try:
            await getattr(notifier, method)(message, **kwargs)
        except Exception as e:
            logger.error("Notifier %s failed: %s", method, e)

    async def drain(self) -> None:
        """Wait for queued notifications to be sent."""
        if self._pending:
            await asyncio.gather(*self._pending)
