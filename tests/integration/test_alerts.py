"""Integration tests for risk alerts on band transitions."""
from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from lendsync.models import Snapshot
from lendsync.services.alerts import RiskAlerter

from conftest import ACCOUNT, ONE_USDC, ONE_WETH, OTHER_ACCOUNT, make_position


def _snapshot(health_factor: float, account: str = ACCOUNT) -> Snapshot:
    position = make_position(
        account, collateral=ONE_WETH, debt=1_000 * ONE_USDC, health_factor=health_factor
    )
    return Snapshot(account=account, position=position)


@pytest.fixture()
def notifier() -> AsyncMock:
    return AsyncMock()


@pytest.fixture()
def alerter(notifier: AsyncMock) -> RiskAlerter:
    return RiskAlerter([notifier])


class TestRiskAlerter:
    @pytest.mark.asyncio
    async def test_first_healthy_observation_is_silent(
        self, alerter: RiskAlerter, notifier: AsyncMock
    ) -> None:
        alerter(_snapshot(2.0))
        await alerter.drain()
        notifier.send_alert.assert_not_called()
        notifier.send_log.assert_not_called()

    @pytest.mark.asyncio
    async def test_warning_sends_alert(self, alerter: RiskAlerter, notifier: AsyncMock) -> None:
        alerter(_snapshot(1.3))
        await alerter.drain()

        notifier.send_alert.assert_called_once()
        message = notifier.send_alert.call_args[0][0]
        assert "HF 1.30" in message
        assert "Collateral: 1" in message
        assert notifier.send_alert.call_args.kwargs["subject"] == "⚠️ WARNING"

    @pytest.mark.asyncio
    async def test_worsening_alerts_again_repeats_do_not(
        self, alerter: RiskAlerter, notifier: AsyncMock
    ) -> None:
        alerter(_snapshot(1.3))
        alerter(_snapshot(1.25))
        alerter(_snapshot(1.1))
        await alerter.drain()

        assert notifier.send_alert.call_count == 2
        assert notifier.send_alert.call_args.kwargs["subject"] == "🚨 DANGER"

    @pytest.mark.asyncio
    async def test_liquidatable_message(self, alerter: RiskAlerter, notifier: AsyncMock) -> None:
        alerter(_snapshot(0.95))
        await alerter.drain()
        assert "LIQUIDATABLE" in notifier.send_alert.call_args[0][0]

    @pytest.mark.asyncio
    async def test_recovery_sends_log(self, alerter: RiskAlerter, notifier: AsyncMock) -> None:
        alerter(_snapshot(1.1))
        alerter(_snapshot(1.8))
        await alerter.drain()

        notifier.send_alert.assert_called_once()
        notifier.send_log.assert_called_once()
        assert "recovered" in notifier.send_log.call_args[0][0]

    @pytest.mark.asyncio
    async def test_accounts_tracked_separately(
        self, alerter: RiskAlerter, notifier: AsyncMock
    ) -> None:
        alerter(_snapshot(1.1, ACCOUNT))
        alerter(_snapshot(1.1, OTHER_ACCOUNT))
        await alerter.drain()
        assert notifier.send_alert.call_count == 2

    @pytest.mark.asyncio
    async def test_notifier_failure_is_contained(
        self, alerter: RiskAlerter, notifier: AsyncMock
    ) -> None:
        notifier.send_alert.side_effect = RuntimeError("telegram down")
        alerter(_snapshot(1.1))
        await alerter.drain()
        notifier.send_alert.assert_called_once()

    @pytest.mark.asyncio
    async def test_snapshot_without_position_ignored(
        self, alerter: RiskAlerter, notifier: AsyncMock
    ) -> None:
        alerter(Snapshot())
        await alerter.drain()
        notifier.send_alert.assert_not_called()
