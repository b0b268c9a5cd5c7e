"""Health factor computation and risk banding."""
from __future__ import annotations

import math
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum

from .models import HEALTH_FACTOR_UNBOUNDED, OracleReading, to_units


class RiskBand(str, Enum):
    HEALTHY = "healthy"
    WARNING = "warning"
    DANGER = "danger"


@dataclass(frozen=True)
class RiskThresholds:
    healthy: float = 1.5
    warning: float = 1.2
    liquidation: float = 1.0


DEFAULT_THRESHOLDS = RiskThresholds()


@dataclass(frozen=True)
class RiskAssessment:
    health_factor: float
    band: RiskBand
    liquidatable: bool


def classify(
    health_factor: float, thresholds: RiskThresholds = DEFAULT_THRESHOLDS
) -> RiskAssessment:
    """Band a health factor.

    Healthy at or above ``thresholds.healthy`` (including unbounded), Warning
    down to ``thresholds.warning``, Danger below that. Liquidatable strictly
    below ``thresholds.liquidation``. NaN is treated as Danger.
    """
    if math.isnan(health_factor):
        return RiskAssessment(health_factor, RiskBand.DANGER, False)
    if math.isinf(health_factor) or health_factor >= thresholds.healthy:
        band = RiskBand.HEALTHY
    elif health_factor >= thresholds.warning:
        band = RiskBand.WARNING
    else:
        band = RiskBand.DANGER
    return RiskAssessment(
        health_factor=health_factor,
        band=band,
        liquidatable=health_factor < thresholds.liquidation,
    )


def compute_health_factor(
    collateral_value_usd: float,
    debt_value_usd: float,
    liquidation_threshold_pct: float,
) -> float:
    """health_factor = (collateral * liquidation_threshold%) / debt"""
    if debt_value_usd <= 0:
        return HEALTH_FACTOR_UNBOUNDED
    return (collateral_value_usd * liquidation_threshold_pct / 100) / debt_value_usd


def usd_value(amount: int, asset_decimals: int, reading: OracleReading) -> Decimal:
    """Native token amount priced with an oracle reading."""
    return to_units(amount, asset_decimals) * reading.value


def position_health_factor(
    collateral_amount: int,
    debt_amount: int,
    collateral_reading: OracleReading,
    debt_reading: OracleReading,
    liquidation_threshold_pct: float,
    collateral_decimals: int,
    borrow_decimals: int,
) -> float:
    """Health factor for raw amounts, priced with the two feed readings."""
    if debt_amount <= 0:
        return HEALTH_FACTOR_UNBOUNDED
    collateral_usd = usd_value(collateral_amount, collateral_decimals, collateral_reading)
    debt_usd = usd_value(debt_amount, borrow_decimals, debt_reading)
    if debt_usd <= 0:
        return HEALTH_FACTOR_UNBOUNDED
    return float(
        collateral_usd * Decimal(str(liquidation_threshold_pct)) / 100 / debt_usd
    )
