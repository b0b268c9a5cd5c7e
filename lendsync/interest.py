"""Interest projection: pure functions, no I/O.

Mirrors the ledger's accrual routine: the per-second rate is an integer at
``PRECISION`` (1e18) scale and interest is floored at the borrow asset's
native precision::

    rate_per_second = annual_rate_bps * PRECISION // (10_000 * SECONDS_PER_YEAR)
    interest        = principal * rate_per_second * elapsed // PRECISION
"""
from __future__ import annotations

PRECISION = 10**18
SECONDS_PER_YEAR = 365 * 24 * 60 * 60
BPS_DENOMINATOR = 10_000
DAY = 24 * 60 * 60

# Horizons shown next to the pending interest.
PROJECTION_HORIZONS = (
    ("24h", DAY),
    ("30d", 30 * DAY),
    ("1y", SECONDS_PER_YEAR),
)


def borrow_rate_per_second(
    annual_rate_bps: int,
    precision: int = PRECISION,
    seconds_per_year: int = SECONDS_PER_YEAR,
) -> int:
    """Annual rate in basis points -> per-second rate at ``precision`` scale."""
    if annual_rate_bps < 0:
        raise ValueError("annual_rate_bps must be non-negative")
    return annual_rate_bps * precision // (BPS_DENOMINATOR * seconds_per_year)


def projected_interest_per_second(
    principal: int,
    last_accrual_time: int,
    now: int,
    rate_per_second: int,
    precision: int = PRECISION,
) -> int:
    """Pending interest given the ledger's own per-second rate."""
    if last_accrual_time <= 0:
        return 0
    return interest_for_period(principal, rate_per_second, now - last_accrual_time, precision)


def interest_for_period(
    principal: int,
    rate_per_second: int,
    seconds: int,
    precision: int = PRECISION,
) -> int:
    if principal <= 0 or seconds <= 0:
        return 0
    return principal * rate_per_second * seconds // precision


def projected_interest(
    principal: int,
    last_accrual_time: int,
    now: int,
    annual_rate_bps: int,
) -> int:
    """Pending interest at ``now`` for a principal last accrued at ``last_accrual_time``.

    Returns 0 when nothing was ever accrued, the principal is zero, or the
    local clock is behind the ledger (elapsed is clamped to zero).
    """
    return projected_interest_per_second(
        principal,
        last_accrual_time,
        now,
        borrow_rate_per_second(annual_rate_bps),
    )


def interest_projections(
    principal: int,
    rate_per_second: int,
    precision: int = PRECISION,
) -> dict[str, int]:
    """Interest the current principal would accrue over each horizon, keyed by label."""
    return {
        label: interest_for_period(principal, rate_per_second, seconds, precision)
        for label, seconds in PROJECTION_HORIZONS
    }
