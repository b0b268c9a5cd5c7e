"""Data models: all frozen (immutable)."""
from __future__ import annotations

import math
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from types import MappingProxyType
from typing import Mapping

from .interest import interest_projections, projected_interest_per_second

WAD = 10**18

# Returned by the ledger's getHealthFactor when the account has no debt.
MAX_UINT256 = 2**256 - 1

HEALTH_FACTOR_UNBOUNDED = math.inf


def health_factor_from_wad(raw: int) -> float:
    """Convert an 18-decimal health factor from the ledger into a float.

    The ``2**256 - 1`` sentinel maps to ``HEALTH_FACTOR_UNBOUNDED`` before any
    division happens.
    """
    if raw >= MAX_UINT256:
        return HEALTH_FACTOR_UNBOUNDED
    return raw / WAD


def to_units(raw: int, decimals: int) -> Decimal:
    """Native fixed-point integer -> human units (``formatUnits``)."""
    return Decimal(raw).scaleb(-decimals)


def from_units(value: str | Decimal, decimals: int) -> int:
    """Human units -> native fixed-point integer (``parseUnits``).

    Raises ``ValueError`` when the value has more fractional digits than
    the asset supports.
    """
    quantity = Decimal(value).scaleb(decimals)
    if quantity != quantity.to_integral_value():
        raise ValueError(f"{value} has more than {decimals} decimal places")
    return int(quantity)


class Feed(str, Enum):
    """Price feeds the position depends on."""

    COLLATERAL = "collateral"
    BORROW = "borrow"


@dataclass(frozen=True)
class Position:
    """Per-account view of the ledger state.

    ``principal_debt`` already includes interest accrued up to
    ``last_accrual_time``; ``0`` for ``last_accrual_time`` means never accrued.
    """

    account: str
    collateral_amount: int
    principal_debt: int
    last_accrual_time: int
    health_factor: float

    def __post_init__(self) -> None:
        if self.collateral_amount < 0 or self.principal_debt < 0:
            raise ValueError("Position amounts must be non-negative")
        if (self.principal_debt == 0) != math.isinf(self.health_factor):
            raise ValueError("Health factor is unbounded iff the position has no debt")

    @property
    def has_debt(self) -> bool:
        return self.principal_debt > 0


@dataclass(frozen=True)
class OracleReading:
    price: int
    updated_at: int
    decimals: int
    feed_id: str

    @property
    def value(self) -> Decimal:
        return to_units(self.price, self.decimals)

    def age(self, now: int) -> int:
        return now - self.updated_at


@dataclass(frozen=True)
class ProtocolAggregate:
    total_borrowed: int


@dataclass(frozen=True)
class WalletBalances:
    """ERC-20 balances held by the account outside the protocol."""

    collateral_token: int
    borrow_token: int


@dataclass(frozen=True)
class ProtocolConstants:
    """Ledger constants mirrored client-side."""

    liquidation_threshold_pct: int
    liquidation_bonus_pct: int
    borrow_rate_per_second: int
    max_price_age: int
    precision: int = WAD
    seconds_per_year: int = 365 * 24 * 60 * 60
    source: str = "ledger"


@dataclass(frozen=True)
class Snapshot:
    """Latest consistent state published by the scheduler."""

    account: str | None = None
    position: Position | None = None
    balances: WalletBalances | None = None
    aggregate: ProtocolAggregate | None = None
    oracles: Mapping[Feed, OracleReading] = field(default_factory=dict)
    constants: ProtocolConstants | None = None
    is_syncing: bool = False
    updated_at: float | None = None

    def __post_init__(self) -> None:
        # Shared by every subscriber of the published snapshot.
        object.__setattr__(self, "oracles", MappingProxyType(dict(self.oracles)))

    def projected_interest(self, now: int) -> int:
        """Interest accrued locally since the last on-chain accrual."""
        if self.position is None or self.constants is None:
            return 0
        return projected_interest_per_second(
            self.position.principal_debt,
            self.position.last_accrual_time,
            now,
            self.constants.borrow_rate_per_second,
            self.constants.precision,
        )

    def projected_debt(self, now: int) -> int:
        if self.position is None:
            return 0
        return self.position.principal_debt + self.projected_interest(now)

    def interest_projections(self) -> dict[str, int]:
        """Forward interest on the current principal; empty until constants are known."""
        if self.position is None or self.constants is None:
            return {}
        return interest_projections(
            self.position.principal_debt,
            self.constants.borrow_rate_per_second,
            self.constants.precision,
        )


@dataclass(frozen=True)
class LedgerCall:
    """A single encoded contract call (one sub-step of an intent)."""

    to: str
    data: str
    description: str
    value: int = 0


@dataclass(frozen=True)
class Receipt:
    tx_hash: str
    success: bool
    block_number: int


class ActivityKind(str, Enum):
    DEPOSIT = "deposit"
    BORROW = "borrow"
    REPAY = "repay"


@dataclass(frozen=True)
class ActivityRecord:
    """One of the account's own protocol events, newest first when listed."""

    kind: ActivityKind
    amount: int
    tx_hash: str
    block_number: int
    log_index: int = 0
