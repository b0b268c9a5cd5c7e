"""Domain error taxonomy.

Every failure that reaches a caller is one of these. Validation failures are
returned inside a ``ValidationResult``; post-submission failures inside a
``TransactionOutcome``; poll failures are logged and never raised.
"""
from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    CONNECTION = "connection"
    ORACLE = "oracle"
    ORACLE_STALE = "oracle_stale"
    ORACLE_INVALID = "oracle_invalid"
    INSUFFICIENT_COLLATERAL = "insufficient_collateral"
    INSUFFICIENT_LIQUIDITY = "insufficient_liquidity"
    INSUFFICIENT_BALANCE = "insufficient_balance"
    HEALTH_FACTOR_VIOLATION = "health_factor_violation"
    NO_DEBT = "no_debt"
    NO_COLLATERAL = "no_collateral"
    INVALID_INPUT = "invalid_input"
    USER_REJECTED = "user_rejected"
    UNKNOWN_REVERT = "unknown_revert"


class LendingError(Exception):
    """Base class; ``raw`` keeps the low-level signal for diagnostics."""

    kind: ErrorKind = ErrorKind.UNKNOWN_REVERT
    default_message = "Operation failed"

    def __init__(self, message: str | None = None, raw: Any = None) -> None:
        self.message = message or self.default_message
        self.raw = raw
        super().__init__(self.message)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.message!r})"


class GatewayConnectionError(LendingError):
    kind = ErrorKind.CONNECTION
    default_message = "Wallet or ledger unreachable"


class OracleError(LendingError):
    kind = ErrorKind.ORACLE
    default_message = "Oracle price feed error. Price data may be stale or invalid."


class OracleStaleError(OracleError):
    kind = ErrorKind.ORACLE_STALE
    default_message = "Oracle price is stale"


class OracleInvalidError(OracleError):
    kind = ErrorKind.ORACLE_INVALID
    default_message = "Oracle returned an invalid price (<= 0)"


class InsufficientCollateralError(LendingError):
    kind = ErrorKind.INSUFFICIENT_COLLATERAL
    default_message = "Cannot withdraw more collateral than deposited"


class InsufficientLiquidityError(LendingError):
    kind = ErrorKind.INSUFFICIENT_LIQUIDITY
    default_message = "Insufficient protocol liquidity to borrow"


class InsufficientBalanceError(LendingError):
    kind = ErrorKind.INSUFFICIENT_BALANCE
    default_message = "Wallet balance is below the requested amount"


class HealthFactorViolationError(LendingError):
    kind = ErrorKind.HEALTH_FACTOR_VIOLATION
    default_message = "Operation would leave the health factor out of bounds"


class NoDebtError(LendingError):
    kind = ErrorKind.NO_DEBT
    default_message = "Account has no debt"


class NoCollateralError(LendingError):
    kind = ErrorKind.NO_COLLATERAL
    default_message = "No collateral deposited"


class InvalidInputError(LendingError):
    kind = ErrorKind.INVALID_INPUT
    default_message = "Invalid amount or address"


class UserRejectedError(LendingError):
    kind = ErrorKind.USER_REJECTED
    default_message = "Request rejected in wallet"


class UnknownRevertError(LendingError):
    kind = ErrorKind.UNKNOWN_REVERT
    default_message = "Transaction reverted"


class RpcError(Exception):
    """JSON-RPC error object returned by a node (not a transport failure)."""

    def __init__(self, code: int | None, message: str, data: Any = None) -> None:
        self.code = code
        self.message = message
        self.data = data
        super().__init__(f"RPC Error {code}: {message}")
