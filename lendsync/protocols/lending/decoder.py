"""Revert decoder: maps low-level failure signals onto ``LendingError`` kinds.

Only the enumerated custom-error selectors below are given a specific kind.
Anything else becomes ``UnknownRevertError`` with the raw signal preserved.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any

import aiohttp
from eth_abi.exceptions import DecodingError

from ...errors import (
    GatewayConnectionError,
    HealthFactorViolationError,
    InsufficientCollateralError,
    InsufficientLiquidityError,
    InvalidInputError,
    LendingError,
    NoCollateralError,
    NoDebtError,
    OracleError,
    RpcError,
    UnknownRevertError,
    UserRejectedError,
)
from . import abi

logger = logging.getLogger(__name__)

# EIP-1193 "User Rejected Request"
USER_REJECTED_CODE = 4001

CUSTOM_ERRORS: dict[str, tuple[type[LendingError], str]] = {
    "LENDINGPROTOCOL__userHasZeroCollateral": (
        NoCollateralError,
        "No collateral deposited. Deposit collateral first.",
    ),
    "LENDINGPROTOCOL__insufficientLiquidity": (
        InsufficientLiquidityError,
        "Insufficient protocol liquidity. The protocol has not enough funds to lend.",
    ),
    "LENDINGPROTOCOL__amountMoreThanAllowed": (
        HealthFactorViolationError,
        "Amount not allowed by the health factor bound.",
    ),
    "LENDINGPROTOCOL__cantWithdrawMoreThanDeposited": (
        InsufficientCollateralError,
        "Cannot withdraw more collateral than deposited.",
    ),
    "LENDINGPROTOCOL__userHasNoDebt": (NoDebtError, "Account has no debt."),
    "LENDINGPROTOCOL__oracleError": (
        OracleError,
        "Oracle price feed error. Price data may be stale or invalid.",
    ),
    "LENDINGPROTOCOL__valueMustBeMoreThanZero": (
        InvalidInputError,
        "Amount must be more than zero.",
    ),
}

_BY_SELECTOR = {
    abi.selector(f"{name}()"): (name, cls, message)
    for name, (cls, message) in CUSTOM_ERRORS.items()
}


def _extract_revert_data(data: Any) -> str | None:
    """Nodes nest revert data differently; find the hex payload."""
    if isinstance(data, str) and data.startswith("0x"):
        return data
    if isinstance(data, dict):
        for key in ("data", "originalError", "result"):
            found = _extract_revert_data(data.get(key))
            if found:
                return found
    return None


def decode_revert_data(data: str | None, fallback: str = "") -> LendingError:
    """Decode ``0x``-prefixed revert data into a domain error."""
    if not data or data == "0x":
        return UnknownRevertError(fallback or "Transaction reverted without reason", raw=data)

    try:
        sel, args = abi.split_revert(data)
    except ValueError:
        return UnknownRevertError(fallback or f"Undecodable revert data {data}", raw=data)

    known = _BY_SELECTOR.get(sel)
    if known:
        name, cls, message = known
        return cls(message, raw=name)

    if sel == abi.ERROR_STRING_SELECTOR:
        try:
            reason = abi.decode_error_string(args)
        except (DecodingError, ValueError) as e:
            logger.debug("Malformed Error(string) payload %s: %s", data, e)
            return UnknownRevertError(f"Undecodable Error(string) revert {data}", raw=data)
        return UnknownRevertError(reason or fallback or "Transaction reverted", raw=data)

    if sel == abi.PANIC_SELECTOR:
        try:
            code = abi.decode_panic_code(args)
        except DecodingError:
            return UnknownRevertError(f"Undecodable Panic revert {data}", raw=data)
        return UnknownRevertError(f"Panic(0x{code:02x})", raw=data)

    return UnknownRevertError(f"Unrecognised revert 0x{sel}", raw=data)


def decode_failure(exc: BaseException) -> LendingError:
    """Translate any transport, node or wallet failure into a domain error."""
    if isinstance(exc, LendingError):
        return exc

    if isinstance(exc, RpcError):
        if exc.code == USER_REJECTED_CODE:
            return UserRejectedError(raw=exc.message)
        data = _extract_revert_data(exc.data)
        if data is None:
            return UnknownRevertError(exc.message, raw=exc.data)
        error = decode_revert_data(data, fallback=exc.message)
        logger.debug("Decoded revert %s -> %s", data, error.kind.value)
        return error

    if isinstance(exc, (aiohttp.ClientError, asyncio.TimeoutError, OSError)):
        return GatewayConnectionError(str(exc) or type(exc).__name__, raw=exc)

    return UnknownRevertError(str(exc), raw=exc)
