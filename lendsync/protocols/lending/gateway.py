"""Lending protocol gateway: typed reads, call builders and simulation over eth_call."""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Sequence

from eth_abi.exceptions import DecodingError
from eth_utils import to_checksum_address

from ...chains.evm import EvmClient
from ...config import ProtocolConfig
from ...errors import LendingError, RpcError, UnknownRevertError
from ...models import (
    HEALTH_FACTOR_UNBOUNDED,
    ActivityKind,
    ActivityRecord,
    Feed,
    LedgerCall,
    OracleReading,
    Position,
    ProtocolAggregate,
    ProtocolConstants,
    WalletBalances,
    health_factor_from_wad,
)
from . import abi
from .decoder import decode_failure

logger = logging.getLogger(__name__)

_FEED_GETTERS = {
    Feed.COLLATERAL: "priceFeed()",
    Feed.BORROW: "borrowPriceFeed()",
}

# Events are indexed by user; the single data word is the amount.
ACTIVITY_EVENTS = {
    abi.event_topic("userAddedCollateral(address,uint256)"): ActivityKind.DEPOSIT,
    abi.event_topic("userBorrowedToken(address,uint256)"): ActivityKind.BORROW,
    abi.event_topic("userRepaidDebt(address,uint256)"): ActivityKind.REPAY,
}

DEFAULT_ACTIVITY_LOOKBACK_BLOCKS = 10_000
DEFAULT_ACTIVITY_LIMIT = 10


class LendingProtocolGateway:
    """Read/write surface of the single-collateral lending contract."""

    def __init__(self, client: EvmClient, config: ProtocolConfig) -> None:
        self._client = client
        self._config = config
        self._protocol = to_checksum_address(config.lending_protocol)
        self._collateral_token = to_checksum_address(config.collateral_token)
        self._borrow_token = to_checksum_address(config.borrow_token)
        self._feed_cache: dict[Feed, str] = {}

    @property
    def protocol_address(self) -> str:
        return self._protocol

    @property
    def collateral_token(self) -> str:
        return self._collateral_token

    @property
    def borrow_token(self) -> str:
        return self._borrow_token

    # ------------------------------------------------------------------
    # Low-level call
    # ------------------------------------------------------------------

    async def _call(
        self,
        signature: str,
        *args: Any,
        returns: Sequence[str] = abi.UINT256,
        to: str | None = None,
        block: str | int = "latest",
    ) -> tuple[Any, ...]:
        data = abi.encode_call(signature, *args)
        try:
            result = await self._client.eth_call(to or self._protocol, data, block=block)
        except RpcError as e:
            raise decode_failure(e) from e
        if not result or result == "0x":
            raise UnknownRevertError(f"{signature} returned no data", raw=result)
        try:
            return abi.decode_result(returns, result)
        except DecodingError as e:
            raise UnknownRevertError(
                f"{signature} returned undecodable data: {e}", raw=result
            ) from e

    async def _uint(
        self, signature: str, *args: Any, to: str | None = None, block: str | int = "latest"
    ) -> int:
        return (await self._call(signature, *args, to=to, block=block))[0]

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_position(self, account: str) -> Position:
        # Every field is read at one block so debt and health factor agree.
        block = await self._client.block_number()
        collateral, debt, last_accrued = await asyncio.gather(
            self._uint("userToCollateralDeposited(address)", account, block=block),
            self._uint("userToAmountBorrowed(address)", account, block=block),
            self._uint("lastAccrued(address)", account, block=block),
        )

        if debt == 0:
            health_factor = HEALTH_FACTOR_UNBOUNDED
        else:
            health_factor = health_factor_from_wad(
                await self._uint("getHealthFactor(address)", account, block=block)
            )

        return Position(
            account=to_checksum_address(account),
            collateral_amount=collateral,
            principal_debt=debt,
            last_accrual_time=last_accrued,
            health_factor=health_factor,
        )

    async def get_balances(self, account: str) -> WalletBalances:
        collateral, borrow = await asyncio.gather(
            self._uint("balanceOf(address)", account, to=self._collateral_token),
            self._uint("balanceOf(address)", account, to=self._borrow_token),
        )
        return WalletBalances(collateral_token=collateral, borrow_token=borrow)

    async def get_protocol_aggregate(self) -> ProtocolAggregate:
        return ProtocolAggregate(total_borrowed=await self._uint("totalBorrowed()"))

    async def _feed_address(self, feed: Feed) -> str:
        if feed not in self._feed_cache:
            (address,) = await self._call(_FEED_GETTERS[feed], returns=abi.ADDRESS)
            self._feed_cache[feed] = to_checksum_address(address)
        return self._feed_cache[feed]

    async def get_oracle_reading(self, feed: Feed) -> OracleReading:
        address = await self._feed_address(feed)
        round_data, decimals = await asyncio.gather(
            self._call("latestRoundData()", returns=abi.ROUND_DATA, to=address),
            self._uint("decimals()", to=address),
        )
        _, answer, _, updated_at, _ = round_data
        return OracleReading(
            price=answer,
            updated_at=updated_at,
            decimals=decimals,
            feed_id=feed.value,
        )

    async def get_protocol_constants(self) -> ProtocolConstants:
        threshold, bonus, rate, max_age, precision, seconds_per_year = await asyncio.gather(
            self._uint("LIQUIDATION_THRESHOLD()"),
            self._uint("LIQUIDATION_BONUS()"),
            self._uint("BORROW_RATE_PER_SECOND()"),
            self._uint("MAX_PRICE_AGE()"),
            self._uint("PRECISION()"),
            self._uint("SECONDS_PER_YEAR()"),
        )
        return ProtocolConstants(
            liquidation_threshold_pct=threshold,
            liquidation_bonus_pct=bonus,
            borrow_rate_per_second=rate,
            max_price_age=max_age,
            precision=precision,
            seconds_per_year=seconds_per_year,
        )

    async def get_allowance(self, token: str, owner: str) -> int:
        return await self._uint("allowance(address,address)", owner, self._protocol, to=token)

    async def get_recent_activity(
        self,
        account: str,
        lookback_blocks: int = DEFAULT_ACTIVITY_LOOKBACK_BLOCKS,
        limit: int = DEFAULT_ACTIVITY_LIMIT,
    ) -> tuple[ActivityRecord, ...]:
        """Deposits, borrows and repayments by ``account`` in recent blocks, newest first."""
        latest = await self._client.block_number()
        log_filter = {
            "address": self._protocol,
            "fromBlock": hex(max(0, latest - lookback_blocks)),
            "toBlock": hex(latest),
            "topics": [list(ACTIVITY_EVENTS), abi.address_topic(account)],
        }
        try:
            logs = await self._client.get_logs(log_filter)
        except RpcError as e:
            raise decode_failure(e) from e

        records = []
        for log in logs:
            kind = ACTIVITY_EVENTS.get(log["topics"][0].lower())
            if kind is None:
                continue
            try:
                (amount,) = abi.decode_result(abi.UINT256, log["data"])
            except DecodingError as e:
                logger.warning("Skipping undecodable %s log %s: %s", kind.value, log, e)
                continue
            records.append(
                ActivityRecord(
                    kind=kind,
                    amount=amount,
                    tx_hash=log["transactionHash"],
                    block_number=int(log["blockNumber"], 16),
                    log_index=int(log.get("logIndex", "0x0"), 16),
                )
            )

        records.sort(key=lambda r: (r.block_number, r.log_index), reverse=True)
        return tuple(records[:limit])

    # ------------------------------------------------------------------
    # Call builders
    # ------------------------------------------------------------------

    def deposit_call(self, amount: int) -> LedgerCall:
        return LedgerCall(
            self._protocol, abi.encode_call("depositCollateral(uint256)", amount), "deposit"
        )

    def withdraw_call(self, amount: int) -> LedgerCall:
        return LedgerCall(
            self._protocol, abi.encode_call("withdrawCollateral(uint256)", amount), "withdraw"
        )

    def borrow_call(self, amount: int) -> LedgerCall:
        return LedgerCall(self._protocol, abi.encode_call("borrow(uint256)", amount), "borrow")

    def repay_call(self, amount: int) -> LedgerCall:
        return LedgerCall(self._protocol, abi.encode_call("repay(uint256)", amount), "repay")

    def liquidate_call(self, target: str, debt_to_cover: int) -> LedgerCall:
        return LedgerCall(
            self._protocol,
            abi.encode_call("liquidate(address,uint256)", target, debt_to_cover),
            "liquidate",
        )

    def approve_call(self, token: str, amount: int) -> LedgerCall:
        return LedgerCall(
            to_checksum_address(token),
            abi.encode_call("approve(address,uint256)", self._protocol, amount),
            "approve",
        )

    # ------------------------------------------------------------------
    # Simulation
    # ------------------------------------------------------------------

    async def simulate(self, call: LedgerCall, account: str) -> None:
        """Dry-run ``call`` from ``account``; raise the decoded error on revert."""
        try:
            await self._client.eth_call(call.to, call.data, sender=account)
        except RpcError as e:
            error = decode_failure(e)
            logger.info("Simulation of %s failed: %s", call.description, error.message)
            raise error from e

    async def explain_failure(
        self, call: LedgerCall, account: str, block_number: int
    ) -> LendingError:
        """Replay a reverted transaction at its block to recover the reason."""
        try:
            await self._client.eth_call(call.to, call.data, sender=account, block=block_number)
        except RpcError as e:
            return decode_failure(e)
        except LendingError as e:
            return e
        return UnknownRevertError(
            f"{call.description} reverted at block {block_number} without a decodable reason"
        )
