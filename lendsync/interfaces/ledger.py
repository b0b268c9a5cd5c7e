"""Ledger gateway protocol: typed read/write surface of the lending protocol."""
from typing import Protocol

from ..errors import LendingError
from ..models import (
    ActivityRecord,
    Feed,
    LedgerCall,
    OracleReading,
    Position,
    ProtocolAggregate,
    ProtocolConstants,
    WalletBalances,
)


class LedgerGateway(Protocol):
    """Abstract interface over the lending contract and its oracles.

    Read failures raise ``LendingError`` subclasses (``GatewayConnectionError``
    for transport problems).
    """

    @property
    def protocol_address(self) -> str: ...

    @property
    def collateral_token(self) -> str: ...

    @property
    def borrow_token(self) -> str: ...

    async def get_position(self, account: str) -> Position: ...

    async def get_balances(self, account: str) -> WalletBalances: ...

    async def get_protocol_aggregate(self) -> ProtocolAggregate: ...

    async def get_oracle_reading(self, feed: Feed) -> OracleReading: ...

    async def get_protocol_constants(self) -> ProtocolConstants: ...

    async def get_allowance(self, token: str, owner: str) -> int: ...

    async def get_recent_activity(self, account: str) -> tuple[ActivityRecord, ...]: ...

    def deposit_call(self, amount: int) -> LedgerCall: ...

    def withdraw_call(self, amount: int) -> LedgerCall: ...

    def borrow_call(self, amount: int) -> LedgerCall: ...

    def repay_call(self, amount: int) -> LedgerCall: ...

    def liquidate_call(self, target: str, debt_to_cover: int) -> LedgerCall: ...

    def approve_call(self, token: str, amount: int) -> LedgerCall: ...

    async def simulate(self, call: LedgerCall, account: str) -> None: ...

    async def explain_failure(
        self, call: LedgerCall, account: str, block_number: int
    ) -> LendingError: ...
