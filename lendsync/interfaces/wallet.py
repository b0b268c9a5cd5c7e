"""Wallet protocol: account identity and transaction signing."""
from typing import Protocol

from ..models import LedgerCall, Receipt


class Wallet(Protocol):
    """Abstract signing provider. Every call may raise ``UserRejectedError``."""

    async def connect(self) -> str: ...

    async def sign_and_submit(self, call: LedgerCall) -> str: ...

    async def wait_for_confirmation(self, tx_hash: str) -> Receipt: ...
