"""Node-managed wallet: signs through the node's unlocked or injected account."""
from __future__ import annotations

import asyncio
import logging

from eth_utils import is_address, to_checksum_address

from ..chains.evm import EvmClient
from ..config import ChainConfig
from ..errors import GatewayConnectionError, RpcError
from ..models import LedgerCall, Receipt
from ..protocols.lending.decoder import decode_failure

logger = logging.getLogger(__name__)

# JSON-RPC "method not found"
_METHOD_NOT_FOUND = -32601


class NodeWallet:
    """Wallet backed by ``eth_sendTransaction`` on the connected node."""

    def __init__(
        self, client: EvmClient, config: ChainConfig, account: str | None = None
    ) -> None:
        self._client = client
        self._poll_seconds = config.confirmation_poll_seconds
        self._timeout = config.confirmation_timeout_seconds
        self._account = to_checksum_address(account) if account else None

    @property
    def account(self) -> str | None:
        return self._account

    async def connect(self) -> str:
        """Return the signing account, requesting access from the node if needed."""
        if self._account:
            return self._account

        try:
            accounts = await self._client.request_accounts()
        except RpcError as e:
            if e.code != _METHOD_NOT_FOUND:
                raise decode_failure(e) from e
            try:
                accounts = await self._client.accounts()
            except RpcError as fallback_error:
                raise decode_failure(fallback_error) from fallback_error

        accounts = [a for a in accounts if is_address(a)]
        if not accounts:
            raise GatewayConnectionError("No account available from the wallet provider")

        self._account = to_checksum_address(accounts[0])
        logger.info("Wallet connected: %s", self._account)
        return self._account

    async def sign_and_submit(self, call: LedgerCall) -> str:
        account = await self.connect()
        tx = {"from": account, "to": call.to, "data": call.data}
        if call.value:
            tx["value"] = hex(call.value)
        try:
            tx_hash = await self._client.send_transaction(tx)
        except RpcError as e:
            raise decode_failure(e) from e
        logger.info("Transaction sent (%s): %s", call.description, tx_hash)
        return tx_hash

    async def _poll_receipt(self, tx_hash: str) -> Receipt:
        while True:
            try:
                receipt = await self._client.get_transaction_receipt(tx_hash)
            except (GatewayConnectionError, RpcError) as e:
                # The transaction is already broadcast; keep polling.
                logger.warning("Receipt poll for %s failed: %s", tx_hash, e)
                receipt = None
            if receipt:
                return Receipt(
                    tx_hash=tx_hash,
                    success=int(receipt.get("status", "0x0"), 16) == 1,
                    block_number=int(receipt.get("blockNumber", "0x0"), 16),
                )
            await asyncio.sleep(self._poll_seconds)

    async def wait_for_confirmation(self, tx_hash: str) -> Receipt:
        """Wait until the transaction is mined.

        Unbounded unless ``confirmation_timeout_seconds`` is configured.
        """
        if self._timeout is None:
            return await self._poll_receipt(tx_hash)
        try:
            return await asyncio.wait_for(self._poll_receipt(tx_hash), self._timeout)
        except asyncio.TimeoutError as e:
            raise GatewayConnectionError(
                f"No confirmation for {tx_hash} after {self._timeout:.0f}s", raw=tx_hash
            ) from e
