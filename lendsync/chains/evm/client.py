"""EVM JSON-RPC client with fallback support."""
from __future__ import annotations

import asyncio
import logging
import ssl
from typing import Any

import aiohttp
import certifi

from ...config import ChainConfig
from ...errors import GatewayConnectionError, RpcError

logger = logging.getLogger(__name__)


class EvmClient:
    """EVM node RPC client with automatic endpoint fallback.

    Transport failures rotate to the next endpoint. A JSON-RPC error object
    (reverts, rejected requests) is a real answer from the node and is raised
    as ``RpcError`` without trying other endpoints.
    """

    def __init__(self, config: ChainConfig) -> None:
        self.endpoints = list(config.rpc_endpoints)
        self.timeout = config.rpc_timeout
        self.current_rpc_index = 0
        self._request_id = 0

    async def rpc_call(self, method: str, params: list[Any]) -> Any:
        """Make RPC call with fallback to alternative endpoints."""
        self._request_id += 1
        payload = {
            "jsonrpc": "2.0",
            "id": self._request_id,
            "method": method,
            "params": params,
        }

        ssl_context = ssl.create_default_context(cafile=certifi.where())

        last_error: Exception | None = None
        for attempt in range(len(self.endpoints)):
            rpc_index = (self.current_rpc_index + attempt) % len(self.endpoints)
            rpc_url = self.endpoints[rpc_index]

            try:
                connector = aiohttp.TCPConnector(ssl=ssl_context)
                async with aiohttp.ClientSession(connector=connector) as session:
                    async with session.post(
                        rpc_url,
                        json=payload,
                        timeout=aiohttp.ClientTimeout(total=self.timeout),
                    ) as response:
                        result = await response.json()
            except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
                last_error = e
                logger.warning("RPC endpoint %s failed: %s", rpc_url, e)
                if attempt < len(self.endpoints) - 1:
                    logger.info("Trying next endpoint...")
                continue

            if rpc_index != self.current_rpc_index:
                logger.info("Switched to RPC endpoint: %s", rpc_url)
                self.current_rpc_index = rpc_index

            error = result.get("error")
            if error:
                raise RpcError(error.get("code"), error.get("message", ""), error.get("data"))
            return result.get("result")

        raise GatewayConnectionError(
            f"All RPC endpoints failed. Last error: {last_error}", raw=last_error
        )

    async def eth_call(
        self,
        to: str,
        data: str,
        sender: str | None = None,
        block: str | int = "latest",
    ) -> str:
        """Execute a non-mutating call; returns the raw hex return data."""
        tx: dict[str, Any] = {"to": to, "data": data}
        if sender:
            tx["from"] = sender
        block_tag = hex(block) if isinstance(block, int) else block
        return await self.rpc_call("eth_call", [tx, block_tag])

    async def accounts(self) -> list[str]:
        return await self.rpc_call("eth_accounts", []) or []

    async def request_accounts(self) -> list[str]:
        return await self.rpc_call("eth_requestAccounts", []) or []

    async def send_transaction(self, tx: dict[str, Any]) -> str:
        return await self.rpc_call("eth_sendTransaction", [tx])

    async def get_transaction_receipt(self, tx_hash: str) -> dict[str, Any] | None:
        return await self.rpc_call("eth_getTransactionReceipt", [tx_hash])

    async def get_transaction(self, tx_hash: str) -> dict[str, Any] | None:
        return await self.rpc_call("eth_getTransactionByHash", [tx_hash])

    async def block_number(self) -> int:
        return int(await self.rpc_call("eth_blockNumber", []), 16)

    async def get_logs(self, log_filter: dict[str, Any]) -> list[dict[str, Any]]:
        return await self.rpc_call("eth_getLogs", [log_filter]) or []
