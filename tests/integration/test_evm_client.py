"""Integration tests for the EVM client: RPC fallback and error handling."""
from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import aiohttp
import pytest

from lendsync.chains.evm import EvmClient
from lendsync.config import ChainConfig
from lendsync.errors import GatewayConnectionError, RpcError


@pytest.fixture()
def client() -> EvmClient:
    return EvmClient(
        ChainConfig(
            rpc_endpoints=(
                "https://rpc1.example.com",
                "https://rpc2.example.com",
                "https://rpc3.example.com",
            ),
            rpc_timeout=5,
        )
    )


def _mock_response(response_data: dict) -> AsyncMock:
    mock_response = AsyncMock()
    mock_response.json = AsyncMock(return_value=response_data)
    mock_response.__aenter__ = AsyncMock(return_value=mock_response)
    mock_response.__aexit__ = AsyncMock(return_value=None)
    return mock_response


def _mock_session(response_data: dict | None = None, error: Exception | None = None):
    """Create a mock aiohttp session that returns given data or raises error."""
    mock_session = AsyncMock()
    if error:
        mock_session.post = MagicMock(side_effect=error)
    else:
        mock_session.post = MagicMock(return_value=_mock_response(response_data or {}))
    mock_session.__aenter__ = AsyncMock(return_value=mock_session)
    mock_session.__aexit__ = AsyncMock(return_value=None)
    return mock_session


class TestRpcCall:
    @pytest.mark.asyncio
    async def test_successful_call(self, client: EvmClient) -> None:
        mock_session = _mock_session({"jsonrpc": "2.0", "id": 1, "result": "0x2a"})

        with patch("lendsync.chains.evm.client.aiohttp.ClientSession", return_value=mock_session):
            with patch("lendsync.chains.evm.client.aiohttp.TCPConnector"):
                result = await client.rpc_call("eth_blockNumber", [])

        assert result == "0x2a"
        payload = mock_session.post.call_args.kwargs["json"]
        assert payload["method"] == "eth_blockNumber"
        assert payload["jsonrpc"] == "2.0"

    @pytest.mark.asyncio
    async def test_rpc_error_is_not_retried(self, client: EvmClient) -> None:
        mock_session = _mock_session(
            {
                "jsonrpc": "2.0",
                "id": 1,
                "error": {"code": 3, "message": "execution reverted", "data": "0xdeadbeef"},
            }
        )

        with patch("lendsync.chains.evm.client.aiohttp.ClientSession", return_value=mock_session):
            with patch("lendsync.chains.evm.client.aiohttp.TCPConnector"):
                with pytest.raises(RpcError) as exc_info:
                    await client.rpc_call("eth_call", [])

        assert exc_info.value.code == 3
        assert exc_info.value.data == "0xdeadbeef"
        assert mock_session.post.call_count == 1

    @pytest.mark.asyncio
    async def test_fallback_on_connection_error(self, client: EvmClient) -> None:
        """When first endpoint fails, should try the next one."""
        call_count = 0
        success_response = _mock_response({"jsonrpc": "2.0", "id": 1, "result": "0x1"})

        def side_effect(*args, **kwargs):
            nonlocal call_count
            call_count += 1
            if call_count == 1:
                raise aiohttp.ClientConnectionError("first endpoint down")
            return success_response

        mock_session = _mock_session()
        mock_session.post = MagicMock(side_effect=side_effect)

        with patch("lendsync.chains.evm.client.aiohttp.ClientSession", return_value=mock_session):
            with patch("lendsync.chains.evm.client.aiohttp.TCPConnector"):
                result = await client.rpc_call("eth_chainId", [])

        assert result == "0x1"
        assert call_count == 2
        assert client.current_rpc_index == 1

    @pytest.mark.asyncio
    async def test_all_endpoints_fail(self, client: EvmClient) -> None:
        mock_session = _mock_session(error=aiohttp.ClientConnectionError("down"))

        with patch("lendsync.chains.evm.client.aiohttp.ClientSession", return_value=mock_session):
            with patch("lendsync.chains.evm.client.aiohttp.TCPConnector"):
                with pytest.raises(GatewayConnectionError, match="All RPC endpoints failed"):
                    await client.rpc_call("eth_chainId", [])

        assert mock_session.post.call_count == 3


class TestHelpers:
    @pytest.mark.asyncio
    async def test_eth_call_params(self, client: EvmClient) -> None:
        with patch.object(client, "rpc_call", AsyncMock(return_value="0x")) as rpc:
            await client.eth_call("0xto", "0xdata", sender="0xfrom", block=16)

        rpc.assert_awaited_once_with(
            "eth_call", [{"to": "0xto", "data": "0xdata", "from": "0xfrom"}, "0x10"]
        )

    @pytest.mark.asyncio
    async def test_eth_call_defaults_to_latest(self, client: EvmClient) -> None:
        with patch.object(client, "rpc_call", AsyncMock(return_value="0x")) as rpc:
            await client.eth_call("0xto", "0xdata")

        rpc.assert_awaited_once_with("eth_call", [{"to": "0xto", "data": "0xdata"}, "latest"])

    @pytest.mark.asyncio
    async def test_accounts_empty_result(self, client: EvmClient) -> None:
        with patch.object(client, "rpc_call", AsyncMock(return_value=None)):
            assert await client.accounts() == []

    @pytest.mark.asyncio
    async def test_block_number_is_parsed(self, client: EvmClient) -> None:
        with patch.object(client, "rpc_call", AsyncMock(return_value="0x4e20")) as rpc:
            assert await client.block_number() == 20_000
        rpc.assert_awaited_once_with("eth_blockNumber", [])

    @pytest.mark.asyncio
    async def test_get_logs_passes_filter(self, client: EvmClient) -> None:
        log_filter = {"address": "0xto", "fromBlock": "0x0", "toBlock": "0x10"}
        with patch.object(client, "rpc_call", AsyncMock(return_value=None)) as rpc:
            assert await client.get_logs(log_filter) == []
        rpc.assert_awaited_once_with("eth_getLogs", [log_filter])
