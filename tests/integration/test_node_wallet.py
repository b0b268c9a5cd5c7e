"""Integration tests for the node-managed wallet."""
from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from lendsync.config import ChainConfig
from lendsync.errors import (
    GatewayConnectionError,
    RpcError,
    UnknownRevertError,
    UserRejectedError,
)
from lendsync.models import LedgerCall
from lendsync.wallets import NodeWallet

from conftest import ACCOUNT, PROTOCOL

TX_HASH = "0x" + "ab" * 32


@pytest.fixture()
def client() -> AsyncMock:
    return AsyncMock()


@pytest.fixture()
def node_wallet(client: AsyncMock, sample_chain_config: ChainConfig) -> NodeWallet:
    return NodeWallet(client, sample_chain_config)


class TestConnect:
    @pytest.mark.asyncio
    async def test_configured_account(
        self, client: AsyncMock, sample_chain_config: ChainConfig
    ) -> None:
        wallet = NodeWallet(client, sample_chain_config, account=ACCOUNT)
        assert await wallet.connect() == ACCOUNT
        client.request_accounts.assert_not_called()

    @pytest.mark.asyncio
    async def test_requests_accounts(self, node_wallet: NodeWallet, client: AsyncMock) -> None:
        client.request_accounts.return_value = [ACCOUNT]
        assert await node_wallet.connect() == ACCOUNT
        assert node_wallet.account == ACCOUNT

    @pytest.mark.asyncio
    async def test_falls_back_to_eth_accounts(
        self, node_wallet: NodeWallet, client: AsyncMock
    ) -> None:
        client.request_accounts.side_effect = RpcError(-32601, "method not found")
        client.accounts.return_value = [ACCOUNT]
        assert await node_wallet.connect() == ACCOUNT

    @pytest.mark.asyncio
    async def test_eth_accounts_fallback_error_is_decoded(
        self, node_wallet: NodeWallet, client: AsyncMock
    ) -> None:
        client.request_accounts.side_effect = RpcError(-32601, "method not found")
        client.accounts.side_effect = RpcError(-32000, "accounts unavailable")
        with pytest.raises(UnknownRevertError, match="accounts unavailable"):
            await node_wallet.connect()

    @pytest.mark.asyncio
    async def test_user_rejects_connection(
        self, node_wallet: NodeWallet, client: AsyncMock
    ) -> None:
        client.request_accounts.side_effect = RpcError(4001, "User rejected the request")
        with pytest.raises(UserRejectedError):
            await node_wallet.connect()

    @pytest.mark.asyncio
    async def test_no_accounts(self, node_wallet: NodeWallet, client: AsyncMock) -> None:
        client.request_accounts.return_value = []
        with pytest.raises(GatewayConnectionError):
            await node_wallet.connect()


class TestSubmit:
    @pytest.mark.asyncio
    async def test_sends_transaction(self, node_wallet: NodeWallet, client: AsyncMock) -> None:
        client.request_accounts.return_value = [ACCOUNT]
        client.send_transaction.return_value = TX_HASH

        tx_hash = await node_wallet.sign_and_submit(LedgerCall(PROTOCOL, "0x1234", "borrow"))

        assert tx_hash == TX_HASH
        client.send_transaction.assert_awaited_once_with(
            {"from": ACCOUNT, "to": PROTOCOL, "data": "0x1234"}
        )

    @pytest.mark.asyncio
    async def test_rejected_signature(self, node_wallet: NodeWallet, client: AsyncMock) -> None:
        client.request_accounts.return_value = [ACCOUNT]
        client.send_transaction.side_effect = RpcError(4001, "User denied transaction signature")
        with pytest.raises(UserRejectedError):
            await node_wallet.sign_and_submit(LedgerCall(PROTOCOL, "0x1234", "borrow"))


class TestConfirmation:
    @pytest.mark.asyncio
    async def test_polls_until_mined(self, node_wallet: NodeWallet, client: AsyncMock) -> None:
        client.get_transaction_receipt.side_effect = [
            None,
            None,
            {"status": "0x1", "blockNumber": "0x10"},
        ]
        receipt = await node_wallet.wait_for_confirmation(TX_HASH)
        assert receipt.success is True
        assert receipt.block_number == 16
        assert client.get_transaction_receipt.await_count == 3

    @pytest.mark.asyncio
    async def test_reverted_receipt(self, node_wallet: NodeWallet, client: AsyncMock) -> None:
        client.get_transaction_receipt.return_value = {"status": "0x0", "blockNumber": "0x5"}
        receipt = await node_wallet.wait_for_confirmation(TX_HASH)
        assert receipt.success is False

    @pytest.mark.asyncio
    async def test_poll_errors_are_retried(
        self, node_wallet: NodeWallet, client: AsyncMock
    ) -> None:
        client.get_transaction_receipt.side_effect = [
            GatewayConnectionError("blip"),
            {"status": "0x1", "blockNumber": "0x1"},
        ]
        assert (await node_wallet.wait_for_confirmation(TX_HASH)).success

    @pytest.mark.asyncio
    async def test_node_errors_while_polling_are_retried(
        self, node_wallet: NodeWallet, client: AsyncMock
    ) -> None:
        client.get_transaction_receipt.side_effect = [
            RpcError(-32603, "header not found"),
            {"status": "0x1", "blockNumber": "0x2"},
        ]
        receipt = await node_wallet.wait_for_confirmation(TX_HASH)
        assert receipt.block_number == 2
        assert client.get_transaction_receipt.await_count == 2

    @pytest.mark.asyncio
    async def test_configured_timeout(self, client: AsyncMock) -> None:
        wallet = NodeWallet(
            client,
            ChainConfig(
                rpc_endpoints=("https://rpc.example.com",),
                confirmation_poll_seconds=0.01,
                confirmation_timeout_seconds=0.05,
            ),
        )
        client.get_transaction_receipt.return_value = None
        with pytest.raises(GatewayConnectionError, match="No confirmation"):
            await wallet.wait_for_confirmation(TX_HASH)
