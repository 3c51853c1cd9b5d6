"""Unit tests for transfer gateways"""
import json

import httpx
import pytest

from crowdfund.config import Settings
from crowdfund.services.errors import TransferFailed
from crowdfund.services.transfers import (
    InMemoryTransferGateway,
    LedgerClient,
    build_transfer_gateway,
)

from conftest import INVESTOR_1

BIG = 2**255


class TestInMemoryTransferGateway:
    """Tests for the in-memory gateway"""

    @pytest.mark.asyncio
    async def test_repeat_reference_moves_funds_once(self):
        """Test transfers are deduplicated by reference"""
        gateway = InMemoryTransferGateway()
        first = await gateway.transfer(INVESTOR_1, 10, "ref-1")
        second = await gateway.transfer(INVESTOR_1, 10, "ref-1")
        assert first == second
        assert gateway.total_sent_to(INVESTOR_1) == 10
        await gateway.transfer(INVESTOR_1, 5, "ref-2")
        assert gateway.total_sent_to(INVESTOR_1) == 15


class TestLedgerClient:
    """Tests for the HTTP ledger client"""

    @staticmethod
    def _client(handler) -> LedgerClient:
        return LedgerClient("http://ledger.test/", transport=httpx.MockTransport(handler))

    @pytest.mark.asyncio
    async def test_transfer_success(self):
        """Test the request body and the parsed receipt"""
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["path"] = request.url.path
            seen["key"] = request.headers.get("Idempotency-Key")
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"transaction_id": "tx-42"})

        client = self._client(handler)
        await client.connect()
        try:
            receipt = await client.transfer(INVESTOR_1, BIG, "ref-1")
        finally:
            await client.disconnect()

        assert receipt.transaction_id == "tx-42"
        assert receipt.amount == BIG
        assert seen["path"] == "/transfers"
        assert seen["key"] == "ref-1"
        assert seen["body"] == {"recipient": INVESTOR_1, "amount": str(BIG), "reference": "ref-1"}

    @pytest.mark.asyncio
    @pytest.mark.parametrize("response", [
        httpx.Response(500, json={"error": "boom"}),
        httpx.Response(200, json={}),
        httpx.Response(200, text="not json"),
    ])
    async def test_transfer_failures(self, response):
        """Test rejected or malformed responses raise TransferFailed"""
        client = self._client(lambda request: response)
        await client.connect()
        try:
            with pytest.raises(TransferFailed) as exc:
                await client.transfer(INVESTOR_1, 1, "ref-1")
        finally:
            await client.disconnect()
        assert exc.value.reference == "ref-1"

    @pytest.mark.asyncio
    async def test_network_error(self):
        """Test connection errors raise TransferFailed"""
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        client = self._client(handler)
        await client.connect()
        with pytest.raises(TransferFailed):
            await client.transfer(INVESTOR_1, 1, "ref-1")
        await client.disconnect()

    @pytest.mark.asyncio
    async def test_requires_connect(self):
        """Test using the client before connect fails loudly"""
        client = LedgerClient("http://ledger.test")
        with pytest.raises(RuntimeError):
            await client.transfer(INVESTOR_1, 1, "ref-1")


class TestBuildTransferGateway:
    """Tests for gateway selection from settings"""

    def test_in_memory_without_url(self):
        """Test demo mode without a ledger url"""
        assert isinstance(build_transfer_gateway(Settings(ledger_url=None)), InMemoryTransferGateway)

    def test_ledger_client_with_url(self):
        """Test the ledger client is used when configured"""
        gateway = build_transfer_gateway(Settings(ledger_url="http://ledger.test", ledger_timeout_seconds=3))
        assert isinstance(gateway, LedgerClient)
        assert gateway.timeout == 3
