"""Tests for the wallet JSON-RPC client against httpx.MockTransport."""
import base64
import json

import httpx
import pytest

from settlement.errors import ConfigurationError, RpcError
from settlement.services.monero_rpc import MoneroRpcClient

RPC_URL = "http://wallet.test:18083/json_rpc"


def client_for(handler, **kwargs):
    return MoneroRpcClient(RPC_URL, transport=httpx.MockTransport(handler), **kwargs)


def rpc_result(result):
    return httpx.Response(200, json={"jsonrpc": "2.0", "id": "0", "result": result})


class TestCall:

    @pytest.mark.asyncio
    async def test_sends_json_rpc_envelope(self):
        seen = {}

        def handler(request):
            seen["body"] = json.loads(request.content)
            seen["url"] = str(request.url)
            return rpc_result({"height": 3100000})

        height = await client_for(handler).get_height()

        assert height == 3100000
        assert seen["url"] == RPC_URL
        assert seen["body"] == {"jsonrpc": "2.0", "id": "0", "method": "get_height", "params": {}}

    @pytest.mark.asyncio
    async def test_basic_auth_header(self):
        seen = {}

        def handler(request):
            seen["authorization"] = request.headers.get("authorization")
            return rpc_result({"height": 1})

        await client_for(handler, username="monero", password="secret").get_height()

        expected = base64.b64encode(b"monero:secret").decode()
        assert seen["authorization"] == f"Basic {expected}"

    @pytest.mark.asyncio
    async def test_no_auth_header_without_credentials(self):
        seen = {}

        def handler(request):
            seen["authorization"] = request.headers.get("authorization")
            return rpc_result({"height": 1})

        await client_for(handler).get_height()
        assert seen["authorization"] is None

    @pytest.mark.asyncio
    async def test_daemon_error_member(self):
        def handler(request):
            return httpx.Response(200, json={
                "jsonrpc": "2.0", "id": "0",
                "error": {"code": -13, "message": "No wallet file"}
            })

        with pytest.raises(RpcError) as exc_info:
            await client_for(handler).call("get_transfers", {"in": True})

        assert exc_info.value.method == "get_transfers"
        assert exc_info.value.code == -13
        assert exc_info.value.message == "No wallet file"

    @pytest.mark.asyncio
    async def test_http_error_status(self):
        def handler(request):
            return httpx.Response(401, text="Unauthorized")

        with pytest.raises(RpcError) as exc_info:
            await client_for(handler).get_height()
        assert exc_info.value.code == 401

    @pytest.mark.asyncio
    async def test_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        with pytest.raises(RpcError) as exc_info:
            await client_for(handler, timeout=10).get_height()
        assert "timed out" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_connection_refused(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(RpcError):
            await client_for(handler).get_height()

    @pytest.mark.asyncio
    async def test_invalid_json(self):
        def handler(request):
            return httpx.Response(200, text="<html>proxy error</html>")

        with pytest.raises(RpcError):
            await client_for(handler).get_height()


class TestGetTransfers:

    @pytest.mark.asyncio
    async def test_requests_subaddress_and_merges_pool(self):
        seen = {}

        def handler(request):
            seen["params"] = json.loads(request.content)["params"]
            return rpc_result({
                "in": [{"txid": "aa", "amount": 50000000000, "height": 990, "address": "8Sub", "unlock_time": 0,
                        "subaddr_index": {"major": 0, "minor": 7}, "confirmations": 10}],
                "pool": [{"txid": "bb", "amount": 70000000000, "height": 0}],
            })

        transfers = await client_for(handler).get_transfers(account_index=0, subaddr_indices=[7])

        assert seen["params"] == {"in": True, "account_index": 0, "subaddr_indices": [7], "pool": True}
        assert [(t.txid, t.amount, t.height) for t in transfers] == [
            ("aa", 50000000000, 990),
            ("bb", 70000000000, 0),
        ]
        assert transfers[0].model_dump() == {"txid": "aa", "amount": 50000000000, "height": 990, "address": "8Sub"}

    @pytest.mark.asyncio
    async def test_account_wide_without_pool(self):
        seen = {}

        def handler(request):
            seen["params"] = json.loads(request.content)["params"]
            return rpc_result({})

        transfers = await client_for(handler).get_transfers(account_index=2, include_pool=False)

        assert seen["params"] == {"in": True, "account_index": 2}
        assert transfers == []

    @pytest.mark.asyncio
    async def test_malformed_entries_are_skipped(self):
        def handler(request):
            return rpc_result({"in": [
                {"txid": "good", "amount": 1, "height": 5},
                {"amount": "not-a-number"},
            ]})

        transfers = await client_for(handler).get_transfers()
        assert [t.txid for t in transfers] == ["good"]


class TestConfiguration:

    def test_missing_url(self):
        with pytest.raises(ConfigurationError):
            MoneroRpcClient("")

    def test_from_settings_without_url(self, monkeypatch):
        from config import settings
        monkeypatch.setattr(settings, "MONERO_RPC_URL", "")
        with pytest.raises(ConfigurationError):
            MoneroRpcClient.from_settings()
