"""Tests for CoinGecko contract lookups."""

import asyncio

import httpx
import pytest
from conftest import TOKEN_A

from feedprobe.errors import LookupFailure
from feedprobe.feeds.coingecko import RestLookupClient


def _client(handler, **kwargs):
    return RestLookupClient(
        "https://pro-api.coingecko.com/api/v3/",
        "cg-key",
        platform="binance-smart-chain",
        max_attempts=kwargs.pop("max_attempts", 2),
        wait_min_seconds=0,
        wait_max_seconds=0,
        transport=httpx.MockTransport(handler),
        **kwargs,
    )


def _lookup(client, address):
    async def _run():
        async with client:
            return await client.lookup(address)

    return asyncio.run(_run())


class TestRestLookupClient:
    """Tests for RestLookupClient.lookup()."""

    def test_found(self):
        requests: list[httpx.Request] = []

        def handler(request):
            requests.append(request)
            return httpx.Response(200, json={"id": "binancelife", "symbol": "bl"})

        record = _lookup(_client(handler), TOKEN_A.upper().replace("0X", "0x"))

        assert record == {"id": "binancelife", "symbol": "bl"}
        assert requests[0].url.path == f"/api/v3/coins/binance-smart-chain/contract/{TOKEN_A}"
        assert requests[0].headers["x-cg-pro-api-key"] == "cg-key"

    def test_not_found_is_none(self):
        record = _lookup(_client(lambda request: httpx.Response(404, json={"error": "coin not found"})), TOKEN_A)

        assert record is None

    def test_server_error_is_retried_then_fails(self):
        calls: list[int] = []

        def handler(request):
            calls.append(1)
            return httpx.Response(503)

        with pytest.raises(LookupFailure) as exc_info:
            _lookup(_client(handler, max_attempts=3), TOKEN_A)

        assert len(calls) == 3
        assert exc_info.value.identity_key == TOKEN_A
        assert "503" in exc_info.value.reason

    def test_retry_recovers(self):
        responses = iter([httpx.Response(429), httpx.Response(200, json={"id": "ok"})])

        record = _lookup(_client(lambda request: next(responses)), TOKEN_A)

        assert record == {"id": "ok"}

    def test_client_error_is_not_retried(self):
        calls: list[int] = []

        def handler(request):
            calls.append(1)
            return httpx.Response(401)

        with pytest.raises(LookupFailure):
            _lookup(_client(handler, max_attempts=3), TOKEN_A)

        assert len(calls) == 1

    def test_network_error_is_lookup_failure(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(LookupFailure, match="connection refused"):
            _lookup(_client(handler), TOKEN_A)

    def test_unexpected_payload(self):
        with pytest.raises(LookupFailure, match="payload"):
            _lookup(_client(lambda request: httpx.Response(200, json=["not", "a", "coin"])), TOKEN_A)
