"""
REST transport tests against a local aiohttp server.
"""

import time
from decimal import Decimal

import pytest

from spreadbot.errors import AuthError, ProtocolError, RateLimitedError, TransportError
from spreadbot.rest_client import RestClient, decode_json, parse_retry_after


@pytest.fixture
async def rest(exchange):
    client = RestClient(exchange.base_url, name="test", min_interval_ms=0, timeout_sec=2)
    yield client
    await client.close()


class TestResponses:

    async def test_json_numbers_become_decimal(self, rest, exchange):
        data = await rest.get_json("/Public/GetOrderBook", params={"primaryCurrencyCode": "Xbt"})

        assert data["BuyOrders"][0]["Price"] == Decimal("100.0")
        assert isinstance(data["SellOrders"][0]["Volume"], Decimal)
        assert exchange.requests[0]["query"] == {"primaryCurrencyCode": "Xbt"}
        assert rest.requests_total == 1

    async def test_post_sends_json_body(self, rest, exchange):
        await rest.post_json("/Private/GetAccounts", {"apiKey": "k", "nonce": 1})
        assert exchange.requests[0]["method"] == "POST"
        assert exchange.requests[0]["body"] == {"apiKey": "k", "nonce": 1}

    async def test_rate_limited(self, rest, exchange):
        exchange.respond("/Public/GetOrderBook", 429, "slow down", {"Retry-After": "7"})
        with pytest.raises(RateLimitedError) as exc_info:
            await rest.get_json("/Public/GetOrderBook")
        assert exc_info.value.retry_after == 7.0
        assert exc_info.value.status == 429

    @pytest.mark.parametrize(
        "status, error",
        [(401, AuthError), (403, AuthError), (500, TransportError), (503, TransportError), (400, ProtocolError), (404, ProtocolError)],
    )
    async def test_status_mapping(self, rest, exchange, status, error):
        exchange.respond("/Public/GetOrderBook", status, '{"Message": "nope"}')
        with pytest.raises(error) as exc_info:
            await rest.get_json("/Public/GetOrderBook")
        assert exc_info.value.status == status
        assert rest.errors_total == 1

    async def test_client_error_body_in_message(self, rest, exchange):
        exchange.respond("/Public/GetOrderBook", 400, '{"Message": "Invalid currency code"}')
        with pytest.raises(ProtocolError, match="Invalid currency code"):
            await rest.get_json("/Public/GetOrderBook")

    async def test_invalid_json_is_protocol_error(self, rest, exchange):
        exchange.respond("/Public/GetOrderBook", 200, "<html>maintenance</html>")
        with pytest.raises(ProtocolError):
            await rest.get_json("/Public/GetOrderBook")

    async def test_non_utf8_body_is_protocol_error(self, rest, exchange):
        exchange.respond("/Public/GetOrderBook", 200, b'{"BuyOrders": "\xff\xfe"}')
        with pytest.raises(ProtocolError):
            await rest.get_json("/Public/GetOrderBook")


class TestTransport:

    async def test_timeout(self, exchange):
        exchange.delays["/Public/GetOrderBook"] = 1.0
        async with RestClient(exchange.base_url, name="test", min_interval_ms=0, timeout_sec=0.2) as rest:
            with pytest.raises(TransportError, match="timed out"):
                await rest.get_json("/Public/GetOrderBook")

    async def test_connection_refused(self):
        async with RestClient("http://127.0.0.1:1", name="test", min_interval_ms=0, timeout_sec=2) as rest:
            with pytest.raises(TransportError):
                await rest.get_json("/Public/GetOrderBook")

    async def test_min_interval_between_requests(self, exchange):
        async with RestClient(exchange.base_url, name="test", min_interval_ms=200) as rest:
            start = time.monotonic()
            await rest.get_json("/Public/GetMarketSummary")
            await rest.get_json("/Public/GetMarketSummary")
            assert time.monotonic() - start >= 0.18


def test_decode_json_rejects_garbage():
    with pytest.raises(ProtocolError):
        decode_json("{")


@pytest.mark.parametrize("value, expected", [("5", 5.0), ("0.5", 0.5), (None, None), ("", None), ("-1", None), ("Wed, 21 Oct 2015 07:28:00 GMT", None)])
def test_parse_retry_after(value, expected):
    assert parse_retry_after(value) == expected
