"""
Exchange Client Module
======================

Independent Reserve API client.

Public calls (no auth):
    GET  /Public/GetOrderBook?primaryCurrencyCode=Xbt&secondaryCurrencyCode=Aud
    GET  /Public/GetMarketSummary?primaryCurrencyCode=Xbt&secondaryCurrencyCode=Aud

Private calls (read-only key):
    POST /Private/<Method> with JSON body
        {"apiKey": ..., "nonce": ..., "signature": ..., <params>}

Signature:
    HMAC-SHA256 with the API secret over the comma-separated string
        "<url>,apiKey=<key>,nonce=<nonce>,<name>=<value>,..."
    in the same parameter order as the body, hex-encoded upper case.
    The nonce must increase with every private request.

The client performs no retries; every failure surfaces as a FetchError
subclass for the caller to classify.
"""

import hashlib
import hmac
import logging
import time
from decimal import Decimal
from typing import Any, Optional

from spreadbot.config import ApiKey, Settings
from spreadbot.errors import AuthError, ProtocolError
from spreadbot.orderbook import OrderBook
from spreadbot.rest_client import RestClient
from spreadbot.types import CurrencyPair, SpreadReading
from spreadbot.utils_time import now_ms

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 25

# Substrings in an error body that mean the key itself was rejected
_AUTH_ERROR_MARKERS = ("api key", "apikey", "signature", "not authorized", "permission")


def sign(secret: str, url: str, params: list[tuple[str, Any]]) -> str:
    """Compute the request signature (upper-case hex HMAC-SHA256)."""
    message = ",".join([url] + [f"{name}={value}" for name, value in params])
    digest = hmac.new(secret.encode("utf-8"), message.encode("utf-8"), hashlib.sha256)
    return digest.hexdigest().upper()


class NonceGenerator:
    """
    Strictly increasing nonce seeded from the wall clock (milliseconds).

    Seeding from time keeps nonces increasing across process restarts.
    """

    def __init__(self, start: Optional[int] = None) -> None:
        self._last = start if start is not None else int(time.time() * 1000)

    def next(self) -> int:
        self._last = max(self._last + 1, int(time.time() * 1000))
        return self._last


class ExchangeClient:
    """
    Capability to read the market and, with a key, the account.

    Args:
        rest: Transport for all requests
        read_only: Read-only API key for private calls (optional)
        fill_volume: When set, ``fetch_spread`` measures the average price to
            fill this base volume instead of top of book
    """

    def __init__(
        self,
        rest: RestClient,
        read_only: Optional[ApiKey] = None,
        fill_volume: Optional[Decimal] = None,
        nonce: Optional[NonceGenerator] = None,
    ) -> None:
        self._rest = rest
        self._key = read_only
        self._fill_volume = fill_volume
        self._nonce = nonce or NonceGenerator()

    @classmethod
    def from_settings(cls, settings: Settings) -> "ExchangeClient":
        rest = RestClient(
            base_url=settings.base_url,
            name="independentreserve",
            min_interval_ms=settings.min_request_interval_ms,
            timeout_sec=settings.request_timeout_seconds,
        )
        return cls(rest, read_only=settings.read_only, fill_volume=settings.fill_volume)

    @property
    def has_credentials(self) -> bool:
        return self._key is not None

    async def close(self) -> None:
        await self._rest.close()

    async def __aenter__(self) -> "ExchangeClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @staticmethod
    def _pair_params(pair: CurrencyPair) -> dict[str, str]:
        return {
            "primaryCurrencyCode": pair.primary_code,
            "secondaryCurrencyCode": pair.secondary_code,
        }

    async def get_order_book(self, pair: CurrencyPair) -> OrderBook:
        data = await self._rest.get_json("/Public/GetOrderBook", params=self._pair_params(pair))
        return OrderBook.from_api(data)

    async def fetch_spread(self, pair: CurrencyPair) -> SpreadReading:
        """
        Fetch the current bid/ask for ``pair`` with one request.

        Returns:
            SpreadReading stamped with the local receive time. The reading is
            not validated here; the aggregator rejects ask < bid.

        Raises:
            TransportError, RateLimitedError, ProtocolError, AuthError
        """
        book = await self.get_order_book(pair)

        if self._fill_volume is not None:
            bid, ask = book.spread_to_fill(self._fill_volume)
        else:
            bid, ask = book.best_bid(), book.best_ask()

        return SpreadReading(ts_ms=now_ms(), bid=bid, ask=ask)

    async def get_market_summary(self, pair: CurrencyPair) -> dict[str, Any]:
        data = await self._rest.get_json("/Public/GetMarketSummary", params=self._pair_params(pair))
        if not isinstance(data, dict):
            raise ProtocolError("market summary response is not an object")
        return data

    # ------------------------------------------------------------------
    # Private API
    # ------------------------------------------------------------------

    async def private_request(self, method: str, params: Optional[dict[str, Any]] = None) -> Any:
        """
        Call an authenticated API method.

        Args:
            method: API method name, e.g. "GetAccounts"
            params: Method parameters, signed in the given order

        Raises:
            AuthError: No key configured, or the exchange rejected it.
            TransportError, RateLimitedError, ProtocolError
        """
        if self._key is None:
            raise AuthError(f"{method} requires an API key and none is configured")

        path = f"/Private/{method}"
        url = self._rest.url_for(path)

        ordered: list[tuple[str, Any]] = [
            ("apiKey", self._key.api_key),
            ("nonce", self._nonce.next()),
        ]
        ordered.extend((params or {}).items())

        payload = dict(ordered)
        payload["signature"] = sign(self._key.api_secret.get_secret_value(), url, ordered)
        logger.debug("exchange_private_request", extra={"method": method, "nonce": payload["nonce"]})

        try:
            return await self._rest.post_json(path, payload)
        except ProtocolError as e:
            # The exchange answers a bad key or signature with HTTP 400
            if any(marker in str(e).lower() for marker in _AUTH_ERROR_MARKERS):
                raise AuthError(str(e), status=e.status) from e
            raise

    async def get_accounts(self) -> Any:
        return await self.private_request("GetAccounts")

    async def get_open_orders(self, pair: CurrencyPair, page_index: int = 1) -> Any:
        params = {
            **self._pair_params(pair),
            "pageIndex": page_index,
            "pageSize": DEFAULT_PAGE_SIZE,
        }
        return await self.private_request("GetOpenOrders", params)

    async def get_brokerage_fees(self) -> Any:
        return await self.private_request("GetBrokerageFees")
