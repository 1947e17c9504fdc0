"""
Order Book Module
=================

Parses the exchange's GetOrderBook response and derives bid/ask prices from
it: top of book, or the average price to fill a market order of a given
volume ("spread to fill").

Bids are sorted highest first, asks lowest first. All prices and volumes are
Decimal.
"""

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any

from spreadbot.errors import ProtocolError


class Side(str, Enum):
    BUY = "buy"
    SELL = "sell"


@dataclass(slots=True, frozen=True)
class Level:
    """One resting limit order."""
    price: Decimal
    volume: Decimal


def _to_decimal(value: Any, name: str) -> Decimal:
    if isinstance(value, bool):
        raise ProtocolError(f"order book {name} is not a number: {value!r}")
    try:
        result = Decimal(str(value))
    except (InvalidOperation, ValueError) as e:
        raise ProtocolError(f"order book {name} is not a number: {value!r}") from e
    if not result.is_finite():
        raise ProtocolError(f"order book {name} is not finite: {value!r}")
    return result


def _parse_levels(raw: Any, key: str) -> list[Level]:
    if not isinstance(raw, list):
        raise ProtocolError(f"order book field {key} missing or not a list")

    levels = []
    for item in raw:
        if not isinstance(item, dict) or "Price" not in item or "Volume" not in item:
            raise ProtocolError(f"order book {key} entry malformed: {item!r}")
        level = Level(
            price=_to_decimal(item["Price"], "price"),
            volume=_to_decimal(item["Volume"], "volume"),
        )
        if level.volume <= 0:
            raise ProtocolError(f"order book {key} entry has non-positive volume: {item!r}")
        levels.append(level)
    return levels


@dataclass(slots=True)
class OrderBook:
    """
    Sorted order book snapshot.

    Attributes:
        bids: Buy orders, highest price first
        asks: Sell orders, lowest price first
    """
    bids: list[Level]
    asks: list[Level]

    @classmethod
    def from_api(cls, payload: Any) -> "OrderBook":
        """
        Build from a GetOrderBook response.

        Expected shape:
            {"BuyOrders": [{"OrderType": "LimitBid", "Price": 1, "Volume": 2}, ...],
             "SellOrders": [...], ...}

        Raises:
            ProtocolError: On a missing or malformed field.
        """
        if not isinstance(payload, dict):
            raise ProtocolError(f"order book response is not an object: {type(payload).__name__}")

        bids = _parse_levels(payload.get("BuyOrders"), "BuyOrders")
        asks = _parse_levels(payload.get("SellOrders"), "SellOrders")
        bids.sort(key=lambda level: level.price, reverse=True)
        asks.sort(key=lambda level: level.price)
        return cls(bids=bids, asks=asks)

    def best_bid(self) -> Decimal:
        if not self.bids:
            raise ProtocolError("order book has no bids")
        return self.bids[0].price

    def best_ask(self) -> Decimal:
        if not self.asks:
            raise ProtocolError("order book has no asks")
        return self.asks[0].price

    def price_to_fill(self, volume: Decimal, side: Side) -> Decimal:
        """
        Average price of a market order of ``volume``.

        A market buy walks the asks, a market sell walks the bids.

        Raises:
            ProtocolError: If the book is too thin to fill ``volume``.
            ValueError: If ``volume`` is not positive.
        """
        if volume <= 0:
            raise ValueError("volume must be positive")

        levels = self.asks if side is Side.BUY else self.bids
        still_to_fill = volume
        total_spend = Decimal(0)

        for level in levels:
            take = min(still_to_fill, level.volume)
            total_spend += take * level.price
            still_to_fill -= take
            if still_to_fill <= 0:
                break

        if still_to_fill > 0:
            raise ProtocolError(f"order book too thin to fill {side.value} order of {volume}")

        return total_spend / volume

    def spread_to_fill(self, volume: Decimal) -> tuple[Decimal, Decimal]:
        """(bid, ask) prices for selling and buying ``volume`` at market."""
        bid = self.price_to_fill(volume, Side.SELL)
        ask = self.price_to_fill(volume, Side.BUY)
        return bid, ask


def spread_percent(bid: Decimal, ask: Decimal) -> tuple[Decimal, Decimal]:
    """
    Spread and spread as a fraction of the ask.

    Example:
        >>> spread_percent(Decimal("99"), Decimal("100"))
        (Decimal('1'), Decimal('0.01'))
    """
    spread = ask - bid
    if ask <= 0:
        return spread, Decimal(0)
    return spread, spread / ask
