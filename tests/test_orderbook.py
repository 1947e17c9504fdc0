"""
Order book parsing and fill-price tests.
"""

from decimal import Decimal

import pytest

from spreadbot.errors import ProtocolError
from spreadbot.orderbook import OrderBook, Side, spread_percent

BOOK = {
    "BuyOrders": [
        {"OrderType": "LimitBid", "Price": Decimal("99"), "Volume": Decimal("1")},
        {"OrderType": "LimitBid", "Price": Decimal("100"), "Volume": Decimal("0.5")},
        {"OrderType": "LimitBid", "Price": Decimal("98"), "Volume": Decimal("2")},
    ],
    "SellOrders": [
        {"OrderType": "LimitOffer", "Price": Decimal("102"), "Volume": Decimal("1")},
        {"OrderType": "LimitOffer", "Price": Decimal("101"), "Volume": Decimal("0.5")},
    ],
    "PrimaryCurrencyCode": "Xbt",
    "SecondaryCurrencyCode": "Aud",
}


class TestParse:

    def test_sorted_best_first(self):
        book = OrderBook.from_api(BOOK)
        assert book.best_bid() == Decimal("100")
        assert book.best_ask() == Decimal("101")
        assert [level.price for level in book.bids] == [Decimal("100"), Decimal("99"), Decimal("98")]

    def test_accepts_integer_prices(self):
        book = OrderBook.from_api(
            {"BuyOrders": [{"Price": 5, "Volume": 1}], "SellOrders": [{"Price": 6, "Volume": 1}]}
        )
        assert book.best_bid() == Decimal("5")
        assert book.best_ask() == Decimal("6")

    @pytest.mark.parametrize(
        "payload",
        [
            [],
            {"SellOrders": []},
            {"BuyOrders": "nope", "SellOrders": []},
            {"BuyOrders": [{"Price": 1}], "SellOrders": []},
            {"BuyOrders": [{"Price": "abc", "Volume": 1}], "SellOrders": []},
            {"BuyOrders": [{"Price": True, "Volume": 1}], "SellOrders": []},
            {"BuyOrders": [{"Price": 1, "Volume": 0}], "SellOrders": []},
            {"BuyOrders": [], "SellOrders": [{"Price": 1, "Volume": -1}]},
        ],
    )
    def test_malformed_payload(self, payload):
        with pytest.raises(ProtocolError):
            OrderBook.from_api(payload)

    def test_empty_side(self):
        book = OrderBook.from_api({"BuyOrders": [], "SellOrders": [{"Price": 1, "Volume": 1}]})
        with pytest.raises(ProtocolError):
            book.best_bid()


class TestFill:

    def test_fill_within_top_level(self):
        book = OrderBook.from_api(BOOK)
        assert book.price_to_fill(Decimal("0.5"), Side.BUY) == Decimal("101")
        assert book.price_to_fill(Decimal("0.5"), Side.SELL) == Decimal("100")

    def test_fill_walks_levels(self):
        book = OrderBook.from_api(BOOK)
        # 0.5 @ 101 + 0.5 @ 102
        assert book.price_to_fill(Decimal("1"), Side.BUY) == Decimal("101.5")
        # 0.5 @ 100 + 1 @ 99
        assert book.price_to_fill(Decimal("1.5"), Side.SELL) == Decimal("298") / Decimal("3")

    def test_spread_to_fill(self):
        bid, ask = OrderBook.from_api(BOOK).spread_to_fill(Decimal("1"))
        assert bid == Decimal("99.5")
        assert ask == Decimal("101.5")

    def test_book_too_thin(self):
        with pytest.raises(ProtocolError):
            OrderBook.from_api(BOOK).price_to_fill(Decimal("10"), Side.BUY)

    def test_volume_must_be_positive(self):
        with pytest.raises(ValueError):
            OrderBook.from_api(BOOK).price_to_fill(Decimal("0"), Side.BUY)


def test_spread_percent():
    assert spread_percent(Decimal("99"), Decimal("100")) == (Decimal("1"), Decimal("0.01"))
    assert spread_percent(Decimal("0"), Decimal("0")) == (Decimal("0"), Decimal("0"))
