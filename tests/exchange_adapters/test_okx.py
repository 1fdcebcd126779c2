"""
OKX Backend Tests.

============================================================
PURPOSE
============================================================
Envelope handling, contract sizing and position-mode behaviour
of the OKX spot and swap backends.

TEST CATEGORIES:
- Markets: instruments, sandbox header
- Market data: tickers, candle windows, public trades
- Spot orders: cash mode, base-currency market orders
- Swap orders: contract sizing, posSide, tdMode
- Errors: envelope codes and sCode refinement
- Account: balances, positions, leverage
- Order lists: pending orders, fills
- Signing: OK-ACCESS-SIGN recomputed from the request

============================================================
"""

import base64
import hashlib
import hmac
from decimal import Decimal

import pytest
import pytest_asyncio

from exchange_adapters import (
    AuthenticationRequired,
    ErrorCategory,
    ExchangeAPIError,
    ExchangeConfig,
    ExchangeException,
    InvalidAmount,
    InvalidOrderParameter,
    OKXExchange,
    OrderNotFound,
    OrderSide,
    OrderStatus,
    OrderType,
    ParseError,
    PerpOrderSide,
    PositionSide,
)


SPOT_INSTRUMENTS = [
    {
        "instId": "BTC-USDT",
        "instType": "SPOT",
        "baseCcy": "BTC",
        "quoteCcy": "USDT",
        "lotSz": "0.00000001",
        "tickSz": "0.1",
        "minSz": "0.00001",
        "state": "live",
    },
    {
        "instId": "OLD-USDT",
        "instType": "SPOT",
        "baseCcy": "OLD",
        "quoteCcy": "USDT",
        "lotSz": "1",
        "tickSz": "0.0001",
        "state": "suspend",
    },
]

SWAP_INSTRUMENTS = [
    {
        "instId": "BTC-USDT-SWAP",
        "instType": "SWAP",
        "uly": "BTC-USDT",
        "settleCcy": "USDT",
        "ctVal": "0.01",
        "ctType": "linear",
        "lotSz": "0.01",
        "tickSz": "0.1",
        "minSz": "0.01",
        "state": "live",
    },
]


def ok(*items):
    return {"code": "0", "msg": "", "data": list(items)}


def ack(ord_id="312269865356374016", cl_ord_id="", **extra):
    item = {"ordId": ord_id, "clOrdId": cl_ord_id, "sCode": "0", "sMsg": "", "ts": "1700000000000"}
    item.update(extra)
    return ok(item)


@pytest.fixture
def okx(credentials, transport):
    return OKXExchange(credentials, transport)


@pytest_asyncio.fixture
async def okx_perp(okx, transport):
    transport.queue(ok(*SWAP_INSTRUMENTS))
    await okx.perp.load_markets()
    return okx.perp


# ============================================================
# MARKET TESTS
# ============================================================

class TestOKXMarkets:
    """Tests for instrument loading."""

    @pytest.mark.asyncio
    async def test_spot_instruments(self, okx, transport):
        transport.queue(ok(*SPOT_INSTRUMENTS))

        assert await okx.spot.load_markets() == 1

        market = okx.spot.get_market("BTC/USDT")
        assert market.id == "BTC-USDT"
        assert market.precision.amount == 8
        assert market.precision.price == 1
        assert transport.last.path == "/api/v5/public/instruments"
        assert transport.last.params == {"instType": "SPOT"}

    @pytest.mark.asyncio
    async def test_swap_instruments(self, okx, transport):
        transport.queue(ok(*SWAP_INSTRUMENTS))

        markets = await okx.perp.fetch_markets()

        market = markets[0]
        assert market.symbol == "BTC/USDT:USDT"
        assert market.contract_value == Decimal("0.01")
        assert market.linear is True
        assert okx.perp.get_market("BTC-USDT-SWAP") is market

    @pytest.mark.asyncio
    async def test_non_envelope_response(self, okx, transport):
        transport.queue([1, 2, 3])

        with pytest.raises(ParseError) as exc_info:
            await okx.spot.load_markets()
        assert exc_info.value.error.operation == "load_markets"

    @pytest.mark.asyncio
    async def test_sandbox_sends_simulated_header(self, transport):
        exchange = OKXExchange(ExchangeConfig(sandbox=True), transport)
        transport.queue(ok(*SPOT_INSTRUMENTS))

        await exchange.spot.load_markets()

        assert transport.last.host == "www.okx.com"
        assert transport.last.headers["x-simulated-trading"] == "1"


# ============================================================
# MARKET DATA TESTS
# ============================================================

class TestOKXMarketData:
    """Tests for tickers and candles."""

    @pytest.mark.asyncio
    async def test_ticker_change_from_open(self, okx, transport):
        transport.queue(ok(*SPOT_INSTRUMENTS), ok({
            "instId": "BTC-USDT", "last": "110", "open24h": "100", "bidPx": "109.9",
            "askPx": "110.1", "high24h": "120", "low24h": "90", "vol24h": "5",
            "volCcy24h": "550", "ts": "1700000000000",
        }))
        await okx.spot.load_markets()

        ticker = await okx.spot.fetch_ticker("BTC/USDT")

        assert transport.last.params == {"instId": "BTC-USDT"}
        assert ticker.last == Decimal("110")
        assert ticker.change == Decimal("10")
        assert ticker.percentage == Decimal("10")
        assert ticker.volume == Decimal("5")
        assert ticker.quote_volume == Decimal("550")

    @pytest.mark.asyncio
    async def test_candles_oldest_first(self, okx_perp, transport):
        transport.queue(ok(
            ["1700003600000", "2", "3", "1", "2.5", "10", "0.1", "0.25", "0"],
            ["1700000000000", "1", "2", "0.5", "2", "20", "0.2", "0.4", "1"],
        ))

        candles = await okx_perp.fetch_ohlcv("BTC/USDT:USDT", "4h", since=1699990000000, limit=2)

        assert transport.last.path == "/api/v5/market/history-candles"
        # two 4h bars after since, both bounds exclusive
        assert transport.last.params == {
            "instId": "BTC-USDT-SWAP",
            "bar": "4H",
            "after": str(1699990000000 + 2 * 4 * 3600 * 1000),
            "before": "1699989999999",
            "limit": "2",
        }
        assert [c.open for c in candles] == [Decimal("1"), Decimal("2")]
        assert candles[0].timestamp < candles[1].timestamp
        # swap volume comes from the base-currency column
        assert candles[0].volume == Decimal("0.2")

    @pytest.mark.asyncio
    async def test_candles_without_since_are_latest(self, okx_perp, transport):
        transport.queue(ok())

        assert await okx_perp.fetch_ohlcv("BTC/USDT:USDT", "1m") == []

        assert transport.last.path == "/api/v5/market/candles"
        assert transport.last.params == {"instId": "BTC-USDT-SWAP", "bar": "1m"}

    @pytest.mark.asyncio
    async def test_candle_window_defaults_to_page_size(self, okx_perp, transport):
        transport.queue(ok())

        await okx_perp.fetch_ohlcv("BTC/USDT:USDT", "1h", since=1700000000000)

        params = transport.last.params
        assert params["after"] == str(1700000000000 + 100 * 3600 * 1000)
        assert params["before"] == "1699999999999"
        assert "limit" not in params

    @pytest.mark.asyncio
    async def test_public_trades(self, okx_perp, transport):
        transport.queue(ok(
            {"instId": "BTC-USDT-SWAP", "tradeId": "2", "px": "30010", "sz": "3",
             "side": "sell", "ts": "1700000002000"},
            {"instId": "BTC-USDT-SWAP", "tradeId": "1", "px": "30000", "sz": "5",
             "side": "buy", "ts": "1700000001000"},
            {"instId": "BTC-USDT-SWAP", "tradeId": "0", "px": "29990", "sz": "1",
             "side": "buy", "ts": "1699999999000"},
        ))

        trades = await okx_perp.fetch_trades("BTC/USDT:USDT", since=1700000000000, limit=3)

        assert transport.last.path == "/api/v5/market/trades"
        assert transport.last.params == {"instId": "BTC-USDT-SWAP", "limit": "3"}
        assert "OK-ACCESS-SIGN" not in transport.last.headers
        assert [t.id for t in trades] == ["1", "2"]
        # contracts become coins through ctVal
        assert trades[0].amount == Decimal("0.05")
        assert trades[0].side is OrderSide.BUY
        assert trades[0].cost == Decimal("1500")
        assert trades[1].side is OrderSide.SELL


# ============================================================
# SPOT ORDER TESTS
# ============================================================

class TestOKXSpotOrders:
    """Tests for spot order placement."""

    @pytest.mark.asyncio
    async def test_market_order_in_base_currency(self, okx, transport):
        transport.queue(ok(*SPOT_INSTRUMENTS), ack())
        await okx.spot.load_markets()

        order = await okx.spot.create_order("BTC/USDT", "sell", "0.5")

        request = transport.last
        assert request.method == "POST"
        assert request.path == "/api/v5/trade/order"
        body = request.json
        assert body["tdMode"] == "cash"
        assert body["ordType"] == "market"
        assert body["tgtCcy"] == "base_ccy"
        assert body["sz"] == "0.50000000"
        assert "px" not in body
        assert request.headers["OK-ACCESS-KEY"] == "test-api-key"
        assert request.headers["OK-ACCESS-PASSPHRASE"] == "test-pass"

        assert order.id == "312269865356374016"
        assert order.status is OrderStatus.NEW
        assert order.type is OrderType.MARKET
        assert order.side is OrderSide.SELL
        assert order.client_order_id == body["clOrdId"]

    @pytest.mark.asyncio
    async def test_post_only_limit(self, okx, transport):
        transport.queue(ok(*SPOT_INSTRUMENTS), ack(cl_ord_id="mine1"))
        await okx.spot.load_markets()

        order = await okx.spot.create_order(
            "BTC/USDT", "buy", "0.01", price="30000.04",
            time_in_force="POST_ONLY", client_order_id="mine1",
        )

        body = transport.last.json
        assert body["ordType"] == "post_only"
        assert body["px"] == "30000.0"
        assert body["clOrdId"] == "mine1"
        assert "tgtCcy" not in body
        assert order.client_order_id == "mine1"

    @pytest.mark.asyncio
    async def test_item_error_code(self, okx, transport):
        transport.queue(ok(*SPOT_INSTRUMENTS), {
            "code": "1",
            "msg": "All operations failed",
            "data": [{"ordId": "", "clOrdId": "", "sCode": "51008", "sMsg": "Insufficient balance"}],
        })
        await okx.spot.load_markets()

        with pytest.raises(ExchangeAPIError) as exc_info:
            await okx.spot.create_order("BTC/USDT", "buy", "1", price="30000")

        error = exc_info.value.error
        assert error.category is ErrorCategory.INSUFFICIENT_FUNDS
        assert error.exchange_code == "51008"
        assert error.message == "Insufficient balance"
        assert error.operation == "create_order"
        assert error.symbol == "BTC/USDT"

    @pytest.mark.asyncio
    async def test_ack_without_order_id(self, okx, transport):
        transport.queue(ok(*SPOT_INSTRUMENTS), ack(ord_id=""))
        await okx.spot.load_markets()

        with pytest.raises(OrderNotFound):
            await okx.spot.create_order("BTC/USDT", "buy", "1", price="30000")

    @pytest.mark.asyncio
    async def test_cancel_by_client_id(self, okx, transport):
        transport.queue(ok(*SPOT_INSTRUMENTS), ack(cl_ord_id="mine1"))
        await okx.spot.load_markets()

        await okx.spot.cancel_order("BTC/USDT", client_order_id="mine1")

        assert transport.last.path == "/api/v5/trade/cancel-order"
        assert transport.last.json == {"instId": "BTC-USDT", "clOrdId": "mine1"}

    @pytest.mark.asyncio
    async def test_fetch_balance(self, okx, transport):
        transport.queue(ok({"details": [
            {"ccy": "USDT", "availBal": "90", "frozenBal": "10", "eq": "100", "uTime": "1700000000000"},
            {"ccy": "ETH", "availBal": "0", "frozenBal": "0", "eq": "0"},
        ]}))

        balances = await okx.spot.fetch_balance()

        assert len(balances) == 1
        assert balances[0].currency == "USDT"
        assert balances[0].available == Decimal("90")
        assert balances[0].total == Decimal("100")


# ============================================================
# SWAP ORDER TESTS
# ============================================================

class TestOKXSwapOrders:
    """Tests for contract sizing and position mode."""

    @pytest.mark.asyncio
    async def test_open_long_in_hedge_mode(self, okx_perp, transport):
        transport.queue(ok({"posMode": "long_short_mode"}), ack())

        order = await okx_perp.create_order("BTC/USDT:USDT", PerpOrderSide.OPEN_LONG, "0.05")

        assert transport.paths()[-2:] == ["/api/v5/account/config", "/api/v5/trade/order"]
        body = transport.last.json
        assert body["instId"] == "BTC-USDT-SWAP"
        assert body["sz"] == "5.00"
        assert body["side"] == "buy"
        assert body["posSide"] == "long"
        assert body["tdMode"] == "cross"
        assert "reduceOnly" not in body
        assert body["clOrdId"].startswith("exaokxb")
        assert len(body["clOrdId"]) <= 32
        assert body["clOrdId"].isalnum()

        assert order.amount == Decimal("0.0500")
        assert order.position_side is PositionSide.LONG
        assert order.reduce_only is False

    @pytest.mark.asyncio
    async def test_position_mode_is_cached(self, okx_perp, transport):
        transport.queue(ok({"posMode": "net_mode"}), ack(), ack())

        await okx_perp.create_order("BTC/USDT:USDT", "open_long", "0.05")
        await okx_perp.create_order("BTC/USDT:USDT", "open_long", "0.05")

        assert transport.paths().count("/api/v5/account/config") == 1

    @pytest.mark.asyncio
    async def test_one_way_close_uses_recorded_margin_mode(self, okx_perp, transport):
        transport.queue(ack())

        await okx_perp.set_margin_mode("BTC/USDT:USDT", "isolated")
        assert len(transport.requests) == 1

        order = await okx_perp.create_order(
            "BTC/USDT:USDT", "close_short", "0.03", hedge_mode=False,
        )

        body = transport.last.json
        assert body["tdMode"] == "isolated"
        assert body["side"] == "buy"
        assert body["posSide"] == "net"
        assert body["reduceOnly"] is True
        assert body["sz"] == "3.00"
        assert order.position_side is PositionSide.BOTH
        assert order.reduce_only is True

    @pytest.mark.asyncio
    async def test_explicit_margin_mode_wins(self, okx_perp, transport):
        transport.queue(ack())

        await okx_perp.create_order(
            "BTC/USDT:USDT", "open_short", "0.01", hedge_mode=True, margin_mode="isolated",
        )

        body = transport.last.json
        assert body["tdMode"] == "isolated"
        assert body["posSide"] == "short"
        assert body["side"] == "sell"

    @pytest.mark.asyncio
    async def test_amount_below_lot(self, okx_perp, transport):
        with pytest.raises(InvalidAmount):
            await okx_perp.create_order("BTC/USDT:USDT", "open_long", "0.00001", hedge_mode=True)
        assert len(transport.requests) == 1

    @pytest.mark.asyncio
    async def test_fetch_partially_filled_order(self, okx_perp, transport):
        transport.queue(ok({
            "ordId": "1", "clOrdId": "c1", "instId": "BTC-USDT-SWAP", "ordType": "limit",
            "side": "buy", "posSide": "long", "px": "30000", "sz": "5", "accFillSz": "2",
            "avgPx": "30000", "state": "partially_filled", "fee": "-0.12", "feeCcy": "USDT",
            "reduceOnly": "false", "cTime": "1700000000000", "uTime": "1700000001000",
        }))

        order = await okx_perp.fetch_order("BTC/USDT:USDT", order_id="1")

        assert transport.last.params == {"instId": "BTC-USDT-SWAP", "ordId": "1"}
        assert order.status is OrderStatus.PARTIALLY_FILLED
        assert order.amount == Decimal("0.05")
        assert order.filled == Decimal("0.02")
        assert order.cost == Decimal("600")
        assert order.fee == Decimal("0.12")
        assert order.position_side is PositionSide.LONG


# ============================================================
# ACCOUNT TESTS
# ============================================================

class TestOKXAccount:
    """Tests for positions and leverage."""

    @pytest.mark.asyncio
    async def test_fetch_positions(self, okx_perp, transport):
        transport.queue(ok(
            {"instId": "BTC-USDT-SWAP", "pos": "-3", "posSide": "net", "avgPx": "30000",
             "markPx": "29000", "upl": "3", "lever": "5", "mgnMode": "cross", "uTime": "1700000000000"},
            {"instId": "BTC-USDT-SWAP", "pos": "0", "posSide": "net"},
            {"instId": "ETH-USDT-SWAP", "pos": "1", "posSide": "long"},
        ))

        positions = await okx_perp.fetch_positions()

        assert transport.last.params == {"instType": "SWAP"}
        assert len(positions) == 1
        position = positions[0]
        assert position.side is PositionSide.SHORT
        assert position.amount == Decimal("0.03")
        assert position.leverage == Decimal("5")
        assert position.margin_mode == "cross"

    @pytest.mark.asyncio
    async def test_set_leverage_uses_margin_mode(self, okx_perp, transport):
        transport.queue(ok({"instId": "BTC-USDT-SWAP", "lever": "10", "mgnMode": "isolated"}))

        await okx_perp.set_margin_mode("BTC/USDT:USDT", "isolated")
        await okx_perp.set_leverage("BTC/USDT:USDT", 10)

        assert transport.last.path == "/api/v5/account/set-leverage"
        assert transport.last.json == {"instId": "BTC-USDT-SWAP", "lever": "10", "mgnMode": "isolated"}


# ============================================================
# OPEN ORDERS AND FILLS TESTS
# ============================================================

class TestOKXOrderLists:
    """Tests for pending orders and account fills."""

    @pytest.mark.asyncio
    async def test_pending_orders_for_symbol(self, okx_perp, transport):
        transport.queue(ok(
            {"ordId": "7", "clOrdId": "c7", "instId": "BTC-USDT-SWAP", "ordType": "limit",
             "side": "sell", "posSide": "short", "px": "31000", "sz": "2", "accFillSz": "0",
             "state": "live", "cTime": "1700000000000"},
        ))

        orders = await okx_perp.fetch_open_orders("BTC/USDT:USDT")

        assert transport.last.path == "/api/v5/trade/orders-pending"
        assert transport.last.params == {"instType": "SWAP", "instId": "BTC-USDT-SWAP"}
        assert len(orders) == 1
        assert orders[0].status is OrderStatus.OPEN
        assert orders[0].amount == Decimal("0.02")
        assert orders[0].position_side is PositionSide.SHORT

    @pytest.mark.asyncio
    async def test_pending_orders_all_markets_skip_unknown(self, okx, transport):
        transport.queue(ok(*SPOT_INSTRUMENTS), ok(
            {"ordId": "1", "instId": "BTC-USDT", "ordType": "limit", "side": "buy",
             "px": "30000", "sz": "1", "state": "live"},
            {"ordId": "2", "instId": "NEW-USDT", "ordType": "limit", "side": "buy",
             "px": "1", "sz": "1", "state": "live"},
        ))
        await okx.spot.load_markets()

        orders = await okx.spot.fetch_open_orders()

        assert transport.last.params == {"instType": "SPOT"}
        assert [o.id for o in orders] == ["1"]
        assert orders[0].symbol == "BTC/USDT"

    @pytest.mark.asyncio
    async def test_fills(self, okx_perp, transport):
        transport.queue(ok(
            {"instId": "BTC-USDT-SWAP", "tradeId": "t2", "ordId": "9", "fillPx": "30100",
             "fillSz": "2", "side": "sell", "execType": "M", "fee": "-0.01",
             "feeCcy": "USDT", "ts": "1700000005000"},
            {"instId": "BTC-USDT-SWAP", "tradeId": "t1", "ordId": "9", "fillPx": "30000",
             "fillSz": "1", "side": "sell", "execType": "T", "fee": "-0.02",
             "feeCcy": "USDT", "ts": "1700000004000"},
        ))

        trades = await okx_perp.fetch_my_trades("BTC/USDT:USDT", since=1700000000000, limit=50)

        assert transport.last.path == "/api/v5/trade/fills"
        assert transport.last.params == {
            "instType": "SWAP",
            "instId": "BTC-USDT-SWAP",
            "begin": "1700000000000",
            "limit": "50",
        }
        assert [t.id for t in trades] == ["t1", "t2"]
        assert trades[0].taker_or_maker == "taker"
        assert trades[1].taker_or_maker == "maker"
        assert trades[0].fee == Decimal("0.02")
        assert trades[0].fee_currency == "USDT"
        assert trades[0].order_id == "9"
        assert trades[1].amount == Decimal("0.02")

    @pytest.mark.asyncio
    async def test_fills_need_credentials(self, transport):
        exchange = OKXExchange(ExchangeConfig(), transport)

        with pytest.raises(AuthenticationRequired) as exc_info:
            await exchange.spot.fetch_my_trades("BTC/USDT")

        assert exc_info.value.error.operation == "fetch_my_trades"
        assert transport.requests == []


# ============================================================
# SIGNING TESTS
# ============================================================

def okx_signature(request, secret="test-secret-key"):
    request_path = f"{request.path}?{request.query}" if request.query else request.path
    payload = (
        request.headers["OK-ACCESS-TIMESTAMP"] + request.method + request_path + (request.body or "")
    )
    digest = hmac.new(secret.encode(), payload.encode(), hashlib.sha256).digest()
    return base64.b64encode(digest).decode()


class TestOKXSigning:
    """Signatures recomputed from what went over the wire."""

    @pytest.mark.asyncio
    async def test_post_signature_covers_body(self, okx, transport):
        transport.queue(ok(*SPOT_INSTRUMENTS), ack())
        await okx.spot.load_markets()

        await okx.spot.create_order("BTC/USDT", "buy", "0.01", price="30000")

        request = transport.last
        assert request.query == ""
        assert request.body
        assert request.headers["OK-ACCESS-SIGN"] == okx_signature(request)

    @pytest.mark.asyncio
    async def test_get_signature_covers_query(self, okx_perp, transport):
        transport.queue(ok())

        await okx_perp.fetch_my_trades("BTC/USDT:USDT", limit=5)

        request = transport.last
        assert request.method == "GET"
        assert request.query
        assert request.body is None
        assert request.headers["OK-ACCESS-SIGN"] == okx_signature(request)

    @pytest.mark.asyncio
    async def test_balance_without_credentials_sends_nothing(self, transport):
        exchange = OKXExchange(ExchangeConfig(), transport)

        with pytest.raises(AuthenticationRequired):
            await exchange.spot.fetch_balance()

        assert transport.requests == []


# ============================================================
# ORDER INPUT TESTS
# ============================================================

class TestOKXOrderInput:
    """Tests for rejected inputs and acknowledged prices."""

    @pytest.mark.asyncio
    async def test_ack_price_is_the_quantized_price(self, okx, transport):
        transport.queue(ok(*SPOT_INSTRUMENTS), ack())
        await okx.spot.load_markets()

        order = await okx.spot.create_order("BTC/USDT", "buy", "0.01", price="30000.05")

        assert transport.last.json["px"] == "30000.1"
        assert order.price == Decimal("30000.1")

    @pytest.mark.asyncio
    async def test_unknown_side(self, okx, transport):
        transport.queue(ok(*SPOT_INSTRUMENTS))
        await okx.spot.load_markets()

        with pytest.raises(InvalidOrderParameter) as exc_info:
            await okx.spot.create_order("BTC/USDT", "long", "1")

        assert isinstance(exc_info.value, ExchangeException)
        assert exc_info.value.error.operation == "create_order"
        assert exc_info.value.error.symbol == "BTC/USDT"
        assert len(transport.requests) == 1
