"""
Gate Backend Tests.

============================================================
PURPOSE
============================================================
Request shape and response parsing for Gate spot and USDT
perpetuals, against a recording fake transport.

TEST CATEGORIES:
- Markets: currency pairs and contracts
- Order status: status + finish_as mapping
- Spot orders: JSON body, signing headers, market buys
- Perpetual orders: contract sizing, reduce-only
- Account: positions, leverage, margin mode
- Errors: label bodies
- Trades: open orders, public trades, account trades
- Signing: SIGN recomputed from the request

============================================================
"""

import hashlib
import hmac
from datetime import datetime, timezone
from decimal import Decimal

import pytest

from exchange_adapters import (
    AuthenticationRequired,
    ErrorCategory,
    ExchangeAPIError,
    ExchangeConfig,
    GateExchange,
    HttpStatusError,
    InvalidAmount,
    InvalidOrderParameter,
    NotSupported,
    OrderSide,
    OrderStatus,
    OrderType,
    PositionSide,
)
from exchange_adapters.gate import gate_order_status


CURRENCY_PAIRS = [
    {
        "id": "BTC_USDT",
        "base": "BTC",
        "quote": "USDT",
        "trade_status": "tradable",
        "amount_precision": 4,
        "precision": 2,
        "min_base_amount": "0.0001",
        "min_quote_amount": "3",
    },
    {
        "id": "OLD_USDT",
        "base": "OLD",
        "quote": "USDT",
        "trade_status": "untradable",
        "amount_precision": 2,
        "precision": 4,
    },
]

CONTRACTS = [
    {
        "name": "BTC_USDT",
        "type": "direct",
        "quanto_multiplier": "0.0001",
        "order_price_round": "0.1",
        "order_size_min": 1,
        "order_size_max": 1000000,
        "in_delisting": False,
    },
    {
        "name": "GONE_USDT",
        "type": "direct",
        "quanto_multiplier": "1",
        "order_price_round": "0.001",
        "in_delisting": True,
    },
]


def spot_order(**overrides):
    order = {
        "id": "123",
        "text": "t-client-1",
        "create_time_ms": 1700000000000,
        "update_time_ms": 1700000000000,
        "status": "open",
        "currency_pair": "BTC_USDT",
        "type": "limit",
        "side": "buy",
        "amount": "0.0010",
        "price": "30000.00",
        "time_in_force": "gtc",
        "left": "0.0010",
        "filled_amount": "0",
        "filled_total": "0",
        "fee": "0",
        "fee_currency": "BTC",
        "finish_as": "open",
    }
    order.update(overrides)
    return order


def futures_order(**overrides):
    order = {
        "id": 456,
        "contract": "BTC_USDT",
        "size": -25,
        "left": 0,
        "price": "0",
        "fill_price": "30000",
        "status": "finished",
        "finish_as": "filled",
        "tif": "ioc",
        "text": "t-perp-1",
        "is_reduce_only": False,
        "create_time": 1700000000.123,
        "finish_time": 1700000001.0,
    }
    order.update(overrides)
    return order


@pytest.fixture
def gate(credentials, transport):
    return GateExchange(credentials, transport)


# ============================================================
# MARKET TESTS
# ============================================================

class TestGateMarkets:
    """Tests for currency pair and contract loading."""

    @pytest.mark.asyncio
    async def test_load_spot_markets(self, gate, transport):
        transport.queue(CURRENCY_PAIRS)

        assert await gate.spot.load_markets() == 1

        market = gate.spot.get_market("BTC/USDT")
        assert market.id == "BTC_USDT"
        assert market.precision.amount == 4
        assert market.precision.price == 2
        assert market.limits.cost.min == Decimal("3")
        assert transport.last.url == "https://api.gateio.ws/api/v4/spot/currency_pairs"

    @pytest.mark.asyncio
    async def test_load_perp_markets(self, gate, transport):
        transport.queue(CONTRACTS)

        markets = await gate.perp.fetch_markets()

        assert [m.symbol for m in markets] == ["BTC/USDT:USDT"]
        market = markets[0]
        assert market.contract_value == Decimal("0.0001")
        assert market.precision.amount == 0
        assert market.precision.price == 1
        assert transport.last.path == "/api/v4/futures/usdt/contracts"

    def test_sandbox_and_settle(self, transport):
        exchange = GateExchange(ExchangeConfig(sandbox=True, options={"settle": "BTC"}), transport)
        assert exchange._client.base_url == "https://api-testnet.gateapi.io"
        assert exchange._client.settle == "btc"


# ============================================================
# STATUS MAPPING TESTS
# ============================================================

class TestGateOrderStatus:
    """Tests for status + finish_as mapping."""

    @pytest.mark.parametrize("status,finish_as,filled,left,expected", [
        ("open", "open", Decimal("0"), None, OrderStatus.OPEN),
        ("open", "", Decimal("0.5"), None, OrderStatus.PARTIALLY_FILLED),
        ("closed", "filled", None, None, OrderStatus.FILLED),
        ("cancelled", "cancelled", None, None, OrderStatus.CANCELED),
        ("finished", "ioc", None, Decimal("0"), OrderStatus.FILLED),
        ("finished", "ioc", None, Decimal("5"), OrderStatus.EXPIRED),
        ("finished", "reduce_only", None, None, OrderStatus.CANCELED),
        ("finished", "auto_deleveraged", None, None, OrderStatus.FILLED),
        ("finished", "stp", None, None, OrderStatus.CANCELED),
        ("closed", "", None, None, OrderStatus.FILLED),
    ])
    def test_mapping(self, status, finish_as, filled, left, expected):
        assert gate_order_status(status, finish_as, filled, left) is expected


# ============================================================
# SPOT ORDER TESTS
# ============================================================

class TestGateSpotOrders:
    """Tests for spot order placement and query."""

    @pytest.mark.asyncio
    async def test_create_limit_order(self, gate, transport):
        transport.queue(CURRENCY_PAIRS, spot_order())
        await gate.spot.load_markets()

        order = await gate.spot.create_order("BTC/USDT", "buy", "0.001", price="30000")

        request = transport.last
        assert request.method == "POST"
        assert request.path == "/api/v4/spot/orders"
        body = request.json
        assert body["currency_pair"] == "BTC_USDT"
        assert body["side"] == "buy"
        assert body["type"] == "limit"
        assert body["amount"] == "0.0010"
        assert body["price"] == "30000.00"
        assert body["time_in_force"] == "gtc"
        assert body["text"].startswith("t-exa-gate-b-")
        assert len(body["text"]) <= 28
        assert request.headers["KEY"] == "test-api-key"
        assert request.headers["X-Gate-Channel-Id"] == "api"
        assert {"SIGN", "Timestamp"} <= set(request.headers)

        assert order.id == "123"
        assert order.client_order_id == "t-client-1"
        assert order.status is OrderStatus.OPEN
        assert order.amount == Decimal("0.0010")

    @pytest.mark.asyncio
    async def test_market_buy_sends_quote_cost(self, gate, transport):
        """Market buys are priced from the last trade into quote currency."""
        transport.queue(
            CURRENCY_PAIRS,
            [{"currency_pair": "BTC_USDT", "last": "30000", "highest_bid": "29999", "lowest_ask": "30001"}],
            spot_order(
                type="market",
                amount="30.00",
                price="0",
                left="0",
                status="closed",
                finish_as="filled",
                filled_amount="0.001",
                filled_total="30",
                avg_deal_price="30000",
                time_in_force="ioc",
            ),
        )
        await gate.spot.load_markets()

        order = await gate.spot.create_order("BTC/USDT", OrderSide.BUY, "0.001")

        body = transport.last.json
        assert body["amount"] == "30.00"
        assert body["time_in_force"] == "ioc"
        assert "price" not in body
        assert order.type is OrderType.MARKET
        assert order.status is OrderStatus.FILLED
        assert order.amount == Decimal("0.0010")
        assert order.filled == Decimal("0.001")
        assert order.average == Decimal("30000")

    @pytest.mark.asyncio
    async def test_fetch_order_by_client_id(self, gate, transport):
        transport.queue(CURRENCY_PAIRS, spot_order(
            status="cancelled", finish_as="cancelled", left="0.0006", filled_amount="0.0004",
            filled_total="12",
        ))
        await gate.spot.load_markets()

        order = await gate.spot.fetch_order("BTC/USDT", client_order_id="t-client-1")

        assert transport.last.path == "/api/v4/spot/orders/t-client-1"
        assert transport.last.params == {"currency_pair": "BTC_USDT"}
        assert order.status is OrderStatus.CANCELED
        assert order.filled == Decimal("0.0004")
        assert order.average == Decimal("30000")

    @pytest.mark.asyncio
    async def test_label_error(self, gate, transport):
        transport.queue(
            CURRENCY_PAIRS,
            HttpStatusError(404, '{"label":"ORDER_NOT_FOUND","message":"Order not found"}', exchange_id="gate"),
        )
        await gate.spot.load_markets()

        with pytest.raises(ExchangeAPIError) as exc_info:
            await gate.spot.cancel_order("BTC/USDT", order_id="999")

        error = exc_info.value.error
        assert error.category is ErrorCategory.ORDER_NOT_FOUND
        assert error.exchange_code == "ORDER_NOT_FOUND"
        assert error.operation == "cancel_order"
        assert transport.last.method == "DELETE"

    @pytest.mark.asyncio
    async def test_fetch_balance(self, gate, transport):
        transport.queue([
            {"currency": "usdt", "available": "100.5", "locked": "10"},
            {"currency": "btc", "available": "0", "locked": "0"},
        ])

        balances = await gate.spot.fetch_balance()

        assert len(balances) == 1
        assert balances[0].currency == "USDT"
        assert balances[0].total == Decimal("110.5")

    @pytest.mark.asyncio
    async def test_fetch_ohlcv(self, gate, transport):
        transport.queue(CURRENCY_PAIRS, [
            ["1700000000", "3000", "30500", "31000", "29500", "30000", "0.1", "true"],
        ])
        await gate.spot.load_markets()

        since = datetime(2023, 11, 14, 22, 13, 20, tzinfo=timezone.utc)
        candles = await gate.spot.fetch_ohlcv("BTC/USDT", "1w", since=since, limit=1)

        assert transport.last.params == {
            "currency_pair": "BTC_USDT",
            "interval": "7d",
            "from": "1700000000",
            "limit": "1",
        }
        candle = candles[0]
        assert candle.open == Decimal("30000")
        assert candle.high == Decimal("31000")
        assert candle.low == Decimal("29500")
        assert candle.close == Decimal("30500")
        assert candle.volume == Decimal("0.1")


# ============================================================
# PERPETUAL TESTS
# ============================================================

class TestGatePerp:
    """Tests for contract sizing and position handling."""

    @pytest.mark.asyncio
    async def test_market_short_sizes_in_contracts(self, gate, transport):
        transport.queue(CONTRACTS, {"in_dual_mode": False}, futures_order())
        await gate.perp.load_markets()

        order = await gate.perp.create_order("BTC/USDT:USDT", "open_short", "0.0025")

        assert transport.paths() == [
            "/api/v4/futures/usdt/contracts",
            "/api/v4/futures/usdt/accounts",
            "/api/v4/futures/usdt/orders",
        ]
        body = transport.last.json
        assert body["contract"] == "BTC_USDT"
        assert body["size"] == -25
        assert body["price"] == "0"
        assert body["tif"] == "ioc"
        assert "reduce_only" not in body

        assert order.id == "456"
        assert order.side is OrderSide.SELL
        assert order.type is OrderType.MARKET
        assert order.status is OrderStatus.FILLED
        assert order.amount == Decimal("0.0025")
        assert order.filled == Decimal("0.0025")
        assert order.position_side is PositionSide.BOTH

    @pytest.mark.asyncio
    async def test_partial_contract_rounds_up(self, gate, transport):
        transport.queue(CONTRACTS, futures_order(size=13, left=13, status="open", finish_as=""))
        await gate.perp.load_markets()

        await gate.perp.create_order(
            "BTC/USDT:USDT", "open_long", "0.00125", price="30000", hedge_mode=False,
        )

        body = transport.last.json
        assert body["size"] == 13
        assert body["price"] == "30000.0"
        assert body["tif"] == "gtc"

    @pytest.mark.asyncio
    async def test_close_is_reduce_only_in_hedge_mode(self, gate, transport):
        transport.queue(CONTRACTS, futures_order(size=10, is_reduce_only=True))
        await gate.perp.load_markets()

        order = await gate.perp.create_order(
            "BTC/USDT:USDT", "close_short", "0.001", hedge_mode=True,
        )

        body = transport.last.json
        assert body["size"] == 10
        assert body["reduce_only"] is True
        assert order.position_side is PositionSide.SHORT
        assert order.reduce_only is True

    @pytest.mark.asyncio
    async def test_amount_below_one_contract_step(self, gate, transport):
        transport.queue(CONTRACTS)
        await gate.perp.load_markets()

        with pytest.raises(InvalidAmount):
            await gate.perp.create_order("BTC/USDT:USDT", "open_long", "0.00001", hedge_mode=False)
        assert len(transport.requests) == 1

    @pytest.mark.asyncio
    async def test_fetch_positions(self, gate, transport):
        transport.queue(CONTRACTS, [
            {"contract": "BTC_USDT", "size": -10, "entry_price": "30000", "mark_price": "29900",
             "liq_price": "35000", "unrealised_pnl": "1", "realised_pnl": "0", "leverage": "10",
             "margin": "30", "update_time": 1700000000},
            {"contract": "BTC_USDT", "size": 0, "leverage": "0"},
        ])
        await gate.perp.load_markets()

        positions = await gate.perp.fetch_positions("BTC/USDT:USDT")

        assert len(positions) == 1
        position = positions[0]
        assert position.side is PositionSide.SHORT
        assert position.amount == Decimal("0.0010")
        assert position.leverage == Decimal("10")
        assert position.margin_mode == "isolated"

    @pytest.mark.asyncio
    async def test_set_leverage(self, gate, transport):
        transport.queue(CONTRACTS, {"contract": "BTC_USDT", "leverage": "5"})
        await gate.perp.load_markets()

        await gate.perp.set_leverage("BTC/USDT:USDT", 5)

        assert transport.last.method == "POST"
        assert transport.last.path == "/api/v4/futures/usdt/positions/BTC_USDT/leverage"
        assert transport.last.params == {"leverage": "5"}

    @pytest.mark.asyncio
    async def test_set_margin_mode_not_supported(self, gate, transport):
        transport.queue(CONTRACTS)
        await gate.perp.load_markets()

        with pytest.raises(NotSupported):
            await gate.perp.set_margin_mode("BTC/USDT:USDT", "isolated")
        assert len(transport.requests) == 1


# ============================================================
# OPEN ORDER AND TRADE TESTS
# ============================================================

class TestGateTrades:
    """Tests for open orders, public trades and account trades."""

    @pytest.mark.asyncio
    async def test_spot_open_orders_for_pair(self, gate, transport):
        transport.queue(CURRENCY_PAIRS, [spot_order(), spot_order(id="124")])
        await gate.spot.load_markets()

        orders = await gate.spot.fetch_open_orders("BTC/USDT")

        assert transport.last.path == "/api/v4/spot/orders"
        assert transport.last.params == {"currency_pair": "BTC_USDT", "status": "open"}
        assert [o.id for o in orders] == ["123", "124"]

    @pytest.mark.asyncio
    async def test_spot_open_orders_grouped_by_pair(self, gate, transport):
        transport.queue(CURRENCY_PAIRS, [
            {"currency_pair": "BTC_USDT", "total": 1, "orders": [spot_order()]},
            {"currency_pair": "NEW_USDT", "total": 1, "orders": [spot_order(id="9", currency_pair="NEW_USDT")]},
        ])
        await gate.spot.load_markets()

        orders = await gate.spot.fetch_open_orders()

        assert transport.last.path == "/api/v4/spot/open_orders"
        assert transport.last.query == ""
        assert [o.id for o in orders] == ["123"]
        assert orders[0].symbol == "BTC/USDT"

    @pytest.mark.asyncio
    async def test_perp_open_orders(self, gate, transport):
        transport.queue(CONTRACTS, [futures_order(status="open", finish_as="", left=-25)])
        await gate.perp.load_markets()

        orders = await gate.perp.fetch_open_orders()

        assert transport.last.path == "/api/v4/futures/usdt/orders"
        assert transport.last.params == {"status": "open"}
        assert orders[0].symbol == "BTC/USDT:USDT"
        assert orders[0].status is OrderStatus.OPEN

    @pytest.mark.asyncio
    async def test_spot_public_trades(self, gate, transport):
        transport.queue(CURRENCY_PAIRS, [
            {"id": "2", "create_time": "1700000002", "create_time_ms": "1700000002123.456",
             "currency_pair": "BTC_USDT", "side": "sell", "amount": "0.01", "price": "30010"},
            {"id": "1", "create_time": "1700000001", "create_time_ms": "1700000001000.000",
             "currency_pair": "BTC_USDT", "side": "buy", "amount": "0.02", "price": "30000"},
        ])
        await gate.spot.load_markets()

        trades = await gate.spot.fetch_trades("BTC/USDT", since=1700000000500, limit=2)

        assert transport.last.path == "/api/v4/spot/trades"
        assert transport.last.params == {"currency_pair": "BTC_USDT", "limit": "2", "from": "1700000000"}
        assert "SIGN" not in transport.last.headers
        assert [t.id for t in trades] == ["1", "2"]
        assert trades[1].timestamp == datetime(2023, 11, 14, 22, 13, 22, 123000, tzinfo=timezone.utc)
        assert trades[1].side is OrderSide.SELL
        assert trades[0].cost == Decimal("600")

    @pytest.mark.asyncio
    async def test_spot_my_trades(self, gate, transport):
        transport.queue(CURRENCY_PAIRS, [
            {"id": "77", "create_time": "1700000000", "create_time_ms": "1700000000000.000",
             "currency_pair": "BTC_USDT", "side": "buy", "role": "maker", "amount": "0.001",
             "price": "30000", "order_id": "123", "fee": "0.000001", "fee_currency": "btc"},
        ])
        await gate.spot.load_markets()

        trades = await gate.spot.fetch_my_trades("BTC/USDT")

        assert transport.last.path == "/api/v4/spot/my_trades"
        assert "SIGN" in transport.last.headers
        trade = trades[0]
        assert trade.order_id == "123"
        assert trade.taker_or_maker == "maker"
        assert trade.fee == Decimal("0.000001")
        assert trade.fee_currency == "BTC"

    @pytest.mark.asyncio
    async def test_perp_trades_in_coins(self, gate, transport):
        transport.queue(CONTRACTS, [
            {"id": 5, "create_time": 1700000001.5, "contract": "BTC_USDT", "size": -30, "price": "30000"},
            {"id": 4, "create_time": 1700000000.5, "contract": "BTC_USDT", "size": 20, "price": "29990"},
        ])
        await gate.perp.load_markets()

        trades = await gate.perp.fetch_trades("BTC/USDT:USDT")

        assert transport.last.path == "/api/v4/futures/usdt/trades"
        assert transport.last.params == {"contract": "BTC_USDT"}
        assert [t.id for t in trades] == ["4", "5"]
        assert trades[0].side is OrderSide.BUY
        assert trades[0].amount == Decimal("0.0020")
        assert trades[1].side is OrderSide.SELL
        assert trades[1].amount == Decimal("0.0030")

    @pytest.mark.asyncio
    async def test_perp_my_trades_filtered_locally(self, gate, transport):
        transport.queue(CONTRACTS, [
            {"id": 8, "create_time": 1700000010.0, "contract": "BTC_USDT", "order_id": "456",
             "size": 10, "price": "30000", "role": "taker", "fee": "0.0015"},
            {"id": 7, "create_time": 1699999990.0, "contract": "BTC_USDT", "order_id": "455",
             "size": 10, "price": "30000", "role": "taker", "fee": "0.0015"},
        ])
        await gate.perp.load_markets()

        trades = await gate.perp.fetch_my_trades("BTC/USDT:USDT", since=1700000000000, limit=10)

        assert transport.last.path == "/api/v4/futures/usdt/my_trades"
        assert transport.last.params == {"contract": "BTC_USDT", "limit": "10"}
        assert [t.id for t in trades] == ["8"]
        assert trades[0].fee_currency == "USDT"
        assert trades[0].taker_or_maker == "taker"


# ============================================================
# SIGNING TESTS
# ============================================================

def gate_signature(request, secret="test-secret-key"):
    body_hash = hashlib.sha512((request.body or "").encode()).hexdigest()
    payload = "\n".join([
        request.method, request.path, request.query, body_hash, request.headers["Timestamp"],
    ])
    return hmac.new(secret.encode(), payload.encode(), hashlib.sha512).hexdigest()


class TestGateSigning:
    """Signatures recomputed from what went over the wire."""

    @pytest.mark.asyncio
    async def test_post_signature_covers_body(self, gate, transport):
        transport.queue(CURRENCY_PAIRS, spot_order())
        await gate.spot.load_markets()

        await gate.spot.create_order("BTC/USDT", "buy", "0.001", price="30000")

        request = transport.last
        assert request.body
        assert request.headers["SIGN"] == gate_signature(request)

    @pytest.mark.asyncio
    async def test_get_signature_covers_query(self, gate, transport):
        transport.queue(CONTRACTS, [])
        await gate.perp.load_markets()

        await gate.perp.fetch_my_trades("BTC/USDT:USDT", limit=5)

        request = transport.last
        assert request.query == "contract=BTC_USDT&limit=5"
        assert request.body is None
        assert request.headers["SIGN"] == gate_signature(request)

    @pytest.mark.asyncio
    async def test_balance_without_credentials_sends_nothing(self, transport):
        exchange = GateExchange(ExchangeConfig(), transport)

        with pytest.raises(AuthenticationRequired) as exc_info:
            await exchange.spot.fetch_balance()

        assert exc_info.value.error.operation == "fetch_balance"
        assert transport.requests == []


# ============================================================
# ORDER INPUT TESTS
# ============================================================

class TestGateOrderInput:
    """Tests for rejected perpetual sides."""

    @pytest.mark.asyncio
    async def test_unknown_perp_side(self, gate, transport):
        transport.queue(CONTRACTS)
        await gate.perp.load_markets()

        with pytest.raises(InvalidOrderParameter) as exc_info:
            await gate.perp.create_order("BTC/USDT:USDT", "long", "0.001", hedge_mode=False)

        assert exc_info.value.error.symbol == "BTC/USDT:USDT"
        assert exc_info.value.error.operation == "create_order"
        assert len(transport.requests) == 1
