"""
Exchange Adapters - Binance.

============================================================
PURPOSE
============================================================
Binance spot (api.binance.com) and USDⓈ-M perpetual
(fapi.binance.com) backends.

============================================================
BINANCE API SPECIFICS
============================================================
Authentication:
- X-MBX-APIKEY header
- HMAC-SHA256 over the query string, appended as ``signature``
- ``timestamp`` (ms) is a query parameter

Request format:
- Every parameter (GET, POST and DELETE) goes in the query
  string, in insertion order

Symbol format: BTCUSDT (spot and perpetual)

Position mode:
- One-way: positionSide=BOTH, closes carry reduceOnly=true
- Hedge:   positionSide=LONG/SHORT

============================================================
"""

import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from .base import Exchange, PerpExchange, RestClient, SpotExchange
from .errors import (
    ExchangeAPIError,
    ExchangeError,
    HttpStatusError,
    OrderNotFound,
    map_binance_error,
)
from .models import (
    Balance,
    Market,
    MarketLimits,
    MarketPrecision,
    MarketType,
    MarginMode,
    MinMax,
    OHLCV,
    Order,
    OrderOptions,
    OrderSide,
    OrderStatus,
    OrderType,
    PerpOrderSide,
    Position,
    PositionSide,
    Ticker,
    TimeInForce,
    Trade,
)
from .numeric import parse_decimal, parse_timestamp, precision_from_step, to_decimal, to_milliseconds
from .orders import PreparedOrder, generate_client_order_id, infer_position, map_status
from .signers import BinanceSigner, build_query
from .symbols import to_canonical


logger = logging.getLogger(__name__)


# ============================================================
# CONSTANTS
# ============================================================

BINANCE_SPOT_URL = "https://api.binance.com"
BINANCE_SPOT_SANDBOX_URL = "https://demo-api.binance.com"
BINANCE_FUTURES_URL = "https://fapi.binance.com"
BINANCE_FUTURES_SANDBOX_URL = "https://demo-fapi.binance.com"

BINANCE_CLIENT_ORDER_ID_LENGTH = 36

# Error code returned when the margin type is already the requested one
BINANCE_MARGIN_TYPE_UNCHANGED = "-4046"

BINANCE_STATUS_MAP = {
    "NEW": OrderStatus.OPEN,
    "PARTIALLY_FILLED": OrderStatus.PARTIALLY_FILLED,
    "FILLED": OrderStatus.FILLED,
    "CANCELED": OrderStatus.CANCELED,
    "CANCELLED": OrderStatus.CANCELED,
    "PENDING_CANCEL": OrderStatus.OPEN,
    "EXPIRED": OrderStatus.EXPIRED,
    "EXPIRED_IN_MATCH": OrderStatus.EXPIRED,
    "REJECTED": OrderStatus.REJECTED,
}

BINANCE_TIME_IN_FORCE = {
    TimeInForce.GTC: "GTC",
    TimeInForce.IOC: "IOC",
    TimeInForce.FOK: "FOK",
    TimeInForce.POST_ONLY: "GTX",
}

# Order list and trade endpoints per market type
BINANCE_PATHS = {
    MarketType.SPOT: {
        "open_orders": "/api/v3/openOrders",
        "trades": "/api/v3/trades",
        "my_trades": "/api/v3/myTrades",
    },
    MarketType.SWAP: {
        "open_orders": "/fapi/v1/openOrders",
        "trades": "/fapi/v1/trades",
        "my_trades": "/fapi/v1/userTrades",
    },
}


# ============================================================
# CLIENT
# ============================================================

class BinanceClient(RestClient):
    """Signing, hosts and error decoding for both Binance APIs."""

    exchange_id = "binance"

    def __init__(self, config=None, transport=None):
        super().__init__(config, transport)
        self.signer = BinanceSigner(self.config.api_key, self.config.secret_key)
        self.recv_window = self.config.options.get("recv_window")

        if self.config.base_url:
            self.spot_url = self.config.base_url.rstrip("/")
        elif self.config.sandbox:
            self.spot_url = BINANCE_SPOT_SANDBOX_URL
        else:
            self.spot_url = BINANCE_SPOT_URL

        futures_url = self.config.options.get("futures_base_url")
        if futures_url:
            self.futures_url = futures_url.rstrip("/")
        elif self.config.sandbox:
            self.futures_url = BINANCE_FUTURES_SANDBOX_URL
        else:
            self.futures_url = BINANCE_FUTURES_URL

    def host(self, market_type: MarketType) -> str:
        return self.futures_url if market_type is MarketType.SWAP else self.spot_url

    async def public(
        self,
        market_type: MarketType,
        path: str,
        params: Dict[str, Any] = None,
        operation: str = None,
    ) -> Any:
        """Unsigned GET."""
        query = build_query(params or {})
        return await self._send("GET", self.host(market_type) + path, query, None, operation)

    async def signed(
        self,
        market_type: MarketType,
        method: str,
        path: str,
        params: Dict[str, Any] = None,
        operation: str = None,
        symbol: str = None,
    ) -> Any:
        """Signed request; parameters travel in the query string."""
        self.require_credentials(operation, symbol)
        request = self.signer.sign(params or {}, recv_window=self.recv_window)
        return await self._send(
            method, self.host(market_type) + path, request.query, request.headers, operation,
        )

    async def _send(
        self,
        method: str,
        url: str,
        query: str,
        headers: Optional[Dict[str, str]],
        operation: str,
    ) -> Any:
        try:
            payload = await self.transport.request(method, url, query=query, headers=headers)
        except HttpStatusError as e:
            error = self._error_from_body(self.try_decode(e.body), e.status)
            if error is None:
                raise e.with_context(operation)
            raise ExchangeAPIError(error, operation=operation) from e

        data = self.decode(payload, operation)
        error = self._error_from_body(data, 200)
        if error is not None:
            raise ExchangeAPIError(error, operation=operation)
        return data

    @staticmethod
    def _error_from_body(data: Any, http_status: int) -> Optional[ExchangeError]:
        """{"code": -2013, "msg": "..."} -> ExchangeError."""
        if not isinstance(data, dict) or "code" not in data or "msg" not in data:
            return None
        try:
            code = int(data["code"])
        except (TypeError, ValueError):
            return None
        if 200 <= http_status < 300 and code >= 0:
            return None
        return map_binance_error(code, str(data["msg"]), http_status)


# ============================================================
# SHARED PARSING
# ============================================================

def _filters(item: Dict[str, Any]) -> Dict[str, Dict[str, Any]]:
    return {f.get("filterType"): f for f in item.get("filters") or [] if isinstance(f, dict)}


def _limits(filters: Dict[str, Dict[str, Any]]) -> MarketLimits:
    lot = filters.get("LOT_SIZE", {})
    price = filters.get("PRICE_FILTER", {})
    notional = filters.get("NOTIONAL") or filters.get("MIN_NOTIONAL") or {}
    return MarketLimits(
        amount=MinMax(parse_decimal(lot.get("minQty")), parse_decimal(lot.get("maxQty"))),
        price=MinMax(parse_decimal(price.get("minPrice")), parse_decimal(price.get("maxPrice"))),
        cost=MinMax(
            parse_decimal(notional.get("minNotional", notional.get("notional"))),
            parse_decimal(notional.get("maxNotional")),
        ),
    )


def _step_precision(filters: Dict[str, Dict[str, Any]], name: str, key: str, default: Optional[int]) -> Optional[int]:
    step = parse_decimal(filters.get(name, {}).get(key))
    if step is not None and step > 0:
        return precision_from_step(step)
    return default


def _parse_ticker(symbol: str, item: Dict[str, Any]) -> Ticker:
    return Ticker(
        symbol=symbol,
        timestamp=parse_timestamp(item.get("closeTime")),
        last=parse_decimal(item.get("lastPrice")),
        bid=parse_decimal(item.get("bidPrice")),
        ask=parse_decimal(item.get("askPrice")),
        open=parse_decimal(item.get("openPrice")),
        high=parse_decimal(item.get("highPrice")),
        low=parse_decimal(item.get("lowPrice")),
        volume=parse_decimal(item.get("volume")),
        quote_volume=parse_decimal(item.get("quoteVolume")),
        change=parse_decimal(item.get("priceChange")),
        percentage=parse_decimal(item.get("priceChangePercent")),
    )


def _parse_candles(rows: Any) -> List[OHLCV]:
    candles = []
    for row in rows:
        if not isinstance(row, list) or len(row) < 6:
            continue
        candles.append(OHLCV(
            timestamp=parse_timestamp(int(row[0])),
            open=to_decimal(row[1]),
            high=to_decimal(row[2]),
            low=to_decimal(row[3]),
            close=to_decimal(row[4]),
            volume=to_decimal(row[5]),
        ))
    return candles


def _fill_totals(fills: List[Dict[str, Any]]) -> Tuple[Optional[Decimal], Optional[Decimal], Optional[str]]:
    """(average price, fee, fee currency) from a FULL response's fills."""
    if not fills:
        return None, None, None
    quantity = Decimal("0")
    notional = Decimal("0")
    fee = Decimal("0")
    fee_currency = None
    for fill in fills:
        qty = to_decimal(fill.get("qty"))
        quantity += qty
        notional += qty * to_decimal(fill.get("price"))
        fee += to_decimal(fill.get("commission"))
        fee_currency = fee_currency or fill.get("commissionAsset")
    average = notional / quantity if quantity > 0 else None
    return average, fee, fee_currency


class _BinanceAPI:
    """Ticker, order parameter and response handling shared by spot and perp."""

    _client: BinanceClient

    def _collect_tickers(self, data: List[Any], symbols) -> Dict[str, Ticker]:
        wanted = self._wanted(symbols)
        tickers = {}
        for item in data:
            if not isinstance(item, dict):
                continue
            market = self._registry.find(item.get("symbol", ""))
            if market is None or (wanted and market.symbol not in wanted):
                continue
            try:
                tickers[market.symbol] = _parse_ticker(market.symbol, item)
            except (TypeError, ValueError) as e:
                logger.debug(f"[binance] Skipping malformed ticker {item.get('symbol')}: {e}")
        return tickers

    def _client_order_id(self, side: OrderSide, options: OrderOptions) -> str:
        if options.client_order_id:
            return options.client_order_id
        return generate_client_order_id(
            self._client.exchange_id, side, max_length=BINANCE_CLIENT_ORDER_ID_LENGTH,
        )

    @staticmethod
    def _identifier_params(market: Market, order_id: Optional[str], client_order_id: Optional[str]) -> Dict[str, Any]:
        params = {"symbol": market.id}
        if order_id:
            params["orderId"] = order_id
        else:
            params["origClientOrderId"] = client_order_id
        return params

    def _parse_order(self, market: Market, data: Any) -> Order:
        if not isinstance(data, dict):
            raise self._client.parse_error("parse_order", f"unexpected order payload: {data!r}", market.symbol)

        order_id = data.get("orderId")
        if order_id in (None, "", 0, "0"):
            raise OrderNotFound(
                "order response carries no order id",
                exchange_id=self._client.exchange_id,
                symbol=market.symbol,
            )

        amount = parse_decimal(data.get("origQty"))
        filled = parse_decimal(data.get("executedQty"))
        cost = parse_decimal(data.get("cummulativeQuoteQty", data.get("cumQuote")))
        price = parse_decimal(data.get("price"))
        if price is not None and price == 0:
            price = None

        average, fee, fee_currency = _fill_totals(data.get("fills") or [])
        avg_price = parse_decimal(data.get("avgPrice"))
        if avg_price is not None and avg_price > 0:
            average = avg_price
        if average is None and cost and filled:
            average = cost / filled

        order_type = OrderType.MARKET if str(data.get("type", "")).upper() == "MARKET" else OrderType.LIMIT
        created = parse_timestamp(data.get("time") or data.get("transactTime"))
        updated = parse_timestamp(data.get("updateTime") or data.get("transactTime")) or created

        return Order(
            id=str(order_id),
            symbol=market.symbol,
            client_order_id=data.get("clientOrderId", ""),
            type=order_type,
            side=OrderSide(str(data.get("side", "BUY")).lower()),
            status=map_status(BINANCE_STATUS_MAP, data.get("status")),
            amount=amount,
            filled=filled,
            price=price,
            average=average,
            cost=cost,
            time_in_force=data.get("timeInForce"),
            fee=fee,
            fee_currency=fee_currency,
            created_at=created,
            updated_at=updated,
            info=data,
        )

    # --------------------------------------------------------
    # Order lists and trades
    # --------------------------------------------------------

    async def _fetch_open_orders(self, market: Optional[Market]) -> List[Order]:
        params = {"symbol": market.id} if market else {}
        data = await self._client.signed(
            self.market_type, "GET", BINANCE_PATHS[self.market_type]["open_orders"], params,
            operation="fetch_open_orders", symbol=market.symbol if market else None,
        )
        if not isinstance(data, list):
            raise self._client.parse_error("fetch_open_orders", "open orders is not a list")

        orders = []
        for item in data:
            if not isinstance(item, dict):
                continue
            item_market = market or self._known_market(item.get("symbol", ""))
            if item_market is not None:
                orders.append(self._parse_order(item_market, item))
        return orders

    async def _fetch_trades(self, market: Market, since: Optional[int], limit: Optional[int]) -> List[Trade]:
        # recent trades only; older ones are filtered out by the caller
        data = await self._client.public(
            self.market_type, BINANCE_PATHS[self.market_type]["trades"],
            {"symbol": market.id, "limit": limit},
            operation="fetch_trades",
        )
        if not isinstance(data, list):
            raise self._client.parse_error("fetch_trades", "trades is not a list", market.symbol)

        trades = []
        for item in data:
            if not isinstance(item, dict):
                continue
            trades.append(Trade(
                id=str(item.get("id", "")),
                symbol=market.symbol,
                # isBuyerMaker: the seller took liquidity
                side=OrderSide.SELL if item.get("isBuyerMaker") else OrderSide.BUY,
                amount=to_decimal(item.get("qty")),
                price=to_decimal(item.get("price")),
                cost=parse_decimal(item.get("quoteQty")),
                timestamp=parse_timestamp(item.get("time")),
                info=item,
            ))
        return trades

    async def _fetch_my_trades(self, market: Market, since: Optional[int], limit: Optional[int]) -> List[Trade]:
        data = await self._client.signed(
            self.market_type, "GET", BINANCE_PATHS[self.market_type]["my_trades"],
            {"symbol": market.id, "startTime": since, "limit": limit},
            operation="fetch_my_trades", symbol=market.symbol,
        )
        if not isinstance(data, list):
            raise self._client.parse_error("fetch_my_trades", "trades is not a list", market.symbol)

        trades = []
        for item in data:
            if not isinstance(item, dict):
                continue
            # spot reports isBuyer / isMaker, futures side / maker
            side = str(item.get("side", "")).lower()
            if side not in ("buy", "sell"):
                side = "buy" if item.get("isBuyer") else "sell"
            maker = item.get("isMaker", item.get("maker"))
            trades.append(Trade(
                id=str(item.get("id", "")),
                symbol=market.symbol,
                side=OrderSide(side),
                amount=to_decimal(item.get("qty")),
                price=to_decimal(item.get("price")),
                cost=parse_decimal(item.get("quoteQty")),
                order_id=str(item["orderId"]) if item.get("orderId") is not None else None,
                taker_or_maker=None if maker is None else ("maker" if maker else "taker"),
                fee=parse_decimal(item.get("commission")),
                fee_currency=item.get("commissionAsset") or None,
                timestamp=parse_timestamp(item.get("time")),
                info=item,
            ))
        return trades


# ============================================================
# SPOT
# ============================================================

class BinanceSpot(_BinanceAPI, SpotExchange):
    """Binance spot API."""

    # --------------------------------------------------------
    # Markets
    # --------------------------------------------------------

    async def _fetch_markets(self) -> List[Market]:
        data = await self._client.public(MarketType.SPOT, "/api/v3/exchangeInfo", operation="load_markets")
        if not isinstance(data, dict) or not isinstance(data.get("symbols"), list):
            raise self._client.parse_error("load_markets", "exchangeInfo has no symbols list")

        markets = []
        for item in data["symbols"]:
            if item.get("status") != "TRADING":
                continue
            try:
                markets.append(self._parse_market(item))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"[binance] Skipping malformed spot market {item.get('symbol')}: {e}")
        return markets

    def _parse_market(self, item: Dict[str, Any]) -> Market:
        filters = _filters(item)
        base, quote = item["baseAsset"], item["quoteAsset"]
        return Market(
            id=item["symbol"],
            symbol=to_canonical(base, quote),
            base=base.upper(),
            quote=quote.upper(),
            type=MarketType.SPOT,
            active=True,
            precision=MarketPrecision(
                amount=_step_precision(filters, "LOT_SIZE", "stepSize", item.get("baseAssetPrecision")),
                price=_step_precision(filters, "PRICE_FILTER", "tickSize", item.get("quotePrecision")),
            ),
            limits=_limits(filters),
            info=item,
        )

    # --------------------------------------------------------
    # Market data
    # --------------------------------------------------------

    async def fetch_ticker(self, symbol: str) -> Ticker:
        market = self.get_market(symbol)
        data = await self._client.public(
            MarketType.SPOT, "/api/v3/ticker/24hr", {"symbol": market.id}, operation="fetch_ticker",
        )
        if not isinstance(data, dict):
            raise self._client.parse_error("fetch_ticker", "ticker is not an object", symbol)
        return _parse_ticker(market.symbol, data)

    async def fetch_tickers(self, *symbols: str) -> Dict[str, Ticker]:
        await self.load_markets()
        data = await self._client.public(MarketType.SPOT, "/api/v3/ticker/24hr", operation="fetch_tickers")
        if not isinstance(data, list):
            raise self._client.parse_error("fetch_tickers", "tickers is not a list")
        return self._collect_tickers(data, symbols)

    async def fetch_ohlcv(self, symbol, timeframe="1h", since=None, limit=None) -> List[OHLCV]:
        market = self.get_market(symbol)
        params = {
            "symbol": market.id,
            "interval": self._native_timeframe(timeframe),
            "startTime": to_milliseconds(since),
            "limit": limit,
        }
        data = await self._client.public(MarketType.SPOT, "/api/v3/klines", params, operation="fetch_ohlcv")
        if not isinstance(data, list):
            raise self._client.parse_error("fetch_ohlcv", "klines is not a list", symbol)
        return _parse_candles(data)

    # --------------------------------------------------------
    # Account
    # --------------------------------------------------------

    async def _fetch_balance(self) -> List[Balance]:
        data = await self._client.signed(MarketType.SPOT, "GET", "/api/v3/account", operation="fetch_balance")
        if not isinstance(data, dict) or not isinstance(data.get("balances"), list):
            raise self._client.parse_error("fetch_balance", "account has no balances list")

        updated_at = parse_timestamp(data.get("updateTime"))
        balances = []
        for item in data["balances"]:
            free = to_decimal(item.get("free"))
            locked = to_decimal(item.get("locked"))
            if free == 0 and locked == 0:
                continue
            balances.append(Balance(
                currency=item.get("asset", ""),
                available=free,
                locked=locked,
                updated_at=updated_at,
            ))
        return balances

    # --------------------------------------------------------
    # Orders
    # --------------------------------------------------------

    async def _create_order(self, market: Market, side: OrderSide, prepared: PreparedOrder, options: OrderOptions) -> Order:
        client_order_id = self._client_order_id(side, options)
        params = {
            "symbol": market.id,
            "side": side.value.upper(),
            "type": prepared.type.value.upper(),
            "quantity": prepared.amount_str,
        }
        if prepared.is_limit:
            if prepared.time_in_force is TimeInForce.POST_ONLY:
                params["type"] = "LIMIT_MAKER"
            else:
                params["timeInForce"] = BINANCE_TIME_IN_FORCE[prepared.time_in_force]
            params["price"] = prepared.price_str
        params["newClientOrderId"] = client_order_id
        params["newOrderRespType"] = "FULL"

        data = await self._client.signed(
            MarketType.SPOT, "POST", "/api/v3/order", params,
            operation="create_order", symbol=market.symbol,
        )
        order = self._parse_order(market, data)
        order.client_order_id = order.client_order_id or client_order_id
        return order

    async def _cancel_order(self, market, order_id, client_order_id) -> None:
        await self._client.signed(
            MarketType.SPOT, "DELETE", "/api/v3/order",
            self._identifier_params(market, order_id, client_order_id),
            operation="cancel_order", symbol=market.symbol,
        )

    async def _fetch_order(self, market, order_id, client_order_id) -> Order:
        data = await self._client.signed(
            MarketType.SPOT, "GET", "/api/v3/order",
            self._identifier_params(market, order_id, client_order_id),
            operation="fetch_order", symbol=market.symbol,
        )
        return self._parse_order(market, data)


# ============================================================
# PERPETUAL
# ============================================================

class BinancePerp(_BinanceAPI, PerpExchange):
    """Binance USDⓈ-M perpetual API."""

    # --------------------------------------------------------
    # Markets
    # --------------------------------------------------------

    async def _fetch_markets(self) -> List[Market]:
        data = await self._client.public(MarketType.SWAP, "/fapi/v1/exchangeInfo", operation="load_markets")
        if not isinstance(data, dict) or not isinstance(data.get("symbols"), list):
            raise self._client.parse_error("load_markets", "exchangeInfo has no symbols list")

        markets = []
        for item in data["symbols"]:
            if item.get("contractType") != "PERPETUAL" or item.get("status") != "TRADING":
                continue
            try:
                markets.append(self._parse_market(item))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"[binance] Skipping malformed perpetual market {item.get('symbol')}: {e}")
        return markets

    def _parse_market(self, item: Dict[str, Any]) -> Market:
        filters = _filters(item)
        base, quote = item["baseAsset"], item["quoteAsset"]
        settle = item.get("marginAsset") or quote
        return Market(
            id=item["symbol"],
            symbol=to_canonical(base, quote, settle),
            base=base.upper(),
            quote=quote.upper(),
            settle=settle.upper(),
            type=MarketType.SWAP,
            active=True,
            contract=True,
            linear=True,
            inverse=False,
            contract_value=Decimal("1"),
            precision=MarketPrecision(
                amount=item.get("quantityPrecision"),
                price=_step_precision(filters, "PRICE_FILTER", "tickSize", item.get("pricePrecision")),
            ),
            limits=_limits(filters),
            info=item,
        )

    # --------------------------------------------------------
    # Market data
    # --------------------------------------------------------

    async def fetch_ticker(self, symbol: str) -> Ticker:
        market = self.get_market(symbol)
        data = await self._client.public(
            MarketType.SWAP, "/fapi/v1/ticker/24hr", {"symbol": market.id}, operation="fetch_ticker",
        )
        if not isinstance(data, dict):
            raise self._client.parse_error("fetch_ticker", "ticker is not an object", symbol)
        return _parse_ticker(market.symbol, data)

    async def fetch_tickers(self, *symbols: str) -> Dict[str, Ticker]:
        await self.load_markets()
        data = await self._client.public(MarketType.SWAP, "/fapi/v1/ticker/24hr", operation="fetch_tickers")
        if not isinstance(data, list):
            raise self._client.parse_error("fetch_tickers", "tickers is not a list")
        return self._collect_tickers(data, symbols)

    async def fetch_ohlcv(self, symbol, timeframe="1h", since=None, limit=None) -> List[OHLCV]:
        market = self.get_market(symbol)
        params = {
            "symbol": market.id,
            "interval": self._native_timeframe(timeframe),
            "startTime": to_milliseconds(since),
            "limit": limit,
        }
        data = await self._client.public(MarketType.SWAP, "/fapi/v1/klines", params, operation="fetch_ohlcv")
        if not isinstance(data, list):
            raise self._client.parse_error("fetch_ohlcv", "klines is not a list", symbol)
        return _parse_candles(data)

    # --------------------------------------------------------
    # Positions and account settings
    # --------------------------------------------------------

    async def _fetch_positions(self) -> List[Position]:
        data = await self._client.signed(MarketType.SWAP, "GET", "/fapi/v2/positionRisk", operation="fetch_positions")
        if not isinstance(data, list):
            raise self._client.parse_error("fetch_positions", "positionRisk is not a list")

        positions = []
        for item in data:
            raw_amount = to_decimal(item.get("positionAmt"))
            if raw_amount == 0:
                continue
            market = self._known_market(item.get("symbol", ""))
            if market is None:
                continue
            positions.append(Position(
                symbol=market.symbol,
                side=PositionSide.LONG if raw_amount > 0 else PositionSide.SHORT,
                amount=abs(raw_amount),
                entry_price=parse_decimal(item.get("entryPrice")),
                mark_price=parse_decimal(item.get("markPrice")),
                liquidation_price=parse_decimal(item.get("liquidationPrice")),
                unrealized_pnl=parse_decimal(item.get("unRealizedProfit")),
                leverage=parse_decimal(item.get("leverage")),
                margin=parse_decimal(item.get("isolatedMargin")),
                margin_mode=(item.get("marginType") or "").lower() or None,
                timestamp=parse_timestamp(item.get("updateTime")),
                info=item,
            ))
        return positions

    async def _query_hedge_mode(self) -> bool:
        data = await self._client.signed(
            MarketType.SWAP, "GET", "/fapi/v1/positionSide/dual", operation="position_mode",
        )
        if not isinstance(data, dict) or "dualSidePosition" not in data:
            raise self._client.parse_error("position_mode", "missing dualSidePosition")
        return bool(data["dualSidePosition"])

    async def _set_leverage(self, market: Market, leverage: int) -> None:
        await self._client.signed(
            MarketType.SWAP, "POST", "/fapi/v1/leverage",
            {"symbol": market.id, "leverage": leverage},
            operation="set_leverage", symbol=market.symbol,
        )

    async def _set_margin_mode(self, market: Market, mode: MarginMode) -> None:
        try:
            await self._client.signed(
                MarketType.SWAP, "POST", "/fapi/v1/marginType",
                {"symbol": market.id, "marginType": mode.value.upper()},
                operation="set_margin_mode", symbol=market.symbol,
            )
        except ExchangeAPIError as e:
            if e.error.exchange_code != BINANCE_MARGIN_TYPE_UNCHANGED:
                raise
            logger.debug(f"[binance] Margin type of {market.id} already {mode.value}")

    # --------------------------------------------------------
    # Orders
    # --------------------------------------------------------

    async def _create_order(self, market: Market, side: PerpOrderSide, prepared: PreparedOrder, options: OrderOptions) -> Order:
        hedge_mode = await self.hedge_mode(options.hedge_mode)
        position_side, reduce_only = infer_position(side, hedge_mode)
        client_order_id = self._client_order_id(side.order_side, options)

        params = {
            "symbol": market.id,
            "side": side.order_side.value.upper(),
            "positionSide": position_side.value,
            "type": prepared.type.value.upper(),
            "quantity": prepared.amount_str,
        }
        if prepared.is_limit:
            params["timeInForce"] = BINANCE_TIME_IN_FORCE[prepared.time_in_force]
            params["price"] = prepared.price_str
        if reduce_only:
            params["reduceOnly"] = True
        params["newClientOrderId"] = client_order_id

        data = await self._client.signed(
            MarketType.SWAP, "POST", "/fapi/v1/order", params,
            operation="create_order", symbol=market.symbol,
        )
        order = self._parse_order(market, data)
        order.client_order_id = order.client_order_id or client_order_id
        order.perp_side = side
        order.position_side = order.position_side or position_side
        order.reduce_only = order.reduce_only or reduce_only
        return order

    def _parse_order(self, market: Market, data: Any) -> Order:
        order = super()._parse_order(market, data)
        raw_position_side = data.get("positionSide")
        if raw_position_side in PositionSide.__members__:
            order.position_side = PositionSide(raw_position_side)
        order.reduce_only = bool(data.get("reduceOnly", False))
        return order

    async def _cancel_order(self, market, order_id, client_order_id) -> None:
        await self._client.signed(
            MarketType.SWAP, "DELETE", "/fapi/v1/order",
            self._identifier_params(market, order_id, client_order_id),
            operation="cancel_order", symbol=market.symbol,
        )

    async def _fetch_order(self, market, order_id, client_order_id) -> Order:
        data = await self._client.signed(
            MarketType.SWAP, "GET", "/fapi/v1/order",
            self._identifier_params(market, order_id, client_order_id),
            operation="fetch_order", symbol=market.symbol,
        )
        return self._parse_order(market, data)


# ============================================================
# FACADE
# ============================================================

class BinanceExchange(Exchange):
    """Binance spot + USDⓈ-M perpetuals."""

    client_class = BinanceClient
    spot_class = BinanceSpot
    perp_class = BinancePerp
