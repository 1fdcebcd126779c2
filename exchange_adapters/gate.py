"""
Exchange Adapters - Gate.

============================================================
PURPOSE
============================================================
Gate spot and USDT-settled perpetual backends (API v4).

============================================================
GATE API SPECIFICS
============================================================
Authentication:
- KEY, Timestamp (seconds) and SIGN headers
- SIGN = HEX(HMAC-SHA512(METHOD\\nPATH\\nQUERY\\nSHA512(BODY)\\nTS))
- PATH includes the /api/v4 prefix

Request format:
- GET/DELETE: query string
- POST: JSON body

Symbol format: BTC_USDT (spot and perpetual)

Perpetual sizing:
- Orders carry an integer contract count ``size``, positive for
  buys and negative for sells
- Coin amount = contracts * quanto_multiplier
- Closing trades carry reduce_only=true in either position mode

Spot market buys are denominated in quote currency.

============================================================
"""

import json
import logging
from decimal import Decimal, ROUND_CEILING
from typing import Any, Dict, List, Optional

from .base import Exchange, PerpExchange, RestClient, SpotExchange
from .errors import (
    ExchangeAPIError,
    ExchangeError,
    HttpStatusError,
    NotSupported,
    OrderNotFound,
    map_gate_error,
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
from .numeric import (
    parse_decimal,
    parse_timestamp,
    precision_from_step,
    quantize,
    to_decimal,
    to_milliseconds,
)
from .orders import PreparedOrder, generate_client_order_id, infer_position, tif_value
from .signers import GateSigner, build_query
from .symbols import GATE_SYMBOLS, to_canonical


logger = logging.getLogger(__name__)


# ============================================================
# CONSTANTS
# ============================================================

GATE_URL = "https://api.gateio.ws"
GATE_SANDBOX_URL = "https://api-testnet.gateapi.io"
GATE_API_PREFIX = "/api/v4"
GATE_DEFAULT_SETTLE = "usdt"

# Gate requires custom order IDs to start with "t-" and caps them at 28 chars
GATE_CLIENT_ORDER_ID_PREFIX = "t-"
GATE_CLIENT_ORDER_ID_LENGTH = 28

GATE_TIME_IN_FORCE = {
    TimeInForce.GTC: "gtc",
    TimeInForce.IOC: "ioc",
    TimeInForce.FOK: "fok",
    TimeInForce.POST_ONLY: "poc",
}

GATE_TIMEFRAMES = {
    "1w": "7d",
    "1M": "30d",
}

# finish_as values of finished orders
GATE_FINISH_AS_MAP = {
    "filled": OrderStatus.FILLED,
    "cancelled": OrderStatus.CANCELED,
    "canceled": OrderStatus.CANCELED,
    "expired": OrderStatus.EXPIRED,
    "liquidated": OrderStatus.FILLED,
    "auto_deleveraged": OrderStatus.FILLED,
    "reduce_only": OrderStatus.CANCELED,
    "position_closed": OrderStatus.CANCELED,
    "stp": OrderStatus.CANCELED,
    "small": OrderStatus.CANCELED,
    "depth_not_enough": OrderStatus.CANCELED,
    "trader_not_enough": OrderStatus.CANCELED,
    "poc": OrderStatus.REJECTED,
}


def gate_order_status(
    status: Optional[str],
    finish_as: Optional[str],
    filled: Optional[Decimal] = None,
    left: Optional[Decimal] = None,
) -> OrderStatus:
    """
    Map (status, finish_as) onto the canonical state machine.

    ``ioc`` finishes count as filled when nothing is left, expired
    otherwise.
    """
    status = (status or "").lower()
    finish_as = (finish_as or "").lower()

    if status == "open":
        if filled is not None and filled > 0:
            return OrderStatus.PARTIALLY_FILLED
        return OrderStatus.OPEN
    if finish_as == "ioc":
        return OrderStatus.FILLED if left is not None and left == 0 else OrderStatus.EXPIRED
    if finish_as in GATE_FINISH_AS_MAP:
        return GATE_FINISH_AS_MAP[finish_as]
    if status in ("closed", "finished"):
        return OrderStatus.FILLED
    if status == "cancelled":
        return OrderStatus.CANCELED
    return OrderStatus.NEW


# ============================================================
# CLIENT
# ============================================================

class GateClient(RestClient):
    """Signing, host selection and error decoding for Gate API v4."""

    exchange_id = "gate"

    def __init__(self, config=None, transport=None):
        super().__init__(config, transport)
        self.signer = GateSigner(self.config.api_key, self.config.secret_key)
        if self.config.base_url:
            self.base_url = self.config.base_url.rstrip("/")
        elif self.config.sandbox:
            self.base_url = GATE_SANDBOX_URL
        else:
            self.base_url = GATE_URL
        self.settle = str(self.config.options.get("settle", GATE_DEFAULT_SETTLE)).lower()

    async def public(self, path: str, params: Dict[str, Any] = None, operation: str = None) -> Any:
        query = build_query(params or {})
        return await self._send("GET", GATE_API_PREFIX + path, query, None, {}, operation)

    async def signed(
        self,
        method: str,
        path: str,
        params: Dict[str, Any] = None,
        body: Dict[str, Any] = None,
        operation: str = None,
        symbol: str = None,
    ) -> Any:
        """
        Signed request.

        Args:
            path: Path below /api/v4
            params: Query parameters
            body: JSON body (POST)
        """
        self.require_credentials(operation, symbol)
        full_path = GATE_API_PREFIX + path
        query = build_query(params or {})
        body_str = json.dumps(body, separators=(",", ":")) if body is not None else ""
        request = self.signer.sign(method, full_path, query, body_str)
        headers = dict(request.headers)
        headers["Content-Type"] = "application/json"
        headers["X-Gate-Channel-Id"] = "api"
        return await self._send(method, full_path, query, body_str or None, headers, operation)

    async def _send(
        self,
        method: str,
        full_path: str,
        query: str,
        body: Optional[str],
        headers: Dict[str, str],
        operation: str,
    ) -> Any:
        try:
            payload = await self.transport.request(
                method, self.base_url + full_path, query=query, body=body, headers=headers or None,
            )
        except HttpStatusError as e:
            error = self._error_from_body(self.try_decode(e.body), e.status)
            if error is None:
                raise e.with_context(operation)
            raise ExchangeAPIError(error, operation=operation) from e

        if not payload:
            return None
        data = self.decode(payload, operation)
        error = self._error_from_body(data, 200)
        if error is not None:
            raise ExchangeAPIError(error, operation=operation)
        return data

    @staticmethod
    def _error_from_body(data: Any, http_status: int) -> Optional[ExchangeError]:
        """{"label": "ORDER_NOT_FOUND", "message": "..."} -> ExchangeError."""
        if not isinstance(data, dict) or "label" not in data:
            return None
        return map_gate_error(str(data["label"]), str(data.get("message", "")), http_status)


# ============================================================
# SHARED
# ============================================================

class _GateAPI:
    """Client order IDs and order-ID path handling shared by spot and perp."""

    _client: GateClient

    def _timeframe_map(self) -> Dict[str, str]:
        return GATE_TIMEFRAMES

    def _client_order_id(self, side: OrderSide, options: OrderOptions) -> str:
        if options.client_order_id:
            return options.client_order_id
        return generate_client_order_id(
            self._client.exchange_id,
            side,
            prefix=GATE_CLIENT_ORDER_ID_PREFIX,
            max_length=GATE_CLIENT_ORDER_ID_LENGTH,
        )

    @staticmethod
    def _order_ref(order_id: Optional[str], client_order_id: Optional[str]) -> str:
        """Gate accepts the custom ``text`` in place of the order ID."""
        return str(order_id or client_order_id)

    def _require_order_id(self, market: Market, data: Any) -> str:
        if not isinstance(data, dict):
            raise self._client.parse_error("parse_order", f"unexpected order payload: {data!r}", market.symbol)
        order_id = data.get("id")
        if order_id in (None, "", 0, "0"):
            raise OrderNotFound(
                "order response carries no order id",
                exchange_id=self._client.exchange_id,
                symbol=market.symbol,
            )
        return str(order_id)

    def _parse_orders(self, data: Any, market: Optional[Market], id_key: str) -> List[Order]:
        """Order list; ``id_key`` names the instrument field when no market is given."""
        if not isinstance(data, list):
            raise self._client.parse_error("fetch_open_orders", "orders is not a list")
        orders = []
        for item in data:
            if not isinstance(item, dict):
                continue
            item_market = market or self._known_market(item.get(id_key, ""))
            if item_market is not None:
                orders.append(self._parse_order(item_market, item))
        return orders

    def _trade_list(self, data: Any, market: Market, operation: str) -> List[Dict[str, Any]]:
        if not isinstance(data, list):
            raise self._client.parse_error(operation, "trades is not a list", market.symbol)
        return [item for item in data if isinstance(item, dict)]

    @staticmethod
    def _since_seconds(since: Optional[int]) -> Optional[int]:
        return since // 1000 if since is not None else None


def _trade_time(item: Dict[str, Any]):
    """create_time_ms is a fractional millisecond string; create_time is seconds."""
    millis = parse_decimal(item.get("create_time_ms"))
    if millis:
        return parse_timestamp(int(millis))
    return parse_timestamp(item.get("create_time"))


# ============================================================
# SPOT
# ============================================================

class GateSpot(_GateAPI, SpotExchange):
    """Gate spot API."""

    # --------------------------------------------------------
    # Markets
    # --------------------------------------------------------

    async def _fetch_markets(self) -> List[Market]:
        data = await self._client.public("/spot/currency_pairs", operation="load_markets")
        if not isinstance(data, list):
            raise self._client.parse_error("load_markets", "currency_pairs is not a list")

        markets = []
        for item in data:
            if not isinstance(item, dict) or item.get("trade_status") != "tradable":
                continue
            try:
                markets.append(self._parse_market(item))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"[gate] Skipping malformed spot market {item.get('id')}: {e}")
        return markets

    def _parse_market(self, item: Dict[str, Any]) -> Market:
        base, quote = item["base"], item["quote"]
        return Market(
            id=item["id"],
            symbol=to_canonical(base, quote),
            base=base.upper(),
            quote=quote.upper(),
            type=MarketType.SPOT,
            active=True,
            precision=MarketPrecision(
                amount=item.get("amount_precision"),
                price=item.get("precision"),
            ),
            limits=MarketLimits(
                amount=MinMax(parse_decimal(item.get("min_base_amount")), parse_decimal(item.get("max_base_amount"))),
                cost=MinMax(parse_decimal(item.get("min_quote_amount")), parse_decimal(item.get("max_quote_amount"))),
            ),
            info=item,
        )

    # --------------------------------------------------------
    # Market data
    # --------------------------------------------------------

    @staticmethod
    def _parse_ticker(symbol: str, item: Dict[str, Any]) -> Ticker:
        return Ticker(
            symbol=symbol,
            last=parse_decimal(item.get("last")),
            bid=parse_decimal(item.get("highest_bid")),
            ask=parse_decimal(item.get("lowest_ask")),
            high=parse_decimal(item.get("high_24h")),
            low=parse_decimal(item.get("low_24h")),
            volume=parse_decimal(item.get("base_volume")),
            quote_volume=parse_decimal(item.get("quote_volume")),
            percentage=parse_decimal(item.get("change_percentage")),
        )

    async def fetch_ticker(self, symbol: str) -> Ticker:
        market = self.get_market(symbol)
        data = await self._client.public(
            "/spot/tickers", {"currency_pair": market.id}, operation="fetch_ticker",
        )
        if not isinstance(data, list) or not data or not isinstance(data[0], dict):
            raise self._client.parse_error("fetch_ticker", "empty ticker response", symbol)
        return self._parse_ticker(market.symbol, data[0])

    async def fetch_tickers(self, *symbols: str) -> Dict[str, Ticker]:
        await self.load_markets()
        data = await self._client.public("/spot/tickers", operation="fetch_tickers")
        if not isinstance(data, list):
            raise self._client.parse_error("fetch_tickers", "tickers is not a list")

        wanted = self._wanted(symbols)
        tickers = {}
        for item in data:
            if not isinstance(item, dict):
                continue
            market = self._registry.find(item.get("currency_pair", ""))
            if market is None or (wanted and market.symbol not in wanted):
                continue
            tickers[market.symbol] = self._parse_ticker(market.symbol, item)
        return tickers

    async def fetch_ohlcv(self, symbol, timeframe="1h", since=None, limit=None) -> List[OHLCV]:
        market = self.get_market(symbol)
        since_ms = to_milliseconds(since)
        params = {
            "currency_pair": market.id,
            "interval": self._native_timeframe(timeframe),
            "from": since_ms // 1000 if since_ms is not None else None,
            "limit": limit,
        }
        data = await self._client.public("/spot/candlesticks", params, operation="fetch_ohlcv")
        if not isinstance(data, list):
            raise self._client.parse_error("fetch_ohlcv", "candlesticks is not a list", symbol)

        # [time, quote volume, close, high, low, open, base volume, closed]
        candles = []
        for row in data:
            if not isinstance(row, list) or len(row) < 7:
                continue
            candles.append(OHLCV(
                timestamp=parse_timestamp(row[0]),
                open=to_decimal(row[5]),
                high=to_decimal(row[3]),
                low=to_decimal(row[4]),
                close=to_decimal(row[2]),
                volume=to_decimal(row[6]),
            ))
        return candles

    # --------------------------------------------------------
    # Account
    # --------------------------------------------------------

    async def _fetch_balance(self) -> List[Balance]:
        data = await self._client.signed("GET", "/spot/accounts", operation="fetch_balance")
        if not isinstance(data, list):
            raise self._client.parse_error("fetch_balance", "accounts is not a list")

        balances = []
        for item in data:
            available = to_decimal(item.get("available"))
            locked = to_decimal(item.get("locked"))
            if available == 0 and locked == 0:
                continue
            balances.append(Balance(
                currency=item.get("currency", "").upper(),
                available=available,
                locked=locked,
            ))
        return balances

    # --------------------------------------------------------
    # Orders
    # --------------------------------------------------------

    async def _market_buy_cost(self, market: Market, prepared: PreparedOrder) -> str:
        """Coin amount -> quote cost at the last traded price."""
        ticker = await self.fetch_ticker(market.symbol)
        if not ticker.last or ticker.last <= 0:
            raise self._client.parse_error("create_order", "no last price for market buy", market.symbol)
        places = market.precision.price
        return quantize(Decimal(prepared.amount_str) * ticker.last, places)

    async def _create_order(self, market: Market, side: OrderSide, prepared: PreparedOrder, options: OrderOptions) -> Order:
        client_order_id = self._client_order_id(side, options)
        body = {
            "currency_pair": market.id,
            "side": side.value,
            "type": prepared.type.value,
            "account": "spot",
            "amount": prepared.amount_str,
        }
        if prepared.is_limit:
            body["price"] = prepared.price_str
            body["time_in_force"] = tif_value(prepared.time_in_force, GATE_TIME_IN_FORCE)
        else:
            body["time_in_force"] = "ioc"
            if side is OrderSide.BUY:
                body["amount"] = await self._market_buy_cost(market, prepared)
        body["text"] = client_order_id

        data = await self._client.signed(
            "POST", "/spot/orders", body=body, operation="create_order", symbol=market.symbol,
        )
        requested = Decimal(prepared.amount_str) if not prepared.is_limit and side is OrderSide.BUY else None
        order = self._parse_order(market, data, requested)
        order.client_order_id = order.client_order_id or client_order_id
        return order

    def _parse_order(self, market: Market, data: Any, requested: Optional[Decimal] = None) -> Order:
        """
        Args:
            requested: Base amount of a market buy, whose native
                ``amount`` is a quote-currency cost
        """
        order_id = self._require_order_id(market, data)

        side = OrderSide(str(data.get("side", "buy")).lower())
        order_type = OrderType.MARKET if data.get("type") == "market" else OrderType.LIMIT
        amount = parse_decimal(data.get("amount"))
        left = parse_decimal(data.get("left"))
        filled = parse_decimal(data.get("filled_amount"))
        if filled is None and amount is not None and left is not None:
            filled = amount - left
        if order_type is OrderType.MARKET and side is OrderSide.BUY:
            amount = requested if requested is not None else filled

        cost = parse_decimal(data.get("filled_total"))
        average = parse_decimal(data.get("avg_deal_price"))
        if not average and cost and filled:
            average = cost / filled
        price = parse_decimal(data.get("price"))

        return Order(
            id=order_id,
            symbol=market.symbol,
            client_order_id=data.get("text", ""),
            type=order_type,
            side=side,
            status=gate_order_status(data.get("status"), data.get("finish_as"), filled, left),
            amount=amount,
            filled=filled,
            price=price if price else None,
            average=average if average else None,
            cost=cost,
            time_in_force=data.get("time_in_force"),
            fee=parse_decimal(data.get("fee")),
            fee_currency=data.get("fee_currency"),
            created_at=parse_timestamp(data.get("create_time_ms") or data.get("create_time")),
            updated_at=parse_timestamp(data.get("update_time_ms") or data.get("update_time")),
            info=data,
        )

    async def _cancel_order(self, market, order_id, client_order_id) -> None:
        await self._client.signed(
            "DELETE", f"/spot/orders/{self._order_ref(order_id, client_order_id)}",
            {"currency_pair": market.id},
            operation="cancel_order", symbol=market.symbol,
        )

    async def _fetch_order(self, market, order_id, client_order_id) -> Order:
        data = await self._client.signed(
            "GET", f"/spot/orders/{self._order_ref(order_id, client_order_id)}",
            {"currency_pair": market.id},
            operation="fetch_order", symbol=market.symbol,
        )
        return self._parse_order(market, data)

    async def _fetch_open_orders(self, market: Optional[Market]) -> List[Order]:
        if market is not None:
            data = await self._client.signed(
                "GET", "/spot/orders", {"currency_pair": market.id, "status": "open"},
                operation="fetch_open_orders", symbol=market.symbol,
            )
            return self._parse_orders(data, market, "currency_pair")

        # grouped by pair: [{"currency_pair": ..., "orders": [...]}]
        data = await self._client.signed("GET", "/spot/open_orders", operation="fetch_open_orders")
        if not isinstance(data, list):
            raise self._client.parse_error("fetch_open_orders", "open_orders is not a list")
        orders = []
        for group in data:
            if not isinstance(group, dict):
                continue
            group_market = self._known_market(group.get("currency_pair", ""))
            if group_market is not None:
                orders.extend(self._parse_orders(group.get("orders") or [], group_market, "currency_pair"))
        return orders

    def _parse_trade(self, market: Market, item: Dict[str, Any]) -> Trade:
        order_id = item.get("order_id")
        return Trade(
            id=str(item.get("id", "")),
            symbol=market.symbol,
            side=OrderSide(str(item.get("side", "buy")).lower()),
            amount=to_decimal(item.get("amount")),
            price=to_decimal(item.get("price")),
            order_id=str(order_id) if order_id else None,
            taker_or_maker=item.get("role") or None,
            fee=parse_decimal(item.get("fee")),
            fee_currency=(item.get("fee_currency") or "").upper() or None,
            timestamp=_trade_time(item),
            info=item,
        )

    async def _fetch_trades(self, market: Market, since: Optional[int], limit: Optional[int]) -> List[Trade]:
        params = {"currency_pair": market.id, "limit": limit, "from": self._since_seconds(since)}
        data = await self._client.public("/spot/trades", params, operation="fetch_trades")
        return [self._parse_trade(market, item) for item in self._trade_list(data, market, "fetch_trades")]

    async def _fetch_my_trades(self, market: Market, since: Optional[int], limit: Optional[int]) -> List[Trade]:
        params = {"currency_pair": market.id, "limit": limit, "from": self._since_seconds(since)}
        data = await self._client.signed(
            "GET", "/spot/my_trades", params, operation="fetch_my_trades", symbol=market.symbol,
        )
        return [self._parse_trade(market, item) for item in self._trade_list(data, market, "fetch_my_trades")]


# ============================================================
# PERPETUAL
# ============================================================

class GatePerp(_GateAPI, PerpExchange):
    """Gate perpetual futures API."""

    @property
    def settle(self) -> str:
        return self._client.settle

    def _amount_places(self, market: Market) -> Optional[int]:
        if market.contract_value:
            return precision_from_step(market.contract_value)
        return 0

    @staticmethod
    def _contracts(market: Market, amount: Decimal) -> int:
        """ceil(coin amount / quanto_multiplier), at least one contract."""
        multiplier = market.contract_value or Decimal("1")
        size = int((amount / multiplier).to_integral_value(rounding=ROUND_CEILING))
        return max(size, 1)

    @staticmethod
    def _coins(market: Market, contracts: Optional[Decimal]) -> Optional[Decimal]:
        if contracts is None:
            return None
        return abs(contracts) * (market.contract_value or Decimal("1"))

    # --------------------------------------------------------
    # Markets
    # --------------------------------------------------------

    async def _fetch_markets(self) -> List[Market]:
        data = await self._client.public(f"/futures/{self.settle}/contracts", operation="load_markets")
        if not isinstance(data, list):
            raise self._client.parse_error("load_markets", "contracts is not a list")

        markets = []
        for item in data:
            if not isinstance(item, dict) or item.get("in_delisting"):
                continue
            try:
                markets.append(self._parse_market(item))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"[gate] Skipping malformed contract {item.get('name')}: {e}")
        return markets

    def _parse_market(self, item: Dict[str, Any]) -> Market:
        native_id = item["name"]
        base, quote = GATE_SYMBOLS.split_native(native_id, is_contract=True)
        settle = self.settle.upper()
        inverse = item.get("type") == "inverse"
        return Market(
            id=native_id,
            symbol=to_canonical(base, quote, settle),
            base=base,
            quote=quote,
            settle=settle,
            type=MarketType.SWAP,
            active=True,
            contract=True,
            linear=not inverse,
            inverse=inverse,
            contract_value=parse_decimal(item.get("quanto_multiplier")),
            precision=MarketPrecision(
                amount=0,
                price=precision_from_step(item.get("order_price_round")),
            ),
            limits=MarketLimits(
                amount=MinMax(parse_decimal(item.get("order_size_min")), parse_decimal(item.get("order_size_max"))),
            ),
            info=item,
        )

    # --------------------------------------------------------
    # Market data
    # --------------------------------------------------------

    @staticmethod
    def _parse_ticker(symbol: str, item: Dict[str, Any]) -> Ticker:
        return Ticker(
            symbol=symbol,
            last=parse_decimal(item.get("last")),
            bid=parse_decimal(item.get("highest_bid")),
            ask=parse_decimal(item.get("lowest_ask")),
            high=parse_decimal(item.get("high_24h")),
            low=parse_decimal(item.get("low_24h")),
            volume=parse_decimal(item.get("volume_24h_base")),
            quote_volume=parse_decimal(item.get("volume_24h_quote")),
            percentage=parse_decimal(item.get("change_percentage")),
        )

    async def fetch_ticker(self, symbol: str) -> Ticker:
        market = self.get_market(symbol)
        data = await self._client.public(
            f"/futures/{self.settle}/tickers", {"contract": market.id}, operation="fetch_ticker",
        )
        if not isinstance(data, list) or not data or not isinstance(data[0], dict):
            raise self._client.parse_error("fetch_ticker", "empty ticker response", symbol)
        return self._parse_ticker(market.symbol, data[0])

    async def fetch_tickers(self, *symbols: str) -> Dict[str, Ticker]:
        await self.load_markets()
        data = await self._client.public(f"/futures/{self.settle}/tickers", operation="fetch_tickers")
        if not isinstance(data, list):
            raise self._client.parse_error("fetch_tickers", "tickers is not a list")

        wanted = self._wanted(symbols)
        tickers = {}
        for item in data:
            if not isinstance(item, dict):
                continue
            market = self._registry.find(item.get("contract", ""))
            if market is None or (wanted and market.symbol not in wanted):
                continue
            tickers[market.symbol] = self._parse_ticker(market.symbol, item)
        return tickers

    async def fetch_ohlcv(self, symbol, timeframe="1h", since=None, limit=None) -> List[OHLCV]:
        market = self.get_market(symbol)
        since_ms = to_milliseconds(since)
        params = {
            "contract": market.id,
            "interval": self._native_timeframe(timeframe),
            "from": since_ms // 1000 if since_ms is not None else None,
            "limit": limit,
        }
        data = await self._client.public(
            f"/futures/{self.settle}/candlesticks", params, operation="fetch_ohlcv",
        )
        if not isinstance(data, list):
            raise self._client.parse_error("fetch_ohlcv", "candlesticks is not a list", symbol)

        candles = []
        for item in data:
            if not isinstance(item, dict) or "t" not in item:
                continue
            candles.append(OHLCV(
                timestamp=parse_timestamp(item["t"]),
                open=to_decimal(item.get("o")),
                high=to_decimal(item.get("h")),
                low=to_decimal(item.get("l")),
                close=to_decimal(item.get("c")),
                volume=self._coins(market, to_decimal(item.get("v"))),
            ))
        return candles

    # --------------------------------------------------------
    # Positions and account settings
    # --------------------------------------------------------

    async def _fetch_positions(self) -> List[Position]:
        data = await self._client.signed(
            "GET", f"/futures/{self.settle}/positions", operation="fetch_positions",
        )
        if not isinstance(data, list):
            raise self._client.parse_error("fetch_positions", "positions is not a list")

        positions = []
        for item in data:
            size = to_decimal(item.get("size"))
            if size == 0:
                continue
            market = self._known_market(item.get("contract", ""))
            if market is None:
                continue
            leverage = to_decimal(item.get("leverage"))
            positions.append(Position(
                symbol=market.symbol,
                side=PositionSide.LONG if size > 0 else PositionSide.SHORT,
                amount=self._coins(market, size),
                entry_price=parse_decimal(item.get("entry_price")),
                mark_price=parse_decimal(item.get("mark_price")),
                liquidation_price=parse_decimal(item.get("liq_price")),
                unrealized_pnl=parse_decimal(item.get("unrealised_pnl")),
                realized_pnl=parse_decimal(item.get("realised_pnl")),
                # leverage 0 means cross margin
                leverage=leverage if leverage > 0 else parse_decimal(item.get("cross_leverage_limit")),
                margin=parse_decimal(item.get("margin")),
                margin_mode=MarginMode.ISOLATED.value if leverage > 0 else MarginMode.CROSS.value,
                timestamp=parse_timestamp(item.get("update_time")),
                info=item,
            ))
        return positions

    async def _query_hedge_mode(self) -> bool:
        data = await self._client.signed(
            "GET", f"/futures/{self.settle}/accounts", operation="position_mode",
        )
        if not isinstance(data, dict) or "in_dual_mode" not in data:
            raise self._client.parse_error("position_mode", "missing in_dual_mode")
        return bool(data["in_dual_mode"])

    async def _set_leverage(self, market: Market, leverage: int) -> None:
        await self._client.signed(
            "POST", f"/futures/{self.settle}/positions/{market.id}/leverage",
            {"leverage": leverage},
            operation="set_leverage", symbol=market.symbol,
        )

    async def _set_margin_mode(self, market: Market, mode: MarginMode) -> None:
        raise NotSupported(
            "gate sets margin mode through leverage (0 = cross)",
            exchange_id=self.name,
            symbol=market.symbol,
        )

    # --------------------------------------------------------
    # Orders
    # --------------------------------------------------------

    async def _create_order(self, market: Market, side: PerpOrderSide, prepared: PreparedOrder, options: OrderOptions) -> Order:
        hedge_mode = await self.hedge_mode(options.hedge_mode)
        position_side, _ = infer_position(side, hedge_mode)
        reduce_only = side.is_closing
        client_order_id = self._client_order_id(side.order_side, options)

        contracts = self._contracts(market, Decimal(prepared.amount_str))
        body = {
            "contract": market.id,
            "size": contracts if side.order_side is OrderSide.BUY else -contracts,
        }
        if prepared.is_limit:
            body["price"] = prepared.price_str
            body["tif"] = tif_value(prepared.time_in_force, GATE_TIME_IN_FORCE)
        else:
            body["price"] = "0"
            body["tif"] = "ioc"
        if reduce_only:
            body["reduce_only"] = True
        body["text"] = client_order_id

        data = await self._client.signed(
            "POST", f"/futures/{self.settle}/orders", body=body,
            operation="create_order", symbol=market.symbol,
        )
        order = self._parse_order(market, data)
        order.client_order_id = order.client_order_id or client_order_id
        order.perp_side = side
        order.position_side = position_side
        order.reduce_only = reduce_only
        return order

    def _parse_order(self, market: Market, data: Any) -> Order:
        order_id = self._require_order_id(market, data)

        size = parse_decimal(data.get("size"))
        left = parse_decimal(data.get("left"))
        amount = self._coins(market, size)
        filled = None
        if size is not None and left is not None:
            filled = self._coins(market, abs(size) - abs(left))
        price = parse_decimal(data.get("price"))
        average = parse_decimal(data.get("fill_price"))

        return Order(
            id=order_id,
            symbol=market.symbol,
            client_order_id=data.get("text", ""),
            type=OrderType.MARKET if not price else OrderType.LIMIT,
            side=OrderSide.BUY if size is not None and size > 0 else OrderSide.SELL,
            status=gate_order_status(data.get("status"), data.get("finish_as"), filled, left),
            amount=amount,
            filled=filled,
            price=price if price else None,
            average=average if average else None,
            time_in_force=data.get("tif"),
            reduce_only=bool(data.get("is_reduce_only", False)),
            created_at=parse_timestamp(data.get("create_time")),
            updated_at=parse_timestamp(data.get("finish_time") or data.get("update_time")),
            info=data,
        )

    async def _cancel_order(self, market, order_id, client_order_id) -> None:
        await self._client.signed(
            "DELETE", f"/futures/{self.settle}/orders/{self._order_ref(order_id, client_order_id)}",
            operation="cancel_order", symbol=market.symbol,
        )

    async def _fetch_order(self, market, order_id, client_order_id) -> Order:
        data = await self._client.signed(
            "GET", f"/futures/{self.settle}/orders/{self._order_ref(order_id, client_order_id)}",
            operation="fetch_order", symbol=market.symbol,
        )
        return self._parse_order(market, data)

    async def _fetch_open_orders(self, market: Optional[Market]) -> List[Order]:
        params = {"contract": market.id if market else None, "status": "open"}
        data = await self._client.signed(
            "GET", f"/futures/{self.settle}/orders", params,
            operation="fetch_open_orders", symbol=market.symbol if market else None,
        )
        return self._parse_orders(data, market, "contract")

    def _parse_trade(self, market: Market, item: Dict[str, Any]) -> Trade:
        """Futures trades carry a signed contract ``size`` and no side."""
        size = to_decimal(item.get("size"))
        order_id = item.get("order_id")
        fee = parse_decimal(item.get("fee"))
        return Trade(
            id=str(item.get("id", "")),
            symbol=market.symbol,
            side=OrderSide.BUY if size > 0 else OrderSide.SELL,
            amount=self._coins(market, size),
            price=to_decimal(item.get("price")),
            order_id=str(order_id) if order_id else None,
            taker_or_maker=item.get("role") or None,
            fee=fee,
            fee_currency=market.settle if fee is not None else None,
            timestamp=_trade_time(item),
            info=item,
        )

    async def _fetch_trades(self, market: Market, since: Optional[int], limit: Optional[int]) -> List[Trade]:
        params = {"contract": market.id, "limit": limit, "from": self._since_seconds(since)}
        data = await self._client.public(f"/futures/{self.settle}/trades", params, operation="fetch_trades")
        return [self._parse_trade(market, item) for item in self._trade_list(data, market, "fetch_trades")]

    async def _fetch_my_trades(self, market: Market, since: Optional[int], limit: Optional[int]) -> List[Trade]:
        # my_trades has no start-time filter
        data = await self._client.signed(
            "GET", f"/futures/{self.settle}/my_trades", {"contract": market.id, "limit": limit},
            operation="fetch_my_trades", symbol=market.symbol,
        )
        return [self._parse_trade(market, item) for item in self._trade_list(data, market, "fetch_my_trades")]


# ============================================================
# FACADE
# ============================================================

class GateExchange(Exchange):
    """Gate spot + perpetual futures."""

    client_class = GateClient
    spot_class = GateSpot
    perp_class = GatePerp
