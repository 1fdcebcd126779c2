"""
Exchange Adapters - OKX.

============================================================
PURPOSE
============================================================
OKX spot and perpetual swap backends (API v5).

============================================================
OKX API SPECIFICS
============================================================
Authentication:
- OK-ACCESS-KEY / -SIGN / -TIMESTAMP / -PASSPHRASE headers
- SIGN = BASE64(HMAC-SHA256(ts + METHOD + path[?query] + body))
- Demo trading: same host plus ``x-simulated-trading: 1``

Response envelope:
    {"code": "0", "msg": "", "data": [...]}
Order endpoints report per-item failures in ``sCode`` / ``sMsg``.

Symbol format:
- Spot:      BTC-USDT
- Perpetual: BTC-USDT-SWAP

Perpetual sizing:
- ``sz`` counts contracts; coin amount = sz * ctVal
- tdMode is the instrument's recorded margin mode (cross default)
- Position mode: long_short_mode -> posSide long/short,
  net_mode -> posSide net with reduceOnly on closes

============================================================
"""

import json
import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional

from .base import TIMEFRAME_SECONDS, Exchange, PerpExchange, RestClient, SpotExchange
from .errors import (
    ExchangeAPIError,
    ExchangeError,
    HttpStatusError,
    InvalidAmount,
    OrderNotFound,
    map_okx_error,
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
from .orders import HedgeModeCache, PreparedOrder, generate_client_order_id, infer_position, map_status
from .signers import OKXSigner, build_query
from .symbols import OKX_SYMBOLS, to_canonical


logger = logging.getLogger(__name__)


# ============================================================
# CONSTANTS
# ============================================================

OKX_URL = "https://www.okx.com"

# Alphanumeric only
OKX_CLIENT_ORDER_ID_LENGTH = 32

OKX_STATUS_MAP = {
    "live": OrderStatus.OPEN,
    "partially_filled": OrderStatus.PARTIALLY_FILLED,
    "filled": OrderStatus.FILLED,
    "canceled": OrderStatus.CANCELED,
    "mmp_canceled": OrderStatus.CANCELED,
}

# ordType for limit orders
OKX_LIMIT_ORDER_TYPES = {
    TimeInForce.GTC: "limit",
    TimeInForce.IOC: "ioc",
    TimeInForce.FOK: "fok",
    TimeInForce.POST_ONLY: "post_only",
}

OKX_TIMEFRAMES = {
    "1h": "1H",
    "2h": "2H",
    "4h": "4H",
    "6h": "6H",
    "8h": "8H",
    "12h": "12H",
    "1d": "1D",
    "3d": "3D",
    "1w": "1W",
    "1M": "1M",
}

OKX_HEDGE_POSITION_MODE = "long_short_mode"

# Candles per page when no limit is given
OKX_CANDLE_LIMIT = 100


# ============================================================
# CLIENT
# ============================================================

class OKXClient(RestClient):
    """Signing, envelope unwrapping and error decoding for OKX v5."""

    exchange_id = "okx"

    def __init__(self, config=None, transport=None):
        super().__init__(config, transport)
        self.signer = OKXSigner(
            self.config.api_key,
            self.config.secret_key,
            self.config.passphrase,
            simulated=self.config.sandbox,
        )
        self.base_url = (self.config.base_url or OKX_URL).rstrip("/")

    async def public(self, path: str, params: Dict[str, Any] = None, operation: str = None) -> List[Any]:
        """Unsigned GET; returns the envelope's ``data`` list."""
        query = build_query(params or {})
        headers = {"x-simulated-trading": "1"} if self.config.sandbox else {}
        return await self._send("GET", path, query, None, headers, operation)

    async def signed(
        self,
        method: str,
        path: str,
        params: Dict[str, Any] = None,
        body: Dict[str, Any] = None,
        operation: str = None,
        symbol: str = None,
    ) -> List[Any]:
        """Signed request; GET parameters in the query, POST as JSON."""
        self.require_credentials(operation, symbol)
        query = build_query(params or {})
        body_str = json.dumps(body, separators=(",", ":")) if body is not None else ""
        request = self.signer.sign(method, path, query, body_str)
        headers = dict(request.headers)
        headers["Content-Type"] = "application/json"
        return await self._send(method, path, query, body_str or None, headers, operation)

    async def _send(
        self,
        method: str,
        path: str,
        query: str,
        body: Optional[str],
        headers: Dict[str, str],
        operation: str,
    ) -> List[Any]:
        try:
            payload = await self.transport.request(
                method, self.base_url + path, query=query, body=body, headers=headers or None,
            )
        except HttpStatusError as e:
            error = self._error_from_body(self.try_decode(e.body), e.status)
            if error is None:
                raise e.with_context(operation)
            raise ExchangeAPIError(error, operation=operation) from e

        envelope = self.decode(payload, operation)
        if not isinstance(envelope, dict) or "code" not in envelope:
            raise self.parse_error(operation, "response is not an OKX envelope")
        error = self._error_from_body(envelope, 200)
        if error is not None:
            raise ExchangeAPIError(error, operation=operation)

        data = envelope.get("data")
        return data if isinstance(data, list) else []

    @staticmethod
    def _error_from_body(data: Any, http_status: int) -> Optional[ExchangeError]:
        """
        Top-level ``code`` != "0", refined by the first item's
        ``sCode`` / ``sMsg`` when present.
        """
        if not isinstance(data, dict) or "code" not in data:
            return None
        code = str(data["code"])
        message = str(data.get("msg", ""))

        items = data.get("data")
        if isinstance(items, list) and items and isinstance(items[0], dict):
            item_code = str(items[0].get("sCode", "") or "0")
            if item_code != "0":
                code = item_code
                message = str(items[0].get("sMsg", "")) or message

        if code == "0":
            return None
        return map_okx_error(code, message, http_status)


# ============================================================
# SHARED
# ============================================================

class _OKXAPI:
    """Instrument parsing, market data and order plumbing shared by spot and swap."""

    _client: OKXClient
    inst_type = "SPOT"

    def _timeframe_map(self) -> Dict[str, str]:
        return OKX_TIMEFRAMES

    def _client_order_id(self, side: OrderSide, options: OrderOptions) -> str:
        if options.client_order_id:
            return options.client_order_id
        return generate_client_order_id(
            self._client.exchange_id,
            side,
            separator="",
            max_length=OKX_CLIENT_ORDER_ID_LENGTH,
        )

    @staticmethod
    def _identifier(order_id: Optional[str], client_order_id: Optional[str]) -> Dict[str, str]:
        if order_id:
            return {"ordId": str(order_id)}
        return {"clOrdId": str(client_order_id)}

    @staticmethod
    def _first(data: List[Any]) -> Optional[Dict[str, Any]]:
        if data and isinstance(data[0], dict):
            return data[0]
        return None

    def _order_ack(self, market: Market, data: List[Any]) -> Dict[str, Any]:
        ack = self._first(data)
        if ack is None or not ack.get("ordId"):
            raise OrderNotFound(
                "order response carries no order id",
                exchange_id=self._client.exchange_id,
                symbol=market.symbol,
            )
        return ack

    # --------------------------------------------------------
    # Markets
    # --------------------------------------------------------

    async def _fetch_markets(self) -> List[Market]:
        data = await self._client.public(
            "/api/v5/public/instruments", {"instType": self.inst_type}, operation="load_markets",
        )
        markets = []
        for item in data:
            if not isinstance(item, dict) or item.get("state") != "live":
                continue
            try:
                markets.append(self._parse_market(item))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"[okx] Skipping malformed instrument {item.get('instId')}: {e}")
        return markets

    # --------------------------------------------------------
    # Market data
    # --------------------------------------------------------

    def _parse_ticker(self, market: Market, item: Dict[str, Any]) -> Ticker:
        last = parse_decimal(item.get("last"))
        open_ = parse_decimal(item.get("open24h"))
        change = percentage = None
        if last is not None and open_:
            change = last - open_
            percentage = change / open_ * 100
        return Ticker(
            symbol=market.symbol,
            timestamp=parse_timestamp(item.get("ts")),
            last=last,
            bid=parse_decimal(item.get("bidPx")),
            ask=parse_decimal(item.get("askPx")),
            open=open_,
            high=parse_decimal(item.get("high24h")),
            low=parse_decimal(item.get("low24h")),
            volume=self._ticker_volume(item),
            quote_volume=self._ticker_quote_volume(item),
            change=change,
            percentage=percentage,
        )

    def _ticker_volume(self, item: Dict[str, Any]) -> Optional[Decimal]:
        return parse_decimal(item.get("vol24h"))

    def _ticker_quote_volume(self, item: Dict[str, Any]) -> Optional[Decimal]:
        return parse_decimal(item.get("volCcy24h"))

    async def fetch_ticker(self, symbol: str) -> Ticker:
        market = self.get_market(symbol)
        data = await self._client.public(
            "/api/v5/market/ticker", {"instId": market.id}, operation="fetch_ticker",
        )
        item = self._first(data)
        if item is None:
            raise self._client.parse_error("fetch_ticker", "empty ticker response", symbol)
        return self._parse_ticker(market, item)

    async def fetch_tickers(self, *symbols: str) -> Dict[str, Ticker]:
        await self.load_markets()
        data = await self._client.public(
            "/api/v5/market/tickers", {"instType": self.inst_type}, operation="fetch_tickers",
        )
        wanted = self._wanted(symbols)
        tickers = {}
        for item in data:
            if not isinstance(item, dict):
                continue
            market = self._registry.find(item.get("instId", ""))
            if market is None or (wanted and market.symbol not in wanted):
                continue
            tickers[market.symbol] = self._parse_ticker(market, item)
        return tickers

    def _candle_volume(self, row: List[Any]) -> Decimal:
        return to_decimal(row[5])

    async def fetch_ohlcv(self, symbol, timeframe="1h", since=None, limit=None) -> List[OHLCV]:
        market = self.get_market(symbol)
        params = {
            "instId": market.id,
            "bar": self._native_timeframe(timeframe),
            "limit": limit,
        }
        path = "/api/v5/market/candles"
        since_ms = to_milliseconds(since)
        if since_ms is not None:
            # exclusive bounds: candles in [since, since + count bars)
            count = limit or OKX_CANDLE_LIMIT
            params["after"] = since_ms + count * TIMEFRAME_SECONDS[timeframe] * 1000
            params["before"] = since_ms - 1
            path = "/api/v5/market/history-candles"
        data = await self._client.public(path, params, operation="fetch_ohlcv")

        # [ts, o, h, l, c, vol, volCcy, volCcyQuote, confirm], newest first
        candles = []
        for row in reversed(data):
            if not isinstance(row, list) or len(row) < 7:
                continue
            candles.append(OHLCV(
                timestamp=parse_timestamp(row[0]),
                open=to_decimal(row[1]),
                high=to_decimal(row[2]),
                low=to_decimal(row[3]),
                close=to_decimal(row[4]),
                volume=self._candle_volume(row),
            ))
        return candles

    # --------------------------------------------------------
    # Orders
    # --------------------------------------------------------

    @staticmethod
    def _order_type_params(prepared: PreparedOrder) -> Dict[str, Any]:
        if not prepared.is_limit:
            return {"ordType": "market"}
        ord_type = OKX_LIMIT_ORDER_TYPES.get(prepared.time_in_force, "limit")
        return {"ordType": ord_type, "px": prepared.price_str}

    def _ack_order(
        self,
        market: Market,
        data: List[Any],
        side: OrderSide,
        prepared: PreparedOrder,
        client_order_id: str,
    ) -> Order:
        """Order from a create acknowledgement, which carries IDs only."""
        ack = self._order_ack(market, data)
        return Order(
            id=str(ack["ordId"]),
            symbol=market.symbol,
            client_order_id=ack.get("clOrdId") or client_order_id,
            type=prepared.type,
            side=side,
            status=OrderStatus.NEW,
            amount=Decimal(prepared.amount_str),
            price=Decimal(prepared.price_str) if prepared.price_str else None,
            time_in_force=prepared.time_in_force.value if prepared.time_in_force else None,
            created_at=parse_timestamp(ack.get("ts")),
            info=ack,
        )

    def _coin_amount(self, market: Market, size: Optional[Decimal]) -> Optional[Decimal]:
        return size

    def _parse_order(self, market: Market, data: List[Any]) -> Order:
        item = self._first(data)
        if item is None or not item.get("ordId"):
            raise OrderNotFound(
                "order not found",
                exchange_id=self._client.exchange_id,
                symbol=market.symbol,
            )
        return self._order_from_item(market, item)

    def _order_from_item(self, market: Market, item: Dict[str, Any]) -> Order:
        ord_type = item.get("ordType", "")
        price = parse_decimal(item.get("px"))
        average = parse_decimal(item.get("avgPx"))
        fee = parse_decimal(item.get("fee"))
        amount = self._coin_amount(market, parse_decimal(item.get("sz")))
        filled = self._coin_amount(market, parse_decimal(item.get("accFillSz")))
        cost = average * filled if average and filled is not None else None
        pos_side = str(item.get("posSide", "")).upper()

        return Order(
            id=str(item["ordId"]),
            symbol=market.symbol,
            client_order_id=item.get("clOrdId", ""),
            type=OrderType.MARKET if ord_type == "market" else OrderType.LIMIT,
            side=OrderSide(str(item.get("side", "buy")).lower()),
            status=map_status(OKX_STATUS_MAP, item.get("state")),
            amount=amount,
            filled=filled,
            price=price if price else None,
            average=average if average else None,
            cost=cost,
            time_in_force=ord_type or None,
            position_side=PositionSide.BOTH if pos_side == "NET" else (
                PositionSide(pos_side) if pos_side in ("LONG", "SHORT") else None
            ),
            reduce_only=str(item.get("reduceOnly", "")).lower() == "true",
            fee=abs(fee) if fee is not None else None,
            fee_currency=item.get("feeCcy") or None,
            created_at=parse_timestamp(item.get("cTime")),
            updated_at=parse_timestamp(item.get("uTime")),
            info=item,
        )

    async def _cancel_order(self, market, order_id, client_order_id) -> None:
        body = {"instId": market.id}
        body.update(self._identifier(order_id, client_order_id))
        data = await self._client.signed(
            "POST", "/api/v5/trade/cancel-order", body=body,
            operation="cancel_order", symbol=market.symbol,
        )
        self._order_ack(market, data)

    async def _fetch_order(self, market, order_id, client_order_id) -> Order:
        params = {"instId": market.id}
        params.update(self._identifier(order_id, client_order_id))
        data = await self._client.signed(
            "GET", "/api/v5/trade/order", params,
            operation="fetch_order", symbol=market.symbol,
        )
        return self._parse_order(market, data)

    async def _fetch_open_orders(self, market: Optional[Market]) -> List[Order]:
        params = {"instType": self.inst_type, "instId": market.id if market else None}
        data = await self._client.signed(
            "GET", "/api/v5/trade/orders-pending", params,
            operation="fetch_open_orders", symbol=market.symbol if market else None,
        )
        orders = []
        for item in data:
            if not isinstance(item, dict) or not item.get("ordId"):
                continue
            item_market = market or self._known_market(item.get("instId", ""))
            if item_market is not None:
                orders.append(self._order_from_item(item_market, item))
        return orders

    # --------------------------------------------------------
    # Trades
    # --------------------------------------------------------

    async def _fetch_trades(self, market: Market, since: Optional[int], limit: Optional[int]) -> List[Trade]:
        # recent trades only; older ones are filtered out by the caller
        data = await self._client.public(
            "/api/v5/market/trades", {"instId": market.id, "limit": limit}, operation="fetch_trades",
        )
        trades = []
        for item in data:
            if not isinstance(item, dict):
                continue
            trades.append(Trade(
                id=str(item.get("tradeId", "")),
                symbol=market.symbol,
                side=OrderSide(str(item.get("side", "buy")).lower()),
                amount=self._coin_amount(market, to_decimal(item.get("sz"))),
                price=to_decimal(item.get("px")),
                timestamp=parse_timestamp(item.get("ts")),
                info=item,
            ))
        return trades

    async def _fetch_my_trades(self, market: Market, since: Optional[int], limit: Optional[int]) -> List[Trade]:
        params = {
            "instType": self.inst_type,
            "instId": market.id,
            "begin": since,
            "limit": limit,
        }
        data = await self._client.signed(
            "GET", "/api/v5/trade/fills", params, operation="fetch_my_trades", symbol=market.symbol,
        )
        trades = []
        for item in data:
            if not isinstance(item, dict):
                continue
            fee = parse_decimal(item.get("fee"))
            exec_type = item.get("execType")
            trades.append(Trade(
                id=str(item.get("tradeId", "")),
                symbol=market.symbol,
                side=OrderSide(str(item.get("side", "buy")).lower()),
                amount=self._coin_amount(market, to_decimal(item.get("fillSz"))),
                price=to_decimal(item.get("fillPx")),
                order_id=item.get("ordId") or None,
                taker_or_maker={"T": "taker", "M": "maker"}.get(exec_type),
                # OKX reports fees paid as negative numbers
                fee=abs(fee) if fee is not None else None,
                fee_currency=item.get("feeCcy") or None,
                timestamp=parse_timestamp(item.get("ts") or item.get("fillTime")),
                info=item,
            ))
        return trades


# ============================================================
# SPOT
# ============================================================

class OKXSpot(_OKXAPI, SpotExchange):
    """OKX spot API (cash trading mode)."""

    inst_type = "SPOT"

    def _parse_market(self, item: Dict[str, Any]) -> Market:
        base, quote = item["baseCcy"], item["quoteCcy"]
        return Market(
            id=item["instId"],
            symbol=to_canonical(base, quote),
            base=base.upper(),
            quote=quote.upper(),
            type=MarketType.SPOT,
            active=True,
            precision=MarketPrecision(
                amount=precision_from_step(item.get("lotSz")),
                price=precision_from_step(item.get("tickSz")),
            ),
            limits=MarketLimits(
                amount=MinMax(parse_decimal(item.get("minSz")), parse_decimal(item.get("maxSz"))),
                cost=MinMax(parse_decimal(item.get("minSzVal"))),
            ),
            info=item,
        )

    async def _fetch_balance(self) -> List[Balance]:
        data = await self._client.signed("GET", "/api/v5/account/balance", operation="fetch_balance")
        account = self._first(data)
        if account is None:
            raise self._client.parse_error("fetch_balance", "empty balance response")

        balances = []
        for detail in account.get("details") or []:
            available = to_decimal(detail.get("availBal"))
            locked = to_decimal(detail.get("frozenBal"))
            total = parse_decimal(detail.get("eq"))
            if available == 0 and locked == 0 and not total:
                continue
            balances.append(Balance(
                currency=detail.get("ccy", "").upper(),
                available=available,
                locked=locked,
                total=total,
                updated_at=parse_timestamp(detail.get("uTime")),
            ))
        return balances

    async def _create_order(self, market: Market, side: OrderSide, prepared: PreparedOrder, options: OrderOptions) -> Order:
        client_order_id = self._client_order_id(side, options)
        body = {
            "instId": market.id,
            "tdMode": "cash",
            "side": side.value,
            "sz": prepared.amount_str,
            "clOrdId": client_order_id,
        }
        body.update(self._order_type_params(prepared))
        if not prepared.is_limit:
            # keep market order size in base currency
            body["tgtCcy"] = "base_ccy"

        data = await self._client.signed(
            "POST", "/api/v5/trade/order", body=body,
            operation="create_order", symbol=market.symbol,
        )
        return self._ack_order(market, data, side, prepared, client_order_id)


# ============================================================
# PERPETUAL
# ============================================================

class OKXPerp(_OKXAPI, PerpExchange):
    """OKX perpetual swap API."""

    inst_type = "SWAP"

    def __init__(self, client, hedge_mode_ttl: float = HedgeModeCache.DEFAULT_TTL_SECONDS):
        super().__init__(client, hedge_mode_ttl)
        self._margin_modes: Dict[str, MarginMode] = {}

    def margin_mode(self, market: Market, explicit: Optional[MarginMode] = None) -> MarginMode:
        """Explicit mode, else the recorded one, else cross."""
        if explicit is not None:
            return explicit
        return self._margin_modes.get(market.id, MarginMode.CROSS)

    # --------------------------------------------------------
    # Contract sizing
    # --------------------------------------------------------

    def _amount_places(self, market: Market) -> Optional[int]:
        contract_value = market.contract_value or Decimal("1")
        lot = to_decimal(market.info.get("lotSz"), default=None)
        if lot is None or lot <= 0:
            return precision_from_step(contract_value)
        return precision_from_step(contract_value * lot)

    def _contracts(self, market: Market, amount: Decimal) -> str:
        contract_value = market.contract_value or Decimal("1")
        size = quantize(amount / contract_value, market.precision.amount)
        if Decimal(size) <= 0:
            raise InvalidAmount(
                f"amount {amount} is below one contract lot",
                symbol=market.symbol,
            )
        return size

    def _coin_amount(self, market: Market, size: Optional[Decimal]) -> Optional[Decimal]:
        if size is None:
            return None
        return abs(size) * (market.contract_value or Decimal("1"))

    # --------------------------------------------------------
    # Markets and market data
    # --------------------------------------------------------

    def _parse_market(self, item: Dict[str, Any]) -> Market:
        native_id = item["instId"]
        base, quote = item.get("baseCcy", ""), item.get("quoteCcy", "")
        underlying = item.get("uly", "")
        if underlying and underlying.count("-") >= 1:
            base, quote = underlying.split("-")[:2]
        if not base or not quote:
            base, quote = OKX_SYMBOLS.split_native(native_id, is_contract=True)

        inverse = item.get("ctType") == "inverse"
        settle = item.get("settleCcy") or (base if inverse else quote)
        return Market(
            id=native_id,
            symbol=to_canonical(base, quote, settle),
            base=base.upper(),
            quote=quote.upper(),
            settle=settle.upper(),
            type=MarketType.SWAP,
            active=True,
            contract=True,
            linear=not inverse,
            inverse=inverse,
            contract_value=parse_decimal(item.get("ctVal")),
            precision=MarketPrecision(
                amount=precision_from_step(item.get("lotSz")),
                price=precision_from_step(item.get("tickSz")),
            ),
            limits=MarketLimits(
                amount=MinMax(parse_decimal(item.get("minSz")), parse_decimal(item.get("maxSz"))),
                cost=MinMax(parse_decimal(item.get("minSzVal"))),
            ),
            info=item,
        )

    def _ticker_volume(self, item: Dict[str, Any]) -> Optional[Decimal]:
        # volCcy24h is in base currency for derivatives
        return parse_decimal(item.get("volCcy24h"))

    def _ticker_quote_volume(self, item: Dict[str, Any]) -> Optional[Decimal]:
        volume = parse_decimal(item.get("volCcy24h"))
        last = parse_decimal(item.get("last"))
        if volume is None or last is None:
            return None
        return volume * last

    def _candle_volume(self, row: List[Any]) -> Decimal:
        return to_decimal(row[6])

    # --------------------------------------------------------
    # Positions and account settings
    # --------------------------------------------------------

    async def _fetch_positions(self) -> List[Position]:
        data = await self._client.signed(
            "GET", "/api/v5/account/positions", {"instType": "SWAP"}, operation="fetch_positions",
        )
        positions = []
        for item in data:
            pos = to_decimal(item.get("pos"))
            if pos == 0:
                continue
            market = self._known_market(item.get("instId", ""))
            if market is None:
                continue
            pos_side = str(item.get("posSide", "net")).lower()
            if pos_side == "long" or (pos_side == "net" and pos > 0):
                side = PositionSide.LONG
            else:
                side = PositionSide.SHORT
            positions.append(Position(
                symbol=market.symbol,
                side=side,
                amount=self._coin_amount(market, pos),
                entry_price=parse_decimal(item.get("avgPx")),
                mark_price=parse_decimal(item.get("markPx")),
                liquidation_price=parse_decimal(item.get("liqPx")),
                unrealized_pnl=parse_decimal(item.get("upl")),
                realized_pnl=parse_decimal(item.get("realizedPnl")),
                leverage=parse_decimal(item.get("lever")),
                margin=parse_decimal(item.get("margin")) or parse_decimal(item.get("imr")),
                margin_mode=item.get("mgnMode") or None,
                timestamp=parse_timestamp(item.get("uTime")),
                info=item,
            ))
        return positions

    async def _query_hedge_mode(self) -> bool:
        data = await self._client.signed("GET", "/api/v5/account/config", operation="position_mode")
        config = self._first(data)
        if config is None:
            raise self._client.parse_error("position_mode", "empty account config")
        return config.get("posMode") == OKX_HEDGE_POSITION_MODE

    async def _set_leverage(self, market: Market, leverage: int) -> None:
        body = {
            "instId": market.id,
            "lever": str(leverage),
            "mgnMode": self.margin_mode(market).value,
        }
        await self._client.signed(
            "POST", "/api/v5/account/set-leverage", body=body,
            operation="set_leverage", symbol=market.symbol,
        )

    async def _set_margin_mode(self, market: Market, mode: MarginMode) -> None:
        """Recorded per instrument; applied as tdMode / mgnMode later."""
        self._margin_modes[market.id] = mode

    # --------------------------------------------------------
    # Orders
    # --------------------------------------------------------

    async def _create_order(self, market: Market, side: PerpOrderSide, prepared: PreparedOrder, options: OrderOptions) -> Order:
        hedge_mode = await self.hedge_mode(options.hedge_mode)
        position_side, reduce_only = infer_position(side, hedge_mode)
        client_order_id = self._client_order_id(side.order_side, options)

        body = {
            "instId": market.id,
            "tdMode": self.margin_mode(market, options.margin_mode).value,
            "side": side.order_side.value,
            "sz": self._contracts(market, Decimal(prepared.amount_str)),
            "clOrdId": client_order_id,
        }
        body.update(self._order_type_params(prepared))
        if hedge_mode:
            body["posSide"] = position_side.value.lower()
        else:
            body["posSide"] = "net"
            if reduce_only:
                body["reduceOnly"] = True

        data = await self._client.signed(
            "POST", "/api/v5/trade/order", body=body,
            operation="create_order", symbol=market.symbol,
        )
        order = self._ack_order(market, data, side.order_side, prepared, client_order_id)
        order.perp_side = side
        order.position_side = position_side
        order.reduce_only = reduce_only
        return order


# ============================================================
# FACADE
# ============================================================

class OKXExchange(Exchange):
    """OKX spot + perpetual swaps."""

    client_class = OKXClient
    spot_class = OKXSpot
    perp_class = OKXPerp
