"""
Exchange Adapters - Base Interfaces.

============================================================
PURPOSE
============================================================
Exchange-agnostic contract shared by every backend.

- RestClient:    transport + signer + logger for one exchange
- SpotExchange:  spot market data, balances and orders
- PerpExchange:  perpetual market data, positions and orders
- Exchange:      facade exposing ``.spot`` and ``.perp``

DESIGN PRINCIPLES:
- Markets must be loaded before symbol-based calls
- Validation and credential checks happen before any I/O
- Errors propagate with operation/symbol context; never retried

============================================================
"""

import json
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from .config import ExchangeConfig
from .errors import (
    AuthenticationRequired,
    ExchangeException,
    MarketNotFound,
    NotSupported,
    ParseError,
)
from .logging_utils import AdapterLogger
from .models import (
    Balance,
    Market,
    MarketType,
    MarginMode,
    OHLCV,
    Order,
    OrderOptions,
    OrderSide,
    PerpOrderSide,
    Position,
    Ticker,
    Trade,
)
from .numeric import to_milliseconds
from .orders import (
    HedgeModeCache,
    PreparedOrder,
    check_margin_mode,
    coerce_order_side,
    coerce_perp_side,
    prepare_order,
    require_order_identifier,
)
from .registry import MarketRegistry
from .transport import HttpTransport


logger = logging.getLogger(__name__)


# Canonical timeframes accepted by fetch_ohlcv, with their length in seconds
TIMEFRAME_SECONDS = {
    "1m": 60,
    "3m": 180,
    "5m": 300,
    "15m": 900,
    "30m": 1800,
    "1h": 3600,
    "2h": 7200,
    "4h": 14400,
    "6h": 21600,
    "8h": 28800,
    "12h": 43200,
    "1d": 86400,
    "3d": 259200,
    "1w": 604800,
    "1M": 2678400,
}

TIMEFRAMES = tuple(TIMEFRAME_SECONDS)

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def _oldest_first(trades: List[Trade], since_ms: Optional[int]) -> List[Trade]:
    """Drop trades before ``since_ms`` and sort the rest by time."""
    if since_ms is not None:
        trades = [
            t for t in trades
            if t.timestamp is None or to_milliseconds(t.timestamp) >= since_ms
        ]
    return sorted(trades, key=lambda t: t.timestamp or _EPOCH)


# ============================================================
# REST CLIENT
# ============================================================

class RestClient:
    """
    Shared plumbing for one exchange: config, logger, transport.

    Backends subclass it to add signing and error-body decoding.
    """

    exchange_id: str = ""

    def __init__(self, config: Optional[ExchangeConfig] = None, transport: Any = None):
        """
        Args:
            config: Exchange configuration
            transport: Object with HttpTransport's request() signature;
                an HttpTransport is created when omitted
        """
        self.config = config or ExchangeConfig()
        self.logger = AdapterLogger(self.exchange_id, debug=self.config.debug)
        self.transport = transport or HttpTransport(
            self.exchange_id,
            self.config,
            adapter_logger=self.logger,
            default_headers=self.default_headers(),
        )

    def default_headers(self) -> Dict[str, str]:
        return {"Accept": "application/json"}

    @property
    def has_credentials(self) -> bool:
        return self.config.has_credentials

    def require_credentials(self, operation: str, symbol: str = None) -> None:
        """Fail fast, before any I/O, when no secret is configured."""
        if not self.has_credentials:
            raise AuthenticationRequired(
                "authentication required: secret key not configured",
                exchange_id=self.exchange_id,
                operation=operation,
                symbol=symbol,
            )

    def decode(self, payload: bytes, operation: str = None) -> Any:
        """Parse a JSON response body."""
        try:
            return json.loads(payload)
        except (ValueError, TypeError) as e:
            raise ParseError(
                f"invalid JSON response: {e}",
                exchange_id=self.exchange_id,
                operation=operation,
            ) from e

    def try_decode(self, body: Any) -> Any:
        """Parsed JSON, or None when the body is not JSON."""
        try:
            return json.loads(body)
        except (ValueError, TypeError):
            return None

    def parse_error(self, operation: str, message: str, symbol: str = None) -> ParseError:
        return ParseError(
            message,
            exchange_id=self.exchange_id,
            operation=operation,
            symbol=symbol,
        )

    async def close(self) -> None:
        close = getattr(self.transport, "close", None)
        if close is not None:
            await close()


# ============================================================
# SHARED MARKET API
# ============================================================

class _MarketAPI(ABC):
    """Registry-backed market data plus the order template."""

    market_type: MarketType = MarketType.SPOT

    def __init__(self, client: RestClient):
        self._client = client
        self._registry = MarketRegistry(client.exchange_id, self.market_type)

    @property
    def name(self) -> str:
        return self._client.exchange_id

    @property
    def registry(self) -> MarketRegistry:
        return self._registry

    # --------------------------------------------------------
    # Markets
    # --------------------------------------------------------

    async def load_markets(self, reload: bool = False) -> int:
        """
        Populate the market registry.

        With ``reload=False`` a populated registry is kept and no
        request is made.
        """
        try:
            return await self._registry.load(self._fetch_markets, reload=reload)
        except ExchangeException as e:
            raise e.with_context("load_markets")

    async def fetch_markets(self) -> List[Market]:
        await self.load_markets(reload=False)
        return self._registry.markets()

    def get_markets(self) -> List[Market]:
        """Markets cached by the last load; empty before load_markets()."""
        return self._registry.markets()

    def get_market(self, key: str) -> Market:
        """Market by canonical symbol or native ID."""
        return self._registry.get(key)

    def _known_market(self, native_id: str) -> Optional[Market]:
        """Registry market for a native ID found in a bulk response."""
        market = self._registry.find(native_id)
        if market is None:
            logger.debug(f"[{self.name}] Skipping entry for unknown instrument {native_id}")
        return market

    @abstractmethod
    async def _fetch_markets(self) -> List[Market]:
        """Request and parse the instrument list."""

    # --------------------------------------------------------
    # Market data
    # --------------------------------------------------------

    @abstractmethod
    async def fetch_ticker(self, symbol: str) -> Ticker:
        """24h ticker for one symbol."""

    @abstractmethod
    async def fetch_tickers(self, *symbols: str) -> Dict[str, Ticker]:
        """Tickers keyed by canonical symbol, optionally filtered."""

    @abstractmethod
    async def fetch_ohlcv(
        self,
        symbol: str,
        timeframe: str = "1h",
        since: Union[datetime, int, None] = None,
        limit: Optional[int] = None,
    ) -> List[OHLCV]:
        """Candles, oldest first."""

    def _native_timeframe(self, timeframe: str) -> str:
        if timeframe not in TIMEFRAMES:
            raise NotSupported(
                f"unsupported timeframe: {timeframe}",
                exchange_id=self.name,
                operation="fetch_ohlcv",
            )
        return self._timeframe_map().get(timeframe, timeframe)

    def _timeframe_map(self) -> Dict[str, str]:
        return {}

    def _wanted(self, symbols) -> Optional[set]:
        return set(symbols) if symbols else None

    # --------------------------------------------------------
    # Orders
    # --------------------------------------------------------

    def _coerce_side(self, side):
        return coerce_order_side(side)

    def _amount_places(self, market: Market) -> Optional[int]:
        """Decimal places of the coin amount a caller passes in."""
        return market.precision.amount

    def _order_side(self, side) -> OrderSide:
        return side

    async def create_order(
        self,
        symbol: str,
        side: Union[str, OrderSide, PerpOrderSide],
        amount: Union[str, int, float],
        options: Optional[OrderOptions] = None,
        **kwargs,
    ) -> Order:
        """
        Place an order.

        Args:
            symbol: Canonical symbol (or native ID)
            side: OrderSide for spot, PerpOrderSide for perpetuals
            amount: Quantity in base currency, as a decimal string
            options: OrderOptions; keyword shortcuts (price=...) merge in

        Returns:
            Canonical Order
        """
        self._client.require_credentials("create_order", symbol)
        opts = None

        try:
            opts = OrderOptions.build(options, **kwargs)
            side = self._coerce_side(side)
            market = self.get_market(symbol)
            prepared = prepare_order(market, amount, opts, self._amount_places(market))
            order = await self._create_order(market, side, prepared, opts)
        except ExchangeException as e:
            self._client.logger.log_order(
                "create",
                symbol=symbol,
                side=getattr(side, "value", side),
                amount=amount,
                price=opts.price if opts else None,
                error_message=str(e),
            )
            raise e.with_context("create_order", symbol)

        self._client.logger.log_order(
            "create",
            symbol=order.symbol,
            client_order_id=order.client_order_id,
            exchange_order_id=order.id,
            side=self._order_side(side).value,
            order_type=prepared.type.value,
            amount=prepared.amount_str,
            price=prepared.price_str,
            reduce_only=order.reduce_only,
            position_side=order.position_side.value if order.position_side else None,
            status=order.status.value,
        )
        return order

    async def cancel_order(
        self,
        symbol: str,
        order_id: Optional[str] = None,
        client_order_id: Optional[str] = None,
    ) -> None:
        """Cancel by exchange order ID or client order ID."""
        self._client.require_credentials("cancel_order", symbol)
        try:
            require_order_identifier(order_id, client_order_id, symbol)
            market = self.get_market(symbol)
            await self._cancel_order(market, order_id or None, client_order_id or None)
        except ExchangeException as e:
            self._client.logger.log_order(
                "cancel",
                symbol=symbol,
                exchange_order_id=order_id,
                client_order_id=client_order_id,
                error_message=str(e),
            )
            raise e.with_context("cancel_order", symbol)

        self._client.logger.log_order(
            "cancel",
            symbol=market.symbol,
            exchange_order_id=order_id,
            client_order_id=client_order_id,
        )

    async def fetch_order(
        self,
        symbol: str,
        order_id: Optional[str] = None,
        client_order_id: Optional[str] = None,
    ) -> Order:
        """Query one order by exchange order ID or client order ID."""
        self._client.require_credentials("fetch_order", symbol)
        try:
            require_order_identifier(order_id, client_order_id, symbol)
            market = self.get_market(symbol)
            return await self._fetch_order(market, order_id or None, client_order_id or None)
        except ExchangeException as e:
            raise e.with_context("fetch_order", symbol)

    async def fetch_open_orders(self, symbol: Optional[str] = None) -> List[Order]:
        """
        Orders still working on the book.

        Without a symbol all markets are queried in one request and
        orders on instruments missing from the registry are skipped.
        """
        self._client.require_credentials("fetch_open_orders", symbol)
        try:
            market = self.get_market(symbol) if symbol else None
            return await self._fetch_open_orders(market)
        except ExchangeException as e:
            raise e.with_context("fetch_open_orders", symbol)

    # --------------------------------------------------------
    # Trades
    # --------------------------------------------------------

    async def fetch_trades(
        self,
        symbol: str,
        since: Union[datetime, int, None] = None,
        limit: Optional[int] = None,
    ) -> List[Trade]:
        """Recent public trades, oldest first, none before ``since``."""
        try:
            market = self.get_market(symbol)
            since_ms = to_milliseconds(since)
            trades = await self._fetch_trades(market, since_ms, limit)
        except ExchangeException as e:
            raise e.with_context("fetch_trades", symbol)
        return _oldest_first(trades, since_ms)

    async def fetch_my_trades(
        self,
        symbol: str,
        since: Union[datetime, int, None] = None,
        limit: Optional[int] = None,
    ) -> List[Trade]:
        """The account's own fills, oldest first, none before ``since``."""
        self._client.require_credentials("fetch_my_trades", symbol)
        try:
            market = self.get_market(symbol)
            since_ms = to_milliseconds(since)
            trades = await self._fetch_my_trades(market, since_ms, limit)
        except ExchangeException as e:
            raise e.with_context("fetch_my_trades", symbol)
        return _oldest_first(trades, since_ms)

    @abstractmethod
    async def _fetch_open_orders(self, market: Optional[Market]) -> List[Order]:
        pass

    @abstractmethod
    async def _fetch_trades(self, market: Market, since: Optional[int], limit: Optional[int]) -> List[Trade]:
        """``since`` is epoch milliseconds."""

    @abstractmethod
    async def _fetch_my_trades(self, market: Market, since: Optional[int], limit: Optional[int]) -> List[Trade]:
        """``since`` is epoch milliseconds."""

    @abstractmethod
    async def _create_order(self, market: Market, side, prepared: PreparedOrder, options: OrderOptions) -> Order:
        """Build, sign, send and parse one order."""

    @abstractmethod
    async def _cancel_order(self, market: Market, order_id: Optional[str], client_order_id: Optional[str]) -> None:
        pass

    @abstractmethod
    async def _fetch_order(self, market: Market, order_id: Optional[str], client_order_id: Optional[str]) -> Order:
        pass


# ============================================================
# SPOT / PERPETUAL INTERFACES
# ============================================================

class SpotExchange(_MarketAPI):
    """Spot market interface."""

    market_type = MarketType.SPOT

    async def fetch_balance(self) -> List[Balance]:
        """Non-zero balances of the spot account."""
        self._client.require_credentials("fetch_balance")
        try:
            return await self._fetch_balance()
        except ExchangeException as e:
            raise e.with_context("fetch_balance")

    @abstractmethod
    async def _fetch_balance(self) -> List[Balance]:
        pass


class PerpExchange(_MarketAPI):
    """Perpetual swap interface."""

    market_type = MarketType.SWAP

    def __init__(self, client: RestClient, hedge_mode_ttl: float = HedgeModeCache.DEFAULT_TTL_SECONDS):
        super().__init__(client)
        self._hedge_mode = HedgeModeCache(ttl=hedge_mode_ttl)

    def _coerce_side(self, side):
        return coerce_perp_side(side)

    def _order_side(self, side: PerpOrderSide) -> OrderSide:
        return side.order_side

    async def hedge_mode(self, explicit: Optional[bool] = None) -> bool:
        """
        Account position mode.

        ``explicit`` is used as-is when given; otherwise the exchange
        is queried and the answer cached.
        """
        return await self._hedge_mode.resolve(explicit, self._query_hedge_mode)

    @abstractmethod
    async def _query_hedge_mode(self) -> bool:
        """Ask the exchange whether the account is in hedge mode."""

    async def fetch_positions(self, *symbols: str) -> List[Position]:
        """
        Open positions, optionally filtered by canonical symbol.

        Zero-size entries and unknown instruments are skipped.
        """
        self._client.require_credentials("fetch_positions")
        try:
            positions = await self._fetch_positions()
        except ExchangeException as e:
            raise e.with_context("fetch_positions")
        wanted = self._wanted(symbols)
        if wanted is None:
            return positions
        return [p for p in positions if p.symbol in wanted]

    @abstractmethod
    async def _fetch_positions(self) -> List[Position]:
        pass

    async def set_leverage(self, symbol: str, leverage: int) -> None:
        """Set leverage for one instrument."""
        self._client.require_credentials("set_leverage", symbol)
        if int(leverage) < 1:
            raise ValueError(f"leverage must be >= 1, got {leverage}")
        try:
            market = self.get_market(symbol)
            await self._set_leverage(market, int(leverage))
        except ExchangeException as e:
            raise e.with_context("set_leverage", symbol)
        self._client.logger.info(f"Leverage set to {leverage}x for {market.symbol}")

    async def set_margin_mode(self, symbol: str, mode: Union[str, MarginMode]) -> None:
        """Set margin mode (isolated or cross) for one instrument."""
        self._client.require_credentials("set_margin_mode", symbol)
        try:
            margin_mode = check_margin_mode(mode)
            market = self.get_market(symbol)
            await self._set_margin_mode(market, margin_mode)
        except ExchangeException as e:
            raise e.with_context("set_margin_mode", symbol)
        self._client.logger.info(f"Margin mode set to {margin_mode.value} for {market.symbol}")

    @abstractmethod
    async def _set_leverage(self, market: Market, leverage: int) -> None:
        pass

    @abstractmethod
    async def _set_margin_mode(self, market: Market, mode: MarginMode) -> None:
        pass


# ============================================================
# FACADE
# ============================================================

class Exchange:
    """
    One exchange, both market types, one HTTP session.

    Usage:
        async with BinanceExchange(config) as exchange:
            await exchange.spot.load_markets()
            ticker = await exchange.spot.fetch_ticker("BTC/USDT")
    """

    client_class = RestClient
    spot_class = SpotExchange
    perp_class = PerpExchange

    def __init__(self, config: Optional[ExchangeConfig] = None, transport: Any = None):
        self._client = self.client_class(config, transport)
        self._spot = self.spot_class(self._client)
        self._perp = self.perp_class(self._client)

    @property
    def name(self) -> str:
        return self._client.exchange_id

    @property
    def config(self) -> ExchangeConfig:
        return self._client.config

    @property
    def spot(self) -> SpotExchange:
        return self._spot

    @property
    def perp(self) -> PerpExchange:
        return self._perp

    def get_markets(self) -> List[Market]:
        """Loaded spot markets followed by loaded perpetual markets."""
        return self._spot.get_markets() + self._perp.get_markets()

    def get_market(self, key: str) -> Market:
        """Look up in spot first, then perpetual markets."""
        market = self._spot.registry.find(key) or self._perp.registry.find(key)
        if market is None:
            raise MarketNotFound(f"market not found: {key}", exchange_id=self.name, symbol=key)
        return market

    async def close(self) -> None:
        """Release the HTTP session."""
        await self._client.close()

    async def __aenter__(self) -> "Exchange":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(sandbox={self.config.sandbox})"
