"""
Exchange Adapters - Order Translation Helpers.

============================================================
PURPOSE
============================================================
Exchange-independent steps of turning a canonical order request
into wire parameters:

1. Order type inference (price present -> limit)
2. Amount / price validation (before any network call)
3. Quantization to market precision
4. Position side + reduce-only inference for perpetuals
5. Client order ID synthesis
6. Hedge-mode resolution (caller flag, else cached query)

Each backend composes these and adds its own parameter shape.

============================================================
"""

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Awaitable, Callable, Dict, Mapping, Optional, Tuple, Union

from .errors import (
    InvalidAmount,
    InvalidPrice,
    InvalidMarginMode,
    LimitOrderRequiresPrice,
    MissingOrderIdentifier,
)
from .models import (
    Market,
    MarginMode,
    OrderOptions,
    OrderSide,
    OrderStatus,
    OrderType,
    PerpOrderSide,
    PositionSide,
    TimeInForce,
    parse_enum,
)
from .numeric import DEFAULT_PRECISION, parse_decimal, quantize


logger = logging.getLogger(__name__)


# ============================================================
# VALIDATION
# ============================================================

def resolve_order_type(options: OrderOptions) -> Tuple[OrderType, Optional[str]]:
    """
    Decide market vs limit.

    A non-empty price means limit, otherwise market. An explicit
    ``order_type`` wins; an explicit market order drops the price.

    Returns:
        (order type, price string or None)
    """
    price = options.price if options.price not in (None, "") else None

    if options.order_type is OrderType.MARKET:
        return OrderType.MARKET, None
    if options.order_type is OrderType.LIMIT:
        if price is None:
            raise LimitOrderRequiresPrice("limit order requires a price")
        return OrderType.LIMIT, price
    if price is not None:
        return OrderType.LIMIT, price
    return OrderType.MARKET, None


def validate_amount(amount: Union[str, Decimal, int, float], symbol: str = None) -> Decimal:
    """Amount as a positive Decimal, else InvalidAmount."""
    value = parse_decimal(amount)
    if value is None:
        raise InvalidAmount(f"invalid amount: {amount!r}", symbol=symbol)
    if value <= 0:
        raise InvalidAmount(f"amount must be positive: {amount}", symbol=symbol)
    return value


def validate_price(price: Union[str, Decimal, None], symbol: str = None) -> Decimal:
    """Price as a positive Decimal, else InvalidPrice."""
    value = parse_decimal(price)
    if value is None:
        raise InvalidPrice(f"invalid price: {price!r}", symbol=symbol)
    if value <= 0:
        raise InvalidPrice(f"price must be positive: {price}", symbol=symbol)
    return value


def require_order_identifier(
    order_id: Optional[str],
    client_order_id: Optional[str],
    symbol: str = None,
) -> None:
    """At least one of order_id / client_order_id must be non-empty."""
    if not order_id and not client_order_id:
        raise MissingOrderIdentifier(
            "either order_id or client_order_id is required", symbol=symbol,
        )


def check_margin_mode(mode: Union[str, MarginMode]) -> MarginMode:
    """Only ``isolated`` and ``cross`` are accepted."""
    if isinstance(mode, MarginMode):
        return mode
    try:
        return MarginMode(str(mode).strip().lower())
    except ValueError:
        raise InvalidMarginMode(
            f"invalid margin mode: {mode!r}, expected isolated or cross"
        ) from None


# ============================================================
# PREPARED ORDER
# ============================================================

@dataclass
class PreparedOrder:
    """Validated and quantized order fields, ready for a backend."""

    symbol: str
    type: OrderType
    amount: Decimal
    """Validated amount before quantization."""

    amount_str: str
    """Amount quantized to the market's amount precision."""

    price: Optional[Decimal] = None
    price_str: Optional[str] = None
    time_in_force: Optional[TimeInForce] = None

    @property
    def is_limit(self) -> bool:
        return self.type is OrderType.LIMIT


def quantize_amount(market: Market, value: Decimal, places: Optional[int] = None) -> str:
    if places is None:
        places = market.precision.amount
    return quantize(value, DEFAULT_PRECISION if places is None else places)


def quantize_price(market: Market, value: Decimal) -> str:
    places = market.precision.price
    return quantize(value, DEFAULT_PRECISION if places is None else places)


def prepare_order(
    market: Market,
    amount,
    options: OrderOptions,
    amount_places: Optional[int] = None,
) -> PreparedOrder:
    """
    Validate, infer the type and quantize.

    ``amount_places`` overrides the market's amount precision for
    exchanges whose market precision counts contracts, not coins.

    Raises:
        InvalidAmount: amount is not a positive decimal, or rounds to zero
        InvalidPrice / LimitOrderRequiresPrice: bad or missing limit price
    """
    order_type, raw_price = resolve_order_type(options)
    value = validate_amount(amount, market.symbol)
    amount_str = quantize_amount(market, value, amount_places)
    if Decimal(amount_str) <= 0:
        raise InvalidAmount(
            f"amount {amount} rounds to zero at {amount_str}",
            symbol=market.symbol,
        )

    prepared = PreparedOrder(
        symbol=market.symbol,
        type=order_type,
        amount=value,
        amount_str=amount_str,
        time_in_force=options.time_in_force,
    )
    if order_type is OrderType.LIMIT:
        prepared.price = validate_price(raw_price, market.symbol)
        prepared.price_str = quantize_price(market, prepared.price)
        if prepared.time_in_force is None:
            prepared.time_in_force = TimeInForce.GTC
    return prepared


# ============================================================
# SIDES AND POSITION MODE
# ============================================================

def coerce_order_side(side: Union[str, OrderSide]) -> OrderSide:
    if isinstance(side, OrderSide):
        return side
    return parse_enum(OrderSide, str(side).strip().lower())


def coerce_perp_side(side: Union[str, PerpOrderSide]) -> PerpOrderSide:
    if isinstance(side, PerpOrderSide):
        return side
    return parse_enum(PerpOrderSide, str(side).strip().lower())


def infer_position(perp_side: PerpOrderSide, hedge_mode: bool) -> Tuple[PositionSide, bool]:
    """
    Position side and reduce-only flag for a perpetual order.

    One-way mode: BOTH, reduce-only exactly for closing trades.
    Hedge mode:   LONG / SHORT, reduce-only omitted.
    """
    if hedge_mode:
        return perp_side.position_side, False
    return PositionSide.BOTH, perp_side.is_closing


class HedgeModeCache:
    """
    Account position mode, queried lazily and kept for ``ttl`` seconds.

    A caller-supplied flag is returned as-is and never touches the
    cache or the exchange.
    """

    DEFAULT_TTL_SECONDS = 300.0

    def __init__(self, ttl: float = DEFAULT_TTL_SECONDS, clock: Callable[[], float] = time.monotonic):
        self._ttl = ttl
        self._clock = clock
        self._value: Optional[bool] = None
        self._expires_at = 0.0
        self._lock: Optional[asyncio.Lock] = None

    def invalidate(self) -> None:
        self._value = None
        self._expires_at = 0.0

    async def resolve(
        self,
        explicit: Optional[bool],
        query: Callable[[], Awaitable[bool]],
    ) -> bool:
        """
        Args:
            explicit: Caller's hedge_mode option
            query: Coroutine function asking the exchange

        Returns:
            True for hedge mode, False for one-way mode
        """
        if explicit is not None:
            return bool(explicit)

        if self._value is not None and self._clock() < self._expires_at:
            return self._value

        if self._lock is None:
            self._lock = asyncio.Lock()
        async with self._lock:
            if self._value is not None and self._clock() < self._expires_at:
                return self._value
            value = bool(await query())
            self._value = value
            self._expires_at = self._clock() + self._ttl
            logger.debug(f"Position mode refreshed: {'hedge' if value else 'one-way'}")
            return value


# ============================================================
# CLIENT ORDER IDS
# ============================================================

CLIENT_ORDER_ID_PREFIX = "exa"


def generate_client_order_id(
    exchange_id: str,
    side: OrderSide,
    *,
    separator: str = "-",
    prefix: str = "",
    max_length: int = 36,
) -> str:
    """
    Build ``{prefix}exa-{exchange}-{b|s}-{random hex}``.

    The random part is a uuid4 hex trimmed to fit ``max_length``.
    """
    head = separator.join([
        CLIENT_ORDER_ID_PREFIX,
        exchange_id.lower(),
        "b" if side is OrderSide.BUY else "s",
        "",
    ])
    head = f"{prefix}{head}"
    room = max_length - len(head)
    if room < 8:
        raise ValueError(f"client order id limit {max_length} too short for {head!r}")
    return head + uuid.uuid4().hex[:room]


# ============================================================
# STATUS MAPPING
# ============================================================

def map_status(
    table: Mapping[str, OrderStatus],
    raw: Optional[str],
    default: OrderStatus = OrderStatus.NEW,
) -> OrderStatus:
    """Look up a native status (case-insensitive); default when unknown."""
    if not raw:
        return default
    status = table.get(raw) or table.get(str(raw).lower()) or table.get(str(raw).upper())
    if status is None:
        logger.debug(f"Unknown order status {raw!r}, using {default.value}")
        return default
    return status


def tif_value(tif: Optional[TimeInForce], mapping: Dict[TimeInForce, str]) -> Optional[str]:
    """Native time-in-force string, None when unset or unsupported."""
    if tif is None:
        return None
    return mapping.get(tif)
