"""
Exchange Adapters - Canonical Models.

============================================================
PURPOSE
============================================================
Exchange-agnostic value types returned by every backend.

- Market:   one traded instrument (spot or perpetual)
- Order:    create/query result
- Position: open perpetual position (magnitude + side)
- Trade:    one public or account execution
- Ticker / OHLCV / Balance: plain snapshots

Markets are immutable once loaded; everything else is a fresh
value per call.

============================================================
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional, Dict, Any, Type, TypeVar, Union
from dataclasses import dataclass, field

from .errors import ExchangeException, InvalidMarginMode, InvalidOrderParameter


E = TypeVar("E", bound=Enum)


def parse_enum(enum_class: Type[E], value: Any, error: Type[ExchangeException] = InvalidOrderParameter) -> E:
    """
    Enum member for a member or its string value.

    Raises:
        error (InvalidOrderParameter by default): value matches no member
    """
    if isinstance(value, enum_class):
        return value
    try:
        return enum_class(value)
    except ValueError:
        choices = ", ".join(str(m.value) for m in enum_class)
        raise error(
            f"invalid {enum_class.__name__}: {value!r}, expected one of {choices}"
        ) from None


# ============================================================
# ENUMS
# ============================================================

class MarketType(Enum):
    """Market type."""

    SPOT = "spot"
    SWAP = "swap"


class OrderType(Enum):
    """Order type."""

    MARKET = "market"
    LIMIT = "limit"


class OrderSide(Enum):
    """Trade direction."""

    BUY = "buy"
    SELL = "sell"

    @property
    def opposite(self) -> "OrderSide":
        return OrderSide.SELL if self is OrderSide.BUY else OrderSide.BUY


class PositionSide(Enum):
    """
    Position side.

    LONG / SHORT in hedge mode, BOTH in one-way mode.
    """

    LONG = "LONG"
    SHORT = "SHORT"
    BOTH = "BOTH"


class PerpOrderSide(Enum):
    """Perpetual trade intent: trade direction plus position it acts on."""

    OPEN_LONG = "open_long"
    OPEN_SHORT = "open_short"
    CLOSE_LONG = "close_long"
    CLOSE_SHORT = "close_short"

    @property
    def order_side(self) -> OrderSide:
        """buy for open_long / close_short, sell otherwise."""
        if self in (PerpOrderSide.OPEN_LONG, PerpOrderSide.CLOSE_SHORT):
            return OrderSide.BUY
        return OrderSide.SELL

    @property
    def position_side(self) -> PositionSide:
        """The position this trade opens or closes."""
        if self in (PerpOrderSide.OPEN_LONG, PerpOrderSide.CLOSE_LONG):
            return PositionSide.LONG
        return PositionSide.SHORT

    @property
    def is_closing(self) -> bool:
        return self in (PerpOrderSide.CLOSE_LONG, PerpOrderSide.CLOSE_SHORT)

    @classmethod
    def from_intent(
        cls,
        side: Union[OrderSide, str],
        position: Union[PositionSide, str],
    ) -> "PerpOrderSide":
        """
        Build from (trade side, position intent).

        buy+long opens a long, sell+long closes it; sell+short opens
        a short, buy+short closes it.
        """
        side = parse_enum(OrderSide, side.strip().lower() if isinstance(side, str) else side)
        position = parse_enum(PositionSide, position.strip().upper() if isinstance(position, str) else position)
        if position is PositionSide.LONG:
            return cls.OPEN_LONG if side is OrderSide.BUY else cls.CLOSE_LONG
        if position is PositionSide.SHORT:
            return cls.OPEN_SHORT if side is OrderSide.SELL else cls.CLOSE_SHORT
        raise InvalidOrderParameter(f"position intent must be LONG or SHORT, got {position.value}")


class TimeInForce(Enum):
    """Time in force."""

    GTC = "GTC"
    IOC = "IOC"
    FOK = "FOK"
    POST_ONLY = "POST_ONLY"


class OrderStatus(Enum):
    """
    Canonical order status.

    State Machine:

        NEW ──► OPEN ──► PARTIALLY_FILLED
         │        │            │
         └────────┴────────────┴──► FILLED | CANCELED | EXPIRED | REJECTED

    Terminal states have no outgoing transitions.
    """

    NEW = "new"
    OPEN = "open"
    PARTIALLY_FILLED = "partially_filled"
    FILLED = "filled"
    CANCELED = "canceled"
    EXPIRED = "expired"
    REJECTED = "rejected"

    def is_terminal(self) -> bool:
        """Check if this is a terminal state."""
        return self in _TERMINAL_STATUSES

    def is_active(self) -> bool:
        """Check if order is still working on the book."""
        return not self.is_terminal()

    def can_transition_to(self, target: "OrderStatus") -> bool:
        """Whether the state machine allows self -> target."""
        return target in _STATUS_TRANSITIONS[self]


_TERMINAL_STATUSES = frozenset({
    OrderStatus.FILLED,
    OrderStatus.CANCELED,
    OrderStatus.EXPIRED,
    OrderStatus.REJECTED,
})

_STATUS_TRANSITIONS = {
    OrderStatus.NEW: frozenset({OrderStatus.OPEN, OrderStatus.PARTIALLY_FILLED}) | _TERMINAL_STATUSES,
    OrderStatus.OPEN: frozenset({OrderStatus.PARTIALLY_FILLED}) | _TERMINAL_STATUSES,
    OrderStatus.PARTIALLY_FILLED: _TERMINAL_STATUSES,
    OrderStatus.FILLED: frozenset(),
    OrderStatus.CANCELED: frozenset(),
    OrderStatus.EXPIRED: frozenset(),
    OrderStatus.REJECTED: frozenset(),
}


class MarginMode(Enum):
    """Perpetual margin mode."""

    ISOLATED = "isolated"
    CROSS = "cross"


# ============================================================
# MARKET
# ============================================================

@dataclass(frozen=True)
class MinMax:
    """Inclusive bounds; None when the exchange gives no bound."""

    min: Optional[Decimal] = None
    max: Optional[Decimal] = None


@dataclass(frozen=True)
class MarketPrecision:
    """Decimal places for order fields; None when unknown."""

    amount: Optional[int] = None
    """Decimal places of the order amount."""

    price: Optional[int] = None
    """Decimal places of the order price."""


@dataclass(frozen=True)
class MarketLimits:
    """Order size limits."""

    amount: MinMax = field(default_factory=MinMax)
    price: MinMax = field(default_factory=MinMax)
    cost: MinMax = field(default_factory=MinMax)


@dataclass(frozen=True)
class Market:
    """One traded instrument."""

    id: str
    """Exchange-native identifier (BTCUSDT, BTC_USDT, BTC-USDT-SWAP)."""

    symbol: str
    """Canonical identifier (BTC/USDT, BTC/USDT:USDT)."""

    base: str
    quote: str
    type: MarketType
    settle: str = ""
    """Settlement currency (perpetual only)."""

    active: bool = True
    """Derived from the exchange's tradable/live state."""

    # Perpetual-only fields
    contract: bool = False
    linear: bool = False
    inverse: bool = False
    contract_value: Optional[Decimal] = None
    """Coin quantity per contract on lot-based exchanges."""

    precision: MarketPrecision = field(default_factory=MarketPrecision)
    limits: MarketLimits = field(default_factory=MarketLimits)

    info: Dict[str, Any] = field(default_factory=dict, compare=False, repr=False)
    """Raw exchange payload."""

    @property
    def is_swap(self) -> bool:
        return self.type is MarketType.SWAP


# ============================================================
# MARKET DATA
# ============================================================

@dataclass
class Ticker:
    """24h ticker snapshot."""

    symbol: str
    timestamp: Optional[datetime] = None
    last: Optional[Decimal] = None
    bid: Optional[Decimal] = None
    ask: Optional[Decimal] = None
    open: Optional[Decimal] = None
    high: Optional[Decimal] = None
    low: Optional[Decimal] = None
    volume: Optional[Decimal] = None
    """Base volume."""

    quote_volume: Optional[Decimal] = None
    change: Optional[Decimal] = None
    percentage: Optional[Decimal] = None


@dataclass
class OHLCV:
    """One candle."""

    timestamp: datetime
    open: Decimal
    high: Decimal
    low: Decimal
    close: Decimal
    volume: Decimal


@dataclass
class Balance:
    """Spot balance for one currency."""

    currency: str
    available: Decimal = Decimal("0")
    locked: Decimal = Decimal("0")
    total: Optional[Decimal] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        if self.total is None:
            self.total = self.available + self.locked


# ============================================================
# ORDERS AND POSITIONS
# ============================================================

@dataclass
class Order:
    """
    Canonical order.

    Filled never exceeds amount and remaining is derived as
    amount - filled whenever both are known.
    """

    id: str
    """Exchange order ID."""

    symbol: str
    """Canonical symbol."""

    client_order_id: str = ""
    type: OrderType = OrderType.LIMIT
    side: OrderSide = OrderSide.BUY
    status: OrderStatus = OrderStatus.NEW

    amount: Optional[Decimal] = None
    """Requested quantity."""

    filled: Optional[Decimal] = None
    """Executed quantity."""

    remaining: Optional[Decimal] = None
    price: Optional[Decimal] = None
    average: Optional[Decimal] = None
    cost: Optional[Decimal] = None
    time_in_force: Optional[str] = None

    # Perpetual-only fields
    perp_side: Optional[PerpOrderSide] = None
    position_side: Optional[PositionSide] = None
    reduce_only: bool = False

    fee: Optional[Decimal] = None
    fee_currency: Optional[str] = None

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    info: Dict[str, Any] = field(default_factory=dict, repr=False)
    """Raw exchange payload."""

    def __post_init__(self):
        if self.amount is not None and self.filled is not None:
            if self.filled < 0:
                self.filled = Decimal("0")
            if self.filled > self.amount:
                self.filled = self.amount
            self.remaining = self.amount - self.filled
        elif self.remaining is not None and self.remaining < 0:
            self.remaining = Decimal("0")

    @property
    def is_closed(self) -> bool:
        return self.status.is_terminal()


@dataclass
class Trade:
    """
    One execution, public or the account's own.

    amount is in base currency (coins, not contracts); cost is
    amount * price unless the exchange reports it.
    """

    id: str
    symbol: str
    side: OrderSide
    amount: Decimal
    price: Decimal
    cost: Optional[Decimal] = None

    # Account trades only
    order_id: Optional[str] = None
    taker_or_maker: Optional[str] = None
    fee: Optional[Decimal] = None
    fee_currency: Optional[str] = None

    timestamp: Optional[datetime] = None
    info: Dict[str, Any] = field(default_factory=dict, repr=False)

    def __post_init__(self):
        if self.cost is None:
            self.cost = self.amount * self.price


@dataclass
class Position:
    """Open perpetual position. amount is always positive."""

    symbol: str
    side: PositionSide
    amount: Decimal
    entry_price: Optional[Decimal] = None
    mark_price: Optional[Decimal] = None
    liquidation_price: Optional[Decimal] = None
    unrealized_pnl: Optional[Decimal] = None
    realized_pnl: Optional[Decimal] = None
    leverage: Optional[Decimal] = None
    margin: Optional[Decimal] = None
    margin_mode: Optional[str] = None
    timestamp: Optional[datetime] = None
    info: Dict[str, Any] = field(default_factory=dict, repr=False)

    @property
    def notional(self) -> Optional[Decimal]:
        if self.mark_price is None:
            return None
        return self.amount * self.mark_price


# ============================================================
# ORDER OPTIONS
# ============================================================

@dataclass
class OrderOptions:
    """
    Optional order parameters. Every field may be left unset.

    A non-empty price makes the order a limit order unless
    order_type says otherwise.
    """

    price: Optional[str] = None
    """Limit price as a decimal string."""

    order_type: Optional[OrderType] = None
    """Explicit type; overrides inference from price."""

    time_in_force: Optional[TimeInForce] = None
    """Defaults to GTC for limit orders."""

    client_order_id: Optional[str] = None
    """Used verbatim when non-empty; synthesized otherwise."""

    hedge_mode: Optional[bool] = None
    """Account position mode; queried from the exchange when unset."""

    margin_mode: Optional[MarginMode] = None
    """Per-order margin mode on exchanges that take one (OKX)."""

    @classmethod
    def build(cls, options: Optional["OrderOptions"] = None, **kwargs) -> "OrderOptions":
        """Merge keyword shortcuts into a copy of ``options``."""
        base = OrderOptions(**vars(options)) if options is not None else cls()
        for key, value in kwargs.items():
            if not hasattr(base, key):
                raise TypeError(f"unknown order option: {key}")
            setattr(base, key, value)
        if isinstance(base.order_type, str):
            base.order_type = parse_enum(OrderType, base.order_type.strip().lower())
        if isinstance(base.time_in_force, str):
            base.time_in_force = parse_enum(TimeInForce, base.time_in_force.strip().upper())
        if isinstance(base.margin_mode, str):
            base.margin_mode = parse_enum(MarginMode, base.margin_mode.strip().lower(), InvalidMarginMode)
        if base.price is not None and not isinstance(base.price, str):
            base.price = str(base.price)
        return base
