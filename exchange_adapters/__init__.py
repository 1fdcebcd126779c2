"""
Exchange Adapters Package.

============================================================
PURPOSE
============================================================
One interface over several crypto exchanges, spot and
perpetual, with signing, symbol mapping, precision and
response shapes translated per exchange.

AVAILABLE EXCHANGES:
- BinanceExchange: Binance spot + USDⓈ-M futures
- GateExchange: Gate spot + USDT perpetuals
- OKXExchange: OKX spot + perpetual swaps

UTILITIES:
- ExchangeFactory: Create facades by name
- MarketRegistry: Symbol / native ID market cache
- AdapterLogger: Secure request logging

ERROR HANDLING:
- ExchangeException hierarchy with an ExchangeError payload
- ErrorCategory / RetryEligibility classification
- Error mapping functions per exchange

============================================================
"""

# Models
from .models import (
    Balance,
    MarginMode,
    Market,
    MarketLimits,
    MarketPrecision,
    MarketType,
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

# Configuration
from .config import ExchangeConfig, TimeoutConfig

# Interfaces
from .base import Exchange, PerpExchange, SpotExchange, TIMEFRAMES
from .registry import MarketRegistry

# Exchanges
from .binance import BinanceExchange
from .gate import GateExchange
from .okx import OKXExchange

# Factory
from .factory import ExchangeFactory, ExchangeId, create_exchange

# Symbols
from .symbols import SymbolFormat, split_symbol, to_canonical

# Errors
from .errors import (
    AuthenticationRequired,
    ErrorCategory,
    ExchangeAPIError,
    ExchangeError,
    ExchangeException,
    HttpStatusError,
    InvalidAmount,
    InvalidMarginMode,
    InvalidOrderParameter,
    InvalidPrice,
    InvalidSymbolFormat,
    LimitOrderRequiresPrice,
    MarketNotFound,
    MissingOrderIdentifier,
    NotSupported,
    OrderNotFound,
    ParseError,
    RetryEligibility,
    TransportError,
    map_binance_error,
    map_exchange_error,
    map_gate_error,
    map_okx_error,
)

# Logging
from .logging_utils import AdapterLogger


__all__ = [
    # Models
    "Balance",
    "MarginMode",
    "Market",
    "MarketLimits",
    "MarketPrecision",
    "MarketType",
    "MinMax",
    "OHLCV",
    "Order",
    "OrderOptions",
    "OrderSide",
    "OrderStatus",
    "OrderType",
    "PerpOrderSide",
    "Position",
    "PositionSide",
    "Ticker",
    "TimeInForce",
    "Trade",
    # Configuration
    "ExchangeConfig",
    "TimeoutConfig",
    # Interfaces
    "Exchange",
    "PerpExchange",
    "SpotExchange",
    "TIMEFRAMES",
    "MarketRegistry",
    # Exchanges
    "BinanceExchange",
    "GateExchange",
    "OKXExchange",
    # Factory
    "ExchangeFactory",
    "ExchangeId",
    "create_exchange",
    # Symbols
    "SymbolFormat",
    "split_symbol",
    "to_canonical",
    # Errors
    "AuthenticationRequired",
    "ErrorCategory",
    "ExchangeAPIError",
    "ExchangeError",
    "ExchangeException",
    "HttpStatusError",
    "InvalidAmount",
    "InvalidMarginMode",
    "InvalidOrderParameter",
    "InvalidPrice",
    "InvalidSymbolFormat",
    "LimitOrderRequiresPrice",
    "MarketNotFound",
    "MissingOrderIdentifier",
    "NotSupported",
    "OrderNotFound",
    "ParseError",
    "RetryEligibility",
    "TransportError",
    "map_binance_error",
    "map_exchange_error",
    "map_gate_error",
    "map_okx_error",
    # Logging
    "AdapterLogger",
]
