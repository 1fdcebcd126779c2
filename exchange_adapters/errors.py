"""
Exchange Adapters - Error Handling and Mapping.

============================================================
PURPOSE
============================================================
Standardized error handling for exchange adapters with:
- One exception type per failure mode
- Exchange-specific error code mapping
- Retry eligibility classification (informational only)
- Error context preservation (exchange, operation, symbol)

============================================================
ERROR CATEGORIES
============================================================
1. VALIDATION      - Rejected locally, before any network call
2. AUTHENTICATION  - Missing or invalid credentials
3. NETWORK         - Connection issues, timeouts, non-2xx
4. EXCHANGE_ERROR  - Exchange answered with an error code
5. PARSE           - Response body had an unexpected shape

This layer never retries. RetryEligibility is attached so an
external retry policy can decide without re-parsing messages.

============================================================
"""

import logging
from enum import Enum
from typing import Optional, Dict, Any, Tuple
from dataclasses import dataclass


logger = logging.getLogger(__name__)


# ============================================================
# ERROR TAXONOMY
# ============================================================

class ErrorCategory(Enum):
    """Standardized error categories."""

    NETWORK = "NETWORK"
    TIMEOUT = "TIMEOUT"
    RATE_LIMIT = "RATE_LIMIT"
    AUTHENTICATION = "AUTHENTICATION"
    INVALID_ORDER = "INVALID_ORDER"
    INVALID_QUANTITY = "INVALID_QUANTITY"
    INVALID_PRICE = "INVALID_PRICE"
    INVALID_SYMBOL = "INVALID_SYMBOL"
    SYMBOL_NOT_FOUND = "SYMBOL_NOT_FOUND"
    ORDER_NOT_FOUND = "ORDER_NOT_FOUND"
    INSUFFICIENT_FUNDS = "INSUFFICIENT_FUNDS"
    INSUFFICIENT_MARGIN = "INSUFFICIENT_MARGIN"
    MIN_NOTIONAL = "MIN_NOTIONAL"
    NOT_SUPPORTED = "NOT_SUPPORTED"
    EXCHANGE_ERROR = "EXCHANGE_ERROR"
    PARSE_ERROR = "PARSE_ERROR"
    UNKNOWN = "UNKNOWN"


class RetryEligibility(Enum):
    """Whether an external caller may retry the failed call."""

    RETRY = "RETRY"           # Safe to retry
    NO_RETRY = "NO_RETRY"     # Should not retry
    BACKOFF = "BACKOFF"       # Retry with exponential backoff


# ============================================================
# EXCHANGE ERROR
# ============================================================

@dataclass
class ExchangeError:
    """
    Standardized exchange error.

    Provides unified error representation across exchanges.
    """

    # Core fields
    category: ErrorCategory
    code: str               # Normalized error code
    message: str            # Human-readable message

    # Retry info
    retry_eligible: RetryEligibility = RetryEligibility.NO_RETRY

    # Original error info
    exchange_code: Optional[str] = None     # Original exchange error code
    exchange_message: Optional[str] = None  # Original exchange message
    http_status: Optional[int] = None

    # Context
    exchange_id: Optional[str] = None
    operation: Optional[str] = None
    symbol: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "category": self.category.value,
            "code": self.code,
            "message": self.message,
            "retry_eligible": self.retry_eligible.value,
            "exchange_code": self.exchange_code,
            "exchange_message": self.exchange_message,
            "http_status": self.http_status,
            "exchange_id": self.exchange_id,
            "operation": self.operation,
            "symbol": self.symbol,
        }

    def is_retryable(self) -> bool:
        """Check if error is retryable."""
        return self.retry_eligible in (RetryEligibility.RETRY, RetryEligibility.BACKOFF)

    def __str__(self) -> str:
        context = []
        if self.exchange_id:
            context.append(self.exchange_id)
        if self.operation:
            context.append(self.operation)
        if self.symbol:
            context.append(self.symbol)
        prefix = f"{'/'.join(context)}: " if context else ""
        return f"[{self.category.value}] {prefix}{self.message}"


# ============================================================
# EXCEPTIONS
# ============================================================

class ExchangeException(Exception):
    """
    Base exception for every failure raised by this package.

    Wraps an ExchangeError. Subclasses pin the category so callers
    can catch by type or inspect ``exc.error.category``.
    """

    category: ErrorCategory = ErrorCategory.UNKNOWN
    retry_eligible: RetryEligibility = RetryEligibility.NO_RETRY

    def __init__(
        self,
        error: Any = None,
        *,
        exchange_id: str = None,
        operation: str = None,
        symbol: str = None,
        code: str = None,
        http_status: int = None,
        exchange_code: str = None,
        exchange_message: str = None,
    ):
        if not isinstance(error, ExchangeError):
            message = str(error) if error is not None else self.__class__.__name__
            error = ExchangeError(
                category=self.category,
                code=code or self.category.value,
                message=message,
                retry_eligible=self.retry_eligible,
                exchange_code=exchange_code,
                exchange_message=exchange_message,
                http_status=http_status,
                exchange_id=exchange_id,
                operation=operation,
                symbol=symbol,
            )
        else:
            error.exchange_id = error.exchange_id or exchange_id
            error.operation = error.operation or operation
            error.symbol = error.symbol or symbol
        self.error = error
        super().__init__(str(error))

    def with_context(self, operation: str = None, symbol: str = None) -> "ExchangeException":
        """Fill in operation/symbol if they are not yet known."""
        self.error.operation = self.error.operation or operation
        self.error.symbol = self.error.symbol or symbol
        self.args = (str(self.error),)
        return self


class AuthenticationRequired(ExchangeException):
    """A signed endpoint was called without credentials configured."""
    category = ErrorCategory.AUTHENTICATION


class MarketNotFound(ExchangeException, KeyError):
    """Symbol or native ID is not present in the market registry."""
    category = ErrorCategory.SYMBOL_NOT_FOUND

    def __str__(self) -> str:
        return str(self.error)


class InvalidSymbolFormat(ExchangeException, ValueError):
    """Canonical symbol does not split into BASE/QUOTE[:SETTLE]."""
    category = ErrorCategory.INVALID_SYMBOL


class InvalidAmount(ExchangeException, ValueError):
    """Amount is missing, unparsable or not positive."""
    category = ErrorCategory.INVALID_QUANTITY


class InvalidPrice(ExchangeException, ValueError):
    """Price is unparsable or not positive."""
    category = ErrorCategory.INVALID_PRICE


class LimitOrderRequiresPrice(InvalidPrice):
    """A limit order was requested without a price."""


class MissingOrderIdentifier(ExchangeException, ValueError):
    """Neither order ID nor client order ID was supplied."""
    category = ErrorCategory.INVALID_ORDER


class InvalidMarginMode(ExchangeException, ValueError):
    """Margin mode other than ``isolated`` or ``cross``."""
    category = ErrorCategory.INVALID_ORDER


class InvalidOrderParameter(ExchangeException, ValueError):
    """Unknown side, order type or time in force."""
    category = ErrorCategory.INVALID_ORDER


class OrderNotFound(ExchangeException):
    """Exchange response did not identify an order."""
    category = ErrorCategory.ORDER_NOT_FOUND


class NotSupported(ExchangeException):
    """Operation is not available on this exchange."""
    category = ErrorCategory.NOT_SUPPORTED


class TransportError(ExchangeException):
    """Network or HTTP failure reported by the transport."""
    category = ErrorCategory.NETWORK
    retry_eligible = RetryEligibility.RETRY


class HttpStatusError(TransportError):
    """Non-2xx HTTP status without a recognizable exchange error body."""

    def __init__(self, status: int, body: str = "", **kwargs):
        self.status = status
        self.body = body
        kwargs.setdefault("http_status", status)
        super().__init__(f"HTTP {status}: {body[:200]}", **kwargs)
        if status == 429 or status == 418:
            self.error.category = ErrorCategory.RATE_LIMIT
            self.error.retry_eligible = RetryEligibility.BACKOFF
        elif 400 <= status < 500:
            self.error.retry_eligible = RetryEligibility.NO_RETRY


class ExchangeAPIError(ExchangeException):
    """Exchange returned an application-level error code."""
    category = ErrorCategory.EXCHANGE_ERROR


class ParseError(ExchangeException):
    """Response body did not match the expected shape."""
    category = ErrorCategory.PARSE_ERROR


# ============================================================
# BINANCE ERROR MAPPING
# ============================================================

# Binance error codes to unified category
BINANCE_ERROR_MAP: Dict[int, Tuple[ErrorCategory, RetryEligibility]] = {
    # Rate limiting
    -1003: (ErrorCategory.RATE_LIMIT, RetryEligibility.BACKOFF),
    -1015: (ErrorCategory.RATE_LIMIT, RetryEligibility.BACKOFF),

    # Authentication
    -1002: (ErrorCategory.AUTHENTICATION, RetryEligibility.NO_RETRY),
    -1022: (ErrorCategory.AUTHENTICATION, RetryEligibility.NO_RETRY),
    -2014: (ErrorCategory.AUTHENTICATION, RetryEligibility.NO_RETRY),
    -2015: (ErrorCategory.AUTHENTICATION, RetryEligibility.NO_RETRY),

    # Order validation
    -1013: (ErrorCategory.INVALID_QUANTITY, RetryEligibility.NO_RETRY),
    -1021: (ErrorCategory.TIMEOUT, RetryEligibility.RETRY),
    -1100: (ErrorCategory.INVALID_ORDER, RetryEligibility.NO_RETRY),
    -1102: (ErrorCategory.INVALID_ORDER, RetryEligibility.NO_RETRY),
    -1111: (ErrorCategory.INVALID_QUANTITY, RetryEligibility.NO_RETRY),
    -1116: (ErrorCategory.INVALID_ORDER, RetryEligibility.NO_RETRY),
    -1117: (ErrorCategory.INVALID_ORDER, RetryEligibility.NO_RETRY),
    -1121: (ErrorCategory.SYMBOL_NOT_FOUND, RetryEligibility.NO_RETRY),
    -4061: (ErrorCategory.INVALID_ORDER, RetryEligibility.NO_RETRY),

    # Insufficient funds/margin
    -2010: (ErrorCategory.INSUFFICIENT_FUNDS, RetryEligibility.NO_RETRY),
    -2018: (ErrorCategory.INSUFFICIENT_FUNDS, RetryEligibility.NO_RETRY),
    -2019: (ErrorCategory.INSUFFICIENT_MARGIN, RetryEligibility.NO_RETRY),

    # Order not found
    -2011: (ErrorCategory.ORDER_NOT_FOUND, RetryEligibility.NO_RETRY),
    -2013: (ErrorCategory.ORDER_NOT_FOUND, RetryEligibility.NO_RETRY),

    # Min notional
    -4164: (ErrorCategory.MIN_NOTIONAL, RetryEligibility.NO_RETRY),

    # Price
    -4014: (ErrorCategory.INVALID_PRICE, RetryEligibility.NO_RETRY),
    -4015: (ErrorCategory.INVALID_PRICE, RetryEligibility.NO_RETRY),

    # Exchange internal
    -1000: (ErrorCategory.EXCHANGE_ERROR, RetryEligibility.RETRY),
    -1001: (ErrorCategory.EXCHANGE_ERROR, RetryEligibility.RETRY),
    -1006: (ErrorCategory.EXCHANGE_ERROR, RetryEligibility.RETRY),
    -1007: (ErrorCategory.TIMEOUT, RetryEligibility.RETRY),
}


def _classify_http_status(http_status: Optional[int]) -> Tuple[ErrorCategory, RetryEligibility]:
    """Fallback classification when the exchange code is unknown."""
    if http_status == 429 or http_status == 418:
        return ErrorCategory.RATE_LIMIT, RetryEligibility.BACKOFF
    if http_status == 403 or http_status == 401:
        return ErrorCategory.AUTHENTICATION, RetryEligibility.NO_RETRY
    if http_status and http_status >= 500:
        return ErrorCategory.EXCHANGE_ERROR, RetryEligibility.RETRY
    return ErrorCategory.EXCHANGE_ERROR, RetryEligibility.NO_RETRY


def map_binance_error(
    code: int,
    message: str,
    http_status: int = None,
) -> ExchangeError:
    """
    Map Binance error to unified format.

    Args:
        code: Binance error code
        message: Binance error message
        http_status: HTTP status code

    Returns:
        Unified ExchangeError
    """
    if code in BINANCE_ERROR_MAP:
        category, retry = BINANCE_ERROR_MAP[code]
    else:
        category, retry = _classify_http_status(http_status)

    return ExchangeError(
        category=category,
        code=f"BINANCE_{code}",
        message=message,
        retry_eligible=retry,
        exchange_code=str(code),
        exchange_message=message,
        http_status=http_status,
        exchange_id="binance",
    )


# ============================================================
# GATE ERROR MAPPING
# ============================================================

# Gate reports errors by label rather than numeric code
GATE_ERROR_MAP: Dict[str, Tuple[ErrorCategory, RetryEligibility]] = {
    # Rate limiting
    "TOO_MANY_REQUESTS": (ErrorCategory.RATE_LIMIT, RetryEligibility.BACKOFF),

    # Authentication
    "INVALID_KEY": (ErrorCategory.AUTHENTICATION, RetryEligibility.NO_RETRY),
    "INVALID_SIGNATURE": (ErrorCategory.AUTHENTICATION, RetryEligibility.NO_RETRY),
    "MISSING_REQUIRED_HEADER": (ErrorCategory.AUTHENTICATION, RetryEligibility.NO_RETRY),
    "REQUEST_EXPIRED": (ErrorCategory.TIMEOUT, RetryEligibility.RETRY),
    "IP_FORBIDDEN": (ErrorCategory.AUTHENTICATION, RetryEligibility.NO_RETRY),
    "READ_ONLY": (ErrorCategory.AUTHENTICATION, RetryEligibility.NO_RETRY),
    "FORBIDDEN": (ErrorCategory.AUTHENTICATION, RetryEligibility.NO_RETRY),

    # Order validation
    "INVALID_PARAM_VALUE": (ErrorCategory.INVALID_ORDER, RetryEligibility.NO_RETRY),
    "INVALID_PRECISION": (ErrorCategory.INVALID_QUANTITY, RetryEligibility.NO_RETRY),
    "INVALID_AMOUNT": (ErrorCategory.INVALID_QUANTITY, RetryEligibility.NO_RETRY),
    "INVALID_PRICE": (ErrorCategory.INVALID_PRICE, RetryEligibility.NO_RETRY),
    "ORDER_SIZE_TOO_SMALL": (ErrorCategory.MIN_NOTIONAL, RetryEligibility.NO_RETRY),
    "INVALID_CURRENCY_PAIR": (ErrorCategory.SYMBOL_NOT_FOUND, RetryEligibility.NO_RETRY),
    "CONTRACT_NOT_FOUND": (ErrorCategory.SYMBOL_NOT_FOUND, RetryEligibility.NO_RETRY),

    # Insufficient funds/margin
    "BALANCE_NOT_ENOUGH": (ErrorCategory.INSUFFICIENT_FUNDS, RetryEligibility.NO_RETRY),
    "INSUFFICIENT_AVAILABLE": (ErrorCategory.INSUFFICIENT_MARGIN, RetryEligibility.NO_RETRY),

    # Order not found
    "ORDER_NOT_FOUND": (ErrorCategory.ORDER_NOT_FOUND, RetryEligibility.NO_RETRY),
    "ORDER_CLOSED": (ErrorCategory.ORDER_NOT_FOUND, RetryEligibility.NO_RETRY),

    # Exchange internal
    "SERVER_ERROR": (ErrorCategory.EXCHANGE_ERROR, RetryEligibility.RETRY),
    "INTERNAL": (ErrorCategory.EXCHANGE_ERROR, RetryEligibility.RETRY),
}


def map_gate_error(
    label: str,
    message: str,
    http_status: int = None,
) -> ExchangeError:
    """
    Map Gate error to unified format.

    Args:
        label: Gate error label (e.g. INVALID_SIGNATURE)
        message: Gate error message
        http_status: HTTP status code

    Returns:
        Unified ExchangeError
    """
    if label in GATE_ERROR_MAP:
        category, retry = GATE_ERROR_MAP[label]
    else:
        category, retry = _classify_http_status(http_status)

    return ExchangeError(
        category=category,
        code=f"GATE_{label}",
        message=message or label,
        retry_eligible=retry,
        exchange_code=label,
        exchange_message=message,
        http_status=http_status,
        exchange_id="gate",
    )


# ============================================================
# OKX ERROR MAPPING
# ============================================================

# OKX error codes to unified category
OKX_ERROR_MAP: Dict[str, Tuple[ErrorCategory, RetryEligibility]] = {
    # Rate limiting
    "50011": (ErrorCategory.RATE_LIMIT, RetryEligibility.BACKOFF),
    "50013": (ErrorCategory.RATE_LIMIT, RetryEligibility.BACKOFF),

    # Authentication
    "50101": (ErrorCategory.AUTHENTICATION, RetryEligibility.NO_RETRY),
    "50102": (ErrorCategory.TIMEOUT, RetryEligibility.RETRY),
    "50103": (ErrorCategory.AUTHENTICATION, RetryEligibility.NO_RETRY),
    "50104": (ErrorCategory.AUTHENTICATION, RetryEligibility.NO_RETRY),
    "50105": (ErrorCategory.AUTHENTICATION, RetryEligibility.NO_RETRY),
    "50111": (ErrorCategory.AUTHENTICATION, RetryEligibility.NO_RETRY),
    "50113": (ErrorCategory.AUTHENTICATION, RetryEligibility.NO_RETRY),

    # Order validation
    "51000": (ErrorCategory.INVALID_ORDER, RetryEligibility.NO_RETRY),
    "51001": (ErrorCategory.SYMBOL_NOT_FOUND, RetryEligibility.NO_RETRY),
    "51006": (ErrorCategory.INVALID_PRICE, RetryEligibility.NO_RETRY),
    "51008": (ErrorCategory.INSUFFICIENT_FUNDS, RetryEligibility.NO_RETRY),
    "51020": (ErrorCategory.MIN_NOTIONAL, RetryEligibility.NO_RETRY),
    "51121": (ErrorCategory.INVALID_QUANTITY, RetryEligibility.NO_RETRY),
    "51603": (ErrorCategory.ORDER_NOT_FOUND, RetryEligibility.NO_RETRY),

    # Exchange internal
    "50001": (ErrorCategory.EXCHANGE_ERROR, RetryEligibility.RETRY),
    "50004": (ErrorCategory.TIMEOUT, RetryEligibility.RETRY),
    "50026": (ErrorCategory.EXCHANGE_ERROR, RetryEligibility.RETRY),
}


def map_okx_error(
    code: str,
    message: str,
    http_status: int = None,
) -> ExchangeError:
    """
    Map OKX error to unified format.

    Args:
        code: OKX error code (top-level ``code`` or per-order ``sCode``)
        message: OKX error message
        http_status: HTTP status code

    Returns:
        Unified ExchangeError
    """
    if code in OKX_ERROR_MAP:
        category, retry = OKX_ERROR_MAP[code]
    else:
        category, retry = _classify_http_status(http_status)

    return ExchangeError(
        category=category,
        code=f"OKX_{code}",
        message=message or f"OKX error {code}",
        retry_eligible=retry,
        exchange_code=code,
        exchange_message=message,
        http_status=http_status,
        exchange_id="okx",
    )


# ============================================================
# ERROR MAPPER FACTORY
# ============================================================

def map_exchange_error(
    exchange_id: str,
    code: Any,
    message: str,
    http_status: int = None,
) -> ExchangeError:
    """Route to the exchange-specific mapper."""
    exchange_id = exchange_id.lower()

    if exchange_id == "binance":
        return map_binance_error(int(code), message, http_status)
    elif exchange_id == "gate":
        return map_gate_error(str(code), message, http_status)
    elif exchange_id == "okx":
        return map_okx_error(str(code), message, http_status)
    else:
        category, retry = _classify_http_status(http_status)
        return ExchangeError(
            category=category,
            code=f"{exchange_id.upper()}_{code}",
            message=message,
            retry_eligible=retry,
            exchange_code=str(code),
            exchange_message=message,
            http_status=http_status,
            exchange_id=exchange_id,
        )


# ============================================================
# NETWORK ERROR HELPERS
# ============================================================

def create_network_error(
    exchange_id: str,
    message: str,
    operation: str = None,
) -> ExchangeError:
    """Create network error."""
    return ExchangeError(
        category=ErrorCategory.NETWORK,
        code=f"{exchange_id.upper()}_NETWORK_ERROR",
        message=message,
        retry_eligible=RetryEligibility.RETRY,
        exchange_id=exchange_id,
        operation=operation,
    )


def create_timeout_error(
    exchange_id: str,
    timeout_ms: int,
    operation: str = None,
) -> ExchangeError:
    """Create timeout error."""
    return ExchangeError(
        category=ErrorCategory.TIMEOUT,
        code=f"{exchange_id.upper()}_TIMEOUT",
        message=f"Request timed out after {timeout_ms}ms",
        retry_eligible=RetryEligibility.RETRY,
        exchange_id=exchange_id,
        operation=operation,
    )
