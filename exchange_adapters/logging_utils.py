"""
Exchange Adapters - Secure Logging Utilities.

============================================================
PURPOSE
============================================================
Structured logging for exchange traffic with:
- Credential masking (API keys, secrets, signatures)
- Request/response correlation IDs
- JSON log entries for requests, responses and orders

============================================================
SECURITY REQUIREMENTS
============================================================
1. NEVER log raw API keys, secrets or passphrases
2. Mask auth headers (X-MBX-APIKEY, KEY/SIGN, OK-ACCESS-*)
3. Mask the ``signature`` query parameter
4. Log a hash of the request body, not the body itself

============================================================
"""

import hashlib
import itertools
import json
import logging
import re
from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from typing import Any, Dict, Optional


logger = logging.getLogger(__name__)


# ============================================================
# SENSITIVE DATA PATTERNS
# ============================================================

# Header names that should be masked
SENSITIVE_HEADERS = {
    "x-mbx-apikey",
    "key",
    "sign",
    "ok-access-key",
    "ok-access-passphrase",
    "ok-access-sign",
    "authorization",
}

# Parameter names that should be masked
SENSITIVE_PARAMS = {
    "apikey",
    "api_key",
    "secret",
    "secret_key",
    "passphrase",
    "signature",
    "sign",
}

_URL_PARAM_PATTERNS = [
    re.compile(f"({param}=)([^&]+)", re.IGNORECASE) for param in sorted(SENSITIVE_PARAMS)
]


# ============================================================
# MASKING FUNCTIONS
# ============================================================

def mask_value(value: str, show_chars: int = 4) -> str:
    """
    Mask a sensitive value, showing only first few chars.

    Args:
        value: Value to mask
        show_chars: Number of chars to show at start

    Returns:
        Masked value
    """
    if not value or len(value) <= show_chars * 2:
        return "***"
    return f"{value[:show_chars]}...***"


def mask_headers(headers: Optional[Dict[str, str]]) -> Dict[str, str]:
    """Headers with sensitive values masked."""
    if not headers:
        return {}
    return {
        key: mask_value(str(value)) if key.lower() in SENSITIVE_HEADERS else value
        for key, value in headers.items()
    }


def mask_params(params: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Parameters with sensitive values masked (recurses into dicts)."""
    if not params:
        return {}

    masked = {}
    for key, value in params.items():
        if key.lower() in SENSITIVE_PARAMS:
            masked[key] = mask_value(str(value)) if value else value
        elif isinstance(value, dict):
            masked[key] = mask_params(value)
        else:
            masked[key] = value
    return masked


def mask_url(url: str) -> str:
    """URL or query string with sensitive params masked."""
    if not url:
        return url
    for pattern in _URL_PARAM_PATTERNS:
        url = pattern.sub(lambda m: f"{m.group(1)}***", url)
    return url


# ============================================================
# LOG ENTRY STRUCTURES
# ============================================================

def _utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


class _LogEntry:
    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for JSON logging."""
        return {k: v for k, v in asdict(self).items() if v is not None}

    def to_json(self) -> str:
        """Convert to JSON string."""
        return json.dumps(self.to_dict(), default=str)


@dataclass
class RequestLogEntry(_LogEntry):
    """Structured log entry for requests."""

    timestamp: str
    exchange_id: str
    method: str
    endpoint: str
    request_id: str

    # Request details (masked)
    headers: Dict[str, str] = None
    query: str = None
    body_hash: str = None  # Hash of body instead of full body


@dataclass
class ResponseLogEntry(_LogEntry):
    """Structured log entry for responses."""

    timestamp: str
    exchange_id: str
    request_id: str

    # Response details
    status_code: int
    latency_ms: float
    success: bool

    # Error info (if applicable)
    error_message: str = None

    # Response preview
    response_preview: str = None


@dataclass
class OrderLogEntry(_LogEntry):
    """Structured log entry for orders."""

    timestamp: str
    exchange_id: str
    operation: str  # create, cancel, fetch

    symbol: str = None
    client_order_id: str = None
    exchange_order_id: str = None

    # Order details
    side: str = None
    order_type: str = None
    amount: str = None
    price: str = None
    reduce_only: bool = None
    position_side: str = None

    # Result
    status: str = None
    error_message: str = None


# ============================================================
# ADAPTER LOGGER
# ============================================================

class AdapterLogger:
    """
    Secure logger for one exchange.

    Wraps ``logging.getLogger("exchange_adapters.<exchange>")`` and
    masks credentials in every entry it writes.
    """

    _counter = itertools.count(1)

    def __init__(self, exchange_id: str, debug: bool = False):
        """
        Initialize adapter logger.

        Args:
            exchange_id: Exchange identifier
            debug: Force DEBUG level on this exchange's logger
        """
        self._exchange_id = exchange_id
        self._logger = logging.getLogger(f"exchange_adapters.{exchange_id}")
        if debug:
            self._logger.setLevel(logging.DEBUG)

    @property
    def logger(self) -> logging.Logger:
        return self._logger

    def _generate_request_id(self) -> str:
        """Generate unique request ID."""
        return f"{self._exchange_id}-{next(self._counter)}"

    @staticmethod
    def _hash_body(body: Any) -> Optional[str]:
        if not body:
            return None
        if isinstance(body, (dict, list)):
            body = json.dumps(body, sort_keys=True)
        return hashlib.sha256(str(body).encode()).hexdigest()[:16]

    def log_request(
        self,
        method: str,
        endpoint: str,
        headers: Dict[str, str] = None,
        query: str = None,
        body: Any = None,
    ) -> str:
        """
        Log outgoing request.

        Returns:
            Request ID for correlation
        """
        request_id = self._generate_request_id()
        if self._logger.isEnabledFor(logging.DEBUG):
            entry = RequestLogEntry(
                timestamp=_utcnow(),
                exchange_id=self._exchange_id,
                method=method,
                endpoint=mask_url(endpoint),
                request_id=request_id,
                headers=mask_headers(headers) or None,
                query=mask_url(query) if query else None,
                body_hash=self._hash_body(body),
            )
            self._logger.debug(f"REQUEST: {entry.to_json()}")
        return request_id

    def log_response(
        self,
        request_id: str,
        status_code: int,
        latency_ms: float,
        success: bool,
        error_message: str = None,
        response_body: Any = None,
    ) -> None:
        """Log incoming response (body truncated to 200 chars)."""
        preview = None
        if response_body:
            if isinstance(response_body, bytes):
                response_body = response_body.decode(errors="replace")
            preview = str(response_body)[:200]

        entry = ResponseLogEntry(
            timestamp=_utcnow(),
            exchange_id=self._exchange_id,
            request_id=request_id,
            status_code=status_code,
            latency_ms=round(latency_ms, 2),
            success=success,
            error_message=error_message[:200] if error_message else None,
            response_preview=preview,
        )

        if success:
            self._logger.debug(f"RESPONSE: {entry.to_json()}")
        else:
            self._logger.warning(f"RESPONSE_ERROR: {entry.to_json()}")

    def log_order(self, operation: str, **fields: Any) -> None:
        """
        Log order operation.

        Args:
            operation: create, cancel or fetch
            **fields: Any OrderLogEntry field
        """
        error_message = fields.pop("error_message", None)
        entry = OrderLogEntry(
            timestamp=_utcnow(),
            exchange_id=self._exchange_id,
            operation=operation,
            error_message=error_message[:200] if error_message else None,
            **{k: (str(v) if v is not None and not isinstance(v, bool) else v) for k, v in fields.items()},
        )

        if error_message:
            self._logger.warning(f"ORDER_ERROR: {entry.to_json()}")
        else:
            self._logger.info(f"ORDER: {entry.to_json()}")

    def info(self, message: str, **kwargs) -> None:
        """Log info message."""
        self._logger.info(f"[{self._exchange_id}] {message}", extra=kwargs)

    def warning(self, message: str, **kwargs) -> None:
        """Log warning message."""
        self._logger.warning(f"[{self._exchange_id}] {message}", extra=kwargs)

    def debug(self, message: str, **kwargs) -> None:
        """Log debug message."""
        self._logger.debug(f"[{self._exchange_id}] {message}", extra=kwargs)
