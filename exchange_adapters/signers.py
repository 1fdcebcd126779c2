"""
Exchange Adapters - Request Signing.

============================================================
PURPOSE
============================================================
Per-exchange HMAC request signing.

- Binance: HEX(HMAC-SHA256(query_string)) appended as
  ``signature``; ``timestamp`` (ms) is part of the query
- Gate:    HEX(HMAC-SHA512(METHOD\\nPATH\\nQUERY\\nSHA512(BODY)\\nTS))
  in the SIGN header, TS (seconds) in the Timestamp header
- OKX:     BASE64(HMAC-SHA256(TS + METHOD + PATH[?QUERY] + BODY))
  in OK-ACCESS-SIGN, TS (ISO8601 ms) in OK-ACCESS-TIMESTAMP

============================================================
INVARIANT
============================================================
Each sign() call reads the clock exactly once. The value that
goes into the signed payload is the value returned in the
SignedRequest for transmission.

Signers hold the secret read-only and are safe to share across
concurrent calls.

============================================================
"""

import base64
import hashlib
import hmac
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Callable, Dict, Iterable, Mapping, Tuple, Union
from urllib.parse import urlencode


Clock = Callable[[], float]
Params = Union[Mapping[str, Any], Iterable[Tuple[str, Any]]]


def _param_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, Decimal):
        return format(value, "f")
    return str(value)


def build_query(params: Params) -> str:
    """
    Encode params as ``k=v&k=v`` in insertion order.

    None values are dropped; booleans become true/false.
    """
    if not params:
        return ""
    items = params.items() if isinstance(params, Mapping) else params
    return urlencode([(k, _param_value(v)) for k, v in items if v is not None])


@dataclass
class SignedRequest:
    """What the transport must send, byte for byte."""

    timestamp: str
    """Timestamp embedded in the signature payload."""

    query: str = ""
    """Encoded query string (without leading '?')."""

    body: str = ""
    """Serialized request body."""

    headers: Dict[str, str] = field(default_factory=dict)
    """Auth headers."""

    signature: str = ""


# ============================================================
# BINANCE
# ============================================================

class BinanceSigner:
    """HMAC-SHA256 over the literal query string."""

    def __init__(self, api_key: str, secret_key: str, clock: Clock = time.time):
        self._api_key = api_key or ""
        self._secret = (secret_key or "").encode()
        self._clock = clock

    def signature(self, payload: str) -> str:
        return hmac.new(self._secret, payload.encode(), hashlib.sha256).hexdigest()

    def sign(self, params: Params = None, recv_window: int = None) -> SignedRequest:
        """
        Sign a parameter set.

        ``timestamp`` is appended after the caller's params, then
        ``signature`` is appended after the signed query.
        """
        items = list(params.items() if isinstance(params, Mapping) else (params or []))
        items = [(k, v) for k, v in items if k not in ("timestamp", "signature")]
        if recv_window:
            items.append(("recvWindow", recv_window))
        timestamp = str(int(self._clock() * 1000))
        items.append(("timestamp", timestamp))

        query = build_query(items)
        signature = self.signature(query)
        return SignedRequest(
            timestamp=timestamp,
            query=f"{query}&signature={signature}",
            headers={"X-MBX-APIKEY": self._api_key},
            signature=signature,
        )


# ============================================================
# GATE
# ============================================================

class GateSigner:
    """HMAC-SHA512 over method, path, query, body hash and timestamp."""

    def __init__(self, api_key: str, secret_key: str, clock: Clock = time.time):
        self._api_key = api_key or ""
        self._secret = (secret_key or "").encode()
        self._clock = clock

    @staticmethod
    def payload(method: str, path: str, query: str, body: str, timestamp: str) -> str:
        body_hash = hashlib.sha512((body or "").encode()).hexdigest()
        return "\n".join([method.upper(), path, query or "", body_hash, timestamp])

    def signature(self, payload: str) -> str:
        return hmac.new(self._secret, payload.encode(), hashlib.sha512).hexdigest()

    def sign(self, method: str, path: str, query: str = "", body: str = "") -> SignedRequest:
        """
        Sign one request.

        Args:
            method: HTTP method
            path: Full request path including /api/v4
            query: Encoded query string
            body: Serialized JSON body ("" for none)
        """
        timestamp = str(int(self._clock()))
        signature = self.signature(self.payload(method, path, query, body, timestamp))
        return SignedRequest(
            timestamp=timestamp,
            query=query or "",
            body=body or "",
            headers={
                "KEY": self._api_key,
                "Timestamp": timestamp,
                "SIGN": signature,
            },
            signature=signature,
        )


# ============================================================
# OKX
# ============================================================

class OKXSigner:
    """Base64 HMAC-SHA256 with passphrase header."""

    def __init__(
        self,
        api_key: str,
        secret_key: str,
        passphrase: str,
        simulated: bool = False,
        clock: Clock = time.time,
    ):
        self._api_key = api_key or ""
        self._secret = (secret_key or "").encode()
        self._passphrase = passphrase or ""
        self._simulated = simulated
        self._clock = clock

    def _timestamp(self) -> str:
        now = datetime.fromtimestamp(self._clock(), tz=timezone.utc)
        return now.strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z"

    def signature(self, payload: str) -> str:
        digest = hmac.new(self._secret, payload.encode(), hashlib.sha256).digest()
        return base64.b64encode(digest).decode()

    def sign(self, method: str, path: str, query: str = "", body: str = "") -> SignedRequest:
        """
        Sign one request.

        OKX signature: BASE64(HMAC-SHA256(timestamp + method + path + body)),
        where path carries ``?query`` for GET/DELETE.
        """
        timestamp = self._timestamp()
        request_path = f"{path}?{query}" if query else path
        payload = f"{timestamp}{method.upper()}{request_path}{body or ''}"
        signature = self.signature(payload)

        headers = {
            "OK-ACCESS-KEY": self._api_key,
            "OK-ACCESS-SIGN": signature,
            "OK-ACCESS-TIMESTAMP": timestamp,
            "OK-ACCESS-PASSPHRASE": self._passphrase,
        }
        if self._simulated:
            headers["x-simulated-trading"] = "1"

        return SignedRequest(
            timestamp=timestamp,
            query=query or "",
            body=body or "",
            headers=headers,
            signature=signature,
        )
