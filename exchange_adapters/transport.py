"""
Exchange Adapters - HTTP Transport.

============================================================
PURPOSE
============================================================
One HTTP round trip per call on a shared aiohttp session.

- Sends the query string exactly as given (signed bytes are
  never re-encoded or re-ordered)
- Honors the configured proxy and timeouts
- Logs every request/response through AdapterLogger
- Never retries

============================================================
ERRORS
============================================================
- aiohttp.ClientError   -> TransportError (NETWORK)
- asyncio.TimeoutError  -> TransportError (TIMEOUT)
- non-2xx status        -> HttpStatusError (status + body)

asyncio.CancelledError propagates untouched.

============================================================
"""

import asyncio
import logging
import time
from typing import Dict, Optional

import aiohttp
from yarl import URL

from .config import ExchangeConfig
from .errors import (
    TransportError,
    HttpStatusError,
    create_network_error,
    create_timeout_error,
)
from .logging_utils import AdapterLogger


logger = logging.getLogger(__name__)


class HttpTransport:
    """
    Async HTTP client shared by the spot and perpetual APIs of one
    exchange facade.

    The session is created lazily on the first request and released
    by close().
    """

    def __init__(
        self,
        exchange_id: str,
        config: ExchangeConfig,
        adapter_logger: Optional[AdapterLogger] = None,
        default_headers: Optional[Dict[str, str]] = None,
    ):
        """
        Initialize transport.

        Args:
            exchange_id: Exchange identifier (for logging and errors)
            config: Exchange configuration (proxy, timeouts, debug)
            adapter_logger: Masking logger; created when omitted
            default_headers: Headers sent with every request
        """
        self._exchange_id = exchange_id
        self._config = config
        self._logger = adapter_logger or AdapterLogger(exchange_id, debug=config.debug)
        self._default_headers = dict(default_headers or {})
        self._session: Optional[aiohttp.ClientSession] = None

    @property
    def closed(self) -> bool:
        return self._session is None or self._session.closed

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(
                total=self._config.timeout.total_timeout_seconds,
                connect=self._config.timeout.connect_timeout_seconds,
            )
            self._session = aiohttp.ClientSession(
                timeout=timeout,
                headers=self._default_headers,
            )
        return self._session

    async def close(self) -> None:
        """Release the HTTP session."""
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    # ========================================================
    # REQUESTS
    # ========================================================

    async def request(
        self,
        method: str,
        url: str,
        *,
        query: str = "",
        body: Optional[str] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> bytes:
        """
        Perform one HTTP round trip.

        Args:
            method: HTTP method
            url: Absolute URL without query string
            query: Pre-encoded query string, sent verbatim
            body: Serialized request body
            headers: Per-request headers (auth, content type)

        Returns:
            Raw response body

        Raises:
            TransportError: Connection failure or timeout
            HttpStatusError: Non-2xx response
        """
        target = URL(f"{url}?{query}" if query else url, encoded=True)
        session = await self._get_session()

        request_id = self._logger.log_request(
            method=method,
            endpoint=url,
            headers=headers,
            query=query,
            body=body,
        )
        start_time = time.monotonic()

        try:
            async with session.request(
                method,
                target,
                data=body.encode() if body else None,
                headers=headers,
                proxy=self._config.proxy,
            ) as response:
                payload = await response.read()
                status = response.status

        except aiohttp.ClientError as e:
            latency_ms = (time.monotonic() - start_time) * 1000
            self._logger.log_response(
                request_id, 0, latency_ms, success=False, error_message=str(e),
            )
            raise TransportError(
                create_network_error(self._exchange_id, str(e))
            ) from e

        except asyncio.TimeoutError as e:
            latency_ms = (time.monotonic() - start_time) * 1000
            self._logger.log_response(
                request_id, 0, latency_ms, success=False, error_message="timeout",
            )
            raise TransportError(
                create_timeout_error(
                    self._exchange_id,
                    int(self._config.timeout.total_timeout_seconds * 1000),
                )
            ) from e

        latency_ms = (time.monotonic() - start_time) * 1000
        success = 200 <= status < 300
        self._logger.log_response(
            request_id,
            status,
            latency_ms,
            success=success,
            error_message=None if success else f"HTTP {status}",
            response_body=payload,
        )

        if not success:
            raise HttpStatusError(
                status,
                payload.decode(errors="replace"),
                exchange_id=self._exchange_id,
            )
        return payload

    async def get(self, url: str, query: str = "", headers: Optional[Dict[str, str]] = None) -> bytes:
        return await self.request("GET", url, query=query, headers=headers)

    async def post(
        self,
        url: str,
        query: str = "",
        body: Optional[str] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> bytes:
        return await self.request("POST", url, query=query, body=body, headers=headers)

    async def delete(self, url: str, query: str = "", headers: Optional[Dict[str, str]] = None) -> bytes:
        return await self.request("DELETE", url, query=query, headers=headers)
