"""
HTTP Transport Tests.

============================================================
PURPOSE
============================================================
HttpTransport against a mocked aiohttp session: verbatim query
strings, status handling and error conversion.

============================================================
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import aiohttp
import pytest

from exchange_adapters import (
    ErrorCategory,
    ExchangeConfig,
    HttpStatusError,
    RetryEligibility,
    TransportError,
)
from exchange_adapters.transport import HttpTransport


def mock_session(status=200, body=b"{}", error=None):
    """Session whose request() yields one canned response."""
    response = MagicMock()
    response.status = status
    response.read = AsyncMock(return_value=body)

    context = MagicMock()
    context.__aenter__ = AsyncMock(return_value=response)
    context.__aexit__ = AsyncMock(return_value=False)

    session = MagicMock()
    if error is not None:
        session.request = MagicMock(side_effect=error)
    else:
        session.request = MagicMock(return_value=context)
    return session


@pytest.fixture
def http():
    return HttpTransport("binance", ExchangeConfig(proxy="http://proxy:3128"))


class TestHttpTransport:
    """Tests for HttpTransport.request()."""

    @pytest.mark.asyncio
    async def test_query_sent_verbatim(self, http):
        session = mock_session(body=b'{"ok":true}')

        with patch.object(http, "_get_session", AsyncMock(return_value=session)):
            payload = await http.request(
                "POST",
                "https://api.binance.com/api/v3/order",
                query="symbol=BTCUSDT&text=a%2Cb&signature=abc",
                body='{"x":1}',
                headers={"X-MBX-APIKEY": "k"},
            )

        assert payload == b'{"ok":true}'
        args, kwargs = session.request.call_args
        assert args[0] == "POST"
        assert str(args[1]) == "https://api.binance.com/api/v3/order?symbol=BTCUSDT&text=a%2Cb&signature=abc"
        assert kwargs["data"] == b'{"x":1}'
        assert kwargs["headers"] == {"X-MBX-APIKEY": "k"}
        assert kwargs["proxy"] == "http://proxy:3128"

    @pytest.mark.asyncio
    async def test_non_2xx(self, http):
        session = mock_session(status=400, body=b'{"code":-1121,"msg":"Invalid symbol."}')

        with patch.object(http, "_get_session", AsyncMock(return_value=session)):
            with pytest.raises(HttpStatusError) as exc_info:
                await http.get("https://api.binance.com/api/v3/ticker/24hr", "symbol=NOPE")

        assert exc_info.value.status == 400
        assert '"code":-1121' in exc_info.value.body
        assert exc_info.value.error.exchange_id == "binance"

    @pytest.mark.asyncio
    async def test_client_error(self, http):
        session = mock_session(error=aiohttp.ClientConnectionError("connection refused"))

        with patch.object(http, "_get_session", AsyncMock(return_value=session)):
            with pytest.raises(TransportError) as exc_info:
                await http.get("https://api.binance.com/api/v3/time")

        error = exc_info.value.error
        assert error.category is ErrorCategory.NETWORK
        assert error.retry_eligible is RetryEligibility.RETRY
        assert "connection refused" in error.message

    @pytest.mark.asyncio
    async def test_timeout(self, http):
        session = mock_session(error=asyncio.TimeoutError())

        with patch.object(http, "_get_session", AsyncMock(return_value=session)):
            with pytest.raises(TransportError) as exc_info:
                await http.get("https://api.binance.com/api/v3/time")

        assert exc_info.value.error.category is ErrorCategory.TIMEOUT
        assert "30000ms" in exc_info.value.error.message

    @pytest.mark.asyncio
    async def test_cancellation_propagates(self, http):
        session = mock_session(error=asyncio.CancelledError())

        with patch.object(http, "_get_session", AsyncMock(return_value=session)):
            with pytest.raises(asyncio.CancelledError):
                await http.get("https://api.binance.com/api/v3/time")

    @pytest.mark.asyncio
    async def test_close(self, http):
        assert http.closed
        await http.close()
        assert http.closed

        session = await http._get_session()
        assert not http.closed
        await http.close()
        assert session.closed
        assert http.closed
