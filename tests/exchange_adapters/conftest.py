"""
Shared fixtures for exchange adapter tests.

FakeTransport stands in for HttpTransport: it records every
request and replays queued responses (bytes) or raises queued
exceptions, in order.
"""

import json
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Dict, Optional
from urllib.parse import parse_qsl, urlparse

import pytest

from exchange_adapters import ExchangeConfig


@dataclass
class RecordedRequest:
    method: str
    url: str
    query: str = ""
    body: Optional[str] = None
    headers: Dict[str, str] = field(default_factory=dict)

    @property
    def path(self) -> str:
        return urlparse(self.url).path

    @property
    def host(self) -> str:
        return urlparse(self.url).netloc

    @property
    def params(self) -> Dict[str, str]:
        return dict(parse_qsl(self.query, keep_blank_values=True))

    @property
    def json(self) -> Any:
        return json.loads(self.body) if self.body else None


class FakeTransport:
    """Records requests, replays queued responses."""

    def __init__(self):
        self.requests = []
        self.closed = False
        self._responses = deque()

    def queue(self, *responses: Any) -> "FakeTransport":
        """Queue JSON-serializable payloads, raw bytes or exceptions."""
        for response in responses:
            if isinstance(response, (bytes, Exception)):
                self._responses.append(response)
            else:
                self._responses.append(json.dumps(response).encode())
        return self

    @property
    def last(self) -> RecordedRequest:
        return self.requests[-1]

    def paths(self):
        return [r.path for r in self.requests]

    async def request(self, method, url, *, query="", body=None, headers=None) -> bytes:
        self.requests.append(RecordedRequest(method, url, query, body, dict(headers or {})))
        if not self._responses:
            raise AssertionError(f"unexpected request: {method} {url}?{query}")
        response = self._responses.popleft()
        if isinstance(response, Exception):
            raise response
        return response

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def credentials():
    return ExchangeConfig(api_key="test-api-key", secret_key="test-secret-key", passphrase="test-pass")


@pytest.fixture
def public_config():
    return ExchangeConfig()
