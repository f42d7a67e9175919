"""
Shared test fixtures.

FakeHttpClient stands in for core.http.HttpClient: responses are served
from URL-fragment routes first, then from a FIFO queue, and every call is
recorded so tests can assert on what went over the wire.
"""

import json
from collections import deque
from typing import Any, Dict, List, Optional, Tuple

import pytest

from core.http import UpstreamResponse
from services.pricing.asset_price import AssetPriceService
from services.pricing.coingecko import CoinGeckoClient


def json_response(body: Any, status: int = 200, headers: Optional[Dict[str, str]] = None) -> UpstreamResponse:
    """Build a JSON UpstreamResponse."""
    return UpstreamResponse(
        status=status,
        headers={"Content-Type": "application/json", **(headers or {})},
        content=json.dumps(body).encode("utf-8")
    )


def text_response(text: str, status: int = 200, content_type: str = "text/plain") -> UpstreamResponse:
    """Build a text UpstreamResponse."""
    return UpstreamResponse(status=status, headers={"Content-Type": content_type}, content=text.encode("utf-8"))


class FakeHttpClient:
    """In-memory replacement for HttpClient."""

    def __init__(self):
        self.routes: List[Tuple[str, List[Any]]] = []
        self.queue = deque()
        self.calls: List[Dict[str, Any]] = []

    def add_route(self, fragment: str, *responses: Any) -> "FakeHttpClient":
        """
        Serve URLs containing `fragment`. With several responses they are
        used in turn and the last one repeats. A response may be an
        exception instance, which is raised instead.
        """
        self.routes.append((fragment, list(responses)))
        return self

    def enqueue(self, *responses: Any) -> "FakeHttpClient":
        self.queue.extend(responses)
        return self

    @property
    def urls(self) -> List[str]:
        return [call["url"] for call in self.calls]

    async def fetch(
        self,
        url: str,
        *,
        method: str = "GET",
        headers=None,
        params=None,
        json_body=None,
        timeout_ms=None,
        source=None
    ) -> UpstreamResponse:
        self.calls.append({
            "url": url,
            "method": method,
            "headers": dict(headers or {}),
            "params": dict(params or {}),
            "json_body": json_body,
            "source": source,
        })

        for fragment, responses in self.routes:
            if fragment in url:
                response = responses.pop(0) if len(responses) > 1 else responses[0]
                break
        else:
            if not self.queue:
                raise AssertionError(f"Unexpected request: {method} {url}")
            response = self.queue.popleft()

        if isinstance(response, BaseException):
            raise response
        return response


async def no_sleep(seconds: float) -> None:
    return None


@pytest.fixture
def fake_http():
    return FakeHttpClient()


@pytest.fixture(autouse=True)
def reset_shared_price_state(monkeypatch):
    """CoinGecko backoff and the FX cache are process-wide; isolate them per test."""
    monkeypatch.setattr(CoinGeckoClient, "_backoff_until", 0)
    monkeypatch.setattr(AssetPriceService, "_rate_cache", {})
