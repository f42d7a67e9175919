"""
Trading 212 REST API Client

Reads the equity portfolio of the account behind TRADING212_API_KEY.

Trading 212 documents the key as the raw Authorization header value, but
keys are regularly pasted with or without a "Bearer " prefix. The client
therefore walks an ordered list of authorization encodings and keeps the
first one the API does not reject with 401/403.

API Documentation:
    https://docs.trading212.com/rest-api/reference/equity/portfolio

Usage:
    client = Trading212APIClient(http, api_key, base_url)
    attempt = await client.fetch_portfolio()
    holdings = extract_holdings(attempt.body, default_currency="USD")
"""

import re
from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Tuple

from core.http import HttpClient, UpstreamResponse, first_number, first_string, read_response_body, to_record
from core.logging import get_logger
from core.schemas import NormalizedHolding


logger = get_logger(__name__)

AUTH_REJECTED_STATUSES = (401, 403)

_BEARER_PREFIX = re.compile(r"^Bearer\s+", re.IGNORECASE)


# ============================================
# Authorization Encodings
# ============================================

@dataclass(frozen=True)
class AuthEncoding:
    name: str
    transform: Callable[[str], str]


def _strip_bearer(key: str) -> str:
    return _BEARER_PREFIX.sub("", key)


def _add_bearer(key: str) -> str:
    return f"Bearer {_strip_bearer(key)}"


# Tried in order; the key as configured always goes first
AUTH_ENCODINGS: Tuple[AuthEncoding, ...] = (
    AuthEncoding("as_configured", lambda key: key),
    AuthEncoding("raw", _strip_bearer),
    AuthEncoding("bearer", _add_bearer),
)


def auth_style(header_value: str) -> str:
    """"bearer" for Bearer-prefixed values, "raw" otherwise."""
    return "bearer" if header_value.startswith("Bearer ") else "raw"


def build_auth_candidates(api_key: str) -> List[str]:
    """
    Authorization header values to try, de-duplicated, in order.

    Example:
        >>> build_auth_candidates("abc")
        ['abc', 'Bearer abc']
        >>> build_auth_candidates("Bearer abc")
        ['Bearer abc', 'abc']
    """
    candidates: List[str] = []
    for encoding in AUTH_ENCODINGS:
        value = encoding.transform(api_key)
        if value and value not in candidates:
            candidates.append(value)
    return candidates


# ============================================
# Portfolio Normalization
# ============================================

def map_holding(item: Any, default_currency: str = "USD") -> Optional[NormalizedHolding]:
    """
    Normalize one portfolio row.

    Returns None for rows without a finite, strictly positive quantity.
    """
    row = to_record(item)

    quantity = first_number(row, "quantity", "shares", "currentShares")
    if quantity is None or quantity <= 0:
        return None

    symbol = (first_string(row, "ticker", "symbol", "isin", "instrument") or "UNKNOWN").upper()
    unit_price = first_number(row, "currentPrice", "price", "averagePrice")

    market_value = first_number(row, "marketValue", "value")
    if market_value is None and unit_price is not None:
        market_value = unit_price * quantity

    return NormalizedHolding(
        external_id=first_string(row, "ticker", "isin", "id") or symbol,
        symbol=symbol,
        name=first_string(row, "instrumentName", "name", "description") or symbol,
        quantity=quantity,
        unit_price=unit_price,
        market_value=market_value,
        currency=first_string(row, "currency", "currencyCode") or default_currency,
        asset_class=first_string(row, "assetType", "type") or "EQUITY",
        source_type="position",
        raw=row
    )


def extract_holdings(body: Any, default_currency: str = "USD") -> List[NormalizedHolding]:
    """Holdings from a list body or an `items`/`positions` array."""
    if isinstance(body, list):
        rows = body
    elif isinstance(body, dict) and isinstance(body.get("items"), list):
        rows = body["items"]
    elif isinstance(body, dict) and isinstance(body.get("positions"), list):
        rows = body["positions"]
    else:
        rows = []

    holdings = []
    for row in rows:
        holding = map_holding(row, default_currency)
        if holding is None:
            logger.debug("Skipping Trading 212 row without a positive quantity")
            continue
        holdings.append(holding)
    return holdings


# ============================================
# API Client
# ============================================

@dataclass
class PortfolioAttempt:
    """Last portfolio response together with the encoding that produced it."""

    response: UpstreamResponse
    body: Any
    auth_attempt: str


class Trading212APIClient:
    """
    Trading 212 portfolio reader.

    Attributes:
        http: Shared HTTP client
        api_key: Key as configured (never logged)
        base_url: API base URL without trailing slash
    """

    def __init__(self, http: HttpClient, api_key: str, base_url: str):
        self.http = http
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")

    async def fetch_portfolio(self) -> Optional[PortfolioAttempt]:
        """
        GET /equity/portfolio, walking the authorization encodings.

        Stops at the first response that is not 401/403. When every encoding
        is rejected, the last rejection is returned.

        Returns:
            The deciding attempt, or None when no candidate could be built
        """
        url = f"{self.base_url}/equity/portfolio"
        attempt: Optional[PortfolioAttempt] = None

        for header_value in build_auth_candidates(self.api_key):
            response = await self.http.fetch(
                url,
                headers={"Authorization": header_value, "Accept": "application/json"},
                source="trading212"
            )
            attempt = PortfolioAttempt(
                response=response,
                body=read_response_body(response),
                auth_attempt=auth_style(header_value)
            )

            if response.status not in AUTH_REJECTED_STATUSES:
                break

            logger.debug(f"Trading 212 rejected {attempt.auth_attempt} authorization ({response.status})")

        return attempt
