"""
Interactive Brokers Client Portal Gateway Client

The Client Portal Gateway runs next to the application (by default on
http://127.0.0.1:5000) and proxies an authenticated brokerage session.
It needs no credentials of its own; the operator logs in through the
gateway's web page.

API Documentation:
    https://interactivebrokers.github.io/cpwebapi/

Endpoints Used:
    - GET /iserver/auth/status               - Session state
    - GET /portfolio/accounts                - Accounts of the session
    - GET /portfolio/{accountId}/positions/0 - First page of positions
    - GET /portfolio/{accountId}/positions   - Fallback without paging
"""

from dataclasses import dataclass
from typing import Any, List, Optional

from core.http import HttpClient, UpstreamResponse, first_number, first_string, read_response_body, to_record
from core.logging import get_logger
from core.schemas import NormalizedHolding


logger = get_logger(__name__)

ACCEPT_JSON = {"Accept": "application/json"}


# ============================================
# Payload Helpers
# ============================================

@dataclass
class AuthFlags:
    authenticated: bool
    connected: bool
    message: Optional[str] = None


def resolve_auth_flags(body: Any) -> AuthFlags:
    """
    Read the session flags from /iserver/auth/status.

    When `connected` is missing the `competing` flag stands in for it, and
    with neither present the gateway counts as connected. A missing
    `authenticated` flag counts as not authenticated.
    """
    if not isinstance(body, dict):
        return AuthFlags(authenticated=False, connected=False)

    authenticated = next(
        (body[key] for key in ("authenticated", "isAuthenticated", "loggedIn") if body.get(key) is not None),
        False
    )
    connected = body.get("connected")
    if connected is None:
        connected = body.get("competing")
    message = body.get("message") if isinstance(body.get("message"), str) else None
    if message is None and isinstance(body.get("error"), str):
        message = body["error"]

    return AuthFlags(
        authenticated=bool(authenticated),
        connected=True if connected is None else bool(connected),
        message=message
    )


def extract_account_ids(body: Any) -> List[str]:
    """
    Account ids from /portfolio/accounts, de-duplicated in order.

    Entries may be plain strings or objects carrying the id under
    accountId, id, account, accountCode or acctId.
    """
    if not isinstance(body, list):
        return []

    ids: List[str] = []
    for item in body:
        if isinstance(item, str):
            account_id = item.strip()
        elif isinstance(item, dict):
            value = next(
                (item[key] for key in ("accountId", "id", "account", "accountCode", "acctId") if item.get(key)),
                None
            )
            account_id = value.strip() if isinstance(value, str) else ""
        else:
            continue

        if account_id and account_id not in ids:
            ids.append(account_id)

    return ids


def extract_positions(body: Any) -> List[Any]:
    """Position rows from a list body or a positions/data/items array."""
    if isinstance(body, list):
        return body

    if not isinstance(body, dict):
        return []

    for key in ("positions", "data", "items"):
        if isinstance(body.get(key), list):
            return body[key]

    return []


def map_position(item: Any, default_currency: str = "USD") -> Optional[NormalizedHolding]:
    """Normalize one position row; None unless the quantity is strictly positive."""
    row = to_record(item)

    quantity = first_number(row, "position", "qty")
    if quantity is None or quantity <= 0:
        return None

    unit_price = first_number(row, "mktPrice", "marketPrice", "lastPrice")
    market_value = first_number(row, "mktValue", "marketValue")
    if market_value is None and unit_price is not None:
        market_value = unit_price * quantity

    symbol = (first_string(row, "ticker", "symbol", "contractDesc", "conid") or "UNKNOWN").upper()

    return NormalizedHolding(
        external_id=first_string(row, "conid", "conidEx", "contractDesc") or symbol,
        symbol=symbol,
        name=first_string(row, "contractDesc", "description", "name") or symbol,
        quantity=quantity,
        unit_price=unit_price,
        market_value=market_value,
        currency=first_string(row, "currency") or default_currency,
        asset_class=first_string(row, "assetClass", "secType", "type") or "UNKNOWN",
        source_type="position",
        raw=row
    )


# ============================================
# API Client
# ============================================

@dataclass
class PositionsPage:
    positions: List[Any]
    status: int
    endpoint: str


class IBKRGatewayClient:
    """
    Read-only Client Portal Gateway client.

    Example:
        >>> client = IBKRGatewayClient(http, "http://127.0.0.1:5000/v1/api")
        >>> response = await client.get_auth_status()
    """

    def __init__(self, http: HttpClient, base_url: str):
        self.http = http
        self.base_url = base_url.rstrip("/")

    async def _get(self, path: str) -> UpstreamResponse:
        return await self.http.fetch(f"{self.base_url}{path}", headers=ACCEPT_JSON, source="ibkr")

    async def get_auth_status(self) -> UpstreamResponse:
        return await self._get("/iserver/auth/status")

    async def get_accounts(self) -> UpstreamResponse:
        return await self._get("/portfolio/accounts")

    async def fetch_positions(self, account_id: str) -> Optional[PositionsPage]:
        """
        Positions of an account, trying the paged endpoint first.

        Returns:
            The first successful page, or None when both endpoints fail
        """
        for path in (f"/portfolio/{account_id}/positions/0", f"/portfolio/{account_id}/positions"):
            response = await self._get(path)
            if not response.ok:
                logger.debug(f"IBKR positions endpoint {path} answered {response.status}")
                continue

            return PositionsPage(
                positions=extract_positions(read_response_body(response)),
                status=response.status,
                endpoint=f"{self.base_url}{path}"
            )

        return None
