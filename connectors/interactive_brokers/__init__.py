"""
Interactive Brokers Connector

Reads positions through a locally running Client Portal Gateway.

Flow:
    1. Probe /iserver/auth/status (gateway reachable, connected, authenticated)
    2. List accounts and pick the requested one (or the first)
    3. Fetch that account's positions and normalize them

API Documentation:
    https://interactivebrokers.github.io/cpwebapi/
"""

from typing import Any, Dict, Optional

from core.connector_interface import new_result, record_failure
from core.errors import UpstreamAuthError, UpstreamError
from core.http import extract_error_message, read_response_body
from core.logging import get_logger
from core.schemas import PlaygroundTestOptions, PlaygroundTestResult, ProviderDescriptor
from .api_client import IBKRGatewayClient, extract_account_ids, map_position, resolve_auth_flags


logger = get_logger(__name__)


class InteractiveBrokersConnector:
    """
    Interactive Brokers positions connector.

    Attributes:
        descriptor: Static provider description
        http: Shared HTTP client
        base_url: Gateway API base URL (trailing slashes trimmed)
        default_currency: Currency for rows that report none
    """

    descriptor = ProviderDescriptor(
        id="interactive_brokers",
        display_name="Interactive Brokers",
        support="supported",
        capabilities=[
            "Account discovery",
            "Portfolio positions fetch",
            "Read-only diagnostics via Client Portal API",
        ],
        requirements=[
            "Run Interactive Brokers Client Portal Gateway locally",
            "Set IBKR_BASE_URL if gateway URL differs",
            "Authenticate active session in IBKR gateway",
        ],
        docs_url="https://interactivebrokers.github.io/cpwebapi/"
    )

    def __init__(self, http, base_url: Optional[str] = None, default_currency: Optional[str] = None):
        from core.config import settings

        self.http = http
        self.base_url = (base_url or settings.ibkr_base_url).rstrip("/")
        self.default_currency = default_currency or settings.default_holding_currency

    def _summary(self, **fields: Any) -> Dict[str, Any]:
        return {"base_url": self.base_url, **fields}

    async def run_test(self, options: Optional[PlaygroundTestOptions] = None) -> PlaygroundTestResult:
        result = new_result(self.descriptor)
        client = IBKRGatewayClient(self.http, self.base_url)

        try:
            return await self._probe(client, result, options)
        except Exception as e:
            logger.warning(f"IBKR gateway request failed: {type(e).__name__}")
            record_failure(result, e)
            result.raw_summary = self._summary()
            return result

    async def _probe(
        self,
        client: IBKRGatewayClient,
        result: PlaygroundTestResult,
        options: Optional[PlaygroundTestOptions]
    ) -> PlaygroundTestResult:
        auth_response = await client.get_auth_status()
        auth_body = read_response_body(auth_response)

        if not auth_response.ok:
            record_failure(result, UpstreamError(
                extract_error_message(auth_body) or f"IBKR auth status request failed with status {auth_response.status}.",
                status=auth_response.status,
                source="interactive_brokers"
            ))
            result.raw_summary = self._summary(auth_status_code=auth_response.status)
            return result

        flags = resolve_auth_flags(auth_body)

        if not flags.connected:
            record_failure(result, UpstreamError(
                "IBKR Client Portal Gateway is reachable but not connected to backend services.",
                status=auth_response.status,
                source="interactive_brokers"
            ))
            if flags.message:
                result.warnings.append(flags.message)
            result.raw_summary = self._summary(auth_status_code=auth_response.status)
            return result

        result.connection_status = "ok"

        if not flags.authenticated:
            record_failure(result, UpstreamAuthError(
                "IBKR gateway session is not authenticated. Log in to Client Portal Gateway and retry.",
                status=auth_response.status,
                source="interactive_brokers"
            ))
            if flags.message:
                result.warnings.append(flags.message)
            result.raw_summary = self._summary(auth_status_code=auth_response.status)
            return result

        result.auth_status = "ok"

        accounts_response = await client.get_accounts()
        accounts_body = read_response_body(accounts_response)

        if not accounts_response.ok:
            result.errors.append(
                extract_error_message(accounts_body)
                or f"IBKR accounts request failed with status {accounts_response.status}."
            )
            result.raw_summary = self._summary(accounts_status_code=accounts_response.status)
            return result

        account_ids = extract_account_ids(accounts_body)

        if not account_ids:
            result.warnings.append("Connected and authenticated, but no IBKR accounts were returned.")
            result.raw_summary = self._summary(accounts_status_code=accounts_response.status, account_count=0)
            return result

        requested = options.ibkr_account_id if options else None
        selected = requested if requested in account_ids else account_ids[0]

        if requested and requested not in account_ids:
            result.warnings.append(
                f"Requested IBKR account '{requested}' was not found. Using '{selected}' instead."
            )

        page = await client.fetch_positions(selected)

        if page is None:
            result.errors.append(f"Unable to fetch IBKR positions for account '{selected}'.")
            result.raw_summary = self._summary(
                account_count=len(account_ids),
                selected_account_id=selected,
                positions_fetched=False
            )
            return result

        holdings = []
        for row in page.positions:
            holding = map_position(row, self.default_currency)
            if holding is not None:
                holdings.append(holding)

        result.holdings = holdings

        if not holdings:
            result.warnings.append(
                f"Connected successfully but no open positions were returned for account '{selected}'."
            )

        result.raw_summary = self._summary(
            account_count=len(account_ids),
            selected_account_id=selected,
            positions_count=len(holdings),
            positions_endpoint=page.endpoint,
            positions_status_code=page.status
        )
        logger.info(f"IBKR account {selected} returned {len(holdings)} position(s)")
        return result


__all__ = ["InteractiveBrokersConnector"]
