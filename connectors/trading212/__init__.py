"""
Trading 212 Connector

Reads equity holdings through the official Trading 212 REST API.

API Documentation:
    https://docs.trading212.com/rest-api/reference/equity/portfolio

Endpoints Used:
    - GET /equity/portfolio - Open positions of the account

Diagnostic outcomes:
    - No TRADING212_API_KEY        -> not_configured / not_configured, no request made
    - 401/403 for every encoding   -> connection ok, auth error
    - 429                          -> connection ok, auth ok, rate limit error
    - Other non-2xx                -> error / error with the upstream message
    - Transport failure or timeout -> error / error
    - 2xx                          -> ok / ok with normalized holdings
"""

from typing import Any, Dict, Optional

from core.connector_interface import new_result, record_failure
from core.errors import NotConfiguredError, UpstreamAuthError, UpstreamError, UpstreamRateLimited
from core.http import HttpClient, extract_error_message
from core.logging import get_logger
from core.schemas import PlaygroundTestOptions, PlaygroundTestResult, ProviderDescriptor
from .api_client import Trading212APIClient, extract_holdings


logger = get_logger(__name__)


class Trading212Connector:
    """
    Trading 212 portfolio connector.

    Attributes:
        descriptor: Static provider description
        http: Shared HTTP client
        api_key: API key (empty string means not configured)
        base_url: REST API base URL
        default_currency: Currency for rows that report none

    Example:
        >>> connector = Trading212Connector(http)
        >>> result = await connector.run_test()
        >>> print(result.auth_status, len(result.holdings))
    """

    descriptor = ProviderDescriptor(
        id="trading212",
        display_name="Trading 212",
        support="supported",
        capabilities=[
            "Portfolio holdings fetch",
            "Read-only connectivity diagnostics",
            "Official Trading 212 API",
        ],
        requirements=[
            "Set TRADING212_API_KEY in server environment",
            "Trading 212 API access enabled for your account",
        ],
        docs_url="https://docs.trading212.com/rest-api/reference/equity/portfolio"
    )

    def __init__(
        self,
        http: HttpClient,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        default_currency: Optional[str] = None
    ):
        # Import settings here to avoid circular imports
        from core.config import settings

        self.http = http
        self.api_key = (settings.trading212_api_key if api_key is None else api_key).strip()
        self.base_url = (base_url or settings.trading212_base_url).rstrip("/")
        self.default_currency = default_currency or settings.default_holding_currency

    def _summary(self, **fields: Any) -> Dict[str, Any]:
        return {"base_url": self.base_url, **fields}

    async def run_test(self, options: Optional[PlaygroundTestOptions] = None) -> PlaygroundTestResult:
        result = new_result(self.descriptor)

        if not self.api_key:
            record_failure(result, NotConfiguredError(
                "Missing TRADING212_API_KEY. Add it to your server environment to run this connector."
            ))
            result.raw_summary = self._summary(configured=False)
            return result

        client = Trading212APIClient(self.http, self.api_key, self.base_url)

        try:
            attempt = await client.fetch_portfolio()
        except Exception as e:
            logger.warning(f"Trading 212 request failed: {type(e).__name__}")
            record_failure(result, e)
            result.raw_summary = self._summary()
            return result

        if attempt is None:
            record_failure(result, UpstreamError("Trading 212 request could not be executed.", source="trading212"))
            result.raw_summary = self._summary()
            return result

        status = attempt.response.status
        upstream_message = extract_error_message(attempt.body)

        if status in (401, 403):
            record_failure(result, UpstreamAuthError(
                "Trading 212 authentication failed. Verify TRADING212_API_KEY permissions and validity.",
                status=status,
                source="trading212"
            ))
            if upstream_message:
                result.warnings.append(f"Upstream response: {upstream_message}")
            result.raw_summary = self._summary(status=status, auth_attempt=attempt.auth_attempt)
            return result

        if status == 429:
            record_failure(result, UpstreamRateLimited(
                "Trading 212 rate limit reached. Try again in a few moments.",
                source="trading212"
            ))
            result.raw_summary = self._summary(status=status, auth_attempt=attempt.auth_attempt)
            return result

        if not attempt.response.ok:
            record_failure(result, UpstreamError(
                upstream_message or f"Trading 212 request failed with status {status}.",
                status=status,
                source="trading212"
            ))
            result.raw_summary = self._summary(status=status, auth_attempt=attempt.auth_attempt)
            return result

        holdings = extract_holdings(attempt.body, self.default_currency)

        result.connection_status = "ok"
        result.auth_status = "ok"
        result.holdings = holdings

        if not holdings:
            result.warnings.append("Connected successfully but no portfolio holdings were returned.")

        result.raw_summary = self._summary(
            status=status,
            holdings_count=len(holdings),
            auth_attempt=attempt.auth_attempt
        )
        logger.info(f"Trading 212 returned {len(holdings)} holding(s)")
        return result


__all__ = ["Trading212Connector"]
