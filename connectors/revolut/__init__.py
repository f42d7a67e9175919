"""
Revolut Connector

Revolut offers official APIs for Open Banking and Business accounts, and
Revolut X for exchange workflows, but no documented retail investment
holdings endpoint. The connector therefore reports a static "limited"
diagnostic and makes no network call.
"""

from typing import Optional

from core.connector_interface import new_result
from core.schemas import PlaygroundTestOptions, PlaygroundTestResult, ProviderDescriptor


class RevolutConnector:
    descriptor = ProviderDescriptor(
        id="revolut",
        display_name="Revolut",
        support="partial",
        capabilities=[
            "Official Open Banking account data in supported regions",
            "Official Revolut Business account APIs",
            "Revolut X APIs for exchange workflows",
        ],
        requirements=[
            "Open Banking or Business API onboarding with Revolut",
            "Region and product eligibility",
            "Retail investment holdings API is not publicly documented",
        ],
        docs_url="https://developer.revolut.com/docs/open-banking/account-information-service"
    )

    async def run_test(self, options: Optional[PlaygroundTestOptions] = None) -> PlaygroundTestResult:
        result = new_result(self.descriptor, connection_status="limited", auth_status="limited")
        result.warnings.extend([
            "Official Revolut APIs are available for Open Banking/Business scopes, but retail investment "
            "holdings are not publicly documented as a stable API surface.",
            "Revolut X APIs are separate and do not provide a drop-in retail holdings endpoint for this app.",
        ])
        result.raw_summary = {
            "status": "partial_support",
            "recommendation": "Use CSV import for portfolio assets until official retail holdings API is available.",
        }
        return result


__all__ = ["RevolutConnector"]
