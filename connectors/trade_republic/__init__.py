"""
Trade Republic Connector

Trade Republic has no official public API for portfolio holdings. Only
official APIs are used here, so the connector reports "not_supported" and
points at the CSV import flow. No network call is made.
"""

from typing import Optional

from core.connector_interface import new_result, record_failure
from core.errors import NotSupportedError
from core.schemas import PlaygroundTestOptions, PlaygroundTestResult, ProviderDescriptor


class TradeRepublicConnector:
    descriptor = ProviderDescriptor(
        id="trade_republic",
        display_name="Trade Republic",
        support="unsupported",
        capabilities=["No official public portfolio API currently available"],
        requirements=["Official API for portfolio holdings is required (currently unavailable)"],
        docs_url="https://www.traderepublic.com/"
    )

    async def run_test(self, options: Optional[PlaygroundTestOptions] = None) -> PlaygroundTestResult:
        result = record_failure(new_result(self.descriptor), NotSupportedError(
            "Trade Republic does not provide an official public API for portfolio holdings integration at this time."
        ))
        result.warnings.extend([
            "Community and reverse-engineered clients exist, but only official APIs are used here.",
            "Fallback: export your portfolio and import holdings through the CSV import flow.",
        ])
        result.raw_summary = {"status": "unsupported", "fallback": "CSV import"}
        return result


__all__ = ["TradeRepublicConnector"]
