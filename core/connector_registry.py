"""
Connector Registry

Maps provider ids to connector instances. This is the single place where
connectors are wired up; API routes only ever talk to the registry.

Example Usage:
    # In app/main.py (FastAPI app)
    registry = ConnectorRegistry(HttpClient())
    await registry.initialize()

    @app.post("/providers/test")
    async def test_provider(...):
        return await registry.run_test("trading212")

    # Adding a provider:
    # 1. Create a connector class with `descriptor` and `run_test()`
    # 2. Add it to ConnectorRegistry.__init__ and PROVIDER_IDS
"""

from typing import Any, Dict, List, Optional

from core.connector_interface import ProviderConnector, new_result
from core.http import HttpClient, unknown_to_error_message
from core.logging import logger
from core.schemas import PlaygroundTestOptions, ProviderDescriptor


PROVIDER_IDS = ("trading212", "interactive_brokers", "revolut", "trade_republic")

UNEXPECTED_CONNECTOR_ERROR = "Unexpected connector error."


def is_valid_provider_id(value: Any) -> bool:
    """True for one of the known provider ids."""
    return isinstance(value, str) and value in PROVIDER_IDS


class ConnectorRegistry:
    """
    Lookup table of provider connectors sharing one HttpClient.

    Attributes:
        http: HTTP client handed to every connector
        connectors: Provider id -> connector instance

    Example:
        >>> registry = ConnectorRegistry()
        >>> await registry.initialize()
        >>> [d.id for d in registry.list_descriptors()]
        ['trading212', 'interactive_brokers', 'revolut', 'trade_republic']
        >>> payload = await registry.run_test("revolut")
        >>> await registry.shutdown()
    """

    def __init__(self, http: Optional[HttpClient] = None, connectors: Optional[Dict[str, ProviderConnector]] = None):
        """
        Args:
            http: Shared HTTP client (a new one is created when omitted)
            connectors: Explicit connector table, mainly for tests
        """
        self.http = http if http is not None else HttpClient()

        if connectors is None:
            # Connector modules import from core, so they are imported lazily here
            from connectors.interactive_brokers import InteractiveBrokersConnector
            from connectors.revolut import RevolutConnector
            from connectors.trade_republic import TradeRepublicConnector
            from connectors.trading212 import Trading212Connector

            connectors = {
                "trading212": Trading212Connector(self.http),
                "interactive_brokers": InteractiveBrokersConnector(self.http),
                "revolut": RevolutConnector(),
                "trade_republic": TradeRepublicConnector(),
            }

        self.connectors: Dict[str, ProviderConnector] = connectors

        logger.info(f"ConnectorRegistry initialized with {len(self.connectors)} connector(s): {', '.join(self.connectors)}")

    # ============================================
    # Lookup
    # ============================================

    def get_connector(self, provider_id: str) -> ProviderConnector:
        """
        Get a connector by provider id.

        Raises:
            ValueError: If the provider id is unknown
        """
        if provider_id not in self.connectors:
            available = ", ".join(self.connectors)
            raise ValueError(f"Provider '{provider_id}' is not supported. Available providers: {available}")

        return self.connectors[provider_id]

    def has_connector(self, provider_id: str) -> bool:
        return provider_id in self.connectors

    def list_providers(self) -> List[str]:
        return list(self.connectors)

    def list_descriptors(self) -> List[ProviderDescriptor]:
        """Descriptors of all registered connectors, in registration order."""
        return [connector.descriptor for connector in self.connectors.values()]

    # ============================================
    # Diagnostics
    # ============================================

    async def run_test(self, provider_id: str, options: Optional[PlaygroundTestOptions] = None) -> Dict[str, Any]:
        """
        Run a connector diagnostic and return the sanitized payload.

        Unexpected exceptions from the connector are converted into an error
        result rather than propagated.

        Raises:
            ValueError: If the provider id is unknown
        """
        connector = self.get_connector(provider_id)

        try:
            result = await connector.run_test(options)
        except Exception as e:
            logger.error(f"Connector {provider_id} failed unexpectedly: {type(e).__name__}")
            result = new_result(connector.descriptor)
            result.errors.append(unknown_to_error_message(e) or UNEXPECTED_CONNECTOR_ERROR)

        logger.info(
            f"{provider_id} test finished: connection={result.connection_status} "
            f"auth={result.auth_status} holdings={len(result.holdings)}"
        )
        return result.sanitized()

    # ============================================
    # Lifecycle Management
    # ============================================

    async def initialize(self) -> None:
        """Open the shared HTTP session."""
        await self.http.open()
        logger.info("Connector HTTP session opened")

    async def shutdown(self) -> None:
        """Close the shared HTTP session."""
        await self.http.close()
        logger.info("Connector HTTP session closed")

    def __len__(self) -> int:
        return len(self.connectors)
