"""
Provider Connector Contract

Every brokerage connector (Trading 212, Interactive Brokers, Revolut,
Trade Republic, ...) exposes the same two members:

    descriptor  - a ProviderDescriptor describing the provider
    run_test()  - probe the provider and return a PlaygroundTestResult

Connectors are plain classes that satisfy this Protocol structurally; there
is no shared base class. A connector never raises for upstream conditions:
missing credentials, rejected auth, rate limits and bad payloads all end up
in the result's errors/warnings with an appropriate status. Connectors
describe a failure with a typed error from core.errors and hand it to
record_failure(), which sets both statuses and the error message.

Example:
    class RevolutConnector:
        descriptor = ProviderDescriptor(id="revolut", ...)

        async def run_test(self, options=None) -> PlaygroundTestResult:
            return new_result(self.descriptor, connection_status="limited", auth_status="limited")

    # The registry and API routes work with any ProviderConnector:
    connector = registry.get_connector("revolut")
    result = await connector.run_test()
"""

from typing import Optional, Protocol, Tuple, runtime_checkable

from core.errors import (
    AggregatorError,
    NotConfiguredError,
    NotSupportedError,
    UpstreamAuthError,
    UpstreamRateLimited,
)
from core.http import sanitize_message, unknown_to_error_message
from core.schemas import (
    DiagnosticStatus,
    PlaygroundTestOptions,
    PlaygroundTestResult,
    ProviderDescriptor,
)


@runtime_checkable
class ProviderConnector(Protocol):
    """Structural type shared by all provider connectors."""

    descriptor: ProviderDescriptor

    async def run_test(self, options: Optional[PlaygroundTestOptions] = None) -> PlaygroundTestResult:
        """
        Probe the provider and normalize what it returns.

        Args:
            options: Optional per-run settings (e.g. IBKR account selection)

        Returns:
            PlaygroundTestResult with statuses, holdings and diagnostics
        """
        ...


def new_result(
    descriptor: ProviderDescriptor,
    connection_status: DiagnosticStatus = "error",
    auth_status: DiagnosticStatus = "error"
) -> PlaygroundTestResult:
    """Empty result for a provider, stamped with the current time."""
    return PlaygroundTestResult(
        provider_id=descriptor.id,
        support=descriptor.support,
        connection_status=connection_status,
        auth_status=auth_status
    )


# (connection_status, auth_status) per error type; checked in order
FAILURE_STATUSES: Tuple[Tuple[type, DiagnosticStatus, DiagnosticStatus], ...] = (
    (NotConfiguredError, "not_configured", "not_configured"),
    (NotSupportedError, "not_supported", "not_supported"),
    (UpstreamAuthError, "ok", "error"),
    (UpstreamRateLimited, "ok", "ok"),
)


def record_failure(result: PlaygroundTestResult, error: BaseException) -> PlaygroundTestResult:
    """
    Fold a failure into a diagnostic result.

    Typed errors set the statuses listed in FAILURE_STATUSES; anything else
    (upstream errors, timeouts, transport failures) means error/error. The
    message is sanitized before it is appended to result.errors.

    Example:
        >>> result = record_failure(new_result(descriptor), UpstreamAuthError("Key rejected", status=401))
        >>> result.connection_status, result.auth_status
        ('ok', 'error')
    """
    connection_status, auth_status = "error", "error"
    for error_type, connection, auth in FAILURE_STATUSES:
        if isinstance(error, error_type):
            connection_status, auth_status = connection, auth
            break

    result.connection_status = connection_status
    result.auth_status = auth_status

    if isinstance(error, AggregatorError):
        result.errors.append(sanitize_message(error.message))
    else:
        result.errors.append(unknown_to_error_message(error))

    return result
