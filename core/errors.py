"""
Application Errors

Typed exceptions raised by the pricing layer and the HTTP utilities.
Connectors never raise these to their callers: they describe a failure
with one of these types and fold it into a PlaygroundTestResult through
core.connector_interface.record_failure, which picks the diagnostic
statuses from the error type.

The HTTP layer maps them to JSON responses:
    ValidationError      -> 400
    NotConfiguredError   -> 503
    NotSupportedError    -> 501
    Upstream*            -> 502
"""

from typing import Any, Dict, Optional


TIMEOUT_MESSAGE = "Request timed out while waiting for upstream provider response."


class AggregatorError(Exception):
    """Base exception for the aggregation backend."""

    status_code = 500

    def __init__(
        self,
        message: str = "An error occurred",
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(self.message)


class ValidationError(AggregatorError):
    """Caller input rejected before any upstream call."""

    status_code = 400

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message=message, code="VALIDATION_ERROR", details=details)


class NotConfiguredError(AggregatorError):
    """A required credential or setting is missing."""

    status_code = 503

    def __init__(self, message: str):
        super().__init__(message=message, code="NOT_CONFIGURED")


class NotSupportedError(AggregatorError):
    """The provider offers no usable API for the operation."""

    status_code = 501

    def __init__(self, message: str):
        super().__init__(message=message, code="NOT_SUPPORTED")


# =========================
# Upstream Exceptions
# =========================

class UpstreamError(AggregatorError):
    """Upstream answered with a non-success status or an unusable body."""

    status_code = 502

    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        source: Optional[str] = None,
        code: str = "UPSTREAM_ERROR"
    ):
        details = {}
        if status is not None:
            details["status"] = status
        if source:
            details["source"] = source
        super().__init__(message=message, code=code, details=details)
        self.status = status
        self.source = source


class UpstreamAuthError(UpstreamError):
    """Upstream rejected the credentials (401/403)."""

    def __init__(self, message: str, status: Optional[int] = None, source: Optional[str] = None):
        super().__init__(message, status=status, source=source, code="UPSTREAM_AUTH")


class UpstreamRateLimited(UpstreamError):
    """Upstream answered 429."""

    def __init__(self, message: str, source: Optional[str] = None):
        super().__init__(message, status=429, source=source, code="UPSTREAM_RATE_LIMITED")


class UpstreamTimeout(UpstreamError):
    """Upstream did not answer within the configured timeout."""

    def __init__(self, message: str = TIMEOUT_MESSAGE, source: Optional[str] = None):
        super().__init__(message, source=source, code="UPSTREAM_TIMEOUT")
