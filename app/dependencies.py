"""
Route Dependencies

FastAPI dependencies shared by the routes in app.main. Shared resources are
created by the application lifespan and kept on `app.state`; tests replace
them through `app.dependency_overrides`.
"""

from typing import Callable

from fastapi import Depends, Request

from core.config import settings
from core.connector_registry import ConnectorRegistry
from core.http import HttpClient
from core.rate_limit import RateLimiter, RateLimitExceeded, check_rate_limit, rate_limiter


def get_http_client(request: Request) -> HttpClient:
    return request.app.state.http


def get_connector_registry(request: Request) -> ConnectorRegistry:
    return request.app.state.registry


def get_rate_limiter() -> RateLimiter:
    return rate_limiter


def rate_limited(scope: str, message: str = "Too many requests") -> Callable:
    """
    Dependency factory enforcing the rate limit policy of a scope.

    Example:
        @app.get("/crypto/prices", dependencies=[Depends(rate_limited("prices:get"))])
    """
    options = settings.rate_limit_options(scope)

    def dependency(request: Request, limiter: RateLimiter = Depends(get_rate_limiter)) -> None:
        result = check_rate_limit(request, scope, options, limiter=limiter)
        if not result.allowed:
            raise RateLimitExceeded(result, message)

    return dependency
