"""
Inbound Rate Limiting

Fixed-window request counters keyed by "<scope>:<client identifier>".

- The first request of a window creates a counter that expires window_ms later
- Requests are allowed while the counter is below max_requests
- A new window starts only once the previous one has expired
- Expired counters are swept opportunistically, at most every 5 minutes

Counters live in a RateLimitStore. The default store is an in-process dict,
so limits reset when the process restarts and are not shared between
workers. This is a courtesy throttle, not a security boundary.

Usage:
    result = check_rate_limit(request, "prices:get", settings.rate_limit_options("prices:get"))
    if not result.allowed:
        return build_rate_limit_response(result, "Rate limit exceeded for price lookups")
"""

import math
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Dict, Iterator, Mapping, Optional, Tuple

from fastapi.responses import JSONResponse

from core.logging import get_logger
from core.schemas import RateLimitOptions, RateLimitResult
from core.utils.time import current_utc_millis, millis_to_epoch_seconds


logger = get_logger(__name__)

CLEANUP_INTERVAL_MS = 5 * 60 * 1000
USER_AGENT_PREFIX_LENGTH = 80


@dataclass
class CounterEntry:
    count: int
    reset_at: int


# ============================================
# Counter Stores
# ============================================

class RateLimitStore(ABC):
    """Storage for rate limit counters."""

    @abstractmethod
    def get(self, key: str) -> Optional[CounterEntry]:
        pass

    @abstractmethod
    def set(self, key: str, entry: CounterEntry) -> None:
        pass

    @abstractmethod
    def delete(self, key: str) -> None:
        pass

    @abstractmethod
    def items(self) -> Iterator[Tuple[str, CounterEntry]]:
        """Iterate over (key, entry) pairs. Used by the expiry sweep."""


class InMemoryRateLimitStore(RateLimitStore):
    """Process-local store backed by a dict."""

    def __init__(self):
        self._counters: Dict[str, CounterEntry] = {}

    def get(self, key: str) -> Optional[CounterEntry]:
        return self._counters.get(key)

    def set(self, key: str, entry: CounterEntry) -> None:
        self._counters[key] = entry

    def delete(self, key: str) -> None:
        self._counters.pop(key, None)

    def items(self) -> Iterator[Tuple[str, CounterEntry]]:
        # Snapshot so the sweep can delete while iterating
        return iter(list(self._counters.items()))

    def __len__(self) -> int:
        return len(self._counters)


# ============================================
# Rate Limiter
# ============================================

class RateLimiter:
    """
    Fixed-window rate limiter.

    Args:
        store: Counter storage (defaults to an in-memory dict)
        clock: Callable returning the current epoch time in milliseconds
        cleanup_interval_ms: Minimum time between expiry sweeps

    Example:
        >>> limiter = RateLimiter(clock=lambda: 0)
        >>> options = RateLimitOptions(window_ms=60_000, max_requests=2)
        >>> limiter.check("prices:get", "1.2.3.4", options).remaining
        1
    """

    def __init__(
        self,
        store: Optional[RateLimitStore] = None,
        clock: Optional[Callable[[], int]] = None,
        cleanup_interval_ms: int = CLEANUP_INTERVAL_MS
    ):
        self.store = store if store is not None else InMemoryRateLimitStore()
        self.clock = clock or current_utc_millis
        self.cleanup_interval_ms = cleanup_interval_ms
        self._last_cleanup_at = 0
        self._lock = threading.Lock()

    def check(self, scope: str, client_identifier: str, options: RateLimitOptions) -> RateLimitResult:
        """
        Count one request for the client in the scope and decide whether it is allowed.

        Args:
            scope: Rate limit scope (e.g. "prices:get")
            client_identifier: Value from get_client_identifier()
            options: Window length and request budget

        Returns:
            RateLimitResult describing the decision
        """
        with self._lock:
            now = self.clock()
            self._maybe_cleanup(now)

            key = f"{scope}:{client_identifier}"
            current = self.store.get(key)

            if current is None or current.reset_at <= now:
                reset_at = now + options.window_ms
                self.store.set(key, CounterEntry(count=1, reset_at=reset_at))
                return RateLimitResult(
                    allowed=True,
                    limit=options.max_requests,
                    remaining=options.max_requests - 1,
                    reset_at=reset_at,
                    retry_after_seconds=max(1, math.ceil(options.window_ms / 1000))
                )

            retry_after_seconds = max(1, math.ceil((current.reset_at - now) / 1000))

            if current.count >= options.max_requests:
                logger.debug(f"Rate limit hit for {key} (limit {options.max_requests})")
                return RateLimitResult(
                    allowed=False,
                    limit=options.max_requests,
                    remaining=0,
                    reset_at=current.reset_at,
                    retry_after_seconds=retry_after_seconds
                )

            current.count += 1
            self.store.set(key, current)

            return RateLimitResult(
                allowed=True,
                limit=options.max_requests,
                remaining=max(0, options.max_requests - current.count),
                reset_at=current.reset_at,
                retry_after_seconds=retry_after_seconds
            )

    def _maybe_cleanup(self, now: int) -> None:
        if now - self._last_cleanup_at < self.cleanup_interval_ms:
            return

        expired = [key for key, entry in self.store.items() if entry.reset_at <= now]
        for key in expired:
            self.store.delete(key)

        if expired:
            logger.debug(f"Swept {len(expired)} expired rate limit counters")

        self._last_cleanup_at = now


# ============================================
# Request Helpers
# ============================================

def get_client_identifier(headers: Mapping[str, str]) -> str:
    """
    Identify the caller from proxy headers.

    Precedence: first x-forwarded-for entry, x-real-ip, cf-connecting-ip,
    then "ua:" plus the first 80 characters of the user agent.
    """
    forwarded_for = headers.get("x-forwarded-for")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()

    real_ip = headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()

    cloudflare_ip = headers.get("cf-connecting-ip")
    if cloudflare_ip:
        return cloudflare_ip.strip()

    user_agent = headers.get("user-agent") or "unknown"
    return f"ua:{user_agent[:USER_AGENT_PREFIX_LENGTH]}"


class RateLimitExceeded(Exception):
    """Raised by route dependencies when a request is over its scope budget."""

    def __init__(self, result: RateLimitResult, message: str = "Too many requests"):
        self.result = result
        self.message = message
        super().__init__(message)


# Process-wide limiter shared by all endpoints
rate_limiter = RateLimiter()


def check_rate_limit(
    request,
    scope: str,
    options: RateLimitOptions,
    limiter: Optional[RateLimiter] = None
) -> RateLimitResult:
    """
    Rate limit a request.

    Args:
        request: Anything with a `headers` mapping (e.g. a Starlette Request)
        scope: Rate limit scope
        options: Policy for the scope
        limiter: Limiter to use (defaults to the process-wide one)
    """
    limiter = limiter or rate_limiter
    return limiter.check(scope, get_client_identifier(request.headers), options)


def build_rate_limit_response(result: RateLimitResult, message: str = "Too many requests") -> JSONResponse:
    """
    Build the 429 response for a rejected request.

    Example body:
        {"error": "Too many requests", "retryAfterSeconds": 12}
    """
    return JSONResponse(
        status_code=429,
        content={
            "error": message,
            "retryAfterSeconds": result.retry_after_seconds,
        },
        headers={
            "Retry-After": str(result.retry_after_seconds),
            "X-RateLimit-Limit": str(result.limit),
            "X-RateLimit-Remaining": str(result.remaining),
            "X-RateLimit-Reset": str(millis_to_epoch_seconds(result.reset_at)),
        }
    )
