"""
Upstream HTTP Utilities

Every outbound call in the application goes through this module:
- Requests are bounded by a timeout (TIMEOUT_MS, clamped)
- Responses are read fully into an UpstreamResponse
- Bodies are decoded leniently (JSON, text, or None)
- Secrets are redacted from anything that may reach a client or a log line

Usage:
    async with HttpClient() as http:
        response = await http.fetch("https://api.coingecko.com/api/v3/ping")
        body = read_response_body(response)
"""

import asyncio
import json
import math
import re
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional
from urllib.parse import urlsplit

import aiohttp

from core.config import settings
from core.errors import TIMEOUT_MESSAGE, UpstreamError, UpstreamTimeout
from core.logging import get_logger, log_api_request, log_api_response


logger = get_logger(__name__)

# Failures a best-effort price source absorbs and moves past
TRANSPORT_ERRORS = (UpstreamError, aiohttp.ClientError)

GENERIC_ERROR_MESSAGE = "Unexpected error while executing provider test."
REDACTED = "[REDACTED]"
MAX_ERROR_MESSAGE_LENGTH = 300

TOKEN_PATTERNS = [
    re.compile(r"Bearer\s+[A-Za-z0-9._~+/=-]+", re.IGNORECASE),
    re.compile(r'"access_token"\s*:\s*"[^"]+"', re.IGNORECASE),
    re.compile(r'"refresh_token"\s*:\s*"[^"]+"', re.IGNORECASE),
    re.compile(r'"id_token"\s*:\s*"[^"]+"', re.IGNORECASE),
    re.compile(r'"authorization"\s*:\s*"[^"]+"', re.IGNORECASE),
    re.compile(r"apikey\s*[=:]\s*[^\s,]+", re.IGNORECASE),
    re.compile(r"api[_-]?key\s*[=:]\s*[^\s,]+", re.IGNORECASE),
    # any *token= query or form parameter; the separator before it is kept
    re.compile(r"(?<![^\s?&;])\w*token=[^\s&;,]+", re.IGNORECASE),
]


# ============================================
# Response Container
# ============================================

@dataclass
class UpstreamResponse:
    """
    Fully-read upstream response.

    Header names are stored lower-cased so lookups are case-insensitive.
    """

    status: int
    headers: Dict[str, str] = field(default_factory=dict)
    content: bytes = b""
    url: str = ""

    def __post_init__(self):
        self.headers = {key.lower(): value for key, value in self.headers.items()}

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    @property
    def content_type(self) -> str:
        return self.headers.get("content-type", "")


# ============================================
# Request Execution
# ============================================

def get_timeout_ms() -> int:
    """Upstream timeout from settings (default 15s, clamped to 1s..60s)."""
    return settings.get_timeout_ms()


async def fetch_with_timeout(
    session: aiohttp.ClientSession,
    url: str,
    *,
    method: str = "GET",
    headers: Optional[Mapping[str, str]] = None,
    params: Optional[Mapping[str, Any]] = None,
    json_body: Any = None,
    timeout_ms: Optional[int] = None,
    source: str = "upstream"
) -> UpstreamResponse:
    """
    Issue one request bounded by a total timeout and read the whole body.

    Args:
        session: Open aiohttp session
        url: Absolute URL
        method: HTTP method
        headers: Extra request headers (Cache-Control: no-store is always sent)
        params: Query parameters
        json_body: JSON request body
        timeout_ms: Override for the configured timeout
        source: Upstream name used in log lines

    Returns:
        UpstreamResponse with status, headers and body bytes

    Raises:
        UpstreamTimeout: If the upstream did not answer in time
        aiohttp.ClientError: For any other transport failure
    """
    if timeout_ms is None:
        timeout_ms = get_timeout_ms()

    request_headers = {"Cache-Control": "no-store"}
    if headers:
        request_headers.update(headers)

    safe_url = sanitize_message(url)
    log_api_request(source, method, safe_url)
    started = time.monotonic()

    try:
        async with session.request(
            method,
            url,
            headers=request_headers,
            params=params,
            json=json_body,
            timeout=aiohttp.ClientTimeout(total=timeout_ms / 1000)
        ) as resp:
            content = await resp.read()
            response = UpstreamResponse(
                status=resp.status,
                headers=dict(resp.headers),
                content=content,
                url=str(resp.url)
            )
    except asyncio.TimeoutError as e:
        logger.warning(f"Timeout after {timeout_ms}ms on {source} {safe_url}")
        raise UpstreamTimeout(source=source) from e

    log_api_response(source, safe_url, response.status, time.monotonic() - started)
    return response


class HttpClient:
    """
    Shared async HTTP client for connectors and price sources.

    Wraps one aiohttp ClientSession. Use it as an async context manager,
    or call open()/close() from an application lifespan.

    Example:
        >>> async with HttpClient() as http:
        ...     response = await http.fetch(url, headers={"Authorization": key}, source="trading212")
        ...     print(response.status)
    """

    def __init__(self, timeout_ms: Optional[int] = None):
        self.timeout_ms = timeout_ms
        self.session: Optional[aiohttp.ClientSession] = None
        self.logger = get_logger(__name__)

    async def open(self) -> None:
        if self.session is None or self.session.closed:
            self.session = aiohttp.ClientSession()
            self.logger.debug("HttpClient session created")

    async def close(self) -> None:
        if self.session:
            await self.session.close()
            self.session = None
            self.logger.debug("HttpClient session closed")

    async def __aenter__(self):
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def fetch(
        self,
        url: str,
        *,
        method: str = "GET",
        headers: Optional[Mapping[str, str]] = None,
        params: Optional[Mapping[str, Any]] = None,
        json_body: Any = None,
        timeout_ms: Optional[int] = None,
        source: Optional[str] = None
    ) -> UpstreamResponse:
        """Run fetch_with_timeout on the shared session."""
        if not self.session:
            raise RuntimeError("Client session not initialized. Use 'async with' statement.")

        return await fetch_with_timeout(
            self.session,
            url,
            method=method,
            headers=headers,
            params=params,
            json_body=json_body,
            timeout_ms=timeout_ms if timeout_ms is not None else self.timeout_ms,
            source=source or urlsplit(url).hostname or "upstream"
        )


# ============================================
# Body Decoding
# ============================================

def read_response_body(response: UpstreamResponse) -> Any:
    """
    Decode a response body without ever raising.

    Returns:
        Parsed JSON when the content type says JSON (None if it does not parse),
        otherwise the text body, or None when the body is empty or undecodable.
    """
    if "application/json" in response.content_type:
        try:
            return json.loads(response.content.decode("utf-8"))
        except (UnicodeDecodeError, ValueError):
            return None

    try:
        text = response.content.decode("utf-8")
    except UnicodeDecodeError:
        return None

    return text or None


def read_json(response: UpstreamResponse) -> Any:
    """Parse a body as JSON regardless of content type (None if it does not parse)."""
    try:
        return json.loads(response.content.decode("utf-8"))
    except (UnicodeDecodeError, ValueError):
        return None


# ============================================
# Redaction and Error Messages
# ============================================

def sanitize_message(message: str) -> str:
    """
    Replace bearer tokens, OAuth tokens and API keys with [REDACTED].

    Example:
        >>> sanitize_message("401: Bearer abc.def-123 rejected")
        '401: [REDACTED] rejected'
    """
    for pattern in TOKEN_PATTERNS:
        message = pattern.sub(REDACTED, message)
    return message


def extract_error_message(body: Any) -> Optional[str]:
    """
    Pull a human readable error out of an upstream body.

    Strings are used as-is; mappings are searched for the first string among
    "error", "message" and "details". Results are sanitized and cut to 300
    characters.
    """
    if not body:
        return None

    if isinstance(body, str):
        return sanitize_message(body[:MAX_ERROR_MESSAGE_LENGTH])

    if isinstance(body, Mapping):
        for key in ("error", "message", "details"):
            value = body.get(key)
            if isinstance(value, str):
                return sanitize_message(value)[:MAX_ERROR_MESSAGE_LENGTH]

    return None


def unknown_to_error_message(error: Any) -> str:
    """
    Turn an exception into a message that is safe to show to a client.

    Timeouts get a fixed message; other exceptions are sanitized.
    """
    if isinstance(error, (UpstreamTimeout, asyncio.TimeoutError)):
        return TIMEOUT_MESSAGE

    if isinstance(error, BaseException):
        return sanitize_message(str(error))

    return GENERIC_ERROR_MESSAGE


# ============================================
# Payload Coercion
# ============================================

def to_number(value: Any) -> Optional[float]:
    """
    Finite float from a number or numeric string, else None.

    Example:
        >>> to_number("5.5")
        5.5
        >>> to_number(True) is None
        True
    """
    if isinstance(value, bool):
        return None

    if isinstance(value, (int, float)):
        return float(value) if math.isfinite(value) else None

    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            parsed = float(text)
        except ValueError:
            return None
        return parsed if math.isfinite(parsed) else None

    return None


def to_record(value: Any) -> Dict[str, Any]:
    """Mappings pass through; anything else is wrapped as {"value": value}."""
    if isinstance(value, Mapping):
        return dict(value)

    return {"value": value}


def first_number(record: Mapping[str, Any], *keys: str) -> Optional[float]:
    """First key whose value coerces to a finite number."""
    for key in keys:
        number = to_number(record.get(key))
        if number is not None:
            return number
    return None


def first_string(record: Mapping[str, Any], *keys: str) -> Optional[str]:
    """First key holding a non-empty string (numbers are stringified)."""
    for key in keys:
        value = record.get(key)
        if isinstance(value, bool):
            continue
        if isinstance(value, (int, float)):
            return str(value)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None
