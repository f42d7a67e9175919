"""
Unit Tests for the Upstream HTTP Utilities

These tests verify that:
- Requests are bounded by a timeout that surfaces a fixed message
- Bodies are decoded leniently
- Secrets never survive sanitize_message
- Numeric coercion rejects booleans, blanks and non-finite values

Run with:
    pytest tests/unit/test_http.py -v
"""

import asyncio

import pytest

from core.errors import TIMEOUT_MESSAGE, UpstreamTimeout
from core.http import (
    GENERIC_ERROR_MESSAGE,
    HttpClient,
    UpstreamResponse,
    extract_error_message,
    fetch_with_timeout,
    first_number,
    first_string,
    read_json,
    read_response_body,
    sanitize_message,
    to_number,
    to_record,
    unknown_to_error_message,
)
from tests.conftest import json_response, text_response


# ============================================
# Fake aiohttp session
# ============================================

class FakeAiohttpResponse:
    def __init__(self, status=200, body=b"{}", headers=None, url="https://example.test/x"):
        self.status = status
        self._body = body
        self.headers = headers or {"Content-Type": "application/json"}
        self.url = url

    async def read(self):
        return self._body


class FakeRequestContext:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error

    async def __aenter__(self):
        if self.error:
            raise self.error
        return self.response

    async def __aexit__(self, exc_type, exc, tb):
        return False


class FakeSession:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.requests = []

    def request(self, method, url, **kwargs):
        self.requests.append({"method": method, "url": url, **kwargs})
        return FakeRequestContext(self.response, self.error)


class TestFetchWithTimeout:
    """Tests for fetch_with_timeout"""

    @pytest.mark.asyncio
    async def test_reads_full_response(self):
        """Status, headers and body are captured into an UpstreamResponse"""
        session = FakeSession(FakeAiohttpResponse(status=201, body=b'{"a": 1}'))

        response = await fetch_with_timeout(session, "https://example.test/x", timeout_ms=2_000, source="test")

        assert response.status == 201
        assert response.ok is True
        assert response.content == b'{"a": 1}'
        assert response.headers["content-type"] == "application/json"

    @pytest.mark.asyncio
    async def test_sends_no_store_and_custom_headers(self):
        """Cache-Control: no-store is always sent alongside caller headers"""
        session = FakeSession(FakeAiohttpResponse())

        await fetch_with_timeout(
            session,
            "https://example.test/x",
            headers={"Authorization": "abc"},
            params={"ids": "a,b"},
            timeout_ms=1_500
        )

        sent = session.requests[0]
        assert sent["method"] == "GET"
        assert sent["headers"]["Cache-Control"] == "no-store"
        assert sent["headers"]["Authorization"] == "abc"
        assert sent["params"] == {"ids": "a,b"}
        assert sent["timeout"].total == 1.5

    @pytest.mark.asyncio
    async def test_timeout_maps_to_fixed_message(self):
        """A timeout raises UpstreamTimeout carrying exactly the timeout message"""
        session = FakeSession(error=asyncio.TimeoutError())

        with pytest.raises(UpstreamTimeout) as exc_info:
            await fetch_with_timeout(session, "https://example.test/slow", timeout_ms=1_000, source="slow")

        assert str(exc_info.value) == TIMEOUT_MESSAGE
        assert exc_info.value.source == "slow"
        assert unknown_to_error_message(exc_info.value) == TIMEOUT_MESSAGE


class TestHttpClient:
    """Tests for HttpClient lifecycle"""

    @pytest.mark.asyncio
    async def test_fetch_without_session_raises(self):
        client = HttpClient()

        with pytest.raises(RuntimeError):
            await client.fetch("https://example.test/x")

    @pytest.mark.asyncio
    async def test_context_manager_opens_and_closes(self):
        async with HttpClient() as client:
            assert client.session is not None
            assert not client.session.closed

        assert client.session is None


class TestBodyDecoding:
    """Tests for read_response_body and read_json"""

    def test_json_body(self):
        assert read_response_body(json_response({"ok": True})) == {"ok": True}

    def test_malformed_json_is_none(self):
        response = UpstreamResponse(status=200, headers={"Content-Type": "application/json"}, content=b"{nope")
        assert read_response_body(response) is None

    def test_text_body(self):
        assert read_response_body(text_response("plain words")) == "plain words"

    def test_empty_body_is_none(self):
        assert read_response_body(text_response("")) is None

    def test_read_json_ignores_content_type(self):
        assert read_json(text_response('[1, 2]')) == [1, 2]
        assert read_json(text_response("not json")) is None

    def test_header_lookup_is_case_insensitive(self):
        response = UpstreamResponse(status=200, headers={"Retry-After": "5"})
        assert response.headers["retry-after"] == "5"


class TestSanitizeMessage:
    """Tests for secret redaction"""

    def test_bearer_token_redacted(self):
        message = sanitize_message("401 Unauthorized: Bearer abc.def-123 was rejected")
        assert "abc.def-123" not in message
        assert "[REDACTED]" in message

    def test_oauth_fields_redacted(self):
        message = sanitize_message('{"access_token": "s3cr3t", "refresh_token": "r3fr3sh"}')
        assert "s3cr3t" not in message
        assert "r3fr3sh" not in message

    def test_api_keys_redacted(self):
        assert "k3y" not in sanitize_message("apikey=k3y")
        assert "k3y" not in sanitize_message("api_key: k3y")
        assert "k3y" not in sanitize_message("API-KEY=k3y")

    def test_query_token_redacted(self):
        message = sanitize_message("https://finnhub.io/api/v1/quote?symbol=AAPL&token=f1nnhub")
        assert "f1nnhub" not in message
        assert "symbol=AAPL" in message

    def test_prefixed_query_tokens_redacted(self):
        message = sanitize_message("https://auth.test/cb?access_token=abc123&refresh_token=def456;id_token=ghi789")
        assert "abc123" not in message
        assert "def456" not in message
        assert "ghi789" not in message
        assert message == "https://auth.test/cb?[REDACTED]&[REDACTED];[REDACTED]"

    def test_leading_token_parameter_redacted(self):
        assert sanitize_message("session_token=xyz") == "[REDACTED]"

    def test_token_inside_word_untouched(self):
        assert sanitize_message("mytokens are fine") == "mytokens are fine"

    def test_plain_text_untouched(self):
        assert sanitize_message("Service unavailable") == "Service unavailable"


class TestErrorMessages:
    """Tests for extract_error_message and unknown_to_error_message"""

    def test_string_body(self):
        assert extract_error_message("Invalid key") == "Invalid key"

    def test_mapping_key_precedence(self):
        assert extract_error_message({"message": "second", "error": "first"}) == "first"
        assert extract_error_message({"details": "third"}) == "third"

    def test_non_string_fields_ignored(self):
        assert extract_error_message({"error": {"code": 1}}) is None
        assert extract_error_message(None) is None
        assert extract_error_message([1, 2]) is None

    def test_long_messages_truncated(self):
        assert len(extract_error_message("x" * 1_000)) == 300

    def test_extracted_message_is_sanitized(self):
        assert extract_error_message({"error": "Bearer abc123 expired"}) == "[REDACTED] expired"

    def test_asyncio_timeout(self):
        assert unknown_to_error_message(asyncio.TimeoutError()) == TIMEOUT_MESSAGE

    def test_exception_text_sanitized(self):
        assert unknown_to_error_message(ValueError("bad Bearer xyz")) == "bad [REDACTED]"

    def test_non_exception_gets_generic_message(self):
        assert unknown_to_error_message("boom") == GENERIC_ERROR_MESSAGE


class TestCoercion:
    """Tests for to_number, to_record, first_number and first_string"""

    def test_to_number(self):
        assert to_number(5) == 5.0
        assert to_number("5.5") == 5.5
        assert to_number(" 2 ") == 2.0
        assert to_number(True) is None
        assert to_number("") is None
        assert to_number("abc") is None
        assert to_number(float("nan")) is None
        assert to_number("inf") is None
        assert to_number(None) is None

    def test_to_record(self):
        assert to_record({"a": 1}) == {"a": 1}
        assert to_record(7) == {"value": 7}

    def test_first_number_skips_unusable(self):
        assert first_number({"quantity": "n/a", "shares": "3"}, "quantity", "shares") == 3.0
        assert first_number({}, "quantity") is None

    def test_first_string(self):
        assert first_string({"ticker": " ", "symbol": "AAPL"}, "ticker", "symbol") == "AAPL"
        assert first_string({"conid": 265598}, "conid") == "265598"
        assert first_string({"flag": True}, "flag") is None
