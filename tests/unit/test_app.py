"""
Unit Tests for the REST API

These tests drive the FastAPI routes through TestClient without running the
lifespan: the HTTP client, connector registry and rate limiter are replaced
through dependency overrides.

Run with:
    pytest tests/unit/test_app.py -v
"""

import aiohttp
import pytest
from fastapi.testclient import TestClient

from app.dependencies import get_connector_registry, get_http_client, get_rate_limiter
from app.main import app
from core.config import settings
from core.connector_registry import ConnectorRegistry
from core.rate_limit import RateLimiter
from tests.conftest import FakeHttpClient, json_response


SOL_MINT = "So11111111111111111111111111111111111111112"
TOKEN = "0x" + "a" * 40


@pytest.fixture
def client(fake_http: FakeHttpClient):
    limiter = RateLimiter(clock=lambda: 0)
    registry = ConnectorRegistry(fake_http)

    app.dependency_overrides[get_http_client] = lambda: fake_http
    app.dependency_overrides[get_connector_registry] = lambda: registry
    app.dependency_overrides[get_rate_limiter] = lambda: limiter

    yield TestClient(app)

    app.dependency_overrides.clear()


# ============================================
# System and Provider Endpoints
# ============================================

class TestSystemEndpoints:
    """Tests for /, /health and /providers"""

    def test_root(self, client):
        response = client.get("/")

        assert response.status_code == 200
        assert response.json()["providers"] == ["trading212", "interactive_brokers", "revolut", "trade_republic"]

    def test_health(self, client):
        body = client.get("/health").json()

        assert body["status"] == "healthy"
        assert "timestamp" in body

    def test_providers(self, client):
        providers = client.get("/providers").json()["providers"]

        assert [p["id"] for p in providers] == ["trading212", "interactive_brokers", "revolut", "trade_republic"]
        assert providers[2]["support"] == "partial"


class TestProviderTest:
    """Tests for POST /providers/test"""

    def test_static_provider(self, client, fake_http):
        response = client.post("/providers/test", json={"providerId": "revolut"})

        assert response.status_code == 200
        body = response.json()
        assert body["provider_id"] == "revolut"
        assert body["connection_status"] == "limited"
        assert body["holdings"] == []
        assert fake_http.calls == []

    def test_invalid_provider_id(self, client):
        response = client.post("/providers/test", json={"providerId": "robinhood"})

        assert response.status_code == 400
        assert response.json() == {
            "error": "Invalid providerId. Expected one of: trading212, interactive_brokers, revolut, trade_republic."
        }

    def test_invalid_json(self, client):
        response = client.post("/providers/test", content=b"{not json", headers={"Content-Type": "application/json"})

        assert response.status_code == 400
        assert response.json() == {"error": "Invalid JSON body"}

    def test_invalid_account_id(self, client):
        response = client.post(
            "/providers/test",
            json={"providerId": "interactive_brokers", "options": {"ibkrAccountId": "U" * 65}}
        )

        assert response.status_code == 400
        assert response.json() == {"error": "Invalid ibkrAccountId"}

    def test_rate_limited(self, client):
        for _ in range(10):
            assert client.post("/providers/test", json={"providerId": "revolut"}).status_code == 200

        response = client.post("/providers/test", json={"providerId": "revolut"})

        assert response.status_code == 429
        assert response.json() == {"error": "Rate limit exceeded for provider tests", "retryAfterSeconds": 60}
        assert response.headers["Retry-After"] == "60"
        assert response.headers["X-RateLimit-Remaining"] == "0"

    def test_scopes_are_independent(self, client):
        for _ in range(10):
            client.post("/providers/test", json={"providerId": "revolut"})

        assert client.post("/providers/test", json={"providerId": "revolut"}).status_code == 429
        assert client.get("/health").status_code == 200


# ============================================
# Price Endpoints
# ============================================

class TestCryptoPrices:
    """Tests for GET and POST /crypto/prices"""

    def test_symbols(self, client, fake_http):
        fake_http.add_route("/simple/price", json_response({"ethereum": {"usd": 3000}}))

        response = client.get("/crypto/prices", params={"symbols": "ETH"})

        assert response.status_code == 200
        assert response.json()["prices"]["ETH"]["usd"] == 3000.0

    def test_missing_parameters(self, client):
        response = client.get("/crypto/prices")

        assert response.status_code == 400
        assert response.json() == {"error": "Symbols or mints parameter is required"}

    def test_too_many_symbols_makes_no_upstream_call(self, client, fake_http):
        response = client.get("/crypto/prices", params={"symbols": ",".join(["ETH"] * 81)})

        assert response.status_code == 400
        assert fake_http.calls == []

    def test_over_long_mint_makes_no_upstream_call(self, client, fake_http):
        response = client.get("/crypto/prices", params={"mints": "m" * 5000, "chain": "solana"})

        assert response.status_code == 400
        assert response.json() == {"error": "Invalid mint parameter"}
        assert fake_http.calls == []

    def test_mints(self, client, fake_http):
        fake_http.add_route("/token-pairs/v1/solana/", json_response([{"priceUsd": "150"}]))

        response = client.get("/crypto/prices", params={"mints": SOL_MINT, "chain": "solana"})

        assert response.json()["prices"][SOL_MINT]["usd"] == 150.0

    def test_coingecko_failure_is_502(self, client, fake_http):
        fake_http.add_route("/simple/price", json_response({}, status=500))

        response = client.get("/crypto/prices", params={"symbols": "ETH"})

        assert response.status_code == 502
        assert response.json()["error"] == "Failed to fetch prices"
        assert "details" in response.json()

    def test_token_price(self, client, fake_http):
        fake_http.add_route("/token-pairs/v1/base/", json_response([
            {"priceUsd": "2.5", "priceNative": "0.001", "pairAddress": "0xpair", "dexId": "aerodrome",
             "liquidity": {"usd": 50_000}, "volume": {"h24": 1200}}
        ]))

        response = client.post("/crypto/prices", json={"chainId": "base", "tokenAddress": TOKEN})

        assert response.status_code == 200
        body = response.json()
        assert body["found"] is True
        assert body["price"] == {"usd": 2.5, "native": 0.001}
        assert body["dex"] == "aerodrome"

    def test_token_price_not_found(self, client, fake_http):
        fake_http.add_route("/token-pairs/", json_response([]))

        response = client.post("/crypto/prices", json={"chainId": "base", "tokenAddress": TOKEN})

        assert response.json() == {"price": None, "found": False}

    def test_token_price_missing_fields(self, client):
        response = client.post("/crypto/prices", json={"chainId": "base"})

        assert response.status_code == 400
        assert response.json() == {"error": "chainId and tokenAddress are required"}

    def test_token_price_transport_failure(self, client, fake_http):
        fake_http.add_route("/token-pairs/", aiohttp.ClientConnectionError("connection refused"))

        response = client.post("/crypto/prices", json={"chainId": "base", "tokenAddress": TOKEN})

        assert response.status_code == 502
        assert response.json()["error"] == "Failed to fetch price"


class TestBatchPrices:
    """Tests for POST /crypto/prices/batch"""

    def test_batch(self, client, fake_http):
        fake_http.add_route("/token-pairs/", json_response([]))

        response = client.post(
            "/crypto/prices/batch",
            json={"tokens": [{"contractAddress": TOKEN}], "chain": "base"}
        )

        assert response.status_code == 200
        assert response.json() == {"prices": {TOKEN: None}, "chain": "base"}

    def test_tokens_required(self, client):
        response = client.post("/crypto/prices/batch", json={"tokens": []})

        assert response.status_code == 400
        assert response.json() == {"error": "Tokens array is required"}

    def test_malformed_token_does_not_fail_the_batch(self, client, fake_http):
        fake_http.add_route("/token-pairs/", json_response([]))
        other = "0x" + "b" * 40

        response = client.post(
            "/crypto/prices/batch",
            json={"tokens": [{"contractAddress": TOKEN}, {"contractAddress": other, "symbol": "s" * 58}], "chain": "base"}
        )

        assert response.status_code == 200
        assert response.json() == {"prices": {TOKEN: None, other: None}, "chain": "base"}
        assert all(other not in url for url in fake_http.urls)

    def test_only_malformed_tokens(self, client, fake_http):
        response = client.post("/crypto/prices/batch", json={"tokens": [{"symbol": "s" * 58}, "B"]})

        assert response.status_code == 200
        assert response.json() == {"prices": {"S" * 58: None}, "chain": None}
        assert fake_http.calls == []

    def test_too_many_tokens_makes_no_upstream_call(self, client, fake_http):
        response = client.post("/crypto/prices/batch", json={"tokens": [{"contractAddress": TOKEN}] * 81})

        assert response.status_code == 400
        assert response.json() == {"error": "Too many tokens requested. Maximum allowed is 80."}
        assert fake_http.calls == []


class TestAssetPrice:
    """Tests for GET /assets/price"""

    def test_symbol_and_type_required(self, client):
        for params in ({}, {"symbol": "AAPL"}, {"type": "STOCK"}, {"symbol": " ", "type": "STOCK"}):
            response = client.get("/assets/price", params=params)
            assert response.status_code == 400
            assert response.json() == {"error": "Symbol and type are required"}

    def test_crypto_asset(self, client, fake_http):
        fake_http.add_route("/simple/price", json_response({"bitcoin": {"usd": 60_000, "eur": 55_000}}))

        body = client.get("/assets/price", params={"symbol": "btc", "type": "crypto"}).json()

        assert body == {
            "symbol": "BTC",
            "type": "CRYPTO",
            "price": {"usd": 60_000.0, "eur": 55_000.0},
            "found": True,
        }

    def test_unpriced_type(self, client, fake_http):
        body = client.get("/assets/price", params={"symbol": "HOUSE", "type": "REAL_ESTATE"}).json()

        assert body["found"] is False
        assert body["price"] is None
        assert fake_http.calls == []


# ============================================
# Wallet Endpoints
# ============================================

class TestWalletEndpoints:
    """Tests for GET /crypto/wallet/solana and /crypto/wallet/evm"""

    def test_solana_address_required(self, client, fake_http):
        response = client.get("/crypto/wallet/solana")

        assert response.status_code == 400
        assert response.json() == {"error": "Wallet address is required"}
        assert fake_http.calls == []

    def test_solana_invalid_address(self, client):
        response = client.get("/crypto/wallet/solana", params={"address": TOKEN})

        assert response.status_code == 400
        assert response.json() == {"error": "Invalid Solana wallet address format"}

    def test_solana_wallet(self, client, fake_http, monkeypatch):
        monkeypatch.setattr(settings, "solana_rpc_url", "http://rpc.test")
        fake_http.add_route(
            "rpc.test",
            json_response({"jsonrpc": "2.0", "id": 1, "result": {"value": 1_000_000_000}}),
            json_response({"jsonrpc": "2.0", "id": 2, "result": {"value": []}})
        )

        response = client.get("/crypto/wallet/solana", params={"address": SOL_MINT})

        assert response.status_code == 200
        body = response.json()
        assert body["native_balance"]["balance"] == 1.0
        assert body["tokens"] == []
        assert body["token_count"] == 0

    def test_solana_rpc_failure_is_502(self, client, fake_http, monkeypatch):
        monkeypatch.setattr(settings, "solana_rpc_url", "http://rpc.test")
        fake_http.add_route("rpc.test", json_response({}, status=500))

        response = client.get("/crypto/wallet/solana", params={"address": SOL_MINT})

        assert response.status_code == 502
        assert response.json()["error"] == "Failed to fetch wallet data"

    def test_evm_invalid_address(self, client, fake_http):
        response = client.get("/crypto/wallet/evm", params={"address": "0x123"})

        assert response.status_code == 400
        assert response.json() == {"error": "Invalid wallet address format"}
        assert fake_http.calls == []

    def test_evm_unsupported_chain(self, client, fake_http):
        response = client.get("/crypto/wallet/evm", params={"address": TOKEN, "chain": "fantom"})

        assert response.status_code == 400
        assert response.json()["error"].startswith("Unsupported chain: fantom")
        assert fake_http.calls == []

    def test_evm_single_chain(self, client, fake_http):
        fake_http.add_route("action=balance", json_response({"result": "2000000000000000000"}))
        fake_http.add_route("action=tokenlist", json_response({"result": "No tokens found"}))

        response = client.get("/crypto/wallet/evm", params={"address": TOKEN, "chain": "arbitrum"})

        assert response.status_code == 200
        body = response.json()
        assert body["chain"] == "arbitrum"
        assert body["native_balance"]["balance"] == 2.0
        assert body["tokens"][0]["contract_address"] == "native:arbitrum"
        assert body["chain_results"][0]["status"] == "ok"

    def test_evm_every_chain_failed(self, client, fake_http):
        fake_http.add_route("", json_response({}, status=503))

        response = client.get("/crypto/wallet/evm", params={"address": TOKEN, "chain": "polygon"})

        assert response.status_code == 502
        body = response.json()
        assert body["error"] == "Failed to fetch wallet data on all requested chains"
        assert body["chain_results"][0]["chain"] == "polygon"
        assert body["chain_results"][0]["status"] == "error"
