"""
Unit Tests for the DexScreener Price Source

These tests verify:
- The most liquid pair is chosen, the first one winning ties
- Mint lookups are capped, paced and silently skip failures
- Single-address lookups raise on upstream errors and report not-found
- Address shapes are checked per chain

Run with:
    pytest tests/unit/test_dexscreener.py -v
"""

import aiohttp
import pytest

from core.errors import UpstreamError
from services.pricing.dexscreener import (
    DexScreenerClient,
    extract_dex_pairs,
    is_dex_compatible_address,
    pick_best_dex_pair,
)
from tests.conftest import json_response


BASE_URL = "https://dex.test"

SOL_MINT = "So11111111111111111111111111111111111111112"
EVM_TOKEN = "0x" + "a" * 40


def pair(price_usd=None, liquidity=None, price_native=None, **extra):
    data = dict(extra)
    if price_usd is not None:
        data["priceUsd"] = price_usd
    if price_native is not None:
        data["priceNative"] = price_native
    if liquidity is not None:
        data["liquidity"] = {"usd": liquidity}
    return data


class RecordingSleep:
    def __init__(self):
        self.delays = []

    async def __call__(self, seconds):
        self.delays.append(seconds)


def make_client(http, sleep=None):
    return DexScreenerClient(http, base_url=BASE_URL, sleep=sleep or RecordingSleep())


class TestPairSelection:
    """Tests for pick_best_dex_pair and extract_dex_pairs"""

    def test_highest_liquidity_first_tie_wins(self):
        pairs = [pair(liquidity=10), pair(liquidity=500, dexId="first"), pair(liquidity=500, dexId="second")]
        assert pick_best_dex_pair(pairs) is pairs[1]

    def test_missing_liquidity_counts_as_zero(self):
        pairs = [pair(dexId="none"), pair(liquidity="25", dexId="some")]
        assert pick_best_dex_pair(pairs)["dexId"] == "some"

    def test_empty(self):
        assert pick_best_dex_pair([]) is None

    def test_extract_pairs(self):
        assert extract_dex_pairs([1]) == [1]
        assert extract_dex_pairs({"pairs": [2]}) == [2]
        assert extract_dex_pairs({"pairs": None}) == []
        assert extract_dex_pairs("x") == []


class TestAddressShapes:
    """Tests for is_dex_compatible_address"""

    def test_solana(self):
        assert is_dex_compatible_address(SOL_MINT, "solana")
        assert not is_dex_compatible_address(EVM_TOKEN, "solana")

    def test_tron(self):
        assert is_dex_compatible_address("T" + "A" * 33, "tron")
        assert is_dex_compatible_address("41" + "b" * 40, "tron")
        assert not is_dex_compatible_address(EVM_TOKEN, "tron")

    def test_evm(self):
        assert is_dex_compatible_address(EVM_TOKEN, "base")
        assert not is_dex_compatible_address(SOL_MINT, "ethereum")


class TestMintPrices:
    """Tests for fetch_mint_prices"""

    @pytest.mark.asyncio
    async def test_prices_by_mint(self, fake_http):
        fake_http.enqueue(json_response([pair("150.5", 1_000), pair("149", 5_000)]))
        sleep = RecordingSleep()

        prices = await make_client(fake_http, sleep).fetch_mint_prices([SOL_MINT])

        assert prices[SOL_MINT].usd == 149.0
        assert prices[SOL_MINT].mint == SOL_MINT
        assert fake_http.urls == [f"{BASE_URL}/token-pairs/v1/solana/{SOL_MINT}"]
        assert sleep.delays == [0.15]

    @pytest.mark.asyncio
    async def test_only_first_ten_mints(self, fake_http):
        mints = [f"mint{i}" for i in range(15)]
        fake_http.add_route("/token-pairs/", json_response([pair("1", 1)]))
        sleep = RecordingSleep()

        prices = await make_client(fake_http, sleep).fetch_mint_prices(mints)

        assert len(fake_http.calls) == 10
        assert list(prices) == mints[:10]
        assert len(sleep.delays) == 10

    @pytest.mark.asyncio
    async def test_failures_silently_omitted(self, fake_http):
        """Failed or unpriced mints are absent from the result"""
        fake_http.enqueue(
            json_response({}, status=500),
            aiohttp.ClientConnectionError("reset"),
            json_response([pair(liquidity=5)]),
            json_response([pair("2", 5)])
        )

        prices = await make_client(fake_http).fetch_mint_prices(["a", "b", "c", "d"])

        assert list(prices) == ["d"]


class TestTokenPrice:
    """Tests for fetch_token_price"""

    @pytest.mark.asyncio
    async def test_found(self, fake_http):
        fake_http.enqueue(json_response({"pairs": [
            pair("1.01", 50_000, "0.0003", pairAddress="0xpair", dexId="uniswap", volume={"h24": 1234}),
            pair("0.9", 100, "0.0002"),
        ]}))

        quote = await make_client(fake_http).fetch_token_price("ethereum", EVM_TOKEN)

        assert quote.to_payload() == {
            "price": {"usd": 1.01, "native": 0.0003},
            "pair": "0xpair",
            "dex": "uniswap",
            "liquidity": 50_000.0,
            "volume_24h": 1234.0,
            "found": True,
            "source": "dexscreener",
        }

    @pytest.mark.asyncio
    async def test_no_pairs(self, fake_http):
        fake_http.enqueue(json_response([]))

        quote = await make_client(fake_http).fetch_token_price("ethereum", EVM_TOKEN)

        assert quote.to_payload() == {"price": None, "found": False}

    @pytest.mark.asyncio
    async def test_best_pair_without_native_price(self, fake_http):
        fake_http.enqueue(json_response([pair("1.0", 100)]))

        quote = await make_client(fake_http).fetch_token_price("ethereum", EVM_TOKEN)

        assert quote.found is False

    @pytest.mark.asyncio
    async def test_upstream_error_raises(self, fake_http):
        fake_http.enqueue(json_response({}, status=404))

        with pytest.raises(UpstreamError) as exc_info:
            await make_client(fake_http).fetch_token_price("ethereum", EVM_TOKEN)

        assert exc_info.value.message == "DexScreener API error: 404"


class TestBestQuote:
    """Tests for fetch_best_quote"""

    @pytest.mark.asyncio
    async def test_quote_fields(self, fake_http):
        fake_http.enqueue(json_response([pair("2.5", 9_000, "0.001", dexId="raydium")]))

        quote = await make_client(fake_http).fetch_best_quote("solana", SOL_MINT)

        assert quote.price_usd == 2.5
        assert quote.liquidity_usd == 9_000.0
        assert quote.dex_id == "raydium"
        assert quote.low_liquidity is True

    @pytest.mark.asyncio
    async def test_hyperevm_tries_legacy_chain_id(self, fake_http):
        fake_http.enqueue(json_response([]), json_response([pair("3", 20_000)]))

        quote = await make_client(fake_http).fetch_best_quote("hyperevm", EVM_TOKEN)

        assert quote.price_usd == 3.0
        assert fake_http.urls == [
            f"{BASE_URL}/token-pairs/v1/hyperevm/{EVM_TOKEN}",
            f"{BASE_URL}/token-pairs/v1/hyperliquid/{EVM_TOKEN}",
        ]

    @pytest.mark.asyncio
    async def test_never_raises(self, fake_http):
        fake_http.enqueue(aiohttp.ClientConnectionError("down"))

        assert await make_client(fake_http).fetch_best_quote("ethereum", EVM_TOKEN) is None
