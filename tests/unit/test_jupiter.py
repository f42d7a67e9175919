"""
Unit Tests for the Jupiter Price Source

Run with:
    pytest tests/unit/test_jupiter.py -v
"""

import aiohttp
import pytest

from services.pricing.jupiter import JupiterClient
from tests.conftest import json_response


MINT_A = "So11111111111111111111111111111111111111112"
MINT_B = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"


class TestFetchPrices:
    """Tests for JupiterClient.fetch_prices"""

    @pytest.mark.asyncio
    async def test_price_keys(self, fake_http):
        """price, usdPrice and value are all understood"""
        fake_http.enqueue(json_response({"data": {MINT_A: {"price": "150.2"}, MINT_B: {"usdPrice": 1.0}}}))

        prices = await JupiterClient(fake_http, endpoints=["https://jup.test/v2"]).fetch_prices([MINT_A, MINT_B])

        assert prices == {MINT_A: 150.2, MINT_B: 1.0}
        assert fake_http.calls[0]["params"] == {"ids": f"{MINT_A},{MINT_B}"}

    @pytest.mark.asyncio
    async def test_endpoint_fallback(self, fake_http):
        fake_http.add_route("first.test", aiohttp.ClientConnectionError("down"))
        fake_http.add_route("second.test", json_response({}, status=500))
        fake_http.add_route("third.test", json_response({"data": {MINT_A: {"value": 2}}}))
        client = JupiterClient(fake_http, endpoints=["https://first.test", "https://second.test", "https://third.test"])

        prices = await client.fetch_prices([MINT_A])

        assert prices == {MINT_A: 2.0}
        assert len(fake_http.calls) == 3

    @pytest.mark.asyncio
    async def test_non_positive_and_non_solana_ignored(self, fake_http):
        fake_http.enqueue(json_response({"data": {MINT_A: {"price": 0}}}))

        prices = await JupiterClient(fake_http, endpoints=["https://jup.test"]).fetch_prices(
            [MINT_A, MINT_A, "0x" + "a" * 40, ""]
        )

        assert prices == {}
        assert fake_http.calls[0]["params"] == {"ids": MINT_A}

    @pytest.mark.asyncio
    async def test_nothing_to_price(self, fake_http):
        assert await JupiterClient(fake_http, endpoints=["https://jup.test"]).fetch_prices([]) == {}
        assert fake_http.calls == []
