from __future__ import annotations

import asyncio

import pytest

from app.domain import TransportError
from ingestion.client import MarketSourceClient


@pytest.mark.network
def test_market_source_live_fetches_markets():
    async def _go():
        async with MarketSourceClient(page_size=5, page_delay=0) as client:
            return await client.fetch_markets(max_markets=5)

    try:
        markets = asyncio.run(_go())
    except TransportError as exc:
        pytest.skip(f"Market API unavailable: {exc}")

    assert markets, "Market API returned no markets"
    for market in markets:
        assert market.market_id, "market payload missing identifier"
        assert market.question, "market payload missing question text"
        assert 0.0 <= market.probability <= 1.0
