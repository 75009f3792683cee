from __future__ import annotations

import asyncio
from typing import Any, Protocol

import httpx
from loguru import logger

from app.core.config import settings
from app.domain import Market, TransportError

from .normalize import normalize_market


class MarketSource(Protocol):
    """Read-only provider of market snapshots."""

    async def fetch_markets(self, *, max_markets: int | None = None) -> list[Market]:
        ...

    async def fetch_market(self, market_id: str) -> Market:
        ...


class MarketSourceClient:
    """Async wrapper around the public market search and detail endpoints."""

    def __init__(
        self,
        *,
        base_url: str | None = None,
        search_path: str | None = None,
        detail_path: str | None = None,
        page_size: int | None = None,
        max_markets: int | None = None,
        page_delay: float | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url or str(settings.market_api_base_url)
        self.search_path = search_path or settings.market_search_path
        self.detail_path = detail_path or settings.market_detail_path
        self.page_size = page_size or settings.market_page_size
        self.max_markets = max_markets or settings.market_max_markets
        self.page_delay = settings.market_fetch_delay_seconds if page_delay is None else page_delay
        self.timeout = timeout or settings.http_timeout_seconds
        self.client = httpx.AsyncClient(
            base_url=self.base_url, timeout=self.timeout, transport=transport
        )

    def _build_params(self, *, offset: int, limit: int) -> dict[str, Any]:
        return {
            "limit": limit,
            "offset": offset,
            "filter": "open",
            "sort": "liquidity",
        }

    async def _get_json(self, path: str, params: dict[str, Any] | None = None) -> Any:
        try:
            response = await self.client.get(path, params=params)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as exc:
            raise TransportError(
                f"Market API returned {exc.response.status_code} for {path}"
            ) from exc
        except httpx.HTTPError as exc:
            raise TransportError(f"Market API unreachable ({path}): {exc}") from exc
        except ValueError as exc:
            raise TransportError(f"Market API returned invalid JSON for {path}") from exc

    async def fetch_page(self, *, offset: int, limit: int | None = None) -> list[dict[str, Any]]:
        params = self._build_params(offset=offset, limit=limit or self.page_size)
        logger.info("Market source GET {} params={}", self.search_path, params)
        payload = await self._get_json(self.search_path, params=params)
        if isinstance(payload, list):
            return [item for item in payload if isinstance(item, dict)]
        if isinstance(payload, dict):
            candidates = (payload.get("markets"), payload.get("data"))
            return next((value for value in candidates if isinstance(value, list)), [])
        return []

    async def fetch_markets(self, *, max_markets: int | None = None) -> list[Market]:
        limit = max_markets or self.max_markets
        markets: list[Market] = []
        seen: set[str] = set()
        offset = 0
        while len(markets) < limit:
            page_limit = min(self.page_size, limit - len(markets))
            raw_markets = await self.fetch_page(offset=offset, limit=page_limit)
            if not raw_markets:
                break
            for raw_market in raw_markets:
                market = normalize_market(raw_market)
                if market.market_id in seen:
                    continue
                seen.add(market.market_id)
                markets.append(market)
            if len(raw_markets) < page_limit:
                break
            offset += len(raw_markets)
            if self.page_delay:
                await asyncio.sleep(self.page_delay)
        logger.info("Fetched {} markets from {}", len(markets), self.base_url)
        return markets[:limit]

    async def fetch_market(self, market_id: str) -> Market:
        path = self.detail_path.format(market_id=market_id)
        payload = await self._get_json(path)
        if not isinstance(payload, dict):
            raise TransportError(f"Unexpected payload for market {market_id}")
        return normalize_market(payload)

    async def aclose(self) -> None:
        await self.client.aclose()

    async def __aenter__(self) -> "MarketSourceClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()


__all__ = ["MarketSource", "MarketSourceClient"]
