"""Capital-weighted batch trade placement against the external trade API."""

from __future__ import annotations

import asyncio
import math
from collections.abc import Sequence
from typing import Any

import httpx
from loguru import logger

from app.core.config import settings
from app.domain import (
    InsufficientBalance,
    InvalidCredential,
    TradeAccount,
    TradeExecutionResult,
    TradeTarget,
    TransportError,
    ValidationError,
)


class TradeRejected(Exception):
    """A single placement was refused; recorded per trade, never raised to callers."""


class TradeApiClient:
    """Async wrapper around the account and bet endpoints.

    The credential is passed per call and never stored on the client.
    """

    def __init__(
        self,
        *,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url or str(settings.trade_api_base_url)
        self.timeout = timeout or settings.http_timeout_seconds
        self.client = httpx.AsyncClient(
            base_url=self.base_url, timeout=self.timeout, transport=transport
        )

    @staticmethod
    def _headers(api_key: str) -> dict[str, str]:
        return {"Authorization": f"Key {api_key}", "Content-Type": "application/json"}

    async def verify_credential(self, api_key: str) -> TradeAccount:
        try:
            response = await self.client.get("/v0/me", headers=self._headers(api_key))
        except httpx.HTTPError as exc:
            raise TransportError(f"Trade API unreachable: {exc}") from exc
        if response.status_code in (401, 403):
            raise InvalidCredential("Invalid API key")
        if response.is_error:
            raise TransportError(f"Trade API returned {response.status_code} for account lookup")
        try:
            payload = response.json()
        except ValueError as exc:
            raise TransportError("Trade API returned invalid JSON for account lookup") from exc
        return TradeAccount(
            username=str(payload.get("username") or payload.get("name") or ""),
            balance=float(payload.get("balance") or 0.0),
        )

    async def place_trade(self, api_key: str, *, market_id: str, amount: int, outcome: str) -> dict[str, Any]:
        body = {"contractId": market_id, "amount": amount, "outcome": outcome}
        response = await self.client.post("/v0/bet", json=body, headers=self._headers(api_key))
        if response.is_error:
            raise TradeRejected(_error_message(response))
        try:
            return response.json()
        except ValueError:
            return {}

    async def aclose(self) -> None:
        await self.client.aclose()

    async def __aenter__(self) -> "TradeApiClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()


def _error_message(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        payload = None
    if isinstance(payload, dict) and payload.get("message"):
        return str(payload["message"])
    return f"HTTP {response.status_code}"


def trade_size(capital: float, allocation_percent: float) -> int:
    return math.floor(capital * allocation_percent / 100)


class TradeExecutor:
    """Validates, checks balance once, then places trades one at a time.

    Each failed placement is recorded and the batch moves on. Nothing is
    retried here; callers decide whether to resubmit individual markets.
    """

    def __init__(
        self,
        client: TradeApiClient,
        *,
        min_capital: float | None = None,
        min_unit: int | None = None,
        call_delay: float | None = None,
    ) -> None:
        self.client = client
        self.min_capital = settings.trade_min_capital if min_capital is None else min_capital
        self.min_unit = settings.trade_min_unit if min_unit is None else min_unit
        self.call_delay = settings.trade_call_delay_seconds if call_delay is None else call_delay

    def validate(self, api_key: str | None, targets: Sequence[TradeTarget], capital: float | None) -> None:
        if not api_key:
            raise ValidationError("API key is required")
        if not targets:
            raise ValidationError("At least one market must be selected")
        if capital is None or capital < self.min_capital:
            raise ValidationError(f"Minimum capital is M${self.min_capital:g}")
        for target in targets:
            if not target.market_id:
                raise ValidationError("Every target needs a market id")
            if target.allocation_percent < 0:
                raise ValidationError(
                    f"Allocation for {target.market_id} must not be negative"
                )
            if target.outcome not in ("YES", "NO"):
                raise ValidationError(f"Outcome for {target.market_id} must be YES or NO")

    async def execute(
        self, api_key: str, targets: Sequence[TradeTarget], capital: float
    ) -> TradeExecutionResult:
        self.validate(api_key, targets, capital)

        account = await self.client.verify_credential(api_key)
        if account.balance < capital:
            raise InsufficientBalance(
                f"Insufficient balance. You have M${account.balance:g}, need M${capital:g}"
            )

        logger.info("Placing up to {} trades for {} with capital {}", len(targets), account.username, capital)
        executed = 0
        errors: list[str] = []
        placed_any = False
        for target in targets:
            amount = trade_size(capital, target.allocation_percent)
            if amount < self.min_unit:
                logger.debug("Skipping {}: size {} below minimum unit", target.market_id, amount)
                continue

            if placed_any and self.call_delay:
                await asyncio.sleep(self.call_delay)
            placed_any = True

            label = target.question or target.market_id
            try:
                await self.client.place_trade(
                    api_key, market_id=target.market_id, amount=amount, outcome=target.outcome
                )
            except TradeRejected as exc:
                errors.append(f"{label[:30]}...: {exc}")
                continue
            except httpx.HTTPError as exc:
                logger.warning("Trade on {} failed in transit: {}", target.market_id, exc)
                errors.append(f"{label[:30]}...: {str(exc) or type(exc).__name__}")
                continue
            executed += 1

        result = TradeExecutionResult(
            trades_executed=executed, errors=errors, requested_count=len(targets)
        )
        logger.info(result.message)
        return result


__all__ = ["TradeApiClient", "TradeExecutor", "TradeRejected", "trade_size"]
