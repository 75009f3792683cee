from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from app.domain import InsufficientBalance, InvalidCredential, TradeTarget, ValidationError
from app.services.trading import TradeApiClient, TradeExecutor, trade_size

CLOSED_MARKETS = {"m2", "m4"}


class FakeTradeApi:
    def __init__(self, *, balance: float = 1000.0, status: int = 200, fail_transport: set[str] | None = None) -> None:
        self.balance = balance
        self.status = status
        self.fail_transport = fail_transport or set()
        self.bets: list[dict] = []
        self.auth_headers: list[str] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.auth_headers.append(request.headers.get("Authorization", ""))
        if request.url.path == "/v0/me":
            if self.status != 200:
                return httpx.Response(self.status, json={"message": "Unauthorized"})
            return httpx.Response(200, json={"username": "alice", "balance": self.balance})

        body = json.loads(request.content)
        if body["contractId"] in self.fail_transport:
            raise httpx.ConnectError("connection reset", request=request)
        self.bets.append(body)
        if body["contractId"] in CLOSED_MARKETS:
            return httpx.Response(400, json={"message": "Market is closed"})
        return httpx.Response(200, json={"betId": f"bet-{len(self.bets)}"})


def _run(api: FakeTradeApi, targets, capital, *, api_key="key-123", **executor_kwargs):
    async def _go():
        async with TradeApiClient(
            base_url="https://trade.test", transport=httpx.MockTransport(api)
        ) as client:
            executor = TradeExecutor(client, call_delay=0, **executor_kwargs)
            return await executor.execute(api_key, targets, capital)

    return asyncio.run(_go())


def _targets(count: int, allocation: float = 20.0) -> list[TradeTarget]:
    return [
        TradeTarget(
            market_id=f"m{i}",
            allocation_percent=allocation,
            question=f"Will market number {i} resolve YES before the end of 2025?",
        )
        for i in range(1, count + 1)
    ]


def test_trade_size_floors_allocation():
    assert trade_size(100, 20) == 20
    assert trade_size(99, 33.3) == 32
    assert trade_size(10, 5) == 0


def test_partial_batch_reports_per_trade_errors():
    api = FakeTradeApi()

    result = _run(api, _targets(5), 100)

    assert result.trades_executed == 3
    assert result.requested_count == 5
    assert result.message == "Executed 3 of 5 trades"
    assert len(result.errors) == 2
    assert result.errors[0] == "Will market number 2 resolve YE...: Market is closed"
    assert result.errors[1].startswith("Will market number 4 resolve YE")
    assert [bet["amount"] for bet in api.bets] == [20] * 5
    assert all(header == "Key key-123" for header in api.auth_headers)


def test_insufficient_balance_places_nothing():
    api = FakeTradeApi(balance=50)

    with pytest.raises(InsufficientBalance):
        _run(api, _targets(2), 100)

    assert api.bets == []


def test_rejected_credential_raises():
    api = FakeTradeApi(status=401)

    with pytest.raises(InvalidCredential):
        _run(api, _targets(1), 100)

    assert api.bets == []


@pytest.mark.parametrize(
    ("api_key", "targets", "capital"),
    [
        ("", _targets(1), 100),
        ("key", [], 100),
        ("key", _targets(1), 5),
        ("key", [TradeTarget(market_id="m1", allocation_percent=-5)], 100),
        ("key", [TradeTarget(market_id="m1", allocation_percent=10, outcome="MAYBE")], 100),
    ],
)
def test_invalid_requests_never_reach_the_api(api_key, targets, capital):
    api = FakeTradeApi()

    with pytest.raises(ValidationError):
        _run(api, targets, capital, api_key=api_key)

    assert api.auth_headers == []


def test_sub_unit_allocations_are_skipped_without_error():
    api = FakeTradeApi()
    targets = [
        TradeTarget(market_id="m1", allocation_percent=50),
        TradeTarget(market_id="m3", allocation_percent=0.5),
    ]

    result = _run(api, targets, 100)

    assert result.trades_executed == 1
    assert result.errors == []
    assert [bet["contractId"] for bet in api.bets] == ["m1"]


def test_transport_failure_is_recorded_and_batch_continues():
    api = FakeTradeApi(fail_transport={"m1"})
    targets = [
        TradeTarget(market_id="m1", allocation_percent=30, outcome="NO"),
        TradeTarget(market_id="m3", allocation_percent=30, outcome="NO"),
    ]

    result = _run(api, targets, 100)

    assert result.trades_executed == 1
    assert result.errors == ["m1...: connection reset"]
    assert api.bets == [{"contractId": "m3", "amount": 30, "outcome": "NO"}]
