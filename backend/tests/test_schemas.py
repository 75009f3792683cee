from __future__ import annotations

import pytest
from pydantic import ValidationError

from app.domain import ScanConfig
from app.schemas import ScanConfigIn, ScheduleCreate, TradeRequest, WatchlistCreate


def test_scan_config_in_maps_to_domain_config():
    config = ScanConfigIn(min_liquidity=50, max_markets=200, email="me@test").to_domain()

    assert config == ScanConfig(min_liquidity=50.0, max_markets=200, email="me@test")


def test_scan_config_in_rejects_negative_thresholds():
    with pytest.raises(ValidationError):
        ScanConfigIn(min_liquidity=-1)


def test_trade_request_hides_api_key():
    request = TradeRequest(api_key="secret-key", capital=100, targets=[{"market_id": "m1", "allocation_percent": 10}])

    assert "secret-key" not in repr(request)
    assert request.api_key.get_secret_value() == "secret-key"
    assert request.targets[0].outcome == "YES"


def test_watchlist_create_bounds_threshold():
    with pytest.raises(ValidationError):
        WatchlistCreate(market_id="m1", market_question="Q?", probability=0.5, alert_threshold=0)


def test_schedule_create_blank_email_becomes_none():
    assert ScheduleCreate(email="   ").email is None
    assert ScheduleCreate().interval_minutes == 60
