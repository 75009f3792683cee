from __future__ import annotations

import json
import sys
from contextlib import contextmanager
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app import models  # noqa: F401
from app.core.config import Settings
from app.db import Base
from app.domain import Market


@pytest.fixture
def sample_market_payload() -> dict[str, object]:
    path = Path(__file__).parent / "data" / "sample_market.json"
    return json.loads(path.read_text(encoding="utf-8"))


@pytest.fixture
def test_settings(tmp_path, monkeypatch) -> Settings:
    settings = Settings(
        database_url=f"sqlite:///{tmp_path/'arbitrage.db'}",
        market_fetch_delay_seconds=0,
        trade_call_delay_seconds=0,
        scan_worker_concurrency=2,
        opportunity_notification_cap=2,
        email_api_key=None,
        openai_api_key=None,
    )
    monkeypatch.setattr("app.core.config.get_settings", lambda: settings)
    monkeypatch.setattr("app.core.config.settings", settings)
    return settings


@pytest.fixture
def db_session():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(bind=engine, autoflush=True, autocommit=False, future=True)
    session = factory()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def session_factory(db_session):
    """Transactional scope over the shared in-memory session, shaped like ``session_scope``."""

    @contextmanager
    def _scope():
        try:
            yield db_session
            db_session.commit()
        except Exception:
            db_session.rollback()
            raise

    return _scope


@pytest.fixture
def make_market():
    def _make(market_id: str, question: str, probability: float, **overrides) -> Market:
        values = {
            "market_id": market_id,
            "question": question,
            "probability": probability,
            "liquidity": 500.0,
            "volume": 1000.0,
            "url": f"https://manifold.markets/m/{market_id}",
        }
        values.update(overrides)
        return Market(**values)

    return _make
