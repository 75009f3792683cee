from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Annotated

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from loguru import logger
from sqlalchemy.orm import Session

from . import crud, schemas
from .core.config import settings
from .db import get_db, init_db
from .domain import (
    ArbitrageError,
    ConfidenceLabel,
    DuplicateEntry,
    InsufficientBalance,
    InvalidCredential,
    InvalidTransition,
    Market,
    MarketPair,
    NotFound,
    TradeAction,
    TradeTarget,
    TransportError,
    ValidationError,
)
from .repositories import FeedbackRepository
from .services.notifications import NotificationDispatcher
from .services.pair_review import PairReviewer
from .services.trading import TradeApiClient, TradeExecutor
from .services.watchlist import WatchlistTracker
from ingestion.client import MarketSource, MarketSourceClient
from pipelines.scan_run import ScanOrchestrator

app = FastAPI(title="Arbitrage Scanner API", version="0.1.0", debug=settings.debug)

_ERROR_STATUS: dict[type[ArbitrageError], int] = {
    ValidationError: 400,
    InvalidCredential: 400,
    InsufficientBalance: 400,
    DuplicateEntry: 409,
    InvalidTransition: 409,
    NotFound: 404,
    TransportError: 502,
}


@app.on_event("startup")
def on_startup() -> None:
    """Initialize database connections when the API boots."""

    init_db()


@app.exception_handler(ArbitrageError)
async def arbitrage_error_handler(request: Request, exc: ArbitrageError) -> JSONResponse:
    status_code = next(
        (code for error_type, code in _ERROR_STATUS.items() if isinstance(exc, error_type)), 500
    )
    if status_code >= 500:
        logger.warning("{} {} failed: {}", request.method, request.url.path, exc)
    return JSONResponse(status_code=status_code, content={"detail": str(exc)})


@app.get("/healthz", tags=["system"])
def healthcheck() -> dict[str, str]:
    """Basic readiness check consumed by infrastructure monitors."""

    return {"status": "ok"}


def _user_id(x_user_id: Annotated[str | None, Header()] = None) -> str:
    """Opaque identity forwarded by the authentication layer."""

    if not x_user_id:
        raise HTTPException(status_code=401, detail="Missing X-User-Id header")
    return x_user_id


UserId = Annotated[str, Depends(_user_id)]
DbSession = Annotated[Session, Depends(get_db)]


def _scan_orchestrator() -> ScanOrchestrator:
    return ScanOrchestrator()


async def _market_source() -> AsyncIterator[MarketSource]:
    client = MarketSourceClient()
    try:
        yield client
    finally:
        await client.aclose()


async def _trade_executor() -> AsyncIterator[TradeExecutor]:
    client = TradeApiClient()
    try:
        yield TradeExecutor(client)
    finally:
        await client.aclose()


def _pair_reviewer() -> PairReviewer:
    return PairReviewer()


# ----------------------------------------------------------------------
# Scans


@app.post("/scans", response_model=schemas.ScanRunDetail, tags=["scans"])
async def run_scan(
    user_id: UserId,
    db: DbSession,
    config: schemas.ScanConfigIn | None = None,
    orchestrator: ScanOrchestrator = Depends(_scan_orchestrator),
):
    """Run a scan now and return the recorded run."""

    outcome = await orchestrator.run(user_id, config.to_domain() if config else None)
    run = crud.get_scan_run(db, user_id, outcome.run_id)
    if run is None:
        raise HTTPException(status_code=404, detail="Scan run not found")
    return run


@app.get("/scans", response_model=schemas.ScanRunList, tags=["scans"])
def list_scans(user_id: UserId, db: DbSession, limit: Annotated[int, Query(ge=1, le=200)] = 50):
    runs = crud.list_scan_runs(db, user_id, limit=limit)
    return schemas.ScanRunList(total=len(runs), items=runs)


@app.get("/scans/stats", response_model=schemas.ScanStats, tags=["scans"])
def scan_stats(user_id: UserId, db: DbSession):
    """Totals across completed scans only."""

    return crud.scan_history_stats(db, user_id)


@app.get("/scans/{run_id}", response_model=schemas.ScanRunDetail, tags=["scans"])
def get_scan(run_id: str, user_id: UserId, db: DbSession):
    run = crud.get_scan_run(db, user_id, run_id)
    if run is None:
        raise HTTPException(status_code=404, detail="Scan run not found")
    return run


# ----------------------------------------------------------------------
# Notifications


@app.get("/notifications", response_model=schemas.NotificationList, tags=["notifications"])
def list_notifications(
    user_id: UserId, db: DbSession, limit: Annotated[int, Query(ge=1, le=200)] = 50
):
    dispatcher = NotificationDispatcher(db)
    return schemas.NotificationList(
        unread_count=dispatcher.unread_count(user_id),
        items=dispatcher.list(user_id, limit=limit),
    )


@app.post(
    "/notifications/{notification_id}/read",
    response_model=schemas.Notification,
    tags=["notifications"],
)
def mark_notification_read(notification_id: str, user_id: UserId, db: DbSession):
    """Idempotent: marking an already-read notification succeeds."""

    notification = NotificationDispatcher(db).mark_read(user_id, notification_id)
    db.commit()
    return notification


@app.post("/notifications/read-all", response_model=schemas.MarkAllReadResult, tags=["notifications"])
def mark_all_notifications_read(user_id: UserId, db: DbSession):
    updated = NotificationDispatcher(db).mark_all_read(user_id)
    db.commit()
    return schemas.MarkAllReadResult(updated=updated)


# ----------------------------------------------------------------------
# Watchlist


@app.get("/watchlist", response_model=list[schemas.WatchlistEntry], tags=["watchlist"])
def list_watchlist(user_id: UserId, db: DbSession):
    return WatchlistTracker(db).list(user_id)


@app.post("/watchlist", response_model=schemas.WatchlistEntry, status_code=201, tags=["watchlist"])
def add_to_watchlist(payload: schemas.WatchlistCreate, user_id: UserId, db: DbSession):
    market = Market(
        market_id=payload.market_id,
        question=payload.market_question,
        probability=payload.probability,
        liquidity=payload.liquidity,
        url=payload.market_url,
    )
    entry = WatchlistTracker(db).add(
        user_id, market, notes=payload.notes, alert_threshold=payload.alert_threshold
    )
    db.commit()
    return entry


@app.get(
    "/watchlist/contains/{market_id}", response_model=schemas.WatchlistContains, tags=["watchlist"]
)
def watchlist_contains(market_id: str, user_id: UserId, db: DbSession):
    return schemas.WatchlistContains(
        market_id=market_id, is_watched=WatchlistTracker(db).is_watched(user_id, market_id)
    )


@app.post("/watchlist/refresh", response_model=schemas.WatchlistRefreshResult, tags=["watchlist"])
async def refresh_watchlist(
    user_id: UserId,
    db: DbSession,
    source: MarketSource = Depends(_market_source),
):
    """Re-quote every watched market and raise drift alerts."""

    summary = await WatchlistTracker(db, source=source).refresh(user_id)
    db.commit()
    return schemas.WatchlistRefreshResult(
        refreshed=summary.refreshed, alerts=summary.alerts, failures=summary.failures
    )


@app.patch("/watchlist/{entry_id}", response_model=schemas.WatchlistEntry, tags=["watchlist"])
def update_watchlist_notes(
    entry_id: str, payload: schemas.WatchlistNotesUpdate, user_id: UserId, db: DbSession
):
    entry = WatchlistTracker(db).update_notes(user_id, entry_id, payload.notes)
    db.commit()
    return entry


@app.delete("/watchlist/{entry_id}", status_code=204, tags=["watchlist"])
def remove_from_watchlist(entry_id: str, user_id: UserId, db: DbSession) -> None:
    WatchlistTracker(db).remove(user_id, entry_id)
    db.commit()


# ----------------------------------------------------------------------
# Feedback and review


@app.post("/feedback", response_model=schemas.Feedback, status_code=201, tags=["feedback"])
def submit_feedback(payload: schemas.FeedbackCreate, user_id: UserId, db: DbSession):
    """Store a human label; it only affects scans started afterwards."""

    record = crud.record_feedback(db, user_id, **payload.model_dump())
    db.commit()
    return record


def _review_pair(pair: schemas.ReviewPair) -> MarketPair:
    market1 = Market(
        market_id=pair.market1.id,
        question=pair.market1.question,
        probability=pair.market1.probability,
        liquidity=pair.market1.liquidity,
    )
    market2 = Market(
        market_id=pair.market2.id,
        question=pair.market2.question,
        probability=pair.market2.probability,
        liquidity=pair.market2.liquidity,
    )
    return MarketPair(
        market1=market1,
        market2=market2,
        expected_profit=pair.expected_profit,
        gap=abs(market1.probability - market2.probability),
        label=ConfidenceLabel.LOW,
        action1=TradeAction.BUY_YES,
        action2=TradeAction.BUY_NO,
        match_reason=pair.match_reason,
    )


@app.post("/opportunities/review", response_model=schemas.ReviewResponse, tags=["feedback"])
def review_opportunities(
    payload: schemas.ReviewRequest,
    user_id: UserId,
    db: DbSession,
    reviewer: PairReviewer = Depends(_pair_reviewer),
):
    examples = FeedbackRepository(db).few_shot(user_id)
    reviews = reviewer.review([_review_pair(pair) for pair in payload.pairs], examples)
    return schemas.ReviewResponse(results=[review.to_dict() for review in reviews])


# ----------------------------------------------------------------------
# Trades


@app.post("/trades/execute", response_model=schemas.TradeResult, tags=["trades"])
async def execute_trades(
    payload: schemas.TradeRequest,
    user_id: UserId,
    executor: TradeExecutor = Depends(_trade_executor),
):
    """Place a capital-weighted batch; the API key is used for this call only."""

    targets = [
        TradeTarget(
            market_id=target.market_id,
            allocation_percent=target.allocation_percent,
            question=target.question,
            outcome=target.outcome,
        )
        for target in payload.targets
    ]
    logger.info("User {} executing {} trades", user_id, len(targets))
    result = await executor.execute(payload.api_key.get_secret_value(), targets, payload.capital)
    return schemas.TradeResult(
        trades_executed=result.trades_executed,
        errors=result.errors,
        requested_count=result.requested_count,
        message=result.message,
    )


# ----------------------------------------------------------------------
# Schedules


@app.get("/schedules", response_model=list[schemas.Schedule], tags=["schedules"])
def list_schedules(user_id: UserId, db: DbSession):
    return crud.list_schedules(db, user_id)


@app.post("/schedules", response_model=schemas.Schedule, status_code=201, tags=["schedules"])
def create_schedule(payload: schemas.ScheduleCreate, user_id: UserId, db: DbSession):
    schedule = crud.create_schedule(
        db,
        user_id,
        interval_minutes=payload.interval_minutes,
        is_active=payload.is_active,
        email=payload.email,
        email_on_completion=payload.email_on_completion,
        email_on_opportunities=payload.email_on_opportunities,
        scan_config=payload.scan_config.to_domain().to_dict() if payload.scan_config else None,
    )
    db.commit()
    return schedule


@app.delete("/schedules/{schedule_id}", status_code=204, tags=["schedules"])
def delete_schedule(schedule_id: str, user_id: UserId, db: DbSession) -> None:
    crud.delete_schedule(db, user_id, schedule_id)
    db.commit()
