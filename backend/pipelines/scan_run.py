from __future__ import annotations

import argparse
import asyncio
import hashlib
import json
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, ContextManager

from loguru import logger
from sqlalchemy.orm import Session

from app.core.config import Settings, get_settings
from app.db import init_db, session_scope
from app.domain import (
    ClusterResult,
    ConfidenceLabel,
    ExhaustiveSet,
    MarketPair,
    ScanConfig,
    TransportError,
)
from app.models import NotificationType, ScanStatus
from app.repositories import FeedbackRepository, ScanRepository
from app.services.clustering import EventClusterer, eligible_answer_sets, eligible_markets
from app.services.notifications import (
    EmailSink,
    HttpEmailSink,
    NotificationDispatcher,
    OutgoingEmail,
    forward_email,
)
from app.services.scoring import FeedbackIndex, OpportunityScorer
from ingestion.client import MarketSource, MarketSourceClient

from .context import ScanContext


@dataclass(slots=True)
class ScanOutcome:
    run_id: str
    status: str
    markets_scanned: int = 0
    tradeable_markets: int = 0
    clusters_found: int = 0
    opportunities: list[MarketPair] = field(default_factory=list)
    exhaustive_sets: list[ExhaustiveSet] = field(default_factory=list)
    notifications_created: int = 0
    emails_sent: int = 0
    error_message: str | None = None

    @property
    def found(self) -> list[MarketPair | ExhaustiveSet]:
        """Pairs and answer sets together, most profitable first."""

        found: list[MarketPair | ExhaustiveSet] = [*self.opportunities, *self.exhaustive_sets]
        found.sort(key=lambda item: (-item.expected_profit, item.opportunity_id))
        return found

    @property
    def opportunities_found(self) -> int:
        return len(self.opportunities) + len(self.exhaustive_sets)

    @property
    def high_confidence(self) -> int:
        return sum(1 for item in self.found if item.label is ConfidenceLabel.HIGH)

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "status": self.status,
            "markets_scanned": self.markets_scanned,
            "tradeable_markets": self.tradeable_markets,
            "clusters_found": self.clusters_found,
            "opportunities_found": self.opportunities_found,
            "high_confidence": self.high_confidence,
            "notifications_created": self.notifications_created,
            "emails_sent": self.emails_sent,
            "error_message": self.error_message,
            "opportunities": [item.to_payload() for item in self.found],
        }


class ScanOrchestrator:
    """Runs one fetch, cluster, score and record cycle per invocation.

    Every run owns its ScanRun row and a :class:`ScanContext`; nothing is
    shared between overlapping runs. The run row is committed as ``running``
    before any I/O and finalized exactly once by this coroutine.
    """

    def __init__(
        self,
        *,
        settings: Settings | None = None,
        source_factory: Callable[[], MarketSource] | None = None,
        session_factory: Callable[[], ContextManager[Session]] | None = None,
        clusterer: EventClusterer | None = None,
        email_sink: EmailSink | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.source_factory = source_factory
        self.session_factory = session_factory or session_scope
        self.clusterer = clusterer or EventClusterer(
            soft_size_limit=self.settings.cluster_soft_size_limit,
            low_confidence_threshold=self.settings.cluster_low_confidence_threshold,
        )
        self.email_sink = email_sink

    async def run(self, user_id: str, config: ScanConfig | None = None) -> ScanOutcome:
        config = config or ScanConfig()
        context = self._start(user_id, config)
        logger.info("Scan {} started for user {}", context.run_id, user_id)

        try:
            markets = await self._fetch(config)
        except TransportError as exc:
            context.error_message = str(exc)
            logger.warning("Scan {} aborted, market fetch failed: {}", context.run_id, exc)
            return await self._fail(context)

        try:
            context.markets_scanned = len(markets)
            tradeable = eligible_markets(markets, config)
            answer_sets = eligible_answer_sets(markets, config)
            context.tradeable_markets = len(tradeable) + len(answer_sets)
            clusters = await asyncio.to_thread(self.clusterer.cluster, tradeable)
            context.clusters_found = len(clusters)
            context.low_confidence_clusters = sum(1 for cluster in clusters if cluster.low_confidence)
            pairs = await self._score(context, clusters)
            exhaustive_sets = await asyncio.to_thread(
                OpportunityScorer(context.feedback, config=self.settings).score_exhaustive_sets,
                answer_sets,
            )
            outcome, emails = self._complete(context, pairs, exhaustive_sets)
        except Exception as exc:
            logger.exception("Scan {} failed unexpectedly", context.run_id)
            context.error_message = f"Unexpected error: {exc}"
            await self._fail(context)
            raise

        outcome.emails_sent = await self._send_emails(config, emails)
        logger.info(
            "Scan {} completed: {} markets, {} tradeable, {} clusters, {} opportunities ({} high)",
            context.run_id,
            outcome.markets_scanned,
            outcome.tradeable_markets,
            outcome.clusters_found,
            outcome.opportunities_found,
            outcome.high_confidence,
        )
        return outcome

    # ------------------------------------------------------------------
    # Stages

    def _start(self, user_id: str, config: ScanConfig) -> ScanContext:
        with self.session_factory() as session:
            run = ScanRepository(session).create_run(user_id, config)
            examples = FeedbackRepository(session).recent(
                user_id, limit=self.settings.feedback_example_limit
            )
            run_id = run.id
            started_at = run.started_at
        return ScanContext(
            run_id=run_id,
            user_id=user_id,
            config=config,
            settings=self.settings,
            started_at=started_at,
            feedback=FeedbackIndex(examples, threshold=self.settings.feedback_similarity_threshold),
        )

    async def _fetch(self, config: ScanConfig):
        if self.source_factory is not None:
            return await self.source_factory().fetch_markets(max_markets=config.max_markets)
        async with MarketSourceClient() as client:
            return await client.fetch_markets(max_markets=config.max_markets)

    async def _score(self, context: ScanContext, clusters: Sequence[ClusterResult]) -> list[MarketPair]:
        scorer = OpportunityScorer(context.feedback, config=self.settings)
        semaphore = asyncio.Semaphore(self.settings.scan_worker_concurrency)

        async def score(cluster: ClusterResult) -> list[MarketPair]:
            async with semaphore:
                return await asyncio.to_thread(scorer.score_cluster, cluster)

        batches = await asyncio.gather(*(score(cluster) for cluster in clusters))
        pairs = [pair for batch in batches for pair in batch]
        pairs.sort(key=lambda pair: (-pair.expected_profit, pair.opportunity_id))
        return pairs

    def _complete(
        self,
        context: ScanContext,
        pairs: list[MarketPair],
        exhaustive_sets: Sequence[ExhaustiveSet] = (),
    ) -> tuple[ScanOutcome, list[OutgoingEmail]]:
        outcome = ScanOutcome(
            run_id=context.run_id,
            status=ScanStatus.COMPLETED.value,
            markets_scanned=context.markets_scanned,
            tradeable_markets=context.tradeable_markets,
            clusters_found=context.clusters_found,
            opportunities=pairs,
            exhaustive_sets=list(exhaustive_sets),
        )
        completion_emails: list[OutgoingEmail] = []
        opportunity_emails: list[OutgoingEmail] = []
        with self.session_factory() as session:
            ScanRepository(session).complete_run(
                context.run_id,
                markets_scanned=context.markets_scanned,
                tradeable_markets=context.tradeable_markets,
                clusters_found=context.clusters_found,
                pairs=pairs,
                exhaustive_sets=exhaustive_sets,
            )
            dispatcher = NotificationDispatcher(
                session, dedup_window_minutes=self.settings.notification_dedup_window_minutes
            )
            summary = dispatcher.create(
                context.user_id,
                type=NotificationType.SCAN_COMPLETE,
                title="Scan complete",
                message=(
                    f"Scanned {context.markets_scanned} markets, found {outcome.opportunities_found} "
                    f"opportunities ({outcome.high_confidence} high confidence)"
                ),
                data={
                    "scan_run_id": context.run_id,
                    "status": ScanStatus.COMPLETED.value,
                    "markets_scanned": context.markets_scanned,
                    "tradeable_markets": context.tradeable_markets,
                    "clusters_found": context.clusters_found,
                    "low_confidence_clusters": context.low_confidence_clusters,
                    "opportunities_found": outcome.opportunities_found,
                    "exhaustive_sets_found": len(outcome.exhaustive_sets),
                    "high_confidence": outcome.high_confidence,
                },
            )
            if summary is not None:
                outcome.notifications_created += 1
                if context.config.email_on_completion:
                    completion_emails.append(OutgoingEmail.from_notification(summary))

            for notification in self._notify_opportunities(context, dispatcher, outcome.found):
                outcome.notifications_created += 1
                if context.config.email_on_opportunities:
                    opportunity_emails.append(OutgoingEmail.from_notification(notification))
        return outcome, completion_emails + opportunity_emails

    def _notify_opportunities(
        self,
        context: ScanContext,
        dispatcher: NotificationDispatcher,
        found: Sequence[MarketPair | ExhaustiveSet],
    ):
        high = [item for item in found if item.label is ConfidenceLabel.HIGH]
        cap = self.settings.opportunity_notification_cap
        for item in high[:cap]:
            created = dispatcher.create(
                context.user_id,
                type=NotificationType.OPPORTUNITY_FOUND,
                title="Arbitrage opportunity",
                message=f"{item.expected_profit:.1f}% expected profit: {item.headline}",
                data={"scan_run_id": context.run_id, "opportunities": [item.to_payload()]},
                dedup_key=item.content_key(),
            )
            if created is not None:
                yield created

        overflow = high[cap:]
        if overflow:
            digest = hashlib.sha1(
                "|".join(sorted(item.content_key() for item in overflow)).encode("utf-8")
            ).hexdigest()
            created = dispatcher.create(
                context.user_id,
                type=NotificationType.OPPORTUNITY_FOUND,
                title="More arbitrage opportunities",
                message=f"{len(overflow)} more high-confidence opportunities found",
                data={
                    "scan_run_id": context.run_id,
                    "opportunities": [item.to_payload() for item in overflow],
                },
                dedup_key=f"rollup:{digest}",
            )
            if created is not None:
                yield created

    async def _fail(self, context: ScanContext) -> ScanOutcome:
        email: OutgoingEmail | None = None
        with self.session_factory() as session:
            ScanRepository(session).fail_run(
                context.run_id, error_message=context.error_message or "Scan failed"
            )
            notification = NotificationDispatcher(session).create(
                context.user_id,
                type=NotificationType.SCAN_COMPLETE,
                title="Scan failed",
                message=f"Scan failed: {context.error_message}",
                data={
                    "scan_run_id": context.run_id,
                    "status": ScanStatus.FAILED.value,
                    "error": context.error_message,
                },
            )
            if notification is not None and context.config.email_on_completion:
                email = OutgoingEmail.from_notification(notification)

        outcome = ScanOutcome(
            run_id=context.run_id,
            status=ScanStatus.FAILED.value,
            notifications_created=1 if notification is not None else 0,
            error_message=context.error_message,
        )
        if email is not None:
            outcome.emails_sent = await self._send_emails(context.config, [email])
        return outcome

    async def _send_emails(self, config: ScanConfig, emails: Sequence[OutgoingEmail]) -> int:
        if not emails or not config.email:
            return 0
        sink = self.email_sink or HttpEmailSink()
        sent = 0
        for email in emails:
            if await forward_email(sink, email, config.email):
                sent += 1
        return sent


def _parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run one arbitrage scan")
    parser.add_argument("--user-id", required=True, help="Identity that owns the scan run")
    parser.add_argument(
        "--max-markets",
        type=int,
        default=None,
        help="Upper bound on markets fetched (defaults to MARKET_MAX_MARKETS)",
    )
    parser.add_argument(
        "--min-liquidity",
        type=float,
        default=0.0,
        help="Skip markets whose pool liquidity is below this value",
    )
    parser.add_argument(
        "--min-volume",
        type=float,
        default=0.0,
        help="Skip markets whose traded volume is below this value",
    )
    parser.add_argument("--email", default=None, help="Forward notifications to this address")
    parser.add_argument(
        "--summary-path",
        type=Path,
        default=None,
        help="Write JSON summary to the specified path",
    )
    return parser.parse_args(argv)


def write_summary(path: Path, payload: dict[str, Any]) -> None:
    path = path.expanduser().resolve()
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload, indent=2, sort_keys=True, default=str), encoding="utf-8")
    logger.info("Wrote scan summary to {}", path)


def main(argv: Sequence[str] | None = None) -> None:
    args = _parse_args(argv)
    init_db()
    config = ScanConfig(
        min_liquidity=args.min_liquidity,
        min_volume=args.min_volume,
        max_markets=args.max_markets,
        email=args.email,
        email_on_completion=bool(args.email),
        email_on_opportunities=bool(args.email),
    )
    outcome = asyncio.run(ScanOrchestrator().run(args.user_id, config))
    payload = outcome.to_dict()
    payload["finished_at"] = datetime.now(timezone.utc).isoformat()
    if args.summary_path:
        write_summary(args.summary_path, payload)
    else:
        print(json.dumps({key: value for key, value in payload.items() if key != "opportunities"}, indent=2))


if __name__ == "__main__":
    main()
