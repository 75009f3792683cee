"""Group tradeable markets into canonical-event clusters."""

from __future__ import annotations

import hashlib
from collections import defaultdict
from collections.abc import Iterable, Sequence
from datetime import datetime, timezone
from itertools import combinations
from statistics import fmean, pvariance

from loguru import logger

from app.core.config import settings
from app.domain import CanonicalEvent, ClusterResult, Market, QuestionAnalysis, ScanConfig

from .canonical import analyze_question, has_objective_resolution, keys_fuzzy_equal, question_similarity

_TIE_TOLERANCE = 1e-9


def eligible_markets(
    markets: Iterable[Market],
    config: ScanConfig | None = None,
    *,
    now: datetime | None = None,
) -> list[Market]:
    """Binary, open, priced, objectively worded markets that satisfy the depth filters."""

    config = config or ScanConfig()
    now = now or datetime.now(timezone.utc)
    return [
        market
        for market in markets
        if market.outcome_type.upper() == "BINARY"
        and market.probability is not None
        and _is_tradeable(market, config, now)
    ]


def eligible_answer_sets(
    markets: Iterable[Market],
    config: ScanConfig | None = None,
    *,
    now: datetime | None = None,
) -> list[Market]:
    """Multiple-choice markets whose answers form one priced, mutually exclusive set."""

    config = config or ScanConfig()
    now = now or datetime.now(timezone.utc)
    selected: list[Market] = []
    for market in markets:
        if market.outcome_type.upper() != "MULTIPLE_CHOICE" or not market.answers_sum_to_one:
            continue
        if len(market.answers) < 2 or any(answer.probability is None for answer in market.answers):
            continue
        if _is_tradeable(market, config, now):
            selected.append(market)
    return selected


def _is_tradeable(market: Market, config: ScanConfig, now: datetime) -> bool:
    if market.is_resolved:
        return False
    if market.close_time is not None and _as_aware(market.close_time) <= now:
        return False
    if not has_objective_resolution(market.question, market.description):
        return False
    if (market.liquidity or 0.0) < config.min_liquidity:
        return False
    return (market.volume or 0.0) >= config.min_volume


def _as_aware(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def cluster_id_for(key: CanonicalEvent) -> str:
    digest = hashlib.sha1(key.as_key().encode("utf-8")).hexdigest()
    return f"cl_{digest[:12]}"


def _rank(key: CanonicalEvent) -> tuple[int, str]:
    return key.specificity, key.as_key()


class EventClusterer:
    """Derives a canonical key per market and groups markets with equal keys.

    A market whose key is unique in the snapshot but fuzzily matches other
    keys (same subject, nested event wording, compatible optional fields) is
    folded into the best matching group. When several groups match equally
    well the market is left ungrouped. Moves only go toward higher-ranked
    keys, so the outcome does not depend on input order and re-running on
    the same snapshot yields the same clusters.
    """

    def __init__(
        self,
        *,
        soft_size_limit: int | None = None,
        low_confidence_threshold: float | None = None,
    ) -> None:
        self.soft_size_limit = soft_size_limit or settings.cluster_soft_size_limit
        self.low_confidence_threshold = (
            settings.cluster_low_confidence_threshold
            if low_confidence_threshold is None
            else low_confidence_threshold
        )

    def cluster(self, markets: Sequence[Market]) -> list[ClusterResult]:
        snapshot: dict[str, Market] = {}
        for market in sorted(markets, key=lambda item: item.market_id):
            snapshot.setdefault(market.market_id, market)

        analyses: dict[str, QuestionAnalysis] = {}
        groups: dict[CanonicalEvent, list[Market]] = defaultdict(list)
        for market_id, market in snapshot.items():
            analysis = analyze_question(market.question)
            if not analysis.canonical.event:
                continue
            analyses[market_id] = analysis
            groups[analysis.canonical].append(market)

        moves = self._plan_moves(groups)
        for source_key, target_key in moves.items():
            groups[target_key].extend(groups.pop(source_key))

        results: list[ClusterResult] = []
        for key in sorted(groups, key=lambda item: item.as_key()):
            members = sorted(groups[key], key=lambda item: item.market_id)
            if len(members) < 2:
                continue
            confidence = self.confidence([market.question for market in members])
            results.append(
                ClusterResult(
                    cluster_id=cluster_id_for(key),
                    markets=members,
                    canonical_event=key,
                    confidence=confidence,
                    analyses={market.market_id: analyses[market.market_id] for market in members},
                    low_confidence=confidence < self.low_confidence_threshold,
                )
            )

        logger.debug(
            "Clustered {} markets into {} clusters ({} keys folded by fuzzy match)",
            len(snapshot),
            len(results),
            len(moves),
        )
        return results

    def _plan_moves(
        self, groups: dict[CanonicalEvent, list[Market]]
    ) -> dict[CanonicalEvent, CanonicalEvent]:
        keys = sorted(groups, key=_rank)
        direct: dict[CanonicalEvent, CanonicalEvent] = {}
        for key in keys:
            if len(groups[key]) != 1:
                continue
            candidates = [
                other
                for other in keys
                if other != key and _rank(other) > _rank(key) and keys_fuzzy_equal(key, other)
            ]
            if not candidates:
                continue
            if len(candidates) == 1:
                direct[key] = candidates[0]
                continue

            question = groups[key][0].question
            scored = sorted(
                (
                    (fmean(question_similarity(question, peer.question) for peer in groups[other]), other)
                    for other in candidates
                ),
                key=lambda item: item[0],
                reverse=True,
            )
            best_score, best_key = scored[0]
            if best_score - scored[1][0] <= _TIE_TOLERANCE:
                logger.debug("Ambiguous canonical key {} left ungrouped", key.as_key())
                continue
            direct[key] = best_key

        resolved: dict[CanonicalEvent, CanonicalEvent] = {}
        for key, target in direct.items():
            while target in direct:
                target = direct[target]
            resolved[key] = target
        return resolved

    def confidence(self, questions: Sequence[str]) -> float:
        """Mean pairwise similarity, discounted by its spread and by oversized groups."""

        if len(questions) < 2:
            return 0.0
        similarities = [question_similarity(a, b) for a, b in combinations(questions, 2)]
        spread = pvariance(similarities) if len(similarities) > 1 else 0.0
        score = fmean(similarities) * max(0.0, 1.0 - 4.0 * spread)
        if len(questions) > self.soft_size_limit:
            score *= self.soft_size_limit / len(questions)
        return round(min(1.0, score), 6)


__all__ = ["EventClusterer", "cluster_id_for", "eligible_answer_sets", "eligible_markets"]
