"""Mispricing scores for markets that share a canonical event and for answer sets."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from itertools import combinations

from loguru import logger

from app.core.config import Settings, settings as default_settings
from app.domain import (
    ClusterResult,
    ConfidenceLabel,
    ExhaustiveSet,
    FeedbackExample,
    Market,
    MarketPair,
    TradeAction,
)

from .canonical import question_similarity


class FeedbackIndex:
    """In-memory view over human labels, loaded once per scan.

    Read-only after construction so concurrent scoring workers can share it.
    """

    def __init__(self, examples: Iterable[FeedbackExample] = (), *, threshold: float | None = None) -> None:
        self.examples: tuple[FeedbackExample, ...] = tuple(examples)
        self.threshold = (
            default_settings.feedback_similarity_threshold if threshold is None else threshold
        )

    def __len__(self) -> int:
        return len(self.examples)

    def match(self, question1: str, question2: str) -> FeedbackExample | None:
        """Most similar label above the threshold; rejections win ties."""

        best: tuple[float, int, FeedbackExample] | None = None
        for example in self.examples:
            direct = min(
                question_similarity(question1, example.market1_question),
                question_similarity(question2, example.market2_question),
            )
            swapped = min(
                question_similarity(question1, example.market2_question),
                question_similarity(question2, example.market1_question),
            )
            similarity = max(direct, swapped)
            if similarity < self.threshold:
                continue
            candidate = (similarity, 0 if example.is_valid_opportunity else 1, example)
            if best is None or candidate[:2] > best[:2]:
                best = candidate
        return best[2] if best else None


def price_gap(probability1: float, probability2: float, *, opposite: bool = False) -> float:
    if opposite:
        return abs(probability1 + probability2 - 1.0)
    return abs(probability1 - probability2)


class OpportunityScorer:
    def __init__(self, feedback: FeedbackIndex | None = None, *, config: Settings | None = None) -> None:
        self.config = config or default_settings
        self.feedback = feedback or FeedbackIndex(threshold=self.config.feedback_similarity_threshold)

    def expected_profit(self, gap: float, liquidity: float | None) -> float:
        """Percent of stake captured after fees and estimated price impact.

        Increasing in ``gap`` for fixed liquidity. Missing or empty pools
        count as zero liquidity, where the impact estimate consumes the
        whole edge.
        """

        depth = max(liquidity or 0.0, 0.0)
        bet = self.config.reference_bet_size
        impact = bet / (depth + bet)
        raw = max(0.0, gap * 100.0 - self.config.fee_percent)
        return raw * (1.0 - impact)

    def label_for(self, expected_profit: float, liquidity: float) -> ConfidenceLabel:
        if (
            expected_profit >= self.config.high_profit_threshold
            and liquidity >= self.config.high_liquidity_threshold
        ):
            return ConfidenceLabel.HIGH
        if (
            expected_profit >= self.config.medium_profit_threshold
            and liquidity >= self.config.medium_liquidity_threshold
        ):
            return ConfidenceLabel.MEDIUM
        return ConfidenceLabel.LOW

    def score_cluster(self, cluster: ClusterResult) -> list[MarketPair]:
        pairs: list[MarketPair] = []
        for market1, market2 in combinations(cluster.markets, 2):
            pair = self.score_pair(cluster, market1, market2)
            if pair is not None:
                pairs.append(pair)
        pairs.sort(key=lambda item: (-item.expected_profit, item.opportunity_id))
        return pairs

    def score_pair(self, cluster: ClusterResult, market1: Market, market2: Market) -> MarketPair | None:
        if market1.market_id == market2.market_id:
            return None

        opposite = _polarity(cluster, market1) != _polarity(cluster, market2)
        gap = price_gap(market1.probability, market2.probability, opposite=opposite)
        liquidity = min(market1.liquidity or 0.0, market2.liquidity or 0.0)
        profit = self.expected_profit(gap, liquidity)
        if profit < self.config.min_expected_profit:
            return None

        label = self.label_for(profit, liquidity)
        note: str | None = None
        feedback = self.feedback.match(market1.question, market2.question)
        if feedback is not None and not feedback.is_valid_opportunity:
            if profit < self.config.feedback_override_profit:
                logger.debug(
                    "Suppressed {} / {} as a known false positive",
                    market1.market_id,
                    market2.market_id,
                )
                return None
            note = "negative feedback overridden by profit"
        elif feedback is not None:
            label = ConfidenceLabel.from_rank(label.rank + 1)
            note = "promoted by positive feedback"

        if cluster.low_confidence and label is ConfidenceLabel.HIGH:
            label = ConfidenceLabel.MEDIUM

        action1, action2 = suggested_actions(market1, market2, opposite=opposite)
        reason = "opposite wording of " if opposite else "same wording of "
        return MarketPair(
            market1=market1,
            market2=market2,
            expected_profit=round(profit, 6),
            gap=round(gap, 6),
            label=label,
            action1=action1,
            action2=action2,
            cluster_id=cluster.cluster_id,
            similarity=round(question_similarity(market1.question, market2.question), 4),
            match_reason=reason + cluster.canonical_event.as_key(),
            opposite=opposite,
            feedback_note=note,
        )

    def score_clusters(self, clusters: Sequence[ClusterResult]) -> list[MarketPair]:
        pairs: list[MarketPair] = []
        for cluster in clusters:
            pairs.extend(self.score_cluster(cluster))
        return pairs

    def score_exhaustive_set(self, market: Market) -> ExhaustiveSet | None:
        """Answers of one mutually exclusive set should be priced to sum to one.

        Buying NO on every answer locks in the excess when the sum is above
        one; buying YES on every answer does the same when it is below.
        """

        total = sum(answer.probability or 0.0 for answer in market.answers)
        gap = abs(total - 1.0)
        liquidity = market.liquidity or 0.0
        profit = self.expected_profit(gap, liquidity)
        if profit < self.config.min_expected_profit:
            return None
        return ExhaustiveSet(
            market=market,
            total_probability=round(total, 6),
            expected_profit=round(profit, 6),
            gap=round(gap, 6),
            label=self.label_for(profit, liquidity),
            action=TradeAction.BUY_NO if total > 1.0 else TradeAction.BUY_YES,
        )

    def score_exhaustive_sets(self, markets: Sequence[Market]) -> list[ExhaustiveSet]:
        found = [item for item in map(self.score_exhaustive_set, markets) if item is not None]
        found.sort(key=lambda item: (-item.expected_profit, item.opportunity_id))
        return found


def _polarity(cluster: ClusterResult, market: Market) -> bool:
    analysis = cluster.analyses.get(market.market_id)
    return analysis.negated if analysis else False


def suggested_actions(
    market1: Market, market2: Market, *, opposite: bool
) -> tuple[TradeAction, TradeAction]:
    if opposite:
        if market1.probability + market2.probability > 1.0:
            return TradeAction.BUY_NO, TradeAction.BUY_NO
        return TradeAction.BUY_YES, TradeAction.BUY_YES
    if market1.probability <= market2.probability:
        return TradeAction.BUY_YES, TradeAction.BUY_NO
    return TradeAction.BUY_NO, TradeAction.BUY_YES


__all__ = ["FeedbackIndex", "OpportunityScorer", "price_gap", "suggested_actions"]
