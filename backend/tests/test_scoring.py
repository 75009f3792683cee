from __future__ import annotations

import pytest

from app.core.config import Settings
from app.domain import Answer, ClusterResult, ConfidenceLabel, FeedbackExample, TradeAction
from app.services.canonical import analyze_question
from app.services.clustering import cluster_id_for
from app.services.scoring import FeedbackIndex, OpportunityScorer, price_gap

YES_QUESTION = "Will Trump win the 2024 US presidential election?"
ALT_QUESTION = "Trump to win 2024 US presidential election?"
LOSE_QUESTION = "Will Trump lose the 2024 US presidential election?"


@pytest.fixture
def scoring_settings() -> Settings:
    return Settings(
        min_expected_profit=2.0,
        fee_percent=0.5,
        reference_bet_size=50.0,
        feedback_similarity_threshold=0.8,
        feedback_override_multiplier=5.0,
    )


def _cluster(*markets, low_confidence: bool = False) -> ClusterResult:
    analyses = {market.market_id: analyze_question(market.question) for market in markets}
    key = analyses[markets[0].market_id].canonical
    return ClusterResult(
        cluster_id=cluster_id_for(key),
        markets=list(markets),
        canonical_event=key,
        confidence=0.3 if low_confidence else 1.0,
        analyses=analyses,
        low_confidence=low_confidence,
    )


def test_expected_profit_is_monotonic_in_gap(scoring_settings):
    scorer = OpportunityScorer(config=scoring_settings)
    gaps = [0.0, 0.01, 0.02, 0.05, 0.1, 0.15, 0.3, 0.6, 1.0]

    profits = [scorer.expected_profit(gap, 500.0) for gap in gaps]

    assert profits == sorted(profits)
    assert profits[0] == 0.0


def test_expected_profit_decreases_with_thinner_liquidity(scoring_settings):
    scorer = OpportunityScorer(config=scoring_settings)

    assert scorer.expected_profit(0.15, 50.0) < scorer.expected_profit(0.15, 500.0)
    assert scorer.expected_profit(0.15, None) == 0.0
    assert scorer.expected_profit(0.15, 0.0) == 0.0


def test_price_gap_uses_complement_for_opposite_wording():
    assert price_gap(0.40, 0.55) == pytest.approx(0.15)
    assert price_gap(0.40, 0.45, opposite=True) == pytest.approx(0.15)


def test_scores_high_confidence_pair(make_market, scoring_settings):
    cluster = _cluster(
        make_market("m1", YES_QUESTION, 0.40),
        make_market("m2", ALT_QUESTION, 0.55),
    )

    pairs = OpportunityScorer(config=scoring_settings).score_cluster(cluster)

    assert len(pairs) == 1
    pair = pairs[0]
    assert pair.expected_profit == pytest.approx(14.5 * 500 / 550, rel=1e-4)
    assert pair.label is ConfidenceLabel.HIGH
    assert (pair.action1, pair.action2) == (TradeAction.BUY_YES, TradeAction.BUY_NO)
    assert pair.opposite is False
    assert pair.cluster_id == cluster.cluster_id
    assert pair.match_reason.endswith(cluster.canonical_event.as_key())


def test_missing_liquidity_excludes_pair(make_market, scoring_settings):
    cluster = _cluster(
        make_market("m1", YES_QUESTION, 0.20, liquidity=None),
        make_market("m2", ALT_QUESTION, 0.80),
    )

    assert OpportunityScorer(config=scoring_settings).score_cluster(cluster) == []


def test_small_gap_falls_below_floor(make_market, scoring_settings):
    cluster = _cluster(
        make_market("m1", YES_QUESTION, 0.50),
        make_market("m2", ALT_QUESTION, 0.52),
    )

    assert OpportunityScorer(config=scoring_settings).score_cluster(cluster) == []


def test_opposite_wording_pair_buys_both_sides(make_market, scoring_settings):
    cluster = _cluster(
        make_market("m1", YES_QUESTION, 0.40),
        make_market("m2", LOSE_QUESTION, 0.45),
    )

    pairs = OpportunityScorer(config=scoring_settings).score_cluster(cluster)

    assert len(pairs) == 1
    pair = pairs[0]
    assert pair.opposite is True
    assert pair.gap == pytest.approx(0.15)
    assert (pair.action1, pair.action2) == (TradeAction.BUY_YES, TradeAction.BUY_YES)
    assert pair.opportunity_id == "op_m1_m2"


def test_negative_feedback_suppresses_modest_pair(make_market, scoring_settings):
    market1 = make_market("m1", YES_QUESTION, 0.40)
    market2 = make_market("m2", ALT_QUESTION, 0.48)
    cluster = _cluster(market1, market2)
    feedback = FeedbackIndex(
        [FeedbackExample(ALT_QUESTION, YES_QUESTION, False, "Different resolution sources")],
        threshold=0.8,
    )

    unlabeled = OpportunityScorer(config=scoring_settings).score_cluster(cluster)
    suppressed = OpportunityScorer(feedback, config=scoring_settings).score_cluster(cluster)

    assert len(unlabeled) == 1
    assert unlabeled[0].label is ConfidenceLabel.MEDIUM
    assert suppressed == []


def test_large_profit_overrides_negative_feedback(make_market, scoring_settings):
    cluster = _cluster(
        make_market("m1", YES_QUESTION, 0.40),
        make_market("m2", ALT_QUESTION, 0.55),
    )
    feedback = FeedbackIndex([FeedbackExample(YES_QUESTION, ALT_QUESTION, False)], threshold=0.8)

    pairs = OpportunityScorer(feedback, config=scoring_settings).score_cluster(cluster)

    assert len(pairs) == 1
    assert pairs[0].feedback_note == "negative feedback overridden by profit"


def test_positive_feedback_promotes_label(make_market, scoring_settings):
    cluster = _cluster(
        make_market("m1", YES_QUESTION, 0.40),
        make_market("m2", ALT_QUESTION, 0.48),
    )
    feedback = FeedbackIndex([FeedbackExample(YES_QUESTION, ALT_QUESTION, True)], threshold=0.8)

    pairs = OpportunityScorer(feedback, config=scoring_settings).score_cluster(cluster)

    assert pairs[0].label is ConfidenceLabel.HIGH
    assert pairs[0].feedback_note == "promoted by positive feedback"


def test_unrelated_feedback_is_ignored():
    feedback = FeedbackIndex(
        [FeedbackExample("Will it snow in Paris in 2030?", "Will Lakers win the 2030 NBA finals?", False)],
        threshold=0.8,
    )

    assert feedback.match(YES_QUESTION, ALT_QUESTION) is None


def test_low_confidence_cluster_caps_label(make_market, scoring_settings):
    cluster = _cluster(
        make_market("m1", YES_QUESTION, 0.40),
        make_market("m2", ALT_QUESTION, 0.55),
        low_confidence=True,
    )

    pairs = OpportunityScorer(config=scoring_settings).score_cluster(cluster)

    assert pairs[0].label is ConfidenceLabel.MEDIUM


def _answer_set(make_market, market_id, *prices, liquidity=500.0):
    answers = tuple(Answer(f"a{index}", f"Candidate {index}", price) for index, price in enumerate(prices))
    return make_market(
        market_id,
        "Who will win the 2028 Democratic nomination?",
        None,
        outcome_type="MULTIPLE_CHOICE",
        answers=answers,
        liquidity=liquidity,
    )


def test_overpriced_answer_set_suggests_buying_no_on_every_answer(make_market, scoring_settings):
    scorer = OpportunityScorer(config=scoring_settings)

    found = scorer.score_exhaustive_set(_answer_set(make_market, "mc1", 0.45, 0.40, 0.30))

    assert found.opportunity_id == "es_mc1"
    assert found.total_probability == pytest.approx(1.15)
    assert found.gap == pytest.approx(0.15)
    assert found.expected_profit == pytest.approx(14.5 * (1 - 50 / 550), rel=1e-6)
    assert found.label is ConfidenceLabel.HIGH
    assert found.action is TradeAction.BUY_NO
    payload = found.to_payload()
    assert payload["kind"] == "exhaustive_set"
    assert [leg["id"] for leg in payload["legs"]] == ["mc1_a0", "mc1_a1", "mc1_a2"]


def test_underpriced_answer_set_suggests_buying_yes(make_market, scoring_settings):
    scorer = OpportunityScorer(config=scoring_settings)

    found = scorer.score_exhaustive_set(_answer_set(make_market, "mc2", 0.30, 0.25, 0.30, liquidity=150.0))

    assert found.action is TradeAction.BUY_YES
    assert found.label is ConfidenceLabel.MEDIUM


def test_answer_sets_close_to_one_are_not_opportunities(make_market, scoring_settings):
    scorer = OpportunityScorer(config=scoring_settings)
    markets = [
        _answer_set(make_market, "fair", 0.34, 0.33, 0.34),
        _answer_set(make_market, "rich", 0.45, 0.40, 0.30),
        _answer_set(make_market, "richer", 0.50, 0.45, 0.30),
    ]

    found = scorer.score_exhaustive_sets(markets)

    assert [item.opportunity_id for item in found] == ["es_richer", "es_rich"]
