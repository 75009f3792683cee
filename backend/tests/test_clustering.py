from __future__ import annotations

import random
from datetime import datetime, timedelta, timezone

import pytest

from app.domain import Answer, ScanConfig
from app.services.clustering import EventClusterer, cluster_id_for, eligible_answer_sets, eligible_markets


@pytest.fixture
def election_markets(make_market):
    return [
        make_market("m1", "Will Trump win the 2024 US presidential election?", 0.40),
        make_market("m2", "Trump to win 2024 US presidential election?", 0.55),
        make_market("m3", "Will Trump lose the 2024 US presidential election?", 0.50),
        make_market("m4", "Will the Chiefs win the Super Bowl in 2025?", 0.30),
        make_market("m5", "Will Newsom be nominated in 2028?", 0.20),
    ]


def _membership(clusters):
    return [(cluster.cluster_id, [market.market_id for market in cluster.markets]) for cluster in clusters]


def test_groups_equivalent_questions_and_drops_singletons(election_markets):
    clusters = EventClusterer().cluster(election_markets)

    assert len(clusters) == 1
    cluster = clusters[0]
    assert [market.market_id for market in cluster.markets] == ["m1", "m2", "m3"]
    assert cluster.canonical_event.as_key() == "election|trump win|2024|us|-"
    assert cluster.cluster_id == cluster_id_for(cluster.canonical_event)
    assert cluster.analyses["m3"].negated is True
    assert 0.0 <= cluster.confidence <= 1.0


def test_every_cluster_has_at_least_two_members(election_markets):
    clusters = EventClusterer().cluster(election_markets)

    assert all(len(cluster.markets) >= 2 for cluster in clusters)
    clustered = {market.market_id for cluster in clusters for market in cluster.markets}
    assert "m4" not in clustered
    assert "m5" not in clustered


def test_clustering_is_idempotent_and_order_independent(election_markets):
    clusterer = EventClusterer()
    first = clusterer.cluster(election_markets)
    second = clusterer.cluster(election_markets)

    shuffled = list(election_markets)
    random.Random(7).shuffle(shuffled)
    third = clusterer.cluster(shuffled)

    assert _membership(first) == _membership(second) == _membership(third)
    assert [c.canonical_event for c in first] == [c.canonical_event for c in third]


def test_less_specific_key_joins_its_unique_fuzzy_match(make_market):
    markets = [
        make_market("a", "Will Trump win the 2024 US presidential election?", 0.40),
        make_market("b", "Trump to win 2024 US presidential election?", 0.45),
        make_market("c", "Will Trump win the 2024 election?", 0.52),
    ]

    clusters = EventClusterer().cluster(markets)

    assert len(clusters) == 1
    assert [market.market_id for market in clusters[0].markets] == ["a", "b", "c"]
    assert clusters[0].canonical_event.jurisdiction == "us"


def test_tied_fuzzy_matches_leave_the_market_ungrouped(make_market):
    markets = [
        make_market("us1", "Will Trump win the 2024 US election?", 0.40),
        make_market("us2", "Trump to win 2024 US election?", 0.45),
        make_market("uk1", "Will Trump win the 2024 UK election?", 0.40),
        make_market("uk2", "Trump to win 2024 UK election?", 0.45),
        make_market("any", "Will Trump win the 2024 election?", 0.60),
    ]

    clusters = EventClusterer().cluster(markets)

    memberships = sorted(sorted(m.market_id for m in cluster.markets) for cluster in clusters)
    assert memberships == [["uk1", "uk2"], ["us1", "us2"]]


def test_confidence_drops_for_oversized_groups():
    clusterer = EventClusterer(soft_size_limit=2)
    question = "Will Trump win the 2024 US presidential election?"

    assert clusterer.confidence([question, question]) == 1.0
    assert clusterer.confidence([question, question, question]) == pytest.approx(2 / 3, abs=1e-6)


def test_confidence_penalizes_similarity_spread():
    clusterer = EventClusterer()
    tight = clusterer.confidence(["Will X happen in 2025?", "Will X happen in 2025?", "Will X happen in 2025?"])
    loose = clusterer.confidence(
        [
            "Will Trump win the 2024 US presidential election?",
            "Will Trump win the 2024 US presidential election?",
            "Trump 2024?",
        ]
    )

    assert tight == 1.0
    assert loose < tight


def test_confidence_of_a_pair_tracks_wording_similarity():
    clusterer = EventClusterer()
    question = "Will Trump win the 2024 US presidential election?"
    loose_wording = "2024 US election: Trump victory (resolves per AP call, markets tie-break)"

    identical = clusterer.confidence([question, question])
    reworded = clusterer.confidence([question, "Trump to win 2024 US presidential election?"])
    dissimilar = clusterer.confidence([question, loose_wording])

    assert identical == 1.0
    assert dissimilar < reworded < identical
    assert dissimilar < clusterer.low_confidence_threshold
    assert reworded >= clusterer.low_confidence_threshold


def test_low_confidence_clusters_are_flagged(make_market):
    clusterer = EventClusterer(soft_size_limit=2, low_confidence_threshold=0.9)
    markets = [
        make_market(f"m{i}", "Will Trump win the 2024 US presidential election?", 0.4 + i / 100)
        for i in range(3)
    ]

    clusters = clusterer.cluster(markets)

    assert clusters[0].low_confidence is True


def test_eligible_markets_filters_untradeable(make_market):
    now = datetime(2025, 1, 1, tzinfo=timezone.utc)
    markets = [
        make_market("ok", "Will the Fed cut rates in March 2025?", 0.4),
        make_market("multi", "Who wins the 2025 Oscars?", 0.4, outcome_type="MULTIPLE_CHOICE"),
        make_market("resolved", "Will the Fed cut rates in 2024?", 0.4, is_resolved=True),
        make_market("closed", "Will the Fed cut rates in 2024?", 0.4, close_time=now - timedelta(days=1)),
        make_market("opinion", "Is this the best movie I think?", 0.4),
        make_market("shallow", "Will the Fed cut rates in June 2025?", 0.4, liquidity=10.0),
        make_market("unknown", "Will the Fed cut rates in July 2025?", 0.4, liquidity=None),
    ]

    selected = eligible_markets(markets, ScanConfig(min_liquidity=50.0), now=now)

    assert [market.market_id for market in selected] == ["ok"]


def test_unpriced_markets_never_reach_scoring(make_market):
    markets = [
        make_market("priced", "Will Trump win the 2024 US presidential election?", 0.55),
        make_market("unpriced", "Trump to win 2024 US presidential election?", None),
    ]

    selected = eligible_markets(markets, now=datetime(2024, 1, 1, tzinfo=timezone.utc))

    assert [market.market_id for market in selected] == ["priced"]
    assert EventClusterer().cluster(selected) == []


def test_eligible_answer_sets_needs_a_complete_priced_set(make_market):
    now = datetime(2025, 1, 1, tzinfo=timezone.utc)
    priced = (Answer("a", "Newsom", 0.5), Answer("b", "Whitmer", 0.6))

    def multiple_choice(market_id, answers=priced, **overrides):
        return make_market(
            market_id,
            "Who will win the 2028 Democratic nomination?",
            None,
            outcome_type="MULTIPLE_CHOICE",
            answers=answers,
            **overrides,
        )

    markets = [
        multiple_choice("ok"),
        multiple_choice("independent", answers_sum_to_one=False),
        multiple_choice("single", answers=priced[:1]),
        multiple_choice("unpriced", answers=(priced[0], Answer("c", "Buttigieg", None))),
        multiple_choice("resolved", is_resolved=True),
        multiple_choice("shallow", liquidity=10.0),
        make_market("binary", "Will Newsom win the 2028 Democratic nomination?", 0.4),
    ]

    selected = eligible_answer_sets(markets, ScanConfig(min_liquidity=50.0), now=now)

    assert [market.market_id for market in selected] == ["ok"]
    assert "ok" not in {market.market_id for market in eligible_markets(markets, now=now)}
