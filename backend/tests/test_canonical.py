from __future__ import annotations

import pytest

from app.domain import CanonicalEvent
from app.services.canonical import (
    analyze_question,
    clean_text,
    extract_qualifiers,
    has_objective_resolution,
    keys_fuzzy_equal,
    normalize,
    question_similarity,
)


def test_normalize_extracts_year_jurisdiction_and_subject():
    key = normalize("Will Trump win the 2024 US presidential election?")

    assert key == CanonicalEvent(
        subject="election", event="trump win", year="2024", jurisdiction="us", condition=None
    )


def test_differently_worded_questions_share_a_key():
    first = normalize("Will Trump win the 2024 US presidential election?")
    second = normalize("Trump to WIN 2024 United States presidential election!!")

    assert first == second
    assert first.as_key() == "election|trump win|2024|us|-"


@pytest.mark.parametrize(
    ("question", "negated"),
    [
        ("Will Trump win the 2024 US presidential election?", False),
        ("Will Trump lose the 2024 US presidential election?", True),
        ("Will Trump not win the 2024 US presidential election?", True),
        ("Trump won't win the 2024 US presidential election", True),
    ],
)
def test_polarity_collapses_onto_the_positive_verb(question, negated):
    analysis = analyze_question(question)

    assert analysis.canonical == normalize("Will Trump win the 2024 US presidential election?")
    assert analysis.negated is negated


def test_nomination_and_victory_are_different_events():
    nominated = normalize("Will Newsom be nominated in 2028?")
    wins = normalize("Will Newsom win in 2028?")

    assert nominated != wins
    assert not keys_fuzzy_equal(nominated, wins)


def test_different_years_do_not_match():
    assert normalize("Will Trump win the 2024 election?") != normalize("Will Trump win the 2028 election?")
    assert not keys_fuzzy_equal(
        normalize("Will Trump win the 2024 election?"),
        normalize("Will Trump win the 2028 election?"),
    )


def test_deadline_qualifier_becomes_condition():
    key = normalize("Will Bitcoin reach $100k by end of 2025?")

    assert key.subject == "crypto"
    assert key.year == "2025"
    assert key.condition == "deadline=end of 2025"
    assert "reach" in key.event_tokens


def test_extract_qualifiers_reads_rounds_and_stages():
    qualifiers = extract_qualifiers("Will Macron lead the first round of the 2027 primary?")

    assert qualifiers == {"round": "first", "stage": "primary"}


def test_clean_text_collapses_phrases_and_whitespace():
    assert clean_text("  Will the   CEO step down?? ") == "will the ceo resign"


def test_fuzzy_equality_allows_missing_optional_fields():
    general = normalize("Will Trump win the 2024 election?")
    specific = normalize("Will Trump win the 2024 US presidential election?")

    assert general.jurisdiction is None
    assert keys_fuzzy_equal(general, specific)
    assert specific.specificity > general.specificity


def test_question_similarity_is_bounded_and_symmetric():
    first = "Will Trump win the 2024 US presidential election?"
    second = "Trump to win 2024 US presidential election?"

    score = question_similarity(first, second)
    assert 0.0 < score < 1.0
    assert score == pytest.approx(question_similarity(second, first))
    assert question_similarity(first, first) == 1.0
    assert question_similarity("alpha beta gamma", "zzz") < 0.2


def test_subjective_questions_are_rejected():
    assert not has_objective_resolution("What do I think is the best movie of 2025?")
    assert not has_objective_resolution("Will it rain?", "Resolves to my personal opinion")
    assert has_objective_resolution("Will the Fed cut rates in March 2025?")
