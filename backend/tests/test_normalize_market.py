from __future__ import annotations

from datetime import datetime, timezone

from ingestion.normalize import normalize_market


def test_normalize_market_handles_real_payload(sample_market_payload):
    normalized = normalize_market(sample_market_payload)

    assert normalized.market_id == str(sample_market_payload.get("id"))
    assert normalized.question == sample_market_payload["question"]
    assert normalized.probability == 0.4375
    assert normalized.outcome_type == "BINARY"
    assert normalized.liquidity == 700.0
    assert normalized.volume == 2450.75
    assert normalized.group_tags == ("politics-default", "us-politics")
    assert normalized.is_resolved is False
    assert normalized.close_time == datetime(2100, 1, 1, tzinfo=timezone.utc)
    assert normalized.description.startswith("Resolves YES")


def test_normalize_market_tolerates_sparse_payloads():
    normalized = normalize_market(
        {
            "id": 42,
            "title": "Will it snow in Paris in 2030?",
            "probability": "1.7",
            "liquidity": "n/a",
            "volume24Hours": 15,
            "outcomeType": "binary",
            "groupSlugs": '["weather"]',
            "closeTime": "2030-01-01T00:00:00",
        }
    )

    assert normalized.market_id == "42"
    assert normalized.question == "Will it snow in Paris in 2030?"
    assert normalized.probability == 1.0
    assert normalized.liquidity is None
    assert normalized.volume == 15.0
    assert normalized.outcome_type == "BINARY"
    assert normalized.group_tags == ("weather",)
    assert normalized.close_time == datetime(2030, 1, 1, tzinfo=timezone.utc)


def test_normalize_market_keeps_missing_probability_unset():
    normalized = normalize_market(
        {
            "id": "x",
            "question": "Trump to win 2024 US presidential election?",
            "outcomeType": "BINARY",
            "totalLiquidity": 500,
        }
    )

    assert normalized.probability is None


def test_normalize_market_reads_multiple_choice_answers():
    normalized = normalize_market(
        {
            "id": "mc",
            "question": "Who will win the 2028 Democratic nomination?",
            "outcomeType": "MULTIPLE_CHOICE",
            "shouldAnswersSumToOne": True,
            "answers": [
                {"id": "a1", "text": "Newsom", "probability": 0.52},
                {"id": "a2", "text": "Whitmer", "probability": "0.61"},
                {"id": "a3", "text": "Other"},
                "not-an-answer",
            ],
        }
    )

    assert normalized.probability is None
    assert [(a.answer_id, a.text, a.probability) for a in normalized.answers] == [
        ("a1", "Newsom", 0.52),
        ("a2", "Whitmer", 0.61),
        ("a3", "Other", None),
    ]
    assert normalized.answers_sum_to_one is True
    assert normalize_market({"id": "y", "shouldAnswersSumToOne": False}).answers_sum_to_one is False
