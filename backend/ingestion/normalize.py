from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any

from dateutil import parser as date_parser

from app.domain import Answer, Market


def _as_list(value: Any) -> list[Any]:
    """Return value as a list when possible, decoding JSON strings."""
    if isinstance(value, list):
        return value
    if isinstance(value, str):
        try:
            parsed = json.loads(value)
        except json.JSONDecodeError:
            return []
        return parsed if isinstance(parsed, list) else []
    return []


def _parse_float(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _parse_timestamp(value: Any) -> datetime | None:
    """Accept epoch milliseconds (the quote API's format) or ISO-8601 strings."""

    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        try:
            return datetime.fromtimestamp(value / 1000.0, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    try:
        parsed = date_parser.isoparse(str(value))
    except (ValueError, TypeError):
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def _clamp_probability(value: float | None) -> float | None:
    if value is None:
        return None
    return max(0.0, min(1.0, value))


def _parse_answers(value: Any) -> tuple[Answer, ...]:
    answers: list[Answer] = []
    for index, raw_answer in enumerate(_as_list(value)):
        if not isinstance(raw_answer, dict):
            continue
        answers.append(
            Answer(
                answer_id=str(raw_answer.get("id") or index),
                text=str(raw_answer.get("text") or ""),
                probability=_clamp_probability(_parse_float(raw_answer.get("probability"))),
            )
        )
    return tuple(answers)


def normalize_market(raw_market: dict[str, Any]) -> Market:
    market_id = str(raw_market.get("id") or raw_market.get("marketId") or raw_market.get("contractId"))
    liquidity = _parse_float(raw_market.get("totalLiquidity"))
    if liquidity is None:
        liquidity = _parse_float(raw_market.get("liquidity"))
    volume = _parse_float(raw_market.get("volume"))
    if volume is None:
        volume = _parse_float(raw_market.get("volume24Hours"))

    tags = _as_list(raw_market.get("groupSlugs")) or _as_list(raw_market.get("groupTags"))
    description = raw_market.get("textDescription")
    if not isinstance(description, str):
        description = raw_market.get("description") if isinstance(raw_market.get("description"), str) else None

    return Market(
        market_id=market_id,
        question=str(raw_market.get("question") or raw_market.get("title") or ""),
        probability=_clamp_probability(_parse_float(raw_market.get("probability"))),
        outcome_type=str(raw_market.get("outcomeType") or "BINARY").upper(),
        liquidity=liquidity,
        volume=volume,
        group_tags=tuple(str(tag) for tag in tags if tag),
        url=raw_market.get("url"),
        is_resolved=bool(raw_market.get("isResolved", False)),
        close_time=_parse_timestamp(raw_market.get("closeTime")),
        description=description,
        answers=_parse_answers(raw_market.get("answers")),
        answers_sum_to_one=raw_market.get("shouldAnswersSumToOne") is not False,
    )
