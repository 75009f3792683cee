"""LLM review of candidate pairs, guided by recent human feedback."""

from __future__ import annotations

import json
import re
from collections.abc import Sequence
from dataclasses import dataclass
from functools import lru_cache
from typing import Any

import httpx
from loguru import logger
from openai import OpenAI, OpenAIError

from app.core.config import Settings, settings as default_settings
from app.domain import FeedbackExample, MarketPair, ValidationError

_JSON_OBJECT_RE = re.compile(r"\{[\s\S]*\}")
_SUGGESTED_ACTIONS = {"BUY_YES_M1_NO_M2", "BUY_NO_M1_YES_M2", "SKIP"}
_SYSTEM_PROMPT = "You are an expert arbitrage analyst. Respond only with valid JSON."

RULES = """CRITICAL RULES FOR VALID ARBITRAGE:
1. Markets must ask EXACTLY the same question (semantically equivalent) OR be logical opposites
2. "Will X be nominated" is NOT the same as "Will X win" - these are DIFFERENT events
3. "Will X happen by 2025" is NOT the same as "Will X happen in 2026" - different timeframes
4. Both markets must have objective, verifiable resolution criteria
5. The probability spread must be large enough to profit after fees (~2%)"""


@lru_cache(maxsize=4)
def _cached_client(
    api_key: str,
    base_url: str | None,
    organization: str | None,
    project: str | None,
) -> OpenAI:
    kwargs: dict[str, Any] = {"api_key": api_key}
    if base_url:
        kwargs["base_url"] = base_url
    if organization:
        kwargs["organization"] = organization
    if project:
        kwargs["project"] = project
    return OpenAI(**kwargs)


def build_openai_client(config: Settings) -> OpenAI:
    if not config.openai_api_key:
        raise ValidationError("AI review is unavailable: OPENAI_API_KEY is not configured")
    base_url = str(config.openai_api_base) if config.openai_api_base else None
    return _cached_client(
        config.openai_api_key, base_url, config.openai_org_id, config.openai_project_id
    )


@dataclass(slots=True)
class PairReview:
    pair_index: int
    is_valid: bool
    confidence: float
    reason: str
    suggested_action: str = "SKIP"

    def to_dict(self) -> dict[str, Any]:
        return {
            "pair_index": self.pair_index,
            "is_valid": self.is_valid,
            "confidence": self.confidence,
            "reason": self.reason,
            "suggested_action": self.suggested_action,
        }


def _format_liquidity(value: float | None) -> str:
    return f"M${value:g}" if value else "unknown"


def _format_examples(examples: Sequence[FeedbackExample], *, valid: bool) -> list[str]:
    marker = "✓ VALID" if valid else "✗ INVALID"
    lines = []
    for example in [item for item in examples if item.is_valid_opportunity is valid][:3]:
        suffix = f" - {example.reason}" if example.reason else ""
        lines.append(
            f'{marker}: "{example.market1_question}" vs "{example.market2_question}"{suffix}'
        )
    return lines


def build_prompt(pair: MarketPair, examples: Sequence[FeedbackExample] = ()) -> str:
    sections = [
        "Analyze whether these two prediction markets represent a valid arbitrage opportunity.",
        (
            f'MARKET 1: "{pair.market1.question}"\n'
            f"- Probability: {pair.market1.probability * 100:.1f}%\n"
            f"- Liquidity: {_format_liquidity(pair.market1.liquidity)}"
        ),
        (
            f'MARKET 2: "{pair.market2.question}"\n'
            f"- Probability: {pair.market2.probability * 100:.1f}%\n"
            f"- Liquidity: {_format_liquidity(pair.market2.liquidity)}"
        ),
        (
            f"Expected Profit: {pair.expected_profit:.2f}%\n"
            f"Match Reason: {pair.match_reason or 'Unknown'}"
        ),
        RULES,
    ]
    valid_lines = _format_examples(examples, valid=True)
    if valid_lines:
        sections.append("EXAMPLES OF VALID ARBITRAGE (from user feedback):\n" + "\n".join(valid_lines))
    invalid_lines = _format_examples(examples, valid=False)
    if invalid_lines:
        sections.append("EXAMPLES OF INVALID ARBITRAGE (from user feedback):\n" + "\n".join(invalid_lines))
    sections.append(
        "Respond with ONLY a JSON object with keys "
        '"isValid" (boolean), "confidence" (0.0-1.0), "reason" (string) and '
        '"suggestedAction" ("BUY_YES_M1_NO_M2", "BUY_NO_M1_YES_M2" or "SKIP").'
    )
    return "\n\n".join(sections)


def parse_review(pair_index: int, content: str) -> PairReview:
    match = _JSON_OBJECT_RE.search(content or "")
    if not match:
        return PairReview(pair_index, False, 0.3, "Could not parse AI response")
    try:
        parsed = json.loads(match.group(0))
    except json.JSONDecodeError:
        return PairReview(pair_index, False, 0.3, "Could not parse AI response")
    if not isinstance(parsed, dict):
        return PairReview(pair_index, False, 0.3, "Could not parse AI response")

    try:
        confidence = float(parsed.get("confidence", 0.5))
    except (TypeError, ValueError):
        confidence = 0.5
    action = str(parsed.get("suggestedAction") or "SKIP")
    return PairReview(
        pair_index=pair_index,
        is_valid=parsed.get("isValid") is True,
        confidence=max(0.0, min(1.0, confidence)),
        reason=str(parsed.get("reason") or "Analysis completed"),
        suggested_action=action if action in _SUGGESTED_ACTIONS else "SKIP",
    )


class PairReviewer:
    def __init__(self, client: OpenAI | None = None, *, config: Settings | None = None) -> None:
        self.config = config or default_settings
        self._client = client

    @property
    def client(self) -> OpenAI:
        if self._client is None:
            self._client = build_openai_client(self.config)
        return self._client

    def review(
        self, pairs: Sequence[MarketPair], examples: Sequence[FeedbackExample] = ()
    ) -> list[PairReview]:
        if not pairs:
            return []
        client = self.client
        reviews: list[PairReview] = []
        for index, pair in enumerate(pairs):
            try:
                response = client.chat.completions.create(
                    model=self.config.pair_review_model,
                    messages=[
                        {"role": "system", "content": _SYSTEM_PROMPT},
                        {"role": "user", "content": build_prompt(pair, examples)},
                    ],
                    temperature=0.1,
                    response_format={"type": "json_object"},
                )
            except (OpenAIError, httpx.HTTPError) as exc:
                logger.warning("AI review failed for {}: {}", pair.opportunity_id, exc)
                reviews.append(PairReview(index, False, 0.0, f"Analysis error: {exc}"))
                continue
            content = response.choices[0].message.content if response.choices else ""
            reviews.append(parse_review(index, content or ""))
        return reviews


__all__ = ["PairReview", "PairReviewer", "build_openai_client", "build_prompt", "parse_review"]
