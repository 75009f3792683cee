"""Typed domain representations used across ingestion, scoring, persistence, and APIs."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class ConfidenceLabel(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        return _LABEL_RANKS[self]

    @classmethod
    def from_rank(cls, rank: int) -> "ConfidenceLabel":
        clamped = max(0, min(rank, 2))
        return next(label for label, value in _LABEL_RANKS.items() if value == clamped)


_LABEL_RANKS = {
    ConfidenceLabel.LOW: 0,
    ConfidenceLabel.MEDIUM: 1,
    ConfidenceLabel.HIGH: 2,
}


class TradeAction(str, Enum):
    BUY_YES = "BUY_YES"
    BUY_NO = "BUY_NO"


@dataclass(slots=True, frozen=True)
class Answer:
    """One outcome of a multiple-choice market."""

    answer_id: str
    text: str
    probability: float | None


@dataclass(slots=True, frozen=True)
class Market:
    """Immutable quote snapshot fetched for one scan."""

    market_id: str
    question: str
    probability: float | None
    outcome_type: str = "BINARY"
    liquidity: float | None = None
    volume: float | None = None
    group_tags: tuple[str, ...] = ()
    url: str | None = None
    is_resolved: bool = False
    close_time: datetime | None = None
    description: str | None = None
    answers: tuple[Answer, ...] = ()
    answers_sum_to_one: bool = True


@dataclass(slots=True, frozen=True, order=True)
class CanonicalEvent:
    """Normalized identity of a real-world question."""

    subject: str
    event: str
    year: str | None = None
    jurisdiction: str | None = None
    condition: str | None = None

    @property
    def event_tokens(self) -> frozenset[str]:
        return frozenset(self.event.split())

    @property
    def specificity(self) -> int:
        optional = sum(
            1 for value in (self.year, self.jurisdiction, self.condition) if value is not None
        )
        return optional + len(self.event_tokens)

    def as_key(self) -> str:
        return "|".join(
            [
                self.subject,
                self.event,
                self.year or "-",
                self.jurisdiction or "-",
                self.condition or "-",
            ]
        )

    def to_dict(self) -> dict[str, str | None]:
        return {
            "subject": self.subject,
            "event": self.event,
            "year": self.year,
            "jurisdiction": self.jurisdiction,
            "condition": self.condition,
        }


@dataclass(slots=True, frozen=True)
class QuestionAnalysis:
    """Canonical key plus the polarity of the wording that produced it."""

    canonical: CanonicalEvent
    negated: bool
    tokens: frozenset[str]


@dataclass(slots=True)
class ClusterResult:
    cluster_id: str
    markets: list[Market]
    canonical_event: CanonicalEvent
    confidence: float
    analyses: dict[str, QuestionAnalysis] = field(default_factory=dict)
    low_confidence: bool = False


@dataclass(slots=True)
class MarketPair:
    market1: Market
    market2: Market
    expected_profit: float
    gap: float
    label: ConfidenceLabel
    action1: TradeAction
    action2: TradeAction
    cluster_id: str | None = None
    similarity: float | None = None
    match_reason: str | None = None
    opposite: bool = False
    feedback_note: str | None = None

    kind = "pair"

    @property
    def min_liquidity(self) -> float:
        return min(self.market1.liquidity or 0.0, self.market2.liquidity or 0.0)

    @property
    def opportunity_id(self) -> str:
        first, second = sorted((self.market1.market_id, self.market2.market_id))
        prefix = "op" if self.opposite else "sp"
        return f"{prefix}_{first}_{second}"

    @property
    def headline(self) -> str:
        return f"{self.market1.question[:50]} vs {self.market2.question[:50]}"

    def content_key(self) -> str:
        """Stable identity of the pair's tradeable content (ids and quoted prices)."""

        legs = sorted(
            (
                (self.market1.market_id, round(self.market1.probability, 2)),
                (self.market2.market_id, round(self.market2.probability, 2)),
            )
        )
        return ";".join(f"{market_id}@{prob:.2f}" for market_id, prob in legs)

    def to_payload(self) -> dict[str, Any]:
        return {
            "opportunity_id": self.opportunity_id,
            "kind": self.kind,
            "market1": _market_payload(self.market1, self.action1),
            "market2": _market_payload(self.market2, self.action2),
            "expected_profit": round(self.expected_profit, 4),
            "gap": round(self.gap, 4),
            "label": self.label.value,
            "opposite": self.opposite,
            "similarity": self.similarity,
            "match_reason": self.match_reason,
            "feedback_note": self.feedback_note,
        }


@dataclass(slots=True)
class ExhaustiveSet:
    """A multiple-choice market whose answer prices do not sum to one."""

    market: Market
    total_probability: float
    expected_profit: float
    gap: float
    label: ConfidenceLabel
    action: TradeAction

    kind = "exhaustive_set"

    @property
    def opportunity_id(self) -> str:
        return f"es_{self.market.market_id}"

    @property
    def headline(self) -> str:
        return (
            f"{self.market.question[:80]} answers sum to "
            f"{self.total_probability:.1%}"
        )

    def content_key(self) -> str:
        prices = ",".join(
            f"{answer.answer_id}@{answer.probability:.2f}" for answer in self.market.answers
        )
        return f"{self.market.market_id}[{prices}]"

    def to_payload(self) -> dict[str, Any]:
        return {
            "opportunity_id": self.opportunity_id,
            "kind": self.kind,
            "market1": _market_payload(self.market, self.action),
            "legs": [
                {
                    "id": f"{self.market.market_id}_{answer.answer_id}",
                    "answer": answer.text,
                    "probability": answer.probability,
                    "action": self.action.value,
                }
                for answer in self.market.answers
            ],
            "total_probability": round(self.total_probability, 4),
            "expected_profit": round(self.expected_profit, 4),
            "gap": round(self.gap, 4),
            "label": self.label.value,
        }


def _market_payload(market: Market, action: TradeAction) -> dict[str, Any]:
    return {
        "id": market.market_id,
        "question": market.question,
        "probability": market.probability,
        "liquidity": market.liquidity,
        "volume": market.volume,
        "url": market.url,
        "action": action.value,
    }


@dataclass(slots=True, frozen=True)
class FeedbackExample:
    """Human label on a historical pair."""

    market1_question: str
    market2_question: str
    is_valid_opportunity: bool
    reason: str | None = None


@dataclass(slots=True)
class ScanConfig:
    min_liquidity: float = 0.0
    min_volume: float = 0.0
    max_markets: int | None = None
    email: str | None = None
    email_on_completion: bool = False
    email_on_opportunities: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "min_liquidity": self.min_liquidity,
            "min_volume": self.min_volume,
            "max_markets": self.max_markets,
            "email_on_completion": self.email_on_completion,
            "email_on_opportunities": self.email_on_opportunities,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any] | None, **overrides: Any) -> "ScanConfig":
        values = {key: value for key, value in (payload or {}).items() if key in _SCAN_CONFIG_FIELDS}
        values.update({key: value for key, value in overrides.items() if value is not None})
        return cls(**values)


_SCAN_CONFIG_FIELDS = frozenset(
    {"min_liquidity", "min_volume", "max_markets", "email", "email_on_completion", "email_on_opportunities"}
)


@dataclass(slots=True, frozen=True)
class TradeTarget:
    market_id: str
    allocation_percent: float
    question: str = ""
    outcome: str = "YES"


@dataclass(slots=True)
class TradeExecutionResult:
    trades_executed: int
    errors: list[str]
    requested_count: int

    @property
    def message(self) -> str:
        return f"Executed {self.trades_executed} of {self.requested_count} trades"


@dataclass(slots=True, frozen=True)
class TradeAccount:
    username: str
    balance: float
