"""Domain models representing market snapshots, clusters and opportunities."""

from .errors import (
    ArbitrageError,
    DuplicateEntry,
    InsufficientBalance,
    InvalidCredential,
    InvalidTransition,
    NotFound,
    TransportError,
    ValidationError,
)
from .models import (
    Answer,
    CanonicalEvent,
    ClusterResult,
    ConfidenceLabel,
    ExhaustiveSet,
    FeedbackExample,
    Market,
    MarketPair,
    QuestionAnalysis,
    ScanConfig,
    TradeAccount,
    TradeAction,
    TradeExecutionResult,
    TradeTarget,
)

__all__ = [
    "Answer",
    "ArbitrageError",
    "CanonicalEvent",
    "ClusterResult",
    "ConfidenceLabel",
    "DuplicateEntry",
    "ExhaustiveSet",
    "FeedbackExample",
    "InsufficientBalance",
    "InvalidCredential",
    "InvalidTransition",
    "Market",
    "MarketPair",
    "NotFound",
    "QuestionAnalysis",
    "ScanConfig",
    "TradeAccount",
    "TradeAction",
    "TradeExecutionResult",
    "TradeTarget",
    "TransportError",
    "ValidationError",
]
