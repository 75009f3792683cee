from functools import lru_cache
from typing import Any
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse

from pydantic import AnyUrl, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _ensure_sqlalchemy_postgres_scheme(value: str) -> str:
    if not value.lower().startswith("postgres"):
        return value

    parsed = urlparse(value)
    scheme = parsed.scheme.lower()

    if scheme == "postgres":
        scheme = "postgresql"

    if scheme == "postgresql":
        scheme = "postgresql+psycopg"

    if scheme not in {"postgresql+psycopg", "postgresql+asyncpg"}:
        scheme = "postgresql+psycopg"

    query_params = dict(parse_qsl(parsed.query, keep_blank_values=True))
    query_params.setdefault("sslmode", "require")
    new_query = urlencode(query_params, doseq=True)

    return urlunparse(parsed._replace(scheme=scheme, query=new_query))


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    debug: bool = Field(False, description="Enable FastAPI debug mode")
    environment: str = Field(
        default="development",
        description="Runtime environment (development|staging|production)",
    )
    database_url: AnyUrl | str = Field(
        default="sqlite:///./data/arbitrage.db",
        description="SQLAlchemy compatible database URL",
    )

    market_api_base_url: AnyUrl = Field(
        default="https://api.manifold.markets",
        description="Base URL of the read-only market quote API",
    )
    market_search_path: str = Field(
        default="/v0/search-markets",
        description="Relative path for the paginated market search endpoint",
    )
    market_detail_path: str = Field(
        default="/v0/market/{market_id}",
        description="Relative path template for single market lookups",
    )
    market_page_size: int = Field(500, description="Number of markets to fetch per page", ge=1)
    market_fetch_delay_seconds: float = Field(
        0.15, description="Pause between market pages to respect the quote API rate limit", ge=0
    )
    market_max_markets: int = Field(
        2000, description="Upper bound on markets pulled by a single scan", ge=1
    )
    http_timeout_seconds: float = Field(15.0, description="Timeout for outbound HTTP calls", gt=0)

    cluster_soft_size_limit: int = Field(
        6,
        description="Clusters larger than this lose confidence proportionally (over-grouping guard)",
        ge=2,
    )
    cluster_low_confidence_threshold: float = Field(
        0.5, description="Clusters below this confidence are flagged", ge=0, le=1
    )
    min_expected_profit: float = Field(
        2.0, description="Minimum expected profit (percent of stake) for a pair to surface", ge=0
    )
    fee_percent: float = Field(
        0.5, description="Execution fee estimate deducted from the raw spread (percent)", ge=0
    )
    reference_bet_size: float = Field(
        50.0, description="Stake used to estimate price impact against pool liquidity", gt=0
    )
    feedback_similarity_threshold: float = Field(
        0.8, description="Question similarity above which a feedback label applies to a pair", ge=0, le=1
    )
    feedback_override_multiplier: float = Field(
        5.0,
        description="Multiple of min_expected_profit that overrides a negative feedback label",
        ge=1,
    )
    feedback_example_limit: int = Field(
        200, description="Most recent feedback labels consulted per scan", ge=0
    )
    high_profit_threshold: float = Field(10.0, description="Expected profit for a high label")
    medium_profit_threshold: float = Field(5.0, description="Expected profit for a medium label")
    high_liquidity_threshold: float = Field(250.0, description="Minimum pool depth for a high label")
    medium_liquidity_threshold: float = Field(100.0, description="Minimum pool depth for a medium label")

    scan_worker_concurrency: int = Field(
        4, description="Number of clusters scored concurrently during a scan", ge=1
    )
    opportunity_notification_cap: int = Field(
        5,
        description="High-confidence pairs notified individually; the rest are rolled into one notification",
        ge=0,
    )
    notification_dedup_window_minutes: int = Field(
        60, description="Window in which an identical opportunity notification is not repeated", ge=0
    )

    trade_api_base_url: AnyUrl = Field(
        default="https://api.manifold.markets",
        description="Base URL of the trade placement API",
    )
    trade_min_capital: float = Field(10.0, description="Minimum capital accepted for a batch", gt=0)
    trade_min_unit: int = Field(1, description="Trades below this size are skipped", ge=1)
    trade_call_delay_seconds: float = Field(
        0.2, description="Fixed pause between trade placements", ge=0
    )

    watchlist_default_alert_threshold: float = Field(
        0.1, description="Default probability drift that triggers a watchlist alert", gt=0, le=1
    )

    email_api_base_url: AnyUrl = Field(
        default="https://api.resend.com",
        description="Base URL of the transactional email API",
    )
    email_api_key: str | None = Field(
        default=None, description="API key for the email sink; forwarding is disabled when unset"
    )
    email_from_address: str = Field(
        default="Arbitrage Agent <notifications@resend.dev>",
        description="Sender used for forwarded notifications",
    )

    openai_api_key: str | None = Field(
        default=None,
        description="API key used for AI review of candidate pairs",
    )
    openai_api_base: AnyUrl | str | None = Field(
        default=None,
        description="Optional override for the OpenAI API base URL (Azure/proxy support)",
    )
    openai_org_id: str | None = Field(
        default=None,
        description="Optional OpenAI organization identifier",
    )
    openai_project_id: str | None = Field(
        default=None,
        description="Optional OpenAI project identifier for usage scoping",
    )
    pair_review_model: str = Field(
        default="gpt-4o-mini",
        description="Chat model used to review candidate pairs",
    )

    @field_validator("database_url", mode="before")
    @classmethod
    def _normalize_postgres_urls(cls, value: Any) -> Any:
        if value is None or not isinstance(value, str):
            return value
        if value.startswith("postgres://"):
            return "postgresql://" + value[len("postgres://") :]
        return value

    @field_validator("medium_profit_threshold")
    @classmethod
    def _validate_profit_tiers(cls, value: float, info) -> float:
        high = info.data.get("high_profit_threshold")
        if high is not None and value > high:
            raise ValueError("medium_profit_threshold must not exceed high_profit_threshold")
        return value

    @field_validator("medium_liquidity_threshold")
    @classmethod
    def _validate_liquidity_tiers(cls, value: float, info) -> float:
        high = info.data.get("high_liquidity_threshold")
        if high is not None and value > high:
            raise ValueError("medium_liquidity_threshold must not exceed high_liquidity_threshold")
        return value

    @property
    def resolved_database_url(self) -> str:
        return _ensure_sqlalchemy_postgres_scheme(str(self.database_url))

    @property
    def feedback_override_profit(self) -> float:
        return self.min_expected_profit * self.feedback_override_multiplier


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
