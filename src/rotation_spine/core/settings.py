"""
Centralized configuration.

All fields can be set through ``ROTATION_*`` environment variables
(nested models use ``__``, e.g. ``ROTATION_SCORE__NORMALIZER=10``) or a
``.env`` file.  Settings are resolved once and passed to constructors;
nothing in the package reads a process-wide settings singleton.
"""

from __future__ import annotations

from pydantic import BaseModel, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class RetrySettings(BaseModel):
    """Backoff policy for external fetches."""

    max_attempts: int = Field(default=5, ge=1)
    base_delay: float = Field(default=1.0, ge=0)
    max_delay: float = Field(default=60.0, ge=0)
    multiplier: float = Field(default=2.0, ge=1)


class FanoutSettings(BaseModel):
    quarter_batch_size: int = Field(default=8, ge=1)
    holdings_lookback_quarters: int = Field(default=4, ge=0)
    max_fetch_workers: int = Field(default=4, ge=1)


class PollerSettings(BaseModel):
    forms: list[str] = Field(default_factory=lambda: ["13F-HR", "13F-HR/A", "SC 13G", "SC 13D"])
    cadence_seconds: int = Field(default=300, ge=0)
    lookback_seconds: int = Field(default=900, ge=0)
    batch_size: int = Field(default=500, ge=1)
    max_iterations: int = Field(default=100, ge=1)


class DetectorSettings(BaseModel):
    threshold: float = Field(default=0.5, gt=0, le=1)
    min_dump_pct: float = Field(default=0.30, ge=0, le=1)
    min_history: int = Field(default=12, ge=2)


class ScoreWeights(BaseModel):
    """Linear weights of the composite rotation score."""

    dump: float = 2.0
    u_same: float = 1.0
    u_next: float = 0.85
    uhf_same: float = 0.7
    uhf_next: float = 0.6
    opt_same: float = 0.5
    opt_next: float = 0.4
    short_relief: float = 0.4

    @model_validator(mode="after")
    def _non_negative(self) -> ScoreWeights:
        for name, value in self.model_dump().items():
            if value < 0:
                raise ValueError(f"score weight {name} must be >= 0, got {value}")
        return self


class EndOfWindowMultipliers(BaseModel):
    u_next: float = Field(default=0.95, ge=0, le=1)
    uhf_next: float = Field(default=0.9, ge=0, le=1)
    opt_next: float = Field(default=0.5, ge=0, le=1)


class OptionsFlowWeights(BaseModel):
    pre_dump_put_surge: float = 1.2
    pre_dump_pc_ratio: float = 0.8
    post_dump_call_buildup: float = 0.7
    unusual_activity: float = 0.3
    min_confidence: float = 0.5


class ScoreSettings(BaseModel):
    weights: ScoreWeights = Field(default_factory=ScoreWeights)
    eow: EndOfWindowMultipliers = Field(default_factory=EndOfWindowMultipliers)
    options_flow: OptionsFlowWeights = Field(default_factory=OptionsFlowWeights)
    dump_gate_z: float = 1.5
    normalizer: float = Field(default=8.0, gt=0)
    lower_bound: float = -1.0
    upper_bound: float = 1.0
    eow_trading_days: int = Field(default=5, ge=0)

    @model_validator(mode="after")
    def _bounds(self) -> ScoreSettings:
        if self.lower_bound >= self.upper_bound:
            raise ValueError("score lower_bound must be below upper_bound")
        return self


class IndexPenaltySettings(BaseModel):
    base_penalty: float = Field(default=0.5, ge=0)
    max_penalty: float = Field(default=0.5, ge=0)


class EventWindowSettings(BaseModel):
    pre_days: int = Field(ge=0)
    post_days: int = Field(ge=0)


class EventStudySettings(BaseModel):
    windows: dict[str, EventWindowSettings] = Field(
        default_factory=lambda: {
            "holdings": EventWindowSettings(pre_days=120, post_days=120),
            "returns": EventWindowSettings(pre_days=10, post_days=120),
        }
    )


class GraphSettings(BaseModel):
    max_hops: int = Field(default=4, ge=1)
    top_paths: int = Field(default=25, ge=1)


class LlmSettings(BaseModel):
    kind: str = "template"
    model: str = "gpt-4o-mini"
    api_key: str | None = None
    base_url: str = "https://api.openai.com/v1"
    max_tokens: int = 800


class RotationSettings(BaseSettings):
    """Rotation pipeline configuration."""

    model_config = SettingsConfigDict(
        env_prefix="ROTATION_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        env_nested_delimiter="__",
    )

    # ── Database ─────────────────────────────────────────────────
    database_url: str = Field(default="sqlite:///data/rotation.db")
    database_echo: bool = False

    # ── Logging ──────────────────────────────────────────────────
    log_level: str = "INFO"
    json_logs: bool | None = None

    # ── Providers ────────────────────────────────────────────────
    sec_user_agent: str = "rotation-spine/0.1 (contact: unset)"
    sec_requests_per_second: float = Field(default=8.0, gt=0)
    edgar_base_url: str = "https://www.sec.gov"
    edgar_data_url: str = "https://data.sec.gov"
    edgar_search_url: str = "https://efts.sec.gov/LATEST/search-index"
    finra_base_url: str = "https://api.finra.org"
    finra_requests_per_second: float = Field(default=4.0, gt=0)
    http_timeout_seconds: float = Field(default=30.0, gt=0)

    # ── Signal routing ───────────────────────────────────────────
    # signal kind -> provider kind; kinds not listed go to ``default_provider``
    signal_routes: dict[str, str] = Field(
        default_factory=lambda: {
            "issuer": "edgar",
            "filings": "edgar",
            "submissions": "edgar",
            "short_interest": "finra",
            "ats_weekly": "finra",
        }
    )
    default_provider: str = "static"
    static_dataset_path: str | None = None

    # ── Pipeline ─────────────────────────────────────────────────
    retry: RetrySettings = Field(default_factory=RetrySettings)
    fanout: FanoutSettings = Field(default_factory=FanoutSettings)
    poller: PollerSettings = Field(default_factory=PollerSettings)
    detector: DetectorSettings = Field(default_factory=DetectorSettings)
    score: ScoreSettings = Field(default_factory=ScoreSettings)
    index_penalty: IndexPenaltySettings = Field(default_factory=IndexPenaltySettings)
    event_study: EventStudySettings = Field(default_factory=EventStudySettings)
    graph: GraphSettings = Field(default_factory=GraphSettings)
    llm: LlmSettings = Field(default_factory=LlmSettings)


__all__ = [
    "RotationSettings",
    "RetrySettings",
    "FanoutSettings",
    "PollerSettings",
    "DetectorSettings",
    "ScoreWeights",
    "EndOfWindowMultipliers",
    "OptionsFlowWeights",
    "ScoreSettings",
    "IndexPenaltySettings",
    "EventWindowSettings",
    "EventStudySettings",
    "GraphSettings",
    "LlmSettings",
]
