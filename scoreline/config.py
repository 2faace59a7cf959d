"""Engine configuration using Pydantic Settings.

Every section is a typed model that rejects unknown fields, so a typo in a
config file fails at load time instead of silently falling back to a default.

Environment overrides use the SCORELINE_ prefix and "__" for nesting:
    SCORELINE_MODEL__RANDOM_VARIANCE=0.1
    SCORELINE_WEIGHTS__ODDS=0.3
"""

import json
from datetime import timedelta
from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from scoreline.models import Factor, Provider, SourceType

SUPPORTED_CONFIG_VERSION = 1


class RoundingPolicy(str, Enum):
    """Risk posture applied when turning expected goals into a scoreline."""

    FLOOR = "floor"  # conservative
    ROUND = "round"  # moderate
    CEIL = "ceil"  # bold


class FactorWeights(BaseModel):
    """Configured weight per factor. Conventionally sums to 1.0 (not enforced)."""

    model_config = ConfigDict(extra="forbid")

    form: float = Field(0.25, ge=0)
    home_advantage: float = Field(0.10, ge=0)
    expected_goals: float = Field(0.20, ge=0)
    odds: float = Field(0.20, ge=0)
    squad_strength: float = Field(0.10, ge=0)
    elo: float = Field(0.15, ge=0)

    def as_dict(self) -> dict[Factor, float]:
        return {factor: float(getattr(self, factor.value)) for factor in Factor}


class SourceTTLs(BaseModel):
    """Freshness contract per feed, in hours. Lineups expire at kickoff instead."""

    model_config = ConfigDict(extra="forbid")

    form_hours: float = Field(6.0, gt=0)
    expected_goals_hours: float = Field(48.0, gt=0)
    elo_hours: float = Field(48.0, gt=0)
    odds_hours: float = Field(168.0, gt=0)
    injuries_hours: float = Field(24.0, gt=0)
    suspensions_hours: float = Field(24.0, gt=0)

    # Extra age a snapshot may reach while still being served (0 = disabled)
    stale_grace_hours: float = Field(0.0, ge=0)

    def ttl_for(self, source_type: SourceType) -> Optional[timedelta]:
        """TTL for a feed, or None for event-anchored feeds."""
        if source_type == SourceType.LINEUPS:
            return None
        return timedelta(hours=getattr(self, f"{source_type.value}_hours"))

    @property
    def stale_grace(self) -> timedelta:
        return timedelta(hours=self.stale_grace_hours)


class ProviderQuota(BaseModel):
    """Daily request budget and rate limit for one provider."""

    model_config = ConfigDict(extra="forbid")

    hard_limit: int = Field(100, gt=0)
    operational_cap: int = Field(95, gt=0)
    safety_margin: int = Field(10, ge=0)
    secondary_cap: int = Field(50, ge=0)
    requests_per_minute: int = Field(10, gt=0)
    max_concurrency: int = Field(2, gt=0)

    @model_validator(mode="after")
    def _cap_within_limit(self) -> "ProviderQuota":
        if self.operational_cap > self.hard_limit:
            raise ValueError(
                f"operational_cap ({self.operational_cap}) must not exceed hard_limit ({self.hard_limit})"
            )
        return self


def _default_quotas() -> dict[Provider, ProviderQuota]:
    # Free-tier plans
    return {
        Provider.API_FOOTBALL: ProviderQuota(
            hard_limit=100, operational_cap=95, safety_margin=10,
            secondary_cap=50, requests_per_minute=10, max_concurrency=2,
        ),
        Provider.UNDERSTAT: ProviderQuota(
            hard_limit=500, operational_cap=450, safety_margin=0,
            secondary_cap=0, requests_per_minute=30, max_concurrency=1,
        ),
        Provider.CLUBELO: ProviderQuota(
            hard_limit=1000, operational_cap=900, safety_margin=0,
            secondary_cap=0, requests_per_minute=30, max_concurrency=2,
        ),
        Provider.FOOTBALL_DATA: ProviderQuota(
            hard_limit=1000, operational_cap=900, safety_margin=0,
            secondary_cap=0, requests_per_minute=10, max_concurrency=1,
        ),
        Provider.FOOTBALL_DATA_UK: ProviderQuota(
            hard_limit=200, operational_cap=180, safety_margin=0,
            secondary_cap=0, requests_per_minute=20, max_concurrency=1,
        ),
    }


class FeedSchedule(BaseModel):
    """Job interval and lookahead window per feed."""

    model_config = ConfigDict(extra="forbid")

    interval_minutes: dict[SourceType, int] = Field(default_factory=lambda: {
        SourceType.LINEUPS: 15,
        SourceType.INJURIES: 360,
        SourceType.SUSPENSIONS: 720,
        SourceType.FORM: 180,
        SourceType.ODDS: 720,
        SourceType.EXPECTED_GOALS: 1440,
        SourceType.ELO: 1440,
    })
    lookahead_hours: dict[SourceType, float] = Field(default_factory=lambda: {
        SourceType.LINEUPS: 2.0,
        SourceType.INJURIES: 72.0,
        SourceType.SUSPENSIONS: 72.0,
        SourceType.FORM: 72.0,
        SourceType.ODDS: 168.0,
        SourceType.EXPECTED_GOALS: 168.0,
        SourceType.ELO: 168.0,
    })
    # Horizon used when counting primary-tier demand for quota reservation
    primary_demand_hours: float = Field(24.0, gt=0)

    @field_validator("interval_minutes")
    @classmethod
    def _positive_intervals(cls, value: dict) -> dict:
        for source_type, minutes in value.items():
            if minutes <= 0:
                raise ValueError(f"interval for {source_type.value} must be positive")
        return value

    def interval_for(self, source_type: SourceType) -> int:
        return self.interval_minutes.get(source_type, 1440)

    def lookahead_for(self, source_type: SourceType) -> timedelta:
        return timedelta(hours=self.lookahead_hours.get(source_type, 72.0))


class ModelParameters(BaseModel):
    """Coefficients of the expected-goals adjustment chain."""

    model_config = ConfigDict(extra="forbid")

    home_baseline: float = Field(1.5, gt=0)
    away_baseline: float = Field(1.2, gt=0)
    home_advantage_boost: float = Field(0.15, ge=0)
    away_travel_penalty: float = Field(0.10, ge=0, lt=1)
    league_avg_xga: float = Field(1.3, gt=0)
    market_home_anchor: float = Field(0.4, ge=0, le=1)
    market_away_anchor: float = Field(0.3, ge=0, le=1)
    elo_scale: float = Field(400.0, gt=0)
    squad_strength_floor: float = Field(0.5, ge=0, le=1)

    # Form step extras: blend toward goals per match, nudge by current streak
    goal_trend_weight: float = Field(0.0, ge=0, le=1)
    streak_weight: float = Field(0.0, ge=0, le=1)
    streak_step: float = Field(0.02, ge=0, le=0.1)

    # Late-season matches regress both sides toward their mean
    high_stakes_boost: bool = True
    late_season_matchday: int = Field(30, gt=0)
    late_season_regression: float = Field(0.15, ge=0, le=1)

    min_expected_goals: float = Field(0.05, ge=0)
    min_goals: int = Field(0, ge=0)
    max_home_goals: int = Field(6, ge=0)
    max_away_goals: int = Field(5, ge=0)
    rounding: RoundingPolicy = RoundingPolicy.ROUND
    random_variance: float = Field(0.0, ge=0, le=1)
    fallback_threshold: float = Field(50.0, ge=0, le=100)
    degradation_report_threshold: float = Field(0.10, ge=0)

    @model_validator(mode="after")
    def _min_goals_within_max(self) -> "ModelParameters":
        if self.min_goals > min(self.max_home_goals, self.max_away_goals):
            raise ValueError("min_goals must not exceed max_home_goals or max_away_goals")
        return self


# Named tunings: overrides applied on top of the current WEIGHTS and MODEL
MODEL_PRESETS: dict[str, dict[str, dict]] = {
    "balanced": {
        "weights": {"form": 0.35, "home_advantage": 0.25},
        "model": {"goal_trend_weight": 0.25, "streak_weight": 0.15, "random_variance": 0.1},
    },
    "form_focused": {
        "weights": {"form": 0.60, "home_advantage": 0.15},
        "model": {"goal_trend_weight": 0.15, "streak_weight": 0.10, "random_variance": 0.1},
    },
    "home_advantage": {
        "weights": {"form": 0.20, "home_advantage": 0.50},
        "model": {"goal_trend_weight": 0.20, "streak_weight": 0.10, "random_variance": 0.1},
    },
    "goal_focused": {
        "weights": {"form": 0.25, "home_advantage": 0.15},
        "model": {
            "goal_trend_weight": 0.50, "streak_weight": 0.10, "random_variance": 0.1,
            "rounding": RoundingPolicy.CEIL, "min_goals": 1, "max_home_goals": 5, "max_away_goals": 5,
        },
    },
    "conservative": {
        "weights": {"form": 0.35, "home_advantage": 0.25},
        "model": {
            "goal_trend_weight": 0.25, "streak_weight": 0.15, "random_variance": 0.05,
            "rounding": RoundingPolicy.FLOOR, "max_home_goals": 2, "max_away_goals": 2,
        },
    },
    "chaotic": {
        "weights": {"form": 0.35, "home_advantage": 0.25},
        "model": {
            "goal_trend_weight": 0.25, "streak_weight": 0.15, "random_variance": 0.30,
            "rounding": RoundingPolicy.CEIL, "min_goals": 1, "max_home_goals": 5, "max_away_goals": 5,
        },
    },
}


class FallbackParameters(BaseModel):
    """Home-leaning outcome distribution used when data quality is too low."""

    model_config = ConfigDict(extra="forbid")

    home_win_probability: float = Field(0.45, ge=0, le=1)
    draw_probability: float = Field(0.27, ge=0, le=1)
    home_win_score: tuple[int, int] = (2, 1)
    draw_score: tuple[int, int] = (1, 1)
    away_win_score: tuple[int, int] = (1, 2)

    @model_validator(mode="after")
    def _probabilities_valid(self) -> "FallbackParameters":
        if self.home_win_probability + self.draw_probability > 1.0 + 1e-9:
            raise ValueError("home_win_probability + draw_probability must not exceed 1.0")
        home, away = self.home_win_score
        if home <= away:
            raise ValueError("home_win_score must be a home win")
        home, away = self.draw_score
        if home != away:
            raise ValueError("draw_score must be a draw")
        home, away = self.away_win_score
        if home >= away:
            raise ValueError("away_win_score must be an away win")
        return self

    @property
    def away_win_probability(self) -> float:
        return max(0.0, 1.0 - self.home_win_probability - self.draw_probability)


class Settings(BaseSettings):
    """Engine settings loaded from environment variables or a config file."""

    model_config = SettingsConfigDict(
        env_prefix="SCORELINE_",
        env_nested_delimiter="__",
        extra="forbid",
    )

    CONFIG_VERSION: int = SUPPORTED_CONFIG_VERSION

    # Capability registry: providers wired up in this deployment
    ENABLED_PROVIDERS: list[Provider] = Field(default_factory=lambda: list(Provider))

    # Credentials
    API_FOOTBALL_KEY: str = ""
    API_FOOTBALL_HOST: str = "v3.football.api-sports.io"
    FOOTBALL_DATA_TOKEN: str = ""

    # HTTP
    HTTP_TIMEOUT_SECONDS: float = Field(30.0, gt=0)
    HTTP_MAX_RETRIES: int = Field(3, ge=0)
    HTTP_RETRY_DELAY_BASE: float = Field(2.0, ge=0)

    # Health state machine
    HEALTH_DEGRADED_AFTER: int = Field(3, gt=0)
    HEALTH_DOWN_AFTER: int = Field(5, gt=0)

    # Form window (matches)
    FORM_WINDOW: int = Field(5, gt=0)
    XG_WINDOW: int = Field(10, gt=0)

    LOG_LEVEL: str = "INFO"

    # Prometheus endpoint for long-running processes (None = not served)
    METRICS_PORT: Optional[int] = Field(None, gt=0, lt=65536)

    WEIGHTS: FactorWeights = Field(default_factory=FactorWeights)
    TTLS: SourceTTLs = Field(default_factory=SourceTTLs)
    QUOTAS: dict[Provider, ProviderQuota] = Field(default_factory=_default_quotas)
    SCHEDULE: FeedSchedule = Field(default_factory=FeedSchedule)
    MODEL: ModelParameters = Field(default_factory=ModelParameters)
    FALLBACK: FallbackParameters = Field(default_factory=FallbackParameters)

    @field_validator("CONFIG_VERSION")
    @classmethod
    def _supported_version(cls, value: int) -> int:
        if value != SUPPORTED_CONFIG_VERSION:
            raise ValueError(
                f"unsupported CONFIG_VERSION {value} (expected {SUPPORTED_CONFIG_VERSION})"
            )
        return value

    @field_validator("QUOTAS")
    @classmethod
    def _fill_missing_quotas(cls, value: dict) -> dict:
        merged = _default_quotas()
        merged.update(value)
        return merged

    @model_validator(mode="after")
    def _health_thresholds_ordered(self) -> "Settings":
        if self.HEALTH_DOWN_AFTER < self.HEALTH_DEGRADED_AFTER:
            raise ValueError("HEALTH_DOWN_AFTER must be >= HEALTH_DEGRADED_AFTER")
        return self

    def quota_for(self, provider: Provider) -> ProviderQuota:
        return self.QUOTAS[provider]

    def with_preset(self, name: str) -> "Settings":
        """Copy of these settings with a named preset applied to WEIGHTS and MODEL."""
        preset = MODEL_PRESETS.get(name)
        if preset is None:
            raise ValueError(f"unknown preset {name!r} (choose from {', '.join(MODEL_PRESETS)})")
        weights = FactorWeights(**{**self.WEIGHTS.model_dump(), **preset["weights"]})
        model = ModelParameters(**{**self.MODEL.model_dump(), **preset["model"]})
        return self.model_copy(update={"WEIGHTS": weights, "MODEL": model})


def load_settings_file(path: "str | Path") -> Settings:
    """Load and validate a JSON config file. Unknown keys raise ValidationError."""
    with open(path, encoding="utf-8") as fh:
        data = json.load(fh)
    if not isinstance(data, dict):
        raise ValueError(f"config file {path} must contain a JSON object")
    return Settings(**data)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
