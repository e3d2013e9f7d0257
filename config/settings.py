"""
config/settings.py
──────────────────
Centralised settings loaded from .env via pydantic-settings.

Weight fields are flat so they can be overridden one by one from the
environment (e.g. ``RANK_WEIGHT_TIMING=0.1``); ``scoring_parameters()`` and
``ranking_weights()`` assemble and validate them.
"""

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

from models.params import RankingWeights, ScoringParameters


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Server
    app_host: str = "0.0.0.0"
    app_port: int = 8000
    app_env: str = "development"

    # Data
    catalog_file: Path = Path("./data/groups.json")

    # Cache
    redis_enabled: bool = True
    redis_url: str = "redis://localhost:6379/0"
    redis_key_prefix: str = "groupmatch:compat:"
    redis_timeout_seconds: float = 0.5
    cache_retry_interval_seconds: float = 30.0
    score_cache_ttl: int = 86_400
    analysis_cache_ttl: int = 7_200
    bulk_cache_ttl: int = 3_600
    fallback_cache_max_size: int = 1_000

    # Batch scoring
    batch_concurrency: int = 5
    batch_timeout_seconds: Optional[float] = None

    # Pairwise scoring
    weight_personality_traits: float = 0.35
    weight_travel_preferences: float = 0.25
    weight_experience_level: float = 0.15
    weight_budget_range: float = 0.15
    weight_activity_preferences: float = 0.10
    experience_level_tolerance: float = 1.2
    budget_flexibility_factor: float = 0.3
    activity_overlap_bonus: float = 0.25
    algorithm_version: str = "v1"

    # Ranking
    rank_weight_compatibility: float = 0.4
    rank_weight_group_size: float = 0.2
    rank_weight_timing: float = 0.2
    rank_weight_diversity: float = 0.1
    rank_weight_activity: float = 0.1
    min_compatibility_threshold: float = 70.0
    diversity_max_per_category: int = 3
    default_page_size: int = 10

    # Logging
    log_level: str = "INFO"
    log_file: Path = Path("./logs/app.log")

    def scoring_parameters(self) -> ScoringParameters:
        return ScoringParameters(
            dimension_weights={
                "personality_traits":   self.weight_personality_traits,
                "travel_preferences":   self.weight_travel_preferences,
                "experience_level":     self.weight_experience_level,
                "budget_range":         self.weight_budget_range,
                "activity_preferences": self.weight_activity_preferences,
            },
            experience_level_tolerance=self.experience_level_tolerance,
            budget_flexibility_factor=self.budget_flexibility_factor,
            activity_overlap_bonus=self.activity_overlap_bonus,
            algorithm_version=self.algorithm_version,
        ).validate_weights()

    def ranking_weights(self) -> RankingWeights:
        return RankingWeights(
            compatibility=self.rank_weight_compatibility,
            group_size=self.rank_weight_group_size,
            timing=self.rank_weight_timing,
            diversity=self.rank_weight_diversity,
            activity=self.rank_weight_activity,
        ).validate_weights()


@lru_cache
def get_settings() -> Settings:
    return Settings()
