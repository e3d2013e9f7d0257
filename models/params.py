"""
models/params.py
────────────────
Weight sets for pairwise scoring and multi-factor ranking.

Both models are plain pydantic objects; call ``validate_weights()`` before
use.  A weight set that does not sum to 1.0 is a configuration error and is
never normalised behind the caller's back.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from models.errors import ConfigValidationError

WEIGHT_TOLERANCE = 1e-3

DIMENSIONS = (
    "personality_traits",
    "travel_preferences",
    "experience_level",
    "budget_range",
    "activity_preferences",
)

TRAITS = ("energy_level", "social_preference", "adventure_style", "risk_tolerance")

TRAVEL_FIELDS = ("adventure_style", "budget_preference", "planning_style", "group_preference")

RANKING_FACTORS = ("compatibility", "group_size", "timing", "diversity", "activity")

DIMENSION_WEIGHTS: dict[str, float] = {
    "personality_traits":   0.35,
    "travel_preferences":   0.25,
    "experience_level":     0.15,
    "budget_range":         0.15,
    "activity_preferences": 0.10,
}

TRAIT_WEIGHTS: dict[str, float] = {trait: 0.25 for trait in TRAITS}

TRAVEL_PREFERENCE_WEIGHTS: dict[str, float] = {
    "adventure_style":   0.3,
    "budget_preference": 0.3,
    "planning_style":    0.2,
    "group_preference":  0.2,
}


def _check_weights(label: str, weights: dict[str, float], expected: tuple[str, ...]) -> None:
    missing = [name for name in expected if name not in weights]
    unknown = [name for name in weights if name not in expected]
    if missing or unknown:
        raise ConfigValidationError(
            f"{label}: expected keys {list(expected)}, "
            f"missing={missing}, unknown={unknown}"
        )
    negative = [name for name, value in weights.items() if value < 0]
    if negative:
        raise ConfigValidationError(f"{label}: negative weights for {negative}")
    total = sum(weights.values())
    if abs(total - 1.0) > WEIGHT_TOLERANCE:
        raise ConfigValidationError(f"{label} must sum to 1.0, got {total:.4f}")


class ScoringParameters(BaseModel):
    """Weights and tuning knobs for CompatibilityScorer."""

    model_config = ConfigDict(frozen=True)

    dimension_weights:         dict[str, float] = Field(default_factory=lambda: dict(DIMENSION_WEIGHTS))
    trait_weights:             dict[str, float] = Field(default_factory=lambda: dict(TRAIT_WEIGHTS))
    travel_preference_weights: dict[str, float] = Field(default_factory=lambda: dict(TRAVEL_PREFERENCE_WEIGHTS))
    experience_level_tolerance: float = 1.2
    budget_flexibility_factor:  float = 0.3
    activity_overlap_bonus:     float = 0.25
    algorithm_version:          str   = "v1"

    def validate_weights(self) -> ScoringParameters:
        _check_weights("dimension_weights", self.dimension_weights, DIMENSIONS)
        _check_weights("trait_weights", self.trait_weights, TRAITS)
        _check_weights("travel_preference_weights", self.travel_preference_weights, TRAVEL_FIELDS)
        if self.experience_level_tolerance <= 0:
            raise ConfigValidationError("experience_level_tolerance must be positive")
        if not 0 <= self.budget_flexibility_factor <= 1:
            raise ConfigValidationError("budget_flexibility_factor must be within [0, 1]")
        if self.activity_overlap_bonus < 0:
            raise ConfigValidationError("activity_overlap_bonus must not be negative")
        return self


class RankingWeights(BaseModel):
    """Weights of the five ranking factors (each factor is 0–1)."""

    model_config = ConfigDict(frozen=True)

    compatibility: float = 0.4
    group_size:    float = 0.2
    timing:        float = 0.2
    diversity:     float = 0.1
    activity:      float = 0.1

    def as_dict(self) -> dict[str, float]:
        return {factor: getattr(self, factor) for factor in RANKING_FACTORS}

    def validate_weights(self) -> RankingWeights:
        _check_weights("ranking weights", self.as_dict(), RANKING_FACTORS)
        return self
