"""
models/entities.py
──────────────────
Pydantic v2 domain models shared by the scoring, ranking and caching layers.
Every model is frozen: profiles and groups are read-only snapshots handed in
by the caller, and results are only ever replaced, never edited.

Sections
────────
  1. Profile models        — PersonalityTraits, TravelPreferences,
                             ExperienceLevel, BudgetRange, ActivityPreferences,
                             AvailabilityConstraints, CompatibilityProfile
  2. Group models          — GroupMember, CandidateGroup
  3. Score models          — DimensionScore, CompatibilityScore, MemberScore,
                             GroupDynamics, GroupCompatibilityResult, BatchResult
  4. Recommendation models — ScoredGroup, RankingBreakdown, RankedRecommendation,
                             Pagination, AvailableFilters, RecommendationFilters,
                             RecommendationOptions, BatchFailure, RecommendationPage
"""

from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Iterable, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field, model_validator


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def normalize_tags(values: Iterable[str] | None) -> set[str]:
    """Lower-case, stripped, de-duplicated activity tags."""
    if not values:
        return set()
    return {str(v).strip().lower() for v in values if str(v).strip()}


# Level labels by score bracket
def compatibility_level(score: float) -> str:
    if score >= 80: return "excellent"
    if score >= 60: return "good"
    if score >= 40: return "fair"
    return "poor"


LEVEL_DISPLAY: dict[str, tuple[str, str]] = {
    "excellent": ("Excellent Match", "#10B981"),
    "good":      ("Good Match",      "#3B82F6"),
    "fair":      ("Fair Match",      "#F59E0B"),
    "poor":      ("Poor Match",      "#EF4444"),
}


def level_display(level: str) -> dict[str, str]:
    label, color = LEVEL_DISPLAY.get(level, LEVEL_DISPLAY["poor"])
    return {"level": level, "label": label, "color": color}


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True)


# ─────────────────────────────────────────────────────────────────────────────
#  1. Profile models
# ─────────────────────────────────────────────────────────────────────────────

class PersonalityTraits(_Frozen):
    energy_level:      float = Field(50.0, ge=0, le=100)
    social_preference: float = Field(50.0, ge=0, le=100)
    adventure_style:   float = Field(50.0, ge=0, le=100)
    risk_tolerance:    float = Field(50.0, ge=0, le=100)


class TravelPreferences(_Frozen):
    """Categorical travel preferences; unknown values score as neutral."""
    adventure_style:   Optional[str] = Field(None, description="explorer | adventurer | comfort | cultural")
    budget_preference: Optional[str] = Field(None, description="budget | moderate | luxury")
    planning_style:    Optional[str] = Field(None, description="spontaneous | flexible | structured | detailed")
    group_preference:  Optional[str] = Field(None, description="solo | couple | small_group | large_group")


class ExperienceLevel(_Frozen):
    overall:    float            = Field(3.0, ge=1, le=5)
    categories: dict[str, float] = Field(default_factory=dict)


class BudgetRange(_Frozen):
    min:         float = Field(..., ge=0)
    max:         float = Field(..., ge=0)
    currency:    str   = "USD"
    flexibility: float = Field(0.2, ge=0, le=1)

    @model_validator(mode="after")
    def _ordered(self) -> BudgetRange:
        if self.max < self.min:
            raise ValueError(f"budget max ({self.max}) is below min ({self.min})")
        return self


class ActivityPreferences(_Frozen):
    preferred:     list[str] = Field(default_factory=list)
    must_have:     list[str] = Field(default_factory=list)
    disliked:      list[str] = Field(default_factory=list)
    deal_breakers: list[str] = Field(default_factory=list)


class DateRange(_Frozen):
    start: date
    end:   date

    @model_validator(mode="after")
    def _ordered(self) -> DateRange:
        if self.end < self.start:
            raise ValueError("date range ends before it starts")
        return self

    def contains(self, day: date) -> bool:
        return self.start <= day <= self.end


class DurationRange(_Frozen):
    min: int = Field(1, ge=1)
    max: int = Field(30, ge=1)

    def contains(self, days: int) -> bool:
        return self.min <= days <= self.max


class AvailabilityConstraints(_Frozen):
    dates:     list[DateRange]         = Field(default_factory=list)
    duration:  Optional[DurationRange] = None
    locations: list[str]               = Field(default_factory=list)


class CompatibilityProfile(_Frozen):
    """Read-only traveler snapshot supplied by the profile store."""
    user_id:              str                               = Field(..., min_length=1)
    personality_traits:   Optional[PersonalityTraits]       = None
    travel_preferences:   TravelPreferences                 = Field(default_factory=TravelPreferences)
    experience_level:     Optional[ExperienceLevel]         = None
    budget_range:         Optional[BudgetRange]             = None
    activity_preferences: ActivityPreferences               = Field(default_factory=ActivityPreferences)
    availability:         Optional[AvailabilityConstraints] = None
    age:                  Optional[int]                     = Field(None, ge=0, le=120)
    home_country:         Optional[str]                     = None


# ─────────────────────────────────────────────────────────────────────────────
#  2. Group models
# ─────────────────────────────────────────────────────────────────────────────

class GroupMember(CompatibilityProfile):
    name: str = "Anonymous"


class CandidateGroup(_Frozen):
    """Read-only candidate group supplied by the group catalog."""
    id:               str                   = Field(..., min_length=1)
    name:             str                   = ""
    members:          list[GroupMember]     = Field(default_factory=list)
    max_members:      int                   = Field(10, ge=1)
    start_date:       Optional[date]        = None
    duration_days:    Optional[int]         = Field(None, ge=1)
    budget_range:     Optional[BudgetRange] = None
    activities:       list[str]             = Field(default_factory=list)
    category:         Optional[str]         = Field(None, description="Explicit diversity bucket")
    destination:      Optional[str]         = None
    experience_level: Optional[float]       = Field(None, ge=1, le=5)


# ─────────────────────────────────────────────────────────────────────────────
#  3. Score models
# ─────────────────────────────────────────────────────────────────────────────

class DimensionScore(_Frozen):
    """One scoring dimension inside a CompatibilityScore."""
    score:   float            = Field(..., ge=0, le=100)
    weight:  float            = Field(..., ge=0, le=1)
    reasons: list[str]        = Field(default_factory=list, description="Human-readable reasons")
    details: dict[str, float] = Field(default_factory=dict)


class CompatibilityScore(_Frozen):
    """Pairwise score between two profiles."""
    user1_id:          str
    user2_id:          str
    group_id:          Optional[str]             = None
    overall_score:     float                     = Field(50.0, ge=0, le=100)
    confidence:        float                     = Field(0.3, ge=0, le=1)
    dimensions:        dict[str, DimensionScore] = Field(default_factory=dict)
    algorithm_version: str                       = "v1"
    calculated_at:     datetime                  = Field(default_factory=_utcnow)
    error:             Optional[str]             = None

    @computed_field
    @property
    def level(self) -> str:
        return compatibility_level(self.overall_score)


class MemberScore(_Frozen):
    member_id:   str
    member_name: str
    score:       float            = Field(..., ge=0, le=100)
    confidence:  float            = Field(..., ge=0, le=1)
    dimensions:  dict[str, float] = Field(default_factory=dict)
    error:       Optional[str]    = None

    @computed_field
    @property
    def level(self) -> str:
        return compatibility_level(self.score)

    @computed_field
    @property
    def display(self) -> dict[str, str]:
        return level_display(self.level)


class GroupDynamics(_Frozen):
    cohesion:     float     = 50.0
    diversity:    float     = 50.0
    leadership:   float     = 50.0
    energy:       float     = 50.0
    expected_fit: float     = 50.0
    risk_factors: list[str] = Field(default_factory=list)


class GroupCompatibilityResult(_Frozen):
    group_id:           str
    overall_score:      float              = Field(50.0, ge=0, le=100)
    confidence:         float              = Field(0.3, ge=0, le=1)
    member_scores:      list[MemberScore]  = Field(default_factory=list)
    group_dynamics:     GroupDynamics      = Field(default_factory=GroupDynamics)
    member_count:       int                = 0
    valid_calculations: int                = 0
    calculated_at:      datetime           = Field(default_factory=_utcnow)
    error:              Optional[str]      = None

    @computed_field
    @property
    def level(self) -> str:
        return compatibility_level(self.overall_score)

    @computed_field
    @property
    def display(self) -> dict[str, str]:
        return level_display(self.level)


class BatchResult(_Frozen):
    """One entry of a batch run; failed entries carry a neutral payload."""
    group_id:      str
    success:       bool
    compatibility: GroupCompatibilityResult
    error:         Optional[str] = None
    from_cache:    bool          = False


# ─────────────────────────────────────────────────────────────────────────────
#  4. Recommendation models
# ─────────────────────────────────────────────────────────────────────────────

class ScoredGroup(_Frozen):
    group:         CandidateGroup
    compatibility: GroupCompatibilityResult


class RankingBreakdown(_Frozen):
    compatibility: float = Field(..., ge=0, le=1)
    group_size:    float = Field(..., ge=0, le=1)
    timing:        float = Field(..., ge=0, le=1)
    diversity:     float = Field(..., ge=0, le=1)
    activity:      float = Field(..., ge=0, le=1)


class RankedRecommendation(_Frozen):
    group:             CandidateGroup
    compatibility:     GroupCompatibilityResult
    ranking_score:     float = Field(..., ge=0, le=1)
    ranking_breakdown: RankingBreakdown
    category:          str   = "general"
    explanation:       str   = ""


class Pagination(_Frozen):
    current_page: int
    page_size:    int
    total_items:  int
    total_pages:  int
    has_next:     bool
    has_prev:     bool


class AvailableFilters(_Frozen):
    activities:    list[str] = Field(default_factory=list)
    destinations:  list[str] = Field(default_factory=list)
    budget_ranges: list[str] = Field(default_factory=list)
    durations:     list[str] = Field(default_factory=list)
    group_sizes:   list[str] = Field(default_factory=list)


class RecommendationFilters(_Frozen):
    """Hard filters applied after the compatibility gate; empty means any."""
    activities:    list[str]      = Field(default_factory=list)
    destinations:  list[str]      = Field(default_factory=list)
    budget_ranges: list[str]      = Field(default_factory=list)
    durations:     list[str]      = Field(default_factory=list)
    group_sizes:   list[str]      = Field(default_factory=list)
    start_after:   Optional[date] = None
    start_before:  Optional[date] = None


class RecommendationOptions(_Frozen):
    page:                 int                             = Field(0, ge=0)
    page_size:            int                             = Field(10, ge=1, le=100)
    filters:              Optional[RecommendationFilters] = None
    include_explanations: bool                            = True
    force_recalculation:  bool                            = False
    timeout:              Optional[float]                 = Field(None, gt=0, description="Batch deadline in seconds")


class BatchFailure(_Frozen):
    group_id: str
    error:    str


class RecommendationPage(_Frozen):
    recommendations:         list[RankedRecommendation]
    pagination:              Pagination
    available_filters:       AvailableFilters
    total_compatible_groups: int
    failures:                list[BatchFailure] = Field(default_factory=list)
    generated_at:            datetime           = Field(default_factory=_utcnow)
