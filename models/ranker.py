"""
models/ranker.py
════════════════
Ranker: orders compatible groups by a weighted five-factor score (0–1).

Ranking Factors
───────────────
  compatibility   40 %   group overall score / 100
  group_size      20 %   distance of member count from the user's ideal size,
                         +0.1 when the group has room, −0.2 when full
  timing          20 %   1.0 base; 0.3 outside every available date range;
                         ×0.7 outside the acceptable duration band;
                         0.0 once the trip has already started
  diversity       10 %   member spread (see models/diversity.py)
  activity        10 %   0.6 × preferred coverage + 0.4 × must-have coverage;
                         0.1 whenever a deal-breaker is on the itinerary

Groups whose compatibility is below ``min_compatibility`` (default 70) are
removed before ranking and never come back.
"""

from __future__ import annotations

from datetime import date
from typing import Sequence

import numpy as np

from models.diversity import categorize, group_diversity
from models.entities import (
    CandidateGroup,
    CompatibilityProfile,
    RankedRecommendation,
    RankingBreakdown,
    RecommendationFilters,
    ScoredGroup,
    normalize_tags,
)
from models.params import RANKING_FACTORS, RankingWeights
from utils.facets import apply_filters
from utils.logger import logger

# member-count band per stated group preference
GROUP_SIZE_BANDS: dict[str, dict[str, int]] = {
    "solo":        {"min": 1, "max": 2,  "ideal": 1},
    "couple":      {"min": 2, "max": 4,  "ideal": 2},
    "small_group": {"min": 3, "max": 6,  "ideal": 4},
    "large_group": {"min": 6, "max": 15, "ideal": 8},
}
DEFAULT_GROUP_PREFERENCE = "small_group"

DEAL_BREAKER_ACTIVITY_SCORE = 0.1


def group_size_factor(user: CompatibilityProfile, group: CandidateGroup) -> float:
    preference = (user.travel_preferences.group_preference or "").strip().lower()
    band = GROUP_SIZE_BANDS.get(preference, GROUP_SIZE_BANDS[DEFAULT_GROUP_PREFERENCE])
    count = len(group.members)
    max_distance = max(band["max"] - band["ideal"], band["ideal"] - band["min"], 1)

    score = max(0.0, 1 - abs(count - band["ideal"]) / max_distance)
    score += 0.1 if count < group.max_members else -0.2
    return float(np.clip(score, 0.0, 1.0))


def timing_factor(user: CompatibilityProfile, group: CandidateGroup, today: date | None = None) -> float:
    if today is not None and group.start_date is not None and group.start_date < today:
        return 0.0

    score = 1.0
    availability = user.availability
    if availability is None:
        return score
    if group.start_date is not None and availability.dates:
        if not any(r.contains(group.start_date) for r in availability.dates):
            score = 0.3
    if group.duration_days is not None and availability.duration is not None:
        if not availability.duration.contains(group.duration_days):
            score *= 0.7
    return score


def activity_factor(user: CompatibilityProfile, group: CandidateGroup) -> float:
    prefs = user.activity_preferences
    on_offer = normalize_tags(group.activities)
    if normalize_tags(prefs.deal_breakers) & on_offer:
        return DEAL_BREAKER_ACTIVITY_SCORE

    preferred = normalize_tags(prefs.preferred)
    must_have = normalize_tags(prefs.must_have)
    preferred_share = len(preferred & on_offer) / len(preferred) if preferred else 0.5
    must_have_share = len(must_have & on_offer) / len(must_have) if must_have else 0.8
    return 0.6 * preferred_share + 0.4 * must_have_share


class Ranker:
    """
    Parameters
    ----------
    weights           : RankingWeights; validated on construction
    min_compatibility : hard gate on the group overall score (0–100)
    """

    def __init__(self, weights: RankingWeights | None = None, min_compatibility: float = 70.0):
        self.weights = (weights or RankingWeights()).validate_weights()
        self.min_compatibility = min_compatibility

    def filter_compatible(self, scored: Sequence[ScoredGroup]) -> list[ScoredGroup]:
        return [s for s in scored if s.compatibility.overall_score >= self.min_compatibility]

    def breakdown(
        self, user: CompatibilityProfile, item: ScoredGroup, today: date | None = None
    ) -> RankingBreakdown:
        return RankingBreakdown(
            compatibility=round(float(np.clip(item.compatibility.overall_score / 100, 0, 1)), 4),
            group_size=round(group_size_factor(user, item.group), 4),
            timing=round(timing_factor(user, item.group, today), 4),
            diversity=round(group_diversity(item.group), 4),
            activity=round(activity_factor(user, item.group), 4),
        )

    def rank(
        self,
        user: CompatibilityProfile,
        scored: Sequence[ScoredGroup],
        filters: RecommendationFilters | None = None,
        today: date | None = None,
    ) -> list[RankedRecommendation]:
        compatible = self.filter_compatible(scored)
        candidates = apply_filters(compatible, filters)
        weights = self.weights.as_dict()

        ranked = []
        for item in candidates:
            breakdown = self.breakdown(user, item, today)
            total = sum(weights[f] * getattr(breakdown, f) for f in RANKING_FACTORS)
            ranked.append(RankedRecommendation(
                group=item.group,
                compatibility=item.compatibility,
                ranking_score=round(float(np.clip(total, 0, 1)), 4),
                ranking_breakdown=breakdown,
                category=categorize(item.group),
            ))

        ranked.sort(key=lambda r: (-r.ranking_score, -r.compatibility.overall_score, r.group.id))
        logger.debug(
            f"Ranked {len(ranked)} of {len(scored)} groups for {user.user_id} "
            f"({len(scored) - len(compatible)} below {self.min_compatibility})"
        )
        return ranked
