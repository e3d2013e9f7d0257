"""
models/presentation.py
──────────────────────
Paging and human-readable justifications for ranked recommendations.
"""

from __future__ import annotations

import math
from typing import Sequence, TypeVar

import numpy as np

from models.entities import (
    CandidateGroup,
    CompatibilityProfile,
    Pagination,
    RankedRecommendation,
    normalize_tags,
)
from models.errors import InvalidInputError
from utils.logger import logger

T = TypeVar("T")

STRONG_FACTOR = 0.8
SIMILAR_EXPERIENCE_GAP = 1.0

_FACTOR_PHRASES = (
    ("compatibility", "excellent personality alignment"),
    ("group_size",    "ideal group size for your preferences"),
    ("timing",        "perfect timing match"),
    ("activity",      "shared activity interests"),
    ("diversity",     "great group diversity"),
)


def paginate(items: Sequence[T], page: int, page_size: int) -> tuple[list[T], Pagination]:
    """Zero-indexed slice of ``items`` plus its paging metadata."""
    if page < 0:
        raise InvalidInputError(f"page must be >= 0, got {page}")
    if page_size < 1:
        raise InvalidInputError(f"page_size must be >= 1, got {page_size}")

    total = len(items)
    start = page * page_size
    end = start + page_size
    return list(items[start:end]), Pagination(
        current_page=page,
        page_size=page_size,
        total_items=total,
        total_pages=math.ceil(total / page_size),
        has_next=end < total,
        has_prev=page > 0,
    )


class ExplanationBuilder:
    def explain(self, rec: RankedRecommendation, user: CompatibilityProfile) -> str:
        headline = f"{rec.compatibility.overall_score:g}% compatibility match"
        try:
            parts = [headline]
            reasons = [
                phrase for factor, phrase in _FACTOR_PHRASES
                if getattr(rec.ranking_breakdown, factor) > STRONG_FACTOR
            ]
            if reasons:
                parts.append(", ".join(reasons))
            parts.extend(self.highlights(rec.group, user))
        except Exception as exc:
            logger.debug(f"Explanation for group {rec.group.id} fell back to headline: {exc}")
            return headline
        return " • ".join(parts)

    @staticmethod
    def highlights(group: CandidateGroup, user: CompatibilityProfile) -> list[str]:
        notes: list[str] = []

        shared = normalize_tags(user.activity_preferences.preferred) & normalize_tags(group.activities)
        if shared:
            noun = "activity" if len(shared) == 1 else "activities"
            notes.append(f"shares {len(shared)} preferred {noun}")

        group_level = group.experience_level
        if group_level is None:
            levels = [m.experience_level.overall for m in group.members if m.experience_level]
            group_level = float(np.mean(levels)) if levels else None
        if user.experience_level is not None and group_level is not None:
            if abs(user.experience_level.overall - group_level) <= SIMILAR_EXPERIENCE_GAP:
                notes.append("similar experience level")

        ub, gb = user.budget_range, group.budget_range
        if ub is not None and gb is not None and ub.currency.upper() == gb.currency.upper():
            if max(ub.min, gb.min) <= min(ub.max, gb.max):
                notes.append("budget-compatible")
        return notes
