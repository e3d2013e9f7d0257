"""
models/diversity.py
───────────────────
Group diversity, both as a ranking factor and as a result-set constraint.

  group_diversity(group)   0–1 spread of the group's members:
                             personality 40 % | experience 30 % |
                             age 15 % | home country 15 %
  categorize(group)        adventure | cultural | relaxation |
                           large_group | general
  DiversityBalancer        caps same-category groups in the ranked list,
                           then backfills in rank order
"""

from __future__ import annotations

import math
from collections import Counter
from typing import Sequence

import numpy as np

from models.entities import CandidateGroup, RankedRecommendation, normalize_tags
from models.params import TRAITS

DIVERSITY_WEIGHTS = {
    "personality": 0.40,
    "experience":  0.30,
    "age":         0.15,
    "background":  0.15,
}

# Largest population stdev that still counts as "fully spread"
_TRAIT_SPREAD_MAX = 50.0       # traits live on 0–100
_EXPERIENCE_SPREAD_MAX = 2.0   # levels live on 1–5
_AGE_SPREAD_MAX = 15.0

_CATEGORY_KEYWORDS: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("adventure",  ("extreme", "adventure")),
    ("cultural",   ("culture", "cultural", "history")),
    ("relaxation", ("relax", "wellness")),
)
LARGE_GROUP_MIN_SIZE = 8


def _spread(values: Sequence[float], ceiling: float) -> float:
    if len(values) < 2:
        return 0.5
    return float(min(1.0, np.std(values) / ceiling))


def diversity_breakdown(group: CandidateGroup) -> dict[str, float]:
    members = group.members
    traits = [m.personality_traits for m in members if m.personality_traits is not None]
    if len(traits) >= 2:
        personality = float(np.mean([
            _spread([getattr(t, name) for t in traits], _TRAIT_SPREAD_MAX) for name in TRAITS
        ]))
    else:
        personality = 0.5

    levels = [m.experience_level.overall for m in members if m.experience_level is not None]
    ages = [float(m.age) for m in members if m.age is not None]

    countries = [m.home_country.strip().lower() for m in members if m.home_country]
    if len(countries) >= 2:
        background = (len(set(countries)) - 1) / (len(countries) - 1)
    else:
        background = 0.5

    return {
        "personality": personality,
        "experience":  _spread(levels, _EXPERIENCE_SPREAD_MAX),
        "age":         _spread(ages, _AGE_SPREAD_MAX),
        "background":  background,
    }


def group_diversity(group: CandidateGroup) -> float:
    if len(group.members) < 2:
        return 0.5
    parts = diversity_breakdown(group)
    blended = sum(DIVERSITY_WEIGHTS[name] * value for name, value in parts.items())
    return float(np.clip(blended, 0.0, 1.0))


def categorize(group: CandidateGroup) -> str:
    if group.category:
        return group.category.strip().lower()
    tags = normalize_tags(group.activities)
    for category, keywords in _CATEGORY_KEYWORDS:
        if any(keyword in tag for tag in tags for keyword in keywords):
            return category
    if len(group.members) >= LARGE_GROUP_MIN_SIZE:
        return "large_group"
    return "general"


class DiversityBalancer:
    """
    Greedy per-category cap over a ranked list.

    Groups over the cap are held back and appended afterwards (still in rank
    order) until the list reaches
    ``min(n, max(ceil(n / 2), 2 × cap × categories present))``.
    """

    def __init__(self, max_per_category: int = 3):
        self.max_per_category = max(1, max_per_category)

    def balance(self, ranked: Sequence[RankedRecommendation]) -> list[RankedRecommendation]:
        total = len(ranked)
        if total == 0:
            return []

        counts: Counter[str] = Counter()
        admitted: list[RankedRecommendation] = []
        held_back: list[RankedRecommendation] = []
        for rec in ranked:
            category = rec.category or categorize(rec.group)
            if counts[category] < self.max_per_category:
                counts[category] += 1
                admitted.append(rec)
            else:
                held_back.append(rec)

        categories = len({rec.category or categorize(rec.group) for rec in ranked})
        target = min(total, max(math.ceil(total / 2), 2 * self.max_per_category * categories))
        if len(admitted) < target:
            admitted.extend(held_back[:target - len(admitted)])
        return admitted
