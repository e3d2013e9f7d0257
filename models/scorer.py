"""
models/scorer.py
════════════════
CompatibilityScorer: pairwise traveler compatibility (0–100) with a
per-dimension breakdown and a 0–1 confidence.

Five Scoring Dimensions
───────────────────────
  personality_traits      35 %
      • Banded distance per trait (energy, social, adventure, risk)
      • Trait weights shifted by the pair's detected adventure type
      • Hard trait conflicts clamp the dimension to 15

  travel_preferences      25 %
      • Travel style tier, budget preference, planning style, group size
      • Unknown / missing fields score 0.5 and lower confidence

  experience_level        15 %
      • Level gap divided by a tolerance multiplier, then banded
      • Shared experience categories contribute 40 %

  budget_range            15 %
      • Overlap of the two ranges relative to their mean width
      • No overlap scores 0; overlap is lifted by the lower flexibility

  activity_preferences    10 %
      • Jaccard overlap of preferred and must-have tags
      • Any deal-breaker hit forces the dimension to 0

Output
──────
  CompatibilityScore with overall_score, confidence, level and one
  DimensionScore (score, weight, reasons, details) per dimension that had
  data.  Scoring never raises: failures degrade to score 50 / confidence 0.3
  with ``error`` set.

Usage
─────
  from models.scorer import CompatibilityScorer

  scorer = CompatibilityScorer()
  result = scorer.score(profile_a, profile_b, group_id="grp_042")
  result.overall_score, result.level
  result.dimensions["budget_range"].reasons
"""

from __future__ import annotations

from typing import Any, Callable, Optional

import numpy as np

from models.entities import (
    BudgetRange,
    CompatibilityProfile,
    CompatibilityScore,
    DimensionScore,
    PersonalityTraits,
    TravelPreferences,
    normalize_tags,
)
from models.params import DIMENSIONS, TRAITS, TRAVEL_FIELDS, ScoringParameters
from utils.logger import logger

NEUTRAL_SCORE = 50.0
NEUTRAL_CONFIDENCE = 0.3

DimensionOutcome = Optional[tuple[float, dict[str, Any]]]


# ─────────────────────────────────────────────────────────────────────────────
#  Constants & lookup tables
# ─────────────────────────────────────────────────────────────────────────────

# (max trait gap, similarity) bands, checked in order; last value is the floor
_SOCIAL_BANDS    = ((10, 1.0),  (25, 0.85), (40, 0.65), (60, 0.4)), 0.2
_ADVENTURE_BANDS = ((5, 0.85),  (15, 0.9),  (30, 0.75), (50, 0.5)), 0.25
_RISK_BANDS      = ((10, 0.95), (25, 0.8),  (40, 0.6),  (60, 0.35)), 0.15
_PLANNING_BANDS  = ((10, 0.85), (25, 0.95), (50, 0.75), (75, 0.45)), 0.25

_TRAIT_BANDS = {
    "energy_level":      _SOCIAL_BANDS,
    "social_preference": _SOCIAL_BANDS,
    "adventure_style":   _ADVENTURE_BANDS,
    "risk_tolerance":    _RISK_BANDS,
}

# Trait weight multipliers per detected adventure type
_ADVENTURE_TYPE_WEIGHTS: dict[str, dict[str, float]] = {
    "extreme-sports":     {"risk_tolerance": 1.5, "adventure_style": 1.3},
    "luxury-travel":      {"social_preference": 1.2, "risk_tolerance": 0.7},
    "budget-backpacking": {"adventure_style": 1.2, "energy_level": 1.2},
    "family-friendly":    {"risk_tolerance": 1.3, "social_preference": 1.1},
    "wellness-retreat":   {"energy_level": 1.3, "adventure_style": 0.8},
    "cultural-immersion": {},
}

_STYLE_TIER = {
    "explorer":   "moderate",
    "adventurer": "budget",
    "comfort":    "luxury",
    "cultural":   "moderate",
}
_TIER_ORDER = {"budget": 0, "moderate": 1, "luxury": 2}
_TIER_GAP_SCORE = {0: 1.0, 1: 0.7, 2: 0.3}

_PLANNING_POSITION = {"spontaneous": 0, "flexible": 25, "structured": 75, "detailed": 100}

_GROUP_PREFERENCE_MATRIX: dict[frozenset[str], float] = {
    frozenset(("solo", "couple")):              0.6,
    frozenset(("solo", "small_group")):         0.4,
    frozenset(("solo", "large_group")):         0.2,
    frozenset(("couple", "small_group")):       0.8,
    frozenset(("couple", "large_group")):       0.5,
    frozenset(("small_group", "large_group")):  0.7,
}

# Share of confidence contributed by each profile section
_SECTION_WEIGHTS = {
    "personality_traits":   0.25,
    "travel_preferences":   0.25,
    "experience_level":     0.20,
    "budget_range":         0.15,
    "activity_preferences": 0.15,
}


def _band(gap: float, table: tuple[tuple[tuple[float, float], ...], float]) -> float:
    bands, floor = table
    for limit, value in bands:
        if gap <= limit:
            return value
    return floor


def _experience_band(relative_gap: float) -> float:
    if relative_gap <= 0.5: return 1.0
    if relative_gap <= 1.0: return 0.8
    if relative_gap <= 2.0: return 0.55
    if relative_gap <= 3.0: return 0.3
    return 0.1


def _jaccard(a: set[str], b: set[str]) -> float:
    union = a | b
    return len(a & b) / len(union) if union else 0.0


def _key(value: Optional[str]) -> str:
    return (value or "").strip().lower()


def budget_overlap_score(a: BudgetRange, b: BudgetRange, flexibility_factor: float = 0.3) -> float:
    """
    Overlap of two budget ranges (0–1).

    Disjoint ranges score 0 regardless of flexibility; different currencies
    cannot be compared and score a neutral 0.5.
    """
    if a.currency.strip().upper() != b.currency.strip().upper():
        return 0.5

    low, high = max(a.min, b.min), min(a.max, b.max)
    if high < low:
        return 0.0

    width_a, width_b = a.max - a.min, b.max - b.min
    if width_a == 0 or width_b == 0:
        overlap = 1.0  # a point budget lying inside the other range
    else:
        overlap = min(1.0, (high - low) / ((width_a + width_b) / 2))
    if overlap == 0:
        return 0.0

    flexibility = min(a.flexibility, b.flexibility)
    return min(1.0, overlap + flexibility * flexibility_factor * (1 - overlap))


def detect_adventure_type(
    ta: PersonalityTraits,
    tb: PersonalityTraits,
    pa: TravelPreferences,
    pb: TravelPreferences,
) -> str:
    avg_risk = (ta.risk_tolerance + tb.risk_tolerance) / 2
    avg_adventure = (ta.adventure_style + tb.adventure_style) / 2
    budgets = (_key(pa.budget_preference), _key(pb.budget_preference))

    if avg_risk > 80 and avg_adventure > 80:
        return "extreme-sports"
    if "luxury" in budgets:
        return "luxury-travel"
    if budgets == ("budget", "budget"):
        return "budget-backpacking"
    if avg_risk < 30 and avg_adventure < 40:
        return "family-friendly"
    if avg_adventure < 30:
        return "wellness-retreat"
    return "cultural-immersion"


def profile_completeness(profile: CompatibilityProfile) -> float:
    """Weighted share (0–1) of profile sections that carry usable data."""
    prefs = profile.travel_preferences
    filled_prefs = sum(1 for name in TRAVEL_FIELDS if _key(getattr(prefs, name)))
    activities = profile.activity_preferences

    present = {
        "personality_traits":   1.0 if profile.personality_traits else 0.0,
        "travel_preferences":   filled_prefs / len(TRAVEL_FIELDS),
        "experience_level":     1.0 if profile.experience_level else 0.0,
        "budget_range":         1.0 if profile.budget_range else 0.0,
        "activity_preferences": 1.0 if (activities.preferred or activities.must_have) else 0.0,
    }
    return sum(_SECTION_WEIGHTS[name] * value for name, value in present.items())


def neutral_score(
    user1_id: str,
    user2_id: str,
    group_id: Optional[str] = None,
    error: Optional[str] = None,
    algorithm_version: str = "v1",
) -> CompatibilityScore:
    return CompatibilityScore(
        user1_id=user1_id,
        user2_id=user2_id,
        group_id=group_id,
        overall_score=NEUTRAL_SCORE,
        confidence=NEUTRAL_CONFIDENCE,
        algorithm_version=algorithm_version,
        error=error,
    )


# ─────────────────────────────────────────────────────────────────────────────
#  Main Scorer
# ─────────────────────────────────────────────────────────────────────────────

class CompatibilityScorer:
    """
    Parameters
    ----------
    params : ScoringParameters; defaults are validated on construction and a
             weight set that does not sum to 1.0 raises ConfigValidationError.
    """

    def __init__(self, params: ScoringParameters | None = None):
        self.params = (params or ScoringParameters()).validate_weights()
        self._handlers: dict[str, Callable[[CompatibilityProfile, CompatibilityProfile, ScoringParameters], DimensionOutcome]] = {
            "personality_traits":   self._score_personality,
            "travel_preferences":   self._score_travel_preferences,
            "experience_level":     self._score_experience,
            "budget_range":         self._score_budget,
            "activity_preferences": self._score_activities,
        }

    def score(
        self,
        a: CompatibilityProfile,
        b: CompatibilityProfile,
        params: ScoringParameters | None = None,
        group_id: str | None = None,
    ) -> CompatibilityScore:
        """Score one pair; never raises for data problems."""
        p = params.validate_weights() if params is not None else self.params
        try:
            return self._score_pair(a, b, p, group_id)
        except Exception as exc:
            logger.warning(f"Compatibility scoring failed for {a.user_id} ↔ {b.user_id}: {exc}")
            return neutral_score(a.user_id, b.user_id, group_id, error=str(exc),
                                 algorithm_version=p.algorithm_version)

    def _score_pair(
        self,
        a: CompatibilityProfile,
        b: CompatibilityProfile,
        p: ScoringParameters,
        group_id: str | None,
    ) -> CompatibilityScore:
        dimensions: dict[str, DimensionScore] = {}
        confidences: list[float] = []
        failed: list[str] = []

        for name in DIMENSIONS:
            try:
                outcome = self._handlers[name](a, b, p)
            except Exception as exc:
                logger.warning(f"Dimension '{name}' failed for {a.user_id} ↔ {b.user_id}: {exc}")
                failed.append(name)
                continue
            if outcome is None:
                continue
            similarity, info = outcome
            similarity = float(np.clip(similarity, 0.0, 1.0))
            dimensions[name] = DimensionScore(
                score=round(similarity * 100, 2),
                weight=p.dimension_weights[name],
                reasons=info.get("reasons", []),
                details={k: round(float(v), 4) for k, v in info.get("details", {}).items()},
            )
            confidences.append(info.get("confidence", 1.0))

        if not dimensions:
            error = f"all dimensions failed: {failed}" if failed else None
            return neutral_score(a.user_id, b.user_id, group_id, error=error,
                                 algorithm_version=p.algorithm_version)

        total_weight = sum(d.weight for d in dimensions.values())
        if total_weight <= 0:
            overall = float(np.mean([d.score for d in dimensions.values()]))
        else:
            overall = sum(d.score * d.weight for d in dimensions.values()) / total_weight

        attempted = len(dimensions) + len(failed)
        completeness = (profile_completeness(a) + profile_completeness(b)) / 2
        confidence = completeness * (len(dimensions) / attempted) * min(confidences)

        return CompatibilityScore(
            user1_id=a.user_id,
            user2_id=b.user_id,
            group_id=group_id,
            overall_score=round(float(np.clip(overall, 0, 100)), 2),
            confidence=round(float(np.clip(confidence, 0, 1)), 2),
            dimensions=dimensions,
            algorithm_version=p.algorithm_version,
        )

    # ── Dimension 1: Personality traits ──────────────────────────────────────

    def _score_personality(
        self, a: CompatibilityProfile, b: CompatibilityProfile, p: ScoringParameters
    ) -> DimensionOutcome:
        ta, tb = a.personality_traits, b.personality_traits
        if ta is None or tb is None:
            return None

        reasons: list[str] = []
        adventure_type = detect_adventure_type(ta, tb, a.travel_preferences, b.travel_preferences)
        multipliers = _ADVENTURE_TYPE_WEIGHTS[adventure_type]
        weights = {t: p.trait_weights[t] * multipliers.get(t, 1.0) for t in TRAITS}
        reasons.append(f"Adventure type: {adventure_type}")

        gaps = {t: abs(getattr(ta, t) - getattr(tb, t)) for t in TRAITS}
        details = {t: _band(gaps[t], _TRAIT_BANDS[t]) for t in TRAITS}
        weight_sum = sum(weights.values()) or 1.0
        total = sum(details[t] * weights[t] for t in TRAITS) / weight_sum

        closest = min(gaps, key=gaps.get)
        widest = max(gaps, key=gaps.get)
        reasons.append(f"Closest trait: {closest} (gap {gaps[closest]:.0f})")
        if gaps[widest] > 25:
            reasons.append(f"Widest gap: {widest} ({gaps[widest]:.0f} pts)")

        conflicts = []
        if gaps["risk_tolerance"] > 70:
            conflicts.append("risk tolerance")
        if gaps["energy_level"] > 70 and gaps["social_preference"] > 60:
            conflicts.append("energy and social preference")
        if conflicts:
            total = min(total, 0.15)
            reasons.append(f"Trait conflict: {', '.join(conflicts)}")

        extremes = sum(
            1 for traits in (ta, tb) for t in TRAITS
            if getattr(traits, t) < 5 or getattr(traits, t) > 95
        )
        confidence = max(0.5, 0.95 ** extremes)

        return total, {"reasons": reasons, "details": details, "confidence": confidence}

    # ── Dimension 2: Travel preferences ──────────────────────────────────────

    def _score_travel_preferences(
        self, a: CompatibilityProfile, b: CompatibilityProfile, p: ScoringParameters
    ) -> DimensionOutcome:
        pa, pb = a.travel_preferences, b.travel_preferences
        details: dict[str, float] = {}
        reasons: list[str] = []
        missing = 0

        for name in TRAVEL_FIELDS:
            va, vb = _key(getattr(pa, name)), _key(getattr(pb, name))
            if not va or not vb:
                missing += 1
                details[name] = 0.5
                continue
            details[name] = self._preference_similarity(name, va, vb, a, b, p)
            if va == vb:
                reasons.append(f"Same {name.replace('_', ' ')}: {va}")

        if missing == len(TRAVEL_FIELDS):
            return None
        if missing:
            reasons.append(f"{missing} travel preference field(s) missing, neutral score applied")

        weights = p.travel_preference_weights
        total = sum(details[name] * weights[name] for name in TRAVEL_FIELDS)
        confidence = 1.0 - 0.125 * missing
        return total, {"reasons": reasons, "details": details, "confidence": confidence}

    @staticmethod
    def _preference_similarity(
        name: str,
        va: str,
        vb: str,
        a: CompatibilityProfile,
        b: CompatibilityProfile,
        p: ScoringParameters,
    ) -> float:
        if name == "adventure_style":
            tier_a, tier_b = _STYLE_TIER.get(va), _STYLE_TIER.get(vb)
            if tier_a is None or tier_b is None:
                return 1.0 if va == vb else 0.5
            return _TIER_GAP_SCORE[abs(_TIER_ORDER[tier_a] - _TIER_ORDER[tier_b])]

        if name == "budget_preference":
            if va not in _TIER_ORDER or vb not in _TIER_ORDER:
                return 0.5
            base = _TIER_GAP_SCORE[abs(_TIER_ORDER[va] - _TIER_ORDER[vb])]
            flex = [r.flexibility for r in (a.budget_range, b.budget_range) if r is not None]
            avg_flex = float(np.mean(flex)) if flex else 0.0
            return min(1.0, base + avg_flex * p.budget_flexibility_factor * (1 - base))

        if name == "planning_style":
            if va not in _PLANNING_POSITION or vb not in _PLANNING_POSITION:
                return 0.5
            return _band(abs(_PLANNING_POSITION[va] - _PLANNING_POSITION[vb]), _PLANNING_BANDS)

        # group_preference
        if va == vb:
            return 1.0
        return _GROUP_PREFERENCE_MATRIX.get(frozenset((va, vb)), 0.5)

    # ── Dimension 3: Experience level ────────────────────────────────────────

    def _score_experience(
        self, a: CompatibilityProfile, b: CompatibilityProfile, p: ScoringParameters
    ) -> DimensionOutcome:
        ea, eb = a.experience_level, b.experience_level
        if ea is None or eb is None:
            return None

        tolerance = p.experience_level_tolerance
        gap = abs(ea.overall - eb.overall)
        overall_sim = _experience_band(gap / tolerance)

        common = sorted(set(ea.categories) & set(eb.categories))
        if common:
            category_sim = float(np.mean([
                _experience_band(abs(ea.categories[c] - eb.categories[c]) / tolerance)
                for c in common
            ]))
        else:
            category_sim = 0.5

        reasons = [f"Experience gap {gap:.1f} levels (tolerance ×{tolerance})"]
        if common:
            reasons.append(f"{len(common)} shared experience categories")

        total = 0.6 * overall_sim + 0.4 * category_sim
        return total, {
            "reasons": reasons,
            "details": {"overall": overall_sim, "categories": category_sim},
        }

    # ── Dimension 4: Budget range ────────────────────────────────────────────

    def _score_budget(
        self, a: CompatibilityProfile, b: CompatibilityProfile, p: ScoringParameters
    ) -> DimensionOutcome:
        ra, rb = a.budget_range, b.budget_range
        if ra is None or rb is None:
            return None

        total = budget_overlap_score(ra, rb, p.budget_flexibility_factor)
        if ra.currency.strip().upper() != rb.currency.strip().upper():
            reasons = [f"Different currencies ({ra.currency} vs {rb.currency}), neutral score applied"]
        elif total == 0:
            reasons = [f"No budget overlap ({ra.min:.0f}–{ra.max:.0f} vs {rb.min:.0f}–{rb.max:.0f} {ra.currency})"]
        else:
            reasons = [f"Budget ranges overlap, fit={total:.2f}"]
        return total, {"reasons": reasons, "details": {"fit": total}}

    # ── Dimension 5: Activity preferences ────────────────────────────────────

    def _score_activities(
        self, a: CompatibilityProfile, b: CompatibilityProfile, p: ScoringParameters
    ) -> DimensionOutcome:
        aa, ab = a.activity_preferences, b.activity_preferences
        pref_a, pref_b = normalize_tags(aa.preferred), normalize_tags(ab.preferred)
        must_a, must_b = normalize_tags(aa.must_have), normalize_tags(ab.must_have)
        if not (pref_a or pref_b or must_a or must_b):
            return None

        tags_a, tags_b = pref_a | must_a, pref_b | must_b
        hits = (normalize_tags(aa.deal_breakers) & tags_b) | (normalize_tags(ab.deal_breakers) & tags_a)
        if hits:
            return 0.0, {"reasons": [f"Deal-breaker conflict: {', '.join(sorted(hits))}"]}

        preferred_overlap = _jaccard(pref_a, pref_b)
        if must_a or must_b:
            must_overlap = _jaccard(must_a, must_b)
            base = 0.7 * preferred_overlap + 0.3 * must_overlap
        else:
            must_overlap = 0.0
            base = preferred_overlap

        clashes = (normalize_tags(aa.disliked) & tags_b) | (normalize_tags(ab.disliked) & tags_a)
        total = min(1.0, base * (1 + p.activity_overlap_bonus)) * (0.9 ** len(clashes))

        reasons = []
        shared = sorted(pref_a & pref_b)
        if shared:
            reasons.append(f"Shared activities: {', '.join(shared[:5])}")
        if clashes:
            reasons.append(f"Disliked activities in partner's list: {', '.join(sorted(clashes))}")
        return total, {
            "reasons": reasons,
            "details": {"preferred_overlap": preferred_overlap, "must_have_overlap": must_overlap},
        }
