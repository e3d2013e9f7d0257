"""
utils/facets.py
───────────────
Bucketed filter facets over a set of candidate groups, built on a pandas
frame so the same buckets drive both the facet lists shown to the user and
the hard filters applied to a request.

  budget      Budget (<1000) | Mid-range (<3000) | Luxury
  duration    Short (1-3 days) | Week (4-7 days) | Extended (1-2 weeks) | Long (2+ weeks)
  group size  Solo/Couple (≤2) | Small group (≤6) | Large group
"""

from __future__ import annotations

from datetime import date
from typing import Sequence

import numpy as np
import pandas as pd

from models.entities import (
    AvailableFilters,
    CandidateGroup,
    RecommendationFilters,
    ScoredGroup,
    normalize_tags,
)

BUDGET_BINS   = [-np.inf, 1000, 3000, np.inf]
BUDGET_LABELS = ["Budget", "Mid-range", "Luxury"]

DURATION_BINS   = [-np.inf, 3, 7, 14, np.inf]
DURATION_LABELS = ["Short (1-3 days)", "Week (4-7 days)", "Extended (1-2 weeks)", "Long (2+ weeks)"]

SIZE_BINS   = [-np.inf, 2, 6, np.inf]
SIZE_LABELS = ["Solo/Couple", "Small group", "Large group"]

_COLUMNS = ["group_id", "destination", "budget_max", "duration_days", "group_size", "activities", "start_date"]


def groups_frame(groups: Sequence[CandidateGroup]) -> pd.DataFrame:
    """One row per group with its raw facet inputs and bucket labels."""
    rows = [
        {
            "group_id":      g.id,
            "destination":   g.destination,
            "budget_max":    g.budget_range.max if g.budget_range else np.nan,
            "duration_days": float(g.duration_days) if g.duration_days else np.nan,
            "group_size":    len(g.members),
            "activities":    list(g.activities),
            "start_date":    g.start_date,
        }
        for g in groups
    ]
    df = pd.DataFrame(rows, columns=_COLUMNS)
    df["budget_max"] = pd.to_numeric(df["budget_max"], errors="coerce")
    df["duration_days"] = pd.to_numeric(df["duration_days"], errors="coerce")

    # budget edges are exclusive upper bounds, duration / size edges inclusive
    df["budget_bucket"]   = pd.cut(df["budget_max"], bins=BUDGET_BINS, labels=BUDGET_LABELS, right=False)
    df["duration_bucket"] = pd.cut(df["duration_days"], bins=DURATION_BINS, labels=DURATION_LABELS)
    df["size_bucket"]     = pd.cut(df["group_size"], bins=SIZE_BINS, labels=SIZE_LABELS)
    return df


def _distinct(series: pd.Series) -> list[str]:
    return sorted(str(v) for v in series.dropna().unique())


def available_filters(groups: Sequence[CandidateGroup]) -> AvailableFilters:
    if not groups:
        return AvailableFilters()
    df = groups_frame(groups)
    return AvailableFilters(
        activities=_distinct(df["activities"].explode()),
        destinations=_distinct(df["destination"]),
        budget_ranges=_distinct(df["budget_bucket"]),
        durations=_distinct(df["duration_bucket"]),
        group_sizes=_distinct(df["size_bucket"]),
    )


def apply_filters(
    scored: Sequence[ScoredGroup], filters: RecommendationFilters | None
) -> list[ScoredGroup]:
    """Keep the groups matching every non-empty filter; order is preserved."""
    if filters is None or not scored:
        return list(scored)

    df = groups_frame([s.group for s in scored])
    mask = pd.Series(True, index=df.index)

    if filters.activities:
        wanted = normalize_tags(filters.activities)
        mask &= df["activities"].map(lambda tags: bool(normalize_tags(tags) & wanted)).astype(bool)
    if filters.destinations:
        mask &= df["destination"].isin(filters.destinations)
    if filters.budget_ranges:
        mask &= df["budget_bucket"].astype(str).isin(filters.budget_ranges)
    if filters.durations:
        mask &= df["duration_bucket"].astype(str).isin(filters.durations)
    if filters.group_sizes:
        mask &= df["size_bucket"].astype(str).isin(filters.group_sizes)
    if filters.start_after:
        mask &= df["start_date"].map(
            lambda d: isinstance(d, date) and d >= filters.start_after
        ).astype(bool)
    if filters.start_before:
        mask &= df["start_date"].map(
            lambda d: isinstance(d, date) and d <= filters.start_before
        ).astype(bool)

    return [s for s, keep in zip(scored, mask.tolist()) if keep]
