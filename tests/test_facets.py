from datetime import date

import pytest

from models.entities import BudgetRange, GroupCompatibilityResult, RecommendationFilters, ScoredGroup
from utils.facets import apply_filters, available_filters, groups_frame


@pytest.fixture
def catalog(make_group):
    return [
        make_group("cheap", size=2, destination="Hanoi", duration_days=3,
                   budget_range=BudgetRange(min=400, max=800), activities=["Street Food", "hiking"],
                   start_date=date(2027, 2, 1)),
        make_group("mid", size=4, destination="Lisbon", duration_days=7,
                   budget_range=BudgetRange(min=900, max=1000), activities=["surfing"],
                   start_date=date(2027, 6, 1)),
        make_group("lux", size=8, destination="Maldives", duration_days=10,
                   budget_range=BudgetRange(min=4000, max=5000), activities=["diving"],
                   start_date=date(2027, 9, 1)),
        make_group("open", size=3, destination=None, duration_days=20, budget_range=None,
                   activities=[], start_date=None),
    ]


def scored(groups):
    return [ScoredGroup(group=g, compatibility=GroupCompatibilityResult(group_id=g.id)) for g in groups]


def ids(items):
    return [s.group.id for s in items]


def test_buckets(catalog):
    df = groups_frame(catalog).set_index("group_id")

    assert df.loc["cheap", "budget_bucket"] == "Budget"
    assert df.loc["mid", "budget_bucket"] == "Mid-range"
    assert df.loc["lux", "budget_bucket"] == "Luxury"
    assert df.loc["cheap", "duration_bucket"] == "Short (1-3 days)"
    assert df.loc["mid", "duration_bucket"] == "Week (4-7 days)"
    assert df.loc["lux", "duration_bucket"] == "Extended (1-2 weeks)"
    assert df.loc["open", "duration_bucket"] == "Long (2+ weeks)"
    assert df.loc["cheap", "size_bucket"] == "Solo/Couple"
    assert df.loc["mid", "size_bucket"] == "Small group"
    assert df.loc["lux", "size_bucket"] == "Large group"


def test_available_filters_are_sorted_and_distinct(catalog):
    facets = available_filters(catalog)

    assert facets.activities == ["Street Food", "diving", "hiking", "surfing"]
    assert facets.destinations == ["Hanoi", "Lisbon", "Maldives"]
    assert facets.budget_ranges == ["Budget", "Luxury", "Mid-range"]
    assert facets.group_sizes == ["Large group", "Small group", "Solo/Couple"]
    assert len(facets.durations) == 4


def test_no_groups_no_facets():
    facets = available_filters([])

    assert facets.activities == [] and facets.destinations == []


def test_filters_combine(catalog):
    items = scored(catalog)

    assert ids(apply_filters(items, None)) == ["cheap", "mid", "lux", "open"]
    assert ids(apply_filters(items, RecommendationFilters())) == ["cheap", "mid", "lux", "open"]
    assert ids(apply_filters(items, RecommendationFilters(activities=["STREET FOOD", "diving"]))) == ["cheap", "lux"]
    assert ids(apply_filters(items, RecommendationFilters(budget_ranges=["Luxury", "Budget"]))) == ["cheap", "lux"]
    assert ids(apply_filters(items, RecommendationFilters(
        budget_ranges=["Luxury", "Budget"], group_sizes=["Large group"],
    ))) == ["lux"]
    assert ids(apply_filters(items, RecommendationFilters(durations=["Long (2+ weeks)"]))) == ["open"]


def test_start_date_window(catalog):
    window = RecommendationFilters(start_after=date(2027, 3, 1), start_before=date(2027, 8, 31))

    assert ids(apply_filters(scored(catalog), window)) == ["mid"]
