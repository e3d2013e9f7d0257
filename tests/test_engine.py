from datetime import date
from unittest.mock import patch

import pytest

from models.engine import RecommendationEngine
from models.entities import CompatibilityProfile, RecommendationFilters, RecommendationOptions
from models.errors import InvalidInputError
from utils.score_cache import ScoreCache

TODAY = date(2027, 1, 1)


@pytest.fixture
def engine(settings):
    return RecommendationEngine(settings=settings, clock=lambda: TODAY)


@pytest.fixture
def catalog(make_member, make_group, opposite):
    return [
        make_group("close", size=4, destination="Lima", activities=["hiking", "photography"]),
        make_group("far", members=[make_member(f"far_{i}", **opposite) for i in range(3)], destination="Oslo"),
        make_group("past", size=4, destination="Lima", start_date=date(2026, 12, 1)),
        make_group("small", size=2, destination="Quito", activities=["hiking"]),
    ]


@pytest.mark.asyncio
async def test_end_to_end_ranking(engine, make_profile, catalog):
    page = await engine.get_recommendations(make_profile("user"), catalog)

    ids = [r.group.id for r in page.recommendations]
    assert ids == ["close", "past", "small"]
    assert page.total_compatible_groups == 3
    assert page.failures == []
    assert page.pagination.total_items == 3
    assert page.available_filters.destinations == ["Lima", "Quito"]
    assert page.recommendations[0].explanation.startswith("94.5% compatibility match • ")
    assert page.recommendations[1].ranking_breakdown.timing == 0.0


@pytest.mark.asyncio
async def test_paging_and_explanation_toggle(engine, make_profile, catalog):
    options = RecommendationOptions(page=1, page_size=2, include_explanations=False)

    page = await engine.get_recommendations(make_profile("user"), catalog, options)

    assert [r.group.id for r in page.recommendations] == ["small"]
    assert page.recommendations[0].explanation == ""
    assert (page.pagination.current_page, page.pagination.has_prev, page.pagination.has_next) == (1, True, False)


@pytest.mark.asyncio
async def test_filters_narrow_results_but_not_facets(engine, make_profile, catalog):
    options = RecommendationOptions(filters=RecommendationFilters(destinations=["Quito"]))

    page = await engine.get_recommendations(make_profile("user"), catalog, options)

    assert [r.group.id for r in page.recommendations] == ["small"]
    assert page.total_compatible_groups == 3
    assert page.available_filters.destinations == ["Lima", "Quito"]


@pytest.mark.asyncio
async def test_failed_group_is_reported_not_ranked(engine, make_profile, catalog):
    real = engine.aggregator.aggregate

    async def flaky(user, group, opts=None):
        if group.id == "small":
            raise RuntimeError("member store offline")
        return await real(user, group, opts)

    with patch.object(engine.aggregator, "aggregate", new=flaky):
        page = await engine.get_recommendations(make_profile("user"), catalog)

    assert [f.group_id for f in page.failures] == ["small"]
    assert page.failures[0].error == "RuntimeError: member store offline"
    assert "small" not in [r.group.id for r in page.recommendations]


@pytest.mark.asyncio
async def test_nothing_compatible_gives_empty_page(engine, make_member, make_group, make_profile, opposite):
    groups = [make_group("far", members=[make_member("x", **opposite)])]

    page = await engine.get_recommendations(make_profile("user"), groups)

    assert page.recommendations == []
    assert page.total_compatible_groups == 0
    assert page.pagination.total_pages == 0


@pytest.mark.asyncio
async def test_second_request_is_served_from_cache(settings, make_profile, catalog, clock):
    cache = ScoreCache(clock=clock)
    engine = RecommendationEngine(cache, settings=settings, clock=lambda: TODAY)
    user = make_profile("user")

    first = await engine.get_recommendations(user, catalog)
    with patch.object(engine.scorer, "score", wraps=engine.scorer.score) as spy:
        second = await engine.get_recommendations(user, catalog)

    assert spy.call_count == 0
    assert [r.group.id for r in second.recommendations] == [r.group.id for r in first.recommendations]
    assert cache.stats()["hits"] >= 1


@pytest.mark.asyncio
@pytest.mark.parametrize("profile, groups", [
    (None, "catalog"),
    (CompatibilityProfile(user_id="   "), "catalog"),
    (CompatibilityProfile(user_id="user"), []),
    (CompatibilityProfile(user_id="user"), "duplicates"),
])
async def test_invalid_input_is_rejected(engine, catalog, profile, groups):
    if groups == "catalog":
        groups = catalog
    elif groups == "duplicates":
        groups = [catalog[0], catalog[0]]

    with pytest.raises(InvalidInputError):
        await engine.get_recommendations(profile, groups)


@pytest.mark.asyncio
async def test_settings_drive_threshold_and_page_size(settings, make_profile, catalog):
    strict = settings.model_copy(update={"min_compatibility_threshold": 99.0, "default_page_size": 1})

    page = await RecommendationEngine(settings=strict, clock=lambda: TODAY).get_recommendations(
        make_profile("user"), catalog
    )

    assert page.total_compatible_groups == 0

    relaxed = settings.model_copy(update={"default_page_size": 1})
    page = await RecommendationEngine(settings=relaxed, clock=lambda: TODAY).get_recommendations(
        make_profile("user"), catalog
    )
    assert len(page.recommendations) == 1
    assert page.pagination.total_pages == 3
