from unittest.mock import patch

import pytest

from models.aggregator import AggregateOptions, GroupCompatibilityAggregator, member_digest
from models.entities import CompatibilityProfile
from models.scorer import CompatibilityScorer
from utils.score_cache import ScoreCache


class FlakyScorer(CompatibilityScorer):
    """Raises for any pair that involves the user id ``bad``."""

    def score(self, a, b, params=None, group_id=None):
        if "bad" in (a.user_id, b.user_id):
            raise RuntimeError("corrupt profile")
        return super().score(a, b, params, group_id)


@pytest.fixture
def cache(clock):
    return ScoreCache(clock=clock)


@pytest.fixture
def aggregator(cache):
    return GroupCompatibilityAggregator(CompatibilityScorer(), cache)


@pytest.mark.asyncio
async def test_similar_members_give_high_cohesive_score(aggregator, make_profile, make_group):
    result = await aggregator.aggregate(make_profile("user"), make_group("g1"))

    assert result.overall_score == pytest.approx(94.5)
    assert result.level == "excellent"
    assert result.valid_calculations == 3
    assert result.member_count == 3
    assert [m.member_id for m in result.member_scores] == ["g1_m0", "g1_m1", "g1_m2"]
    assert result.group_dynamics.cohesion == pytest.approx(94.5)
    assert result.group_dynamics.diversity == 0
    assert result.group_dynamics.risk_factors == []


@pytest.mark.asyncio
async def test_group_with_only_the_user_is_neutral(aggregator, make_profile, make_member, make_group):
    user = make_profile("user")
    solo = make_group("g1", members=[make_member("user")])
    empty = make_group("g2", members=[])

    for group in (solo, empty):
        result = await aggregator.aggregate(user, group)
        assert (result.overall_score, result.confidence) == (50, 0.3)
        assert result.group_dynamics.risk_factors == ["insufficient-data"]


@pytest.mark.asyncio
async def test_user_is_never_scored_against_themselves(aggregator, make_profile, make_member, make_group):
    group = make_group("g1", members=[make_member("user"), make_member("m1")])

    result = await aggregator.aggregate(make_profile("user"), group)

    assert [m.member_id for m in result.member_scores] == ["m1"]
    assert result.member_count == 2


@pytest.mark.asyncio
async def test_cached_analysis_skips_scoring(aggregator, make_profile, make_group):
    user, group = make_profile("user"), make_group("g1")
    first = await aggregator.aggregate(user, group)

    with patch.object(aggregator.scorer, "score", wraps=aggregator.scorer.score) as spy:
        second = await aggregator.aggregate(user, group)

    assert spy.call_count == 0
    assert second.overall_score == first.overall_score


@pytest.mark.asyncio
async def test_force_recalculation_bypasses_cache(aggregator, make_profile, make_group):
    user, group = make_profile("user"), make_group("g1")
    await aggregator.aggregate(user, group)

    with patch.object(aggregator.scorer, "score", wraps=aggregator.scorer.score) as spy:
        await aggregator.aggregate(user, group, AggregateOptions(force_recalculation=True))

    # three user pairs plus three member pairs for the dynamics matrix
    assert spy.call_count == 6


@pytest.mark.asyncio
async def test_pair_scores_and_analysis_are_written_back(aggregator, cache, make_profile, make_group):
    group = make_group("g1")
    await aggregator.aggregate(make_profile("user"), group)

    assert await cache.get_score("g1_m1", "user", "g1") is not None
    assert await cache.get_group_analysis("user", "g1", member_digest(group.members)) is not None


@pytest.mark.asyncio
async def test_members_change_invalidates_analysis_key(aggregator, make_profile, make_member, make_group):
    user = make_profile("user")
    await aggregator.aggregate(user, make_group("g1"))

    grown = make_group("g1", members=[make_member(f"g1_m{i}") for i in range(4)])
    result = await aggregator.aggregate(user, grown)

    assert result.member_count == 4


@pytest.mark.asyncio
async def test_failing_member_becomes_neutral(cache, make_profile, make_member, make_group):
    aggregator = GroupCompatibilityAggregator(FlakyScorer(), cache)
    group = make_group("g1", members=[make_member("ok_1"), make_member("bad"), make_member("ok_2")])

    result = await aggregator.aggregate(make_profile("user"), group)

    bad = next(m for m in result.member_scores if m.member_id == "bad")
    assert bad.error == "corrupt profile"
    assert (bad.score, bad.confidence) == (50, 0.3)
    assert result.valid_calculations == 2
    assert result.overall_score == pytest.approx((94.5 * 2 + 50) / 3, abs=0.01)
    assert await cache.get_score("user", "bad", "g1") is None


@pytest.mark.asyncio
async def test_mixed_group_flags_low_members_and_variance(aggregator, make_profile, make_member, make_group, opposite):
    members = [make_member("fan"), make_member("odd_1", **opposite), make_member("odd_2", **opposite)]

    result = await aggregator.aggregate(make_profile("user"), make_group("g1", members=members))

    risks = result.group_dynamics.risk_factors
    assert "low-compatibility-2-members" in risks
    assert "high-compatibility-variance" in risks


@pytest.mark.asyncio
async def test_group_size_risk_factors(aggregator, make_profile, make_group):
    user = make_profile("user")

    tiny = await aggregator.aggregate(user, make_group("tiny", size=1))
    huge = await aggregator.aggregate(user, make_group("huge", size=13, max_members=20))

    assert "very-small-group" in tiny.group_dynamics.risk_factors
    assert "very-large-group" in huge.group_dynamics.risk_factors


@pytest.mark.asyncio
async def test_sparse_requester_flags_low_confidence(aggregator, make_group):
    result = await aggregator.aggregate(CompatibilityProfile(user_id="newbie"), make_group("g1"))

    assert result.confidence == 0.3
    assert "low-prediction-confidence" in result.group_dynamics.risk_factors


@pytest.mark.asyncio
async def test_aggregates_without_a_cache(make_profile, make_group):
    aggregator = GroupCompatibilityAggregator(CompatibilityScorer())

    result = await aggregator.aggregate(make_profile("user"), make_group("g1"))

    assert result.valid_calculations == 3


@pytest.mark.asyncio
async def test_peer_pairs_share_the_pair_cache(aggregator, cache, make_profile, make_group):
    await aggregator.aggregate(make_profile("user"), make_group("g1"))

    assert await cache.get_score("g1_m0", "g1_m2", "g1") is not None

    with patch.object(aggregator.scorer, "score", wraps=aggregator.scorer.score) as spy:
        await aggregator.aggregate(make_profile("other"), make_group("g1"))

    # only the new requester's own pairs are computed
    assert spy.call_count == 3


@pytest.mark.asyncio
async def test_invalidated_member_is_rescored(aggregator, cache, make_profile, make_member, make_group, opposite):
    user = make_profile("alice")
    before = await aggregator.aggregate(user, make_group("g1", members=[make_member("bob")]))
    assert before.overall_score == pytest.approx(94.5)

    changed = make_group("g1", members=[make_member("bob", **opposite)])
    await cache.invalidate_user("bob")
    after = await aggregator.aggregate(user, changed)

    fresh = await GroupCompatibilityAggregator(CompatibilityScorer()).aggregate(user, changed)
    assert after.overall_score == fresh.overall_score
    assert after.overall_score < 60


@pytest.mark.asyncio
async def test_results_carry_level_display(aggregator, make_profile, make_member, make_group, opposite):
    members = [make_member("fan"), make_member("odd", **opposite)]

    result = await aggregator.aggregate(make_profile("user"), make_group("g1", members=members))

    assert result.display["label"] == "Good Match"
    fan, odd = result.member_scores
    assert fan.display == {"level": "excellent", "label": "Excellent Match", "color": "#10B981"}
    assert odd.display == {"level": "poor", "label": "Poor Match", "color": "#EF4444"}
    assert "display" in result.model_dump()
