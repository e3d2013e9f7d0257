"""
models/aggregator.py
════════════════════
GroupCompatibilityAggregator: one requesting traveler vs. every member of a
candidate group, folded into a single group-level result.

Flow per group
──────────────
  1. Group analysis cache (user + group + member digest)  → return on hit
  2. For each member other than the user:
       pair cache → CompatibilityScorer on miss → write back (24 h)
       a failing member is replaced by the neutral 50 / 0.3 score
  3. Overall score and confidence = mean over member scores
  4. Group dynamics: cohesion and diversity over every member pair (peer
     pairs go through the same pair cache), leadership, energy,
     expected fit and risk-factor tags
  5. Write the analysis back to the cache

A group with nobody to compare against yields the neutral result with
``risk_factors == ["insufficient-data"]``.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Iterable, Optional, Sequence

import numpy as np

from models.entities import (
    CandidateGroup,
    CompatibilityProfile,
    CompatibilityScore,
    GroupCompatibilityResult,
    GroupDynamics,
    GroupMember,
    MemberScore,
)
from models.errors import ComputationError
from models.scorer import NEUTRAL_CONFIDENCE, NEUTRAL_SCORE, CompatibilityScorer
from utils.logger import logger
from utils.score_cache import ScoreCache, make_digest

LOW_SCORE_THRESHOLD = 40.0
HIGH_VARIANCE_THRESHOLD = 400.0
LOW_CONFIDENCE_THRESHOLD = 0.5
LARGE_GROUP_SIZE = 12


@dataclass(frozen=True)
class AggregateOptions:
    force_recalculation: bool = False
    use_cache: bool = True


def neutral_result(
    group_id: str,
    *,
    member_count: int = 0,
    error: Optional[str] = None,
    risk_factors: Iterable[str] = ("insufficient-data",),
) -> GroupCompatibilityResult:
    return GroupCompatibilityResult(
        group_id=group_id,
        overall_score=NEUTRAL_SCORE,
        confidence=NEUTRAL_CONFIDENCE,
        group_dynamics=GroupDynamics(risk_factors=list(risk_factors)),
        member_count=member_count,
        error=error,
    )


def member_digest(members: Sequence[CompatibilityProfile]) -> str:
    return make_digest(sorted(m.user_id for m in members))


def _neutral_member(member: GroupMember, error: str) -> MemberScore:
    return MemberScore(
        member_id=member.user_id,
        member_name=member.name,
        score=NEUTRAL_SCORE,
        confidence=NEUTRAL_CONFIDENCE,
        error=error,
    )


class GroupCompatibilityAggregator:
    """
    Parameters
    ----------
    scorer       : CompatibilityScorer used on cache misses
    cache        : ScoreCache, or None to always compute
    score_ttl    : TTL (s) of pairwise score entries
    analysis_ttl : TTL (s) of whole-group analysis entries
    """

    def __init__(
        self,
        scorer: CompatibilityScorer,
        cache: ScoreCache | None = None,
        *,
        score_ttl: int = 86_400,
        analysis_ttl: int = 7_200,
    ):
        self.scorer = scorer
        self.cache = cache
        self.score_ttl = score_ttl
        self.analysis_ttl = analysis_ttl

    async def aggregate(
        self,
        user: CompatibilityProfile,
        group: CandidateGroup,
        opts: AggregateOptions | None = None,
    ) -> GroupCompatibilityResult:
        opts = opts or AggregateOptions()
        others = [m for m in group.members if m.user_id != user.user_id]
        if not others:
            logger.info(f"Group {group.id} has no members to compare against {user.user_id}")
            return neutral_result(group.id, member_count=len(group.members))

        use_cache = self.cache is not None and opts.use_cache
        digest = member_digest(others)
        if use_cache and not opts.force_recalculation:
            cached = await self.cache.get_group_analysis(user.user_id, group.id, digest)
            if cached is not None:
                return cached

        member_scores = [await self._member_score(user, m, group.id, opts) for m in others]
        peer_scores = await self._peer_scores(group, others, opts)

        try:
            result = self._build_result(user, group, others, member_scores, peer_scores)
        except Exception as exc:
            raise ComputationError(f"group {group.id}: {exc}") from exc

        if use_cache:
            await self.cache.set_group_analysis(user.user_id, result, digest, self.analysis_ttl)
        logger.debug(
            f"Group {group.id}: score={result.overall_score} confidence={result.confidence} "
            f"valid={result.valid_calculations}/{len(member_scores)}"
        )
        return result

    # ── per-member scoring ────────────────────────────────────────────────────

    async def _member_score(
        self,
        user: CompatibilityProfile,
        member: GroupMember,
        group_id: str,
        opts: AggregateOptions,
    ) -> MemberScore:
        try:
            score = await self._pair_score(user, member, group_id, opts)
        except Exception as exc:
            logger.warning(f"Member {member.user_id} in group {group_id} failed: {exc}")
            return _neutral_member(member, str(exc))

        if score.error:
            return _neutral_member(member, score.error)
        return MemberScore(
            member_id=member.user_id,
            member_name=member.name,
            score=score.overall_score,
            confidence=score.confidence,
            dimensions={name: dim.score for name, dim in score.dimensions.items()},
        )

    async def _pair_score(
        self,
        user: CompatibilityProfile,
        member: GroupMember,
        group_id: str,
        opts: AggregateOptions,
    ) -> CompatibilityScore:
        use_cache = self.cache is not None and opts.use_cache
        if use_cache and not opts.force_recalculation:
            cached = await self.cache.get_score(user.user_id, member.user_id, group_id)
            if cached is not None:
                return cached

        score = self.scorer.score(user, member, group_id=group_id)
        if use_cache and score.error is None:
            await self.cache.set_score(score, self.score_ttl)
        return score

    async def _peer_scores(
        self,
        group: CandidateGroup,
        others: list[GroupMember],
        opts: AggregateOptions,
    ) -> list[float]:
        """Member-to-member scores, upper triangle, for the dynamics matrix."""
        scores: list[float] = []
        for i, a in enumerate(others):
            for b in others[i + 1:]:
                scores.append(await self._peer_score(a, b, group.id, opts))
            # O(n²) for large groups: hand the loop back once per row
            await asyncio.sleep(0)
        return scores

    async def _peer_score(
        self,
        a: GroupMember,
        b: GroupMember,
        group_id: str,
        opts: AggregateOptions,
    ) -> float:
        try:
            score = await self._pair_score(a, b, group_id, opts)
        except Exception as exc:
            logger.warning(f"Peer score {a.user_id} ↔ {b.user_id} in group {group_id} failed: {exc}")
            return NEUTRAL_SCORE
        return NEUTRAL_SCORE if score.error else score.overall_score

    # ── result & dynamics ─────────────────────────────────────────────────────

    def _build_result(
        self,
        user: CompatibilityProfile,
        group: CandidateGroup,
        others: list[GroupMember],
        member_scores: list[MemberScore],
        peer_scores: list[float],
    ) -> GroupCompatibilityResult:
        valid = [m for m in member_scores if m.error is None]
        overall = float(np.mean([m.score for m in member_scores]))
        confidence = float(np.mean([m.confidence for m in member_scores]))

        return GroupCompatibilityResult(
            group_id=group.id,
            overall_score=round(overall, 2),
            confidence=round(confidence, 2),
            member_scores=member_scores,
            group_dynamics=self._dynamics(user, group, others, member_scores, peer_scores, valid),
            member_count=len(group.members),
            valid_calculations=len(valid),
        )

    def _dynamics(
        self,
        user: CompatibilityProfile,
        group: CandidateGroup,
        others: list[GroupMember],
        member_scores: list[MemberScore],
        peer_scores: list[float],
        valid: list[MemberScore],
    ) -> GroupDynamics:
        # pairwise matrix across all participants: user row comes from member_scores
        pairs = np.array([m.score for m in member_scores] + peer_scores, dtype=np.float64)

        traits = [p.personality_traits for p in (user, *others) if p.personality_traits is not None]
        if traits:
            leadership = float(np.mean([(t.energy_level + t.social_preference) / 2 for t in traits]))
            energy = float(np.mean([t.energy_level for t in traits]))
        else:
            leadership = energy = 50.0

        if valid:
            weights = np.array([m.confidence or 0.5 for m in valid])
            expected_fit = float(np.average([m.score for m in valid], weights=weights))
        else:
            expected_fit = 50.0

        return GroupDynamics(
            cohesion=round(min(100.0, float(pairs.mean())), 2),
            diversity=round(min(100.0, float(pairs.std()) * 2), 2),
            leadership=round(leadership, 2),
            energy=round(energy, 2),
            expected_fit=round(expected_fit, 2),
            risk_factors=self._risk_factors(group, member_scores, valid),
        )

    @staticmethod
    def _risk_factors(
        group: CandidateGroup,
        member_scores: list[MemberScore],
        valid: list[MemberScore],
    ) -> list[str]:
        risks: list[str] = []

        low = sum(1 for m in member_scores if m.score < LOW_SCORE_THRESHOLD)
        if low:
            risks.append(f"low-compatibility-{low}-members")

        if len(valid) > 1 and float(np.var([m.score for m in valid])) > HIGH_VARIANCE_THRESHOLD:
            risks.append("high-compatibility-variance")

        unsure = sum(1 for m in member_scores if m.confidence < LOW_CONFIDENCE_THRESHOLD)
        if unsure > len(member_scores) / 2:
            risks.append("low-prediction-confidence")

        size = len(group.members)
        if size == 1:
            risks.append("very-small-group")
        elif size > LARGE_GROUP_SIZE:
            risks.append("very-large-group")
        return risks
