"""
models/engine.py
════════════════
RecommendationEngine: the GetRecommendations entry point.

Pipeline
────────
  batch score (cached)  →  compatibility gate  →  facets  →  rank
  →  diversity balance  →  paginate  →  explain

The engine owns no connections: the ScoreCache is built, connected and
closed by whoever constructs the engine (see backend/main.py), and today's
date comes from the injected ``clock``.

Usage
─────
  cache  = ScoreCache.from_settings()
  await cache.connect()
  engine = RecommendationEngine(cache)
  page   = await engine.get_recommendations(profile, groups,
                                            RecommendationOptions(page=0))
  await cache.close()
"""

from __future__ import annotations

from datetime import date
from typing import Callable, Sequence

from config.settings import Settings, get_settings
from models.aggregator import GroupCompatibilityAggregator
from models.batch import BatchScorer
from models.diversity import DiversityBalancer
from models.entities import (
    BatchFailure,
    CandidateGroup,
    CompatibilityProfile,
    RecommendationOptions,
    RecommendationPage,
    ScoredGroup,
)
from models.errors import InvalidInputError
from models.presentation import ExplanationBuilder, paginate
from models.ranker import Ranker
from models.scorer import CompatibilityScorer
from utils.facets import available_filters
from utils.logger import logger
from utils.score_cache import ScoreCache


class RecommendationEngine:
    """
    Parameters
    ----------
    cache     : ScoreCache shared across requests, or None to always compute
    scorer    : CompatibilityScorer; built from settings when omitted
    ranker    : Ranker; built from settings when omitted
    balancer  : DiversityBalancer; built from settings when omitted
    explainer : ExplanationBuilder
    settings  : Settings; defaults to get_settings()
    clock     : returns today's date for timing scoring
    """

    def __init__(
        self,
        cache: ScoreCache | None = None,
        scorer: CompatibilityScorer | None = None,
        *,
        ranker: Ranker | None = None,
        balancer: DiversityBalancer | None = None,
        explainer: ExplanationBuilder | None = None,
        settings: Settings | None = None,
        clock: Callable[[], date] = date.today,
    ):
        self.settings = settings or get_settings()
        self.cache = cache
        self.clock = clock
        self.scorer = scorer or CompatibilityScorer(self.settings.scoring_parameters())
        self.aggregator = GroupCompatibilityAggregator(
            self.scorer,
            cache,
            score_ttl=self.settings.score_cache_ttl,
            analysis_ttl=self.settings.analysis_cache_ttl,
        )
        self.batch_scorer = BatchScorer(
            self.aggregator,
            cache,
            concurrency=self.settings.batch_concurrency,
            bulk_ttl=self.settings.bulk_cache_ttl,
        )
        self.ranker = ranker or Ranker(
            self.settings.ranking_weights(), self.settings.min_compatibility_threshold
        )
        self.balancer = balancer or DiversityBalancer(self.settings.diversity_max_per_category)
        self.explainer = explainer or ExplanationBuilder()

    async def get_recommendations(
        self,
        profile: CompatibilityProfile,
        candidate_groups: Sequence[CandidateGroup],
        options: RecommendationOptions | None = None,
        today: date | None = None,
    ) -> RecommendationPage:
        self._validate_input(profile, candidate_groups)
        options = options or RecommendationOptions(page_size=self.settings.default_page_size)
        today = today or self.clock()
        groups = list(candidate_groups)

        batch = await self.batch_scorer.batch_aggregate(
            profile,
            groups,
            force_recalculation=options.force_recalculation,
            timeout=options.timeout or self.settings.batch_timeout_seconds,
        )
        by_id = {g.id: g for g in groups}
        scored = [ScoredGroup(group=by_id[r.group_id], compatibility=r.compatibility) for r in batch]

        compatible = self.ranker.filter_compatible(scored)
        ranked = self.ranker.rank(profile, compatible, options.filters, today=today)
        balanced = self.balancer.balance(ranked)
        items, pagination = paginate(balanced, options.page, options.page_size)

        if options.include_explanations:
            items = [
                rec.model_copy(update={"explanation": self.explainer.explain(rec, profile)})
                for rec in items
            ]

        failures = [
            BatchFailure(group_id=r.group_id, error=r.error or "unknown error")
            for r in batch if not r.success
        ]
        logger.info(
            f"Recommendations for {profile.user_id}: {len(groups)} candidates, "
            f"{len(compatible)} compatible, {len(balanced)} after balancing, "
            f"page {options.page} ({len(items)} items), {len(failures)} failures"
        )
        return RecommendationPage(
            recommendations=items,
            pagination=pagination,
            available_filters=available_filters([s.group for s in compatible]),
            total_compatible_groups=len(compatible),
            failures=failures,
        )

    @staticmethod
    def _validate_input(
        profile: CompatibilityProfile | None,
        candidate_groups: Sequence[CandidateGroup] | None,
    ) -> None:
        if not isinstance(profile, CompatibilityProfile):
            raise InvalidInputError("a CompatibilityProfile is required")
        if not profile.user_id.strip():
            raise InvalidInputError("profile.user_id must not be blank")
        if not candidate_groups:
            raise InvalidInputError("no candidate groups supplied")
        ids = [g.id for g in candidate_groups]
        duplicates = sorted({i for i in ids if ids.count(i) > 1})
        if duplicates:
            raise InvalidInputError(f"duplicate candidate group ids: {duplicates}")
