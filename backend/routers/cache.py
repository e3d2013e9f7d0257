"""
backend/routers/cache.py
────────────────────────
FastAPI router for score cache inspection and invalidation.

Endpoints
─────────
GET    /api/cache/stats                                — Hit/miss counters, tier status
GET    /api/cache/scores/{user_id}/{other_user_id}     — Cached pairwise score, if any
DELETE /api/cache?user_id=…|group_id=…|flush=true      — Invalidate entries
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from backend.schemas import CacheInvalidationResponse, CacheStatsResponse
from models.entities import CompatibilityScore
from utils.logger import logger
from utils.score_cache import ScoreCache

router = APIRouter(prefix="/api/cache", tags=["cache"])


def _cache_dep(request: Request) -> ScoreCache:
    cache = getattr(request.app.state, "cache", None)
    if cache is None:
        raise HTTPException(503, "Score cache is not initialised")
    return cache


@router.get("/stats", response_model=CacheStatsResponse)
async def cache_stats(request: Request, cache: ScoreCache = Depends(_cache_dep)) -> CacheStatsResponse:
    engine = getattr(request.app.state, "engine", None)
    batch = engine.batch_scorer.metrics.as_dict() if engine is not None else {}
    return CacheStatsResponse(**cache.stats(), batch=batch)


@router.get("/scores/{user_id}/{other_user_id}", response_model=CompatibilityScore)
async def cached_score(
    user_id: str,
    other_user_id: str,
    group_id: Optional[str] = Query(None, description="Group the pair was scored in"),
    cache: ScoreCache = Depends(_cache_dep),
) -> CompatibilityScore:
    score = await cache.get_score(user_id, other_user_id, group_id)
    if score is None:
        raise HTTPException(404, f"No cached score for {user_id} ↔ {other_user_id}")
    return score


@router.delete("", response_model=CacheInvalidationResponse)
async def invalidate_cache(
    user_id: Optional[str] = Query(None),
    group_id: Optional[str] = Query(None),
    flush: bool = Query(False, description="Drop every cached entry"),
    cache: ScoreCache = Depends(_cache_dep),
) -> CacheInvalidationResponse:
    if flush:
        removed = await cache.flush()
        message = "Cache flushed"
    elif user_id:
        removed = await cache.invalidate_user(user_id)
        message = f"Invalidated cache entries for user {user_id}"
    elif group_id:
        removed = await cache.invalidate_group(group_id)
        message = f"Invalidated cache entries for group {group_id}"
    else:
        raise HTTPException(422, "Provide user_id, group_id or flush=true")

    logger.info(f"{message} ({removed} removed)")
    return CacheInvalidationResponse(removed=removed, message=message)
