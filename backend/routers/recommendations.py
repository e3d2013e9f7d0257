"""
backend/routers/recommendations.py
──────────────────────────────────
FastAPI router for group recommendations.

Endpoints
─────────
POST /api/recommendations  — Ranked, balanced, paginated group recommendations
                             for one traveler profile
"""

from fastapi import APIRouter, Depends, HTTPException, Request

from backend.schemas import RecommendationRequest
from models.engine import RecommendationEngine
from models.entities import RecommendationOptions, RecommendationPage
from models.errors import InvalidInputError
from utils.data_loader import load_catalog
from utils.logger import logger

router = APIRouter(prefix="/api", tags=["recommendations"])


def _engine_dep(request: Request) -> RecommendationEngine:
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        raise HTTPException(503, "Recommendation engine is not initialised")
    return engine


@router.post("/recommendations", response_model=RecommendationPage)
async def get_recommendations(
    body: RecommendationRequest,
    engine: RecommendationEngine = Depends(_engine_dep),
) -> RecommendationPage:
    groups = body.candidate_groups
    if groups is None:
        try:
            groups = list(load_catalog(str(engine.settings.catalog_file)))
        except FileNotFoundError as exc:
            raise HTTPException(404, str(exc))

    options = RecommendationOptions(
        page=body.page,
        page_size=body.page_size or engine.settings.default_page_size,
        filters=body.filters,
        include_explanations=body.include_explanations,
        force_recalculation=body.force_recalculation,
        timeout=body.timeout,
    )
    logger.info(f"POST /api/recommendations user={body.profile.user_id} groups={len(groups)}")

    try:
        return await engine.get_recommendations(body.profile, groups, options)
    except InvalidInputError as exc:
        raise HTTPException(422, str(exc))
    except Exception as exc:
        logger.exception(f"Recommendation request failed for {body.profile.user_id}")
        raise HTTPException(500, str(exc))
