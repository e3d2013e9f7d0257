"""
backend/main.py
═══════════════
FastAPI application serving group recommendations and compatibility scores.

Endpoints
─────────
  GET    /health                                  — Liveness / readiness probe
  POST   /api/recommendations                     — Ranked, balanced, explained
                                                    group recommendations
  GET    /api/cache/stats                         — Cache and batch counters
  GET    /api/cache/scores/{user_id}/{other_id}   — Cached pairwise score
  DELETE /api/cache                               — Invalidate by user / group,
                                                    or flush

  Run with:
      uvicorn backend.main:app --reload --host 0.0.0.0 --port 8000
"""

from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from backend.routers import cache as cache_router
from backend.routers import recommendations as recommendations_router
from backend.schemas import HealthResponse
from config.settings import Settings, get_settings
from models.engine import RecommendationEngine
from utils.logger import logger
from utils.score_cache import ScoreCache


# ─────────────────────────────────────────────────────────────────────────────
#  Lifespan: the process owns the cache connection and the engine
# ─────────────────────────────────────────────────────────────────────────────

@asynccontextmanager
async def lifespan(app: FastAPI):
    settings: Settings = app.state.settings
    cache = ScoreCache.from_settings(settings)
    await cache.connect()
    try:
        app.state.cache = cache
        app.state.engine = RecommendationEngine(cache, settings=settings)
        logger.info(f"[startup] Recommendation engine ready (env={settings.app_env})")
        yield
    finally:
        app.state.engine = None
        await cache.close()
        logger.info("[shutdown] Score cache closed")


# ─────────────────────────────────────────────────────────────────────────────
#  App initialisation
# ─────────────────────────────────────────────────────────────────────────────

def create_app(settings: Settings | None = None) -> FastAPI:
    app = FastAPI(
        title="Group Recommendation API",
        description=(
            "Traveler ↔ group compatibility scoring with multi-factor ranking, "
            "diversity balancing and a two-tier score cache."
        ),
        version="1.0.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )
    app.state.settings = settings or get_settings()
    app.state.cache = None
    app.state.engine = None

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],      # tighten in production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health", response_model=HealthResponse, tags=["Meta"])
    async def health_check(request: Request) -> HealthResponse:
        """
        Liveness & readiness probe.
        Reports the score cache tier status and whether the engine is loaded.
        """
        cache: ScoreCache | None = request.app.state.cache
        engine_ready = request.app.state.engine is not None
        if cache is None:
            return HealthResponse(status="degraded: cache not initialised", cache={}, engine_ready=engine_ready)

        cache_health = await cache.health_check()
        status = "ok" if cache_health["status"] == "healthy" and engine_ready else "degraded"
        return HealthResponse(status=status, cache=cache_health, engine_ready=engine_ready)

    app.include_router(recommendations_router.router)
    app.include_router(cache_router.router)
    return app


app = create_app()
