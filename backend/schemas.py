"""
backend/schemas.py
──────────────────
Pydantic v2 request / response models for the FastAPI endpoints.  Domain
models (profiles, groups, scores, pages) are reused from models.entities.

Sections
────────
  1. Recommendation models  — RecommendationRequest
  2. Cache models           — CacheStatsResponse, CacheInvalidationResponse
  3. Shared / util models   — HealthResponse
"""

from typing import Any, Optional

from pydantic import BaseModel, Field

from models.entities import CandidateGroup, CompatibilityProfile, RecommendationFilters


# ─────────────────────────────────────────────────────────────────────────────
#  1. Recommendation models
# ─────────────────────────────────────────────────────────────────────────────

class RecommendationRequest(BaseModel):
    """Body schema for POST /api/recommendations."""
    profile:              CompatibilityProfile
    candidate_groups:     Optional[list[CandidateGroup]] = Field(
        None,
        description="Groups to rank. If omitted, the configured catalog is used.",
    )
    page:                 int   = Field(0, ge=0, description="Zero-indexed page")
    page_size:            Optional[int] = Field(None, ge=1, le=100, description="Defaults to DEFAULT_PAGE_SIZE")
    filters:              Optional[RecommendationFilters] = None
    include_explanations: bool  = True
    force_recalculation:  bool  = Field(False, description="Bypass cached scores")
    timeout:              Optional[float] = Field(None, gt=0, description="Batch deadline (s)")


# ─────────────────────────────────────────────────────────────────────────────
#  2. Cache models
# ─────────────────────────────────────────────────────────────────────────────

class CacheStatsResponse(BaseModel):
    """Response for GET /api/cache/stats."""
    hits:             int
    misses:           int
    errors:           int
    operations:       int
    hit_rate:         float = Field(..., description="Percentage of lookups served from cache")
    fallback_size:    int   = Field(..., description="Entries held in the in-process tier")
    remote_enabled:   bool
    remote_connected: bool
    pending_deletes:  int   = Field(0, description="Invalidations queued until Redis is reachable")
    batch:            dict[str, float] = Field(default_factory=dict, description="Batch scorer metrics")


class CacheInvalidationResponse(BaseModel):
    """Response for DELETE /api/cache."""
    removed: int
    message: str


# ─────────────────────────────────────────────────────────────────────────────
#  3. Shared / util models
# ─────────────────────────────────────────────────────────────────────────────

class HealthResponse(BaseModel):
    """Response for GET /health."""
    status:       str
    cache:        dict[str, Any]
    engine_ready: bool
    version:      str = "1.0.0"
