"""Local Guide profile stats API.

Endpoints:
  GET /v1/localguides/summary  contribution stats for one profile (cached 5 min)
  GET /v1/localguides/debug    visible-text sample after opening the stats panel
"""

import logging

from fastapi import APIRouter, Depends, Query, Response

from guidestats.api.deps import get_profile_stats_service
from guidestats.schemas.stats import (
    DebugSampleResponse,
    ErrorResponse,
    ProfileStatsResponse,
    ScrapeMode,
)
from guidestats.services.profile_scraper import ProfileStatsService

router = APIRouter()
logger = logging.getLogger(__name__)

_ERROR_RESPONSES = {
    400: {"model": ErrorResponse, "description": "Identifier rejected"},
    422: {"model": ErrorResponse, "description": "Profile could not be parsed"},
    503: {"model": ErrorResponse, "description": "No browser binary available"},
    504: {"model": ErrorResponse, "description": "Scrape deadline exceeded"},
}


@router.get(
    "/summary",
    response_model=ProfileStatsResponse,
    summary="Local Guide profile stats",
    description=(
        "Fetch level, points and per-category contribution counts for a Google "
        "Maps contributor. Accepts the numeric contributor id or a "
        "`.../maps/contrib/<id>` URL. Results are cached for 5 minutes; "
        "the `X-Cache` header reports HIT or MISS."
    ),
    responses=_ERROR_RESPONSES,
)
async def summary(
    response: Response,
    contrib_url: str = Query("", description="Numeric contributor id or contrib URL"),
    mode: ScrapeMode = Query(ScrapeMode.NORMAL, description="`slow` trades speed for tolerance"),
    service: ProfileStatsService = Depends(get_profile_stats_service),
):
    result = await service.fetch(contrib_url, mode)
    response.headers["X-Cache"] = "HIT" if result.cache_hit else "MISS"
    return result.payload


@router.get(
    "/debug",
    response_model=DebugSampleResponse,
    summary="Profile page text sample",
    description="Open the profile, try to reveal the stats panel and return the first 2000 characters of visible text. Never cached.",
    responses=_ERROR_RESPONSES,
)
async def debug(
    contrib_url: str = Query("", description="Numeric contributor id or contrib URL"),
    service: ProfileStatsService = Depends(get_profile_stats_service),
):
    return await service.debug_sample(contrib_url)
