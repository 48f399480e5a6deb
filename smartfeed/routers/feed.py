"""
Feed endpoints.

  GET  /feed/?user_id=<id>            — smart feed (cached for 2 minutes)
  GET  /feed/next?user_id=&after=     — page preloaded after a served post
  POST /feed/{user_id}/invalidate     — drop cached feeds + preferences
  POST /feed/views                    — award coins for a viewed post
  GET  /feed/analytics/{user_id}      — feed generation insights
  GET  /feed/stats                    — engine cache statistics

All of them delegate to the FeedEngine held on app.state; the pipeline itself
(lanes, ranking, diversity, monetization, fallback) lives in smartfeed.engine.
"""
import logging

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, Request
from fastapi.responses import JSONResponse

from smartfeed.engine.service import FeedEngine
from smartfeed.engine.types import FeedOptions, SmartFeedResponse
from smartfeed.schemas import (
    FeedAnalyticsResponse,
    InvalidateResponse,
    StatsResponse,
    Timeframe,
    ViewRewardRequest,
    ViewRewardResponse,
)

logger = logging.getLogger(__name__)
router = APIRouter()


def get_engine(request: Request) -> FeedEngine:
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        raise HTTPException(status_code=503, detail="Feed engine not ready")
    return engine


@router.get("/", response_model=SmartFeedResponse)
async def get_feed(
    background_tasks: BackgroundTasks,
    user_id: str = Query(..., description="ID of the requesting user"),
    limit: int = Query(20, ge=1, le=100),
    ads: bool = Query(True),
    sponsored: bool = Query(True),
    force_refresh: bool = Query(False),
    preload: bool = Query(False, description="Prepare the next page in the background"),
    engine: FeedEngine = Depends(get_engine),
):
    options = FeedOptions(
        force_refresh=force_refresh, limit=limit, ads=ads, sponsored=sponsored
    )
    result = await engine.get_smart_feed(user_id, options)
    if not result.success:
        return JSONResponse(status_code=503, content=result.model_dump(mode="json"))
    if preload:
        background_tasks.add_task(engine.preload_next_feed, user_id, result.feed)
    return result


@router.get("/next", response_model=SmartFeedResponse)
async def get_next_feed(
    user_id: str = Query(...),
    after: str = Query(..., description="ID of the last post the client has shown"),
    engine: FeedEngine = Depends(get_engine),
):
    """Serve a page preloaded by GET /feed/?preload=true."""
    preloaded = await engine.get_preloaded_feed(user_id, after)
    if preloaded is None:
        raise HTTPException(status_code=404, detail="No preloaded feed")
    return SmartFeedResponse(
        success=True,
        feed=preloaded.feed,
        metadata=preloaded.metadata,
        cached=True,
        operation_id=f"preload_{user_id}_{after}",
    )


@router.post("/views", response_model=ViewRewardResponse)
async def record_view(
    body: ViewRewardRequest,
    engine: FeedEngine = Depends(get_engine),
):
    """Called by the client once a post has been on screen for a while."""
    result = await engine.award_coins_for_view(body.user_id, body.post_id, body.view_duration_ms)
    return ViewRewardResponse(**result)


@router.get("/stats", response_model=StatsResponse)
async def get_stats(engine: FeedEngine = Depends(get_engine)):
    return StatsResponse(**await engine.get_stats())


@router.get("/analytics/{user_id}", response_model=FeedAnalyticsResponse)
async def get_feed_analytics(
    user_id: str,
    timeframe: Timeframe = Query("7d"),
    engine: FeedEngine = Depends(get_engine),
):
    result = await engine.get_feed_analytics(user_id, timeframe)
    return FeedAnalyticsResponse(
        success=result["success"],
        analytics=list(result["analytics"]),
        insights=result["insights"] or None,
        timeframe=result["timeframe"],
    )


@router.post("/{user_id}/invalidate", response_model=InvalidateResponse)
async def invalidate_feed(user_id: str, engine: FeedEngine = Depends(get_engine)):
    """Hook for preference / follow updates made outside the event stream."""
    evicted = await engine.invalidate_user(user_id)
    return InvalidateResponse(user_id=user_id, evicted_feeds=evicted)
