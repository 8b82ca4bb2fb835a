"""
FastAPI application for the community scraper dashboard.

Serves the engine's read-only query interface: stats, trending topics,
run analytics, posts and sentiment trend. No endpoint starts a scrape.
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncGenerator, List, Optional

from fastapi import Depends, FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from community_scraper import __version__
from community_scraper.analysis.sentiment import SentimentTrend
from community_scraper.config import Config
from community_scraper.engine import ScraperEngine
from community_scraper.exceptions import StoreError
from community_scraper.models.records import (
    GroupAggregate,
    PostRecord,
    ScrapeRunRecord,
    StoreStats,
    TrendingTopicRecord,
)

logger = logging.getLogger(__name__)

APP_NAME = "community-scraper"


def get_engine(request: Request) -> ScraperEngine:
    """Engine attached to the application at creation time."""
    return request.app.state.engine


def create_app(engine: Optional[ScraperEngine] = None, config: Optional[Config] = None) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        engine: Engine to serve queries from. Built from ``config`` when omitted
            and then owned (initialized and closed) by the application.
        config: Configuration used to build the engine, defaults to ``Config()``

    Returns:
        FastAPI: Configured application instance.
    """
    owns_engine = engine is None
    if engine is None:
        engine = ScraperEngine(config or Config(), status_file="")

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        logger.info(f"Starting {APP_NAME} dashboard API v{__version__}")
        await engine.initialize()
        yield
        logger.info("Shutting down dashboard API")
        if owns_engine:
            await engine.close()

    app = FastAPI(
        title=APP_NAME,
        version=__version__,
        description="Read-only dashboard API over scraped posts, trending topics and run analytics.",
        lifespan=lifespan,
        openapi_tags=[
            {"name": "dashboard", "description": "Aggregated views for the dashboard"},
            {"name": "health", "description": "Health check and monitoring"},
        ],
    )
    app.state.engine = engine

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET"],
        allow_headers=["*"],
    )

    @app.exception_handler(StoreError)
    async def store_error_handler(request: Request, exc: StoreError) -> JSONResponse:
        logger.error(f"Store error serving {request.url.path}: {exc}")
        return JSONResponse(status_code=503, content={"detail": f"Store unavailable: {exc}"})

    @app.get("/health", tags=["health"], summary="Health Check")
    async def health_check(engine: ScraperEngine = Depends(get_engine)) -> dict:
        """Service status plus the orchestrator's current state."""
        return {
            "status": "healthy",
            "service": APP_NAME,
            "version": __version__,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "orchestrator": engine.orchestrator.status(),
        }

    @app.get("/api/stats", response_model=StoreStats, tags=["dashboard"])
    async def get_stats(engine: ScraperEngine = Depends(get_engine)) -> StoreStats:
        return await engine.get_stats()

    @app.get("/api/trending", response_model=List[TrendingTopicRecord], tags=["dashboard"])
    async def get_trending(
        limit: int = Query(10, ge=1, le=100),
        source: Optional[str] = Query(None, description="Source name, or 'all' for the cross-source rows"),
        engine: ScraperEngine = Depends(get_engine),
    ) -> List[TrendingTopicRecord]:
        return await engine.get_trending_topics(limit, source)

    @app.get("/api/analytics", response_model=List[GroupAggregate], tags=["dashboard"])
    async def get_analytics(
        hours: float = Query(24, gt=0, le=24 * 90),
        engine: ScraperEngine = Depends(get_engine),
    ) -> List[GroupAggregate]:
        """Per-source run totals and averages over the last ``hours``."""
        return await engine.get_recent_analytics(hours)

    @app.get("/api/runs", response_model=List[ScrapeRunRecord], tags=["dashboard"])
    async def get_runs(
        hours: float = Query(24, gt=0, le=24 * 90),
        engine: ScraperEngine = Depends(get_engine),
    ) -> List[ScrapeRunRecord]:
        return await engine.get_recent_runs(hours)

    @app.get("/api/posts", response_model=List[PostRecord], tags=["dashboard"])
    async def get_posts(
        source: Optional[str] = None,
        limit: int = Query(50, ge=1, le=1000),
        offset: int = Query(0, ge=0),
        trending: Optional[bool] = Query(None, description="Only trending (true) or non-trending (false) posts"),
        tag: Optional[str] = None,
        engine: ScraperEngine = Depends(get_engine),
    ) -> List[PostRecord]:
        return await engine.get_posts(source, limit, offset, is_trending=trending, tag=tag)

    @app.get("/api/sentiment", response_model=SentimentTrend, tags=["dashboard"])
    async def get_sentiment(
        hours: float = Query(24, gt=0, le=24 * 90),
        source: Optional[str] = None,
        engine: ScraperEngine = Depends(get_engine),
    ) -> SentimentTrend:
        return await engine.get_sentiment_trend(hours, source)

    return app
