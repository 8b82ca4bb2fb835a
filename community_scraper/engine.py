"""
Engine facade: the trigger and query interfaces used by the CLI and dashboard.

Query methods only read from the store and never start a scrape.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional

from community_scraper.analysis.sentiment import SentimentAnalyzer, SentimentTrend
from community_scraper.collector.navigator import create_navigator
from community_scraper.collector.orchestrator import NavigatorFactory, RunMode, RunResult, ScrapeOrchestrator
from community_scraper.collector.scheduler import ScrapeScheduler
from community_scraper.config import Config
from community_scraper.models.records import (
    GroupAggregate,
    PostFilter,
    PostRecord,
    ScrapeRunRecord,
    StoreStats,
    TrendingTopicRecord,
)
from community_scraper.storage.base_store import Store
from community_scraper.storage.sqlalchemy_store import SQLAlchemyStore

logger = logging.getLogger(__name__)


class ScraperEngine:
    """Wires store, orchestrator and scheduler together from one configuration."""

    def __init__(
        self,
        config: Config,
        store: Optional[Store] = None,
        navigator_factory: NavigatorFactory = create_navigator,
        prometheus_exporter=None,
        status_file: Optional[str] = None,
    ):
        """
        Initialize the engine.

        Args:
            config: Immutable application configuration
            store: Store to use, defaults to a SQLAlchemyStore for ``config.database``
            navigator_factory: Builds the navigator for each run
            prometheus_exporter: Optional Prometheus exporter for metrics
            status_file: Where the scheduler writes its status, defaults to the configured path
        """
        self.config = config
        self.store = store or SQLAlchemyStore(config.database)
        self.analyzer = SentimentAnalyzer()
        self.orchestrator = ScrapeOrchestrator(
            config,
            self.store,
            analyzer=self.analyzer,
            navigator_factory=navigator_factory,
            prometheus_exporter=prometheus_exporter,
        )
        self.scheduler = ScrapeScheduler(
            self.orchestrator,
            config.schedule,
            status_file=status_file if status_file is not None else config.schedule.status_file,
        )
        self._initialized = False

    async def initialize(self) -> None:
        """Create the schema if needed. Safe to call repeatedly."""
        if not self._initialized:
            await self.store.initialize()
            self._initialized = True

    async def close(self) -> None:
        await self.stop_scheduled()
        await self.store.close()

    async def __aenter__(self) -> "ScraperEngine":
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    # Trigger interface

    async def run_once(self, sources: Optional[Iterable[str]] = None, mode: RunMode = RunMode.BROAD) -> RunResult:
        """Run one sweep now. Returns a ``skipped`` result if a run is already active."""
        await self.initialize()
        return await self.orchestrator.run(sources, mode)

    async def start_scheduled(self) -> None:
        await self.initialize()
        await self.scheduler.start()

    async def stop_scheduled(self) -> None:
        await self.scheduler.stop()

    def stop_run(self) -> None:
        self.orchestrator.stop()

    def status(self) -> Dict[str, Any]:
        return self.scheduler.status()

    # Query interface

    async def get_trending_topics(self, limit: int = 10, source: Optional[str] = None) -> List[TrendingTopicRecord]:
        return await self.store.query_trending_topics(limit, source)

    async def get_recent_analytics(self, hours: float = 24) -> List[GroupAggregate]:
        """Per-source totals and averages of the run records in the window."""
        return await self.store.aggregate_by_group("source", hours)

    async def get_recent_runs(self, hours: float = 24) -> List[ScrapeRunRecord]:
        return await self.store.query_runs(hours)

    async def get_posts(self, source: Optional[str] = None, limit: int = 50, offset: int = 0, **filters: Any) -> List[PostRecord]:
        return await self.store.get_posts(PostFilter(source=source, limit=limit, offset=offset, **filters))

    async def get_stats(self) -> StoreStats:
        return await self.store.get_stats()

    async def get_sentiment_trend(self, hours: float = 24, source: Optional[str] = None) -> SentimentTrend:
        """Direction of post sentiment over the window."""
        filters = PostFilter(source=source, limit=1000) if source else None
        posts = await self.store.query_recent(hours, filters)
        return self.analyzer.sentiment_trend(p.sentiment_score for p in posts)
