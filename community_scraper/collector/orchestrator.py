"""
Scrape orchestrator: drives navigation, extraction, analysis and persistence.

One orchestrator instance owns its run state. Only one run may be active at
a time; a second request while running is logged and returns a ``skipped``
result. Per-item and per-source failures are logged and skipped; only a
failure to launch the browsing session ends a run as ``failed``.
"""

import asyncio
import logging
import time
from contextlib import nullcontext
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional

from community_scraper.analysis.sentiment import SentimentAnalyzer
from community_scraper.analysis.trends import TrendAggregator, extract_tags, is_trending_post
from community_scraper.collector.error_handler import ConsecutiveErrorTracker, with_exponential_backoff
from community_scraper.collector.navigator import Navigator, PageResponse, create_navigator
from community_scraper.collector.proxy_manager import ProxyEndpoint, ProxyManager
from community_scraper.collector.rate_limiter import RateLimiter
from community_scraper.config import Config, NavigatorConfig
from community_scraper.exceptions import LaunchError, NavigationError, StoreError
from community_scraper.models.mapping import parse_comments, parse_listing
from community_scraper.models.records import PostFilter, PostRecord, ScrapeRunRecord, SentimentResult
from community_scraper.storage.base_store import Store

logger = logging.getLogger(__name__)

NavigatorFactory = Callable[[NavigatorConfig], Navigator]


class RunMode(str, Enum):
    BROAD = "broad"
    HOT = "hot"
    COMMENTS = "comments"
    TRENDS = "trends"


class OrchestratorState(str, Enum):
    IDLE = "idle"
    LAUNCHING = "launching"
    NAVIGATING = "navigating"
    EXTRACTING = "extracting"
    ANALYZING = "analyzing"
    PERSISTING = "persisting"
    AGGREGATING = "aggregating"
    ERROR = "error"


class RunStatus(str, Enum):
    COMPLETED = "completed"
    SKIPPED = "skipped"
    CANCELLED = "cancelled"
    FAILED = "failed"


@dataclass
class SourceStats:
    """Counters for one source within one run."""

    source: str
    posts: int = 0
    comments: int = 0
    errors: int = 0
    requests: int = 0
    successes: int = 0
    skipped_items: int = 0
    skipped: bool = False
    response_times_ms: List[float] = field(default_factory=list)
    egress: str = "direct"
    user_agent: Optional[str] = None
    proxy: Optional[ProxyEndpoint] = None

    @property
    def success_rate(self) -> float:
        return self.successes / self.requests if self.requests else 0.0

    @property
    def avg_response_time_ms(self) -> float:
        if not self.response_times_ms:
            return 0.0
        return sum(self.response_times_ms) / len(self.response_times_ms)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source": self.source,
            "posts": self.posts,
            "comments": self.comments,
            "errors": self.errors,
            "requests": self.requests,
            "skipped_items": self.skipped_items,
            "skipped": self.skipped,
            "success_rate": round(self.success_rate, 4),
            "avg_response_time_ms": round(self.avg_response_time_ms, 2),
            "egress": self.egress,
        }


@dataclass
class RunResult:
    """Outcome of one orchestrator run."""

    mode: RunMode
    status: RunStatus = RunStatus.COMPLETED
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: Optional[datetime] = None
    sources: Dict[str, SourceStats] = field(default_factory=dict)
    trending_topics: int = 0
    error: Optional[str] = None
    fatal: bool = False

    @property
    def posts_scraped(self) -> int:
        return sum(s.posts for s in self.sources.values())

    @property
    def comments_scraped(self) -> int:
        return sum(s.comments for s in self.sources.values())

    @property
    def error_count(self) -> int:
        return sum(s.errors for s in self.sources.values())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "mode": self.mode.value,
            "status": self.status.value,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "posts_scraped": self.posts_scraped,
            "comments_scraped": self.comments_scraped,
            "error_count": self.error_count,
            "trending_topics": self.trending_topics,
            "error": self.error,
            "fatal": self.fatal,
            "sources": [s.to_dict() for s in self.sources.values()],
        }


class ScrapeOrchestrator:
    """Runs scrape sweeps against the configured sources."""

    def __init__(
        self,
        config: Config,
        store: Store,
        analyzer: Optional[SentimentAnalyzer] = None,
        proxy_manager: Optional[ProxyManager] = None,
        rate_limiter: Optional[RateLimiter] = None,
        navigator_factory: NavigatorFactory = create_navigator,
        prometheus_exporter=None,
    ):
        """
        Initialize the orchestrator.

        Args:
            config: Immutable application configuration
            store: Persistent store
            analyzer: Sentiment analyzer
            proxy_manager: Proxy pool
            rate_limiter: Shared rate limiter
            navigator_factory: Builds a navigator for each run
            prometheus_exporter: Optional Prometheus exporter for metrics
        """
        self.config = config
        self.store = store
        self.analyzer = analyzer or SentimentAnalyzer()
        self.proxy_manager = proxy_manager or ProxyManager(config.proxy)
        self.rate_limiter = rate_limiter or RateLimiter(config.rate_limit)
        self.navigator_factory = navigator_factory
        self.prometheus_exporter = prometheus_exporter
        self.trends = TrendAggregator(store, config.trends)
        self.error_tracker = ConsecutiveErrorTracker(
            threshold=max(config.rate_limit.max_attempts * 2, 3),
            prometheus_exporter=prometheus_exporter,
        )

        self.is_running = False
        self.state = OrchestratorState.IDLE
        self.current_mode: Optional[RunMode] = None
        self.request_count = 0
        self.last_result: Optional[RunResult] = None
        self._current_proxy: Optional[ProxyEndpoint] = None
        self._stop_event = asyncio.Event()

    # Public interface

    async def run(self, sources: Optional[Iterable[str]] = None, mode: RunMode = RunMode.BROAD) -> RunResult:
        """
        Run one sweep.

        Args:
            sources: Sources to scrape, defaults to the configured list
            mode: Which sweep to run

        Returns:
            RunResult; status ``skipped`` if another run is in progress
        """
        mode = RunMode(mode)
        if self.is_running:
            logger.warning(f"Run requested ({mode.value}) while a {self.current_mode.value} run is active, skipping")
            now = datetime.now(timezone.utc)
            return RunResult(mode=mode, status=RunStatus.SKIPPED, started_at=now, finished_at=now)

        self.is_running = True
        self.current_mode = mode
        self._stop_event.clear()
        result = RunResult(mode=mode)
        started = time.monotonic()
        logger.info(f"Starting {mode.value} run")

        try:
            if mode is RunMode.TRENDS:
                await self._aggregate(result, write_run_records=False)
            else:
                await self._sweep(list(sources or self.config.sources), mode, result)
            result.status = RunStatus.CANCELLED if self._stop_event.is_set() else RunStatus.COMPLETED
        except LaunchError as e:
            self._set_state(OrchestratorState.ERROR)
            logger.error(f"Run-fatal launch failure: {e}")
            result.status = RunStatus.FAILED
            result.fatal = True
            result.error = str(e)
        finally:
            result.finished_at = datetime.now(timezone.utc)
            self.last_result = result
            self.is_running = False
            self.current_mode = None
            self._set_state(OrchestratorState.IDLE)
            if self.prometheus_exporter:
                self.prometheus_exporter.record_run(mode.value, result.status.value, time.monotonic() - started)

        logger.info(
            f"Finished {mode.value} run: status={result.status.value} posts={result.posts_scraped} "
            f"comments={result.comments_scraped} errors={result.error_count}"
        )
        return result

    async def recompute_trends(self) -> RunResult:
        return await self.run(mode=RunMode.TRENDS)

    def stop(self) -> None:
        """Ask the active run to stop at the next source or item boundary."""
        if self.is_running:
            logger.info("Stop requested for active run")
        self._stop_event.set()

    @property
    def stop_requested(self) -> bool:
        return self._stop_event.is_set()

    def status(self) -> Dict[str, Any]:
        proxy_stats = self.proxy_manager.stats()
        return {
            "state": self.state.value,
            "is_running": self.is_running,
            "mode": self.current_mode.value if self.current_mode else None,
            "request_count": self.request_count,
            "last_run": self.last_result.to_dict() if self.last_result else None,
            "proxies": {
                "total": proxy_stats.total,
                "failed": proxy_stats.failed,
                "working": proxy_stats.working,
                "last_refresh": proxy_stats.last_refresh.isoformat() if proxy_stats.last_refresh else None,
            },
        }

    # Pipeline

    def _set_state(self, state: OrchestratorState) -> None:
        if state is not self.state:
            logger.debug(f"Orchestrator state {self.state.value} -> {state.value}")
            self.state = state

    async def _sweep(self, sources: List[str], mode: RunMode, result: RunResult) -> None:
        self._set_state(OrchestratorState.LAUNCHING)
        self._current_proxy = await self.proxy_manager.next()
        if self.prometheus_exporter:
            stats = self.proxy_manager.stats()
            self.prometheus_exporter.set_proxy_stats(stats.total, stats.failed)

        navigator = self.navigator_factory(self.config.navigator)
        async with navigator:
            logger.info(f"Session launched via {self._current_proxy or 'direct'} for {len(sources)} sources")
            concurrency = self.config.extraction.max_concurrent_sources
            if concurrency > 1:
                semaphore = asyncio.Semaphore(concurrency)

                async def bounded(source: str) -> None:
                    async with semaphore:
                        if not self._stop_event.is_set():
                            await self._process_source(navigator, source, mode, result)

                await asyncio.gather(*(bounded(source) for source in sources))
            else:
                for index, source in enumerate(sources):
                    if self._stop_event.is_set():
                        logger.info(f"Stop requested, {len(sources) - index} sources not processed")
                        break
                    await self._process_source(navigator, source, mode, result)
                    if index < len(sources) - 1 and not self._stop_event.is_set():
                        await self.rate_limiter.random_delay()

        await self._aggregate(result)

    async def _process_source(self, navigator: Navigator, source: str, mode: RunMode, result: RunResult) -> None:
        stats = SourceStats(source=source, proxy=self._current_proxy)
        result.sources[source] = stats
        try:
            if mode is RunMode.COMMENTS:
                await self._comment_sweep(navigator, source, stats)
            else:
                await self._listing_sweep(navigator, source, mode, stats)
        except NavigationError as e:
            stats.skipped = True
            logger.error(f"Skipping source {source} after {e.attempts} attempts: {e}")
        except LaunchError:
            raise
        except Exception as e:
            stats.skipped = True
            stats.errors += 1
            logger.error(f"Unexpected error scraping {source}: {e}", exc_info=True)

    async def _fetch(self, navigator: Navigator, url: str, stats: SourceStats) -> PageResponse:
        async def attempt() -> PageResponse:
            self._set_state(OrchestratorState.NAVIGATING)
            await self.rate_limiter.acquire()
            stats.requests += 1
            self.request_count += 1
            proxy = stats.proxy
            timer = self.prometheus_exporter.time_request() if self.prometheus_exporter else nullcontext()
            try:
                with timer:
                    page = await navigator.fetch_page(url, proxy)
            except NavigationError:
                stats.errors += 1
                await self._rotate_proxy(stats, url)
                raise

            stats.response_times_ms.append(page.elapsed_ms)
            if not page.ok:
                stats.errors += 1
                raise NavigationError(url, status=page.status, headers=page.headers)

            stats.successes += 1
            stats.egress = proxy.key if proxy else "direct"
            stats.user_agent = navigator.user_agent
            self.proxy_manager.mark_succeeded(proxy)
            return page

        async def on_retry(error: NavigationError, attempt_number: int) -> None:
            logger.info(f"Retrying {url} for {stats.source} (attempt {attempt_number + 1})")
            if self.error_tracker.threshold_reached():
                logger.warning("Navigation failure streak, refreshing proxy pool")
                self.error_tracker.reset()
                await self.proxy_manager.refresh()

        rl = self.config.rate_limit
        fetch = with_exponential_backoff(
            max_attempts=rl.max_attempts,
            initial_backoff=rl.initial_backoff_sec,
            max_backoff=rl.max_backoff_sec,
            backoff_factor=rl.backoff_factor,
            error_tracker=self.error_tracker,
            rate_limiter=self.rate_limiter,
            on_retry=on_retry,
            sleep=self.rate_limiter.sleep,
        )(attempt)
        return await fetch()

    async def _rotate_proxy(self, stats: SourceStats, url: str) -> None:
        if stats.proxy is None and not self.proxy_manager.endpoints:
            return
        self.proxy_manager.mark_failed(stats.proxy)
        stats.proxy = await self.proxy_manager.next()
        self._current_proxy = stats.proxy
        logger.info(f"Rotated proxy for {stats.source} to {stats.proxy or 'direct'} after network error on {url}")

    def _listing_url(self, source: str, limit: int) -> str:
        return f"{self.config.navigator.base_url}/r/{source}/hot.json?limit={limit}"

    def _comments_url(self, source: str, post_id: str) -> str:
        return f"{self.config.navigator.base_url}/r/{source}/comments/{post_id}.json"

    async def _listing_sweep(self, navigator: Navigator, source: str, mode: RunMode, stats: SourceStats) -> None:
        extraction_config = self.config.extraction
        limit = extraction_config.hot_post_limit if mode is RunMode.HOT else extraction_config.max_posts_per_source
        page = await self._fetch(navigator, self._listing_url(source, limit), stats)

        self._set_state(OrchestratorState.EXTRACTING)
        extraction = parse_listing(page.body, source, extraction_config.hot_upvote_threshold)
        posts: List[PostRecord] = extraction.records[:limit]
        stats.skipped_items += extraction.skipped
        if self.prometheus_exporter:
            self.prometheus_exporter.record_extraction_skips(source, extraction.skipped)
        logger.info(f"Extracted {len(posts)} posts from {source} ({extraction.skipped} skipped)")

        for index, post in enumerate(posts):
            if self._stop_event.is_set():
                logger.info(f"Stop requested, leaving {source} after {index} posts")
                return
            await self._process_post(navigator, post, mode, stats)
            if index < len(posts) - 1:
                await self.rate_limiter.item_delay()

    async def _comment_sweep(self, navigator: Navigator, source: str, stats: SourceStats) -> None:
        window = self.config.trends.window_hours
        recent = await self.store.query_recent(window, PostFilter(source=source, limit=1000))
        candidates = sorted(
            (p for p in recent if p.comment_count > 0),
            key=lambda p: p.score,
            reverse=True,
        )[: self.config.extraction.comment_sweep_posts_per_source]
        logger.info(f"Comment sweep for {source}: {len(candidates)} posts")

        for index, post in enumerate(candidates):
            if self._stop_event.is_set():
                logger.info(f"Stop requested, leaving comment sweep of {source}")
                return
            await self._guarded_comments(navigator, source, post.post_id, stats)
            if index < len(candidates) - 1:
                await self.rate_limiter.item_delay()

    def _analyze(self, text: str, item_id: str) -> SentimentResult:
        try:
            return self.analyzer.analyze(text)
        except Exception as e:
            logger.warning(f"Analyzer failed on {item_id}, using neutral result: {e!r}")
            return SentimentResult.neutral()

    def _wants_comments(self, post: PostRecord) -> bool:
        return post.comment_count > 0 and (
            post.score > self.config.extraction.comment_score_threshold or post.is_trending
        )

    def enrich_post(self, post: PostRecord) -> PostRecord:
        """Attach sentiment, tags and the trending flag to an extracted post."""
        sentiment = self._analyze(post.text, post.post_id)
        return post.model_copy(
            update={
                "sentiment_score": sentiment.score,
                "sentiment_label": sentiment.label,
                "tags": extract_tags(post.title, post.body_text),
                "is_trending": is_trending_post(post.score, post.comment_count, post.created_at, self.config.trends),
                "scraped_at": datetime.now(timezone.utc),
            }
        )

    async def _process_post(self, navigator: Navigator, post: PostRecord, mode: RunMode, stats: SourceStats) -> None:
        try:
            self._set_state(OrchestratorState.ANALYZING)
            post = self.enrich_post(post)

            self._set_state(OrchestratorState.PERSISTING)
            await self.store.upsert_post(post)
        except StoreError as e:
            stats.errors += 1
            logger.warning(f"Post {post.post_id} from {post.source} not persisted: {e}")
            return
        except LaunchError:
            raise
        except Exception as e:
            stats.errors += 1
            logger.error(f"Failed to process post {post.post_id} from {post.source}: {e}", exc_info=True)
            return

        stats.posts += 1
        if self.prometheus_exporter:
            self.prometheus_exporter.record_posts(post.source)

        if mode is not RunMode.HOT and self._wants_comments(post):
            await self._guarded_comments(navigator, post.source, post.post_id, stats)

    async def _guarded_comments(self, navigator: Navigator, source: str, post_id: str, stats: SourceStats) -> None:
        # A broken thread only costs that post its comments
        try:
            await self._scrape_comments(navigator, source, post_id, stats)
        except LaunchError:
            raise
        except Exception as e:
            stats.errors += 1
            logger.error(f"Failed to scrape comments of post {post_id} in {source}: {e}", exc_info=True)

    async def _scrape_comments(self, navigator: Navigator, source: str, post_id: str, stats: SourceStats) -> None:
        try:
            page = await self._fetch(navigator, self._comments_url(source, post_id), stats)
        except NavigationError as e:
            logger.warning(f"Skipping comments of post {post_id} in {source} after {e.attempts} attempts: {e}")
            return

        self._set_state(OrchestratorState.EXTRACTING)
        extraction = parse_comments(page.body, post_id, self.config.extraction.max_comments_per_post)
        stats.skipped_items += extraction.skipped

        stored = 0
        for comment in extraction.records:
            if self._stop_event.is_set():
                break
            self._set_state(OrchestratorState.ANALYZING)
            sentiment = self._analyze(comment.body_text, comment.comment_id)
            comment = comment.model_copy(
                update={
                    "sentiment_score": sentiment.score,
                    "sentiment_label": sentiment.label,
                    "scraped_at": datetime.now(timezone.utc),
                }
            )
            self._set_state(OrchestratorState.PERSISTING)
            try:
                await self.store.insert_or_update_comment(comment)
            except StoreError as e:
                stats.errors += 1
                logger.warning(f"Comment {comment.comment_id} of post {post_id} not persisted: {e}")
                continue
            stored += 1

        stats.comments += stored
        if self.prometheus_exporter and stored:
            self.prometheus_exporter.record_comments(source, stored)
        logger.debug(f"Stored {stored}/{len(extraction.records)} comments for post {post_id}")

    async def _aggregate(self, result: RunResult, write_run_records: bool = True) -> None:
        self._set_state(OrchestratorState.AGGREGATING)
        try:
            topics = await self.trends.recompute()
            result.trending_topics = len(topics)
        except StoreError as e:
            logger.error(f"Trend recompute failed: {e}")
            result.error = str(e)

        if not write_run_records:
            return

        for stats in result.sources.values():
            record = ScrapeRunRecord(
                source=stats.source,
                mode=result.mode.value,
                posts_scraped=stats.posts,
                comments_scraped=stats.comments,
                error_count=stats.errors,
                success_rate=stats.success_rate,
                avg_response_time_ms=stats.avg_response_time_ms,
                egress_used=stats.egress,
                user_agent=stats.user_agent,
            )
            try:
                await self.store.append_run_record(record)
            except StoreError as e:
                logger.error(f"Failed to record analytics for {stats.source}: {e}")
