"""Prometheus metrics for monitoring the community scraper."""

import logging
import time
from typing import Optional

from prometheus_client import Counter, Gauge, Histogram, start_http_server

logger = logging.getLogger(__name__)

POSTS_SCRAPED = Counter(
    "community_scraper_posts_scraped_total",
    "Total number of posts persisted",
    ["source"],
)

COMMENTS_SCRAPED = Counter(
    "community_scraper_comments_scraped_total",
    "Total number of comments persisted",
    ["source"],
)

NAVIGATION_ERRORS = Counter(
    "community_scraper_navigation_errors_total",
    "Number of failed page fetch attempts",
    ["error_type"],
)

EXTRACTION_SKIPS = Counter(
    "community_scraper_extraction_skips_total",
    "Number of malformed items skipped during extraction",
    ["source"],
)

RUNS = Counter(
    "community_scraper_runs_total",
    "Orchestrator runs by mode and final status",
    ["mode", "status"],
)

CONSECUTIVE_ERRORS = Gauge(
    "community_scraper_consecutive_navigation_errors",
    "Number of consecutive navigation errors",
)

PROXY_POOL_SIZE = Gauge(
    "community_scraper_proxy_pool_size",
    "Number of proxies in the pool",
)

PROXY_FAILED = Gauge(
    "community_scraper_proxy_failed",
    "Number of proxies currently marked failed",
)

REQUEST_DURATION = Histogram(
    "community_scraper_request_duration_seconds",
    "Duration of page fetches in seconds",
    buckets=[0.1, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 60.0],
)

RUN_DURATION = Histogram(
    "community_scraper_run_duration_seconds",
    "Duration of orchestrator runs in seconds",
    buckets=[1, 10, 30, 60, 300, 600, 1800, 3600],
)


class PrometheusExporter:
    """Prometheus metrics exporter for the community scraper."""

    def __init__(self, port: int = 8000):
        """
        Initialize the Prometheus exporter.

        Args:
            port: Port to expose metrics on
        """
        self.port = port
        self.server_started = False

    def start_server(self) -> None:
        """Start the Prometheus metrics server."""
        if not self.server_started:
            try:
                start_http_server(self.port)
                self.server_started = True
                logger.info(f"Started Prometheus metrics server on port {self.port}")
            except OSError as e:
                logger.error(f"Failed to start Prometheus metrics server: {e}")

    def record_posts(self, source: str, count: int = 1) -> None:
        POSTS_SCRAPED.labels(source=source).inc(count)

    def record_comments(self, source: str, count: int = 1) -> None:
        COMMENTS_SCRAPED.labels(source=source).inc(count)

    def record_navigation_error(self, error_type: str) -> None:
        """
        Record a failed fetch attempt.

        Args:
            error_type: Kind of failure ('network', '429', '4xx', '5xx')
        """
        NAVIGATION_ERRORS.labels(error_type=error_type).inc()

    def record_extraction_skips(self, source: str, count: int) -> None:
        if count:
            EXTRACTION_SKIPS.labels(source=source).inc(count)

    def record_run(self, mode: str, status: str, duration_sec: float) -> None:
        RUNS.labels(mode=mode, status=status).inc()
        RUN_DURATION.observe(duration_sec)

    def set_consecutive_errors(self, count: int) -> None:
        CONSECUTIVE_ERRORS.set(count)

    def set_proxy_stats(self, total: int, failed: int) -> None:
        PROXY_POOL_SIZE.set(total)
        PROXY_FAILED.set(failed)

    def time_request(self) -> "RequestTimer":
        """
        Create a context manager for timing page fetches.

        Returns:
            RequestTimer context manager
        """
        return RequestTimer()


class RequestTimer:
    """Context manager for timing page fetches."""

    def __init__(self):
        self.start_time: Optional[float] = None

    def __enter__(self) -> "RequestTimer":
        self.start_time = time.time()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if self.start_time is not None:
            REQUEST_DURATION.observe(time.time() - self.start_time)
