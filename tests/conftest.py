"""Shared fixtures: configuration, a temporary SQLite store, a scripted navigator and a fake clock."""

import pytest
import pytest_asyncio

from community_scraper.config import (
    Config,
    DatabaseConfig,
    ExtractionConfig,
    ProxyConfig,
    RateLimitConfig,
    ScheduleConfig,
    TrendConfig,
)
from community_scraper.engine import ScraperEngine
from community_scraper.storage.sqlalchemy_store import SQLAlchemyStore
from fakes import FakeClock, FakeNavigator


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def db_url(tmp_path) -> str:
    return f"sqlite+aiosqlite:///{tmp_path / 'test.db'}"


@pytest.fixture
def config(db_url, tmp_path) -> Config:
    """Configuration with no delays, no proxies and a SQLite file under tmp_path."""
    return Config(
        sources=("alpha", "beta"),
        rate_limit=RateLimitConfig(
            min_delay_sec=0,
            max_delay_sec=0,
            item_delay_min_sec=0,
            item_delay_max_sec=0,
            max_attempts=3,
            initial_backoff_sec=0,
            max_backoff_sec=0,
            sleep_buffer_sec=0,
            default_retry_after_sec=0,
        ),
        proxy=ProxyConfig(enabled=False, source_urls=()),
        extraction=ExtractionConfig(max_posts_per_source=10, comment_score_threshold=10),
        trends=TrendConfig(min_mentions=1),
        schedule=ScheduleConfig(
            status_file=str(tmp_path / "status.json"),
            pid_file=str(tmp_path / "scheduler.pid"),
        ),
        database=DatabaseConfig(url=db_url),
    )


@pytest_asyncio.fixture
async def store(config):
    """Initialized SQLAlchemyStore on a fresh SQLite file."""
    sql_store = SQLAlchemyStore(config.database)
    await sql_store.initialize()
    yield sql_store
    await sql_store.close()


@pytest.fixture
def navigator() -> FakeNavigator:
    """Navigator with no routes; tests add entries to ``navigator.routes``."""
    return FakeNavigator()


@pytest_asyncio.fixture
async def engine(config, navigator):
    """Initialized engine on the temporary store, fetching through ``navigator``."""
    scraper_engine = ScraperEngine(config, navigator_factory=lambda _: navigator, status_file="")
    await scraper_engine.initialize()
    yield scraper_engine
    await scraper_engine.close()
