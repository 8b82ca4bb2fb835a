"""Tests for the engine's trigger and query interfaces."""

from community_scraper.collector.orchestrator import RunMode, RunStatus
from community_scraper.engine import ScraperEngine
from fakes import make_listing, make_post_data

ALPHA = "https://www.reddit.com/r/alpha/hot.json?limit=10"
BETA = "https://www.reddit.com/r/beta/hot.json?limit=10"


def seed_routes(navigator):
    navigator.routes[ALPHA] = make_listing(
        make_post_data("a1", title="This new model is amazing and revolutionary, a real ChatGPT upgrade", score=60),
        make_post_data("a2", title="ChatGPT is broken, buggy and useless today", score=20),
    )
    navigator.routes[BETA] = make_listing(
        make_post_data("b1", title="Python coding with ChatGPT", score=80),
    )


async def test_run_once_then_query(engine, navigator):
    seed_routes(navigator)

    result = await engine.run_once()

    assert result.status is RunStatus.COMPLETED
    assert result.posts_scraped == 3

    stats = await engine.get_stats()
    assert stats.total_posts == 3
    assert stats.posts_by_source == {"alpha": 2, "beta": 1}

    topics = await engine.get_trending_topics(source="all")
    assert topics[0].topic == "chatgpt"
    assert topics[0].mention_count == 3
    # Single mentions stay below the threshold
    assert [t.topic for t in await engine.get_trending_topics(limit=5, source="alpha")] == ["chatgpt"]
    assert await engine.get_trending_topics(source="beta") == []

    analytics = {a.group: a for a in await engine.get_recent_analytics(24)}
    assert analytics["alpha"].total_posts == 2
    assert analytics["beta"].runs == 1
    assert len(await engine.get_recent_runs(24)) == 2


async def test_get_posts_filters(engine, navigator):
    seed_routes(navigator)
    await engine.run_once()

    assert [p.post_id for p in await engine.get_posts()] == ["b1", "a1", "a2"]
    assert [p.post_id for p in await engine.get_posts("alpha", limit=1)] == ["a1"]
    assert [p.post_id for p in await engine.get_posts(tag="coding")] == ["b1"]
    assert [p.post_id for p in await engine.get_posts(min_score=50, offset=1)] == ["a1"]


async def test_sentiment_trend(engine, navigator):
    seed_routes(navigator)
    await engine.run_once(["alpha"])

    trend = await engine.get_sentiment_trend(24)
    assert trend.count == 2
    assert trend.positive_ratio == 0.5
    assert trend.negative_ratio == 0.5
    assert trend.trend == "neutral"

    assert (await engine.get_sentiment_trend(24, source="beta")).count == 0


async def test_queries_never_navigate(engine, navigator):
    await engine.get_stats()
    await engine.get_trending_topics()
    await engine.get_posts()
    await engine.get_sentiment_trend()
    assert navigator.calls == []


async def test_trends_run_uses_only_the_store(engine, navigator):
    seed_routes(navigator)
    await engine.run_once()
    navigator.calls.clear()

    result = await engine.run_once(mode=RunMode.TRENDS)

    assert result.status is RunStatus.COMPLETED
    assert result.trending_topics > 0
    assert navigator.calls == []


async def test_scheduled_lifecycle(engine):
    await engine.start_scheduled()
    assert engine.status()["running"] is True

    await engine.stop_scheduled()
    status = engine.status()
    assert status["running"] is False
    assert status["orchestrator"]["state"] == "idle"


async def test_context_manager_initializes_and_closes(config, navigator):
    async with ScraperEngine(config, navigator_factory=lambda _: navigator, status_file="") as engine:
        assert (await engine.get_stats()).total_posts == 0
    assert engine.scheduler.is_running is False
