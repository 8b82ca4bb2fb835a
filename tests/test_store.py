"""Tests for the SQLAlchemy store against a temporary SQLite database."""

from datetime import datetime, timedelta, timezone

import pytest

from community_scraper.config import DatabaseConfig
from community_scraper.exceptions import StoreIntegrityError
from community_scraper.models.records import (
    CommentRecord,
    PostFilter,
    PostRecord,
    ScrapeRunRecord,
    SentimentLabel,
    TrendingTopicRecord,
)
from community_scraper.storage.sqlalchemy_store import SQLAlchemyStore


def now():
    return datetime.now(timezone.utc)


def make_post(post_id: str, source: str = "alpha", **overrides) -> PostRecord:
    values = dict(
        post_id=post_id,
        source=source,
        title=f"Title {post_id}",
        score=10,
        comment_count=2,
        created_at=now() - timedelta(hours=1),
    )
    values.update(overrides)
    return PostRecord(**values)


def make_comment(comment_id: str, post_id: str, **overrides) -> CommentRecord:
    values = dict(comment_id=comment_id, post_id=post_id, body_text="hi", created_at=now())
    values.update(overrides)
    return CommentRecord(**values)


class TestPosts:
    """Post upserts and queries."""

    async def test_initialize_is_idempotent(self, store):
        await store.initialize()
        await store.upsert_post(make_post("p1"))
        await store.initialize()
        assert await store.get_post("p1") is not None

    async def test_upsert_same_post_twice_keeps_one_row(self, store):
        """Re-ingesting a post updates its mutable fields instead of duplicating it."""
        await store.upsert_post(make_post("p1", score=10, tags={"coding"}))
        await store.upsert_post(make_post(
            "p1", score=42, tags={"coding", "chatgpt"}, is_trending=True,
            sentiment_score=2.5, sentiment_label=SentimentLabel.POSITIVE,
        ))

        stats = await store.get_stats()
        post = await store.get_post("p1")

        assert stats.total_posts == 1
        assert post.score == 42
        assert post.tags == {"coding", "chatgpt"}
        assert post.is_trending is True
        assert post.sentiment_label == SentimentLabel.POSITIVE
        assert post.created_at.tzinfo is not None

    async def test_get_post_missing(self, store):
        assert await store.get_post("nope") is None

    async def test_get_posts_filters_and_orders_by_score(self, store):
        await store.upsert_post(make_post("a", score=5))
        await store.upsert_post(make_post("b", score=50, is_trending=True, tags={"coding"}))
        await store.upsert_post(make_post("c", source="beta", score=30, tags={"coding"}))

        assert [p.post_id for p in await store.get_posts()] == ["b", "c", "a"]
        assert [p.post_id for p in await store.get_posts(PostFilter(source="alpha"))] == ["b", "a"]
        assert [p.post_id for p in await store.get_posts(PostFilter(is_trending=True))] == ["b"]
        assert [p.post_id for p in await store.get_posts(PostFilter(min_score=20))] == ["b", "c"]
        assert [p.post_id for p in await store.get_posts(PostFilter(tag="coding", offset=1))] == ["c"]
        assert [p.post_id for p in await store.get_posts(PostFilter(limit=1, offset=1))] == ["c"]

    async def test_query_recent_window(self, store):
        await store.upsert_post(make_post("fresh"))
        await store.upsert_post(make_post("stale", scraped_at=now() - timedelta(hours=48)))

        recent = await store.query_recent(24)
        assert [p.post_id for p in recent] == ["fresh"]
        assert len(await store.query_recent(72)) == 2

    async def test_query_recent_with_filters(self, store):
        for i in range(5):
            await store.upsert_post(make_post(f"a{i}", scraped_at=now() - timedelta(minutes=i)))
        await store.upsert_post(make_post("b0", source="beta"))

        page = await store.query_recent(24, PostFilter(source="alpha", limit=2, offset=1))
        assert [p.post_id for p in page] == ["a1", "a2"]


class TestComments:
    """Comment writes and the owning-post check."""

    async def test_comment_requires_existing_post(self, store):
        with pytest.raises(StoreIntegrityError):
            await store.insert_or_update_comment(make_comment("c1", "missing"))
        assert await store.get_comments("missing") == []

    async def test_comment_upsert(self, store):
        await store.upsert_post(make_post("p1"))
        await store.insert_or_update_comment(make_comment("c1", "p1", score=1))
        await store.insert_or_update_comment(make_comment("c2", "p1", parent_id="c1", depth=1))
        await store.insert_or_update_comment(make_comment("c1", "p1", score=9))

        comments = await store.get_comments("p1")
        assert [c.comment_id for c in comments] == ["c1", "c2"]
        assert comments[0].score == 9
        assert comments[1].parent_id == "c1"
        assert (await store.get_stats()).total_comments == 2


class TestTrendingTopics:
    """Trending topic upserts."""

    async def test_upsert_keeps_first_seen(self, store):
        first = now() - timedelta(hours=5)
        await store.upsert_trending_topic(TrendingTopicRecord(
            topic="chatgpt", source="all", mention_count=6, trend_score=0.6,
            first_seen_at=first, last_updated_at=first,
        ))
        await store.upsert_trending_topic(TrendingTopicRecord(
            topic="chatgpt", source="all", mention_count=9, trend_score=0.9,
            first_seen_at=now(), last_updated_at=now(),
        ))

        topics = await store.query_trending_topics()
        assert len(topics) == 1
        assert topics[0].mention_count == 9
        assert abs((topics[0].first_seen_at - first).total_seconds()) < 1

    async def test_topic_identity_includes_source(self, store):
        await store.upsert_trending_topic(TrendingTopicRecord(topic="coding", source="all", trend_score=0.8))
        await store.upsert_trending_topic(TrendingTopicRecord(topic="coding", source="alpha", trend_score=0.6))
        await store.upsert_trending_topic(TrendingTopicRecord(topic="tutorial", source="all", trend_score=1.0))

        assert [(t.topic, t.source) for t in await store.query_trending_topics()] == [
            ("tutorial", "all"), ("coding", "all"), ("coding", "alpha"),
        ]
        assert [t.topic for t in await store.query_trending_topics(limit=5, source="alpha")] == ["coding"]
        assert len(await store.query_trending_topics(limit=1)) == 1


class TestRunAnalytics:
    """Run records and aggregation."""

    async def test_append_and_aggregate(self, store):
        first_id = await store.append_run_record(ScrapeRunRecord(
            source="alpha", posts_scraped=10, comments_scraped=4, error_count=1,
            success_rate=1.0, avg_response_time_ms=100, egress_used="10.0.0.1:80",
        ))
        second_id = await store.append_run_record(ScrapeRunRecord(
            source="alpha", posts_scraped=5, success_rate=0.5, avg_response_time_ms=300,
        ))
        await store.append_run_record(ScrapeRunRecord(source="beta", posts_scraped=2, mode="hot"))
        await store.append_run_record(ScrapeRunRecord(
            source="alpha", posts_scraped=99, timestamp=now() - timedelta(hours=30),
        ))

        assert second_id > first_id
        by_source = {g.group: g for g in await store.aggregate_by_group("source", 24)}
        assert by_source["alpha"].runs == 2
        assert by_source["alpha"].total_posts == 15
        assert by_source["alpha"].total_comments == 4
        assert by_source["alpha"].total_errors == 1
        assert by_source["alpha"].avg_success_rate == pytest.approx(0.75)
        assert by_source["alpha"].avg_response_time_ms == pytest.approx(200)
        assert by_source["beta"].total_posts == 2

        by_mode = {g.group: g.runs for g in await store.aggregate_by_group("mode", 24)}
        assert by_mode == {"broad": 2, "hot": 1}

        runs = await store.query_runs(24)
        assert len(runs) == 3
        assert len(await store.query_runs(48)) == 4

    async def test_unknown_group_key(self, store):
        with pytest.raises(ValueError):
            await store.aggregate_by_group("user_agent", 24)


class TestStats:
    """Dashboard summary."""

    async def test_empty_store(self, store):
        stats = await store.get_stats()
        assert stats.total_posts == 0
        assert stats.posts_by_source == {}
        assert stats.trending_topics == []

    async def test_posts_by_source(self, store):
        await store.upsert_post(make_post("a"))
        await store.upsert_post(make_post("b"))
        await store.upsert_post(make_post("c", source="beta"))
        await store.append_run_record(ScrapeRunRecord(source="alpha"))

        stats = await store.get_stats()
        assert stats.posts_by_source == {"alpha": 2, "beta": 1}
        assert [a.group for a in stats.analytics] == ["alpha"]


async def test_creates_sqlite_parent_directory(tmp_path):
    db_path = tmp_path / "nested" / "dir" / "scraper.db"
    store = SQLAlchemyStore(DatabaseConfig(url=f"sqlite+aiosqlite:///{db_path}"))
    try:
        await store.initialize()
        assert db_path.exists()
    finally:
        await store.close()
