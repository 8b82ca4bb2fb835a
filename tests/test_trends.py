"""Tests for tagging, the trending heuristic and trend aggregation."""

import unittest
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

from community_scraper.analysis.trends import (
    TrendAggregator,
    compute_trend_score,
    extract_tags,
    is_trending_post,
)
from community_scraper.config import TrendConfig
from community_scraper.models.records import PostRecord

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


class TestExtractTags(unittest.TestCase):
    """Test cases for extract_tags."""

    def test_tags_from_title_and_body(self):
        tags = extract_tags("My ChatGPT prompt guide", "Written in Python")
        self.assertEqual(tags, {"chatgpt", "prompt-engineering", "tutorial", "coding"})

    def test_whole_word_matching(self):
        """Keywords inside longer words do not tag the post."""
        self.assertEqual(extract_tags("HTML decoder and unprompted xml"), set())
        self.assertEqual(extract_tags("An ML paper"), {"machine-learning"})

    def test_multi_word_keywords(self):
        self.assertIn("stable-diffusion", extract_tags("Stable Diffusion XL is out"))
        self.assertIn("discussion", extract_tags("What do you think about this?"))

    def test_empty_input(self):
        self.assertEqual(extract_tags(None, None), set())


class TestIsTrendingPost(unittest.TestCase):
    """Test cases for the per-post trending heuristic."""

    def test_high_engagement_recent_post_is_trending(self):
        self.assertTrue(is_trending_post(100, 20, NOW - timedelta(hours=1), now=NOW))

    def test_low_score_is_not_trending(self):
        self.assertFalse(is_trending_post(10, 20, NOW - timedelta(hours=1), now=NOW))

    def test_few_comments_is_not_trending(self):
        self.assertFalse(is_trending_post(100, 10, NOW - timedelta(hours=1), now=NOW))

    def test_old_post_is_not_trending(self):
        self.assertFalse(is_trending_post(100, 20, NOW - timedelta(hours=25), now=NOW))

    def test_custom_thresholds_and_naive_datetime(self):
        thresholds = TrendConfig(score_threshold=5, comments_threshold=1, max_age_hours=2)
        created = (NOW - timedelta(minutes=30)).replace(tzinfo=None)
        self.assertTrue(is_trending_post(6, 2, created, thresholds, now=NOW))

    def test_trend_score_is_monotonic(self):
        scores = [compute_trend_score(n) for n in range(0, 50, 5)]
        self.assertEqual(scores, sorted(scores))
        self.assertAlmostEqual(compute_trend_score(10, 0.1), 1.0)


def post(post_id: str, source: str, tags, sentiment: float = 0.0) -> PostRecord:
    return PostRecord(
        post_id=post_id,
        source=source,
        created_at=NOW,
        tags=set(tags),
        sentiment_score=sentiment,
    )


class TestTrendAggregator:
    """Test cases for TrendAggregator."""

    def test_tally_counts_source_and_all_buckets(self):
        aggregator = TrendAggregator(MagicMock())
        buckets = aggregator.tally([
            post("a", "alpha", {"chatgpt"}, 1.0),
            post("b", "beta", {"chatgpt", "coding"}, -1.0),
        ])

        assert buckets[("chatgpt", "all")] == [1.0, -1.0]
        assert buckets[("chatgpt", "alpha")] == [1.0]
        assert buckets[("coding", "beta")] == [-1.0]

    async def test_recompute_upserts_topics_above_threshold(self):
        store = MagicMock()
        store.query_recent = AsyncMock(return_value=[
            post(str(i), "alpha" if i < 4 else "beta", {"chatgpt"}, 2.0 if i % 2 else 0.0)
            for i in range(6)
        ] + [post("x", "alpha", {"coding"})])
        store.upsert_trending_topic = AsyncMock()
        aggregator = TrendAggregator(store, TrendConfig(min_mentions=3, window_hours=12, trend_weight=0.5))

        written = await aggregator.recompute(now=NOW)

        store.query_recent.assert_awaited_once_with(12)
        keys = {(r.topic, r.source) for r in written}
        # all: 6 mentions, alpha: 4, beta: 2 (below), coding: 1 (below)
        assert keys == {("chatgpt", "all"), ("chatgpt", "alpha")}
        overall = next(r for r in written if r.source == "all")
        assert overall.mention_count == 6
        assert overall.sentiment_average == 1.0
        assert overall.trend_score == 3.0
        assert store.upsert_trending_topic.await_count == 2

    async def test_recompute_with_no_posts_writes_nothing(self):
        store = MagicMock()
        store.query_recent = AsyncMock(return_value=[])
        store.upsert_trending_topic = AsyncMock()

        assert await TrendAggregator(store).recompute() == []
        store.upsert_trending_topic.assert_not_called()
