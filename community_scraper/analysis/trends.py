"""Tagging, per-post trending heuristic and trending-topic aggregation."""

import logging
import re
from collections import defaultdict
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Dict, List, Optional, Pattern, Set, Tuple

from community_scraper.config import TrendConfig
from community_scraper.models.records import PostRecord, TrendingTopicRecord

if TYPE_CHECKING:
    from community_scraper.storage.base_store import Store

logger = logging.getLogger(__name__)

ALL_SOURCES = "all"

TAG_KEYWORDS: Dict[str, Tuple[str, ...]] = {
    "prompt-engineering": ("prompt", "prompts", "prompting", "prompt engineering"),
    "chatgpt": ("chatgpt", "gpt", "openai"),
    "stable-diffusion": ("stable diffusion", "midjourney", "dalle"),
    "machine-learning": ("machine learning", "ml", "neural network"),
    "ai-art": ("ai art", "generated art", "digital art"),
    "coding": ("code", "programming", "python", "javascript"),
    "tutorial": ("tutorial", "guide", "how to", "step by step"),
    "discussion": ("discussion", "opinion", "thoughts", "what do you think"),
}


def _compile(keywords: Tuple[str, ...]) -> Pattern[str]:
    alternatives = "|".join(re.escape(k) for k in sorted(keywords, key=len, reverse=True))
    return re.compile(rf"\b(?:{alternatives})\b")


_TAG_PATTERNS: Dict[str, Pattern[str]] = {tag: _compile(words) for tag, words in TAG_KEYWORDS.items()}


def extract_tags(title: Optional[str], body: Optional[str] = None) -> Set[str]:
    """
    Derive tags from post text using whole-word keyword matching.

    Args:
        title: Post title
        body: Post body text

    Returns:
        Set of tag names
    """
    text = f"{title or ''} {body or ''}".lower()
    return {tag for tag, pattern in _TAG_PATTERNS.items() if pattern.search(text)}


def is_trending_post(
    score: int,
    comment_count: int,
    created_at: datetime,
    thresholds: Optional[TrendConfig] = None,
    now: Optional[datetime] = None,
) -> bool:
    """
    Per-post trending heuristic evaluated at ingestion time.

    A post is trending when its score and comment count exceed the thresholds
    and it is younger than ``max_age_hours``.
    """
    thresholds = thresholds or TrendConfig()
    now = now or datetime.now(timezone.utc)
    if created_at.tzinfo is None:
        created_at = created_at.replace(tzinfo=timezone.utc)
    age_hours = (now - created_at).total_seconds() / 3600
    return (
        score > thresholds.score_threshold
        and comment_count > thresholds.comments_threshold
        and age_hours < thresholds.max_age_hours
    )


def compute_trend_score(mentions: int, weight: float = 0.1) -> float:
    """Trend score for a topic. Monotonic in ``mentions``."""
    return mentions * weight


class TrendAggregator:
    """Recomputes trending topics from the posts scraped in the current window."""

    def __init__(self, store: "Store", config: Optional[TrendConfig] = None):
        self.store = store
        self.config = config or TrendConfig()

    def tally(self, posts: List[PostRecord]) -> Dict[Tuple[str, str], List[float]]:
        """
        Group post sentiment scores by ``(topic, source)``.

        Every post contributes to its own source and to the ``all`` bucket.
        """
        buckets: Dict[Tuple[str, str], List[float]] = defaultdict(list)
        for post in posts:
            for tag in post.tags:
                buckets[(tag, ALL_SOURCES)].append(post.sentiment_score)
                buckets[(tag, post.source)].append(post.sentiment_score)
        return buckets

    async def recompute(self, now: Optional[datetime] = None) -> List[TrendingTopicRecord]:
        """
        Tally tags over the window and upsert every topic above the mention threshold.

        Returns:
            The trending topic records that were written
        """
        now = now or datetime.now(timezone.utc)
        posts = await self.store.query_recent(self.config.window_hours)
        buckets = self.tally(posts)

        written: List[TrendingTopicRecord] = []
        for (topic, source), scores in sorted(buckets.items()):
            mentions = len(scores)
            if mentions <= self.config.min_mentions:
                continue
            record = TrendingTopicRecord(
                topic=topic,
                source=source,
                mention_count=mentions,
                sentiment_average=sum(scores) / mentions,
                trend_score=compute_trend_score(mentions, self.config.trend_weight),
                first_seen_at=now,
                last_updated_at=now,
            )
            await self.store.upsert_trending_topic(record)
            written.append(record)

        logger.info(
            f"Trend analysis completed: {len(posts)} posts, "
            f"{len({topic for topic, _ in buckets})} tags, {len(written)} trending rows"
        )
        return written
