"""Protocol for the persistent store."""

from typing import List, Optional, Protocol

from community_scraper.models.records import (
    CommentRecord,
    GroupAggregate,
    PostFilter,
    PostRecord,
    ScrapeRunRecord,
    StoreStats,
    TrendingTopicRecord,
)


class Store(Protocol):
    """
    Persistent store for posts, comments, trending topics and run analytics.

    All writes are upserts keyed by natural identity, except run records
    which are append-only. Write failures raise ``StoreError``.
    """

    async def initialize(self) -> None:
        """Create missing tables and indexes. Idempotent."""
        ...

    async def upsert_post(self, post: PostRecord) -> None:
        ...

    async def insert_or_update_comment(self, comment: CommentRecord) -> None:
        """Raises ``StoreIntegrityError`` when the owning post does not exist."""
        ...

    async def upsert_trending_topic(self, topic: TrendingTopicRecord) -> None:
        ...

    async def append_run_record(self, record: ScrapeRunRecord) -> int:
        ...

    async def query_trending_topics(self, limit: int = 10, source: Optional[str] = None) -> List[TrendingTopicRecord]:
        ...

    async def query_recent(self, since_hours: float, filters: Optional[PostFilter] = None) -> List[PostRecord]:
        ...

    async def aggregate_by_group(self, group_key: str, since_hours: float) -> List[GroupAggregate]:
        ...

    async def query_runs(self, since_hours: float) -> List[ScrapeRunRecord]:
        ...

    async def get_post(self, post_id: str) -> Optional[PostRecord]:
        ...

    async def get_posts(self, filters: Optional[PostFilter] = None) -> List[PostRecord]:
        ...

    async def get_comments(self, post_id: str) -> List[CommentRecord]:
        ...

    async def get_stats(self) -> StoreStats:
        ...

    async def close(self) -> None:
        ...
