"""
SQLAlchemy-based storage backend for posts, comments, trends and run analytics.

Works against SQLite (aiosqlite) and PostgreSQL (asyncpg). Upserts use the
dialect's ``INSERT ... ON CONFLICT DO UPDATE`` on each table's natural key so
re-scraping the same id never creates a second row.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import func, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine

from community_scraper.config import DatabaseConfig
from community_scraper.exceptions import StoreError, StoreIntegrityError
from community_scraper.models.orm import CommentORM, PostORM, ScrapeRunORM, TrendingTopicORM
from community_scraper.models.records import (
    CommentRecord,
    GroupAggregate,
    PostFilter,
    PostRecord,
    ScrapeRunRecord,
    StoreStats,
    TrendingTopicRecord,
)
from community_scraper.storage.database import (
    create_engine_from_config,
    create_session_factory,
    init_db,
    session_scope,
)

logger = logging.getLogger(__name__)

GROUP_COLUMNS = {
    "source": ScrapeRunORM.source,
    "egress_used": ScrapeRunORM.egress_used,
    "mode": ScrapeRunORM.mode,
}

POST_MUTABLE_COLUMNS = (
    "title", "body_text", "author", "upvotes", "downvotes", "score", "comment_count",
    "external_url", "permalink", "scraped_at", "sentiment_score", "sentiment_label",
    "tags", "is_hot", "is_trending",
)

COMMENT_MUTABLE_COLUMNS = (
    "parent_id", "author", "body_text", "upvotes", "downvotes", "score",
    "scraped_at", "sentiment_score", "sentiment_label", "depth",
)

TOPIC_MUTABLE_COLUMNS = ("mention_count", "sentiment_average", "trend_score", "last_updated_at")


def _cutoff(since_hours: float) -> datetime:
    return datetime.now(timezone.utc) - timedelta(hours=since_hours)


def _post_values(post: PostRecord) -> Dict[str, Any]:
    values = post.model_dump()
    values["tags"] = sorted(post.tags)
    values["sentiment_label"] = post.sentiment_label.value
    return values


class SQLAlchemyStore:
    """Persistent store backed by an async SQLAlchemy engine."""

    def __init__(self, db_config: Optional[DatabaseConfig] = None, engine: Optional[AsyncEngine] = None):
        """
        Initialize the store.

        Args:
            db_config: Database configuration, used when no engine is given
            engine: Existing async engine to reuse
        """
        self.engine = engine or create_engine_from_config(db_config or DatabaseConfig())
        self.session_factory = create_session_factory(self.engine)

    @property
    def dialect(self) -> str:
        return self.engine.dialect.name

    def _insert(self, model):
        if self.dialect == "sqlite":
            return sqlite.insert(model)
        if self.dialect == "postgresql":
            return postgresql.insert(model)
        raise StoreError(f"Unsupported database dialect: {self.dialect}")

    def _upsert(self, model, values: Dict[str, Any], index_elements: List[str], update_columns):
        stmt = self._insert(model).values(**values)
        return stmt.on_conflict_do_update(
            index_elements=index_elements,
            set_={column: getattr(stmt.excluded, column) for column in update_columns},
        )

    async def initialize(self) -> None:
        try:
            await init_db(self.engine)
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to initialize database: {e}") from e

    async def close(self) -> None:
        await self.engine.dispose()

    # Writes

    async def upsert_post(self, post: PostRecord) -> None:
        """
        Insert a post or update its mutable fields if the id already exists.

        Raises:
            StoreError: If the write fails
        """
        stmt = self._upsert(PostORM, _post_values(post), ["post_id"], POST_MUTABLE_COLUMNS)
        try:
            async with session_scope(self.session_factory) as session:
                await session.execute(stmt)
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to upsert post {post.post_id}: {e}") from e

    async def insert_or_update_comment(self, comment: CommentRecord) -> None:
        """
        Insert or update a comment after checking its post exists.

        Raises:
            StoreIntegrityError: If the owning post is not stored
            StoreError: If the write fails
        """
        values = comment.model_dump()
        values["sentiment_label"] = comment.sentiment_label.value
        stmt = self._upsert(CommentORM, values, ["comment_id"], COMMENT_MUTABLE_COLUMNS)
        try:
            async with session_scope(self.session_factory) as session:
                owner = await session.scalar(select(PostORM.id).where(PostORM.post_id == comment.post_id))
                if owner is None:
                    raise StoreIntegrityError(
                        f"Comment {comment.comment_id} references unknown post {comment.post_id}"
                    )
                await session.execute(stmt)
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to write comment {comment.comment_id}: {e}") from e

    async def upsert_trending_topic(self, topic: TrendingTopicRecord) -> None:
        """Upsert by ``(topic, source)``. ``first_seen_at`` is kept from the first insert."""
        stmt = self._upsert(TrendingTopicORM, topic.model_dump(), ["topic", "source"], TOPIC_MUTABLE_COLUMNS)
        try:
            async with session_scope(self.session_factory) as session:
                await session.execute(stmt)
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to upsert trending topic {topic.topic}/{topic.source}: {e}") from e

    async def append_run_record(self, record: ScrapeRunRecord) -> int:
        """
        Append an analytics snapshot.

        Returns:
            Id of the new row
        """
        row = ScrapeRunORM(**record.model_dump(exclude={"id"}))
        try:
            async with session_scope(self.session_factory) as session:
                session.add(row)
                await session.flush()
                return row.id
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to append run record for {record.source}: {e}") from e

    # Queries

    async def _fetch(self, stmt) -> List[Any]:
        try:
            async with session_scope(self.session_factory) as session:
                result = await session.scalars(stmt)
                return list(result.all())
        except SQLAlchemyError as e:
            raise StoreError(f"Query failed: {e}") from e

    @staticmethod
    def _apply_post_filter(stmt, filters: PostFilter):
        if filters.source:
            stmt = stmt.where(PostORM.source == filters.source)
        if filters.min_score is not None:
            stmt = stmt.where(PostORM.score >= filters.min_score)
        if filters.is_trending is not None:
            stmt = stmt.where(PostORM.is_trending == filters.is_trending)
        if filters.is_hot is not None:
            stmt = stmt.where(PostORM.is_hot == filters.is_hot)
        return stmt

    async def query_trending_topics(self, limit: int = 10, source: Optional[str] = None) -> List[TrendingTopicRecord]:
        """Top topics by trend score. ``source=None`` returns rows of every source."""
        stmt = select(TrendingTopicORM)
        if source:
            stmt = stmt.where(TrendingTopicORM.source == source)
        stmt = stmt.order_by(
            TrendingTopicORM.trend_score.desc(),
            TrendingTopicORM.mention_count.desc(),
            TrendingTopicORM.topic,
        ).limit(limit)
        return [TrendingTopicRecord.model_validate(row) for row in await self._fetch(stmt)]

    async def query_recent(self, since_hours: float, filters: Optional[PostFilter] = None) -> List[PostRecord]:
        """
        Posts scraped within the last ``since_hours`` hours, newest first.

        Without filters every post in the window is returned; with filters the
        filter's limit, offset and tag apply.
        """
        stmt = select(PostORM).where(PostORM.scraped_at >= _cutoff(since_hours))
        if filters:
            stmt = self._apply_post_filter(stmt, filters)
        stmt = stmt.order_by(PostORM.scraped_at.desc(), PostORM.id.desc())
        posts = [PostRecord.model_validate(row) for row in await self._fetch(stmt)]
        if filters:
            if filters.tag:
                posts = [p for p in posts if filters.tag in p.tags]
            posts = posts[filters.offset:filters.offset + filters.limit]
        return posts

    async def query_runs(self, since_hours: float) -> List[ScrapeRunRecord]:
        stmt = (
            select(ScrapeRunORM)
            .where(ScrapeRunORM.timestamp >= _cutoff(since_hours))
            .order_by(ScrapeRunORM.timestamp.desc(), ScrapeRunORM.id.desc())
        )
        return [ScrapeRunRecord.model_validate(row) for row in await self._fetch(stmt)]

    async def aggregate_by_group(self, group_key: str, since_hours: float) -> List[GroupAggregate]:
        """
        Sum and average run analytics per group over the window.

        Args:
            group_key: One of ``source``, ``egress_used`` or ``mode``
            since_hours: Window size

        Raises:
            ValueError: If ``group_key`` is not a supported column
        """
        column = GROUP_COLUMNS.get(group_key)
        if column is None:
            raise ValueError(f"Unsupported group key '{group_key}', expected one of {sorted(GROUP_COLUMNS)}")

        stmt = (
            select(
                column.label("group"),
                func.count(ScrapeRunORM.id),
                func.coalesce(func.sum(ScrapeRunORM.posts_scraped), 0),
                func.coalesce(func.sum(ScrapeRunORM.comments_scraped), 0),
                func.coalesce(func.sum(ScrapeRunORM.error_count), 0),
                func.coalesce(func.avg(ScrapeRunORM.success_rate), 0.0),
                func.coalesce(func.avg(ScrapeRunORM.avg_response_time_ms), 0.0),
            )
            .where(ScrapeRunORM.timestamp >= _cutoff(since_hours))
            .group_by(column)
            .order_by(column)
        )
        try:
            async with session_scope(self.session_factory) as session:
                rows = (await session.execute(stmt)).all()
        except SQLAlchemyError as e:
            raise StoreError(f"Aggregation by {group_key} failed: {e}") from e

        return [
            GroupAggregate(
                group=row[0],
                runs=row[1],
                total_posts=row[2],
                total_comments=row[3],
                total_errors=row[4],
                avg_success_rate=float(row[5]),
                avg_response_time_ms=float(row[6]),
            )
            for row in rows
        ]

    async def get_post(self, post_id: str) -> Optional[PostRecord]:
        rows = await self._fetch(select(PostORM).where(PostORM.post_id == post_id))
        return PostRecord.model_validate(rows[0]) if rows else None

    async def get_posts(self, filters: Optional[PostFilter] = None) -> List[PostRecord]:
        """Posts ordered by score, highest first."""
        filters = filters or PostFilter()
        stmt = self._apply_post_filter(select(PostORM), filters)
        stmt = stmt.order_by(PostORM.score.desc(), PostORM.id)
        if not filters.tag:
            stmt = stmt.offset(filters.offset).limit(filters.limit)
            return [PostRecord.model_validate(row) for row in await self._fetch(stmt)]

        posts = [PostRecord.model_validate(row) for row in await self._fetch(stmt)]
        posts = [p for p in posts if filters.tag in p.tags]
        return posts[filters.offset:filters.offset + filters.limit]

    async def get_comments(self, post_id: str) -> List[CommentRecord]:
        stmt = select(CommentORM).where(CommentORM.post_id == post_id).order_by(CommentORM.id)
        return [CommentRecord.model_validate(row) for row in await self._fetch(stmt)]

    async def get_stats(self, recent_hours: float = 24.0) -> StoreStats:
        """Totals, top trending topics, posts per source and run analytics for the dashboard."""
        try:
            async with session_scope(self.session_factory) as session:
                total_posts = await session.scalar(select(func.count(PostORM.id)))
                total_comments = await session.scalar(select(func.count(CommentORM.id)))
                by_source = (
                    await session.execute(
                        select(PostORM.source, func.count(PostORM.id))
                        .where(PostORM.scraped_at >= _cutoff(recent_hours))
                        .group_by(PostORM.source)
                    )
                ).all()
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to compute stats: {e}") from e

        return StoreStats(
            total_posts=total_posts or 0,
            total_comments=total_comments or 0,
            trending_topics=await self.query_trending_topics(10),
            posts_by_source={source: count for source, count in by_source},
            analytics=await self.aggregate_by_group("source", recent_hours),
        )
