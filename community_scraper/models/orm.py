"""SQLAlchemy ORM models for the four persisted tables."""

from datetime import datetime
from typing import List, Optional

from sqlalchemy import JSON, Boolean, Float, Index, Integer, Text, UniqueConstraint, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.sql.sqltypes import TIMESTAMP


class Base(DeclarativeBase):
    pass


class PostORM(Base):
    """
    One row per external post id. Mutable fields (score, comment count, tags,
    sentiment, flags) are overwritten on every re-scrape.
    """
    __tablename__ = "posts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    post_id: Mapped[str] = mapped_column(Text, nullable=False, unique=True, comment="External post id")
    source: Mapped[str] = mapped_column(Text, nullable=False, comment="Community the post belongs to")
    title: Mapped[str] = mapped_column(Text, nullable=False, default="")
    body_text: Mapped[str] = mapped_column(Text, nullable=False, default="")
    author: Mapped[str] = mapped_column(Text, nullable=False, default="deleted")
    upvotes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    downvotes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    score: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    comment_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    external_url: Mapped[str] = mapped_column(Text, nullable=False, default="")
    permalink: Mapped[str] = mapped_column(Text, nullable=False, default="")
    created_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    scraped_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False, server_default=func.now())
    sentiment_score: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    sentiment_label: Mapped[str] = mapped_column(Text, nullable=False, default="neutral")
    tags: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list, comment="Sorted list of tag names")
    is_hot: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_trending: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    __table_args__ = (
        Index("ix_posts_source", "source"),
        Index("ix_posts_created_at", "created_at"),
        Index("ix_posts_score", "score"),
        Index("ix_posts_is_trending", "is_trending"),
        Index("ix_posts_scraped_at", "scraped_at"),
    )

    def __repr__(self) -> str:
        return f"<PostORM(post_id='{self.post_id}', source='{self.source}', score={self.score})>"


class CommentORM(Base):
    """
    Comment rows. ``post_id`` references ``posts.post_id``; the store checks
    the reference before writing instead of relying on a foreign key.
    """
    __tablename__ = "comments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    comment_id: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    post_id: Mapped[str] = mapped_column(Text, nullable=False)
    parent_id: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    author: Mapped[str] = mapped_column(Text, nullable=False, default="deleted")
    body_text: Mapped[str] = mapped_column(Text, nullable=False, default="")
    upvotes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    downvotes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    score: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    scraped_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False, server_default=func.now())
    sentiment_score: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    sentiment_label: Mapped[str] = mapped_column(Text, nullable=False, default="neutral")
    depth: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    __table_args__ = (
        Index("ix_comments_post_id", "post_id"),
    )

    def __repr__(self) -> str:
        return f"<CommentORM(comment_id='{self.comment_id}', post_id='{self.post_id}', depth={self.depth})>"


class TrendingTopicORM(Base):
    """Trending topic keyed by (topic, source); ``source='all'`` holds the cross-source row."""
    __tablename__ = "trending_topics"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    topic: Mapped[str] = mapped_column(Text, nullable=False)
    source: Mapped[str] = mapped_column(Text, nullable=False, default="all")
    mention_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    sentiment_average: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    trend_score: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    first_seen_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    last_updated_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)

    __table_args__ = (
        UniqueConstraint("topic", "source", name="uq_trending_topics_topic_source"),
        Index("ix_trending_topics_topic", "topic"),
    )

    def __repr__(self) -> str:
        return f"<TrendingTopicORM(topic='{self.topic}', source='{self.source}', mentions={self.mention_count})>"


class ScrapeRunORM(Base):
    """Append-only analytics log, one row per source per orchestrator run."""
    __tablename__ = "scrape_analytics"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    source: Mapped[str] = mapped_column(Text, nullable=False)
    mode: Mapped[str] = mapped_column(Text, nullable=False, default="broad")
    posts_scraped: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    comments_scraped: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    error_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    success_rate: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    avg_response_time_ms: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    egress_used: Mapped[str] = mapped_column(Text, nullable=False, default="direct")
    user_agent: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    timestamp: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False, server_default=func.now())

    __table_args__ = (
        Index("ix_scrape_analytics_timestamp", "timestamp"),
        Index("ix_scrape_analytics_source", "source"),
    )

    def __repr__(self) -> str:
        return f"<ScrapeRunORM(source='{self.source}', mode='{self.mode}', posts={self.posts_scraped})>"
