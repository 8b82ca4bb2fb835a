"""
Models package for the community scraper.

This package contains SQLAlchemy ORM models, Pydantic records and the
payload mapping functions.
"""

from .orm import Base, CommentORM, PostORM, ScrapeRunORM, TrendingTopicORM
from .records import (
    CommentRecord,
    GroupAggregate,
    PostFilter,
    PostRecord,
    ScrapeRunRecord,
    SentimentLabel,
    SentimentResult,
    StoreStats,
    TrendingTopicRecord,
)

__all__ = [
    # ORMs
    "Base",
    "CommentORM",
    "PostORM",
    "ScrapeRunORM",
    "TrendingTopicORM",
    # Records
    "CommentRecord",
    "GroupAggregate",
    "PostFilter",
    "PostRecord",
    "ScrapeRunRecord",
    "SentimentLabel",
    "SentimentResult",
    "StoreStats",
    "TrendingTopicRecord",
]
