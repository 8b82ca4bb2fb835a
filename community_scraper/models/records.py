"""
Pydantic records passed between the scraper components.

These mirror the ORM tables in ``community_scraper.models.orm`` and are used for
extraction output, store input/output and the dashboard API responses.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Set

from pydantic import AfterValidator, BaseModel, Field, field_validator
from typing_extensions import Annotated


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes (as returned by SQLite) as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


UTCDatetime = Annotated[datetime, AfterValidator(as_utc)]


class SentimentLabel(str, Enum):
    """Five-point sentiment scale."""

    VERY_NEGATIVE = "very_negative"
    NEGATIVE = "negative"
    NEUTRAL = "neutral"
    POSITIVE = "positive"
    VERY_POSITIVE = "very_positive"


class SentimentResult(BaseModel):
    """Output of the lexicon sentiment scorer."""

    score: float = 0.0
    label: SentimentLabel = SentimentLabel.NEUTRAL
    confidence: float = 0.0
    topics: List[str] = Field(default_factory=list)
    emotions: List[str] = Field(default_factory=list)
    word_count: int = 0
    positive_words: List[str] = Field(default_factory=list)
    negative_words: List[str] = Field(default_factory=list)

    @classmethod
    def neutral(cls) -> "SentimentResult":
        return cls()


class PostRecord(BaseModel):
    """A post (submission) extracted from a source listing."""

    post_id: str
    source: str
    title: str = ""
    body_text: str = ""
    author: str = "deleted"
    upvotes: int = 0
    downvotes: int = 0
    score: int = 0
    comment_count: int = 0
    external_url: str = ""
    permalink: str = ""
    created_at: UTCDatetime
    scraped_at: UTCDatetime = Field(default_factory=utc_now)
    sentiment_score: float = 0.0
    sentiment_label: SentimentLabel = SentimentLabel.NEUTRAL
    tags: Set[str] = Field(default_factory=set)
    is_hot: bool = False
    is_trending: bool = False

    model_config = {"from_attributes": True}

    @field_validator("tags", mode="before")
    @classmethod
    def _coerce_tags(cls, value: Any) -> Any:
        if value is None:
            return set()
        if isinstance(value, str):
            return {tag.strip() for tag in value.split(",") if tag.strip()}
        return value

    @property
    def text(self) -> str:
        """Title and body joined, as fed to the analyzer."""
        return f"{self.title} {self.body_text}".strip()


class CommentRecord(BaseModel):
    """A comment belonging to a post. ``parent_id`` is None for top-level comments."""

    comment_id: str
    post_id: str
    parent_id: Optional[str] = None
    author: str = "deleted"
    body_text: str = ""
    upvotes: int = 0
    downvotes: int = 0
    score: int = 0
    created_at: UTCDatetime
    scraped_at: UTCDatetime = Field(default_factory=utc_now)
    sentiment_score: float = 0.0
    sentiment_label: SentimentLabel = SentimentLabel.NEUTRAL
    depth: int = Field(default=0, ge=0)

    model_config = {"from_attributes": True}


class TrendingTopicRecord(BaseModel):
    """Aggregated mention statistics for a tag, per source or across all sources."""

    topic: str
    source: str = "all"
    mention_count: int = 0
    sentiment_average: float = 0.0
    trend_score: float = 0.0
    first_seen_at: UTCDatetime = Field(default_factory=utc_now)
    last_updated_at: UTCDatetime = Field(default_factory=utc_now)

    model_config = {"from_attributes": True}


class ScrapeRunRecord(BaseModel):
    """Append-only analytics snapshot for one source in one run."""

    id: Optional[int] = None
    source: str
    mode: str = "broad"
    posts_scraped: int = 0
    comments_scraped: int = 0
    error_count: int = 0
    success_rate: float = 0.0
    avg_response_time_ms: float = 0.0
    egress_used: str = "direct"
    user_agent: Optional[str] = None
    timestamp: UTCDatetime = Field(default_factory=utc_now)

    model_config = {"from_attributes": True}


class PostFilter(BaseModel):
    """Filters accepted by post queries."""

    source: Optional[str] = None
    min_score: Optional[int] = None
    is_trending: Optional[bool] = None
    is_hot: Optional[bool] = None
    tag: Optional[str] = None
    limit: int = Field(default=50, ge=1, le=1000)
    offset: int = Field(default=0, ge=0)


class GroupAggregate(BaseModel):
    """Run analytics summed and averaged over one group (e.g. one source)."""

    group: str
    runs: int = 0
    total_posts: int = 0
    total_comments: int = 0
    total_errors: int = 0
    avg_success_rate: float = 0.0
    avg_response_time_ms: float = 0.0


class StoreStats(BaseModel):
    """Dashboard summary."""

    total_posts: int = 0
    total_comments: int = 0
    trending_topics: List[TrendingTopicRecord] = Field(default_factory=list)
    posts_by_source: Dict[str, int] = Field(default_factory=dict)
    analytics: List[GroupAggregate] = Field(default_factory=list)
