"""Sentiment scoring, tagging and trend aggregation."""

from .sentiment import SentimentAnalyzer, SentimentTrend
from .trends import TrendAggregator, compute_trend_score, extract_tags, is_trending_post

__all__ = [
    "SentimentAnalyzer",
    "SentimentTrend",
    "TrendAggregator",
    "compute_trend_score",
    "extract_tags",
    "is_trending_post",
]
