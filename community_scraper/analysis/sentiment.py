"""
Lexicon-based sentiment and topic analysis.

The general-purpose dictionary is the VADER lexicon; a domain word list for
AI discussions is layered on top with stronger weights. Scoring is a plain
sum of token valences, so results are deterministic and need no network or
model files.
"""

import logging
import re
from functools import lru_cache
from typing import Any, Dict, Iterable, List, Optional

import emoji
from pydantic import BaseModel
from vaderSentiment.vaderSentiment import SentimentIntensityAnalyzer

from community_scraper.models.records import SentimentLabel, SentimentResult

logger = logging.getLogger(__name__)

DOMAIN_WEIGHT = 3.0

DOMAIN_POSITIVE_WORDS = (
    "amazing", "incredible", "revolutionary", "breakthrough", "innovative",
    "powerful", "impressive", "game-changing", "cutting-edge", "advanced",
    "sophisticated", "intelligent", "brilliant", "genius", "outstanding",
    "excellent", "perfect", "flawless", "superior", "exceptional",
    "mind-blowing", "jaw-dropping", "stunning", "remarkable", "phenomenal",
)

DOMAIN_NEGATIVE_WORDS = (
    "terrible", "awful", "horrible", "disappointing", "frustrating",
    "broken", "buggy", "unreliable", "slow", "inefficient",
    "outdated", "primitive", "basic", "limited", "restricted",
    "confusing", "complicated", "overcomplicated", "unintuitive",
    "useless", "worthless", "garbage", "trash", "rubbish", "hallucinating",
)

TOPIC_KEYWORDS = (
    "ai", "artificial intelligence", "machine learning", "deep learning",
    "neural network", "gpt", "chatgpt", "openai", "stable diffusion",
    "prompt", "prompting", "model", "algorithm", "training", "dataset",
    "fine-tuning", "llm", "large language model", "transformer",
    "nlp", "natural language processing", "computer vision", "cv",
)

EMOTION_KEYWORDS: Dict[str, tuple] = {
    "excitement": ("excited", "thrilled", "amazing", "incredible", "wow"),
    "frustration": ("frustrated", "annoying", "broken", "buggy", "hate"),
    "curiosity": ("curious", "interesting", "wonder", "question", "how"),
    "satisfaction": ("satisfied", "happy", "love", "perfect", "great"),
    "confusion": ("confused", "unclear", "complicated", "complex", "hard"),
}

_TOKEN_RE = re.compile(r"[a-z0-9]+(?:[-'][a-z0-9]+)*")

# A positive/negative ratio beyond this marks a directional trend
TREND_RATIO = 1.5


@lru_cache(maxsize=1)
def _vader_lexicon() -> Dict[str, float]:
    return dict(SentimentIntensityAnalyzer().lexicon)


def tokenize(text: str) -> List[str]:
    """Lowercase, drop emoji and punctuation, and split into word tokens."""
    cleaned = emoji.replace_emoji(text, replace=" ").lower()
    return _TOKEN_RE.findall(cleaned)


def confidence_for(score: float, word_count: int) -> float:
    """Bucket ``|score| / word_count`` into four confidence tiers."""
    if word_count == 0:
        return 0.0
    normalized = abs(score) / word_count
    if normalized > 0.5:
        return 0.9
    if normalized > 0.3:
        return 0.7
    if normalized > 0.1:
        return 0.5
    return 0.3


def label_for(score: float, confidence: float) -> SentimentLabel:
    """Map a score onto the five-point scale; low confidence is always neutral."""
    if confidence < 0.3:
        return SentimentLabel.NEUTRAL
    if score > 2:
        return SentimentLabel.VERY_POSITIVE
    if score > 0:
        return SentimentLabel.POSITIVE
    if score < -2:
        return SentimentLabel.VERY_NEGATIVE
    if score < 0:
        return SentimentLabel.NEGATIVE
    return SentimentLabel.NEUTRAL


class SentimentTrend(BaseModel):
    """Direction and ratios of a batch of sentiment scores."""

    trend: str = "neutral"
    average_score: float = 0.0
    positive_ratio: float = 0.0
    negative_ratio: float = 0.0
    count: int = 0


class SentimentAnalyzer:
    """Deterministic sentiment, topic and emotion scorer."""

    def __init__(
        self,
        extra_positive: Iterable[str] = (),
        extra_negative: Iterable[str] = (),
        domain_weight: float = DOMAIN_WEIGHT,
    ):
        """
        Build the lexicon.

        Args:
            extra_positive: Additional domain words to score at ``+domain_weight``
            extra_negative: Additional domain words to score at ``-domain_weight``
            domain_weight: Absolute valence given to domain words
        """
        self.lexicon: Dict[str, float] = dict(_vader_lexicon())
        for word in (*DOMAIN_POSITIVE_WORDS, *extra_positive):
            self.lexicon[word.lower()] = domain_weight
        for word in (*DOMAIN_NEGATIVE_WORDS, *extra_negative):
            self.lexicon[word.lower()] = -domain_weight

    def analyze(self, text: Any) -> SentimentResult:
        """
        Score a piece of text.

        Args:
            text: Text to analyze; empty or non-string input is neutral

        Returns:
            SentimentResult with score, label, confidence, topics and emotions
        """
        if not text or not isinstance(text, str):
            return SentimentResult.neutral()

        tokens = tokenize(text)
        if not tokens:
            return SentimentResult.neutral()

        score = 0.0
        positive: List[str] = []
        negative: List[str] = []
        for token in tokens:
            valence = self.lexicon.get(token)
            if not valence:
                continue
            score += valence
            (positive if valence > 0 else negative).append(token)

        score = round(score, 4)
        confidence = confidence_for(score, len(tokens))
        normalized = " ".join(tokens)

        return SentimentResult(
            score=score,
            label=label_for(score, confidence),
            confidence=confidence,
            topics=self.extract_topics(normalized),
            emotions=self.extract_emotions(tokens),
            word_count=len(tokens),
            positive_words=positive,
            negative_words=negative,
        )

    def analyze_batch(self, texts: Iterable[Any]) -> List[SentimentResult]:
        return [self.analyze(text) for text in texts]

    @staticmethod
    def extract_topics(normalized: str) -> List[str]:
        """Topic keywords found as substrings of the normalized text."""
        return [keyword for keyword in TOPIC_KEYWORDS if keyword in normalized]

    @staticmethod
    def extract_emotions(tokens: List[str]) -> List[str]:
        words = set(tokens)
        return [
            emotion for emotion, keywords in EMOTION_KEYWORDS.items()
            if any(keyword in words for keyword in keywords)
        ]

    @staticmethod
    def sentiment_trend(scores: Iterable[Optional[float]]) -> SentimentTrend:
        """
        Summarize the direction of a batch of sentiment scores.

        Positive when positive scores outnumber negative ones by more than
        1.5x, negative in the mirrored case, neutral otherwise.
        """
        values = [s for s in scores if s is not None]
        if not values:
            return SentimentTrend()

        positives = sum(1 for s in values if s > 0)
        negatives = sum(1 for s in values if s < 0)
        trend = "neutral"
        if positives > negatives * TREND_RATIO:
            trend = "positive"
        elif negatives > positives * TREND_RATIO:
            trend = "negative"

        count = len(values)
        return SentimentTrend(
            trend=trend,
            average_score=sum(values) / count,
            positive_ratio=positives / count,
            negative_ratio=negatives / count,
            count=count,
        )
