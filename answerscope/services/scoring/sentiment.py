"""Sentiment scoring of an answer towards the brand.

Scores lie in [-1, 1]. The label is derived from the score: above 0.1 is
POSITIVE, below -0.1 is NEGATIVE, anything else NEUTRAL. An empty answer is
NEUTRAL with score 0.
"""

import re
from typing import List, Tuple

import structlog

from answerscope.models.collection import CollectorResult
from answerscope.models.enrichment import (
    BrandProfile,
    SentimentLabel,
    SentimentResult,
    TaskKind,
)
from answerscope.services.scoring.base import Enricher
from answerscope.services.scoring.llm_client import LLMClient
from answerscope.services.scoring.position import tokenize
from answerscope.utils.exceptions import EnrichmentError

logger = structlog.get_logger()

LABEL_THRESHOLD = 0.1

_SENTENCE_SPLIT = re.compile(r"(?<=[.!?])\s+|\n+")

POSITIVE_WORDS = frozenset(
    {
        "best",
        "better",
        "excellent",
        "great",
        "good",
        "reliable",
        "recommended",
        "recommend",
        "popular",
        "leading",
        "trusted",
        "affordable",
        "innovative",
        "fast",
        "easy",
        "love",
        "loved",
        "strong",
        "top",
        "outstanding",
        "impressive",
        "favorite",
        "quality",
        "secure",
        "helpful",
    }
)

NEGATIVE_WORDS = frozenset(
    {
        "worst",
        "worse",
        "bad",
        "poor",
        "unreliable",
        "expensive",
        "slow",
        "difficult",
        "complaints",
        "complaint",
        "issues",
        "issue",
        "problems",
        "problem",
        "lawsuit",
        "scam",
        "avoid",
        "weak",
        "broken",
        "disappointing",
        "overpriced",
        "outdated",
        "risky",
        "lacks",
        "limited",
    }
)

NEGATIONS = frozenset({"not", "no", "never", "isn't", "aren't", "don't", "doesn't"})

SYSTEM_PROMPT = (
    "You rate the sentiment of an AI assistant answer towards a brand. Reply "
    'with a single JSON object: {"score": <float -1..1>, '
    '"positive_sentences": [..], "negative_sentences": [..]}. '
    "Quote sentences verbatim from the answer."
)


def label_for_score(score: float) -> SentimentLabel:
    if score > LABEL_THRESHOLD:
        return "POSITIVE"
    if score < -LABEL_THRESHOLD:
        return "NEGATIVE"
    return "NEUTRAL"


def split_sentences(text: str) -> List[str]:
    return [s.strip() for s in _SENTENCE_SPLIT.split(text or "") if s.strip()]


def score_sentence(sentence: str) -> Tuple[int, int]:
    """Count positive and negative lexicon hits, flipping negated words."""
    positive = negative = 0
    previous = ""
    for token in tokenize(sentence):
        polarity = 0
        if token in POSITIVE_WORDS:
            polarity = 1
        elif token in NEGATIVE_WORDS:
            polarity = -1
        if polarity and previous in NEGATIONS:
            polarity = -polarity
        if polarity > 0:
            positive += 1
        elif polarity < 0:
            negative += 1
        previous = token
    return positive, negative


def score_text(text: str) -> SentimentResult:
    """Lexicon-based sentiment for a whole answer."""
    sentences = split_sentences(text)
    if not sentences:
        return SentimentResult(label="NEUTRAL", score=0.0)

    positive_total = negative_total = 0
    positive_sentences: List[str] = []
    negative_sentences: List[str] = []
    for sentence in sentences:
        positive, negative = score_sentence(sentence)
        positive_total += positive
        negative_total += negative
        if positive > negative:
            positive_sentences.append(sentence)
        elif negative > positive:
            negative_sentences.append(sentence)

    hits = positive_total + negative_total
    score = round((positive_total - negative_total) / hits, 4) if hits else 0.0
    return SentimentResult(
        label=label_for_score(score),
        score=score,
        positive_sentences=positive_sentences,
        negative_sentences=negative_sentences,
    )


class SentimentEnricher(Enricher):
    """Rates the overall tone of an answer"""

    kind = TaskKind.SENTIMENT

    async def enrich_with_llm(
        self,
        client: LLMClient,
        api_key: str,
        result: CollectorResult,
        brand: BrandProfile,
    ) -> SentimentResult:
        if not result.raw_answer.strip():
            return SentimentResult(label="NEUTRAL", score=0.0)

        user_prompt = f"Brand: {brand.name}\n\nAnswer:\n{result.raw_answer}"
        reply = await client.complete_json(SYSTEM_PROMPT, user_prompt, api_key)

        try:
            score = max(-1.0, min(1.0, float(reply["score"])))
        except (KeyError, TypeError, ValueError) as e:
            raise EnrichmentError(f"Sentiment reply has no usable score: {e}") from e

        return SentimentResult(
            label=label_for_score(score),
            score=score,
            positive_sentences=_strings(reply.get("positive_sentences")),
            negative_sentences=_strings(reply.get("negative_sentences")),
        )

    def enrich_with_rules(
        self, result: CollectorResult, brand: BrandProfile
    ) -> SentimentResult:
        return score_text(result.raw_answer)


def _strings(value) -> List[str]:
    if not isinstance(value, list):
        return []
    return [v.strip() for v in value if isinstance(v, str) and v.strip()]
