"""Post-collection scoring: position, sentiment and citation enrichment."""

from answerscope.services.scoring.citation import CitationEnricher
from answerscope.services.scoring.coordinator import ScoringCoordinator
from answerscope.services.scoring.llm_client import LLMClient
from answerscope.services.scoring.position import PositionEnricher
from answerscope.services.scoring.sentiment import SentimentEnricher

__all__ = [
    "CitationEnricher",
    "LLMClient",
    "PositionEnricher",
    "ScoringCoordinator",
    "SentimentEnricher",
]
