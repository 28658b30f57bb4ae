"""Enricher interface shared by the three scoring task kinds."""

from abc import ABC, abstractmethod

from pydantic import BaseModel

from answerscope.models.collection import CollectorResult
from answerscope.models.enrichment import BrandProfile, TaskKind
from answerscope.services.scoring.llm_client import LLMClient


class Enricher(ABC):
    """One kind of post-collection analysis

    Every enricher offers a model-backed path and a rule-based path. The
    coordinator decides which to run for each configured hop.
    """

    kind: TaskKind

    @abstractmethod
    async def enrich_with_llm(
        self,
        client: LLMClient,
        api_key: str,
        result: CollectorResult,
        brand: BrandProfile,
    ) -> BaseModel:
        """Analyse the answer with a scoring model.

        Raises:
            ProviderError: The model call failed
            EnrichmentError: The model reply could not be used
        """

    @abstractmethod
    def enrich_with_rules(
        self, result: CollectorResult, brand: BrandProfile
    ) -> BaseModel:
        """Analyse the answer without any external call."""
