"""Brand and competitor position extraction.

Positions are 1-indexed word offsets into the answer. Multi-word names are
matched as token sequences after normalization (lowercase, surrounding
quotes removed, possessive 's dropped).

visibility_index = round(0.6 / log10(first_position + 9) + 0.4 * mentions / words, 2)
share_of_answers = round(100 * brand_mentions / (brand + competitor mentions), 2)
"""

import math
import re
from typing import Any, Dict, Iterable, List, Optional, Sequence

import structlog

from answerscope.models.collection import CollectorResult
from answerscope.models.enrichment import BrandProfile, PositionResult, TaskKind
from answerscope.services.scoring.base import Enricher
from answerscope.services.scoring.llm_client import LLMClient
from answerscope.utils.exceptions import EnrichmentError

logger = structlog.get_logger()

_TOKEN_PATTERN = re.compile(r"[\w’']+", re.UNICODE)
_QUOTES = "’'\"“”‘"
PRODUCT_METADATA_KEYS = (
    "products",
    "product_names",
    "productNames",
    "aliases",
    "alias",
    "keywords",
    "keyword_aliases",
)

SYSTEM_PROMPT = (
    "You identify product and brand names in text. Reply with a single JSON "
    'object: {"brand_products": [..], "competitor_products": {"<competitor>": [..]}}. '
    "Only include names that literally appear in the answer."
)


def normalize_word(word: str) -> str:
    word = word.lower().strip(_QUOTES)
    for suffix in ("'s", "’s"):
        if word.endswith(suffix):
            word = word[: -len(suffix)]
    return word.strip(_QUOTES)


def tokenize(text: str) -> List[str]:
    """Split text into normalized word tokens, dropping empty ones."""
    tokens = (normalize_word(t) for t in _TOKEN_PATTERN.findall(text or ""))
    return [t for t in tokens if t and t != "_"]


def find_term_positions(tokens: Sequence[str], term: str) -> List[int]:
    """1-indexed start positions of ``term`` within ``tokens``."""
    term_tokens = tokenize(term)
    if not term_tokens:
        return []
    width = len(term_tokens)
    return [
        i + 1
        for i in range(len(tokens) - width + 1)
        if list(tokens[i : i + width]) == term_tokens
    ]


def sanitize_names(values: Iterable[Any]) -> List[str]:
    """Keep distinct, plausible name strings in first-seen order."""
    seen: Dict[str, str] = {}
    for value in values:
        if not isinstance(value, str):
            continue
        name = value.strip().strip(_QUOTES).strip()
        if 2 <= len(name) <= 80 and name.lower() not in seen:
            seen[name.lower()] = name
    return list(seen.values())


def names_from_metadata(metadata: Dict[str, Any]) -> List[str]:
    candidates: List[Any] = []
    for key in PRODUCT_METADATA_KEYS:
        value = metadata.get(key)
        if isinstance(value, str):
            candidates.extend(value.split(","))
        elif isinstance(value, list):
            candidates.extend(value)
    return sanitize_names(candidates)


def _positions_for(tokens: Sequence[str], terms: Iterable[str]) -> List[int]:
    positions = set()
    for term in terms:
        positions.update(find_term_positions(tokens, term))
    return sorted(positions)


def visibility_index(positions: Sequence[int], word_count: int) -> Optional[float]:
    if word_count == 0:
        return None
    if not positions or positions[0] < 1:
        return 0.0
    prominence = 1 / math.log10(positions[0] + 9)
    density = len(positions) / word_count
    return round(prominence * 0.6 + density * 0.4, 2)


def share_of_answers(primary: int, secondary: int) -> Optional[float]:
    total = primary + secondary
    if total == 0:
        return None
    return round(primary / total * 100, 2)


def compute_positions(
    answer: str,
    brand: BrandProfile,
    brand_products: Sequence[str] = (),
    competitor_products: Optional[Dict[str, List[str]]] = None,
) -> PositionResult:
    """Locate the brand and each competitor in an answer."""
    tokens = tokenize(answer)
    competitor_products = competitor_products or {}

    brand_terms = [brand.name, *brand.aliases, *brand_products]
    brand_positions = _positions_for(tokens, brand_terms)

    competitor_positions: Dict[str, List[int]] = {}
    for competitor in brand.competitors:
        terms = [
            competitor.name,
            *competitor.aliases,
            *competitor_products.get(competitor.name, []),
        ]
        competitor_positions[competitor.name] = _positions_for(tokens, terms)

    competitor_mentions = sum(len(p) for p in competitor_positions.values())

    return PositionResult(
        brand_first_position=brand_positions[0] if brand_positions else None,
        brand_positions=brand_positions,
        brand_mentions=len(brand_positions),
        competitor_positions=competitor_positions,
        word_count=len(tokens),
        visibility_index=visibility_index(brand_positions, len(tokens)),
        share_of_answers=share_of_answers(len(brand_positions), competitor_mentions),
        product_names=list(brand_products),
    )


class PositionEnricher(Enricher):
    """Counts where the brand and its competitors are mentioned"""

    kind = TaskKind.POSITION

    async def enrich_with_llm(
        self,
        client: LLMClient,
        api_key: str,
        result: CollectorResult,
        brand: BrandProfile,
    ) -> PositionResult:
        competitors = ", ".join(c.name for c in brand.competitors) or "none"
        user_prompt = (
            f"Brand: {brand.name}\nCompetitors: {competitors}\n\n"
            f"Answer:\n{result.raw_answer}"
        )
        reply = await client.complete_json(SYSTEM_PROMPT, user_prompt, api_key)

        brand_products = reply.get("brand_products", [])
        competitor_products = reply.get("competitor_products", {})
        if not isinstance(brand_products, list) or not isinstance(
            competitor_products, dict
        ):
            raise EnrichmentError("Position reply has the wrong shape")

        products = sanitize_names(
            [*brand_products, *names_from_metadata(result.metadata)]
        )
        return compute_positions(
            result.raw_answer,
            brand,
            brand_products=products,
            competitor_products={
                name: sanitize_names(values)
                for name, values in competitor_products.items()
                if isinstance(values, list)
            },
        )

    def enrich_with_rules(
        self, result: CollectorResult, brand: BrandProfile
    ) -> PositionResult:
        return compute_positions(
            result.raw_answer,
            brand,
            brand_products=names_from_metadata(result.metadata),
        )
