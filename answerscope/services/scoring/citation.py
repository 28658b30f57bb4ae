"""Citation categorization.

Each cited URL is reduced to its domain and categorized in order:

1. Known domain patterns (confidence high, source hardcoded)
2. Name heuristics such as .edu or "news" (medium, heuristic)
3. A scoring model, on the model hop only (medium, ai)
4. Corporate as the default (low, fallback_default)
"""

import re
from typing import Dict, List, Optional, Sequence, Tuple
from urllib.parse import urlparse

import structlog

from answerscope.models.collection import CollectorResult
from answerscope.models.enrichment import (
    BrandProfile,
    CitationCategory,
    CitationRecord,
    CitationResult,
    TaskKind,
)
from answerscope.services.providers.base import extract_urls
from answerscope.services.scoring.base import Enricher
from answerscope.services.scoring.llm_client import LLMClient

logger = structlog.get_logger()

DOMAIN_PATTERNS: List[Tuple[re.Pattern, CitationCategory]] = [
    (
        re.compile(
            r"(^|\.)(reddit|twitter|x|facebook|linkedin|instagram|tiktok|youtube"
            r"|pinterest)\.com$"
        ),
        CitationCategory.SOCIAL,
    ),
    (re.compile(r"(^|\.)youtu\.be$"), CitationCategory.SOCIAL),
    (
        re.compile(
            r"(^|\.)(techcrunch|forbes|medium|wired|theverge|cnn|nytimes|wsj"
            r"|reuters|bloomberg)\.com$"
        ),
        CitationCategory.EDITORIAL,
    ),
    (re.compile(r"(^|\.)bbc\.(com|co\.uk)$"), CitationCategory.EDITORIAL),
    (re.compile(r"(^|\.)theguardian\.com$"), CitationCategory.EDITORIAL),
    (
        re.compile(r"(^|\.)(wikipedia|wikidata)\.org$"),
        CitationCategory.REFERENCE,
    ),
    (
        re.compile(r"(^|\.)(stackoverflow|github|quora)\.com$"),
        CitationCategory.REFERENCE,
    ),
    (
        re.compile(r"(^|\.)(g2|capterra|trustpilot)\.com$"),
        CitationCategory.CORPORATE,
    ),
    (re.compile(r"\.(edu|gov)$"), CitationCategory.INSTITUTIONAL),
    (re.compile(r"(^|\.)archive\.org$"), CitationCategory.INSTITUTIONAL),
    (re.compile(r"(^|\.)scholar\.google\.com$"), CitationCategory.INSTITUTIONAL),
    (re.compile(r"(^|\.)pubmed\.ncbi\.nlm\.nih\.gov$"), CitationCategory.INSTITUTIONAL),
    (
        re.compile(r"(^|\.)(amazon|yelp|tripadvisor)\.[a-z.]+$"),
        CitationCategory.UGC,
    ),
]

HEURISTICS: List[Tuple[re.Pattern, CitationCategory]] = [
    (
        re.compile(r"\.(edu|gov)(\.[a-z]{2})?$|universit"),
        CitationCategory.INSTITUTIONAL,
    ),
    (re.compile(r"news|blog|media|magazine"), CitationCategory.EDITORIAL),
    (re.compile(r"wiki"), CitationCategory.REFERENCE),
    (re.compile(r"review|rating"), CitationCategory.UGC),
]

SYSTEM_PROMPT = (
    "You categorize website domains. Categories: Editorial, Corporate, "
    "Reference, UGC, Social, Institutional. Reply with a single JSON object "
    "mapping each domain to one category."
)


def extract_domain(url: str) -> Optional[str]:
    """Lowercased host without port or a leading www."""
    candidate = url.strip()
    if "://" not in candidate:
        candidate = f"https://{candidate}"
    host = urlparse(candidate).hostname
    if not host:
        return None
    host = host.lower().rstrip(".")
    if host.startswith("www."):
        host = host[4:]
    return host or None


def page_name_for(domain: str) -> str:
    """Readable site name, e.g. ``techcrunch.com`` -> ``Techcrunch``."""
    labels = [label for label in domain.split(".") if label]
    if len(labels) >= 3 and labels[-2] in ("co", "com", "org", "ac", "gov"):
        core = labels[-3]
    elif len(labels) >= 2:
        core = labels[-2]
    else:
        core = labels[0] if labels else domain
    return core.replace("-", " ").title()


def categorize_domain(
    domain: str,
) -> Optional[Tuple[CitationCategory, str, str]]:
    """Category, confidence and source from patterns and heuristics."""
    for pattern, category in DOMAIN_PATTERNS:
        if pattern.search(domain):
            return category, "high", "hardcoded"
    for pattern, category in HEURISTICS:
        if pattern.search(domain):
            return category, "medium", "heuristic"
    return None


def _record(
    url: str, domain: str, category: CitationCategory, confidence: str, source: str
) -> CitationRecord:
    return CitationRecord(
        url=url,
        domain=domain,
        page_name=page_name_for(domain),
        category=category,
        confidence=confidence,
        source=source,
    )


def cited_urls(result: CollectorResult) -> List[Tuple[str, str]]:
    """(url, domain) pairs for the result's citations, one per URL."""
    urls = [c.url for c in result.citations] or extract_urls(result.raw_answer)
    pairs: List[Tuple[str, str]] = []
    seen = set()
    for url in urls:
        domain = extract_domain(url)
        if domain and url not in seen:
            seen.add(url)
            pairs.append((url, domain))
    return pairs


def categorize_all(
    pairs: Sequence[Tuple[str, str]],
    ai_categories: Optional[Dict[str, CitationCategory]] = None,
) -> CitationResult:
    ai_categories = ai_categories or {}
    records = []
    for url, domain in pairs:
        known = categorize_domain(domain)
        if known:
            records.append(_record(url, domain, *known))
        elif domain in ai_categories:
            records.append(_record(url, domain, ai_categories[domain], "medium", "ai"))
        else:
            records.append(
                _record(
                    url, domain, CitationCategory.CORPORATE, "low", "fallback_default"
                )
            )
    return CitationResult(records=records)


class CitationEnricher(Enricher):
    """Categorizes the sites an answer cites"""

    kind = TaskKind.CITATION

    async def enrich_with_llm(
        self,
        client: LLMClient,
        api_key: str,
        result: CollectorResult,
        brand: BrandProfile,
    ) -> CitationResult:
        pairs = cited_urls(result)
        unknown = sorted({d for _, d in pairs if categorize_domain(d) is None})
        if not unknown:
            return categorize_all(pairs)

        reply = await client.complete_json(
            SYSTEM_PROMPT, "Domains:\n" + "\n".join(unknown), api_key
        )
        valid = {c.value.lower(): c for c in CitationCategory}
        ai_categories: Dict[str, CitationCategory] = {}
        for domain, value in reply.items():
            category = valid.get(str(value).strip().lower())
            if domain in unknown and category is not None:
                ai_categories[domain] = category

        logger.debug(
            "citation_domains_categorized",
            unknown=len(unknown),
            categorized=len(ai_categories),
        )
        return categorize_all(pairs, ai_categories)

    def enrich_with_rules(
        self, result: CollectorResult, brand: BrandProfile
    ) -> CitationResult:
        return categorize_all(cited_urls(result))
