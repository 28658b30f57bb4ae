"""Provider adapters for answer-generation APIs.

Usage:
    from answerscope.services.providers import build_adapters

    adapters = build_adapters(config.providers)
    outcome = await adapters["openrouter_claude"].invoke(request, slot)
"""

from typing import Dict, Mapping, Type

from answerscope.models.config import ProviderDefinition
from answerscope.services.providers.base import (
    AdapterOutcome,
    ProviderAdapter,
    classify_http_status,
)
from answerscope.services.providers.brightdata import BrightDataAdapter
from answerscope.services.providers.openrouter import OpenRouterAdapter
from answerscope.services.providers.serpapi import SerpApiAdapter

ADAPTER_KINDS: Dict[str, Type[ProviderAdapter]] = {
    "openrouter": OpenRouterAdapter,
    "serpapi": SerpApiAdapter,
    "brightdata": BrightDataAdapter,
}


def build_adapters(
    definitions: Mapping[str, ProviderDefinition],
) -> Dict[str, ProviderAdapter]:
    """Instantiate one adapter per configured provider name."""
    return {
        name: ADAPTER_KINDS[definition.kind](name, definition)
        for name, definition in definitions.items()
    }


__all__ = [
    "ADAPTER_KINDS",
    "AdapterOutcome",
    "BrightDataAdapter",
    "OpenRouterAdapter",
    "ProviderAdapter",
    "SerpApiAdapter",
    "build_adapters",
    "classify_http_status",
]
