"""SerpApi adapter for search-engine assistants (Bing Copilot by default).

The answer is assembled from ``text_blocks``; citations come from
``references``.
"""

from typing import Any, Dict, List

from answerscope.models.collection import Citation
from answerscope.models.credentials import CredentialSlot
from answerscope.models.provider import AdapterRequest, AdapterSuccess
from answerscope.services.providers.base import ProviderAdapter, dedupe_citations
from answerscope.utils.exceptions import FatalProviderError, RateLimitError

DEFAULT_BASE_URL = "https://serpapi.com/search.json"


def _block_text(block: Dict[str, Any]) -> List[str]:
    block_type = block.get("type")
    if block_type in ("paragraph", "heading") and block.get("snippet"):
        return [block["snippet"]]
    if block_type == "list":
        return [
            f"- {item['snippet']}"
            for item in block.get("list") or []
            if item.get("snippet")
        ]
    if block_type == "code_block" and block.get("code"):
        return [block["code"]]
    if block_type == "table":
        rows = block.get("table") or []
        return [" | ".join(str(cell) for cell in row) for row in rows]
    return []


class SerpApiAdapter(ProviderAdapter):
    """Synchronous search assistant answers through SerpApi"""

    async def invoke(
        self, request: AdapterRequest, credential: CredentialSlot
    ) -> AdapterSuccess:
        params = {
            "engine": self.definition.engine or "bing_copilot",
            "q": request.query_text,
            "api_key": credential.secret.get_secret_value(),
            "hl": request.locale,
            "location": request.country,
        }
        data = await self._request_json(
            "GET", self.definition.base_url or DEFAULT_BASE_URL, params=params
        )

        if not isinstance(data, dict):
            raise FatalProviderError(
                f"{self.name}: unexpected response shape", provider=self.name
            )
        if data.get("error"):
            error = str(data["error"])
            if "limit" in error.lower():
                raise RateLimitError(error, provider=self.name)
            raise FatalProviderError(error, provider=self.name)

        parts: List[str] = []
        for block in data.get("text_blocks") or []:
            parts.extend(_block_text(block))
        answer = "\n\n".join(parts).strip()
        if not answer:
            raise FatalProviderError(
                f"{self.name}: response has no text blocks", provider=self.name
            )

        citations = [
            Citation(url=ref["link"], title=ref.get("title"))
            for ref in data.get("references") or []
            if ref.get("link")
        ]

        return AdapterSuccess(
            raw_answer=answer,
            citations=dedupe_citations(citations),
            metadata={
                "provider": self.name,
                "engine": params["engine"],
                "text_blocks_count": len(data.get("text_blocks") or []),
                "references_count": len(data.get("references") or []),
            },
        )
