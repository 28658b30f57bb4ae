"""OpenRouter adapter (OpenAI-compatible chat completions).

Answers synchronously. Citations come from ``url_citation`` annotations when
the model returns them, otherwise from URLs found in the answer text.
"""

from typing import Any, Dict, List

import structlog

from answerscope.models.collection import Citation
from answerscope.models.credentials import CredentialSlot
from answerscope.models.provider import AdapterRequest, AdapterSuccess
from answerscope.services.providers.base import (
    ProviderAdapter,
    dedupe_citations,
    extract_urls,
)
from answerscope.utils.exceptions import FatalProviderError

logger = structlog.get_logger()

DEFAULT_BASE_URL = "https://openrouter.ai/api/v1"


class OpenRouterAdapter(ProviderAdapter):
    """Chat completion against any OpenAI-compatible endpoint"""

    async def invoke(
        self, request: AdapterRequest, credential: CredentialSlot
    ) -> AdapterSuccess:
        if not self.definition.model:
            raise FatalProviderError(
                f"{self.name}: no model configured", provider=self.name
            )

        base_url = (self.definition.base_url or DEFAULT_BASE_URL).rstrip("/")
        payload = {
            "model": self.definition.model,
            "messages": [
                {
                    "role": "system",
                    "content": (
                        f"Answer for a user located in {request.country} "
                        f"writing in locale {request.locale}. Cite sources "
                        "with full URLs where possible."
                    ),
                },
                {"role": "user", "content": request.query_text},
            ],
            **self.definition.extra,
        }
        headers = {
            "Authorization": f"Bearer {credential.secret.get_secret_value()}",
            "Content-Type": "application/json",
        }

        data = await self._request_json(
            "POST", f"{base_url}/chat/completions", headers=headers, json_body=payload
        )
        return self._parse_completion(data)

    def _parse_completion(self, data: Any) -> AdapterSuccess:
        try:
            choice = data["choices"][0]
            message = choice["message"]
        except (KeyError, IndexError, TypeError):
            raise FatalProviderError(
                f"{self.name}: response has no choices", provider=self.name
            )

        answer = (message.get("content") or "").strip()
        if not answer:
            raise FatalProviderError(
                f"{self.name}: empty answer", provider=self.name
            )

        citations: List[Citation] = []
        for annotation in message.get("annotations") or []:
            if annotation.get("type") != "url_citation":
                continue
            info: Dict[str, Any] = annotation.get("url_citation") or {}
            if info.get("url"):
                citations.append(Citation(url=info["url"], title=info.get("title")))
        citations.extend(Citation(url=url) for url in extract_urls(answer))

        usage = data.get("usage") or {}
        return AdapterSuccess(
            raw_answer=answer,
            citations=dedupe_citations(citations),
            metadata={
                "provider": self.name,
                "model": data.get("model", self.definition.model),
                "finish_reason": choice.get("finish_reason"),
                "input_tokens": usage.get("prompt_tokens"),
                "output_tokens": usage.get("completion_tokens"),
            },
        )
