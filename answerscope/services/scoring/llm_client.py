"""OpenAI-compatible chat client used by scoring hops.

Connection-level failures are retried in place with tenacity; HTTP failures
are mapped onto the provider error taxonomy and left to the caller.
"""

import asyncio
import json
import re
from typing import Any, Dict, Optional

import aiohttp
import structlog
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from answerscope.models.config import LLMProviderDefinition
from answerscope.services.providers.base import classify_http_status, parse_retry_after
from answerscope.utils.exceptions import EnrichmentError, RetryableProviderError

logger = structlog.get_logger()

_FENCE_PATTERN = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)
_OBJECT_PATTERN = re.compile(r"\{.*\}", re.DOTALL)


def parse_json_object(text: str) -> Dict[str, Any]:
    """Extract the JSON object from a model reply.

    Accepts bare JSON, fenced code blocks and JSON surrounded by prose.

    Raises:
        EnrichmentError: No JSON object could be decoded
    """
    cleaned = _FENCE_PATTERN.sub("", text.strip())
    candidates = [cleaned]
    match = _OBJECT_PATTERN.search(cleaned)
    if match:
        candidates.append(match.group(0))

    for candidate in candidates:
        try:
            value = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(value, dict):
            return value
    raise EnrichmentError(f"Model reply is not a JSON object: {text[:200]!r}")


class LLMClient:
    """Chat completion client for one configured scoring model"""

    def __init__(
        self,
        name: str,
        definition: LLMProviderDefinition,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.name = name
        self.definition = definition
        self._session = session

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
        return self._session

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    async def complete_json(
        self, system_prompt: str, user_prompt: str, api_key: str
    ) -> Dict[str, Any]:
        """Ask the model and decode its reply as a JSON object."""
        content = await self.complete(system_prompt, user_prompt, api_key)
        return parse_json_object(content)

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
        retry=retry_if_exception_type(
            (aiohttp.ClientConnectionError, asyncio.TimeoutError)
        ),
        reraise=True,
    )
    async def _post(self, url: str, headers: Dict[str, str], payload: Dict[str, Any]):
        async with self._get_session().post(
            url, headers=headers, json=payload
        ) as response:
            if response.status >= 400:
                body = await response.text()
                raise classify_http_status(
                    response.status,
                    body,
                    self.name,
                    parse_retry_after(response.headers),
                )
            return await response.json(content_type=None)

    async def complete(self, system_prompt: str, user_prompt: str, api_key: str) -> str:
        """Return the assistant message text.

        Raises:
            RateLimitError, RetryableProviderError, FatalProviderError: HTTP
                failures after connection retries
            EnrichmentError: The reply carries no message content
        """
        payload = {
            "model": self.definition.model,
            "temperature": self.definition.temperature,
            "max_tokens": self.definition.max_tokens,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
        }
        headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }
        url = f"{self.definition.base_url.rstrip('/')}/chat/completions"

        try:
            data = await self._post(url, headers, payload)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise RetryableProviderError(
                f"{self.name}: {type(e).__name__}: {e}", provider=self.name
            ) from e
        except ValueError as e:
            raise EnrichmentError(f"{self.name}: invalid JSON response: {e}") from e

        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError):
            raise EnrichmentError(f"{self.name}: response has no message content")
        if not isinstance(content, str):
            raise EnrichmentError(
                f"{self.name}: message content is {type(content).__name__}, not text"
            )
        if not content.strip():
            raise EnrichmentError(f"{self.name}: empty message content")

        logger.debug(
            "llm_completion_received",
            provider=self.name,
            model=self.definition.model,
            chars=len(content),
        )
        return content
