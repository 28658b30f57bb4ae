"""Provider adapter interface.

Every upstream answer API gets one ProviderAdapter subclass. An adapter
builds the upstream request, parses the reply into an AdapterSuccess (or an
AdapterAccepted for APIs that answer asynchronously) and translates every
failure into the provider error taxonomy:

- RetryableProviderError: network errors, timeouts, 408, 5xx
- RateLimitError: 429 or rate/quota wording
- FatalProviderError: 400/401/403/404/422, unparseable answers, anything else
"""

import asyncio
import re
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Mapping, Optional, Union

import aiohttp
import structlog

from answerscope.models.collection import Citation
from answerscope.models.config import ProviderDefinition
from answerscope.models.credentials import CredentialSlot
from answerscope.models.provider import (
    AdapterAccepted,
    AdapterRequest,
    AdapterSuccess,
    PollStatus,
)
from answerscope.utils.exceptions import (
    FatalProviderError,
    ProviderError,
    RateLimitError,
    RetryableProviderError,
)

logger = structlog.get_logger()

AdapterOutcome = Union[AdapterSuccess, AdapterAccepted]

_URL_PATTERN = re.compile(r"https?://[^\s<>\"'\)\]]+")


def classify_http_status(
    status: int,
    body: str,
    provider: str,
    retry_after: Optional[float] = None,
) -> ProviderError:
    """Map a non-success HTTP status to the provider error taxonomy.

    Args:
        status: HTTP status code
        body: Response body (truncated into the message)
        provider: Adapter name for the error
        retry_after: Parsed Retry-After header, if any

    Returns:
        The exception instance to raise
    """
    message = f"HTTP {status}: {body[:300]}"
    if status == 429:
        return RateLimitError(message, provider=provider, retry_after=retry_after)
    if status == 408 or status >= 500:
        return RetryableProviderError(message, provider=provider)
    return FatalProviderError(message, provider=provider)


def parse_retry_after(headers: Mapping[str, str]) -> Optional[float]:
    """Read a numeric Retry-After header."""
    value = headers.get("Retry-After")
    if not value:
        return None
    try:
        return float(value)
    except ValueError:
        return None


def extract_urls(text: str) -> List[str]:
    """Find http(s) URLs in free text, preserving first-seen order."""
    seen: Dict[str, None] = {}
    for match in _URL_PATTERN.findall(text or ""):
        seen.setdefault(match.rstrip(".,;:"), None)
    return list(seen)


def dedupe_citations(citations: List[Citation]) -> List[Citation]:
    unique: Dict[str, Citation] = {}
    for citation in citations:
        if citation.url and citation.url not in unique:
            unique[citation.url] = citation
    return list(unique.values())


class ProviderAdapter(ABC):
    """Base class for answer-generation provider adapters

    Subclasses implement invoke(); async providers also implement poll().
    A single aiohttp session is opened lazily and shared across calls.
    """

    RATE_LIMIT_PATTERNS = ["rate limit", "rate_limit", "too many requests", "quota"]
    RETRYABLE_PATTERNS = [
        "timeout",
        "timed out",
        "connection",
        "overloaded",
        "unavailable",
    ]

    supports_async = False

    def __init__(self, name: str, definition: ProviderDefinition):
        self.name = name
        self.definition = definition
        self._session: Optional[aiohttp.ClientSession] = None

    @abstractmethod
    async def invoke(
        self, request: AdapterRequest, credential: CredentialSlot
    ) -> AdapterOutcome:
        """Ask the provider for an answer.

        Args:
            request: Query, locale and country to ask about
            credential: Key pool slot whose secret authenticates the call

        Returns:
            AdapterSuccess with the answer, or AdapterAccepted with a job id

        Raises:
            RetryableProviderError, RateLimitError, FatalProviderError
        """

    async def poll(self, job_id: str, credential: CredentialSlot) -> PollStatus:
        """Check an async job once. Only async providers override this."""
        raise FatalProviderError(
            f"{self.name} does not support async polling", provider=self.name
        )

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
        return self._session

    async def _request_json(
        self,
        method: str,
        url: str,
        *,
        headers: Optional[Dict[str, str]] = None,
        params: Optional[Dict[str, str]] = None,
        json_body: Any = None,
        pending_statuses: tuple = (),
        allow_non_json: bool = False,
    ) -> Optional[Any]:
        """Send a request and return the decoded JSON body.

        Returns None when the response status is in ``pending_statuses``, or
        when the body is not JSON and ``allow_non_json`` is set.
        Raises a classified ProviderError for every other failure.
        """
        try:
            async with self._get_session().request(
                method, url, headers=headers, params=params, json=json_body
            ) as response:
                if response.status in pending_statuses:
                    return None
                if response.status >= 400:
                    body = await response.text()
                    raise classify_http_status(
                        response.status,
                        body,
                        self.name,
                        parse_retry_after(response.headers),
                    )
                return await response.json(content_type=None)
        except ProviderError:
            raise
        except ValueError as e:
            # Body was not JSON
            if allow_non_json:
                return None
            raise FatalProviderError(
                f"Invalid JSON from {self.name}: {e}", provider=self.name
            ) from e
        except Exception as e:
            raise self._classify_error(e) from e

    def _classify_error(self, error: Exception) -> ProviderError:
        """Classify a transport-level exception."""
        if isinstance(error, (aiohttp.ClientConnectionError, asyncio.TimeoutError)):
            return RetryableProviderError(
                str(error) or type(error).__name__, provider=self.name
            )

        error_str = str(error).lower()
        if any(pattern in error_str for pattern in self.RATE_LIMIT_PATTERNS):
            return RateLimitError(str(error), provider=self.name)
        if any(pattern in error_str for pattern in self.RETRYABLE_PATTERNS):
            return RetryableProviderError(str(error), provider=self.name)
        if isinstance(error, aiohttp.ClientError):
            return RetryableProviderError(str(error), provider=self.name)
        return FatalProviderError(
            str(error) or type(error).__name__, provider=self.name
        )

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"
