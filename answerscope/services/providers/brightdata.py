"""Bright Data dataset adapter (asynchronous).

Triggering a dataset run returns a snapshot id, reported as AdapterAccepted.
The snapshot endpoint answers 202 (or a non-JSON body) while the run is
still processing, and a JSON record (or list of records) once it is ready.
"""

import re
from typing import Any, Dict, List, Optional

import structlog

from answerscope.models.collection import Citation
from answerscope.models.credentials import CredentialSlot
from answerscope.models.provider import (
    AdapterAccepted,
    AdapterRequest,
    AdapterSuccess,
    PollStatus,
)
from answerscope.services.providers.base import (
    ProviderAdapter,
    dedupe_citations,
    extract_urls,
)
from answerscope.utils.exceptions import FatalProviderError

logger = structlog.get_logger()

DEFAULT_BASE_URL = "https://api.brightdata.com"

ANSWER_FIELDS = ("answer_text", "answer", "response", "content")
CITATION_FIELDS = ("citations", "links_attached", "sources", "urls")
RUNNING_STATUSES = {"running", "building", "collecting", "starting"}

_TAG_PATTERN = re.compile(r"<[^>]+>")


def _unwrap_record(data: Any) -> Optional[Dict[str, Any]]:
    if isinstance(data, list):
        data = data[0] if data else None
    if isinstance(data, dict) and isinstance(data.get("data"), list):
        data = data["data"][0] if data["data"] else None
    return data if isinstance(data, dict) else None


def _citation_from(item: Any) -> Optional[Citation]:
    if isinstance(item, str):
        url, title = item, None
    elif isinstance(item, dict):
        url = next(
            (item[k] for k in ("url", "source", "link", "href") if item.get(k)), None
        )
        title = item.get("title")
    else:
        return None
    if not isinstance(url, str) or not url.startswith(("http://", "https://")):
        return None
    return Citation(url=url, title=title)


class BrightDataAdapter(ProviderAdapter):
    """Dataset-scraper answers via trigger + snapshot polling"""

    supports_async = True

    @property
    def _base_url(self) -> str:
        return (self.definition.base_url or DEFAULT_BASE_URL).rstrip("/")

    def _headers(self, credential: CredentialSlot) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {credential.secret.get_secret_value()}",
            "Content-Type": "application/json",
        }

    async def invoke(
        self, request: AdapterRequest, credential: CredentialSlot
    ) -> AdapterAccepted:
        if not self.definition.dataset_id:
            raise FatalProviderError(
                f"{self.name}: no dataset_id configured", provider=self.name
            )

        payload = [
            {
                "url": self.definition.extra.get("target_url", "https://chatgpt.com/"),
                "prompt": request.query_text,
                "country": request.country,
                "web_search": True,
            }
        ]
        data = await self._request_json(
            "POST",
            f"{self._base_url}/datasets/v3/trigger",
            headers=self._headers(credential),
            params={
                "dataset_id": self.definition.dataset_id,
                "notify": "false",
                "include_errors": "true",
            },
            json_body=payload,
        )

        snapshot_id = self._snapshot_id(data)
        if not snapshot_id:
            raise FatalProviderError(
                f"{self.name}: trigger response has no snapshot_id", provider=self.name
            )

        logger.info("snapshot_triggered", provider=self.name, snapshot_id=snapshot_id)
        return AdapterAccepted(
            job_id=snapshot_id, metadata={"dataset_id": self.definition.dataset_id}
        )

    async def poll(self, job_id: str, credential: CredentialSlot) -> PollStatus:
        data = await self._request_json(
            "GET",
            f"{self._base_url}/datasets/v3/snapshot/{job_id}",
            headers=self._headers(credential),
            params={"format": "json"},
            pending_statuses=(202,),
            allow_non_json=True,
        )
        if data is None:
            return PollStatus.pending()

        if isinstance(data, dict) and isinstance(data.get("status"), str):
            status = data["status"].lower()
            if status in RUNNING_STATUSES:
                return PollStatus.pending()
            if status == "failed":
                return PollStatus.failed(str(data.get("error") or "snapshot failed"))

        record = _unwrap_record(data)
        if record is None:
            return PollStatus.pending()
        if record.get("error") and not any(record.get(f) for f in ANSWER_FIELDS):
            return PollStatus.failed(str(record["error"]))

        answer = self._answer_text(record)
        if not answer:
            return PollStatus.pending()

        return PollStatus.ready(
            AdapterSuccess(
                raw_answer=answer,
                citations=self._citations(record, answer),
                metadata={
                    "provider": self.name,
                    "snapshot_id": job_id,
                    "model": record.get("model"),
                },
            )
        )

    @staticmethod
    def _snapshot_id(data: Any) -> Optional[str]:
        if isinstance(data, list) and data and isinstance(data[0], dict):
            return data[0].get("snapshot_id")
        if not isinstance(data, dict):
            return None
        if data.get("snapshot_id"):
            return data["snapshot_id"]
        ids = data.get("snapshot_ids")
        if isinstance(ids, list) and ids:
            return ids[0]
        nested = data.get("data")
        if isinstance(nested, dict):
            return nested.get("snapshot_id")
        return None

    @staticmethod
    def _answer_text(record: Dict[str, Any]) -> str:
        for field in ANSWER_FIELDS:
            value = record.get(field)
            if isinstance(value, str) and value.strip():
                return value.strip()
        html = record.get("answer_section_html")
        if isinstance(html, str) and html.strip():
            return _TAG_PATTERN.sub(" ", html).strip()
        return ""

    @staticmethod
    def _citations(record: Dict[str, Any], answer: str) -> List[Citation]:
        for field in CITATION_FIELDS:
            items = record.get(field)
            if isinstance(items, list) and items:
                citations = [c for c in map(_citation_from, items) if c is not None]
                if citations:
                    return dedupe_citations(citations)
        return [Citation(url=url) for url in extract_urls(answer)]
