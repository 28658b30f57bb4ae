"""Tests for OpenRouter, SerpApi and Bright Data response parsing."""

from unittest.mock import AsyncMock, patch

import pytest
from pydantic import SecretStr

from answerscope.models.config import ProviderDefinition
from answerscope.models.credentials import CredentialSlot, OperationKey, OperationKind
from answerscope.models.provider import (
    AdapterAccepted,
    AdapterRequest,
    JobState,
)
from answerscope.services.providers import (
    BrightDataAdapter,
    OpenRouterAdapter,
    SerpApiAdapter,
)
from answerscope.utils.exceptions import FatalProviderError, RateLimitError


@pytest.fixture
def credential():
    return CredentialSlot(
        operation=OperationKey("any", OperationKind.COLLECTION),
        credential_id="k1",
        secret=SecretStr("sk-secret"),
    )


@pytest.fixture
def adapter_request():
    return AdapterRequest(
        query_text="best crm for startups",
        locale="en",
        country="US",
        collector_type="chatgpt",
    )


class TestOpenRouterAdapter:
    """Tests for chat completion parsing."""

    @pytest.fixture
    def adapter(self):
        return OpenRouterAdapter(
            "openrouter_gpt",
            ProviderDefinition(kind="openrouter", model="openai/gpt-4o"),
        )

    @pytest.mark.asyncio
    async def test_parses_answer_and_annotations(
        self, adapter, adapter_request, credential
    ):
        response = {
            "model": "openai/gpt-4o",
            "choices": [
                {
                    "finish_reason": "stop",
                    "message": {
                        "content": "Acme is great. More at https://acme.com/pricing",
                        "annotations": [
                            {
                                "type": "url_citation",
                                "url_citation": {
                                    "url": "https://g2.com/acme",
                                    "title": "G2",
                                },
                            }
                        ],
                    },
                }
            ],
            "usage": {"prompt_tokens": 12, "completion_tokens": 40},
        }

        with patch.object(
            adapter, "_request_json", new=AsyncMock(return_value=response)
        ) as request_json:
            result = await adapter.invoke(adapter_request, credential)

        assert result.raw_answer.startswith("Acme is great")
        assert [c.url for c in result.citations] == [
            "https://g2.com/acme",
            "https://acme.com/pricing",
        ]
        assert result.metadata["output_tokens"] == 40

        args, kwargs = request_json.call_args
        assert args[1] == "https://openrouter.ai/api/v1/chat/completions"
        assert kwargs["headers"]["Authorization"] == "Bearer sk-secret"
        assert kwargs["json_body"]["messages"][-1]["content"] == "best crm for startups"

    @pytest.mark.asyncio
    async def test_empty_answer_is_fatal(self, adapter, adapter_request, credential):
        response = {"choices": [{"message": {"content": "  "}}]}

        request_json = AsyncMock(return_value=response)
        with patch.object(adapter, "_request_json", new=request_json):
            with pytest.raises(FatalProviderError, match="empty answer"):
                await adapter.invoke(adapter_request, credential)

    @pytest.mark.asyncio
    async def test_missing_choices_is_fatal(self, adapter, adapter_request, credential):
        with patch.object(adapter, "_request_json", new=AsyncMock(return_value={})):
            with pytest.raises(FatalProviderError, match="no choices"):
                await adapter.invoke(adapter_request, credential)

    @pytest.mark.asyncio
    async def test_missing_model_is_fatal(self, adapter_request, credential):
        adapter = OpenRouterAdapter("bare", ProviderDefinition(kind="openrouter"))

        with pytest.raises(FatalProviderError, match="no model"):
            await adapter.invoke(adapter_request, credential)


class TestSerpApiAdapter:
    """Tests for text block assembly."""

    @pytest.fixture
    def adapter(self):
        return SerpApiAdapter("serpapi_copilot", ProviderDefinition(kind="serpapi"))

    @pytest.mark.asyncio
    async def test_assembles_text_blocks(self, adapter, adapter_request, credential):
        response = {
            "text_blocks": [
                {"type": "heading", "snippet": "Top CRMs"},
                {"type": "paragraph", "snippet": "Acme leads the pack."},
                {
                    "type": "list",
                    "list": [{"snippet": "Acme"}, {"snippet": "Globex"}],
                },
                {"type": "image"},
            ],
            "references": [
                {"link": "https://techcrunch.com/crm", "title": "TC"},
                {"title": "no link"},
            ],
        }

        with patch.object(
            adapter, "_request_json", new=AsyncMock(return_value=response)
        ) as request_json:
            result = await adapter.invoke(adapter_request, credential)

        assert result.raw_answer == (
            "Top CRMs\n\nAcme leads the pack.\n\n- Acme\n\n- Globex"
        )
        assert [c.url for c in result.citations] == ["https://techcrunch.com/crm"]
        assert result.metadata["engine"] == "bing_copilot"
        params = request_json.call_args.kwargs["params"]
        assert params["api_key"] == "sk-secret"
        assert params["q"] == "best crm for startups"

    @pytest.mark.asyncio
    async def test_limit_error_is_rate_limit(
        self, adapter, adapter_request, credential
    ):
        response = {"error": "Your account has run out of searches: limit reached"}

        request_json = AsyncMock(return_value=response)
        with patch.object(adapter, "_request_json", new=request_json):
            with pytest.raises(RateLimitError):
                await adapter.invoke(adapter_request, credential)

    @pytest.mark.asyncio
    async def test_other_error_is_fatal(self, adapter, adapter_request, credential):
        response = {"error": "Invalid API key"}

        request_json = AsyncMock(return_value=response)
        with patch.object(adapter, "_request_json", new=request_json):
            with pytest.raises(FatalProviderError):
                await adapter.invoke(adapter_request, credential)

    @pytest.mark.asyncio
    async def test_no_text_is_fatal(self, adapter, adapter_request, credential):
        with patch.object(
            adapter, "_request_json", new=AsyncMock(return_value={"text_blocks": []})
        ):
            with pytest.raises(FatalProviderError, match="no text blocks"):
                await adapter.invoke(adapter_request, credential)


class TestBrightDataAdapter:
    """Tests for trigger and snapshot polling."""

    @pytest.fixture
    def adapter(self):
        return BrightDataAdapter(
            "brightdata_chatgpt",
            ProviderDefinition(kind="brightdata", dataset_id="gd_abc"),
        )

    @pytest.mark.asyncio
    async def test_trigger_returns_accepted(self, adapter, adapter_request, credential):
        with patch.object(
            adapter,
            "_request_json",
            new=AsyncMock(return_value={"snapshot_id": "s_123"}),
        ) as request_json:
            outcome = await adapter.invoke(adapter_request, credential)

        assert isinstance(outcome, AdapterAccepted)
        assert outcome.job_id == "s_123"
        assert request_json.call_args.kwargs["params"]["dataset_id"] == "gd_abc"

    @pytest.mark.asyncio
    async def test_trigger_without_snapshot_is_fatal(
        self, adapter, adapter_request, credential
    ):
        with patch.object(adapter, "_request_json", new=AsyncMock(return_value={})):
            with pytest.raises(FatalProviderError, match="snapshot_id"):
                await adapter.invoke(adapter_request, credential)

    @pytest.mark.asyncio
    async def test_missing_dataset_is_fatal(self, adapter_request, credential):
        adapter = BrightDataAdapter("bd", ProviderDefinition(kind="brightdata"))

        with pytest.raises(FatalProviderError, match="dataset_id"):
            await adapter.invoke(adapter_request, credential)

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "payload",
        [None, {"status": "running"}, [], [{"answer_text": ""}]],
    )
    async def test_poll_pending(self, adapter, credential, payload):
        request_json = AsyncMock(return_value=payload)
        with patch.object(adapter, "_request_json", new=request_json):
            status = await adapter.poll("s_123", credential)

        assert status.state == JobState.PENDING

    @pytest.mark.asyncio
    async def test_poll_failed_status(self, adapter, credential):
        payload = {"status": "failed", "error": "blocked"}

        request_json = AsyncMock(return_value=payload)
        with patch.object(adapter, "_request_json", new=request_json):
            status = await adapter.poll("s_123", credential)

        assert status.state == JobState.FAILED
        assert status.error == "blocked"

    @pytest.mark.asyncio
    async def test_poll_ready_with_citations(self, adapter, credential):
        payload = [
            {
                "answer_text": "Acme is the top pick.",
                "citations": [
                    {"url": "https://reddit.com/r/crm", "title": "thread"},
                    "https://g2.com/acme",
                    {"url": "not-a-url"},
                ],
                "model": "gpt-4o",
            }
        ]

        request_json = AsyncMock(return_value=payload)
        with patch.object(adapter, "_request_json", new=request_json):
            status = await adapter.poll("s_123", credential)

        assert status.state == JobState.READY
        assert status.answer.raw_answer == "Acme is the top pick."
        assert [c.url for c in status.answer.citations] == [
            "https://reddit.com/r/crm",
            "https://g2.com/acme",
        ]
        assert status.answer.metadata["snapshot_id"] == "s_123"

    @pytest.mark.asyncio
    async def test_poll_html_answer_fallback(self, adapter, credential):
        payload = {"answer_section_html": "<p>Acme <b>wins</b></p> https://acme.com"}

        request_json = AsyncMock(return_value=payload)
        with patch.object(adapter, "_request_json", new=request_json):
            status = await adapter.poll("s_123", credential)

        assert status.state == JobState.READY
        assert "wins" in status.answer.raw_answer
        assert [c.url for c in status.answer.citations] == ["https://acme.com"]
