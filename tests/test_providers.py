"""Tests for provider clients and the AI service."""

import json

import httpx
import pytest

from ideaforge.config import Config, Provider, ProviderCredentials
from ideaforge.errors import ExtractionParseError, ProviderError, ProviderUnavailable
from ideaforge.llm_client import LLMMessage, split_system
from ideaforge.providers import AIService, AnthropicClient, GoogleClient, OpenAIClient


def _google_client(handler) -> GoogleClient:
    client = GoogleClient(api_key="AIza0123456789", model="gemini-1.5-flash")
    client._client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return client


class TestSplitSystem:
    def test_joins_system_prompts(self):
        system, turns = split_system([
            LLMMessage("system", "a"),
            LLMMessage("user", "hi"),
            LLMMessage("system", "b"),
        ])
        assert system == "a\n\nb"
        assert [m.content for m in turns] == ["hi"]


class TestAIServiceResolution:
    """Tests for provider and client resolution."""

    @pytest.mark.asyncio
    async def test_no_provider_raises_unavailable(self):
        service = AIService(Config())
        with pytest.raises(ProviderUnavailable):
            await service.chat_complete([LLMMessage("user", "hi")])
        assert not service.is_configured()

    def test_clients_built_from_credentials(self):
        config = Config(credentials=ProviderCredentials(
            openai_api_key="sk-test-0123456789", anthropic_api_key="sk-ant-0123456789"))
        service = AIService(config)
        assert isinstance(service.client_for(Provider.OPENAI), OpenAIClient)
        assert isinstance(service.client_for(Provider.ANTHROPIC), AnthropicClient)
        assert service.client_for(Provider.OPENAI) is service.client_for(Provider.OPENAI)
        assert service.client_for(Provider.OPENAI).model == "gpt-4o-mini"

    def test_unconfigured_client(self):
        with pytest.raises(ProviderUnavailable):
            AIService(Config()).client_for(Provider.GOOGLE)

    def test_injected_client_counts_as_configured(self, ai_service):
        assert ai_service.resolve_provider() == Provider.OPENAI
        assert ai_service.is_configured(Provider.OPENAI)


class TestAIServiceCalls:
    """Tests for completion, advice and extraction."""

    @pytest.mark.asyncio
    async def test_advise_parameters(self, ai_service, fake_client):
        reply = await ai_service.advise("Current Stage: spark", "I want to sell bikes")
        assert reply == "Tell me more about who would use it."
        kind, messages, kwargs = fake_client.calls[0]
        assert kind == "advice"
        assert "Current Stage: spark" in messages[0].content
        assert messages[1].content == "I want to sell bikes"
        assert kwargs == {"temperature": 0.8, "max_tokens": 500}

    @pytest.mark.asyncio
    async def test_transport_errors_become_provider_errors(self, ai_service, fake_client):
        fake_client.errors["advice"] = httpx.ConnectError("connection refused")
        with pytest.raises(ProviderError) as exc_info:
            await ai_service.advise("ctx", "hello")
        assert exc_info.value.provider == "openai"

    @pytest.mark.asyncio
    async def test_advise_stream(self, ai_service, fake_client):
        fake_client.replies["advice"] = "Sounds great so far"
        stream = await ai_service.advise_stream("ctx", "hello")
        chunks = [chunk async for chunk in stream]
        assert "".join(c.content for c in chunks) == "Sounds great so far"
        assert chunks[-1].finished

    @pytest.mark.asyncio
    async def test_structured_extract_filters_fields(self, ai_service, fake_client):
        fake_client.replies["extraction"] = json.dumps({
            "businessIdea": "A booking app for gyms",
            "solution": 3,
            "unrelated": "ignored",
            "suggestedFeatures": ["Reviews", "", 5],
        })
        insights = await ai_service.structured_extract("user: I run a gym")
        assert insights == {"businessIdea": "A booking app for gyms", "suggestedFeatures": ["Reviews"]}
        kind, messages, kwargs = fake_client.calls[0]
        assert kind == "extraction"
        assert "businessIdea" in messages[0].content
        assert kwargs == {"temperature": 0.3, "max_tokens": 800}

    @pytest.mark.asyncio
    async def test_structured_extract_custom_fields(self, ai_service, fake_client):
        fake_client.replies["extraction"] = '{"pricingModel": "Monthly subscription per seat"}'
        insights = await ai_service.structured_extract("user: ...", fields=[("pricingModel", "How it is priced")])
        assert insights == {"pricingModel": "Monthly subscription per seat"}
        assert "pricingModel: How it is priced" in fake_client.calls[0][1][0].content

    @pytest.mark.asyncio
    async def test_structured_extract_without_json(self, ai_service, fake_client):
        fake_client.replies["extraction"] = "I could not find anything."
        with pytest.raises(ExtractionParseError) as exc_info:
            await ai_service.structured_extract("user: hi")
        assert exc_info.value.raw_response == "I could not find anything."

    @pytest.mark.asyncio
    async def test_aclose_closes_clients(self, ai_service, fake_client):
        await ai_service.aclose()
        assert fake_client.closed


class TestGoogleClient:
    """Tests for the Gemini REST client."""

    @pytest.mark.asyncio
    async def test_generate(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={
                "candidates": [{"content": {"parts": [{"text": "Hello "}, {"text": "there"}]}}],
            })

        client = _google_client(handler)
        reply = await client.generate([LLMMessage("system", "Be brief"), LLMMessage("user", "hi")])
        assert reply == "Hello there"
        assert ":generateContent" in seen["url"]
        assert seen["body"]["systemInstruction"] == {"parts": [{"text": "Be brief"}]}
        assert seen["body"]["contents"] == [{"role": "user", "parts": [{"text": "hi"}]}]
        await client.aclose()

    @pytest.mark.asyncio
    async def test_error_status(self):
        client = _google_client(lambda request: httpx.Response(403, text="bad key"))
        with pytest.raises(ProviderError, match="403"):
            await client.generate([LLMMessage("user", "hi")])
        await client.aclose()

    @pytest.mark.asyncio
    async def test_stream_parses_sse(self):
        body = (
            'data: {"candidates": [{"content": {"parts": [{"text": "Hel"}]}}]}\n\n'
            "data: not-json\n\n"
            'data: {"candidates": [{"content": {"parts": [{"text": "lo"}]}}]}\n\n'
        )

        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.params["alt"] == "sse"
            return httpx.Response(200, text=body)

        client = _google_client(handler)
        chunks = [c async for c in client.stream([LLMMessage("user", "hi")])]
        assert [c.content for c in chunks] == ["Hel", "lo", ""]
        assert chunks[-1].finished
        await client.aclose()
