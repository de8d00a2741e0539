"""Provider clients and the AI service façade.

``OpenAIClient`` and ``AnthropicClient`` wrap the official async SDKs.
``GoogleClient`` talks to the Generative Language REST API directly over
httpx. ``AIService`` selects a client by configured credential and exposes
the three capabilities the conversation engine needs: chat completion,
business advice, and structured insight extraction.
"""

from __future__ import annotations

import json
import logging
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence, Tuple, Union

import anthropic
import httpx
import openai

from .config import Config, Provider
from .errors import ExtractionParseError, ProviderError, ProviderUnavailable
from .json_extractor import JSONExtractor
from .llm_client import LLMClient, LLMMessage, StreamChunk, split_system
from .templates import render_template

logger = logging.getLogger(__name__)

ChatResult = Union[str, AsyncIterator[StreamChunk]]

# Default extraction fields (the spark stage) with their prompt descriptions
INSIGHT_FIELDS: Tuple[Tuple[str, str], ...] = (
    ("businessIdea", "The core business concept"),
    ("problemStatement", "The problem being solved"),
    ("targetAudience", "Who the customers are"),
    ("solution", "How the problem is solved"),
    ("uniqueValue", "What makes it different"),
)


class OpenAIClient(LLMClient):
    """Chat completions through the ``openai`` SDK."""

    provider = Provider.OPENAI

    def __init__(self, api_key: str, model: str, timeout: float = 60.0) -> None:
        super().__init__(api_key, model, timeout)
        self._client = openai.AsyncOpenAI(api_key=api_key, timeout=timeout)

    async def generate(self, messages: List[LLMMessage], *, temperature: float = 0.7, max_tokens: int = 1000) -> str:
        response = await self._client.chat.completions.create(
            model=self.model,
            messages=[m.to_dict() for m in messages],
            temperature=temperature,
            max_tokens=max_tokens,
        )
        if not response.choices:
            return ""
        return response.choices[0].message.content or ""

    async def stream(self, messages: List[LLMMessage], *, temperature: float = 0.7, max_tokens: int = 1000) -> AsyncIterator[StreamChunk]:
        stream = await self._client.chat.completions.create(
            model=self.model,
            messages=[m.to_dict() for m in messages],
            temperature=temperature,
            max_tokens=max_tokens,
            stream=True,
        )
        async for chunk in stream:
            if not chunk.choices:
                continue
            choice = chunk.choices[0]
            yield StreamChunk(
                content=(choice.delta.content if choice.delta else None) or "",
                finished=choice.finish_reason is not None,
                provider=self.provider,
            )

    async def aclose(self) -> None:
        await self._client.close()


class AnthropicClient(LLMClient):
    """Messages API through the ``anthropic`` SDK."""

    provider = Provider.ANTHROPIC

    def __init__(self, api_key: str, model: str, timeout: float = 60.0) -> None:
        super().__init__(api_key, model, timeout)
        self._client = anthropic.AsyncAnthropic(api_key=api_key, timeout=timeout)

    def _request(self, messages: List[LLMMessage], temperature: float, max_tokens: int) -> Dict[str, Any]:
        system, turns = split_system(messages)
        request: Dict[str, Any] = {
            "model": self.model,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "messages": [m.to_dict() for m in turns],
        }
        if system:
            request["system"] = system
        return request

    async def generate(self, messages: List[LLMMessage], *, temperature: float = 0.7, max_tokens: int = 1000) -> str:
        response = await self._client.messages.create(**self._request(messages, temperature, max_tokens))
        for block in response.content:
            if getattr(block, "type", None) == "text":
                return block.text
        return ""

    async def stream(self, messages: List[LLMMessage], *, temperature: float = 0.7, max_tokens: int = 1000) -> AsyncIterator[StreamChunk]:
        stream = await self._client.messages.create(stream=True, **self._request(messages, temperature, max_tokens))
        async for event in stream:
            if event.type == "content_block_delta" and getattr(event.delta, "type", None) == "text_delta":
                yield StreamChunk(content=event.delta.text, finished=False, provider=self.provider)
            elif event.type == "message_stop":
                yield StreamChunk(content="", finished=True, provider=self.provider)

    async def aclose(self) -> None:
        await self._client.close()


class GoogleClient(LLMClient):
    """Gemini through the Generative Language REST API over httpx."""

    provider = Provider.GOOGLE
    BASE_URL = "https://generativelanguage.googleapis.com/v1beta"

    def __init__(self, api_key: str, model: str, timeout: float = 60.0, base_url: Optional[str] = None) -> None:
        super().__init__(api_key, model, timeout)
        self._base_url = (base_url or self.BASE_URL).rstrip("/")
        self._client: Optional[httpx.AsyncClient] = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    def _body(self, messages: List[LLMMessage], temperature: float, max_tokens: int) -> Dict[str, Any]:
        system, turns = split_system(messages)
        body: Dict[str, Any] = {
            "contents": [
                {"role": "model" if m.role == "assistant" else "user", "parts": [{"text": m.content}]}
                for m in turns
            ],
            "generationConfig": {"temperature": temperature, "maxOutputTokens": max_tokens},
        }
        if system:
            body["systemInstruction"] = {"parts": [{"text": system}]}
        return body

    @staticmethod
    def _text_of(data: Dict[str, Any]) -> str:
        candidates = data.get("candidates", [])
        if not candidates:
            return ""
        parts = candidates[0].get("content", {}).get("parts", [])
        return "".join(part.get("text", "") for part in parts if not part.get("thought"))

    async def generate(self, messages: List[LLMMessage], *, temperature: float = 0.7, max_tokens: int = 1000) -> str:
        url = f"{self._base_url}/models/{self.model}:generateContent"
        response = await self._get_client().post(
            url,
            params={"key": self.api_key},
            json=self._body(messages, temperature, max_tokens),
        )
        if response.status_code != 200:
            raise ProviderError(f"Gemini API error {response.status_code}: {response.text}", provider=self.provider.value)
        return self._text_of(response.json())

    async def stream(self, messages: List[LLMMessage], *, temperature: float = 0.7, max_tokens: int = 1000) -> AsyncIterator[StreamChunk]:
        url = f"{self._base_url}/models/{self.model}:streamGenerateContent"
        async with self._get_client().stream(
            "POST",
            url,
            params={"alt": "sse", "key": self.api_key},
            json=self._body(messages, temperature, max_tokens),
        ) as response:
            if response.status_code != 200:
                text = await response.aread()
                raise ProviderError(
                    f"Gemini API error {response.status_code}: {text.decode()}", provider=self.provider.value
                )

            async for line in response.aiter_lines():
                line = line.strip()
                if not line.startswith("data: "):
                    continue
                try:
                    chunk = json.loads(line[6:])
                except json.JSONDecodeError:
                    continue
                text = self._text_of(chunk)
                if text:
                    yield StreamChunk(content=text, finished=False, provider=self.provider)

        yield StreamChunk(content="", finished=True, provider=self.provider)

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


CLIENT_CLASSES = {
    Provider.OPENAI: OpenAIClient,
    Provider.ANTHROPIC: AnthropicClient,
    Provider.GOOGLE: GoogleClient,
}

# SDK/transport exceptions that are reported as ProviderError
PROVIDER_EXCEPTIONS = (openai.OpenAIError, anthropic.AnthropicError, httpx.HTTPError)


class AIService:
    """Provider-agnostic capability used by the conversation engine.

    Example:
        service = AIService(load_config())
        reply = await service.advise("Current Stage: spark", "I want to sell bikes")
    """

    def __init__(self, config: Config, clients: Optional[Dict[Provider, LLMClient]] = None) -> None:
        self.config = config
        self.extractor = JSONExtractor()
        self._clients: Dict[Provider, LLMClient] = dict(clients or {})

    def is_configured(self, provider: Optional[Provider] = None) -> bool:
        """Whether the given provider (or the resolved default) can be called."""
        if provider is None:
            return self.config.resolve_provider() is not None
        return Provider(provider) in self._clients or self.config.credentials.is_configured(provider)

    def resolve_provider(self, requested: Optional[Provider] = None) -> Provider:
        if requested is not None and Provider(requested) in self._clients:
            return Provider(requested)
        provider = self.config.resolve_provider(requested)
        if provider is None:
            # Injected clients count as configured even without credentials
            for candidate in self._clients:
                return candidate
            raise ProviderUnavailable(
                "No AI provider is configured. Add an OpenAI, Anthropic, or Google API key.",
                provider=requested.value if requested else None,
            )
        return provider

    def client_for(self, provider: Provider) -> LLMClient:
        provider = Provider(provider)
        if provider not in self._clients:
            key = self.config.credentials.key_for(provider)
            if not self.config.credentials.is_configured(provider) or key is None:
                raise ProviderUnavailable(f"{provider.value} is not configured", provider=provider.value)
            self._clients[provider] = CLIENT_CLASSES[provider](
                api_key=key,
                model=self.config.model_for(provider),
                timeout=self.config.request_timeout,
            )
        return self._clients[provider]

    async def chat_complete(
        self,
        messages: List[LLMMessage],
        *,
        provider: Optional[Provider] = None,
        temperature: float = 0.7,
        max_tokens: int = 1000,
        stream: bool = False,
    ) -> ChatResult:
        """Send role-tagged messages to a provider.

        Returns:
            The reply text, or an async iterator of ``StreamChunk`` when
            ``stream`` is set.

        Raises:
            ProviderUnavailable: No credential for the resolved provider
            ProviderError: The SDK or transport reported a failure
        """
        resolved = self.resolve_provider(provider)
        client = self.client_for(resolved)

        if stream:
            return self._guarded_stream(client, messages, temperature, max_tokens)

        try:
            return await client.generate(messages, temperature=temperature, max_tokens=max_tokens)
        except ProviderError:
            raise
        except PROVIDER_EXCEPTIONS as e:
            logger.error("AI generation error (%s): %s", resolved.value, e)
            raise ProviderError(str(e), provider=resolved.value) from e

    async def _guarded_stream(
        self,
        client: LLMClient,
        messages: List[LLMMessage],
        temperature: float,
        max_tokens: int,
    ) -> AsyncIterator[StreamChunk]:
        try:
            async for chunk in client.stream(messages, temperature=temperature, max_tokens=max_tokens):
                yield chunk
        except ProviderError:
            raise
        except PROVIDER_EXCEPTIONS as e:
            logger.error("AI streaming error (%s): %s", client.provider.value, e)
            raise ProviderError(str(e), provider=client.provider.value) from e

    def advice_messages(self, context: str, question: str) -> List[LLMMessage]:
        return [
            LLMMessage("system", render_template("advisor_system.jinja", {"context": context})),
            LLMMessage("user", question),
        ]

    async def advise(self, context: str, question: str, provider: Optional[Provider] = None) -> str:
        """Ask the advisor persona for the next conversational reply."""
        reply = await self.chat_complete(
            self.advice_messages(context, question),
            provider=provider,
            temperature=0.8,
            max_tokens=500,
        )
        return str(reply)

    async def advise_stream(self, context: str, question: str, provider: Optional[Provider] = None) -> AsyncIterator[StreamChunk]:
        result = await self.chat_complete(
            self.advice_messages(context, question),
            provider=provider,
            temperature=0.8,
            max_tokens=500,
            stream=True,
        )
        return result  # type: ignore[return-value]

    async def structured_extract(
        self,
        conversation: str,
        provider: Optional[Provider] = None,
        fields: Sequence[Tuple[str, str]] = INSIGHT_FIELDS,
    ) -> Dict[str, Any]:
        """Extract business insights from a transcript as a dict.

        Args:
            conversation: ``role: content`` lines to analyse
            provider: Provider override
            fields: (camelCase key, description) pairs to ask for

        Only the requested fields (strings) and ``suggestedFeatures``
        (list of strings) are kept.

        Raises:
            ExtractionParseError: The reply contained no JSON object
        """
        reply = await self.chat_complete(
            [
                LLMMessage("system", render_template("extraction_system.jinja", {"fields": list(fields)})),
                LLMMessage("user", render_template("extraction_user.jinja", {"conversation": conversation})),
            ],
            provider=provider,
            temperature=0.3,
            max_tokens=800,
        )
        data = self.extractor.extract_json(str(reply))
        if not isinstance(data, dict):
            raise ExtractionParseError("Insight extraction did not return a JSON object", raw_response=str(reply))

        insights: Dict[str, Any] = {
            key: data[key] for key, _ in fields if isinstance(data.get(key), str)
        }
        features = data.get("suggestedFeatures")
        if isinstance(features, list):
            insights["suggestedFeatures"] = [f for f in features if isinstance(f, str) and f.strip()]
        return insights

    async def aclose(self) -> None:
        for client in self._clients.values():
            await client.aclose()
