"""Shared fixtures: a scripted provider client and engine configs."""

import asyncio
from typing import Any, Callable, Dict, List, Tuple, Union

import pytest

from ideaforge.config import Config, EngineConfig, EngineMode, Provider
from ideaforge.llm_client import LLMClient, LLMMessage, StreamChunk
from ideaforge.providers import AIService
from ideaforge.workflow.knowledge_store import KnowledgeStore

Reply = Union[str, Callable[[List[LLMMessage]], str]]


class FakeLLMClient(LLMClient):
    """Answers each kind of request with a canned reply and records calls.

    Requests are told apart by their system prompt: advice, extraction,
    suggestions or summary.
    """

    provider = Provider.OPENAI

    def __init__(self, **replies: Reply) -> None:
        super().__init__(api_key="sk-test-0123456789", model="fake-model")
        self.replies: Dict[str, Reply] = {
            "advice": "Tell me more about who would use it.",
            "extraction": "{}",
            "suggestions": "[]",
            "summary": "The founder is exploring a booking app.",
        }
        self.replies.update(replies)
        self.errors: Dict[str, Exception] = {}
        self.calls: List[Tuple[str, List[LLMMessage], Dict[str, Any]]] = []
        self.closed = False

    @staticmethod
    def kind_of(messages: List[LLMMessage]) -> str:
        system = messages[0].content if messages and messages[0].role == "system" else ""
        if "extracting structured business information" in system:
            return "extraction"
        if "product strategist" in system:
            return "suggestions"
        if system.startswith("Summarize"):
            return "summary"
        return "advice"

    def calls_of(self, kind: str) -> List[List[LLMMessage]]:
        return [messages for k, messages, _ in self.calls if k == kind]

    def _reply(self, messages: List[LLMMessage], **kwargs: Any) -> str:
        kind = self.kind_of(messages)
        self.calls.append((kind, list(messages), kwargs))
        if kind in self.errors:
            raise self.errors[kind]
        reply = self.replies[kind]
        return reply(messages) if callable(reply) else reply

    async def generate(self, messages, *, temperature=0.7, max_tokens=1000):
        # Yield to the loop like a real network call
        await asyncio.sleep(0)
        return self._reply(messages, temperature=temperature, max_tokens=max_tokens)

    async def stream(self, messages, *, temperature=0.7, max_tokens=1000):
        text = self._reply(messages, temperature=temperature, max_tokens=max_tokens, stream=True)
        words = text.split(" ")
        for i, word in enumerate(words):
            yield StreamChunk(content=word if i == 0 else " " + word, finished=False, provider=self.provider)
        yield StreamChunk(content="", finished=True, provider=self.provider)

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture
def fake_client() -> FakeLLMClient:
    return FakeLLMClient()


@pytest.fixture
def ai_config() -> Config:
    return Config(engine=EngineConfig(mode=EngineMode.AI))


@pytest.fixture
def rules_config() -> Config:
    return Config(engine=EngineConfig(mode=EngineMode.RULES))


@pytest.fixture
def ai_service(ai_config: Config, fake_client: FakeLLMClient) -> AIService:
    return AIService(ai_config, clients={Provider.OPENAI: fake_client})


@pytest.fixture
def knowledge() -> KnowledgeStore:
    return KnowledgeStore()
