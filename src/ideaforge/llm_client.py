"""Abstract LLM client interface for provider-agnostic usage.

Each hosted provider gets one concrete client. The AI service picks a
client by configured credential and only ever sees this interface, so
callers receive ``str`` or an async iterator of ``StreamChunk`` no matter
which SDK answered.
"""

from __future__ import annotations

import abc
from dataclasses import dataclass
from typing import AsyncIterator, Dict, List, Literal

from .config import Provider

Role = Literal["system", "user", "assistant"]


@dataclass(frozen=True)
class LLMMessage:
    """A role-tagged message sent to a provider."""
    role: Role
    content: str

    def to_dict(self) -> Dict[str, str]:
        return {"role": self.role, "content": self.content}


@dataclass(frozen=True)
class StreamChunk:
    """One piece of a streamed reply. The last chunk has ``finished=True``."""
    content: str
    finished: bool
    provider: Provider


def split_system(messages: List[LLMMessage]) -> tuple[str, List[LLMMessage]]:
    """Separate system prompts from the conversational turns.

    Providers that take the system prompt out-of-band (Anthropic, Google)
    use this; multiple system messages are joined with blank lines.
    """
    system = "\n\n".join(m.content for m in messages if m.role == "system")
    return system, [m for m in messages if m.role != "system"]


class LLMClient(abc.ABC):
    """Abstract base class for all provider clients.

    Concrete implementations receive the API key and model name in their
    constructor and translate ``LLMMessage`` lists into SDK calls.
    """

    provider: Provider

    def __init__(self, api_key: str, model: str, timeout: float = 60.0) -> None:
        self.api_key = api_key
        self.model = model
        self.timeout = timeout

    @abc.abstractmethod
    async def generate(
        self,
        messages: List[LLMMessage],
        *,
        temperature: float = 0.7,
        max_tokens: int = 1000,
    ) -> str:
        """Return the full text reply for ``messages``."""

    @abc.abstractmethod
    def stream(
        self,
        messages: List[LLMMessage],
        *,
        temperature: float = 0.7,
        max_tokens: int = 1000,
    ) -> AsyncIterator[StreamChunk]:
        """Yield the reply incrementally, ending with a finished chunk."""

    async def aclose(self) -> None:
        """Release network resources held by the client."""
