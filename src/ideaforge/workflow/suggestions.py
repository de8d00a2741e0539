"""Feature suggestion generation.

Two interchangeable generators propose ``FeatureSuggestion`` objects for a
conversation turn:

- ``RuleBasedSuggester`` scans the user's answer for fixed keywords per
  topic. Deterministic, needs no provider, never fails.
- ``LLMSuggester`` asks a provider for up to two JSON suggestions and
  silently drops anything it cannot parse.

Every suggestion starts out pending. Whether a provider-backed turn asks
for suggestions at all is decided by an injectable gate function.
"""

from __future__ import annotations

import abc
import logging
import random
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, List, Optional, Sequence, Tuple

from pydantic import BaseModel, ValidationError

from ..config import Provider
from ..errors import ProviderError, ProviderUnavailable
from ..json_extractor import JSONExtractor
from ..llm_client import LLMMessage
from ..models import FeatureSuggestion, Priority
from ..templates import render_template

if TYPE_CHECKING:
    from ..providers import AIService

logger = logging.getLogger(__name__)

SuggestionGate = Callable[[], bool]


def random_gate(probability: float, rng: Optional[random.Random] = None) -> SuggestionGate:
    """Gate that opens with the given probability on each call."""
    source = rng or random.Random()
    return lambda: source.random() < probability


def always() -> bool:
    return True


def never() -> bool:
    return False


@dataclass(frozen=True)
class BusinessContext:
    """What a generator knows about the conversation when it is asked."""
    stage: str
    topic: Optional[str] = None
    summary: str = ""


class SuggestionGenerator(abc.ABC):
    @abc.abstractmethod
    async def suggest(
        self,
        user_message: str,
        assistant_response: str,
        context: BusinessContext,
    ) -> List[FeatureSuggestion]:
        """Propose features for a turn. Returns an empty list when nothing fits."""


@dataclass(frozen=True)
class SuggestionRule:
    """Propose a feature when the answer to ``topic`` mentions a keyword."""
    topic: str
    keywords: Tuple[str, ...]
    title: str
    description: str
    reasoning: str
    priority: Priority
    category: str

    def matches(self, topic: Optional[str], text: str) -> bool:
        if topic != self.topic:
            return False
        pattern = r"\b(?:" + "|".join(re.escape(k) for k in self.keywords) + r")\w*"
        return re.search(pattern, text, re.IGNORECASE) is not None

    def build(self) -> FeatureSuggestion:
        return FeatureSuggestion(
            title=self.title,
            description=self.description,
            reasoning=self.reasoning,
            priority=self.priority,
            category=self.category,
        )


# Keywords match as word prefixes, so "book" covers "booking" and "books"
DEFAULT_RULES: Tuple[SuggestionRule, ...] = (
    SuggestionRule(
        topic="solution",
        keywords=("mobile",),
        title="Push Notifications",
        description="Send timely reminders and updates to keep users engaged",
        reasoning="Since you mentioned mobile functionality, push notifications could increase user retention",
        priority=Priority.HIGH,
        category="engagement",
    ),
    SuggestionRule(
        topic="solution",
        keywords=("book", "schedul"),
        title="Calendar Integration",
        description="Sync with Google Calendar, Outlook, and other calendar apps",
        reasoning="Booking systems work better when integrated with users' existing calendars",
        priority=Priority.HIGH,
        category="integration",
    ),
    SuggestionRule(
        topic="target_audience",
        keywords=("business",),
        title="Team Management",
        description="Allow multiple team members to manage bookings and settings",
        reasoning="Business customers often need team collaboration features",
        priority=Priority.MEDIUM,
        category="collaboration",
    ),
)


class RuleBasedSuggester(SuggestionGenerator):
    """Keyword rules per topic; the fallback when no provider is used."""

    def __init__(self, rules: Sequence[SuggestionRule] = DEFAULT_RULES) -> None:
        self.rules = tuple(rules)

    def suggest_sync(self, user_message: str, topic: Optional[str]) -> List[FeatureSuggestion]:
        return [rule.build() for rule in self.rules if rule.matches(topic, user_message)]

    async def suggest(self, user_message: str, assistant_response: str, context: BusinessContext) -> List[FeatureSuggestion]:
        return self.suggest_sync(user_message, context.topic)


class _SuggestionPayload(BaseModel):
    title: str
    description: str = ""
    reasoning: str = ""
    priority: Priority = Priority.MEDIUM
    category: str = "general"


class LLMSuggester(SuggestionGenerator):
    """Ask a provider for feature ideas about the current exchange."""

    def __init__(
        self,
        ai_service: "AIService",
        provider: Optional[Provider] = None,
        max_suggestions: int = 2,
    ) -> None:
        self.ai_service = ai_service
        self.provider = provider
        self.max_suggestions = max_suggestions
        self.extractor = JSONExtractor()

    def _messages(self, user_message: str, assistant_response: str, context: BusinessContext) -> List[LLMMessage]:
        prompt = render_template(
            "suggestion_user.jinja",
            {
                "min_count": 1,
                "max_count": self.max_suggestions,
                "user_message": user_message,
                "assistant_response": assistant_response,
                "business_context": context.summary,
            },
        )
        return [
            LLMMessage("system", render_template("suggestion_system.jinja", {})),
            LLMMessage("user", prompt),
        ]

    def parse(self, response: str) -> List[FeatureSuggestion]:
        """Turn a provider reply into pending suggestions, skipping bad items."""
        data = self.extractor.extract_json(response, expect_type="array")
        if not isinstance(data, list):
            logger.warning("Discarding feature suggestions: reply was not a JSON array")
            return []

        suggestions: List[FeatureSuggestion] = []
        for item in data:
            if not isinstance(item, dict):
                continue
            try:
                payload = _SuggestionPayload.model_validate(item)
            except ValidationError as e:
                logger.warning("Discarding malformed feature suggestion: %s", e.errors()[0].get("msg"))
                continue
            if not payload.title.strip():
                continue
            suggestions.append(FeatureSuggestion(**payload.model_dump()))
            if len(suggestions) >= self.max_suggestions:
                break
        return suggestions

    async def suggest(self, user_message: str, assistant_response: str, context: BusinessContext) -> List[FeatureSuggestion]:
        try:
            response = await self.ai_service.chat_complete(
                self._messages(user_message, assistant_response, context),
                provider=self.provider,
                temperature=0.7,
                max_tokens=400,
            )
        except (ProviderUnavailable, ProviderError) as e:
            logger.warning("Error generating feature suggestions: %s", e)
            return []
        return self.parse(str(response))
