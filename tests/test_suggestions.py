"""Tests for feature suggestion generators."""

import random

import pytest

from ideaforge.errors import ProviderError
from ideaforge.models import Priority, SuggestionStatus
from ideaforge.workflow.suggestions import (
    BusinessContext,
    LLMSuggester,
    RuleBasedSuggester,
    always,
    never,
    random_gate,
)

FITNESS_APP = "A mobile app that lets people book fitness classes"


class TestRuleBasedSuggester:
    """Tests for keyword rules."""

    def test_mobile_booking_solution(self):
        suggestions = RuleBasedSuggester().suggest_sync(FITNESS_APP, "solution")
        assert [s.title for s in suggestions] == ["Push Notifications", "Calendar Integration"]
        assert all(s.status == SuggestionStatus.PENDING for s in suggestions)
        assert suggestions[0].priority == Priority.HIGH
        assert suggestions[1].category == "integration"

    def test_keywords_match_word_prefixes(self):
        suggestions = RuleBasedSuggester().suggest_sync("Online booking and scheduling for salons", "solution")
        assert [s.title for s in suggestions] == ["Calendar Integration"]

    def test_rules_are_scoped_to_topic(self):
        assert RuleBasedSuggester().suggest_sync(FITNESS_APP, "business_idea") == []

    def test_business_audience(self):
        suggestions = RuleBasedSuggester().suggest_sync("Small business owners who run studios", "target_audience")
        assert [s.title for s in suggestions] == ["Team Management"]

    def test_each_call_builds_fresh_ids(self):
        suggester = RuleBasedSuggester()
        first = suggester.suggest_sync(FITNESS_APP, "solution")
        second = suggester.suggest_sync(FITNESS_APP, "solution")
        assert {s.id for s in first}.isdisjoint(s.id for s in second)

    @pytest.mark.asyncio
    async def test_async_suggest_uses_context_topic(self):
        suggestions = await RuleBasedSuggester().suggest(FITNESS_APP, "", BusinessContext(stage="spark", topic="solution"))
        assert len(suggestions) == 2


class TestLLMSuggester:
    """Tests for provider-backed suggestions."""

    @pytest.mark.asyncio
    async def test_parses_and_caps_suggestions(self, ai_service, fake_client):
        fake_client.replies["suggestions"] = (
            '```json\n[{"title": "Loyalty Program", "description": "Reward regulars", '
            '"reasoning": "Gyms rely on retention", "priority": "high", "category": "retention"}, '
            '{"title": "Reviews"}, {"title": "Waitlists"}]\n```'
        )
        suggester = LLMSuggester(ai_service)
        suggestions = await suggester.suggest("I run a gym", "Great!", BusinessContext(stage="spark"))
        assert [s.title for s in suggestions] == ["Loyalty Program", "Reviews"]
        assert suggestions[0].priority == Priority.HIGH
        assert suggestions[1].category == "general"
        assert all(s.is_pending for s in suggestions)

    def test_skips_malformed_items(self, ai_service):
        suggester = LLMSuggester(ai_service)
        parsed = suggester.parse('[{"title": "Bad", "priority": "urgent"}, "text", {"title": " "}, {"title": "Good"}]')
        assert [s.title for s in parsed] == ["Good"]

    def test_non_array_reply(self, ai_service):
        assert LLMSuggester(ai_service).parse("I would suggest adding reviews.") == []

    @pytest.mark.asyncio
    async def test_provider_failure_yields_nothing(self, ai_service, fake_client):
        fake_client.errors["suggestions"] = ProviderError("rate limited", provider="openai")
        suggestions = await LLMSuggester(ai_service).suggest("I run a gym", "Great!", BusinessContext(stage="spark"))
        assert suggestions == []

    @pytest.mark.asyncio
    async def test_prompt_includes_exchange(self, ai_service, fake_client):
        context = BusinessContext(stage="spark", summary="Current Stage: spark")
        await LLMSuggester(ai_service).suggest("I run a gym", "Tell me more", context)
        [messages] = fake_client.calls_of("suggestions")
        assert "I run a gym" in messages[1].content
        assert "Tell me more" in messages[1].content
        assert "Current Stage: spark" in messages[1].content


class TestGates:
    """Tests for suggestion gates."""

    def test_fixed_gates(self):
        assert always()
        assert not never()

    def test_random_gate_extremes(self):
        rng = random.Random(42)
        assert all(random_gate(1.0, rng)() for _ in range(20))
        assert not any(random_gate(0.0, rng)() for _ in range(20))
