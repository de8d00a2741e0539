"""Tests for configuration loading."""

import pytest

from ideaforge.config import (
    CompletionPolicyName,
    Config,
    EngineMode,
    Provider,
    ProviderCredentials,
    load_config,
)


class TestProviderCredentials:
    """Tests for credential checks."""

    def test_short_keys_do_not_count(self):
        creds = ProviderCredentials(openai_api_key="sk-short", anthropic_api_key="sk-ant-0123456789")
        assert not creds.is_configured(Provider.OPENAI)
        assert creds.configured_providers() == [Provider.ANTHROPIC]
        assert creds.has_any()

    def test_masked(self):
        creds = ProviderCredentials(openai_api_key="sk-proj-" + "a" * 40)
        masked = creds.masked(Provider.OPENAI)
        assert masked.startswith("sk-proj-")
        assert masked.endswith("•" * 20)
        assert len(masked) == 28

    def test_from_mapping(self):
        creds = ProviderCredentials.from_mapping({"google": "AIza0123456789"})
        assert creds.configured_providers() == [Provider.GOOGLE]


class TestResolveProvider:
    """Provider resolution order."""

    def test_first_configured_in_order(self):
        config = Config(credentials=ProviderCredentials(
            anthropic_api_key="sk-ant-0123456789", google_api_key="AIza0123456789"))
        assert config.resolve_provider() == Provider.ANTHROPIC

    def test_requested_provider_wins(self):
        config = Config(credentials=ProviderCredentials(
            anthropic_api_key="sk-ant-0123456789", google_api_key="AIza0123456789"))
        assert config.resolve_provider(Provider.GOOGLE) == Provider.GOOGLE

    def test_unconfigured_request_falls_back(self):
        config = Config(credentials=ProviderCredentials(google_api_key="AIza0123456789"))
        assert config.resolve_provider(Provider.OPENAI) == Provider.GOOGLE

    def test_nothing_configured(self):
        assert Config().resolve_provider() is None

    def test_default_models(self):
        assert Config().model_for(Provider.OPENAI) == "gpt-4o-mini"


class TestLoadConfig:
    """Tests for load_config."""

    def test_defaults(self):
        config = load_config({})
        assert config.engine.mode == EngineMode.AI
        assert config.engine.completion_policy is None
        assert config.engine.effective_policy() == CompletionPolicyName.EXTRACTION
        assert not config.credentials.has_any()

    def test_reads_environment(self):
        config = load_config({
            "OPENAI_API_KEY": "sk-test-0123456789",
            "IDEAFORGE_PROVIDER": "OpenAI",
            "IDEAFORGE_MODE": "rules",
            "IDEAFORGE_MIN_SUBSTANCE_CHARS": "30",
            "IDEAFORGE_SUGGESTION_PROBABILITY": "0.5",
        })
        assert config.default_provider == Provider.OPENAI
        assert config.engine.mode == EngineMode.RULES
        assert config.engine.effective_policy() == CompletionPolicyName.SUBSTANCE
        assert config.engine.min_substance_chars == 30
        assert config.engine.suggestion_probability == 0.5

    def test_invalid_mode(self):
        with pytest.raises(ValueError, match="IDEAFORGE_MODE"):
            load_config({"IDEAFORGE_MODE": "magic"})

    def test_invalid_probability(self):
        with pytest.raises(ValueError):
            load_config({"IDEAFORGE_SUGGESTION_PROBABILITY": "2"})
