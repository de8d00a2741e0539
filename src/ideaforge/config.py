"""Configuration management for the ideaforge assistant.

Credentials and engine knobs live in an explicit ``Config`` object that is
passed into the AI service and the conversation engine. Nothing here is a
process-wide singleton; ``load_config`` only builds a fresh object.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Mapping, Optional


class Provider(str, Enum):
    """Hosted LLM providers the assistant can talk to."""
    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    GOOGLE = "google"


# Resolution order when no provider is requested explicitly
PROVIDER_ORDER = [Provider.OPENAI, Provider.ANTHROPIC, Provider.GOOGLE]

DEFAULT_MODELS: Dict[Provider, str] = {
    Provider.OPENAI: "gpt-4o-mini",
    Provider.ANTHROPIC: "claude-3-5-sonnet-20241022",
    Provider.GOOGLE: "gemini-1.5-flash",
}

MIN_KEY_LENGTH = 10


class EngineMode(str, Enum):
    """How the conversation engine produces assistant replies.

    - RULES: static question bank, no provider calls at all
    - AI: advice, extraction, suggestions and summaries from a provider
    """
    RULES = "rules"
    AI = "ai"


class CompletionPolicyName(str, Enum):
    """Which signal marks a topic as completed."""
    SUBSTANCE = "substance"
    EXTRACTION = "extraction"


@dataclass
class ProviderCredentials:
    """API keys keyed by provider. Never sent anywhere but the provider itself."""
    openai_api_key: Optional[str] = None
    anthropic_api_key: Optional[str] = None
    google_api_key: Optional[str] = None

    def key_for(self, provider: Provider) -> Optional[str]:
        return {
            Provider.OPENAI: self.openai_api_key,
            Provider.ANTHROPIC: self.anthropic_api_key,
            Provider.GOOGLE: self.google_api_key,
        }[Provider(provider)]

    def is_configured(self, provider: Provider) -> bool:
        key = self.key_for(provider)
        return bool(key) and len(key.strip()) > MIN_KEY_LENGTH

    def configured_providers(self) -> List[Provider]:
        return [p for p in PROVIDER_ORDER if self.is_configured(p)]

    def has_any(self) -> bool:
        return bool(self.configured_providers())

    def masked(self, provider: Provider) -> str:
        """Return the key with everything after the first 8 characters hidden."""
        key = self.key_for(provider) or ""
        if len(key) <= 8:
            return key
        return key[:8] + "•" * min(len(key) - 8, 20)

    @classmethod
    def from_mapping(cls, keys: Mapping[str, Optional[str]]) -> "ProviderCredentials":
        """Build credentials from a ``{"openai": "...", ...}`` mapping."""
        return cls(
            openai_api_key=keys.get(Provider.OPENAI.value),
            anthropic_api_key=keys.get(Provider.ANTHROPIC.value),
            google_api_key=keys.get(Provider.GOOGLE.value),
        )


@dataclass
class ProviderSettings:
    """Per-provider model selection."""
    provider: Provider
    model: str


def _default_provider_settings() -> Dict[Provider, ProviderSettings]:
    return {p: ProviderSettings(provider=p, model=DEFAULT_MODELS[p]) for p in PROVIDER_ORDER}


@dataclass
class EngineConfig:
    """Knobs for the conversation engine.

    Attributes:
        mode: Reply strategy (static rules or provider-backed)
        completion_policy: Topic completion strategy; None picks the mode's default
        min_substance_chars: Answer length that counts as substantive
        suggestion_probability: Chance a provider-backed turn also asks for feature ideas
        summary_interval: Regenerate the rolling summary every N history messages
        extraction_window: Messages fed to knowledge extraction
        recent_context_window: Messages quoted back to the advisor prompt
        max_history: Maximum chat messages retained per engine
    """
    mode: EngineMode = EngineMode.AI
    completion_policy: Optional[CompletionPolicyName] = None
    min_substance_chars: int = 50
    suggestion_probability: float = 0.3
    summary_interval: int = 5
    extraction_window: int = 4
    recent_context_window: int = 6
    max_history: int = 200

    def effective_policy(self) -> CompletionPolicyName:
        """The completion policy in force: explicit, else substance for rules and extraction for ai."""
        if self.completion_policy is not None:
            return CompletionPolicyName(self.completion_policy)
        if self.mode == EngineMode.RULES:
            return CompletionPolicyName.SUBSTANCE
        return CompletionPolicyName.EXTRACTION


@dataclass
class Config:
    """Main configuration object."""
    credentials: ProviderCredentials = field(default_factory=ProviderCredentials)
    default_provider: Optional[Provider] = None
    providers: Dict[Provider, ProviderSettings] = field(default_factory=_default_provider_settings)
    engine: EngineConfig = field(default_factory=EngineConfig)
    request_timeout: float = 60.0

    def resolve_provider(self, requested: Optional[Provider] = None) -> Optional[Provider]:
        """Pick the provider to call.

        An explicitly requested provider wins when it has a key, then the
        configured default, then the first configured provider in order.
        """
        for candidate in (requested, self.default_provider):
            if candidate is not None and self.credentials.is_configured(candidate):
                return Provider(candidate)
        configured = self.credentials.configured_providers()
        return configured[0] if configured else None

    def model_for(self, provider: Provider) -> str:
        settings = self.providers.get(Provider(provider))
        return settings.model if settings else DEFAULT_MODELS[Provider(provider)]


def _enum_from_env(env: Mapping[str, str], name: str, enum_cls, default):
    raw = env.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return enum_cls(raw.strip().lower())
    except ValueError:
        allowed = ", ".join(e.value for e in enum_cls)
        raise ValueError(f"{name}={raw!r} is not one of: {allowed}") from None


def load_config(env: Optional[Mapping[str, str]] = None) -> Config:
    """Load configuration from environment variables.

    Args:
        env: Mapping to read from. Defaults to ``os.environ``.

    Returns:
        Config object with values from the environment and defaults elsewhere.

    Raises:
        ValueError: If an enum or numeric variable holds an invalid value.
    """
    env = os.environ if env is None else env

    credentials = ProviderCredentials(
        openai_api_key=env.get("OPENAI_API_KEY") or None,
        anthropic_api_key=env.get("ANTHROPIC_API_KEY") or None,
        google_api_key=env.get("GOOGLE_API_KEY") or None,
    )

    engine = EngineConfig(
        mode=_enum_from_env(env, "IDEAFORGE_MODE", EngineMode, EngineMode.AI),
        completion_policy=_enum_from_env(env, "IDEAFORGE_COMPLETION_POLICY", CompletionPolicyName, None),
    )

    if env.get("IDEAFORGE_MIN_SUBSTANCE_CHARS"):
        try:
            engine.min_substance_chars = int(env["IDEAFORGE_MIN_SUBSTANCE_CHARS"])
        except ValueError:
            raise ValueError("IDEAFORGE_MIN_SUBSTANCE_CHARS must be an integer") from None

    if env.get("IDEAFORGE_SUGGESTION_PROBABILITY"):
        try:
            probability = float(env["IDEAFORGE_SUGGESTION_PROBABILITY"])
        except ValueError:
            raise ValueError("IDEAFORGE_SUGGESTION_PROBABILITY must be a number") from None
        if not 0.0 <= probability <= 1.0:
            raise ValueError("IDEAFORGE_SUGGESTION_PROBABILITY must be between 0 and 1")
        engine.suggestion_probability = probability

    return Config(
        credentials=credentials,
        default_provider=_enum_from_env(env, "IDEAFORGE_PROVIDER", Provider, None),
        engine=engine,
    )
