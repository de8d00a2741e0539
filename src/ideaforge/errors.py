"""Error taxonomy for the conversation and extraction workflow.

None of these are fatal to the process. The conversation engine converts
provider failures into chat messages and swallows extraction/summary
failures after logging them.
"""

from __future__ import annotations

from typing import Optional


class IdeaForgeError(Exception):
    """Base class for all ideaforge errors."""


class ProviderUnavailable(IdeaForgeError):
    """No credential is configured for the requested (or any) provider."""

    def __init__(self, message: str = "No AI provider is configured", provider: Optional[str] = None) -> None:
        super().__init__(message)
        self.provider = provider


class ProviderError(IdeaForgeError):
    """Network or API failure reported by a provider SDK."""

    def __init__(self, message: str, provider: Optional[str] = None) -> None:
        super().__init__(message)
        self.provider = provider


class ExtractionParseError(IdeaForgeError):
    """The provider returned text that is not the expected JSON payload."""

    def __init__(self, message: str, raw_response: str = "") -> None:
        super().__init__(message)
        self.raw_response = raw_response


class SummaryUpdateError(IdeaForgeError):
    """Regenerating the rolling conversation summary failed."""
