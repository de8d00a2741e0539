"""Topic completion strategies and the stage completion gate."""

from __future__ import annotations

import abc
from typing import Any, Callable, Iterable, List, Mapping, Optional, Sequence, Set

from ..config import CompletionPolicyName, EngineConfig
from .stage_registry import Stage, StageId, TopicConfig, stage_config

# Extracted values shorter than this are not treated as evidence
MIN_INSIGHT_CHARS = 10


def is_stage_complete(stage: StageId, completed_topics: Iterable[str]) -> bool:
    """True iff every required topic of ``stage`` is in ``completed_topics``.

    Unknown stage ids are never complete.
    """
    try:
        resolved = Stage(stage)
    except ValueError:
        return False
    done = set(completed_topics)
    return all(topic in done for topic in stage_config(resolved).required_topics)


class CompletionPolicy(abc.ABC):
    """Decides which turns mark a topic as completed."""

    name: CompletionPolicyName

    @abc.abstractmethod
    def completes_on_answer(self, topic: TopicConfig, answer: str) -> bool:
        """Whether the user's answer to ``topic`` completes it by itself."""

    @abc.abstractmethod
    def completed_by_extraction(self, topics: Sequence[TopicConfig], insights: Mapping[str, Any]) -> List[str]:
        """Topic ids an extraction result completes."""


class SubstanceThreshold(CompletionPolicy):
    """A topic completes when the answer is at least ``min_chars`` long.

    Short replies ("Yes.") re-ask the same question instead of advancing.
    """

    name = CompletionPolicyName.SUBSTANCE

    def __init__(self, min_chars: int = 50) -> None:
        self.min_chars = min_chars

    def is_substantive(self, answer: str) -> bool:
        return len(answer.strip()) >= self.min_chars

    def completes_on_answer(self, topic: TopicConfig, answer: str) -> bool:
        return self.is_substantive(answer)

    def completed_by_extraction(self, topics: Sequence[TopicConfig], insights: Mapping[str, Any]) -> List[str]:
        return []


class ExtractionSignal(CompletionPolicy):
    """A topic completes once extraction returns a real value for it."""

    name = CompletionPolicyName.EXTRACTION

    def completes_on_answer(self, topic: TopicConfig, answer: str) -> bool:
        return False

    def completed_by_extraction(self, topics: Sequence[TopicConfig], insights: Mapping[str, Any]) -> List[str]:
        completed = []
        for topic in topics:
            value = insights.get(topic.data_key)
            if isinstance(value, str) and len(value.strip()) > MIN_INSIGHT_CHARS:
                completed.append(topic.id)
        return completed


def make_policy(config: EngineConfig) -> CompletionPolicy:
    if config.effective_policy() == CompletionPolicyName.SUBSTANCE:
        return SubstanceThreshold(config.min_substance_chars)
    return ExtractionSignal()


StageListener = Callable[[Stage], None]


class StageCompletionGate:
    """Edge-triggered completion check for a sequence of stages.

    ``check`` returns True exactly once per stage: on the first call where
    all of its required topics are covered. Listeners are notified at that
    moment so the project layer can advance.
    """

    def __init__(self, listener: Optional[StageListener] = None) -> None:
        self._listeners: List[StageListener] = [listener] if listener else []
        self._fired: Set[Stage] = set()

    def add_listener(self, listener: StageListener) -> None:
        self._listeners.append(listener)

    def mark_fired(self, stage: StageId) -> None:
        """Treat ``stage`` as already completed so it never notifies."""
        self._fired.add(Stage(stage))

    def has_fired(self, stage: StageId) -> bool:
        try:
            return Stage(stage) in self._fired
        except ValueError:
            return False

    def check(self, stage: StageId, completed_topics: Iterable[str]) -> bool:
        if not is_stage_complete(stage, completed_topics):
            return False
        resolved = Stage(stage)
        if resolved in self._fired:
            return False
        self._fired.add(resolved)
        for listener in self._listeners:
            listener(resolved)
        return True
