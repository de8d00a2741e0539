"""Append-only store of knowledge entries extracted from conversations.

One store is scoped to a project and shared by the conversation engine of
whichever stage is active and the UI layer that displays it. Only the
conversation-owning task writes to it.
"""

from __future__ import annotations

import logging
import re
from typing import Iterable, Iterator, List, Optional, Sequence

from ..models import KnowledgeEntry, KnowledgeSource, KnowledgeType

logger = logging.getLogger(__name__)

# (tag, trigger words) checked against whole words of the content
TAG_KEYWORDS = (
    ("mobile", ("mobile", "app", "smartphone")),
    ("web", ("web", "website", "online")),
    ("b2b", ("business", "company", "enterprise")),
    ("b2c", ("customer", "user", "consumer")),
    ("ai", ("ai", "artificial", "intelligence", "machine", "learning")),
)

_WORD_PATTERN = re.compile(r"[a-z0-9]+")


def generate_tags(content: str) -> List[str]:
    """Derive topical tags from content using the fixed keyword table."""
    words = set(_WORD_PATTERN.findall(content.lower()))
    return [tag for tag, triggers in TAG_KEYWORDS if words.intersection(triggers)]


def format_title(key: str) -> str:
    """Turn ``businessIdea`` or ``business_idea`` into ``Business Idea``."""
    spaced = re.sub(r"([A-Z])", r" \1", key).replace("_", " ")
    return " ".join(word.capitalize() for word in spaced.split())


class KnowledgeStore:
    """Collection of ``KnowledgeEntry`` objects with provenance rules.

    An ``ai_analysis`` entry is only added when nothing of the same
    (type, stage) is known yet, so analyses stay unique per pair. User
    input and AI suggestions are always appended, since a restated answer
    still counts as evidence.
    """

    def __init__(self, entries: Optional[Iterable[KnowledgeEntry]] = None) -> None:
        self._entries: List[KnowledgeEntry] = []
        for entry in entries or []:
            self.add(entry)

    def add(self, entry: KnowledgeEntry) -> bool:
        """Append an entry. Returns False if dropped as a duplicate analysis."""
        if entry.source == KnowledgeSource.AI_ANALYSIS and self.has(entry.type, entry.stage):
            logger.debug("Skipping duplicate %s analysis for stage %s", entry.type.value, entry.stage)
            return False
        self._entries.append(entry)
        return True

    def record(
        self,
        *,
        type: KnowledgeType,
        title: str,
        content: str,
        source: KnowledgeSource,
        stage: str,
        confidence: float,
        tags: Optional[Sequence[str]] = None,
    ) -> Optional[KnowledgeEntry]:
        """Build and add an entry, tagging it from its content if no tags given."""
        entry = KnowledgeEntry(
            type=type,
            title=title,
            content=content,
            source=source,
            stage=stage,
            confidence=confidence,
            tags=list(tags) if tags is not None else generate_tags(content),
        )
        return entry if self.add(entry) else None

    def has(self, type: KnowledgeType, stage: str) -> bool:
        return any(e.type == type and e.stage == stage for e in self._entries)

    def for_stage(self, stage: str) -> List[KnowledgeEntry]:
        return [e for e in self._entries if e.stage == stage]

    def of_type(self, type: KnowledgeType, stage: Optional[str] = None) -> List[KnowledgeEntry]:
        return [e for e in self._entries if e.type == type and (stage is None or e.stage == stage)]

    def __iter__(self) -> Iterator[KnowledgeEntry]:
        return iter(list(self._entries))

    def __len__(self) -> int:
        return len(self._entries)
