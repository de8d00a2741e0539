"""Pydantic models shared by the workflow, the AI service and the CLI."""

from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

Scalar = Union[str, int, float, bool]


def new_id() -> str:
    return uuid.uuid4().hex[:12]


class MessageRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


class MessageType(str, Enum):
    QUESTION = "question"
    SUGGESTION = "suggestion"
    SUMMARY = "summary"
    ERROR = "error"


class Priority(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class SuggestionStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"


class KnowledgeType(str, Enum):
    BUSINESS_IDEA = "business_idea"
    PROBLEM_STATEMENT = "problem_statement"
    TARGET_AUDIENCE = "target_audience"
    SOLUTION = "solution"
    UNIQUE_VALUE = "unique_value"
    FEATURE = "feature"
    INSIGHT = "insight"


class KnowledgeSource(str, Enum):
    USER_INPUT = "user_input"
    AI_ANALYSIS = "ai_analysis"
    AI_SUGGESTION = "ai_suggestion"


class FeatureSuggestion(BaseModel):
    """A proposed product feature with a one-way accept/decline lifecycle."""

    id: str = Field(default_factory=new_id)
    title: str
    description: str = ""
    reasoning: str = ""
    priority: Priority = Priority.MEDIUM
    status: SuggestionStatus = SuggestionStatus.PENDING
    category: str = "general"

    @property
    def is_pending(self) -> bool:
        return self.status == SuggestionStatus.PENDING

    def resolve(self, status: SuggestionStatus) -> bool:
        """Move a pending suggestion to a terminal status.

        Returns:
            True if the status changed, False if the suggestion was already
            accepted or declined (terminal states are never left).
        """
        if status == SuggestionStatus.PENDING:
            raise ValueError("A suggestion can only be resolved to accepted or declined")
        if not self.is_pending:
            return False
        self.status = status
        return True


class KnowledgeEntry(BaseModel):
    """A durable, typed fact extracted from the conversation."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_id)
    type: KnowledgeType
    title: str
    content: str
    source: KnowledgeSource
    stage: str
    timestamp: datetime = Field(default_factory=datetime.now)
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    tags: List[str] = Field(default_factory=list)


class MessageMetadata(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Optional[MessageType] = None
    stage: Optional[str] = None
    suggestions: List[FeatureSuggestion] = Field(default_factory=list)
    extracted_data: Dict[str, Scalar] = Field(default_factory=dict)
    error_code: Optional[str] = None


class ChatMessage(BaseModel):
    """One chat turn. Only the status of embedded suggestions ever changes."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_id)
    role: MessageRole
    content: str
    timestamp: datetime = Field(default_factory=datetime.now)
    metadata: Optional[MessageMetadata] = None

    @property
    def suggestions(self) -> List[FeatureSuggestion]:
        return self.metadata.suggestions if self.metadata else []

    @property
    def is_error(self) -> bool:
        return bool(self.metadata and self.metadata.type == MessageType.ERROR)


class ConversationContext(BaseModel):
    """Running state for one (project, stage) conversation."""

    stage: str
    collected_data: Dict[str, Scalar] = Field(default_factory=dict)
    completed_topics: List[str] = Field(default_factory=list)
    suggestions: List[FeatureSuggestion] = Field(default_factory=list)

    def is_completed(self, topic: str) -> bool:
        return topic in self.completed_topics

    def mark_completed(self, topic: str) -> bool:
        """Record a topic as done, keeping discovery order. Returns True if new."""
        if topic in self.completed_topics:
            return False
        self.completed_topics.append(topic)
        return True

    def pending_suggestions(self) -> List[FeatureSuggestion]:
        return [s for s in self.suggestions if s.is_pending]


class StageData(BaseModel):
    """Archived payload of a stage, keyed by stage id on the project."""

    completed: bool = False
    topics: Dict[str, str] = Field(default_factory=dict)
    accepted_features: List[str] = Field(default_factory=list)


class SparkData(StageData):
    idea_description: str = ""
    problem_statement: str = ""
    target_audience: str = ""
    solution: str = ""
    unique_value: str = ""


class ProjectData(BaseModel):
    spark: Optional[SparkData] = None
    validate_: Optional[StageData] = Field(default=None, alias="validate")
    design: Optional[StageData] = None
    build: Optional[StageData] = None
    code: Optional[StageData] = None
    connect: Optional[StageData] = None
    launch: Optional[StageData] = None

    model_config = ConfigDict(populate_by_name=True)

    @staticmethod
    def _field_name(stage: str) -> str:
        name = "validate_" if stage == "validate" else stage
        if name not in ProjectData.model_fields:
            raise KeyError(f"Unknown stage: {stage}")
        return name

    def get(self, stage: str) -> Optional[StageData]:
        return getattr(self, self._field_name(stage))

    def set(self, stage: str, data: StageData) -> None:
        setattr(self, self._field_name(stage), data)

    def completed_stages(self) -> List[str]:
        stages = []
        for name in ProjectData.model_fields:
            data = getattr(self, name)
            if data is not None and data.completed:
                stages.append("validate" if name == "validate_" else name)
        return stages


class Project(BaseModel):
    id: str = Field(default_factory=new_id)
    name: str
    description: str = ""
    stage: str = "spark"
    progress: int = Field(default=0, ge=0, le=100)
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)
    data: ProjectData = Field(default_factory=ProjectData)


class StageSession(BaseModel):
    """Saved conversation state of one stage engine."""

    context: ConversationContext
    summary: str = ""
    messages: List[ChatMessage] = Field(default_factory=list)


class ProjectSession(BaseModel):
    """A project together with its knowledge and stage conversations.

    This is the file format written by ``ProjectWorkflow.save``. Stage ids
    are used as keys throughout, so ``validate`` is serialized by alias.
    """

    project: Project
    knowledge: List[KnowledgeEntry] = Field(default_factory=list)
    stages: Dict[str, StageSession] = Field(default_factory=dict)

    def to_json(self) -> str:
        return self.model_dump_json(indent=2, by_alias=True)

    @classmethod
    def from_json(cls, data: str) -> "ProjectSession":
        return cls.model_validate_json(data)
