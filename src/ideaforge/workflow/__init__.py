"""Stage-driven business planning conversation.

This module turns a free-form chat into structured business knowledge,
one workflow stage at a time:
1. Spark the idea
2. Validate the market
3. Design the business model
4. Plan the build
5. Pick the code stack
6. Connect integrations
7. Launch

Key components:
- ConversationEngine: Produces replies and documents knowledge per stage
- KnowledgeStore: Typed facts with provenance and deduplication
- ConversationHistory: Messages and the suggestions they carry
- StageCompletionGate: Fires once when a stage's topics are covered
- ProjectWorkflow: Advances the project and archives finished stages
"""

from .completion import (
    CompletionPolicy,
    ExtractionSignal,
    StageCompletionGate,
    SubstanceThreshold,
    is_stage_complete,
    make_policy,
)
from .conversation_engine import ConversationEngine
from .conversation_history import ConversationHistory
from .knowledge_store import KnowledgeStore
from .project_workflow import ProjectWorkflow, TurnResult
from .stage_registry import (
    WORKFLOW_STAGES,
    Stage,
    StageConfig,
    TopicConfig,
    calculate_overall_progress,
    next_stage,
    previous_stage,
    required_topics,
    stage_config,
)
from .suggestions import LLMSuggester, RuleBasedSuggester, SuggestionGenerator

__all__ = [
    "CompletionPolicy",
    "ExtractionSignal",
    "StageCompletionGate",
    "SubstanceThreshold",
    "is_stage_complete",
    "make_policy",
    "ConversationEngine",
    "ConversationHistory",
    "KnowledgeStore",
    "ProjectWorkflow",
    "TurnResult",
    "WORKFLOW_STAGES",
    "Stage",
    "StageConfig",
    "TopicConfig",
    "calculate_overall_progress",
    "next_stage",
    "previous_stage",
    "required_topics",
    "stage_config",
    "LLMSuggester",
    "RuleBasedSuggester",
    "SuggestionGenerator",
]
