"""Project-level orchestration across workflow stages.

``ProjectWorkflow`` owns one ``ConversationEngine`` per stage, shares a
single knowledge store between them and reacts to stage completion:
progress is recomputed, the finished stage is archived on the project and
the workflow moves on to the next stage.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from ..config import Config, Provider
from ..models import ChatMessage, Project, ProjectSession, SparkData, StageData
from ..providers import AIService
from .completion import StageCompletionGate
from .conversation_engine import ConversationEngine, TokenCallback
from .knowledge_store import KnowledgeStore
from .stage_registry import WORKFLOW_STAGES, Stage, next_stage
from .suggestions import SuggestionGate

logger = logging.getLogger(__name__)

# Archived spark fields and the collected-data keys they come from
SPARK_FIELDS = {
    "idea_description": "businessIdea",
    "problem_statement": "problemStatement",
    "target_audience": "targetAudience",
    "solution": "solution",
    "unique_value": "uniqueValue",
}


@dataclass
class TurnResult:
    """Outcome of one user turn at the project level.

    Attributes:
        message: The assistant reply
        stage_completed: Stage finished by this turn, if any
        advanced_to: Stage the workflow moved to, if any
        summary: Summary shown for the finished stage
    """
    message: ChatMessage
    stage_completed: Optional[Stage] = None
    advanced_to: Optional[Stage] = None
    summary: Optional[ChatMessage] = None


class ProjectWorkflow:
    """Drives a project through the stage conversations.

    Example:
        workflow = ProjectWorkflow(Project(name="Salon booking"), load_config())
        print(workflow.start().content)
        result = await workflow.send("An app that lets salons take bookings")
    """

    def __init__(
        self,
        project: Project,
        config: Config,
        ai_service: Optional[AIService] = None,
        knowledge: Optional[KnowledgeStore] = None,
        suggestion_gate: Optional[SuggestionGate] = None,
        provider: Optional[Provider] = None,
    ):
        self.project = project
        self.config = config
        self.ai_service = ai_service
        self.knowledge = knowledge or KnowledgeStore()
        self.suggestion_gate = suggestion_gate
        self.provider = provider

        self.gate = StageCompletionGate(self._handle_stage_complete)
        self._engines: Dict[Stage, ConversationEngine] = {}
        self._on_stage_change: Optional[Callable[[Stage, Stage], None]] = None

        for stage_id in project.data.completed_stages():
            self.gate.mark_fired(stage_id)

    @property
    def current_stage(self) -> Stage:
        return Stage(self.project.stage)

    @property
    def is_complete(self) -> bool:
        return len(self.project.data.completed_stages()) == len(WORKFLOW_STAGES)

    @property
    def engine(self) -> ConversationEngine:
        """Engine for the current stage, created on first use."""
        return self.engine_for(self.current_stage)

    def engine_for(self, stage: Stage) -> ConversationEngine:
        stage = Stage(stage)
        if stage not in self._engines:
            self._engines[stage] = ConversationEngine(
                stage,
                self.knowledge,
                self.config,
                self.ai_service,
                suggestion_gate=self.suggestion_gate,
                provider=self.provider,
            )
            # Engines share one AI service so clients are built once
            if self.ai_service is None:
                self.ai_service = self._engines[stage].ai_service
        return self._engines[stage]

    def set_on_stage_change(self, callback: Callable[[Stage, Stage], None]) -> None:
        """Set callback for stage changes.

        Args:
            callback: Function(old_stage, new_stage) called on stage changes
        """
        self._on_stage_change = callback

    def start(self) -> ChatMessage:
        return self.engine.greeting()

    async def send(self, utterance: str, on_token: Optional[TokenCallback] = None) -> TurnResult:
        """Run one user turn on the current stage and advance if it finished."""
        stage = self.current_stage
        engine = self.engine_for(stage)
        message = await engine.respond(utterance, on_token=on_token)

        if not self.gate.check(stage, engine.context.completed_topics):
            return TurnResult(message=message)

        summary = engine.summarize()
        advanced = self.current_stage if self.current_stage != stage else None
        return TurnResult(message=message, stage_completed=stage, advanced_to=advanced, summary=summary)

    def _handle_stage_complete(self, stage: Stage) -> None:
        engine = self._engines.get(stage)
        if engine is None:
            return
        self.archive_stage(stage, engine)

        completed_before = len([s for s in self.project.data.completed_stages() if s != stage.value])
        progress = round(100 * (completed_before + 1) / len(WORKFLOW_STAGES))
        self.project.progress = max(self.project.progress, min(progress, 100))

        following = next_stage(stage)
        if following is not None:
            self.project.stage = following.value
            logger.info("Stage %s complete, advancing to %s", stage.value, following.value)
            if self._on_stage_change:
                self._on_stage_change(stage, following)
        else:
            logger.info("Final stage %s complete", stage.value)
        self.project.updated_at = datetime.now()

    def archive_stage(self, stage: Stage, engine: ConversationEngine) -> StageData:
        """Store the stage's collected data on the project as completed."""
        collected = {k: str(v) for k, v in engine.context.collected_data.items()}
        features = engine.accepted_features()
        if stage == Stage.SPARK:
            data: StageData = SparkData(
                completed=True,
                topics=collected,
                accepted_features=features,
                **{field: collected.get(key, "") for field, key in SPARK_FIELDS.items()},
            )
        else:
            data = StageData(completed=True, topics=collected, accepted_features=features)
        self.project.data.set(stage.value, data)
        return data

    def _engine_owning(self, suggestion_id: str) -> ConversationEngine:
        # Suggestions from earlier stages stay resolvable after advancing
        for engine in self._engines.values():
            try:
                engine.history.owner_of(suggestion_id)
            except KeyError:
                continue
            return engine
        raise KeyError(f"Unknown suggestion: {suggestion_id}")

    def accept_suggestion(self, suggestion_id: str, message_id: Optional[str] = None) -> Optional[ChatMessage]:
        return self._engine_owning(suggestion_id).accept_suggestion(suggestion_id, message_id)

    def decline_suggestion(self, suggestion_id: str, message_id: Optional[str] = None) -> Optional[ChatMessage]:
        return self._engine_owning(suggestion_id).decline_suggestion(suggestion_id, message_id)

    def messages(self) -> List[ChatMessage]:
        return self.engine.messages

    def get_progress(self) -> Dict[str, Any]:
        """Get progress information.

        Returns:
            Dictionary with progress data
        """
        stage = self.current_stage
        engine = self.engine_for(stage)
        topic = engine.current_topic()
        return {
            "current_stage": stage.value,
            "current_stage_name": stage.display_name,
            "current_topic": topic.id if topic else None,
            "completed_topics": list(engine.context.completed_topics),
            "completed_stages": self.project.data.completed_stages(),
            "progress_percent": self.project.progress,
            "knowledge_entries": len(self.knowledge),
            "is_complete": self.is_complete,
        }

    def save(self, path: Path) -> None:
        """Write the project, its knowledge and every stage conversation."""
        session = ProjectSession(
            project=self.project,
            knowledge=list(self.knowledge),
            stages={stage.value: engine.export_state() for stage, engine in self._engines.items()},
        )
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(session.to_json(), encoding="utf-8")

    @classmethod
    def load(cls, path: Path, config: Config, **kwargs: Any) -> "ProjectWorkflow":
        """Resume a saved project mid-stage, with its knowledge and conversations."""
        session = ProjectSession.from_json(path.read_text(encoding="utf-8"))
        workflow = cls(session.project, config, knowledge=KnowledgeStore(session.knowledge), **kwargs)
        for stage_id, state in session.stages.items():
            workflow.engine_for(stage_id).restore_state(state)
        return workflow

    async def aclose(self) -> None:
        if self.ai_service is not None:
            await self.ai_service.aclose()

