"""Conversation engine for a single workflow stage.

The engine turns one user utterance into one assistant ``ChatMessage``
and, as side effects, advances topic completion, grows the knowledge
store, attaches feature suggestions and refreshes the rolling summary.

Two reply strategies share the same turn structure:

- RULES mode asks from the static question bank and completes topics on
  substantive answers. It never calls a provider.
- AI mode asks the advisor persona for a reply, then runs structured
  extraction over the recent transcript to document knowledge.

Turns are serialized: concurrent ``respond`` calls queue up in order.
"""

from __future__ import annotations

import logging
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from ..concurrency import TurnGate
from ..config import CompletionPolicyName, Config, EngineMode, Provider
from ..errors import ExtractionParseError, ProviderError, ProviderUnavailable, SummaryUpdateError
from ..llm_client import LLMMessage
from ..models import (
    ChatMessage,
    ConversationContext,
    FeatureSuggestion,
    KnowledgeEntry,
    KnowledgeSource,
    KnowledgeType,
    MessageMetadata,
    MessageRole,
    MessageType,
    StageSession,
    SuggestionStatus,
)
from ..providers import INSIGHT_FIELDS, AIService
from ..templates import render_template
from .completion import CompletionPolicy, is_stage_complete, make_policy
from .conversation_history import ConversationHistory
from .knowledge_store import KnowledgeStore, format_title
from .stage_registry import Stage, StageConfig, StageId, TopicConfig, next_stage, stage_config
from .suggestions import (
    BusinessContext,
    LLMSuggester,
    RuleBasedSuggester,
    SuggestionGate,
    SuggestionGenerator,
    always,
    random_gate,
)

logger = logging.getLogger(__name__)

TokenCallback = Callable[[str], None]

GREETING = (
    "Hi there! I'm your AI business companion, and I'm excited to help you develop your business idea!\n\n"
    "Let's start with the basics - what's the business idea you'd like to explore? "
    "Don't worry about having all the details figured out yet, just tell me what's on your mind!"
)

MISSING_KEY_GREETING = (
    "Hi! I'm your AI business companion, but I need an API key to get started. "
    "Please configure your OpenAI, Anthropic, or Google AI key so we can have a real "
    "conversation about your business idea!"
)

UNAVAILABLE_REPLY = (
    "I need an API key before I can help with that. Please configure your OpenAI, "
    "Anthropic, or Google AI key and try again."
)

APOLOGY_REPLY = (
    "I'm having trouble connecting to my AI services right now. Could you try rephrasing "
    "your message? I'm here to help you develop your business idea!"
)

ACCEPTED_REPLY = "Great choice! I'll make note of that feature for later stages."
DECLINED_REPLY = "No problem! We can always revisit this later if needed."

# Extracted values at or below this length are ignored
MIN_EXTRACTED_CHARS = 10

ANALYSIS_CONFIDENCE = 0.85
USER_INPUT_CONFIDENCE = 0.9
SUGGESTED_FEATURE_CONFIDENCE = 0.75
ACCEPTED_FEATURE_CONFIDENCE = 0.8

SUGGESTED_FEATURES_KEY = "suggestedFeatures"


class ConversationEngine:
    """Runs the conversation for one stage of one project.

    Example:
        engine = ConversationEngine(Stage.SPARK, KnowledgeStore(), load_config())
        print(engine.greeting().content)
        reply = await engine.respond("I want to build a booking app for salons")
    """

    def __init__(
        self,
        stage: StageId,
        knowledge: KnowledgeStore,
        config: Config,
        ai_service: Optional[AIService] = None,
        *,
        context: Optional[ConversationContext] = None,
        policy: Optional[CompletionPolicy] = None,
        suggester: Optional[SuggestionGenerator] = None,
        suggestion_gate: Optional[SuggestionGate] = None,
        provider: Optional[Provider] = None,
    ) -> None:
        """Initialize the engine.

        Args:
            stage: Stage this engine converses about
            knowledge: Project-wide store the engine documents into
            config: Credentials and engine knobs
            ai_service: Provider façade; built from ``config`` in AI mode if omitted
            context: Existing stage context to resume
            policy: Topic completion strategy; derived from ``config`` if omitted
            suggester: Feature suggestion generator; derived from the mode if omitted
            suggestion_gate: Decides whether a turn asks for suggestions
            provider: Provider override for every call this engine makes

        Raises:
            ValueError: RULES mode combined with the extraction policy, which
                could never complete a topic
        """
        self.stage = Stage(stage)
        self.config = config
        self.mode = EngineMode(config.engine.mode)
        self.knowledge = knowledge
        self.provider = provider
        self.context = context or ConversationContext(stage=self.stage.value)

        if self.mode == EngineMode.RULES and config.engine.completion_policy == CompletionPolicyName.EXTRACTION:
            raise ValueError("The extraction completion policy requires ai mode")

        if self.mode == EngineMode.AI:
            self.ai_service: Optional[AIService] = ai_service or AIService(config)
        else:
            self.ai_service = ai_service

        self.policy = policy or make_policy(config.engine)

        if suggester is None:
            if self.mode == EngineMode.AI and self.ai_service is not None:
                suggester = LLMSuggester(self.ai_service, provider=provider)
            else:
                suggester = RuleBasedSuggester()
        self.suggester = suggester

        if suggestion_gate is None:
            if self.mode == EngineMode.AI:
                suggestion_gate = random_gate(config.engine.suggestion_probability)
            else:
                suggestion_gate = always
        self.suggestion_gate = suggestion_gate

        # Turns the engine reasons over; drives extraction and summaries
        self.history = ConversationHistory(max_history=config.engine.max_history)
        # Everything shown to the user, including greetings and confirmations
        self._feed: List[ChatMessage] = []
        self.conversation_summary = ""
        self._turns = TurnGate()

    @property
    def stage_config(self) -> StageConfig:
        return stage_config(self.stage)

    @property
    def messages(self) -> List[ChatMessage]:
        """Messages in the order they were shown to the user."""
        return list(self._feed)

    @property
    def busy(self) -> bool:
        return self._turns.busy

    def current_topic(self) -> Optional[TopicConfig]:
        """First required topic not yet completed, or None when all are done."""
        for topic in self.stage_config.topics:
            if not self.context.is_completed(topic.id):
                return topic
        return None

    def is_stage_complete(self) -> bool:
        return is_stage_complete(self.stage, self.context.completed_topics)

    def stage_knowledge(self) -> List[KnowledgeEntry]:
        return self.knowledge.for_stage(self.stage.value)

    def documented_items(self) -> List[Tuple[str, str]]:
        """(title, content) pairs known for this stage.

        Stored entries come first. Collected topic data follows when the
        store holds nothing with the same content, which happens when
        several topics share a knowledge type and only the first analysis
        of that type was kept.
        """
        entries = self.stage_knowledge()
        items = [(e.title, e.content) for e in entries]
        seen = {e.content for e in entries}
        for key, value in self.context.collected_data.items():
            text = str(value)
            if text not in seen:
                seen.add(text)
                items.append((format_title(key), text))
        return items

    def greeting(self) -> ChatMessage:
        """Opening message for the stage.

        In AI mode without any usable provider the greeting asks for an API
        key instead of a business question.
        """
        if self.mode == EngineMode.AI and not self._provider_ready():
            message = ChatMessage(
                role=MessageRole.ASSISTANT,
                content=MISSING_KEY_GREETING,
                metadata=MessageMetadata(
                    type=MessageType.ERROR,
                    stage=self.stage.value,
                    error_code="provider_unavailable",
                ),
            )
        else:
            message = ChatMessage(
                role=MessageRole.ASSISTANT,
                content=self._opening_text(),
                metadata=MessageMetadata(type=MessageType.QUESTION, stage=self.stage.value),
            )
        self._feed.append(message)
        return message

    def _opening_text(self) -> str:
        topic = self.current_topic()
        if self.stage == Stage.SPARK and topic is not None and topic.id == "business_idea":
            return GREETING
        if topic is None:
            return f"Welcome back to the {self.stage_config.title} stage! We've covered everything here."
        return f"Welcome to the {self.stage_config.title} stage! {self.stage_config.description}.\n\n{topic.question}"

    def _provider_ready(self) -> bool:
        if self.ai_service is None:
            return False
        try:
            self.ai_service.resolve_provider(self.provider)
        except ProviderUnavailable:
            return False
        return True

    async def respond(self, utterance: str, on_token: Optional[TokenCallback] = None) -> ChatMessage:
        """Produce the assistant reply for one user utterance.

        Args:
            utterance: What the user said
            on_token: Called with reply text as it arrives. AI mode streams
                the advisor reply through it; RULES mode calls it once.

        Returns:
            The assistant message. Provider failures come back as a message
            with ``metadata.type == ERROR`` rather than an exception.
        """
        async with self._turns.acquire():
            return await self._respond(utterance, on_token)

    async def _respond(self, utterance: str, on_token: Optional[TokenCallback]) -> ChatMessage:
        user_message = self.history.add_user_message(utterance)
        self._feed.append(user_message)

        topic = self.current_topic()
        if topic is None:
            reply = self._record_reply(self._summary_message())
            if on_token:
                on_token(reply.content)
            return reply

        if self.mode == EngineMode.RULES:
            reply = self._record_reply(await self._rules_turn(topic, utterance))
            if on_token:
                on_token(reply.content)
            await self._maybe_update_summary()
            return reply

        reply = self._record_reply(await self._ai_turn(topic, utterance, on_token))
        insights = await self._extract_knowledge()
        if not reply.is_error:
            for topic_id in self.policy.completed_by_extraction(self.stage_config.topics, insights):
                if self.context.mark_completed(topic_id):
                    logger.info("Topic %s completed by extraction (%s)", topic_id, self.stage.value)
        await self._maybe_update_summary()
        return reply

    def _record_reply(self, reply: ChatMessage) -> ChatMessage:
        self.history.add(reply)
        self._feed.append(reply)
        self.context.suggestions.extend(reply.suggestions)
        return reply

    def _complete_on_answer(self, topic: TopicConfig, utterance: str) -> Dict[str, str]:
        """Mark ``topic`` done from a direct answer and document it."""
        answer = utterance.strip()
        if self.context.mark_completed(topic.id):
            logger.info("Topic %s completed on answer (%s)", topic.id, self.stage.value)
        self.context.collected_data[topic.data_key] = answer
        self.knowledge.record(
            type=topic.knowledge_type,
            title=topic.title,
            content=answer,
            source=KnowledgeSource.USER_INPUT,
            stage=self.stage.value,
            confidence=USER_INPUT_CONFIDENCE,
        )
        return {topic.data_key: answer}

    async def _rules_turn(self, topic: TopicConfig, utterance: str) -> ChatMessage:
        if not self.policy.completes_on_answer(topic, utterance):
            return ChatMessage(
                role=MessageRole.ASSISTANT,
                content=topic.question,
                metadata=MessageMetadata(type=MessageType.QUESTION, stage=self.stage.value),
            )

        extracted = self._complete_on_answer(topic, utterance)
        content = topic.follow_up
        suggestions: List[FeatureSuggestion] = []
        if self.suggestion_gate():
            suggestions = await self._suggest(utterance, content, topic)
        if suggestions:
            lines = [f"- {s.title}: {s.description}" for s in suggestions]
            content = content + "\n\nBased on what you've shared, you might consider:\n" + "\n".join(lines)

        return ChatMessage(
            role=MessageRole.ASSISTANT,
            content=content,
            metadata=MessageMetadata(
                type=MessageType.QUESTION,
                stage=self.stage.value,
                suggestions=suggestions,
                extracted_data=extracted,
            ),
        )

    def _service(self) -> AIService:
        if self.ai_service is None:
            raise ProviderUnavailable("No AI service is attached to this engine")
        return self.ai_service

    async def _ai_turn(self, topic: TopicConfig, utterance: str, on_token: Optional[TokenCallback]) -> ChatMessage:
        context = self.build_business_context(topic)
        try:
            service = self._service()
            if on_token is None:
                content = await service.advise(context, utterance, self.provider)
            else:
                parts = []
                stream = await service.advise_stream(context, utterance, self.provider)
                async for chunk in stream:
                    if chunk.content:
                        parts.append(chunk.content)
                        on_token(chunk.content)
                content = "".join(parts)
        except ProviderUnavailable as e:
            logger.warning("No provider for %s turn: %s", self.stage.value, e)
            return self._error_message(UNAVAILABLE_REPLY, "provider_unavailable", on_token)
        except ProviderError as e:
            logger.error("Error generating AI response: %s", e)
            return self._error_message(APOLOGY_REPLY, "provider_error", on_token)

        extracted: Dict[str, str] = {}
        if self.policy.completes_on_answer(topic, utterance):
            extracted = self._complete_on_answer(topic, utterance)

        suggestions: List[FeatureSuggestion] = []
        if self.suggestion_gate():
            suggestions = await self._suggest(utterance, content, topic)

        return ChatMessage(
            role=MessageRole.ASSISTANT,
            content=content,
            metadata=MessageMetadata(
                type=MessageType.QUESTION,
                stage=self.stage.value,
                suggestions=suggestions,
                extracted_data=extracted,
            ),
        )

    def _error_message(self, content: str, error_code: str, on_token: Optional[TokenCallback] = None) -> ChatMessage:
        # Streaming callers only see what passes through on_token
        if on_token:
            on_token(content)
        return ChatMessage(
            role=MessageRole.ASSISTANT,
            content=content,
            metadata=MessageMetadata(type=MessageType.ERROR, stage=self.stage.value, error_code=error_code),
        )

    async def _suggest(self, utterance: str, response: str, topic: TopicConfig) -> List[FeatureSuggestion]:
        context = BusinessContext(
            stage=self.stage.value,
            topic=topic.id,
            summary=self.build_business_context(topic),
        )
        return await self.suggester.suggest(utterance, response, context)

    def build_business_context(self, topic: Optional[TopicConfig] = None) -> str:
        """Render what the advisor should know before answering."""
        return render_template(
            "business_context.jinja",
            {
                "stage": self.stage.value,
                "open_topic": topic.id if topic else None,
                "completed_topics": self.context.completed_topics,
                "knowledge": self.documented_items(),
                "summary": self.conversation_summary,
                "recent": self.history.get_recent(self.config.engine.recent_context_window),
            },
        )

    def summarize(self) -> ChatMessage:
        """Show the stage summary. It is not part of the turn history."""
        message = self._summary_message()
        self._feed.append(message)
        return message

    def _summary_message(self) -> ChatMessage:
        following = next_stage(self.stage)
        content = render_template(
            "stage_summary.jinja",
            {
                "stage_title": self.stage_config.title,
                "entries": self.documented_items(),
                "next_stage_title": stage_config(following).title if following else None,
            },
        )
        return ChatMessage(
            role=MessageRole.ASSISTANT,
            content=content,
            metadata=MessageMetadata(
                type=MessageType.SUMMARY,
                stage=self.stage.value,
                extracted_data=dict(self.context.collected_data),
            ),
        )

    def extraction_fields(self) -> Sequence[Tuple[str, str]]:
        """(camelCase key, description) pairs extraction asks for in this stage."""
        known = dict(INSIGHT_FIELDS)
        return [(t.data_key, known.get(t.data_key, t.title)) for t in self.stage_config.topics]

    async def _extract_knowledge(self) -> Dict[str, object]:
        """Document insights from the recent transcript. Failures only log."""
        conversation = self.history.transcript(recent_count=self.config.engine.extraction_window)
        try:
            insights = await self._service().structured_extract(
                conversation, provider=self.provider, fields=self.extraction_fields()
            )
        except ExtractionParseError as e:
            logger.warning("Could not parse extracted knowledge: %s", e)
            return {}
        except ProviderUnavailable as e:
            logger.debug("Skipping knowledge extraction: %s", e)
            return {}
        except ProviderError as e:
            logger.warning("Error extracting knowledge: %s", e)
            return {}

        for key, value in insights.items():
            if key == SUGGESTED_FEATURES_KEY:
                continue
            if not isinstance(value, str) or len(value.strip()) <= MIN_EXTRACTED_CHARS:
                continue
            topic = self._topic_for_key(key)
            self.knowledge.record(
                type=topic.knowledge_type if topic else KnowledgeType.INSIGHT,
                title=format_title(key),
                content=value,
                source=KnowledgeSource.AI_ANALYSIS,
                stage=self.stage.value,
                confidence=ANALYSIS_CONFIDENCE,
            )
            self.context.collected_data.setdefault(key, value)

        for feature in insights.get(SUGGESTED_FEATURES_KEY, []):
            self.knowledge.record(
                type=KnowledgeType.FEATURE,
                title=feature,
                content=f"Suggested feature: {feature}",
                source=KnowledgeSource.AI_SUGGESTION,
                stage=self.stage.value,
                confidence=SUGGESTED_FEATURE_CONFIDENCE,
                tags=["feature", "ai-suggested"],
            )
        return insights

    def _topic_for_key(self, key: str) -> Optional[TopicConfig]:
        for topic in self.stage_config.topics:
            if topic.data_key == key:
                return topic
        return None

    async def _maybe_update_summary(self) -> None:
        interval = self.config.engine.summary_interval
        if self.mode != EngineMode.AI or interval <= 0 or self.history.total_added % interval != 0:
            return
        try:
            await self.update_summary()
        except SummaryUpdateError as e:
            logger.warning("Keeping previous conversation summary: %s", e)

    async def update_summary(self) -> str:
        """Regenerate the rolling summary from the full history.

        Raises:
            SummaryUpdateError: The provider could not produce a summary
        """
        if self.ai_service is None:
            raise SummaryUpdateError("No AI service to summarize with")
        messages = [
            LLMMessage("system", render_template("summary_system.jinja", {})),
            LLMMessage("user", render_template("summary_user.jinja", {"transcript": self.history.transcript()})),
        ]
        try:
            reply = await self.ai_service.chat_complete(
                messages, provider=self.provider, temperature=0.3, max_tokens=150
            )
        except (ProviderUnavailable, ProviderError) as e:
            raise SummaryUpdateError(str(e)) from e
        self.conversation_summary = str(reply).strip()
        return self.conversation_summary

    def accept_suggestion(self, suggestion_id: str, message_id: Optional[str] = None) -> Optional[ChatMessage]:
        """Accept a pending suggestion and document it as a feature.

        Returns:
            The confirmation message, or None if it was already resolved

        Raises:
            KeyError: Unknown message or suggestion id
        """
        return self._resolve_suggestion(suggestion_id, message_id, SuggestionStatus.ACCEPTED)

    def decline_suggestion(self, suggestion_id: str, message_id: Optional[str] = None) -> Optional[ChatMessage]:
        return self._resolve_suggestion(suggestion_id, message_id, SuggestionStatus.DECLINED)

    def _resolve_suggestion(
        self,
        suggestion_id: str,
        message_id: Optional[str],
        status: SuggestionStatus,
    ) -> Optional[ChatMessage]:
        owner = message_id or self.history.owner_of(suggestion_id)
        suggestion = self.history.find_suggestion(owner, suggestion_id)
        if not self.history.update_suggestion_status(owner, suggestion_id, status):
            logger.info("Suggestion %s already %s", suggestion_id, suggestion.status.value)
            return None

        if status == SuggestionStatus.ACCEPTED:
            self.knowledge.record(
                type=KnowledgeType.FEATURE,
                title=suggestion.title,
                content=suggestion.description or suggestion.title,
                source=KnowledgeSource.AI_SUGGESTION,
                stage=self.stage.value,
                confidence=ACCEPTED_FEATURE_CONFIDENCE,
                tags=["feature", suggestion.category],
            )
            content = ACCEPTED_REPLY
        else:
            content = DECLINED_REPLY

        confirmation = ChatMessage(
            role=MessageRole.ASSISTANT,
            content=content,
            metadata=MessageMetadata(type=MessageType.SUGGESTION, stage=self.stage.value),
        )
        self._feed.append(confirmation)
        return confirmation

    def accepted_features(self) -> List[str]:
        return [s.title for s in self.context.suggestions if s.status == SuggestionStatus.ACCEPTED]

    def export_state(self) -> StageSession:
        return StageSession(
            context=self.context,
            summary=self.conversation_summary,
            messages=self.history.get_all(),
        )

    def restore_state(self, state: StageSession) -> None:
        """Resume a saved conversation for this stage.

        Suggestions on the context are relinked to the objects carried by
        their owning messages, so resolving one updates both.
        """
        if state.context.stage != self.stage.value:
            raise ValueError(f"Saved state is for stage {state.context.stage}, not {self.stage.value}")
        self.history.restore(state.messages)
        self._feed = self.history.get_all()
        self.conversation_summary = state.summary

        owned = {s.id: s for m in self._feed for s in m.suggestions}
        self.context = state.context
        self.context.suggestions = [owned.get(s.id, s) for s in state.context.suggestions]
