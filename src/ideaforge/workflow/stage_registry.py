"""Static registry of workflow stages and the topics each one must cover.

The registry is a pure lookup table: stage order, display metadata, the
required topics per stage and the question bank the rule-based engine
asks from. Nothing in here has side effects.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple, Union

from ..models import KnowledgeType, Project


class Stage(str, Enum):
    """Business development stages, in workflow order.

    - SPARK: Capture and refine the business idea
    - VALIDATE: Research the market and competition
    - DESIGN: Create the business model and strategy
    - BUILD: Plan the technical architecture
    - CODE: Generate the application
    - CONNECT: Integrate essential services
    - LAUNCH: Prepare for go-to-market
    """
    SPARK = "spark"
    VALIDATE = "validate"
    DESIGN = "design"
    BUILD = "build"
    CODE = "code"
    CONNECT = "connect"
    LAUNCH = "launch"

    @property
    def display_name(self) -> str:
        return stage_config(self).title

    @property
    def next_stage(self) -> Optional["Stage"]:
        return next_stage(self)

    @property
    def prev_stage(self) -> Optional["Stage"]:
        return previous_stage(self)


@dataclass(frozen=True)
class TopicConfig:
    """One atomic fact a stage must collect, with the questions that ask for it."""
    id: str
    question: str
    follow_up: str

    @property
    def data_key(self) -> str:
        """camelCase key used in collected data and extraction payloads."""
        head, *rest = self.id.split("_")
        return head + "".join(part.capitalize() for part in rest)

    @property
    def knowledge_type(self) -> KnowledgeType:
        try:
            return KnowledgeType(self.id)
        except ValueError:
            return KnowledgeType.INSIGHT

    @property
    def title(self) -> str:
        return self.id.replace("_", " ").title()


@dataclass(frozen=True)
class StageConfig:
    """Display metadata and requirements for a stage.

    Attributes:
        id: The stage enum value
        title: Human-readable name
        description: What the stage accomplishes
        icon: Icon name for the dashboard
        color: Accent colour class for the dashboard
        estimated_time: Rough duration shown to the user
        topics: Required topics, in the order they are asked
    """
    id: Stage
    title: str
    description: str
    icon: str
    color: str
    estimated_time: str
    topics: Tuple[TopicConfig, ...] = field(default_factory=tuple)

    @property
    def required_topics(self) -> List[str]:
        return [t.id for t in self.topics]

    def topic(self, topic_id: str) -> Optional[TopicConfig]:
        for t in self.topics:
            if t.id == topic_id:
                return t
        return None


WORKFLOW_STAGES: Tuple[StageConfig, ...] = (
    StageConfig(
        id=Stage.SPARK,
        title="Spark",
        description="Capture and refine your business idea",
        icon="Lightbulb",
        color="bg-green-500",
        estimated_time="10 min",
        topics=(
            TopicConfig(
                "business_idea",
                "That's exciting! Tell me more about your business idea. What exactly are you trying to build?",
                "I love the concept! Can you elaborate on how this would work in practice?",
            ),
            TopicConfig(
                "problem_statement",
                "Great! Now, what specific problem does this solve? What frustrates people right now that your idea would fix?",
                "That's a real pain point! How do people currently deal with this problem?",
            ),
            TopicConfig(
                "target_audience",
                "Perfect! Who would be your ideal customers? Describe the people who would benefit most from this solution.",
                "Interesting target market! What makes you think they would pay for this solution?",
            ),
            TopicConfig(
                "solution",
                "Now I'm curious - how exactly would your solution work? Walk me through the core features or process.",
                "That's a solid approach! What would make someone choose your solution over alternatives?",
            ),
            TopicConfig(
                "unique_value",
                "What makes your approach different? What's your unique angle that competitors don't have?",
                "That's a compelling differentiator! How sustainable is this competitive advantage?",
            ),
        ),
    ),
    StageConfig(
        id=Stage.VALIDATE,
        title="Validate",
        description="Research your market and competition",
        icon="Search",
        color="bg-blue-500",
        estimated_time="15 min",
        topics=(
            TopicConfig(
                "market_research",
                "Now let's validate your idea! How big is the market you're going after, and is it growing?",
                "Good start on sizing. Where did those numbers come from, and how confident are you in them?",
            ),
            TopicConfig(
                "competitor_analysis",
                "Who else is solving this problem today? Name a few competitors and what they do well or badly.",
                "Helpful! Which of those weaknesses could you exploit first?",
            ),
            TopicConfig(
                "customer_validation",
                "Have you talked to potential customers yet? What did they tell you about the problem and your idea?",
                "That's valuable feedback. What would convince them to switch or sign up?",
            ),
        ),
    ),
    StageConfig(
        id=Stage.DESIGN,
        title="Design",
        description="Create your business model and strategy",
        icon="Palette",
        color="bg-purple-500",
        estimated_time="20 min",
        topics=(
            TopicConfig(
                "business_model",
                "Let's shape the business model. Who are your key partners, activities and channels?",
                "Solid foundation. Which part of that model feels riskiest to you?",
            ),
            TopicConfig(
                "revenue_strategy",
                "How will the business make money? Describe your main revenue streams.",
                "Makes sense. Which revenue stream do you expect to dominate in year one?",
            ),
            TopicConfig(
                "pricing_model",
                "What pricing model fits best - freemium, subscription, one-time, or usage-based? What tiers would you offer?",
                "Nice. How did you arrive at those price points?",
            ),
        ),
    ),
    StageConfig(
        id=Stage.BUILD,
        title="Build",
        description="Plan your technical architecture",
        icon="Hammer",
        color="bg-orange-500",
        estimated_time="15 min",
        topics=(
            TopicConfig(
                "features",
                "Which features must be in the first version? List them roughly by priority.",
                "Good list. Which of these could you cut and still deliver the core value?",
            ),
            TopicConfig(
                "tech_stack",
                "What technology would you like to build on - frontend, backend, database and hosting?",
                "Reasonable choices. Does your team already have experience with them?",
            ),
            TopicConfig(
                "architecture",
                "How should the pieces fit together? Describe the main components and how data flows between them.",
                "That's a clear picture. Where do you expect the first scaling pain?",
            ),
        ),
    ),
    StageConfig(
        id=Stage.CODE,
        title="Code",
        description="Generate your application with AI",
        icon="Code",
        color="bg-cyan-500",
        estimated_time="25 min",
        topics=(
            TopicConfig(
                "framework",
                "Which application framework should we generate your project with?",
                "Great pick. Any conventions or libraries you want included from day one?",
            ),
            TopicConfig(
                "repository",
                "Where should the code live? Tell me about the repository and how you'd like it organised.",
                "Perfect. Who else will contribute to that repository?",
            ),
        ),
    ),
    StageConfig(
        id=Stage.CONNECT,
        title="Connect",
        description="Integrate essential services",
        icon="Link",
        color="bg-indigo-500",
        estimated_time="20 min",
        topics=(
            TopicConfig(
                "integrations",
                "Which services do you need to connect - payments, email, analytics, storage, or others?",
                "Good coverage. Which of those integrations is blocking your launch?",
            ),
        ),
    ),
    StageConfig(
        id=Stage.LAUNCH,
        title="Launch",
        description="Prepare for go-to-market",
        icon="Rocket",
        color="bg-red-500",
        estimated_time="30 min",
        topics=(
            TopicConfig(
                "launch_plan",
                "Let's plan the launch. What are the key milestones between now and launch day?",
                "That's a realistic timeline. What's your plan if a milestone slips?",
            ),
            TopicConfig(
                "marketing_assets",
                "What marketing assets will you need - landing page, demo video, social posts, press kit?",
                "Nice. Which channel do you expect your first hundred customers to come from?",
            ),
            TopicConfig(
                "success_metrics",
                "How will you measure success in the first 90 days? Which metrics matter most?",
                "Clear targets. How often will you review them?",
            ),
        ),
    ),
)

_BY_ID: Dict[Stage, StageConfig] = {s.id: s for s in WORKFLOW_STAGES}
_ORDER: List[Stage] = [s.id for s in WORKFLOW_STAGES]

StageId = Union[Stage, str]


def _coerce(stage: StageId) -> Optional[Stage]:
    try:
        return Stage(stage)
    except ValueError:
        return None


def stage_config(stage: StageId) -> StageConfig:
    """Look up a stage. Unknown ids fall back to the first stage."""
    resolved = _coerce(stage)
    if resolved is None:
        return WORKFLOW_STAGES[0]
    return _BY_ID[resolved]


def next_stage(stage: StageId) -> Optional[Stage]:
    """The stage after ``stage``, or None at the last stage or on unknown ids."""
    resolved = _coerce(stage)
    if resolved is None:
        return None
    idx = _ORDER.index(resolved)
    if idx == len(_ORDER) - 1:
        return None
    return _ORDER[idx + 1]


def previous_stage(stage: StageId) -> Optional[Stage]:
    """The stage before ``stage``, or None at the first stage or on unknown ids."""
    resolved = _coerce(stage)
    if resolved is None:
        return None
    idx = _ORDER.index(resolved)
    if idx == 0:
        return None
    return _ORDER[idx - 1]


def required_topics(stage: StageId) -> List[str]:
    """Topic ids the stage must cover. Unknown stages require nothing."""
    resolved = _coerce(stage)
    if resolved is None:
        return []
    return _BY_ID[resolved].required_topics


def calculate_overall_progress(project: Project) -> int:
    """Percentage of all stages whose archived data is marked completed."""
    completed = len(project.data.completed_stages())
    return round(100 * completed / len(WORKFLOW_STAGES))
