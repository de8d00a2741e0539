"""Tests for project-level stage advancement."""

import json

import pytest

from ideaforge.models import MessageType, Project, SparkData
from ideaforge.workflow.project_workflow import ProjectWorkflow
from ideaforge.workflow.stage_registry import Stage, stage_config
from ideaforge.workflow.suggestions import never

SPARK_ANSWERS = [
    "I want to build a booking platform for independent fitness studios",
    "Studio owners lose hours every week juggling bookings over phone and text",
    "Small business owners running yoga, pilates and spin studios in cities",
    "A mobile app that lets people book fitness classes",
    "Studios keep their own brand while members get one app for every class",
]

LONG_ANSWER = "We will cover this carefully with real numbers, interviews and a written plan"


async def _finish_spark(workflow):
    result = None
    for answer in SPARK_ANSWERS:
        result = await workflow.send(answer)
    return result


class TestStageAdvancement:
    """Completing a stage advances the project."""

    @pytest.mark.asyncio
    async def test_spark_completion_advances_to_validate(self, rules_config):
        changes = []
        workflow = ProjectWorkflow(Project(name="Studio booking"), rules_config)
        workflow.set_on_stage_change(lambda old, new: changes.append((old, new)))
        workflow.start()

        result = await _finish_spark(workflow)

        assert result.stage_completed == Stage.SPARK
        assert result.advanced_to == Stage.VALIDATE
        assert result.summary.metadata.type == MessageType.SUMMARY
        for answer in SPARK_ANSWERS:
            assert answer in result.summary.content

        assert workflow.project.stage == "validate"
        assert workflow.project.progress == round(100 / 7)
        assert changes == [(Stage.SPARK, Stage.VALIDATE)]

    @pytest.mark.asyncio
    async def test_turns_before_completion_do_not_advance(self, rules_config):
        workflow = ProjectWorkflow(Project(name="p"), rules_config)
        result = await workflow.send(SPARK_ANSWERS[0])
        assert result.stage_completed is None
        assert result.summary is None
        assert workflow.project.stage == "spark"
        assert workflow.project.progress == 0

    @pytest.mark.asyncio
    async def test_spark_data_is_archived(self, rules_config):
        workflow = ProjectWorkflow(Project(name="p"), rules_config)
        await _finish_spark(workflow)

        spark = workflow.project.data.spark
        assert isinstance(spark, SparkData)
        assert spark.completed
        assert spark.idea_description == SPARK_ANSWERS[0]
        assert spark.unique_value == SPARK_ANSWERS[4]
        assert spark.topics["targetAudience"] == SPARK_ANSWERS[2]
        assert workflow.project.data.completed_stages() == ["spark"]

    @pytest.mark.asyncio
    async def test_progress_never_decreases(self, rules_config):
        project = Project(name="p", progress=60)
        workflow = ProjectWorkflow(project, rules_config)
        await _finish_spark(workflow)
        assert workflow.project.progress == 60

    @pytest.mark.asyncio
    async def test_final_stage_stays_put(self, rules_config):
        workflow = ProjectWorkflow(Project(name="p", stage="launch"), rules_config)
        result = None
        for _ in stage_config("launch").topics:
            result = await workflow.send(LONG_ANSWER)

        assert result.stage_completed == Stage.LAUNCH
        assert result.advanced_to is None
        assert workflow.project.stage == "launch"
        assert workflow.project.data.launch.completed

        again = await workflow.send("Anything else?")
        assert again.stage_completed is None
        assert again.message.metadata.type == MessageType.SUMMARY

    @pytest.mark.asyncio
    async def test_next_stage_engine_starts_fresh(self, rules_config):
        workflow = ProjectWorkflow(Project(name="p"), rules_config)
        await _finish_spark(workflow)
        greeting = workflow.start()
        assert greeting.content.startswith("Welcome to the Validate stage!")
        assert workflow.engine.context.completed_topics == []


class TestSuggestionsAcrossStages:
    """Suggestions stay resolvable and are archived when accepted."""

    @pytest.mark.asyncio
    async def test_accepted_feature_archived(self, rules_config):
        workflow = ProjectWorkflow(Project(name="p"), rules_config)
        for answer in SPARK_ANSWERS[:4]:
            result = await workflow.send(answer)
        suggestion = result.message.suggestions[0]
        workflow.accept_suggestion(suggestion.id)
        await workflow.send(SPARK_ANSWERS[4])

        assert workflow.project.data.spark.accepted_features == [suggestion.title]

    @pytest.mark.asyncio
    async def test_resolve_after_advancing(self, rules_config):
        workflow = ProjectWorkflow(Project(name="p"), rules_config)
        await workflow.send(SPARK_ANSWERS[0])
        await workflow.send(SPARK_ANSWERS[1])
        audience = await workflow.send(SPARK_ANSWERS[2])
        await workflow.send(SPARK_ANSWERS[3])
        await workflow.send(SPARK_ANSWERS[4])
        assert workflow.current_stage == Stage.VALIDATE

        [team] = audience.message.suggestions
        assert workflow.decline_suggestion(team.id) is not None

    def test_unknown_suggestion(self, rules_config):
        workflow = ProjectWorkflow(Project(name="p"), rules_config)
        with pytest.raises(KeyError):
            workflow.accept_suggestion("missing")


class TestAIWorkflow:
    """A provider-backed workflow completes topics from extraction."""

    @pytest.mark.asyncio
    async def test_one_rich_turn_completes_spark(self, ai_config, ai_service, fake_client):
        fake_client.replies["extraction"] = json.dumps({
            "businessIdea": "A booking platform for independent fitness studios",
            "problemStatement": "Studios juggle bookings by phone and text",
            "targetAudience": "Owners of small yoga and pilates studios",
            "solution": "A branded mobile app with class booking",
            "uniqueValue": "Studios keep their brand on a shared network",
        })
        workflow = ProjectWorkflow(Project(name="p"), ai_config, ai_service, suggestion_gate=never)
        result = await workflow.send("Let me describe my whole idea in one go")

        assert result.stage_completed == Stage.SPARK
        assert workflow.project.stage == "validate"
        assert workflow.project.data.spark.solution == "A branded mobile app with class booking"


class TestProgressAndPersistence:
    """Progress reporting and save/load."""

    def test_get_progress(self, rules_config):
        workflow = ProjectWorkflow(Project(name="p"), rules_config)
        progress = workflow.get_progress()
        assert progress["current_stage"] == "spark"
        assert progress["current_topic"] == "business_idea"
        assert progress["progress_percent"] == 0
        assert not progress["is_complete"]

    @pytest.mark.asyncio
    async def test_save_and_load(self, rules_config, tmp_path):
        workflow = ProjectWorkflow(Project(name="Studio booking"), rules_config)
        await _finish_spark(workflow)
        path = tmp_path / "project.json"
        workflow.save(path)

        raw = json.loads(path.read_text())
        assert raw["project"]["data"]["spark"]["completed"] is True

        loaded = ProjectWorkflow.load(path, rules_config)
        assert loaded.project.name == "Studio booking"
        assert loaded.current_stage == Stage.VALIDATE
        assert loaded.gate.has_fired("spark")

    @pytest.mark.asyncio
    async def test_save_and_load_mid_stage(self, rules_config, tmp_path):
        workflow = ProjectWorkflow(Project(name="Studio booking"), rules_config)
        workflow.start()
        for answer in SPARK_ANSWERS[:3]:
            result = await workflow.send(answer)
        [team] = result.message.suggestions
        path = tmp_path / "project.json"
        workflow.save(path)

        loaded = ProjectWorkflow.load(path, rules_config)
        assert loaded.current_stage == Stage.SPARK
        assert loaded.engine.current_topic().id == "solution"
        assert loaded.engine.context.collected_data["targetAudience"] == SPARK_ANSWERS[2]
        assert [e.content for e in loaded.knowledge] == SPARK_ANSWERS[:3]
        assert loaded.accept_suggestion(team.id) is not None

        for answer in SPARK_ANSWERS[3:]:
            result = await loaded.send(answer)
        assert result.advanced_to == Stage.VALIDATE
        assert loaded.project.data.spark.accepted_features == [team.title]
