"""Unit tests for the workflow engine."""

import re

import pytest

from conftest import StubPhaseExecutor, make_model, make_phase, no_sleep
from src.postprocessing.registry import PostProcessorRegistry
from src.workflows.engine import (
    WorkflowEngine,
    execute_workflow,
    generate_workflow_id,
    prepare_initial_outputs,
    retry_delay_ms,
    round_progress,
)
from src.workflows.schemas import (
    PostProcessingStep,
    WorkflowEngineConfig,
    WorkflowInput,
    WorkflowStatus,
)


def custom_step(step_id: str, handler: str, enabled: bool = True) -> PostProcessingStep:
    return PostProcessingStep(
        id=step_id,
        name=step_id.title(),
        type="custom",
        enabled=enabled,
        config={"handler": handler},
    )


class TestHelpers:
    def test_workflow_id_format(self):
        assert re.fullmatch(r"wf_[0-9a-z]+_[0-9a-f]{9}", generate_workflow_id())

    def test_retry_delay_backoff(self):
        assert [retry_delay_ms(n) for n in (1, 2, 3, 4, 5, 6)] == [
            1000, 2000, 4000, 8000, 10000, 10000,
        ]

    def test_round_progress_half_up(self):
        assert round_progress(12.5) == 13
        assert round_progress(33.333) == 33
        assert round_progress(140) == 100

    def test_initial_outputs_defaults(self):
        outputs = prepare_initial_outputs(WorkflowInput(topic="Raised beds", keywords=["a", "b", "c"]))
        assert outputs["keywords"] == "a, b, c"
        assert outputs["primary_keyword"] == "a"
        assert outputs["secondary_keywords"] == "b, c"
        assert outputs["target_audience"] == "general audience"
        assert outputs["tone"] == "professional"
        assert outputs["word_count"] == 1500
        assert outputs["article_goal"] == "inform and engage"
        assert outputs["site_context"] == ""
        assert outputs["custom_instructions"] == ""
        assert outputs["system_instructions"] == ""

    def test_initial_outputs_explicit_values_and_extras(self):
        inputs = WorkflowInput(
            topic="Raised beds",
            keywords=["a", "b"],
            primary_keyword="raised garden beds",
            secondary_keywords=["cedar", "soil"],
            brand_name="Acme",
        )
        outputs = prepare_initial_outputs(inputs)
        assert outputs["primary_keyword"] == "raised garden beds"
        assert outputs["secondary_keywords"] == "cedar, soil"
        assert outputs["brand_name"] == "Acme"
        assert "org_id" not in outputs

    def test_blank_topic_rejected(self):
        with pytest.raises(ValueError):
            WorkflowInput(topic="   ")


class TestWorkflowExecution:
    """Tests for WorkflowEngine.execute."""

    def setup_method(self):
        self.inputs = WorkflowInput(topic="Container gardening", keywords=["containers"])
        self.progress = []
        self.config = WorkflowEngineConfig(
            on_progress=lambda phase_id, value, message: self.progress.append((phase_id, value, message)),
        )

    @pytest.mark.asyncio
    async def test_missing_inputs_fail_before_any_call(self):
        model = make_model([make_phase("body", ["body"], ["outline"])])
        executor = StubPhaseExecutor()
        engine = WorkflowEngine(model, self.inputs, phase_executor=executor, sleep=no_sleep)

        result = await engine.execute()

        assert not result.success
        assert executor.calls == []
        assert "Missing required inputs for phase body: outline" in result.error
        assert result.state.status == WorkflowStatus.FAILED

    @pytest.mark.asyncio
    async def test_retries_three_times_with_backoff(self):
        attempts = []
        sleeps = []

        def always_fail(phase, outputs):
            attempts.append(phase.id)
            raise RuntimeError(f"attempt {len(attempts)} failed")

        async def record_sleep(seconds):
            sleeps.append(seconds)

        model = make_model([
            make_phase("introduction", ["introduction"], retry_on_failure=True, max_retries=3),
        ])
        engine = WorkflowEngine(
            model,
            self.inputs,
            phase_executor=StubPhaseExecutor({"introduction": always_fail}),
            sleep=record_sleep,
        )

        result = await engine.execute()

        assert len(attempts) == 3
        assert sleeps == [1.0, 2.0]
        assert not result.success
        assert result.error == "attempt 3 failed"

    @pytest.mark.asyncio
    async def test_retry_recovers(self):
        attempts = []

        def flaky(phase, outputs):
            attempts.append(1)
            if len(attempts) < 2:
                raise RuntimeError("transient")
            return {"introduction": "ok"}

        model = make_model([make_phase("introduction", ["introduction"], retry_on_failure=True)])
        result = await execute_workflow(
            model,
            self.inputs,
            phase_executor=StubPhaseExecutor({"introduction": flaky}),
            sleep=no_sleep,
        )
        assert result.success
        assert result.content == "ok"

    @pytest.mark.asyncio
    async def test_no_retry_without_flag(self):
        executor = StubPhaseExecutor({"introduction": RuntimeError("boom")})
        model = make_model([make_phase("introduction", ["introduction"])])
        result = await execute_workflow(model, self.inputs, phase_executor=executor, sleep=no_sleep)
        assert executor.calls == ["introduction"]
        assert result.error == "boom"

    @pytest.mark.asyncio
    async def test_sections_are_joined(self, three_part_model):
        executor = StubPhaseExecutor({
            "introduction": {"introduction": "Intro."},
            "body": {"body": "Body."},
            "conclusion": {"conclusion": "End."},
        })
        result = await execute_workflow(three_part_model, self.inputs, phase_executor=executor, sleep=no_sleep)
        assert result.success
        assert result.content == "Intro.\n\nBody.\n\nEnd."
        assert result.excerpt == "Intro. Body."

    @pytest.mark.asyncio
    async def test_missing_section_is_omitted(self, three_part_model):
        executor = StubPhaseExecutor({
            "introduction": {"introduction": "Intro."},
            "body": {"body": "Body."},
            "conclusion": {"conclusion": ""},
        })
        result = await execute_workflow(three_part_model, self.inputs, phase_executor=executor, sleep=no_sleep)
        assert result.content == "Intro.\n\nBody."

    @pytest.mark.asyncio
    async def test_later_phase_overwrites_key(self):
        model = make_model([
            make_phase("draft", ["content"]),
            make_phase("revise", ["content"], ["content"]),
        ])
        executor = StubPhaseExecutor({
            "draft": {"content": "first"},
            "revise": lambda phase, outputs: {"content": outputs["content"] + " revised"},
        })
        result = await execute_workflow(model, self.inputs, phase_executor=executor, sleep=no_sleep)
        assert result.content == "first revised"

    @pytest.mark.asyncio
    async def test_progress_per_phase(self, three_part_model):
        engine = WorkflowEngine(
            three_part_model,
            self.inputs,
            self.config,
            phase_executor=StubPhaseExecutor(),
            sleep=no_sleep,
        )
        await engine.execute()

        phase_ends = [value for _, value, message in self.progress if message.startswith("Completed")]
        assert phase_ends == [33, 67, 100]
        values = [value for _, value, _ in self.progress]
        assert values == sorted(values)
        assert engine.get_state().progress == 100

    @pytest.mark.asyncio
    async def test_progress_callback_errors_are_ignored(self, three_part_model):
        def broken(phase_id, value, message):
            raise ValueError("ui gone")

        result = await execute_workflow(
            three_part_model,
            self.inputs,
            WorkflowEngineConfig(on_progress=broken),
            phase_executor=StubPhaseExecutor(),
            sleep=no_sleep,
        )
        assert result.success

    @pytest.mark.asyncio
    async def test_execute_is_idempotent(self, three_part_model):
        executor = StubPhaseExecutor()
        engine = WorkflowEngine(three_part_model, self.inputs, phase_executor=executor, sleep=no_sleep)
        first = await engine.execute()
        second = await engine.execute()
        assert first is second
        assert executor.calls == ["introduction", "body", "conclusion"]

    @pytest.mark.asyncio
    async def test_result_metadata(self, three_part_model):
        engine = WorkflowEngine(three_part_model, self.inputs, phase_executor=StubPhaseExecutor(), sleep=no_sleep)
        result = await engine.execute()
        assert result.metadata["workflow_id"] == engine.workflow_id
        assert result.metadata["model_id"] == "test-model"
        assert result.metadata["model_name"] == "Test Model"
        assert result.metadata["phases"] == ["introduction", "body", "conclusion"]
        assert result.metadata["duration_ms"] >= 0
        assert result.state.started_at and result.state.completed_at

    @pytest.mark.asyncio
    async def test_state_and_outputs_are_copies(self, three_part_model):
        engine = WorkflowEngine(three_part_model, self.inputs, phase_executor=StubPhaseExecutor(), sleep=no_sleep)
        engine.get_outputs()["topic"] = "changed"
        engine.get_state().phase_outputs["topic"] = "changed"
        assert engine.get_outputs()["topic"] == "Container gardening"


class TestPostProcessing:
    """Tests for post-processing steps run after all phases."""

    def setup_method(self):
        self.inputs = WorkflowInput(topic="Container gardening")
        self.progress = []

        async def tag(outputs, config, context):
            return {"tagged": context.step_id}

        async def boom(outputs, config, context):
            raise RuntimeError("image service down")

        self.registry = PostProcessorRegistry({"tag": tag, "boom": boom})

    def _model(self, *steps):
        return make_model([make_phase("draft", ["content"])], post_processing=list(steps))

    @pytest.mark.asyncio
    async def test_failure_is_non_fatal_by_default(self):
        model = self._model(custom_step("images", "boom"), custom_step("finish", "tag"))
        result = await execute_workflow(
            model,
            self.inputs,
            WorkflowEngineConfig(on_progress=lambda p, v, m: self.progress.append((p, v))),
            phase_executor=StubPhaseExecutor(),
            post_processors=self.registry,
            sleep=no_sleep,
        )
        assert result.success
        assert result.state.phase_outputs["tagged"] == "finish"
        assert ("draft", 80) in self.progress
        assert ("images", 90) in self.progress
        assert ("finish", 100) in self.progress

    @pytest.mark.asyncio
    async def test_stop_on_error(self):
        model = self._model(custom_step("images", "boom"), custom_step("finish", "tag"))
        result = await execute_workflow(
            model,
            self.inputs,
            WorkflowEngineConfig(stop_on_error=True),
            phase_executor=StubPhaseExecutor(),
            post_processors=self.registry,
            sleep=no_sleep,
        )
        assert not result.success
        assert result.error == "image service down"
        assert "tagged" not in result.state.phase_outputs

    @pytest.mark.asyncio
    async def test_disabled_steps_are_skipped(self):
        model = self._model(custom_step("images", "boom", enabled=False))
        engine = WorkflowEngine(
            model,
            self.inputs,
            WorkflowEngineConfig(on_progress=lambda p, v, m: self.progress.append((p, v, m))),
            phase_executor=StubPhaseExecutor(),
            post_processors=self.registry,
            sleep=no_sleep,
        )
        result = await engine.execute()
        assert result.success
        assert ("draft", 100, "Completed Draft") in self.progress

    @pytest.mark.asyncio
    async def test_unknown_handler_is_non_fatal(self):
        model = self._model(custom_step("mystery", "not_registered"))
        result = await execute_workflow(
            model,
            self.inputs,
            phase_executor=StubPhaseExecutor(),
            post_processors=self.registry,
            sleep=no_sleep,
        )
        assert result.success
