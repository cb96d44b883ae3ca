"""Shared test fixtures for the test suite."""

from typing import Any, Optional

import pytest

from src.executor import db
from src.llm.backends import LLMCallResult
from src.workflows.schemas import PostProcessingStep, WorkflowModel, WorkflowPhase


@pytest.fixture(autouse=True)
def sqlite_db(tmp_path, monkeypatch):
    """Point the database layer at a fresh SQLite file for every test."""
    monkeypatch.setattr(db, "DATABASE_URL", "")
    monkeypatch.setattr(db, "SQLITE_PATH", tmp_path / "test_workflow.db")
    monkeypatch.setattr(db, "_initialized", False)
    db.init_db()
    yield tmp_path / "test_workflow.db"


class StubBackend:
    """Model backend returning canned responses and recording prompts."""

    def __init__(self, responses: Optional[list[Any]] = None, model_id: str = "stub-model"):
        self._responses = list(responses or [])
        self._model_id = model_id
        self.calls: list[dict] = []

    @property
    def model_id(self) -> str:
        return self._model_id

    async def generate(self, system_prompt, user_prompt, *, temperature=0.7, max_tokens=2000, label=""):
        self.calls.append({
            "system_prompt": system_prompt,
            "user_prompt": user_prompt,
            "temperature": temperature,
            "max_tokens": max_tokens,
            "label": label,
        })
        response = self._responses.pop(0) if self._responses else "stub output"
        if isinstance(response, Exception):
            raise response
        return LLMCallResult(
            content=response,
            model_id=self._model_id,
            input_tokens=10,
            output_tokens=20,
            duration_ms=5,
        )


class StubPhaseExecutor:
    """Phase executor returning fixed outputs per phase id."""

    def __init__(self, outputs_by_phase: Optional[dict[str, Any]] = None):
        self.outputs_by_phase = outputs_by_phase or {}
        self.calls: list[str] = []

    def validate_inputs(self, phase, current_outputs):
        from src.executor.phase_runner import validate_inputs

        return validate_inputs(phase, current_outputs)

    async def execute_phase(self, phase, current_outputs):
        self.calls.append(phase.id)
        result = self.outputs_by_phase.get(phase.id)
        if isinstance(result, Exception):
            raise result
        if callable(result):
            return result(phase, current_outputs)
        if result is None:
            return {key: f"{phase.id}:{key}" for key in phase.outputs}
        return dict(result)


async def no_sleep(seconds: float) -> None:
    return None


def make_phase(phase_id: str, outputs: list[str], required_inputs: Optional[list[str]] = None, **kwargs) -> WorkflowPhase:
    return WorkflowPhase(
        id=phase_id,
        name=phase_id.replace("_", " ").title(),
        model=kwargs.pop("model", "stub-model"),
        prompt_template=kwargs.pop("prompt_template", f"Write the {phase_id} for {{{{topic}}}}"),
        required_inputs=required_inputs or [],
        outputs=outputs,
        **kwargs,
    )


def make_model(
    phases: list[WorkflowPhase],
    model_id: str = "test-model",
    post_processing: Optional[list[PostProcessingStep]] = None,
    **kwargs,
) -> WorkflowModel:
    return WorkflowModel(
        id=model_id,
        name=kwargs.pop("name", "Test Model"),
        quality_levels=kwargs.pop("quality_levels", ["standard"]),
        phases=phases,
        post_processing=post_processing or [],
        **kwargs,
    )


@pytest.fixture
def stub_backend():
    return StubBackend()


@pytest.fixture
def three_part_model() -> WorkflowModel:
    """introduction -> body -> conclusion, no post-processing."""
    return make_model([
        make_phase("introduction", ["introduction"], ["topic"]),
        make_phase("body", ["body"], ["topic", "introduction"]),
        make_phase("conclusion", ["conclusion"], ["body"]),
    ])
