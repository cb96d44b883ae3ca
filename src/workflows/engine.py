"""Workflow engine: runs one WorkflowModel against one WorkflowInput.

State machine: pending -> running -> completed | failed.

Per phase, in declaration order:
1. validate required inputs (missing inputs fail the workflow, no LLM call)
2. execute, retrying when retry_on_failure is set
   (attempts = max_retries or 3, backoff min(1000 * 2**(attempt-1), 10000) ms)
3. merge the phase outputs into phase_outputs (last write wins)

Then enabled post-processing steps run in order. Their failures are logged
and skipped unless stop_on_error is set.

execute() never raises. Failures come back as WorkflowResult(success=False).
"""

import asyncio
import copy
import logging
import math
import secrets
import time
from datetime import datetime
from typing import Any, Awaitable, Callable, Optional

from src.content.assembly import assemble_content
from src.content.excerpt import extract_excerpt
from src.executor.phase_runner import PhaseExecutor
from src.postprocessing.registry import (
    PostProcessingContext,
    PostProcessorRegistry,
    get_post_processor_registry,
)

from .errors import MissingInputsError
from .schemas import (
    WorkflowEngineConfig,
    WorkflowInput,
    WorkflowModel,
    WorkflowPhase,
    WorkflowResult,
    WorkflowState,
    WorkflowStatus,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 3
BASE_RETRY_DELAY_MS = 1000
MAX_RETRY_DELAY_MS = 10000
POST_PROCESSING_PROGRESS_START = 80

DEFAULT_TARGET_AUDIENCE = "general audience"
DEFAULT_TONE = "professional"
DEFAULT_WORD_COUNT = 1500
DEFAULT_ARTICLE_GOAL = "inform and engage"

_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"


def _base36(n: int) -> str:
    if n == 0:
        return "0"
    digits = []
    while n:
        n, r = divmod(n, 36)
        digits.append(_BASE36[r])
    return "".join(reversed(digits))


def generate_workflow_id() -> str:
    """wf_<base36 ms timestamp>_<random suffix>. Readable, not cryptographic."""
    return f"wf_{_base36(int(time.time() * 1000))}_{secrets.token_hex(5)[:9]}"


def retry_delay_ms(attempt: int) -> int:
    """Backoff before the next try, after `attempt` failed attempts."""
    return min(BASE_RETRY_DELAY_MS * 2 ** (attempt - 1), MAX_RETRY_DELAY_MS)


def round_progress(value: float) -> int:
    """Round half up, clamped to 0..100."""
    return max(0, min(100, int(math.floor(value + 0.5))))


def prepare_initial_outputs(inputs: WorkflowInput) -> dict[str, Any]:
    """Seed phase_outputs from the caller's input, applying defaults."""
    keywords = [k for k in inputs.keywords if k]
    secondary = inputs.secondary_keywords
    if secondary is None:
        secondary = keywords[1:]

    outputs: dict[str, Any] = {
        "topic": inputs.topic,
        "keywords": ", ".join(keywords),
        "primary_keyword": inputs.primary_keyword or (keywords[0] if keywords else ""),
        "secondary_keywords": ", ".join(secondary),
        "target_audience": inputs.target_audience or DEFAULT_TARGET_AUDIENCE,
        "tone": inputs.tone or DEFAULT_TONE,
        "word_count": inputs.word_count or DEFAULT_WORD_COUNT,
        "article_goal": inputs.article_goal or DEFAULT_ARTICLE_GOAL,
        "site_context": inputs.site_context or "",
        "custom_instructions": inputs.custom_instructions or "",
        "system_instructions": inputs.system_instructions or "",
    }

    handled = set(outputs) | {"secondary_keywords"}
    for key, value in inputs.model_dump().items():
        if key in handled or key.startswith("_") or value is None:
            continue
        outputs[key] = value
    return outputs


class WorkflowEngine:
    """Executes a workflow model. One engine instance per execution."""

    def __init__(
        self,
        model: WorkflowModel,
        inputs: WorkflowInput,
        config: Optional[WorkflowEngineConfig] = None,
        *,
        phase_executor: Optional[PhaseExecutor] = None,
        post_processors: Optional[PostProcessorRegistry] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.model = model
        self.inputs = inputs
        self.config = config or WorkflowEngineConfig()
        self._executor = phase_executor or PhaseExecutor()
        self._post_processors = post_processors
        self._sleep = sleep
        self._started_monotonic: Optional[float] = None
        self._duration_ms: Optional[int] = None
        self._result: Optional[WorkflowResult] = None

        self.state = WorkflowState(
            workflow_id=generate_workflow_id(),
            model_id=model.id,
            phase_outputs=prepare_initial_outputs(inputs),
        )
        self._progress_budget = (
            POST_PROCESSING_PROGRESS_START if model.has_post_processing else 100
        )

    @property
    def workflow_id(self) -> str:
        return self.state.workflow_id

    def get_state(self) -> WorkflowState:
        return self.state.model_copy(deep=True)

    def get_outputs(self) -> dict[str, Any]:
        return copy.deepcopy(self.state.phase_outputs)

    async def execute(self) -> WorkflowResult:
        """Run all phases and post-processing. Never raises."""
        if self._result is not None:
            return self._result
        if self.state.status != WorkflowStatus.PENDING:
            return self.build_result()

        self.state.status = WorkflowStatus.RUNNING
        self.state.started_at = datetime.utcnow().isoformat()
        self._started_monotonic = time.monotonic()
        logger.info(
            f"[{self.workflow_id}] Starting workflow model '{self.model.id}' "
            f"({len(self.model.phases)} phases) for topic: {self.inputs.topic[:80]}"
        )

        try:
            total = len(self.model.phases)
            for index, phase in enumerate(self.model.phases):
                await self._run_phase(phase, index, total)

            await self._run_post_processing()

            self.state.status = WorkflowStatus.COMPLETED
            self.state.current_phase = None
            self._set_progress(100, "complete", "Workflow completed")
            logger.info(f"[{self.workflow_id}] Workflow completed")
        except Exception as e:
            self.state.status = WorkflowStatus.FAILED
            self.state.error = str(e) or type(e).__name__
            logger.error(
                f"[{self.workflow_id}] Workflow failed at phase "
                f"'{self.state.current_phase}': {self.state.error}"
            )
        finally:
            self.state.completed_at = datetime.utcnow().isoformat()
            self._duration_ms = int((time.monotonic() - self._started_monotonic) * 1000)

        self._result = self.build_result()
        return self._result

    async def _run_phase(self, phase: WorkflowPhase, index: int, total: int) -> None:
        self.state.current_phase = phase.id
        start = index / total * self._progress_budget
        end = (index + 1) / total * self._progress_budget
        self._set_progress(start, phase.id, f"Starting {phase.name}")

        validation = self._executor.validate_inputs(phase, self.state.phase_outputs)
        if not validation.valid:
            raise MissingInputsError(phase.id, validation.missing)

        self._set_progress((start + end) / 2, phase.id, f"Running {phase.name}")
        outputs = await self._execute_with_retry(phase)
        self.state.phase_outputs.update(outputs)
        self._set_progress(end, phase.id, f"Completed {phase.name}")

    async def _execute_with_retry(self, phase: WorkflowPhase) -> dict[str, Any]:
        max_attempts = (phase.max_retries or DEFAULT_MAX_ATTEMPTS) if phase.retry_on_failure else 1
        last_error: Optional[Exception] = None

        for attempt in range(1, max_attempts + 1):
            if attempt > 1:
                delay_ms = retry_delay_ms(attempt - 1)
                logger.warning(
                    f"[{self.workflow_id}:{phase.id}] Retry {attempt}/{max_attempts} "
                    f"after {delay_ms}ms (last error: {last_error})"
                )
                await self._sleep(delay_ms / 1000)

            try:
                outputs = await self._executor.execute_phase(
                    phase, dict(self.state.phase_outputs)
                )
                return outputs
            except Exception as e:
                last_error = e
                logger.error(
                    f"[{self.workflow_id}:{phase.id}] Attempt {attempt}/{max_attempts} failed: {e}"
                )

        raise last_error

    async def _run_post_processing(self) -> None:
        steps = [step for step in self.model.post_processing if step.enabled]
        if not steps:
            return

        registry = self._post_processors or get_post_processor_registry()
        for index, step in enumerate(steps):
            self.state.current_phase = step.id
            context = PostProcessingContext(
                workflow_id=self.workflow_id,
                model_id=self.model.id,
                step_id=step.id,
                org_id=self.inputs.org_id,
            )
            try:
                result = await registry.run(step, self.state.phase_outputs, context)
                self.state.phase_outputs.update(result)
            except Exception as e:
                if self.config.stop_on_error:
                    raise
                logger.warning(
                    f"[{self.workflow_id}] Post-processing step '{step.id}' failed "
                    f"(continuing): {e}"
                )

            progress = POST_PROCESSING_PROGRESS_START + (index + 1) / len(steps) * (
                100 - POST_PROCESSING_PROGRESS_START
            )
            self._set_progress(progress, step.id, f"Completed {step.name}")

    def _set_progress(self, value: float, phase_id: str, message: str) -> None:
        progress = round_progress(value)
        if progress < self.state.progress:
            progress = self.state.progress
        self.state.progress = progress
        if self.config.on_progress is not None:
            try:
                self.config.on_progress(phase_id, progress, message)
            except Exception as e:
                logger.warning(f"[{self.workflow_id}] Progress callback failed: {e}")

    def build_result(self) -> WorkflowResult:
        """Assemble the result from current state."""
        outputs = self.state.phase_outputs
        content = assemble_content(outputs)
        excerpt = outputs.get("excerpt") or extract_excerpt(content)

        metadata = {
            "workflow_id": self.workflow_id,
            "model_id": self.model.id,
            "model_name": self.model.name,
            "duration_ms": self._duration_ms,
            "phases": [p.id for p in self.model.phases],
        }
        return WorkflowResult(
            success=self.state.status == WorkflowStatus.COMPLETED,
            state=self.get_state(),
            content=content,
            excerpt=str(excerpt),
            metadata=metadata,
            error=self.state.error,
        )


async def execute_workflow(
    model: WorkflowModel,
    inputs: WorkflowInput,
    config: Optional[WorkflowEngineConfig] = None,
    **engine_kwargs: Any,
) -> WorkflowResult:
    """Create an engine and run it to completion."""
    engine = WorkflowEngine(model, inputs, config, **engine_kwargs)
    return await engine.execute()
