"""Runs a single workflow phase: validate, render, call the model, parse.

One execute_phase() call makes exactly one backend call. Retries, backoff
and progress are the engine's job (src/workflows/engine.py).

Output parsing:
- one declared output: the whole response text
- several outputs: a JSON object is parsed from the response and each
  declared key takes its value (or the whole text when the key is absent
  or null); if no JSON object can be parsed, only the first declared
  output is written, with the whole text
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from src.llm.backends import ModelBackend
from src.llm.client import extract_json
from src.llm.factory import get_backend
from src.workflows.schemas import WorkflowPhase
from src.workflows.templating import render_template

logger = logging.getLogger(__name__)


@dataclass
class InputValidation:
    valid: bool
    missing: list[str] = field(default_factory=list)


def validate_inputs(phase: WorkflowPhase, current_outputs: dict[str, Any]) -> InputValidation:
    """Check every required input is present and not None."""
    missing = [
        key for key in phase.required_inputs
        if current_outputs.get(key) is None
    ]
    return InputValidation(valid=not missing, missing=missing)


def parse_phase_outputs(phase: WorkflowPhase, content: str) -> dict[str, Any]:
    """Map a raw model response onto the phase's declared outputs."""
    if len(phase.outputs) == 1:
        return {phase.outputs[0]: content}

    try:
        parsed = extract_json(content)
    except ValueError as e:
        logger.warning(
            f"[{phase.id}] Could not parse JSON for outputs {phase.outputs}: {e}. "
            f"Assigning full response to '{phase.outputs[0]}'"
        )
        return {phase.outputs[0]: content}

    if not isinstance(parsed, dict):
        logger.warning(
            f"[{phase.id}] Expected a JSON object, got {type(parsed).__name__}. "
            f"Assigning full response to '{phase.outputs[0]}'"
        )
        return {phase.outputs[0]: content}

    return {
        key: parsed[key] if parsed.get(key) is not None else content
        for key in phase.outputs
    }


class PhaseExecutor:
    """Executes workflow phases against LLM backends."""

    def __init__(self, backend_factory: Callable[[str], ModelBackend] = get_backend):
        self._backend_factory = backend_factory

    def validate_inputs(
        self, phase: WorkflowPhase, current_outputs: dict[str, Any]
    ) -> InputValidation:
        return validate_inputs(phase, current_outputs)

    async def execute_phase(
        self, phase: WorkflowPhase, current_outputs: dict[str, Any]
    ) -> dict[str, Any]:
        """Run one phase and return its outputs (keys from phase.outputs only)."""
        prompt = render_template(
            phase.prompt_template, current_outputs, strict=phase.strict_template
        )
        system_prompt: Optional[str] = None
        if phase.system_prompt:
            system_prompt = render_template(
                phase.system_prompt, current_outputs, strict=phase.strict_template
            ).strip() or None

        backend = self._backend_factory(phase.model)
        call = backend.generate(
            system_prompt,
            prompt,
            temperature=phase.temperature,
            max_tokens=phase.max_tokens,
            label=phase.id,
        )

        if phase.timeout:
            try:
                result = await asyncio.wait_for(call, timeout=phase.timeout / 1000)
            except asyncio.TimeoutError:
                raise TimeoutError(
                    f"Phase {phase.id} timed out after {phase.timeout}ms"
                ) from None
        else:
            result = await call

        logger.info(
            f"[{phase.id}] Phase call done: model={result.model_id}, "
            f"tokens={result.input_tokens}+{result.output_tokens}, {result.duration_ms}ms"
        )
        outputs = parse_phase_outputs(phase, result.content)
        return {key: value for key, value in outputs.items() if key in phase.outputs}
