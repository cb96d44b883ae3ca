"""Per-organization workflow instructions.

Organizations store instruction sets (scoped by workflow model, platform and
content type). The resolver picks the single best-matching set for a request,
merges it with per-request instructions, and sanitizes the result before it
reaches any prompt.
"""

from src.instructions.resolver import resolve_effective_instructions, sanitize_instruction_text
from src.instructions.schemas import (
    EffectiveInstructions,
    InstructionScope,
    InstructionSource,
    WorkflowInstructionSet,
)

__all__ = [
    "resolve_effective_instructions",
    "sanitize_instruction_text",
    "EffectiveInstructions",
    "InstructionScope",
    "InstructionSource",
    "WorkflowInstructionSet",
]
