"""Resolve the effective instructions for a workflow request.

At most one org instruction set applies per request: the first enabled set
(priority desc, then most recently updated) whose scope matches on workflow
model, platform and content type. Its instructions are followed by the
per-request instructions, both sanitized, and the merged text is cut to
max_length characters. Only the org set may supply a system prompt.

Reading instruction sets is fail-open: a read error is logged and the
request proceeds with per-request instructions only.
"""

import asyncio
import logging
import os
import re
from typing import Callable, Optional

from .schemas import (
    CONTENT_TYPE_WILDCARD,
    PLATFORM_WILDCARD,
    WORKFLOW_WILDCARD,
    EffectiveInstructions,
    InstructionScope,
    InstructionSource,
    WorkflowInstructionSet,
)
from .store import list_enabled_instruction_sets

logger = logging.getLogger(__name__)

DEFAULT_MAX_LENGTH = int(os.environ.get("INSTRUCTIONS_MAX_LENGTH", "5000"))

_STRIP_PATTERNS = [
    re.compile(r"ignore\s+(?:(?:all|any|previous|prior)\s+)+instructions", re.IGNORECASE),
    re.compile(r"system\s+prompt", re.IGNORECASE),
    re.compile(r"</?thinking[^>]*>", re.IGNORECASE),
    re.compile(r"</?analysis[^>]*>", re.IGNORECASE),
]
_EXCESS_NEWLINES = re.compile(r"\n{4,}")


def sanitize_instruction_text(text: Optional[str]) -> str:
    """Strip injection phrases and reasoning-tag artifacts, collapse blank runs."""
    if not text:
        return ""
    cleaned = text
    for pattern in _STRIP_PATTERNS:
        cleaned = pattern.sub("", cleaned)
    cleaned = _EXCESS_NEWLINES.sub("\n\n\n", cleaned)
    return cleaned.strip()


def _norm(value: Optional[str], wildcard: str) -> str:
    return (value or wildcard).strip().lower() or wildcard


def scope_matches(
    scope: Optional[InstructionScope],
    workflow_model_id: Optional[str] = None,
    platform: Optional[str] = None,
    content_type: Optional[str] = None,
) -> bool:
    scope = scope or InstructionScope()
    checks = [
        (scope.workflow, workflow_model_id, WORKFLOW_WILDCARD),
        (scope.platform, platform, PLATFORM_WILDCARD),
        (scope.content_type, content_type, CONTENT_TYPE_WILDCARD),
    ]
    for scoped, requested, wildcard in checks:
        scoped_value = _norm(scoped, wildcard)
        if scoped_value != wildcard and scoped_value != _norm(requested, wildcard):
            return False
    return True


async def resolve_effective_instructions(
    org_id: Optional[str],
    workflow_model_id: Optional[str] = None,
    platform: Optional[str] = None,
    content_type: Optional[str] = None,
    per_request_instructions: Optional[str] = None,
    max_length: int = DEFAULT_MAX_LENGTH,
    loader: Callable[[str], list[WorkflowInstructionSet]] = list_enabled_instruction_sets,
) -> EffectiveInstructions:
    """Merge the matching org instruction set with per-request instructions."""
    sets: list[WorkflowInstructionSet] = []
    if org_id:
        try:
            sets = await asyncio.to_thread(loader, org_id)
        except Exception as e:
            logger.warning(f"Failed to load workflow instruction sets for org {org_id}: {e}")

    matched = next(
        (
            s for s in sets
            if scope_matches(s.scope, workflow_model_id, platform, content_type)
        ),
        None,
    )

    parts: list[str] = []
    sources: list[InstructionSource] = []
    system_prompt: Optional[str] = None

    if matched is not None:
        if matched.system_prompt:
            system_prompt = sanitize_instruction_text(matched.system_prompt) or None
        parts.append(sanitize_instruction_text(matched.instructions))
        sources.append(
            InstructionSource(
                type="org_instruction_set",
                id=matched.instruction_set_id,
                priority=matched.priority,
            )
        )

    if per_request_instructions and per_request_instructions.strip():
        parts.append(sanitize_instruction_text(per_request_instructions))
        sources.append(InstructionSource(type="per_request"))

    merged = "\n\n".join(p for p in parts if p)
    if len(merged) > max_length:
        merged = merged[:max_length]

    logger.debug(
        f"Resolved instructions for org {org_id}: "
        f"matched={matched.instruction_set_id if matched else None}, "
        f"length={len(merged)}, system_prompt={'yes' if system_prompt else 'no'}"
    )
    return EffectiveInstructions(
        system_prompt=system_prompt,
        instructions=merged,
        sources=sources,
    )
