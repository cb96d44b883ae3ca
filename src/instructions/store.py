"""Persistence for workflow_instruction_sets."""

import logging
import uuid
from datetime import datetime
from typing import Optional

from src.executor.db import _json_dumps, _json_loads, execute, init_db

from .schemas import InstructionScope, WorkflowInstructionSet

logger = logging.getLogger(__name__)


def _row_to_set(row: dict) -> WorkflowInstructionSet:
    scope = _json_loads(row.get("scope")) or {}
    for key in ("created_at", "updated_at"):
        val = row.get(key)
        if isinstance(val, datetime):
            row[key] = val.isoformat()
    return WorkflowInstructionSet(
        instruction_set_id=row["instruction_set_id"],
        org_id=row["org_id"],
        enabled=bool(row.get("enabled")),
        scope=InstructionScope.model_validate(scope),
        system_prompt=row.get("system_prompt"),
        instructions=row.get("instructions") or "",
        priority=row.get("priority") or 0,
        created_by=row.get("created_by"),
        updated_by=row.get("updated_by"),
        created_at=row.get("created_at"),
        updated_at=row.get("updated_at"),
    )


def list_enabled_instruction_sets(org_id: str) -> list[WorkflowInstructionSet]:
    """Enabled sets for an org, highest priority first, then most recently updated."""
    init_db()
    rows = execute(
        """SELECT * FROM workflow_instruction_sets
           WHERE org_id = %s AND enabled = %s
           ORDER BY priority DESC, updated_at DESC""",
        (org_id, True),
        fetch="all",
    )
    return [_row_to_set(row) for row in rows]


def list_instruction_sets(org_id: str) -> list[WorkflowInstructionSet]:
    """All sets for an org (enabled or not)."""
    init_db()
    rows = execute(
        """SELECT * FROM workflow_instruction_sets
           WHERE org_id = %s
           ORDER BY priority DESC, updated_at DESC""",
        (org_id,),
        fetch="all",
    )
    return [_row_to_set(row) for row in rows]


def save_instruction_set(
    org_id: str,
    instructions: str,
    *,
    scope: Optional[dict] = None,
    system_prompt: Optional[str] = None,
    priority: int = 0,
    enabled: bool = True,
    user_id: Optional[str] = None,
    instruction_set_id: Optional[str] = None,
    updated_at: Optional[str] = None,
) -> WorkflowInstructionSet:
    """Insert or replace an instruction set and return it."""
    init_db()
    now = datetime.utcnow().isoformat()
    set_id = instruction_set_id or f"wis-{uuid.uuid4().hex[:12]}"
    scope_model = InstructionScope.model_validate(scope or {})

    existing = execute(
        "SELECT created_at, created_by FROM workflow_instruction_sets WHERE instruction_set_id = %s",
        (set_id,),
        fetch="one",
    )
    if existing:
        execute(
            """UPDATE workflow_instruction_sets
               SET org_id = %s, enabled = %s, scope = %s, system_prompt = %s,
                   instructions = %s, priority = %s, updated_by = %s, updated_at = %s
               WHERE instruction_set_id = %s""",
            (org_id, enabled, _json_dumps(scope_model.model_dump()), system_prompt,
             instructions, priority, user_id, updated_at or now, set_id),
        )
    else:
        execute(
            """INSERT INTO workflow_instruction_sets
               (instruction_set_id, org_id, enabled, scope, system_prompt,
                instructions, priority, created_by, updated_by, created_at, updated_at)
               VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)""",
            (set_id, org_id, enabled, _json_dumps(scope_model.model_dump()), system_prompt,
             instructions, priority, user_id, user_id, now, updated_at or now),
        )

    logger.info(f"Saved instruction set {set_id} for org {org_id} (priority {priority})")
    row = execute(
        "SELECT * FROM workflow_instruction_sets WHERE instruction_set_id = %s",
        (set_id,),
        fetch="one",
    )
    return _row_to_set(row)


def delete_instruction_set(instruction_set_id: str) -> bool:
    init_db()
    count = execute(
        "DELETE FROM workflow_instruction_sets WHERE instruction_set_id = %s",
        (instruction_set_id,),
        fetch="rowcount",
    )
    return bool(count)
