"""Shared FastAPI dependencies: org context, Blog Writer client, model registry."""

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from fastapi import Header, HTTPException

from src.blog_writer.client import BlogWriterClient, get_blog_writer_client
from src.executor.db import execute, init_db
from src.workflows.registry import WorkflowModelRegistry, get_workflow_model_registry

logger = logging.getLogger(__name__)

SESSION_TTL_HOURS = 24


@dataclass
class OrgContext:
    """Authenticated caller and the organization it acts for."""

    user_id: str
    org_id: str
    role: Optional[str] = None


def _bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def _is_expired(expires_at) -> bool:
    if not expires_at:
        return False
    if isinstance(expires_at, str):
        try:
            expires_at = datetime.fromisoformat(expires_at)
        except ValueError:
            logger.warning(f"Unparseable session expiry: {expires_at!r}")
            return True
    if expires_at.tzinfo is not None:
        expires_at = expires_at.replace(tzinfo=None)
    return expires_at <= datetime.utcnow()


def require_org_context(
    authorization: Optional[str] = Header(default=None),
) -> OrgContext:
    """Resolve the bearer token to a user, then the user to an organization.

    401 when the token is missing, unknown or expired; 400 when the user
    belongs to no organization.
    """
    token = _bearer_token(authorization)
    if token is None:
        raise HTTPException(status_code=401, detail="Unauthorized")

    init_db()
    session = execute(
        "SELECT user_id, expires_at FROM api_sessions WHERE token = %s",
        (token,),
        fetch="one",
    )
    if session is None or _is_expired(session.get("expires_at")):
        raise HTTPException(status_code=401, detail="Unauthorized")

    membership = execute(
        """SELECT org_id, role FROM user_organizations
           WHERE user_id = %s
           ORDER BY created_at ASC LIMIT 1""",
        (session["user_id"],),
        fetch="one",
    )
    if membership is None:
        raise HTTPException(status_code=400, detail="No organization found")

    return OrgContext(
        user_id=session["user_id"],
        org_id=membership["org_id"],
        role=membership.get("role"),
    )


def create_session(
    user_id: str,
    token: Optional[str] = None,
    ttl_hours: Optional[int] = SESSION_TTL_HOURS,
) -> str:
    """Issue an API session token for a user. ttl_hours=None never expires."""
    init_db()
    token = token or secrets.token_urlsafe(32)
    now = datetime.utcnow()
    expires_at = (now + timedelta(hours=ttl_hours)).isoformat() if ttl_hours else None
    execute(
        "INSERT INTO api_sessions (token, user_id, expires_at, created_at) VALUES (%s, %s, %s, %s)",
        (token, user_id, expires_at, now.isoformat()),
    )
    return token


def add_user_to_org(user_id: str, org_id: str, role: str = "member") -> None:
    init_db()
    execute(
        "INSERT INTO user_organizations (user_id, org_id, role, created_at) VALUES (%s, %s, %s, %s)",
        (user_id, org_id, role, datetime.utcnow().isoformat()),
    )
    logger.info(f"User {user_id} added to org {org_id} as {role}")


def get_blog_writer() -> BlogWriterClient:
    return get_blog_writer_client()


def get_model_registry() -> WorkflowModelRegistry:
    return get_workflow_model_registry()
