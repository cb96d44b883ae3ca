"""Database layer for the generation queue and organization data.

Supports two backends:
- PostgreSQL (production, set EXECUTOR_DATABASE_URL env var)
- SQLite (local development and tests, default)

Uses raw SQL via psycopg2 (Postgres) or sqlite3 (SQLite). No ORM.

Tables:
- blog_generation_queue: one row per generation request, polled by clients
- workflow_instruction_sets: per-org prompt instructions, scoped
- api_sessions: bearer token -> user id
- user_organizations: user id -> org id

Thread-safety: Postgres uses a ThreadedConnectionPool for connection reuse.
SQLite uses per-call connections with check_same_thread=False.
"""

import json
import logging
import os
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

# Database URL: postgres://... for Postgres, or empty for SQLite
DATABASE_URL = os.environ.get("EXECUTOR_DATABASE_URL", "")

# SQLite default path
SQLITE_PATH = Path(__file__).parent / "workflow.db"

_initialized = False
_pg_pool = None


def _is_postgres() -> bool:
    """Check if we're using Postgres."""
    return DATABASE_URL.startswith("postgres")


def _get_pg_pool():
    """Get or create the Postgres connection pool (lazy singleton)."""
    global _pg_pool
    if _pg_pool is None:
        import psycopg2.pool
        _pg_pool = psycopg2.pool.ThreadedConnectionPool(
            minconn=1,
            maxconn=5,
            dsn=DATABASE_URL,
        )
        logger.info("PostgreSQL connection pool initialized (1-5 connections)")
    return _pg_pool


@contextmanager
def get_connection():
    """Get a database connection (Postgres or SQLite).

    Usage:
        with get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(...)
            conn.commit()
    """
    if _is_postgres():
        pool = _get_pg_pool()
        conn = pool.getconn()
        try:
            yield conn
        finally:
            pool.putconn(conn)
    else:
        conn = sqlite3.connect(str(SQLITE_PATH), check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        try:
            yield conn
        finally:
            conn.close()


def _json_dumps(data: Any) -> str:
    """Serialize data to JSON string for storage."""
    if data is None:
        return "{}"
    return json.dumps(data, ensure_ascii=False, default=str)


def _json_loads(text: Any) -> Any:
    """Deserialize JSON string from storage."""
    if not text:
        return {}
    if isinstance(text, (dict, list)):
        return text  # Already parsed (Postgres JSONB)
    return json.loads(text)


def execute(sql: str, params: tuple = (), fetch: str = "none") -> Any:
    """Execute a SQL statement.

    Args:
        sql: SQL statement with %s placeholders (rewritten to ? for SQLite)
        params: Parameters tuple
        fetch: "none", "one", "all", "rowcount"

    Returns:
        None for "none", dict for "one", list[dict] for "all",
        int for "rowcount"
    """
    if _is_postgres():
        adapted_sql = sql
    else:
        adapted_sql = sql.replace("%s", "?")

    with get_connection() as conn:
        cursor = conn.cursor()
        cursor.execute(adapted_sql, params)

        if fetch == "none":
            conn.commit()
            return None
        elif fetch == "rowcount":
            conn.commit()
            return cursor.rowcount
        elif fetch == "one":
            row = cursor.fetchone()
            if row is None:
                return None
            if _is_postgres():
                columns = [desc[0] for desc in cursor.description]
                return dict(zip(columns, row))
            else:
                return dict(row)
        elif fetch == "all":
            rows = cursor.fetchall()
            if _is_postgres():
                columns = [desc[0] for desc in cursor.description]
                return [dict(zip(columns, row)) for row in rows]
            else:
                return [dict(row) for row in rows]

        conn.commit()
        return None


def init_db():
    """Create tables if they don't exist."""
    global _initialized
    if _initialized:
        return

    if _is_postgres():
        _init_postgres()
        _migrate_postgres()
    else:
        _init_sqlite()

    _initialized = True
    backend = "PostgreSQL" if _is_postgres() else f"SQLite ({SQLITE_PATH})"
    logger.info(f"Workflow database initialized: {backend}")


def _migrate_postgres():
    """Add columns that may be missing from existing tables."""
    migrations = [
        "ALTER TABLE blog_generation_queue ADD COLUMN IF NOT EXISTS current_stage VARCHAR(100)",
        "ALTER TABLE blog_generation_queue ADD COLUMN IF NOT EXISTS progress_percentage INTEGER DEFAULT 0",
        "ALTER TABLE blog_generation_queue ADD COLUMN IF NOT EXISTS generated_excerpt TEXT",
    ]
    with get_connection() as conn:
        cursor = conn.cursor()
        for sql in migrations:
            try:
                cursor.execute(sql)
            except Exception as e:
                logger.debug(f"Migration skipped (already applied?): {e}")
        conn.commit()


def _init_postgres():
    """Create Postgres tables."""
    ddl = """
    CREATE TABLE IF NOT EXISTS blog_generation_queue (
        queue_id VARCHAR(100) PRIMARY KEY,
        org_id VARCHAR(100) NOT NULL,
        created_by VARCHAR(100),
        topic TEXT NOT NULL,
        keywords JSONB DEFAULT '[]',
        status VARCHAR(20) NOT NULL DEFAULT 'queued',
        priority INTEGER DEFAULT 5,
        quality_level VARCHAR(50),
        custom_instructions TEXT,
        progress_percentage INTEGER DEFAULT 0,
        current_stage VARCHAR(100),
        generated_content TEXT,
        generated_excerpt TEXT,
        metadata JSONB DEFAULT '{}',
        queued_at TIMESTAMP DEFAULT NOW(),
        generation_started_at TIMESTAMP,
        generation_completed_at TIMESTAMP,
        generation_error TEXT,
        updated_at TIMESTAMP DEFAULT NOW()
    );

    CREATE INDEX IF NOT EXISTS idx_queue_org
        ON blog_generation_queue(org_id, queued_at);

    CREATE TABLE IF NOT EXISTS workflow_instruction_sets (
        instruction_set_id VARCHAR(100) PRIMARY KEY,
        org_id VARCHAR(100) NOT NULL,
        enabled BOOLEAN NOT NULL DEFAULT TRUE,
        scope JSONB DEFAULT '{}',
        system_prompt TEXT,
        instructions TEXT NOT NULL DEFAULT '',
        priority INTEGER NOT NULL DEFAULT 0,
        created_by VARCHAR(100),
        updated_by VARCHAR(100),
        created_at TIMESTAMP DEFAULT NOW(),
        updated_at TIMESTAMP DEFAULT NOW()
    );

    CREATE INDEX IF NOT EXISTS idx_instruction_sets_org
        ON workflow_instruction_sets(org_id, enabled, priority);

    CREATE TABLE IF NOT EXISTS api_sessions (
        token VARCHAR(200) PRIMARY KEY,
        user_id VARCHAR(100) NOT NULL,
        expires_at TIMESTAMP,
        created_at TIMESTAMP DEFAULT NOW()
    );

    CREATE TABLE IF NOT EXISTS user_organizations (
        user_id VARCHAR(100) NOT NULL,
        org_id VARCHAR(100) NOT NULL,
        role VARCHAR(50) DEFAULT 'member',
        created_at TIMESTAMP DEFAULT NOW(),
        PRIMARY KEY (user_id, org_id)
    );
    """
    with get_connection() as conn:
        cursor = conn.cursor()
        cursor.execute(ddl)
        conn.commit()


def _init_sqlite():
    """Create SQLite tables."""
    ddl = """
    CREATE TABLE IF NOT EXISTS blog_generation_queue (
        queue_id TEXT PRIMARY KEY,
        org_id TEXT NOT NULL,
        created_by TEXT,
        topic TEXT NOT NULL,
        keywords TEXT DEFAULT '[]',
        status TEXT NOT NULL DEFAULT 'queued',
        priority INTEGER DEFAULT 5,
        quality_level TEXT,
        custom_instructions TEXT,
        progress_percentage INTEGER DEFAULT 0,
        current_stage TEXT,
        generated_content TEXT,
        generated_excerpt TEXT,
        metadata TEXT DEFAULT '{}',
        queued_at TEXT,
        generation_started_at TEXT,
        generation_completed_at TEXT,
        generation_error TEXT,
        updated_at TEXT
    );

    CREATE INDEX IF NOT EXISTS idx_queue_org
        ON blog_generation_queue(org_id, queued_at);

    CREATE TABLE IF NOT EXISTS workflow_instruction_sets (
        instruction_set_id TEXT PRIMARY KEY,
        org_id TEXT NOT NULL,
        enabled INTEGER NOT NULL DEFAULT 1,
        scope TEXT DEFAULT '{}',
        system_prompt TEXT,
        instructions TEXT NOT NULL DEFAULT '',
        priority INTEGER NOT NULL DEFAULT 0,
        created_by TEXT,
        updated_by TEXT,
        created_at TEXT,
        updated_at TEXT
    );

    CREATE INDEX IF NOT EXISTS idx_instruction_sets_org
        ON workflow_instruction_sets(org_id, enabled, priority);

    CREATE TABLE IF NOT EXISTS api_sessions (
        token TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        expires_at TEXT,
        created_at TEXT
    );

    CREATE TABLE IF NOT EXISTS user_organizations (
        user_id TEXT NOT NULL,
        org_id TEXT NOT NULL,
        role TEXT DEFAULT 'member',
        created_at TEXT,
        PRIMARY KEY (user_id, org_id)
    );
    """
    with get_connection() as conn:
        cursor = conn.cursor()
        cursor.executescript(ddl)
        conn.commit()
