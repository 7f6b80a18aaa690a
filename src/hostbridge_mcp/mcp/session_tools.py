"""Session log tools: record accomplishments and next steps per work session.

Both tables are created on first use in the configured database.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

import asyncpg

from hostbridge_mcp.context import ToolContext
from hostbridge_mcp.errors import ToolInputError
from hostbridge_mcp.mcp.registry import tool
from hostbridge_mcp.mcp.sql import records_to_dicts

logger = logging.getLogger(__name__)

ACCOMPLISHMENTS_DDL = """
CREATE TABLE IF NOT EXISTS session_accomplishments (
    id SERIAL PRIMARY KEY,
    session_id VARCHAR(20) NOT NULL,
    repository VARCHAR(100) NOT NULL,
    accomplishment_type VARCHAR(50) DEFAULT 'feature',
    title VARCHAR(200) NOT NULL,
    description TEXT,
    success_level VARCHAR(20) DEFAULT 'completed',
    files_created TEXT[],
    files_modified TEXT[],
    commit_hash VARCHAR(100),
    created_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP,
    updated_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP
)
"""

NEXT_STEPS_DDL = """
CREATE TABLE IF NOT EXISTS session_next_steps (
    id SERIAL PRIMARY KEY,
    session_id VARCHAR(20) NOT NULL,
    repository VARCHAR(100),
    step_type VARCHAR(50) DEFAULT 'task',
    title VARCHAR(200) NOT NULL,
    description TEXT,
    priority VARCHAR(20) DEFAULT 'medium',
    estimated_effort VARCHAR(50),
    status VARCHAR(20) DEFAULT 'pending',
    created_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP,
    updated_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP
)
"""

PRIORITIES = ("critical", "high", "medium", "low")

# critical first, unknown priorities last, newest first within a priority
PRIORITY_ORDER = """
CASE priority
    WHEN 'critical' THEN 1
    WHEN 'high' THEN 2
    WHEN 'medium' THEN 3
    WHEN 'low' THEN 4
    ELSE 5
END, created_at DESC
"""


@tool("log_accomplishment")
async def log_accomplishment(
    ctx: ToolContext,
    session_id: str,
    repository: str,
    title: str,
    accomplishment_type: str = "feature",
    description: str = "",
    success_level: str = "completed",
    files_created: list[str] | None = None,
    files_modified: list[str] | None = None,
    commit_hash: str = ""
) -> dict[str, Any]:
    """Record something finished during a session."""
    if not session_id or not repository or not title:
        raise ToolInputError("session_id, repository, and title are required")

    async with ctx.connection() as conn:
        try:
            await conn.execute(ACCOMPLISHMENTS_DDL)
            row = await conn.fetchrow(
                """
                INSERT INTO session_accomplishments
                    (session_id, repository, accomplishment_type, title, description,
                     success_level, files_created, files_modified, commit_hash)
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9)
                RETURNING id, created_at
                """,
                session_id, repository, accomplishment_type, title, description,
                success_level, list(files_created or []), list(files_modified or []),
                commit_hash or None,
            )
        except asyncpg.PostgresError as e:
            logger.error(f"Failed to log accomplishment: {e}")
            return {"success": False, "error": f"Failed to log accomplishment: {e}"}

    logger.info(f"Session {session_id}: logged accomplishment {row['id']} for {repository}")
    return {
        "success": True,
        "accomplishment_id": row["id"],
        "created_at": row["created_at"].isoformat(),
        "message": "Accomplishment logged successfully",
    }


@tool("note_next_step")
async def note_next_step(
    ctx: ToolContext,
    session_id: str,
    title: str,
    repository: str = "",
    step_type: str = "task",
    description: str = "",
    priority: str = "medium",
    estimated_effort: str = ""
) -> dict[str, Any]:
    """Record a follow-up task for a session."""
    if not session_id or not title:
        raise ToolInputError("session_id and title are required")
    if priority not in PRIORITIES:
        raise ToolInputError(f"priority must be one of {', '.join(PRIORITIES)}")

    async with ctx.connection() as conn:
        try:
            await conn.execute(NEXT_STEPS_DDL)
            row = await conn.fetchrow(
                """
                INSERT INTO session_next_steps
                    (session_id, repository, step_type, title, description,
                     priority, estimated_effort)
                VALUES ($1, $2, $3, $4, $5, $6, $7)
                RETURNING id, created_at
                """,
                session_id, repository or None, step_type, title, description,
                priority, estimated_effort or None,
            )
        except asyncpg.PostgresError as e:
            logger.error(f"Failed to record next step: {e}")
            return {"success": False, "error": f"Failed to record next step: {e}"}

    return {
        "success": True,
        "step_id": row["id"],
        "created_at": row["created_at"].isoformat(),
        "message": "Next step recorded successfully",
    }


@tool("get_session_status")
async def get_session_status(
    ctx: ToolContext,
    session_id: str,
    include_accomplishments: bool = True,
    include_next_steps: bool = True,
    repository_filter: list[str] | None = None
) -> dict[str, Any]:
    """Summarize a session's accomplishments and outstanding next steps.

    Args:
        session_id: Session to report on
        include_accomplishments: Include logged accomplishments (newest first)
        include_next_steps: Include next steps ordered by priority
        repository_filter: Only rows for these repositories
    """
    if not session_id:
        raise ToolInputError("session_id is required")

    repos = list(repository_filter or [])
    where = "WHERE session_id = $1" + (" AND repository = ANY($2::text[])" if repos else "")
    args: list[Any] = [session_id, repos] if repos else [session_id]

    data: dict[str, Any] = {
        "session_id": session_id,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }

    async with ctx.connection() as conn:
        try:
            if include_accomplishments:
                await conn.execute(ACCOMPLISHMENTS_DDL)
                rows = await conn.fetch(
                    f"""
                    SELECT id, repository, accomplishment_type, title, description,
                           success_level, files_created, files_modified, commit_hash, created_at
                    FROM session_accomplishments
                    {where}
                    ORDER BY created_at DESC
                    """,
                    *args,
                )
                data["accomplishments"] = records_to_dicts(rows)

            if include_next_steps:
                await conn.execute(NEXT_STEPS_DDL)
                rows = await conn.fetch(
                    f"""
                    SELECT id, repository, step_type, title, description,
                           priority, estimated_effort, status, created_at
                    FROM session_next_steps
                    {where}
                    ORDER BY {PRIORITY_ORDER}
                    """,
                    *args,
                )
                data["next_steps"] = records_to_dicts(rows)
        except asyncpg.PostgresError as e:
            logger.error(f"Failed to get session status: {e}")
            return {"success": False, "error": f"Failed to get session status: {e}"}

    return {"success": True, "data": data}
