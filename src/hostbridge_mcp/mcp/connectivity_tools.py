"""Tools exposing the database host recovery machinery."""
from __future__ import annotations

import logging
from typing import Any

from hostbridge_mcp.connectivity.verifier import close_quietly
from hostbridge_mcp.context import ToolContext
from hostbridge_mcp.mcp.registry import tool

logger = logging.getLogger(__name__)


@tool("connection_status")
async def connection_status(ctx: ToolContext) -> dict[str, Any]:
    """Report the tracked connectivity state and pool occupancy."""
    orchestrator = ctx.orchestrator
    return {
        "target_host": orchestrator.target_host,
        "seed_host": orchestrator.seed_host,
        "last_recovery_phase": orchestrator.last_phase.value if orchestrator.last_phase else None,
        "state": orchestrator.state.snapshot(),
        "pool": ctx.pool.stats(),
    }


@tool("discover_hosts")
async def discover_hosts(ctx: ToolContext) -> dict[str, Any]:
    candidates = await ctx.orchestrator.discover_candidates()
    return {"candidates": candidates, "total": len(candidates)}


@tool("recover_connection")
async def recover_connection(ctx: ToolContext) -> dict[str, Any]:
    """Force a recovery pass now.

    Raises:
        ConnectivityError: No candidate host accepted a connection
    """
    outcome = await ctx.orchestrator.recover()
    await close_quietly(outcome.connection)
    logger.info(f"Manual recovery finished on {outcome.host}")
    return {
        "success": True,
        "host": outcome.host,
        "previous_host": outcome.previous_host,
        "host_changed": outcome.host_changed,
        "persisted": outcome.persisted,
        "attempted": outcome.attempted,
        "phases": [p.value for p in outcome.phases],
    }
