"""FastAPI surface of the peer message relay."""
from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from hostbridge_mcp.bridge.relay import BridgeRelay
from hostbridge_mcp.config import Settings

logger = logging.getLogger(__name__)

HISTORY_WINDOW = 50


async def flush_loop(relay: BridgeRelay, interval: float) -> None:
    """Retry pending messages every ``interval`` seconds."""
    while True:
        try:
            await asyncio.sleep(interval)
            if relay.pending:
                await relay.flush_pending()
        except asyncio.CancelledError:
            break
        except Exception as e:
            logger.error(f"Pending message flush failed: {e}", exc_info=True)


def create_bridge_app(
    settings: Settings,
    relay: BridgeRelay | None = None,
    flush_interval: float | None = 30.0
) -> FastAPI:
    """Build the relay app.

    Args:
        settings: Loaded site settings
        relay: Existing relay (a new one is built from ``settings.bridge`` otherwise)
        flush_interval: Seconds between pending-message retries; None disables it
    """
    relay = relay or BridgeRelay(settings.bridge)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(f"Bridge {relay.bridge_id} starting, peer at {relay.config.peer_url}")
        task = asyncio.create_task(flush_loop(relay, flush_interval)) if flush_interval else None
        yield
        if task is not None:
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
        logger.info("Bridge shutting down")

    app = FastAPI(
        title="HostBridge Relay",
        description="Store-and-forward message relay between HostBridge peers",
        lifespan=lifespan,
    )
    app.state.relay = relay

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.post("/bridge/message")
    async def receive_message(request: Request):
        try:
            data = await request.json()
        except ValueError as e:
            return JSONResponse(status_code=400, content={"status": "error", "error": f"Invalid JSON: {e}"})
        if not isinstance(data, dict):
            return JSONResponse(status_code=400, content={"status": "error", "error": "Message must be an object"})

        result = await relay.handle_incoming(data)
        status = 200 if result["status"] == "processed" else 400
        return JSONResponse(status_code=status, content=result)

    @app.api_route("/bridge/status", methods=["GET", "POST"])
    async def bridge_status() -> dict[str, Any]:
        return relay.status()

    @app.api_route("/bridge/history", methods=["GET", "POST"])
    async def bridge_history() -> dict[str, Any]:
        return {"messages": relay.recent_history(HISTORY_WINDOW)}

    @app.get("/bridge/health")
    async def bridge_health() -> dict[str, Any]:
        return {
            "status": "healthy",
            "bridge": "HostBridge Relay",
            "bridge_id": relay.bridge_id,
            "timestamp": datetime.now().isoformat(),
        }

    return app


def run_bridge(settings: Settings, host: str = "0.0.0.0", port: int | None = None):
    """Run the relay using uvicorn."""
    import uvicorn

    port = port or settings.bridge.port
    logger.info(f"Starting HostBridge relay on http://{host}:{port}/bridge/health")
    uvicorn.run(create_bridge_app(settings), host=host, port=port)
