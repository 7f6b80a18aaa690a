"""FastAPI HTTP transport for the HostBridge MCP server.

Exposes the same MCP methods as the stdio server as plain HTTP endpoints so
that clients outside the container can reach them:

    POST /mcp/initialize
    POST /mcp/tools/list
    POST /mcp/tools/call
    GET  /mcp/health
    GET  /mcp/info
"""
from __future__ import annotations

import hmac
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from hostbridge_mcp import __version__
from hostbridge_mcp.config import Settings
from hostbridge_mcp.context import ToolContext
from hostbridge_mcp.errors import ConnectivityError
from hostbridge_mcp.mcp.server import (
    DATABASE_UNAVAILABLE,
    INVALID_PARAMS,
    METHOD_NOT_FOUND,
    SERVER_NAME,
    handle_request,
)

logger = logging.getLogger(__name__)

ENDPOINTS = [
    "/mcp/initialize",
    "/mcp/tools/list",
    "/mcp/tools/call",
    "/mcp/health",
    "/mcp/info",
]

# JSON-RPC error code -> HTTP status
ERROR_STATUS = {
    DATABASE_UNAVAILABLE: 503,
    INVALID_PARAMS: 400,
    METHOD_NOT_FOUND: 404,
}


class InitializeRequest(BaseModel):
    """Request body for /mcp/initialize."""
    id: Any = 1
    params: dict[str, Any] = Field(default_factory=dict)


class ToolCallRequest(BaseModel):
    """Request body for /mcp/tools/call."""
    id: Any = 1
    name: str
    arguments: dict[str, Any] = Field(default_factory=dict)


def create_app(settings: Settings, context: ToolContext | None = None) -> FastAPI:
    """Build the HTTP app.

    Args:
        settings: Loaded site settings
        context: Prebuilt tool context (built from ``settings`` at startup otherwise)
    """
    http = settings.http

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan handler for startup/shutdown events."""
        logger.info("HostBridge HTTP server starting up...")
        app.state.ctx = context or ToolContext.from_settings(settings)
        yield
        logger.info("HostBridge HTTP server shutting down...")
        await app.state.ctx.close()

    app = FastAPI(
        title="HostBridge MCP",
        description="MCP tools for PostgreSQL administration over HTTP",
        version=__version__,
        lifespan=lifespan,
    )

    if http.cors_enabled:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    async def require_token(request: Request) -> None:
        if not http.auth_enabled:
            return
        header = request.headers.get("Authorization", "")
        if not header.startswith("Bearer "):
            raise HTTPException(status_code=401, detail="Unauthorized")
        if not hmac.compare_digest(header[len("Bearer "):], http.auth_token):
            raise HTTPException(status_code=401, detail="Unauthorized")

    async def dispatch(request: Request, rpc: dict[str, Any]) -> JSONResponse:
        response = await handle_request(request.app.state.ctx, {"jsonrpc": "2.0", **rpc})
        status = 200
        if "error" in response:
            status = ERROR_STATUS.get(response["error"]["code"], 500)
        return JSONResponse(status_code=status, content=response)

    @app.post("/mcp/initialize", dependencies=[Depends(require_token)])
    async def initialize(request: Request, body: InitializeRequest | None = None):
        body = body or InitializeRequest()
        return await dispatch(request, {"id": body.id, "method": "initialize", "params": body.params})

    @app.post("/mcp/tools/list", dependencies=[Depends(require_token)])
    async def tools_list(request: Request):
        return await dispatch(request, {"id": 1, "method": "tools/list", "params": {}})

    @app.post("/mcp/tools/call", dependencies=[Depends(require_token)])
    async def tools_call(request: Request, body: ToolCallRequest):
        return await dispatch(request, {
            "id": body.id,
            "method": "tools/call",
            "params": {"name": body.name, "arguments": body.arguments},
        })

    @app.get("/mcp/health", dependencies=[Depends(require_token)])
    async def health_check(request: Request):
        """Health check endpoint. Borrows a pooled connection and runs SELECT 1."""
        ctx: ToolContext = request.app.state.ctx
        try:
            async with ctx.pool.lease() as conn:
                await conn.fetchval("SELECT 1")
        except ConnectivityError as e:
            return JSONResponse(status_code=503, content={
                "status": "unhealthy",
                "database": e.to_dict(),
                "timestamp": datetime.now().isoformat(),
            })

        return {
            "status": "healthy",
            "database_host": ctx.pool.current_host,
            "timestamp": datetime.now().isoformat(),
            "server": SERVER_NAME,
            "version": __version__,
        }

    @app.get("/mcp/info", dependencies=[Depends(require_token)])
    async def server_info():
        return {
            "server": SERVER_NAME,
            "version": __version__,
            "capabilities": ["tools/list", "tools/call"],
            "endpoints": ENDPOINTS,
            "authentication": http.auth_enabled,
            "cors": http.cors_enabled,
            "site": settings.site_info,
        }

    @app.exception_handler(ConnectivityError)
    async def connectivity_exception_handler(request: Request, exc: ConnectivityError):
        return JSONResponse(status_code=503, content=exc.to_dict())

    return app


def run_server(settings: Settings, host: str | None = None, port: int | None = None):
    """Run the web server using uvicorn."""
    import uvicorn

    http = settings.http
    host = host or http.host
    port = port or http.port
    logger.info(f"Starting HostBridge HTTP server on http://{host}:{port}")
    if http.auth_enabled:
        logger.info("Authentication enabled - Bearer token required")
    uvicorn.run(create_app(settings), host=host, port=port)
