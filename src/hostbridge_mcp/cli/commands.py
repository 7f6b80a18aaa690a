from __future__ import annotations
import argparse
import asyncio
import logging
import sys

from hostbridge_mcp.config import Settings
from hostbridge_mcp.connectivity import ConnectionVerifier, RecoveryOrchestrator, discover
from hostbridge_mcp.connectivity.host_record import DEFAULT_HOST_KEY
from hostbridge_mcp.connectivity.monitor import ConnectionMonitor
from hostbridge_mcp.connectivity.verifier import close_quietly
from hostbridge_mcp.context import ToolContext
from hostbridge_mcp.errors import ConfigError, ConnectivityError

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="hostbridge",
        description="HostBridge MCP - PostgreSQL tools that follow a moving database host"
    )
    parser.add_argument("--config-dir", default=".",
                        help="Directory holding .env, .env.site and .env.local (default: .)")
    parser.add_argument("--log-level", default=None,
                        help="Logging level (default: LOG_LEVEL setting or INFO)")
    sub = parser.add_subparsers(dest="cmd", required=True)

    sub.add_parser("serve", help="Run the MCP server on stdio")

    http = sub.add_parser("http", help="Run the MCP server over HTTP")
    http.add_argument("--host", default=None, help="Bind address (default: MCP_HTTP_HOST)")
    http.add_argument("--port", type=int, default=None, help="Port (default: MCP_HTTP_PORT)")

    bridge = sub.add_parser("bridge", help="Run the peer message relay")
    bridge.add_argument("--host", default="0.0.0.0", help="Bind address (default: 0.0.0.0)")
    bridge.add_argument("--port", type=int, default=None, help="Port (default: BRIDGE_PORT)")

    db = sub.add_parser("db", help="Database connectivity commands")
    dbsub = db.add_subparsers(dest="dbcmd", required=True)
    dbsub.add_parser("ping", help="Test the connection to the configured host")
    dbsub.add_parser("discover", help="List candidate database hosts")
    dbsub.add_parser("recover", help="Run host recovery and persist the result")

    monitor = sub.add_parser("monitor", help="Watch the database host and recover when it moves")
    monitor.add_argument("--interval", type=float, default=30.0,
                         help="Seconds between checks (default: 30)")

    return parser


def configure_logging(level: str) -> None:
    # stdout carries MCP traffic, so logs always go to stderr
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        stream=sys.stderr,
    )


def run(argv: list[str] | None = None) -> None:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    settings = Settings(base_dir=args.config_dir)
    configure_logging(args.log_level or settings.get("LOG_LEVEL", "INFO"))

    try:
        if args.cmd == "serve":
            settings.validate()
            asyncio.run(serve_stdio(settings))
        elif args.cmd == "http":
            settings.validate()
            from hostbridge_mcp.web.app import run_server
            run_server(settings, host=args.host, port=args.port)
        elif args.cmd == "bridge":
            from hostbridge_mcp.bridge.app import run_bridge
            run_bridge(settings, host=args.host, port=args.port)
        elif args.cmd == "db":
            if args.dbcmd == "ping":
                asyncio.run(db_ping(settings))
            elif args.dbcmd == "discover":
                db_discover()
            elif args.dbcmd == "recover":
                asyncio.run(db_recover(settings))
        elif args.cmd == "monitor":
            asyncio.run(monitor_host(settings, args.interval))
    except KeyboardInterrupt:
        print("\nInterrupted", file=sys.stderr)
        sys.exit(130)
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(2)
    except ConnectivityError as e:
        print(f"Error: {e}", file=sys.stderr)
        if e.attempted:
            print(f"Tried: {', '.join(e.attempted)}", file=sys.stderr)
        sys.exit(1)
    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


async def serve_stdio(settings: Settings) -> None:
    from hostbridge_mcp.mcp.server import run_stdio_server
    await run_stdio_server(ToolContext.from_settings(settings))


async def db_ping(settings: Settings) -> None:
    """Verify the configured host with the same check recovery uses.

    Raises:
        RuntimeError: If the host does not accept a verified connection
    """
    db = settings.database
    verifier = ConnectionVerifier(timeout=db.connect_timeout)
    result = await verifier.test_config(db.host, db)
    if not result.ok:
        raise RuntimeError(
            f"Failed to connect to {db.host}:{db.port}: {result.error}\n"
            f"Try: hostbridge db recover"
        )
    try:
        version = await result.connection.fetchval("SELECT version()")
    finally:
        await close_quietly(result.connection)

    print(f"✓ Connected to {db.host}:{db.port}/{db.dbname}")
    print(f"  {version}")


def db_discover() -> None:
    candidates = discover()
    print(f"{len(candidates)} candidate hosts:")
    for i, host in enumerate(candidates, start=1):
        print(f"  {i}. {host}")


async def db_recover(settings: Settings) -> None:
    """Run one recovery pass and write a changed host back to its env file."""
    db = settings.database
    orchestrator = RecoveryOrchestrator(
        db,
        persist_host=lambda host: settings.persist(DEFAULT_HOST_KEY, host),
    )
    outcome = await orchestrator.recover()
    await close_quietly(outcome.connection)

    if outcome.host_changed:
        print(f"✓ Database moved: {outcome.previous_host} -> {outcome.host}")
        if outcome.persisted:
            print(f"  {DEFAULT_HOST_KEY} updated in {settings.source_for(DEFAULT_HOST_KEY) or settings.base_dir}")
        else:
            print(f"  Warning: {DEFAULT_HOST_KEY} could not be written; update it by hand")
    else:
        print(f"✓ Database reachable at {outcome.host}")


async def monitor_host(settings: Settings, interval: float) -> None:
    db = settings.database
    orchestrator = RecoveryOrchestrator(
        db,
        persist_host=lambda host: settings.persist(DEFAULT_HOST_KEY, host),
    )
    monitor = ConnectionMonitor(orchestrator, check_interval=interval)
    await monitor.monitor_loop()
