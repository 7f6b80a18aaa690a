"""Connection verification.

A connection only counts as good once a trivial query has round-tripped
through it. Opening a socket to something that answers is not enough; the
query is the actual correctness gate.
"""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING, NamedTuple

import asyncpg

if TYPE_CHECKING:
    from hostbridge_mcp.config.settings import DatabaseConfig

logger = logging.getLogger(__name__)

DEFAULT_CONNECT_TIMEOUT = 5.0
LIVENESS_QUERY = "SELECT 1 AS test"
LIVENESS_EXPECTED = 1


class VerificationResult(NamedTuple):
    ok: bool
    connection: asyncpg.Connection | None
    error: str | None = None
    missing_database: bool = False


async def close_quietly(conn: asyncpg.Connection | None, timeout: float = 2.0) -> None:
    """Close a connection, terminating it if a graceful close fails."""
    if conn is None:
        return
    try:
        await conn.close(timeout=timeout)
    except Exception as e:
        logger.debug(f"Graceful close failed, terminating connection: {e}")
        try:
            conn.terminate()
        except Exception as e2:
            logger.debug(f"Terminate failed: {e2}")


async def is_alive(conn: asyncpg.Connection, timeout: float = DEFAULT_CONNECT_TIMEOUT) -> bool:
    """Cheap liveness check: the connection is open and answers the test query."""
    try:
        if conn.is_closed():
            return False
        value = await conn.fetchval(LIVENESS_QUERY, timeout=timeout)
        return value == LIVENESS_EXPECTED
    except Exception as e:
        logger.debug(f"Liveness check failed: {e}")
        return False


class ConnectionVerifier:
    """Opens and validates PostgreSQL connections."""

    def __init__(self, timeout: float = DEFAULT_CONNECT_TIMEOUT):
        self.timeout = timeout

    async def test(
        self,
        host: str,
        port: int,
        user: str,
        password: str,
        database: str,
        timeout: float | None = None
    ) -> VerificationResult:
        """Try to open a usable connection.

        Args:
            host: Address to connect to
            port: Server port
            user: Role name
            password: Role password
            database: Database name
            timeout: Connect timeout in seconds (defaults to the verifier's)

        Returns:
            VerificationResult; on success the caller owns ``connection``
        """
        timeout = timeout or self.timeout
        conn = None
        logger.debug(f"Testing connection to {host}:{port}/{database}")

        try:
            conn = await asyncpg.connect(
                host=host,
                port=port,
                user=user,
                password=password,
                database=database,
                timeout=timeout,
            )
            value = await conn.fetchval(LIVENESS_QUERY, timeout=timeout)
            if value == LIVENESS_EXPECTED:
                logger.info(f"Connected to PostgreSQL at {host}:{port}/{database}")
                return VerificationResult(True, conn)

            error = f"unexpected liveness result {value!r}"

        except asyncpg.exceptions.InvalidCatalogNameError as e:
            # The server answered; only the database is missing
            logger.debug(f"Database {database} does not exist on {host}:{port}: {e}")
            await close_quietly(conn)
            return VerificationResult(False, None, f"{type(e).__name__}: {e}", missing_database=True)

        except Exception as e:
            error = f"{type(e).__name__}: {e}"

        logger.debug(f"Connection failed to {host}:{port}/{database}: {error}")
        await close_quietly(conn)
        return VerificationResult(False, None, error)

    async def test_config(
        self,
        host: str,
        config: DatabaseConfig,
        database: str | None = None
    ) -> VerificationResult:
        """``test`` with credentials taken from a DatabaseConfig."""
        return await self.test(
            host,
            config.port,
            config.user,
            config.password,
            database or config.dbname,
            timeout=config.connect_timeout,
        )
