"""Per-process runtime context handed to every tool handler."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import AsyncIterator

import asyncpg

from hostbridge_mcp.config import Settings
from hostbridge_mcp.connectivity import ConnectionPool, NetworkProbe, RecoveryOrchestrator
from hostbridge_mcp.connectivity.host_record import DEFAULT_HOST_KEY
from hostbridge_mcp.connectivity.verifier import close_quietly
from hostbridge_mcp.errors import ConnectivityError, ToolInputError

logger = logging.getLogger(__name__)


@dataclass
class ToolContext:
    """Everything a tool needs: settings, the connection pool, the file sandbox."""
    settings: Settings
    pool: ConnectionPool
    file_base_dir: Path

    @classmethod
    def from_settings(cls, settings: Settings, probe: NetworkProbe | None = None) -> ToolContext:
        db = settings.database
        logger.info(f"Database settings: {db.redacted()}")
        orchestrator = RecoveryOrchestrator(
            db,
            probe=probe,
            persist_host=lambda host: settings.persist(DEFAULT_HOST_KEY, host),
        )
        return cls(
            settings=settings,
            pool=ConnectionPool(db, orchestrator),
            file_base_dir=settings.file_base_dir,
        )

    @property
    def orchestrator(self) -> RecoveryOrchestrator:
        return self.pool.orchestrator

    @asynccontextmanager
    async def connection(self, database: str | None = None) -> AsyncIterator[asyncpg.Connection]:
        """Borrow a connection, optionally to a different database.

        The configured database is served from the pool. Any other database gets
        a one-off verified connection on the current host, closed afterwards.
        When the host does not answer, recovery runs first and the connection is
        retried once on the recovered host.

        Raises:
            ToolInputError: The server answered but the database does not exist
            ConnectivityError: No host could be reached
        """
        if not database or database == self.pool.config.dbname:
            async with self.pool.lease() as conn:
                yield conn
            return

        verifier = self.orchestrator.verifier
        host = self.pool.current_host
        result = await verifier.test_config(host, self.pool.config, database=database)
        if not result.ok and not result.missing_database:
            logger.warning(f"Host {host} unreachable for database {database}: {result.error}")
            outcome = await self.orchestrator.recover()
            await close_quietly(outcome.connection)
            host = outcome.host
            result = await verifier.test_config(host, self.pool.config, database=database)

        if result.missing_database:
            raise ToolInputError(f"Database '{database}' does not exist on {host}: {result.error}")
        if not result.ok:
            raise ConnectivityError(
                f"Could not connect to database '{database}' on {host}: {result.error}",
                attempted=[host],
            )
        try:
            yield result.connection
        finally:
            await close_quietly(result.connection)

    async def close(self) -> None:
        await self.pool.close_all()
