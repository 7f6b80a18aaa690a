"""Fixed-capacity PostgreSQL connection pool with host recovery.

Slots are filled lazily. A slot's connection is liveness-checked every time it
is handed out; a dead one is closed and replaced, first by a fresh connection
to the current host and then, if that fails, by running recovery. The pool
never grows, never queues waiters, and never hands out a connection that is
already borrowed.
"""
from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import TYPE_CHECKING, AsyncIterator

import asyncpg

from hostbridge_mcp.errors import ConnectivityError
from .recovery import RecoveryOrchestrator
from .verifier import close_quietly, is_alive

if TYPE_CHECKING:
    from hostbridge_mcp.config.settings import DatabaseConfig

logger = logging.getLogger(__name__)

# Exceptions that mean the connection itself is unusable, not just the query
CONNECTION_ERRORS = (
    asyncpg.exceptions.ConnectionDoesNotExistError,
    asyncpg.exceptions.PostgresConnectionError,
    ConnectionError,
    OSError,
    asyncio.TimeoutError,
)


@dataclass
class PooledConnection:
    connection: asyncpg.Connection
    healthy: bool = True
    borrowed: bool = False


class ConnectionPool:
    """Bounded pool of verified connections.

    Args:
        config: Database parameters and pool capacity
        orchestrator: Recovery orchestrator owning the connectivity state
    """

    def __init__(self, config: DatabaseConfig, orchestrator: RecoveryOrchestrator | None = None):
        self.config = config
        self.capacity = config.pool_size
        self.orchestrator = orchestrator or RecoveryOrchestrator(config)
        self._slots: list[PooledConnection | None] = [None] * self.capacity
        self._cursor = 0
        self._reserved: set[int] = set()
        self._lock = asyncio.Lock()
        self._closed = False

    @property
    def current_host(self) -> str:
        return self.orchestrator.target_host

    async def acquire(self) -> asyncpg.Connection:
        """Borrow a live connection.

        Raises:
            ConnectivityError: No free slot, or recovery exhausted every host
        """
        index, slot = await self._reserve_slot()

        try:
            if slot is not None and slot.healthy and await is_alive(
                slot.connection, timeout=self.config.connect_timeout
            ):
                conn = slot.connection
            else:
                if slot is not None:
                    logger.info(f"Pool slot {index} failed liveness check, replacing")
                    await close_quietly(slot.connection)
                conn = await self._open_replacement()

        except BaseException:
            async with self._lock:
                self._slots[index] = None
                self._reserved.discard(index)
            if slot is not None:
                await close_quietly(slot.connection)
            raise

        async with self._lock:
            self._reserved.discard(index)
            if self._closed:
                self._slots[index] = None
                closed = True
            else:
                self._slots[index] = PooledConnection(conn, borrowed=True)
                closed = False

        if closed:
            await close_quietly(conn)
            raise ConnectivityError("Connection pool is closed", reason="pool_closed")
        return conn

    async def _reserve_slot(self) -> tuple[int, PooledConnection | None]:
        async with self._lock:
            if self._closed:
                raise ConnectivityError("Connection pool is closed", reason="pool_closed")

            for step in range(self.capacity):
                index = (self._cursor + step) % self.capacity
                slot = self._slots[index]
                if index in self._reserved or (slot is not None and slot.borrowed):
                    continue
                self._cursor = (index + 1) % self.capacity
                self._reserved.add(index)
                return index, slot

        raise ConnectivityError(
            f"All {self.capacity} pool connections are in use",
            reason="pool_exhausted",
        )

    async def _open_replacement(self) -> asyncpg.Connection:
        host = self.current_host
        result = await self.orchestrator.verifier.test_config(host, self.config)
        if result.ok:
            await self.orchestrator.note_verified(host)
            return result.connection

        outcome = await self.orchestrator.recover()
        return outcome.connection

    async def release(self, conn: asyncpg.Connection) -> None:
        """Return a borrowed connection.

        Healthy connections go back to the free set; closed or unhealthy ones
        are closed and their slot left empty for the next acquire to refill.
        """
        async with self._lock:
            index = self._find(conn)
            if index is not None:
                slot = self._slots[index]
                if slot.healthy and not conn.is_closed():
                    slot.borrowed = False
                    return
                self._slots[index] = None

        if index is None and not self._closed:
            logger.warning("Released connection does not belong to this pool, closing it")
        await close_quietly(conn)

    def mark_unhealthy(self, conn: asyncpg.Connection) -> None:
        """Flag a borrowed connection so release discards it."""
        index = self._find(conn)
        if index is not None:
            self._slots[index].healthy = False

    @asynccontextmanager
    async def lease(self) -> AsyncIterator[asyncpg.Connection]:
        """Borrow a connection for the duration of a block.

        Example:
            async with pool.lease() as conn:
                rows = await conn.fetch("SELECT * FROM pg_tables")
        """
        conn = await self.acquire()
        try:
            yield conn
        except CONNECTION_ERRORS:
            self.mark_unhealthy(conn)
            raise
        finally:
            await self.release(conn)

    async def close_all(self) -> None:
        """Close every held connection. Called once at shutdown."""
        async with self._lock:
            self._closed = True
            slots = [s for s in self._slots if s is not None]
            self._slots = [None] * self.capacity

        logger.info(f"Closing {len(slots)} pooled connections")
        for slot in slots:
            await close_quietly(slot.connection)

    def stats(self) -> dict:
        filled = [s for s in self._slots if s is not None]
        return {
            "capacity": self.capacity,
            "filled": len(filled),
            "borrowed": sum(1 for s in filled if s.borrowed) + len(self._reserved),
            "closed": self._closed,
            "current_host": self.current_host,
        }

    def _find(self, conn: asyncpg.Connection) -> int | None:
        for index, slot in enumerate(self._slots):
            if slot is not None and slot.connection is conn:
                return index
        return None
