"""Recovery orchestration for a lost database host.

When the trusted address stops answering, recovery runs through explicit
phases:

    RETRY_CURRENT    verify the current host again (bounded by max_attempts)
    SCAN_CANDIDATES  walk discovery candidates in order, first success wins
    RECOVERED        terminal success; a verified connection is handed back
    EXHAUSTED        terminal failure; ConnectivityError is raised

Recovery never loops on its own. The caller (the pool) decides when to try
again, typically the next time a tool needs a connection.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Callable

import asyncpg

from hostbridge_mcp.errors import ConnectivityError
from .discovery import discover
from .probe import NetworkProbe
from .state import ConnectionState
from .verifier import ConnectionVerifier

if TYPE_CHECKING:
    from hostbridge_mcp.config.settings import DatabaseConfig

logger = logging.getLogger(__name__)


class RecoveryPhase(str, Enum):
    RETRY_CURRENT = "retry_current"
    SCAN_CANDIDATES = "scan_candidates"
    RECOVERED = "recovered"
    EXHAUSTED = "exhausted"


@dataclass
class RecoveryOutcome:
    """Result of a successful recovery."""
    host: str
    previous_host: str
    connection: asyncpg.Connection
    attempted: list[str] = field(default_factory=list)
    phases: list[RecoveryPhase] = field(default_factory=list)
    persisted: bool = False

    @property
    def host_changed(self) -> bool:
        return self.host != self.previous_host


class RecoveryOrchestrator:
    """Owns the process's ConnectionState and replaces a dead host.

    Args:
        config: Database parameters; ``config.host`` seeds the first attempt
        verifier: Connection verifier (defaults to one using the config timeout)
        probe: Network probe for discovery (defaults to the Linux probe)
        persist_host: Called with the new host after a verified switch;
            should return True when the host record was written
        state: Existing state to adopt (a fresh one is created otherwise)
    """

    def __init__(
        self,
        config: DatabaseConfig,
        verifier: ConnectionVerifier | None = None,
        probe: NetworkProbe | None = None,
        persist_host: Callable[[str], bool] | None = None,
        state: ConnectionState | None = None
    ):
        self.config = config
        self.seed_host = config.host
        self.verifier = verifier or ConnectionVerifier(timeout=config.connect_timeout)
        self.probe = probe
        self.persist_host = persist_host
        self.state = state or ConnectionState(max_attempts=config.max_attempts)
        self.last_phase: RecoveryPhase | None = None
        self._lock = asyncio.Lock()

    @property
    def target_host(self) -> str:
        """Host new connections should go to: the verified one, else the seed."""
        return self.state.current_host or self.seed_host

    async def note_verified(self, host: str) -> None:
        """Record that a connection to ``host`` was verified outside recovery.

        Ignored when recovery has already moved the process to another host.
        """
        async with self._lock:
            if self.state.current_host in ("", host):
                self.state.record_success(host)

    async def discover_candidates(self) -> list[str]:
        return await asyncio.to_thread(discover, self.probe)

    async def recover(self) -> RecoveryOutcome:
        """Find a working host and return a verified connection to it.

        Raises:
            ConnectivityError: Every candidate, including the current host, failed
        """
        async with self._lock:
            previous = self.target_host
            attempted: list[str] = []
            phases: list[RecoveryPhase] = []
            phase = RecoveryPhase.RETRY_CURRENT
            host: str | None = None
            conn: asyncpg.Connection | None = None

            logger.info(f"Database connection failed on {previous}, starting recovery")

            while phase not in (RecoveryPhase.RECOVERED, RecoveryPhase.EXHAUSTED):
                phases.append(phase)
                if phase is RecoveryPhase.RETRY_CURRENT:
                    phase, host, conn = await self._retry_current(previous, attempted)
                else:
                    phase, host, conn = await self._scan_candidates(previous, attempted)

            phases.append(phase)
            self.last_phase = phase

            if phase is RecoveryPhase.EXHAUSTED:
                logger.error(
                    f"Could not establish PostgreSQL connection to any host. "
                    f"Tried: {', '.join(attempted) or 'nothing'}"
                )
                raise ConnectivityError(
                    "Could not establish PostgreSQL connection after trying host recovery. "
                    "Check PostgreSQL server status.",
                    attempted=attempted,
                    reason="recovery_exhausted",
                )

            persisted = False
            if host != previous:
                logger.info(f"Found working PostgreSQL host: {previous} -> {host}")
                self.state.recoveries += 1
                persisted = self._persist(host)

            return RecoveryOutcome(
                host=host,
                previous_host=previous,
                connection=conn,
                attempted=attempted,
                phases=phases,
                persisted=persisted,
            )

    async def _retry_current(self, host: str, attempted: list[str]):
        self.state.attempt_count += 1
        if self.state.attempt_count > self.state.max_attempts:
            logger.info(
                f"Retry budget for {host} spent "
                f"({self.state.attempt_count - 1}/{self.state.max_attempts}), scanning candidates"
            )
            return RecoveryPhase.SCAN_CANDIDATES, None, None

        attempted.append(host)
        result = await self.verifier.test_config(host, self.config)
        if result.ok:
            logger.info(f"Connection recovered to existing host: {host}")
            self.state.record_success(host)
            return RecoveryPhase.RECOVERED, host, result.connection

        return RecoveryPhase.SCAN_CANDIDATES, None, None

    async def _scan_candidates(self, current: str, attempted: list[str]):
        candidates = await self.discover_candidates()
        logger.info(f"Testing {len(candidates)} potential hosts: {', '.join(candidates)}")

        for candidate in candidates:
            if candidate == current or candidate in attempted:
                continue
            attempted.append(candidate)
            result = await self.verifier.test_config(candidate, self.config)
            if result.ok:
                self.state.record_success(candidate)
                return RecoveryPhase.RECOVERED, candidate, result.connection
            logger.debug(f"Skipping {candidate}: {result.error}")

        return RecoveryPhase.EXHAUSTED, None, None

    def _persist(self, host: str) -> bool:
        if self.persist_host is None:
            return False
        try:
            written = bool(self.persist_host(host))
        except Exception as e:
            logger.warning(f"Failed to persist new database host {host}: {e}")
            return False
        if not written:
            logger.warning(f"Database host {host} not persisted; next start will rediscover it")
        return written
