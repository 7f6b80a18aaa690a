"""Shared pytest fixtures for all tests."""
from __future__ import annotations

from contextlib import asynccontextmanager
from unittest.mock import AsyncMock, MagicMock

import pytest

from hostbridge_mcp.config import DatabaseConfig
from hostbridge_mcp.connectivity import NetworkProbe, VerificationResult


def make_connection(host: str = "localhost", alive: bool = True) -> MagicMock:
    """asyncpg.Connection stand-in that answers the liveness query."""
    conn = MagicMock(name=f"conn@{host}")
    conn.host = host
    conn.is_closed.return_value = False
    conn.fetchval = AsyncMock(return_value=1 if alive else None)
    conn.close = AsyncMock()
    return conn


class FakeProbe(NetworkProbe):
    """Probe with canned answers; pass an Exception to make a tier fail."""

    def __init__(self, gateways=(), peers=(), nameservers=(), fallbacks=None):
        self.answers = {
            "default_gateways": gateways,
            "bridge_peers": peers,
            "resolver_nameservers": nameservers,
        }
        self.fallbacks = fallbacks

    def _answer(self, name):
        answer = self.answers[name]
        if isinstance(answer, Exception):
            raise answer
        return list(answer)

    def default_gateways(self):
        return self._answer("default_gateways")

    def bridge_peers(self):
        return self._answer("bridge_peers")

    def resolver_nameservers(self):
        return self._answer("resolver_nameservers")

    def static_fallbacks(self):
        if self.fallbacks is None:
            return super().static_fallbacks()
        return list(self.fallbacks)


class FakeVerifier:
    """Verifier that succeeds only for hosts in ``reachable``."""

    def __init__(self, reachable=(), missing_databases=()):
        self.reachable = set(reachable)
        self.missing_databases = set(missing_databases)
        self.calls: list[str] = []
        self.connections: list[MagicMock] = []

    async def test_config(self, host, config, database=None):
        self.calls.append(host)
        if host in self.reachable and database in self.missing_databases:
            return VerificationResult(
                False, None, f"InvalidCatalogNameError: {database}", missing_database=True
            )
        if host in self.reachable:
            conn = make_connection(host)
            self.connections.append(conn)
            return VerificationResult(True, conn)
        return VerificationResult(False, None, f"ConnectionRefusedError: {host}")


@pytest.fixture
def db_config():
    return DatabaseConfig(host="10.0.0.1", password="secret", dbname="appdb", pool_size=2)


@pytest.fixture
def fake_verifier():
    return FakeVerifier()


@pytest.fixture
def env_file(tmp_path):
    path = tmp_path / ".env.local"
    path.write_text("# local settings\nPOSTGRES_HOST=10.0.0.1\nPOSTGRES_PASSWORD=secret\n")
    return path


class FakeContext:
    """ToolContext stand-in whose connections are one shared mock."""

    def __init__(self, base_dir, conn=None, pool=None):
        self.file_base_dir = base_dir
        self.conn = conn or make_connection()
        self.pool = pool or MagicMock()
        self.orchestrator = self.pool.orchestrator
        self.databases: list = []
        self.closed = False

    @asynccontextmanager
    async def connection(self, database=None):
        self.databases.append(database)
        yield self.conn

    async def close(self):
        self.closed = True


@pytest.fixture
def fake_ctx(tmp_path):
    base = tmp_path / "data"
    base.mkdir()
    return FakeContext(base)
