"""Site configuration for HostBridge.

Settings come from layered env files loaded with python-dotenv, lowest to
highest precedence:

1. ``.env``        default configuration (committed)
2. ``.env.site``   site-specific deployment (not committed)
3. ``.env.local``  local development (not committed)
4. process environment variables

The loader remembers which file supplied each key so that a recovered
database host can be written back to the same file.
"""
from __future__ import annotations

import logging
import os
from datetime import datetime
from pathlib import Path

from dotenv import dotenv_values
from pydantic import BaseModel, Field, field_validator

from hostbridge_mcp.connectivity.host_record import PersistedHostRecord
from hostbridge_mcp.errors import ConfigError

logger = logging.getLogger(__name__)

CONFIG_FILES = (".env", ".env.site", ".env.local")

# File written when a key came from the environment or from defaults
DEFAULT_PERSIST_FILE = ".env.local"

TRUTHY = {"true", "1", "yes", "on"}


class DatabaseConfig(BaseModel):
    """PostgreSQL connection parameters and pool sizing."""
    host: str = Field("localhost", description="Initial database host (seed for recovery)")
    port: int = Field(5432, ge=1, le=65535)
    user: str = Field("postgres")
    password: str = Field("")
    dbname: str = Field("postgres")
    connect_timeout: float = Field(5.0, gt=0, le=60, description="Verifier connect timeout (seconds)")
    pool_size: int = Field(5, ge=1, le=16, description="Fixed pool capacity")
    max_attempts: int = Field(3, ge=0, le=20, description="Retries on current host before scanning")

    @field_validator("host")
    @classmethod
    def validate_host(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("host must not be empty")
        return v

    def redacted(self) -> dict:
        """Config dict with the password masked for logging."""
        data = self.model_dump()
        if data["password"]:
            data["password"] = "***"
        return data


class HttpConfig(BaseModel):
    """HTTP transport configuration."""
    host: str = Field("0.0.0.0")
    port: int = Field(8080, ge=1, le=65535)
    auth_token: str = Field("", description="Bearer token; empty disables auth")
    cors_enabled: bool = Field(True)

    @property
    def auth_enabled(self) -> bool:
        return bool(self.auth_token)


class BridgeConfig(BaseModel):
    """Peer message relay configuration."""
    port: int = Field(8085, ge=1, le=65535)
    peer_url: str = Field("http://localhost:8086", description="Base URL of the peer relay")
    sender: str = Field("hostbridge", description="Sender name stamped on outgoing messages")
    history_limit: int = Field(500, ge=1)
    pending_limit: int = Field(500, ge=1, description="Undelivered messages kept for re-sending")
    results_limit: int = Field(1000, ge=1, description="Peer responses kept until picked up")
    send_timeout: float = Field(30.0, gt=0)


class Settings:
    """Layered site settings.

    Args:
        base_dir: Directory containing the env files
        environ: Environment mapping (defaults to ``os.environ``)
    """

    def __init__(self, base_dir: str | Path = ".", environ: dict[str, str] | None = None) -> None:
        self.base_dir = Path(base_dir)
        self._values: dict[str, str] = {}
        self._sources: dict[str, Path | None] = {}
        self._load(os.environ if environ is None else environ)

    def _load(self, environ) -> None:
        logger.info(f"Loading site configuration from {self.base_dir}")

        for name in CONFIG_FILES:
            path = self.base_dir / name
            if not path.is_file():
                logger.debug(f"Configuration file not found: {name}")
                continue
            try:
                values = dotenv_values(path)
            except (OSError, UnicodeDecodeError) as e:
                logger.warning(f"Error loading configuration file {path}: {e}")
                continue
            for key, value in values.items():
                if value is None:
                    continue
                self._values[key] = value
                self._sources[key] = path
            logger.info(f"Loaded configuration from {name}")

        for key, value in environ.items():
            self._values[key] = value
            self._sources[key] = None

        logger.info(f"Configuration loaded with {len(self._values)} settings")

    def get(self, key: str, default: str = "") -> str:
        return self._values.get(key, default)

    def has(self, key: str) -> bool:
        return key in self._values

    def get_bool(self, key: str, default: bool = False) -> bool:
        if key not in self._values:
            return default
        return self._values[key].strip().lower() in TRUTHY

    def source_for(self, key: str) -> Path | None:
        """Env file that supplied ``key``, or None for environment/defaults."""
        return self._sources.get(key)

    @property
    def database(self) -> DatabaseConfig:
        return DatabaseConfig(
            host=self.get("POSTGRES_HOST", "localhost"),
            port=self.get("POSTGRES_PORT", "5432"),
            user=self.get("POSTGRES_USER", "postgres"),
            password=self.get("POSTGRES_PASSWORD", ""),
            dbname=self.get("POSTGRES_DB", "postgres"),
            connect_timeout=self.get("POSTGRES_CONNECT_TIMEOUT", "5"),
            pool_size=self.get("POSTGRES_POOL_SIZE", "5"),
            max_attempts=self.get("POSTGRES_MAX_ATTEMPTS", "3"),
        )

    @property
    def http(self) -> HttpConfig:
        return HttpConfig(
            host=self.get("MCP_HTTP_HOST", "0.0.0.0"),
            port=self.get("MCP_HTTP_PORT", "8080"),
            auth_token=self.get("MCP_AUTH_TOKEN", ""),
            cors_enabled=self.get_bool("MCP_CORS_ENABLED", True),
        )

    @property
    def bridge(self) -> BridgeConfig:
        return BridgeConfig(
            port=self.get("BRIDGE_PORT", "8085"),
            peer_url=self.get("BRIDGE_PEER_URL", "http://localhost:8086"),
            sender=self.get("BRIDGE_SENDER", "hostbridge"),
            history_limit=self.get("BRIDGE_HISTORY_LIMIT", "500"),
            pending_limit=self.get("BRIDGE_PENDING_LIMIT", "500"),
            results_limit=self.get("BRIDGE_RESULTS_LIMIT", "1000"),
            send_timeout=self.get("BRIDGE_SEND_TIMEOUT", "30"),
        )

    @property
    def file_base_dir(self) -> Path:
        return Path(self.get("MCP_FILE_SERVER_BASE", "/opt/mcp-data")).expanduser()

    @property
    def is_development(self) -> bool:
        return self.get_bool("MCP_DEV_MODE")

    @property
    def site_info(self) -> dict[str, str]:
        return {
            "name": self.get("SITE_NAME", "default-site"),
            "environment": self.get("SITE_ENVIRONMENT", "development"),
            "deployment_id": self.get(
                "DEPLOYMENT_ID", f"dev-{datetime.now().strftime('%Y%m%d')}"
            ),
        }

    def validate(self) -> None:
        """Check required settings.

        Raises:
            ConfigError: Listing every problem found
        """
        problems: list[str] = []

        if not self.get("POSTGRES_PASSWORD"):
            problems.append("POSTGRES_PASSWORD must be set")

        parent = self.file_base_dir.parent
        if not parent.is_dir():
            problems.append(f"MCP_FILE_SERVER_BASE parent directory does not exist: {parent}")

        for section in ("database", "http", "bridge"):
            try:
                getattr(self, section)
            except ValueError as e:
                problems.append(f"Invalid {section} settings: {e}")

        if problems:
            raise ConfigError(problems)

        logger.info("Configuration validation passed")

    def persist(self, key: str, value: str) -> bool:
        """Write ``key=value`` back to the env file the key was loaded from.

        Keys that came from the environment or defaults go to ``.env.local``
        when that file exists. The in-memory value is updated either way.

        Returns:
            True if a file was rewritten
        """
        self._values[key] = value
        path = self.source_for(key) or self.base_dir / DEFAULT_PERSIST_FILE
        return PersistedHostRecord(path, key=key).write(value)
