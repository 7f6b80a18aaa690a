"""Tests for layered site settings."""
import pytest

from hostbridge_mcp.config import Settings
from hostbridge_mcp.connectivity.host_record import DEFAULT_HOST_KEY
from hostbridge_mcp.errors import ConfigError


@pytest.fixture
def site_dir(tmp_path):
    (tmp_path / ".env").write_text(
        "POSTGRES_HOST=localhost\n"
        "POSTGRES_PORT=5432\n"
        "POSTGRES_USER=postgres\n"
        "POSTGRES_DB=postgres\n"
        "MCP_HTTP_PORT=8080\n"
    )
    (tmp_path / ".env.site").write_text(
        "POSTGRES_HOST=10.0.0.1\n"
        'POSTGRES_PASSWORD="from site"\n'
        "SITE_NAME=lab\n"
    )
    (tmp_path / ".env.local").write_text("POSTGRES_DB=devdb\n")
    return tmp_path


def test_layers_override_in_order(site_dir):
    settings = Settings(base_dir=site_dir, environ={"MCP_HTTP_PORT": "9090"})

    db = settings.database
    assert db.host == "10.0.0.1"
    assert db.password == "from site"
    assert db.dbname == "devdb"
    assert settings.http.port == 9090
    assert settings.site_info["name"] == "lab"


def test_source_for_tracks_owning_file(site_dir):
    settings = Settings(base_dir=site_dir, environ={"MCP_HTTP_PORT": "9090"})

    assert settings.source_for("POSTGRES_HOST") == site_dir / ".env.site"
    assert settings.source_for("POSTGRES_DB") == site_dir / ".env.local"
    assert settings.source_for("MCP_HTTP_PORT") is None


def test_persist_rewrites_the_file_that_supplied_the_key(site_dir):
    settings = Settings(base_dir=site_dir, environ={})

    assert settings.persist(DEFAULT_HOST_KEY, "172.20.0.2")

    assert settings.get(DEFAULT_HOST_KEY) == "172.20.0.2"
    assert "POSTGRES_HOST=172.20.0.2" in (site_dir / ".env.site").read_text()
    assert "POSTGRES_HOST=localhost" in (site_dir / ".env").read_text()
    # A fresh load sees the new host
    assert Settings(base_dir=site_dir, environ={}).database.host == "172.20.0.2"


def test_persist_for_environment_key_goes_to_env_local(site_dir):
    settings = Settings(base_dir=site_dir, environ={"POSTGRES_HOST": "10.9.9.9"})

    assert settings.persist(DEFAULT_HOST_KEY, "172.20.0.2")

    assert "POSTGRES_HOST=172.20.0.2" in (site_dir / ".env.local").read_text()


def test_persist_without_target_file_only_updates_memory(tmp_path):
    settings = Settings(base_dir=tmp_path, environ={"POSTGRES_HOST": "10.9.9.9"})

    assert not settings.persist(DEFAULT_HOST_KEY, "172.20.0.2")
    assert settings.database.host == "172.20.0.2"


def test_get_bool_and_defaults(tmp_path):
    settings = Settings(base_dir=tmp_path, environ={"MCP_DEV_MODE": "yes"})

    assert settings.is_development
    assert settings.get("MISSING", "fallback") == "fallback"
    assert not settings.has("MISSING")
    assert settings.database.pool_size == 5
    assert settings.database.max_attempts == 3
    assert not settings.http.auth_enabled


def test_validate_collects_every_problem(tmp_path):
    settings = Settings(base_dir=tmp_path, environ={
        "POSTGRES_PORT": "not-a-port",
        "MCP_FILE_SERVER_BASE": str(tmp_path / "missing" / "data"),
    })

    with pytest.raises(ConfigError) as excinfo:
        settings.validate()

    problems = excinfo.value.problems
    assert any("POSTGRES_PASSWORD" in p for p in problems)
    assert any("MCP_FILE_SERVER_BASE" in p for p in problems)
    assert any("database" in p for p in problems)


def test_validate_passes_with_required_settings(tmp_path):
    settings = Settings(base_dir=tmp_path, environ={
        "POSTGRES_PASSWORD": "pw",
        "MCP_FILE_SERVER_BASE": str(tmp_path / "data"),
    })

    settings.validate()


def test_redacted_masks_password(tmp_path):
    settings = Settings(base_dir=tmp_path, environ={"POSTGRES_PASSWORD": "pw"})

    assert settings.database.redacted()["password"] == "***"


def test_bridge_section_reads_every_key(tmp_path):
    settings = Settings(base_dir=tmp_path, environ={
        "BRIDGE_PEER_URL": "http://windows-host:8086",
        "BRIDGE_HISTORY_LIMIT": "50",
        "BRIDGE_PENDING_LIMIT": "20",
        "BRIDGE_RESULTS_LIMIT": "40",
        "BRIDGE_SEND_TIMEOUT": "2.5",
    })

    bridge = settings.bridge

    assert bridge.peer_url == "http://windows-host:8086"
    assert bridge.history_limit == 50
    assert bridge.pending_limit == 20
    assert bridge.results_limit == 40
    assert bridge.send_timeout == 2.5
    assert Settings(base_dir=tmp_path, environ={}).bridge.history_limit == 500
