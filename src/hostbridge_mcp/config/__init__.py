"""Configuration management for HostBridge."""
from .settings import (
    BridgeConfig,
    DatabaseConfig,
    HttpConfig,
    Settings,
    CONFIG_FILES,
)

__all__ = [
    "BridgeConfig",
    "DatabaseConfig",
    "HttpConfig",
    "Settings",
    "CONFIG_FILES",
]
