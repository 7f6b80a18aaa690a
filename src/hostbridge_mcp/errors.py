"""Exception types shared across HostBridge modules."""
from __future__ import annotations


class HostBridgeError(Exception):
    """Base class for all HostBridge errors."""


class ConfigError(HostBridgeError):
    """Configuration is missing or invalid."""

    def __init__(self, problems: list[str]):
        self.problems = problems
        super().__init__("Configuration validation failed:\n" + "\n".join(problems))


class ConnectivityError(HostBridgeError):
    """No usable database connection could be produced.

    Raised when recovery walks every candidate address without success, or
    when the pool has no free slot to hand out.

    Attributes:
        attempted: Addresses tried during the failed recovery, in order
        reason: "recovery_exhausted" or "pool_exhausted"
    """

    def __init__(
        self,
        message: str,
        attempted: list[str] | None = None,
        reason: str = "recovery_exhausted"
    ):
        self.attempted = list(attempted or [])
        self.reason = reason
        super().__init__(message)

    def to_dict(self) -> dict:
        return {
            "error": str(self),
            "reason": self.reason,
            "attempted": self.attempted,
        }


class PathAccessError(HostBridgeError):
    """A file tool was asked to touch a path outside its base directory."""


class ToolInputError(HostBridgeError, ValueError):
    """A tool received missing or malformed arguments."""
