"""Connectivity state tracked by the recovery orchestrator."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone

DEFAULT_MAX_ATTEMPTS = 3


@dataclass
class ConnectionState:
    """Where the database currently lives, as far as this process knows.

    ``current_host`` is only ever set to an address a connection was verified
    against; it stays empty until the first verified connection.
    """
    current_host: str = ""
    last_success_at: datetime | None = None
    attempt_count: int = 0
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    recoveries: int = 0

    def record_success(self, host: str) -> None:
        self.current_host = host
        self.last_success_at = datetime.now(timezone.utc)
        self.attempt_count = 0

    def snapshot(self) -> dict:
        return {
            "current_host": self.current_host,
            "last_success_at": self.last_success_at.isoformat() if self.last_success_at else None,
            "attempt_count": self.attempt_count,
            "max_attempts": self.max_attempts,
            "recoveries": self.recoveries,
        }
