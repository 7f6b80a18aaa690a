"""Database connectivity: host discovery, verification, recovery and pooling."""
from .discovery import discover
from .host_record import PersistedHostRecord
from .pool import ConnectionPool, PooledConnection
from .probe import LinuxNetworkProbe, NetworkProbe, STATIC_FALLBACKS
from .recovery import RecoveryOrchestrator, RecoveryOutcome, RecoveryPhase
from .state import ConnectionState
from .verifier import ConnectionVerifier, VerificationResult

__all__ = [
    "discover",
    "PersistedHostRecord",
    "ConnectionPool",
    "PooledConnection",
    "LinuxNetworkProbe",
    "NetworkProbe",
    "STATIC_FALLBACKS",
    "RecoveryOrchestrator",
    "RecoveryOutcome",
    "RecoveryPhase",
    "ConnectionState",
    "ConnectionVerifier",
    "VerificationResult",
]
