"""Background database connectivity monitor.

Periodically verifies the current host and runs recovery when it stops
answering, so a host change is picked up (and persisted) before the next tool
call needs a connection.
"""
import asyncio
import logging
from datetime import datetime

from hostbridge_mcp.errors import ConnectivityError
from .recovery import RecoveryOrchestrator
from .verifier import close_quietly

logger = logging.getLogger(__name__)


class ConnectionMonitor:
    """Watches database reachability and triggers recovery."""

    def __init__(self, orchestrator: RecoveryOrchestrator, check_interval: float = 30.0):
        self.orchestrator = orchestrator
        self.check_interval = check_interval
        self.running = False
        self.last_check_at: datetime | None = None
        self.last_result: str | None = None

    async def check_once(self) -> str:
        """Run one check.

        Returns:
            "ok", "recovered" or "failed"
        """
        host = self.orchestrator.target_host
        self.last_check_at = datetime.now()

        result = await self.orchestrator.verifier.test_config(host, self.orchestrator.config)
        if result.ok:
            await close_quietly(result.connection)
            await self.orchestrator.note_verified(host)
            logger.debug(f"Connection to {host} OK")
            self.last_result = "ok"
            return self.last_result

        logger.warning(f"Connection to {host} failed ({result.error}), attempting host recovery")
        try:
            outcome = await self.orchestrator.recover()
        except ConnectivityError as e:
            logger.error(f"Recovery failed, database may be down: {e} (tried {', '.join(e.attempted)})")
            self.last_result = "failed"
            return self.last_result

        await close_quietly(outcome.connection)
        if outcome.host_changed:
            logger.info(f"Host change detected and resolved: {outcome.previous_host} -> {outcome.host}")
        self.last_result = "recovered"
        return self.last_result

    async def monitor_loop(self):
        """Main monitoring loop."""
        logger.info(f"Connection monitor started (interval: {self.check_interval}s)")
        self.running = True

        while self.running:
            try:
                await self.check_once()
                await asyncio.sleep(self.check_interval)
            except asyncio.CancelledError:
                logger.info("Connection monitor cancelled")
                break
            except Exception as e:
                logger.error(f"Connection monitor error: {e}", exc_info=True)
                await asyncio.sleep(self.check_interval)

        logger.info("Connection monitor stopped")

    async def start(self):
        """Start the monitor as a background task."""
        return asyncio.create_task(self.monitor_loop())

    def stop(self):
        """Stop the monitor after the current check."""
        self.running = False
