"""Periodic maintenance background worker.

asyncio background task via FastAPI lifespan event. Each pass sweeps the
lockout records, deletes spent passcodes, and purges expired server
sessions.
"""

import asyncio
import contextlib
import logging
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from wyzar.core.clock import Clock, utc_now
from wyzar.repositories.session_repository import SessionRepository
from wyzar.services.lockout_guard import LockoutGuard
from wyzar.services.otp_manager import OTPManager

logger = logging.getLogger(__name__)

# Default interval: 5 minutes
DEFAULT_INTERVAL_SECONDS = 5 * 60


@dataclass
class MaintenancePassResult:
    """Statistics from one maintenance pass."""

    lockouts_removed: int = 0
    passcodes_removed: int = 0
    sessions_removed: int = 0
    finished_at: datetime = field(default_factory=utc_now)


class MaintenanceWorker:
    """Background worker that periodically cleans up expired identity state.

    Lifecycle:
    - start() creates an asyncio task that runs the maintenance loop.
    - stop() cancels the task and waits for graceful shutdown.
    - run_once() executes a single pass (for testing).

    Args:
        session_factory: Async session factory for DB access.
        lockout_guard: Guard whose records are swept.
        otp_manager: Manager whose records are cleaned.
        interval_seconds: Seconds between passes.
        clock: Time source (UTC).
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        lockout_guard: LockoutGuard,
        otp_manager: OTPManager,
        *,
        interval_seconds: int = DEFAULT_INTERVAL_SECONDS,
        clock: Clock = utc_now,
    ) -> None:
        self._session_factory = session_factory
        self._lockout_guard = lockout_guard
        self._otp_manager = otp_manager
        self._interval_seconds = interval_seconds
        self._clock = clock
        self._task: asyncio.Task[None] | None = None
        self._last_run_at: datetime | None = None
        self._running = False

    @property
    def is_running(self) -> bool:
        """Whether the background task is currently active."""
        return self._running and self._task is not None and not self._task.done()

    @property
    def last_run_at(self) -> datetime | None:
        """Timestamp of the most recent completed pass."""
        return self._last_run_at

    def start(self) -> None:
        """Start the background maintenance loop.

        Creates an asyncio task. No-op if already running.
        Must be called from an async context (running event loop).
        """
        if self.is_running:
            logger.warning("Maintenance worker already running")
            return

        self._running = True
        self._task = asyncio.create_task(self._run_loop())
        logger.info("Maintenance worker started (interval=%ds)", self._interval_seconds)

    async def stop(self) -> None:
        """Stop the background loop.

        Cancels the task and waits for it to finish.
        """
        self._running = False
        if self._task is not None and not self._task.done():
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
        self._task = None
        logger.info("Maintenance worker stopped")

    async def run_once(self) -> MaintenancePassResult:
        """Execute a single maintenance pass.

        Returns:
            MaintenancePassResult with counts from the pass.
        """
        lockouts = await self._lockout_guard.sweep()
        passcodes = await self._otp_manager.cleanup_expired()
        async with self._session_factory() as db:
            sessions = await SessionRepository.delete_expired(db, self._clock())
            await db.commit()

        result = MaintenancePassResult(
            lockouts_removed=lockouts,
            passcodes_removed=passcodes,
            sessions_removed=sessions,
            finished_at=self._clock(),
        )
        self._last_run_at = result.finished_at
        return result

    async def _run_loop(self) -> None:
        """Background loop: run_once -> sleep -> repeat."""
        try:
            while self._running:
                try:
                    result = await self.run_once()
                    logger.info(
                        "Maintenance pass: %d lockouts, %d passcodes, %d sessions removed",
                        result.lockouts_removed,
                        result.passcodes_removed,
                        result.sessions_removed,
                    )
                except Exception:  # noqa: BLE001
                    logger.exception("Error in maintenance pass")
                await asyncio.sleep(self._interval_seconds)
        except asyncio.CancelledError:
            logger.debug("Maintenance loop cancelled")
            raise
