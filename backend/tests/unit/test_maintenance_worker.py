"""Tests for the maintenance worker: one pass and task lifecycle."""

import asyncio
from unittest.mock import AsyncMock, patch

from wyzar.core.auth import hash_token
from wyzar.repositories.session_repository import SessionRepository
from wyzar.services.lockout_guard import KEY_PREFIX as LOCKOUT_PREFIX
from wyzar.services.maintenance_worker import MaintenanceWorker


def _worker(session_factory, lockout_guard, otp_manager, clock) -> MaintenanceWorker:
    return MaintenanceWorker(
        session_factory,
        lockout_guard,
        otp_manager,
        interval_seconds=3600,
        clock=clock,
    )


class TestRunOnce:
    """A single pass across all three stores."""

    async def test_removes_expired_state(
        self,
        session_factory,
        lockout_guard,
        otp_manager,
        kv_store,
        clock,
        make_account,
    ):
        account = await make_account()
        async with session_factory() as session:
            await SessionRepository.create(
                session,
                account_id=account.id,
                token_hash=hash_token("short-lived"),
                expires_at=clock(),
            )
            await session.commit()
        for _ in range(3):
            await lockout_guard.record_failed_attempt("ann@example.com")
        clock.advance(300)
        await otp_manager.issue("ann@example.com", "login")
        clock.advance(601)

        worker = _worker(session_factory, lockout_guard, otp_manager, clock)
        result = await worker.run_once()

        assert result.lockouts_removed == 1
        assert result.passcodes_removed == 1
        assert result.sessions_removed == 1
        assert worker.last_run_at == clock()
        assert await kv_store.keys(LOCKOUT_PREFIX) == []

    async def test_nothing_to_do(self, session_factory, lockout_guard, otp_manager, clock):
        worker = _worker(session_factory, lockout_guard, otp_manager, clock)

        result = await worker.run_once()

        assert (result.lockouts_removed, result.passcodes_removed) == (0, 0)
        assert result.sessions_removed == 0


class TestWorkerLifecycle:
    """start() / stop()."""

    async def test_start_runs_a_pass_and_stop_cancels(
        self, session_factory, lockout_guard, otp_manager, clock
    ):
        worker = _worker(session_factory, lockout_guard, otp_manager, clock)

        worker.start()
        assert worker.is_running is True
        # Let the loop complete its first pass before stopping
        for _ in range(50):
            if worker.last_run_at is not None:
                break
            await asyncio.sleep(0.01)
        await worker.stop()

        assert worker.last_run_at is not None
        assert worker.is_running is False

    async def test_start_is_idempotent(
        self, session_factory, lockout_guard, otp_manager, clock
    ):
        worker = _worker(session_factory, lockout_guard, otp_manager, clock)

        with patch.object(worker, "_run_loop", new_callable=AsyncMock):
            worker.start()
            first_task = worker._task
            worker.start()  # Second call should be no-op
            assert worker._task is first_task
            await worker.stop()

    async def test_stop_without_start_is_safe(
        self, session_factory, lockout_guard, otp_manager, clock
    ):
        worker = _worker(session_factory, lockout_guard, otp_manager, clock)

        await worker.stop()  # Should not raise

        assert worker.is_running is False

    async def test_failed_pass_does_not_kill_loop(
        self, session_factory, lockout_guard, otp_manager, clock
    ):
        worker = _worker(session_factory, lockout_guard, otp_manager, clock)
        failing = AsyncMock(side_effect=RuntimeError("store down"))

        with patch.object(worker, "run_once", failing):
            worker.start()
            for _ in range(50):
                if failing.await_count:
                    break
                await asyncio.sleep(0.01)
            assert worker.is_running is True
            await worker.stop()

        assert failing.await_count == 1
