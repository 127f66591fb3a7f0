"""
Tests for the session cleanup worker.
"""

import asyncio
import contextlib
from unittest.mock import AsyncMock, MagicMock

import pytest

from revengers.services.session_cleanup_service import (
    SessionCleanupService,
    get_session_cleanup_service,
)


def _manager(removed=0):
    manager = MagicMock()
    manager.prune = AsyncMock(return_value=removed)
    return manager


@pytest.mark.asyncio
async def test_prune_once_delegates_to_manager():
    service = SessionCleanupService(interval_seconds=60)
    service._manager = _manager(removed=3)
    assert await service.prune_once() == 3


@pytest.mark.asyncio
async def test_prune_once_without_manager():
    assert await SessionCleanupService().prune_once() == 0


@pytest.mark.asyncio
async def test_worker_prunes_on_start_and_stops():
    service = SessionCleanupService(interval_seconds=60)
    manager = _manager()

    service.start(manager)
    await asyncio.sleep(0.05)
    service.stop()
    with contextlib.suppress(asyncio.CancelledError):
        await service._worker_task

    manager.prune.assert_awaited()
    assert service._worker_task.done()


@pytest.mark.asyncio
async def test_worker_survives_prune_errors():
    service = SessionCleanupService(interval_seconds=0.01)
    manager = _manager()
    manager.prune.side_effect = [ConnectionError("down")] + [0] * 100

    service.start(manager)
    await asyncio.sleep(0.1)
    service.stop()
    with contextlib.suppress(asyncio.CancelledError):
        await service._worker_task

    assert manager.prune.await_count >= 2


def test_global_singleton():
    assert get_session_cleanup_service() is get_session_cleanup_service()
