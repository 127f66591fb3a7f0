"""
Session cleanup service: deletes expired rows from the session store.

Background worker that polls every SESSION_PRUNE_INTERVAL_S seconds
(15 minutes by default).
"""

import asyncio
import logging
from typing import Optional

from revengers.config import settings
from revengers.services.session_service import SessionManager

logger = logging.getLogger(__name__)


class SessionCleanupService:
    """Background service that prunes expired sessions."""

    def __init__(self, interval_seconds: Optional[float] = None):
        self._worker_task: Optional[asyncio.Task] = None
        self._stop_event = asyncio.Event()
        self._manager: Optional[SessionManager] = None
        self._interval = interval_seconds

    @property
    def interval(self) -> float:
        return self._interval if self._interval is not None else settings.session_prune_interval_seconds

    def start(self, manager: SessionManager) -> None:
        """Start the background cleanup worker."""
        self._manager = manager
        if self._worker_task is None or self._worker_task.done():
            self._stop_event.clear()
            self._worker_task = asyncio.create_task(self._poll_loop())
            logger.info("Session cleanup worker started")

    def stop(self) -> None:
        """Stop the background cleanup worker."""
        self._stop_event.set()
        if self._worker_task and not self._worker_task.done():
            self._worker_task.cancel()
            logger.info("Session cleanup worker stopped")

    async def _poll_loop(self) -> None:
        """Prune, then wait one interval. Exits once stop() is called."""
        while not self._stop_event.is_set():
            try:
                await self.prune_once()
            except Exception as e:
                # Store outages are retried on the next tick
                logger.error(f"Session prune failed: {e}", exc_info=True)

            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval)
                break
            except asyncio.TimeoutError:
                continue

    async def prune_once(self) -> int:
        """Delete expired sessions once and return how many were removed."""
        if self._manager is None:
            return 0
        removed = await self._manager.prune()
        if removed:
            logger.info(f"Pruned {removed} expired session(s)")
        return removed


# Global singleton
_cleanup_service = SessionCleanupService()


def get_session_cleanup_service() -> SessionCleanupService:
    """Get the global session cleanup service instance."""
    return _cleanup_service
