"""
Storage gateway: the only path from request handlers to the relational store.

Exposes three calls over SQL text with named bound parameters (``:name``):
query (many rows), query_one (first row or None) and execute (insert / update /
delete). Each call checks out a connection for its own duration. Admission is
bounded by a semaphore plus a waiter cap so that a saturated pool fails fast
with a retriable error instead of queueing without limit.
"""

import asyncio
import logging
import re
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from sqlalchemy import text
from sqlalchemy.exc import (
    DBAPIError,
    DisconnectionError,
    IntegrityError,
    InterfaceError,
    OperationalError,
    SQLAlchemyError,
    TimeoutError as PoolTimeoutError,
)
from sqlalchemy.ext.asyncio import AsyncEngine

from revengers.errors import (
    AppError,
    ConstraintViolation,
    DatabasePermanentError,
    DatabaseTransientError,
)

logger = logging.getLogger(__name__)

_INSERT_RE = re.compile(r"^\s*INSERT\s", re.IGNORECASE)
_RETURNING_RE = re.compile(r"\bRETURNING\b", re.IGNORECASE)


@dataclass
class ExecResult:
    inserted_id: Optional[int]
    affected: int


def classify_error(error: Exception) -> AppError:
    """
    Map a driver/pool error onto the application error taxonomy.

    Args:
        error: Exception raised while talking to the database

    Returns:
        ConstraintViolation, DatabaseTransientError or DatabasePermanentError
    """
    if isinstance(error, IntegrityError):
        return ConstraintViolation("Record conflicts with existing data")
    if isinstance(error, (OperationalError, InterfaceError, DisconnectionError, PoolTimeoutError)):
        return DatabaseTransientError()
    if isinstance(error, DBAPIError) and error.connection_invalidated:
        return DatabaseTransientError()
    if isinstance(error, (asyncio.TimeoutError, ConnectionError, OSError)):
        return DatabaseTransientError()
    return DatabasePermanentError()


def with_returning_id(sql: str) -> str:
    """Append ``RETURNING id`` to an INSERT that does not already return something."""
    if _INSERT_RE.match(sql) and not _RETURNING_RE.search(sql):
        return sql.rstrip().rstrip(";") + " RETURNING id"
    return sql


class StorageGateway:
    """Bounded-concurrency facade over an AsyncEngine."""

    def __init__(
        self,
        engine: AsyncEngine,
        max_concurrency: int = 10,
        max_waiters: int = 50,
        acquire_timeout: float = 2.0,
    ):
        self._engine = engine
        self._semaphore = asyncio.Semaphore(max_concurrency)
        self._max_waiters = max_waiters
        self._acquire_timeout = acquire_timeout
        self._waiters = 0

    @property
    def engine(self) -> AsyncEngine:
        return self._engine

    @asynccontextmanager
    async def _slot(self):
        if self._semaphore.locked() and self._waiters >= self._max_waiters:
            logger.warning(f"Database waiter queue full ({self._waiters} waiting)")
            raise DatabaseTransientError("Database pool exhausted", code="POOL_EXHAUSTED")

        self._waiters += 1
        try:
            await asyncio.wait_for(self._semaphore.acquire(), timeout=self._acquire_timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Timed out after {self._acquire_timeout}s waiting for a database slot")
            raise DatabaseTransientError("Database pool exhausted", code="POOL_EXHAUSTED")
        finally:
            self._waiters -= 1

        try:
            yield
        finally:
            self._semaphore.release()

    async def _run(self, sql: str, params: Optional[Dict[str, Any]]):
        async with self._slot():
            try:
                async with self._engine.begin() as conn:
                    result = await conn.execute(text(sql), params or {})
                    if result.returns_rows:
                        rows = [dict(row._mapping) for row in result.fetchall()]
                    else:
                        rows = []
                    return rows, result.rowcount
            except (SQLAlchemyError, OSError, asyncio.TimeoutError) as e:
                classified = classify_error(e)
                if isinstance(classified, DatabasePermanentError):
                    logger.error(f"Database error: {e}", exc_info=True)
                else:
                    logger.warning(f"Database call failed ({classified.code}): {e}")
                raise classified from e

    async def query(self, sql: str, params: Optional[Dict[str, Any]] = None) -> List[dict]:
        """Run a read and return every row as a dict."""
        rows, _ = await self._run(sql, params)
        return rows

    async def query_one(self, sql: str, params: Optional[Dict[str, Any]] = None) -> Optional[dict]:
        """Run a read and return the first row, or None."""
        rows, _ = await self._run(sql, params)
        return rows[0] if rows else None

    async def execute(self, sql: str, params: Optional[Dict[str, Any]] = None) -> ExecResult:
        """
        Run an insert, update or delete.

        INSERT statements get ``RETURNING id`` appended so the new id is always
        reported.

        Returns:
            ExecResult with inserted_id (inserts only) and affected row count
        """
        is_insert = bool(_INSERT_RE.match(sql))
        rows, rowcount = await self._run(with_returning_id(sql), params)
        if is_insert:
            inserted_id = rows[0].get("id") if rows else None
            return ExecResult(inserted_id=inserted_id, affected=len(rows))
        return ExecResult(inserted_id=None, affected=max(rowcount or 0, 0))

    async def ping(self) -> bool:
        """Readiness probe: True when ``SELECT 1`` succeeds."""
        try:
            await self.query_one("SELECT 1 AS ok")
            return True
        except AppError:
            return False

    async def close(self) -> None:
        await self._engine.dispose()
        logger.info("Database engine disposed")
