"""
Server-side sessions keyed by a signed cookie.

Session state is a tagged union: an anonymous visitor or an authenticated
admin. It is stored as JSON in the ``sessions`` table (or in process memory
when no database is available, in which case sessions are lost on restart).

Sessions are written lazily: a fresh anonymous visitor is never persisted,
only sessions that were modified (login) or already exist (rolling expiry).
"""

import asyncio
import json
import logging
import secrets
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Annotated, Dict, Literal, Optional, Tuple, Union

from itsdangerous import BadSignature, SignatureExpired, TimestampSigner
from pydantic import BaseModel, Field, TypeAdapter

from revengers.config import settings
from revengers.database.gateway import StorageGateway
from revengers.utils.datetime_utils import isoformat_utc, utcnow

logger = logging.getLogger(__name__)


class AnonymousSession(BaseModel):
    kind: Literal["anonymous"] = "anonymous"


class AdminSession(BaseModel):
    kind: Literal["admin"] = "admin"
    admin_id: int
    login_time: str


SessionState = Annotated[Union[AnonymousSession, AdminSession], Field(discriminator="kind")]
_state_adapter = TypeAdapter(SessionState)


def serialize_state(state: SessionState) -> dict:
    """Row format for the ``sess`` column."""
    if isinstance(state, AdminSession):
        return {"isAdmin": True, "adminId": state.admin_id, "loginTime": state.login_time}
    return {"isAdmin": False}


def deserialize_state(data: Union[dict, str, None]) -> SessionState:
    """Inverse of serialize_state; anything unrecognised is anonymous."""
    if isinstance(data, str):
        try:
            data = json.loads(data)
        except ValueError:
            return AnonymousSession()
    if not isinstance(data, dict) or not data.get("isAdmin"):
        return AnonymousSession()
    try:
        return _state_adapter.validate_python(
            {"kind": "admin", "admin_id": data.get("adminId"), "login_time": data.get("loginTime") or ""}
        )
    except ValueError:
        logger.warning("Discarding malformed admin session payload")
        return AnonymousSession()


# ---------------------------------------------------------------------------
# Stores
# ---------------------------------------------------------------------------


class DatabaseSessionStore:
    """Sessions persisted in the relational ``sessions`` table."""

    volatile = False

    def __init__(self, gateway: StorageGateway):
        self._gateway = gateway

    async def get(self, sid: str) -> Optional[SessionState]:
        row = await self._gateway.query_one(
            "SELECT sess FROM sessions WHERE sid = :sid AND expire > :now",
            {"sid": sid, "now": utcnow()},
        )
        return deserialize_state(row["sess"]) if row else None

    async def set(self, sid: str, state: SessionState, expire: datetime) -> None:
        await self._gateway.execute(
            "INSERT INTO sessions (sid, sess, expire) VALUES (:sid, CAST(:sess AS JSONB), :expire) "
            "ON CONFLICT (sid) DO UPDATE SET sess = EXCLUDED.sess, expire = EXCLUDED.expire "
            "RETURNING sid",
            {"sid": sid, "sess": json.dumps(serialize_state(state)), "expire": expire},
        )

    async def touch(self, sid: str, expire: datetime) -> None:
        await self._gateway.execute(
            "UPDATE sessions SET expire = :expire WHERE sid = :sid",
            {"sid": sid, "expire": expire},
        )

    async def destroy(self, sid: str) -> None:
        await self._gateway.execute("DELETE FROM sessions WHERE sid = :sid", {"sid": sid})

    async def prune(self) -> int:
        result = await self._gateway.execute(
            "DELETE FROM sessions WHERE expire <= :now", {"now": utcnow()}
        )
        return result.affected


class MemorySessionStore:
    """Process-local fallback. Sessions do not survive a restart."""

    volatile = True

    def __init__(self):
        self._entries: Dict[str, Tuple[dict, datetime]] = {}
        logger.warning("Using in-memory session store; sessions will be lost on restart")

    async def get(self, sid: str) -> Optional[SessionState]:
        entry = self._entries.get(sid)
        if entry is None:
            return None
        data, expire = entry
        if expire <= utcnow():
            self._entries.pop(sid, None)
            return None
        return deserialize_state(data)

    async def set(self, sid: str, state: SessionState, expire: datetime) -> None:
        self._entries[sid] = (serialize_state(state), expire)

    async def touch(self, sid: str, expire: datetime) -> None:
        if sid in self._entries:
            self._entries[sid] = (self._entries[sid][0], expire)

    async def destroy(self, sid: str) -> None:
        self._entries.pop(sid, None)

    async def prune(self) -> int:
        now = utcnow()
        expired = [sid for sid, (_, expire) in self._entries.items() if expire <= now]
        for sid in expired:
            del self._entries[sid]
        return len(expired)

    def __len__(self) -> int:
        return len(self._entries)


SessionStore = Union[DatabaseSessionStore, MemorySessionStore]


# ---------------------------------------------------------------------------
# Per-request context
# ---------------------------------------------------------------------------


@dataclass
class SessionContext:
    """The session as seen by one request."""

    sid: str
    state: SessionState
    is_new: bool
    store_available: bool = True
    modified: bool = False
    destroyed: bool = False
    rotated_from: Optional[str] = None
    saved: bool = False
    cookie_expires: Optional[datetime] = None

    @property
    def is_admin(self) -> bool:
        return isinstance(self.state, AdminSession)

    @property
    def admin_id(self) -> Optional[int]:
        return self.state.admin_id if isinstance(self.state, AdminSession) else None

    @property
    def login_time(self) -> Optional[str]:
        return self.state.login_time if isinstance(self.state, AdminSession) else None

    def login(self, admin_id: int) -> None:
        """Promote to an admin session under a fresh id."""
        if not self.is_new:
            self.rotated_from = self.sid
        self.sid = new_session_id()
        self.is_new = True
        self.state = AdminSession(admin_id=admin_id, login_time=isoformat_utc(utcnow()))
        self.modified = True
        self.destroyed = False

    def destroy(self) -> None:
        self.state = AnonymousSession()
        self.destroyed = True
        self.modified = False


def new_session_id() -> str:
    return secrets.token_urlsafe(32)


class SessionManager:
    """Cookie signing, session loading and persistence over a store."""

    def __init__(self, store: Optional[SessionStore], secret: Optional[str] = None):
        self.store = store
        self._signer = TimestampSigner(secret or settings.session_secret, salt="revengers.session")
        self._locks: Dict[str, asyncio.Lock] = {}
        self._lock_users: Dict[str, int] = {}

    @property
    def available(self) -> bool:
        return self.store is not None

    def sign(self, sid: str) -> str:
        return self._signer.sign(sid).decode("utf-8")

    def unsign(self, cookie_value: Optional[str]) -> Optional[str]:
        if not cookie_value:
            return None
        try:
            return self._signer.unsign(cookie_value, max_age=settings.session_max_age_seconds).decode("utf-8")
        except SignatureExpired:
            return None
        except BadSignature:
            logger.info("Rejected session cookie with a bad signature")
            return None

    @asynccontextmanager
    async def lock(self, sid: str):
        """Serialize store operations on a single session id."""
        lock = self._locks.setdefault(sid, asyncio.Lock())
        self._lock_users[sid] = self._lock_users.get(sid, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[sid] -= 1
            if self._lock_users[sid] <= 0:
                self._lock_users.pop(sid, None)
                self._locks.pop(sid, None)

    def expiry(self) -> datetime:
        return utcnow() + timedelta(seconds=settings.session_max_age_seconds)

    async def load(self, cookie_value: Optional[str]) -> SessionContext:
        """
        Resolve the cookie into a SessionContext.

        A store failure yields an anonymous context flagged unavailable so
        that protected routes can answer 503 instead of 401.
        """
        if self.store is None:
            return SessionContext(sid=new_session_id(), state=AnonymousSession(), is_new=True, store_available=False)

        sid = self.unsign(cookie_value)
        if sid:
            try:
                async with self.lock(sid):
                    state = await self.store.get(sid)
            except Exception as e:
                logger.error(f"Session store unavailable while loading session: {e}")
                return SessionContext(sid=sid, state=AnonymousSession(), is_new=False, store_available=False)
            if state is not None:
                return SessionContext(sid=sid, state=state, is_new=False)
        return SessionContext(sid=new_session_id(), state=AnonymousSession(), is_new=True)

    async def save(self, ctx: SessionContext) -> Optional[datetime]:
        """
        Persist whatever the request changed.

        Returns:
            The new expiry when a cookie should be (re)issued, None otherwise

        Raises:
            Whatever the store raises; callers decide whether that is fatal
        """
        if ctx.saved or self.store is None or not ctx.store_available:
            return None

        if ctx.destroyed:
            if not ctx.is_new:
                async with self.lock(ctx.sid):
                    await self.store.destroy(ctx.sid)
            ctx.saved = True
            return None

        expire = self.expiry()
        if ctx.modified:
            if ctx.rotated_from:
                async with self.lock(ctx.rotated_from):
                    await self.store.destroy(ctx.rotated_from)
            async with self.lock(ctx.sid):
                await self.store.set(ctx.sid, ctx.state, expire)
        elif not ctx.is_new:
            async with self.lock(ctx.sid):
                await self.store.touch(ctx.sid, expire)
        else:
            return None

        ctx.saved = True
        ctx.cookie_expires = expire
        return expire

    async def prune(self) -> int:
        if self.store is None:
            return 0
        return await self.store.prune()
