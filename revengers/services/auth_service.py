"""
Admin authentication: credential checks with uniform timing.

Every login attempt takes at least MIN_LOGIN_SECONDS and always runs one bcrypt
comparison (against a dummy hash when the username is unknown), so response
time does not reveal whether an account exists.
"""

import asyncio
import logging
import time
from typing import Dict, Optional

import bcrypt

from revengers.config import settings
from revengers.database.gateway import StorageGateway
from revengers.utils.datetime_utils import utcnow

logger = logging.getLogger(__name__)

MIN_LOGIN_SECONDS = 0.1

# bcrypt hash of a random value per cost factor, used for unknown usernames
_dummy_hashes: Dict[int, bytes] = {}


def hash_password(password: str, rounds: Optional[int] = None) -> str:
    """Hash a password with bcrypt using BCRYPT_ROUNDS (default 12)."""
    salt = bcrypt.gensalt(rounds=rounds or settings.bcrypt_rounds)
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")


def verify_password(password: str, password_hash) -> bool:
    """
    Check a password against a bcrypt hash.

    Returns:
        False for a mismatch or an unusable stored hash
    """
    if isinstance(password_hash, str):
        password_hash = password_hash.encode("utf-8")
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash)
    except ValueError as e:
        # Malformed stored hash, or a password over bcrypt's 72-byte input limit
        logger.warning(f"Password check rejected: {e}")
        return False


def dummy_hash() -> bytes:
    rounds = settings.bcrypt_rounds
    if rounds not in _dummy_hashes:
        _dummy_hashes[rounds] = bcrypt.hashpw(b"not-a-real-password", bcrypt.gensalt(rounds=rounds))
    return _dummy_hashes[rounds]


async def get_admin_by_username(gateway: StorageGateway, username: str) -> Optional[dict]:
    return await gateway.query_one(
        "SELECT id, username, password FROM admins WHERE LOWER(username) = LOWER(:username)",
        {"username": username},
    )


async def authenticate(gateway: StorageGateway, username: str, password: str) -> Optional[dict]:
    """
    Verify admin credentials.

    Args:
        gateway: Storage gateway
        username: Submitted username (case-insensitive)
        password: Submitted cleartext password

    Returns:
        {"id", "username"} of the admin, or None when the credentials are wrong.
        Unknown user and wrong password are indistinguishable to the caller.
    """
    started = time.monotonic()
    loop = asyncio.get_running_loop()
    try:
        admin = await get_admin_by_username(gateway, username)
        stored_hash = admin["password"] if admin else await loop.run_in_executor(None, dummy_hash)
        matches = await loop.run_in_executor(None, verify_password, password, stored_hash)
        if admin and matches:
            return {"id": admin["id"], "username": admin["username"]}
        return None
    finally:
        elapsed = time.monotonic() - started
        if elapsed < MIN_LOGIN_SECONDS:
            await asyncio.sleep(MIN_LOGIN_SECONDS - elapsed)


async def record_login(gateway: StorageGateway, admin_id: int) -> None:
    """Stamp last_login. Failure is logged; it never fails the login."""
    try:
        await gateway.execute(
            "UPDATE admins SET last_login = :now WHERE id = :id",
            {"now": utcnow(), "id": admin_id},
        )
    except Exception as e:
        logger.error(f"Failed to update last login time for admin {admin_id}: {e}")
