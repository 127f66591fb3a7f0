"""
Rate limiting service for admin login attempts.

Counts failed attempts per client IP in an in-memory sliding window. Each
attempt claims a slot up front and a successful login hands it back, so only
failures consume the budget. The general per-IP request limit
is handled by slowapi (see revengers.api.routes).
"""

import math
import time
from typing import Dict, List, Optional

from revengers.config import settings
from revengers.errors import AuthRateLimited

# In-memory storage of failure timestamps per key
_login_failure_storage: Dict[str, List[float]] = {}


def reset_login_rate_limit_storage():
    """Reset the login rate limit storage. Useful for testing."""
    _login_failure_storage.clear()


def get_login_rate_limit_key(client_ip: Optional[str]) -> str:
    """
    Create a rate limiting key for a client address.

    Returns:
        Rate limit key string (e.g., "login:203.0.113.7")
    """
    return f"login:{client_ip or 'unknown'}"


def _recent_failures(key: str, window: int, now: float) -> List[float]:
    hits = _login_failure_storage.get(key, [])
    # Remove expired entries (older than the window)
    hits[:] = [t for t in hits if now - t < window]
    if hits:
        _login_failure_storage[key] = hits
    else:
        _login_failure_storage.pop(key, None)
    return hits


def reserve_login_attempt(client_ip: Optional[str]) -> float:
    """
    Check the limit and claim a failure slot in one step.

    Runs without awaiting, so concurrent attempts from one client are counted
    before any of them reaches the password check. The slot stays counted
    unless the attempt succeeds and release_login_attempt() is called.

    Returns:
        The timestamp token identifying the claimed slot

    Raises:
        AuthRateLimited: The client has no slots left in the window
    """
    window = settings.rate_limit_window_seconds
    key = get_login_rate_limit_key(client_ip)
    now = time.time()
    hits = _recent_failures(key, window, now)
    if len(hits) >= settings.auth_rate_limit_max:
        retry_after = math.ceil(window - (now - hits[0]))
        raise AuthRateLimited(retry_after=max(retry_after, 1))
    hits.append(now)
    _login_failure_storage[key] = hits
    return now


def release_login_attempt(client_ip: Optional[str], token: float) -> None:
    """Give back a slot claimed by reserve_login_attempt()."""
    key = get_login_rate_limit_key(client_ip)
    hits = _login_failure_storage.get(key)
    if not hits:
        return
    try:
        hits.remove(token)
    except ValueError:
        return
    if not hits:
        _login_failure_storage.pop(key, None)


def failure_count(client_ip: Optional[str]) -> int:
    """Number of failures currently inside the window."""
    key = get_login_rate_limit_key(client_ip)
    return len(_recent_failures(key, settings.rate_limit_window_seconds, time.time()))
