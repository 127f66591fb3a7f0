"""
Initialize default database values.
Run on startup to make sure an admin account exists.
"""

import asyncio
import logging

from revengers.config import settings
from revengers.database.gateway import StorageGateway
from revengers.services.auth_service import hash_password

logger = logging.getLogger(__name__)


class BootstrapError(RuntimeError):
    """Startup cannot continue without operator-provided configuration."""


async def ensure_default_admin(gateway: StorageGateway) -> bool:
    """
    Insert the bootstrap admin when the admins table is empty.

    Credentials come from DEFAULT_ADMIN_USERNAME / DEFAULT_ADMIN_PASSWORD; in
    development hard-coded fallbacks are used.

    Returns:
        True if an admin row was created

    Raises:
        BootstrapError: In production when the table is empty and no
            credentials were provided
    """
    row = await gateway.query_one("SELECT COUNT(*) AS count FROM admins")
    if row and row["count"] > 0:
        logger.info("Admin account already present")
        return False

    username = settings.default_admin_username
    password = settings.default_admin_password
    if not username or not password:
        if settings.is_production:
            raise BootstrapError(
                "No admin account exists and DEFAULT_ADMIN_USERNAME / DEFAULT_ADMIN_PASSWORD are not set"
            )
        logger.warning("No admin account exists and no default credentials are configured")
        return False

    loop = asyncio.get_running_loop()
    password_hash = await loop.run_in_executor(None, hash_password, password, settings.bcrypt_rounds)
    await gateway.execute(
        "INSERT INTO admins (username, password) VALUES (:username, :password)",
        {"username": username, "password": password_hash},
    )
    if settings.is_development and password == "adminpassword":
        logger.warning("Created default admin with the development password; change it before deploying")
    else:
        logger.info(f"Created default admin '{username}'")
    return True
