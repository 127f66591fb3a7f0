"""
S3 service: the object store holding processed entity images.

Provides a lazy-initialized boto3 client, key generation for uploads, and
put/delete helpers that run the blocking boto3 calls in the default executor
under a deadline. Failures are classified as transient (safe to retry) or
permanent. ``delete_quietly`` is the best-effort cleanup path used after a
row has been committed or rolled back; it never raises.
"""

import asyncio
import logging
import os
import re
import secrets
import time
from typing import Optional
from urllib.parse import urlparse

from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    ConnectionError as BotoConnectionError,
    ConnectTimeoutError,
    EndpointConnectionError,
    ReadTimeoutError,
)

from revengers.config import settings
from revengers.errors import StorageError, StoragePermanentError, StorageTransientError

logger = logging.getLogger(__name__)

# Lazy-initialized S3 client
_s3_client = None

_TRANSIENT_CODES = {
    "Throttling",
    "ThrottlingException",
    "SlowDown",
    "RequestTimeout",
    "RequestTimeTooSkewed",
    "InternalError",
    "ServiceUnavailable",
}


def _get_config() -> dict:
    """Read S3 configuration from environment at call time (not import time)."""
    return settings.object_store


def _get_s3_client():
    """Get or create the boto3 S3 client."""
    global _s3_client
    if _s3_client is None:
        cfg = _get_config()
        if not all([cfg["access_key_id"], cfg["secret_access_key"], cfg["bucket"]]):
            raise StoragePermanentError(
                "AWS S3 environment variables not configured. "
                "Set AWS_ACCESS_KEY_ID, AWS_SECRET_ACCESS_KEY, and AWS_S3_BUCKET."
            )
        import boto3

        _s3_client = boto3.client(
            "s3",
            aws_access_key_id=cfg["access_key_id"],
            aws_secret_access_key=cfg["secret_access_key"],
            region_name=cfg["region"],
        )
    return _s3_client


def reset_client() -> None:
    """Drop the cached client. Useful for testing."""
    global _s3_client
    _s3_client = None


def public_base_url(cfg: Optional[dict] = None) -> str:
    cfg = cfg or _get_config()
    if cfg.get("public_url"):
        return cfg["public_url"]
    return f"https://{cfg['bucket']}.s3.{cfg['region']}.amazonaws.com"


def build_object_key(folder: str, original_name: Optional[str]) -> str:
    """
    Build a collision-free key for a processed upload.

    Format: ``{folder}/{epoch_ms}-{16 hex}-{safe stem}.webp``

    Args:
        folder: Top-level prefix, e.g. "players"
        original_name: Client filename (already sanitized or not)

    Returns:
        Object key string
    """
    stem = os.path.splitext(os.path.basename(original_name or ""))[0]
    stem = re.sub(r"[^a-zA-Z0-9_-]", "_", stem).strip("_-")[:50] or "image"
    return f"{folder}/{int(time.time() * 1000)}-{secrets.token_hex(8)}-{stem}.webp"


def classify_error(error: Exception) -> StorageError:
    """Sort a boto3/botocore failure into transient or permanent."""
    if isinstance(error, StorageError):
        return error
    if isinstance(error, asyncio.TimeoutError):
        return StorageTransientError("Image storage timed out")
    if isinstance(
        error,
        (EndpointConnectionError, BotoConnectionError, ConnectTimeoutError, ReadTimeoutError),
    ):
        return StorageTransientError("Image storage unreachable")
    if isinstance(error, ClientError):
        code = error.response.get("Error", {}).get("Code", "")
        status = error.response.get("ResponseMetadata", {}).get("HTTPStatusCode", 0) or 0
        if code in _TRANSIENT_CODES or status >= 500 or status == 429:
            return StorageTransientError(f"Image storage temporarily failed ({code or status})")
        return StoragePermanentError(f"Image storage rejected the request ({code or status})")
    if isinstance(error, BotoCoreError):
        return StoragePermanentError("Image storage client error")
    return StoragePermanentError("Image storage failed")


def key_from_url(url: str) -> Optional[str]:
    """
    Extract the object key from a URL previously returned by put().

    Validates that the URL host matches the configured bucket (or CDN base)
    before extracting the key.

    Handles URLs like:
      https://bucket.s3.region.amazonaws.com/players/1700000000000-ab12-kai.webp
      https://cdn.example.com/players/1700000000000-ab12-kai.webp

    Returns:
        Object key string or None if parsing fails or the host doesn't match
    """
    if not url:
        return None
    cfg = _get_config()
    try:
        parsed = urlparse(url)
    except ValueError:
        return None

    expected = urlparse(public_base_url(cfg)) if (cfg.get("public_url") or cfg.get("bucket")) else None
    if expected is not None and parsed.hostname != expected.hostname:
        logger.warning(
            f"URL hostname '{parsed.hostname}' does not match "
            f"expected object store host '{expected.hostname}'"
        )
        return None

    path = parsed.path
    base_path = expected.path.rstrip("/") if expected is not None else ""
    if base_path and path.startswith(base_path + "/"):
        path = path[len(base_path):]

    # Remove leading slash from path
    key = path.lstrip("/")
    return key if key else None


def _put_object(key: str, data: bytes, content_type: str) -> None:
    client = _get_s3_client()
    client.put_object(
        Bucket=_get_config()["bucket"],
        Key=key,
        Body=data,
        ContentType=content_type,
        CacheControl="public, max-age=31536000, immutable",
    )


def _delete_object(key: str) -> None:
    client = _get_s3_client()
    client.delete_object(Bucket=_get_config()["bucket"], Key=key)


async def put(key: str, data: bytes, content_type: str = "image/webp") -> str:
    """
    Upload bytes under ``key``.

    Args:
        key: Object key from build_object_key()
        data: Processed image bytes
        content_type: MIME type stored with the object

    Returns:
        Public URL of the uploaded object

    Raises:
        StorageTransientError: Throttling, 5xx, network failure or deadline
        StoragePermanentError: Misconfiguration or a rejected request
    """
    loop = asyncio.get_running_loop()
    try:
        await asyncio.wait_for(
            loop.run_in_executor(None, _put_object, key, data, content_type),
            timeout=settings.object_store_upload_timeout,
        )
    except Exception as e:
        classified = classify_error(e)
        logger.error(f"Failed to upload {key} to S3: {e}")
        raise classified from e

    url = f"{public_base_url()}/{key}"
    logger.info("Uploaded file to S3: %s", key)
    return url


async def delete(key: str) -> None:
    """
    Delete an object by key.

    Raises:
        StorageTransientError / StoragePermanentError on failure
    """
    loop = asyncio.get_running_loop()
    try:
        await asyncio.wait_for(
            loop.run_in_executor(None, _delete_object, key),
            timeout=settings.object_store_delete_timeout,
        )
    except Exception as e:
        raise classify_error(e) from e
    logger.info("Deleted file from S3: %s", key)


async def delete_quietly(url: Optional[str]) -> bool:
    """
    Delete the object behind ``url``. Best-effort: logs errors but doesn't raise.

    Returns:
        True if deleted successfully, False otherwise
    """
    if not url:
        return False
    key = key_from_url(url)
    if not key:
        logger.warning(f"Could not extract S3 key from URL: {url}")
        return False
    try:
        await delete(key)
        return True
    except Exception as e:
        logger.error(f"Failed to delete {key} from S3 (object orphaned): {e}")
        return False
