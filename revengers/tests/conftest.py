"""
Shared pytest configuration for backend tests.

The API is exercised through TestClient with the lifespan skipped: a mocked
StorageGateway and an in-memory session store are attached to ``app.state``
directly, so no database or object store is needed.
"""

import os

# Must be set before revengers modules read settings
os.environ["ENV"] = "test"
os.environ.setdefault("SESSION_SECRET", "test-session-secret-0123456789abcdef")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("AWS_S3_BUCKET", "test-bucket")
os.environ.setdefault("AWS_S3_REGION", "us-west-2")

from io import BytesIO  # noqa: E402
from unittest.mock import AsyncMock, MagicMock, patch  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from PIL import Image  # noqa: E402

from revengers.api.main import app  # noqa: E402
from revengers.database.gateway import ExecResult, StorageGateway  # noqa: E402
from revengers.services import rate_limiting_service  # noqa: E402
from revengers.services.error_tracking_service import get_error_tracker  # noqa: E402
from revengers.services.session_service import MemorySessionStore, SessionManager  # noqa: E402

ADMIN = {"id": 1, "username": "admin"}


def make_image(width=120, height=90, fmt="JPEG", color=(200, 30, 30)):
    """Create a small image and return its encoded bytes."""
    img = Image.new("RGB", (width, height), color=color)
    buf = BytesIO()
    img.save(buf, format=fmt)
    return buf.getvalue()


def make_gateway():
    """A StorageGateway double whose calls are AsyncMocks."""
    gateway = MagicMock(spec=StorageGateway)
    gateway.query = AsyncMock(return_value=[])
    gateway.query_one = AsyncMock(return_value=None)
    gateway.execute = AsyncMock(return_value=ExecResult(inserted_id=None, affected=1))
    gateway.ping = AsyncMock(return_value=True)
    gateway.close = AsyncMock()
    return gateway


@pytest.fixture(autouse=True)
def clear_rate_limit_storage():
    """Clear login failure counters and tracked errors around each test."""
    rate_limiting_service.reset_login_rate_limit_storage()
    get_error_tracker().reset()
    yield
    rate_limiting_service.reset_login_rate_limit_storage()
    get_error_tracker().reset()


@pytest.fixture
def gateway():
    return make_gateway()


@pytest.fixture
def session_store():
    return MemorySessionStore()


@pytest.fixture
def client(gateway, session_store):
    """TestClient with a mocked gateway and an in-memory session store."""
    app.state.gateway = gateway
    app.state.session_manager = SessionManager(session_store, secret=os.environ["SESSION_SECRET"])
    with patch("revengers.services.auth_service.record_login", new_callable=AsyncMock):
        yield TestClient(app)
    app.state.gateway = None
    app.state.session_manager = None


@pytest.fixture
def admin_client(client):
    """A client holding a logged-in admin session cookie."""
    with patch(
        "revengers.services.auth_service.authenticate",
        new_callable=AsyncMock,
        return_value=dict(ADMIN),
    ):
        response = client.post(
            "/api/admin/login", json={"username": "admin", "password": "adminpassword"}
        )
    assert response.status_code == 200
    return client
