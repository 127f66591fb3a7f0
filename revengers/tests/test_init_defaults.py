"""
Tests for the startup admin bootstrap.
"""

from unittest.mock import patch

import pytest

from conftest import make_gateway
from revengers.database.init_defaults import BootstrapError, ensure_default_admin
from revengers.services.auth_service import verify_password

NO_CREDENTIALS = {"DEFAULT_ADMIN_USERNAME": "", "DEFAULT_ADMIN_PASSWORD": ""}


class TestEnsureDefaultAdmin:
    @pytest.mark.asyncio
    async def test_existing_admin_is_left_alone(self):
        gateway = make_gateway()
        gateway.query_one.return_value = {"count": 1}

        assert await ensure_default_admin(gateway) is False
        gateway.execute.assert_not_awaited()

    @pytest.mark.asyncio
    @patch.dict("os.environ", {"DEFAULT_ADMIN_USERNAME": "captain", "DEFAULT_ADMIN_PASSWORD": "s3cret-pass"})
    async def test_creates_admin_from_environment(self):
        gateway = make_gateway()
        gateway.query_one.return_value = {"count": 0}

        assert await ensure_default_admin(gateway) is True

        sql, params = gateway.execute.call_args.args
        assert sql.startswith("INSERT INTO admins")
        assert params["username"] == "captain"
        assert params["password"] != "s3cret-pass"
        assert verify_password("s3cret-pass", params["password"])

    @pytest.mark.asyncio
    @patch.dict("os.environ", {**NO_CREDENTIALS, "ENV": "", "NODE_ENV": "production"})
    async def test_production_without_credentials_is_fatal(self):
        gateway = make_gateway()
        gateway.query_one.return_value = {"count": 0}

        with pytest.raises(BootstrapError):
            await ensure_default_admin(gateway)
        gateway.execute.assert_not_awaited()

    @pytest.mark.asyncio
    @patch.dict("os.environ", NO_CREDENTIALS)
    async def test_test_env_without_credentials_skips(self):
        gateway = make_gateway()
        gateway.query_one.return_value = {"count": 0}

        assert await ensure_default_admin(gateway) is False
        gateway.execute.assert_not_awaited()

    @pytest.mark.asyncio
    @patch.dict("os.environ", {**NO_CREDENTIALS, "ENV": "", "NODE_ENV": "development"})
    async def test_development_fallback_credentials(self):
        gateway = make_gateway()
        gateway.query_one.return_value = {"count": 0}

        assert await ensure_default_admin(gateway) is True
        assert gateway.execute.call_args.args[1]["username"] == "admin"
