"""Tests for admin accounts and tokens."""

import pytest

from iftar_portal.auth import (
    AdminAuthService,
    create_admin_token,
    decode_admin_token,
    hash_password,
    verify_password,
)
from iftar_portal.exceptions import AuthenticationError, InvalidTransitionError, ValidationError


class TestPasswords:
    """Tests for password hashing."""

    def test_hash_and_verify(self):
        hashed = hash_password("ramadan2026")

        assert hashed != "ramadan2026"
        assert verify_password("ramadan2026", hashed)
        assert not verify_password("wrong-password", hashed)


class TestTokens:
    """Tests for admin token encoding."""

    def test_roundtrip(self, portal_config):
        token = create_admin_token("admin@iftar.test", portal_config)

        payload = decode_admin_token(token, portal_config)

        assert payload["sub"] == "admin@iftar.test"
        assert payload["type"] == "admin"

    def test_expired_token(self, portal_config):
        token = create_admin_token("admin@iftar.test", portal_config, expires_minutes=-1)

        with pytest.raises(AuthenticationError):
            decode_admin_token(token, portal_config)

    def test_wrong_secret(self, portal_config):
        from iftar_portal.config import PortalConfig

        token = create_admin_token("admin@iftar.test", PortalConfig(admin_token_secret="other-secret"))

        with pytest.raises(AuthenticationError):
            decode_admin_token(token, portal_config)

    def test_garbage(self, portal_config):
        with pytest.raises(AuthenticationError):
            decode_admin_token("not-a-token", portal_config)


class TestAdminAuthService:
    """Tests for AdminAuthService."""

    @pytest.fixture
    def service(self, db_session, portal_config):
        return AdminAuthService(db_session, portal_config)

    async def test_create_and_authenticate(self, service, portal_config):
        admin = await service.create_admin("Admin@Iftar.test", "ramadan2026", "Admin")

        assert admin.email == "admin@iftar.test"
        token = await service.authenticate("admin@iftar.test", "ramadan2026")
        assert decode_admin_token(token, portal_config)["sub"] == "admin@iftar.test"

    async def test_duplicate_admin(self, service):
        await service.create_admin("admin@iftar.test", "ramadan2026")

        with pytest.raises(InvalidTransitionError):
            await service.create_admin("admin@iftar.test", "another-pass")

    async def test_short_password(self, service):
        with pytest.raises(ValidationError):
            await service.create_admin("admin@iftar.test", "short")

    async def test_wrong_password(self, service):
        await service.create_admin("admin@iftar.test", "ramadan2026")

        with pytest.raises(AuthenticationError):
            await service.authenticate("admin@iftar.test", "ramadan2025")

    async def test_unknown_admin(self, service):
        with pytest.raises(AuthenticationError):
            await service.authenticate("nobody@iftar.test", "ramadan2026")
