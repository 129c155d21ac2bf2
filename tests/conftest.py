"""Shared test fixtures and configuration."""

import os
import random
import pytest
from unittest.mock import AsyncMock
from typing import Dict, Any

# Set up test environment variables before importing modules
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ.setdefault("ADMIN_TOKEN_SECRET", "test-admin-secret")
os.environ.setdefault("CINETPAY_SITE_ID", "105889251")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

import httpx

from iftar_portal.config import PortalConfig
from iftar_portal.connectors import SimulatorConfig, SimulatorConnector
from iftar_portal.database import Base, create_async_engine, get_async_session_factory
from iftar_portal.notifications import EmailSender, NotificationService, SmsSender
from iftar_portal.registration import RegistrationService
from iftar_portal.storage import LocalObjectStorage

SITE_ID = "105889251"
ADMIN_EMAIL = "admin@iftar.test"


@pytest.fixture
def portal_config(tmp_path) -> PortalConfig:
    """Configuration pointing every side effect at test doubles."""
    return PortalConfig(
        cinetpay_api_key="test_api_key",
        cinetpay_site_id=SITE_ID,
        public_base_url="https://iftar.test",
        email_service_id="service_test",
        email_public_key="public_test",
        admin_email=ADMIN_EMAIL,
        sms_api_url="https://sms.test/send",
        upload_dir=str(tmp_path / "uploads"),
        upload_base_url="https://iftar.test/uploads",
        admin_token_secret="test-admin-secret",
        self_check_in_code="009",
    )


@pytest.fixture
def email_sender():
    """Email sender whose send() is an AsyncMock."""
    return AsyncMock(spec=EmailSender)


@pytest.fixture
def sms_sender():
    """SMS sender whose send() is an AsyncMock."""
    return AsyncMock(spec=SmsSender)


@pytest.fixture
def notifier(portal_config, email_sender, sms_sender) -> NotificationService:
    return NotificationService(portal_config, email_sender=email_sender, sms_sender=sms_sender)


@pytest.fixture
def storage(portal_config) -> LocalObjectStorage:
    return LocalObjectStorage(portal_config.upload_dir, portal_config.upload_base_url)


@pytest.fixture
def simulator() -> SimulatorConnector:
    """Deterministic gateway simulator."""
    return SimulatorConnector(SimulatorConfig(site_id=SITE_ID, seed=42))


@pytest.fixture
def rng() -> random.Random:
    return random.Random(1234)


# Database fixtures
@pytest.fixture
async def db_engine():
    """Create an in-memory SQLite database for testing."""
    engine = create_async_engine(
        database_url="sqlite+aiosqlite:///:memory:",
        echo=False
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def db_session(db_engine):
    """Create a database session for testing."""
    session_factory = get_async_session_factory(db_engine)
    async with session_factory() as session:
        yield session


@pytest.fixture
def participant_data() -> Dict[str, Any]:
    """Return valid registration data."""
    return {
        "first_name": "Awa",
        "last_name": "Sigué",
        "email": "awa.sigue@example.com",
        "contact_number": "+225 0701234567",
    }


@pytest.fixture
async def participant(db_session, portal_config, notifier, rng, participant_data):
    """A registered participant with an SMS code."""
    service = RegistrationService(db_session, config=portal_config, notifier=notifier, rng=rng)
    return await service.register(**participant_data, send_sms=False)


# HTTP fixtures
@pytest.fixture
async def app(db_engine, portal_config, notifier, storage, simulator):
    """Application wired to the test database and test doubles."""
    from iftar_portal.api import create_app
    from iftar_portal.database import get_db
    from iftar_portal.dependencies import get_config, get_gateway, get_notifier, get_storage

    session_factory = get_async_session_factory(db_engine)

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    application = create_app(init_database=False)
    application.dependency_overrides[get_db] = override_get_db
    application.dependency_overrides[get_config] = lambda: portal_config
    application.dependency_overrides[get_notifier] = lambda: notifier
    application.dependency_overrides[get_storage] = lambda: storage
    application.dependency_overrides[get_gateway] = lambda: simulator
    return application


@pytest.fixture
async def client(app):
    """HTTP client talking to the application in-process."""
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as http_client:
        yield http_client


@pytest.fixture
def admin_headers(portal_config) -> Dict[str, str]:
    """Return headers carrying a valid admin token."""
    from iftar_portal.auth import create_admin_token

    token = create_admin_token(ADMIN_EMAIL, portal_config)
    return {"Authorization": f"Bearer {token}"}
