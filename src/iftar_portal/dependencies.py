"""FastAPI dependencies for shared collaborators.

Each provider returns a process-wide instance; tests replace them through
``app.dependency_overrides``.
"""

from functools import lru_cache

from .config import PortalConfig
from .connectors import GatewayConnector, get_connector
from .notifications import NotificationService
from .storage import LocalObjectStorage, ObjectStorage


@lru_cache()
def get_config() -> PortalConfig:
    return PortalConfig.from_env()


@lru_cache()
def get_notifier() -> NotificationService:
    return NotificationService(get_config())


@lru_cache()
def get_gateway() -> GatewayConnector:
    return get_connector("cinetpay", get_config())


@lru_cache()
def get_storage() -> ObjectStorage:
    config = get_config()
    return LocalObjectStorage(config.upload_dir, config.upload_base_url)
