"""Object storage for payment proofs."""

import logging
import os
import uuid
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

from fastapi.concurrency import run_in_threadpool

from .config import PortalConfig
from .exceptions import StorageError

logger = logging.getLogger(__name__)

CONTENT_TYPE_EXTENSIONS = {
    "image/png": "png",
    "image/jpeg": "jpg",
    "application/pdf": "pdf",
}


class ObjectStorage(ABC):
    """Stores a blob under a key and returns a public URL for it."""

    @abstractmethod
    async def put(self, key: str, data: bytes, content_type: str) -> str:
        raise NotImplementedError

    @staticmethod
    def proof_key(participant_id: str, content_type: str) -> str:
        """Unique object key for a payment proof."""
        extension = CONTENT_TYPE_EXTENSIONS.get(content_type, "bin")
        return f"proofs/{participant_id}/{uuid.uuid4().hex}.{extension}"


class LocalObjectStorage(ObjectStorage):
    """Writes objects below a directory served at ``base_url``."""

    def __init__(self, root: Optional[str] = None, base_url: Optional[str] = None):
        config = None
        if root is None or base_url is None:
            config = PortalConfig.from_env()
        self.root = Path(root if root is not None else config.upload_dir)
        self.base_url = (base_url if base_url is not None else config.upload_base_url).rstrip("/")

    def path_for(self, key: str) -> Path:
        path = (self.root / key).resolve()
        if self.root.resolve() not in path.parents:
            raise StorageError(f"Invalid storage key: {key}")
        return path

    async def put(self, key: str, data: bytes, content_type: str) -> str:
        path = self.path_for(key)
        try:
            await run_in_threadpool(self._write, path, data)
        except OSError as e:
            logger.error(f"Failed to store {key}: {e}")
            raise StorageError(f"Could not store uploaded file: {e}") from e

        logger.info(f"Stored {len(data)} bytes ({content_type}) at {key}")
        return f"{self.base_url}/{key}"

    @staticmethod
    def _write(path: Path, data: bytes) -> None:
        os.makedirs(path.parent, exist_ok=True)
        with open(path, "wb") as f:
            f.write(data)
