"""Blob storage for question images."""

import logging
import os
from typing import Protocol

from .core import config
from .errors import StoreError, ValidationError

logger = logging.getLogger(__name__)


class BlobStore(Protocol):
    def upload(self, data: bytes, path: str) -> str:
        """Store ``data`` under ``path`` and return its public URL."""


class LocalBlobStore:
    """Writes uploads to a local directory served as static files."""

    def __init__(self, root: str = None, public_prefix: str = None):
        self.root = root or config.UPLOAD_DIR
        self.public_prefix = (public_prefix or config.PUBLIC_UPLOAD_PREFIX).rstrip("/")

    def upload(self, data: bytes, path: str) -> str:
        target = os.path.normpath(os.path.join(self.root, path))
        if not target.startswith(os.path.normpath(self.root) + os.sep):
            raise ValidationError(f"Invalid upload path: {path}")

        try:
            os.makedirs(os.path.dirname(target), exist_ok=True)
            # upsert: re-uploading an image replaces it
            with open(target, "wb") as buffer:
                buffer.write(data)
        except OSError as e:
            logger.error("Failed to store upload %s: %s", path, e)
            raise StoreError(f"Failed to store upload: {e}") from e

        return f"{self.public_prefix}/{path}"
