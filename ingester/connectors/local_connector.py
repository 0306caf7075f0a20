"""
Local Blob Store Connector
==========================

Filesystem-backed store with the same interface as the MinIO connector.
Accepts plain paths and file:// URIs.
"""

import io
import logging
import os
import shutil
from pathlib import Path
from typing import BinaryIO, List
from urllib.parse import urlparse

logger = logging.getLogger(__name__)


def to_local_path(path: str) -> Path:
    """Strip an optional file:// scheme."""
    if path.startswith("file://"):
        return Path(urlparse(path).path)
    return Path(path)


class LocalConnector:
    """
    Local filesystem connector for data lake operations.
    """

    def __init__(self, config: dict = None):
        self.config = config or {}

    def open(self, path: str) -> BinaryIO:
        """Read a file fully into memory."""
        with open(to_local_path(path), 'rb') as f:
            return io.BytesIO(f.read())

    def put(self, path: str, data: bytes, content_type: str = "application/octet-stream") -> str:
        """Write bytes to a file, creating parent directories."""
        target = to_local_path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        with open(target, 'wb') as f:
            f.write(data)
        logger.debug(f"Written {len(data)} bytes to {target}")
        return str(target)

    def list(self, prefix: str) -> List[str]:
        """List files below a directory, sorted."""
        root = to_local_path(prefix)
        if not root.is_dir():
            return []
        return sorted(
            os.path.join(dirpath, name)
            for dirpath, _, filenames in os.walk(root)
            for name in filenames
        )

    def delete_prefix(self, prefix: str) -> int:
        """Remove a directory tree; returns the number of files removed."""
        root = to_local_path(prefix)
        files = self.list(prefix)
        if root.is_dir():
            shutil.rmtree(root)
            logger.info(f"Deleted {len(files)} file(s) under {root}")
        return len(files)

    def exists(self, path: str) -> bool:
        return to_local_path(path).exists()
