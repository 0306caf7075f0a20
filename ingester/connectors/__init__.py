"""
Ingestion Connectors
====================

Blob store connectors for schema documents and data lake output.
"""

from typing import Dict, Optional, Union
from urllib.parse import urlparse

from .local_connector import LocalConnector
from .minio_connector import S3_SCHEMES, MinIOConnector

BlobStore = Union[LocalConnector, MinIOConnector]


def open_store(location: str, storage_config: Optional[Dict] = None) -> BlobStore:
    """
    Pick the connector for a location.

    s3:// and s3a:// locations go to MinIO, everything else to the local filesystem.
    """
    if urlparse(location).scheme in S3_SCHEMES:
        return MinIOConnector(storage_config or {})
    return LocalConnector(storage_config)


__all__ = ["BlobStore", "LocalConnector", "MinIOConnector", "open_store"]
