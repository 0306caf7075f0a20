"""
MinIO Blob Store Connector
==========================

Connector for reading and writing data lake objects in MinIO
(S3-compatible) storage. Paths are addressed as s3://bucket/key.
"""

import io
import logging
from typing import BinaryIO, Dict, List, Tuple
from urllib.parse import urlparse

from minio import Minio
from minio.deleteobjects import DeleteObject
from minio.error import S3Error

logger = logging.getLogger(__name__)

S3_SCHEMES = ("s3", "s3a")


def split_s3_path(path: str) -> Tuple[str, str]:
    """
    Split an s3://bucket/key path.

    Returns:
        (bucket, key) tuple; key has no leading slash
    """
    parsed = urlparse(path)
    if parsed.scheme not in S3_SCHEMES or not parsed.netloc:
        raise ValueError(f"Not an S3 path: {path}")
    return parsed.netloc, parsed.path.lstrip("/")


class MinIOConnector:
    """
    MinIO object storage connector for data lake operations.
    """

    def __init__(self, config: Dict):
        """
        Initialize MinIO connector.

        Args:
            config: Connection configuration dict with endpoint, access_key, secret_key, secure
        """
        self.config = config
        self.client = None

    def connect(self):
        """Create the MinIO client."""
        if not self.config.get("endpoint"):
            raise ValueError("MinIO storage needs an 'endpoint' in the storage configuration")
        self.client = Minio(
            endpoint=self.config["endpoint"],
            access_key=self.config.get("access_key"),
            secret_key=self.config.get("secret_key"),
            secure=self.config.get("secure", False)
        )
        logger.info(f"Connected to MinIO: {self.config['endpoint']}")

    def _client(self) -> Minio:
        if self.client is None:
            self.connect()
        return self.client

    def open(self, path: str) -> BinaryIO:
        """
        Read an object fully into memory.

        Args:
            path: s3://bucket/key

        Returns:
            Binary stream with the object contents
        """
        bucket, key = split_s3_path(path)
        response = self._client().get_object(bucket, key)
        try:
            return io.BytesIO(response.read())
        finally:
            response.close()
            response.release_conn()

    def put(self, path: str, data: bytes, content_type: str = "application/octet-stream") -> str:
        """
        Upload bytes to an object, creating the bucket if needed.

        Returns:
            The object path
        """
        bucket, key = split_s3_path(path)
        client = self._client()
        if not client.bucket_exists(bucket):
            client.make_bucket(bucket)
            logger.info(f"Created bucket: {bucket}")

        client.put_object(
            bucket_name=bucket,
            object_name=key,
            data=io.BytesIO(data),
            length=len(data),
            content_type=content_type
        )
        logger.debug(f"Written {len(data)} bytes to s3://{bucket}/{key}")
        return f"s3://{bucket}/{key}"

    def list(self, prefix: str) -> List[str]:
        """
        List objects below a prefix.

        Returns:
            Sorted list of s3:// object paths
        """
        bucket, key = split_s3_path(prefix)
        client = self._client()
        if not client.bucket_exists(bucket):
            return []
        if key and not key.endswith("/"):
            key += "/"
        objects = client.list_objects(bucket, prefix=key, recursive=True)
        return sorted(f"s3://{bucket}/{obj.object_name}" for obj in objects)

    def delete_prefix(self, prefix: str) -> int:
        """
        Delete every object below a prefix.

        Returns:
            Number of objects deleted
        """
        bucket, _ = split_s3_path(prefix)
        keys = [split_s3_path(path)[1] for path in self.list(prefix)]
        if not keys:
            return 0

        errors = list(self._client().remove_objects(bucket, [DeleteObject(key) for key in keys]))
        if errors:
            raise RuntimeError(f"Failed to delete {len(errors)} object(s) under {prefix}: {errors[0]}")
        logger.info(f"Deleted {len(keys)} object(s) under {prefix}")
        return len(keys)

    def exists(self, path: str) -> bool:
        """
        Check if object exists.

        Args:
            path: s3://bucket/key

        Returns:
            True if exists, False otherwise
        """
        bucket, key = split_s3_path(path)
        try:
            self._client().stat_object(bucket, key)
            return True
        except S3Error:
            return False
