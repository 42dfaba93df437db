"""Storage URI parsing for object store paths.

Export roots and shard directories are plain strings: either an S3 URI
(``s3://bucket/key``) or a local filesystem path.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Literal, Optional

StorageBackendType = Literal["local", "s3"]


@dataclass
class StorageURI:
    """Parsed storage URI with backend type and path components.

    Attributes:
        backend: Storage backend type ("local", "s3")
        bucket: Bucket name for S3 (None for local)
        key: Object key for S3 or file path for local
        original: Original unparsed URI string
    """

    backend: StorageBackendType
    bucket: Optional[str]
    key: str
    original: str

    @staticmethod
    def parse(uri: str) -> "StorageURI":
        """Parse a storage URI into components.

        Example:
            >>> StorageURI.parse("s3://my-bucket/exports/run1")
            StorageURI(backend='s3', bucket='my-bucket', key='exports/run1', ...)
        """
        uri = uri.strip()

        s3_match = re.match(r"^s3a?://([^/]+)/?(.*)$", uri)
        if s3_match:
            return StorageURI(
                backend="s3",
                bucket=s3_match.group(1),
                key=s3_match.group(2),
                original=uri,
            )

        if re.match(r"^[a-zA-Z][a-zA-Z0-9+.-]*://", uri) and not uri.startswith("file://"):
            raise ValueError(f"Unsupported storage URI scheme: {uri}")

        if uri.startswith("file://"):
            uri = uri[len("file://"):]
        return StorageURI(backend="local", bucket=None, key=uri, original=uri)


def join_path(root: str, *parts: str) -> str:
    """Join path segments with '/' regardless of backend."""
    path = root.rstrip("/")
    for part in parts:
        part = part.strip("/")
        if part:
            path = f"{path}/{part}"
    return path
