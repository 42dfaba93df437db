"""S3-compatible object store for export-foundry."""

from __future__ import annotations

import fnmatch
import io
import logging
from typing import Any, BinaryIO, Dict, List, Optional

from botocore.exceptions import BotoCoreError, ClientError
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

from foundry.aws import build_client, error_code, is_transient_aws_error
from foundry.exceptions import PollingTransportError, StorageError
from foundry.storage.base import ObjectStore
from foundry.storage.uri import StorageURI

logger = logging.getLogger(__name__)

_DELETE_BATCH = 1000
_READ_BUFFER = 1024 * 1024


class _StreamingBodyIO(io.RawIOBase):
    """Raw IO view over a botocore StreamingBody so it can be line-buffered."""

    def __init__(self, body: Any) -> None:
        self._body = body

    def readable(self) -> bool:
        return True

    def readinto(self, buffer: Any) -> int:
        data = self._body.read(len(buffer))
        size = len(data)
        buffer[:size] = data
        return size

    def close(self) -> None:
        if not self.closed:
            self._body.close()
        super().close()


class S3ObjectStore(ObjectStore):
    """S3-compatible object store using boto3.

    Supports AWS S3, MinIO, and any S3-compatible object storage. Directories
    are key prefixes; ``mkdirs`` is a no-op because export jobs require an
    empty target prefix.
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None, client: Any = None) -> None:
        """Initialize S3 object store.

        Args:
            config: The ``storage`` section of the export config; its ``s3``
                entry holds region, endpoint and credential env-var names
            client: Optional pre-built boto3 S3 client
        """
        s3_cfg = (config or {}).get("s3", {})
        try:
            self.client = client or build_client("s3", s3_cfg)
        except Exception as e:
            logger.error(f"Failed to create S3 client: {e}")
            raise

    @staticmethod
    def _split(path: str) -> StorageURI:
        uri = StorageURI.parse(path)
        if uri.backend != "s3" or not uri.bucket:
            raise ValueError(f"Not an S3 path: {path}")
        return uri

    def _wrap(self, exc: Exception, operation: str, path: str) -> Exception:
        if is_transient_aws_error(exc):
            return PollingTransportError(f"Transient S3 failure during {operation} of {path}", operation=operation, original_error=exc)
        return StorageError(
            f"S3 {operation} failed for {path}", backend_type="s3", operation=operation,
            remote_path=path, original_error=exc,
        )

    def list(self, directory: str, pattern: str = "*") -> List[str]:
        uri = self._split(directory)
        prefix = f"{uri.key.rstrip('/')}/" if uri.key else ""
        names: List[str] = []
        try:
            paginator = self.client.get_paginator("list_objects_v2")
            for page in paginator.paginate(Bucket=uri.bucket, Prefix=prefix, Delimiter="/"):
                for obj in page.get("Contents", []):
                    name = obj["Key"][len(prefix):]
                    if name and fnmatch.fnmatchcase(name, pattern):
                        names.append(name)
        except (BotoCoreError, ClientError) as e:
            logger.error(f"Failed to list s3://{uri.bucket}/{prefix}: {e}")
            raise self._wrap(e, "list", directory) from e
        logger.debug(f"Listed {len(names)} files under s3://{uri.bucket}/{prefix}")
        return sorted(names)

    def open(self, path: str, offset: int = 0) -> BinaryIO:
        uri = self._split(path)
        request: Dict[str, Any] = {"Bucket": uri.bucket, "Key": uri.key}
        if offset:
            request["Range"] = f"bytes={offset}-"
        try:
            response = self.client.get_object(**request)
        except ClientError as e:
            if offset and error_code(e) == "InvalidRange":
                return io.BytesIO(b"")
            raise self._wrap(e, "open", path) from e
        except BotoCoreError as e:
            raise self._wrap(e, "open", path) from e
        return io.BufferedReader(_StreamingBodyIO(response["Body"]), buffer_size=_READ_BUFFER)

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_exception(is_transient_aws_error),
        reraise=True
    )
    def _delete_batch(self, bucket: str, keys: List[str]) -> None:
        response = self.client.delete_objects(
            Bucket=bucket,
            Delete={"Objects": [{"Key": key} for key in keys], "Quiet": True},
        )
        errors = response.get("Errors", [])
        if errors:
            raise StorageError(
                f"Failed to delete {len(errors)} object(s)", backend_type="s3", operation="delete",
                remote_path=f"s3://{bucket}/{errors[0].get('Key')}",
            )

    def delete_recursive(self, directory: str) -> bool:
        uri = self._split(directory)
        prefix = f"{uri.key.rstrip('/')}/" if uri.key else ""
        deleted = 0
        try:
            paginator = self.client.get_paginator("list_objects_v2")
            batch: List[str] = []
            for page in paginator.paginate(Bucket=uri.bucket, Prefix=prefix):
                for obj in page.get("Contents", []):
                    batch.append(obj["Key"])
                    if len(batch) == _DELETE_BATCH:
                        self._delete_batch(uri.bucket, batch)
                        deleted += len(batch)
                        batch = []
            if batch:
                self._delete_batch(uri.bucket, batch)
                deleted += len(batch)
        except (BotoCoreError, ClientError) as e:
            logger.error(f"Failed to delete s3://{uri.bucket}/{prefix}: {e}")
            raise self._wrap(e, "delete", directory) from e
        if deleted:
            logger.info(f"Deleted {deleted} object(s) under s3://{uri.bucket}/{prefix}")
        return deleted > 0

    def mkdirs(self, directory: str) -> None:
        self._split(directory)

    def exists(self, path: str) -> bool:
        uri = self._split(path)
        key = uri.key.rstrip("/")
        try:
            response = self.client.list_objects_v2(Bucket=uri.bucket, Prefix=key, MaxKeys=2)
        except (BotoCoreError, ClientError) as e:
            raise self._wrap(e, "exists", path) from e
        for obj in response.get("Contents", []):
            if obj["Key"] == key or obj["Key"].startswith(f"{key}/"):
                return True
        return False

    def get_backend_type(self) -> str:
        return "s3"
