"""Local filesystem object store."""

from __future__ import annotations

import fnmatch
import io
import logging
import shutil
from pathlib import Path
from typing import Any, BinaryIO, Dict, List, Optional

from foundry.exceptions import StorageError
from foundry.storage.base import ObjectStore

logger = logging.getLogger(__name__)


class LocalObjectStore(ObjectStore):
    """Filesystem backend used for tests, local runs and mounted buckets."""

    def __init__(self, config: Optional[Dict[str, Any]] = None) -> None:
        local_cfg = (config or {}).get("local", {})
        root = local_cfg.get("root")
        self.base_dir = Path(root).expanduser().resolve() if root else None

    def _resolve_path(self, path: str) -> Path:
        candidate = Path(path)
        if not candidate.is_absolute() and self.base_dir is not None:
            candidate = self.base_dir / candidate
        return candidate

    def list(self, directory: str, pattern: str = "*") -> List[str]:
        resolved = self._resolve_path(directory)
        if not resolved.is_dir():
            return []
        try:
            names = [
                entry.name
                for entry in resolved.iterdir()
                if entry.is_file() and fnmatch.fnmatchcase(entry.name, pattern)
            ]
        except OSError as e:
            raise StorageError(
                f"Failed to list {directory}", backend_type="local", operation="list",
                remote_path=directory, original_error=e,
            ) from e
        return sorted(names)

    def open(self, path: str, offset: int = 0) -> BinaryIO:
        resolved = self._resolve_path(path)
        try:
            handle = open(resolved, "rb")
        except FileNotFoundError as e:
            raise StorageError(
                f"File not found: {path}", backend_type="local", operation="open",
                remote_path=path, original_error=e,
            ) from e
        if offset:
            handle.seek(offset, io.SEEK_SET)
        return handle

    def delete_recursive(self, directory: str) -> bool:
        target = self._resolve_path(directory)
        if not target.exists():
            return False
        if target.is_file():
            target.unlink()
        else:
            shutil.rmtree(target)
        logger.info(f"Deleted {target}")
        return True

    def mkdirs(self, directory: str) -> None:
        self._resolve_path(directory).mkdir(parents=True, exist_ok=True)

    def exists(self, path: str) -> bool:
        return self._resolve_path(path).exists()

    def get_backend_type(self) -> str:
        return "local"
