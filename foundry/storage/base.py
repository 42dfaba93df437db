"""Object store abstraction and registry.

This module provides:
- ObjectStore: Abstract base class for object store backends
- Backend registry: Register and retrieve backend factories
- get_object_store(): Factory function choosing a backend from a path
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, BinaryIO, Callable, Dict, List, Optional

from foundry.storage.uri import StorageURI

logger = logging.getLogger(__name__)


class ObjectStore(ABC):
    """Hierarchical path view over an object store.

    Paths are full locations (``s3://bucket/key`` or local paths). Listing
    returns bare file names inside one directory, sorted lexicographically,
    which is the record order contract of an export directory.
    """

    @abstractmethod
    def list(self, directory: str, pattern: str = "*") -> List[str]:
        """Return sorted names of files directly under ``directory`` matching ``pattern``.

        A missing directory lists as empty.
        """

    @abstractmethod
    def open(self, path: str, offset: int = 0) -> BinaryIO:
        """Open ``path`` for binary reading starting at byte ``offset``.

        An offset at or past the end yields an empty stream.
        """

    @abstractmethod
    def delete_recursive(self, directory: str) -> bool:
        """Delete ``directory`` and everything below it. Returns False if nothing existed."""

    @abstractmethod
    def mkdirs(self, directory: str) -> None:
        """Create ``directory`` and its parents where the backend has directories."""

    @abstractmethod
    def exists(self, path: str) -> bool:
        """Return True if a file or a non-empty directory exists at ``path``."""

    @abstractmethod
    def get_backend_type(self) -> str:
        """Get the backend type identifier."""


# =============================================================================
# Backend Registry
# =============================================================================

BACKEND_REGISTRY: Dict[str, Callable[[Dict[str, Any]], ObjectStore]] = {}


def register_backend(
    name: str,
) -> Callable[[Callable[[Dict[str, Any]], ObjectStore]], Callable[[Dict[str, Any]], ObjectStore]]:
    """Decorator to register an object store factory.

    Usage:
        @register_backend("my_backend")
        def my_backend_factory(config: Dict[str, Any]) -> ObjectStore:
            return MyStore(config)
    """
    def decorator(
        factory: Callable[[Dict[str, Any]], ObjectStore],
    ) -> Callable[[Dict[str, Any]], ObjectStore]:
        BACKEND_REGISTRY[name.lower()] = factory
        return factory

    return decorator


def list_backends() -> List[str]:
    """Return all registered object store identifiers."""
    return sorted(BACKEND_REGISTRY.keys())


def get_object_store(path: str, storage_config: Optional[Dict[str, Any]] = None) -> ObjectStore:
    """Build the object store that serves ``path``.

    Args:
        path: Export root or any path under it; the scheme selects the backend
        storage_config: The ``storage`` section of the export config

    Returns:
        Configured ObjectStore instance
    """
    backend_type = StorageURI.parse(path).backend
    factory = BACKEND_REGISTRY.get(backend_type)
    if not factory:
        raise ValueError(
            f"Object store backend '{backend_type}' is not available. "
            f"Available backends: {', '.join(list_backends())}."
        )
    logger.debug(f"Using {backend_type} object store for {path}")
    return factory(storage_config or {})


@register_backend("s3")
def _s3_factory(config: Dict[str, Any]) -> ObjectStore:
    from foundry.storage.s3 import S3ObjectStore
    return S3ObjectStore(config)


@register_backend("local")
def _local_factory(config: Dict[str, Any]) -> ObjectStore:
    from foundry.storage.local import LocalObjectStore
    return LocalObjectStore(config)
