"""Object store backends and path utilities."""

from foundry.storage.base import (
    BACKEND_REGISTRY,
    ObjectStore,
    get_object_store,
    list_backends,
    register_backend,
)
from foundry.storage.local import LocalObjectStore
from foundry.storage.uri import StorageURI, join_path

__all__ = [
    "BACKEND_REGISTRY",
    "ObjectStore",
    "get_object_store",
    "list_backends",
    "register_backend",
    "LocalObjectStore",
    "StorageURI",
    "join_path",
]
