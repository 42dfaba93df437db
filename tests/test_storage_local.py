"""Tests for the local object store, URI parsing and the backend registry."""

import pytest

from foundry.exceptions import StorageError
from foundry.storage import LocalObjectStore, StorageURI, get_object_store, join_path, list_backends
from foundry.storage.s3 import S3ObjectStore


class TestStorageURI:
    def test_s3(self):
        uri = StorageURI.parse("s3://bucket/a/b")
        assert (uri.backend, uri.bucket, uri.key) == ("s3", "bucket", "a/b")

    def test_s3a_and_bucket_only(self):
        uri = StorageURI.parse("s3a://bucket")
        assert (uri.backend, uri.bucket, uri.key) == ("s3", "bucket", "")

    def test_local(self):
        assert StorageURI.parse("/tmp/export").backend == "local"
        assert StorageURI.parse("file:///tmp/export").key == "/tmp/export"

    def test_unsupported_scheme(self):
        with pytest.raises(ValueError, match="Unsupported"):
            StorageURI.parse("gs://bucket/x")

    def test_join_path(self):
        assert join_path("s3://b/root/", "shard-00001", "part-0") == "s3://b/root/shard-00001/part-0"


class TestLocalObjectStore:
    def test_list_sorted_and_filtered(self, tmp_path):
        for name in ["b.json", "a.json", "c.txt"]:
            (tmp_path / name).write_text("x")
        (tmp_path / "sub").mkdir()
        store = LocalObjectStore()
        assert store.list(str(tmp_path)) == ["a.json", "b.json", "c.txt"]
        assert store.list(str(tmp_path), "*.json") == ["a.json", "b.json"]

    def test_list_missing_directory_is_empty(self, tmp_path):
        assert LocalObjectStore().list(str(tmp_path / "missing")) == []

    def test_open_at_offset(self, tmp_path):
        (tmp_path / "f").write_bytes(b"0123456789")
        with LocalObjectStore().open(str(tmp_path / "f"), offset=4) as handle:
            assert handle.read() == b"456789"

    def test_open_missing(self, tmp_path):
        with pytest.raises(StorageError):
            LocalObjectStore().open(str(tmp_path / "missing"))

    def test_mkdirs_exists_delete(self, tmp_path):
        store = LocalObjectStore()
        target = str(tmp_path / "root" / "shard-00000")
        store.mkdirs(target)
        assert store.exists(target)
        (tmp_path / "root" / "shard-00000" / "f").write_text("x")
        assert store.delete_recursive(str(tmp_path / "root")) is True
        assert not store.exists(str(tmp_path / "root"))
        assert store.delete_recursive(str(tmp_path / "root")) is False

    def test_relative_paths_use_root(self, tmp_path):
        store = LocalObjectStore({"local": {"root": str(tmp_path)}})
        store.mkdirs("exports/run")
        assert (tmp_path / "exports" / "run").is_dir()


class TestBackendRegistry:
    def test_builtin_backends(self):
        assert {"local", "s3"} <= set(list_backends())

    def test_selects_by_scheme(self, tmp_path, aws_credentials):
        assert isinstance(get_object_store(str(tmp_path)), LocalObjectStore)
        assert isinstance(get_object_store("s3://bucket/x", {"s3": {"region": "us-east-1"}}), S3ObjectStore)
