"""Unit tests for the S3 object store with moto mocking."""

from unittest.mock import MagicMock

import boto3
import pytest
from botocore.exceptions import ClientError
from moto import mock_aws

from foundry.exceptions import PollingTransportError, StorageError
from foundry.storage.s3 import S3ObjectStore

BUCKET = "test-bucket"


@pytest.fixture
def s3_client(aws_credentials):
    """Create a mocked S3 client with the test bucket."""
    with mock_aws():
        client = boto3.client("s3", region_name="us-east-1")
        client.create_bucket(Bucket=BUCKET)
        yield client


@pytest.fixture
def store(s3_client):
    return S3ObjectStore({"s3": {"region": "us-east-1"}})


def _client_error(code, status=400):
    return ClientError({"Error": {"Code": code, "Message": code}, "ResponseMetadata": {"HTTPStatusCode": status}}, "Op")


class TestS3ObjectStoreList:
    def test_lists_direct_children_sorted(self, s3_client, store):
        for key in ["run/shard-00000/b.json", "run/shard-00000/a.json", "run/shard-00000/nested/c.json", "run/other.json"]:
            s3_client.put_object(Bucket=BUCKET, Key=key, Body=b"{}\n")
        assert store.list(f"s3://{BUCKET}/run/shard-00000") == ["a.json", "b.json"]

    def test_pattern(self, s3_client, store):
        for key in ["run/part-0.json", "run/part-1.json", "run/_SUCCESS"]:
            s3_client.put_object(Bucket=BUCKET, Key=key, Body=b"")
        assert store.list(f"s3://{BUCKET}/run/", "part-*") == ["part-0.json", "part-1.json"]

    def test_empty_prefix(self, store):
        assert store.list(f"s3://{BUCKET}/nothing-here") == []

    def test_not_s3_path(self, store):
        with pytest.raises(ValueError):
            store.list("/tmp/local")


class TestS3ObjectStoreOpen:
    def test_read_lines(self, s3_client, store):
        s3_client.put_object(Bucket=BUCKET, Key="run/f.json", Body=b'{"a": 1}\n{"a": 2}\n')
        with store.open(f"s3://{BUCKET}/run/f.json") as handle:
            assert list(handle) == [b'{"a": 1}\n', b'{"a": 2}\n']

    def test_ranged_read(self, s3_client, store):
        s3_client.put_object(Bucket=BUCKET, Key="run/f.txt", Body=b"0123456789")
        with store.open(f"s3://{BUCKET}/run/f.txt", offset=7) as handle:
            assert handle.read() == b"789"

    def test_missing_key(self, store):
        with pytest.raises(StorageError):
            store.open(f"s3://{BUCKET}/run/missing")

    def test_invalid_range_is_empty(self):
        client = MagicMock()
        client.get_object.side_effect = _client_error("InvalidRange", 416)
        assert S3ObjectStore(client=client).open("s3://b/k", offset=100).read() == b""

    def test_throttling_is_transient(self):
        client = MagicMock()
        client.get_object.side_effect = _client_error("SlowDown", 503)
        with pytest.raises(PollingTransportError):
            S3ObjectStore(client=client).open("s3://b/k")


class TestS3ObjectStoreMutations:
    def test_delete_recursive(self, s3_client, store):
        for i in range(5):
            s3_client.put_object(Bucket=BUCKET, Key=f"run/shard-0000{i}/part-0", Body=b"x")
        s3_client.put_object(Bucket=BUCKET, Key="keep/part-0", Body=b"x")
        assert store.delete_recursive(f"s3://{BUCKET}/run") is True
        remaining = [obj["Key"] for obj in s3_client.list_objects_v2(Bucket=BUCKET).get("Contents", [])]
        assert remaining == ["keep/part-0"]
        assert store.delete_recursive(f"s3://{BUCKET}/run") is False

    def test_exists(self, s3_client, store):
        s3_client.put_object(Bucket=BUCKET, Key="run/shard-00000/part-0", Body=b"x")
        assert store.exists(f"s3://{BUCKET}/run")
        assert store.exists(f"s3://{BUCKET}/run/shard-00000/part-0")
        assert not store.exists(f"s3://{BUCKET}/ru")

    def test_mkdirs_creates_nothing(self, s3_client, store):
        store.mkdirs(f"s3://{BUCKET}/run/shard-00000")
        assert "Contents" not in s3_client.list_objects_v2(Bucket=BUCKET)

    def test_backend_type(self, store):
        assert store.get_backend_type() == "s3"
