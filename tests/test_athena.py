"""Tests for the Athena/Glue remote service, with moto where it covers the API."""

from unittest.mock import MagicMock

import boto3
import pytest
from botocore.exceptions import ClientError
from moto import mock_aws

from foundry.athena import AthenaRemoteService, qualified_name
from foundry.exceptions import PlanningError, PollingTransportError, SubmissionError
from foundry.jobs import JobState, ShardDescriptor, TableReference
from foundry.remote import ExportJobSpec, QueryJobSpec, get_remote_service, list_remote_services

TABLE = TableReference("analytics", "events")
ATHENA_CONFIG = {"region": "us-east-1", "output_location": "s3://results-bucket/athena/"}


def _client_error(code, status=400):
    return ClientError({"Error": {"Code": code, "Message": code}, "ResponseMetadata": {"HTTPStatusCode": status}}, "Op")


def _offline_service(config=None, **clients):
    return AthenaRemoteService(
        config or ATHENA_CONFIG,
        athena_client=clients.get("athena", MagicMock()),
        glue_client=clients.get("glue", MagicMock()),
        s3_client=clients.get("s3", MagicMock()),
    )


@pytest.fixture
def aws(aws_credentials):
    with mock_aws():
        glue = boto3.client("glue", region_name="us-east-1")
        s3 = boto3.client("s3", region_name="us-east-1")
        glue.create_database(DatabaseInput={"Name": "analytics"})
        s3.create_bucket(Bucket="results-bucket")
        s3.create_bucket(Bucket="warehouse")
        yield {"glue": glue, "s3": s3}


@pytest.fixture
def service(aws):
    return AthenaRemoteService(ATHENA_CONFIG)


def _glue_with_columns(*names, partition_keys=()):
    glue = MagicMock()
    glue.get_table.return_value = {
        "Table": {
            "StorageDescriptor": {"Columns": [{"Name": n, "Type": "string"} for n in names]},
            "PartitionKeys": [{"Name": n, "Type": "string"} for n in partition_keys],
        }
    }
    return glue


def _create_table(glue, parameters=None, location="s3://warehouse/events/"):
    glue.create_table(
        DatabaseName="analytics",
        TableInput={
            "Name": "events",
            "Parameters": parameters or {},
            "StorageDescriptor": {"Location": location},
        },
    )


class TestSqlGeneration:
    def test_query_uses_ctas(self):
        sql = _offline_service().build_query_sql(QueryJobSpec("SELECT 1 AS x", TableReference("tmp", "t1")))
        assert sql == 'CREATE TABLE "tmp"."t1" AS SELECT 1 AS x'

    def test_unsharded_unload(self):
        spec = ExportJobSpec(TABLE, ShardDescriptor("s3://bucket/run", "*", 0), "json")
        sql = _offline_service().build_export_sql(spec)
        assert sql == (
            "UNLOAD (SELECT * FROM \"analytics\".\"events\") TO 's3://bucket/run/' "
            "WITH (format = 'JSON', compression = 'NONE')"
        )

    def test_sharded_unload_filters_by_hash(self):
        spec = ExportJobSpec(TABLE, ShardDescriptor("s3://bucket/run/shard-00001", "*", 1), "parquet", 1, 3)
        sql = _offline_service(glue=_glue_with_columns("id")).build_export_sql(spec)
        assert "% 3 = 1" in sql
        assert "xxhash64" in sql
        assert "TO 's3://bucket/run/shard-00001/'" in sql
        assert "format = 'PARQUET'" in sql
        assert "compression" not in sql

    def test_default_key_hashes_whole_row(self):
        glue = _glue_with_columns("id", "payload", partition_keys=("dt",))
        service = _offline_service(glue=glue)
        for ordinal in range(2):
            spec = ExportJobSpec(TABLE, ShardDescriptor(f"s3://bucket/run/shard-{ordinal}", "*", ordinal), "json", ordinal, 2)
            sql = service.build_export_sql(spec)
            assert 'CAST(json_format(CAST(ROW("id", "payload", "dt") AS JSON)) AS varchar)' in sql
            assert "$path" not in sql
        # columns are looked up once per table
        assert glue.get_table.call_count == 1

    def test_configured_key(self):
        glue = MagicMock()
        service = _offline_service({**ATHENA_CONFIG, "shard_key": '"user_id"'}, glue=glue)
        spec = ExportJobSpec(TABLE, ShardDescriptor("s3://bucket/run/shard-00000", "*", 0), "json", 0, 4)
        sql = service.build_export_sql(spec)
        assert 'CAST("user_id" AS varchar)' in sql
        glue.get_table.assert_not_called()

    def test_default_key_needs_columns(self):
        spec = ExportJobSpec(TABLE, ShardDescriptor("s3://bucket/run/shard-00000", "*", 0), "json", 0, 2)
        with pytest.raises(SubmissionError):
            _offline_service(glue=_glue_with_columns()).build_export_sql(spec)

        glue = MagicMock()
        glue.get_table.side_effect = _client_error("EntityNotFoundException")
        with pytest.raises(SubmissionError):
            _offline_service(glue=glue).build_export_sql(spec)

    def test_unsharded_unload_skips_column_lookup(self):
        glue = MagicMock()
        spec = ExportJobSpec(TABLE, ShardDescriptor("s3://bucket/run", "*", 0), "json")
        _offline_service(glue=glue).build_export_sql(spec)
        glue.get_table.assert_not_called()

    def test_unknown_format(self):
        spec = ExportJobSpec(TABLE, ShardDescriptor("s3://bucket/run", "*", 0), "avro")
        with pytest.raises(SubmissionError):
            _offline_service().build_export_sql(spec)

    def test_identifiers_quoted(self):
        assert qualified_name(TableReference("d", 'we"ird')) == '"d"."we""ird"'


class TestJobLifecycle:
    def test_submit_and_status(self, service):
        job_id = service.submit_job(ExportJobSpec(TABLE, ShardDescriptor("s3://results-bucket/run", "*", 0), "json"))
        assert job_id
        assert service.get_job_status(job_id).state is JobState.SUCCEEDED

    def test_submit_rejected(self):
        athena = MagicMock()
        athena.start_query_execution.side_effect = _client_error("InvalidRequestException")
        with pytest.raises(SubmissionError):
            _offline_service(athena=athena).submit_job(QueryJobSpec("SELECT 1", TABLE))

    @pytest.mark.parametrize("raw,expected", [
        ("QUEUED", JobState.RUNNING),
        ("RUNNING", JobState.RUNNING),
        ("SUCCEEDED", JobState.SUCCEEDED),
    ])
    def test_state_mapping(self, raw, expected):
        athena = MagicMock()
        athena.get_query_execution.return_value = {"QueryExecution": {"Status": {"State": raw}}}
        assert _offline_service(athena=athena).get_job_status("q").state is expected

    @pytest.mark.parametrize("raw", ["FAILED", "CANCELLED"])
    def test_failure_carries_reason(self, raw):
        athena = MagicMock()
        athena.get_query_execution.return_value = {
            "QueryExecution": {"Status": {"State": raw, "StateChangeReason": "HIVE_BAD_DATA"}}
        }
        status = _offline_service(athena=athena).get_job_status("q")
        assert status.failed
        assert status.error_message == "HIVE_BAD_DATA"

    def test_throttled_status_is_transient(self):
        athena = MagicMock()
        athena.get_query_execution.side_effect = _client_error("ThrottlingException")
        with pytest.raises(PollingTransportError):
            _offline_service(athena=athena).get_job_status("q")


class TestTableStats:
    def test_from_catalog_parameters(self, aws, service):
        _create_table(aws["glue"], {"numRows": "99999", "totalSize": "8589934592"})
        stats = service.get_table_stats(TABLE)
        assert stats.row_count == 99999
        assert stats.byte_size == 8589934592

    def test_size_from_location(self, aws, service):
        _create_table(aws["glue"], {"numRows": "10"})
        aws["s3"].put_object(Bucket="warehouse", Key="events/part-0", Body=b"x" * 100)
        aws["s3"].put_object(Bucket="warehouse", Key="events/part-1", Body=b"x" * 23)
        assert service.get_table_stats(TABLE).byte_size == 123

    def test_missing_table(self, service):
        with pytest.raises(PlanningError):
            service.get_table_stats(TABLE)

    def test_invalid_parameter(self, aws, service):
        _create_table(aws["glue"], {"numRows": "lots", "totalSize": "1"})
        with pytest.raises(PlanningError):
            service.get_table_stats(TABLE)

    def test_row_count_query_fallback(self):
        glue = MagicMock()
        glue.get_table.return_value = {"Table": {"Parameters": {"totalSize": "2048"}}}
        athena = MagicMock()
        athena.start_query_execution.return_value = {"QueryExecutionId": "count-1"}
        athena.get_query_execution.return_value = {"QueryExecution": {"Status": {"State": "SUCCEEDED"}}}
        athena.get_query_results.return_value = {
            "ResultSet": {"Rows": [{"Data": [{"VarCharValue": "_col0"}]}, {"Data": [{"VarCharValue": "42"}]}]}
        }
        stats = _offline_service(athena=athena, glue=glue).get_table_stats(TABLE)
        assert (stats.row_count, stats.byte_size) == (42, 2048)
        sql = athena.start_query_execution.call_args.kwargs["QueryString"]
        assert sql == 'SELECT count(*) FROM "analytics"."events"'


class TestTableManagement:
    def test_exists_and_delete(self, aws, service):
        assert not service.table_exists(TABLE)
        _create_table(aws["glue"])
        assert service.table_exists(TABLE)
        service.delete_table(TABLE)
        assert not service.table_exists(TABLE)

    def test_delete_missing_is_noop(self, service):
        service.delete_table(TABLE)

    def test_throttled_lookup_is_transient(self):
        glue = MagicMock()
        glue.get_table.side_effect = _client_error("ThrottlingException")
        glue.delete_table.side_effect = _client_error("InternalServerException", status=500)
        service = _offline_service(glue=glue)
        with pytest.raises(PollingTransportError):
            service.table_exists(TABLE)
        with pytest.raises(PollingTransportError):
            service.delete_table(TABLE)

    def test_access_denied_propagates(self):
        glue = MagicMock()
        glue.get_table.side_effect = _client_error("AccessDeniedException")
        with pytest.raises(ClientError):
            _offline_service(glue=glue).table_exists(TABLE)


class TestRegistry:
    def test_athena_registered(self, aws_credentials):
        assert "athena" in list_remote_services()
        assert isinstance(get_remote_service({"backend": "athena", "athena": ATHENA_CONFIG}), AthenaRemoteService)

    def test_unknown_backend(self):
        with pytest.raises(ValueError, match="not available"):
            get_remote_service({"backend": "bigquery"})
