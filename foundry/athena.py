"""Amazon Athena remote service.

Query materialization uses CTAS, exports use ``UNLOAD ... TO 's3://...'``,
job status comes from ``GetQueryExecution`` and table metadata from the Glue
Data Catalog.

Sharded exports split rows by a hash of ``shard_key`` modulo the shard
count, so the shards are disjoint and together cover the table. Without a
configured key the whole row is hashed (every catalog column, as JSON), which
spreads rows evenly however few files the table is stored in.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Dict, Optional

from botocore.exceptions import BotoCoreError, ClientError

from foundry.aws import build_client, error_code, is_transient_aws_error
from foundry.exceptions import (
    PlanningError,
    PollingTransportError,
    RemoteJobFailure,
    SubmissionError,
)
from foundry.jobs import JobState, JobStatus, TableReference, TableStats
from foundry.remote import ExportJobSpec, JobSpec, QueryJobSpec, RemoteService
from foundry.retry import RetryPolicy, poll_until
from foundry.storage.uri import StorageURI

logger = logging.getLogger(__name__)

UNLOAD_FORMATS = {
    "json": "JSON",
    "text": "TEXTFILE",
    "parquet": "PARQUET",
}

_STATE_MAP = {
    "QUEUED": JobState.RUNNING,
    "RUNNING": JobState.RUNNING,
    "SUCCEEDED": JobState.SUCCEEDED,
    "FAILED": JobState.FAILED,
    "CANCELLED": JobState.FAILED,
}

_ROW_COUNT_KEYS = ("numRows", "recordCount")
_BYTE_SIZE_KEYS = ("totalSize", "rawDataSize", "sizeKey")


def quote_identifier(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


def qualified_name(table: TableReference) -> str:
    return f"{quote_identifier(table.database)}.{quote_identifier(table.table)}"


class AthenaRemoteService(RemoteService):
    """Remote service backed by Athena and the Glue Data Catalog."""

    def __init__(
        self,
        config: Optional[Dict[str, Any]] = None,
        athena_client: Any = None,
        glue_client: Any = None,
        s3_client: Any = None,
    ) -> None:
        """Initialize the Athena service.

        Args:
            config: The ``remote.athena`` config section:
                - region, endpoint_url_env, access_key_env, secret_key_env
                - workgroup: Athena workgroup (default ``primary``)
                - output_location: S3 location for query results metadata
                - catalog: Data catalog name (default ``AwsDataCatalog``)
                - shard_key: SQL expression used to split rows across shards
                  (default: all columns of the exported table)
                - stats_timeout_seconds: Deadline for the row-count fallback query
        """
        cfg = config or {}
        self.workgroup = cfg.get("workgroup", "primary")
        self.output_location = cfg.get("output_location")
        self.catalog = cfg.get("catalog", "AwsDataCatalog")
        self.shard_key: Optional[str] = cfg.get("shard_key")
        self.stats_timeout_seconds = float(cfg.get("stats_timeout_seconds", 600))
        self.athena = athena_client or build_client("athena", cfg)
        self.glue = glue_client or build_client("glue", cfg)
        self._s3 = s3_client
        self._config = cfg
        self._row_keys: Dict[str, str] = {}

    @property
    def s3(self) -> Any:
        if self._s3 is None:
            self._s3 = build_client("s3", self._config)
        return self._s3

    # ------------------------------------------------------------------
    # SQL generation
    # ------------------------------------------------------------------

    def shard_key_for(self, table: TableReference) -> str:
        """SQL expression hashed to pick the shard of each row of ``table``."""
        if self.shard_key:
            return self.shard_key
        name = str(table)
        if name not in self._row_keys:
            try:
                glue_table = self._get_table(table)
            except (BotoCoreError, ClientError) as e:
                raise SubmissionError(
                    "Failed to read table columns for sharding", job_kind="export", original_error=e
                ) from e
            if glue_table is None:
                raise SubmissionError(f"Table {table} not found", job_kind="export")
            descriptor = glue_table.get("StorageDescriptor") or {}
            columns = (descriptor.get("Columns") or []) + (glue_table.get("PartitionKeys") or [])
            if not columns:
                raise SubmissionError(f"Table {table} has no columns to shard by", job_kind="export")
            row = ", ".join(quote_identifier(column["Name"]) for column in columns)
            self._row_keys[name] = f"json_format(CAST(ROW({row}) AS JSON))"
        return self._row_keys[name]

    def build_query_sql(self, spec: QueryJobSpec) -> str:
        return f"CREATE TABLE {qualified_name(spec.destination)} AS {spec.query}"

    def build_export_sql(self, spec: ExportJobSpec) -> str:
        unload_format = UNLOAD_FORMATS.get(spec.file_format)
        if unload_format is None:
            raise SubmissionError(f"Unsupported export format '{spec.file_format}'", job_kind="export")
        select = f"SELECT * FROM {qualified_name(spec.table)}"
        if spec.shard_count > 1:
            key = self.shard_key_for(spec.table)
            hashed = f"from_big_endian_64(xxhash64(to_utf8(CAST({key} AS varchar))))"
            select += (
                f" WHERE bitwise_and({hashed}, 9223372036854775807) % {spec.shard_count}"
                f" = {spec.shard_index}"
            )
        location = spec.destination.directory.rstrip("/") + "/"
        options = f"format = '{unload_format}'"
        if unload_format != "PARQUET":
            options += ", compression = 'NONE'"
        return f"UNLOAD ({select}) TO '{location}' WITH ({options})"

    # ------------------------------------------------------------------
    # RemoteService
    # ------------------------------------------------------------------

    def _start(self, sql: str, database: str, job_kind: str) -> str:
        request: Dict[str, Any] = {
            "QueryString": sql,
            "QueryExecutionContext": {"Database": database, "Catalog": self.catalog},
            "WorkGroup": self.workgroup,
        }
        if self.output_location:
            request["ResultConfiguration"] = {"OutputLocation": self.output_location}
        try:
            response = self.athena.start_query_execution(**request)
        except (BotoCoreError, ClientError) as e:
            logger.error(f"Athena rejected {job_kind} job: {e}")
            raise SubmissionError(f"Athena rejected the {job_kind} job", job_kind=job_kind, original_error=e) from e
        job_id = response.get("QueryExecutionId")
        if not job_id:
            raise SubmissionError(f"Athena returned no QueryExecutionId for the {job_kind} job", job_kind=job_kind)
        logger.info(f"Submitted Athena {job_kind} job {job_id}")
        logger.debug(f"Athena {job_kind} job {job_id}: {sql}")
        return job_id

    def submit_job(self, spec: JobSpec) -> str:
        if isinstance(spec, QueryJobSpec):
            return self._start(self.build_query_sql(spec), spec.destination.database, "query")
        if isinstance(spec, ExportJobSpec):
            return self._start(self.build_export_sql(spec), spec.table.database, "export")
        raise SubmissionError(f"Unsupported job spec type {type(spec).__name__}")

    def get_job_status(self, job_id: str) -> JobStatus:
        try:
            response = self.athena.get_query_execution(QueryExecutionId=job_id)
        except (BotoCoreError, ClientError) as e:
            if is_transient_aws_error(e):
                raise PollingTransportError(
                    f"Transient failure reading status of job {job_id}", operation="get_job_status", original_error=e
                ) from e
            raise RemoteJobFailure(f"Status lookup rejected for job {job_id}", job_id=job_id, cause=str(e)) from e

        status = response.get("QueryExecution", {}).get("Status", {})
        raw_state = status.get("State")
        state = _STATE_MAP.get(raw_state or "")
        if state is None:
            raise RemoteJobFailure(f"Unrecognized state {raw_state!r} for job {job_id}", job_id=job_id)
        if state is JobState.FAILED:
            reason = status.get("StateChangeReason") or status.get("AthenaError", {}).get("ErrorMessage") or raw_state
            return JobStatus.failure(reason)
        return JobStatus(state)

    def _get_table(self, table: TableReference) -> Optional[Dict[str, Any]]:
        try:
            return self.glue.get_table(DatabaseName=table.database, Name=table.table)["Table"]
        except ClientError as e:
            if error_code(e) == "EntityNotFoundException":
                return None
            raise

    def get_table_stats(self, table: TableReference) -> TableStats:
        try:
            glue_table = self._get_table(table)
        except (BotoCoreError, ClientError) as e:
            raise PlanningError("Failed to read table metadata", table=str(table), original_error=e) from e
        if glue_table is None:
            raise PlanningError("Table not found", table=str(table))

        parameters = glue_table.get("Parameters", {}) or {}
        row_count = self._int_parameter(parameters, _ROW_COUNT_KEYS, table)
        byte_size = self._int_parameter(parameters, _BYTE_SIZE_KEYS, table)
        if row_count is None:
            row_count = self._count_rows(table)
        if byte_size is None:
            location = glue_table.get("StorageDescriptor", {}).get("Location")
            if not location:
                raise PlanningError("Table has no size statistics and no storage location", table=str(table))
            byte_size = self._location_size(location)
        return TableStats(row_count=row_count, byte_size=byte_size)

    @staticmethod
    def _int_parameter(parameters: Dict[str, str], keys: tuple, table: TableReference) -> Optional[int]:
        for key in keys:
            if key in parameters:
                try:
                    value = int(parameters[key])
                except (TypeError, ValueError) as e:
                    raise PlanningError(f"Invalid table statistic {key}={parameters[key]!r}", table=str(table), original_error=e) from e
                if value >= 0:
                    return value
        return None

    def _count_rows(self, table: TableReference) -> int:
        logger.info(f"No row count in catalog for {table}; running count query")
        try:
            job_id = self._start(f"SELECT count(*) FROM {qualified_name(table)}", table.database, "count")
        except SubmissionError as e:
            raise PlanningError("Failed to submit row-count query", table=str(table), original_error=e) from e

        def finished() -> Optional[JobStatus]:
            status = self.get_job_status(job_id)
            return status if status.is_terminal else None

        status = poll_until(
            finished,
            RetryPolicy(base_delay=1.0, max_delay=10.0),
            timeout=self.stats_timeout_seconds,
            operation_name=f"row count of {table}",
            sleep=time.sleep,
        )
        if status.failed:
            raise PlanningError(f"Row-count query failed: {status.error_message}", table=str(table))
        try:
            rows = self.athena.get_query_results(QueryExecutionId=job_id)["ResultSet"]["Rows"]
            return int(rows[1]["Data"][0]["VarCharValue"])
        except (BotoCoreError, ClientError, KeyError, IndexError, ValueError) as e:
            raise PlanningError("Malformed row-count query result", table=str(table), original_error=e) from e

    def _location_size(self, location: str) -> int:
        uri = StorageURI.parse(location)
        prefix = uri.key.rstrip("/") + "/" if uri.key else ""
        total = 0
        try:
            paginator = self.s3.get_paginator("list_objects_v2")
            for page in paginator.paginate(Bucket=uri.bucket, Prefix=prefix):
                total += sum(obj.get("Size", 0) for obj in page.get("Contents", []))
        except (BotoCoreError, ClientError) as e:
            raise PlanningError(f"Failed to size table location {location}", original_error=e) from e
        return total

    def delete_table(self, table: TableReference) -> None:
        try:
            self.glue.delete_table(DatabaseName=table.database, Name=table.table)
        except (BotoCoreError, ClientError) as e:
            if error_code(e) == "EntityNotFoundException":
                logger.info(f"Table {table} already gone")
                return
            if is_transient_aws_error(e):
                raise PollingTransportError(
                    f"Transient failure deleting table {table}", operation="delete_table", original_error=e
                ) from e
            raise
        logger.info(f"Deleted table {table}")

    def table_exists(self, table: TableReference) -> bool:
        try:
            return self._get_table(table) is not None
        except (BotoCoreError, ClientError) as e:
            if is_transient_aws_error(e):
                raise PollingTransportError(
                    f"Transient failure looking up table {table}", operation="table_exists", original_error=e
                ) from e
            raise
