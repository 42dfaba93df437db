"""Scheduler-facing adapter: turn an export config into work units and readers.

Typical use::

    input_format = ExportInputFormat(load_config("export.yaml"))
    for unit in input_format.get_splits():
        with input_format.create_reader(unit) as reader:
            for record in reader:
                ...
    input_format.cleanup()

``cleanup_job`` is a class method so a different process holding only the
config can remove what an export left behind.
"""

from __future__ import annotations

import logging
import time
from typing import List, Optional

from foundry.cleanup import CleanupResult, cleanup_export_artifacts
from foundry.config import ExportConfig
from foundry.exceptions import CleanupError, ConfigValidationError, SubmissionError
from foundry.export import Export, ShardedExport, UnshardedExport
from foundry.jobs import JobStatusSource, WorkUnit
from foundry.orchestrator import QueryOrchestrator
from foundry.planner import ExportPlanner
from foundry.reader import DynamicShardReader
from foundry.remote import RemoteService, get_remote_service
from foundry.retry import ClockFn, SleepFn
from foundry.storage.base import ObjectStore, get_object_store

logger = logging.getLogger(__name__)


def build_remote_service(config: ExportConfig) -> RemoteService:
    try:
        return get_remote_service(config.remote)
    except Exception as e:
        raise SubmissionError(
            f"Could not build remote service client '{config.remote_backend}'",
            job_kind="client",
            original_error=e,
        ) from e


def build_object_store(config: ExportConfig) -> ObjectStore:
    try:
        return get_object_store(config.export.export_root, config.storage)
    except ValueError as e:
        raise ConfigValidationError(str(e), key="export.export_root") from e


class ExportInputFormat:
    """Splits and readers for one export run."""

    def __init__(
        self,
        config: ExportConfig,
        remote_service: Optional[RemoteService] = None,
        object_store: Optional[ObjectStore] = None,
        sleep: SleepFn = time.sleep,
        clock: ClockFn = time.monotonic,
    ) -> None:
        self.config = config
        self._remote = remote_service
        self._store = object_store
        self._sleep = sleep
        self._clock = clock
        self.orchestrator: Optional[QueryOrchestrator] = None

    @property
    def remote(self) -> RemoteService:
        if self._remote is None:
            self._remote = build_remote_service(self.config)
        return self._remote

    @property
    def store(self) -> ObjectStore:
        if self._store is None:
            self._store = build_object_store(self.config)
        return self._store

    def _build_export(self) -> Export:
        settings = self.config.export
        common = dict(
            file_format=settings.file_format,
            file_pattern=settings.file_pattern,
            policy=self.config.polling.retry_policy(),
            timeout=self.config.polling.export_timeout_seconds,
            sleep=self._sleep,
            clock=self._clock,
        )
        if settings.sharded:
            return ShardedExport(
                self.remote,
                self.store,
                settings.table,
                settings.export_root,
                parallelism_hint=settings.parallelism_hint,
                planner=ExportPlanner(settings.target_shard_size_bytes),
                **common,
            )
        return UnshardedExport(self.remote, self.store, settings.table, settings.export_root, **common)

    def get_splits(self) -> List[WorkUnit]:
        """Run the export up to the point where it can be consumed.

        Returns one work unit per shard. Planning and submission errors
        propagate and leave the orchestrator FAILED; nothing is returned.
        """
        settings = self.config.export
        remote = self.remote
        export = self._build_export()
        self.orchestrator = QueryOrchestrator(
            export,
            remote,
            settings.table,
            query=settings.query,
            delete_intermediate_table=settings.delete_intermediate_table,
            delete_export_files=settings.delete_export_files,
            policy=self.config.polling.retry_policy(),
            timeout=self.config.polling.export_timeout_seconds,
            sleep=self._sleep,
            clock=self._clock,
        )
        self.orchestrator.prepare()
        self.orchestrator.begin_export()
        work_units = self.orchestrator.wait_for_usable_input()
        logger.info(f"Export of {settings.table} produced {len(work_units)} split(s)")
        return work_units

    def create_reader(self, work_unit: WorkUnit) -> DynamicShardReader:
        if self.orchestrator is not None:
            job_status = self.orchestrator.job_status_source(work_unit.job_id)
        else:
            job_status = JobStatusSource(self.remote, work_unit.job_id)
        return DynamicShardReader(
            work_unit,
            self.store,
            job_status,
            policy=self.config.polling.retry_policy(),
            timeout=self.config.polling.reader_timeout_seconds,
            sleep=self._sleep,
            clock=self._clock,
        )

    def cleanup(self, delete_export_files: Optional[bool] = None) -> CleanupResult:
        """Clean up after this run; ``delete_export_files`` overrides the config flag."""
        if self.orchestrator is not None:
            return self.orchestrator.cleanup(delete_export_files=delete_export_files)
        return self.cleanup_job(
            self.config,
            remote_service=self._remote,
            object_store=self._store,
            delete_export_files=delete_export_files,
        )

    @classmethod
    def cleanup_job(
        cls,
        config: ExportConfig,
        remote_service: Optional[RemoteService] = None,
        object_store: Optional[ObjectStore] = None,
        delete_export_files: Optional[bool] = None,
    ) -> CleanupResult:
        """Remove the intermediate table and export files named by ``config``.

        Never raises; problems are reported in the returned result. The caller
        must know the export jobs are finished before deleting export files.
        """
        settings = config.export
        if delete_export_files is None:
            delete_export_files = settings.delete_export_files
        query_used = bool(settings.query)
        setup_errors: List[CleanupError] = []

        remote = remote_service
        if remote is None and query_used:
            try:
                remote = build_remote_service(config)
            except SubmissionError as e:
                setup_errors.append(CleanupError("Cannot reach remote service", target=str(settings.table), original_error=e))

        store = object_store
        if store is None and delete_export_files:
            try:
                store = build_object_store(config)
            except Exception as e:
                setup_errors.append(CleanupError("Cannot open object store", target=settings.export_root, original_error=e))

        for error in setup_errors:
            logger.error(str(error))

        result = cleanup_export_artifacts(
            remote=remote,
            store=store,
            table=settings.table,
            query_used=query_used,
            export_root=settings.export_root,
            delete_intermediate_table=settings.delete_intermediate_table,
            delete_export_files=delete_export_files,
            policy=config.polling.retry_policy(),
        )
        result.errors[:0] = setup_errors
        return result
