"""State machine driving a query-backed export from submission to consumption.

::

    NOT_STARTED --prepare()--> INTERMEDIATE_TABLE_READY
        --begin_export()--> EXPORTING
        --wait_for_usable_input()--> USABLE_FOR_CONSUMPTION
        --cleanup()--> CLEANED_UP

Any failing step moves to FAILED, which is terminal apart from cleanup().
"""

from __future__ import annotations

import logging
import threading
import time
from enum import Enum
from typing import Callable, Dict, List, Optional, TypeVar

from foundry.cleanup import CleanupResult, cleanup_export_artifacts
from foundry.exceptions import CleanupError, OrchestrationStateError, RemoteJobFailure
from foundry.export import Export
from foundry.jobs import ExportJob, JobStatus, JobStatusSource, TableReference, WorkUnit
from foundry.remote import QueryJobSpec, RemoteService
from foundry.retry import ClockFn, RetryPolicy, SleepFn, poll_until

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ExportState(str, Enum):
    NOT_STARTED = "not_started"
    INTERMEDIATE_TABLE_READY = "intermediate_table_ready"
    EXPORTING = "exporting"
    USABLE_FOR_CONSUMPTION = "usable_for_consumption"
    CLEANED_UP = "cleaned_up"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (ExportState.CLEANED_UP, ExportState.FAILED)


class QueryOrchestrator:
    """Drive an optional query materialization followed by an export.

    Submission errors are not retried here. Transport errors while polling
    are retried by the polling primitive until the deadline.
    """

    def __init__(
        self,
        export: Export,
        remote: RemoteService,
        table: TableReference,
        query: Optional[str] = None,
        delete_intermediate_table: bool = False,
        delete_export_files: bool = False,
        policy: Optional[RetryPolicy] = None,
        timeout: Optional[float] = None,
        sleep: SleepFn = time.sleep,
        clock: ClockFn = time.monotonic,
    ) -> None:
        self.export = export
        self.remote = remote
        self.table = table
        self.query = query
        self.delete_intermediate_table = delete_intermediate_table
        self.delete_export_files = delete_export_files
        self.policy = policy or RetryPolicy()
        self.timeout = timeout
        self._sleep = sleep
        self._clock = clock
        self._state = ExportState.NOT_STARTED
        self._failure: Optional[BaseException] = None
        self._work_units: List[WorkUnit] = []
        self._status_sources: Dict[str, JobStatusSource] = {}
        self._sources_lock = threading.Lock()
        self.query_job: Optional[ExportJob] = None

    @property
    def state(self) -> ExportState:
        return self._state

    @property
    def failure(self) -> Optional[BaseException]:
        return self._failure

    @property
    def work_units(self) -> List[WorkUnit]:
        return list(self._work_units)

    def _require(self, operation: str, *allowed: ExportState) -> None:
        if self._state not in allowed:
            raise OrchestrationStateError(
                f"Cannot {operation} in state {self._state.value}",
                current_state=self._state.value,
                operation=operation,
            )

    def _transition(self, new_state: ExportState) -> None:
        logger.info(f"Export of {self.table}: {self._state.value} -> {new_state.value}")
        self._state = new_state

    def _run_step(self, step: Callable[[], T], next_state: ExportState) -> T:
        try:
            result = step()
        except Exception as e:
            self._failure = e
            self._transition(ExportState.FAILED)
            logger.error(f"Export of {self.table} failed: {e}")
            raise
        self._transition(next_state)
        return result

    def prepare(self) -> None:
        """Materialize the query into the intermediate table, if there is a query."""
        self._require("prepare", ExportState.NOT_STARTED)
        self._run_step(self._materialize, ExportState.INTERMEDIATE_TABLE_READY)

    def _materialize(self) -> None:
        if not self.query:
            logger.info(f"No query supplied; exporting {self.table} directly")
            return
        job_id = self.remote.submit_job(QueryJobSpec(query=self.query, destination=self.table))
        self.query_job = ExportJob(job_id=job_id)
        logger.info(f"Submitted query job {job_id} materializing into {self.table}")
        job = self.query_job

        def terminal_status() -> Optional[JobStatus]:
            status = job.refresh(self.remote)
            return status if status.is_terminal else None

        status = poll_until(
            terminal_status,
            self.policy,
            timeout=self.timeout,
            operation_name=f"query job {job_id}",
            sleep=self._sleep,
            clock=self._clock,
        )
        if status.failed:
            raise RemoteJobFailure("Query job failed", job_id=job_id, cause=status.error_message)

    def begin_export(self) -> None:
        """Submit the export job(s); does not wait for them."""
        self._require("begin export", ExportState.INTERMEDIATE_TABLE_READY)
        self._run_step(self.export.begin_export, ExportState.EXPORTING)

    def wait_for_usable_input(self) -> List[WorkUnit]:
        """Block until the export can be consumed and return one work unit per shard."""
        self._require("wait for usable input", ExportState.EXPORTING)
        self._work_units = self._run_step(self.export.wait_until_usable, ExportState.USABLE_FOR_CONSUMPTION)
        return self.work_units

    def job_status_source(self, job_id: str) -> JobStatusSource:
        """Shared status query for ``job_id``; caches the terminal status once seen."""
        with self._sources_lock:
            source = self._status_sources.get(job_id)
            if source is None:
                source = JobStatusSource(self.remote, job_id)
                self._status_sources[job_id] = source
            return source

    def cleanup(self, delete_export_files: Optional[bool] = None) -> CleanupResult:
        """Delete the intermediate table and export files per the configured flags.

        ``delete_export_files`` overrides the configured flag for this call.
        Export files are only deleted once every export job is terminal; if
        a job is still running at the export deadline they are left in place
        and the timeout is reported in the result.
        """
        self._require("clean up", ExportState.USABLE_FOR_CONSUMPTION, ExportState.FAILED)
        if delete_export_files is None:
            delete_export_files = self.delete_export_files

        pending: List[CleanupError] = []
        if delete_export_files:
            try:
                self.export.wait_for_all_jobs()
            except Exception as e:
                error = CleanupError(
                    "Could not confirm export jobs finished; leaving export files in place",
                    target=self.export.export_root,
                    original_error=e,
                )
                logger.error(str(error))
                pending.append(error)
                delete_export_files = False

        result = cleanup_export_artifacts(
            remote=self.remote,
            store=self.export.store,
            table=self.table,
            query_used=bool(self.query),
            export_root=self.export.export_root,
            delete_intermediate_table=self.delete_intermediate_table,
            delete_export_files=delete_export_files,
            policy=self.policy,
            sleep=self._sleep,
        )
        result.errors[:0] = pending
        self._transition(ExportState.CLEANED_UP)
        return result
