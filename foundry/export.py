"""Export components: submit export jobs into the export root and track them.

Export root layout::

    <export_root>/shard-00000/<files>
    <export_root>/shard-00001/<files>
    ...

Shard directories carry a fixed-width ordinal so lexicographic order equals
shard order; inside a shard, file names sort in record order. An unsharded
export writes its files directly under the export root.
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from typing import List, Optional

from foundry.exceptions import OrchestrationStateError, RemoteJobFailure
from foundry.jobs import ExportJob, JobStatus, ShardDescriptor, TableReference, WorkUnit
from foundry.planner import ExportPlanner, ShardPlan
from foundry.remote import ExportJobSpec, RemoteService
from foundry.retry import ClockFn, RetryPolicy, SleepFn, poll_until
from foundry.storage.base import ObjectStore
from foundry.storage.uri import join_path

logger = logging.getLogger(__name__)

SHARD_DIRECTORY_WIDTH = 5


def shard_directory(export_root: str, ordinal: int) -> str:
    return join_path(export_root, f"shard-{ordinal:0{SHARD_DIRECTORY_WIDTH}d}")


class Export(ABC):
    """Base class for exports of one table into an object store root."""

    def __init__(
        self,
        remote: RemoteService,
        store: ObjectStore,
        table: TableReference,
        export_root: str,
        file_format: str = "json",
        file_pattern: str = "*",
        policy: Optional[RetryPolicy] = None,
        timeout: Optional[float] = None,
        sleep: SleepFn = time.sleep,
        clock: ClockFn = time.monotonic,
    ) -> None:
        self.remote = remote
        self.store = store
        self.table = table
        self.export_root = export_root.rstrip("/")
        self.file_format = file_format
        self.file_pattern = file_pattern
        self.policy = policy or RetryPolicy()
        self.timeout = timeout
        self._sleep = sleep
        self._clock = clock
        self.jobs: List[ExportJob] = []

    @property
    def started(self) -> bool:
        return bool(self.jobs)

    @abstractmethod
    def begin_export(self) -> None:
        """Submit the export job(s) and return without waiting."""

    @abstractmethod
    def wait_until_usable(self) -> List[WorkUnit]:
        """Block until the export can be consumed and return its work units."""

    def _submit(self, descriptor: ShardDescriptor, shard_count: int) -> ExportJob:
        spec = ExportJobSpec(
            table=self.table,
            destination=descriptor,
            file_format=self.file_format,
            shard_index=descriptor.ordinal,
            shard_count=shard_count,
        )
        job_id = self.remote.submit_job(spec)
        job = ExportJob(job_id=job_id, destination=descriptor)
        self.jobs.append(job)
        return job

    def _work_unit(self, job: ExportJob) -> WorkUnit:
        if job.destination is None:
            raise OrchestrationStateError(
                f"Export job {job.job_id} has no destination", operation="describe work unit"
            )
        return WorkUnit(
            descriptor=job.destination,
            job_id=job.job_id,
            shard_count=len(self.jobs),
            file_format=self.file_format,
        )

    def get_shard_descriptors(self) -> List[ShardDescriptor]:
        return [job.destination for job in self.jobs if job.destination is not None]

    def work_units(self) -> List[WorkUnit]:
        return [self._work_unit(job) for job in self.jobs]

    def wait_for_terminal(self, job: ExportJob) -> JobStatus:
        """Poll ``job`` until it succeeds or fails, within the export deadline."""

        def terminal_status() -> Optional[JobStatus]:
            status = job.refresh(self.remote)
            return status if status.is_terminal else None

        return poll_until(
            terminal_status,
            self.policy,
            timeout=self.timeout,
            operation_name=f"export job {job.job_id}",
            sleep=self._sleep,
            clock=self._clock,
        )

    def wait_for_job(self, job: ExportJob) -> JobStatus:
        """Poll ``job`` until terminal; raises RemoteJobFailure if it failed."""
        status = self.wait_for_terminal(job)
        if status.failed:
            raise RemoteJobFailure("Export job failed", job_id=job.job_id, cause=status.error_message)
        return status

    def wait_for_all_jobs(self) -> None:
        """Block until no submitted job can still write into the export root."""
        running = [job for job in self.jobs if not job.is_terminal]
        if running:
            logger.info(f"Waiting for {len(running)} export job(s) of {self.table} to finish")
        for job in running:
            self.wait_for_terminal(job)


class UnshardedExport(Export):
    """A single export job; usable only once it has completed."""

    def begin_export(self) -> None:
        self.store.mkdirs(self.export_root)
        descriptor = ShardDescriptor(directory=self.export_root, file_pattern=self.file_pattern, ordinal=0)
        job = self._submit(descriptor, shard_count=1)
        logger.info(f"Started unsharded export of {self.table} to {self.export_root} (job {job.job_id})")

    def wait_until_usable(self) -> List[WorkUnit]:
        job = self.jobs[0]
        self.wait_for_job(job)
        logger.info(f"Unsharded export job {job.job_id} completed")
        return self.work_units()


class ShardedExport(Export):
    """One export job per planned shard, consumable while the jobs run."""

    def __init__(
        self,
        remote: RemoteService,
        store: ObjectStore,
        table: TableReference,
        export_root: str,
        parallelism_hint: int,
        planner: Optional[ExportPlanner] = None,
        **kwargs,
    ) -> None:
        super().__init__(remote, store, table, export_root, **kwargs)
        self.parallelism_hint = parallelism_hint
        self.planner = planner or ExportPlanner()
        self.plan: Optional[ShardPlan] = None

    def begin_export(self) -> None:
        stats = self.remote.get_table_stats(self.table)
        self.plan = self.planner.plan(stats, self.parallelism_hint, sharded_enabled=True)

        self.store.mkdirs(self.export_root)
        for ordinal in range(self.plan.shard_count):
            directory = shard_directory(self.export_root, ordinal)
            self.store.mkdirs(directory)
            descriptor = ShardDescriptor(directory=directory, file_pattern=self.file_pattern, ordinal=ordinal)
            self._submit(descriptor, shard_count=self.plan.shard_count)
        logger.info(
            f"Started sharded export of {self.table} to {self.export_root}: "
            f"{self.plan.shard_count} job(s) submitted"
        )

    def wait_until_usable(self) -> List[WorkUnit]:
        return self.work_units()
