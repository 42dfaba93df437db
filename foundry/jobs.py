"""Data types shared by the export pipeline: jobs, tables, shards and work units."""

from __future__ import annotations

import json
import logging
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, Optional

from foundry.exceptions import ConfigValidationError, PlanningError

if TYPE_CHECKING:
    from foundry.remote import RemoteService

logger = logging.getLogger(__name__)


class JobState(str, Enum):
    """Lifecycle of a remote query or export job."""

    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self is not JobState.RUNNING


@dataclass(frozen=True)
class JobStatus:
    state: JobState
    error_message: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.state.is_terminal

    @property
    def succeeded(self) -> bool:
        return self.state is JobState.SUCCEEDED

    @property
    def failed(self) -> bool:
        return self.state is JobState.FAILED

    @classmethod
    def running(cls) -> "JobStatus":
        return cls(JobState.RUNNING)

    @classmethod
    def success(cls) -> "JobStatus":
        return cls(JobState.SUCCEEDED)

    @classmethod
    def failure(cls, error_message: str) -> "JobStatus":
        return cls(JobState.FAILED, error_message)


@dataclass(frozen=True)
class TableReference:
    database: str
    table: str
    catalog: Optional[str] = None

    @classmethod
    def parse(cls, value: str) -> "TableReference":
        """Parse ``database.table`` or ``catalog.database.table``."""
        parts = [part.strip() for part in str(value).split(".")]
        if any(not part for part in parts) or len(parts) not in (2, 3):
            raise ConfigValidationError(
                f"Invalid table reference '{value}'; expected [catalog.]database.table",
                key="export.table",
            )
        if len(parts) == 3:
            return cls(database=parts[1], table=parts[2], catalog=parts[0])
        return cls(database=parts[0], table=parts[1])

    def __str__(self) -> str:
        if self.catalog:
            return f"{self.catalog}.{self.database}.{self.table}"
        return f"{self.database}.{self.table}"


@dataclass(frozen=True)
class TableStats:
    """Row and byte counts of a table, fetched once per export decision."""

    row_count: int
    byte_size: int

    def __post_init__(self) -> None:
        for name in ("row_count", "byte_size"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int) or value < 0:
                raise PlanningError(f"Table statistic {name} must be a non-negative integer, got {value!r}")


@dataclass(frozen=True)
class ShardDescriptor:
    """Where one shard's files land: a directory plus a file-name glob."""

    directory: str
    file_pattern: str
    ordinal: int


@dataclass(frozen=True)
class WorkUnit:
    """Serializable descriptor handed to the scheduler for one shard."""

    descriptor: ShardDescriptor
    job_id: str
    shard_count: int
    file_format: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "directory": self.descriptor.directory,
            "file_pattern": self.descriptor.file_pattern,
            "ordinal": self.descriptor.ordinal,
            "job_id": self.job_id,
            "shard_count": self.shard_count,
            "file_format": self.file_format,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WorkUnit":
        return cls(
            descriptor=ShardDescriptor(
                directory=data["directory"],
                file_pattern=data["file_pattern"],
                ordinal=int(data["ordinal"]),
            ),
            job_id=data["job_id"],
            shard_count=int(data["shard_count"]),
            file_format=data["file_format"],
        )

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), sort_keys=True)

    @classmethod
    def from_json(cls, payload: str) -> "WorkUnit":
        return cls.from_dict(json.loads(payload))


@dataclass
class ExportJob:
    """One submitted remote job, updated only by polling."""

    job_id: str
    destination: Optional[ShardDescriptor] = None
    submitted_at: float = field(default_factory=time.time)
    polls: int = 0
    state: JobState = JobState.RUNNING
    error_message: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.state.is_terminal

    def refresh(self, remote: "RemoteService") -> JobStatus:
        if self.is_terminal:
            return JobStatus(self.state, self.error_message)
        status = remote.get_job_status(self.job_id)
        self.polls += 1
        if status.state is not self.state:
            logger.info(f"Job {self.job_id} is now {status.state.value}")
        self.state = status.state
        self.error_message = status.error_message
        return status


class JobStatusSource:
    """Thread-safe "is the job terminal yet" query for one remote job.

    The first terminal status observed is cached and returned to every
    caller afterwards, so sibling readers never see it regress.
    """

    def __init__(self, remote: "RemoteService", job_id: str) -> None:
        self.remote = remote
        self.job_id = job_id
        self._terminal: Optional[JobStatus] = None
        self._lock = threading.Lock()

    def __call__(self) -> JobStatus:
        with self._lock:
            if self._terminal is not None:
                return self._terminal
        status = self.remote.get_job_status(self.job_id)
        if status.is_terminal:
            with self._lock:
                if self._terminal is None:
                    self._terminal = status
                return self._terminal
        return status
