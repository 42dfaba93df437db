"""Remote query/export service capability interface and registry.

The pipeline only needs five operations from the remote service. Concrete
adapters implement :class:`RemoteService`; tests substitute a fake one.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Union

from foundry.jobs import JobStatus, ShardDescriptor, TableReference, TableStats

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class QueryJobSpec:
    """Materialize the result of ``query`` into ``destination``."""

    query: str
    destination: TableReference


@dataclass(frozen=True)
class ExportJobSpec:
    """Export shard ``shard_index`` of ``shard_count`` of ``table`` into ``destination``."""

    table: TableReference
    destination: ShardDescriptor
    file_format: str
    shard_index: int = 0
    shard_count: int = 1


JobSpec = Union[QueryJobSpec, ExportJobSpec]


class RemoteService(ABC):
    """Abstract base class for remote query/export services."""

    @abstractmethod
    def submit_job(self, spec: JobSpec) -> str:
        """Submit a job and return its id without waiting for it.

        Raises:
            SubmissionError: If the service rejects the job
        """

    @abstractmethod
    def get_job_status(self, job_id: str) -> JobStatus:
        """Return the current status of a job.

        Raises:
            PollingTransportError: On transient transport failures
        """

    @abstractmethod
    def get_table_stats(self, table: TableReference) -> TableStats:
        """Return row and byte counts for a table.

        Raises:
            PlanningError: If the statistics are missing or invalid
        """

    @abstractmethod
    def delete_table(self, table: TableReference) -> None:
        """Delete a table."""

    @abstractmethod
    def table_exists(self, table: TableReference) -> bool:
        """Return True if the table exists."""


# =============================================================================
# Remote Service Registry
# =============================================================================

REMOTE_REGISTRY: Dict[str, Callable[[Dict[str, Any]], RemoteService]] = {}


def register_remote_service(
    name: str,
) -> Callable[[Callable[[Dict[str, Any]], RemoteService]], Callable[[Dict[str, Any]], RemoteService]]:
    """Decorator to register a remote service factory.

    The factory receives the ``remote`` section of the export config.
    """
    def decorator(
        factory: Callable[[Dict[str, Any]], RemoteService],
    ) -> Callable[[Dict[str, Any]], RemoteService]:
        REMOTE_REGISTRY[name.lower()] = factory
        return factory

    return decorator


def list_remote_services() -> List[str]:
    return sorted(REMOTE_REGISTRY.keys())


def get_remote_service(remote_config: Dict[str, Any]) -> RemoteService:
    """Build the remote service named by ``remote_config['backend']``."""
    backend = str(remote_config.get("backend", "athena")).lower()
    factory = REMOTE_REGISTRY.get(backend)
    if not factory:
        raise ValueError(
            f"Remote service '{backend}' is not available. "
            f"Available services: {', '.join(list_remote_services())}."
        )
    return factory(remote_config)


@register_remote_service("athena")
def _athena_factory(config: Dict[str, Any]) -> RemoteService:
    from foundry.athena import AthenaRemoteService
    return AthenaRemoteService(config.get("athena", {}))
