"""Best-effort removal of intermediate tables and exported files."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import List, Optional

from foundry.exceptions import CleanupError
from foundry.jobs import TableReference
from foundry.remote import RemoteService
from foundry.retry import RetryPolicy, SleepFn, execute_with_retry
from foundry.storage.base import ObjectStore

logger = logging.getLogger(__name__)


@dataclass
class CleanupResult:
    table_checked: bool = False
    table_deleted: bool = False
    files_deleted: bool = False
    errors: List[CleanupError] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


def cleanup_export_artifacts(
    remote: Optional[RemoteService],
    store: Optional[ObjectStore],
    table: TableReference,
    query_used: bool,
    export_root: str,
    delete_intermediate_table: bool,
    delete_export_files: bool,
    policy: Optional[RetryPolicy] = None,
    sleep: SleepFn = time.sleep,
) -> CleanupResult:
    """Remove what an export left behind, according to two independent flags.

    The intermediate table is only touched when a query materialized it.
    Deletion is check-then-delete; transient catalog errors are retried per
    ``policy``, so the existence check may run more than once. Failures are
    logged and collected in the result, never raised, so already-consumed
    data stays valid.
    """
    result = CleanupResult()
    policy = policy or RetryPolicy()

    if query_used and remote is not None:
        try:
            exists = execute_with_retry(
                remote.table_exists, table, policy=policy, operation_name=f"lookup of {table}", sleep=sleep
            )
            result.table_checked = True
            if not exists:
                logger.info(f"Intermediate table {table} does not exist; nothing to delete")
            elif delete_intermediate_table:
                execute_with_retry(
                    remote.delete_table, table, policy=policy, operation_name=f"delete of {table}", sleep=sleep
                )
                result.table_deleted = True
                logger.info(f"Deleted intermediate table {table}")
            else:
                logger.info(f"Leaving intermediate table {table} in place")
        except Exception as e:
            error = CleanupError("Failed to clean up intermediate table", target=str(table), original_error=e)
            logger.error(str(error))
            result.errors.append(error)

    if delete_export_files and store is not None:
        try:
            result.files_deleted = store.delete_recursive(export_root)
            logger.info(f"Deleted export files under {export_root}")
        except Exception as e:
            error = CleanupError("Failed to delete export files", target=export_root, original_error=e)
            logger.error(str(error))
            result.errors.append(error)
    elif not delete_export_files:
        logger.info(f"Leaving export files under {export_root} in place")

    return result
