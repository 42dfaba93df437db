"""Parallel shard consumption: one reader per work unit on a thread pool."""

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Any, Callable, List, Optional, Tuple

from foundry.input_format import ExportInputFormat
from foundry.jobs import WorkUnit
from foundry.reader import ShardRecord

logger = logging.getLogger(__name__)

RecordHandler = Callable[[WorkUnit, ShardRecord], Any]


def run_parallel_readers(
    input_format: ExportInputFormat,
    work_units: List[WorkUnit],
    handler: Optional[RecordHandler] = None,
    max_workers: int = 4,
) -> List[Tuple[int, int, Optional[Exception]]]:
    """
    Read every work unit concurrently.

    A failing shard does not stop the others; its error is reported in the
    results.

    Args:
        input_format: Input format the work units came from
        work_units: Work units returned by ``get_splits``
        handler: Called with (work_unit, record) for every record
        max_workers: Maximum number of parallel readers

    Returns:
        List of (shard ordinal, records read, error) tuples sorted by ordinal
    """
    if max_workers <= 0:
        max_workers = 1

    logger.info(f"Reading {len(work_units)} shard(s) with {max_workers} worker(s)")

    results = []

    with ThreadPoolExecutor(max_workers=max_workers) as executor:
        future_to_ordinal = {
            executor.submit(_safe_read_shard, input_format, unit, handler): unit.descriptor.ordinal
            for unit in work_units
        }

        for future in as_completed(future_to_ordinal):
            ordinal = future_to_ordinal[future]
            count, error = future.result()
            results.append((ordinal, count, error))
            if error is None:
                logger.info(f"Shard {ordinal} done: {count} record(s)")
            else:
                logger.error(f"Shard {ordinal} failed after {count} record(s): {error}")

    failed = sum(1 for _, _, error in results if error is not None)
    logger.info(f"Parallel read complete: {len(results) - failed} succeeded, {failed} failed")

    return sorted(results, key=lambda result: result[0])


def _safe_read_shard(
    input_format: ExportInputFormat,
    work_unit: WorkUnit,
    handler: Optional[RecordHandler],
) -> Tuple[int, Optional[Exception]]:
    count = 0
    try:
        with input_format.create_reader(work_unit) as reader:
            for record in reader:
                if handler is not None:
                    handler(work_unit, record)
                count += 1
        return (count, None)
    except Exception as e:
        logger.error(f"Reading shard {work_unit.descriptor.ordinal} failed: {e}", exc_info=True)
        return (count, e)
