"""Shard-count planning for sharded exports."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass

from foundry.exceptions import PlanningError
from foundry.jobs import TableStats

logger = logging.getLogger(__name__)

DEFAULT_TARGET_SHARD_SIZE_BYTES = 256 * 1024 * 1024


@dataclass(frozen=True)
class ShardPlan:
    shard_count: int
    estimated_shard_count: int = 1


class ExportPlanner:
    """Decide how many shards an export should produce.

    The size estimate is ``ceil(byte_size / target_shard_size_bytes)``. The
    plan never exceeds the caller's parallelism hint and never produces more
    shards than the table has rows, because an empty shard cannot be told
    apart from a failed one. When the estimate exceeds that bound the planner
    defers to it; otherwise the hint (capped by the row count) is used so
    that every requested consumer gets work.
    """

    def __init__(self, target_shard_size_bytes: int = DEFAULT_TARGET_SHARD_SIZE_BYTES) -> None:
        if target_shard_size_bytes <= 0:
            raise PlanningError("target_shard_size_bytes must be positive")
        self.target_shard_size_bytes = target_shard_size_bytes

    def estimate(self, stats: TableStats) -> int:
        return max(1, math.ceil(stats.byte_size / self.target_shard_size_bytes))

    def plan(self, stats: TableStats, parallelism_hint: int, sharded_enabled: bool) -> ShardPlan:
        if not sharded_enabled:
            return ShardPlan(shard_count=1, estimated_shard_count=1)
        if isinstance(parallelism_hint, bool) or not isinstance(parallelism_hint, int) or parallelism_hint < 1:
            raise PlanningError(f"parallelism hint must be a positive integer, got {parallelism_hint!r}")

        estimate = self.estimate(stats)
        upper = max(1, min(parallelism_hint, stats.row_count))
        if estimate > upper:
            logger.debug(
                f"Size estimate of {estimate} shards exceeds bound {upper} "
                f"(hint={parallelism_hint}, rows={stats.row_count}); deferring to the bound"
            )
        shard_count = upper
        logger.info(
            f"Planned {shard_count} shard(s) for {stats.row_count} rows / {stats.byte_size} bytes "
            f"(size estimate {estimate}, hint {parallelism_hint})"
        )
        return ShardPlan(shard_count=shard_count, estimated_shard_count=estimate)
