"""Export remote query results into an object store as shards and read them back.

Public API:
    ExportInputFormat   - get_splits / create_reader / cleanup
    DynamicShardReader  - record stream over a shard that is still being written
    QueryOrchestrator   - state machine for query + export
    load_config         - YAML config loader
"""

__version__ = "1.0.0"

from foundry.config import ExportConfig, load_config
from foundry.exceptions import ExportFoundryError
from foundry.input_format import ExportInputFormat
from foundry.jobs import WorkUnit
from foundry.orchestrator import ExportState, QueryOrchestrator
from foundry.reader import DynamicShardReader, ShardRecord

__all__ = [
    "__version__",
    "DynamicShardReader",
    "ExportConfig",
    "ExportFoundryError",
    "ExportInputFormat",
    "ExportState",
    "QueryOrchestrator",
    "ShardRecord",
    "WorkUnit",
    "load_config",
]
