"""
Typed configuration for export runs.

Configs are YAML documents validated into dataclasses so the pipeline
components receive explicit settings at construction instead of reading
nested dicts.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

from foundry.exceptions import ConfigValidationError
from foundry.jobs import TableReference
from foundry.planner import DEFAULT_TARGET_SHARD_SIZE_BYTES
from foundry.retry import RetryPolicy

logger = logging.getLogger(__name__)

VALID_FILE_FORMATS = ["json", "text", "parquet"]


def _ensure_bool(value: Any, key: str) -> bool:
    if not isinstance(value, bool):
        raise ConfigValidationError(f"{key} must be a boolean", key=key)
    return value


def _ensure_positive_int(value: Any, key: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise ConfigValidationError(f"{key} must be a positive integer", key=key)
    return value


def _ensure_positive_number(value: Any, key: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
        raise ConfigValidationError(f"{key} must be a positive number", key=key)
    return float(value)


def _ensure_section(raw: Any, key: str) -> Dict[str, Any]:
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ConfigValidationError(f"{key} must be a dictionary", key=key)
    return raw


@dataclass
class PollingConfig:
    base_delay: float = 0.5
    max_delay: float = 8.0
    backoff_multiplier: float = 2.0
    jitter: float = 0.2
    max_attempts: int = 5
    export_timeout_seconds: float = 3600.0
    reader_timeout_seconds: float = 3600.0

    @classmethod
    def from_dict(cls, raw: Optional[Dict[str, Any]]) -> "PollingConfig":
        data = _ensure_section(raw, "polling")
        cfg = cls()
        for key in ("base_delay", "max_delay", "backoff_multiplier", "export_timeout_seconds", "reader_timeout_seconds"):
            if key in data:
                setattr(cfg, key, _ensure_positive_number(data[key], f"polling.{key}"))
        if "max_attempts" in data:
            cfg.max_attempts = _ensure_positive_int(data["max_attempts"], "polling.max_attempts")
        if "jitter" in data:
            jitter = data["jitter"]
            if isinstance(jitter, bool) or not isinstance(jitter, (int, float)) or not 0 <= jitter <= 1:
                raise ConfigValidationError("polling.jitter must be between 0 and 1", key="polling.jitter")
            cfg.jitter = float(jitter)
        if cfg.max_delay < cfg.base_delay:
            raise ConfigValidationError("polling.max_delay must be >= polling.base_delay", key="polling.max_delay")
        return cfg

    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=self.max_attempts,
            base_delay=self.base_delay,
            max_delay=self.max_delay,
            backoff_multiplier=self.backoff_multiplier,
            jitter=self.jitter,
        )


@dataclass
class ExportSettings:
    table: TableReference
    export_root: str
    query: Optional[str] = None
    parallelism_hint: int = 1
    sharded: bool = False
    file_format: str = "json"
    file_pattern: str = "*"
    target_shard_size_bytes: int = DEFAULT_TARGET_SHARD_SIZE_BYTES
    delete_intermediate_table: bool = False
    delete_export_files: bool = True

    @classmethod
    def from_dict(cls, raw: Optional[Dict[str, Any]]) -> "ExportSettings":
        data = _ensure_section(raw, "export")
        if "table" not in data:
            raise ConfigValidationError("Missing required key 'export.table' in config", key="export.table")
        if not data.get("export_root"):
            raise ConfigValidationError("Missing required key 'export.export_root' in config", key="export.export_root")

        query = data.get("query")
        if query is not None and (not isinstance(query, str) or not query.strip()):
            raise ConfigValidationError("export.query must be a non-empty string when provided", key="export.query")

        file_format = str(data.get("file_format", "json")).lower()
        if file_format not in VALID_FILE_FORMATS:
            raise ConfigValidationError(
                f"export.file_format must be one of {VALID_FILE_FORMATS} (got '{file_format}')",
                key="export.file_format",
            )

        settings = cls(
            table=TableReference.parse(data["table"]),
            export_root=str(data["export_root"]).rstrip("/"),
            query=query,
            file_format=file_format,
        )
        if "parallelism_hint" in data:
            settings.parallelism_hint = _ensure_positive_int(data["parallelism_hint"], "export.parallelism_hint")
        if "sharded" in data:
            settings.sharded = _ensure_bool(data["sharded"], "export.sharded")
        if "file_pattern" in data:
            pattern = data["file_pattern"]
            if not isinstance(pattern, str) or not pattern or "/" in pattern:
                raise ConfigValidationError(
                    "export.file_pattern must be a file-name glob without '/'", key="export.file_pattern"
                )
            settings.file_pattern = pattern
        if "target_shard_size_mb" in data:
            size_mb = _ensure_positive_number(data["target_shard_size_mb"], "export.target_shard_size_mb")
            settings.target_shard_size_bytes = int(size_mb * 1024 * 1024)
        if "delete_intermediate_table" in data:
            settings.delete_intermediate_table = _ensure_bool(
                data["delete_intermediate_table"], "export.delete_intermediate_table"
            )
        if "delete_export_files" in data:
            settings.delete_export_files = _ensure_bool(data["delete_export_files"], "export.delete_export_files")

        if settings.parallelism_hint > 1 and not settings.sharded:
            logger.debug("export.parallelism_hint is ignored unless export.sharded is true")
        return settings


@dataclass
class ExportConfig:
    export: ExportSettings
    polling: PollingConfig = field(default_factory=PollingConfig)
    remote: Dict[str, Any] = field(default_factory=dict)
    storage: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "ExportConfig":
        if not isinstance(raw, dict):
            raise ConfigValidationError("Config must be a dictionary")
        remote = _ensure_section(raw.get("remote"), "remote")
        backend = remote.get("backend", "athena")
        if not isinstance(backend, str):
            raise ConfigValidationError("remote.backend must be a string", key="remote.backend")
        return cls(
            export=ExportSettings.from_dict(raw.get("export")),
            polling=PollingConfig.from_dict(raw.get("polling")),
            remote={**remote, "backend": backend.lower()},
            storage=_ensure_section(raw.get("storage"), "storage"),
        )

    @property
    def remote_backend(self) -> str:
        return self.remote.get("backend", "athena")


def _read_yaml(path: Union[str, Path]) -> Dict[str, Any]:
    logger.info(f"Loading config from {path}")

    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    try:
        with open(config_path, "r", encoding="utf-8") as f:
            cfg = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigValidationError(f"Invalid YAML in config file: {e}", config_path=str(path))

    if not isinstance(cfg, dict):
        raise ConfigValidationError("Config must be a YAML dictionary/object", config_path=str(path))

    return cfg


def load_config(path: Union[str, Path]) -> ExportConfig:
    """Load and validate a YAML export config."""
    cfg = _read_yaml(path)
    try:
        return ExportConfig.from_dict(cfg)
    except ConfigValidationError as exc:
        exc.details.setdefault("config_path", str(path))
        raise
