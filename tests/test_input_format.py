"""Tests for the scheduler-facing input format: splits, readers and cleanup."""

import json

import pytest

from foundry.config import ExportConfig
from foundry.exceptions import (
    ConfigValidationError,
    PlanningError,
    RemoteJobFailure,
    StorageError,
    SubmissionError,
)
from foundry.export import shard_directory
from foundry.input_format import ExportInputFormat
from foundry.jobs import JobStatus, TableStats, WorkUnit
from foundry.orchestrator import ExportState
from foundry.remote import ExportJobSpec
from foundry.storage.local import LocalObjectStore

GIB = 1024 * 1024 * 1024


def _config(raw, **export_overrides):
    raw = json.loads(json.dumps(raw))
    raw["export"].update(export_overrides)
    return ExportConfig.from_dict(raw)


def _input_format(config, remote, clock):
    return ExportInputFormat(config, remote_service=remote, object_store=LocalObjectStore(), sleep=clock.sleep, clock=clock)


def _write_on_submit(remote, records_per_shard=2):
    """Make every export job drop one JSON file into its destination."""

    def write(job_id, spec):
        if not isinstance(spec, ExportJobSpec):
            return
        directory = spec.destination.directory
        LocalObjectStore().mkdirs(directory)
        with open(f"{directory}/part-00000.json", "w") as f:
            for i in range(records_per_shard):
                f.write(json.dumps({"shard": spec.shard_index, "i": i}) + "\n")

    remote.on_submit = write


class TestGetSplits:
    def test_sharded_large_table(self, sample_config_dict, remote, clock):
        remote.stats = TableStats(row_count=99999, byte_size=8 * GIB)
        fmt = _input_format(_config(sample_config_dict), remote, clock)
        splits = fmt.get_splits()
        assert len(splits) == 3
        root = sample_config_dict["export"]["export_root"]
        assert LocalObjectStore().exists(root)
        for ordinal in range(3):
            assert LocalObjectStore().exists(shard_directory(root, ordinal))
        assert fmt.orchestrator.state is ExportState.USABLE_FOR_CONSUMPTION

    def test_sharded_tiny_table(self, sample_config_dict, remote, clock):
        remote.stats = TableStats(row_count=2, byte_size=1)
        splits = _input_format(_config(sample_config_dict), remote, clock).get_splits()
        assert len(splits) == 2

    def test_unsharded(self, sample_config_dict, remote, clock):
        fmt = _input_format(_config(sample_config_dict, sharded=False), remote, clock)
        splits = fmt.get_splits()
        assert len(splits) == 1
        assert splits[0].descriptor.directory == sample_config_dict["export"]["export_root"]

    def test_query_materialized_first(self, sample_config_dict, remote, clock):
        fmt = _input_format(_config(sample_config_dict, query="SELECT * FROM raw.events"), remote, clock)
        fmt.get_splits()
        assert remote.query_specs[0].destination == fmt.config.export.table
        assert remote.submitted[0] is remote.query_specs[0]

    def test_work_units_survive_serialization(self, sample_config_dict, remote, clock):
        splits = _input_format(_config(sample_config_dict), remote, clock).get_splits()
        assert [WorkUnit.from_json(unit.to_json()) for unit in splits] == splits

    def test_client_factory_failure(self, sample_config, clock, monkeypatch):
        def broken(_config):
            raise RuntimeError("no credentials")

        monkeypatch.setattr("foundry.input_format.get_remote_service", broken)
        fmt = ExportInputFormat(sample_config, object_store=LocalObjectStore(), sleep=clock.sleep, clock=clock)
        with pytest.raises(SubmissionError) as exc_info:
            fmt.get_splits()
        assert "no credentials" in str(exc_info.value)

    def test_planning_failure_returns_nothing(self, sample_config, remote, clock):
        remote.stats_error = PlanningError("no statistics")
        fmt = _input_format(sample_config, remote, clock)
        with pytest.raises(PlanningError):
            fmt.get_splits()
        assert fmt.orchestrator.state is ExportState.FAILED
        assert remote.export_specs == []

    def test_unsupported_export_root(self, sample_config_dict, remote, clock):
        config = _config(sample_config_dict, export_root="gs://bucket/run")
        with pytest.raises(ConfigValidationError):
            ExportInputFormat(config, remote_service=remote, sleep=clock.sleep, clock=clock).get_splits()


class TestReaders:
    def test_read_all_shards(self, sample_config_dict, remote, clock):
        _write_on_submit(remote, records_per_shard=2)
        fmt = _input_format(_config(sample_config_dict), remote, clock)
        seen = []
        for unit in fmt.get_splits():
            with fmt.create_reader(unit) as reader:
                seen.extend((r.value["shard"], r.value["i"]) for r in reader)
        assert seen == [(s, i) for s in range(3) for i in range(2)]

    def test_reader_from_deserialized_unit(self, sample_config_dict, remote, clock):
        _write_on_submit(remote, records_per_shard=1)
        config = _config(sample_config_dict)
        units = [unit.to_json() for unit in _input_format(config, remote, clock).get_splits()]

        # a fresh input format, as in another worker process
        worker = _input_format(config, remote, clock)
        reader = worker.create_reader(WorkUnit.from_json(units[1]))
        assert [r.value["shard"] for r in reader] == [1]

    def test_reader_surfaces_shard_failure(self, sample_config_dict, remote, clock):
        fmt = _input_format(_config(sample_config_dict), remote, clock)
        units = fmt.get_splits()
        remote.script(units[1].job_id, JobStatus.failure("shard 1 exploded"))
        assert list(fmt.create_reader(units[0])) == []
        with pytest.raises(RemoteJobFailure):
            list(fmt.create_reader(units[1]))


class TestCleanup:
    @pytest.fixture
    def query_config_dict(self, sample_config_dict):
        raw = json.loads(json.dumps(sample_config_dict))
        raw["export"]["query"] = "SELECT * FROM raw.events"
        return raw

    def _run_export(self, config, remote, clock):
        _write_on_submit(remote)
        fmt = _input_format(config, remote, clock)
        fmt.get_splits()
        return fmt

    @pytest.mark.parametrize("delete_table,delete_files", [
        (True, True),
        (True, False),
        (False, True),
        (False, False),
    ])
    def test_flag_combinations(self, query_config_dict, remote, clock, delete_table, delete_files):
        config = _config(
            query_config_dict, delete_intermediate_table=delete_table, delete_export_files=delete_files
        )
        fmt = self._run_export(config, remote, clock)
        table = str(config.export.table)
        root = config.export.export_root

        result = fmt.cleanup()

        assert result.ok
        assert result.table_checked
        assert remote.exists_checks >= 1
        assert (table in remote.tables) is not delete_table
        assert result.table_deleted is delete_table
        assert LocalObjectStore().exists(root) is not delete_files
        assert fmt.orchestrator.state is ExportState.CLEANED_UP

    def test_cleanup_job_from_another_process(self, query_config_dict, remote, clock):
        config = _config(query_config_dict, delete_intermediate_table=True, delete_export_files=True)
        self._run_export(config, remote, clock)

        result = ExportInputFormat.cleanup_job(config, remote_service=remote, object_store=LocalObjectStore())
        assert result.ok
        assert remote.deleted == [str(config.export.table)]
        assert not LocalObjectStore().exists(config.export.export_root)

    def test_no_query_leaves_table_alone(self, sample_config_dict, remote, clock):
        config = _config(sample_config_dict, delete_intermediate_table=True)
        result = ExportInputFormat.cleanup_job(config, remote_service=remote, object_store=LocalObjectStore())
        assert not result.table_checked
        assert remote.exists_checks == 0
        assert remote.deleted == []

    def test_errors_reported_not_raised(self, query_config_dict, remote, clock):
        config = _config(query_config_dict, delete_intermediate_table=True, delete_export_files=True)
        fmt = self._run_export(config, remote, clock)
        remote.delete_error = RuntimeError("permission denied")

        class BrokenStore(LocalObjectStore):
            def delete_recursive(self, directory):
                raise StorageError("cannot delete", backend_type="local")

        result = ExportInputFormat.cleanup_job(config, remote_service=remote, object_store=BrokenStore())
        assert not result.ok
        assert len(result.errors) == 2
        assert fmt.orchestrator.state is ExportState.USABLE_FOR_CONSUMPTION

    def test_unreachable_remote_reported(self, query_config_dict, monkeypatch):
        def broken(_config):
            raise RuntimeError("no credentials")

        monkeypatch.setattr("foundry.input_format.get_remote_service", broken)
        config = _config(query_config_dict, delete_export_files=False)
        result = ExportInputFormat.cleanup_job(config)
        assert len(result.errors) == 1
        assert result.errors[0].error_code == "CLEAN001"

    def test_cleanup_after_failed_export(self, query_config_dict, remote, clock):
        config = _config(query_config_dict, delete_intermediate_table=True)
        remote.stats_error = PlanningError("no statistics")
        fmt = _input_format(config, remote, clock)
        with pytest.raises(PlanningError):
            fmt.get_splits()
        result = fmt.cleanup()
        assert result.table_deleted
        assert fmt.orchestrator.state is ExportState.CLEANED_UP
