"""CLI entrypoint for export-foundry.

This file wires together:

- Config loading and validation
- Query materialization and (sharded) export submission
- Parallel shard reading (optional)
- Cleanup of the intermediate table and export files

Exit codes: 0 on success, 1 on any export or read failure, 2 on config errors.
"""

import argparse
import json
import logging
import sys
import threading
import time
from pathlib import Path
from typing import IO, List, Optional

from foundry import __version__
from foundry.config import ExportConfig, load_config
from foundry.exceptions import ConfigValidationError, ExportFoundryError
from foundry.input_format import ExportInputFormat
from foundry.jobs import WorkUnit
from foundry.logging_config import log_performance, setup_logging
from foundry.parallel import RecordHandler, run_parallel_readers
from foundry.reader import ShardRecord
from foundry.remote import list_remote_services
from foundry.storage import list_backends

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_CONFIG_ERROR = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Export a remote table or query into an object store as shards and read them back",
    )
    parser.add_argument("--config", help="Path to the YAML export config")
    parser.add_argument(
        "--validate-only",
        action="store_true",
        help="Only validate the configuration file",
    )
    parser.add_argument(
        "--cleanup-only",
        action="store_true",
        help="Remove the intermediate table and export files named by the config, then exit",
    )
    parser.add_argument(
        "--work-units-out",
        type=Path,
        help="Write the work units of the export as JSON lines to this file; without --read the export files are kept for their consumers",
    )
    parser.add_argument(
        "--read",
        action="store_true",
        help="Read every shard after the export becomes usable",
    )
    parser.add_argument(
        "--output",
        type=Path,
        help="With --read, write every record value as a JSON line to this file",
    )
    parser.add_argument(
        "--parallel-workers",
        type=int,
        default=4,
        help="Number of shards read concurrently with --read (default: 4)",
    )
    parser.add_argument(
        "--no-cleanup",
        action="store_true",
        help="Skip cleanup after the run",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable verbose (DEBUG level) logging",
    )
    parser.add_argument(
        "--quiet", "-q", action="store_true", help="Suppress all output except errors"
    )
    parser.add_argument(
        "--log-format",
        choices=["human", "json", "simple"],
        default=None,
        help="Log format (default: human). Can also set via EXPORT_LOG_FORMAT env var",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"export-foundry {__version__}",
        help="Show version and exit",
    )
    parser.add_argument(
        "--list-backends",
        action="store_true",
        help="List available object stores and remote services and exit",
    )
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.list_backends:
        print("Available object stores:")
        for backend in list_backends():
            print(f"  - {backend}")
        print("Available remote services:")
        for service in list_remote_services():
            print(f"  - {service}")
        return EXIT_OK

    log_level = (
        logging.DEBUG if args.verbose else logging.ERROR if args.quiet else logging.INFO
    )
    setup_logging(level=log_level, format_type=args.log_format, use_colors=True)

    if not args.config:
        parser.error("--config is required (unless using --list-backends or --version)")

    return ExportCommand(args).execute()


class ExportCommand:
    """Runs one export described by a config file."""

    def __init__(self, args: argparse.Namespace) -> None:
        self.args = args
        self.config: Optional[ExportConfig] = None
        self.input_format: Optional[ExportInputFormat] = None

    def execute(self) -> int:
        try:
            self.config = load_config(self.args.config)
        except (ConfigValidationError, FileNotFoundError) as exc:
            logger.error(f"Config invalid: {self.args.config}")
            logger.error(f"  Error: {exc}")
            return EXIT_CONFIG_ERROR

        settings = self.config.export
        logger.info(
            f"Config valid: table={settings.table}, export_root={settings.export_root}, "
            f"sharded={settings.sharded}, format={settings.file_format}"
        )
        if self.args.validate_only:
            return EXIT_OK

        if self.args.cleanup_only:
            result = ExportInputFormat.cleanup_job(self.config)
            return EXIT_OK if result.ok else EXIT_FAILURE

        self.input_format = ExportInputFormat(self.config)
        try:
            return self._run()
        except ConfigValidationError as exc:
            logger.error(f"Config invalid: {exc}")
            return EXIT_CONFIG_ERROR
        except ExportFoundryError as exc:
            logger.error(f"Export failed: {exc}")
            return EXIT_FAILURE
        finally:
            if not self.args.no_cleanup:
                self._cleanup()

    def _run(self) -> int:
        assert self.input_format is not None
        started = time.monotonic()
        work_units = self.input_format.get_splits()
        if self.args.work_units_out:
            self._write_work_units(work_units, self.args.work_units_out)

        if not self.args.read:
            return EXIT_OK

        if self.args.output:
            self.args.output.parent.mkdir(parents=True, exist_ok=True)
            with open(self.args.output, "w", encoding="utf-8") as out:
                results = self._read(work_units, out)
        else:
            results = self._read(work_units, None)

        total = sum(count for _, count, _ in results)
        failed = [ordinal for ordinal, _, error in results if error is not None]
        log_performance(
            logger,
            "read_shards",
            duration_seconds=time.monotonic() - started,
            records=total,
            shards=len(results),
            failed_shards=len(failed),
        )
        if failed:
            logger.error(f"{len(failed)} shard(s) failed: {failed}")
            return EXIT_FAILURE
        return EXIT_OK

    def _read(self, work_units: List[WorkUnit], out: Optional[IO[str]]):
        assert self.input_format is not None
        handler: Optional[RecordHandler] = None
        if out is not None:
            lock = threading.Lock()

            def write_record(unit: WorkUnit, record: ShardRecord) -> None:
                line = json.dumps(record.value, default=str)
                with lock:
                    out.write(line + "\n")

            handler = write_record

        return run_parallel_readers(
            self.input_format,
            work_units,
            handler=handler,
            max_workers=self.args.parallel_workers,
        )

    @staticmethod
    def _write_work_units(work_units: List[WorkUnit], path: Path) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            for unit in work_units:
                f.write(unit.to_json() + "\n")
        logger.info(f"Wrote {len(work_units)} work unit(s) to {path}")

    def _cleanup(self) -> None:
        assert self.input_format is not None
        delete_export_files = None
        if self.args.work_units_out and not self.args.read:
            # work units were handed to other consumers; their shards must survive this process
            logger.info(f"Keeping export files for the work units written to {self.args.work_units_out}")
            delete_export_files = False
        try:
            result = self.input_format.cleanup(delete_export_files=delete_export_files)
        except ExportFoundryError as exc:
            logger.warning(f"Cleanup skipped: {exc}")
            return
        if not result.ok:
            logger.warning(f"Cleanup finished with {len(result.errors)} error(s)")


if __name__ == "__main__":
    try:
        sys.exit(main())
    except Exception as exc:
        logger.error(f"Fatal error: {exc}", exc_info=True)
        sys.exit(1)
