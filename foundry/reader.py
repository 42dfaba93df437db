"""Record reader over a shard directory whose file list grows while it is read.

The reader keeps a cursor over the shard's known files (sorted by name) and
drains them one after another. When it runs out of files it asks the owning
export job whether it has finished:

- still running: list the directory again and wait with backoff; the last
  known file is re-opened at the cursor offset in case it grew;
- succeeded: list once more (status is checked before listing, so that
  listing is complete), drain what is left and end the stream;
- failed: raise RemoteJobFailure instead of ending the stream.

A file that ends inside a record is treated as still being written while the
job runs, and as corrupt once the job has finished.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, BinaryIO, Callable, Iterator, List, Optional

from foundry.decoders import DecodedRecord, RecordDecoder, get_decoder
from foundry.exceptions import (
    IncompleteRecordError,
    PollingTimeoutError,
    RemoteJobFailure,
    RetryExhaustedError,
    ShardDataError,
)
from foundry.jobs import JobStatus, WorkUnit
from foundry.retry import BackoffTimer, ClockFn, RetryPolicy, SleepFn
from foundry.storage.base import ObjectStore
from foundry.storage.uri import join_path

logger = logging.getLogger(__name__)


@dataclass
class ReaderCursor:
    file_index: int = 0
    file_offset: int = 0
    known_files: List[str] = field(default_factory=list)
    export_complete: bool = False


@dataclass(frozen=True)
class ShardRecord:
    file_name: str
    offset: int
    value: Any


class DynamicShardReader:
    """Single ordered record stream over every file a shard's export produces."""

    def __init__(
        self,
        work_unit: WorkUnit,
        store: ObjectStore,
        job_status: Callable[[], JobStatus],
        decoder: Optional[RecordDecoder] = None,
        policy: Optional[RetryPolicy] = None,
        timeout: Optional[float] = None,
        sleep: SleepFn = time.sleep,
        clock: ClockFn = time.monotonic,
    ) -> None:
        self.work_unit = work_unit
        self.directory = work_unit.descriptor.directory
        self.pattern = work_unit.descriptor.file_pattern
        self.store = store
        self.job_status = job_status
        self.decoder = decoder or get_decoder(work_unit.file_format)
        self.policy = policy or RetryPolicy()
        self.cursor = ReaderCursor()
        self.records_read = 0

        self._timer = BackoffTimer(
            self.policy, timeout, f"files in {self.directory}", sleep=sleep, clock=clock
        )
        self._stream: Optional[BinaryIO] = None
        self._records: Optional[Iterator[DecodedRecord]] = None
        self._file_drained = False
        self._file_incomplete = False
        self._end_of_stream = False
        self._closed = False
        self._failure: Optional[RemoteJobFailure] = None
        self._transport_error: Optional[Exception] = None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def next_record(self) -> Optional[ShardRecord]:
        """Return the next record, or None once the shard is exhausted.

        Blocks while the export is still producing files. Calling it again
        after the end of the stream keeps returning None.
        """
        if self._closed:
            raise ValueError("I/O operation on closed reader")
        if self._failure is not None:
            raise self._failure
        if self._end_of_stream:
            return None

        while True:
            try:
                record = self._read_current()
                if record is not None:
                    self._timer.reset()
                    self.records_read += 1
                    return record
                if self._advance_file():
                    continue
                if self.cursor.export_complete:
                    self._finish()
                    return None
                progressed = self._poll()
                self._transport_error = None
            except Exception as e:
                if isinstance(e, RemoteJobFailure) or not self.policy.should_retry(e):
                    self._close_stream()
                    raise
                logger.warning(f"Transient failure reading shard {self.directory}: {e}")
                self._close_stream()
                self._transport_error = e
                progressed = False

            if not progressed:
                self._wait()
            # re-check the current file from the cursor offset; it may have grown
            self._file_drained = False
            self._file_incomplete = False

    def __iter__(self) -> Iterator[ShardRecord]:
        while True:
            record = self.next_record()
            if record is None:
                return
            yield record

    @property
    def progress(self) -> float:
        if self._end_of_stream:
            return 1.0
        known = len(self.cursor.known_files)
        if not known:
            return 0.0
        return min(self.cursor.file_index / known, 1.0)

    @property
    def at_end(self) -> bool:
        return self._end_of_stream

    def close(self) -> None:
        """Release the open file, if any. Safe to call more than once."""
        self._close_stream()
        self._closed = True

    def __enter__(self) -> "DynamicShardReader":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _current_path(self) -> str:
        return join_path(self.directory, self.cursor.known_files[self.cursor.file_index])

    def _open_current(self) -> None:
        path = self._current_path()
        offset = self.cursor.file_offset
        if self.decoder.offset_unit == "bytes":
            self._stream = self.store.open(path, offset=offset)
        else:
            self._stream = self.store.open(path)
        logger.debug(f"Opened {path} at offset {offset} (final={self.cursor.export_complete})")
        self._records = self.decoder.decode(self._stream, offset, final=self.cursor.export_complete)

    def _close_stream(self) -> None:
        if self._records is not None:
            close = getattr(self._records, "close", None)
            if close is not None:
                close()
            self._records = None
        if self._stream is not None:
            self._stream.close()
            self._stream = None

    def _read_current(self) -> Optional[ShardRecord]:
        if self.cursor.file_index >= len(self.cursor.known_files) or self._file_drained:
            return None
        if self._records is None:
            self._open_current()
        assert self._records is not None

        try:
            decoded = next(self._records)
        except StopIteration:
            self._close_stream()
            self._file_drained = True
            return None
        except IncompleteRecordError as e:
            self._close_stream()
            if self.cursor.export_complete:
                raise ShardDataError(
                    "Shard file is truncated after the export finished",
                    file_path=self._current_path(),
                    offset=e.offset,
                    original_error=e,
                ) from e
            logger.debug(f"{self._current_path()} ends inside a record at {e.offset}; waiting for more data")
            self._file_drained = True
            self._file_incomplete = True
            return None
        except ShardDataError as e:
            self._close_stream()
            e.details.setdefault("file_path", self._current_path())
            raise

        self.cursor.file_offset = decoded.end_offset
        return ShardRecord(self.cursor.known_files[self.cursor.file_index], decoded.offset, decoded.value)

    def _advance_file(self) -> bool:
        """Move to the next known file once the current one is cleanly drained."""
        if not self._file_drained or self._file_incomplete:
            return False
        if self.cursor.file_index + 1 >= len(self.cursor.known_files):
            return False
        self.cursor.file_index += 1
        self.cursor.file_offset = 0
        self._file_drained = False
        logger.debug(f"Advancing to {self._current_path()}")
        return True

    def _poll(self) -> bool:
        """Check job status, then list the directory. Returns True on progress."""
        status = self.job_status()
        if status.failed:
            self._failure = RemoteJobFailure(
                "Export job for shard failed",
                job_id=self.work_unit.job_id,
                cause=status.error_message,
            )
            raise self._failure

        files = self.store.list(self.directory, self.pattern)
        known = set(self.cursor.known_files)
        new_files = [name for name in files if name not in known]
        if new_files:
            last = self.cursor.known_files[-1] if self.cursor.known_files else None
            if last is not None and new_files[0] < last:
                logger.warning(
                    f"File {new_files[0]} appeared in {self.directory} after {last}; "
                    "it will be read out of name order"
                )
            self.cursor.known_files.extend(new_files)
            logger.debug(f"Discovered {len(new_files)} new file(s) in {self.directory}")
            self._timer.reset()

        if status.succeeded:
            self.cursor.export_complete = True
            logger.debug(f"Export for {self.directory} complete with {len(self.cursor.known_files)} file(s)")
        return bool(new_files) or self.cursor.export_complete

    def _wait(self) -> None:
        try:
            self._timer.wait()
        except PollingTimeoutError:
            if self._transport_error is not None:
                raise RetryExhaustedError(
                    f"Could not poll shard {self.directory} before the deadline",
                    operation="poll shard",
                    last_error=self._transport_error,
                ) from self._transport_error
            raise

    def _finish(self) -> None:
        self._close_stream()
        self._end_of_stream = True
        logger.info(
            f"Finished shard {self.work_unit.descriptor.ordinal}: {self.records_read} record(s) "
            f"from {len(self.cursor.known_files)} file(s)"
        )
