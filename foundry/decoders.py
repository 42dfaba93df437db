"""Per-file record decoders for exported shard files.

A decoder turns one open file into ``DecodedRecord`` items. Offsets are
positions inside the file in the decoder's ``offset_unit``: byte offsets for
line formats (the reader re-opens the file at the offset) and row indexes
for Parquet (the decoder skips rows itself).

When a file ends in the middle of a record the decoder raises
IncompleteRecordError unless ``final`` is set, in which case a trailing
line without a newline is still accepted if it parses.
"""

from __future__ import annotations

import io
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, BinaryIO, Dict, Iterator, List, Type

import pyarrow as pa
import pyarrow.parquet as pq

from foundry.exceptions import IncompleteRecordError, ShardDataError

logger = logging.getLogger(__name__)


class ExportFileFormat(str, Enum):
    """Supported export file formats."""

    JSON = "json"
    TEXT = "text"
    PARQUET = "parquet"

    @classmethod
    def choices(cls) -> List[str]:
        return [fmt.value for fmt in cls]

    @classmethod
    def normalize(cls, value: str) -> "ExportFileFormat":
        candidate = str(value).strip().lower()
        for fmt in cls:
            if fmt.value == candidate:
                return fmt
        raise ValueError(
            f"Invalid export file format '{value}'. Valid options: {', '.join(cls.choices())}"
        )


@dataclass(frozen=True)
class DecodedRecord:
    offset: int
    end_offset: int
    value: Any


class RecordDecoder(ABC):
    offset_unit = "bytes"

    @abstractmethod
    def decode(self, stream: BinaryIO, start_offset: int, final: bool) -> Iterator[DecodedRecord]:
        """Yield records from ``stream``.

        For byte-offset decoders the stream is already positioned at
        ``start_offset``.
        """


class LineDecoder(RecordDecoder):
    """Newline-delimited records; blank lines are skipped."""

    def parse(self, line: bytes) -> Any:
        return line.decode("utf-8")

    def decode(self, stream: BinaryIO, start_offset: int, final: bool) -> Iterator[DecodedRecord]:
        offset = start_offset
        for line in stream:
            end = offset + len(line)
            complete = line.endswith(b"\n")
            if not complete and not final:
                raise IncompleteRecordError("File ends inside a record", offset=offset)
            body = line.rstrip(b"\r\n")
            if body.strip():
                try:
                    value = self.parse(body)
                except ValueError as e:
                    if complete:
                        raise ShardDataError("Undecodable record", offset=offset, original_error=e) from e
                    raise IncompleteRecordError("Trailing record does not parse", offset=offset, original_error=e) from e
                yield DecodedRecord(offset, end, value)
            offset = end


class TextLineDecoder(LineDecoder):
    pass


class JsonLinesDecoder(LineDecoder):
    """Line-delimited JSON, one object per line."""

    def parse(self, line: bytes) -> Any:
        return json.loads(line)


class ParquetDecoder(RecordDecoder):
    """Parquet rows as dicts. A file whose footer is unreadable is incomplete."""

    offset_unit = "rows"

    def __init__(self, batch_size: int = 10_000) -> None:
        self.batch_size = batch_size

    def decode(self, stream: BinaryIO, start_offset: int, final: bool) -> Iterator[DecodedRecord]:
        data = stream.read()
        try:
            parquet_file = pq.ParquetFile(io.BytesIO(data))
        except (pa.ArrowInvalid, OSError) as e:
            if not final:
                raise IncompleteRecordError("Parquet footer not readable yet", offset=start_offset, original_error=e) from e
            raise ShardDataError("Unreadable Parquet file", offset=start_offset, original_error=e) from e

        row = 0
        for batch in parquet_file.iter_batches(batch_size=self.batch_size):
            if row + batch.num_rows <= start_offset:
                row += batch.num_rows
                continue
            for value in batch.to_pylist():
                if row >= start_offset:
                    yield DecodedRecord(row, row + 1, value)
                row += 1


DECODERS: Dict[ExportFileFormat, Type[RecordDecoder]] = {
    ExportFileFormat.JSON: JsonLinesDecoder,
    ExportFileFormat.TEXT: TextLineDecoder,
    ExportFileFormat.PARQUET: ParquetDecoder,
}


def get_decoder(file_format: str) -> RecordDecoder:
    return DECODERS[ExportFileFormat.normalize(file_format)]()
