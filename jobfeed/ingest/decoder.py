"""
Stream decoders for job feeds.

Turn a byte stream into a lazy sequence of DecodedRecord events. Both
decoders read incrementally through a TextIOWrapper, so only the current
line (or CSV row) is held in memory, and the caller controls the pace at
which bytes are pulled from the source.
"""

import csv
import io
import json
from typing import Any, BinaryIO, Dict, Iterable, Iterator, List, Optional, Union

from jobfeed.ingest.records import DecodedRecord, NO_VALUE

# Longest excerpt of a bad line carried in a decode error
EXCERPT_LENGTH = 80

READ_CHUNK_SIZE = 64 * 1024

ByteSource = Union[BinaryIO, Iterable[bytes]]


class ChunkStream(io.RawIOBase):
    """Read-only raw stream over an iterator of byte chunks."""

    def __init__(self, chunks: Iterable[bytes]):
        self._chunks = iter(chunks)
        self._pending = b""

    def readable(self) -> bool:
        return True

    def readinto(self, buffer) -> int:
        while not self._pending:
            try:
                self._pending = next(self._chunks)
            except StopIteration:
                return 0
        size = min(len(buffer), len(self._pending))
        buffer[:size] = self._pending[:size]
        self._pending = self._pending[size:]
        return size


def open_text(source: ByteSource, newline: Optional[str] = None) -> io.TextIOWrapper:
    """
    Wrap a byte source in an incremental UTF-8 text reader.

    A leading byte-order mark is stripped and undecodable bytes are
    replaced rather than failing the stream.

    Args:
        source: Binary file-like object or iterable of byte chunks
        newline: Passed to TextIOWrapper; None enables universal newlines
    """
    if isinstance(source, io.BufferedIOBase):
        raw = source
    elif isinstance(source, io.RawIOBase):
        raw = io.BufferedReader(source)
    elif hasattr(source, "read"):
        raw = io.BufferedReader(
            ChunkStream(iter(lambda: source.read(READ_CHUNK_SIZE), b"")))
    else:
        raw = io.BufferedReader(ChunkStream(source))
    return io.TextIOWrapper(raw, encoding="utf-8-sig", errors="replace", newline=newline)


def excerpt(text: str, limit: int = EXCERPT_LENGTH) -> str:
    """Truncate a line for inclusion in an error report."""
    text = text.strip()
    if len(text) <= limit:
        return text
    return text[: limit - 3] + "..."


def iter_ndjson(source: ByteSource) -> Iterator[DecodedRecord]:
    """
    Decode newline-delimited JSON.

    Lines may end in CRLF, CR or LF. Blank lines are skipped but still
    advance the position, so error positions match the source line numbers.

    Yields:
        DecodedRecord with the parsed object, or a decode error with the
        line position and an excerpt
    """
    reader = open_text(source, newline=None)
    for position, line in enumerate(reader, start=1):
        if not line.strip():
            continue

        # Huge integer literals raise ValueError, deep nesting RecursionError
        try:
            value = json.loads(line)
        except (ValueError, RecursionError) as e:
            yield DecodedRecord(
                position=position,
                error=f"invalid JSON: {getattr(e, 'msg', e)}",
                excerpt=excerpt(line),
            )
            continue

        if not isinstance(value, dict):
            yield DecodedRecord(
                position=position,
                error=f"expected a JSON object, got {type(value).__name__}",
                excerpt=excerpt(line),
            )
            continue

        yield DecodedRecord(position=position, fields=value)


def _clean_cell(value: str) -> Any:
    value = value.strip()
    return value if value else NO_VALUE


def _is_blank_row(row: List[str]) -> bool:
    return not row or all(not cell.strip() for cell in row)


def iter_tabular(source: ByteSource, delimiter: str = ",") -> Iterator[DecodedRecord]:
    """
    Decode delimited text with a header row.

    The first non-empty row defines the field names. Short rows are padded
    with NO_VALUE and long rows are truncated to the header width. Cell
    values are trimmed and empty cells become NO_VALUE.

    Positions are physical row numbers, with the header counted as row 1.

    Yields:
        DecodedRecord per data row, or a decode error for a row the CSV
        parser cannot read
    """
    reader = csv.reader(open_text(source, newline=""), delimiter=delimiter)
    header: Optional[List[str]] = None
    position = 0

    while True:
        try:
            row = next(reader)
        except StopIteration:
            return
        except csv.Error as e:
            position += 1
            yield DecodedRecord(position=position, error=f"unreadable row: {e}")
            continue

        position += 1
        if _is_blank_row(row):
            continue

        if header is None:
            header = [name.strip() for name in row]
            continue

        cells = row[: len(header)]
        cells += [""] * (len(header) - len(cells))
        fields: Dict[str, Any] = {
            name: _clean_cell(cell) for name, cell in zip(header, cells)
        }
        yield DecodedRecord(position=position, fields=fields)
