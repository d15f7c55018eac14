"""Fixed-size batching of normalized records."""

from typing import List, Optional

from jobfeed.config.settings import MAX_BATCH_SIZE, MIN_BATCH_SIZE
from jobfeed.ingest.records import NormalizedRecord

Batch = List[NormalizedRecord]


class Batcher:
    """
    Accumulates records into groups of at most max_size.

    Only the currently-filling buffer is held; a full batch is handed to
    the caller as soon as it is complete.
    """

    def __init__(self, max_size: int):
        if not MIN_BATCH_SIZE <= max_size <= MAX_BATCH_SIZE:
            raise ValueError(
                f"Batch size must be between {MIN_BATCH_SIZE} and {MAX_BATCH_SIZE}, "
                f"got {max_size}")
        self.max_size = max_size
        self._buffer: Batch = []
        self._drained = False

    def __len__(self) -> int:
        return len(self._buffer)

    def add(self, record: NormalizedRecord) -> Optional[Batch]:
        """Buffer a record; return the full batch once max_size is reached."""
        if self._drained:
            raise RuntimeError("Batcher already drained")

        self._buffer.append(record)
        if len(self._buffer) < self.max_size:
            return None

        batch, self._buffer = self._buffer, []
        return batch

    def drain(self) -> Optional[Batch]:
        """Return the remaining partial batch at end of stream."""
        if self._drained:
            raise RuntimeError("Batcher already drained")

        self._drained = True
        batch, self._buffer = self._buffer, []
        return batch or None
