"""
Batched upsert execution.

Applies one batch of normalized records in a single transaction while
isolating each record in its own savepoint, so one bad row is reported
instead of failing its neighbours.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Sequence

from jobfeed.ingest.exceptions import (
    BatchAbortedError,
    RecordWriteError,
    SinkUnavailableError,
)
from jobfeed.ingest.records import IDENTITY_FIELDS, NormalizedRecord, RejectedRecord
from jobfeed.sink.interface import RecordSink, UpsertOutcome

logger = logging.getLogger(__name__)


@dataclass
class BatchResult:
    """Outcome of applying one batch."""
    written: int = 0
    unchanged: int = 0  # Included in written
    errors: List[RejectedRecord] = field(default_factory=list)


class UpsertExecutor:
    """
    Writes batches through a record sink.

    Valid rows of a partially-invalid batch are committed and each failed
    row is reported individually. Only a failure of the sink itself aborts
    the batch.
    """

    def __init__(
        self,
        sink: RecordSink,
        table: str,
        key_columns: Sequence[str] = IDENTITY_FIELDS,
        insert_only: bool = False,
    ):
        self.sink = sink
        self.table = table
        self.key_columns = tuple(key_columns)
        self.insert_only = insert_only

    def apply(self, batch: Sequence[NormalizedRecord]) -> BatchResult:
        """
        Apply one batch atomically.

        Args:
            batch: Records that already passed identity validation

        Returns:
            BatchResult with counts and per-record errors

        Raises:
            BatchAbortedError: If the sink became unusable; nothing from
                the batch was committed
        """
        result = BatchResult()
        if not batch:
            return result

        try:
            self.sink.begin()
            for record in batch:
                try:
                    with self.sink.savepoint():
                        outcome = self.sink.upsert(
                            self.table,
                            self.key_columns,
                            record.values,
                            json_columns=record.json_fields,
                            insert_only=self.insert_only,
                        )
                except RecordWriteError as e:
                    logger.info(
                        f"Record at position {record.position} rejected by sink: {e}")
                    result.errors.append(RejectedRecord(
                        position=record.position,
                        reason=f"write failed: {e}",
                        summary=record.identity,
                    ))
                    continue

                result.written += 1
                if outcome == UpsertOutcome.UNCHANGED:
                    result.unchanged += 1

            self.sink.commit()
        except SinkUnavailableError as e:
            self._discard()
            raise BatchAbortedError(f"batch aborted: {e}", batch_size=len(batch)) from e

        return result

    def close(self) -> None:
        """Release the sink's connection."""
        self.sink.close()

    def _discard(self) -> None:
        try:
            self.sink.rollback()
        except SinkUnavailableError as e:
            logger.warning(f"Rollback after sink failure also failed: {e}")
