"""
Import coordinator.

Drives one import run: pulls decoded records, normalizes them, batches
the valid ones and flushes each full batch through the upsert executor,
keeping exact running totals in an ImportReport.

The run is a single sequential pull loop. Records are only pulled from
the decoder between flushes, so a slow sink pauses consumption of the
source and memory stays bounded to one batch regardless of feed length.
"""

import logging
import threading
import time
from enum import Enum
from typing import Callable, Iterable, Iterator, Optional

from jobfeed.common.logging_config import PerformanceTracker, get_structured_logger
from jobfeed.common.metrics import record_outcomes, track_flush_time
from jobfeed.config.settings import DEFAULT_BATCH_SIZE
from jobfeed.ingest.batcher import Batch, Batcher
from jobfeed.ingest.exceptions import BatchAbortedError, FeedError, ImportStateError
from jobfeed.ingest.normalizer import RecordNormalizer
from jobfeed.ingest.records import DecodedRecord, RejectedRecord
from jobfeed.ingest.report import DEFAULT_REJECT_LIMIT, ImportReport
from jobfeed.ingest.upsert import BatchResult, UpsertExecutor

logger = logging.getLogger(__name__)
log = get_structured_logger(__name__)


class ImportState(str, Enum):
    """Lifecycle states of an import run."""
    IDLE = "idle"
    STREAMING = "streaming"
    FLUSHING = "flushing"
    DONE = "done"
    ABORTED = "aborted"


_TRANSITIONS = {
    ImportState.IDLE: {ImportState.STREAMING},
    ImportState.STREAMING: {ImportState.FLUSHING, ImportState.DONE, ImportState.ABORTED},
    ImportState.FLUSHING: {ImportState.STREAMING, ImportState.DONE, ImportState.ABORTED},
    ImportState.DONE: set(),
    ImportState.ABORTED: set(),
}


class ImportCoordinator:
    """
    Runs the decode → normalize → batch → upsert pipeline once.

    A coordinator is bound to a single stream; start a new run with a new
    instance. In dry-run mode no executor is needed and flushed batches are
    only counted as would-write.
    """

    def __init__(
        self,
        normalizer: RecordNormalizer,
        executor: Optional[UpsertExecutor] = None,
        batch_size: int = DEFAULT_BATCH_SIZE,
        dry_run: bool = False,
        reject_limit: int = DEFAULT_REJECT_LIMIT,
        cancel_event: Optional[threading.Event] = None,
        timeout: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize coordinator.

        Args:
            normalizer: Normalizer bound to this run's schema
            executor: Upsert executor; required unless dry_run
            batch_size: Records per transaction
            dry_run: Validate and batch without touching the sink
            reject_limit: Rejected records kept in the report sample
            cancel_event: Set to stop pulling from the stream
            timeout: Seconds after run() starts before pulling stops
            clock: Monotonic clock, replaceable in tests
        """
        if executor is None and not dry_run:
            raise ValueError("An upsert executor is required unless dry_run is set")

        self.normalizer = normalizer
        self.executor = None if dry_run else executor
        self.batcher = Batcher(batch_size)
        self.dry_run = dry_run
        self.cancel_event = cancel_event
        self.timeout = timeout
        self.clock = clock
        self.report = ImportReport(reject_limit=reject_limit, dry_run=dry_run)
        self.state = ImportState.IDLE
        self._deadline: Optional[float] = None

    def run(self, records: Iterable[DecodedRecord]) -> ImportReport:
        """
        Consume the stream and return the final report.

        Per-record problems (decode, validation, write) are accumulated in
        the report. A sink failure ends the run in the aborted state with
        counts exact up to that point.

        Raises:
            ImportStateError: If this coordinator already ran
        """
        if self.state != ImportState.IDLE:
            raise ImportStateError(f"Coordinator already used (state: {self.state.value})")

        if self.timeout is not None:
            self._deadline = self.clock() + self.timeout

        self._transition(ImportState.STREAMING)
        log.info("Import started", dry_run=self.dry_run,
                 batch_size=self.batcher.max_size,
                 pass_through=self.normalizer.pass_through)

        try:
            self._stream(records)
            if self.state != ImportState.ABORTED:
                self._flush(self.batcher.drain(), last=True)
        finally:
            if self.executor is not None:
                self.executor.close()

        if self.state != ImportState.ABORTED:
            self._transition(ImportState.DONE)
        self.report.status = self.state.value

        if self.dry_run:
            record_outcomes(would_write=self.report.written,
                            rejected=self.report.rejected_count)
        else:
            record_outcomes(written=self.report.written,
                            rejected=self.report.rejected_count)

        log.info("Import finished", status=self.report.status,
                 read=self.report.read, written=self.report.written,
                 rejected=self.report.rejected_count,
                 cancelled=self.report.cancelled)
        return self.report

    def _stream(self, records: Iterable[DecodedRecord]) -> None:
        try:
            for event in self._pull(records):
                self._consume(event)
                if self.state == ImportState.ABORTED:
                    return
        except FeedError as e:
            # Source failed mid-stream; already-buffered records still flush
            logger.error(f"Feed stream failed after {self.report.read} records: {e}")
            self._flush(self.batcher.drain(), last=True)
            self.report.error = f"feed stream failed: {e}"
            if self.state != ImportState.ABORTED:
                self._transition(ImportState.ABORTED)

    def _pull(self, records: Iterable[DecodedRecord]) -> Iterator[DecodedRecord]:
        iterator = iter(records)
        while True:
            if self._should_stop():
                self.report.cancelled = True
                log.warning("Import cancelled; stopped reading stream",
                            read=self.report.read)
                return
            try:
                event = next(iterator)
            except StopIteration:
                return
            yield event

    def _should_stop(self) -> bool:
        if self.cancel_event is not None and self.cancel_event.is_set():
            return True
        return self._deadline is not None and self.clock() >= self._deadline

    def _consume(self, event: DecodedRecord) -> None:
        self.report.read += 1

        if not event.ok:
            summary = {"excerpt": event.excerpt} if event.excerpt else None
            self.report.reject(RejectedRecord(
                position=event.position,
                reason=f"decode error: {event.error}",
                summary=summary,
            ))
            return

        result = self.normalizer.normalize(event.fields, event.position)
        if isinstance(result, RejectedRecord):
            logger.debug(
                f"Record at position {result.position} rejected: {result.reason} "
                f"{result.summary}")
            self.report.reject(result)
            return

        batch = self.batcher.add(result)
        if batch:
            self._flush(batch, last=False)

    def _flush(self, batch: Optional[Batch], last: bool) -> None:
        if not batch:
            return

        self._transition(ImportState.FLUSHING)

        if self.dry_run:
            self.report.written += len(batch)
        else:
            try:
                with PerformanceTracker("batch_flush", logger, batch_size=len(batch)):
                    result = self._apply(batch)
            except BatchAbortedError as e:
                log.error("Batch aborted", batch_size=e.batch_size, error=str(e))
                self.report.reject_all(
                    RejectedRecord(position=record.position, reason=str(e),
                                   summary=record.identity)
                    for record in batch
                )
                self.report.error = str(e)
                self._transition(ImportState.ABORTED)
                return

            self.report.written += result.written
            self.report.unchanged += result.unchanged
            self.report.reject_all(result.errors)

        if not last:
            self._transition(ImportState.STREAMING)

    @track_flush_time
    def _apply(self, batch: Batch) -> BatchResult:
        return self.executor.apply(batch)

    def _transition(self, state: ImportState) -> None:
        if state not in _TRANSITIONS[self.state]:
            raise ImportStateError(
                f"Invalid transition {self.state.value} -> {state.value}")
        self.state = state
