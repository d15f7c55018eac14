"""Import service wiring a feed through the pipeline and recording the run."""

import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional
from uuid import UUID

import httpx
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from jobfeed.catalog.models import IDENTITY_FIELDS, ImportRun
from jobfeed.catalog.schema import get_schema_descriptor
from jobfeed.common.logging_config import clear_import_id, set_import_id
from jobfeed.common.metrics import record_import_run
from jobfeed.config.settings import Settings, get_settings
from jobfeed.ingest.coordinator import ImportCoordinator
from jobfeed.ingest.normalizer import RecordNormalizer
from jobfeed.ingest.report import ImportReport
from jobfeed.ingest.source import FeedFormat, FeedStream, decode_feed, open_feed
from jobfeed.ingest.upsert import UpsertExecutor
from jobfeed.sink.sql import SqlAlchemySink

logger = logging.getLogger(__name__)


@dataclass
class ImportOptions:
    """Per-run options; unset values fall back to settings."""
    dry_run: Optional[bool] = None
    insert_only: Optional[bool] = None
    batch_size: Optional[int] = None
    feed_format: Optional[FeedFormat] = None


@dataclass
class ImportResult:
    import_id: str
    feed_format: FeedFormat
    report: ImportReport
    source: str = ""
    options: ImportOptions = field(default_factory=ImportOptions)

    @property
    def aborted(self) -> bool:
        return self.report.status == "aborted"

    def to_dict(self) -> dict:
        return {
            "ok": not self.aborted,
            "importId": self.import_id,
            "format": self.feed_format.value,
            **self.report.to_dict(),
        }


class ImportService:
    """
    Runs imports against one database engine.

    Each call builds a fresh coordinator, normalizer and sink, so runs
    share nothing but the engine's pool and the cached schema descriptor.
    """

    def __init__(
        self,
        engine: Engine,
        settings: Optional[Settings] = None,
        http_client: Optional[httpx.Client] = None,
    ):
        self.engine = engine
        self.settings = settings or get_settings()
        self.http_client = http_client
        self._sessions = sessionmaker(bind=engine, future=True)

    def import_url(
        self,
        url: str,
        options: Optional[ImportOptions] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> ImportResult:
        """
        Fetch a feed URL and import it.

        Raises:
            FeedFetchError: If the feed cannot be fetched
            ContentTypeMismatchError: If the feed is not CSV, TSV or NDJSON
        """
        with open_feed(
            url,
            timeout=self.settings.feed_fetch_timeout,
            retries=self.settings.feed_fetch_retries,
            client=self.http_client,
        ) as feed:
            return self.run(feed, options, cancel_event)

    def run(
        self,
        feed: FeedStream,
        options: Optional[ImportOptions] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> ImportResult:
        """
        Import an opened feed.

        Args:
            feed: Opened feed stream
            options: Per-run overrides
            cancel_event: Set from another thread to stop the run early

        Returns:
            ImportResult; an aborted run still carries exact partial counts
        """
        options = options or ImportOptions()
        settings = self.settings
        dry_run = settings.import_dry_run_default if options.dry_run is None else options.dry_run
        insert_only = settings.import_insert_only if options.insert_only is None else options.insert_only
        batch_size = options.batch_size or settings.import_batch_size

        import_id = set_import_id()
        started_at = datetime.utcnow()
        start = time.monotonic()
        try:
            feed_format, records = decode_feed(feed, options.feed_format)
            logger.info(
                f"Importing {feed_format.value} feed from {feed.name or 'upload'} "
                f"(dry_run={dry_run}, insert_only={insert_only}, batch_size={batch_size})")

            schema = get_schema_descriptor(self.engine, settings.import_table)
            normalizer = RecordNormalizer(
                schema,
                preserve_payload=settings.import_preserve_payload,
                payload_column=settings.import_payload_column,
            )

            executor = None
            if not dry_run:
                executor = UpsertExecutor(
                    SqlAlchemySink(self.engine),
                    settings.import_table,
                    key_columns=IDENTITY_FIELDS,
                    insert_only=insert_only,
                )

            coordinator = ImportCoordinator(
                normalizer,
                executor,
                batch_size=batch_size,
                dry_run=dry_run,
                reject_limit=settings.import_reject_report_limit,
                cancel_event=cancel_event,
                timeout=settings.import_timeout_seconds,
            )
            report = coordinator.run(records)

            record_import_run(feed_format.value, report.status, time.monotonic() - start)
            result = ImportResult(
                import_id=import_id,
                feed_format=feed_format,
                report=report,
                source=feed.name,
                options=ImportOptions(dry_run, insert_only, batch_size, feed_format),
            )
            self._record_run(result, started_at)
            return result
        finally:
            clear_import_id()

    def _record_run(self, result: ImportResult, started_at: datetime) -> None:
        report = result.report
        run = ImportRun(
            id=UUID(result.import_id),
            source=result.source or "upload",
            feed_format=result.feed_format.value,
            status=report.status,
            dry_run=report.dry_run,
            insert_only=bool(result.options.insert_only),
            cancelled=report.cancelled,
            read_count=report.read,
            written_count=report.written,
            rejected_count=report.rejected_count,
            rejected_sample=[record.to_dict() for record in report.rejected],
            error_message=report.error,
            started_at=started_at,
            finished_at=datetime.utcnow(),
        )
        # The report is already final; a failed audit write only loses history
        try:
            with self._sessions() as session:
                session.add(run)
                session.commit()
        except SQLAlchemyError as e:
            logger.warning(f"Failed to record import run {result.import_id}: {e}")
