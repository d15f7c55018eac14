"""
Integration tests for ImportCoordinator against a SQLite database.
"""

import io
import threading

import pytest

from conftest import job, ndjson
from jobfeed.ingest.coordinator import ImportCoordinator, ImportState
from jobfeed.ingest.decoder import iter_ndjson, iter_tabular
from jobfeed.ingest.exceptions import (
    FeedFetchError,
    ImportStateError,
    SinkUnavailableError,
)
from jobfeed.ingest.normalizer import RecordNormalizer
from jobfeed.ingest.records import DecodedRecord, MISSING_IDENTITY_REASON
from jobfeed.ingest.upsert import UpsertExecutor
from jobfeed.sink.sql import SqlAlchemySink


def make_coordinator(engine, schema, **kwargs):
    normalizer = RecordNormalizer(schema, preserve_payload=kwargs.pop("preserve_payload", False))
    executor = None
    if not kwargs.get("dry_run"):
        executor = UpsertExecutor(
            SqlAlchemySink(engine), "jobs", insert_only=kwargs.pop("insert_only", False))
    return ImportCoordinator(normalizer, executor, **kwargs)


class CountingSink(SqlAlchemySink):
    """SQLite sink recording the size of each committed batch."""

    def __init__(self, engine, fail_on_batch=None):
        super().__init__(engine)
        self.batches = []
        self.fail_on_batch = fail_on_batch
        self._current = 0

    def begin(self):
        if self.fail_on_batch is not None and len(self.batches) + 1 == self.fail_on_batch:
            raise SinkUnavailableError("connection refused")
        self._current = 0
        super().begin()

    def upsert(self, *args, **kwargs):
        self._current += 1
        return super().upsert(*args, **kwargs)

    def commit(self):
        super().commit()
        self.batches.append(self._current)


class TestImportCoordinator:
    """End-to-end runs through decode, normalize, batch and upsert."""

    def test_counts_balance(self, engine, schema, fetch_jobs):
        """read == written + rejected for a mixed feed."""
        data = ndjson(
            job(job_id="1", title="Engineer"),
            job(job_id="2", title="Designer"),
            "{broken",
            {"company_slug": "acme", "title": "No id"},
            job(job_id="3", title="Manager"),
        )

        report = make_coordinator(engine, schema, batch_size=2).run(
            iter_ndjson(io.BytesIO(data)))

        assert report.status == "done"
        assert report.read == 5
        assert report.written == 3
        assert report.rejected_count == 2
        assert report.balanced
        assert len(fetch_jobs()) == 3

    def test_rejections_carry_position_and_reason(self, engine, schema):
        data = ndjson(job(job_id="1"), "{broken", {"company_slug": "acme"})

        report = make_coordinator(engine, schema).run(iter_ndjson(io.BytesIO(data)))

        decode_error, missing = report.rejected
        assert decode_error.position == 2
        assert decode_error.reason.startswith("decode error: invalid JSON")
        assert decode_error.summary == {"excerpt": "{broken"}
        assert missing.position == 3
        assert missing.reason == MISSING_IDENTITY_REASON

    def test_reimport_is_idempotent(self, engine, schema, fetch_jobs):
        """Running the same feed twice leaves the same rows."""
        data = ndjson(job(job_id="1", title="Engineer"), job(job_id="2", title="Designer"))

        make_coordinator(engine, schema).run(iter_ndjson(io.BytesIO(data)))
        first = fetch_jobs()
        report = make_coordinator(engine, schema).run(iter_ndjson(io.BytesIO(data)))

        assert fetch_jobs() == first
        assert report.written == 2

    def test_duplicate_identity_within_feed_last_wins(self, engine, schema, fetch_jobs):
        data = ndjson(
            job(job_id="1", title="First", city="Berlin"),
            job(job_id="1", title="Second"),
        )

        report = make_coordinator(engine, schema, batch_size=5).run(
            iter_ndjson(io.BytesIO(data)))

        row = fetch_jobs()[("acme", "1")]
        assert report.written == 2
        assert row["title"] == "Second"
        assert row["city"] == "Berlin"

    def test_batches_bounded(self, engine, schema):
        """No transaction holds more than batch_size records."""
        sink = CountingSink(engine)
        coordinator = ImportCoordinator(
            RecordNormalizer(schema), UpsertExecutor(sink, "jobs"), batch_size=3)
        data = ndjson(*[job(job_id=str(i)) for i in range(8)])

        report = coordinator.run(iter_ndjson(io.BytesIO(data)))

        assert sink.batches == [3, 3, 2]
        assert report.written == 8

    def test_bad_row_does_not_poison_batch(self, engine, schema, fetch_jobs):
        data = ndjson(
            job(job_id="1"),
            job(job_id="2", salary_min=-1),
            job(job_id="3"),
        )

        report = make_coordinator(engine, schema, batch_size=3).run(
            iter_ndjson(io.BytesIO(data)))

        assert report.written == 2
        assert report.rejected[0].position == 2
        assert report.rejected[0].reason.startswith("write failed:")
        assert set(fetch_jobs()) == {("acme", "1"), ("acme", "3")}

    def test_dry_run_writes_nothing(self, engine, schema, fetch_jobs):
        data = ndjson(job(job_id="1"), job(job_id="2"), {"title": "no identity"})

        report = make_coordinator(engine, schema, dry_run=True).run(
            iter_ndjson(io.BytesIO(data)))

        assert report.to_dict()["wouldWrite"] == 2
        assert report.rejected_count == 1
        assert fetch_jobs() == {}

    def test_insert_only(self, engine, schema, fetch_jobs):
        make_coordinator(engine, schema).run(
            iter_ndjson(io.BytesIO(ndjson(job(job_id="1", title="Original")))))

        report = make_coordinator(engine, schema, insert_only=True).run(
            iter_ndjson(io.BytesIO(ndjson(job(job_id="1", title="Changed")))))

        assert report.unchanged == 1
        assert fetch_jobs()[("acme", "1")]["title"] == "Original"

    def test_csv_feed(self, engine, schema, fetch_jobs):
        data = (
            b"company_slug,internal_job_id,title,is_active,salary_min,departments\n"
            b"acme,1,Engineer,true,85000,Engineering|Platform\n"
            b"acme,,Missing id,false,,\n"
        )

        report = make_coordinator(engine, schema).run(iter_tabular(io.BytesIO(data)))

        assert report.written == 1
        assert report.rejected[0].position == 3
        row = fetch_jobs()[("acme", "1")]
        assert row["is_active"] is True
        assert row["salary_min"] == 85000
        assert row["departments"] == ["Engineering", "Platform"]

    def test_preserve_payload(self, engine, schema, fetch_jobs):
        data = ndjson(job(job_id="1", title="Engineer", team_size=12))

        make_coordinator(engine, schema, preserve_payload=True).run(
            iter_ndjson(io.BytesIO(data)))

        assert fetch_jobs()[("acme", "1")]["extra"] == {"team_size": 12}

    def test_sink_failure_aborts_with_partial_counts(self, engine, schema, fetch_jobs):
        """A dead sink aborts the run; earlier batches stay committed."""
        sink = CountingSink(engine, fail_on_batch=2)
        coordinator = ImportCoordinator(
            RecordNormalizer(schema), UpsertExecutor(sink, "jobs"), batch_size=2)
        data = ndjson(*[job(job_id=str(i)) for i in range(6)])

        report = coordinator.run(iter_ndjson(io.BytesIO(data)))

        assert report.status == "aborted"
        assert coordinator.state == ImportState.ABORTED
        assert report.read == 4
        assert report.written == 2
        assert report.rejected_count == 2
        assert report.rejected[0].reason.startswith("batch aborted:")
        assert "connection refused" in report.error
        assert len(fetch_jobs()) == 2

    def test_feed_failure_mid_stream(self, engine, schema, fetch_jobs):
        """Records read before a transfer failure are still flushed."""
        def broken_stream():
            yield DecodedRecord(position=1, fields=job(job_id="1"))
            raise FeedFetchError("Feed transfer failed: connection reset")

        report = make_coordinator(engine, schema, batch_size=10).run(broken_stream())

        assert report.status == "aborted"
        assert report.written == 1
        assert "connection reset" in report.error
        assert set(fetch_jobs()) == {("acme", "1")}

    def test_cancellation_stops_pulling(self, engine, schema, fetch_jobs):
        cancel = threading.Event()
        pulled = []

        def stream():
            for i in range(100):
                pulled.append(i)
                if i == 2:
                    cancel.set()
                yield DecodedRecord(position=i + 1, fields=job(job_id=str(i)))

        report = make_coordinator(engine, schema, batch_size=10, cancel_event=cancel).run(stream())

        assert report.cancelled
        assert report.status == "done"
        assert report.read == 3
        assert len(pulled) == 3
        assert len(fetch_jobs()) == 3

    def test_timeout_stops_pulling(self, engine, schema):
        ticks = iter(range(100))
        coordinator = make_coordinator(
            engine, schema, timeout=3, clock=lambda: next(ticks))
        data = ndjson(*[job(job_id=str(i)) for i in range(10)])

        report = coordinator.run(iter_ndjson(io.BytesIO(data)))

        assert report.cancelled
        assert report.read < 10
        assert report.balanced

    def test_truncated_line_in_large_feed(self, engine, schema, fetch_jobs):
        """One cut-off line in 1000 costs exactly one record."""
        lines = [job(job_id=str(i), title=f"Job {i}") for i in range(1000)]
        lines[500] = '{"company_slug": "acme", "internal_job_id": "500", "ti'

        report = make_coordinator(engine, schema, batch_size=100).run(
            iter_ndjson(io.BytesIO(ndjson(*lines))))

        assert (report.read, report.written, report.rejected_count) == (1000, 999, 1)
        assert report.rejected[0].position == 501
        assert len(fetch_jobs()) == 999

    def test_csv_without_identity_column(self, engine, schema, fetch_jobs):
        """Every row is rejected when the header lacks an identity column."""
        data = b"company_slug,title\nacme,Engineer\nacme,Designer\n"

        report = make_coordinator(engine, schema).run(iter_tabular(io.BytesIO(data)))

        assert report.read == 2
        assert report.rejected_count == 2
        assert report.written == 0
        assert fetch_jobs() == {}

    def test_unknown_column_without_schema(self, engine, fetch_jobs):
        """Without a schema, a field the table lacks costs only its record."""
        coordinator = ImportCoordinator(
            RecordNormalizer(None),
            UpsertExecutor(SqlAlchemySink(engine), "jobs"),
            batch_size=10,
        )
        data = ndjson(job(job_id="1", title="Engineer"), job(job_id="2", bogus="x"))

        report = coordinator.run(iter_ndjson(io.BytesIO(data)))

        assert report.status == "done"
        assert (report.read, report.written, report.rejected_count) == (2, 1, 1)
        assert report.rejected[0].position == 2
        assert "no column named bogus" in report.rejected[0].reason
        assert set(fetch_jobs()) == {("acme", "1")}

    def test_unparsable_lines_do_not_end_run(self, engine, schema, fetch_jobs):
        """A deeply nested line and an out-of-range number cost one record each."""
        data = (
            ndjson(job(job_id="1"))
            + b"[" * 100000 + b"\n"
            + ndjson(job(job_id="2", salary_min="9" * 30), job(job_id="3"))
        )

        report = make_coordinator(engine, schema).run(iter_ndjson(io.BytesIO(data)))

        assert report.status == "done"
        assert (report.read, report.written, report.rejected_count) == (4, 2, 2)
        assert [r.position for r in report.rejected] == [2, 3]
        assert set(fetch_jobs()) == {("acme", "1"), ("acme", "3")}

    def test_batch_size_does_not_change_report(self, engine, schema):
        data = ndjson(
            *[job(job_id=str(i), title="Engineer") for i in range(20)],
            "{broken",
            {"company_slug": "acme"},
            job(job_id="3", salary_max=-1),
        )

        reports = [
            make_coordinator(engine, schema, batch_size=size).run(
                iter_ndjson(io.BytesIO(data))).to_dict()
            for size in (1, 5000)
        ]

        assert reports[0] == reports[1]
        assert reports[0]["written"] == 20

    def test_empty_feed(self, engine, schema):
        report = make_coordinator(engine, schema).run(iter([]))

        assert report.status == "done"
        assert report.read == 0

    def test_coordinator_single_use(self, engine, schema):
        coordinator = make_coordinator(engine, schema)
        coordinator.run(iter([]))

        with pytest.raises(ImportStateError):
            coordinator.run(iter([]))

    def test_executor_required_unless_dry_run(self, schema):
        with pytest.raises(ValueError):
            ImportCoordinator(RecordNormalizer(schema), None)
