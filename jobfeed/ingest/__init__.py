"""
Ingest pipeline for job feeds.

Decodes NDJSON and CSV/TSV feeds into records, normalizes them against
the target table's schema, and upserts them in bounded batches.
"""

from jobfeed.ingest.batcher import Batcher
from jobfeed.ingest.coercer import coerce
from jobfeed.ingest.coordinator import ImportCoordinator, ImportState
from jobfeed.ingest.decoder import iter_ndjson, iter_tabular
from jobfeed.ingest.exceptions import (
    BatchAbortedError,
    ContentTypeMismatchError,
    FeedError,
    FeedFetchError,
    MissingSourceError,
    PipelineError,
)
from jobfeed.ingest.normalizer import RecordNormalizer
from jobfeed.ingest.records import (
    DecodedRecord,
    FieldKind,
    NormalizedRecord,
    RejectedRecord,
    SchemaDescriptor,
)
from jobfeed.ingest.report import ImportReport
from jobfeed.ingest.upsert import BatchResult, UpsertExecutor

__all__ = [  # ruff: noqa: RUF022
    # Records
    "DecodedRecord",
    "FieldKind",
    "NormalizedRecord",
    "RejectedRecord",
    "SchemaDescriptor",
    # Decoding
    "iter_ndjson",
    "iter_tabular",
    # Normalization
    "coerce",
    "RecordNormalizer",
    # Batching and writes
    "Batcher",
    "BatchResult",
    "UpsertExecutor",
    # Coordination
    "ImportCoordinator",
    "ImportState",
    "ImportReport",
    # Errors
    "PipelineError",
    "FeedError",
    "FeedFetchError",
    "ContentTypeMismatchError",
    "MissingSourceError",
    "BatchAbortedError",
]
