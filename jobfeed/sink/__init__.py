"""
Record sinks for the import pipeline.

Provides the transactional upsert capability the import pipeline writes
through, backed by SQLAlchemy.
"""

from jobfeed.sink.interface import RecordSink, UpsertOutcome
from jobfeed.sink.sql import SqlAlchemySink, classify_error, describe_error

__all__ = [
    "RecordSink",
    "UpsertOutcome",
    "SqlAlchemySink",
    "classify_error",
    "describe_error",
]
