"""
Record sink interface.

Defines the transactional write capability the upsert executor relies on.
A sink instance belongs to exactly one import run; runs never share
connection or transaction state.
"""

from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, ContextManager, Dict, FrozenSet, Sequence


class UpsertOutcome(str, Enum):
    """Result of writing one record."""
    WRITTEN = "written"  # Inserted, or existing row updated
    UNCHANGED = "unchanged"  # Conflict resolved as a no-op


class RecordSink(ABC):
    """
    Abstract base class for record sinks.

    Implementations raise RecordWriteError when a single statement fails
    and SinkUnavailableError when the sink cannot continue at all.
    """

    @abstractmethod
    def begin(self) -> None:
        """Open a transaction for one batch."""
        pass

    @abstractmethod
    def savepoint(self) -> ContextManager[None]:
        """
        Isolate one record inside the open transaction.

        The savepoint is released when the block succeeds and rolled back
        when it raises; the exception propagates either way.
        """
        pass

    @abstractmethod
    def upsert(
        self,
        table: str,
        key_columns: Sequence[str],
        values: Dict[str, Any],
        json_columns: FrozenSet[str] = frozenset(),
        insert_only: bool = False,
    ) -> UpsertOutcome:
        """
        Insert a record, or merge it into the row sharing its key.

        Args:
            table: Destination table name
            key_columns: Columns forming the conflict key
            values: Column values; None values never overwrite stored ones
            json_columns: Columns whose values are JSON documents
            insert_only: Treat a key conflict as a no-op

        Returns:
            UpsertOutcome

        Raises:
            RecordWriteError: If this record's values are rejected
            SinkUnavailableError: If the sink can no longer execute statements
        """
        pass

    @abstractmethod
    def commit(self) -> None:
        """Commit the open transaction."""
        pass

    @abstractmethod
    def rollback(self) -> None:
        """Roll back the open transaction."""
        pass

    @abstractmethod
    def close(self) -> None:
        """Release the underlying connection."""
        pass
