"""
SQLAlchemy-backed record sink.

Writes records with the dialect's native INSERT ... ON CONFLICT so the
database's unique constraint is the only serialization point between
concurrent imports. Supports PostgreSQL and SQLite.
"""

import logging
from contextlib import contextmanager
from typing import Any, Dict, FrozenSet, Iterator, Optional, Sequence

from sqlalchemy import JSON, column, table as table_clause
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.engine import Connection, Engine, RootTransaction
from sqlalchemy.exc import (
    DBAPIError,
    InterfaceError,
    OperationalError,
    SQLAlchemyError,
    StatementError,
)
from sqlalchemy.types import NullType

from jobfeed.ingest.exceptions import RecordWriteError, SinkUnavailableError
from jobfeed.sink.interface import RecordSink, UpsertOutcome

logger = logging.getLogger(__name__)

# Dialect-specific INSERT constructs supporting ON CONFLICT
_INSERT_CONSTRUCTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}

MAX_REASON_LENGTH = 200

# SQLite reports unknown columns as OperationalError
_SQLITE_STATEMENT_ERRORS = ("no such column", "has no column named")


def describe_error(error: BaseException) -> str:
    """First line of the driver's message, without SQL or parameters."""
    source = getattr(error, "orig", None) or error
    lines = str(source).strip().splitlines()
    message = lines[0] if lines else type(error).__name__
    return message[:MAX_REASON_LENGTH]


def _is_statement_error(error: OperationalError) -> bool:
    message = str(error.orig).lower()
    return any(pattern in message for pattern in _SQLITE_STATEMENT_ERRORS)


def classify_error(error: SQLAlchemyError) -> Exception:
    """
    Decide whether a failed statement poisons only its record or the sink.

    Integrity, data and other statement-level errors affect one record,
    as do SQLite's unknown-column errors. Other operational and interface
    errors, and anything that invalidated the connection, make the sink
    unusable.
    """
    reason = describe_error(error)
    if isinstance(error, DBAPIError):
        if error.connection_invalidated or isinstance(error, InterfaceError):
            return SinkUnavailableError(reason)
        if isinstance(error, OperationalError) and not _is_statement_error(error):
            return SinkUnavailableError(reason)
        return RecordWriteError(reason)
    if isinstance(error, StatementError):
        return RecordWriteError(reason)
    return SinkUnavailableError(reason)


class SqlAlchemySink(RecordSink):
    """
    Record sink over a SQLAlchemy engine.

    Holds one pooled connection for the lifetime of an import run and
    one transaction per batch. Records are isolated with SAVEPOINTs.
    """

    def __init__(self, engine: Engine):
        dialect = engine.dialect.name
        if dialect not in _INSERT_CONSTRUCTS:
            raise ValueError(f"Unsupported database dialect for upserts: {dialect}")

        self.engine = engine
        self._insert = _INSERT_CONSTRUCTS[dialect]
        self._connection: Optional[Connection] = None
        self._transaction: Optional[RootTransaction] = None

    def begin(self) -> None:
        if self._transaction is not None and self._transaction.is_active:
            raise RuntimeError("A transaction is already open")

        try:
            if self._connection is None or self._connection.closed:
                self._connection = self.engine.connect()
            self._transaction = self._connection.begin()
        except SQLAlchemyError as e:
            raise SinkUnavailableError(
                f"Cannot open transaction: {describe_error(e)}") from e

    @contextmanager
    def savepoint(self) -> Iterator[None]:
        connection = self._require_transaction()
        try:
            nested = connection.begin_nested()
        except SQLAlchemyError as e:
            raise SinkUnavailableError(
                f"Cannot create savepoint: {describe_error(e)}") from e

        try:
            yield
        except Exception:
            if nested.is_active:
                try:
                    nested.rollback()
                except SQLAlchemyError as e:
                    raise SinkUnavailableError(
                        f"Savepoint rollback failed: {describe_error(e)}") from e
            raise
        else:
            try:
                nested.commit()
            except SQLAlchemyError as e:
                raise SinkUnavailableError(
                    f"Savepoint release failed: {describe_error(e)}") from e

    def upsert(
        self,
        table: str,
        key_columns: Sequence[str],
        values: Dict[str, Any],
        json_columns: FrozenSet[str] = frozenset(),
        insert_only: bool = False,
    ) -> UpsertOutcome:
        connection = self._require_transaction()
        statement = self.build_statement(
            table, key_columns, values, json_columns, insert_only)

        try:
            result = connection.execute(statement)
        except SQLAlchemyError as e:
            raise classify_error(e) from e
        except OverflowError as e:
            # sqlite3 refuses integers wider than 64 bits while binding
            raise RecordWriteError(describe_error(e)) from e

        if result.rowcount == 0:
            return UpsertOutcome.UNCHANGED
        return UpsertOutcome.WRITTEN

    def build_statement(
        self,
        table: str,
        key_columns: Sequence[str],
        values: Dict[str, Any],
        json_columns: FrozenSet[str] = frozenset(),
        insert_only: bool = False,
    ):
        """
        Build the INSERT ... ON CONFLICT statement for one record.

        On conflict only non-identity columns carrying a value are
        updated, so columns the record omits (or leaves empty) keep
        their stored values.
        """
        columns = [
            column(name, JSON(none_as_null=True) if name in json_columns else NullType())
            for name in values
        ]
        target = table_clause(table, *columns)
        statement = self._insert(target).values(values)

        updates = {
            name: statement.excluded[name]
            for name, value in values.items()
            if name not in key_columns and value is not None
        }
        if insert_only or not updates:
            return statement.on_conflict_do_nothing(index_elements=list(key_columns))
        return statement.on_conflict_do_update(
            index_elements=list(key_columns), set_=updates)

    def commit(self) -> None:
        transaction, self._transaction = self._transaction, None
        if transaction is None:
            raise RuntimeError("No open transaction to commit")
        try:
            transaction.commit()
        except SQLAlchemyError as e:
            raise SinkUnavailableError(f"Commit failed: {describe_error(e)}") from e

    def rollback(self) -> None:
        transaction, self._transaction = self._transaction, None
        if transaction is None or not transaction.is_active:
            return
        try:
            transaction.rollback()
        except SQLAlchemyError as e:
            raise SinkUnavailableError(f"Rollback failed: {describe_error(e)}") from e

    def close(self) -> None:
        try:
            self.rollback()
        except SinkUnavailableError as e:
            logger.warning(f"Discarding transaction on close failed: {e}")
        if self._connection is not None:
            self._connection.close()
            self._connection = None

    def _require_transaction(self) -> Connection:
        if self._transaction is None or not self._transaction.is_active:
            raise RuntimeError("No open transaction; call begin() first")
        return self._connection
