"""
Schema introspection for the import target table.

Reflects the writable columns of the destination table and maps their
SQL types onto the primitive kinds understood by the field coercer. The
descriptor is cached per process and only refreshed by an explicit
invalidation.
"""

import logging
import threading
from typing import Dict, Optional

from sqlalchemy import inspect, types as sqltypes
from sqlalchemy.engine import Engine
from sqlalchemy.exc import NoSuchTableError, SQLAlchemyError

from jobfeed.ingest.records import FieldKind, SchemaDescriptor

logger = logging.getLogger(__name__)

# Columns maintained by the database itself, never written by imports
SERVER_MANAGED_COLUMNS = {"created_at"}

_schema_cache: Dict[str, SchemaDescriptor] = {}
_schema_lock = threading.Lock()


class SchemaUnavailableError(Exception):
    """Raised when the target table cannot be introspected."""
    pass


def kind_for_type(sql_type: sqltypes.TypeEngine) -> FieldKind:
    """
    Map a reflected SQL type onto a field kind.

    Args:
        sql_type: Column type from the inspector

    Returns:
        FieldKind; unknown types are treated as text
    """
    if isinstance(sql_type, (sqltypes.JSON, sqltypes.ARRAY)):
        return FieldKind.JSON
    if isinstance(sql_type, sqltypes.Boolean):
        return FieldKind.BOOLEAN
    if isinstance(sql_type, (sqltypes.Integer, sqltypes.Numeric, sqltypes.Float)):
        return FieldKind.NUMBER
    if isinstance(sql_type, (sqltypes.DateTime, sqltypes.Date, sqltypes.Time)):
        return FieldKind.TIMESTAMP
    return FieldKind.TEXT


def load_schema_descriptor(engine: Engine, table: str) -> SchemaDescriptor:
    """
    Reflect the writable columns of a table.

    Autoincrement primary keys and server-managed columns are excluded.

    Raises:
        SchemaUnavailableError: If the table does not exist or the
            database cannot be reached
    """
    try:
        inspector = inspect(engine)
        reflected = inspector.get_columns(table)
        primary_key = set(
            inspector.get_pk_constraint(table).get("constrained_columns") or [])
    except NoSuchTableError as e:
        raise SchemaUnavailableError(f"Table {table!r} does not exist") from e
    except SQLAlchemyError as e:
        raise SchemaUnavailableError(f"Failed to introspect {table!r}: {e}") from e

    if not reflected:
        raise SchemaUnavailableError(f"Table {table!r} does not exist")

    columns = {}
    for column in reflected:
        name = column["name"]
        if name in SERVER_MANAGED_COLUMNS:
            continue
        if name in primary_key and column.get("autoincrement", "auto") is not False:
            continue
        columns[name] = kind_for_type(column["type"])

    return SchemaDescriptor(table=table, columns=columns)


def get_schema_descriptor(engine: Engine, table: str) -> Optional[SchemaDescriptor]:
    """
    Get the cached descriptor for a table, loading it on first use.

    Returns:
        SchemaDescriptor, or None when the schema is unavailable; callers
        then normalize in pass-through mode
    """
    cache_key = f"{engine.url.render_as_string(hide_password=True)}#{table}"
    with _schema_lock:
        descriptor = _schema_cache.get(cache_key)
        if descriptor is not None:
            return descriptor

        try:
            descriptor = load_schema_descriptor(engine, table)
        except SchemaUnavailableError as e:
            logger.warning(f"Schema unavailable, using pass-through mode: {e}")
            return None

        _schema_cache[cache_key] = descriptor
        logger.info(
            f"Loaded schema for {table!r} with {len(descriptor.columns)} writable columns")
        return descriptor


def invalidate_schema_cache() -> int:
    """
    Drop every cached descriptor.

    Returns:
        Number of descriptors removed
    """
    with _schema_lock:
        removed = len(_schema_cache)
        _schema_cache.clear()
    logger.info(f"Schema cache invalidated ({removed} entries)")
    return removed
