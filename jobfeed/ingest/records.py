"""
Record types shared by the import pipeline stages.

A feed is decoded into DecodedRecord events, each valid event is
normalized into a NormalizedRecord or rejected as a RejectedRecord.
"""

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, FrozenSet, Mapping, Optional

from jobfeed.catalog.models import IDENTITY_FIELDS

MISSING_IDENTITY_REASON = "missing identity fields"


class _NoValue:
    """Marker for a tabular cell that was present but empty."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "NO_VALUE"

    def __bool__(self) -> bool:
        return False


NO_VALUE = _NoValue()


class FieldKind(str, Enum):
    """Primitive kind of a destination column."""
    TEXT = "text"
    NUMBER = "number"
    BOOLEAN = "boolean"
    JSON = "json"
    TIMESTAMP = "timestamp"


@dataclass(frozen=True)
class SchemaDescriptor:
    """Writable columns of the destination table and their kinds."""
    table: str
    columns: Mapping[str, FieldKind]

    def __post_init__(self):
        object.__setattr__(self, "columns", MappingProxyType(dict(self.columns)))

    def __contains__(self, column: object) -> bool:
        return column in self.columns

    def kind_of(self, column: str) -> Optional[FieldKind]:
        return self.columns.get(column)

    @property
    def json_columns(self) -> FrozenSet[str]:
        return frozenset(
            name for name, kind in self.columns.items() if kind == FieldKind.JSON)


@dataclass
class DecodedRecord:
    """One event from a stream decoder: a raw record or a decode error."""
    position: int
    fields: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    excerpt: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class NormalizedRecord:
    """A record restricted to writable columns with coerced values."""
    position: int
    values: Dict[str, Any]
    json_fields: FrozenSet[str] = field(default_factory=frozenset)

    @property
    def identity(self) -> Dict[str, Any]:
        return {name: self.values.get(name) for name in IDENTITY_FIELDS}


@dataclass
class RejectedRecord:
    """
    A record that never reaches storage.

    The summary only carries identity values so unrelated payload does
    not leak into reports or logs.
    """
    position: int
    reason: str
    summary: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"position": self.position, "reason": self.reason}
        if self.summary is not None:
            data["summary"] = self.summary
        return data
