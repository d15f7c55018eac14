"""
Record normalization against the target schema.

Maps one raw feed record onto the columns the sink understands, coercing
each value to its column kind and validating the identity fields.
"""

import logging
from typing import Any, Dict, Optional, Union

from jobfeed.ingest.coercer import coerce, is_empty
from jobfeed.ingest.records import (
    FieldKind,
    IDENTITY_FIELDS,
    MISSING_IDENTITY_REASON,
    NO_VALUE,
    NormalizedRecord,
    RejectedRecord,
    SchemaDescriptor,
)

logger = logging.getLogger(__name__)

NormalizeResult = Union[NormalizedRecord, RejectedRecord]


def _verbatim(value: Any) -> Any:
    return None if value is NO_VALUE else value


class RecordNormalizer:
    """
    Normalizes raw records for one import run.

    With a schema descriptor, output keys are restricted to the descriptor.
    Unknown fields are dropped, or with preserve_payload kept verbatim under
    a single catch-all JSON column. Without a descriptor every field passes
    through, as JSON when structured and as text otherwise.
    """

    def __init__(
        self,
        schema: Optional[SchemaDescriptor],
        preserve_payload: bool = False,
        payload_column: str = "extra",
    ):
        self.schema = schema
        self.payload_column = payload_column
        self.preserve_payload = preserve_payload

        if schema is not None and preserve_payload and payload_column not in schema:
            logger.warning(
                f"Payload column {payload_column!r} not in {schema.table!r}; "
                "unknown fields will be dropped")
            self.preserve_payload = False

    @property
    def pass_through(self) -> bool:
        return self.schema is None

    def normalize(self, raw: Dict[str, Any], position: int) -> NormalizeResult:
        """
        Normalize one raw record.

        Args:
            raw: Decoded record fields
            position: 1-based position of the record in the stream

        Returns:
            NormalizedRecord, or RejectedRecord when an identity field is
            missing or blank
        """
        identity = self._identity(raw)
        if any(value is None for value in identity.values()):
            return RejectedRecord(
                position=position,
                reason=MISSING_IDENTITY_REASON,
                summary=identity,
            )

        if self.schema is None:
            values, json_fields = self._pass_through(raw)
        else:
            values, json_fields = self._restrict(raw)

        values.update(identity)
        return NormalizedRecord(
            position=position,
            values=values,
            json_fields=frozenset(json_fields),
        )

    def _identity(self, raw: Dict[str, Any]) -> Dict[str, Optional[str]]:
        identity = {}
        for name in IDENTITY_FIELDS:
            value, _ = coerce(FieldKind.TEXT, raw.get(name))
            if value is not None:
                value = value.strip() or None
            identity[name] = value
        return identity

    def _restrict(self, raw: Dict[str, Any]):
        values: Dict[str, Any] = {}
        json_fields = set()
        unknown: Dict[str, Any] = {}

        for name, raw_value in raw.items():
            if name in IDENTITY_FIELDS:
                continue

            kind = self.schema.kind_of(name)
            if kind is None:
                if self.preserve_payload:
                    unknown[name] = _verbatim(raw_value)
                continue
            if self.preserve_payload and name == self.payload_column:
                continue

            value, note = coerce(kind, raw_value)
            if note:
                logger.debug(f"Field {name!r} degraded to null: {note}")
            values[name] = value
            if kind == FieldKind.JSON:
                json_fields.add(name)

        if self.preserve_payload:
            payload = self._payload(raw.get(self.payload_column), unknown)
            if payload is not None:
                values[self.payload_column] = payload
                json_fields.add(self.payload_column)

        return values, json_fields

    def _payload(self, incoming: Any, unknown: Dict[str, Any]) -> Optional[Any]:
        base, _ = coerce(FieldKind.JSON, incoming)
        if not unknown:
            return base
        if isinstance(base, dict):
            return {**base, **unknown}
        if base is not None:
            # Keep a non-object payload value alongside the unknown fields
            return {**unknown, self.payload_column: base}
        return unknown

    def _pass_through(self, raw: Dict[str, Any]):
        values: Dict[str, Any] = {}
        json_fields = set()

        for name, raw_value in raw.items():
            if name in IDENTITY_FIELDS:
                continue
            if is_empty(raw_value):
                values[name] = None
            elif isinstance(raw_value, (dict, list)):
                values[name] = raw_value
                json_fields.add(name)
            else:
                values[name], _ = coerce(FieldKind.TEXT, raw_value)

        return values, json_fields
