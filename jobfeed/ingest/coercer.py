"""
Field coercion for loosely-typed feed values.

Every coercion is lossy-safe: a value that cannot be converted degrades
to None (with a short note) instead of raising, so a bad field never
costs the whole record.
"""

import json
import math
import re
from typing import Any, Optional, Tuple

from jobfeed.ingest.records import FieldKind, NO_VALUE

TRUE_VALUES = {"true", "t", "1", "yes", "y"}
FALSE_VALUES = {"false", "f", "0", "no", "n"}

# Separator for multi-value cells such as "Engineering|Platform"
MULTI_VALUE_DELIMITER = "|"

_INTEGER_RE = re.compile(r"^[+-]?\d+$")

CoercionResult = Tuple[Any, Optional[str]]


def is_empty(raw: Any) -> bool:
    """True for the values that coerce to None under every kind."""
    return raw is None or raw is NO_VALUE or (isinstance(raw, str) and raw == "")


def coerce(kind: FieldKind, raw: Any) -> CoercionResult:
    """
    Convert a raw feed value into the primitive required by a column.

    Args:
        kind: Destination column kind
        raw: Value as decoded from the feed

    Returns:
        Tuple of (typed value or None, note describing a degraded value)
    """
    if is_empty(raw):
        return None, None

    coercer = _COERCERS.get(FieldKind(kind), _coerce_text)
    return coercer(raw)


def _coerce_text(raw: Any) -> CoercionResult:
    if isinstance(raw, bool):
        return ("true" if raw else "false"), None
    if isinstance(raw, (dict, list)):
        return json.dumps(raw, separators=(",", ":"), ensure_ascii=False), None
    return str(raw), None


def _coerce_number(raw: Any) -> CoercionResult:
    if isinstance(raw, bool):
        return int(raw), None
    if isinstance(raw, (int, float)):
        value = raw
    elif isinstance(raw, str):
        text = raw.strip()
        try:
            if _INTEGER_RE.match(text):
                return int(text), None
            value = float(text)
        except ValueError:
            return None, f"unparsable number: {text[:40]!r}"
    else:
        return None, f"not a number: {type(raw).__name__}"

    if isinstance(value, float) and not math.isfinite(value):
        return None, "non-finite number"
    return value, None


def _coerce_boolean(raw: Any) -> CoercionResult:
    if isinstance(raw, bool):
        return raw, None
    if isinstance(raw, (dict, list)):
        return None, "not a boolean"
    if isinstance(raw, float) and raw.is_integer():
        raw = int(raw)

    text = str(raw).strip().lower()
    if text in TRUE_VALUES:
        return True, None
    if text in FALSE_VALUES:
        return False, None
    return None, f"unrecognized boolean: {text[:40]!r}"


def _coerce_json(raw: Any) -> CoercionResult:
    if not isinstance(raw, str):
        return raw, None

    text = raw.strip()
    if text.startswith(("{", "[")):
        try:
            return json.loads(text), None
        except (ValueError, RecursionError):
            return raw, "invalid JSON kept as text"

    if MULTI_VALUE_DELIMITER in text:
        parts = [part.strip() for part in text.split(MULTI_VALUE_DELIMITER)]
        return [part for part in parts if part], None

    return raw, None


def _coerce_timestamp(raw: Any) -> CoercionResult:
    # Final parsing is left to the database cast
    if isinstance(raw, str):
        return raw, None
    if isinstance(raw, (dict, list, bool)):
        return None, "not a timestamp"
    return str(raw), None


_COERCERS = {
    FieldKind.TEXT: _coerce_text,
    FieldKind.NUMBER: _coerce_number,
    FieldKind.BOOLEAN: _coerce_boolean,
    FieldKind.JSON: _coerce_json,
    FieldKind.TIMESTAMP: _coerce_timestamp,
}
