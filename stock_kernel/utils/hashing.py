"""
Hashing for the audit chain.

An audit row stores its payload as JSON plus two SHA-256 digests: one of
the payload and one linking the row to its predecessor.  Validation
recomputes both from what the database returns, so a payload must hash
the same before and after a round trip through a JSON column.
"""

import hashlib
import json
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

GENESIS = "GENESIS"


def to_json_safe(value: Any) -> Any:
    """
    Reduce ``value`` to JSON primitives in a stable form.

    Amounts are written without trailing zeros (``Decimal("10.00")`` and
    ``Decimal("10")`` both become ``"10"``), status enums by value, ids and
    dates as strings.  Sets become sorted lists.

    Raises:
        TypeError: for values with no stable JSON form.
    """
    if isinstance(value, Enum):
        return to_json_safe(value.value)
    if value is None or isinstance(value, (str, bool, int, float)):
        return value
    if isinstance(value, Decimal):
        return format(value.normalize(), "f")
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, dict):
        return {str(k): to_json_safe(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_json_safe(v) for v in value]
    if isinstance(value, (set, frozenset)):
        return sorted(to_json_safe(v) for v in value)
    raise TypeError(f"Object of type {type(value).__name__} has no stable JSON form")


def canonical_json(value: Any) -> str:
    """Sorted keys, no whitespace."""
    return json.dumps(
        to_json_safe(value), sort_keys=True, separators=(",", ":"), ensure_ascii=False
    )


def _sha256(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def hash_payload(payload: dict[str, Any]) -> str:
    return _sha256(canonical_json(payload))


def hash_audit_event(
    entity_type: str,
    entity_id: str,
    action: str,
    payload_hash: str,
    prev_hash: str | None,
) -> str:
    """
    Chain hash of one audit row.

    Covers the row's identity, its action, its payload digest and the
    previous row's hash (``GENESIS`` for the first row), so editing or
    removing any row breaks every hash after it.
    """
    return _sha256(
        "|".join((entity_type, str(entity_id), action, payload_hash, prev_hash or GENESIS))
    )
