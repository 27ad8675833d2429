"""
Canonical JSON and the audit hash chain.

Audit payloads are snapshots of periods, locks, settlements and override
entries.  They are stored as JSON and hashed from a canonical rendering, so
the hash recomputed from the stored column always equals the hash computed
at write time:

- keys sorted, no whitespace
- Decimal amounts normalized (``250``, ``250.0`` and ``250.00`` agree)
- enums by value; dates, datetimes and UUIDs as strings

Each LedgerAuditEvent hash covers its identity fields, its payload hash and
the previous event's hash.  The first event links to ``GENESIS_LINK``.
"""

import hashlib
import json
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

GENESIS_LINK = "GENESIS"


def _encode(obj: Any) -> Any:
    if isinstance(obj, Decimal):
        return str(obj.normalize())
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, (datetime, date, UUID)):
        return obj.isoformat() if not isinstance(obj, UUID) else str(obj)
    raise TypeError(f"Cannot store {type(obj).__name__} in an audit payload")


def canonicalize_json(data: Any) -> str:
    return json.dumps(data, sort_keys=True, separators=(",", ":"), default=_encode)


def to_json_safe(data: Any) -> Any:
    """The value exactly as a JSON column will hand it back."""
    return json.loads(canonicalize_json(data))


def _sha256(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def hash_payload(payload: dict) -> str:
    """SHA-256 (hex) of the canonical payload."""
    return _sha256(canonicalize_json(payload))


def hash_audit_event(
    entity_type: str,
    entity_id: str,
    action: str,
    payload_hash: str,
    prev_hash: str | None,
) -> str:
    """
    Chain hash of one audit event.

    Changing any input, including the predecessor's hash, changes the result;
    that is what lets validate_chain() detect an edited or removed event.
    """
    link = prev_hash or GENESIS_LINK
    return _sha256("|".join([entity_type, str(entity_id), action, payload_hash, link]))
