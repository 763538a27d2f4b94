"""Canonical serialization and content hashing.

The canonical form is deterministic so a hash computed at capture can be
reproduced byte-for-byte at verification:

- mapping keys sorted recursively, compact separators, UTF-8
- datetimes normalized to UTC ISO-8601 (naive values are treated as UTC)
- Decimal rendered as its string form, enums as their value, UUIDs as str
- sets sorted, tuples rendered as lists, pydantic models dumped first
"""

from __future__ import annotations

import enum
import hashlib
import hmac
import json
import uuid
from datetime import UTC, date, datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel


def normalize(value: Any) -> Any:
    """Convert a value tree into JSON-native types in canonical form."""
    if isinstance(value, BaseModel):
        return normalize(value.model_dump(mode="python"))
    if isinstance(value, dict):
        return {str(key): normalize(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [normalize(item) for item in value]
    if isinstance(value, (set, frozenset)):
        return sorted(normalize(item) for item in value)
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        return value.astimezone(UTC).isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, enum.Enum):
        return normalize(value.value)
    if isinstance(value, uuid.UUID):
        return str(value)
    return value


def canonical_json(value: Any) -> str:
    """Return the canonical JSON text for a value tree."""
    return json.dumps(
        normalize(value),
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
    )


def content_hash(value: Any) -> str:
    """Return the 64-character SHA-256 hex digest of the canonical form."""
    return hashlib.sha256(canonical_json(value).encode("utf-8")).hexdigest()


def hashes_match(stored: str, computed: str) -> bool:
    """Constant-time comparison of two hex digests."""
    return hmac.compare_digest(stored, computed)
