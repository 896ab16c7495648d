"""Canonical ID and timestamp factories for the platform.

All modules import from here instead of defining local _uuid()/_now() copies.

ID Categories
-------------
1. Aggregate and event IDs: UUID v4 (``uuid.UUID`` in the domain, ``str``
   on the wire and inside cache keys).
2. Content-derived IDs: SHA256[:N] deterministic hashes (cache key
   fingerprints for arbitrary query parameters).

Timestamp Rule
--------------
All timestamps are ``datetime`` with ``tzinfo=timezone.utc``, never naive.
"""

from __future__ import annotations

import hashlib
import json
import uuid
from datetime import datetime, timezone
from typing import Any


def new_id() -> uuid.UUID:
    """Generate a new UUID v4.  Use for all aggregate and event IDs."""
    return uuid.uuid4()


def utc_now() -> datetime:
    """Return the current UTC time as a timezone-aware datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes read back from the database."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def payload_hash(payload: dict[str, Any], *, length: int = 16) -> str:
    """Generate a deterministic hash from a JSON-serializable dict.

    Keys are sorted before hashing, so two dicts with the same items in a
    different insertion order produce the same hash.

    Parameters
    ----------
    payload:
        Dict to hash.  Serialized with sorted keys and ``default=str``.
    length:
        Number of hex characters to return (default 16).
    """
    raw = json.dumps(payload, sort_keys=True, default=str)
    return hashlib.sha256(raw.encode()).hexdigest()[:length]
