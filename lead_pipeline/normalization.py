"""Best-effort normalization of collaborator API payload fields.

Single source of truth — every ``from_payload`` parser in ``models`` goes
through these helpers so malformed values degrade to ``None`` instead of
raising.  Numeric parsing is the shared CIP engagement parser; money fields
use its price rules.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from cip_protocol.engagement.parsing import parse_int
from cip_protocol.engagement.parsing import parse_price as parse_amount

__all__ = [
    "format_timestamp",
    "parse_amount",
    "parse_int",
    "parse_text",
    "parse_timestamp",
]


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an ISO-8601 timestamp into an aware datetime (UTC if naive)."""
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if not isinstance(value, str):
        return None
    text = value.strip()
    if not text:
        return None
    try:
        dt = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def parse_text(value: Any) -> str | None:
    """Return a stripped string, or ``None`` for empty/non-string input."""
    if not isinstance(value, str):
        return None
    stripped = value.strip()
    return stripped or None


def format_timestamp(value: datetime | None) -> str | None:
    """Serialize a datetime the way the collaborator API expects (UTC, ``Z``)."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")
