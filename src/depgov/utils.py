"""Small shared helpers for ids and timestamps."""

import uuid
from datetime import datetime, timezone
from typing import Any, Optional

from dateutil import parser as date_parser


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def parse_datetime(value: Any) -> Optional[datetime]:
    """Parse an ISO string (or pass through a datetime) into aware UTC."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    return ensure_utc(date_parser.isoparse(str(value)))


def format_datetime(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def new_id(prefix: str) -> str:
    """Generate a prefixed random id, e.g. ``assess_3f9c1a2b7d4e``."""
    return f"{prefix}_{uuid.uuid4().hex[:12]}"
