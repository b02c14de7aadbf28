"""Timezone helpers; SQLite hands back naive datetimes, PostgreSQL aware ones."""
from datetime import datetime, timezone
from typing import Optional


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_aware(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive datetimes read from the database as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def format_date(value) -> str:
    """dd/mm/yyyy, the format used in customer-facing messages."""
    if value is None:
        return ""
    return value.strftime("%d/%m/%Y")
