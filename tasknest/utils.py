from datetime import date, datetime, timezone
import logging
import uuid
from typing import Optional

from dateutil import parser as dateutil_parser

logger = logging.getLogger(__name__)


def now_utc() -> datetime:
    """Return timezone-aware current UTC datetime."""
    return datetime.now(timezone.utc)


def as_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes read back from SQLite."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def new_user_id() -> str:
    """Random 128-bit identifier rendered as 32 hex characters."""
    return uuid.uuid4().hex


def parse_due_date(value) -> Optional[date]:
    """Parse a due date submitted by a client.

    Accepts a ``date``/``datetime``, a plain ``YYYY-MM-DD`` string or a full
    ISO-8601 datetime such as the ``Date.toISOString()`` output browsers
    send; only the date part is kept. ``None`` and blank strings mean no
    due date. Raises ValueError for anything else.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        raise ValueError(f"unsupported due date value: {value!r}")
    s = value.strip()
    if not s:
        return None
    return dateutil_parser.isoparse(s).date()


def format_due_date(value: Optional[date]) -> Optional[str]:
    return value.isoformat() if value else None
