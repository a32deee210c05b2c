"""Small helpers shared by the services: time, clamping, input cleanup, flushes."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy.exc import SQLAlchemyError

from .exceptions import StorageError, ValidationError

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

# =============================================================================
# Limits
# =============================================================================

PRESIGN_MIN_SECONDS = 300
PRESIGN_MAX_SECONDS = 86400
PRESIGN_DEFAULT_SECONDS = 3600

LIST_MIN_LIMIT = 1
LIST_MAX_LIMIT = 100
LIST_DEFAULT_LIMIT = 50

SHARE_DOWNLOAD_MIN_LIMIT = 1
SHARE_DOWNLOAD_MAX_LIMIT = 1000
SHARE_DOWNLOAD_DEFAULT_LIMIT = 100

SUBTREE_VISIT_LIMIT = 2000
"""Hard cap on folder nodes visited by a breadth-first subtree walk."""

MAX_FOLDER_DEPTH = 256
"""Hard cap on ``parent_id`` hops when computing a folder's path."""


# =============================================================================
# Time
# =============================================================================


def utcnow() -> datetime:
    return datetime.now(UTC)


def as_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes (SQLite drops tzinfo on round-trip)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def is_expired(expires_at: datetime | None, now: datetime | None = None) -> bool:
    """True when *expires_at* is set and at or before *now*."""
    if expires_at is None:
        return False
    return as_utc(expires_at) <= (now or utcnow())


# =============================================================================
# Clamping
# =============================================================================


def clamp(value: int, lower: int, upper: int) -> int:
    return max(lower, min(value, upper))


def clamp_expiration(seconds: int | None) -> int:
    """Clamp a presigned URL lifetime into [300, 86400] seconds."""
    if seconds is None:
        seconds = PRESIGN_DEFAULT_SECONDS
    return clamp(int(seconds), PRESIGN_MIN_SECONDS, PRESIGN_MAX_SECONDS)


# =============================================================================
# Input cleanup
# =============================================================================


def clean_tags(tags: Iterable[Any]) -> list[str]:
    """Trim tags and drop non-strings and empty strings."""
    if isinstance(tags, (str, bytes)) or not isinstance(tags, Iterable):
        raise ValidationError("tags must be a list of strings")
    return [t.strip() for t in tags if isinstance(t, str) and t.strip()]


def clean_metadata(metadata: Any) -> dict[str, Any]:
    """Accept a plain mapping; reject arrays and scalars."""
    if not isinstance(metadata, Mapping):
        raise ValidationError("metadata must be a key-value mapping")
    return dict(metadata)


def clean_emails(emails: Iterable[Any] | None) -> list[str]:
    """Trim, lowercase and deduplicate an email allowlist."""
    if emails is None:
        return []
    if isinstance(emails, (str, bytes)):
        raise ValidationError("allowed_emails must be a list of strings")
    cleaned: list[str] = []
    for email in emails:
        if not isinstance(email, str):
            continue
        value = email.strip().lower()
        if value and value not in cleaned:
            cleaned.append(value)
    return cleaned


def mime_pattern_to_like(pattern: str) -> str:
    """Translate a mime-type filter to a SQL LIKE pattern.

    ``*`` is a wildcard (``image/*``); a pattern without one matches as a
    substring (``pdf`` matches ``application/pdf``).  LIKE metacharacters in
    the input are escaped with ``\\``.
    """
    escaped = pattern.strip().lower().replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    if "*" in escaped:
        return escaped.replace("*", "%")
    return f"%{escaped}%"


# =============================================================================
# Database
# =============================================================================


async def flush_or_raise(session: AsyncSession, message: str) -> None:
    """Flush *session*, turning database failures into ``StorageError(message)``."""
    try:
        await session.flush()
    except SQLAlchemyError as e:
        logger.error("%s", message, exc_info=True)
        raise StorageError(message) from e
