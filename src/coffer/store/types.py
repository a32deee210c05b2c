"""Value types returned by object store gateways."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from datetime import datetime


@dataclass
class ObjectInfo:
    """Metadata for one stored object."""

    key: str
    size: int = 0
    last_modified: datetime | None = None
    content_type: str | None = None
    etag: str | None = None
    metadata: dict[str, str] = field(default_factory=dict)


@dataclass
class StoredObject:
    """An object body (a file-like stream) and its metadata."""

    info: ObjectInfo
    body: Any


@dataclass
class ListObjectsResult:
    """One page of a prefix listing.

    ``child_prefixes`` is only populated for non-recursive listings, where
    ``/`` acts as the delimiter.
    """

    objects: list[ObjectInfo] = field(default_factory=list)
    child_prefixes: list[str] = field(default_factory=list)
    next_token: str | None = None
    truncated: bool = False
