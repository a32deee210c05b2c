"""FileRecord model — metadata for one object stored in the object store.

Provides ``FileRecordBase`` (non-table) and ``FileRecord`` (concrete table).
The binary content never touches the database; ``object_key`` and
``object_container`` locate it in the object store.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import JSON, DateTime
from sqlmodel import Field, SQLModel


class FileRecordBase(SQLModel):
    """Base fields for a stored file. Subclass with ``table=True`` for a concrete table."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    owner_id: str = Field(index=True)
    folder_id: str | None = Field(default=None, index=True)
    file_name: str = Field(index=True)
    original_name: str = Field(default="")
    file_size: int = Field(default=0)
    mime_type: str = Field(default="application/octet-stream", index=True)
    object_key: str = Field(unique=True)
    object_container: str = Field(default="")
    uploaded_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_type=DateTime(timezone=True),  # type: ignore[invalid-argument-type]
    )
    last_modified: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_type=DateTime(timezone=True),  # type: ignore[invalid-argument-type]
    )
    is_deleted: bool = Field(default=False, index=True)
    deleted_at: datetime | None = Field(
        default=None,
        sa_type=DateTime(timezone=True),  # type: ignore[invalid-argument-type]
    )
    tags: list[str] = Field(default_factory=list, sa_type=JSON)  # type: ignore[invalid-argument-type]
    custom_metadata: dict[str, Any] = Field(default_factory=dict, sa_type=JSON)  # type: ignore[invalid-argument-type]
    shared_with: list[str] = Field(default_factory=list, sa_type=JSON)  # type: ignore[invalid-argument-type]


class FileRecord(FileRecordBase, table=True):
    """Default file table — ``coffer_files``."""

    __tablename__ = "coffer_files"
