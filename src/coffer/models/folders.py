"""Folder model — one node of a user's logical folder tree.

Provides ``FolderBase`` (non-table) and ``Folder`` (concrete table).
Subclass ``FolderBase`` with ``table=True`` and a custom ``__tablename__``
to use a different table name per backend.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime

from sqlalchemy import DateTime
from sqlmodel import Field, SQLModel


class FolderBase(SQLModel):
    """Base fields for a folder node. Subclass with ``table=True`` for a concrete table."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    owner_id: str = Field(index=True)
    name: str = Field(index=True)
    parent_id: str | None = Field(default=None, index=True)
    is_deleted: bool = Field(default=False, index=True)
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_type=DateTime(timezone=True),  # type: ignore[invalid-argument-type]
    )
    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_type=DateTime(timezone=True),  # type: ignore[invalid-argument-type]
    )


class Folder(FolderBase, table=True):
    """Default folder table — ``coffer_folders``."""

    __tablename__ = "coffer_folders"
