"""ShareGrant model — a capability token over a file or a folder subtree.

Provides ``ShareGrantBase`` (non-table) and ``ShareGrant`` (concrete table).
Subclass ``ShareGrantBase`` with ``table=True`` and a custom ``__tablename__``
to use a different table name per backend.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime

from sqlalchemy import JSON, DateTime
from sqlmodel import Field, SQLModel


class ShareGrantBase(SQLModel):
    """Base fields for a share grant. Subclass with ``table=True`` for a concrete table."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    owner_id: str = Field(index=True)
    item_type: str = Field(index=True)
    item_id: str = Field(index=True)
    token: str = Field(unique=True, index=True)
    permissions: list[str] = Field(default_factory=lambda: ["view"], sa_type=JSON)  # type: ignore[invalid-argument-type]
    allowed_emails: list[str] = Field(default_factory=list, sa_type=JSON)  # type: ignore[invalid-argument-type]
    expires_at: datetime | None = Field(
        default=None,
        index=True,
        sa_type=DateTime(timezone=True),  # type: ignore[invalid-argument-type]
    )
    is_revoked: bool = Field(default=False, index=True)
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_type=DateTime(timezone=True),  # type: ignore[invalid-argument-type]
    )
    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_type=DateTime(timezone=True),  # type: ignore[invalid-argument-type]
    )


class ShareGrant(ShareGrantBase, table=True):
    """Default share grant table — ``coffer_share_grants``."""

    __tablename__ = "coffer_share_grants"
