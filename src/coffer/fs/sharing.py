"""SharingService — share token lifecycle.

Stateless service that receives the share, file and folder models at
construction and a session at call time, following the FileService
pattern.  Anonymous resolution collapses unknown, revoked, expired and
orphaned tokens into one ``None`` outcome so tokens cannot be probed.
"""

from __future__ import annotations

import logging
import secrets
from typing import TYPE_CHECKING

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import select

from .exceptions import (
    AccessDeniedError,
    InvalidExpiryError,
    ShareTokenConflictError,
    StorageError,
)
from .files import FileService
from .folders import FolderService
from .permissions import ItemType, SharePermission, normalize_permissions, parse_item_type
from .types import CreateShareResult, ResolvedShare, ShareInfo
from .utils import as_utc, clean_emails, flush_or_raise, is_expired, utcnow

if TYPE_CHECKING:
    from collections.abc import Iterable
    from datetime import datetime

    from sqlalchemy.ext.asyncio import AsyncSession

    from coffer.config import CofferConfig
    from coffer.models.files import FileRecordBase
    from coffer.models.folders import FolderBase
    from coffer.models.shares import ShareGrantBase

logger = logging.getLogger(__name__)

TOKEN_BYTES = 24
"""Random bytes per token; hex-encoded to 48 characters."""


class _Unset:
    def __repr__(self) -> str:
        return "UNSET"


UNSET = _Unset()


class SharingService:
    """Issues, resolves, updates and revokes share grants.

    Constructor receives the concrete models so callers can use custom
    SQLModel subclasses with different table names.
    """

    def __init__(
        self,
        share_model: type[ShareGrantBase],
        file_model: type[FileRecordBase],
        folder_model: type[FolderBase],
        config: CofferConfig,
    ) -> None:
        self._share_model = share_model
        self._file_model = file_model
        self._folder_model = folder_model
        self._config = config

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    async def validate_ownership(
        self,
        session: AsyncSession,
        owner_id: str,
        item_type: ItemType,
        item_id: str,
    ) -> bool:
        """True if *item_id* exists, is live and belongs to *owner_id*."""
        model = self._file_model if item_type is ItemType.FILE else self._folder_model
        result = await session.execute(
            select(model.id).where(
                model.id == item_id,
                model.owner_id == owner_id,
                model.is_deleted == False,  # noqa: E712
            )
        )
        return result.first() is not None

    async def create_share(
        self,
        session: AsyncSession,
        owner_id: str,
        item_type: ItemType | str,
        item_id: str,
        permissions: Iterable[str | SharePermission] | None = None,
        *,
        expires_at: datetime | None = None,
        allowed_emails: Iterable[str] | None = None,
    ) -> CreateShareResult:
        """Issue a share over an item the caller owns.

        Missing and not-owned items both raise ``AccessDeniedError``.
        A past or present *expires_at* raises ``InvalidExpiryError``.
        Flushes but does not commit.
        """
        item_type = parse_item_type(item_type)
        if not await self.validate_ownership(session, owner_id, item_type, item_id):
            raise AccessDeniedError("Access denied")

        perms = normalize_permissions(permissions)
        if expires_at is not None:
            expires_at = as_utc(expires_at)
            if expires_at <= utcnow():
                raise InvalidExpiryError("Expiration must be a future date")
        emails = clean_emails(allowed_emails)

        share = self._share_model(
            owner_id=owner_id,
            item_type=item_type.value,
            item_id=item_id,
            token=self.generate_token(),
            permissions=[p.value for p in perms],
            allowed_emails=emails,
            expires_at=expires_at,
        )
        session.add(share)
        try:
            await session.flush()
        except IntegrityError as e:
            raise ShareTokenConflictError("Share token collision; retry") from e
        except SQLAlchemyError as e:
            logger.error("Share insert failed for %s %s", item_type.value, item_id, exc_info=True)
            raise StorageError("Failed to create share") from e

        logger.info(
            "Share %s created by %s on %s %s (permissions=%s, expires_at=%s, restricted=%s)",
            share.id, owner_id, item_type.value, item_id,
            ",".join(p.value for p in perms), expires_at, bool(emails),
        )
        return CreateShareResult(
            share=self.share_to_info(share),
            url=self._config.share_url(share.token),
        )

    @staticmethod
    def generate_token() -> str:
        return secrets.token_hex(TOKEN_BYTES)

    # ------------------------------------------------------------------
    # Resolve
    # ------------------------------------------------------------------

    async def resolve_token(self, session: AsyncSession, token: str) -> ResolvedShare | None:
        """Resolve *token* to its live grant and current item metadata.

        Returns ``None`` when the token is unknown, revoked, expired
        (``expires_at <= now``) or its item is missing or soft-deleted.
        """
        if not token:
            return None
        model = self._share_model
        result = await session.execute(
            select(model).where(model.token == token, model.is_revoked == False)  # noqa: E712
        )
        share = result.scalar_one_or_none()
        if share is None or is_expired(share.expires_at):
            return None

        item: FileRecordBase | FolderBase | None
        if share.item_type == ItemType.FILE.value:
            item = await self._live_item(session, self._file_model, share.item_id)
            if item is None:
                return None
            return ResolvedShare(share=self.share_to_info(share), item=FileService.file_to_info(item))

        item = await self._live_item(session, self._folder_model, share.item_id)
        if item is None:
            return None
        return ResolvedShare(share=self.share_to_info(share), item=FolderService.folder_to_info(item))

    async def _live_item(
        self,
        session: AsyncSession,
        model: type[FileRecordBase] | type[FolderBase],
        item_id: str,
    ) -> FileRecordBase | FolderBase | None:
        result = await session.execute(
            select(model).where(model.id == item_id, model.is_deleted == False)  # noqa: E712
        )
        return result.scalar_one_or_none()

    # ------------------------------------------------------------------
    # Owner operations
    # ------------------------------------------------------------------

    async def get_share(
        self, session: AsyncSession, owner_id: str, share_id: str
    ) -> ShareInfo | None:
        """Owner lookup; a real not-found, unlike token resolution."""
        share = await self._owned(session, owner_id, share_id)
        return self.share_to_info(share) if share else None

    async def list_shares(self, session: AsyncSession, owner_id: str) -> list[ShareInfo]:
        """All grants issued by *owner_id*, newest first, revoked included."""
        model = self._share_model
        result = await session.execute(
            select(model)
            .where(model.owner_id == owner_id)
            .order_by(model.created_at.desc())  # type: ignore[union-attr]
        )
        return [self.share_to_info(s) for s in result.scalars().all()]

    async def list_item_shares(
        self,
        session: AsyncSession,
        owner_id: str,
        item_type: ItemType | str,
        item_id: str,
    ) -> list[ShareInfo]:
        """Active (non-revoked) grants on one item."""
        item_type = parse_item_type(item_type)
        model = self._share_model
        result = await session.execute(
            select(model).where(
                model.owner_id == owner_id,
                model.item_type == item_type.value,
                model.item_id == item_id,
                model.is_revoked == False,  # noqa: E712
            )
        )
        return [self.share_to_info(s) for s in result.scalars().all()]

    async def update_share(
        self,
        session: AsyncSession,
        owner_id: str,
        share_id: str,
        *,
        permissions: Iterable[str | SharePermission] | None = None,
        expires_at: datetime | None | _Unset = UNSET,
        allowed_emails: Iterable[str] | None | _Unset = UNSET,
    ) -> ShareInfo | None:
        """Change permissions, expiry or allowlist of a live grant.

        Pass ``expires_at=None`` to clear the expiry and
        ``allowed_emails=None`` (or ``[]``) to lift the allowlist.  Returns
        ``None`` when the grant is missing, not owned, or revoked.
        """
        share = await self._owned(session, owner_id, share_id)
        if share is None or share.is_revoked:
            return None

        if permissions is not None:
            share.permissions = [p.value for p in normalize_permissions(permissions)]
        if not isinstance(expires_at, _Unset):
            if expires_at is not None:
                expires_at = as_utc(expires_at)
                if expires_at <= utcnow():
                    raise InvalidExpiryError("Expiration must be a future date")
            share.expires_at = expires_at
        if not isinstance(allowed_emails, _Unset):
            share.allowed_emails = clean_emails(allowed_emails)
        share.updated_at = utcnow()
        await flush_or_raise(session, f"Failed to update share {share_id}")
        logger.info("Share %s updated by %s", share_id, owner_id)
        return self.share_to_info(share)

    async def revoke_share(self, session: AsyncSession, owner_id: str, share_id: str) -> bool:
        """Revoke a grant.  True only if this call performed the transition."""
        share = await self._owned(session, owner_id, share_id)
        if share is None or share.is_revoked:
            return False
        share.is_revoked = True
        share.updated_at = utcnow()
        await flush_or_raise(session, f"Failed to revoke share {share_id}")
        logger.info("Share %s revoked by %s", share_id, owner_id)
        return True

    async def _owned(
        self, session: AsyncSession, owner_id: str, share_id: str
    ) -> ShareGrantBase | None:
        model = self._share_model
        result = await session.execute(
            select(model).where(model.id == share_id, model.owner_id == owner_id)
        )
        return result.scalar_one_or_none()

    # ------------------------------------------------------------------
    # Conversion
    # ------------------------------------------------------------------

    @staticmethod
    def share_to_info(s: ShareGrantBase) -> ShareInfo:
        """Convert a share record to ShareInfo."""
        return ShareInfo(
            id=s.id,
            owner_id=s.owner_id,
            item_type=ItemType(s.item_type),
            item_id=s.item_id,
            token=s.token,
            permissions=normalize_permissions(s.permissions),
            allowed_emails=list(s.allowed_emails or []),
            expires_at=as_utc(s.expires_at) if s.expires_at else None,
            is_revoked=s.is_revoked,
            created_at=s.created_at,
            updated_at=s.updated_at,
        )
