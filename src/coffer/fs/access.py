"""AccessEvaluator — the authorization decision for share-token requests.

Decision procedure for a resolved grant and an incoming action:

1. A non-empty ``allowed_emails`` list requires a matching email, otherwise
   ``UnauthorizedRecipientError`` (distinct from not-found).
2. The action's own permission bit must be present, otherwise
   ``PermissionNotGrantedError``.  No bit implies another: ``edit`` does not
   grant ``view``, ``download`` does not grant ``view``.

Token resolution failures (unknown, revoked, expired, item gone) surface as
one ``ShareNotFoundError``.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from .exceptions import (
    AccessDeniedError,
    ObjectKeyMissingError,
    PermissionNotGrantedError,
    ShareNotFoundError,
    StorageError,
    UnauthorizedRecipientError,
)
from .permissions import ItemType, SharePermission
from .types import (
    FileInfo,
    FolderDownloadResult,
    FolderInfo,
    PublicShare,
    ShareAccessResult,
    SharedFileDownload,
)
from .utils import (
    SHARE_DOWNLOAD_DEFAULT_LIMIT,
    SHARE_DOWNLOAD_MAX_LIMIT,
    SHARE_DOWNLOAD_MIN_LIMIT,
    clamp,
    clamp_expiration,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from .files import FileService
    from .folders import FolderService
    from .sharing import SharingService
    from .types import ResolvedShare

logger = logging.getLogger(__name__)


class AccessEvaluator:
    """Answers "may this token bearer perform this action" and executes it.

    Composes ``SharingService`` (resolution), ``FolderService`` (subtree
    walks) and ``FileService`` (presigning).
    """

    def __init__(
        self,
        sharing: SharingService,
        files: FileService,
        folders: FolderService,
    ) -> None:
        self._sharing = sharing
        self._files = files
        self._folders = folders

    # ------------------------------------------------------------------
    # Decision
    # ------------------------------------------------------------------

    @staticmethod
    def authorize(
        resolved: ResolvedShare,
        action: SharePermission | str,
        email: str | None = None,
    ) -> SharePermission:
        """Raise unless *action* is allowed on *resolved*; return the parsed action."""
        action = SharePermission(action)
        share = resolved.share
        if share.allowed_emails:
            provided = (email or "").strip().lower()
            if not provided or provided not in share.allowed_emails:
                logger.warning("Share %s refused: recipient not on allowlist", share.id)
                raise UnauthorizedRecipientError("Recipient not authorized for this share")
        if action not in share.permissions:
            raise PermissionNotGrantedError(f"{action.value.capitalize()} permission not granted")
        return action

    @classmethod
    def is_allowed(
        cls,
        resolved: ResolvedShare,
        action: SharePermission | str,
        email: str | None = None,
    ) -> bool:
        try:
            cls.authorize(resolved, action, email)
        except AccessDeniedError:
            return False
        return True

    async def resolve(self, session: AsyncSession, token: str) -> ResolvedShare:
        """Resolve *token* or raise ``ShareNotFoundError``."""
        resolved = await self._sharing.resolve_token(session, token)
        if resolved is None:
            raise ShareNotFoundError("Share not found or expired")
        return resolved

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def access(
        self,
        session: AsyncSession,
        token: str,
        action: SharePermission | str = SharePermission.VIEW,
        *,
        email: str | None = None,
        expiration_seconds: int | None = None,
        recursive: bool = False,
        limit: int = SHARE_DOWNLOAD_DEFAULT_LIMIT,
    ) -> ShareAccessResult:
        """Resolve *token*, authorize *action*, and carry it out.

        ``view`` returns the public item metadata.  ``download`` adds one
        presigned URL for a file grant, or one URL per file under a folder
        grant.
        ``edit`` returns the authorized grant and item for a write-capable
        caller to act on.
        """
        resolved = await self.resolve(session, token)
        action = self.authorize(resolved, action, email)
        logger.info(
            "Share %s accessed: %s on %s %s",
            resolved.share.id, action.value, resolved.share.item_type.value, resolved.share.item_id,
        )

        public = PublicShare.from_resolved(resolved)
        result = ShareAccessResult(action=action, share=public.share, item=public.item)
        if action is not SharePermission.DOWNLOAD:
            return result

        if resolved.share.item_type is ItemType.FILE:
            assert isinstance(resolved.item, FileInfo)
            file = await self._files.get_file(session, resolved.item.id)
            if file is None:
                raise ShareNotFoundError("Share not found or expired")
            result.download = await self._files.presign_record(file, expiration_seconds)
            return result

        assert isinstance(resolved.item, FolderInfo)
        result.folder_download = await self.download_folder(
            session,
            resolved.item,
            expiration_seconds=expiration_seconds,
            recursive=recursive,
            limit=limit,
        )
        return result

    async def download_folder(
        self,
        session: AsyncSession,
        folder: FolderInfo,
        *,
        expiration_seconds: int | None = None,
        recursive: bool = False,
        limit: int = SHARE_DOWNLOAD_DEFAULT_LIMIT,
    ) -> FolderDownloadResult:
        """Presign every file under *folder* (and its subtree if *recursive*).

        Files whose presign fails are skipped and counted, not fatal.
        """
        expires_in = clamp_expiration(expiration_seconds)
        limit = clamp(limit, SHARE_DOWNLOAD_MIN_LIMIT, SHARE_DOWNLOAD_MAX_LIMIT)

        folder_ids = [folder.id]
        truncated = False
        if recursive:
            walk = await self._folders.collect_subtree(session, folder.id, owner_id=folder.owner_id)
            folder_ids = walk.folder_ids
            truncated = walk.truncated

        files = await self._files.list_in_folders(session, folder.owner_id, folder_ids, limit)
        items: list[SharedFileDownload] = []
        skipped = 0
        for file in files:
            try:
                presigned = await self._files.presign_record(file, expires_in)
            except (StorageError, ObjectKeyMissingError) as e:
                logger.warning("Skipping file %s in shared folder %s: %s", file.id, folder.id, e)
                skipped += 1
                continue
            items.append(
                SharedFileDownload(
                    id=file.id,
                    file_name=file.file_name,
                    mime_type=file.mime_type,
                    file_size=file.file_size,
                    folder_id=file.folder_id,
                    url=presigned.url,
                    uploaded_at=file.uploaded_at,
                )
            )

        return FolderDownloadResult(
            folder_id=folder.id,
            expires_in=expires_in,
            limit=limit,
            recursive=recursive,
            items=items,
            skipped=skipped,
            truncated=truncated,
        )
