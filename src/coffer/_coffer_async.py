"""CofferAsync — async facade wiring the services to a session factory and an object store."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from coffer.fs.access import AccessEvaluator
from coffer.fs.files import FileService
from coffer.fs.folders import FolderService
from coffer.fs.permissions import SharePermission
from coffer.fs.sharing import UNSET, SharingService
from coffer.fs.types import PublicShare
from coffer.models.files import FileRecord
from coffer.models.folders import Folder
from coffer.models.shares import ShareGrant

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator, Callable, Iterable, Sequence
    from datetime import datetime

    from sqlalchemy.ext.asyncio import AsyncEngine

    from coffer.config import CofferConfig
    from coffer.fs.permissions import ItemType
    from coffer.fs.types import (
        CreateShareResult,
        FileInfo,
        FileListQuery,
        FileListResult,
        FileStats,
        FileStream,
        FolderInfo,
        PermanentDeleteResult,
        PresignedDownload,
        PresignedUpload,
        ShareAccessResult,
        ShareInfo,
        SubtreeDeleteResult,
        UploadBatchResult,
    )
    from coffer.models.files import FileRecordBase
    from coffer.models.folders import FolderBase
    from coffer.models.shares import ShareGrantBase
    from coffer.store.protocol import ObjectStore

logger = logging.getLogger(__name__)


class CofferAsync:
    """Async facade over folders, files and shares.

    Every call runs in its own session: committed on success, rolled back
    on any exception.  Principals arrive already authenticated; the facade
    only receives their ids (and, for restricted shares, their email).

    Usage::

        engine = create_async_engine("postgresql+asyncpg://...")
        config = CofferConfig.from_env()
        coffer = CofferAsync.from_engine(engine, store=S3ObjectStore.from_config(config), config=config)
        await coffer.create_tables()

        folder = await coffer.create_folder("user-1", "Docs")
        file = await coffer.upload_file("user-1", b"...", "notes.txt", "text/plain", folder_id=folder.id)
        share = await coffer.create_share("user-1", "file", file.id, ["view", "download"])
        access = await coffer.access_share(share.share.token, "download")
    """

    def __init__(
        self,
        *,
        session_factory: Callable[..., AsyncSession],
        store: ObjectStore,
        config: CofferConfig,
        file_model: type[FileRecordBase] | None = None,
        folder_model: type[FolderBase] | None = None,
        share_model: type[ShareGrantBase] | None = None,
        engine: AsyncEngine | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._engine = engine
        self._store = store
        self._config = config
        self._file_model: type[FileRecordBase] = file_model or FileRecord
        self._folder_model: type[FolderBase] = folder_model or Folder
        self._share_model: type[ShareGrantBase] = share_model or ShareGrant

        self.folders = FolderService(self._folder_model, store)
        self.files = FileService(
            self._file_model,
            self._folder_model,
            store,
            server_side_encryption=config.server_side_encryption,
        )
        self.sharing = SharingService(
            self._share_model, self._file_model, self._folder_model, config
        )
        self.access = AccessEvaluator(self.sharing, self.files, self.folders)

    @classmethod
    def from_engine(
        cls,
        engine: AsyncEngine,
        *,
        store: ObjectStore,
        config: CofferConfig,
        **models: Any,
    ) -> CofferAsync:
        """Build a facade with a session factory bound to *engine*."""
        factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
        return cls(session_factory=factory, store=store, config=config, engine=engine, **models)

    @property
    def store(self) -> ObjectStore:
        return self._store

    @property
    def config(self) -> CofferConfig:
        return self._config

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def create_tables(self) -> None:
        """Create the folder, file and share tables if missing."""
        if self._engine is None:
            raise RuntimeError("create_tables() requires a facade built with from_engine()")
        async with self._engine.begin() as conn:
            for model in (self._folder_model, self._file_model, self._share_model):
                await conn.run_sync(
                    lambda c, m=model: m.__table__.create(c, checkfirst=True)  # type: ignore[attr-defined]
                )

    async def open(self) -> None:
        await self._store.open()

    async def close(self) -> None:
        await self._store.close()

    async def __aenter__(self) -> CofferAsync:
        await self.open()
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    @asynccontextmanager
    async def _session(self) -> AsyncGenerator[AsyncSession]:
        session = self._session_factory()
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()

    # ------------------------------------------------------------------
    # Folders
    # ------------------------------------------------------------------

    async def create_folder(
        self, owner_id: str, name: str, parent_id: str | None = None
    ) -> FolderInfo:
        async with self._session() as session:
            return await self.folders.create_folder(session, owner_id, name, parent_id)

    async def rename_folder(self, owner_id: str, folder_id: str, new_name: str) -> FolderInfo:
        async with self._session() as session:
            return await self.folders.rename_folder(session, owner_id, folder_id, new_name)

    async def delete_folder(self, owner_id: str, folder_id: str) -> SubtreeDeleteResult:
        async with self._session() as session:
            return await self.folders.soft_delete_subtree(session, owner_id, folder_id)

    async def get_folder(self, owner_id: str, folder_id: str) -> FolderInfo | None:
        async with self._session() as session:
            folder = await self.folders.get_folder(session, owner_id, folder_id)
            return self.folders.folder_to_info(folder) if folder else None

    async def list_folders(self, owner_id: str, parent_id: str | None = None) -> list[FolderInfo]:
        async with self._session() as session:
            return await self.folders.list_children(session, owner_id, parent_id)

    async def list_all_folders(self, owner_id: str) -> list[FolderInfo]:
        async with self._session() as session:
            return await self.folders.list_folders(session, owner_id)

    async def get_folder_path(self, owner_id: str, folder_id: str) -> list[str]:
        """Root-to-leaf names including the folder itself."""
        async with self._session() as session:
            return await self.folders.full_path_segments(session, owner_id, folder_id)

    # ------------------------------------------------------------------
    # Files
    # ------------------------------------------------------------------

    async def upload_file(
        self,
        owner_id: str,
        data: bytes,
        original_name: str,
        mime_type: str | None = None,
        *,
        folder_id: str | None = None,
        tags: Sequence[str] | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> FileInfo:
        async with self._session() as session:
            return await self.files.upload_file(
                session, owner_id, data, original_name, mime_type,
                folder_id=folder_id, tags=tags, metadata=metadata,
            )

    async def upload_files(
        self,
        owner_id: str,
        uploads: Sequence[tuple[bytes, str, str | None]],
        *,
        folder_id: str | None = None,
        tags: Sequence[str] | None = None,
        continue_on_error: bool = True,
    ) -> UploadBatchResult:
        async with self._session() as session:
            return await self.files.upload_files(
                session, owner_id, uploads,
                folder_id=folder_id, tags=tags, continue_on_error=continue_on_error,
            )

    async def create_upload_url(
        self,
        owner_id: str,
        original_name: str,
        *,
        content_type: str | None = None,
        expiration_seconds: int | None = None,
    ) -> PresignedUpload:
        return await self.files.create_upload_url(
            owner_id, original_name,
            content_type=content_type, expiration_seconds=expiration_seconds,
        )

    async def register_upload(
        self,
        owner_id: str,
        object_key: str,
        original_name: str,
        *,
        folder_id: str | None = None,
        tags: Sequence[str] | None = None,
    ) -> FileInfo:
        async with self._session() as session:
            return await self.files.register_upload(
                session, owner_id, object_key, original_name, folder_id=folder_id, tags=tags
            )

    async def get_file(self, owner_id: str, file_id: str) -> FileInfo | None:
        async with self._session() as session:
            return await self.files.get_info(session, owner_id, file_id)

    async def list_files(self, owner_id: str, query: FileListQuery | None = None) -> FileListResult:
        async with self._session() as session:
            return await self.files.list_files(session, owner_id, query)

    async def file_stats(self, owner_id: str) -> FileStats:
        async with self._session() as session:
            return await self.files.get_file_stats(session, owner_id)

    async def move_file(
        self, owner_id: str, file_id: str, destination_folder_id: str | None = None
    ) -> FileInfo:
        async with self._session() as session:
            return await self.files.move_file(session, owner_id, file_id, destination_folder_id)

    async def update_file_metadata(
        self,
        owner_id: str,
        file_id: str,
        *,
        tags: Sequence[str] | None = None,
        metadata: Any = None,
    ) -> FileInfo:
        async with self._session() as session:
            return await self.files.update_metadata(
                session, owner_id, file_id, tags=tags, metadata=metadata
            )

    async def share_file_with(
        self, owner_id: str, file_id: str, principal_ids: Sequence[str]
    ) -> FileInfo:
        async with self._session() as session:
            return await self.files.set_shared_with(session, owner_id, file_id, principal_ids)

    async def can_access(
        self,
        principal_id: str,
        file_id: str,
        action: SharePermission | str = SharePermission.VIEW,
    ) -> bool:
        async with self._session() as session:
            return await self.files.can_access(
                session, principal_id, file_id, SharePermission(action)
            )

    async def presigned_download(
        self, principal_id: str, file_id: str, expiration_seconds: int | None = None
    ) -> PresignedDownload:
        async with self._session() as session:
            return await self.files.issue_presigned_download(
                session, file_id, principal_id, expiration_seconds
            )

    async def open_file_stream(self, principal_id: str, file_id: str) -> FileStream:
        async with self._session() as session:
            return await self.files.open_file_stream(session, principal_id, file_id)

    async def delete_file(self, owner_id: str, file_id: str) -> bool:
        async with self._session() as session:
            return await self.files.soft_delete_file(session, owner_id, file_id)

    async def permanent_delete_file(self, owner_id: str, file_id: str) -> PermanentDeleteResult:
        async with self._session() as session:
            return await self.files.permanent_delete(session, owner_id, file_id)

    # ------------------------------------------------------------------
    # Shares
    # ------------------------------------------------------------------

    async def create_share(
        self,
        owner_id: str,
        item_type: ItemType | str,
        item_id: str,
        permissions: Iterable[str | SharePermission] | None = None,
        *,
        expires_at: datetime | None = None,
        allowed_emails: Iterable[str] | None = None,
    ) -> CreateShareResult:
        async with self._session() as session:
            return await self.sharing.create_share(
                session, owner_id, item_type, item_id, permissions,
                expires_at=expires_at, allowed_emails=allowed_emails,
            )

    async def get_share(self, owner_id: str, share_id: str) -> ShareInfo | None:
        async with self._session() as session:
            return await self.sharing.get_share(session, owner_id, share_id)

    async def list_shares(self, owner_id: str) -> list[ShareInfo]:
        async with self._session() as session:
            return await self.sharing.list_shares(session, owner_id)

    async def update_share(
        self,
        owner_id: str,
        share_id: str,
        *,
        permissions: Iterable[str | SharePermission] | None = None,
        expires_at: Any = UNSET,
        allowed_emails: Any = UNSET,
    ) -> ShareInfo | None:
        async with self._session() as session:
            return await self.sharing.update_share(
                session, owner_id, share_id,
                permissions=permissions, expires_at=expires_at, allowed_emails=allowed_emails,
            )

    async def revoke_share(self, owner_id: str, share_id: str) -> bool:
        async with self._session() as session:
            return await self.sharing.revoke_share(session, owner_id, share_id)

    async def resolve_share(self, token: str) -> PublicShare | None:
        """Public view of a live share, or ``None`` if the token does not resolve."""
        async with self._session() as session:
            resolved = await self.sharing.resolve_token(session, token)
            return PublicShare.from_resolved(resolved) if resolved else None

    async def access_share(
        self,
        token: str,
        action: SharePermission | str = SharePermission.VIEW,
        *,
        email: str | None = None,
        expiration_seconds: int | None = None,
        recursive: bool = False,
        limit: int = 100,
    ) -> ShareAccessResult:
        async with self._session() as session:
            return await self.access.access(
                session, token, action,
                email=email, expiration_seconds=expiration_seconds,
                recursive=recursive, limit=limit,
            )
