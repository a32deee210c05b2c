"""FileService — file records, uploads, moves, and access-checked URLs.

A file's object key encodes its owner, not its folder
(``<owner_id>/<file_name>``), so moving a file between folders is a pure
metadata change.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import TYPE_CHECKING, Any

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import select

from coffer.store.keys import file_object_key, generate_unique_filename

from .exceptions import (
    AccessDeniedError,
    ConsistencyError,
    DestinationNotFoundError,
    NotFoundError,
    ObjectKeyMissingError,
    StorageError,
    ValidationError,
)
from .permissions import SharePermission
from .types import (
    DeleteOutcome,
    FileInfo,
    FileListQuery,
    FileListResult,
    FileStats,
    FileStream,
    MimeTypeStat,
    ObjectStatus,
    PermanentDeleteResult,
    PresignedDownload,
    PresignedUpload,
    UploadBatchResult,
)
from .utils import (
    LIST_MAX_LIMIT,
    LIST_MIN_LIMIT,
    clamp,
    clamp_expiration,
    clean_metadata,
    clean_tags,
    flush_or_raise,
    mime_pattern_to_like,
    utcnow,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from coffer.models.files import FileRecordBase
    from coffer.models.folders import FolderBase
    from coffer.store.protocol import ObjectStore

logger = logging.getLogger(__name__)

SORT_FIELDS = ("uploaded_at", "file_name", "file_size")
SORT_ORDERS = ("asc", "desc")
DEFAULT_MIME_TYPE = "application/octet-stream"


class FileService:
    """File record manager.

    Receives the concrete file and folder models plus the object store at
    construction and a session at call time.  Flushes but never commits.
    """

    def __init__(
        self,
        file_model: type[FileRecordBase],
        folder_model: type[FolderBase],
        store: ObjectStore,
        *,
        server_side_encryption: str | None = None,
    ) -> None:
        self._file_model = file_model
        self._folder_model = folder_model
        self._store = store
        self._sse = server_side_encryption

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    async def get_file(
        self,
        session: AsyncSession,
        file_id: str,
        *,
        owner_id: str | None = None,
        include_deleted: bool = False,
    ) -> FileRecordBase | None:
        """Get a file record, optionally scoped to *owner_id*."""
        model = self._file_model
        query = select(model).where(model.id == file_id)
        if owner_id is not None:
            query = query.where(model.owner_id == owner_id)
        if not include_deleted:
            query = query.where(model.is_deleted == False)  # noqa: E712
        result = await session.execute(query)
        return result.scalar_one_or_none()

    async def get_info(
        self, session: AsyncSession, owner_id: str, file_id: str
    ) -> FileInfo | None:
        file = await self.get_file(session, file_id, owner_id=owner_id)
        return self.file_to_info(file) if file else None

    async def list_files(
        self,
        session: AsyncSession,
        owner_id: str,
        query: FileListQuery | None = None,
    ) -> FileListResult:
        """Page through an owner's live files.

        ``total_count`` and ``total_size`` cover every match, not just
        the returned page.
        """
        query = query or FileListQuery()
        if query.sort_by not in SORT_FIELDS:
            raise ValidationError(f"sort_by must be one of {', '.join(SORT_FIELDS)}")
        if query.sort_order not in SORT_ORDERS:
            raise ValidationError("sort_order must be 'asc' or 'desc'")
        limit = clamp(query.limit, LIST_MIN_LIMIT, LIST_MAX_LIMIT)
        offset = max(query.offset, 0)

        model = self._file_model
        conditions: list[Any] = [
            model.owner_id == owner_id,
            model.is_deleted == False,  # noqa: E712
        ]
        if query.folder_id is not None:
            conditions.append(model.folder_id == query.folder_id)
        elif query.root_only:
            conditions.append(model.folder_id.is_(None))  # type: ignore[union-attr]
        if query.mime_type_pattern:
            conditions.append(
                func.lower(model.mime_type).like(
                    mime_pattern_to_like(query.mime_type_pattern), escape="\\"
                )
            )

        column = getattr(model, query.sort_by)
        order = column.desc() if query.sort_order == "desc" else column.asc()
        page = await session.execute(
            select(model).where(*conditions).order_by(order, model.id).limit(limit).offset(offset)
        )
        totals = await session.execute(
            select(func.count(), func.coalesce(func.sum(model.file_size), 0))
            .select_from(model)
            .where(*conditions)
        )
        total_count, total_size = totals.one()

        return FileListResult(
            files=[self.file_to_info(f) for f in page.scalars().all()],
            total_count=int(total_count),
            total_size=int(total_size),
            limit=limit,
            offset=offset,
        )

    async def get_file_stats(self, session: AsyncSession, owner_id: str) -> FileStats:
        """Count and size of live files, broken down by mime type (largest first)."""
        model = self._file_model
        size = func.coalesce(func.sum(model.file_size), 0)
        result = await session.execute(
            select(model.mime_type, func.count(), size)
            .where(model.owner_id == owner_id, model.is_deleted == False)  # noqa: E712
            .group_by(model.mime_type)
            .order_by(size.desc())
        )
        breakdown = [
            MimeTypeStat(mime_type=mime, count=int(count), size=int(total))
            for mime, count, total in result.all()
        ]
        return FileStats(
            total_files=sum(s.count for s in breakdown),
            total_size=sum(s.size for s in breakdown),
            breakdown=breakdown,
        )

    # ------------------------------------------------------------------
    # Upload
    # ------------------------------------------------------------------

    async def upload_file(
        self,
        session: AsyncSession,
        owner_id: str,
        data: bytes,
        original_name: str,
        mime_type: str | None = None,
        *,
        folder_id: str | None = None,
        tags: Sequence[str] | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> FileInfo:
        """Store *data* and create its record.

        If the record cannot be persisted the uploaded object is removed
        best-effort so no object is left without a row.
        """
        if not original_name or not original_name.strip():
            raise ValidationError("original_name is required")
        if folder_id is not None:
            await self._require_destination(session, owner_id, folder_id)

        mime_type = mime_type or DEFAULT_MIME_TYPE
        file_name = generate_unique_filename(original_name)
        key = file_object_key(owner_id, file_name)
        now = utcnow()

        logger.info("Uploading %s for %s as %s (%d bytes)", original_name, owner_id, key, len(data))
        await self._store.put(
            key,
            data,
            mime_type,
            metadata={
                "owner-id": owner_id,
                "original-name": original_name.encode("ascii", "replace").decode(),
                "uploaded-at": now.isoformat(),
            },
        )

        file = self._file_model(
            owner_id=owner_id,
            folder_id=folder_id,
            file_name=file_name,
            original_name=original_name.strip(),
            file_size=len(data),
            mime_type=mime_type,
            object_key=key,
            object_container=self._store.bucket,
            uploaded_at=now,
            last_modified=now,
            tags=clean_tags(tags or []),
            custom_metadata=clean_metadata(metadata or {}),
        )
        await self._persist_new(session, file, key)
        return self.file_to_info(file)

    async def upload_files(
        self,
        session: AsyncSession,
        owner_id: str,
        uploads: Sequence[tuple[bytes, str, str | None]],
        *,
        folder_id: str | None = None,
        tags: Sequence[str] | None = None,
        continue_on_error: bool = True,
    ) -> UploadBatchResult:
        """Upload ``(data, original_name, mime_type)`` triples one by one."""
        results: list[FileInfo] = []
        errors: list[str] = []
        for data, original_name, mime_type in uploads:
            try:
                results.append(
                    await self.upload_file(
                        session, owner_id, data, original_name, mime_type,
                        folder_id=folder_id, tags=tags,
                    )
                )
            except (StorageError, ValidationError, NotFoundError) as e:
                logger.error("Failed to upload %s: %s", original_name, e)
                errors.append(f"{original_name}: {e}")
                if not continue_on_error:
                    break
        logger.info(
            "Batch upload for %s: %d succeeded, %d failed", owner_id, len(results), len(errors)
        )
        return UploadBatchResult(success=not errors, files=results, errors=errors)

    async def create_upload_url(
        self,
        owner_id: str,
        original_name: str,
        *,
        content_type: str | None = None,
        expiration_seconds: int | None = None,
    ) -> PresignedUpload:
        """Reserve an object key and presign a direct PUT to it."""
        if not original_name or not original_name.strip():
            raise ValidationError("original_name is required")
        expires_in = clamp_expiration(expiration_seconds)
        file_name = generate_unique_filename(original_name)
        key = file_object_key(owner_id, file_name)
        url = await self._store.presign_put(
            key,
            expires_in,
            content_type=content_type,
            server_side_encryption=self._sse,
        )
        return PresignedUpload(
            url=url,
            expires_in=expires_in,
            object_key=key,
            file_name=file_name,
            content_type=content_type,
        )

    async def register_upload(
        self,
        session: AsyncSession,
        owner_id: str,
        object_key: str,
        original_name: str,
        *,
        folder_id: str | None = None,
        tags: Sequence[str] | None = None,
    ) -> FileInfo:
        """Create the record for an object uploaded through a presigned PUT."""
        if not object_key.startswith(f"{owner_id}/"):
            raise AccessDeniedError("Access denied")
        if folder_id is not None:
            await self._require_destination(session, owner_id, folder_id)
        info = await self._store.head(object_key)
        if info is None:
            raise NotFoundError(f"Uploaded object not found: {object_key}")

        now = utcnow()
        file = self._file_model(
            owner_id=owner_id,
            folder_id=folder_id,
            file_name=object_key.split("/", 1)[1],
            original_name=original_name.strip() or object_key,
            file_size=info.size,
            mime_type=info.content_type or DEFAULT_MIME_TYPE,
            object_key=object_key,
            object_container=self._store.bucket,
            uploaded_at=now,
            last_modified=info.last_modified or now,
            tags=clean_tags(tags or []),
        )
        await self._persist_new(session, file, object_key, delete_on_failure=False)
        return self.file_to_info(file)

    async def _persist_new(
        self,
        session: AsyncSession,
        file: FileRecordBase,
        key: str,
        *,
        delete_on_failure: bool = True,
    ) -> None:
        session.add(file)
        try:
            await session.flush()
        except SQLAlchemyError as e:
            logger.error("File record insert failed for %s", key, exc_info=True)
            if delete_on_failure:
                await self._rollback_upload(key)
            raise StorageError(f"Failed to save file record for {key}") from e
        logger.info("Created file record %s for %s", file.id, key)

    async def _rollback_upload(self, key: str) -> None:
        try:
            logger.warning("Rolling back upload, deleting object %s", key)
            await self._store.delete(key)
        except StorageError:
            logger.exception("Failed to roll back upload, orphaned object: %s", key)

    # ------------------------------------------------------------------
    # Move / metadata
    # ------------------------------------------------------------------

    async def move_file(
        self,
        session: AsyncSession,
        owner_id: str,
        file_id: str,
        destination_folder_id: str | None = None,
    ) -> FileInfo:
        """Re-associate a file with *destination_folder_id* (root when ``None``).

        The object key is never changed.
        """
        file = await self._require_file(session, owner_id, file_id)
        if destination_folder_id is not None:
            await self._require_destination(session, owner_id, destination_folder_id)

        file.folder_id = destination_folder_id
        file.last_modified = utcnow()
        await flush_or_raise(session, f"Failed to move file {file_id}")
        logger.info("Moved file %s to folder %s", file_id, destination_folder_id or "<root>")
        return self.file_to_info(file)

    async def update_metadata(
        self,
        session: AsyncSession,
        owner_id: str,
        file_id: str,
        *,
        tags: Sequence[str] | None = None,
        metadata: Any = None,
    ) -> FileInfo:
        """Replace tags and/or custom metadata.

        Tags are trimmed and empties dropped.  *metadata* must be a
        mapping; it replaces the stored map wholesale.
        """
        file = await self._require_file(session, owner_id, file_id)
        if tags is not None:
            file.tags = clean_tags(tags)
        if metadata is not None:
            file.custom_metadata = clean_metadata(metadata)
        file.last_modified = utcnow()
        await flush_or_raise(session, f"Failed to update metadata of file {file_id}")
        logger.info(
            "Updated metadata of file %s (tags=%s, metadata=%s)",
            file_id, tags is not None, metadata is not None,
        )
        return self.file_to_info(file)

    async def set_shared_with(
        self,
        session: AsyncSession,
        owner_id: str,
        file_id: str,
        principal_ids: Sequence[str],
    ) -> FileInfo:
        """Replace the set of principals with direct access to a file."""
        file = await self._require_file(session, owner_id, file_id)
        shared: list[str] = []
        for pid in principal_ids:
            if pid and pid != owner_id and pid not in shared:
                shared.append(pid)
        file.shared_with = shared
        file.last_modified = utcnow()
        await flush_or_raise(session, f"Failed to update sharing of file {file_id}")
        return self.file_to_info(file)

    # ------------------------------------------------------------------
    # Access
    # ------------------------------------------------------------------

    async def can_access(
        self,
        session: AsyncSession,
        principal_id: str,
        file_id: str,
        action: SharePermission = SharePermission.VIEW,
    ) -> bool:
        """True if *principal_id* owns the live file or is in its ``shared_with``.

        Direct grants are not split by action; *action* is accepted so
        callers share one signature with the token path.
        """
        file = await self.get_file(session, file_id)
        if file is None:
            return False
        if file.owner_id == principal_id:
            return True
        return principal_id in (file.shared_with or [])

    async def issue_presigned_download(
        self,
        session: AsyncSession,
        file_id: str,
        principal_id: str,
        expiration_seconds: int | None = None,
    ) -> PresignedDownload:
        """Presign a GET for a file the principal can access.

        Raises ``AccessDeniedError`` when access is refused and
        ``ObjectKeyMissingError`` when the record has no object key.
        """
        if not await self.can_access(session, principal_id, file_id, SharePermission.DOWNLOAD):
            raise AccessDeniedError("Access denied")
        file = await self.get_file(session, file_id)
        if file is None or not file.object_key:
            raise ObjectKeyMissingError(f"File not found or storage key missing: {file_id}")
        return await self.presign_record(file, expiration_seconds)

    async def presign_record(
        self, file: FileRecordBase, expiration_seconds: int | None = None
    ) -> PresignedDownload:
        """Presign a GET for *file* without any access check."""
        if not file.object_key:
            raise ObjectKeyMissingError(f"Storage key missing for file {file.id}")
        expires_in = clamp_expiration(expiration_seconds)
        url = await self._store.presign_get(
            file.object_key, expires_in, bucket=file.object_container or None
        )
        return PresignedDownload(
            url=url,
            expires_in=expires_in,
            file_id=file.id,
            file_name=file.file_name,
            mime_type=file.mime_type,
            file_size=file.file_size,
        )

    async def open_file_stream(
        self, session: AsyncSession, principal_id: str, file_id: str
    ) -> FileStream:
        """Open the object body of an accessible file."""
        if not await self.can_access(session, principal_id, file_id, SharePermission.DOWNLOAD):
            raise AccessDeniedError("Access denied")
        file = await self.get_file(session, file_id)
        if file is None or not file.object_key:
            raise ObjectKeyMissingError(f"File not found or storage key missing: {file_id}")
        obj = await self._store.get(file.object_key, bucket=file.object_container or None)
        return FileStream(
            body=obj.body,
            content_type=obj.info.content_type or file.mime_type or DEFAULT_MIME_TYPE,
            file_name=file.original_name or file.file_name,
            object_key=file.object_key,
            content_length=obj.info.size,
            last_modified=obj.info.last_modified,
            etag=obj.info.etag,
        )

    async def verify_object(self, file: FileRecordBase) -> ObjectStatus:
        """HEAD the file's object."""
        info = await self._store.head(file.object_key, bucket=file.object_container or None)
        if info is None:
            return ObjectStatus(exists=False)
        return ObjectStatus(
            exists=True,
            size=info.size,
            last_modified=info.last_modified,
            content_type=info.content_type,
        )

    # ------------------------------------------------------------------
    # Delete
    # ------------------------------------------------------------------

    async def soft_delete_file(self, session: AsyncSession, owner_id: str, file_id: str) -> bool:
        """Mark a file deleted; the object stays in the store."""
        file = await self.get_file(session, file_id, owner_id=owner_id)
        if file is None:
            return False
        now = utcnow()
        file.is_deleted = True
        file.deleted_at = now
        file.last_modified = now
        await flush_or_raise(session, f"Failed to delete file {file_id}")
        logger.info("Soft-deleted file %s", file_id)
        return True

    async def permanent_delete(
        self, session: AsyncSession, owner_id: str, file_id: str
    ) -> PermanentDeleteResult:
        """Delete the object, then the row.

        If the row cannot be deleted after the object is gone, the session
        is rolled back and the record is soft-deleted instead so nothing
        points at a missing object.  That path reports
        ``DeleteOutcome.SOFT_DELETED_FALLBACK``.
        """
        file = await self._require_file(session, owner_id, file_id)
        key, bucket = file.object_key, file.object_container or None

        await self._store.delete(key, bucket=bucket)
        logger.info("Deleted object %s for file %s", key, file_id)

        try:
            await session.delete(file)
            await session.flush()
        except SQLAlchemyError:
            logger.warning(
                "Record delete failed for file %s after object %s was removed; "
                "falling back to soft delete",
                file_id, key, exc_info=True,
            )
            return await self._soft_delete_fallback(session, file_id, key)

        logger.info("Removed file record %s", file_id)
        return PermanentDeleteResult(file_id=file_id, outcome=DeleteOutcome.DELETED)

    async def _soft_delete_fallback(
        self, session: AsyncSession, file_id: str, key: str
    ) -> PermanentDeleteResult:
        try:
            await session.rollback()
            file = await self.get_file(session, file_id, include_deleted=True)
            if file is None:
                return PermanentDeleteResult(file_id=file_id, outcome=DeleteOutcome.DELETED)
            now = utcnow()
            file.is_deleted = True
            file.deleted_at = now
            file.last_modified = now
            await session.flush()
        except SQLAlchemyError as e:
            logger.critical(
                "Object %s was deleted but file %s could not be removed or soft-deleted; "
                "the record points at a missing object. Manual intervention needed.",
                key, file_id,
            )
            raise ConsistencyError(
                f"File {file_id} record is still live but its object {key} is gone"
            ) from e
        return PermanentDeleteResult(file_id=file_id, outcome=DeleteOutcome.SOFT_DELETED_FALLBACK)

    # ------------------------------------------------------------------
    # Folder contents
    # ------------------------------------------------------------------

    async def list_in_folders(
        self,
        session: AsyncSession,
        owner_id: str,
        folder_ids: Sequence[str],
        limit: int,
    ) -> list[FileRecordBase]:
        """Live files in *folder_ids*, fetched folder by folder, at most *limit* total."""
        model = self._file_model
        found: list[FileRecordBase] = []
        for folder_id in folder_ids:
            remaining = limit - len(found)
            if remaining <= 0:
                break
            result = await session.execute(
                select(model)
                .where(
                    model.owner_id == owner_id,
                    model.folder_id == folder_id,
                    model.is_deleted == False,  # noqa: E712
                )
                .order_by(model.uploaded_at, model.id)
                .limit(remaining)
            )
            found.extend(result.scalars().all())
        return found

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _require_file(
        self, session: AsyncSession, owner_id: str, file_id: str
    ) -> FileRecordBase:
        file = await self.get_file(session, file_id, owner_id=owner_id)
        if file is None:
            raise NotFoundError(f"File not found: {file_id}")
        return file

    async def _require_destination(
        self, session: AsyncSession, owner_id: str, folder_id: str
    ) -> None:
        model = self._folder_model
        result = await session.execute(
            select(model.id).where(
                model.id == folder_id,
                model.owner_id == owner_id,
                model.is_deleted == False,  # noqa: E712
            )
        )
        if result.first() is None:
            raise DestinationNotFoundError(f"Destination folder not found: {folder_id}")

    @staticmethod
    def file_to_info(f: FileRecordBase) -> FileInfo:
        """Convert a file record to FileInfo."""
        return FileInfo(
            id=f.id,
            owner_id=f.owner_id,
            file_name=f.file_name,
            original_name=f.original_name,
            file_size=f.file_size,
            mime_type=f.mime_type,
            object_key=f.object_key,
            object_container=f.object_container,
            folder_id=f.folder_id,
            uploaded_at=f.uploaded_at,
            last_modified=f.last_modified,
            tags=list(f.tags or []),
            metadata=dict(f.custom_metadata or {}),
        )
