"""Tests for FileService — uploads, listing, moves, access checks, deletes."""

from __future__ import annotations

import re
from typing import TYPE_CHECKING
from unittest.mock import patch

import pytest
from sqlalchemy.exc import SQLAlchemyError

from coffer.fs.exceptions import (
    AccessDeniedError,
    ConsistencyError,
    DestinationNotFoundError,
    NotFoundError,
    ObjectKeyMissingError,
    StorageError,
    ValidationError,
)
from coffer.fs.types import DeleteOutcome, FileListQuery
from coffer.models.files import FileRecord

if TYPE_CHECKING:
    from collections.abc import Callable

    from sqlalchemy.ext.asyncio import AsyncSession

    from coffer.fs.files import FileService
    from coffer.fs.folders import FolderService
    from coffer.store.s3 import S3ObjectStore


# ---------------------------------------------------------------------------
# Upload
# ---------------------------------------------------------------------------


class TestUpload:
    async def test_upload_stores_object_and_record(
        self,
        files: FileService,
        store: S3ObjectStore,
        async_session: AsyncSession,
    ):
        info = await files.upload_file(
            async_session, "u1", b"hello", "my notes.txt", "text/plain", tags=[" a ", ""]
        )
        assert re.fullmatch(r"u1/my_notes_\d{13}_[a-z0-9]{6}\.txt", info.object_key)
        assert info.file_name == info.object_key.split("/", 1)[1]
        assert info.original_name == "my notes.txt"
        assert info.file_size == 5
        assert info.mime_type == "text/plain"
        assert info.object_container == store.bucket
        assert info.folder_id is None
        assert info.tags == ["a"]

        head = await store.head(info.object_key)
        assert head is not None
        assert head.metadata["owner-id"] == "u1"
        assert await store.read(info.object_key) == b"hello"

    async def test_default_mime_type(self, files: FileService, async_session: AsyncSession):
        info = await files.upload_file(async_session, "u1", b"x", "blob")
        assert info.mime_type == "application/octet-stream"

    async def test_upload_into_folder(
        self, files: FileService, folders: FolderService, async_session: AsyncSession
    ):
        docs = await folders.create_folder(async_session, "u1", "Docs")
        info = await files.upload_file(async_session, "u1", b"x", "a.txt", folder_id=docs.id)
        assert info.folder_id == docs.id
        assert info.object_key.startswith("u1/")

    async def test_upload_into_foreign_folder(
        self, files: FileService, folders: FolderService, async_session: AsyncSession
    ):
        theirs = await folders.create_folder(async_session, "u2", "Theirs")
        with pytest.raises(DestinationNotFoundError):
            await files.upload_file(async_session, "u1", b"x", "a.txt", folder_id=theirs.id)

    async def test_blank_name_rejected(self, files: FileService, async_session: AsyncSession):
        with pytest.raises(ValidationError):
            await files.upload_file(async_session, "u1", b"x", "   ")

    async def test_db_failure_removes_object(
        self,
        files: FileService,
        async_session: AsyncSession,
        object_keys: Callable[[str], list[str]],
    ):
        with (
            patch.object(async_session, "flush", side_effect=SQLAlchemyError("boom")),
            pytest.raises(StorageError),
        ):
            await files.upload_file(async_session, "u1", b"x", "a.txt")
        assert object_keys("u1/") == []

    async def test_batch_continues_on_error(
        self, files: FileService, async_session: AsyncSession
    ):
        result = await files.upload_files(
            async_session,
            "u1",
            [(b"1", "a.txt", None), (b"2", " ", None), (b"3", "c.txt", "text/plain")],
        )
        assert not result.success
        assert [f.original_name for f in result.files] == ["a.txt", "c.txt"]
        assert len(result.errors) == 1

    async def test_batch_stops_on_error(self, files: FileService, async_session: AsyncSession):
        result = await files.upload_files(
            async_session,
            "u1",
            [(b"1", " ", None), (b"2", "b.txt", None)],
            continue_on_error=False,
        )
        assert result.files == []
        assert len(result.errors) == 1


class TestPresignedUpload:
    async def test_create_and_register(
        self, files: FileService, store: S3ObjectStore, async_session: AsyncSession
    ):
        reserved = await files.create_upload_url(
            "u1", "photo.png", content_type="image/png", expiration_seconds=60
        )
        assert reserved.expires_in == 300
        assert reserved.object_key.startswith("u1/photo_")
        assert reserved.object_key in reserved.url

        await store.put(reserved.object_key, b"png-bytes", "image/png")
        info = await files.register_upload(
            async_session, "u1", reserved.object_key, "photo.png", tags=["holiday"]
        )
        assert info.file_size == 9
        assert info.mime_type == "image/png"
        assert info.file_name == reserved.file_name
        assert info.tags == ["holiday"]

    async def test_register_foreign_key(self, files: FileService, async_session: AsyncSession):
        with pytest.raises(AccessDeniedError):
            await files.register_upload(async_session, "u1", "u2/x.png", "x.png")

    async def test_register_missing_object(
        self, files: FileService, async_session: AsyncSession
    ):
        with pytest.raises(NotFoundError):
            await files.register_upload(async_session, "u1", "u1/never.png", "never.png")


# ---------------------------------------------------------------------------
# Listing
# ---------------------------------------------------------------------------


@pytest.fixture
async def catalogue(
    files: FileService, folders: FolderService, async_session: AsyncSession
) -> dict[str, str]:
    """Three root files and one in a folder for u1, one file for u2."""
    docs = await folders.create_folder(async_session, "u1", "Docs")
    ids = {"docs": docs.id}
    for name, data, mime in (
        ("big.png", b"xxx", "image/png"),
        ("small.jpg", b"x", "image/jpeg"),
        ("mid.pdf", b"xx", "application/pdf"),
    ):
        ids[name] = (await files.upload_file(async_session, "u1", data, name, mime)).id
    ids["inner.txt"] = (
        await files.upload_file(
            async_session, "u1", b"xxxx", "inner.txt", "text/plain", folder_id=docs.id
        )
    ).id
    await files.upload_file(async_session, "u2", b"x", "other.txt", "text/plain")
    return ids


class TestListFiles:
    async def test_all_files_with_totals(
        self, files: FileService, async_session: AsyncSession, catalogue: dict[str, str]
    ):
        result = await files.list_files(async_session, "u1")
        assert result.total_count == 4
        assert result.total_size == 10
        assert len(result.files) == 4

    async def test_pagination_keeps_totals(
        self, files: FileService, async_session: AsyncSession, catalogue: dict[str, str]
    ):
        result = await files.list_files(
            async_session, "u1", FileListQuery(limit=2, offset=1, sort_by="file_size")
        )
        assert [f.file_size for f in result.files] == [3, 2]
        assert result.total_count == 4
        assert result.total_size == 10

    async def test_sort_ascending_by_name(
        self, files: FileService, async_session: AsyncSession, catalogue: dict[str, str]
    ):
        result = await files.list_files(
            async_session, "u1", FileListQuery(sort_by="file_name", sort_order="asc")
        )
        names = [f.file_name for f in result.files]
        assert names == sorted(names)

    async def test_folder_filter(
        self, files: FileService, async_session: AsyncSession, catalogue: dict[str, str]
    ):
        result = await files.list_files(
            async_session, "u1", FileListQuery(folder_id=catalogue["docs"])
        )
        assert [f.id for f in result.files] == [catalogue["inner.txt"]]

    async def test_root_only(
        self, files: FileService, async_session: AsyncSession, catalogue: dict[str, str]
    ):
        result = await files.list_files(async_session, "u1", FileListQuery(root_only=True))
        assert result.total_count == 3

    async def test_mime_wildcard(
        self, files: FileService, async_session: AsyncSession, catalogue: dict[str, str]
    ):
        result = await files.list_files(
            async_session, "u1", FileListQuery(mime_type_pattern="image/*")
        )
        assert {f.mime_type for f in result.files} == {"image/png", "image/jpeg"}
        assert result.total_size == 4

    async def test_mime_substring(
        self, files: FileService, async_session: AsyncSession, catalogue: dict[str, str]
    ):
        result = await files.list_files(
            async_session, "u1", FileListQuery(mime_type_pattern="PDF")
        )
        assert [f.id for f in result.files] == [catalogue["mid.pdf"]]

    async def test_limit_clamped(
        self, files: FileService, async_session: AsyncSession, catalogue: dict[str, str]
    ):
        assert (await files.list_files(async_session, "u1", FileListQuery(limit=0))).limit == 1
        assert (await files.list_files(async_session, "u1", FileListQuery(limit=500))).limit == 100

    @pytest.mark.parametrize(
        "query",
        [FileListQuery(sort_by="object_key"), FileListQuery(sort_order="sideways")],
    )
    async def test_invalid_sort(
        self, files: FileService, async_session: AsyncSession, query: FileListQuery
    ):
        with pytest.raises(ValidationError):
            await files.list_files(async_session, "u1", query)

    async def test_deleted_excluded(
        self, files: FileService, async_session: AsyncSession, catalogue: dict[str, str]
    ):
        await files.soft_delete_file(async_session, "u1", catalogue["big.png"])
        result = await files.list_files(async_session, "u1")
        assert result.total_count == 3
        assert result.total_size == 7

    async def test_stats(
        self, files: FileService, async_session: AsyncSession, catalogue: dict[str, str]
    ):
        stats = await files.get_file_stats(async_session, "u1")
        assert stats.total_files == 4
        assert stats.total_size == 10
        assert stats.breakdown[0].mime_type == "text/plain"
        assert {s.mime_type for s in stats.breakdown} == {
            "image/png",
            "image/jpeg",
            "application/pdf",
            "text/plain",
        }


# ---------------------------------------------------------------------------
# Move / metadata
# ---------------------------------------------------------------------------


class TestMoveFile:
    async def test_move_changes_only_folder(
        self,
        files: FileService,
        folders: FolderService,
        store: S3ObjectStore,
        async_session: AsyncSession,
    ):
        docs = await folders.create_folder(async_session, "u1", "Docs")
        info = await files.upload_file(async_session, "u1", b"x", "a.txt")

        moved = await files.move_file(async_session, "u1", info.id, docs.id)

        assert moved.folder_id == docs.id
        assert moved.object_key == info.object_key
        assert moved.file_name == info.file_name
        assert await store.head(info.object_key) is not None

        back = await files.move_file(async_session, "u1", info.id, None)
        assert back.folder_id is None

    async def test_destination_of_other_owner(
        self, files: FileService, folders: FolderService, async_session: AsyncSession
    ):
        theirs = await folders.create_folder(async_session, "u2", "Theirs")
        info = await files.upload_file(async_session, "u1", b"x", "a.txt")
        with pytest.raises(DestinationNotFoundError):
            await files.move_file(async_session, "u1", info.id, theirs.id)

    async def test_deleted_destination(
        self, files: FileService, folders: FolderService, async_session: AsyncSession
    ):
        docs = await folders.create_folder(async_session, "u1", "Docs")
        await folders.soft_delete_subtree(async_session, "u1", docs.id)
        info = await files.upload_file(async_session, "u1", b"x", "a.txt")
        with pytest.raises(DestinationNotFoundError):
            await files.move_file(async_session, "u1", info.id, docs.id)

    async def test_move_file_of_other_owner(
        self, files: FileService, async_session: AsyncSession
    ):
        info = await files.upload_file(async_session, "u1", b"x", "a.txt")
        with pytest.raises(NotFoundError):
            await files.move_file(async_session, "u2", info.id, None)


class TestUpdateMetadata:
    async def test_tags_and_metadata(self, files: FileService, async_session: AsyncSession):
        info = await files.upload_file(async_session, "u1", b"x", "a.txt")
        updated = await files.update_metadata(
            async_session, "u1", info.id, tags=[" q1 ", "", "tax"], metadata={"year": 2024}
        )
        assert updated.tags == ["q1", "tax"]
        assert updated.metadata == {"year": 2024}

    async def test_metadata_must_be_mapping(
        self, files: FileService, async_session: AsyncSession
    ):
        info = await files.upload_file(async_session, "u1", b"x", "a.txt")
        with pytest.raises(ValidationError):
            await files.update_metadata(async_session, "u1", info.id, metadata=["nope"])


# ---------------------------------------------------------------------------
# Access
# ---------------------------------------------------------------------------


class TestAccess:
    async def test_owner_and_direct_share(
        self, files: FileService, async_session: AsyncSession
    ):
        info = await files.upload_file(async_session, "u1", b"x", "a.txt")
        await files.set_shared_with(async_session, "u1", info.id, ["u2", "u2", "u1"])
        assert await files.can_access(async_session, "u1", info.id)
        assert await files.can_access(async_session, "u2", info.id)
        assert not await files.can_access(async_session, "u3", info.id)
        assert not await files.can_access(async_session, "u1", "missing")

    async def test_deleted_file_not_accessible(
        self, files: FileService, async_session: AsyncSession
    ):
        info = await files.upload_file(async_session, "u1", b"x", "a.txt")
        await files.soft_delete_file(async_session, "u1", info.id)
        assert not await files.can_access(async_session, "u1", info.id)

    async def test_presigned_download(self, files: FileService, async_session: AsyncSession):
        info = await files.upload_file(async_session, "u1", b"hello", "a.txt", "text/plain")
        presigned = await files.issue_presigned_download(async_session, info.id, "u1", 10**6)
        assert presigned.expires_in == 86400
        assert info.object_key in presigned.url
        assert presigned.file_size == 5
        assert presigned.mime_type == "text/plain"

    async def test_presigned_download_denied(
        self, files: FileService, async_session: AsyncSession
    ):
        info = await files.upload_file(async_session, "u1", b"x", "a.txt")
        with pytest.raises(AccessDeniedError):
            await files.issue_presigned_download(async_session, info.id, "u2")

    async def test_presigned_download_missing_key(
        self, files: FileService, async_session: AsyncSession
    ):
        record = FileRecord(owner_id="u1", file_name="ghost.txt", object_key="")
        async_session.add(record)
        await async_session.flush()
        with pytest.raises(ObjectKeyMissingError):
            await files.issue_presigned_download(async_session, record.id, "u1")

    async def test_open_file_stream(self, files: FileService, async_session: AsyncSession):
        info = await files.upload_file(async_session, "u1", b"hello", "a.txt", "text/plain")
        stream = await files.open_file_stream(async_session, "u1", info.id)
        try:
            assert stream.body.read() == b"hello"
        finally:
            stream.body.close()
        assert stream.content_type == "text/plain"
        assert stream.file_name == "a.txt"
        assert stream.content_length == 5

    async def test_verify_object(
        self, files: FileService, store: S3ObjectStore, async_session: AsyncSession
    ):
        info = await files.upload_file(async_session, "u1", b"hello", "a.txt")
        record = await files.get_file(async_session, info.id)
        assert record is not None
        assert (await files.verify_object(record)).exists
        await store.delete(info.object_key)
        assert not (await files.verify_object(record)).exists


# ---------------------------------------------------------------------------
# Delete
# ---------------------------------------------------------------------------


class TestDelete:
    async def test_soft_delete_keeps_object(
        self, files: FileService, store: S3ObjectStore, async_session: AsyncSession
    ):
        info = await files.upload_file(async_session, "u1", b"x", "a.txt")
        assert await files.soft_delete_file(async_session, "u1", info.id)
        assert await files.get_file(async_session, info.id) is None
        assert await store.head(info.object_key) is not None
        assert not await files.soft_delete_file(async_session, "u1", info.id)

    async def test_permanent_delete(
        self, files: FileService, store: S3ObjectStore, async_session: AsyncSession
    ):
        info = await files.upload_file(async_session, "u1", b"x", "a.txt")
        result = await files.permanent_delete(async_session, "u1", info.id)
        assert result.outcome is DeleteOutcome.DELETED
        assert await store.head(info.object_key) is None
        assert await files.get_file(async_session, info.id, include_deleted=True) is None

    async def test_permanent_delete_falls_back_to_soft_delete(
        self, files: FileService, store: S3ObjectStore, async_session: AsyncSession
    ):
        info = await files.upload_file(async_session, "u1", b"x", "a.txt")
        await async_session.commit()

        with patch.object(async_session, "delete", side_effect=SQLAlchemyError("boom")):
            result = await files.permanent_delete(async_session, "u1", info.id)

        assert result.outcome is DeleteOutcome.SOFT_DELETED_FALLBACK
        assert await store.head(info.object_key) is None
        record = await files.get_file(async_session, info.id, include_deleted=True)
        assert record is not None
        assert record.is_deleted
        assert record.deleted_at is not None

    async def test_permanent_delete_other_owner(
        self, files: FileService, async_session: AsyncSession
    ):
        info = await files.upload_file(async_session, "u1", b"x", "a.txt")
        with pytest.raises(NotFoundError):
            await files.permanent_delete(async_session, "u2", info.id)

    async def test_failed_fallback_is_consistency_error(
        self, files: FileService, store: S3ObjectStore, async_session: AsyncSession
    ):
        info = await files.upload_file(async_session, "u1", b"x", "a.txt")
        await async_session.commit()

        with (
            patch.object(async_session, "delete", side_effect=SQLAlchemyError("boom")),
            patch.object(async_session, "flush", side_effect=SQLAlchemyError("boom")),
            pytest.raises(ConsistencyError),
        ):
            await files.permanent_delete(async_session, "u1", info.id)

        assert await store.head(info.object_key) is None


class TestDatabaseFailures:
    @pytest.mark.parametrize("operation", ["move", "metadata", "share", "soft_delete"])
    async def test_flush_failure_is_storage_error(
        self, files: FileService, async_session: AsyncSession, operation: str
    ):
        info = await files.upload_file(async_session, "u1", b"x", "a.txt")
        calls = {
            "move": lambda: files.move_file(async_session, "u1", info.id, None),
            "metadata": lambda: files.update_metadata(async_session, "u1", info.id, tags=["a"]),
            "share": lambda: files.set_shared_with(async_session, "u1", info.id, ["u2"]),
            "soft_delete": lambda: files.soft_delete_file(async_session, "u1", info.id),
        }
        with (
            patch.object(async_session, "flush", side_effect=SQLAlchemyError("boom")),
            pytest.raises(StorageError),
        ):
            await calls[operation]()
