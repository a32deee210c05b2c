"""Result types: FolderInfo, FileInfo, ShareInfo, download and listing results."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from datetime import datetime

    from .permissions import ItemType, SharePermission


@dataclass
class FolderInfo:
    """Folder metadata."""

    id: str
    owner_id: str
    name: str
    parent_id: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass
class FileInfo:
    """File metadata."""

    id: str
    owner_id: str
    file_name: str
    original_name: str
    file_size: int
    mime_type: str
    object_key: str
    object_container: str
    folder_id: str | None = None
    uploaded_at: datetime | None = None
    last_modified: datetime | None = None
    tags: list[str] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class FileListQuery:
    """Filter, sort and page options for ``FileService.list_files``.

    ``folder_id`` narrows to one folder; ``root_only`` narrows to files
    outside any folder.  With neither set every file of the owner matches.
    """

    folder_id: str | None = None
    root_only: bool = False
    mime_type_pattern: str | None = None
    limit: int = 50
    offset: int = 0
    sort_by: str = "uploaded_at"
    sort_order: str = "desc"


@dataclass
class FileListResult:
    """One page of files plus totals over the unpaged match set."""

    files: list[FileInfo] = field(default_factory=list)
    total_count: int = 0
    total_size: int = 0
    limit: int = 50
    offset: int = 0


@dataclass
class MimeTypeStat:
    """Per-mime-type file count and byte size."""

    mime_type: str
    count: int
    size: int


@dataclass
class FileStats:
    """Aggregate statistics over a user's live files."""

    total_files: int = 0
    total_size: int = 0
    breakdown: list[MimeTypeStat] = field(default_factory=list)


@dataclass
class UploadBatchResult:
    """Result of a multi-file upload."""

    success: bool
    files: list[FileInfo] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


@dataclass
class PresignedDownload:
    """A presigned GET URL for one file."""

    url: str
    expires_in: int
    file_id: str
    file_name: str
    mime_type: str
    file_size: int


@dataclass
class PresignedUpload:
    """A presigned PUT URL reserving an object key for a direct upload."""

    url: str
    expires_in: int
    object_key: str
    file_name: str
    content_type: str | None = None


@dataclass
class ObjectStatus:
    """Result of checking a file's object in the object store."""

    exists: bool
    size: int | None = None
    last_modified: datetime | None = None
    content_type: str | None = None


@dataclass
class FileStream:
    """An open object body plus the headers a caller needs to serve it."""

    body: Any
    content_type: str
    file_name: str
    object_key: str
    content_length: int | None = None
    last_modified: datetime | None = None
    etag: str | None = None


class DeleteOutcome(str, Enum):
    """How a permanent delete ended."""

    DELETED = "deleted"
    SOFT_DELETED_FALLBACK = "soft_deleted_fallback"


@dataclass
class PermanentDeleteResult:
    """Result of ``FileService.permanent_delete``."""

    file_id: str
    outcome: DeleteOutcome


@dataclass
class SubtreeWalk:
    """Folder ids visited by a bounded breadth-first walk (root first)."""

    folder_ids: list[str] = field(default_factory=list)
    truncated: bool = False


@dataclass
class SubtreeDeleteResult:
    """Result of soft-deleting a folder subtree."""

    folder_id: str
    count: int
    objects_removed: int = 0
    truncated: bool = False


@dataclass
class PrefixEntry:
    """An immediate child prefix in the object store."""

    name: str
    prefix: str


@dataclass
class ShareInfo:
    """Share grant metadata."""

    id: str
    owner_id: str
    item_type: ItemType
    item_id: str
    token: str
    permissions: list[SharePermission] = field(default_factory=list)
    allowed_emails: list[str] = field(default_factory=list)
    expires_at: datetime | None = None
    is_revoked: bool = False
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass
class CreateShareResult:
    """A freshly issued share and its access URL."""

    share: ShareInfo
    url: str


@dataclass
class ResolvedShare:
    """A live share grant together with its item's current metadata."""

    share: ShareInfo
    item: FileInfo | FolderInfo


@dataclass
class PublicShareInfo:
    """What a token bearer may learn about the grant itself.

    Omits the token, the owner, and the allowlist contents.
    """

    item_type: ItemType
    permissions: list[SharePermission] = field(default_factory=list)
    expires_at: datetime | None = None
    restricted: bool = False


@dataclass
class PublicFileView:
    """File metadata shown to a token bearer: no owner, key, bucket or custom metadata."""

    id: str
    name: str
    file_size: int
    mime_type: str
    uploaded_at: datetime | None = None
    last_modified: datetime | None = None


@dataclass
class PublicFolderView:
    """Folder metadata shown to a token bearer."""

    id: str
    name: str
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass
class PublicShare:
    """A resolved share as seen by an anonymous token bearer."""

    share: PublicShareInfo
    item: PublicFileView | PublicFolderView

    @classmethod
    def from_resolved(cls, resolved: ResolvedShare) -> PublicShare:
        share = resolved.share
        info = PublicShareInfo(
            item_type=share.item_type,
            permissions=list(share.permissions),
            expires_at=share.expires_at,
            restricted=bool(share.allowed_emails),
        )
        item = resolved.item
        view: PublicFileView | PublicFolderView
        if isinstance(item, FileInfo):
            view = PublicFileView(
                id=item.id,
                name=item.original_name or item.file_name,
                file_size=item.file_size,
                mime_type=item.mime_type,
                uploaded_at=item.uploaded_at,
                last_modified=item.last_modified,
            )
        else:
            view = PublicFolderView(
                id=item.id,
                name=item.name,
                created_at=item.created_at,
                updated_at=item.updated_at,
            )
        return cls(share=info, item=view)


@dataclass
class SharedFileDownload:
    """One file inside a shared folder, with its presigned URL."""

    id: str
    file_name: str
    mime_type: str
    file_size: int
    folder_id: str | None
    url: str
    uploaded_at: datetime | None = None


@dataclass
class FolderDownloadResult:
    """Presigned URLs for the files under a shared folder."""

    folder_id: str
    expires_in: int
    limit: int
    recursive: bool
    items: list[SharedFileDownload] = field(default_factory=list)
    skipped: int = 0
    truncated: bool = False

    @property
    def count(self) -> int:
        return len(self.items)


@dataclass
class ShareAccessResult:
    """Outcome of an authorised token request.

    Carries only the public views of the grant and item.  ``item`` is
    always set.  ``download`` is set for file downloads,
    ``folder_download`` for folder downloads.
    """

    action: SharePermission
    share: PublicShareInfo
    item: PublicFileView | PublicFolderView
    download: PresignedDownload | None = None
    folder_download: FolderDownloadResult | None = None
