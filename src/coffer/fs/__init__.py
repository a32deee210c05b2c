"""Storage layer — folder, file and share services, access decisions, errors."""

from coffer.fs.exceptions import (
    AccessDeniedError,
    CofferError,
    ConflictError,
    ConsistencyError,
    DestinationNotFoundError,
    FolderExistsError,
    InvalidExpiryError,
    NotFoundError,
    ObjectKeyMissingError,
    PermissionNotGrantedError,
    ShareNotFoundError,
    ShareTokenConflictError,
    StorageError,
    UnauthorizedRecipientError,
    ValidationError,
)
from coffer.fs.access import AccessEvaluator
from coffer.fs.files import FileService
from coffer.fs.folders import FolderService
from coffer.fs.permissions import ItemType, SharePermission, normalize_permissions
from coffer.fs.sharing import SharingService
from coffer.fs.types import (
    CreateShareResult,
    DeleteOutcome,
    FileInfo,
    FileListQuery,
    FileListResult,
    FileStats,
    FileStream,
    FolderDownloadResult,
    FolderInfo,
    MimeTypeStat,
    ObjectStatus,
    PermanentDeleteResult,
    PrefixEntry,
    PresignedDownload,
    PresignedUpload,
    PublicFileView,
    PublicFolderView,
    PublicShare,
    PublicShareInfo,
    ResolvedShare,
    ShareAccessResult,
    SharedFileDownload,
    ShareInfo,
    SubtreeDeleteResult,
    SubtreeWalk,
    UploadBatchResult,
)

__all__ = [
    "AccessDeniedError",
    "AccessEvaluator",
    "CofferError",
    "ConflictError",
    "ConsistencyError",
    "CreateShareResult",
    "DeleteOutcome",
    "DestinationNotFoundError",
    "FileInfo",
    "FileListQuery",
    "FileListResult",
    "FileService",
    "FileStats",
    "FileStream",
    "FolderDownloadResult",
    "FolderExistsError",
    "FolderInfo",
    "FolderService",
    "InvalidExpiryError",
    "ItemType",
    "MimeTypeStat",
    "NotFoundError",
    "ObjectKeyMissingError",
    "ObjectStatus",
    "PermanentDeleteResult",
    "PermissionNotGrantedError",
    "PrefixEntry",
    "PresignedDownload",
    "PresignedUpload",
    "PublicFileView",
    "PublicFolderView",
    "PublicShare",
    "PublicShareInfo",
    "ResolvedShare",
    "ShareAccessResult",
    "ShareInfo",
    "ShareNotFoundError",
    "ShareTokenConflictError",
    "SharePermission",
    "SharedFileDownload",
    "SharingService",
    "StorageError",
    "SubtreeDeleteResult",
    "SubtreeWalk",
    "UnauthorizedRecipientError",
    "UploadBatchResult",
    "ValidationError",
    "normalize_permissions",
]
