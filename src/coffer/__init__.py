"""Coffer: multi-tenant file storage with folder prefixes and capability shares.

Metadata in SQL (SQLModel), content in an S3-compatible object store.
"""

__version__ = "0.1.0"

from coffer._coffer_async import CofferAsync
from coffer.config import CofferConfig
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
    StorageError,
    UnauthorizedRecipientError,
    ValidationError,
)
from coffer.fs.permissions import ItemType, SharePermission
from coffer.fs.types import (
    DeleteOutcome,
    FileInfo,
    FileListQuery,
    FileListResult,
    FolderInfo,
    PublicShare,
    ShareAccessResult,
    ShareInfo,
)
from coffer.store.protocol import ObjectStore
from coffer.store.s3 import S3ObjectStore

__all__ = [
    "AccessDeniedError",
    "CofferAsync",
    "CofferConfig",
    "CofferError",
    "ConflictError",
    "ConsistencyError",
    "DeleteOutcome",
    "DestinationNotFoundError",
    "FileInfo",
    "FileListQuery",
    "FileListResult",
    "FolderExistsError",
    "FolderInfo",
    "InvalidExpiryError",
    "ItemType",
    "NotFoundError",
    "ObjectKeyMissingError",
    "ObjectStore",
    "PermissionNotGrantedError",
    "PublicShare",
    "S3ObjectStore",
    "ShareAccessResult",
    "ShareInfo",
    "ShareNotFoundError",
    "SharePermission",
    "StorageError",
    "UnauthorizedRecipientError",
    "ValidationError",
    "__version__",
]
