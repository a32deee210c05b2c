"""SQLModel database models for Coffer."""

from coffer.models.files import FileRecord, FileRecordBase
from coffer.models.folders import Folder, FolderBase
from coffer.models.shares import ShareGrant, ShareGrantBase

__all__ = [
    "FileRecord",
    "FileRecordBase",
    "Folder",
    "FolderBase",
    "ShareGrant",
    "ShareGrantBase",
]
