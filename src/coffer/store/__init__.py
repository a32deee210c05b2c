"""Object store layer — the gateway protocol, the S3 implementation, key rules."""

from coffer.store.keys import (
    FOLDER_MARKER_CONTENT_TYPE,
    file_object_key,
    folder_prefix,
    generate_unique_filename,
    sanitize_filename,
    sanitize_segment,
)
from coffer.store.protocol import ObjectStore
from coffer.store.s3 import S3ObjectStore
from coffer.store.types import ListObjectsResult, ObjectInfo, StoredObject

__all__ = [
    "FOLDER_MARKER_CONTENT_TYPE",
    "ListObjectsResult",
    "ObjectInfo",
    "ObjectStore",
    "S3ObjectStore",
    "StoredObject",
    "file_object_key",
    "folder_prefix",
    "generate_unique_filename",
    "sanitize_filename",
    "sanitize_segment",
]
