"""Object key conventions.

Files live at ``<owner_id>/<generated_file_name>``.  Folder markers and
folder contents live at ``folders/<owner_id>/<seg1>/<seg2>/.../``.
"""

from __future__ import annotations

import re
import secrets
import string
import time
from collections.abc import Iterable

FOLDER_ROOT = "folders"
FOLDER_MARKER_CONTENT_TYPE = "application/x-directory"

_WHITESPACE = re.compile(r"\s+")
_UNSAFE_FILENAME_CHARS = re.compile(r'[<>:"/\\|?*]')
_REPEATED_UNDERSCORES = re.compile(r"_{2,}")
_SUFFIX_ALPHABET = string.ascii_lowercase + string.digits
_MAX_FILENAME_LENGTH = 100


def sanitize_segment(segment: str) -> str:
    """Sanitize one path segment.

    Trims, converts backslashes to forward slashes, collapses internal
    whitespace to one space and strips leading/trailing slashes.

    Examples:
        sanitize_segment("  My   Docs ") -> "My Docs"
        sanitize_segment("a\\\\b/") -> "a/b"
    """
    value = segment.strip().replace("\\", "/")
    value = _WHITESPACE.sub(" ", value)
    return value.strip("/")


def folder_prefix(owner_id: str, segments: Iterable[str] = ()) -> str:
    """Build the folder prefix for *owner_id* and a root-to-leaf segment list.

    Examples:
        folder_prefix("u1") -> "folders/u1/"
        folder_prefix("u1", ["Work", "Q1"]) -> "folders/u1/Work/Q1/"
    """
    base = f"{FOLDER_ROOT}/{sanitize_segment(owner_id)}/"
    path = "/".join(s for s in (sanitize_segment(seg) for seg in segments) if s)
    if not path:
        return base
    return f"{base}{path}/"


def file_object_key(owner_id: str, file_name: str) -> str:
    return f"{owner_id}/{file_name}"


def sanitize_filename(filename: str) -> str:
    """Make *filename* safe to embed in an object key."""
    value = _UNSAFE_FILENAME_CHARS.sub("_", filename)
    value = _WHITESPACE.sub("_", value)
    value = _REPEATED_UNDERSCORES.sub("_", value).strip("_")
    if not value:
        value = "unnamed_file"
    if len(value) > _MAX_FILENAME_LENGTH:
        stem, dot, ext = value.rpartition(".")
        if dot and stem:
            ext = dot + ext
            value = stem[: _MAX_FILENAME_LENGTH - len(ext)] + ext
        else:
            value = value[:_MAX_FILENAME_LENGTH]
    return value


def generate_unique_filename(original_name: str) -> str:
    """Return ``<stem>_<epoch millis>_<6 random chars><ext>``.

    Examples:
        generate_unique_filename("my report.pdf") -> "my_report_1717171717171_a1b2c3.pdf"
    """
    sanitized = sanitize_filename(original_name)
    millis = int(time.time() * 1000)
    suffix = "".join(secrets.choice(_SUFFIX_ALPHABET) for _ in range(6))
    stem, dot, ext = sanitized.rpartition(".")
    if not dot or not stem:
        return f"{sanitized}_{millis}_{suffix}"
    return f"{stem}_{millis}_{suffix}.{ext}"
