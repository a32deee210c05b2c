"""Share permissions and their normalisation."""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING

from .exceptions import ValidationError

if TYPE_CHECKING:
    from collections.abc import Iterable


class SharePermission(str, Enum):
    """Permission bit carried by a share grant, and the action it gates.

    Each action checks only its own bit: ``edit`` does not imply ``view``
    and ``download`` does not imply ``view``.
    """

    VIEW = "view"
    DOWNLOAD = "download"
    EDIT = "edit"


class ItemType(str, Enum):
    """Kind of item a share grant points at."""

    FILE = "file"
    FOLDER = "folder"


DEFAULT_PERMISSIONS: tuple[SharePermission, ...] = (SharePermission.VIEW,)


def normalize_permissions(
    permissions: Iterable[str | SharePermission] | None,
) -> list[SharePermission]:
    """Deduplicate and filter *permissions*, preserving first-seen order.

    Unknown values are dropped.  An empty result falls back to ``[view]``.
    """
    seen: list[SharePermission] = []
    for raw in permissions or ():
        try:
            perm = SharePermission(raw)
        except ValueError:
            continue
        if perm not in seen:
            seen.append(perm)
    return seen or list(DEFAULT_PERMISSIONS)


def parse_item_type(value: str | ItemType) -> ItemType:
    """Coerce *value* to an ``ItemType``; ``ValidationError`` on anything else."""
    try:
        return ItemType(value)
    except ValueError:
        msg = f"Invalid item type: {value!r}. Must be 'file' or 'folder'."
        raise ValidationError(msg) from None
