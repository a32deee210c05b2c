"""Custom exception hierarchy for the Coffer storage layer.

Access-denial errors carry deliberately generic messages: they never reveal
whether the underlying resource exists.
"""


class CofferError(Exception):
    """Base exception for all Coffer errors."""


class ValidationError(CofferError, ValueError):
    """Raised when input has the wrong shape or is out of range."""


class InvalidExpiryError(ValidationError):
    """Raised when a share expiry is not strictly in the future (``INVALID_EXPIRY``)."""


class ConflictError(CofferError):
    """Raised when a write collides with existing state."""


class FolderExistsError(ConflictError):
    """Raised when a sibling folder with the same name exists (``FOLDER_EXISTS``)."""


class ShareTokenConflictError(ConflictError):
    """Raised when a generated share token collides with an existing one."""


class AccessDeniedError(CofferError):
    """Raised when a principal may not act on an item (``ACCESS_DENIED``)."""


class UnauthorizedRecipientError(AccessDeniedError):
    """Raised when a share restricted to an email allowlist is used by anyone else."""


class PermissionNotGrantedError(AccessDeniedError):
    """Raised when a share grant lacks the permission bit an action requires."""


class NotFoundError(CofferError):
    """Raised when an owner-scoped lookup finds nothing."""


class DestinationNotFoundError(NotFoundError):
    """Raised when a move targets a folder that is missing or not owned (``DESTINATION_NOT_FOUND``)."""


class ShareNotFoundError(NotFoundError):
    """Raised when a share token is unknown, revoked, expired, or its item is gone."""


class ObjectKeyMissingError(NotFoundError):
    """Raised when a file record has no resolvable object key."""


class StorageError(CofferError):
    """Raised on storage backend failures (object store or database I/O)."""


class ConsistencyError(CofferError):
    """Raised when the object store and the database have diverged.

    Either a compensating action failed after a partial mutation, or the
    folder tree itself is corrupt (e.g. a ``parent_id`` cycle).  Requires
    operator attention.
    """
