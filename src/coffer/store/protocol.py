"""ObjectStore protocol — the capability the services consume.

Any S3-compatible gateway can back Coffer by implementing this protocol.
``bucket`` is optional on the per-object methods; gateways fall back to
their configured default container.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from .types import ListObjectsResult, ObjectInfo, StoredObject


@runtime_checkable
class ObjectStore(Protocol):
    """Core object store interface."""

    @property
    def bucket(self) -> str:
        """Default container for new objects."""
        ...

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def open(self) -> None: ...

    async def close(self) -> None: ...

    # ------------------------------------------------------------------
    # Objects
    # ------------------------------------------------------------------

    async def put(
        self,
        key: str,
        body: bytes,
        content_type: str | None = None,
        *,
        metadata: dict[str, str] | None = None,
        bucket: str | None = None,
    ) -> ObjectInfo: ...

    async def get(self, key: str, *, bucket: str | None = None) -> StoredObject: ...

    async def read(self, key: str, *, bucket: str | None = None) -> bytes: ...

    async def head(self, key: str, *, bucket: str | None = None) -> ObjectInfo | None: ...

    async def delete(self, key: str, *, bucket: str | None = None) -> None: ...

    async def copy(self, source_key: str, dest_key: str, *, bucket: str | None = None) -> None: ...

    # ------------------------------------------------------------------
    # Prefixes
    # ------------------------------------------------------------------

    async def list_under_prefix(
        self,
        prefix: str,
        *,
        recursive: bool = True,
        max_keys: int = 1000,
        continuation_token: str | None = None,
        bucket: str | None = None,
    ) -> ListObjectsResult: ...

    async def list_keys(self, prefix: str, *, bucket: str | None = None) -> list[str]: ...

    async def create_prefix(self, prefix: str, *, bucket: str | None = None) -> str: ...

    async def rename_prefix(
        self, old_prefix: str, new_prefix: str, *, bucket: str | None = None
    ) -> int: ...

    async def delete_prefix(self, prefix: str, *, bucket: str | None = None) -> int: ...

    # ------------------------------------------------------------------
    # Presigned URLs
    # ------------------------------------------------------------------

    async def presign_get(
        self, key: str, expires_in: int, *, bucket: str | None = None
    ) -> str: ...

    async def presign_put(
        self,
        key: str,
        expires_in: int,
        *,
        content_type: str | None = None,
        server_side_encryption: str | None = None,
        bucket: str | None = None,
    ) -> str: ...
