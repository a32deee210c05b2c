"""FolderService — the folder tree and its mirrored object-store prefixes.

Every live folder owns the prefix ``folders/<owner>/<ancestors...>/<name>/``.
Structural changes touch the object store first and the database second;
the database step is the cheap, reversible one.
"""

from __future__ import annotations

import logging
from collections import deque
from typing import TYPE_CHECKING

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import select

from coffer.store.keys import folder_prefix, sanitize_segment

from .exceptions import (
    ConsistencyError,
    FolderExistsError,
    NotFoundError,
    StorageError,
    ValidationError,
)
from .types import FolderInfo, PrefixEntry, SubtreeDeleteResult, SubtreeWalk
from .utils import MAX_FOLDER_DEPTH, SUBTREE_VISIT_LIMIT, utcnow

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from coffer.models.folders import FolderBase
    from coffer.store.protocol import ObjectStore

logger = logging.getLogger(__name__)

_MAX_NAME_LENGTH = 255
_ID_CHUNK = 500


class FolderService:
    """Folder hierarchy manager.

    Receives the concrete folder model and the object store at
    construction and a session at call time.  Flushes but never commits.
    """

    def __init__(self, folder_model: type[FolderBase], store: ObjectStore) -> None:
        self._folder_model = folder_model
        self._store = store

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    async def get_folder(
        self,
        session: AsyncSession,
        owner_id: str,
        folder_id: str,
        include_deleted: bool = False,
    ) -> FolderBase | None:
        """Get a folder owned by *owner_id*."""
        model = self._folder_model
        query = select(model).where(model.id == folder_id, model.owner_id == owner_id)
        if not include_deleted:
            query = query.where(model.is_deleted == False)  # noqa: E712
        result = await session.execute(query)
        return result.scalar_one_or_none()

    async def get_live_folder(self, session: AsyncSession, folder_id: str) -> FolderBase | None:
        """Get a non-deleted folder regardless of owner (token resolution)."""
        model = self._folder_model
        result = await session.execute(
            select(model).where(model.id == folder_id, model.is_deleted == False)  # noqa: E712
        )
        return result.scalar_one_or_none()

    async def list_children(
        self,
        session: AsyncSession,
        owner_id: str,
        parent_id: str | None = None,
    ) -> list[FolderInfo]:
        """Immediate live children of *parent_id* (root when ``None``), by name."""
        model = self._folder_model
        query = select(model).where(
            model.owner_id == owner_id,
            model.is_deleted == False,  # noqa: E712
        )
        if parent_id is None:
            query = query.where(model.parent_id.is_(None))  # type: ignore[union-attr]
        else:
            query = query.where(model.parent_id == parent_id)
        result = await session.execute(query.order_by(model.name))
        return [self.folder_to_info(f) for f in result.scalars().all()]

    async def list_folders(self, session: AsyncSession, owner_id: str) -> list[FolderInfo]:
        """Every live folder of *owner_id*, newest first."""
        model = self._folder_model
        result = await session.execute(
            select(model)
            .where(model.owner_id == owner_id, model.is_deleted == False)  # noqa: E712
            .order_by(model.created_at.desc())  # type: ignore[union-attr]
        )
        return [self.folder_to_info(f) for f in result.scalars().all()]

    # ------------------------------------------------------------------
    # Paths
    # ------------------------------------------------------------------

    async def get_path_segments(
        self,
        session: AsyncSession,
        owner_id: str,
        folder_id: str | None = None,
    ) -> list[str]:
        """Ancestor names from root down to, but excluding, *folder_id*.

        Raises ``NotFoundError`` if the folder does not exist and
        ``ConsistencyError`` if the ``parent_id`` chain is broken, cyclic,
        or deeper than ``MAX_FOLDER_DEPTH``.
        """
        if folder_id is None:
            return []
        folder = await self._require_folder(session, owner_id, folder_id)
        return await self._ancestor_names(session, owner_id, folder)

    async def full_path_segments(
        self,
        session: AsyncSession,
        owner_id: str,
        folder_id: str | None = None,
    ) -> list[str]:
        """Ancestor names plus the folder's own name."""
        if folder_id is None:
            return []
        folder = await self._require_folder(session, owner_id, folder_id)
        return [*await self._ancestor_names(session, owner_id, folder), folder.name]

    async def prefix_for(
        self,
        session: AsyncSession,
        owner_id: str,
        folder_id: str | None = None,
    ) -> str:
        """The object-store prefix mirroring *folder_id* (owner root when ``None``)."""
        return folder_prefix(
            owner_id, await self.full_path_segments(session, owner_id, folder_id)
        )

    async def _ancestor_names(
        self, session: AsyncSession, owner_id: str, folder: FolderBase
    ) -> list[str]:
        names: list[str] = []
        seen = {folder.id}
        parent_id = folder.parent_id
        while parent_id is not None:
            if len(names) >= MAX_FOLDER_DEPTH or parent_id in seen:
                raise ConsistencyError(
                    f"Folder {folder.id} has a cyclic or too-deep ancestor chain"
                )
            seen.add(parent_id)
            parent = await self.get_folder(session, owner_id, parent_id)
            if parent is None:
                raise ConsistencyError(
                    f"Folder {folder.id} references missing ancestor {parent_id}"
                )
            names.append(parent.name)
            parent_id = parent.parent_id
        names.reverse()
        return names

    # ------------------------------------------------------------------
    # Create / rename
    # ------------------------------------------------------------------

    async def create_folder(
        self,
        session: AsyncSession,
        owner_id: str,
        name: str,
        parent_id: str | None = None,
    ) -> FolderInfo:
        """Create a folder under *parent_id* (root when ``None``).

        The prefix marker is written before the row; if the object store
        fails no row is created.
        """
        name = self._clean_name(name)

        segments = [name]
        if parent_id is not None:
            parent = await self.get_folder(session, owner_id, parent_id)
            if parent is None:
                raise NotFoundError(f"Parent folder not found: {parent_id}")
            segments = [*await self._ancestor_names(session, owner_id, parent), parent.name, name]

        if await self._sibling_exists(session, owner_id, parent_id, name):
            raise FolderExistsError(f"Folder already exists: {name}")

        prefix = folder_prefix(owner_id, segments)
        await self._store.create_prefix(prefix)

        folder = self._folder_model(owner_id=owner_id, name=name, parent_id=parent_id)
        session.add(folder)
        try:
            await session.flush()
        except SQLAlchemyError as e:
            logger.error("Folder row insert failed for %s", prefix, exc_info=True)
            await self._discard_marker(prefix)
            raise StorageError(f"Failed to create folder: {name}") from e

        logger.info("Created folder %s (%s) for %s", folder.id, prefix, owner_id)
        return self.folder_to_info(folder)

    async def rename_folder(
        self,
        session: AsyncSession,
        owner_id: str,
        folder_id: str,
        new_name: str,
    ) -> FolderInfo:
        """Rename a folder and move its whole prefix subtree.

        Two phases: (1) move every object under the old prefix to the new
        one, (2) update the row.  If (2) fails, (1) is compensated by moving
        the objects back and the database failure is raised as
        ``StorageError``.  If the compensation fails too, the stores have
        diverged and ``ConsistencyError`` is raised.
        """
        folder = await self._require_folder(session, owner_id, folder_id)
        new_name = self._clean_name(new_name)
        if new_name == folder.name:
            return self.folder_to_info(folder)

        if await self._sibling_exists(
            session, owner_id, folder.parent_id, new_name, exclude_id=folder_id
        ):
            raise FolderExistsError(f"Folder already exists: {new_name}")

        ancestors = await self._ancestor_names(session, owner_id, folder)
        old_prefix = folder_prefix(owner_id, [*ancestors, folder.name])
        new_prefix = folder_prefix(owner_id, [*ancestors, new_name])

        moved = await self._store.rename_prefix(old_prefix, new_prefix)

        folder.name = new_name
        folder.updated_at = utcnow()
        try:
            await session.flush()
        except SQLAlchemyError as e:
            logger.error(
                "Folder %s rename failed in database; reverting %s -> %s",
                folder_id, new_prefix, old_prefix, exc_info=True,
            )
            try:
                await self._store.rename_prefix(new_prefix, old_prefix)
            except StorageError as rollback_error:
                logger.critical(
                    "Rollback of folder %s rename failed; objects remain under %s "
                    "while the database still records %s. Manual intervention needed.",
                    folder_id, new_prefix, old_prefix,
                )
                raise ConsistencyError(
                    f"Folder {folder_id} rename could not be rolled back; "
                    f"objects are under {new_prefix}"
                ) from rollback_error
            raise StorageError(f"Failed to rename folder {folder_id}") from e

        logger.info("Renamed folder %s: %s -> %s (%d objects)", folder_id, old_prefix, new_prefix, moved)
        return self.folder_to_info(folder)

    # ------------------------------------------------------------------
    # Delete
    # ------------------------------------------------------------------

    async def soft_delete_subtree(
        self,
        session: AsyncSession,
        owner_id: str,
        folder_id: str,
    ) -> SubtreeDeleteResult:
        """Delete the folder's prefix tree, then mark it and all descendants deleted.

        Files inside the subtree are left alone.
        """
        folder = await self._require_folder(session, owner_id, folder_id)
        prefix = folder_prefix(
            owner_id, [*await self._ancestor_names(session, owner_id, folder), folder.name]
        )
        removed = await self._store.delete_prefix(prefix)

        walk = await self.collect_subtree(session, folder_id, owner_id=owner_id)
        model = self._folder_model
        now = utcnow()
        try:
            for start in range(0, len(walk.folder_ids), _ID_CHUNK):
                chunk = walk.folder_ids[start : start + _ID_CHUNK]
                result = await session.execute(
                    select(model).where(model.id.in_(chunk))  # type: ignore[union-attr]
                )
                for node in result.scalars().all():
                    node.is_deleted = True
                    node.updated_at = now
            await session.flush()
        except SQLAlchemyError as e:
            logger.critical(
                "Prefix %s was deleted but folder %s could not be marked deleted. "
                "Manual intervention needed.",
                prefix, folder_id,
            )
            raise ConsistencyError(
                f"Folder {folder_id} objects were removed but its rows are still live"
            ) from e

        if walk.truncated:
            logger.warning(
                "Subtree walk for folder %s hit the %d-node cap; deeper folders remain live",
                folder_id, SUBTREE_VISIT_LIMIT,
            )
        logger.info(
            "Soft-deleted folder %s and %d descendants (%d objects removed)",
            folder_id, len(walk.folder_ids) - 1, removed,
        )
        return SubtreeDeleteResult(
            folder_id=folder_id,
            count=len(walk.folder_ids),
            objects_removed=removed,
            truncated=walk.truncated,
        )

    async def collect_subtree(
        self,
        session: AsyncSession,
        root_id: str,
        *,
        owner_id: str | None = None,
        limit: int = SUBTREE_VISIT_LIMIT,
    ) -> SubtreeWalk:
        """Breadth-first walk of live descendants of *root_id*.

        Returns the root followed by its descendants.  Stops after *limit*
        nodes and reports ``truncated=True``; already-visited ids are
        skipped so corrupt cyclic data terminates.
        """
        model = self._folder_model
        ids = [root_id]
        seen = {root_id}
        queue: deque[str] = deque([root_id])
        truncated = False

        while queue:
            parent = queue.popleft()
            query = select(model.id).where(
                model.parent_id == parent,
                model.is_deleted == False,  # noqa: E712
            )
            if owner_id is not None:
                query = query.where(model.owner_id == owner_id)
            result = await session.execute(query)
            for child_id in result.scalars().all():
                if child_id in seen:
                    continue
                if len(ids) >= limit:
                    truncated = True
                    queue.clear()
                    break
                seen.add(child_id)
                ids.append(child_id)
                queue.append(child_id)

        return SubtreeWalk(folder_ids=ids, truncated=truncated)

    # ------------------------------------------------------------------
    # Object-store view
    # ------------------------------------------------------------------

    async def list_prefix_children(
        self,
        session: AsyncSession,
        owner_id: str,
        folder_id: str | None = None,
    ) -> list[PrefixEntry]:
        """Child prefixes that exist in the object store under a folder."""
        prefix = await self.prefix_for(session, owner_id, folder_id)
        entries: list[PrefixEntry] = []
        token: str | None = None
        while True:
            page = await self._store.list_under_prefix(
                prefix, recursive=False, continuation_token=token
            )
            for child in page.child_prefixes:
                name = child[len(prefix):].strip("/").split("/", 1)[0]
                if name:
                    entries.append(PrefixEntry(name=name, prefix=child))
            if not page.truncated or not page.next_token:
                return entries
            token = page.next_token

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _require_folder(
        self, session: AsyncSession, owner_id: str, folder_id: str
    ) -> FolderBase:
        folder = await self.get_folder(session, owner_id, folder_id)
        if folder is None:
            raise NotFoundError(f"Folder not found: {folder_id}")
        return folder

    async def _sibling_exists(
        self,
        session: AsyncSession,
        owner_id: str,
        parent_id: str | None,
        name: str,
        *,
        exclude_id: str | None = None,
    ) -> bool:
        model = self._folder_model
        query = select(model.id).where(
            model.owner_id == owner_id,
            model.name == name,
            model.is_deleted == False,  # noqa: E712
        )
        if parent_id is None:
            query = query.where(model.parent_id.is_(None))  # type: ignore[union-attr]
        else:
            query = query.where(model.parent_id == parent_id)
        if exclude_id is not None:
            query = query.where(model.id != exclude_id)
        result = await session.execute(query.limit(1))
        return result.first() is not None

    async def _discard_marker(self, prefix: str) -> None:
        try:
            await self._store.delete(prefix)
        except StorageError:
            logger.warning("Could not remove orphaned folder marker %s", prefix)

    @staticmethod
    def _clean_name(name: str) -> str:
        if not isinstance(name, str) or not name.strip():
            raise ValidationError("Folder name is required")
        if "/" in name or "\\" in name:
            raise ValidationError("Folder name must not contain slashes")
        cleaned = sanitize_segment(name)
        if len(cleaned) > _MAX_NAME_LENGTH:
            raise ValidationError(f"Folder name exceeds {_MAX_NAME_LENGTH} characters")
        return cleaned

    @staticmethod
    def folder_to_info(f: FolderBase) -> FolderInfo:
        """Convert a folder record to FolderInfo."""
        return FolderInfo(
            id=f.id,
            owner_id=f.owner_id,
            name=f.name,
            parent_id=f.parent_id,
            created_at=f.created_at,
            updated_at=f.updated_at,
        )
