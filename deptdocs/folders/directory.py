"""
deptdocs Folder Directory — CRUD over the folder forest.

Every mutation is one transaction: pre-checks (parent exists, sibling name
free, no cycle, depth within bounds) run on the same session that performs
the write, and the partial unique indexes on folders close the remaining
check-then-act race. Reads apply the active-only visibility predicate.

Cascade delete computes the full descendant closure before writing, asks the
document store to deactivate documents under every folder of the closure,
then deactivates the folders. Any failure rolls the whole cascade back.
"""

from __future__ import annotations

import logging
import time
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Union

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from deptdocs.db.base import utcnow
from deptdocs.db.models import Document, Folder, User
from deptdocs.db.session import SessionFactory, transaction
from deptdocs.documents.store import DocumentStore, SqlDocumentStore
from deptdocs.engine.config import FolderSettings
from deptdocs.engine.errors import (
    DeptDocsConflictError,
    DeptDocsNotFoundError,
    DeptDocsStorageError,
    DeptDocsValidationError,
)
from deptdocs.engine.logging import log, log_folder_operation
from deptdocs.folders.hierarchy import HierarchyWalker
from deptdocs.folders.queries import compile_folder_filters
from deptdocs.folders.schemas import (
    FolderCreate,
    FolderFilters,
    FolderPage,
    FolderUpdate,
    FolderView,
    parse,
    validate_id,
)

logger = logging.getLogger("deptdocs.folders.directory")


class FolderDirectory:
    """
    Folder nodes: create, update (rename/move/settings), delete, reads.

    Usage:
        directory = FolderDirectory(session_factory)
        reports = directory.create(FolderCreate(name="Reports"), owner_id=7)
        directory.update(reports.id, FolderUpdate(parent_id=None))
    """

    def __init__(
        self,
        session_factory: SessionFactory,
        walker: Optional[HierarchyWalker] = None,
        document_store: Optional[DocumentStore] = None,
        settings: Optional[FolderSettings] = None,
    ):
        self._session_factory = session_factory
        self._settings = settings or FolderSettings()
        self._walker = walker or HierarchyWalker(self._settings.max_depth)
        self._documents = document_store or SqlDocumentStore()

    @property
    def walker(self) -> HierarchyWalker:
        return self._walker

    # -------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------

    def create(self, data: Union[FolderCreate, Dict[str, Any]], owner_id: int) -> FolderView:
        """
        Create a folder, optionally under a parent.

        Raises:
            DeptDocsNotFoundError: owner is not an active user, or parent
                                   given but not active.
            DeptDocsConflictError: active sibling already has the name, or the
                                   folder would sit deeper than max_depth.
        """
        data = parse(FolderCreate, data)
        owner_id = validate_id(owner_id, "owner_id")
        started = time.monotonic()

        with transaction(self._session_factory, "folder.create") as session:
            self._require_owner(session, owner_id)

            if data.parent_id is not None:
                self._walker.require(session, data.parent_id, what="Parent folder")
                depth = self._walker.depth(session, data.parent_id) + 1
                self._check_depth(depth, data.parent_id)

            self._ensure_unique_name(session, data.name, data.parent_id)

            folder = Folder(
                name=data.name,
                description=data.description,
                parent_id=data.parent_id,
                owner_id=owner_id,
                access_level=data.access_level.value,
                inherit_permissions=data.inherit_permissions,
                is_active=True,
            )
            session.add(folder)
            self._flush_unique(session, data.name, data.parent_id)
            view = FolderView.model_validate(folder)

        logger.info(f"Folder created: {view.id} '{view.name}' (parent={view.parent_id})")
        log(log_folder_operation(
            "create", view.id, user_id=owner_id,
            duration_ms=round((time.monotonic() - started) * 1000, 2),
        ))
        return view

    def update(
        self,
        folder_id: int,
        data: Union[FolderUpdate, Dict[str, Any]],
        user_id: Optional[int] = None,
    ) -> FolderView:
        """
        Apply the explicitly supplied fields of data.

        A parent change re-runs cycle validation against the new parent and
        checks the moved subtree still fits within max_depth. A name or parent
        change re-checks sibling uniqueness, excluding the folder itself.
        """
        folder_id = validate_id(folder_id, "folder_id")
        data = parse(FolderUpdate, data)
        changes = data.changes()
        started = time.monotonic()

        with transaction(self._session_factory, "folder.update") as session:
            folder = self._walker.require(session, folder_id)
            if not changes:
                return FolderView.model_validate(folder)

            new_parent_id = changes.get("parent_id", folder.parent_id)
            new_name = changes.get("name", folder.name)
            parent_changed = new_parent_id != folder.parent_id

            if parent_changed and new_parent_id is not None:
                self._walker.validate_no_cycle(session, folder.id, new_parent_id)
                depth = (
                    self._walker.depth(session, new_parent_id)
                    + self._walker.subtree_height(session, folder.id)
                )
                self._check_depth(depth, new_parent_id)

            if parent_changed or new_name != folder.name:
                self._ensure_unique_name(session, new_name, new_parent_id, exclude_id=folder.id)

            fields_changed = []
            for field, value in changes.items():
                if isinstance(value, Enum):
                    value = value.value
                if getattr(folder, field) != value:
                    setattr(folder, field, value)
                    fields_changed.append(field)

            if fields_changed:
                folder.updated_at = utcnow()
                self._flush_unique(session, new_name, new_parent_id)
            view = FolderView.model_validate(folder)

        if fields_changed:
            logger.info(f"Folder updated: {folder_id} ({', '.join(sorted(fields_changed))})")
            log(log_folder_operation(
                "update", folder_id, user_id=user_id,
                fields_changed=sorted(fields_changed),
                duration_ms=round((time.monotonic() - started) * 1000, 2),
            ))
        return view

    def delete(self, folder_id: int, cascade: bool = False, user_id: Optional[int] = None) -> int:
        """
        Soft-delete a folder. Returns the number of folders deactivated.

        Without cascade the folder must hold no active subfolders or
        documents. With cascade the whole subtree and its documents go in a
        single transaction.
        """
        folder_id = validate_id(folder_id, "folder_id")
        started = time.monotonic()

        with transaction(self._session_factory, "folder.delete") as session:
            folder = self._walker.require(session, folder_id)

            if cascade:
                targets = [folder.id] + sorted(self._walker.collect_descendants(session, folder.id))
            else:
                subfolders = self._count_children(session, folder.id)
                documents = self._documents.count_active(session, folder.id)
                if subfolders or documents:
                    raise DeptDocsConflictError(
                        "Cannot delete folder with contents. Use cascade=True to force deletion.",
                        object_ref=f"folder:{folder_id}",
                        reason="not_empty",
                        subfolders=subfolders,
                        documents=documents,
                    )
                targets = [folder.id]

            for target in targets:
                if not self._documents.deactivate_all_under(session, target):
                    raise DeptDocsStorageError(
                        f"Document store failed to deactivate documents in folder {target}",
                        object_ref=f"folder:{target}",
                        operation="folder.delete",
                    )

            session.execute(
                update(Folder)
                .where(Folder.id.in_(targets), Folder.is_active.is_(True))
                .values(is_active=False, updated_at=utcnow())
                .execution_options(synchronize_session=False)
            )

        logger.info(f"Folder deleted: {folder_id} ({len(targets)} folder(s), cascade={cascade})")
        log(log_folder_operation(
            "delete", folder_id, user_id=user_id,
            affected_ids=targets if cascade else None,
            duration_ms=round((time.monotonic() - started) * 1000, 2),
        ))
        return len(targets)

    # -------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------

    def get(self, folder_id: int) -> FolderView:
        """Active folder with its document and subfolder counts."""
        folder_id = validate_id(folder_id, "folder_id")
        with transaction(self._session_factory, "folder.get", read_only=True) as session:
            folder = self._walker.require(session, folder_id)
            view = FolderView.model_validate(folder)
            view.document_count = self._documents.count_active(session, folder_id)
            view.subfolder_count = self._count_children(session, folder_id)
            return view

    def get_hierarchy_path(self, folder_id: int) -> List[FolderView]:
        """Breadcrumb from the root down to folder_id."""
        folder_id = validate_id(folder_id, "folder_id")
        with transaction(self._session_factory, "folder.path", read_only=True) as session:
            chain = self._walker.ancestors(session, folder_id, include_self=True)
            return [FolderView.model_validate(f) for f in reversed(chain)]

    def children(self, folder_id: Optional[int] = None) -> List[FolderView]:
        """Active direct children of folder_id, or the root folders when None."""
        if folder_id is not None:
            folder_id = validate_id(folder_id, "folder_id")
        with transaction(self._session_factory, "folder.children", read_only=True) as session:
            if folder_id is not None:
                self._walker.require(session, folder_id)
            parent_clause = (
                Folder.parent_id.is_(None) if folder_id is None else Folder.parent_id == folder_id
            )
            rows = session.scalars(
                select(Folder)
                .where(parent_clause, Folder.is_active.is_(True))
                .order_by(Folder.name)
            ).all()
            return [FolderView.model_validate(f) for f in rows]

    def list(
        self,
        filters: Union[FolderFilters, Dict[str, Any], None] = None,
        page: int = 1,
        limit: Optional[int] = None,
        restrict_to: Optional[Iterable[int]] = None,
    ) -> FolderPage:
        """
        Paginated folder listing ordered by name, with counts.

        Args:
            restrict_to: Only consider these folder ids (e.g. the caller's
                         readable set). None means no restriction.
        """
        filters = parse(FolderFilters, filters)
        if isinstance(page, bool) or not isinstance(page, int) or page < 1:
            raise DeptDocsValidationError(f"page must be >= 1, got {page!r}", reason="invalid_page")
        if limit is None:
            limit = self._settings.default_page_size
        if isinstance(limit, bool) or not isinstance(limit, int) or limit < 1:
            raise DeptDocsValidationError(f"limit must be >= 1, got {limit!r}", reason="invalid_limit")
        limit = min(limit, self._settings.max_page_size)

        criteria = compile_folder_filters(filters)
        if restrict_to is not None:
            criteria.append(Folder.id.in_(list(restrict_to)))

        with transaction(self._session_factory, "folder.list", read_only=True) as session:
            total = session.scalar(select(func.count(Folder.id)).where(*criteria)) or 0
            rows = session.scalars(
                select(Folder)
                .where(*criteria)
                .order_by(Folder.name, Folder.id)
                .offset((page - 1) * limit)
                .limit(limit)
            ).all()

            ids = [f.id for f in rows]
            doc_counts = self._grouped_counts(session, Document.folder_id, Document.is_active, ids)
            sub_counts = self._grouped_counts(session, Folder.parent_id, Folder.is_active, ids)

            items = []
            for folder in rows:
                view = FolderView.model_validate(folder)
                view.document_count = doc_counts.get(folder.id, 0)
                view.subfolder_count = sub_counts.get(folder.id, 0)
                items.append(view)

        return FolderPage(items=items, total=total, page=page, limit=limit)

    # -------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------

    def _check_depth(self, depth: int, parent_id: int) -> None:
        if depth > self._settings.max_depth:
            raise DeptDocsConflictError(
                f"Folder tree would be {depth} levels deep (max {self._settings.max_depth})",
                object_ref=f"folder:{parent_id}",
                reason="depth_exceeded",
                max_depth=self._settings.max_depth,
            )

    @staticmethod
    def _require_owner(session: Session, owner_id: int) -> None:
        found = session.scalar(
            select(User.id).where(User.id == owner_id, User.is_active.is_(True))
        )
        if found is None:
            raise DeptDocsNotFoundError(
                "User not found",
                object_ref=f"user:{owner_id}",
                user_id=owner_id,
            )

    @staticmethod
    def _ensure_unique_name(
        session: Session,
        name: str,
        parent_id: Optional[int],
        exclude_id: Optional[int] = None,
    ) -> None:
        stmt = select(Folder.id).where(Folder.name == name, Folder.is_active.is_(True))
        if parent_id is None:
            stmt = stmt.where(Folder.parent_id.is_(None))
        else:
            stmt = stmt.where(Folder.parent_id == parent_id)
        if exclude_id is not None:
            stmt = stmt.where(Folder.id != exclude_id)

        if session.scalar(stmt.limit(1)) is not None:
            raise DeptDocsConflictError(
                "Folder with this name already exists in the parent directory",
                object_ref=f"folder:{parent_id}" if parent_id else "folder:root",
                reason="duplicate_name",
                name=name,
            )

    @staticmethod
    def _flush_unique(session: Session, name: str, parent_id: Optional[int]) -> None:
        """Flush, reporting a lost sibling-name race as a duplicate."""
        try:
            session.flush()
        except IntegrityError as e:
            if "unique" not in str(e.orig).lower():
                raise
            logger.warning(f"Concurrent duplicate folder name '{name}' under {parent_id}: {e.orig}")
            raise DeptDocsConflictError(
                "Folder with this name already exists in the parent directory",
                object_ref=f"folder:{parent_id}" if parent_id else "folder:root",
                reason="duplicate_name",
                name=name,
            ) from e

    @staticmethod
    def _count_children(session: Session, folder_id: int) -> int:
        return session.scalar(
            select(func.count(Folder.id)).where(
                Folder.parent_id == folder_id, Folder.is_active.is_(True)
            )
        ) or 0

    @staticmethod
    def _grouped_counts(session: Session, key_column, active_column, ids: List[int]) -> Dict[int, int]:
        if not ids:
            return {}
        rows = session.execute(
            select(key_column, func.count())
            .where(key_column.in_(ids), active_column.is_(True))
            .group_by(key_column)
        ).all()
        return {key: count for key, count in rows}
