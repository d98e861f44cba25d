"""
deptdocs Hierarchy Walker — bounded traversal over the folder forest.

All walks operate on the caller's session so they observe the same snapshot
as the mutation or resolution they serve. Only active folders are visited.
Every walk is capped at max_depth and tracks visited ids; running past the
cap or meeting a node twice means the stored tree is corrupt, which is
reported as a conflict rather than looping.
"""

from __future__ import annotations

import logging
from typing import Callable, List, Optional, Set

from sqlalchemy import select
from sqlalchemy.orm import Session

from deptdocs.db.models import Folder
from deptdocs.engine.errors import DeptDocsConflictError, DeptDocsNotFoundError

logger = logging.getLogger("deptdocs.folders.hierarchy")

DEFAULT_MAX_DEPTH = 32


class HierarchyWalker:
    """Ancestor/descendant traversal and cycle detection."""

    def __init__(self, max_depth: int = DEFAULT_MAX_DEPTH):
        if max_depth < 1:
            raise ValueError("max_depth must be >= 1")
        self.max_depth = max_depth

    # -------------------------------------------------------------------
    # Lookups
    # -------------------------------------------------------------------

    @staticmethod
    def load(session: Session, folder_id: int) -> Optional[Folder]:
        """Active folder by id, or None."""
        return session.scalar(
            select(Folder).where(Folder.id == folder_id, Folder.is_active.is_(True))
        )

    def require(self, session: Session, folder_id: int, what: str = "Folder") -> Folder:
        folder = self.load(session, folder_id)
        if folder is None:
            raise DeptDocsNotFoundError(
                f"{what} not found",
                object_ref=f"folder:{folder_id}",
                folder_id=folder_id,
            )
        return folder

    # -------------------------------------------------------------------
    # Upward
    # -------------------------------------------------------------------

    def walk_up(
        self,
        session: Session,
        start: Folder,
        stop: Optional[Callable[[Folder], bool]] = None,
    ) -> List[Folder]:
        """
        Chain from start (inclusive) to its root, nearest first.

        Args:
            stop: Predicate evaluated on each visited folder; when it returns
                  True the walk ends after that folder.
        """
        chain = [start]
        seen = {start.id}
        current = start

        while current.parent_id is not None and not (stop and stop(current)):
            if current.parent_id in seen:
                raise self._corrupted(start.id, f"folder {current.parent_id} visited twice")
            if len(chain) >= self.max_depth:
                raise self._corrupted(start.id, f"ancestor chain longer than {self.max_depth}")

            parent = self.load(session, current.parent_id)
            if parent is None:
                logger.warning(
                    f"Folder {current.id} references inactive parent {current.parent_id}"
                )
                break

            chain.append(parent)
            seen.add(parent.id)
            current = parent

        return chain

    def ancestors(self, session: Session, folder_id: int, include_self: bool = False) -> List[Folder]:
        """Active ancestors of folder_id, nearest first."""
        chain = self.walk_up(session, self.require(session, folder_id))
        return chain if include_self else chain[1:]

    def depth(self, session: Session, folder_id: int) -> int:
        """1 for a root folder, 2 for its children, and so on."""
        return len(self.walk_up(session, self.require(session, folder_id)))

    def validate_no_cycle(self, session: Session, folder_id: int, proposed_parent_id: int) -> None:
        """
        Reject a move of folder_id under proposed_parent_id that would make
        the folder its own ancestor.

        Raises:
            DeptDocsConflictError: self-parent or move beneath a descendant.
            DeptDocsNotFoundError: proposed parent missing or inactive.
        """
        if folder_id == proposed_parent_id:
            raise self._cycle(folder_id, proposed_parent_id)

        parent = self.require(session, proposed_parent_id, what="Parent folder")
        closure = {f.id for f in self.walk_up(session, parent)}
        if folder_id in closure:
            raise self._cycle(folder_id, proposed_parent_id)

    # -------------------------------------------------------------------
    # Downward
    # -------------------------------------------------------------------

    def collect_descendants(self, session: Session, folder_id: int) -> Set[int]:
        """
        Ids of every active folder beneath folder_id (the folder itself excluded).

        Breadth-first, one query per level.
        """
        descendants: Set[int] = set()
        frontier = [folder_id]
        level = 0

        while frontier:
            level += 1
            if level > self.max_depth:
                raise self._corrupted(folder_id, f"subtree deeper than {self.max_depth}")

            children = session.scalars(
                select(Folder.id).where(
                    Folder.parent_id.in_(frontier), Folder.is_active.is_(True)
                )
            ).all()

            frontier = []
            for child_id in children:
                if child_id in descendants or child_id == folder_id:
                    raise self._corrupted(folder_id, f"folder {child_id} visited twice")
                descendants.add(child_id)
                frontier.append(child_id)

        return descendants

    def subtree_height(self, session: Session, folder_id: int) -> int:
        """Number of levels in the subtree rooted at folder_id (1 for a leaf)."""
        height = 1
        frontier = [folder_id]
        seen = {folder_id}

        while True:
            children = session.scalars(
                select(Folder.id).where(
                    Folder.parent_id.in_(frontier), Folder.is_active.is_(True)
                )
            ).all()
            if not children:
                return height
            if any(c in seen for c in children):
                raise self._corrupted(folder_id, "subtree revisits a folder")
            height += 1
            if height > self.max_depth:
                raise self._corrupted(folder_id, f"subtree deeper than {self.max_depth}")
            seen.update(children)
            frontier = list(children)

    # -------------------------------------------------------------------
    # Errors
    # -------------------------------------------------------------------

    @staticmethod
    def _cycle(folder_id: int, parent_id: int) -> DeptDocsConflictError:
        return DeptDocsConflictError(
            "Cannot create circular folder reference",
            object_ref=f"folder:{folder_id}",
            reason="cycle",
            folder_id=folder_id,
            parent_id=parent_id,
        )

    @staticmethod
    def _corrupted(folder_id: int, detail: str) -> DeptDocsConflictError:
        logger.error(f"Hierarchy corrupted around folder {folder_id}: {detail}")
        return DeptDocsConflictError(
            f"Folder hierarchy is corrupted: {detail}",
            object_ref=f"folder:{folder_id}",
            reason="hierarchy_corrupted",
        )
