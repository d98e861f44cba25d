"""
deptdocs Folder Queries — compile typed filter objects into SQL criteria.

Each optional field of a filter model maps onto exactly one criterion;
callers combine the returned list with ``select(...).where(*criteria)``.
The active-row visibility predicate is always part of the result.
"""

from __future__ import annotations

from typing import List

from sqlalchemy import or_
from sqlalchemy.sql.elements import ColumnElement

from deptdocs.db.models import Folder, FolderPermission
from deptdocs.folders.schemas import FolderFilters, RevokeFilters


def escape_like(term: str) -> str:
    """Escape LIKE wildcards so user search text matches literally."""
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def compile_folder_filters(filters: FolderFilters) -> List[ColumnElement]:
    """Criteria for FolderDirectory.list()."""
    criteria: List[ColumnElement] = [Folder.is_active.is_(True)]

    if filters.root_only:
        criteria.append(Folder.parent_id.is_(None))
    elif filters.parent_id is not None:
        criteria.append(Folder.parent_id == filters.parent_id)

    if filters.owner_id is not None:
        criteria.append(Folder.owner_id == filters.owner_id)

    if filters.access_level is not None:
        criteria.append(Folder.access_level == filters.access_level.value)

    if filters.search:
        pattern = f"%{escape_like(filters.search)}%"
        criteria.append(
            or_(
                Folder.name.ilike(pattern, escape="\\"),
                Folder.description.ilike(pattern, escape="\\"),
            )
        )

    return criteria


def compile_revoke_filters(folder_id: int, filters: RevokeFilters) -> List[ColumnElement]:
    """Criteria selecting the active grants on folder_id that a revoke deactivates."""
    criteria: List[ColumnElement] = [
        FolderPermission.folder_id == folder_id,
        FolderPermission.is_active.is_(True),
    ]

    if filters.user_id is not None:
        criteria.append(FolderPermission.user_id == filters.user_id)

    if filters.department_id is not None:
        criteria.append(FolderPermission.department_id == filters.department_id)

    if filters.permission_type is not None:
        criteria.append(FolderPermission.permission_type == filters.permission_type.value)

    return criteria
