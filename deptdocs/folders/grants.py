"""
deptdocs Permission Grant Store — explicit (subject, action) grants on folders.

Grants are never physically removed: revoke flips is_active. Re-granting an
already active (subject, permission_type) pair on a folder returns the
existing grant; the partial unique indexes on folder_permissions make this
hold under concurrent grants as well.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Union

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from deptdocs.db.base import utcnow
from deptdocs.db.models import Department, FolderPermission, User
from deptdocs.db.session import SessionFactory, transaction
from deptdocs.engine.errors import DeptDocsConflictError, DeptDocsNotFoundError
from deptdocs.engine.logging import log, log_grant_operation
from deptdocs.folders.hierarchy import HierarchyWalker
from deptdocs.folders.queries import compile_revoke_filters
from deptdocs.folders.schemas import (
    GrantRequest,
    GrantView,
    RevokeFilters,
    parse,
    validate_id,
)

logger = logging.getLogger("deptdocs.folders.grants")


def to_grant_view(grant: FolderPermission) -> GrantView:
    """GrantView with subject and granter details filled in."""
    view = GrantView.model_validate(grant)
    if grant.user is not None:
        view.user_name = grant.user.full_name
        view.user_email = grant.user.email
    if grant.department is not None:
        view.department_name = grant.department.name
    if grant.granter is not None:
        view.granted_by_name = grant.granter.full_name
    return view


class PermissionGrantStore:
    """Grant, revoke and list explicit folder permissions."""

    def __init__(self, session_factory: SessionFactory, walker: Optional[HierarchyWalker] = None):
        self._session_factory = session_factory
        self._walker = walker or HierarchyWalker()

    def grant(
        self,
        folder_id: int,
        request: Union[GrantRequest, Dict[str, Any]],
        granted_by: int,
    ) -> GrantView:
        """
        Attach a grant to an active folder.

        Raises:
            DeptDocsValidationError: subject is not exactly one of user/department.
            DeptDocsNotFoundError: folder, user or department missing or inactive.
        """
        folder_id = validate_id(folder_id, "folder_id")
        granted_by = validate_id(granted_by, "granted_by")
        request = parse(GrantRequest, request)

        try:
            view, created = self._grant_once(folder_id, request, granted_by)
        except DeptDocsConflictError as e:
            if e.reason != "constraint":
                raise
            # Lost the insert race to an identical grant; return the winner
            with transaction(self._session_factory, "permission.grant", read_only=True) as session:
                existing = self._find_active(session, folder_id, request)
                if existing is None:
                    raise
                view, created = to_grant_view(existing), False

        if created:
            logger.info(
                f"Granted {request.permission_type.value} on folder {folder_id} "
                f"to {request.describe()} (by user {granted_by})"
            )
            log(log_grant_operation(
                "grant", folder_id, user_id=granted_by,
                permission_type=request.permission_type.value,
                subject={request.kind: request.subject_id},
            ))
        return view

    def _grant_once(self, folder_id: int, request: GrantRequest, granted_by: int):
        with transaction(self._session_factory, "permission.grant") as session:
            self._walker.require(session, folder_id)
            self._require_subject(session, request)

            existing = self._find_active(session, folder_id, request)
            if existing is not None:
                return to_grant_view(existing), False

            grant = FolderPermission(
                folder_id=folder_id,
                user_id=request.user_id,
                department_id=request.department_id,
                permission_type=request.permission_type.value,
                granted_by=granted_by,
                granted_at=utcnow(),
                is_active=True,
            )
            session.add(grant)
            session.flush()
            session.refresh(grant)
            return to_grant_view(grant), True

    def revoke(
        self,
        folder_id: int,
        filters: Union[RevokeFilters, Dict[str, Any], None] = None,
        revoked_by: Optional[int] = None,
    ) -> int:
        """
        Deactivate every active grant on folder_id matching all given filters.

        Returns the number of grants revoked.
        """
        folder_id = validate_id(folder_id, "folder_id")
        filters = parse(RevokeFilters, filters)

        with transaction(self._session_factory, "permission.revoke") as session:
            self._walker.require(session, folder_id)
            result = session.execute(
                update(FolderPermission)
                .where(*compile_revoke_filters(folder_id, filters))
                .values(is_active=False)
                .execution_options(synchronize_session=False)
            )
            revoked = result.rowcount or 0

        logger.info(f"Revoked {revoked} grant(s) on folder {folder_id} ({filters.describe()})")
        log(log_grant_operation(
            "revoke", folder_id, user_id=revoked_by,
            permission_type=filters.permission_type.value if filters.permission_type else None,
            subject={k: v for k, v in (("user", filters.user_id), ("department", filters.department_id)) if v},
            affected=revoked,
        ))
        return revoked

    def list(self, folder_id: int) -> List[GrantView]:
        """Active grants on folder_id, oldest first."""
        folder_id = validate_id(folder_id, "folder_id")
        with transaction(self._session_factory, "permission.list", read_only=True) as session:
            self._walker.require(session, folder_id)
            grants = session.scalars(
                select(FolderPermission)
                .where(FolderPermission.folder_id == folder_id, FolderPermission.is_active.is_(True))
                .order_by(FolderPermission.granted_at, FolderPermission.id)
            ).unique().all()
            return [to_grant_view(g) for g in grants]

    # -------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------

    @staticmethod
    def _find_active(session: Session, folder_id: int, request: GrantRequest) -> Optional[FolderPermission]:
        stmt = select(FolderPermission).where(
            FolderPermission.folder_id == folder_id,
            FolderPermission.permission_type == request.permission_type.value,
            FolderPermission.is_active.is_(True),
        )
        if request.user_id is not None:
            stmt = stmt.where(FolderPermission.user_id == request.user_id)
        else:
            stmt = stmt.where(FolderPermission.department_id == request.department_id)
        return session.scalars(stmt.order_by(FolderPermission.id).limit(1)).unique().first()

    @staticmethod
    def _require_subject(session: Session, request: GrantRequest) -> None:
        if request.user_id is not None:
            found = session.scalar(
                select(User.id).where(User.id == request.user_id, User.is_active.is_(True))
            )
            if found is None:
                raise DeptDocsNotFoundError(
                    "User not found",
                    object_ref=f"user:{request.user_id}",
                    user_id=request.user_id,
                )
        else:
            found = session.scalar(
                select(Department.id).where(
                    Department.id == request.department_id, Department.is_active.is_(True)
                )
            )
            if found is None:
                raise DeptDocsNotFoundError(
                    "Department not found",
                    object_ref=f"department:{request.department_id}",
                    department_id=request.department_id,
                )
