"""
deptdocs Folder Service — access-checked facade over the folder engine.

Every operation resolves the action it needs for the calling principal and
raises DeptDocsForbiddenError when the resolver answers False. Denials are
written to the security audit log. The principal is passed explicitly or
taken from the request context.

Required access:
    get_folder / get_hierarchy_path / list_children   read on folder
    list_folders                                      read (unreadable folders filtered out)
    create_folder                                     write on parent; manage_folders for roots
    update_folder                                     write on folder; write on new parent when
                                                      moving (manage_folders for a move to root)
    delete_folder                                     delete on folder
    grant / revoke / list_permissions                 manage on folder
    check_access / effective_permissions /
    accessible_folders                                none
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Set, Union

from deptdocs.db.session import SessionFactory
from deptdocs.documents.store import DocumentStore
from deptdocs.engine.config import FolderSettings
from deptdocs.engine.context import Principal, require_principal
from deptdocs.engine.errors import DeptDocsForbiddenError
from deptdocs.engine.logging import log, log_access_decision
from deptdocs.folders.directory import FolderDirectory
from deptdocs.folders.entitlements import EntitlementProvider
from deptdocs.folders.grants import PermissionGrantStore
from deptdocs.folders.hierarchy import HierarchyWalker
from deptdocs.folders.resolver import AccessResolver
from deptdocs.folders.schemas import (
    MANAGE_FOLDERS,
    FolderCreate,
    FolderFilters,
    FolderPage,
    FolderUpdate,
    FolderView,
    GrantRequest,
    GrantView,
    PermissionType,
    RevokeFilters,
    parse,
)

logger = logging.getLogger("deptdocs.folders.service")


class FolderService:
    """
    Usage:
        service = FolderService(session_factory, entitlements=provider)
        set_principal(Principal(user_id=7, department_id=2))
        folder = service.create_folder({"name": "Reports", "parent_id": 1})
    """

    def __init__(
        self,
        session_factory: SessionFactory,
        entitlements: Optional[EntitlementProvider] = None,
        document_store: Optional[DocumentStore] = None,
        settings: Optional[FolderSettings] = None,
    ):
        settings = settings or FolderSettings()
        walker = HierarchyWalker(settings.max_depth)
        self.directory = FolderDirectory(session_factory, walker, document_store, settings)
        self.grants = PermissionGrantStore(session_factory, walker)
        self.resolver = AccessResolver(session_factory, entitlements, walker)

    # -------------------------------------------------------------------
    # Access checks
    # -------------------------------------------------------------------

    @staticmethod
    def _principal(principal: Optional[Principal]) -> Principal:
        return principal if principal is not None else require_principal()

    def _deny(self, principal: Principal, folder_id: Optional[int], needed: str, operation: str):
        log(log_access_decision(
            folder_id if folder_id is not None else "root", needed,
            principal.user_id, principal.department_id, allowed=False, operation=operation,
        ))
        target = f"folder {folder_id}" if folder_id is not None else "the root"
        logger.warning(f"Access denied: user {principal.user_id} → {target} ({needed}, {operation})")
        raise DeptDocsForbiddenError(
            f"Access denied: {needed} on {target}",
            object_ref=f"folder:{folder_id}" if folder_id is not None else "folder:root",
            user_id=principal.user_id,
            department_id=principal.department_id,
            required_permission=needed,
            operation=operation,
        )

    def _require(self, principal: Principal, folder_id: int, action: PermissionType, operation: str) -> None:
        if not self.resolver.resolve(principal, folder_id, action):
            self._deny(principal, folder_id, action.value, operation)

    def _require_root_access(self, principal: Principal, operation: str) -> None:
        if not self.resolver.is_admin(principal):
            self._deny(principal, None, MANAGE_FOLDERS, operation)

    # -------------------------------------------------------------------
    # Folders
    # -------------------------------------------------------------------

    def get_folder(self, folder_id: int, principal: Optional[Principal] = None) -> FolderView:
        principal = self._principal(principal)
        self._require(principal, folder_id, PermissionType.READ, "get_folder")
        return self.directory.get(folder_id)

    def get_hierarchy_path(self, folder_id: int, principal: Optional[Principal] = None) -> List[FolderView]:
        principal = self._principal(principal)
        self._require(principal, folder_id, PermissionType.READ, "get_hierarchy_path")
        return self.directory.get_hierarchy_path(folder_id)

    def list_children(
        self, folder_id: Optional[int] = None, principal: Optional[Principal] = None
    ) -> List[FolderView]:
        """Readable direct children of folder_id (root folders when None)."""
        principal = self._principal(principal)
        if folder_id is not None:
            self._require(principal, folder_id, PermissionType.READ, "list_children")
        children = self.directory.children(folder_id)
        if self.resolver.is_admin(principal):
            return children
        readable = set(self.resolver.accessible_folders(principal, PermissionType.READ))
        return [f for f in children if f.id in readable]

    def list_folders(
        self,
        filters: Union[FolderFilters, Dict[str, Any], None] = None,
        page: int = 1,
        limit: Optional[int] = None,
        principal: Optional[Principal] = None,
    ) -> FolderPage:
        """Paginated listing restricted to folders the principal can read."""
        principal = self._principal(principal)
        restrict_to = None
        if not self.resolver.is_admin(principal):
            restrict_to = self.resolver.accessible_folders(principal, PermissionType.READ)
        return self.directory.list(filters, page=page, limit=limit, restrict_to=restrict_to)

    def create_folder(
        self,
        data: Union[FolderCreate, Dict[str, Any]],
        principal: Optional[Principal] = None,
    ) -> FolderView:
        principal = self._principal(principal)
        data = parse(FolderCreate, data)
        if data.parent_id is None:
            self._require_root_access(principal, "create_folder")
        else:
            self._require(principal, data.parent_id, PermissionType.WRITE, "create_folder")
        return self.directory.create(data, owner_id=principal.user_id)

    def update_folder(
        self,
        folder_id: int,
        data: Union[FolderUpdate, Dict[str, Any]],
        principal: Optional[Principal] = None,
    ) -> FolderView:
        principal = self._principal(principal)
        data = parse(FolderUpdate, data)
        self._require(principal, folder_id, PermissionType.WRITE, "update_folder")

        if "parent_id" in data.model_fields_set:
            current = self.directory.get(folder_id)
            if data.parent_id != current.parent_id:
                if data.parent_id is None:
                    self._require_root_access(principal, "move_folder")
                else:
                    self._require(principal, data.parent_id, PermissionType.WRITE, "move_folder")

        return self.directory.update(folder_id, data, user_id=principal.user_id)

    def delete_folder(
        self, folder_id: int, cascade: bool = False, principal: Optional[Principal] = None
    ) -> int:
        principal = self._principal(principal)
        self._require(principal, folder_id, PermissionType.DELETE, "delete_folder")
        return self.directory.delete(folder_id, cascade=cascade, user_id=principal.user_id)

    # -------------------------------------------------------------------
    # Grants
    # -------------------------------------------------------------------

    def grant_permission(
        self,
        folder_id: int,
        request: Union[GrantRequest, Dict[str, Any]],
        principal: Optional[Principal] = None,
    ) -> GrantView:
        principal = self._principal(principal)
        request = parse(GrantRequest, request)
        self._require(principal, folder_id, PermissionType.MANAGE, "grant_permission")
        return self.grants.grant(folder_id, request, granted_by=principal.user_id)

    def revoke_permission(
        self,
        folder_id: int,
        filters: Union[RevokeFilters, Dict[str, Any], None] = None,
        principal: Optional[Principal] = None,
    ) -> int:
        principal = self._principal(principal)
        filters = parse(RevokeFilters, filters)
        self._require(principal, folder_id, PermissionType.MANAGE, "revoke_permission")
        return self.grants.revoke(folder_id, filters, revoked_by=principal.user_id)

    def list_permissions(self, folder_id: int, principal: Optional[Principal] = None) -> List[GrantView]:
        principal = self._principal(principal)
        self._require(principal, folder_id, PermissionType.MANAGE, "list_permissions")
        return self.grants.list(folder_id)

    # -------------------------------------------------------------------
    # Access queries
    # -------------------------------------------------------------------

    def check_access(self, folder_id: int, action, principal: Optional[Principal] = None) -> bool:
        return self.resolver.resolve(self._principal(principal), folder_id, action)

    def effective_permissions(
        self, folder_id: int, principal: Optional[Principal] = None
    ) -> Set[PermissionType]:
        return self.resolver.effective_permissions(self._principal(principal), folder_id)

    def accessible_folders(
        self, action=PermissionType.READ, principal: Optional[Principal] = None
    ) -> List[int]:
        return self.resolver.accessible_folders(self._principal(principal), action)
