"""
deptdocs Folders — the hierarchical folder access-control engine.

Components:
- HierarchyWalker: bounded ancestor/descendant traversal, cycle detection
- FolderDirectory: folder CRUD enforcing sibling uniqueness and acyclicity
- PermissionGrantStore: explicit grants on folders
- AccessResolver: effective permission of a principal on a folder
- FolderService: access-checked facade over the above
"""

from deptdocs.folders.directory import FolderDirectory
from deptdocs.folders.entitlements import (
    DatabaseEntitlementProvider,
    EntitlementProvider,
    StaticEntitlementProvider,
)
from deptdocs.folders.grants import PermissionGrantStore
from deptdocs.folders.hierarchy import HierarchyWalker
from deptdocs.folders.resolver import AccessResolver, AncestorChain
from deptdocs.folders.schemas import (
    MANAGE_FOLDERS,
    AccessLevel,
    FolderCreate,
    FolderFilters,
    FolderUpdate,
    GrantRequest,
    PermissionType,
    RevokeFilters,
)
from deptdocs.folders.service import FolderService

__all__ = [
    "AccessLevel",
    "AccessResolver",
    "AncestorChain",
    "DatabaseEntitlementProvider",
    "EntitlementProvider",
    "FolderCreate",
    "FolderDirectory",
    "FolderFilters",
    "FolderService",
    "FolderUpdate",
    "GrantRequest",
    "HierarchyWalker",
    "MANAGE_FOLDERS",
    "PermissionGrantStore",
    "PermissionType",
    "RevokeFilters",
    "StaticEntitlementProvider",
]
