"""
deptdocs Access Resolver — effective permission of a principal on a folder.

Precedence, first match wins:
    1. department entitlement ``manage_folders``   → allow (any action, any folder)
    2. principal owns the folder                   → allow
    3. read on a public folder                     → allow
    4. active grant for the user or their department
       with exactly this permission type           → allow
    5. folder inherits and has a parent            → repeat 2-5 on the parent
    6. otherwise                                   → deny

Permission types match exactly; ``manage`` does not imply ``write``.
Resolution never writes. Denial is False, not an exception; only a missing
or inactive target folder raises (NotFound).

The ancestor chain (target plus inheriting ancestors, with the grants that
can match this principal) is loaded once per call into an AncestorChain and
reused for every action asked about.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Iterable, List, Optional, Set, Tuple

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from deptdocs.db.models import Folder, FolderPermission
from deptdocs.db.session import SessionFactory, transaction
from deptdocs.engine.context import Principal
from deptdocs.engine.errors import DeptDocsConflictError
from deptdocs.folders.entitlements import EntitlementProvider
from deptdocs.folders.hierarchy import HierarchyWalker
from deptdocs.folders.schemas import (
    MANAGE_FOLDERS,
    AccessLevel,
    PermissionType,
    validate_id,
    validate_permission_type,
)

logger = logging.getLogger("deptdocs.folders.resolver")


@dataclass(frozen=True)
class ChainLink:
    """Snapshot of one folder on the resolution path."""

    folder_id: int
    parent_id: Optional[int]
    owner_id: int
    access_level: str
    inherit_permissions: bool
    granted: FrozenSet[str] = frozenset()

    @classmethod
    def from_folder(cls, folder: Folder, granted: Iterable[str] = ()) -> "ChainLink":
        return cls(
            folder_id=folder.id,
            parent_id=folder.parent_id,
            owner_id=folder.owner_id,
            access_level=folder.access_level,
            inherit_permissions=folder.inherit_permissions,
            granted=frozenset(granted),
        )

    def decide(self, principal: Principal, action: PermissionType) -> Optional[str]:
        """Reason this link allows action on its own, or None."""
        if self.owner_id == principal.user_id:
            return "owner"
        if action is PermissionType.READ and self.access_level == AccessLevel.PUBLIC.value:
            return "public"
        if action.value in self.granted:
            return "grant"
        return None


@dataclass
class AncestorChain:
    """
    Target folder followed by the ancestors it inherits from, nearest first.

    The chain ends at the first folder that does not inherit (inclusive) or
    at a root. Grants are pre-filtered to those matching the principal.
    """

    principal: Principal
    links: List[ChainLink] = field(default_factory=list)

    @property
    def folder_id(self) -> int:
        return self.links[0].folder_id

    def explain(self, action: PermissionType) -> Tuple[bool, Optional[int], Optional[str]]:
        """(allowed, deciding folder id, reason)."""
        for link in self.links:
            reason = link.decide(self.principal, action)
            if reason is not None:
                return True, link.folder_id, reason
            if not link.inherit_permissions:
                break
        return False, None, None

    def allows(self, action: PermissionType) -> bool:
        return self.explain(action)[0]


class AccessResolver:
    """
    Answers access questions against one read snapshot per call.

    Usage:
        resolver = AccessResolver(session_factory, entitlements=provider)
        if not resolver.resolve(principal, folder_id, "write"):
            raise DeptDocsForbiddenError(...)
    """

    def __init__(
        self,
        session_factory: SessionFactory,
        entitlements: Optional[EntitlementProvider] = None,
        walker: Optional[HierarchyWalker] = None,
    ):
        self._session_factory = session_factory
        self._entitlements = entitlements
        self._walker = walker or HierarchyWalker()

    # -------------------------------------------------------------------
    # Entitlements
    # -------------------------------------------------------------------

    def entitlements_for(self, principal: Principal) -> FrozenSet[str]:
        """Principal-supplied set when present, else the provider's."""
        if principal.global_permissions is not None:
            return frozenset(principal.global_permissions)
        if self._entitlements is None:
            return frozenset()
        return self._entitlements.entitlements_of(principal.department_id)

    def is_admin(self, principal: Principal) -> bool:
        return MANAGE_FOLDERS in self.entitlements_for(principal)

    # -------------------------------------------------------------------
    # Single folder
    # -------------------------------------------------------------------

    def load_chain(self, session: Session, principal: Principal, folder_id: int) -> AncestorChain:
        """Target plus inheriting ancestors and their matching grants. NotFound if inactive."""
        target = self._walker.require(session, folder_id)
        folders = self._walker.walk_up(session, target, stop=lambda f: not f.inherit_permissions)

        granted: Dict[int, Set[str]] = {f.id: set() for f in folders}
        subject = [FolderPermission.user_id == principal.user_id]
        if principal.department_id is not None:
            subject.append(FolderPermission.department_id == principal.department_id)

        rows = session.execute(
            select(FolderPermission.folder_id, FolderPermission.permission_type).where(
                FolderPermission.folder_id.in_(list(granted)),
                FolderPermission.is_active.is_(True),
                or_(*subject),
            )
        ).all()
        for fid, permission_type in rows:
            granted[fid].add(permission_type)

        return AncestorChain(
            principal=principal,
            links=[ChainLink.from_folder(f, granted[f.id]) for f in folders],
        )

    def resolve(self, principal: Principal, folder_id: int, action) -> bool:
        """
        True when principal may perform action on folder_id.

        Raises:
            DeptDocsNotFoundError: folder missing or inactive.
            DeptDocsValidationError: malformed folder id or unknown action.
        """
        return self.resolve_many(principal, folder_id, [action])[validate_permission_type(action)]

    def resolve_many(
        self, principal: Principal, folder_id: int, actions: Iterable
    ) -> Dict[PermissionType, bool]:
        """Several actions on one folder, sharing one ancestor chain."""
        folder_id = validate_id(folder_id, "folder_id")
        wanted = [validate_permission_type(a) for a in actions]

        admin = self.is_admin(principal)
        with transaction(self._session_factory, "access.resolve", read_only=True) as session:
            if admin:
                self._walker.require(session, folder_id)
                logger.debug(f"user {principal.user_id} → folder {folder_id}: manage_folders bypass")
                return {action: True for action in wanted}

            chain = self.load_chain(session, principal, folder_id)

        results = {}
        for action in wanted:
            allowed, decided_at, reason = chain.explain(action)
            results[action] = allowed
            logger.debug(
                f"user {principal.user_id} → folder {folder_id} ({action.value}): "
                f"{'allow' if allowed else 'deny'}"
                + (f" via {reason} on {decided_at}" if allowed else "")
            )
        return results

    def effective_permissions(self, principal: Principal, folder_id: int) -> Set[PermissionType]:
        """Every permission type principal holds on folder_id."""
        results = self.resolve_many(principal, folder_id, list(PermissionType))
        return {action for action, allowed in results.items() if allowed}

    # -------------------------------------------------------------------
    # Whole forest
    # -------------------------------------------------------------------

    def accessible_folders(self, principal: Principal, action=PermissionType.READ) -> List[int]:
        """
        Ids of every active folder on which principal holds action.

        One snapshot of the active forest plus the principal's grants; each
        folder's answer is memoised so shared ancestors are evaluated once.
        """
        action = validate_permission_type(action)

        admin = self.is_admin(principal)
        with transaction(self._session_factory, "access.accessible", read_only=True) as session:
            if admin:
                return list(session.scalars(
                    select(Folder.id).where(Folder.is_active.is_(True)).order_by(Folder.id)
                ).all())

            subject = [FolderPermission.user_id == principal.user_id]
            if principal.department_id is not None:
                subject.append(FolderPermission.department_id == principal.department_id)
            granted_ids = set(session.scalars(
                select(FolderPermission.folder_id).where(
                    FolderPermission.is_active.is_(True),
                    FolderPermission.permission_type == action.value,
                    or_(*subject),
                )
            ).all())

            links = {
                row.id: ChainLink(
                    folder_id=row.id,
                    parent_id=row.parent_id,
                    owner_id=row.owner_id,
                    access_level=row.access_level,
                    inherit_permissions=row.inherit_permissions,
                    granted=frozenset([action.value]) if row.id in granted_ids else frozenset(),
                )
                for row in session.execute(
                    select(
                        Folder.id, Folder.parent_id, Folder.owner_id,
                        Folder.access_level, Folder.inherit_permissions,
                    ).where(Folder.is_active.is_(True))
                )
            }

        memo: Dict[int, bool] = {}
        return sorted(
            fid for fid in links
            if self._evaluate(fid, links, memo, principal, action)
        )

    def _evaluate(
        self,
        folder_id: int,
        links: Dict[int, ChainLink],
        memo: Dict[int, bool],
        principal: Principal,
        action: PermissionType,
    ) -> bool:
        path: List[int] = []
        on_path: Set[int] = set()
        current: Optional[int] = folder_id
        result = False

        while current is not None:
            if current in memo:
                result = memo[current]
                break
            if current in on_path or len(path) >= self._walker.max_depth:
                logger.error(f"Hierarchy corrupted around folder {folder_id}")
                raise DeptDocsConflictError(
                    "Folder hierarchy is corrupted",
                    object_ref=f"folder:{folder_id}",
                    reason="hierarchy_corrupted",
                )
            link = links.get(current)
            if link is None:
                break
            if link.decide(principal, action) is not None:
                memo[current] = True
                result = True
                break
            path.append(current)
            on_path.add(current)
            if not link.inherit_permissions:
                break
            current = link.parent_id

        for fid in path:
            memo[fid] = result
        return result
