"""
deptdocs Entitlement Providers — department-wide permission-name sets.

The resolver treats the set as opaque except for the literal
``manage_folders`` (administrative bypass). Two providers:

- StaticEntitlementProvider: fixed mapping, for tests and embedding.
- DatabaseEntitlementProvider: departments → department_permissions →
  active permissions.
"""

from __future__ import annotations

import logging
from typing import Dict, FrozenSet, Iterable, Mapping, Optional, Protocol, runtime_checkable

from sqlalchemy import select

from deptdocs.db.models import Department, DepartmentPermission, Permission, User
from deptdocs.db.session import SessionFactory, transaction
from deptdocs.engine.context import Principal
from deptdocs.engine.errors import DeptDocsNotFoundError

logger = logging.getLogger("deptdocs.folders.entitlements")


@runtime_checkable
class EntitlementProvider(Protocol):
    def entitlements_of(self, department_id: Optional[int]) -> FrozenSet[str]:
        ...


class StaticEntitlementProvider:
    """In-memory department → permission names."""

    def __init__(self, mapping: Optional[Mapping[int, Iterable[str]]] = None):
        self._mapping: Dict[int, FrozenSet[str]] = {
            dept: frozenset(names) for dept, names in (mapping or {}).items()
        }

    def set(self, department_id: int, names: Iterable[str]) -> None:
        self._mapping[department_id] = frozenset(names)

    def entitlements_of(self, department_id: Optional[int]) -> FrozenSet[str]:
        if department_id is None:
            return frozenset()
        return self._mapping.get(department_id, frozenset())


class DatabaseEntitlementProvider:
    """Reads department entitlements from the department_permissions table."""

    def __init__(self, session_factory: SessionFactory):
        self._session_factory = session_factory

    def entitlements_of(self, department_id: Optional[int]) -> FrozenSet[str]:
        if department_id is None:
            return frozenset()
        with transaction(self._session_factory, "entitlements.load", read_only=True) as session:
            names = session.scalars(
                select(Permission.name)
                .join(DepartmentPermission, DepartmentPermission.permission_id == Permission.id)
                .join(Department, Department.id == DepartmentPermission.department_id)
                .where(
                    DepartmentPermission.department_id == department_id,
                    Department.is_active.is_(True),
                    Permission.is_active.is_(True),
                )
            ).all()
        return frozenset(names)

    def principal_for(self, user_id: int) -> Principal:
        """
        Build a Principal for an active user, entitlements included.

        Stands in for the authentication layer in the CLI and tests.
        """
        with transaction(self._session_factory, "entitlements.principal", read_only=True) as session:
            row = session.execute(
                select(User.id, User.department_id).where(User.id == user_id, User.is_active.is_(True))
            ).first()
        if row is None:
            raise DeptDocsNotFoundError(
                "User not found", object_ref=f"user:{user_id}", user_id=user_id
            )
        return Principal(
            user_id=row.id,
            department_id=row.department_id,
            global_permissions=self.entitlements_of(row.department_id),
        )
