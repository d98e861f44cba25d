"""
deptdocs Request Context — the authenticated principal for the current request.

The authentication layer (out of scope) verifies the caller and sets a
Principal. The access engine trusts it unconditionally.

Usage:
    from deptdocs.engine.context import Principal, set_principal, require_principal
"""

from __future__ import annotations

import uuid
from contextvars import ContextVar
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Optional

from deptdocs.engine.errors import DeptDocsForbiddenError

current_principal: ContextVar[Optional["Principal"]] = ContextVar(
    "principal", default=None
)


@dataclass(frozen=True)
class Principal:
    """
    Per-request caller record supplied by the authentication layer.

    global_permissions is the department-wide permission-name set when the
    authentication layer already resolved it; None means "ask the
    entitlement provider".
    """

    user_id: int
    department_id: Optional[int] = None
    global_permissions: Optional[FrozenSet[str]] = None
    request_id: str = field(default_factory=lambda: f"req_{uuid.uuid4().hex[:12]}")

    def to_dict(self) -> Dict[str, Any]:
        """Serialize for logging."""
        return {
            "user_id": self.user_id,
            "department_id": self.department_id,
            "global_permissions": (
                sorted(self.global_permissions) if self.global_permissions is not None else None
            ),
            "request_id": self.request_id,
        }


def set_principal(principal: Principal) -> None:
    """Set the principal for the current thread/task."""
    current_principal.set(principal)


def get_principal() -> Optional[Principal]:
    """Get the current principal. Returns None if not set."""
    return current_principal.get()


def require_principal() -> Principal:
    """Get the current principal or raise if the request is unauthenticated."""
    principal = get_principal()
    if principal is None:
        raise DeptDocsForbiddenError(
            "No principal in context — request not authenticated",
            reason="missing_principal",
        )
    return principal


def clear_principal() -> None:
    """Clear the principal (end of request)."""
    current_principal.set(None)
