"""
deptdocs Error Hierarchy — Structured exceptions for the folder access engine.

Every error carries a JSON-serialisable context and a status_code that the
presentation layer maps onto its transport. Structural and validation errors
are deterministic rejections and are never retried by the core; storage
errors are transient and left to the caller's retry policy.

Hierarchy:
    DeptDocsError
    ├── DeptDocsNotFoundError    — Folder/parent/subject missing or inactive
    ├── DeptDocsConflictError    — Duplicate sibling, cycle, non-empty delete
    ├── DeptDocsForbiddenError   — Access resolved to False
    ├── DeptDocsValidationError  — Malformed input (BadRequest)
    ├── DeptDocsStorageError     — Transient storage failure
    └── DeptDocsConfigError      — Invalid deptdocs.yaml
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Dict, Optional


class DeptDocsError(Exception):
    """
    Base error for all deptdocs failures.
    All context is serialisable to JSON for audit logs.
    """

    status_code: int = 500

    def __init__(self, message: str, **context: Any):
        self.message = message
        self.object_ref: Optional[str] = context.get("object_ref")
        self.reason: Optional[str] = context.get("reason")
        self.error_type: str = self.__class__.__name__
        self.context: Dict[str, Any] = context
        self.timestamp: str = datetime.now(timezone.utc).isoformat()
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize error to JSON-compatible dict for logging and responses."""
        return {
            "error_type": self.error_type,
            "message": self.message,
            "status_code": self.status_code,
            "object_ref": self.object_ref,
            "reason": self.reason,
            "timestamp": self.timestamp,
            "context": {
                k: str(v) for k, v in self.context.items()
                if k not in ("object_ref", "reason")
            },
        }

    def to_json(self) -> str:
        """Serialize to JSON string."""
        return json.dumps(self.to_dict(), default=str)

    def __repr__(self) -> str:
        parts = [f"{self.error_type}: {self.message}"]
        if self.object_ref:
            parts.append(f"object_ref={self.object_ref}")
        if self.reason:
            parts.append(f"reason={self.reason}")
        return " | ".join(parts)


class DeptDocsNotFoundError(DeptDocsError):
    """Folder, parent folder, user or department missing or inactive."""

    status_code = 404


class DeptDocsConflictError(DeptDocsError):
    """
    Request conflicts with current tree state.
    reason is one of: duplicate_name, cycle, not_empty, depth_exceeded,
    hierarchy_corrupted, constraint.
    """

    status_code = 409


class DeptDocsForbiddenError(DeptDocsError):
    """
    Access denied. Raised at the service boundary when the resolver says no.
    Includes user_id and the permission that was required.
    """

    status_code = 403

    def __init__(self, message: str, **context: Any):
        self.user_id: Optional[int] = context.get("user_id")
        self.department_id: Optional[int] = context.get("department_id")
        self.required_permission: Optional[str] = context.get("required_permission")
        super().__init__(message, **context)

    def to_dict(self) -> Dict[str, Any]:
        d = super().to_dict()
        d["user_id"] = self.user_id
        d["department_id"] = self.department_id
        d["required_permission"] = self.required_permission
        return d


class DeptDocsValidationError(DeptDocsError):
    """
    Malformed request content (bad identifiers, subject exclusivity, enums).
    Includes field-level error details when they come from pydantic.
    """

    status_code = 400

    def __init__(self, message: str, **context: Any):
        self.validation_errors: Optional[list] = context.get("validation_errors")
        super().__init__(message, **context)

    def to_dict(self) -> Dict[str, Any]:
        d = super().to_dict()
        d["validation_errors"] = self.validation_errors
        return d


class DeptDocsStorageError(DeptDocsError):
    """
    Transient storage failure (lost connection, aborted transaction).
    The transaction has been rolled back; the caller decides whether to retry.
    """

    status_code = 503
    retryable = True

    def __init__(self, message: str, **context: Any):
        self.operation: Optional[str] = context.get("operation")
        super().__init__(message, **context)


class DeptDocsConfigError(DeptDocsError):
    """Configuration error — invalid deptdocs.yaml."""
    pass
