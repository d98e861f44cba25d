"""
deptdocs Folder Schemas — request models, typed filters and read views.

Request models are validated with pydantic at the boundary: unknown
access levels or permission types are rejected, never coerced to a default.
Use parse() to build a model from raw input; it wraps pydantic's
ValidationError into DeptDocsValidationError with field-level details.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Dict, List, Optional, Type, TypeVar, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)

from deptdocs.engine.errors import DeptDocsValidationError

MANAGE_FOLDERS = "manage_folders"


class AccessLevel(str, Enum):
    PUBLIC = "public"
    RESTRICTED = "restricted"
    PRIVATE = "private"
    INHERITED = "inherited"


class PermissionType(str, Enum):
    READ = "read"
    WRITE = "write"
    DELETE = "delete"
    MANAGE = "manage"


# Strict so that True/"3" are rejected instead of silently becoming ids
EntityId = Annotated[int, Field(gt=0, strict=True)]

M = TypeVar("M", bound=BaseModel)


def validate_id(value: Any, field: str = "id") -> int:
    """Reject anything that is not a positive integer identifier."""
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise DeptDocsValidationError(
            f"{field} must be a positive integer, got {value!r}",
            reason="malformed_id",
            field=field,
        )
    return value


def validate_permission_type(value: Any) -> PermissionType:
    """Coerce a permission name into PermissionType or raise BadRequest."""
    try:
        return PermissionType(value)
    except ValueError:
        raise DeptDocsValidationError(
            f"Unknown permission type {value!r}; expected one of "
            f"{[p.value for p in PermissionType]}",
            reason="invalid_permission_type",
        ) from None


def parse(model: Type[M], data: Union[M, Dict[str, Any], None] = None, **fields: Any) -> M:
    """
    Build a request model from a dict or keyword fields.

    Instances of the model pass through untouched.

    Raises:
        DeptDocsValidationError: with validation_errors taken from pydantic.
    """
    if isinstance(data, model):
        return data
    payload = dict(data or {})
    payload.update(fields)
    try:
        return model.model_validate(payload)
    except ValidationError as e:
        errors = [
            {"loc": ".".join(str(p) for p in err["loc"]), "msg": err["msg"], "type": err["type"]}
            for err in e.errors()
        ]
        raise DeptDocsValidationError(
            f"Invalid {model.__name__}: {errors[0]['msg'] if errors else e}",
            reason="invalid_request",
            validation_errors=errors,
        ) from e


def _clean_name(v: str) -> str:
    v = v.strip()
    if not v:
        raise ValueError("name must not be blank")
    return v


# ---------------------------------------------------------------------------
# Folder requests
# ---------------------------------------------------------------------------

class FolderCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(min_length=1, max_length=255)
    description: Optional[str] = None
    parent_id: Optional[EntityId] = None
    access_level: AccessLevel = AccessLevel.INHERITED
    inherit_permissions: bool = True

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        return _clean_name(v)


class FolderUpdate(BaseModel):
    """
    Partial update. Only fields explicitly present are applied, so
    ``FolderUpdate(parent_id=None)`` moves a folder to the root while
    ``FolderUpdate(name="x")`` leaves its parent alone.
    """

    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = None
    parent_id: Optional[EntityId] = None
    access_level: Optional[AccessLevel] = None
    inherit_permissions: Optional[bool] = None

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: Optional[str]) -> Optional[str]:
        return _clean_name(v) if v is not None else v

    @model_validator(mode="after")
    def reject_null_required_fields(self) -> "FolderUpdate":
        for field in ("name", "access_level", "inherit_permissions"):
            if field in self.model_fields_set and getattr(self, field) is None:
                raise ValueError(f"{field} cannot be null")
        return self

    def changes(self) -> Dict[str, Any]:
        """Explicitly supplied fields and their new values."""
        return {field: getattr(self, field) for field in self.model_fields_set}


class FolderFilters(BaseModel):
    """Typed filter for FolderDirectory.list(); compiled by queries.compile_folder_filters."""

    model_config = ConfigDict(extra="forbid")

    parent_id: Optional[EntityId] = None
    root_only: bool = False
    owner_id: Optional[EntityId] = None
    access_level: Optional[AccessLevel] = None
    search: Optional[str] = Field(default=None, max_length=255)

    @field_validator("search")
    @classmethod
    def strip_search(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip()
        return v or None

    @model_validator(mode="after")
    def parent_or_root(self) -> "FolderFilters":
        if self.root_only and self.parent_id is not None:
            raise ValueError("root_only and parent_id are mutually exclusive")
        return self


# ---------------------------------------------------------------------------
# Grant requests
# ---------------------------------------------------------------------------

class GrantSubject(BaseModel):
    """Exactly one of user_id / department_id."""

    model_config = ConfigDict(extra="forbid")

    user_id: Optional[EntityId] = None
    department_id: Optional[EntityId] = None

    @model_validator(mode="after")
    def exactly_one_subject(self) -> "GrantSubject":
        if (self.user_id is None) == (self.department_id is None):
            raise ValueError("exactly one of user_id or department_id must be given")
        return self

    @property
    def kind(self) -> str:
        return "user" if self.user_id is not None else "department"

    @property
    def subject_id(self) -> int:
        return self.user_id if self.user_id is not None else self.department_id

    def describe(self) -> str:
        return f"{self.kind}:{self.subject_id}"


class GrantRequest(GrantSubject):
    permission_type: PermissionType


class RevokeFilters(BaseModel):
    """Omitted fields match every grant (broad revoke)."""

    model_config = ConfigDict(extra="forbid")

    user_id: Optional[EntityId] = None
    department_id: Optional[EntityId] = None
    permission_type: Optional[PermissionType] = None

    def describe(self) -> str:
        parts = [f"{k}={v.value if isinstance(v, Enum) else v}"
                 for k, v in self.model_dump().items() if v is not None]
        return ", ".join(parts) or "all"


# ---------------------------------------------------------------------------
# Read views
# ---------------------------------------------------------------------------

class FolderView(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    description: Optional[str] = None
    parent_id: Optional[int] = None
    owner_id: int
    access_level: AccessLevel
    inherit_permissions: bool
    is_active: bool
    created_at: datetime
    updated_at: datetime
    document_count: Optional[int] = None
    subfolder_count: Optional[int] = None


class GrantView(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    folder_id: int
    user_id: Optional[int] = None
    department_id: Optional[int] = None
    permission_type: PermissionType
    granted_by: int
    granted_at: datetime
    is_active: bool
    user_name: Optional[str] = None
    user_email: Optional[str] = None
    department_name: Optional[str] = None
    granted_by_name: Optional[str] = None


class FolderPage(BaseModel):
    items: List[FolderView]
    total: int
    page: int
    limit: int

    @property
    def pages(self) -> int:
        return (self.total + self.limit - 1) // self.limit if self.limit else 0
