"""
deptdocs Models — SQLAlchemy models for the deptdocs database.

Tables:
1. departments             — Organisational groupings of users
2. users                   — User accounts (one department each)
3. permissions             — Global permission names (e.g. manage_folders)
4. department_permissions  — Department ↔ Permission junction (entitlements)
5. folders                 — The folder forest
6. folder_permissions      — Explicit (subject, action) grants on folders
7. documents               — Document metadata (content storage is external)

Rows are soft-deleted via is_active; nothing here is ever physically removed
by the access engine.
"""

from __future__ import annotations

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import relationship

from deptdocs.db.base import AuditMixin, Base, utcnow

ACCESS_LEVELS = ("public", "restricted", "private", "inherited")
PERMISSION_TYPES = ("read", "write", "delete", "manage")


def _in_list(column: str, values) -> str:
    return f"{column} IN ({', '.join(repr(v) for v in values)})"


# ---------------------------------------------------------------------------
# 1. Departments
# ---------------------------------------------------------------------------

class Department(Base, AuditMixin):
    __tablename__ = "departments"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), unique=True, nullable=False)
    description = Column(Text, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False, index=True)

    __table_args__ = (
        CheckConstraint("length(trim(name)) > 0", name="ck_departments_name_not_empty"),
    )

    def __repr__(self) -> str:
        return f"<Department(id={self.id}, name='{self.name}')>"


# ---------------------------------------------------------------------------
# 2. Users
# ---------------------------------------------------------------------------

class User(Base, AuditMixin):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    email = Column(String(320), unique=True, nullable=False, index=True)
    full_name = Column(String(255), nullable=False)
    department_id = Column(Integer, ForeignKey("departments.id"), nullable=False, index=True)
    is_active = Column(Boolean, default=True, nullable=False, index=True)

    def __repr__(self) -> str:
        return f"<User(id={self.id}, email='{self.email}')>"


# ---------------------------------------------------------------------------
# 3. Permissions (global permission names)
# ---------------------------------------------------------------------------

class Permission(Base):
    __tablename__ = "permissions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), unique=True, nullable=False)
    description = Column(Text, nullable=True)
    category = Column(String(100), nullable=True, index=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    def __repr__(self) -> str:
        return f"<Permission(name='{self.name}')>"


# ---------------------------------------------------------------------------
# 4. Department-Permissions Junction
# ---------------------------------------------------------------------------

class DepartmentPermission(Base):
    __tablename__ = "department_permissions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    department_id = Column(Integer, ForeignKey("departments.id", ondelete="CASCADE"), nullable=False)
    permission_id = Column(Integer, ForeignKey("permissions.id", ondelete="CASCADE"), nullable=False)
    granted_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    granted_by = Column(Integer, ForeignKey("users.id"), nullable=True)

    __table_args__ = (
        UniqueConstraint("department_id", "permission_id", name="uq_department_permission"),
        Index("idx_dp_department_id", "department_id"),
    )


# ---------------------------------------------------------------------------
# 5. Folders
# ---------------------------------------------------------------------------

class Folder(Base, AuditMixin):
    __tablename__ = "folders"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    parent_id = Column(Integer, ForeignKey("folders.id"), nullable=True, index=True)
    owner_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    access_level = Column(String(20), default="inherited", nullable=False)
    inherit_permissions = Column(Boolean, default=True, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False, index=True)

    __table_args__ = (
        CheckConstraint("parent_id IS NULL OR parent_id <> id", name="ck_folders_not_self_parent"),
        CheckConstraint("length(trim(name)) > 0", name="ck_folders_name_not_empty"),
        CheckConstraint(_in_list("access_level", ACCESS_LEVELS), name="ck_folders_access_level"),
        # Active sibling names are unique; root folders form their own group
        Index(
            "uq_folders_sibling_name", "parent_id", "name", unique=True,
            postgresql_where=text("is_active = true AND parent_id IS NOT NULL"),
            sqlite_where=text("is_active = 1 AND parent_id IS NOT NULL"),
        ),
        Index(
            "uq_folders_root_name", "name", unique=True,
            postgresql_where=text("is_active = true AND parent_id IS NULL"),
            sqlite_where=text("is_active = 1 AND parent_id IS NULL"),
        ),
        Index("idx_folders_parent_active", "parent_id", "is_active"),
    )

    def __repr__(self) -> str:
        return f"<Folder(id={self.id}, name='{self.name}', parent_id={self.parent_id})>"


# ---------------------------------------------------------------------------
# 6. Folder Permissions (explicit grants)
# ---------------------------------------------------------------------------

class FolderPermission(Base):
    __tablename__ = "folder_permissions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    folder_id = Column(Integer, ForeignKey("folders.id"), nullable=False, index=True)
    department_id = Column(Integer, ForeignKey("departments.id"), nullable=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)
    permission_type = Column(String(20), nullable=False)
    granted_by = Column(Integer, ForeignKey("users.id"), nullable=False)
    granted_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    user = relationship("User", foreign_keys=[user_id], lazy="joined")
    department = relationship("Department", foreign_keys=[department_id], lazy="joined")
    granter = relationship("User", foreign_keys=[granted_by], lazy="joined")

    __table_args__ = (
        CheckConstraint(
            "(department_id IS NOT NULL AND user_id IS NULL) OR "
            "(department_id IS NULL AND user_id IS NOT NULL)",
            name="ck_folder_permissions_subject",
        ),
        CheckConstraint(
            _in_list("permission_type", PERMISSION_TYPES),
            name="ck_folder_permissions_type",
        ),
        # At most one active grant per (folder, subject, type)
        Index(
            "uq_folder_permissions_user", "folder_id", "user_id", "permission_type", unique=True,
            postgresql_where=text("is_active = true AND user_id IS NOT NULL"),
            sqlite_where=text("is_active = 1 AND user_id IS NOT NULL"),
        ),
        Index(
            "uq_folder_permissions_department", "folder_id", "department_id", "permission_type",
            unique=True,
            postgresql_where=text("is_active = true AND department_id IS NOT NULL"),
            sqlite_where=text("is_active = 1 AND department_id IS NOT NULL"),
        ),
    )

    def __repr__(self) -> str:
        subject = f"user={self.user_id}" if self.user_id else f"department={self.department_id}"
        return f"<FolderPermission(folder={self.folder_id}, {subject}: {self.permission_type})>"


# ---------------------------------------------------------------------------
# 7. Documents
# ---------------------------------------------------------------------------

class Document(Base, AuditMixin):
    __tablename__ = "documents"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    folder_id = Column(Integer, ForeignKey("folders.id"), nullable=True, index=True)
    uploaded_by = Column(Integer, ForeignKey("users.id"), nullable=False)
    mime_type = Column(String(255), nullable=True)
    size_bytes = Column(BigInteger, default=0, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False, index=True)

    __table_args__ = (
        CheckConstraint("length(trim(name)) > 0", name="ck_documents_name_not_empty"),
        CheckConstraint("size_bytes >= 0", name="ck_documents_size_positive"),
    )

    def __repr__(self) -> str:
        return f"<Document(id={self.id}, name='{self.name}', folder_id={self.folder_id})>"
