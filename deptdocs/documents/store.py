"""
deptdocs Document Store — the document side of folder deletion.

The folder directory never touches the documents table directly. It asks a
DocumentStore whether a folder still holds active documents and, during a
cascade delete, to deactivate everything under each folder of the subtree.
Both calls run on the caller's session so they commit or roll back together
with the folder changes.
"""

from __future__ import annotations

import logging
from typing import Protocol, runtime_checkable

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from deptdocs.db.base import utcnow
from deptdocs.db.models import Document

logger = logging.getLogger("deptdocs.documents.store")


@runtime_checkable
class DocumentStore(Protocol):
    """Boundary used by FolderDirectory for emptiness checks and cascades."""

    def deactivate_all_under(self, session: Session, folder_id: int) -> bool:
        """
        Deactivate every active document directly in folder_id.

        Must be idempotent. Returning False (or raising) aborts the
        surrounding cascade.
        """
        ...

    def count_active(self, session: Session, folder_id: int) -> int:
        """Number of active documents directly in folder_id."""
        ...


class SqlDocumentStore:
    """DocumentStore backed by the documents table in the same database."""

    def deactivate_all_under(self, session: Session, folder_id: int) -> bool:
        result = session.execute(
            update(Document)
            .where(Document.folder_id == folder_id, Document.is_active.is_(True))
            .values(is_active=False, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount:
            logger.info(f"Deactivated {result.rowcount} document(s) in folder {folder_id}")
        return True

    def count_active(self, session: Session, folder_id: int) -> int:
        return session.scalar(
            select(func.count(Document.id)).where(
                Document.folder_id == folder_id, Document.is_active.is_(True)
            )
        ) or 0
