"""
deptdocs Documents — document metadata at the folder engine's boundary.

Content storage, upload handling and versioning live outside this package;
the folder engine only needs to count and deactivate documents.
"""

from deptdocs.documents.store import DocumentStore, SqlDocumentStore

__all__ = ["DocumentStore", "SqlDocumentStore"]
