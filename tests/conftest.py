"""
deptdocs Test Suite — Shared fixtures and configuration.

Every test that touches the database gets its own file-backed SQLite
database under tmp_path with the schema created from the model metadata.

Run:  pytest tests/ -v
"""

from __future__ import annotations

from types import SimpleNamespace

import pytest
from sqlalchemy import update


@pytest.fixture(autouse=True)
def _isolate_globals():
    """Reset global singletons between tests."""
    from deptdocs.engine.config import reset_config
    from deptdocs.engine.context import clear_principal
    from deptdocs.engine.logging import shutdown_logging

    reset_config()
    clear_principal()
    yield
    clear_principal()
    shutdown_logging()


@pytest.fixture
def db_url(tmp_path):
    return f"sqlite:///{tmp_path / 'deptdocs.db'}"


@pytest.fixture
def session_factory(db_url):
    """Fresh schema in a temp SQLite file."""
    from deptdocs.db.session import close_db, init_db

    factory = init_db(url=db_url, create_tables=True)
    yield factory
    close_db()


@pytest.fixture
def seed(session_factory):
    """
    Departments, users and entitlements:

    - engineering: alice, bob
    - finance: carol
    - administration (manage_folders): dave
    - erin: engineering, inactive
    """
    from deptdocs.db.models import Department, DepartmentPermission, Permission, User
    from deptdocs.db.session import transaction

    with transaction(session_factory, "test.seed") as session:
        engineering = Department(name="engineering")
        finance = Department(name="finance")
        administration = Department(name="administration")
        session.add_all([engineering, finance, administration])
        session.flush()

        manage = Permission(name="manage_folders", category="folders")
        reports = Permission(name="view_reports", category="reports")
        session.add_all([manage, reports])
        session.flush()
        session.add_all([
            DepartmentPermission(department_id=administration.id, permission_id=manage.id),
            DepartmentPermission(department_id=finance.id, permission_id=reports.id),
        ])

        alice = User(email="alice@example.com", full_name="Alice Archer", department_id=engineering.id)
        bob = User(email="bob@example.com", full_name="Bob Baker", department_id=engineering.id)
        carol = User(email="carol@example.com", full_name="Carol Cole", department_id=finance.id)
        dave = User(email="dave@example.com", full_name="Dave Dunn", department_id=administration.id)
        erin = User(
            email="erin@example.com", full_name="Erin Eads",
            department_id=engineering.id, is_active=False,
        )
        session.add_all([alice, bob, carol, dave, erin])
        session.flush()

        return SimpleNamespace(
            engineering=engineering.id,
            finance=finance.id,
            administration=administration.id,
            alice=alice.id,
            bob=bob.id,
            carol=carol.id,
            dave=dave.id,
            erin=erin.id,
        )


@pytest.fixture
def principals(seed):
    """Principals without pre-resolved entitlements (the provider supplies them)."""
    from deptdocs.engine.context import Principal

    return SimpleNamespace(
        alice=Principal(user_id=seed.alice, department_id=seed.engineering),
        bob=Principal(user_id=seed.bob, department_id=seed.engineering),
        carol=Principal(user_id=seed.carol, department_id=seed.finance),
        dave=Principal(user_id=seed.dave, department_id=seed.administration),
    )


@pytest.fixture
def entitlements(session_factory):
    from deptdocs.folders.entitlements import DatabaseEntitlementProvider

    return DatabaseEntitlementProvider(session_factory)


@pytest.fixture
def directory(session_factory):
    from deptdocs.folders.directory import FolderDirectory

    return FolderDirectory(session_factory)


@pytest.fixture
def grants(session_factory):
    from deptdocs.folders.grants import PermissionGrantStore

    return PermissionGrantStore(session_factory)


@pytest.fixture
def resolver(session_factory, entitlements):
    from deptdocs.folders.resolver import AccessResolver

    return AccessResolver(session_factory, entitlements)


@pytest.fixture
def service(session_factory, entitlements):
    from deptdocs.folders.service import FolderService

    return FolderService(session_factory, entitlements=entitlements)


@pytest.fixture
def make_folder(directory, seed):
    """Create a folder owned by alice unless owner_id is given."""

    def _make(name, parent_id=None, owner_id=None, **fields):
        from deptdocs.folders.schemas import FolderCreate

        return directory.create(
            FolderCreate(name=name, parent_id=parent_id, **fields),
            owner_id=owner_id or seed.alice,
        )

    return _make


@pytest.fixture
def make_document(session_factory, seed):
    """Insert an active document row into a folder."""

    def _make(folder_id, name="report.pdf"):
        from deptdocs.db.models import Document
        from deptdocs.db.session import transaction

        with transaction(session_factory, "test.document") as session:
            doc = Document(
                name=name, folder_id=folder_id, uploaded_by=seed.alice,
                mime_type="application/pdf", size_bytes=1024,
            )
            session.add(doc)
            session.flush()
            return doc.id

    return _make


@pytest.fixture
def fetch(session_factory):
    """Read a row by primary key outside any component."""

    def _fetch(model, pk):
        with session_factory() as session:
            return session.get(model, pk)

    return _fetch


@pytest.fixture
def force_parent(session_factory):
    """Write a parent link directly, bypassing validation (corruption scenarios)."""

    def _force(folder_id, parent_id):
        from deptdocs.db.models import Folder

        with session_factory() as session:
            session.execute(update(Folder).where(Folder.id == folder_id).values(parent_id=parent_id))
            session.commit()

    return _force
