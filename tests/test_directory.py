"""Tests for deptdocs.folders.directory — folder CRUD and tree invariants."""

from unittest.mock import MagicMock, patch

import pytest

from deptdocs.db.models import Document, Folder
from deptdocs.engine.config import FolderSettings
from deptdocs.engine.errors import (
    DeptDocsConflictError,
    DeptDocsNotFoundError,
    DeptDocsStorageError,
    DeptDocsValidationError,
)
from deptdocs.folders.directory import FolderDirectory
from deptdocs.folders.schemas import AccessLevel, FolderCreate, FolderUpdate


def _active_parent_map(session_factory):
    with session_factory() as session:
        return {
            f.id: f.parent_id
            for f in session.query(Folder).filter(Folder.is_active.is_(True)).all()
        }


def _assert_acyclic(session_factory):
    parents = _active_parent_map(session_factory)
    for start in parents:
        seen = set()
        current = start
        while current is not None:
            assert current not in seen, f"cycle through folder {current}"
            seen.add(current)
            current = parents.get(current)


class TestCreate:
    def test_root_folder_defaults(self, directory, seed):
        folder = directory.create({"name": "Reports"}, owner_id=seed.alice)
        assert folder.id > 0
        assert folder.parent_id is None
        assert folder.owner_id == seed.alice
        assert folder.access_level is AccessLevel.INHERITED
        assert folder.inherit_permissions is True
        assert folder.is_active is True

    def test_with_parent_and_settings(self, directory, make_folder, seed):
        parent = make_folder("Finance")
        child = directory.create(
            FolderCreate(
                name="Q1", parent_id=parent.id, access_level="private",
                inherit_permissions=False, description="First quarter",
            ),
            owner_id=seed.bob,
        )
        assert child.parent_id == parent.id
        assert child.access_level is AccessLevel.PRIVATE
        assert child.inherit_permissions is False
        assert child.description == "First quarter"

    def test_missing_parent(self, directory, seed):
        with pytest.raises(DeptDocsNotFoundError, match="Parent folder not found"):
            directory.create({"name": "X", "parent_id": 404}, owner_id=seed.alice)

    def test_inactive_parent(self, directory, make_folder, seed):
        parent = make_folder("Gone")
        directory.delete(parent.id)
        with pytest.raises(DeptDocsNotFoundError):
            directory.create({"name": "X", "parent_id": parent.id}, owner_id=seed.alice)

    def test_duplicate_under_same_parent(self, directory, make_folder, seed):
        p = make_folder("P")
        q = make_folder("Q")
        make_folder("Reports", p.id)
        with pytest.raises(DeptDocsConflictError) as exc:
            make_folder("Reports", p.id)
        assert exc.value.reason == "duplicate_name"
        assert make_folder("Reports", q.id).parent_id == q.id

    def test_duplicate_at_root(self, make_folder):
        make_folder("Shared")
        with pytest.raises(DeptDocsConflictError, match="already exists"):
            make_folder("Shared")

    def test_name_reusable_after_delete(self, directory, make_folder):
        first = make_folder("Archive")
        directory.delete(first.id)
        assert make_folder("Archive").id != first.id

    def test_depth_cap(self, session_factory, seed):
        directory = FolderDirectory(session_factory, settings=FolderSettings(max_depth=2))
        top = directory.create({"name": "L1"}, owner_id=seed.alice)
        mid = directory.create({"name": "L2", "parent_id": top.id}, owner_id=seed.alice)
        with pytest.raises(DeptDocsConflictError) as exc:
            directory.create({"name": "L3", "parent_id": mid.id}, owner_id=seed.alice)
        assert exc.value.reason == "depth_exceeded"

    def test_malformed_owner(self, directory, seed):
        with pytest.raises(DeptDocsValidationError):
            directory.create({"name": "X"}, owner_id=0)

    def test_invalid_request(self, directory, seed):
        with pytest.raises(DeptDocsValidationError):
            directory.create({"name": "X", "access_level": "top-secret"}, owner_id=seed.alice)

    def test_unknown_owner(self, directory, session_factory, seed):
        with pytest.raises(DeptDocsNotFoundError, match="User not found") as exc:
            directory.create({"name": "X"}, owner_id=999)
        assert exc.value.object_ref == "user:999"
        assert _active_parent_map(session_factory) == {}

    def test_inactive_owner(self, directory, seed):
        with pytest.raises(DeptDocsNotFoundError):
            directory.create({"name": "X"}, owner_id=seed.erin)


class TestUpdate:
    def test_rename(self, directory, make_folder):
        f = make_folder("Old")
        assert directory.update(f.id, {"name": "New"}).name == "New"

    def test_rename_to_sibling_name(self, directory, make_folder):
        root = make_folder("root")
        make_folder("a", root.id)
        b = make_folder("b", root.id)
        with pytest.raises(DeptDocsConflictError):
            directory.update(b.id, {"name": "a"})

    def test_rename_to_own_name_is_fine(self, directory, make_folder):
        f = make_folder("Same")
        assert directory.update(f.id, {"name": "Same"}).name == "Same"

    def test_settings(self, directory, make_folder):
        f = make_folder("S")
        updated = directory.update(f.id, FolderUpdate(access_level="public", inherit_permissions=False))
        assert updated.access_level is AccessLevel.PUBLIC
        assert updated.inherit_permissions is False

    def test_empty_update_returns_unchanged(self, directory, make_folder):
        f = make_folder("S")
        assert directory.update(f.id, {}) == directory.update(f.id, FolderUpdate())

    def test_move(self, directory, make_folder):
        a = make_folder("a")
        b = make_folder("b")
        assert directory.update(b.id, {"parent_id": a.id}).parent_id == a.id

    def test_move_to_root(self, directory, make_folder):
        a = make_folder("a")
        b = make_folder("b", a.id)
        assert directory.update(b.id, {"parent_id": None}).parent_id is None

    def test_move_to_root_name_clash(self, directory, make_folder):
        make_folder("dup")
        a = make_folder("a")
        nested = make_folder("dup", a.id)
        with pytest.raises(DeptDocsConflictError):
            directory.update(nested.id, {"parent_id": None})

    def test_move_under_own_descendant_leaves_tree_unchanged(self, directory, make_folder, session_factory):
        a = make_folder("a")
        a1 = make_folder("a1", a.id)
        a2 = make_folder("a2", a1.id)
        before = _active_parent_map(session_factory)
        with pytest.raises(DeptDocsConflictError) as exc:
            directory.update(a.id, {"parent_id": a2.id})
        assert exc.value.reason == "cycle"
        assert _active_parent_map(session_factory) == before

    def test_move_under_self(self, directory, make_folder):
        a = make_folder("a")
        with pytest.raises(DeptDocsConflictError):
            directory.update(a.id, {"parent_id": a.id})

    def test_move_to_inactive_parent(self, directory, make_folder):
        a = make_folder("a")
        gone = make_folder("gone")
        directory.delete(gone.id)
        with pytest.raises(DeptDocsNotFoundError):
            directory.update(a.id, {"parent_id": gone.id})

    def test_move_respects_depth_cap(self, session_factory, seed):
        directory = FolderDirectory(session_factory, settings=FolderSettings(max_depth=3))
        a = directory.create({"name": "a"}, owner_id=seed.alice)
        a1 = directory.create({"name": "a1", "parent_id": a.id}, owner_id=seed.alice)
        b = directory.create({"name": "b"}, owner_id=seed.alice)
        directory.create({"name": "b1", "parent_id": b.id}, owner_id=seed.alice)
        with pytest.raises(DeptDocsConflictError) as exc:
            directory.update(b.id, {"parent_id": a1.id})
        assert exc.value.reason == "depth_exceeded"

    def test_missing_folder(self, directory, seed):
        with pytest.raises(DeptDocsNotFoundError):
            directory.update(77, {"name": "x"})

    def test_random_moves_stay_acyclic(self, directory, make_folder, session_factory):
        ids = [make_folder(f"n{i}").id for i in range(6)]
        moves = [(1, 0), (2, 1), (3, 2), (0, 3), (4, 0), (0, 4), (5, 4), (3, 5), (1, 3)]
        for child, parent in moves:
            try:
                directory.update(ids[child], {"parent_id": ids[parent]})
            except DeptDocsConflictError:
                pass
            _assert_acyclic(session_factory)


class TestSiblingNameIndex:
    """The unique indexes reject duplicates the name pre-check let through."""

    @pytest.fixture(autouse=True)
    def _skip_name_check(self):
        with patch.object(FolderDirectory, "_ensure_unique_name", staticmethod(lambda *args, **kwargs: None)):
            yield

    def test_create_duplicate_sibling(self, session_factory, make_folder):
        p = make_folder("P")
        make_folder("Reports", p.id)
        before = _active_parent_map(session_factory)
        with pytest.raises(DeptDocsConflictError) as exc:
            make_folder("Reports", p.id)
        assert exc.value.reason == "duplicate_name"
        assert _active_parent_map(session_factory) == before

    def test_rename_onto_root_name(self, directory, session_factory, make_folder, fetch):
        make_folder("A")
        b = make_folder("B")
        before = _active_parent_map(session_factory)
        with pytest.raises(DeptDocsConflictError) as exc:
            directory.update(b.id, {"name": "A"})
        assert exc.value.reason == "duplicate_name"
        assert fetch(Folder, b.id).name == "B"
        assert _active_parent_map(session_factory) == before


class TestDelete:
    def test_empty_folder(self, directory, make_folder, fetch):
        f = make_folder("Empty")
        assert directory.delete(f.id) == 1
        assert fetch(Folder, f.id).is_active is False

    def test_missing(self, directory, seed):
        with pytest.raises(DeptDocsNotFoundError):
            directory.delete(12)

    def test_already_deleted(self, directory, make_folder):
        f = make_folder("Once")
        directory.delete(f.id)
        with pytest.raises(DeptDocsNotFoundError):
            directory.delete(f.id)

    def test_non_empty_without_cascade(self, directory, make_folder, make_document, fetch):
        parent = make_folder("P")
        child = make_folder("C", parent.id)
        doc = make_document(parent.id)
        with pytest.raises(DeptDocsConflictError) as exc:
            directory.delete(parent.id)
        assert exc.value.reason == "not_empty"
        assert fetch(Folder, parent.id).is_active is True
        assert fetch(Folder, child.id).is_active is True
        assert fetch(Document, doc).is_active is True

    def test_folder_with_only_documents(self, directory, make_folder, make_document):
        f = make_folder("Docs")
        make_document(f.id)
        with pytest.raises(DeptDocsConflictError):
            directory.delete(f.id)

    def test_cascade(self, directory, make_folder, make_document, fetch):
        root = make_folder("root")
        a = make_folder("a", root.id)
        a1 = make_folder("a1", a.id)
        other = make_folder("other")
        docs = [make_document(root.id), make_document(a1.id), make_document(a1.id, "b.txt")]
        untouched = make_document(other.id)

        assert directory.delete(root.id, cascade=True) == 3

        for fid in (root.id, a.id, a1.id):
            assert fetch(Folder, fid).is_active is False
        for doc_id in docs:
            assert fetch(Document, doc_id).is_active is False
        assert fetch(Folder, other.id).is_active is True
        assert fetch(Document, untouched).is_active is True

        for fid in (root.id, a.id, a1.id):
            with pytest.raises(DeptDocsNotFoundError):
                directory.get(fid)
        assert [f.id for f in directory.list().items] == [other.id]

    def test_document_store_failure_rolls_back_cascade(self, session_factory, make_folder, fetch):
        store = MagicMock()
        store.deactivate_all_under.side_effect = [True, False]
        directory = FolderDirectory(session_factory, document_store=store)
        root = make_folder("root")
        child = make_folder("child", root.id)

        with pytest.raises(DeptDocsStorageError):
            directory.delete(root.id, cascade=True)

        assert fetch(Folder, root.id).is_active is True
        assert fetch(Folder, child.id).is_active is True

    def test_document_store_exception_rolls_back(self, session_factory, make_folder, make_document, fetch):
        from deptdocs.documents.store import SqlDocumentStore

        real = SqlDocumentStore()
        calls = []

        def flaky(session, folder_id):
            calls.append(folder_id)
            if len(calls) == 2:
                raise RuntimeError("index offline")
            return real.deactivate_all_under(session, folder_id)

        store = MagicMock()
        store.deactivate_all_under.side_effect = flaky
        directory = FolderDirectory(session_factory, document_store=store)
        root = make_folder("root")
        child = make_folder("child", root.id)
        doc = make_document(root.id)

        with pytest.raises(RuntimeError, match="index offline"):
            directory.delete(root.id, cascade=True)

        assert calls == [root.id, child.id]
        assert fetch(Document, doc).is_active is True
        assert fetch(Folder, child.id).is_active is True


class TestReads:
    def test_get_with_counts(self, directory, make_folder, make_document):
        f = make_folder("F")
        make_folder("c1", f.id)
        make_folder("c2", f.id)
        make_document(f.id)
        view = directory.get(f.id)
        assert view.subfolder_count == 2
        assert view.document_count == 1

    def test_hierarchy_path(self, directory, make_folder):
        a = make_folder("a")
        b = make_folder("b", a.id)
        c = make_folder("c", b.id)
        assert [f.name for f in directory.get_hierarchy_path(c.id)] == ["a", "b", "c"]
        assert [f.name for f in directory.get_hierarchy_path(a.id)] == ["a"]

    def test_children(self, directory, make_folder):
        p = make_folder("p")
        make_folder("zeta", p.id)
        make_folder("alpha", p.id)
        gone = make_folder("gone", p.id)
        directory.delete(gone.id)
        assert [f.name for f in directory.children(p.id)] == ["alpha", "zeta"]
        assert [f.name for f in directory.children()] == ["p"]

    def test_children_of_missing(self, directory, seed):
        with pytest.raises(DeptDocsNotFoundError):
            directory.children(5)


class TestList:
    @pytest.fixture
    def folders(self, make_folder, seed):
        root = make_folder("Company", description="everything")
        make_folder("Budget 2026", root.id, access_level="private")
        make_folder("Roadmap", root.id, owner_id=seed.bob, access_level="public")
        make_folder("Archive", description="old budget files")
        return root

    def test_default_order_and_counts(self, directory, folders):
        page = directory.list()
        assert [f.name for f in page.items] == ["Archive", "Budget 2026", "Company", "Roadmap"]
        assert page.total == 4
        company = next(f for f in page.items if f.name == "Company")
        assert company.subfolder_count == 2
        assert company.document_count == 0

    def test_parent_filter(self, directory, folders):
        names = [f.name for f in directory.list({"parent_id": folders.id}).items]
        assert names == ["Budget 2026", "Roadmap"]

    def test_root_only(self, directory, folders):
        names = [f.name for f in directory.list({"root_only": True}).items]
        assert names == ["Archive", "Company"]

    def test_owner_filter(self, directory, folders, seed):
        assert [f.name for f in directory.list({"owner_id": seed.bob}).items] == ["Roadmap"]

    def test_access_level_filter(self, directory, folders):
        assert [f.name for f in directory.list({"access_level": "private"}).items] == ["Budget 2026"]

    def test_search_name_and_description(self, directory, folders):
        names = [f.name for f in directory.list({"search": "BUDGET"}).items]
        assert names == ["Archive", "Budget 2026"]

    def test_search_wildcards_are_literal(self, directory, folders):
        assert directory.list({"search": "%"}).total == 0

    def test_pagination(self, directory, folders):
        page = directory.list(page=2, limit=3)
        assert [f.name for f in page.items] == ["Roadmap"]
        assert page.total == 4
        assert page.pages == 2

    def test_limit_capped(self, session_factory, folders):
        directory = FolderDirectory(session_factory, settings=FolderSettings(max_page_size=2))
        assert directory.list(limit=50).limit == 2

    def test_restrict_to(self, directory, folders):
        page = directory.list(restrict_to=[folders.id])
        assert [f.id for f in page.items] == [folders.id]
        assert directory.list(restrict_to=[]).total == 0

    @pytest.mark.parametrize("kwargs", [{"page": 0}, {"limit": 0}, {"page": True}])
    def test_bad_paging(self, directory, seed, kwargs):
        with pytest.raises(DeptDocsValidationError):
            directory.list(**kwargs)
