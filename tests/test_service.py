"""Tests for deptdocs.folders.service — access-checked operations."""

import pytest

from deptdocs.engine.context import Principal, set_principal
from deptdocs.engine.errors import DeptDocsForbiddenError, DeptDocsNotFoundError
from deptdocs.engine.logging import init_logging
from deptdocs.folders.schemas import PermissionType


@pytest.fixture
def shared(service, principals, seed):
    """Engineering root created by dave (admin), owned by dave."""
    root = service.create_folder({"name": "Engineering"}, principal=principals.dave)
    service.grant_permission(
        root.id, {"department_id": seed.engineering, "permission_type": "write"}, principal=principals.dave,
    )
    service.grant_permission(
        root.id, {"department_id": seed.engineering, "permission_type": "read"}, principal=principals.dave,
    )
    return root


class TestCreate:
    def test_root_requires_manage_folders(self, service, principals):
        with pytest.raises(DeptDocsForbiddenError) as exc:
            service.create_folder({"name": "Mine"}, principal=principals.alice)
        assert exc.value.status_code == 403
        assert exc.value.object_ref == "folder:root"
        assert exc.value.context["required_permission"] == "manage_folders"

    def test_admin_creates_root(self, service, principals, seed):
        folder = service.create_folder({"name": "Company"}, principal=principals.dave)
        assert folder.owner_id == seed.dave

    def test_write_on_parent(self, service, principals, shared, seed):
        child = service.create_folder({"name": "Designs", "parent_id": shared.id}, principal=principals.bob)
        assert child.owner_id == seed.bob

    def test_denied_without_write(self, service, principals, shared):
        with pytest.raises(DeptDocsForbiddenError, match="write on folder"):
            service.create_folder({"name": "X", "parent_id": shared.id}, principal=principals.carol)

    def test_missing_parent_is_not_found(self, service, principals, seed):
        with pytest.raises(DeptDocsNotFoundError):
            service.create_folder({"name": "X", "parent_id": 999}, principal=principals.alice)


class TestReads:
    def test_get_folder(self, service, principals, shared):
        assert service.get_folder(shared.id, principal=principals.alice).name == "Engineering"

    def test_get_folder_denied(self, service, principals, shared):
        with pytest.raises(DeptDocsForbiddenError):
            service.get_folder(shared.id, principal=principals.carol)

    def test_path(self, service, principals, shared):
        child = service.create_folder({"name": "API", "parent_id": shared.id}, principal=principals.alice)
        names = [f.name for f in service.get_hierarchy_path(child.id, principal=principals.bob)]
        assert names == ["Engineering", "API"]

    def test_list_children_filters_unreadable(self, service, principals, shared):
        open_child = service.create_folder({"name": "Open", "parent_id": shared.id}, principal=principals.alice)
        service.create_folder(
            {"name": "Closed", "parent_id": shared.id, "inherit_permissions": False}, principal=principals.alice,
        )
        names = [f.name for f in service.list_children(shared.id, principal=principals.bob)]
        assert names == ["Open"]
        assert open_child.id in [f.id for f in service.list_children(shared.id, principal=principals.dave)]

    def test_list_roots(self, service, principals, shared):
        service.create_folder({"name": "HR"}, principal=principals.dave)
        assert [f.name for f in service.list_children(principal=principals.bob)] == ["Engineering"]
        assert [f.name for f in service.list_children(principal=principals.dave)] == ["Engineering", "HR"]

    def test_list_folders_only_readable(self, service, principals, shared):
        service.create_folder({"name": "HR"}, principal=principals.dave)
        assert [f.name for f in service.list_folders(principal=principals.alice).items] == ["Engineering"]
        assert service.list_folders(principal=principals.carol).total == 0
        assert service.list_folders(principal=principals.dave).total == 2


class TestUpdate:
    def test_rename_with_write(self, service, principals, shared):
        child = service.create_folder({"name": "Old", "parent_id": shared.id}, principal=principals.alice)
        assert service.update_folder(child.id, {"name": "New"}, principal=principals.bob).name == "New"

    def test_rename_denied(self, service, principals, shared):
        with pytest.raises(DeptDocsForbiddenError):
            service.update_folder(shared.id, {"name": "Mine"}, principal=principals.carol)

    def test_move_needs_write_on_target(self, service, principals, shared):
        child = service.create_folder({"name": "Move me", "parent_id": shared.id}, principal=principals.alice)
        hr = service.create_folder({"name": "HR"}, principal=principals.dave)
        with pytest.raises(DeptDocsForbiddenError) as exc:
            service.update_folder(child.id, {"parent_id": hr.id}, principal=principals.alice)
        assert exc.value.context["operation"] == "move_folder"

    def test_move_to_root_needs_manage_folders(self, service, principals, shared):
        child = service.create_folder({"name": "Up", "parent_id": shared.id}, principal=principals.alice)
        with pytest.raises(DeptDocsForbiddenError):
            service.update_folder(child.id, {"parent_id": None}, principal=principals.alice)
        assert service.update_folder(child.id, {"parent_id": None}, principal=principals.dave).parent_id is None

    def test_same_parent_is_not_a_move(self, service, principals, shared):
        child = service.create_folder({"name": "Stay", "parent_id": shared.id}, principal=principals.alice)
        view = service.update_folder(child.id, {"parent_id": shared.id, "name": "Stayed"}, principal=principals.bob)
        assert view.name == "Stayed"


class TestDelete:
    def test_requires_delete(self, service, principals, shared):
        child = service.create_folder({"name": "Temp", "parent_id": shared.id}, principal=principals.alice)
        with pytest.raises(DeptDocsForbiddenError):
            service.delete_folder(child.id, principal=principals.bob)
        assert service.delete_folder(child.id, principal=principals.alice) == 1


class TestGrants:
    def test_manage_required(self, service, principals, shared, seed):
        with pytest.raises(DeptDocsForbiddenError):
            service.grant_permission(shared.id, {"user_id": seed.carol, "permission_type": "read"}, principal=principals.bob)

    def test_owner_can_grant(self, service, principals, shared, seed):
        child = service.create_folder({"name": "Shared", "parent_id": shared.id}, principal=principals.alice)
        view = service.grant_permission(child.id, {"user_id": seed.carol, "permission_type": "read"}, principal=principals.alice)
        assert view.granted_by == seed.alice
        assert service.check_access(child.id, "read", principal=principals.carol) is True

    def test_list_and_revoke(self, service, principals, shared, seed):
        assert len(service.list_permissions(shared.id, principal=principals.dave)) == 2
        assert service.revoke_permission(shared.id, {"permission_type": "write"}, principal=principals.dave) == 1
        assert service.check_access(shared.id, "write", principal=principals.bob) is False

    def test_list_denied(self, service, principals, shared):
        with pytest.raises(DeptDocsForbiddenError):
            service.list_permissions(shared.id, principal=principals.alice)

    def test_revoke_denied(self, service, principals, shared):
        with pytest.raises(DeptDocsForbiddenError):
            service.revoke_permission(shared.id, principal=principals.alice)


class TestQueries:
    def test_check_access_is_boolean(self, service, principals, shared):
        assert service.check_access(shared.id, "read", principal=principals.alice) is True
        assert service.check_access(shared.id, "manage", principal=principals.alice) is False

    def test_effective_permissions(self, service, principals, shared):
        assert service.effective_permissions(shared.id, principal=principals.bob) == {
            PermissionType.READ, PermissionType.WRITE,
        }

    def test_accessible_folders(self, service, principals, shared):
        assert service.accessible_folders("write", principal=principals.bob) == [shared.id]
        assert service.accessible_folders(principal=principals.carol) == []


class TestPrincipalContext:
    def test_principal_from_context(self, service, principals, shared):
        set_principal(principals.alice)
        assert service.get_folder(shared.id).id == shared.id

    def test_missing_principal(self, service, shared):
        with pytest.raises(DeptDocsForbiddenError) as exc:
            service.get_folder(shared.id)
        assert exc.value.reason == "missing_principal"

    def test_unknown_user_has_no_access(self, service, shared):
        assert service.check_access(shared.id, "read", principal=Principal(user_id=9999)) is False


class TestAudit:
    def test_denial_written_to_security_log(self, service, principals, shared, tmp_path):
        from deptdocs.engine.logging import FileLogger, shutdown_logging

        log_dir = str(tmp_path / "logs")
        init_logging(log_dir=log_dir)
        with pytest.raises(DeptDocsForbiddenError):
            service.get_folder(shared.id, principal=principals.carol)
        shutdown_logging()

        denials = FileLogger(log_dir).query("folders", "security", filters={"event": "access_denied"})
        assert len(denials) == 1
        assert denials[0]["object_ref"] == f"folders.{shared.id}"
        assert denials[0]["permission_needed"] == "read"
        assert denials[0]["operation"] == "get_folder"
