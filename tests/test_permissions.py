import pytest

from sms_app.data_service import eq
from sms_app.errors import ValidationError
from sms_app.seed import DEFAULT_ROLES, seed_defaults
from sms_app.users.permissions import RolePermissionManager, group_permissions_by_group


@pytest.fixture()
def manager(service):
    return RolePermissionManager(service)


@pytest.fixture()
def user_id(make_user):
    return make_user("staff@school.test")["id"]


def _role_id(service, name):
    return service.select("roles", filters=[eq("name", name)])[0]["id"]


def _perm_id(service, name):
    return service.select("permissions", filters=[eq("name", name)])[0]["id"]


def test_assigning_a_role_twice_is_a_no_op(service, manager, user_id):
    accountant = _role_id(service, "Accountant")
    assert manager.assign_role(user_id, accountant) is True
    once = manager.effective_permissions(user_id)
    assert manager.assign_role(user_id, accountant) is False
    assert manager.effective_permissions(user_id) == once
    assert manager.roles_for_user(user_id) == [accountant]


def test_revoking_an_unassigned_role_is_a_no_op(service, manager, user_id):
    manager.assign_role(user_id, _role_id(service, "Teacher"))
    before = manager.effective_permissions(user_id)
    assert manager.revoke_role(user_id, _role_id(service, "Principal")) is False
    assert manager.effective_permissions(user_id) == before


def test_revoke_removes_the_roles_permissions(service, manager, user_id):
    teacher = _role_id(service, "Teacher")
    manager.assign_role(user_id, teacher)
    assert manager.revoke_role(user_id, teacher) is True
    assert manager.effective_permissions(user_id) == frozenset()


def test_effective_permissions_are_the_union_of_roles(service, manager, user_id):
    accountant = _role_id(service, "Accountant")
    teacher = _role_id(service, "Teacher")
    manager.assign_role(user_id, accountant)
    manager.assign_role(user_id, teacher)
    names = manager.effective_permission_names(user_id)
    assert names == frozenset(DEFAULT_ROLES["Accountant"]) | frozenset(DEFAULT_ROLES["Teacher"])


def test_a_role_that_does_not_grant_never_revokes(service, manager, user_id):
    view_fees = _perm_id(service, "view_fees")
    granting = service.insert("roles", [{"name": "Fee Viewer", "is_custom": True}])[0]["id"]
    denying = service.insert("roles", [{"name": "Fee Blind", "is_custom": True}])[0]["id"]
    manager.set_permission(granting, view_fees, True)
    manager.set_permission(denying, view_fees, False)
    manager.assign_role(user_id, denying)
    assert view_fees not in manager.effective_permissions(user_id)
    manager.assign_role(user_id, granting)
    assert manager.effective_permissions(user_id) == frozenset({view_fees})


def test_toggle_creates_then_flips(service, manager):
    role = service.insert("roles", [{"name": "Custom", "is_custom": True}])[0]["id"]
    perm = _perm_id(service, "manage_settings")
    assert manager.role_permission_map(role) == {}
    assert manager.toggle_permission(role, perm) is True
    assert manager.role_permission_map(role) == {perm: True}
    assert manager.toggle_permission(role, perm) is False
    assert manager.role_permission_map(role) == {perm: False}
    assert manager.toggle_permission(role, perm) is True


def test_unknown_role_or_user_is_rejected(service, manager, user_id):
    with pytest.raises(ValidationError):
        manager.assign_role(user_id, 9999)
    with pytest.raises(ValidationError):
        manager.assign_role(9999, _role_id(service, "Teacher"))
    with pytest.raises(ValidationError):
        manager.toggle_permission(9999, _perm_id(service, "view_fees"))


def test_role_names_for_user(service, manager, user_id):
    manager.assign_role(user_id, _role_id(service, "Teacher"))
    manager.assign_role(user_id, _role_id(service, "Accountant"))
    assert manager.role_names_for_user(user_id) == ["Accountant", "Teacher"]


def test_group_permissions_keeps_first_seen_group_order():
    perms = [
        {"id": 1, "name": "view_fees", "group_id": 3},
        {"id": 2, "name": "view_students", "group_id": 1},
        {"id": 3, "name": "manage_fees", "group_id": 3},
        {"id": 4, "name": "loose", "group_id": None},
    ]
    grouped = group_permissions_by_group(perms)
    assert list(grouped) == [3, 1, None]
    assert [p["id"] for p in grouped[3]] == [1, 3]


def test_grouped_permissions_lists_seeded_groups(manager):
    groups = manager.grouped_permissions()
    names = {g["group_name"] for g in groups}
    assert {"Users", "Students", "Fees", "Attendance", "Academics", "Reports"} <= names
    assert sum(len(g["permissions"]) for g in groups) == 10


def test_seeding_is_idempotent(service):
    again = seed_defaults(service)
    assert again == {"groups": 0, "permissions": 0, "roles": 0, "grants": 0}
