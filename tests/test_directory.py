from datetime import date, datetime, timezone

import pytest
from werkzeug.security import check_password_hash

from sms_app import db
from sms_app.data_service import eq
from sms_app.errors import ConflictError, DataFetchError, ValidationError
from sms_app.models import User
from sms_app.users.directory import UserDirectory


@pytest.fixture()
def directory(service):
    return UserDirectory(service)


def _role_id(directory, name):
    return next(r["id"] for r in directory.list_roles() if r["name"] == name)


def test_create_user_hashes_the_password(directory):
    user = directory.create_user("  Meera Joshi ", "Meera@School.test", "long-enough")
    assert user["full_name"] == "Meera Joshi"
    assert user["email"] == "meera@school.test"
    assert "password_hash" not in user
    stored = db.session.get(User, user["id"])
    assert check_password_hash(stored.password_hash, "long-enough")


@pytest.mark.parametrize("kwargs, field", [
    ({"full_name": "", "email": "a@b.co", "password": "long-enough"}, "full_name"),
    ({"full_name": "A", "email": "not-an-email", "password": "long-enough"}, "email"),
    ({"full_name": "A", "email": "a@b.co", "password": "short"}, "password"),
    ({"full_name": "A", "email": "a@b.co", "password": "long-enough", "status": "banned"}, "status"),
])
def test_create_user_validation(directory, kwargs, field):
    with pytest.raises(ValidationError) as exc:
        directory.create_user(**kwargs)
    assert exc.value.field == field


def test_duplicate_email_is_a_conflict(directory):
    directory.create_user("First", "dup@school.test", "long-enough")
    with pytest.raises(ConflictError):
        directory.create_user("Second", "DUP@school.test", "long-enough")


def test_create_user_with_role(directory):
    user = directory.create_user_with_role("Nisha", "nisha@school.test", "long-enough", _role_id(directory, "Teacher"))
    assert user["roles"] == ["Teacher"]


def test_failed_role_assignment_removes_the_new_user(service, directory):
    with pytest.raises(ValidationError):
        directory.create_user_with_role("Ghost", "ghost@school.test", "long-enough", 9999)
    assert service.select("users", filters=[eq("email", "ghost@school.test")]) == []


def test_data_service_failure_during_assignment_is_compensated(service, directory, monkeypatch):
    def fail(user_id, role_id):
        raise DataFetchError("connection reset", table="user_roles")

    monkeypatch.setattr(directory.permissions, "assign_role", fail)
    with pytest.raises(DataFetchError):
        directory.create_user_with_role("Ghost", "ghost@school.test", "long-enough", 1)
    assert service.select("users", filters=[eq("email", "ghost@school.test")]) == []


def test_list_users_search_status_and_role(directory):
    directory.create_user_with_role("Anil Mehta", "anil@school.test", "long-enough", _role_id(directory, "Accountant"))
    directory.create_user("Bhavna Rao", "bhavna@example.org", "long-enough", status="inactive")
    directory.create_user("Chetan Anil", "chetan@school.test", "long-enough")

    assert [u["full_name"] for u in directory.list_users(search="anil")] == ["Anil Mehta", "Chetan Anil"]
    assert [u["full_name"] for u in directory.list_users(search="EXAMPLE.ORG")] == ["Bhavna Rao"]
    assert [u["full_name"] for u in directory.list_users(status="inactive")] == ["Bhavna Rao"]
    assert [u["full_name"] for u in directory.list_users(role="accountant")] == ["Anil Mehta"]


def test_get_user_missing(directory):
    assert directory.get_user(9999) is None


def test_update_user(directory):
    user = directory.create_user("Old Name", "old@school.test", "long-enough")
    directory.create_user("Other", "taken@school.test", "long-enough")

    updated = directory.update_user(user["id"], {"full_name": "New Name", "status": "inactive", "password": "new-password"})
    assert updated["full_name"] == "New Name"
    assert updated["status"] == "inactive"
    stored = db.session.get(User, user["id"])
    assert check_password_hash(stored.password_hash, "new-password")

    with pytest.raises(ConflictError):
        directory.update_user(user["id"], {"email": "taken@school.test"})
    with pytest.raises(ValidationError):
        directory.update_user(user["id"], {"password_hash": "x"})
    assert directory.update_user(9999, {"full_name": "Nobody"}) is None
    # Keeping your own email is not a conflict
    assert directory.update_user(user["id"], {"email": "old@school.test"})["email"] == "old@school.test"


def test_delete_user_removes_role_links(service, directory):
    user = directory.create_user_with_role("Temp", "temp@school.test", "long-enough", _role_id(directory, "Teacher"))
    assert directory.delete_user(user["id"]) is True
    assert service.select("user_roles", filters=[eq("user_id", user["id"])]) == []
    assert directory.delete_user(user["id"]) is False


def test_change_role_replaces_all_roles(directory):
    user = directory.create_user_with_role("Swap", "swap@school.test", "long-enough", _role_id(directory, "Teacher"))
    directory.permissions.assign_role(user["id"], _role_id(directory, "Receptionist"))
    changed = directory.change_role(user["id"], _role_id(directory, "Accountant"))
    assert changed["roles"] == ["Accountant"]


def test_create_role(directory):
    role = directory.create_role("Librarian")
    assert role["is_custom"] is True
    with pytest.raises(ConflictError):
        directory.create_role("Librarian")
    with pytest.raises(ValidationError):
        directory.create_role("  ")


def test_user_stats(directory):
    directory.create_user("A", "a@school.test", "long-enough")
    directory.create_user("B", "b@school.test", "long-enough", status="inactive")
    today = datetime.now(timezone.utc).date()
    stats = directory.user_stats(today=today)
    assert stats == {"total": 2, "active": 1, "inactive": 1, "this_month": 2}
    assert directory.user_stats(today=date(1999, 1, 1))["this_month"] == 0


@pytest.mark.parametrize("table, row", [
    ("attendance_staff", {"attendance_date": date(2024, 3, 4), "status": "present"}),
    ("student_fee_payments", {"amount_paid": 100, "payment_date": date(2024, 3, 4)}),
])
def test_referenced_user_is_not_half_deleted(service, directory, table, row):
    user = directory.create_user_with_role("Clerk", "clerk@school.test", "long-enough", _role_id(directory, "Accountant"))
    if table == "attendance_staff":
        row = dict(row, staff_id=user["id"])
    else:
        student = service.insert("students", [{"fullname": "Asha", "gr_number": "GR-9"}])[0]
        fee = service.insert("student_fees", [{"student_id": student["id"], "total_amount": 500}])[0]
        row = dict(row, student_fee_id=fee["id"], received_by=user["id"])
    service.insert(table, [row])

    with pytest.raises(ConflictError):
        directory.delete_user(user["id"])
    assert directory.get_user(user["id"])["roles"] == ["Accountant"]
