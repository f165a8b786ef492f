from types import SimpleNamespace

import pytest

from sms_app.auth import AuthContext


def test_login_and_me(client, make_user, login):
    make_user("acc@school.test", role="Accountant", full_name="Farah Khan")
    resp = login("acc@school.test")
    assert resp.status_code == 200
    data = resp.get_json()["data"]
    assert data["authenticated"] is True
    assert data["user"]["email"] == "acc@school.test"

    me = client.get("/me").get_json()["data"]
    assert me["user"]["full_name"] == "Farah Khan"
    assert me["roles"] == ["Accountant"]
    assert me["permissions"] == sorted(["view_students", "manage_fees", "view_fees", "view_reports"])
    assert me["is_super_admin"] is False


def test_login_is_case_insensitive_on_email(client, make_user):
    make_user("case@school.test")
    resp = client.post("/login", json={"email": "  CASE@School.test ", "password": "secret-pass"})
    assert resp.status_code == 200


def test_login_accepts_form_data(client, make_user):
    make_user("form@school.test")
    resp = client.post("/login", data={"email": "form@school.test", "password": "secret-pass"})
    assert resp.status_code == 200


@pytest.mark.parametrize("body", [{}, {"email": "x@school.test"}, {"password": "secret-pass"}])
def test_login_requires_both_fields(client, body):
    resp = client.post("/login", json=body)
    assert resp.status_code == 400
    assert resp.get_json()["error"]["code"] == "invalid"


def test_bad_credentials(client, make_user, login):
    make_user("real@school.test")
    assert login("real@school.test", password="wrong-pass").status_code == 401
    resp = login("nobody@school.test")
    assert resp.status_code == 401
    assert resp.get_json()["error"]["code"] == "invalid_credentials"


def test_inactive_user_cannot_sign_in(client, make_user, login):
    make_user("gone@school.test", status="inactive")
    resp = login("gone@school.test")
    assert resp.status_code == 403
    assert resp.get_json()["error"]["code"] == "inactive"
    assert client.get("/me").status_code == 401


def test_logout(client, make_user, login):
    make_user("out@school.test", role="Teacher")
    login("out@school.test")
    resp = client.post("/logout")
    assert resp.get_json()["data"]["authenticated"] is False
    assert client.get("/me").status_code == 401
    assert client.get("/reports/types").status_code == 401


def test_logout_then_sign_in_again(client, make_user, login):
    make_user("back@school.test", role="Accountant")
    login("back@school.test")
    assert client.post("/logout").status_code == 200
    assert client.post("/logout").status_code == 200
    assert login("back@school.test").status_code == 200
    assert client.get("/me").get_json()["data"]["roles"] == ["Accountant"]


def test_me_when_anonymous(client):
    resp = client.get("/me")
    assert resp.status_code == 401
    assert resp.get_json()["error"]["code"] == "unauthorized"


def test_index_reports_sign_in_state(client, make_user, login):
    assert client.get("/").get_json()["data"]["authenticated"] is False
    make_user("idx@school.test")
    login("idx@school.test")
    assert client.get("/").get_json()["data"]["authenticated"] is True


def test_login_is_rate_limited(make_app):
    app = make_app(RATELIMIT_ENABLED=True, RATELIMIT_STORAGE_URI="memory://")
    client = app.test_client()
    client.get("/")
    codes = [
        client.post("/login", json={"email": "x@school.test", "password": "wrong-pass"}).status_code
        for _ in range(6)
    ]
    assert codes[:5] == [401] * 5
    assert codes[5] == 429


def _user(user_id=1):
    return SimpleNamespace(id=user_id, full_name="Unit User", email="unit@school.test")


def test_anonymous_context_has_nothing():
    auth = AuthContext.anonymous()
    assert not auth.is_authenticated
    assert auth.user_id is None
    assert not auth.has_permission("view_reports")
    assert auth.as_dict()["user"] is None


def test_super_admin_has_every_permission():
    auth = AuthContext(_user(), roles=["Super Admin"])
    assert auth.is_super_admin
    assert auth.has_permission("anything_at_all")


def test_super_admin_role_name_is_configurable():
    auth = AuthContext(_user(), roles=["Owner"], super_admin_role="Owner")
    assert auth.is_super_admin
    assert not AuthContext(_user(), roles=["Super Admin"], super_admin_role="Owner").is_super_admin


def test_regular_user_permissions():
    auth = AuthContext(_user(), roles=["Teacher"], permissions={"view_reports"})
    assert auth.has_role("Teacher")
    assert not auth.has_role("Principal")
    assert auth.has_permission("view_reports")
    assert not auth.has_permission("manage_users")


def test_clear_drops_everything():
    auth = AuthContext(_user(7), roles=["Teacher"], permissions={"view_reports"})
    auth.clear()
    assert not auth.is_authenticated
    assert auth.roles == ()
    assert not auth.has_permission("view_reports")
    assert repr(auth) == "<AuthContext user=None roles=[]>"


def test_clear_tolerates_a_user_without_an_id():
    auth = AuthContext(SimpleNamespace(full_name="Guest", email=None), roles=["Teacher"])
    assert auth.user_id is None
    auth.clear()
    assert not auth.is_authenticated
