import pytest

from sms_app import create_app, db
from sms_app.data_service import get_data_service
from sms_app.seed import seed_defaults
from sms_app.users.directory import UserDirectory

PASSWORD = "secret-pass"


@pytest.fixture()
def make_app(tmp_path):
    def _make(**overrides):
        config = {
            "TESTING": True,
            "SQLALCHEMY_DATABASE_URI": f"sqlite:///{tmp_path / 'test.db'}",
            "CACHE_TYPE": "NullCache",
            "RATELIMIT_ENABLED": False,
        }
        config.update(overrides)
        app = create_app(config)
        with app.app_context():
            seed_defaults(get_data_service())
        return app
    return _make


@pytest.fixture()
def app(make_app):
    app = make_app()
    yield app
    with app.app_context():
        db.session.remove()


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def service(app):
    with app.app_context():
        yield get_data_service()


@pytest.fixture()
def make_user(app):
    def _make(email, role=None, full_name="Test User", password=PASSWORD, status="active"):
        with app.app_context():
            directory = UserDirectory(get_data_service())
            if role is None:
                return directory.create_user(full_name, email, password, status=status)
            role_row = next(r for r in directory.list_roles() if r["name"] == role)
            return directory.create_user_with_role(full_name, email, password, role_row["id"], status=status)
    return _make


@pytest.fixture()
def login(client):
    def _login(email, password=PASSWORD):
        return client.post("/login", json={"email": email, "password": password})
    return _login


@pytest.fixture()
def admin_client(client, make_user, login):
    make_user("admin@school.test", role="Super Admin", full_name="School Admin")
    resp = login("admin@school.test")
    assert resp.status_code == 200
    return client
