from __future__ import annotations

import pytest

from assetdesk import create_app
from assetdesk.extensions import db
from assetdesk.models import Profile, ProfileRole

ADMIN_EMAIL = "admin@acme.io"
ADMIN_PASSWORD = "admin-pass-123"
USER_EMAIL = "tecnico@acme.io"
USER_PASSWORD = "user-pass-123"


@pytest.fixture
def app(tmp_path):
    app = create_app("testing", overrides={"STORAGE_ROOT": str(tmp_path / "storage")})
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


def _create_profile(app, email: str, password: str, role: ProfileRole, first_name: str) -> int:
    with app.app_context():
        profile = Profile(email=email, first_name=first_name, last_name="Silva", role=role)
        profile.set_password(password)
        db.session.add(profile)
        db.session.commit()
        return profile.id


@pytest.fixture
def admin_id(app) -> int:
    return _create_profile(app, ADMIN_EMAIL, ADMIN_PASSWORD, ProfileRole.ADMIN, "Ana")


@pytest.fixture
def user_id(app) -> int:
    return _create_profile(app, USER_EMAIL, USER_PASSWORD, ProfileRole.USER, "Bruno")


def login(client, email: str, password: str):
    response = client.post("/login", json={"email": email, "password": password})
    assert response.status_code == 200, response.get_json()
    return response


@pytest.fixture
def admin_client(client, admin_id):
    login(client, ADMIN_EMAIL, ADMIN_PASSWORD)
    return client


@pytest.fixture
def user_client(client, user_id):
    login(client, USER_EMAIL, USER_PASSWORD)
    return client
