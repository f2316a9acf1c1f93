import pytest

from assetdesk import create_app
from assetdesk.access import is_public_path
from assetdesk.extensions import db
from assetdesk.models import Profile, ProfileRole


@pytest.mark.parametrize(
    "path, public",
    [
        ("/login", True),
        ("/login/accept-invite", True),
        ("/solicitar-manutencao", True),
        ("/solicitar-manutencao/consulta", True),
        ("/health", True),
        ("/storage/company_assets/public/logo.png", True),
        ("/api/assets", False),
        ("/logout", False),
        ("/loginx", False),
    ],
)
def test_public_paths(path, public):
    assert is_public_path(path) is public


def test_api_without_session_gets_401_with_redirect(client):
    response = client.get("/api/assets")
    assert response.status_code == 401
    assert response.get_json() == {"message": "Authentication required", "redirect": "/login"}


def test_page_without_session_redirects_to_login(client):
    response = client.get("/dashboard", headers={"Accept": "text/html"})
    assert response.status_code == 302
    assert response.headers["Location"].endswith("/login")


def test_health_is_public(client):
    assert client.get("/health").get_json() == {"status": "ok"}


def test_login_flow(client, admin_id):
    anonymous = client.get("/login").get_json()
    assert anonymous["authenticated"] is False
    assert anonymous["csrf_token"]

    wrong = client.post("/login", json={"email": "admin@acme.io", "password": "nope-nope"})
    assert wrong.status_code == 401

    signed_in = client.post("/login", json={"email": "ADMIN@acme.io", "password": "admin-pass-123"})
    assert signed_in.status_code == 200
    assert signed_in.get_json()["user"]["id"] == admin_id

    session = client.get("/api/auth/session").get_json()
    assert session["user"]["role"] == "admin"

    assert client.post("/logout").status_code == 200
    assert client.get("/api/auth/session").status_code == 401


def test_disabled_account_cannot_sign_in(app, client):
    with app.app_context():
        profile = Profile(email="ex@acme.io", role=ProfileRole.USER, active=False)
        profile.set_password("old-pass-123")
        db.session.add(profile)
        db.session.commit()
    response = client.post("/login", json={"email": "ex@acme.io", "password": "old-pass-123"})
    assert response.status_code == 403


def test_missing_fields_are_reported_per_field(client):
    response = client.post("/login", json={})
    assert response.status_code == 400
    assert set(response.get_json()["errors"]) == {"email", "password"}


def test_csrf_header_is_required_when_enabled(tmp_path):
    app = create_app("testing", overrides={"WTF_CSRF_ENABLED": True, "STORAGE_ROOT": str(tmp_path)})
    with app.app_context():
        profile = Profile(email="admin@acme.io", role=ProfileRole.ADMIN)
        profile.set_password("admin-pass-123")
        db.session.add(profile)
        db.session.commit()
    client = app.test_client()
    credentials = {"email": "admin@acme.io", "password": "admin-pass-123"}

    rejected = client.post("/login", json=credentials)
    assert rejected.status_code == 403

    token = client.get("/login").get_json()["csrf_token"]
    accepted = client.post("/login", json=credentials, headers={"X-CSRFToken": token})
    assert accepted.status_code == 200

    with app.app_context():
        db.drop_all()
