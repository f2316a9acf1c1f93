import io

from assetdesk.extensions import db
from assetdesk.models import Profile
from conftest import ADMIN_EMAIL, ADMIN_PASSWORD, USER_EMAIL, USER_PASSWORD, login


def test_departments_are_admin_managed(admin_client, user_id):
    created = admin_client.post("/api/departments", json={"name": "Manutenção", "description": "Equipe interna"})
    assert created.status_code == 201
    department_id = created.get_json()["id"]

    assert admin_client.post("/api/departments", json={"name": "Manutenção"}).status_code == 400

    assigned = admin_client.put(f"/api/profiles/{user_id}/department", json={"department_id": department_id})
    assert assigned.get_json()["department_name"] == "Manutenção"
    assert admin_client.put(f"/api/profiles/{user_id}/department", json={"department_id": 999}).status_code == 400

    renamed = admin_client.patch(f"/api/departments/{department_id}", json={"name": "Facilities"})
    assert renamed.get_json()["name"] == "Facilities"
    assert renamed.get_json()["description"] == "Equipe interna"

    assert admin_client.delete(f"/api/departments/{department_id}").status_code == 200
    member = next(p for p in admin_client.get("/api/profiles").get_json() if p["id"] == user_id)
    assert member["department_id"] is None


def test_regular_users_only_read_departments(user_client):
    assert user_client.get("/api/departments").status_code == 200
    response = user_client.post("/api/departments", json={"name": "TI"})
    assert response.status_code == 403
    assert response.get_json()["message"] == "Insufficient permissions"


def test_own_profile_update_keeps_other_fields(user_client):
    response = user_client.patch("/api/profile", json={"last_name": "Souza"})
    assert response.status_code == 200
    profile = response.get_json()
    assert (profile["first_name"], profile["last_name"]) == ("Bruno", "Souza")


def test_avatar_upload(app, user_client, user_id):
    response = user_client.post(
        "/api/profile/avatar",
        data={"file": (io.BytesIO(b"\x89PNG"), "me.png")},
        content_type="multipart/form-data",
    )
    assert response.status_code == 200
    url = response.get_json()["url"]
    assert url.startswith(f"/storage/avatars/user-{user_id}-")
    assert user_client.get(url).data == b"\x89PNG"

    rejected = user_client.post(
        "/api/profile/avatar",
        data={"file": (io.BytesIO(b"MZ"), "tool.exe")},
        content_type="multipart/form-data",
    )
    assert rejected.status_code == 400
    with app.app_context():
        assert db.session.get(Profile, user_id).avatar_url == url


def test_company_settings_lifecycle(admin_client):
    assert admin_client.get("/api/settings").get_json() is None

    created = admin_client.post("/api/settings", json={"company_name": "Acme"})
    assert created.status_code == 201
    assert created.get_json()["id"] == 1
    assert admin_client.post("/api/settings", json={"company_name": "Again"}).status_code == 400

    logo = admin_client.post(
        "/api/settings/logo",
        data={"file": (io.BytesIO(b"<svg/>"), "logo.svg")},
        content_type="multipart/form-data",
    )
    assert logo.status_code == 200
    body = logo.get_json()
    assert body["url"].startswith("/storage/company_assets/public/logo-")
    assert body["settings"]["logo_url"] == body["url"]
    assert body["settings"]["company_name"] == "Acme"

    updated = admin_client.patch("/api/settings", json={"company_name": "Acme Ltda"}).get_json()
    assert updated["logo_url"] == body["url"]
    assert admin_client.post("/api/settings/banner").status_code == 404


def test_sound_upload_creates_missing_settings(admin_client):
    response = admin_client.post(
        "/api/settings/sound",
        data={"file": (io.BytesIO(b"ID3"), "bip.mp3")},
        content_type="multipart/form-data",
    )
    assert response.status_code == 200
    assert response.get_json()["settings"]["notification_sound_url"].endswith(".mp3")


def test_tasks_are_private_to_their_owner(app, client, admin_id, user_id):
    login(client, ADMIN_EMAIL, ADMIN_PASSWORD)
    task = client.post("/api/tasks", json={"title": "Revisar extintores", "due_date": "2024-05-01"}).get_json()
    client.post("/logout")

    login(client, USER_EMAIL, USER_PASSWORD)
    assert client.get("/api/tasks").get_json() == []
    assert client.post(f"/api/tasks/{task['id']}/complete").status_code == 404
    assert client.delete(f"/api/tasks/{task['id']}").status_code == 404


def test_task_completion_records_who_and_reopen_clears_it(admin_client):
    task = admin_client.post("/api/tasks", json={"title": "Calibrar balança"}).get_json()
    assert task["status"] == "pending"

    done = admin_client.post(f"/api/tasks/{task['id']}/complete").get_json()
    assert done["status"] == "completed"
    assert done["completed_by"] == "Ana Silva"
    assert done["completed_at"] is not None

    reopened = admin_client.post(f"/api/tasks/{task['id']}/reopen").get_json()
    assert reopened["status"] == "pending"
    assert reopened["completed_by"] is None
    assert reopened["completed_at"] is None

    via_edit = admin_client.patch(f"/api/tasks/{task['id']}", json={"status": "completed"}).get_json()
    assert via_edit["completed_by"] == "Ana Silva"
    assert admin_client.patch(f"/api/tasks/{task['id']}", json={"status": "archived"}).status_code == 400
