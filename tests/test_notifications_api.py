import json

from assetdesk.extensions import db
from assetdesk.models import CompanySettings
from assetdesk.notifications import resolve_notification_sound


def test_create_defaults_to_the_caller(admin_client, admin_id):
    response = admin_client.post("/api/notifications", json={"title": "Lembrete", "body": "Revisar contratos"})
    assert response.status_code == 201
    assert response.get_json()["user_id"] == admin_id
    assert response.get_json()["type"] == "info"


def test_unread_count_and_mark_read(admin_client):
    first = admin_client.post("/api/notifications", json={"title": "A", "body": "a"}).get_json()
    admin_client.post("/api/notifications", json={"title": "B", "body": "b", "type": "warning"})
    assert admin_client.get("/api/notifications/unread-count").get_json() == {"count": 2}

    read = admin_client.post(f"/api/notifications/{first['id']}/read")
    assert read.status_code == 200
    assert read.get_json()["read_at"] is not None
    assert admin_client.get("/api/notifications/unread-count").get_json() == {"count": 1}
    assert [n["title"] for n in admin_client.get("/api/notifications").get_json()] == ["B", "A"]


def test_cannot_read_someone_elses_notification(app, admin_client, user_id):
    created = admin_client.post(
        "/api/notifications", json={"title": "Para Bruno", "body": "x", "target_user_id": user_id}
    ).get_json()
    assert created["user_id"] == user_id
    assert admin_client.post(f"/api/notifications/{created['id']}/read").status_code == 404
    assert admin_client.get("/api/notifications").get_json() == []


def test_unknown_recipient_and_type_are_rejected(admin_client):
    assert admin_client.post(
        "/api/notifications", json={"title": "x", "body": "y", "target_user_id": 999}
    ).status_code == 400
    assert admin_client.post("/api/notifications", json={"title": "x", "body": "y", "type": "urgent"}).status_code == 400


def test_notification_sound_prefers_company_setting(app):
    with app.app_context():
        assert resolve_notification_sound() == "/sounds/notification.mp3"
        db.session.add(CompanySettings(notification_sound_url="/storage/company_assets/public/bip.mp3"))
        db.session.commit()
        assert resolve_notification_sound() == "/storage/company_assets/public/bip.mp3"


def test_stream_delivers_ticket_alert_with_company_sound(app, admin_client):
    with app.app_context():
        db.session.add(CompanySettings(notification_sound_url="/storage/company_assets/public/ding.mp3"))
        db.session.commit()

    response = admin_client.get("/api/notifications/stream", buffered=False)
    assert response.status_code == 200
    assert response.mimetype == "text/event-stream"
    frames = iter(response.response)
    try:
        assert next(frames) == b": connected\n\n"
        assert len(app.extensions["change_feed"].channels) == 1

        public = app.test_client().post(
            "/solicitar-manutencao",
            json={"requester_name": "Maria", "description": "Vazamento no banheiro do térreo"},
        )
        assert public.status_code == 201

        event, data = next(frames).decode().strip().split("\n")
        assert event == "event: notification"
        alert = json.loads(data[len("data: "):])
        assert alert["title"] == "Novo Chamado Aberto!"
        assert alert["sound"] == "/storage/company_assets/public/ding.mp3"
        assert alert["action"]["url"] == "/requests"
    finally:
        response.close()

    assert app.extensions["change_feed"].channels == []
