from types import SimpleNamespace
from urllib.parse import parse_qs, urlparse

import pytest

from assetdesk.ai_service import AssistantService
from assetdesk.email_service import MailDeliveryError
from assetdesk.extensions import db
from assetdesk.models import Asset, Profile


class FakeModels:
    def __init__(self, responses):
        self.responses = list(responses)
        self.calls = []

    def generate_content(self, *, model, contents, config):
        self.calls.append(contents)
        return self.responses.pop(0)


def _text(text):
    return SimpleNamespace(function_calls=None, text=text, candidates=[])


def _call(name, args):
    call = SimpleNamespace(name=name, args=args)
    content = SimpleNamespace(role="model", parts=[])
    return SimpleNamespace(function_calls=[call], text=None, candidates=[SimpleNamespace(content=content)])


@pytest.fixture
def fake_models(app):
    models = FakeModels([])
    app.extensions["assistant"] = AssistantService(client=SimpleNamespace(models=models))
    return models


def test_role_update_is_admin_only(user_client, user_id):
    response = user_client.post("/api/functions/update-user-role", json={"userId": user_id, "newRole": "admin"})
    assert response.status_code == 403


def test_role_update(admin_client, user_id):
    assert admin_client.post("/api/functions/update-user-role", json={"userId": user_id}).status_code == 400
    assert admin_client.post(
        "/api/functions/update-user-role", json={"userId": user_id, "newRole": "owner"}
    ).status_code == 400
    assert admin_client.post(
        "/api/functions/update-user-role", json={"userId": 999, "newRole": "admin"}
    ).status_code == 404

    response = admin_client.post("/api/functions/update-user-role", json={"userId": user_id, "newRole": "ADMIN"})
    assert response.status_code == 200
    assert response.get_json()[0]["role"] == "admin"


def test_invite_validation(user_client, admin_id):
    missing = user_client.post("/api/functions/invite-user", json={})
    assert missing.status_code == 400
    assert missing.get_json()["message"] == "O e-mail é obrigatório"

    invalid = user_client.post("/api/functions/invite-user", json={"email": "nobody"})
    assert invalid.get_json()["message"] == "E-mail inválido"

    taken = user_client.post("/api/functions/invite-user", json={"email": "Admin@acme.io"})
    assert taken.status_code == 400


def test_invited_user_can_set_a_password(app, admin_client, monkeypatch):
    links = []
    monkeypatch.setattr(
        "assetdesk.routes.functions_routes.send_invite_email",
        lambda profile, link, expires_in_hours: links.append(link),
    )
    response = admin_client.post("/api/functions/invite-user", json={"email": "Nova@Acme.io"})
    assert response.status_code == 201
    body = response.get_json()
    assert body["email_sent"] is True
    assert body["user"]["email"] == "nova@acme.io"
    assert body["user"]["invited"] is True

    query = parse_qs(urlparse(links[0]).query)
    assert query["email"] == ["nova@acme.io"]
    token = query["invite"][0]

    wrong = admin_client.post(
        "/login/accept-invite", json={"email": "nova@acme.io", "token": "forged", "password": "long-enough-1"}
    )
    assert wrong.status_code == 400
    short = admin_client.post("/login/accept-invite", json={"email": "nova@acme.io", "token": token, "password": "x"})
    assert short.status_code == 400

    accepted = admin_client.post(
        "/login/accept-invite", json={"email": "nova@acme.io", "token": token, "password": "long-enough-1"}
    )
    assert accepted.status_code == 200
    assert accepted.get_json()["user"]["invited"] is False
    assert admin_client.get("/api/auth/session").get_json()["user"]["email"] == "nova@acme.io"

    reused = admin_client.post(
        "/login/accept-invite", json={"email": "nova@acme.io", "token": token, "password": "another-pass-2"}
    )
    assert reused.status_code == 400


def test_invite_survives_mail_failure(app, admin_client, monkeypatch):
    def broken(profile, link, expires_in_hours):
        raise MailDeliveryError("smtp down")

    monkeypatch.setattr("assetdesk.routes.functions_routes.send_invite_email", broken)
    response = admin_client.post("/api/functions/invite-user", json={"email": "outra@acme.io"})
    assert response.status_code == 201
    assert response.get_json()["email_sent"] is False
    with app.app_context():
        assert Profile.query.filter_by(email="outra@acme.io").count() == 1


def test_chat_plain_answer(admin_client, fake_models):
    fake_models.responses.append(_text("  Olá! Como posso ajudar?  "))
    response = admin_client.post("/api/functions/gemini-chat", json={"prompt": "oi"})
    assert response.status_code == 200
    assert response.get_json() == {"response": "Olá! Como posso ajudar?"}


def test_chat_creates_asset_through_tool(app, admin_client, admin_id, fake_models):
    assert admin_client.get("/api/assets/all").get_json() == []
    fake_models.responses.extend(
        [_call("createAsset", {"name": "Compressor", "tag_code": "CMP-9"}), _text("Ativo criado.")]
    )
    response = admin_client.post("/api/functions/gemini-chat", json={"prompt": "Cadastre o compressor CMP-9"})
    body = response.get_json()
    assert body["response"] == "Ativo criado."
    assert body["functionCalled"]["name"] == "createAsset"
    assert body["functionCalled"]["result"]["tag_code"] == "CMP-9"
    assert len(fake_models.calls[1]) == 3

    with app.app_context():
        assert db.session.query(Asset).filter_by(tag_code="CMP-9").one().user_id == admin_id
    assert [asset["tag_code"] for asset in admin_client.get("/api/assets/all").get_json()] == ["CMP-9"]


def test_chat_errors(admin_client, fake_models):
    assert admin_client.post("/api/functions/gemini-chat", json={"prompt": "  "}).status_code == 400

    fake_models.responses.append(_call("createAsset", {"name": "Sem código"}))
    assert admin_client.post("/api/functions/gemini-chat", json={"prompt": "crie"}).status_code == 400


def test_chat_without_api_key(admin_client):
    response = admin_client.post("/api/functions/gemini-chat", json={"prompt": "oi"})
    assert response.status_code == 502
