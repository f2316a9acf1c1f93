from datetime import date

from assetdesk.extensions import db
from assetdesk.inventory import RESTORE_NOTE
from assetdesk.models import MaintenanceProduct, MaintenanceRecord, Purchase


def _asset(client, name="Compressor", tag="CMP-001"):
    response = client.post("/api/assets", json={"name": name, "tag_code": tag})
    assert response.status_code == 201, response.get_json()
    return response.get_json()["id"]


def _record(client, asset_id, **overrides):
    payload = {
        "asset_id": asset_id,
        "maintenance_type": "Preventiva",
        "scheduled_date": "2024-06-01",
    }
    payload.update(overrides)
    return client.post("/api/maintenance", json=payload)


def _stock(client):
    return {row["name"]: row["quantity"] for row in client.get("/api/inventory").get_json()}


def test_products_are_booked_out_and_restored(app, admin_client):
    asset_id = _asset(admin_client)
    admin_client.post("/api/purchases", json={"purchase_type": "product", "product_name": "Filtro", "quantity": 10})
    assert _stock(admin_client) == {"Filtro": 10}

    created = _record(admin_client, asset_id, products=[{"product_name": "Filtro", "quantity": 3}])
    assert created.status_code == 201
    record = created.get_json()
    assert [p["product_name"] for p in record["maintenance_products"]] == ["Filtro"]
    assert _stock(admin_client) == {"Filtro": 7}

    with app.app_context():
        usage = Purchase.query.filter(Purchase.quantity < 0).one()
        assert usage.notes == "Uso na manutenção do ativo: Compressor"

    deleted = admin_client.delete(f"/api/maintenance/{record['id']}")
    assert deleted.get_json()["restored_products"] == 1
    assert _stock(admin_client) == {"Filtro": 10}

    with app.app_context():
        assert Purchase.query.filter_by(notes=RESTORE_NOTE).count() == 1
        assert MaintenanceProduct.query.count() == 0


def test_invalid_products_are_rejected(admin_client):
    asset_id = _asset(admin_client)
    response = _record(admin_client, asset_id, products=[{"product_name": "Filtro", "quantity": 0}])
    assert response.status_code == 400
    assert "products" in response.get_json()["errors"]


def test_board_refuses_drop_on_completed(app, admin_client):
    asset_id = _asset(admin_client)
    record_id = _record(admin_client, asset_id).get_json()["id"]

    response = admin_client.post(f"/api/maintenance/{record_id}/move", json={"target_status": "Concluída"})
    assert response.status_code == 400
    assert response.get_json()["action"] == "complete"
    with app.app_context():
        assert db.session.get(MaintenanceRecord, record_id).status == "Agendada"


def test_completion_and_reopening_keep_completion_date_consistent(admin_client):
    asset_id = _asset(admin_client)
    record_id = _record(admin_client, asset_id).get_json()["id"]

    missing = admin_client.post(f"/api/maintenance/{record_id}/complete", json={})
    assert missing.status_code == 400

    completed = admin_client.post(f"/api/maintenance/{record_id}/complete", json={"technician_name": "Carlos"})
    assert completed.status_code == 200
    record = completed.get_json()["record"]
    assert record["status"] == "Concluída"
    assert record["completion_date"] == date.today().isoformat()
    assert record["technician_name"] == "Carlos"
    assert completed.get_json()["board"]["counts"]["Concluída"] == 1

    again = admin_client.post(f"/api/maintenance/{record_id}/complete", json={"technician_name": "Carlos"})
    assert again.status_code == 400

    reopened = admin_client.post(f"/api/maintenance/{record_id}/move", json={"target_status": "Em Andamento"})
    body = reopened.get_json()
    assert body["action"] == "moved"
    assert body["record"]["completion_date"] is None
    assert body["changed"] == ["completion_date", "status"]


def test_edit_to_completed_needs_technician(admin_client):
    asset_id = _asset(admin_client)
    record_id = _record(admin_client, asset_id).get_json()["id"]

    assert admin_client.put(f"/api/maintenance/{record_id}", json={"status": "Concluída"}).status_code == 400
    response = admin_client.put(
        f"/api/maintenance/{record_id}", json={"status": "Concluída", "technician_name": "Dora"}
    )
    assert response.status_code == 200
    assert response.get_json()["completion_date"] is not None


def test_completion_date_before_schedule_is_invalid(admin_client):
    asset_id = _asset(admin_client)
    response = _record(admin_client, asset_id, completion_date="2024-05-01")
    assert response.status_code == 400
    assert "completion_date" in response.get_json()["errors"]


def test_calendar_lists_records_and_own_tasks(admin_client):
    asset_id = _asset(admin_client)
    _record(admin_client, asset_id, scheduled_date="2024-06-10")
    admin_client.post("/api/tasks", json={"title": "Trocar lâmpadas", "due_date": "2024-06-05"})

    events = admin_client.get("/api/calendar").get_json()
    assert [event["kind"] for event in events] == ["task", "maintenance"]
    assert events[1]["title"] == "Preventiva: Compressor"
