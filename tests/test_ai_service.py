from datetime import date
from types import SimpleNamespace

import pytest

from assetdesk.ai_service import AssistantService
from assetdesk.extensions import db
from assetdesk.models import Asset, MaintenanceRecord


class FlakyModels:
    def __init__(self, failures):
        self.failures = failures
        self.attempts = 0

    def generate_content(self, *, model, contents, config):
        self.attempts += 1
        if self.attempts <= self.failures:
            raise ConnectionError("upstream timeout")
        return SimpleNamespace(function_calls=[], text="ok", candidates=[])


@pytest.fixture
def assets(app):
    with app.app_context():
        pump = Asset(name="Bomba d'água", tag_code="BMB-1")
        lamp = Asset(name="Luminária", tag_code="LUM-1", status="depreciated")
        db.session.add_all([pump, lamp])
        db.session.flush()
        db.session.add_all(
            [
                MaintenanceRecord(asset_id=pump.id, maintenance_type="Preventiva", scheduled_date=date(2024, 1, 5)),
                MaintenanceRecord(
                    asset_id=pump.id,
                    maintenance_type="Corretiva",
                    scheduled_date=date(2024, 2, 5),
                    status="Em Andamento",
                ),
                MaintenanceRecord(asset_id=lamp.id, maintenance_type="Preventiva", scheduled_date=date(2024, 3, 5)),
            ]
        )
        db.session.commit()
    return app


def test_transient_failures_are_retried(app):
    models = FlakyModels(failures=2)
    service = AssistantService(client=SimpleNamespace(models=models))
    with app.app_context():
        assert service.chat("status?", None) == {"response": "ok"}
    assert models.attempts == 3


def test_gives_up_after_three_attempts(app):
    models = FlakyModels(failures=5)
    service = AssistantService(client=SimpleNamespace(models=models))
    with app.app_context(), pytest.raises(RuntimeError, match="upstream timeout"):
        service.chat("status?", None)
    assert models.attempts == 3


def test_list_assets_tool_filters(assets):
    service = AssistantService(client=SimpleNamespace(models=None))
    with assets.app_context():
        assert [a["tag_code"] for a in service.run_tool("listAssets", {}, None)] == ["BMB-1", "LUM-1"]
        assert [a["tag_code"] for a in service.run_tool("listAssets", {"searchTerm": "lum"}, None)] == ["LUM-1"]
        assert service.run_tool("listAssets", {"status": "in_maintenance"}, None) == []


def test_list_maintenance_tool_filters(assets):
    service = AssistantService(client=SimpleNamespace(models=None))
    with assets.app_context():
        records = service.run_tool("listMaintenanceRecords", {"assetName": "bomba"}, None)
        assert [r["scheduled_date"] for r in records] == ["2024-02-05", "2024-01-05"]
        in_progress = service.run_tool("listMaintenanceRecords", {"status": "Em Andamento"}, None)
        assert [r["maintenance_type"] for r in in_progress] == ["Corretiva"]


def test_create_asset_tool_rules(assets):
    service = AssistantService(client=SimpleNamespace(models=None))
    with assets.app_context():
        with pytest.raises(PermissionError):
            service.run_tool("createAsset", {"name": "X", "tag_code": "X-1"}, None)
        owner = SimpleNamespace(id=None)
        with pytest.raises(ValueError):
            service.run_tool("createAsset", {"name": "Duplicada", "tag_code": "BMB-1"}, owner)
        with pytest.raises(ValueError):
            service.run_tool("createAsset", {"name": "X", "tag_code": "X-1", "acquisition_date": "ontem"}, owner)
        created = service.run_tool(
            "createAsset", {"name": "Esteira", "tag_code": "EST-1", "value": "850.5", "acquisition_date": "2024-05-02"}, owner
        )
        assert created["value"] == 850.5
        assert created["acquisition_date"] == "2024-05-02"


def test_unknown_tool(app):
    with app.app_context(), pytest.raises(ValueError):
        AssistantService(client=SimpleNamespace(models=None)).run_tool("deleteEverything", {}, None)


def test_missing_key_is_reported():
    service = AssistantService(api_key=None)
    assert not service.available
    with pytest.raises(RuntimeError):
        service.chat("olá", None)
