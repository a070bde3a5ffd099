import pytest
from fastapi.testclient import TestClient

from config import Settings
from database import StoreError
from main import create_app

MAC = "AA:BB:CC:00:11:22"


def _sync(client, mac=MAC, **kwargs):
    body = {"mac": mac, "salinity": 12.0, "valve": True, "lat": 34.9, "lng": 126.2, "address": "Shinan"}
    body.update(kwargs)
    return client.post("/api/device/sync", json=body)


def _fail(*args, **kwargs):
    raise StoreError("database is locked")


def test_root(client):
    response = client.get("/")
    assert response.status_code == 200
    assert response.json()["version"] == "1.0.0"


def test_sync_bootstrap_then_configured(client):
    first = _sync(client)
    assert first.status_code == 200
    assert first.json() == {"manual_mode": False, "target_salinity": 0, "valve": False}

    second = _sync(client, valve=True)
    assert second.json() == {"manual_mode": False, "target_salinity": 100, "valve": True}


def test_sync_accepts_unvalidated_salinity(client):
    _sync(client)
    assert _sync(client, salinity=-5000).status_code == 200
    assert client.get("/api/devices").json()[MAC]["salinity"] == -5000


def test_list_devices_shape(client):
    _sync(client)
    client.put(f"/api/device/{MAC}", json={"name": "Pond 1", "isFinal": True})

    devices = client.get("/api/devices").json()

    assert devices == {
        MAC: {
            "name": "Pond 1",
            "salinity": 12.0,
            "targetSalinity": 100,
            "valve": True,
            "manualMode": False,
            "isFinal": True,
            "address": "Shinan",
            "location": {"lat": 34.9, "lng": 126.2},
        }
    }


def test_list_devices_empty(client):
    response = client.get("/api/devices")
    assert response.status_code == 200
    assert response.json() == {}


def test_manual_mode_overrides_device_valve(client):
    _sync(client, valve=False)
    assert client.put(f"/api/device/{MAC}", json={"manualMode": True, "valve": True}).json() == {
        "success": True
    }

    command = _sync(client, valve=False).json()

    assert command == {"manual_mode": True, "target_salinity": 100, "valve": True}
    assert client.get("/api/devices").json()[MAC]["valve"] is True


def test_leaving_manual_mode_restores_passthrough(client):
    _sync(client)
    client.put(f"/api/device/{MAC}", json={"manualMode": True, "valve": True})
    client.put(f"/api/device/{MAC}", json={"manualMode": False})

    assert _sync(client, valve=False).json()["valve"] is False


def test_edit_without_allowed_fields(client):
    _sync(client)
    before = client.get("/api/devices").json()

    response = client.put(f"/api/device/{MAC}", json={"bogusField": 1})

    assert response.status_code == 200
    assert response.text == "No changes"
    assert client.get("/api/devices").json() == before


def test_edit_target_salinity(client):
    _sync(client)
    response = client.put(f"/api/device/{MAC}", json={"targetSalinity": 15})

    assert response.json() == {"success": True}
    assert _sync(client).json()["target_salinity"] == 15


def test_edit_unknown_device_succeeds(client):
    response = client.put("/api/device/FF:FF", json={"valve": True})
    assert response.json() == {"success": True}
    assert client.get("/api/devices").json() == {}


def test_sync_store_failure(client, monkeypatch):
    monkeypatch.setattr(client.app.state.db_manager, "conditional_upsert", _fail)

    response = _sync(client)

    assert response.status_code == 500
    assert response.text == "Server Error"


def test_list_store_failure(client, monkeypatch):
    monkeypatch.setattr(client.app.state.db_manager, "list_all", _fail)

    response = client.get("/api/devices")

    assert response.status_code == 500
    assert response.text == "DB Error"


def test_edit_store_failure_returns_message(client, monkeypatch):
    monkeypatch.setattr(client.app.state.db_manager, "update_fields", _fail)

    response = client.put(f"/api/device/{MAC}", json={"valve": False})

    assert response.status_code == 500
    assert response.text == "database is locked"


def test_sync_without_body_is_noop(client):
    response = client.post("/api/device/sync")

    assert response.status_code == 200
    assert response.json() == {"manual_mode": False, "target_salinity": 0, "valve": False}
    assert client.get("/api/devices").json() == {}


def test_sync_with_non_object_body_is_noop(client):
    response = client.post("/api/device/sync", json=[MAC, 12.0])

    assert response.status_code == 200
    assert response.json() == {"manual_mode": False, "target_salinity": 0, "valve": False}
    assert client.get("/api/devices").json() == {}


def test_startup_fails_when_database_cannot_open(tmp_path, caplog):
    settings = Settings(db_path=str(tmp_path / "missing" / "saltern.db"), pool_size=1)

    with pytest.raises(StoreError):
        with TestClient(create_app(settings)):
            pass

    assert "Fallo al inicializar la base de datos" in caplog.text
