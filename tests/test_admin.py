"""Tests for health, authentication, backup, audit log and app configuration."""

import json
from datetime import datetime, timedelta

import pytest

from autocost import create_app


def test_health_needs_no_login(anonymous_client):
    response = anonymous_client.get("/api/health")
    assert response.status_code == 200
    assert response.get_json()["status"] == "UP"


@pytest.mark.parametrize("method, path", [
    ("get", "/api/raw-materials"),
    ("post", "/api/raw-materials"),
    ("get", "/api/products"),
    ("post", "/api/products"),
    ("delete", "/api/products/some-id"),
    ("post", "/api/raw-materials/import"),
    ("get", "/api/admin/backup"),
    ("get", "/api/admin/audit-logs"),
])
def test_endpoints_require_login(anonymous_client, method, path):
    response = getattr(anonymous_client, method)(path)
    assert response.status_code == 401
    assert response.get_json()["success"] is False


def test_backup_contains_only_tenant_data(client, other_client, cake, make_material):
    make_material(other_client, "Cocoa", 400)
    client.put(f"/api/raw-materials/{cake['flour']['id']}", json={"cost": 200})

    response = client.get("/api/admin/backup")
    assert response.status_code == 200
    assert response.mimetype == "application/json"
    assert "attachment" in response.headers["Content-Disposition"]

    backup = json.loads(response.data)
    assert [m["name"] for m in backup["raw_materials"]] == ["Flour", "Sugar"]
    assert [p["name"] for p in backup["products"]] == ["Cake"]
    assert backup["products"][0]["totalCost"] == 165
    assert len(backup["price_history"]) == 1
    assert backup["statistics"]["model_counts"]["raw_materials"] == 2


def test_audit_log_is_newest_first_and_tenant_scoped(client, other_client, cake, make_material):
    make_material(other_client, "Cocoa", 400)
    client.put(f"/api/raw-materials/{cake['flour']['id']}", json={"cost": 200})

    logs = client.get("/api/admin/audit-logs").get_json()
    assert [log["action"] for log in logs] == ["UPDATE_COST", "CREATE", "CREATE", "CREATE"]
    assert {log["targetType"] for log in logs} == {"RawMaterial", "Product"}

    other_logs = other_client.get("/api/admin/audit-logs").get_json()
    assert len(other_logs) == 1


def test_backup_is_audited(client):
    client.get("/api/admin/backup")
    logs = client.get("/api/admin/audit-logs").get_json()
    assert logs[0]["action"] == "BACKUP"


def test_invalid_delete_policy_rejected():
    with pytest.raises(ValueError):
        create_app({
            "TESTING": True,
            "SQLALCHEMY_DATABASE_URI": "sqlite://",
            "RAW_MATERIAL_DELETE_POLICY": "nullify",
        })


def test_delete_policy_read_from_environment(monkeypatch):
    monkeypatch.setenv("RAW_MATERIAL_DELETE_POLICY", "cascade")
    app = create_app({"TESTING": True, "SQLALCHEMY_DATABASE_URI": "sqlite://"})
    assert app.config["RAW_MATERIAL_DELETE_POLICY"] == "cascade"


def test_audit_log_entries_use_api_field_names(client, make_material):
    salt = make_material(client, "Salt", 5)
    entry = client.get("/api/admin/audit-logs").get_json()[0]
    assert entry["targetType"] == "RawMaterial"
    assert entry["targetId"] == salt["id"]
    assert datetime.fromisoformat(entry["timestamp"])


def test_backup_timestamp_is_utc(client):
    backup = json.loads(client.get("/api/admin/backup").data)
    assert datetime.fromisoformat(backup["timestamp"]).utcoffset() == timedelta(0)
