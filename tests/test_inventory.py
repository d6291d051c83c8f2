"""Tests for bulk raw material cost import from CSV and Excel sheets."""

import io

import pandas as pd
import pytest

from autocost.models import AuditLog


def _upload(client, content, filename="costs.csv"):
    if isinstance(content, str):
        content = content.encode("utf-8")
    return client.post(
        "/api/raw-materials/import",
        data={"file": (io.BytesIO(content), filename)},
        content_type="multipart/form-data",
    )


def test_creates_and_reprices_materials(app, client, cake):
    response = _upload(client, "Name,Cost\nFlour,200\nButter,300\nYeast,12.5\n")
    assert response.status_code == 200
    summary = response.get_json()
    assert summary == {"created": 2, "updated": 1, "skipped": [], "recalculatedProducts": 1}

    names = [m["name"] for m in client.get("/api/raw-materials").get_json()]
    assert names == ["Butter", "Flour", "Sugar", "Yeast"]
    assert client.get(f"/api/products/{cake['product']['id']}").get_json()["totalCost"] == 165

    with app.app_context():
        assert AuditLog.query.filter_by(tenant_id="tenant-a", action="IMPORT").count() == 1


def test_invalid_rows_are_skipped_and_reported(client):
    response = _upload(client, "name,cost\nSalt,5\n,7\nPepper,abc\nOil,-2\n")
    summary = response.get_json()
    assert summary["created"] == 1
    assert [s["row"] for s in summary["skipped"]] == [3, 4, 5]
    assert [m["name"] for m in client.get("/api/raw-materials").get_json()] == ["Salt"]


def test_excel_sheet(client):
    buffer = io.BytesIO()
    pd.DataFrame({"name": ["Cocoa", "Vanilla"], "cost": [400, 950.25]}).to_excel(buffer, index=False)
    response = _upload(client, buffer.getvalue(), filename="costs.xlsx")
    assert response.status_code == 200
    assert response.get_json()["created"] == 2
    costs = {m["name"]: m["cost"] for m in client.get("/api/raw-materials").get_json()}
    assert costs == {"Cocoa": 400, "Vanilla": 950.25}


def test_import_is_tenant_scoped(client, other_client, cake):
    summary = _upload(other_client, "name,cost\nFlour,1\n").get_json()
    assert summary["created"] == 1
    assert summary["updated"] == 0
    assert client.get(f"/api/products/{cake['product']['id']}").get_json()["totalCost"] == 95


@pytest.mark.parametrize("filename", ["costs.txt", "costs.xls"])
def test_unsupported_extension_rejected(client, filename):
    response = _upload(client, "name,cost\nSalt,5\n", filename=filename)
    assert response.status_code == 400
    assert response.get_json()["field"] == "file"


def test_missing_columns_rejected(client):
    response = _upload(client, "material,price\nSalt,5\n")
    assert response.status_code == 400
    assert "cost" in response.get_json()["error"]


def test_empty_file_rejected(client):
    response = _upload(client, "")
    assert response.status_code == 400


def test_missing_file_field_rejected(client):
    response = client.post("/api/raw-materials/import", data={}, content_type="multipart/form-data")
    assert response.status_code == 400
    assert response.get_json()["field"] == "file"
