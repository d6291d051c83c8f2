"""Pytest configuration and fixtures for the AutoCost API tests."""

from decimal import Decimal, ROUND_HALF_UP

import pytest

from autocost import create_app
from autocost.models import db


@pytest.fixture(scope="function")
def app():
    """Provide an app bound to a fresh in-memory SQLite database for each test."""
    app = create_app({
        "TESTING": True,
        "SQLALCHEMY_DATABASE_URI": "sqlite://",
        "SECRET_KEY": "test-secret",
        "RAW_MATERIAL_DELETE_POLICY": "restrict",
    })

    yield app

    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture(scope="function")
def ctx(app):
    """Push an application context for calling the store functions directly."""
    with app.app_context():
        yield app


def _login(client, user_id):
    with client.session_transaction() as sess:
        sess["user_id"] = user_id
    return client


@pytest.fixture(scope="function")
def anonymous_client(app):
    return app.test_client()


@pytest.fixture(scope="function")
def client(app):
    """Client logged in as tenant A."""
    return _login(app.test_client(), "tenant-a")


@pytest.fixture(scope="function")
def other_client(app):
    """Client logged in as tenant B."""
    return _login(app.test_client(), "tenant-b")


@pytest.fixture
def make_material():
    """Create a raw material through the API and return its JSON."""
    def _make(client, name, cost):
        response = client.post("/api/raw-materials", json={"name": name, "cost": cost})
        assert response.status_code == 201, response.get_json()
        return response.get_json()
    return _make


@pytest.fixture
def make_product():
    """Create a product through the API from (material, percentage) pairs and return its JSON."""
    def _make(client, name, ingredients, additional_cost=0):
        response = client.post("/api/products", json={
            "name": name,
            "additionalCost": additional_cost,
            "ingredients": [
                {"rawMaterialId": material["id"], "percentage": percentage}
                for material, percentage in ingredients
            ],
        })
        assert response.status_code == 201, response.get_json()
        return response.get_json()
    return _make


@pytest.fixture
def cake(client, make_material, make_product):
    """Flour (100) and Sugar (50) mixed 70/30 with 10 additional cost: total 95."""
    flour = make_material(client, "Flour", 100)
    sugar = make_material(client, "Sugar", 50)
    product = make_product(client, "Cake", [(flour, 70), (sugar, 30)], additional_cost=10)
    return {"flour": flour, "sugar": sugar, "product": product}


def expected_total(product):
    """Total cost recomputed from the expanded ingredients of a product response, rounded half-up to cents."""
    total = Decimal(str(product["additionalCost"])) + sum(
        (Decimal(str(i["percentage"])) / 100 * Decimal(str(i["rawMaterial"]["cost"])) for i in product["ingredients"]),
        Decimal("0"),
    )
    return float(total.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


@pytest.fixture
def assert_costs_consistent():
    """Check every listed product's stored total against its live ingredient costs."""
    def _check(client):
        products = client.get("/api/products").get_json()
        for product in products:
            assert product["totalCost"] == expected_total(product), product["name"]
        return products
    return _check
