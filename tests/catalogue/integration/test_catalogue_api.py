"""Integration tests for catalogue endpoints via TestClient."""

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from storefront.api import catalogue_router, register_error_handlers


@pytest.fixture()
def client():
    app = FastAPI()
    register_error_handlers(app)
    app.include_router(catalogue_router)
    return TestClient(app)


def _variant(client, stock=12, price=499.0):
    category = client.post("/catalogue/categories", json={"name": "Footwear"})
    assert category.status_code == 201
    product = client.post("/catalogue/products", json={"name": "Canvas Sneaker", "category_id": category.json()["id"]})
    assert product.status_code == 201
    variant = client.post(
        "/catalogue/variants",
        json={"product_id": product.json()["id"], "name": "White / 9", "regular_price": price, "stock": stock},
    )
    assert variant.status_code == 201
    return variant.json()["id"]


class TestCatalogueEndpoints:
    def test_create_and_read_variant(self, client):
        variant_id = _variant(client)
        response = client.get(f"/catalogue/variants/{variant_id}")
        assert response.status_code == 200
        body = response.json()
        assert body["stock"] == 12
        assert body["sale_price"] == 499.0

    def test_update_stock_and_low_stock_listing(self, client):
        variant_id = _variant(client)
        response = client.put(f"/catalogue/variants/{variant_id}/stock", json={"stock": 2})
        assert response.json()["stock"] == 2

        low = client.get("/catalogue/variants/low-stock").json()["variants"]
        assert [v["variant_id"] for v in low] == [variant_id]

    def test_negative_stock_is_400(self, client):
        variant_id = _variant(client)
        response = client.put(f"/catalogue/variants/{variant_id}/stock", json={"stock": -1})
        assert response.status_code == 400
        assert response.json()["success"] is False

    def test_missing_variant_is_404(self, client):
        assert client.get("/catalogue/variants/nope").status_code == 404
