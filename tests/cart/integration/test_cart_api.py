"""Integration tests for cart endpoints via TestClient."""

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from storefront.api import cart_router, register_error_handlers


@pytest.fixture()
def client():
    app = FastAPI()
    register_error_handlers(app)
    app.include_router(cart_router)
    return TestClient(app)


class TestCartEndpoints:
    def test_add_view_update_remove(self, client, customer_id, make_variant):
        variant_id = make_variant(price=120.0, stock=8)

        response = client.post(f"/carts/{customer_id}/items", json={"variant_id": variant_id, "quantity": 2})
        assert response.status_code == 200

        response = client.put(f"/carts/{customer_id}/items/{variant_id}", json={"quantity": 3})
        assert response.status_code == 200

        cart = client.get(f"/carts/{customer_id}").json()
        assert cart["subtotal"] == 360.0

        response = client.delete(f"/carts/{customer_id}/items/{variant_id}")
        assert response.status_code == 200
        assert client.get(f"/carts/{customer_id}").json()["items"] == []

    def test_insufficient_stock_reports_available(self, client, customer_id, make_variant):
        variant_id = make_variant(stock=1)
        response = client.post(f"/carts/{customer_id}/items", json={"variant_id": variant_id, "quantity": 2})
        assert response.status_code == 400
        body = response.json()
        assert body["available"] == 1
        assert body["requested"] == 2
