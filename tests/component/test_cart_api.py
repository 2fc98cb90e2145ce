"""
Component tests for the cart web API.

These tests run the FastAPI app, the cart engine, the SQLite catalog and the
local order service together (no mocking) to check end-to-end behavior.
"""
from fastapi.testclient import TestClient

from shopcart.cart.engine import CheckoutAttempt
from shopcart.cart.sessions import CartSessions
from shopcart.db import sqlite
from shopcart.services.orders import LocalOrderService
from shopcart.web.main import create_app


def _add(client, product_id, quantity=1):
    return client.post("/api/cart/items", json={"product_id": product_id, "quantity": quantity})


class TestCatalog:
    def test_products_lists_only_in_stock_items(self, test_client: TestClient, products):
        response = test_client.get("/api/products")

        assert response.status_code == 200
        names = [p["name"] for p in response.json()]
        assert "Sold Out Jam" not in names
        assert names == sorted(names)

    def test_products_show_discounted_price(self, test_client: TestClient, products):
        data = test_client.get("/api/products", params={"search": "Cookies"}).json()

        assert len(data) == 1
        assert data[0]["price"] == "8.00"
        assert data[0]["effective_price"] == "6.00"


class TestCartMutations:
    def test_new_session_has_empty_cart(self, test_client: TestClient):
        response = test_client.get("/api/cart")

        assert response.status_code == 200
        data = response.json()
        assert data["items"] == []
        assert data["item_count"] == 0
        assert data["total"] == "0.00"
        assert data["checkout_state"] == "idle"
        assert response.cookies.get("cart_session") == data["session"]

    def test_add_items_updates_totals(self, test_client: TestClient, products):
        data = _add(test_client, products["tea"]).json()
        assert (data["item_count"], data["total"]) == (1, "10.00")

        data = _add(test_client, products["mug"], 2).json()
        assert (data["item_count"], data["total"]) == (3, "21.00")
        assert [it["name"] for it in data["items"]] == ["Green Tea", "Mug"]
        assert data["items"][1]["subtotal"] == "11.00"

    def test_add_over_stock_is_clamped(self, test_client: TestClient, products):
        data = _add(test_client, products["tea"], 9999).json()

        assert data["items"][0]["quantity"] == 3
        assert data["total"] == "30.00"

    def test_add_unknown_product_is_404(self, test_client: TestClient, products):
        response = _add(test_client, 9999)

        assert response.status_code == 404
        assert "not found in catalog" in response.json()["detail"]

    def test_add_out_of_stock_product_is_409(self, test_client: TestClient, products):
        _add(test_client, products["mug"])

        response = _add(test_client, products["gone"])

        assert response.status_code == 409
        assert response.json()["kind"] == "stock_exceeded"
        assert test_client.get("/api/cart").json()["item_count"] == 1

    def test_set_quantity_clamps_to_stock(self, test_client: TestClient, products):
        _add(test_client, products["honey"])

        response = test_client.put(f"/api/cart/items/{products['honey']}", json={"quantity": 10})

        assert response.status_code == 200
        assert response.json()["items"][0]["quantity"] == 4
        assert response.json()["total"] == "8.00"

    def test_set_quantity_zero_removes(self, test_client: TestClient, products):
        _add(test_client, products["honey"], 2)

        data = test_client.put(f"/api/cart/items/{products['honey']}", json={"quantity": 0}).json()

        assert data["items"] == []
        assert data["total"] == "0.00"

    def test_set_quantity_on_absent_item_is_404(self, test_client: TestClient, products):
        response = test_client.put(f"/api/cart/items/{products['honey']}", json={"quantity": 2})

        assert response.status_code == 404
        assert response.json()["kind"] == "product_not_found"

    def test_remove_is_idempotent(self, test_client: TestClient, products):
        _add(test_client, products["tea"])

        assert test_client.delete(f"/api/cart/items/{products['tea']}").status_code == 204
        assert test_client.delete(f"/api/cart/items/{products['tea']}").status_code == 204
        assert test_client.get("/api/cart").json()["items"] == []

    def test_clear_cart(self, test_client: TestClient, products):
        _add(test_client, products["tea"])
        _add(test_client, products["mug"], 3)

        assert test_client.delete("/api/cart").status_code == 204
        assert test_client.delete("/api/cart").status_code == 204
        assert test_client.get("/api/cart").json()["item_count"] == 0

    def test_sessions_are_isolated(self, app, test_client: TestClient, products):
        _add(test_client, products["tea"])

        other = TestClient(app)
        assert other.get("/api/cart").json()["items"] == []

        assert test_client.get("/api/cart").json()["item_count"] == 1

    def test_refresh_reclamps_to_current_stock(self, test_client: TestClient, products):
        _add(test_client, products["mug"], 5)
        sqlite.set_stock(products["mug"], 2)

        data = test_client.post("/api/cart/refresh").json()

        assert data["changed"] == [products["mug"]]
        assert data["items"][0]["quantity"] == 2
        assert data["total"] == "11.00"


class TestCheckout:
    def test_empty_cart_checkout_is_rejected(self, test_client: TestClient):
        response = test_client.post("/api/cart/checkout")

        assert response.status_code == 400
        assert response.json()["kind"] == "empty_cart"
        assert sqlite.list_orders() == []

    def test_successful_checkout_places_order_and_clears_cart(self, test_client: TestClient, products):
        _add(test_client, products["tea"])
        _add(test_client, products["mug"], 2)

        response = test_client.post(
            "/api/cart/checkout",
            json={"name": "Ann", "email": "ann@example.com", "phone": "555-0100", "shipping_address": "1 Main St"},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["total"] == "21.00"
        assert data["checkout_state"] == "succeeded"
        assert data["cart"]["items"] == []
        assert data["cart"]["total"] == "0.00"

        order = test_client.get(f"/api/orders/{data['order_number']}").json()
        assert order["customer_email"] == "ann@example.com"
        assert order["total"] == "21.00"
        assert sqlite.get_product(products["tea"])["stock"] == 2
        assert sqlite.get_product(products["mug"])["stock"] == 8

        ack = test_client.post("/api/cart/checkout/ack").json()
        assert ack["checkout_state"] == "idle"

    def test_failed_checkout_preserves_cart(self, test_client: TestClient, products):
        _add(test_client, products["tea"], 2)
        # остаток ушёл, пока товар лежал в корзине
        sqlite.set_stock(products["tea"], 1)

        response = test_client.post("/api/cart/checkout")

        assert response.status_code == 502
        body = response.json()
        assert body["kind"] == "submission_failed"
        assert "insufficient_stock" in body["reason"]

        cart = test_client.get("/api/cart").json()
        assert cart["item_count"] == 2
        assert cart["total"] == "20.00"
        assert cart["checkout_state"] == "failed"
        assert sqlite.list_orders() == []

        retry = test_client.post("/api/cart/refresh").json()
        assert retry["items"][0]["quantity"] == 1
        assert test_client.post("/api/cart/checkout").status_code == 200

    def test_checkout_while_submitting_is_409(self, app, test_client: TestClient, products):
        _add(test_client, products["tea"])
        cart = app.state.sessions.get(test_client.cookies.get("cart_session"))
        # заказ ещё отправляется
        cart._attempt = CheckoutAttempt(snapshot=cart.items, expected_total=cart.total)

        response = test_client.post("/api/cart/checkout")

        assert response.status_code == 409
        assert response.json()["kind"] == "checkout_in_progress"
        assert sqlite.list_orders() == []
        assert test_client.get("/api/cart").json()["checkout_state"] == "submitting"


class TestOrdersApi:
    def test_create_order_directly(self, test_client: TestClient, products):
        response = test_client.post(
            "/api/orders",
            json={
                "order": {"customer_name": "Cy", "total": "11.00"},
                "items": [{"product_id": products["mug"], "quantity": 2, "unit_price": "5.50"}],
            },
        )

        assert response.status_code == 201
        assert response.json()["status"] == "pending"

    def test_create_order_with_wrong_total(self, test_client: TestClient, products):
        response = test_client.post(
            "/api/orders",
            json={
                "order": {"customer_name": "Cy", "total": "99.00"},
                "items": [{"product_id": products["mug"], "quantity": 2, "unit_price": "5.50"}],
            },
        )

        assert response.status_code == 400
        assert response.json()["reason"] == "total_mismatch"

    def test_cancel_order_restores_stock(self, test_client: TestClient, products):
        _add(test_client, products["honey"], 3)
        number = test_client.post("/api/cart/checkout").json()["order_number"]
        assert sqlite.get_product(products["honey"])["stock"] == 1

        response = test_client.put(f"/api/orders/{number}/status", json={"status": "cancelled"})

        assert response.status_code == 200
        assert response.json()["status"] == "cancelled"
        assert sqlite.get_product(products["honey"])["stock"] == 4

    def test_unknown_order_is_404(self, test_client: TestClient, products):
        assert test_client.get("/api/orders/000000-9").status_code == 404
        assert test_client.get("/orders/000000-9/invoice.pdf").status_code == 404

    def test_invoice_pdf(self, test_client: TestClient, products, export_dir):
        _add(test_client, products["mug"])
        number = test_client.post("/api/cart/checkout", json={"name": "Ann"}).json()["order_number"]

        response = test_client.get(f"/orders/{number}/invoice.pdf")

        assert response.status_code == 200
        assert response.headers["content-type"] == "application/pdf"
        assert response.content.startswith(b"%PDF")
        assert (export_dir / f"invoice_{number}.pdf").exists()


def test_cart_page_renders(test_client: TestClient, products):
    _add(test_client, products["sale"], 2)

    response = test_client.get("/")

    assert response.status_code == 200
    assert "Cookies" in response.text
    assert "12.00 USD" in response.text


def test_idle_web_sessions_are_evicted(db, export_dir, products):
    now = [0.0]
    sessions = CartSessions(LocalOrderService(), ttl=60, clock=lambda: now[0])
    client = TestClient(create_app(sessions=sessions))

    for _ in range(5):
        client.cookies.clear()
        client.get("/api/cart")
    assert len(sessions) == 5

    now[0] = 120
    client.cookies.clear()
    client.get("/api/cart")

    assert len(sessions) == 1
