"""Order Service の HTTP API (TestClient 経由)"""

import httpx
import pytest
from fastapi.testclient import TestClient

from order_service import main
from order_service.client import OrderClient
from order_service.errors import NotFoundError, TransportError


@pytest.fixture
def client(service, monkeypatch):
    monkeypatch.setattr(main, "order_service", service)
    return TestClient(main.app)


def _post_order(client, account_id="acc1", products=(("p1", 2),)):
    return client.post(
        "/orders",
        json={
            "account_id": account_id,
            "products": [{"product_id": pid, "quantity": qty} for pid, qty in products],
        },
    )


def test_create_order(client):
    response = _post_order(client)

    assert response.status_code == 200
    body = response.json()
    assert body["accountId"] == "acc1"
    assert body["totalPrice"] == 20.0
    assert isinstance(body["createdAt"], int)
    assert body["products"] == [
        {
            "id": "p1",
            "name": "Product p1",
            "description": "Description of p1",
            "price": 10.0,
            "quantity": 2,
        }
    ]


def test_create_order_for_unknown_account(client):
    response = _post_order(client, account_id="missing")

    assert response.status_code == 404
    assert "missing" in response.json()["detail"]


def test_create_order_without_resolvable_lines(client):
    response = _post_order(client, products=[("p1", 0), ("gone", 1)])

    assert response.status_code == 422


def test_negative_quantity_is_rejected_by_schema(client):
    response = _post_order(client, products=[("p1", -1)])

    assert response.status_code == 422


def test_boolean_quantity_is_rejected_by_schema(client):
    response = _post_order(client, products=[("p1", True)])

    assert response.status_code == 422


def test_catalog_unavailable(client, catalog):
    catalog.error = TransportError("catalog down")

    response = _post_order(client)

    assert response.status_code == 502


def test_get_orders_for_account(client):
    first = _post_order(client, products=[("p1", 1), ("p2", 2)]).json()
    second = _post_order(client, products=[("p3", 3), ("p1", 4)]).json()

    response = client.get("/accounts/acc1/orders")

    assert response.status_code == 200
    orders = response.json()
    assert [o["id"] for o in orders] == [first["id"], second["id"]]
    assert [len(o["products"]) for o in orders] == [2, 2]
    assert orders[0]["createdAt"] == first["createdAt"]


def test_get_orders_for_account_without_orders(client):
    response = client.get("/accounts/acc1/orders")

    assert response.status_code == 200
    assert response.json() == []


def test_health(client):
    assert client.get("/health").json() == {"status": "ok", "service": "order-service"}


async def test_order_client_round_trip(service, monkeypatch):
    monkeypatch.setattr(main, "order_service", service)
    transport = httpx.ASGITransport(app=main.app)

    async with httpx.AsyncClient(transport=transport, base_url="http://order") as http:
        orders = OrderClient(http)
        created = await orders.post_order("acc1", [("p1", 2), ("p2", 1)])
        listed = await orders.get_orders_for_account("acc1")

        with pytest.raises(NotFoundError):
            await orders.post_order("missing", [("p1", 1)])

    assert [o.id for o in listed] == [created.id]
    assert listed[0].created_at == created.created_at
    assert listed[0].total_price == created.total_price
    assert [(p.id, p.quantity) for p in listed[0].products] == [("p1", 2), ("p2", 1)]
