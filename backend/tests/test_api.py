import pytest
from fastapi.testclient import TestClient

from backend.app.main import create_app


@pytest.fixture
def client(engine, settings, notifier):
    # engine : tables créées avant le démarrage de l'app
    app = create_app(settings, notifier=notifier)
    with TestClient(app) as c:
        yield c


def _create_product(client, name="Rice 5kg", stock=10, price=250):
    r = client.post("/v1/products", json={"name": name, "stock": stock, "price": price})
    assert r.status_code == 201, r.text
    return r.json()


def _create_order(client, items, device="device-A", **extra):
    body = {"name": "Maria Santos", "totalPrice": 500, "deviceId": device, "items": items}
    body.update(extra)
    r = client.post("/v1/orders", json=body)
    assert r.status_code == 201, r.text
    return r.json()


def test_health(client):
    assert client.get("/v1/health").json() == {"status": "ok"}


def test_products_create_list_and_restock(client):
    rice = _create_product(client, stock=3)

    r = client.post(f"/v1/products/{rice['id']}/restock", json={"quantity": 7})
    assert r.status_code == 200
    assert r.json() == {"id": rice["id"], "stock": 10}

    listed = client.get("/v1/products").json()
    assert [(p["name"], p["stock"]) for p in listed] == [("Rice 5kg", 10)]


def test_restock_validation_and_unknown_product(client):
    assert client.post("/v1/products/1/restock", json={"quantity": 0}).status_code == 422

    r = client.post("/v1/products/999/restock", json={"quantity": 1})
    assert r.status_code == 404
    assert r.json()["error"]["kind"] == "NOT_FOUND"


def test_create_order_with_legacy_aliases(client):
    rice = _create_product(client, price=120)

    created = _create_order(
        client,
        [{"productId": rice["id"], "qty": 0}, {"productId": rice["id"], "qty": 2}],
        ref="GC-1",
        fcmToken="tok-1",
    )

    assert created["inserted_items"] == 1
    assert created["skipped_items"] == [
        {"index": 0, "product_id": rice["id"], "quantity": None, "reason": "invalid quantity"}
    ]
    order = created["order"]
    assert order["status"] == "Pending"
    assert order["ref"] == "GC-1"
    assert order["device_id"] == "device-A"
    assert "fcm_token" not in order


def test_create_order_validation_error(client):
    r = client.post("/v1/orders", json={"totalPrice": 10, "deviceId": "device-A"})

    assert r.status_code == 400
    body = r.json()
    assert body["detail"] == "Name is required"
    assert body["error"]["kind"] == "VALIDATION"


@pytest.mark.parametrize(
    "body, field",
    [
        ({"name": "Ana", "totalPrice": "abc", "deviceId": "device-A"}, "total_price"),
        ({"name": 123, "totalPrice": 10, "deviceId": "device-A"}, "name"),
        ({"name": "Ana", "totalPrice": 10, "deviceId": ["x"]}, "device_id"),
        ({"name": "Ana", "totalPrice": 10, "deviceId": "device-A", "payment": 5}, "payment method"),
    ],
)
def test_create_order_bad_types_use_store_error_shape(client, body, field):
    r = client.post("/v1/orders", json=body)

    assert r.status_code == 400
    error = r.json()["error"]
    assert error["kind"] == "VALIDATION"
    assert error["data"]["field"] == field


def test_transition_bad_status_type_uses_store_error_shape(client):
    order_id = _create_order(client, [])["order"]["id"]

    r = client.patch(f"/v1/orders/{order_id}/payment", json={"status": 3})

    assert r.status_code == 400
    assert r.json()["error"]["kind"] == "VALIDATION"


def test_transition_to_processing_reconciles_and_notifies(client, notifier):
    a = _create_product(client, name="A", stock=10)
    b = _create_product(client, name="B", stock=0)
    created = _create_order(
        client,
        [{"product_id": a["id"], "quantity": 3}, {"product_id": b["id"], "quantity": 1}],
        notification_token="tok-1",
    )
    order_id = created["order"]["id"]

    r = client.patch(f"/v1/orders/{order_id}/payment", json={"status": "Processing", "deviceId": "device-A"})

    assert r.status_code == 200, r.text
    order = r.json()["order"]
    assert order["status"] == "Processing"
    assert order["items_processed"] == 2
    assert order["stock_updates"] == 2
    stock = {p["name"]: p["stock"] for p in client.get("/v1/products").json()}
    assert stock == {"A": 7, "B": 0}
    # tâche de fond exécutée avant le retour du TestClient
    assert [m.title for m in notifier.sent] == ["Order Being Processed"]

    again = client.patch(f"/v1/orders/{order_id}/payment", json={"status": "Processing"}).json()["order"]
    assert again["stock_updates"] == 0
    assert client.get("/v1/products").json()[0]["stock"] == 7


def test_transition_errors(client):
    order_id = _create_order(client, [])["order"]["id"]
    url = f"/v1/orders/{order_id}/payment"

    forbidden = client.patch(url, json={"status": "Completed", "device_id": "device-B"})
    assert forbidden.status_code == 403
    assert forbidden.json()["detail"] == "Access denied. This order belongs to a different device."

    assert client.patch("/v1/orders/999999/payment", json={"status": "Completed"}).status_code == 404

    noop = client.patch(url, json={"deviceId": "device-A"})
    assert noop.status_code == 400
    assert noop.json()["error"]["kind"] == "NO_OP"

    bad = client.patch(url, json={"status": "Shipped"})
    assert bad.status_code == 400
    assert bad.json()["error"]["kind"] == "VALIDATION"


def test_payment_update(client, notifier):
    order_id = _create_order(client, [])["order"]["id"]

    r = client.patch(f"/v1/orders/{order_id}/payment", json={"payment": "GCash", "reference": "GC-9"})

    order = r.json()["order"]
    assert (order["payment"], order["ref"], order["status"]) == ("GCash", "GC-9", "Pending")
    assert order["items_processed"] is None
    assert notifier.sent == []


def test_list_and_get_orders(client):
    rice = _create_product(client, name="Rice")
    mine = [_create_order(client, [{"product_id": rice["id"], "quantity": 1}])["order"]["id"] for _ in range(3)]
    _create_order(client, [], device="device-B")

    page = client.get("/v1/orders", params={"device_id": "device-A", "page": 1, "page_size": 2}).json()
    assert page["total"] == 3
    assert [o["id"] for o in page["orders"]] == sorted(mine, reverse=True)[:2]

    detail = client.get(f"/v1/orders/{mine[0]}").json()["order"]
    assert detail["items"][0]["name"] == "Rice"
    assert detail["items"][0]["quantity"] == 1

    assert client.get(f"/v1/orders/{mine[0]}", params={"device_id": "device-B"}).status_code == 404

    items = client.get(f"/v1/orders/{mine[0]}/items").json()["items"]
    assert [(i["product_id"], i["quantity"]) for i in items] == [(rice["id"], 1)]
