from fastapi.testclient import TestClient

from models.log import Log
from models.users import User
from services import stock_ledger
from utils.tokenJWT import create_access_token


def bearer(email):
    return {"Authorization": f"Bearer {create_access_token({'sub': email})}"}


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_requires_authentication(client):
    assert client.get("/products").status_code in (401, 403)
    assert client.get("/stock-movements", headers={"Authorization": "Bearer garbage"}).status_code == 401


def test_non_stock_roles_are_forbidden(client, db):
    db.add(User(email="client@example.com", role="CLIENT"))
    db.commit()

    response = client.get("/stock-movements", headers=bearer("client@example.com"))

    assert response.status_code == 403


def test_create_product_books_opening_stock(client, auth_headers):
    response = client.post("/products", headers=auth_headers, json={
        "name": "Cement 25kg", "code": " cem-25 ", "buy_price": 4.5, "sell_price_net": 7,
        "initial_stock": 40, "reorder_point": 5,
    })

    assert response.status_code == 201
    product = response.json()
    assert product["code"] == "CEM-25"
    assert product["current_stock"] == 40

    movements = client.get(f"/stock-movements/product/{product['id']}", headers=auth_headers).json()
    assert [m["movement_type"] for m in movements] == ["initial_stock"]
    assert movements[0]["reference_type"] == "system_generated"

    duplicate = client.post("/products", headers=auth_headers, json={"name": "Other", "code": "CEM-25"})
    assert duplicate.status_code == 409
    assert duplicate.json()["code"] == "DUPLICATE_ENTRY"


def test_product_listing(client, auth_headers, make_product):
    make_product(stock=3, code="B-2")
    make_product(stock=9, code="A-1")

    page = client.get("/products?sort_by=current_stock&order=desc", headers=auth_headers).json()

    assert page["total"] == 2
    assert [item["code"] for item in page["items"]] == ["A-1", "B-2"]
    assert client.get("/products/999", headers=auth_headers).status_code == 404


def test_adjustment_reverse_and_history(client, auth_headers, make_product, db):
    pid = make_product(stock=10)

    created = client.post("/stock-movements/adjustment", headers=auth_headers, json={
        "product_id": pid, "movement_type": "adjustment_in", "quantity": 5, "reason": "Found pallet",
    })
    assert created.status_code == 201
    movement = created.json()
    assert (movement["previous_stock"], movement["new_stock"]) == (10, 15)
    assert movement["formatted_movement_type"] == "Stock Adjustment (+)"

    reversed_ = client.post(f"/stock-movements/{movement['id']}/reverse", headers=auth_headers,
                            json={"reason": "Pallet belonged to another client"})
    assert reversed_.status_code == 201
    assert reversed_.json()["is_reversal"] is True
    assert reversed_.json()["original_movement_id"] == movement["id"]

    again = client.post(f"/stock-movements/{movement['id']}/reverse", headers=auth_headers,
                        json={"reason": "second attempt"})
    assert again.status_code == 400
    assert again.json()["code"] == "INVALID_STATE"

    original = client.get(f"/stock-movements/{movement['id']}", headers=auth_headers).json()
    assert original["status"] == "reversed"

    summary = client.get(f"/stock-movements/product/{pid}/summary", headers=auth_headers).json()
    assert summary["net_quantity"] == 10

    listing = client.get(f"/stock-movements?product_id={pid}&movement_type=adjustment_in",
                         headers=auth_headers).json()
    assert listing["total"] == 2

    actions = {entry.action for entry in db.query(Log).all()}
    assert {"STOCK_ADJUSTMENT", "MOVEMENT_REVERSE"} <= actions


def test_domain_errors_use_error_envelope(client, auth_headers):
    response = client.get("/stock-movements/424242", headers=auth_headers)

    assert response.status_code == 404
    assert response.json() == {
        "success": False,
        "message": "Stock movement not found",
        "code": "NOT_FOUND",
        "details": {"movement_id": 424242},
    }


def test_unexpected_errors_are_hidden(client, auth_headers, make_product, monkeypatch):
    pid = make_product(stock=1)

    def explode(*args, **kwargs):
        raise RuntimeError("disk on fire")

    monkeypatch.setattr(stock_ledger, "get_product_summary", explode)
    raw = TestClient(client.app, raise_server_exceptions=False)

    response = raw.get(f"/stock-movements/product/{pid}/summary", headers=auth_headers)

    assert response.status_code == 500
    assert response.json()["success"] is False
    assert response.json()["message"] == "Server error"


def test_inventory_and_reservation_endpoints(client, auth_headers, make_product):
    pid = make_product(stock=8, reorder_point=10)

    reservation = client.post(f"/inventory/{pid}/reservations", headers=auth_headers,
                              json={"quantity": 3, "expires_in_minutes": 10})
    assert reservation.status_code == 201
    reservation_id = reservation.json()["reservation_id"]

    inventory = client.get(f"/inventory/{pid}", headers=auth_headers).json()
    assert (inventory["reserved_stock"], inventory["available_stock"]) == (3, 5)
    assert inventory["is_low_stock"] is True

    too_much = client.post(f"/inventory/{pid}/reservations", headers=auth_headers, json={"quantity": 6})
    assert too_much.status_code == 400
    assert too_much.json()["code"] == "INSUFFICIENT_AVAILABLE_STOCK"

    extended = client.post(f"/inventory/{pid}/reservations/{reservation_id}/extend", headers=auth_headers,
                           json={"additional_minutes": 5})
    assert extended.status_code == 200

    listed = client.get(f"/inventory/{pid}/reservations", headers=auth_headers).json()
    assert [r["reservation_id"] for r in listed] == [reservation_id]

    released = client.delete(f"/inventory/{pid}/reservations/{reservation_id}", headers=auth_headers)
    assert released.status_code == 200
    assert released.json()["available_stock"] == 8

    low = client.get("/inventory/low-stock", headers=auth_headers).json()
    assert [item["product_id"] for item in low] == [pid]

    sweep = client.post("/inventory/reservations/release-expired", headers=auth_headers)
    assert sweep.json() == {"inventories_processed": 0, "reservations_released": 0,
                            "total_quantity_released": 0.0}


def test_sale_operation_endpoint(client, auth_headers, make_product):
    pid = make_product(stock=5)

    response = client.post("/operations/sales", headers=auth_headers, json={
        "order_number": "SO-9", "items": [{"product_id": pid, "quantity": 2}],
    })

    assert response.status_code == 201
    body = response.json()
    assert body["operation"] == "sale"
    assert body["movements"][0]["new_stock"] == 3

    failed = client.post("/operations/sales", headers=auth_headers, json={
        "order_number": "SO-10", "items": [{"product_id": pid, "quantity": 20}],
    })
    assert failed.status_code == 400
    assert failed.json()["code"] == "INSUFFICIENT_STOCK"


def test_logs_are_admin_only(client, auth_headers, admin):
    assert client.get("/logs", headers=auth_headers).status_code == 403
    assert client.get("/logs", headers=bearer(admin.email)).status_code == 200
