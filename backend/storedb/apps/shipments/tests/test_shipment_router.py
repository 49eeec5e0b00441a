from __future__ import annotations

from storedb.apps.accounts import models as account_models
from storedb.apps.accounts import services as account_services
from storedb.apps.inventory import models as inventory_models
from storedb.apps.shipments import models as shipment_models


def _auth(admin) -> dict:
    token, _ = account_services.issue_access_token_for_admin(admin)
    return {"Authorization": f"Bearer {token}"}


def _admin(db, email, role):
    admin = account_models.Admin(email=email, role=role, hashed_password="x")
    db.add(admin)
    db.commit()
    return admin


def test_shipment_lifecycle_over_http(client, db_session):
    item = inventory_models.Inventory(name="Ibuprofen 200mg", price=2.0, quantity=30)
    db_session.add(item)
    db_session.commit()
    hq = _admin(db_session, "hq.ship@example.com", account_models.AdminRole.HEADQUARTERS_ADMIN)
    headers = _auth(hq)

    response = client.post(
        "/admin/shipments",
        json={"inventory_id": item.id, "quantity": 12, "destination": "Ward 3", "tracking_number": "TRK-1"},
        headers=headers,
    )
    assert response.status_code == 201
    shipment = response.json()
    assert shipment["status"] == "PENDING"
    assert shipment["can_cancel"] is True
    db_session.refresh(item)
    assert item.quantity == 18

    response = client.post(
        "/admin/shipments", json={"inventory_id": item.id, "quantity": 99, "destination": "Ward 3"}, headers=headers
    )
    assert response.status_code == 400

    response = client.post(
        f"/admin/shipments/{shipment['id']}/status", json={"status": "DELIVERED"}, headers=headers
    )
    assert response.status_code == 409

    response = client.post(f"/admin/shipments/{shipment['id']}/status", json={"status": "SHIPPED"}, headers=headers)
    assert response.status_code == 200
    assert response.json()["can_return"] is True

    response = client.post(f"/admin/shipments/{shipment['id']}/cancel", json={}, headers=headers)
    assert response.status_code == 409

    response = client.post(
        f"/admin/shipments/{shipment['id']}/return", json={"quantity": 2, "reason": "Excess"}, headers=headers
    )
    assert response.status_code == 200
    assert response.json()["status"] == "RETURNED"
    assert response.json()["return_quantity"] == 2
    db_session.refresh(item)
    assert item.quantity == 20

    response = client.get("/admin/shipments", params={"status_eq": "RETURNED"}, headers=headers)
    assert response.json()["total"] == 1

    response = client.get("/admin/shipments/999", headers=headers)
    assert response.status_code == 404


def test_receipts_and_movement_report_over_http(client, db_session):
    item = inventory_models.Inventory(name="Paracetamol 500mg", price=1.0, quantity=0)
    db_session.add(item)
    db_session.commit()
    hq = _admin(db_session, "hq.receive@example.com", account_models.AdminRole.HEADQUARTERS_ADMIN)
    headers = _auth(hq)

    response = client.post(
        "/admin/receipts",
        json={"inventory_id": item.id, "quantity": 40, "source": "Acme", "status": "PARTIAL", "cost_per_unit": "0.50"},
        headers=headers,
    )
    assert response.status_code == 201
    receipt = response.json()
    assert receipt["can_reject"] is True
    assert receipt["total_cost"] == 20.0

    response = client.post("/admin/receipts", json={"inventory_id": item.id, "quantity": 5, "source": " "}, headers=headers)
    assert response.status_code == 422

    response = client.post(f"/admin/receipts/{receipt['id']}/reject", json={"reason": "  "}, headers=headers)
    assert response.status_code == 422

    response = client.post(f"/admin/receipts/{receipt['id']}/reject", json={"reason": "Short-dated"}, headers=headers)
    assert response.status_code == 200
    assert response.json()["status"] == "REJECTED"

    client.post("/admin/receipts", json={"inventory_id": item.id, "quantity": 9, "source": "Acme"}, headers=headers)
    day = db_session.query(shipment_models.Receipt).first().created_at.date().isoformat()

    response = client.get("/admin/stock-movements/report", params={"start": day, "end": day}, headers=headers)
    assert response.status_code == 200
    body = response.json()
    assert body["total_received"] == 49
    assert body["items"][0]["receive_count"] == 2

    response = client.get(
        "/admin/stock-movements/report", params={"start": day, "end": day, "sort_by": "price"}, headers=headers
    )
    assert response.status_code == 422


def test_store_user_role_cannot_create_shipments(client, db_session):
    item = inventory_models.Inventory(name="Saline 0.9%", price=1.0, quantity=10)
    db_session.add(item)
    db_session.commit()
    staff = _admin(db_session, "staff.ship@example.com", account_models.AdminRole.STORE_USER)

    response = client.post(
        "/admin/shipments",
        json={"inventory_id": item.id, "quantity": 1, "destination": "Ward 1"},
        headers=_auth(staff),
    )
    assert response.status_code == 403
    assert db_session.query(shipment_models.Shipment).count() == 0
