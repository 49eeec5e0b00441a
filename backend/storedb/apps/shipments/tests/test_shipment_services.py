from __future__ import annotations

from datetime import date, datetime, timedelta
from decimal import Decimal

import pytest
from fastapi import HTTPException
from pydantic import ValidationError

from storedb.apps.audit import models as audit_models
from storedb.apps.inventory import models as inventory_models
from storedb.apps.shipments import models as shipment_models
from storedb.apps.shipments import schemas as shipment_schemas
from storedb.apps.shipments import services as shipment_services

TODAY = date(2026, 4, 1)
Operation = inventory_models.InventoryOperationEnum
ShipmentStatus = shipment_models.ShipmentStatusEnum
ReceiptStatus = shipment_models.ReceiptStatusEnum


@pytest.fixture
def item(db_session):
    row = inventory_models.Inventory(name="Cetirizine 10mg", sku="CET-10", price=3.5, quantity=40)
    db_session.add(row)
    db_session.commit()
    return row


def _logs(db, item):
    return (
        db.query(inventory_models.InventoryLog)
        .filter(inventory_models.InventoryLog.inventory_id == item.id)
        .order_by(inventory_models.InventoryLog.id.asc())
        .all()
    )


def _ship(db, item, quantity=10, **fields):
    shipment = shipment_services.create_shipment(
        db,
        payload=shipment_schemas.ShipmentCreate(
            inventory_id=item.id, quantity=quantity, destination="City Clinic", **fields
        ),
        actor_id="admin-1",
        today=TODAY,
    )
    db.commit()
    return shipment


def _advance(db, shipment, status):
    shipment_services.update_shipment_status(
        db,
        shipment=shipment,
        payload=shipment_schemas.ShipmentStatusUpdate(status=status),
        actor_id="admin-1",
    )
    db.commit()


def test_create_shipment_removes_stock_and_logs_ship(db_session, item):
    shipment = _ship(db_session, item, 12, tracking_number="TRK-9")

    assert item.quantity == 28
    assert shipment.status == ShipmentStatus.PENDING
    assert shipment.scheduled_date == TODAY
    assert shipment.can_cancel and not shipment.can_return

    (entry,) = _logs(db_session, item)
    assert entry.operation_type == Operation.SHIP
    assert (entry.previous_quantity, entry.current_quantity, entry.delta) == (40, 28, -12)
    assert entry.note == f"Shipment #{shipment.id} to City Clinic TRK-9"

    audit = (
        db_session.query(audit_models.AuditLog)
        .filter(audit_models.AuditLog.auditable_type == "shipment")
        .one()
    )
    assert audit.action == "create"


def test_shipment_cannot_exceed_stock(db_session, item):
    with pytest.raises(HTTPException) as exc_info:
        _ship(db_session, item, 41)
    assert exc_info.value.status_code == 400
    assert db_session.query(shipment_models.Shipment).count() == 0
    assert item.quantity == 40


@pytest.mark.parametrize("fields", [{"quantity": 0}, {"destination": "   "}, {"status": ShipmentStatus.CANCELLED}])
def test_shipment_payload_validation(item, fields):
    data = {"inventory_id": item.id, "quantity": 1, "destination": "City Clinic"}
    data.update(fields)
    with pytest.raises(ValidationError):
        shipment_schemas.ShipmentCreate(**data)


def test_cancel_restores_stock_only_before_dispatch(db_session, item):
    shipment = _ship(db_session, item, 10)
    shipment_services.cancel_shipment(db_session, shipment=shipment, actor_id="admin-1", reason=" ")
    db_session.commit()

    assert shipment.status == ShipmentStatus.CANCELLED
    assert item.quantity == 40
    restock = _logs(db_session, item)[-1]
    assert restock.operation_type == Operation.ADD
    assert restock.note == f"Shipment #{shipment.id} cancelled: no reason given"

    with pytest.raises(HTTPException) as exc_info:
        shipment_services.cancel_shipment(db_session, shipment=shipment, actor_id="admin-1")
    assert exc_info.value.status_code == 409

    shipped = _ship(db_session, item, 5)
    _advance(db_session, shipped, ShipmentStatus.SHIPPED)
    with pytest.raises(HTTPException):
        shipment_services.cancel_shipment(db_session, shipment=shipped, actor_id="admin-1")
    assert item.quantity == 35


def test_status_moves_forward_only(db_session, item):
    shipment = _ship(db_session, item, 3)
    _advance(db_session, shipment, ShipmentStatus.PROCESSING)
    _advance(db_session, shipment, ShipmentStatus.SHIPPED)
    _advance(db_session, shipment, ShipmentStatus.DELIVERED)

    for target in (ShipmentStatus.PENDING, ShipmentStatus.SHIPPED, ShipmentStatus.RETURNED):
        with pytest.raises(HTTPException) as exc_info:
            _advance(db_session, shipment, target)
        assert exc_info.value.status_code == 409


def test_return_with_and_without_quality_check(db_session, item):
    first = _ship(db_session, item, 10, status=ShipmentStatus.SHIPPED)
    second = _ship(db_session, item, 10, status=ShipmentStatus.SHIPPED)
    assert item.quantity == 20

    with pytest.raises(HTTPException) as exc_info:
        shipment_services.process_return(
            db_session,
            shipment=first,
            payload=shipment_schemas.ShipmentReturn(quantity=11),
            actor_id="admin-1",
        )
    assert exc_info.value.status_code == 400

    shipment_services.process_return(
        db_session,
        shipment=first,
        payload=shipment_schemas.ShipmentReturn(quantity=4, reason="Damaged box"),
        actor_id="admin-1",
        today=TODAY,
    )
    shipment_services.process_return(
        db_session,
        shipment=second,
        payload=shipment_schemas.ShipmentReturn(quantity=6, reason="Broken seal", quality_check=False),
        actor_id="admin-1",
        today=TODAY,
    )
    db_session.commit()

    assert first.status == ShipmentStatus.RETURNED
    assert (first.return_quantity, first.return_reason, first.return_date) == (4, "Damaged box", TODAY)
    assert second.return_quantity == 6
    assert item.quantity == 24

    with pytest.raises(HTTPException) as exc_info:
        shipment_services.process_return(
            db_session, shipment=first, payload=shipment_schemas.ShipmentReturn(quantity=1), actor_id=None
        )
    assert exc_info.value.status_code == 409


def test_pending_shipment_cannot_be_returned(db_session, item):
    shipment = _ship(db_session, item, 2)
    with pytest.raises(HTTPException) as exc_info:
        shipment_services.process_return(
            db_session, shipment=shipment, payload=shipment_schemas.ShipmentReturn(quantity=1), actor_id=None
        )
    assert exc_info.value.status_code == 409


def test_receipt_adds_stock_and_computes_cost(db_session, item):
    receipt = shipment_services.create_receipt(
        db_session,
        payload=shipment_schemas.ReceiptCreate(
            inventory_id=item.id,
            quantity=25,
            source="  Acme Wholesale ",
            purchase_order="PO-77",
            cost_per_unit=Decimal("1.20"),
        ),
        actor_id="admin-1",
        today=TODAY,
    )
    db_session.commit()

    assert item.quantity == 65
    assert receipt.source == "Acme Wholesale"
    assert receipt.status == ReceiptStatus.COMPLETED
    assert receipt.receipt_date == TODAY
    assert receipt.total_cost == pytest.approx(30.0)
    assert not receipt.can_reject

    entry = _logs(db_session, item)[-1]
    assert entry.operation_type == Operation.RECEIVE
    assert entry.delta == 25
    assert entry.note == f"Receipt #{receipt.id} from Acme Wholesale PO-77"


def test_receipt_with_expiry_books_a_batch(db_session, item):
    receipt = shipment_services.create_receipt(
        db_session,
        payload=shipment_schemas.ReceiptCreate(
            inventory_id=item.id, quantity=8, source="Acme", expiry_date=TODAY + timedelta(days=90)
        ),
        actor_id="admin-1",
    )
    db_session.commit()

    (batch,) = item.batches
    assert batch.lot_code == f"RN-{receipt.id}"
    assert batch.expires_on == TODAY + timedelta(days=90)
    assert receipt.batch_number == batch.lot_code
    assert item.quantity == 48
    entry = _logs(db_session, item)[-1]
    assert (entry.operation_type, entry.delta) == (Operation.RECEIVE, 8)


def test_reject_expected_receipt_takes_stock_back(db_session, item):
    receipt = shipment_services.create_receipt(
        db_session,
        payload=shipment_schemas.ReceiptCreate(
            inventory_id=item.id, quantity=5, source="Acme", status=ReceiptStatus.EXPECTED
        ),
        actor_id="admin-1",
    )
    db_session.commit()
    assert item.quantity == 45

    shipment_services.reject_receipt(db_session, receipt=receipt, actor_id="admin-1", reason="Wrong strength")
    db_session.commit()
    assert receipt.status == ReceiptStatus.REJECTED
    assert item.quantity == 40
    assert _logs(db_session, item)[-1].note == f"Receipt #{receipt.id} rejected: Wrong strength"

    with pytest.raises(HTTPException) as exc_info:
        shipment_services.reject_receipt(db_session, receipt=receipt, actor_id="admin-1", reason="Again")
    assert exc_info.value.status_code == 409


def test_relocate_stock_between_items(db_session, item):
    other = inventory_models.Inventory(name="Cetirizine 10mg (blister)", price=3.5, quantity=0)
    db_session.add(other)
    db_session.commit()

    out, into = shipment_services.relocate_stock(
        db_session,
        payload=shipment_schemas.StockRelocation(
            source_inventory_id=item.id, target_inventory_id=other.id, quantity=15, reference_number="REF-1"
        ),
        actor_id="admin-1",
    )
    db_session.commit()

    assert (item.quantity, other.quantity) == (25, 15)
    assert (out.operation_type, into.operation_type) == (Operation.SHIP, Operation.RECEIVE)
    assert out.note.endswith("REF-1")

    with pytest.raises(HTTPException):
        shipment_services.relocate_stock(
            db_session,
            payload=shipment_schemas.StockRelocation(
                source_inventory_id=item.id, target_inventory_id=item.id, quantity=1
            ),
            actor_id=None,
        )


def test_period_totals_and_movement_report(db_session, item):
    other = inventory_models.Inventory(name="Loratadine 10mg", price=2.0, quantity=30)
    db_session.add(other)
    db_session.commit()

    _ship(db_session, item, 10)
    _ship(db_session, item, 5, scheduled_date=TODAY + timedelta(days=40))
    _ship(db_session, other, 7)
    shipment_services.create_receipt(
        db_session,
        payload=shipment_schemas.ReceiptCreate(inventory_id=other.id, quantity=20, source="Acme"),
        actor_id="admin-1",
        today=TODAY,
    )
    db_session.commit()

    shipped = shipment_services.shipments_by_period(db_session, TODAY, TODAY + timedelta(days=7))
    assert [(row.name, row.count, row.quantity) for row in shipped] == [
        ("Cetirizine 10mg", 1, 10),
        ("Loratadine 10mg", 1, 7),
    ]
    received = shipment_services.receipts_by_period(db_session, TODAY, TODAY)
    assert [(row.inventory_id, row.quantity) for row in received] == [(other.id, 20)]

    today = datetime.utcnow().date()
    report = shipment_services.movement_report(db_session, start=today, end=today, sort_by="net_change")
    assert [row.inventory_id for row in report.items] == [item.id, other.id]
    first, second = report.items
    assert (first.shipped_quantity, first.ship_count, first.net_change) == (15, 2, -15)
    assert (second.shipped_quantity, second.received_quantity, second.net_change) == (7, 20, 13)
    assert (report.total_shipped, report.total_received, report.net_change) == (22, 20, -2)

    descending = shipment_services.movement_report(
        db_session, start=today, end=today, sort_by="net_change", descending=True
    )
    assert [row.inventory_id for row in descending.items] == [other.id, item.id]

    empty = shipment_services.movement_report(
        db_session, start=today - timedelta(days=10), end=today - timedelta(days=5)
    )
    assert empty.items == [] and empty.total_shipped == 0

    with pytest.raises(HTTPException):
        shipment_services.movement_report(db_session, start=today, end=today, sort_by="price")
