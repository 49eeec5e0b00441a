"""
Shipments and receipts against the central inventory.

Every stock movement goes through `inventory.services` and lands in the
inventory log. Shipments log as SHIP and receipts as RECEIVE; restocking
after a cancel or an accepted return logs as ADD. Services flush only; routers commit.
"""

from __future__ import annotations

from collections import defaultdict
from datetime import date, datetime, time
import logging
from typing import Dict, List, Optional, Tuple

from fastapi import HTTPException, status
from sqlalchemy import func
from sqlalchemy.orm import Session

from storedb.apps.audit import services as audit_services
from storedb.apps.inventory import models as inventory_models
from storedb.apps.inventory import services as inventory_services

from . import models, schemas

logger = logging.getLogger(__name__)

Operation = inventory_models.InventoryOperationEnum
ShipmentStatus = models.ShipmentStatusEnum
ReceiptStatus = models.ReceiptStatusEnum

# Forward moves only. Cancelling and returning have their own operations.
SHIPMENT_TRANSITIONS: Dict[ShipmentStatus, Tuple[ShipmentStatus, ...]] = {
    ShipmentStatus.PENDING: (ShipmentStatus.PROCESSING, ShipmentStatus.SHIPPED),
    ShipmentStatus.PROCESSING: (ShipmentStatus.SHIPPED,),
    ShipmentStatus.SHIPPED: (ShipmentStatus.DELIVERED,),
}

MOVEMENT_SORT_FIELDS = ("shipped_quantity", "received_quantity", "net_change", "ship_count", "receive_count")


def _note(*parts: Optional[str]) -> str:
    return " ".join(p.strip() for p in parts if p and p.strip())


def _audit(
    db: Session,
    *,
    entity: str,
    entity_id: int,
    action: str,
    actor_id: Optional[str],
    message: str,
    details: dict,
) -> None:
    audit_services.log_event(
        db,
        store_id=None,
        actor_type="admin",
        actor_id=actor_id,
        auditable_type=entity,
        auditable_id=entity_id,
        action=action,
        message=message,
        details=details,
    )


# ---------------------------------------------------------------------------
# Shipments
# ---------------------------------------------------------------------------


def get_shipment(db: Session, shipment_id: int, *, lock: bool = False) -> models.Shipment:
    query = db.query(models.Shipment).filter(models.Shipment.id == shipment_id)
    if lock:
        query = query.with_for_update()
    shipment = query.first()
    if shipment is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Shipment not found")
    return shipment


def create_shipment(
    db: Session,
    *,
    payload: schemas.ShipmentCreate,
    actor_id: Optional[str],
    today: Optional[date] = None,
) -> models.Shipment:
    """Register an outbound shipment and take its quantity out of stock straight away."""
    inventory = inventory_services.get_inventory(db, payload.inventory_id)
    on_hand = inventory.quantity or 0
    if payload.quantity > on_hand:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Shipment quantity exceeds stock (on hand {on_hand}, requested {payload.quantity}).",
        )

    shipment = models.Shipment(
        inventory_id=inventory.id,
        quantity=payload.quantity,
        destination=payload.destination,
        scheduled_date=payload.scheduled_date or today or date.today(),
        status=payload.status,
        tracking_number=payload.tracking_number,
        carrier=payload.carrier,
        notes=payload.notes,
        created_by_id=actor_id,
    )
    db.add(shipment)
    db.flush()

    inventory_services.adjust_quantity(
        db,
        inventory=inventory,
        delta=-payload.quantity,
        actor_id=actor_id,
        note=_note(f"Shipment #{shipment.id} to {payload.destination}", payload.tracking_number),
        operation_type=Operation.SHIP,
    )
    _audit(
        db,
        entity="shipment",
        entity_id=shipment.id,
        action="create",
        actor_id=actor_id,
        message=f"Shipment of {payload.quantity} x {inventory.name} to {payload.destination}",
        details={"inventory_id": inventory.id, "quantity": payload.quantity, "status": shipment.status.value},
    )
    logger.info(
        "Shipment created",
        extra={"shipment_id": shipment.id, "inventory_id": inventory.id, "quantity": payload.quantity},
    )
    return shipment


def update_shipment_status(
    db: Session,
    *,
    shipment: models.Shipment,
    payload: schemas.ShipmentStatusUpdate,
    actor_id: Optional[str],
) -> models.Shipment:
    allowed = SHIPMENT_TRANSITIONS.get(shipment.status, ())
    if payload.status not in allowed:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Cannot move a shipment from {shipment.status.value} to {payload.status.value}.",
        )
    previous = shipment.status
    shipment.status = payload.status
    if payload.tracking_number:
        shipment.tracking_number = payload.tracking_number
    if payload.carrier:
        shipment.carrier = payload.carrier
    db.flush()
    _audit(
        db,
        entity="shipment",
        entity_id=shipment.id,
        action="status_change",
        actor_id=actor_id,
        message=f"Shipment #{shipment.id}: {previous.value} -> {shipment.status.value}",
        details={"from": previous.value, "to": shipment.status.value},
    )
    return shipment


def cancel_shipment(
    db: Session,
    *,
    shipment: models.Shipment,
    actor_id: Optional[str],
    reason: Optional[str] = None,
) -> models.Shipment:
    """Cancel a shipment that has not left yet and put its quantity back."""
    if not shipment.can_cancel:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"A {shipment.status.value} shipment cannot be cancelled.",
        )
    shipment.status = ShipmentStatus.CANCELLED
    db.flush()
    reason = (reason or "").strip() or "no reason given"
    inventory_services.adjust_quantity(
        db,
        inventory=shipment.inventory,
        delta=shipment.quantity,
        actor_id=actor_id,
        note=f"Shipment #{shipment.id} cancelled: {reason}",
        operation_type=Operation.ADD,
    )
    _audit(
        db,
        entity="shipment",
        entity_id=shipment.id,
        action="cancel",
        actor_id=actor_id,
        message=f"Shipment #{shipment.id} cancelled",
        details={"reason": reason, "restocked": shipment.quantity},
    )
    return shipment


def process_return(
    db: Session,
    *,
    shipment: models.Shipment,
    payload: schemas.ShipmentReturn,
    actor_id: Optional[str],
    today: Optional[date] = None,
) -> models.Shipment:
    """
    Record goods coming back from a shipped or delivered shipment.

    Returned units go back into stock only when they passed the quality check;
    otherwise the return is recorded and the units are written off.
    """
    if not shipment.can_return:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"A {shipment.status.value} shipment cannot be returned.",
        )
    if payload.quantity > shipment.quantity:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Return quantity exceeds the shipped quantity ({shipment.quantity}).",
        )

    reason = (payload.reason or "").strip() or None
    shipment.status = ShipmentStatus.RETURNED
    shipment.return_quantity = payload.quantity
    shipment.return_reason = reason
    shipment.return_date = today or date.today()
    db.flush()

    if payload.quality_check:
        inventory_services.adjust_quantity(
            db,
            inventory=shipment.inventory,
            delta=payload.quantity,
            actor_id=actor_id,
            note=f"Return from shipment #{shipment.id}: {reason or 'no reason given'}",
            operation_type=Operation.ADD,
        )
    _audit(
        db,
        entity="shipment",
        entity_id=shipment.id,
        action="return",
        actor_id=actor_id,
        message=f"Shipment #{shipment.id} returned ({payload.quantity})",
        details={"quantity": payload.quantity, "reason": reason, "restocked": payload.quality_check},
    )
    return shipment


def list_shipments(
    db: Session,
    *,
    status_eq: Optional[ShipmentStatus] = None,
    inventory_id: Optional[int] = None,
    start: Optional[date] = None,
    end: Optional[date] = None,
    page: int = 1,
    per_page: int = 20,
) -> schemas.ShipmentPage:
    query = db.query(models.Shipment)
    if status_eq is not None:
        query = query.filter(models.Shipment.status == status_eq)
    if inventory_id is not None:
        query = query.filter(models.Shipment.inventory_id == inventory_id)
    if start:
        query = query.filter(models.Shipment.scheduled_date >= start)
    if end:
        query = query.filter(models.Shipment.scheduled_date <= end)

    page = max(page, 1)
    per_page = min(max(per_page, 1), 100)
    total = query.count()
    rows = (
        query.order_by(models.Shipment.created_at.desc(), models.Shipment.id.desc())
        .offset((page - 1) * per_page)
        .limit(per_page)
        .all()
    )
    return schemas.ShipmentPage(
        items=[schemas.ShipmentRead.model_validate(r) for r in rows],
        total=total,
        page=page,
        per_page=per_page,
    )


# ---------------------------------------------------------------------------
# Receipts
# ---------------------------------------------------------------------------


def get_receipt(db: Session, receipt_id: int, *, lock: bool = False) -> models.Receipt:
    query = db.query(models.Receipt).filter(models.Receipt.id == receipt_id)
    if lock:
        query = query.with_for_update()
    receipt = query.first()
    if receipt is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Receipt not found")
    return receipt


def create_receipt(
    db: Session,
    *,
    payload: schemas.ReceiptCreate,
    actor_id: Optional[str],
    today: Optional[date] = None,
) -> models.Receipt:
    """
    Register inbound stock.

    The quantity is always added to stock. With an expiry date the goods are
    also recorded as a lot, coded `batch_number` or else `RN-<receipt id>`.
    """
    inventory = inventory_services.get_inventory(db, payload.inventory_id)
    receipt = models.Receipt(
        inventory_id=inventory.id,
        quantity=payload.quantity,
        source=payload.source,
        receipt_date=payload.receipt_date or today or date.today(),
        status=payload.status,
        batch_number=payload.batch_number,
        purchase_order=payload.purchase_order,
        cost_per_unit=payload.cost_per_unit,
        notes=payload.notes,
        created_by_id=actor_id,
    )
    db.add(receipt)
    db.flush()

    inventory_services.adjust_quantity(
        db,
        inventory=inventory,
        delta=payload.quantity,
        actor_id=actor_id,
        note=_note(f"Receipt #{receipt.id} from {payload.source}", payload.purchase_order),
        operation_type=Operation.RECEIVE,
    )
    if payload.expiry_date:
        batch = inventory_services.register_batch(
            db,
            inventory=inventory,
            quantity=payload.quantity,
            expires_on=payload.expiry_date,
            lot_code=payload.batch_number or f"RN-{receipt.id}",
        )
        receipt.batch_number = batch.lot_code
        db.flush()
    _audit(
        db,
        entity="receipt",
        entity_id=receipt.id,
        action="create",
        actor_id=actor_id,
        message=f"Receipt of {payload.quantity} x {inventory.name} from {payload.source}",
        details={
            "inventory_id": inventory.id,
            "quantity": payload.quantity,
            "status": receipt.status.value,
            "batch_number": receipt.batch_number,
        },
    )
    return receipt


def reject_receipt(
    db: Session,
    *,
    receipt: models.Receipt,
    actor_id: Optional[str],
    reason: str,
) -> models.Receipt:
    """Refuse an expected or partial delivery and take the booked quantity back out."""
    if not receipt.can_reject:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"A {receipt.status.value} receipt cannot be rejected.",
        )
    receipt.status = ReceiptStatus.REJECTED
    db.flush()
    inventory_services.adjust_quantity(
        db,
        inventory=receipt.inventory,
        delta=-receipt.quantity,
        actor_id=actor_id,
        note=f"Receipt #{receipt.id} rejected: {reason}",
        operation_type=Operation.ADJUST,
    )
    _audit(
        db,
        entity="receipt",
        entity_id=receipt.id,
        action="reject",
        actor_id=actor_id,
        message=f"Receipt #{receipt.id} rejected",
        details={"reason": reason, "quantity": receipt.quantity},
    )
    return receipt


def list_receipts(
    db: Session,
    *,
    status_eq: Optional[ReceiptStatus] = None,
    inventory_id: Optional[int] = None,
    source: Optional[str] = None,
    start: Optional[date] = None,
    end: Optional[date] = None,
    page: int = 1,
    per_page: int = 20,
) -> schemas.ReceiptPage:
    query = db.query(models.Receipt)
    if status_eq is not None:
        query = query.filter(models.Receipt.status == status_eq)
    if inventory_id is not None:
        query = query.filter(models.Receipt.inventory_id == inventory_id)
    if source:
        query = query.filter(models.Receipt.source == source.strip())
    if start:
        query = query.filter(models.Receipt.receipt_date >= start)
    if end:
        query = query.filter(models.Receipt.receipt_date <= end)

    page = max(page, 1)
    per_page = min(max(per_page, 1), 100)
    total = query.count()
    rows = (
        query.order_by(models.Receipt.created_at.desc(), models.Receipt.id.desc())
        .offset((page - 1) * per_page)
        .limit(per_page)
        .all()
    )
    return schemas.ReceiptPage(
        items=[schemas.ReceiptRead.model_validate(r) for r in rows],
        total=total,
        page=page,
        per_page=per_page,
    )


# ---------------------------------------------------------------------------
# Item-to-item moves and reports
# ---------------------------------------------------------------------------


def relocate_stock(
    db: Session,
    *,
    payload: schemas.StockRelocation,
    actor_id: Optional[str],
) -> List[inventory_models.InventoryLog]:
    """Move quantity from one catalogue item to another as a SHIP/RECEIVE pair."""
    if payload.source_inventory_id == payload.target_inventory_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Source and target items must differ.")
    source = inventory_services.get_inventory(db, payload.source_inventory_id)
    target = inventory_services.get_inventory(db, payload.target_inventory_id)
    route = f"{source.name} -> {target.name}"
    return [
        inventory_services.adjust_quantity(
            db,
            inventory=source,
            delta=-payload.quantity,
            actor_id=actor_id,
            note=_note(f"Stock relocation out: {route}", payload.reference_number),
            operation_type=Operation.SHIP,
        ),
        inventory_services.adjust_quantity(
            db,
            inventory=target,
            delta=payload.quantity,
            actor_id=actor_id,
            note=_note(f"Stock relocation in: {route}", payload.reference_number),
            operation_type=Operation.RECEIVE,
        ),
    ]


def _period_totals(db: Session, model, date_column, start: date, end: date) -> List[schemas.PeriodTotal]:
    rows = (
        db.query(
            inventory_models.Inventory.id,
            inventory_models.Inventory.name,
            func.count(model.id),
            func.coalesce(func.sum(model.quantity), 0),
        )
        .join(model, model.inventory_id == inventory_models.Inventory.id)
        .filter(date_column >= start, date_column <= end)
        .group_by(inventory_models.Inventory.id, inventory_models.Inventory.name)
        .order_by(inventory_models.Inventory.name.asc())
        .all()
    )
    return [
        schemas.PeriodTotal(inventory_id=item_id, name=name, count=count, quantity=int(quantity))
        for item_id, name, count, quantity in rows
    ]


def shipments_by_period(db: Session, start: date, end: date) -> List[schemas.PeriodTotal]:
    return _period_totals(db, models.Shipment, models.Shipment.scheduled_date, start, end)


def receipts_by_period(db: Session, start: date, end: date) -> List[schemas.PeriodTotal]:
    return _period_totals(db, models.Receipt, models.Receipt.receipt_date, start, end)


def movement_report(
    db: Session,
    *,
    start: date,
    end: date,
    sort_by: Optional[str] = None,
    descending: bool = False,
) -> schemas.MovementReport:
    """Shipped and received quantities per item from the SHIP/RECEIVE log rows of whole days."""
    if sort_by is not None and sort_by not in MOVEMENT_SORT_FIELDS:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Cannot sort by {sort_by}.")
    log = inventory_models.InventoryLog
    rows = (
        db.query(log.inventory_id, log.operation_type, func.count(log.id), func.coalesce(func.sum(log.delta), 0))
        .filter(
            log.operation_type.in_([Operation.SHIP, Operation.RECEIVE]),
            log.created_at >= datetime.combine(start, time.min),
            log.created_at <= datetime.combine(end, time.max),
        )
        .group_by(log.inventory_id, log.operation_type)
        .all()
    )

    totals: Dict[int, Dict[str, int]] = defaultdict(
        lambda: {"shipped_quantity": 0, "received_quantity": 0, "ship_count": 0, "receive_count": 0}
    )
    for inventory_id, operation, count, delta in rows:
        entry = totals[inventory_id]
        if operation == Operation.SHIP:
            entry["shipped_quantity"] += abs(int(delta))
            entry["ship_count"] += count
        else:
            entry["received_quantity"] += int(delta)
            entry["receive_count"] += count

    items_by_id = {
        item.id: item
        for item in db.query(inventory_models.Inventory).filter(inventory_models.Inventory.id.in_(list(totals)))
    }
    items = [
        schemas.MovementReportItem(
            inventory_id=inventory_id,
            name=items_by_id[inventory_id].name,
            sku=items_by_id[inventory_id].sku,
            net_change=entry["received_quantity"] - entry["shipped_quantity"],
            **entry,
        )
        for inventory_id, entry in sorted(totals.items())
        if inventory_id in items_by_id
    ]
    if sort_by:
        items.sort(key=lambda item: getattr(item, sort_by), reverse=descending)

    return schemas.MovementReport(
        start_date=start,
        end_date=end,
        total_shipped=sum(i.shipped_quantity for i in items),
        total_received=sum(i.received_quantity for i in items),
        net_change=sum(i.net_change for i in items),
        items=items,
    )
