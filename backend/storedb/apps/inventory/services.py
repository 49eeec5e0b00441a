from __future__ import annotations

from collections import defaultdict
from datetime import date, datetime, timedelta
import csv
import io
import logging
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from fastapi import HTTPException, status
from sqlalchemy import func
from sqlalchemy.orm import Session

from storedb.apps.audit import services as audit_services
from storedb.utils.identifiers import generate_batch_number
from . import models, schemas

logger = logging.getLogger(__name__)

DEFAULT_LOW_STOCK_THRESHOLD = 5
EXPIRING_SOON_DAYS = 30
RISK_PERIODS: Dict[str, int] = {
    "immediate": 3,
    "short_term": 7,
    "medium_term": 30,
    "long_term": 90,
}

IMPORT_COLUMNS = ("name", "quantity", "price", "status", "sku", "manufacturer", "unit")
IMPORT_UNIQUE_KEYS = ("name", "sku", "code", "barcode")
INVENTORY_LOG_CSV_HEADER = [
    "ID",
    "InventoryID",
    "Name",
    "Operation",
    "Delta",
    "Prev",
    "Current",
    "Note",
    "CreatedAt",
]


def _utcnow() -> datetime:
    return datetime.utcnow()


# ---------------------------------------------------------------------------
# Stock movement log
# ---------------------------------------------------------------------------


def _operation_for_delta(delta: int) -> models.InventoryOperationEnum:
    if delta > 0:
        return models.InventoryOperationEnum.ADD
    if delta < 0:
        return models.InventoryOperationEnum.REMOVE
    return models.InventoryOperationEnum.ADJUST


def record_quantity_change(
    db: Session,
    *,
    inventory: models.Inventory,
    previous_quantity: int,
    user_id: Optional[str],
    note: Optional[str] = None,
    operation_type: Optional[models.InventoryOperationEnum] = None,
) -> Optional[models.InventoryLog]:
    """Append a log row for a quantity change. No row when nothing moved and no operation is named."""
    current = inventory.quantity or 0
    delta = current - (previous_quantity or 0)
    if delta == 0 and operation_type is None:
        return None
    entry = models.InventoryLog(
        inventory_id=inventory.id,
        delta=delta,
        operation_type=operation_type or _operation_for_delta(delta),
        previous_quantity=previous_quantity or 0,
        current_quantity=current,
        user_id=user_id,
        note=note,
    )
    db.add(entry)
    db.flush()
    return entry


# ---------------------------------------------------------------------------
# Inventory CRUD
# ---------------------------------------------------------------------------


def _normalise_sku(sku: Optional[str]) -> Optional[str]:
    sku = (sku or "").strip()
    return sku or None


def _ensure_unique_sku(db: Session, sku: Optional[str], *, exclude_id: Optional[int] = None) -> None:
    if not sku:
        return
    query = db.query(models.Inventory.id).filter(models.Inventory.sku == sku)
    if exclude_id is not None:
        query = query.filter(models.Inventory.id != exclude_id)
    if query.first() is not None:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="SKU already exists.")


def get_inventory(db: Session, inventory_id: int, *, include_archived: bool = False) -> models.Inventory:
    query = db.query(models.Inventory).filter(models.Inventory.id == inventory_id)
    if not include_archived:
        query = query.filter(models.Inventory.status == models.InventoryStatusEnum.ACTIVE)
    inventory = query.first()
    if not inventory:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Inventory item not found")
    return inventory


def list_inventories(
    db: Session,
    *,
    q: Optional[str] = None,
    status_eq: Optional[models.InventoryStatusEnum] = models.InventoryStatusEnum.ACTIVE,
    manufacturer: Optional[str] = None,
    page: int = 1,
    per_page: int = 20,
) -> schemas.InventoryPage:
    query = db.query(models.Inventory)
    if status_eq is not None:
        query = query.filter(models.Inventory.status == status_eq)
    if q:
        pattern = f"%{q.strip()}%"
        query = query.filter(models.Inventory.name.ilike(pattern) | models.Inventory.sku.ilike(pattern))
    if manufacturer:
        query = query.filter(models.Inventory.manufacturer == manufacturer)

    page = max(page, 1)
    per_page = min(max(per_page, 1), 100)
    total = query.count()
    rows = (
        query.order_by(models.Inventory.name.asc(), models.Inventory.id.asc())
        .offset((page - 1) * per_page)
        .limit(per_page)
        .all()
    )
    return schemas.InventoryPage(
        items=[schemas.InventoryRead.model_validate(r) for r in rows],
        total=total,
        page=page,
        per_page=per_page,
    )


def create_inventory(
    db: Session,
    *,
    payload: schemas.InventoryCreate,
    actor_id: Optional[str],
) -> models.Inventory:
    sku = _normalise_sku(payload.sku)
    _ensure_unique_sku(db, sku)

    inventory = models.Inventory(
        name=payload.name.strip(),
        sku=sku,
        manufacturer=payload.manufacturer,
        unit=payload.unit,
        price=payload.price,
        quantity=payload.quantity,
        status=payload.status,
    )
    db.add(inventory)
    db.flush()
    record_quantity_change(
        db,
        inventory=inventory,
        previous_quantity=0,
        user_id=actor_id,
        note="Initial stock",
    )
    audit_services.log_event(
        db,
        store_id=None,
        actor_type="admin",
        actor_id=actor_id,
        auditable_type="inventory",
        auditable_id=inventory.id,
        action="create",
        message=f"Inventory {inventory.name} created",
        details={"sku": inventory.sku, "quantity": inventory.quantity, "price": inventory.price},
    )
    return inventory


def update_inventory(
    db: Session,
    *,
    inventory: models.Inventory,
    payload: schemas.InventoryUpdate,
    actor_id: Optional[str],
) -> models.Inventory:
    data = payload.model_dump(exclude_unset=True)
    note = data.pop("note", None)
    previous_quantity = inventory.quantity
    changes: Dict[str, list] = {}

    if "sku" in data:
        data["sku"] = _normalise_sku(data["sku"])
        _ensure_unique_sku(db, data["sku"], exclude_id=inventory.id)

    for field, value in data.items():
        if value is None and field in {"name", "price", "quantity", "status"}:
            continue
        if field == "name":
            value = value.strip()
        before = getattr(inventory, field)
        if before != value:
            changes[field] = [
                before.value if hasattr(before, "value") else before,
                value.value if hasattr(value, "value") else value,
            ]
            setattr(inventory, field, value)

    db.flush()
    record_quantity_change(
        db,
        inventory=inventory,
        previous_quantity=previous_quantity,
        user_id=actor_id,
        note=note,
    )
    if changes:
        audit_services.log_event(
            db,
            store_id=None,
            actor_type="admin",
            actor_id=actor_id,
            auditable_type="inventory",
            auditable_id=inventory.id,
            action="update",
            message=f"Inventory {inventory.name} updated",
            details={"changes": changes},
        )
    return inventory


def adjust_quantity(
    db: Session,
    *,
    inventory: models.Inventory,
    delta: int,
    actor_id: Optional[str],
    note: Optional[str] = None,
    operation_type: Optional[models.InventoryOperationEnum] = None,
) -> models.InventoryLog:
    previous = inventory.quantity or 0
    if previous + delta < 0:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Quantity cannot go below zero (on hand {previous}, change {delta}).",
        )
    inventory.quantity = previous + delta
    db.flush()
    entry = record_quantity_change(
        db,
        inventory=inventory,
        previous_quantity=previous,
        user_id=actor_id,
        note=note,
        operation_type=operation_type or _operation_for_delta(delta),
    )
    return entry


def delete_inventory(db: Session, *, inventory: models.Inventory, actor_id: Optional[str]) -> models.Inventory:
    """Archive the item. Rows with reserved stock block archiving."""
    from storedb.apps.stores import models as store_models

    reserved = (
        db.query(func.coalesce(func.sum(store_models.StoreInventory.reserved_quantity), 0))
        .filter(store_models.StoreInventory.inventory_id == inventory.id)
        .scalar()
    )
    if reserved:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Item has stock reserved for open transfers and cannot be archived.",
        )
    inventory.status = models.InventoryStatusEnum.ARCHIVED
    db.flush()
    audit_services.log_event(
        db,
        store_id=None,
        actor_type="admin",
        actor_id=actor_id,
        auditable_type="inventory",
        auditable_id=inventory.id,
        action="delete",
        message=f"Inventory {inventory.name} archived",
        details={"sku": inventory.sku, "quantity": inventory.quantity},
        critical=True,
    )
    return inventory


# ---------------------------------------------------------------------------
# Statistics
# ---------------------------------------------------------------------------


def _active_inventories(db: Session):
    return db.query(models.Inventory).filter(models.Inventory.status == models.InventoryStatusEnum.ACTIVE)


def low_stock_items(db: Session, threshold: int = DEFAULT_LOW_STOCK_THRESHOLD) -> List[models.Inventory]:
    return (
        _active_inventories(db)
        .filter(models.Inventory.quantity > 0, models.Inventory.quantity <= threshold)
        .order_by(models.Inventory.quantity.asc(), models.Inventory.name.asc())
        .all()
    )


def out_of_stock_items(db: Session) -> List[models.Inventory]:
    return (
        _active_inventories(db)
        .filter(models.Inventory.quantity <= 0)
        .order_by(models.Inventory.name.asc())
        .all()
    )


def normal_stock_items(db: Session, threshold: int = DEFAULT_LOW_STOCK_THRESHOLD) -> List[models.Inventory]:
    return _active_inventories(db).filter(models.Inventory.quantity > threshold).all()


def stock_status(inventory: models.Inventory, threshold: int = DEFAULT_LOW_STOCK_THRESHOLD) -> str:
    quantity = inventory.quantity or 0
    if quantity <= 0:
        return "out_of_stock"
    if quantity <= threshold:
        return "low_stock"
    return "normal"


def stock_summary(db: Session, threshold: int = DEFAULT_LOW_STOCK_THRESHOLD) -> schemas.StockSummary:
    base = _active_inventories(db)
    total_value = (
        db.query(func.coalesce(func.sum(models.Inventory.quantity * models.Inventory.price), 0.0))
        .filter(models.Inventory.status == models.InventoryStatusEnum.ACTIVE)
        .scalar()
    )
    return schemas.StockSummary(
        total_count=base.count(),
        total_value=round(float(total_value or 0.0), 2),
        low_stock_count=base.filter(models.Inventory.quantity > 0, models.Inventory.quantity <= threshold).count(),
        out_of_stock_count=base.filter(models.Inventory.quantity <= 0).count(),
        normal_stock_count=base.filter(models.Inventory.quantity > threshold).count(),
    )


def alert_summary(
    db: Session,
    *,
    threshold: int = DEFAULT_LOW_STOCK_THRESHOLD,
    days: int = EXPIRING_SOON_DAYS,
    today: Optional[date] = None,
) -> schemas.AlertSummary:
    return schemas.AlertSummary(
        low_stock=[
            schemas.AlertItem(id=i.id, name=i.name, quantity=i.quantity)
            for i in low_stock_items(db, threshold)
        ],
        out_of_stock=[
            schemas.AlertItem(id=i.id, name=i.name, quantity=i.quantity)
            for i in out_of_stock_items(db)
        ],
        expiring_soon=[
            schemas.AlertItem(id=b.inventory_id, name=b.inventory.name, quantity=b.quantity, expires_on=b.expires_on)
            for b in expiring_batches(db, days=days, today=today)
        ],
    )


# ---------------------------------------------------------------------------
# Batches (first-expired, first-out)
# ---------------------------------------------------------------------------


def _sync_quantity_from_batches(
    db: Session,
    inventory: models.Inventory,
    *,
    actor_id: Optional[str],
    note: Optional[str],
    operation_type: Optional[models.InventoryOperationEnum] = None,
) -> Optional[models.InventoryLog]:
    previous = inventory.quantity or 0
    inventory.quantity = sum(b.quantity for b in inventory.batches)
    db.flush()
    return record_quantity_change(
        db,
        inventory=inventory,
        previous_quantity=previous,
        user_id=actor_id,
        note=note,
        operation_type=operation_type,
    )


def register_batch(
    db: Session,
    *,
    inventory: models.Inventory,
    quantity: int,
    expires_on: Optional[date] = None,
    lot_code: Optional[str] = None,
) -> models.Batch:
    """Attach a lot to `inventory` without touching its on-hand quantity."""
    if quantity <= 0:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Batch quantity must be positive.")
    lot_code = (lot_code or "").strip() or generate_batch_number()
    if any(b.lot_code == lot_code for b in inventory.batches):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Lot code already exists for this item.")

    batch = models.Batch(lot_code=lot_code, quantity=quantity, expires_on=expires_on)
    inventory.batches.append(batch)
    db.flush()
    return batch


def add_batch(
    db: Session,
    *,
    inventory: models.Inventory,
    quantity: int,
    expires_on: Optional[date] = None,
    lot_code: Optional[str] = None,
    actor_id: Optional[str] = None,
) -> models.Batch:
    batch = register_batch(db, inventory=inventory, quantity=quantity, expires_on=expires_on, lot_code=lot_code)
    _sync_quantity_from_batches(db, inventory, actor_id=actor_id, note=f"Batch {batch.lot_code} received")
    return batch


def consume_batch(
    db: Session,
    *,
    inventory: models.Inventory,
    quantity: int,
    actor_id: Optional[str] = None,
    note: Optional[str] = None,
) -> bool:
    """
    Take `quantity` from the batches, earliest expiry first.

    Returns False (and changes nothing) when the request is not positive or
    exceeds what the batches hold.
    """
    total = sum(b.quantity for b in inventory.batches)
    if quantity <= 0 or quantity > total:
        return False

    remaining = quantity
    ordered = sorted(inventory.batches, key=lambda b: (b.expires_on is None, b.expires_on or date.max, b.id))
    for batch in ordered:
        if remaining <= 0:
            break
        taken = min(batch.quantity, remaining)
        batch.quantity -= taken
        remaining -= taken
        if batch.quantity == 0:
            inventory.batches.remove(batch)

    db.flush()
    _sync_quantity_from_batches(
        db,
        inventory,
        actor_id=actor_id,
        note=note or f"Consumed {quantity} (FEFO)",
        operation_type=models.InventoryOperationEnum.REMOVE,
    )
    return True


def nearest_expiry_date(inventory: models.Inventory) -> Optional[date]:
    """Earliest expiry among batches still holding stock, expired lots included."""
    dates = [b.expires_on for b in inventory.batches if b.expires_on and b.quantity > 0]
    return min(dates) if dates else None


def _batch_query(db: Session, inventory_ids: Optional[Sequence[int]]):
    query = (
        db.query(models.Batch)
        .join(models.Inventory, models.Inventory.id == models.Batch.inventory_id)
        .filter(
            models.Inventory.status == models.InventoryStatusEnum.ACTIVE,
            models.Batch.quantity > 0,
        )
    )
    if inventory_ids is not None:
        query = query.filter(models.Batch.inventory_id.in_(list(inventory_ids)))
    return query


def expiring_batches(
    db: Session,
    *,
    days: int = EXPIRING_SOON_DAYS,
    today: Optional[date] = None,
    inventory_ids: Optional[Sequence[int]] = None,
    limit: Optional[int] = None,
) -> List[models.Batch]:
    today = today or date.today()
    query = (
        _batch_query(db, inventory_ids)
        .filter(
            models.Batch.expires_on > today,
            models.Batch.expires_on <= today + timedelta(days=days),
        )
        .order_by(models.Batch.expires_on.asc(), models.Batch.id.asc())
    )
    if limit is not None:
        query = query.limit(limit)
    return query.all()


def expired_batches(
    db: Session,
    *,
    today: Optional[date] = None,
    inventory_ids: Optional[Sequence[int]] = None,
) -> List[models.Batch]:
    today = today or date.today()
    return (
        _batch_query(db, inventory_ids)
        .filter(models.Batch.expires_on < today)
        .order_by(models.Batch.expires_on.asc(), models.Batch.id.asc())
        .all()
    )


def expiry_risk_breakdown(
    db: Session,
    *,
    today: Optional[date] = None,
    inventory_ids: Optional[Sequence[int]] = None,
) -> Dict[str, schemas.ExpiryRiskBucket]:
    """Batches expiring within each risk window (windows are cumulative)."""
    today = today or date.today()
    horizon = max(RISK_PERIODS.values())
    batches = (
        _batch_query(db, inventory_ids)
        .filter(
            models.Batch.expires_on >= today,
            models.Batch.expires_on <= today + timedelta(days=horizon),
        )
        .all()
    )
    breakdown: Dict[str, schemas.ExpiryRiskBucket] = {}
    for level, days in RISK_PERIODS.items():
        cutoff = today + timedelta(days=days)
        within = [b for b in batches if b.expires_on <= cutoff]
        breakdown[level] = schemas.ExpiryRiskBucket(
            days=days,
            batch_count=len(within),
            quantity=sum(b.quantity for b in within),
            value=round(sum(b.quantity * float(b.inventory.price or 0) for b in within), 2),
        )
    return breakdown


# ---------------------------------------------------------------------------
# CSV import
# ---------------------------------------------------------------------------


def _lookup_column(unique_key: str) -> str:
    if unique_key not in IMPORT_UNIQUE_KEYS:
        raise ValueError(f"unique_key must be one of {', '.join(IMPORT_UNIQUE_KEYS)}")
    # code / barcode have no backing column; match on name instead.
    return "sku" if unique_key == "sku" else "name"


def _parse_import_row(raw: Dict[str, Optional[str]]) -> Tuple[Dict[str, object], List[str]]:
    errors: List[str] = []
    row = {k: (raw.get(k) or "").strip() for k in IMPORT_COLUMNS}

    name = row["name"]
    if not name:
        errors.append("name is required")
    elif len(name) > 255:
        errors.append("name must be at most 255 characters")

    quantity = 0
    if row["quantity"]:
        try:
            quantity = int(row["quantity"])
            if quantity < 0:
                errors.append("quantity must be zero or greater")
        except ValueError:
            errors.append("quantity must be an integer")

    price = 0.0
    if row["price"]:
        try:
            price = float(row["price"])
            if price < 0:
                errors.append("price must be zero or greater")
        except ValueError:
            errors.append("price must be a number")

    try:
        status_value = models.InventoryStatusEnum((row["status"] or "ACTIVE").upper())
    except ValueError:
        status_value = models.InventoryStatusEnum.ACTIVE

    return (
        {
            "name": name,
            "quantity": quantity,
            "price": price,
            "status": status_value,
            "sku": row["sku"] or None,
            "manufacturer": row["manufacturer"] or None,
            "unit": row["unit"] or None,
        },
        errors,
    )


def import_inventories_csv(
    db: Session,
    *,
    content: str,
    update_existing: bool = False,
    unique_key: str = "name",
    actor_id: Optional[str] = None,
) -> schemas.ImportResult:
    """
    Import items from CSV text (header row required).

    Rows that fail validation are reported with their 1-based data row number
    and do not stop the rest of the import.
    """
    lookup = _lookup_column(unique_key)
    reader = csv.DictReader(io.StringIO(content.lstrip("\ufeff")))
    if reader.fieldnames is None or "name" not in [f.strip().lower() for f in reader.fieldnames]:
        raise ValueError("CSV must have a header row with at least a 'name' column")

    valid_count = 0
    update_count = 0
    invalid: List[schemas.ImportRowError] = []

    for index, raw in enumerate(reader, start=1):
        raw = {(k or "").strip().lower(): v for k, v in raw.items()}
        data, errors = _parse_import_row(raw)
        if errors:
            invalid.append(
                schemas.ImportRowError(row=index, errors=errors, data={k: raw.get(k) for k in IMPORT_COLUMNS})
            )
            continue

        key_value = data[lookup]
        existing = None
        if key_value:
            existing = (
                db.query(models.Inventory)
                .filter(getattr(models.Inventory, lookup) == key_value)
                .order_by(models.Inventory.id.asc())
                .first()
            )

        if existing is not None and not update_existing:
            invalid.append(
                schemas.ImportRowError(
                    row=index,
                    errors=[f"item with {lookup} '{key_value}' already exists"],
                    data={k: raw.get(k) for k in IMPORT_COLUMNS},
                )
            )
            continue

        sku_owner = None
        if data["sku"]:
            sku_owner = db.query(models.Inventory.id).filter(models.Inventory.sku == data["sku"]).first()
        if sku_owner is not None and (existing is None or sku_owner.id != existing.id):
            invalid.append(
                schemas.ImportRowError(
                    row=index,
                    errors=[f"sku '{data['sku']}' already belongs to another item"],
                    data={k: raw.get(k) for k in IMPORT_COLUMNS},
                )
            )
            continue

        if existing is not None:
            previous = existing.quantity
            for field, value in data.items():
                setattr(existing, field, value)
            db.flush()
            record_quantity_change(
                db,
                inventory=existing,
                previous_quantity=previous,
                user_id=actor_id,
                note="CSV import update",
            )
            update_count += 1
        else:
            inventory = models.Inventory(**data)
            db.add(inventory)
            db.flush()
            record_quantity_change(
                db,
                inventory=inventory,
                previous_quantity=0,
                user_id=actor_id,
                note="CSV import",
            )
            valid_count += 1

    logger.info(
        "Inventory CSV import finished",
        extra={"valid_count": valid_count, "update_count": update_count, "invalid_count": len(invalid)},
    )
    return schemas.ImportResult(valid_count=valid_count, update_count=update_count, invalid_records=invalid)


# ---------------------------------------------------------------------------
# Log queries
# ---------------------------------------------------------------------------


def list_inventory_logs(
    db: Session,
    *,
    inventory_id: Optional[int] = None,
    operation_type: Optional[models.InventoryOperationEnum] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    limit: int = 200,
    offset: int = 0,
) -> List[models.InventoryLog]:
    query = db.query(models.InventoryLog)
    if inventory_id is not None:
        query = query.filter(models.InventoryLog.inventory_id == inventory_id)
    if operation_type is not None:
        query = query.filter(models.InventoryLog.operation_type == operation_type)
    if start:
        query = query.filter(models.InventoryLog.created_at >= start)
    if end:
        query = query.filter(models.InventoryLog.created_at <= end)
    return (
        query.order_by(models.InventoryLog.created_at.desc(), models.InventoryLog.id.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )


def operation_summary(
    db: Session,
    *,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
) -> List[schemas.OperationSummaryRow]:
    query = db.query(
        models.InventoryLog.operation_type,
        func.count(models.InventoryLog.id),
        func.coalesce(func.sum(models.InventoryLog.delta), 0),
    )
    if start:
        query = query.filter(models.InventoryLog.created_at >= start)
    if end:
        query = query.filter(models.InventoryLog.created_at <= end)
    rows = query.group_by(models.InventoryLog.operation_type).all()
    return [
        schemas.OperationSummaryRow(operation_type=op, count=count, total_delta=int(total))
        for op, count, total in sorted(rows, key=lambda r: r[0].value)
    ]


def daily_transaction_summary(
    db: Session,
    *,
    days: int = 30,
    now: Optional[datetime] = None,
) -> List[schemas.DailyTransactionRow]:
    now = now or _utcnow()
    since = now - timedelta(days=days)
    buckets: Dict[date, List[int]] = defaultdict(lambda: [0, 0])
    for created_at, delta in (
        db.query(models.InventoryLog.created_at, models.InventoryLog.delta)
        .filter(models.InventoryLog.created_at >= since)
        .all()
    ):
        bucket = buckets[created_at.date()]
        bucket[0] += 1
        bucket[1] += delta
    return [
        schemas.DailyTransactionRow(day=day, count=count, net_delta=net)
        for day, (count, net) in sorted(buckets.items())
    ]


def top_products_by_activity(
    db: Session,
    *,
    limit: int = 10,
    days: int = 30,
    now: Optional[datetime] = None,
) -> List[schemas.ProductActivityRow]:
    since = (now or _utcnow()) - timedelta(days=days)
    rows = (
        db.query(
            models.Inventory.id,
            models.Inventory.name,
            func.count(models.InventoryLog.id).label("activity"),
        )
        .join(models.InventoryLog, models.InventoryLog.inventory_id == models.Inventory.id)
        .filter(models.InventoryLog.created_at >= since)
        .group_by(models.Inventory.id, models.Inventory.name)
        .order_by(func.count(models.InventoryLog.id).desc(), models.Inventory.name.asc())
        .limit(limit)
        .all()
    )
    return [schemas.ProductActivityRow(inventory_id=i, name=n, count=c) for i, n, c in rows]


def inventory_logs_to_csv(rows: Iterable[models.InventoryLog]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow(INVENTORY_LOG_CSV_HEADER)
    for row in rows:
        writer.writerow(
            [
                row.id,
                row.inventory_id,
                row.inventory.name if row.inventory else "",
                row.operation_type.value,
                row.delta,
                row.previous_quantity,
                row.current_quantity,
                row.note or "",
                row.created_at.isoformat() if row.created_at else "",
            ]
        )
    return buffer.getvalue()
