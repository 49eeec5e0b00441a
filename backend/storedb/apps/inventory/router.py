from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile, status
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session

from storedb.database import get_db
from storedb.security import get_current_active_admin, require_admin_roles, require_headquarters_admin
from storedb.apps.accounts.models import Admin, AdminRole
from storedb.apps.audit import services as audit_services

from . import models, schemas, services

router = APIRouter(prefix="/admin/inventories", tags=["inventory"])

_catalogue_editor = require_admin_roles(AdminRole.STORE_MANAGER, AdminRole.PHARMACIST)


@router.get("", response_model=schemas.InventoryPage)
def list_inventories(
    q: Optional[str] = None,
    status_eq: Optional[models.InventoryStatusEnum] = models.InventoryStatusEnum.ACTIVE,
    manufacturer: Optional[str] = None,
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
    current_admin: Admin = Depends(get_current_active_admin),
):
    return services.list_inventories(
        db,
        q=q,
        status_eq=status_eq,
        manufacturer=manufacturer,
        page=page,
        per_page=per_page,
    )


@router.post("", response_model=schemas.InventoryRead, status_code=status.HTTP_201_CREATED)
def create_inventory(
    payload: schemas.InventoryCreate,
    db: Session = Depends(get_db),
    current_admin: Admin = Depends(_catalogue_editor),
):
    inventory = services.create_inventory(db, payload=payload, actor_id=current_admin.id)
    db.commit()
    db.refresh(inventory)
    return inventory


# ---------------------------------------------------------------------------
# STATISTICS & LOGS (declared before /{inventory_id})
# ---------------------------------------------------------------------------


@router.get("/statistics/summary", response_model=schemas.StockSummary)
def stock_summary(
    threshold: int = Query(services.DEFAULT_LOW_STOCK_THRESHOLD, ge=0),
    db: Session = Depends(get_db),
    current_admin: Admin = Depends(get_current_active_admin),
):
    return services.stock_summary(db, threshold)


@router.get("/statistics/alerts", response_model=schemas.AlertSummary)
def alert_summary(
    threshold: int = Query(services.DEFAULT_LOW_STOCK_THRESHOLD, ge=0),
    days: int = Query(services.EXPIRING_SOON_DAYS, ge=1, le=365),
    db: Session = Depends(get_db),
    current_admin: Admin = Depends(get_current_active_admin),
):
    return services.alert_summary(db, threshold=threshold, days=days)


@router.get("/statistics/expiry-risk", response_model=Dict[str, schemas.ExpiryRiskBucket])
def expiry_risk(
    db: Session = Depends(get_db),
    current_admin: Admin = Depends(get_current_active_admin),
):
    return services.expiry_risk_breakdown(db)


@router.get("/batches/expiring", response_model=List[schemas.BatchRead])
def expiring_batches(
    days: int = Query(services.EXPIRING_SOON_DAYS, ge=1, le=365),
    db: Session = Depends(get_db),
    current_admin: Admin = Depends(get_current_active_admin),
):
    return services.expiring_batches(db, days=days)


@router.get("/batches/expired", response_model=List[schemas.BatchRead])
def expired_batches(
    db: Session = Depends(get_db),
    current_admin: Admin = Depends(get_current_active_admin),
):
    return services.expired_batches(db)


@router.get("/logs", response_model=List[schemas.InventoryLogRead])
def list_logs(
    inventory_id: Optional[int] = None,
    operation_type: Optional[models.InventoryOperationEnum] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    limit: int = Query(200, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    current_admin: Admin = Depends(get_current_active_admin),
):
    return services.list_inventory_logs(
        db,
        inventory_id=inventory_id,
        operation_type=operation_type,
        start=start,
        end=end,
        limit=limit,
        offset=offset,
    )


@router.get("/logs/export")
def export_logs(
    inventory_id: Optional[int] = None,
    operation_type: Optional[models.InventoryOperationEnum] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    db: Session = Depends(get_db),
    current_admin: Admin = Depends(get_current_active_admin),
):
    rows = services.list_inventory_logs(
        db,
        inventory_id=inventory_id,
        operation_type=operation_type,
        start=start,
        end=end,
        limit=100000,
    )
    payload = services.inventory_logs_to_csv(rows)
    audit_services.log_event(
        db,
        store_id=current_admin.store_id,
        actor_type="admin",
        actor_id=current_admin.id,
        auditable_type="inventory_log",
        auditable_id="export",
        action="export",
        message=f"Exported {len(rows)} inventory log rows",
        details={"rows": len(rows)},
    )
    db.commit()
    filename = f"inventory_logs_{datetime.utcnow():%Y%m%d%H%M%S}.csv"
    return StreamingResponse(
        iter([payload]),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get("/logs/summary", response_model=List[schemas.OperationSummaryRow])
def operation_summary(
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    db: Session = Depends(get_db),
    current_admin: Admin = Depends(get_current_active_admin),
):
    return services.operation_summary(db, start=start, end=end)


@router.get("/logs/daily", response_model=List[schemas.DailyTransactionRow])
def daily_summary(
    days: int = Query(30, ge=1, le=365),
    db: Session = Depends(get_db),
    current_admin: Admin = Depends(get_current_active_admin),
):
    return services.daily_transaction_summary(db, days=days)


@router.get("/logs/top-products", response_model=List[schemas.ProductActivityRow])
def top_products(
    limit: int = Query(10, ge=1, le=100),
    days: int = Query(30, ge=1, le=365),
    db: Session = Depends(get_db),
    current_admin: Admin = Depends(get_current_active_admin),
):
    return services.top_products_by_activity(db, limit=limit, days=days)


@router.post("/import", response_model=schemas.ImportResult)
async def import_inventories(
    file: UploadFile = File(...),
    update_existing: bool = False,
    unique_key: str = Query("name", pattern="^(name|sku|code|barcode)$"),
    db: Session = Depends(get_db),
    current_admin: Admin = Depends(require_headquarters_admin),
):
    raw = await file.read()
    try:
        content = raw.decode("utf-8-sig")
    except UnicodeDecodeError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="CSV must be UTF-8 encoded")

    try:
        result = services.import_inventories_csv(
            db,
            content=content,
            update_existing=update_existing,
            unique_key=unique_key,
            actor_id=current_admin.id,
        )
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))

    audit_services.log_event(
        db,
        store_id=None,
        actor_type="admin",
        actor_id=current_admin.id,
        auditable_type="inventory",
        auditable_id="import",
        action="import",
        message=f"CSV import {file.filename or ''}".strip(),
        details={
            "valid_count": result.valid_count,
            "update_count": result.update_count,
            "invalid_count": len(result.invalid_records),
        },
    )
    db.commit()
    return result


# ---------------------------------------------------------------------------
# SINGLE ITEM
# ---------------------------------------------------------------------------


@router.get("/{inventory_id}", response_model=schemas.InventoryRead)
def get_inventory(
    inventory_id: int,
    db: Session = Depends(get_db),
    current_admin: Admin = Depends(get_current_active_admin),
):
    return services.get_inventory(db, inventory_id, include_archived=True)


@router.patch("/{inventory_id}", response_model=schemas.InventoryRead)
def update_inventory(
    inventory_id: int,
    payload: schemas.InventoryUpdate,
    db: Session = Depends(get_db),
    current_admin: Admin = Depends(_catalogue_editor),
):
    inventory = services.get_inventory(db, inventory_id, include_archived=True)
    inventory = services.update_inventory(db, inventory=inventory, payload=payload, actor_id=current_admin.id)
    db.commit()
    db.refresh(inventory)
    return inventory


@router.delete("/{inventory_id}", response_model=schemas.InventoryRead)
def delete_inventory(
    inventory_id: int,
    db: Session = Depends(get_db),
    current_admin: Admin = Depends(require_headquarters_admin),
):
    inventory = services.get_inventory(db, inventory_id)
    inventory = services.delete_inventory(db, inventory=inventory, actor_id=current_admin.id)
    db.commit()
    db.refresh(inventory)
    return inventory


@router.post("/{inventory_id}/adjust", response_model=schemas.InventoryLogRead)
def adjust_quantity(
    inventory_id: int,
    payload: schemas.QuantityAdjustment,
    db: Session = Depends(get_db),
    current_admin: Admin = Depends(_catalogue_editor),
):
    inventory = services.get_inventory(db, inventory_id)
    entry = services.adjust_quantity(
        db,
        inventory=inventory,
        delta=payload.delta,
        actor_id=current_admin.id,
        note=payload.note,
        operation_type=payload.operation_type,
    )
    db.commit()
    db.refresh(entry)
    return entry


@router.get("/{inventory_id}/logs", response_model=List[schemas.InventoryLogRead])
def inventory_logs(
    inventory_id: int,
    limit: int = Query(200, ge=1, le=1000),
    db: Session = Depends(get_db),
    current_admin: Admin = Depends(get_current_active_admin),
):
    services.get_inventory(db, inventory_id, include_archived=True)
    return services.list_inventory_logs(db, inventory_id=inventory_id, limit=limit)


@router.post(
    "/{inventory_id}/batches",
    response_model=schemas.BatchRead,
    status_code=status.HTTP_201_CREATED,
)
def add_batch(
    inventory_id: int,
    payload: schemas.BatchCreate,
    db: Session = Depends(get_db),
    current_admin: Admin = Depends(_catalogue_editor),
):
    inventory = services.get_inventory(db, inventory_id)
    batch = services.add_batch(
        db,
        inventory=inventory,
        quantity=payload.quantity,
        expires_on=payload.expires_on,
        lot_code=payload.lot_code,
        actor_id=current_admin.id,
    )
    db.commit()
    db.refresh(batch)
    return batch


@router.post("/{inventory_id}/consume", response_model=schemas.InventoryRead)
def consume(
    inventory_id: int,
    payload: schemas.BatchConsume,
    db: Session = Depends(get_db),
    current_admin: Admin = Depends(_catalogue_editor),
):
    inventory = services.get_inventory(db, inventory_id)
    if not services.consume_batch(
        db,
        inventory=inventory,
        quantity=payload.quantity,
        actor_id=current_admin.id,
        note=payload.note,
    ):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Not enough batch stock to consume the requested quantity.",
        )
    db.commit()
    db.refresh(inventory)
    return inventory
