from __future__ import annotations

from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from storedb.database import get_db
from storedb.security import get_current_active_admin, require_admin_roles
from storedb.apps.accounts.models import Admin, AdminRole
from storedb.apps.inventory import schemas as inventory_schemas

from . import models, schemas, services

router = APIRouter(prefix="/admin", tags=["shipments"])

_stock_handler = require_admin_roles(AdminRole.STORE_MANAGER, AdminRole.PHARMACIST)


# ---------------------------------------------------------------------------
# SHIPMENTS
# ---------------------------------------------------------------------------


@router.get("/shipments", response_model=schemas.ShipmentPage)
def list_shipments(
    status_eq: Optional[models.ShipmentStatusEnum] = None,
    inventory_id: Optional[int] = None,
    start: Optional[date] = Query(None),
    end: Optional[date] = Query(None),
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
    current_admin: Admin = Depends(get_current_active_admin),
):
    return services.list_shipments(
        db,
        status_eq=status_eq,
        inventory_id=inventory_id,
        start=start,
        end=end,
        page=page,
        per_page=per_page,
    )


@router.get("/shipments/by-period", response_model=List[schemas.PeriodTotal])
def shipments_by_period(
    start: date,
    end: date,
    db: Session = Depends(get_db),
    current_admin: Admin = Depends(get_current_active_admin),
):
    return services.shipments_by_period(db, start, end)


@router.post("/shipments", response_model=schemas.ShipmentRead, status_code=status.HTTP_201_CREATED)
def create_shipment(
    payload: schemas.ShipmentCreate,
    db: Session = Depends(get_db),
    current_admin: Admin = Depends(_stock_handler),
):
    shipment = services.create_shipment(db, payload=payload, actor_id=current_admin.id)
    db.commit()
    db.refresh(shipment)
    return shipment


@router.get("/shipments/{shipment_id}", response_model=schemas.ShipmentRead)
def get_shipment(
    shipment_id: int,
    db: Session = Depends(get_db),
    current_admin: Admin = Depends(get_current_active_admin),
):
    return services.get_shipment(db, shipment_id)


@router.post("/shipments/{shipment_id}/status", response_model=schemas.ShipmentRead)
def update_shipment_status(
    shipment_id: int,
    payload: schemas.ShipmentStatusUpdate,
    db: Session = Depends(get_db),
    current_admin: Admin = Depends(_stock_handler),
):
    shipment = services.get_shipment(db, shipment_id, lock=True)
    services.update_shipment_status(db, shipment=shipment, payload=payload, actor_id=current_admin.id)
    db.commit()
    db.refresh(shipment)
    return shipment


@router.post("/shipments/{shipment_id}/cancel", response_model=schemas.ShipmentRead)
def cancel_shipment(
    shipment_id: int,
    payload: schemas.ShipmentCancel,
    db: Session = Depends(get_db),
    current_admin: Admin = Depends(_stock_handler),
):
    shipment = services.get_shipment(db, shipment_id, lock=True)
    services.cancel_shipment(db, shipment=shipment, actor_id=current_admin.id, reason=payload.reason)
    db.commit()
    db.refresh(shipment)
    return shipment


@router.post("/shipments/{shipment_id}/return", response_model=schemas.ShipmentRead)
def return_shipment(
    shipment_id: int,
    payload: schemas.ShipmentReturn,
    db: Session = Depends(get_db),
    current_admin: Admin = Depends(_stock_handler),
):
    shipment = services.get_shipment(db, shipment_id, lock=True)
    services.process_return(db, shipment=shipment, payload=payload, actor_id=current_admin.id)
    db.commit()
    db.refresh(shipment)
    return shipment


# ---------------------------------------------------------------------------
# RECEIPTS
# ---------------------------------------------------------------------------


@router.get("/receipts", response_model=schemas.ReceiptPage)
def list_receipts(
    status_eq: Optional[models.ReceiptStatusEnum] = None,
    inventory_id: Optional[int] = None,
    source: Optional[str] = None,
    start: Optional[date] = Query(None),
    end: Optional[date] = Query(None),
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
    current_admin: Admin = Depends(get_current_active_admin),
):
    return services.list_receipts(
        db,
        status_eq=status_eq,
        inventory_id=inventory_id,
        source=source,
        start=start,
        end=end,
        page=page,
        per_page=per_page,
    )


@router.get("/receipts/by-period", response_model=List[schemas.PeriodTotal])
def receipts_by_period(
    start: date,
    end: date,
    db: Session = Depends(get_db),
    current_admin: Admin = Depends(get_current_active_admin),
):
    return services.receipts_by_period(db, start, end)


@router.post("/receipts", response_model=schemas.ReceiptRead, status_code=status.HTTP_201_CREATED)
def create_receipt(
    payload: schemas.ReceiptCreate,
    db: Session = Depends(get_db),
    current_admin: Admin = Depends(_stock_handler),
):
    receipt = services.create_receipt(db, payload=payload, actor_id=current_admin.id)
    db.commit()
    db.refresh(receipt)
    return receipt


@router.post("/receipts/{receipt_id}/reject", response_model=schemas.ReceiptRead)
def reject_receipt(
    receipt_id: int,
    payload: schemas.ReceiptReject,
    db: Session = Depends(get_db),
    current_admin: Admin = Depends(_stock_handler),
):
    receipt = services.get_receipt(db, receipt_id, lock=True)
    services.reject_receipt(db, receipt=receipt, actor_id=current_admin.id, reason=payload.reason)
    db.commit()
    db.refresh(receipt)
    return receipt


# ---------------------------------------------------------------------------
# STOCK MOVEMENTS
# ---------------------------------------------------------------------------


@router.post("/stock-movements/relocate", response_model=List[inventory_schemas.InventoryLogRead])
def relocate_stock(
    payload: schemas.StockRelocation,
    db: Session = Depends(get_db),
    current_admin: Admin = Depends(_stock_handler),
):
    entries = services.relocate_stock(db, payload=payload, actor_id=current_admin.id)
    db.commit()
    return entries


@router.get("/stock-movements/report", response_model=schemas.MovementReport)
def movement_report(
    start: date,
    end: date,
    sort_by: Optional[schemas.MovementSortField] = None,
    descending: bool = False,
    db: Session = Depends(get_db),
    current_admin: Admin = Depends(get_current_active_admin),
):
    return services.movement_report(db, start=start, end=end, sort_by=sort_by, descending=descending)
