from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, status
from sqlalchemy.orm import Session

from storedb.database import get_db
from storedb.security import get_current_active_admin
from storedb.apps.accounts.models import Admin
from storedb.apps.workflow import TransitionError

from . import models, schemas, services
from .router import enforce_transfer_rate_limit, transition_conflict

router = APIRouter(prefix="/admin/transfers", tags=["transfers-admin"])


def _visible_transfer(db: Session, admin: Admin, transfer_id: int) -> models.InterStoreTransfer:
    transfer = services.get_transfer(db, transfer_id)
    if not (
        admin.can_access_store(transfer.source_store_id)
        or admin.can_access_store(transfer.destination_store_id)
    ):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Transfer not found")
    return transfer


@router.get("", response_model=schemas.TransferPage)
def list_transfers(
    store_id: Optional[str] = None,
    direction_eq: Optional[str] = Query(None, pattern="^(outgoing|incoming)$"),
    inventory_name_cont: Optional[str] = None,
    status_eq: Optional[models.TransferStatusEnum] = None,
    priority_eq: Optional[models.TransferPriorityEnum] = None,
    requested_at_gteq: Optional[datetime] = None,
    requested_at_lteq: Optional[datetime] = None,
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
    current_admin: Admin = Depends(get_current_active_admin),
):
    return services.list_transfers(
        db,
        base_query=services.accessible_transfers(db, current_admin),
        store_id=store_id,
        direction_eq=direction_eq,
        inventory_name_cont=inventory_name_cont,
        status_eq=status_eq,
        priority_eq=priority_eq,
        requested_at_gteq=requested_at_gteq,
        requested_at_lteq=requested_at_lteq,
        page=page,
        per_page=per_page,
    )


@router.post("", response_model=schemas.TransferRead, status_code=status.HTTP_201_CREATED)
def create_transfer(
    payload: schemas.TransferCreate,
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key"),
    db: Session = Depends(get_db),
    current_admin: Admin = Depends(get_current_active_admin),
):
    if not current_admin.can_access_store(payload.source_store_id):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Cannot request transfers from this store",
        )
    limiter = enforce_transfer_rate_limit(db, f"admin:{current_admin.id}")
    transfer = services.create_transfer(
        db,
        payload=payload,
        requested_by_type=models.RequesterTypeEnum.ADMIN,
        requested_by_id=current_admin.id,
        idempotency_key=idempotency_key,
    )
    limiter.track()
    db.commit()
    db.refresh(transfer)
    return transfer


@router.get("/analytics", response_model=schemas.TransferAnalytics)
def transfer_analytics(
    period_days: int = Query(30, ge=1, le=365),
    db: Session = Depends(get_db),
    current_admin: Admin = Depends(get_current_active_admin),
):
    return services.transfer_analytics(
        db,
        period_days=period_days,
        store_ids=current_admin.accessible_store_ids,
    )


@router.get("/pending-stats", response_model=schemas.PendingStats)
def pending_stats(
    db: Session = Depends(get_db),
    current_admin: Admin = Depends(get_current_active_admin),
):
    return services.pending_stats(db, store_ids=current_admin.accessible_store_ids)


@router.get("/{transfer_id}", response_model=schemas.TransferRead)
def get_transfer(
    transfer_id: int,
    db: Session = Depends(get_db),
    current_admin: Admin = Depends(get_current_active_admin),
):
    return _visible_transfer(db, current_admin, transfer_id)


@router.get("/{transfer_id}/timeline", response_model=List[schemas.TimelineEvent])
def transfer_timeline(
    transfer_id: int,
    db: Session = Depends(get_db),
    current_admin: Admin = Depends(get_current_active_admin),
):
    return services.timeline(_visible_transfer(db, current_admin, transfer_id))


@router.post("/{transfer_id}/approve", response_model=schemas.TransferRead)
def approve_transfer(
    transfer_id: int,
    db: Session = Depends(get_db),
    current_admin: Admin = Depends(get_current_active_admin),
):
    transfer = _visible_transfer(db, current_admin, transfer_id)
    try:
        services.approve_transfer(db, transfer=transfer, approver=current_admin)
    except TransitionError as exc:
        db.rollback()
        raise transition_conflict(exc)
    db.commit()
    db.refresh(transfer)
    return transfer


@router.post("/{transfer_id}/reject", response_model=schemas.TransferRead)
def reject_transfer(
    transfer_id: int,
    payload: schemas.TransferReject,
    db: Session = Depends(get_db),
    current_admin: Admin = Depends(get_current_active_admin),
):
    transfer = _visible_transfer(db, current_admin, transfer_id)
    try:
        services.reject_transfer(db, transfer=transfer, approver=current_admin, reason=payload.reason)
    except TransitionError as exc:
        db.rollback()
        raise transition_conflict(exc)
    db.commit()
    db.refresh(transfer)
    return transfer


@router.post("/{transfer_id}/cancel", response_model=schemas.TransferRead)
def cancel_transfer(
    transfer_id: int,
    db: Session = Depends(get_db),
    current_admin: Admin = Depends(get_current_active_admin),
):
    transfer = _visible_transfer(db, current_admin, transfer_id)
    try:
        services.cancel_transfer(db, transfer=transfer, admin=current_admin)
    except TransitionError as exc:
        db.rollback()
        raise transition_conflict(exc)
    db.commit()
    db.refresh(transfer)
    return transfer


@router.post("/{transfer_id}/ship", response_model=schemas.TransferRead)
def ship_transfer(
    transfer_id: int,
    db: Session = Depends(get_db),
    current_admin: Admin = Depends(get_current_active_admin),
):
    transfer = _visible_transfer(db, current_admin, transfer_id)
    try:
        services.ship_transfer(db, transfer=transfer, admin=current_admin)
    except TransitionError as exc:
        db.rollback()
        raise transition_conflict(exc)
    db.commit()
    db.refresh(transfer)
    return transfer


@router.post("/{transfer_id}/complete", response_model=schemas.TransferRead)
def complete_transfer(
    transfer_id: int,
    db: Session = Depends(get_db),
    current_admin: Admin = Depends(get_current_active_admin),
):
    transfer = _visible_transfer(db, current_admin, transfer_id)
    try:
        services.complete_transfer(db, transfer=transfer, admin=current_admin)
    except TransitionError as exc:
        db.rollback()
        raise transition_conflict(exc)
    db.commit()
    db.refresh(transfer)
    return transfer
