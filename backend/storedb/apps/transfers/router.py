from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, status
from sqlalchemy.orm import Session

from storedb.database import get_db
from storedb.security import StoreContext, require_current_password
from storedb.apps.accounts.rate_limit import RateLimiter
from storedb.apps.stores import services as store_services
from storedb.apps.workflow import TransitionError

from . import models, schemas, services

router = APIRouter(prefix="/stores/{store_slug}/transfers", tags=["transfers"])


def transition_conflict(exc: TransitionError) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_409_CONFLICT,
        detail={"code": exc.code, "errors": exc.detail},
    )


def enforce_transfer_rate_limit(db: Session, principal: str) -> RateLimiter:
    """Refuse with 429 while the requester is over quota. The caller tracks successful requests."""
    limiter = RateLimiter("transfer_request", principal, db=db)
    if not limiter.allowed():
        db.commit()
        retry_after = limiter.time_until_unblock()
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Too many transfer requests. Please try again later.",
            headers={"Retry-After": str(retry_after)} if retry_after else None,
        )
    return limiter


def _store_transfer(db: Session, context: StoreContext, transfer_id: int) -> models.InterStoreTransfer:
    transfer = services.get_transfer(db, transfer_id)
    if context.store.id not in (transfer.source_store_id, transfer.destination_store_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Transfer not found")
    return transfer


@router.get("", response_model=schemas.TransferPage)
def list_transfers(
    direction_eq: Optional[str] = Query(None, pattern="^(outgoing|incoming)$"),
    inventory_name_cont: Optional[str] = None,
    status_eq: Optional[models.TransferStatusEnum] = None,
    priority_eq: Optional[models.TransferPriorityEnum] = None,
    requested_at_gteq: Optional[datetime] = None,
    requested_at_lteq: Optional[datetime] = None,
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
    context: StoreContext = Depends(require_current_password),
):
    return services.list_transfers(
        db,
        store_id=context.store.id,
        direction_eq=direction_eq,
        inventory_name_cont=inventory_name_cont,
        status_eq=status_eq,
        priority_eq=priority_eq,
        requested_at_gteq=requested_at_gteq,
        requested_at_lteq=requested_at_lteq,
        page=page,
        per_page=per_page,
    )


@router.get("/counts", response_model=schemas.TransferCounts)
def transfer_counts(
    db: Session = Depends(get_db),
    context: StoreContext = Depends(require_current_password),
):
    return services.transfer_counts(db, context.store)


@router.get("/stats", response_model=schemas.StoreTransferStats)
def transfer_stats(
    period_days: int = Query(30, ge=1, le=365),
    db: Session = Depends(get_db),
    context: StoreContext = Depends(require_current_password),
):
    return services.store_transfer_stats(db, context.store, period_days=period_days)


@router.get("/suggested-quantity")
def suggested_quantity(
    inventory_id: int,
    db: Session = Depends(get_db),
    context: StoreContext = Depends(require_current_password),
):
    stock = store_services.get_store_inventory(db, store_id=context.store.id, inventory_id=inventory_id)
    return {"inventory_id": inventory_id, "suggested_quantity": services.suggested_quantity(stock)}


@router.post("", response_model=schemas.TransferRead, status_code=status.HTTP_201_CREATED)
def request_transfer(
    payload: schemas.StoreTransferCreate,
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key"),
    db: Session = Depends(get_db),
    context: StoreContext = Depends(require_current_password),
):
    """Request stock from this store to another store (this store is the source)."""
    limiter = enforce_transfer_rate_limit(db, f"store_user:{context.user.id}")
    transfer = services.create_transfer(
        db,
        payload=schemas.TransferCreate(source_store_id=context.store.id, **payload.model_dump()),
        requested_by_type=models.RequesterTypeEnum.STORE_USER,
        requested_by_id=context.user.id,
        idempotency_key=idempotency_key,
    )
    limiter.track()
    db.commit()
    db.refresh(transfer)
    return transfer


@router.get("/{transfer_id}", response_model=schemas.TransferRead)
def get_transfer(
    transfer_id: int,
    db: Session = Depends(get_db),
    context: StoreContext = Depends(require_current_password),
):
    return _store_transfer(db, context, transfer_id)


@router.get("/{transfer_id}/timeline", response_model=List[schemas.TimelineEvent])
def transfer_timeline(
    transfer_id: int,
    db: Session = Depends(get_db),
    context: StoreContext = Depends(require_current_password),
):
    return services.timeline(_store_transfer(db, context, transfer_id))


@router.post("/{transfer_id}/cancel", response_model=schemas.TransferRead)
def cancel_transfer(
    transfer_id: int,
    db: Session = Depends(get_db),
    context: StoreContext = Depends(require_current_password),
):
    transfer = _store_transfer(db, context, transfer_id)
    try:
        services.cancel_transfer(db, transfer=transfer, store_user=context.user)
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
    context: StoreContext = Depends(require_current_password),
):
    transfer = _store_transfer(db, context, transfer_id)
    try:
        services.ship_transfer(db, transfer=transfer, store_user=context.user)
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
    context: StoreContext = Depends(require_current_password),
):
    transfer = _store_transfer(db, context, transfer_id)
    try:
        services.complete_transfer(db, transfer=transfer, store_user=context.user)
    except TransitionError as exc:
        db.rollback()
        raise transition_conflict(exc)
    db.commit()
    db.refresh(transfer)
    return transfer
