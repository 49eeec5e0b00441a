"""
Inter-store transfer workflow.

Stock for a transfer is reserved on the source store once, when the request is
created, and stays reserved until the transfer is rejected, cancelled or
completed. Every status change goes through `storedb.apps.workflow` so the
guards run and a `transition` audit record is written.
"""

from __future__ import annotations

import logging
import math
from collections import Counter
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Sequence

from fastapi import HTTPException, status
from sqlalchemy import or_
from sqlalchemy.orm import Session

from storedb.apps.accounts import services as account_services
from storedb.apps.accounts.models import Admin, StoreUser
from storedb.apps.audit import services as audit_services
from storedb.apps.inventory import models as inventory_models
from storedb.apps.notifications import service as notification_service
from storedb.apps.stores import models as store_models
from storedb.apps.stores import services as store_services
from storedb.apps.workflow import apply_transition

from . import models, schemas

logger = logging.getLogger(__name__)

ENTITY_TYPE = "inter_store_transfer"
IDEMPOTENCY_SCOPE = "transfers.create"
REJECTION_MARKER = "\n\n[Rejection reason]\n"
SUGGESTED_SHARE = 0.5

TransferStatus = models.TransferStatusEnum


def _utcnow() -> datetime:
    return datetime.utcnow()


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------


def get_transfer(db: Session, transfer_id: int) -> models.InterStoreTransfer:
    transfer = (
        db.query(models.InterStoreTransfer)
        .filter(models.InterStoreTransfer.id == transfer_id)
        .first()
    )
    if not transfer:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Transfer not found")
    return transfer


def _locked_stock(db: Session, *, store_id: str, inventory_id: int) -> Optional[store_models.StoreInventory]:
    return (
        db.query(store_models.StoreInventory)
        .filter(
            store_models.StoreInventory.store_id == store_id,
            store_models.StoreInventory.inventory_id == inventory_id,
        )
        .with_for_update()
        .first()
    )


def _active_store(db: Session, store_id: str, label: str) -> store_models.Store:
    store = db.query(store_models.Store).filter(store_models.Store.id == store_id).first()
    if store is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"{label} store not found")
    if not store.is_active:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"{label} store is inactive")
    return store


def _refresh_counters(db: Session, transfer: models.InterStoreTransfer) -> None:
    for store in (transfer.source_store, transfer.destination_store):
        if store is not None:
            store_services.refresh_store_counters(db, store)


# ---------------------------------------------------------------------------
# Authorisation
# ---------------------------------------------------------------------------


def can_approve(admin: Admin, transfer: models.InterStoreTransfer) -> bool:
    if not admin.can_approve_transfers:
        return False
    if admin.is_headquarters_admin:
        return True
    return admin.can_manage_store(transfer.destination_store_id)


def can_cancel(
    transfer: models.InterStoreTransfer,
    *,
    admin: Optional[Admin] = None,
    store_user: Optional[StoreUser] = None,
) -> bool:
    if admin is not None:
        if admin.is_headquarters_admin:
            return True
        if (
            transfer.requested_by_type == models.RequesterTypeEnum.ADMIN
            and transfer.requested_by_id == admin.id
        ):
            return True
        return admin.can_manage_store(transfer.source_store_id)
    if store_user is not None:
        if (
            transfer.requested_by_type == models.RequesterTypeEnum.STORE_USER
            and transfer.requested_by_id == store_user.id
        ):
            return True
        return store_user.is_manager and store_user.store_id == transfer.source_store_id
    return False


def can_ship(
    transfer: models.InterStoreTransfer,
    *,
    admin: Optional[Admin] = None,
    store_user: Optional[StoreUser] = None,
) -> bool:
    if admin is not None:
        return admin.can_manage_store(transfer.source_store_id)
    if store_user is not None:
        return store_user.is_manager and store_user.store_id == transfer.source_store_id
    return False


def can_receive(
    transfer: models.InterStoreTransfer,
    *,
    admin: Optional[Admin] = None,
    store_user: Optional[StoreUser] = None,
) -> bool:
    if admin is not None:
        return admin.can_manage_store(transfer.destination_store_id)
    if store_user is not None:
        return store_user.is_manager and store_user.store_id == transfer.destination_store_id
    return False


def _forbidden(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=detail)


def accessible_transfers(db: Session, admin: Admin):
    query = db.query(models.InterStoreTransfer)
    store_ids = admin.accessible_store_ids
    if store_ids is None:
        return query
    if not store_ids:
        return query.filter(models.InterStoreTransfer.id.is_(None))
    return query.filter(
        or_(
            models.InterStoreTransfer.source_store_id.in_(store_ids),
            models.InterStoreTransfer.destination_store_id.in_(store_ids),
        )
    )


# ---------------------------------------------------------------------------
# Create
# ---------------------------------------------------------------------------


def create_transfer(
    db: Session,
    *,
    payload: schemas.TransferCreate,
    requested_by_type: models.RequesterTypeEnum,
    requested_by_id: str,
    idempotency_key: Optional[str] = None,
) -> models.InterStoreTransfer:
    reason = (payload.reason or "").strip()
    if not reason:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="A transfer reason is required.")

    idem = None
    if idempotency_key:
        try:
            idem = account_services.register_idempotency_key(
                db,
                scope=f"{IDEMPOTENCY_SCOPE}:{requested_by_id}",
                key=idempotency_key,
                payload=payload.model_dump(mode="json"),
            )
        except account_services.IdempotencyError as exc:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
        if idem.resource_id:
            return get_transfer(db, int(idem.resource_id))

    if payload.source_store_id == payload.destination_store_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Source and destination stores must differ.",
        )
    source = _active_store(db, payload.source_store_id, "Source")
    destination = _active_store(db, payload.destination_store_id, "Destination")

    inventory = (
        db.query(inventory_models.Inventory)
        .filter(
            inventory_models.Inventory.id == payload.inventory_id,
            inventory_models.Inventory.status == inventory_models.InventoryStatusEnum.ACTIVE,
        )
        .first()
    )
    if inventory is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Inventory item not found")

    stock = _locked_stock(db, store_id=source.id, inventory_id=inventory.id)
    if stock is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Source store does not stock this item.",
        )
    if stock.available_quantity < payload.quantity:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Insufficient available stock at source (available {stock.available_quantity}).",
        )

    stock.reserved_quantity = (stock.reserved_quantity or 0) + payload.quantity
    now = _utcnow()
    transfer = models.InterStoreTransfer(
        source_store_id=source.id,
        destination_store_id=destination.id,
        inventory_id=inventory.id,
        quantity=payload.quantity,
        priority=payload.priority,
        reason=reason,
        notes=payload.notes,
        requested_delivery_date=payload.requested_delivery_date,
        requested_by_type=requested_by_type,
        requested_by_id=requested_by_id,
        status=TransferStatus.PENDING,
        requested_at=now,
    )
    db.add(transfer)
    db.flush()
    db.refresh(transfer)

    if idem is not None:
        idem.resource_id = str(transfer.id)

    _refresh_counters(db, transfer)
    audit_services.log_event(
        db,
        store_id=source.id,
        actor_type=requested_by_type.value,
        actor_id=requested_by_id,
        auditable_type=ENTITY_TYPE,
        auditable_id=transfer.id,
        action="create",
        message=f"Transfer requested: {transfer.transfer_summary}",
        details={
            "destination_store_id": destination.id,
            "inventory_id": inventory.id,
            "quantity": transfer.quantity,
            "priority": transfer.priority.value,
        },
    )
    logger.info(
        "Transfer requested",
        extra={"transfer_id": transfer.id, "source": source.code, "destination": destination.code},
    )
    return transfer


# ---------------------------------------------------------------------------
# Transitions
# ---------------------------------------------------------------------------


def _snapshot(transfer: models.InterStoreTransfer) -> Dict[str, object]:
    return {
        "source_store_id": transfer.source_store_id,
        "destination_store_id": transfer.destination_store_id,
        "inventory_id": transfer.inventory_id,
        "quantity": transfer.quantity,
    }


def _transition(
    db: Session,
    *,
    transfer: models.InterStoreTransfer,
    to_state: TransferStatus,
    actor_type: str,
    actor_id: Optional[str],
    extra: Optional[Dict[str, object]] = None,
) -> None:
    after = _snapshot(transfer)
    after.update(extra or {})
    apply_transition(
        db,
        actor_user_id=actor_id,
        entity_type=ENTITY_TYPE,
        entity_id=str(transfer.id),
        from_state=transfer.status.value,
        to_state=to_state.value,
        before_obj=_snapshot(transfer),
        after_obj=after,
        actor_type=actor_type,
    )


def _release_reservation(db: Session, transfer: models.InterStoreTransfer) -> int:
    stock = _locked_stock(db, store_id=transfer.source_store_id, inventory_id=transfer.inventory_id)
    if stock is None:
        return 0
    released = min(transfer.quantity, stock.reserved_quantity or 0)
    stock.reserved_quantity = (stock.reserved_quantity or 0) - released
    return released


def _requester(db: Session, transfer: models.InterStoreTransfer):
    if transfer.requested_by_type == models.RequesterTypeEnum.STORE_USER:
        return db.get(StoreUser, transfer.requested_by_id)
    return db.get(Admin, transfer.requested_by_id)


def notify_requester(db: Session, transfer: models.InterStoreTransfer, note: str = "") -> None:
    """Tell whoever asked for the transfer that it was decided. Delivery problems never block the decision."""
    requester = _requester(db, transfer)
    if requester is None or not requester.email:
        return
    decision = transfer.status.value.lower()
    notification_service.send_email(
        "transfer_update",
        requester.email,
        f"Transfer #{transfer.id} {decision}",
        {
            "transfer_id": transfer.id,
            "summary": transfer.transfer_summary,
            "decision": decision,
            "note": note,
        },
        correlation_id=f"transfer-{transfer.id}",
        store_id=transfer.destination_store_id,
        transfer_id=transfer.id,
        db=db,
    )


def approve_transfer(
    db: Session,
    *,
    transfer: models.InterStoreTransfer,
    approver: Admin,
) -> models.InterStoreTransfer:
    if not can_approve(approver, transfer):
        raise _forbidden("Not allowed to approve this transfer")
    now = _utcnow()
    _transition(
        db,
        transfer=transfer,
        to_state=TransferStatus.APPROVED,
        actor_type="admin",
        actor_id=approver.id,
        extra={"approved_by_id": approver.id, "approved_at": now.isoformat()},
    )
    transfer.status = TransferStatus.APPROVED
    transfer.approved_by_id = approver.id
    transfer.approved_at = now
    db.flush()
    _refresh_counters(db, transfer)
    notify_requester(db, transfer)
    return transfer


def reject_transfer(
    db: Session,
    *,
    transfer: models.InterStoreTransfer,
    approver: Admin,
    reason: str,
) -> models.InterStoreTransfer:
    if not can_approve(approver, transfer):
        raise _forbidden("Not allowed to reject this transfer")
    reason = (reason or "").strip()
    if not reason:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Rejection reason is required.")

    now = _utcnow()
    _transition(
        db,
        transfer=transfer,
        to_state=TransferStatus.REJECTED,
        actor_type="admin",
        actor_id=approver.id,
        extra={
            "approved_by_id": approver.id,
            "approved_at": now.isoformat(),
            "rejection_reason": reason,
        },
    )
    released = _release_reservation(db, transfer)
    transfer.status = TransferStatus.REJECTED
    transfer.approved_by_id = approver.id
    transfer.approved_at = now
    transfer.reason = f"{transfer.reason}{REJECTION_MARKER}{reason}"
    db.flush()
    _refresh_counters(db, transfer)
    notify_requester(db, transfer, note=f"Reason: {reason}")
    logger.info("Transfer rejected", extra={"transfer_id": transfer.id, "released": released})
    return transfer


def cancel_transfer(
    db: Session,
    *,
    transfer: models.InterStoreTransfer,
    admin: Optional[Admin] = None,
    store_user: Optional[StoreUser] = None,
) -> models.InterStoreTransfer:
    if not can_cancel(transfer, admin=admin, store_user=store_user):
        raise _forbidden("Not allowed to cancel this transfer")
    actor_type = "admin" if admin is not None else "store_user"
    actor_id = admin.id if admin is not None else store_user.id

    _transition(
        db,
        transfer=transfer,
        to_state=TransferStatus.CANCELLED,
        actor_type=actor_type,
        actor_id=actor_id,
    )
    _release_reservation(db, transfer)
    transfer.status = TransferStatus.CANCELLED
    transfer.cancelled_at = _utcnow()
    db.flush()
    _refresh_counters(db, transfer)
    return transfer


def ship_transfer(
    db: Session,
    *,
    transfer: models.InterStoreTransfer,
    admin: Optional[Admin] = None,
    store_user: Optional[StoreUser] = None,
) -> models.InterStoreTransfer:
    if not can_ship(transfer, admin=admin, store_user=store_user):
        raise _forbidden("Only the source store can ship this transfer")
    actor_type = "admin" if admin is not None else "store_user"
    actor_id = admin.id if admin is not None else store_user.id
    now = _utcnow()

    _transition(
        db,
        transfer=transfer,
        to_state=TransferStatus.IN_TRANSIT,
        actor_type=actor_type,
        actor_id=actor_id,
        extra={"shipped_at": now.isoformat()},
    )
    transfer.status = TransferStatus.IN_TRANSIT
    transfer.shipped_at = now
    db.flush()
    return transfer


def complete_transfer(
    db: Session,
    *,
    transfer: models.InterStoreTransfer,
    admin: Optional[Admin] = None,
    store_user: Optional[StoreUser] = None,
) -> models.InterStoreTransfer:
    if not can_receive(transfer, admin=admin, store_user=store_user):
        raise _forbidden("Only the destination store can complete this transfer")
    actor_type = "admin" if admin is not None else "store_user"
    actor_id = admin.id if admin is not None else store_user.id
    now = _utcnow()
    qty = transfer.quantity
    name = transfer.inventory.name if transfer.inventory else str(transfer.inventory_id)

    _transition(
        db,
        transfer=transfer,
        to_state=TransferStatus.COMPLETED,
        actor_type=actor_type,
        actor_id=actor_id,
        extra={
            "completed_at": now.isoformat(),
            "source_note": f"{inventory_models.InventoryOperationEnum.SHIP.value}: {name} × {qty} "
            f"to {transfer.destination_store.code if transfer.destination_store else transfer.destination_store_id}",
            "destination_note": f"{inventory_models.InventoryOperationEnum.RECEIVE.value}: {name} × {qty} "
            f"from {transfer.source_store.code if transfer.source_store else transfer.source_store_id}",
        },
    )

    source = _locked_stock(db, store_id=transfer.source_store_id, inventory_id=transfer.inventory_id)
    source.quantity -= qty
    source.reserved_quantity -= qty
    source.last_updated_at = now

    destination = _locked_stock(db, store_id=transfer.destination_store_id, inventory_id=transfer.inventory_id)
    if destination is None:
        destination = store_models.StoreInventory(
            store_id=transfer.destination_store_id,
            inventory_id=transfer.inventory_id,
            quantity=0,
            reserved_quantity=0,
            safety_stock_level=store_models.StoreInventory.DEFAULT_SAFETY_STOCK_LEVEL,
        )
        db.add(destination)
    destination.quantity = (destination.quantity or 0) + qty
    destination.last_updated_at = now

    transfer.status = TransferStatus.COMPLETED
    transfer.completed_at = now
    db.flush()
    _refresh_counters(db, transfer)
    logger.info("Transfer completed", extra={"transfer_id": transfer.id, "quantity": qty})
    return transfer


# ---------------------------------------------------------------------------
# Listing and views
# ---------------------------------------------------------------------------


def list_transfers(
    db: Session,
    *,
    base_query=None,
    store_id: Optional[str] = None,
    direction_eq: Optional[str] = None,
    inventory_name_cont: Optional[str] = None,
    status_eq: Optional[TransferStatus] = None,
    priority_eq: Optional[models.TransferPriorityEnum] = None,
    requested_at_gteq: Optional[datetime] = None,
    requested_at_lteq: Optional[datetime] = None,
    page: int = 1,
    per_page: int = 20,
) -> schemas.TransferPage:
    query = base_query if base_query is not None else db.query(models.InterStoreTransfer)
    T = models.InterStoreTransfer

    if store_id:
        if direction_eq == "outgoing":
            query = query.filter(T.source_store_id == store_id)
        elif direction_eq == "incoming":
            query = query.filter(T.destination_store_id == store_id)
        else:
            query = query.filter(or_(T.source_store_id == store_id, T.destination_store_id == store_id))
    if inventory_name_cont:
        query = query.join(inventory_models.Inventory, inventory_models.Inventory.id == T.inventory_id).filter(
            inventory_models.Inventory.name.ilike(f"%{inventory_name_cont.strip()}%")
        )
    if status_eq is not None:
        query = query.filter(T.status == status_eq)
    if priority_eq is not None:
        query = query.filter(T.priority == priority_eq)
    if requested_at_gteq:
        query = query.filter(T.requested_at >= requested_at_gteq)
    if requested_at_lteq:
        query = query.filter(T.requested_at <= requested_at_lteq)

    page = max(page, 1)
    per_page = min(max(per_page, 1), 100)
    total = query.count()
    rows = (
        query.order_by(T.requested_at.desc(), T.id.desc())
        .offset((page - 1) * per_page)
        .limit(per_page)
        .all()
    )
    return schemas.TransferPage(
        items=[schemas.TransferRead.model_validate(r) for r in rows],
        total=total,
        page=page,
        per_page=per_page,
    )


def transfer_counts(db: Session, store: store_models.Store) -> schemas.TransferCounts:
    T = models.InterStoreTransfer
    touching = db.query(T).filter(or_(T.source_store_id == store.id, T.destination_store_id == store.id))
    return schemas.TransferCounts(
        all=touching.count(),
        outgoing=db.query(T).filter(T.source_store_id == store.id).count(),
        incoming=db.query(T).filter(T.destination_store_id == store.id).count(),
        pending=touching.filter(T.status == TransferStatus.PENDING).count(),
        in_transit=touching.filter(T.status == TransferStatus.IN_TRANSIT).count(),
        completed=touching.filter(T.status == TransferStatus.COMPLETED).count(),
    )


def timeline(transfer: models.InterStoreTransfer) -> List[schemas.TimelineEvent]:
    events: List[schemas.TimelineEvent] = [
        schemas.TimelineEvent(
            event="requested",
            at=transfer.requested_at,
            actor_id=transfer.requested_by_id,
            description=f"Requested {transfer.quantity} unit(s)",
        )
    ]
    if transfer.approved_at:
        rejected = transfer.status == TransferStatus.REJECTED
        events.append(
            schemas.TimelineEvent(
                event="rejected" if rejected else "approved",
                at=transfer.approved_at,
                actor_id=transfer.approved_by_id,
                description="Request rejected" if rejected else "Request approved",
            )
        )
    if transfer.shipped_at:
        events.append(schemas.TimelineEvent(event="shipped", at=transfer.shipped_at, description="Shipped from source"))
    if transfer.completed_at:
        events.append(
            schemas.TimelineEvent(event="completed", at=transfer.completed_at, description="Received at destination")
        )
    if transfer.cancelled_at:
        events.append(schemas.TimelineEvent(event="cancelled", at=transfer.cancelled_at, description="Cancelled"))
    return sorted(events, key=lambda e: e.at)


def _hours(delta: timedelta) -> float:
    return delta.total_seconds() / 3600.0


def store_transfer_stats(
    db: Session,
    store: store_models.Store,
    *,
    period_days: int = 30,
    now: Optional[datetime] = None,
) -> schemas.StoreTransferStats:
    T = models.InterStoreTransfer
    since = (now or _utcnow()) - timedelta(days=period_days)
    recent = db.query(T).filter(T.requested_at >= since)
    outgoing = recent.filter(T.source_store_id == store.id)
    incoming = recent.filter(T.destination_store_id == store.id)

    completed = (
        recent.filter(
            or_(T.source_store_id == store.id, T.destination_store_id == store.id),
            T.status == TransferStatus.COMPLETED,
        ).all()
    )
    durations = [_hours(t.processing_time) for t in completed if t.processing_time is not None]

    return schemas.StoreTransferStats(
        period_days=period_days,
        outgoing_count=outgoing.count(),
        incoming_count=incoming.count(),
        outgoing_completed=outgoing.filter(T.status == TransferStatus.COMPLETED).count(),
        incoming_completed=incoming.filter(T.status == TransferStatus.COMPLETED).count(),
        pending_approvals=db.query(T)
        .filter(T.destination_store_id == store.id, T.status == TransferStatus.PENDING)
        .count(),
        average_processing_hours=round(sum(durations) / len(durations), 2) if durations else None,
    )


def _scoped(query, store_ids: Optional[Sequence[str]]):
    if store_ids is None:
        return query
    T = models.InterStoreTransfer
    return query.filter(or_(T.source_store_id.in_(list(store_ids)), T.destination_store_id.in_(list(store_ids))))


def transfer_analytics(
    db: Session,
    *,
    period_days: int = 30,
    store_ids: Optional[Sequence[str]] = None,
    now: Optional[datetime] = None,
    top_limit: int = 5,
) -> schemas.TransferAnalytics:
    T = models.InterStoreTransfer
    since = (now or _utcnow()) - timedelta(days=period_days)
    rows = _scoped(db.query(T), store_ids).filter(T.requested_at >= since).all()

    total = len(rows)
    by_status = Counter(t.status.value for t in rows)
    by_priority = Counter(t.priority.value for t in rows)
    approved = by_status.get(TransferStatus.APPROVED.value, 0) + by_status.get(TransferStatus.COMPLETED.value, 0)

    items: Dict[int, List[int]] = {}
    names: Dict[int, str] = {}
    for t in rows:
        bucket = items.setdefault(t.inventory_id, [0, 0])
        bucket[0] += 1
        bucket[1] += t.quantity
        names[t.inventory_id] = t.inventory.name if t.inventory else str(t.inventory_id)
    top = sorted(items.items(), key=lambda kv: (-kv[1][0], -kv[1][1], names[kv[0]]))[:top_limit]

    return schemas.TransferAnalytics(
        period_days=period_days,
        total_requests=total,
        approval_rate=round(approved / total * 100, 2) if total else 0.0,
        average_quantity=round(sum(t.quantity for t in rows) / total, 2) if total else 0.0,
        by_priority=dict(by_priority),
        by_status=dict(by_status),
        top_requested_items=[
            schemas.RequestedItem(
                inventory_id=inventory_id,
                name=names[inventory_id],
                request_count=count,
                total_quantity=quantity,
            )
            for inventory_id, (count, quantity) in top
        ],
    )


def pending_stats(
    db: Session,
    *,
    store_ids: Optional[Sequence[str]] = None,
    now: Optional[datetime] = None,
) -> schemas.PendingStats:
    T = models.InterStoreTransfer
    now = now or _utcnow()
    pending = _scoped(db.query(T), store_ids).filter(T.status == TransferStatus.PENDING).all()
    waits = [_hours(now - t.requested_at) for t in pending]
    return schemas.PendingStats(
        pending_count=len(pending),
        urgent_count=sum(1 for t in pending if t.priority == models.TransferPriorityEnum.URGENT),
        emergency_count=sum(1 for t in pending if t.priority == models.TransferPriorityEnum.EMERGENCY),
        average_waiting_hours=round(sum(waits) / len(waits), 2) if waits else 0.0,
    )


def suggested_quantity(stock: store_models.StoreInventory) -> int:
    """Half of the stock above the safety level, rounded up."""
    surplus = stock.available_quantity - (stock.safety_stock_level or 0)
    if surplus <= 0:
        return 0
    return int(math.ceil(surplus * SUGGESTED_SHARE))

