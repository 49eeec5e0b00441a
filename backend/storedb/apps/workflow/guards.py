from __future__ import annotations

from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

GuardResult = List[Dict[str, str]]


def _get_value(obj: Any, key: str) -> Any:
    if obj is None:
        return None
    if isinstance(obj, dict):
        return obj.get(key)
    return getattr(obj, key, None)


def _source_stock(db: Session, after_obj: Any):
    from storedb.apps.stores import models as store_models

    source_store_id: Optional[str] = _get_value(after_obj, "source_store_id")
    inventory_id = _get_value(after_obj, "inventory_id")
    if not source_store_id or inventory_id is None:
        return None
    return (
        db.query(store_models.StoreInventory)
        .filter(
            store_models.StoreInventory.store_id == source_store_id,
            store_models.StoreInventory.inventory_id == inventory_id,
        )
        .first()
    )


def guard_transfer_reservation_covered(
    db: Session,
    *,
    before_obj: Any,
    after_obj: Any,
    from_state: str,
    to_state: str,
) -> GuardResult:
    """The source must still hold (and have reserved) the transfer quantity."""
    quantity = _get_value(after_obj, "quantity") or 0
    stock = _source_stock(db, after_obj)
    if stock is None:
        return [{"field": "source_store_id", "reason": "source store no longer stocks this item"}]
    failures = []
    if stock.quantity < quantity:
        failures.append({"field": "quantity", "reason": "insufficient stock at source store"})
    if stock.reserved_quantity < quantity:
        failures.append({"field": "reserved_quantity", "reason": "reservation no longer held at source store"})
    return failures


def guard_transfer_rejection_reason(
    db: Session,
    *,
    before_obj: Any,
    after_obj: Any,
    from_state: str,
    to_state: str,
) -> GuardResult:
    reason = _get_value(after_obj, "rejection_reason")
    if not reason or not str(reason).strip():
        return [{"field": "rejection_reason", "reason": "rejection reason required"}]
    return []


def guard_transfer_approver(
    db: Session,
    *,
    before_obj: Any,
    after_obj: Any,
    from_state: str,
    to_state: str,
) -> GuardResult:
    missing = []
    if not _get_value(after_obj, "approved_by_id"):
        missing.append({"field": "approved_by_id", "reason": "approver required"})
    if not _get_value(after_obj, "approved_at"):
        missing.append({"field": "approved_at", "reason": "approval timestamp required"})
    return missing
