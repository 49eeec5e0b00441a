from __future__ import annotations

from collections import defaultdict
from datetime import date
from typing import Dict, Iterable, List, Optional, Sequence

from sqlalchemy.orm import Session

from storedb.apps.inventory import models as inventory_models
from storedb.apps.inventory import services as inventory_services
from storedb.apps.stores import models as store_models
from storedb.apps.stores import services as store_services
from storedb.apps.stores.models import StockLevelStatusEnum
from storedb.apps.transfers import models as transfer_models
from storedb.apps.transfers import schemas as transfer_schemas
from storedb.apps.transfers import services as transfer_services

from . import schemas

LIST_LIMIT = 10
TRANSFER_LIMIT = 5


def _batch_row(batch: inventory_models.Batch, today: date) -> schemas.DashboardBatch:
    return schemas.DashboardBatch(
        inventory_id=batch.inventory_id,
        inventory_name=batch.inventory.name if batch.inventory else "",
        lot_code=batch.lot_code,
        quantity=batch.quantity,
        expires_on=batch.expires_on,
        days_until_expiry=batch.days_until_expiry(today),
    )


def _store_rows(db: Session, store_ids: Optional[Sequence[str]]) -> List[store_models.StoreInventory]:
    query = db.query(store_models.StoreInventory)
    if store_ids is not None:
        query = query.filter(store_models.StoreInventory.store_id.in_(list(store_ids)))
    return query.all()


def _transfers(db: Session, *criteria, order_by, limit: int) -> List[transfer_schemas.TransferRead]:
    rows = (
        db.query(transfer_models.InterStoreTransfer)
        .filter(*criteria)
        .order_by(order_by)
        .limit(limit)
        .all()
    )
    return [transfer_schemas.TransferRead.model_validate(t) for t in rows]


def category_distribution(rows: Iterable[store_models.StoreInventory]) -> Dict[str, int]:
    totals: Dict[str, int] = defaultdict(int)
    for row in rows:
        totals[store_services.categorize_by_name(row.inventory.name)] += row.quantity or 0
    return dict(totals)


def store_dashboard(
    db: Session,
    store: store_models.Store,
    *,
    today: Optional[date] = None,
) -> schemas.StoreDashboard:
    today = today or date.today()
    T = transfer_models.InterStoreTransfer
    pending = transfer_models.TransferStatusEnum.PENDING
    rows = _store_rows(db, [store.id])

    low = [r for r in rows if 0 < (r.quantity or 0) <= (r.safety_stock_level or 0)]
    low.sort(key=lambda r: (r.quantity / r.safety_stock_level if r.safety_stock_level else 0.0, r.inventory.name))
    out = sorted((r for r in rows if (r.quantity or 0) == 0), key=lambda r: r.inventory.name)

    held = [r.inventory_id for r in rows if (r.quantity or 0) > 0]
    expiring = inventory_services.expiring_batches(
        db, days=inventory_services.EXPIRING_SOON_DAYS, today=today, inventory_ids=held, limit=LIST_LIMIT
    )

    statistics = schemas.DashboardStatistics(
        total_items=len(rows),
        total_quantity=sum(r.quantity or 0 for r in rows),
        total_value=round(sum(r.inventory_value for r in rows), 2),
        low_stock_items=len(low),
        out_of_stock_items=len(out),
        pending_transfers_in=db.query(T).filter(T.destination_store_id == store.id, T.status == pending).count(),
        pending_transfers_out=db.query(T).filter(T.source_store_id == store.id, T.status == pending).count(),
    )

    return schemas.StoreDashboard(
        statistics=statistics,
        low_stock_items=[store_services.to_store_inventory_read(r) for r in low[:LIST_LIMIT]],
        out_of_stock_items=[store_services.to_store_inventory_read(r) for r in out[:LIST_LIMIT]],
        expiring_batches=[_batch_row(b, today) for b in expiring],
        pending_incoming=_transfers(
            db,
            T.destination_store_id == store.id,
            T.status == pending,
            order_by=T.requested_at.desc(),
            limit=TRANSFER_LIMIT,
        ),
        pending_outgoing=_transfers(
            db,
            T.source_store_id == store.id,
            T.status == pending,
            order_by=T.requested_at.desc(),
            limit=TRANSFER_LIMIT,
        ),
        recent_completed=_transfers(
            db,
            (T.source_store_id == store.id) | (T.destination_store_id == store.id),
            T.status == transfer_models.TransferStatusEnum.COMPLETED,
            order_by=T.completed_at.desc(),
            limit=TRANSFER_LIMIT,
        ),
        category_distribution=category_distribution(rows),
    )


def alerts(
    db: Session,
    *,
    store_ids: Optional[Sequence[str]] = None,
    today: Optional[date] = None,
) -> schemas.StockAlerts:
    """Stock and expiry alerts, for the given stores or (None) every store."""
    today = today or date.today()
    rows = _store_rows(db, store_ids)
    by_status: Dict[StockLevelStatusEnum, List[store_models.StoreInventory]] = defaultdict(list)
    for row in rows:
        by_status[row.stock_level_status].append(row)

    inventory_ids = None if store_ids is None else sorted({r.inventory_id for r in rows})

    def _read(status: StockLevelStatusEnum):
        ordered = sorted(by_status[status], key=lambda r: (r.quantity, r.inventory.name))
        return [store_services.to_store_inventory_read(r) for r in ordered]

    return schemas.StockAlerts(
        low_stock=_read(StockLevelStatusEnum.LOW),
        critical_stock=_read(StockLevelStatusEnum.CRITICAL),
        out_of_stock=_read(StockLevelStatusEnum.OUT_OF_STOCK),
        expired_batches=[
            _batch_row(b, today)
            for b in inventory_services.expired_batches(db, today=today, inventory_ids=inventory_ids)
        ],
        expiring_batches=[
            _batch_row(b, today)
            for b in inventory_services.expiring_batches(db, today=today, inventory_ids=inventory_ids)
        ],
        expiry_risk=inventory_services.expiry_risk_breakdown(db, today=today, inventory_ids=inventory_ids),
    )


def headquarters_overview(db: Session, *, period_days: int = 30) -> schemas.HeadquartersOverview:
    return schemas.HeadquartersOverview(
        stores=store_services.active_stores_stats(db),
        pending=transfer_services.pending_stats(db),
        analytics=transfer_services.transfer_analytics(db, period_days=period_days),
    )
