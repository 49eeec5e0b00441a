from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from storedb.database import get_read_db
from storedb.security import (
    StoreContext,
    get_current_active_admin,
    require_current_password,
    require_headquarters_admin,
)
from storedb.apps.accounts.models import Admin
from storedb.apps.stores import services as store_services

from . import schemas, services

router = APIRouter(tags=["dashboard"])


@router.get("/stores/{store_slug}/dashboard", response_model=schemas.StoreDashboard)
def store_dashboard(
    db: Session = Depends(get_read_db),
    context: StoreContext = Depends(require_current_password),
):
    return services.store_dashboard(db, context.store)


@router.get("/stores/{store_slug}/dashboard/alerts", response_model=schemas.StockAlerts)
def store_alerts(
    db: Session = Depends(get_read_db),
    context: StoreContext = Depends(require_current_password),
):
    return services.alerts(db, store_ids=[context.store.id])


@router.get("/admin/dashboard/overview", response_model=schemas.HeadquartersOverview)
def headquarters_overview(
    period_days: int = Query(30, ge=1, le=365),
    db: Session = Depends(get_read_db),
    current_admin: Admin = Depends(require_headquarters_admin),
):
    return services.headquarters_overview(db, period_days=period_days)


@router.get("/admin/dashboard/alerts", response_model=schemas.StockAlerts)
def admin_alerts(
    store_id: Optional[str] = None,
    db: Session = Depends(get_read_db),
    current_admin: Admin = Depends(get_current_active_admin),
):
    store_ids = current_admin.accessible_store_ids
    if store_id:
        store_ids = [store_id] if current_admin.can_access_store(store_id) else []
    return services.alerts(db, store_ids=store_ids)


@router.get("/admin/stores/{store_id}/dashboard", response_model=schemas.StoreDashboard)
def admin_store_dashboard(
    store_id: str,
    db: Session = Depends(get_read_db),
    current_admin: Admin = Depends(get_current_active_admin),
):
    store = store_services.get_store(db, store_id)
    if not current_admin.can_access_store(store.id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Store not found")
    return services.store_dashboard(db, store)
