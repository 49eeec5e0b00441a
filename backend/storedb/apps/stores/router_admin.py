from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from storedb.database import get_db
from storedb.security import get_current_active_admin, require_headquarters_admin
from storedb.apps.accounts.models import Admin

from . import models, schemas, services

router = APIRouter(prefix="/admin", tags=["stores-admin"])


def _accessible_store(db: Session, admin: Admin, store_id: str) -> models.Store:
    store = services.get_store(db, store_id)
    if not admin.can_access_store(store.id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Store not found")
    return store


def _manageable_store(db: Session, admin: Admin, store_id: str) -> models.Store:
    store = _accessible_store(db, admin, store_id)
    if not admin.can_manage_store(store.id):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Cannot manage this store")
    return store


@router.get("/stores", response_model=List[schemas.StoreRead])
def list_stores(
    active: Optional[bool] = True,
    store_type: Optional[models.StoreTypeEnum] = None,
    search: Optional[str] = None,
    db: Session = Depends(get_db),
    current_admin: Admin = Depends(get_current_active_admin),
):
    return services.list_stores(
        db,
        active=active,
        store_type=store_type,
        search=search,
        store_ids=current_admin.accessible_store_ids,
    )


@router.get("/stores/stats", response_model=schemas.ActiveStoresStats)
def active_stores_stats(
    db: Session = Depends(get_db),
    current_admin: Admin = Depends(require_headquarters_admin),
):
    return services.active_stores_stats(db)


@router.post("/stores", response_model=schemas.StoreRead, status_code=status.HTTP_201_CREATED)
def create_store(
    payload: schemas.StoreCreate,
    db: Session = Depends(get_db),
    current_admin: Admin = Depends(require_headquarters_admin),
):
    store = services.create_store(db, payload=payload, actor_id=current_admin.id)
    db.commit()
    db.refresh(store)
    return store


@router.get("/stores/{store_id}", response_model=schemas.StoreRead)
def get_store(
    store_id: str,
    db: Session = Depends(get_db),
    current_admin: Admin = Depends(get_current_active_admin),
):
    return _accessible_store(db, current_admin, store_id)


@router.patch("/stores/{store_id}", response_model=schemas.StoreRead)
def update_store(
    store_id: str,
    payload: schemas.StoreUpdate,
    db: Session = Depends(get_db),
    current_admin: Admin = Depends(get_current_active_admin),
):
    store = _manageable_store(db, current_admin, store_id)
    store = services.update_store(db, store=store, payload=payload, actor_id=current_admin.id)
    db.commit()
    db.refresh(store)
    return store


@router.delete("/stores/{store_id}", response_model=schemas.StoreRead)
def deactivate_store(
    store_id: str,
    db: Session = Depends(get_db),
    current_admin: Admin = Depends(require_headquarters_admin),
):
    store = services.get_store(db, store_id)
    store = services.deactivate_store(db, store=store, actor_id=current_admin.id)
    db.commit()
    db.refresh(store)
    return store


@router.get("/stores/{store_id}/summary", response_model=schemas.StoreSummary)
def store_summary(
    store_id: str,
    db: Session = Depends(get_db),
    current_admin: Admin = Depends(get_current_active_admin),
):
    return services.store_summary(_accessible_store(db, current_admin, store_id))


@router.post("/stores/{store_id}/refresh-counters", response_model=schemas.StoreRead)
def refresh_counters(
    store_id: str,
    db: Session = Depends(get_db),
    current_admin: Admin = Depends(get_current_active_admin),
):
    store = services.refresh_store_counters(db, _accessible_store(db, current_admin, store_id))
    db.commit()
    db.refresh(store)
    return store


@router.get("/stores/{store_id}/inventories", response_model=schemas.StoreInventoryPage)
def list_store_inventories(
    store_id: str,
    name_cont: Optional[str] = None,
    category_eq: Optional[str] = None,
    manufacturer_eq: Optional[str] = None,
    stock_level_eq: Optional[str] = None,
    sort: str = "name",
    direction: str = "asc",
    page: int = 1,
    per_page: int = 20,
    db: Session = Depends(get_db),
    current_admin: Admin = Depends(get_current_active_admin),
):
    return services.list_store_inventories(
        db,
        store=_accessible_store(db, current_admin, store_id),
        name_cont=name_cont,
        category_eq=category_eq,
        manufacturer_eq=manufacturer_eq,
        stock_level_eq=stock_level_eq,
        sort=sort,
        direction=direction,
        page=page,
        per_page=per_page,
    )


@router.post(
    "/stores/{store_id}/inventories",
    response_model=schemas.StoreInventoryRead,
    status_code=status.HTTP_201_CREATED,
)
def add_store_inventory(
    store_id: str,
    payload: schemas.StoreInventoryCreate,
    db: Session = Depends(get_db),
    current_admin: Admin = Depends(get_current_active_admin),
):
    store = _manageable_store(db, current_admin, store_id)
    row = services.add_store_inventory(
        db, store=store, payload=payload, actor_type="admin", actor_id=current_admin.id
    )
    db.commit()
    db.refresh(row)
    return services.to_store_inventory_read(row)


@router.patch(
    "/stores/{store_id}/inventories/{inventory_id}",
    response_model=schemas.StoreInventoryRead,
)
def update_store_inventory(
    store_id: str,
    inventory_id: int,
    payload: schemas.StoreInventoryUpdate,
    db: Session = Depends(get_db),
    current_admin: Admin = Depends(get_current_active_admin),
):
    store = _manageable_store(db, current_admin, store_id)
    row = services.get_store_inventory(db, store_id=store.id, inventory_id=inventory_id)
    row = services.update_store_inventory(
        db, row=row, payload=payload, actor_type="admin", actor_id=current_admin.id
    )
    db.commit()
    db.refresh(row)
    return services.to_store_inventory_read(row)


@router.delete(
    "/stores/{store_id}/inventories/{inventory_id}",
    status_code=status.HTTP_204_NO_CONTENT,
)
def remove_store_inventory(
    store_id: str,
    inventory_id: int,
    db: Session = Depends(get_db),
    current_admin: Admin = Depends(get_current_active_admin),
):
    store = _manageable_store(db, current_admin, store_id)
    row = services.get_store_inventory(db, store_id=store.id, inventory_id=inventory_id)
    services.remove_store_inventory(db, row=row, actor_type="admin", actor_id=current_admin.id)
    db.commit()
    return None


@router.get("/inventories/{inventory_id}/stores", response_model=List[schemas.InventoryStoreStock])
def inventory_across_stores(
    inventory_id: int,
    db: Session = Depends(get_db),
    current_admin: Admin = Depends(get_current_active_admin),
):
    rows = services.inventory_across_stores(db, inventory_id)
    store_ids = current_admin.accessible_store_ids
    if store_ids is not None:
        rows = [r for r in rows if r.store.id in store_ids]
    return rows
