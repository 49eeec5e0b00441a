from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Cookie, Depends, HTTPException, Query, Response, status
from sqlalchemy.orm import Session

from storedb.database import get_db
from storedb.security import StoreContext, require_current_password

from . import schemas, services

router = APIRouter(prefix="/stores", tags=["stores"])

RECENT_STORES_MAX_AGE = 60 * 60 * 24 * 30


def _require_manager(context: StoreContext) -> None:
    if not context.user.is_manager:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Store manager role required",
        )


@router.get("/selection", response_model=schemas.StoreSelection)
def store_selection(
    db: Session = Depends(get_db),
    recent_stores: Optional[str] = Cookie(None),
):
    """Active stores grouped by type, plus the caller's recently used stores."""
    return services.store_selection(db, recent_cookie=recent_stores)


@router.post("/{store_slug}/select", response_model=schemas.StoreBrief)
def select_store(
    store_slug: str,
    response: Response,
    db: Session = Depends(get_db),
    recent_stores: Optional[str] = Cookie(None),
):
    store = services.get_store_by_slug(db, store_slug)
    response.set_cookie(
        services.RECENT_STORES_COOKIE,
        services.remember_store(recent_stores, store.slug),
        max_age=RECENT_STORES_MAX_AGE,
        httponly=True,
        samesite="lax",
    )
    return store


@router.get("/{store_slug}/summary", response_model=schemas.StoreSummary)
def store_summary(context: StoreContext = Depends(require_current_password)):
    return services.store_summary(context.store)


@router.get("/{store_slug}/inventories", response_model=schemas.StoreInventoryPage)
def list_store_inventories(
    name_cont: Optional[str] = None,
    category_eq: Optional[str] = None,
    manufacturer_eq: Optional[str] = None,
    stock_level_eq: Optional[str] = None,
    sort: str = "name",
    direction: str = Query("asc", pattern="^(asc|desc)$"),
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=services.MAX_PER_PAGE),
    db: Session = Depends(get_db),
    context: StoreContext = Depends(require_current_password),
):
    return services.list_store_inventories(
        db,
        store=context.store,
        name_cont=name_cont,
        category_eq=category_eq,
        manufacturer_eq=manufacturer_eq,
        stock_level_eq=stock_level_eq,
        sort=sort,
        direction=direction,
        page=page,
        per_page=per_page,
    )


@router.get("/{store_slug}/inventories/{inventory_id}", response_model=schemas.StoreInventoryRead)
def get_store_inventory(
    inventory_id: int,
    db: Session = Depends(get_db),
    context: StoreContext = Depends(require_current_password),
):
    row = services.get_store_inventory(db, store_id=context.store.id, inventory_id=inventory_id)
    return services.to_store_inventory_read(row)


@router.post(
    "/{store_slug}/inventories",
    response_model=schemas.StoreInventoryRead,
    status_code=status.HTTP_201_CREATED,
)
def add_store_inventory(
    payload: schemas.StoreInventoryCreate,
    db: Session = Depends(get_db),
    context: StoreContext = Depends(require_current_password),
):
    _require_manager(context)
    row = services.add_store_inventory(
        db,
        store=context.store,
        payload=payload,
        actor_type="store_user",
        actor_id=context.user.id,
    )
    db.commit()
    db.refresh(row)
    return services.to_store_inventory_read(row)


@router.patch("/{store_slug}/inventories/{inventory_id}", response_model=schemas.StoreInventoryRead)
def update_store_inventory(
    inventory_id: int,
    payload: schemas.StoreInventoryUpdate,
    db: Session = Depends(get_db),
    context: StoreContext = Depends(require_current_password),
):
    _require_manager(context)
    row = services.get_store_inventory(db, store_id=context.store.id, inventory_id=inventory_id)
    row = services.update_store_inventory(
        db,
        row=row,
        payload=payload,
        actor_type="store_user",
        actor_id=context.user.id,
    )
    db.commit()
    db.refresh(row)
    return services.to_store_inventory_read(row)


@router.delete("/{store_slug}/inventories/{inventory_id}", status_code=status.HTTP_204_NO_CONTENT)
def remove_store_inventory(
    inventory_id: int,
    db: Session = Depends(get_db),
    context: StoreContext = Depends(require_current_password),
):
    _require_manager(context)
    row = services.get_store_inventory(db, store_id=context.store.id, inventory_id=inventory_id)
    services.remove_store_inventory(db, row=row, actor_type="store_user", actor_id=context.user.id)
    db.commit()
    return None
