# backend/storedb/apps/accounts/router_admin.py

from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from storedb.database import get_db
from storedb.security import require_admin_roles, require_headquarters_admin
from storedb.apps.stores import models as store_models
from . import email_auth, models, schemas, services
from .router_public import _client_ip, _user_agent

router = APIRouter(prefix="/admin", tags=["accounts-admin"])

_manager_or_hq = require_admin_roles(models.AdminRole.STORE_MANAGER)


def _get_store_for_admin(db: Session, admin: models.Admin, store_id: str) -> store_models.Store:
    store = db.query(store_models.Store).filter(store_models.Store.id == store_id).first()
    if not store or not admin.can_access_store(store.id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Store not found")
    return store


def _get_store_user_for_admin(db: Session, admin: models.Admin, user_id: str) -> models.StoreUser:
    user = services.get_store_user(db, user_id)
    if not user or not admin.can_manage_store(user.store_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Store user not found")
    return user


# ---------------------------------------------------------------------------
# ADMINS (headquarters only)
# ---------------------------------------------------------------------------


@router.post(
    "/admins",
    response_model=schemas.AdminRead,
    status_code=status.HTTP_201_CREATED,
)
def create_admin(
    payload: schemas.AdminCreate,
    db: Session = Depends(get_db),
    current_admin: models.Admin = Depends(require_headquarters_admin),
):
    try:
        return services.create_admin(db, payload)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))


@router.get("/admins", response_model=List[schemas.AdminRead])
def list_admins(
    store_id: Optional[str] = None,
    db: Session = Depends(get_db),
    current_admin: models.Admin = Depends(require_headquarters_admin),
):
    qs = db.query(models.Admin)
    if store_id:
        qs = qs.filter(models.Admin.store_id == store_id)
    return qs.order_by(models.Admin.email.asc()).all()


# ---------------------------------------------------------------------------
# STORE USERS
# ---------------------------------------------------------------------------


@router.get("/store-users", response_model=List[schemas.StoreUserRead])
def list_store_users(
    store_id: Optional[str] = None,
    include_inactive: bool = False,
    db: Session = Depends(get_db),
    current_admin: models.Admin = Depends(_manager_or_hq),
):
    store_ids = current_admin.accessible_store_ids
    if store_id:
        _get_store_for_admin(db, current_admin, store_id)
        store_ids = [store_id]
    return services.list_store_users(db, store_ids=store_ids, include_inactive=include_inactive)


@router.post(
    "/stores/{store_id}/users",
    response_model=schemas.StoreUserRead,
    status_code=status.HTTP_201_CREATED,
)
def create_store_user(
    store_id: str,
    payload: schemas.StoreUserCreate,
    db: Session = Depends(get_db),
    current_admin: models.Admin = Depends(_manager_or_hq),
):
    store = _get_store_for_admin(db, current_admin, store_id)
    if not current_admin.can_manage_store(store.id):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Cannot manage this store")
    try:
        return services.create_store_user(db, store=store, data=payload)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))


@router.get("/store-users/{user_id}", response_model=schemas.StoreUserRead)
def get_store_user(
    user_id: str,
    db: Session = Depends(get_db),
    current_admin: models.Admin = Depends(_manager_or_hq),
):
    return _get_store_user_for_admin(db, current_admin, user_id)


@router.patch("/store-users/{user_id}", response_model=schemas.StoreUserRead)
def update_store_user(
    user_id: str,
    payload: schemas.StoreUserUpdate,
    db: Session = Depends(get_db),
    current_admin: models.Admin = Depends(_manager_or_hq),
):
    user = _get_store_user_for_admin(db, current_admin, user_id)
    try:
        return services.update_store_user(db, user, payload)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))


@router.delete("/store-users/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
def deactivate_store_user(
    user_id: str,
    db: Session = Depends(get_db),
    current_admin: models.Admin = Depends(_manager_or_hq),
):
    user = _get_store_user_for_admin(db, current_admin, user_id)
    user.is_active = False
    db.commit()
    return None


@router.post("/store-users/{user_id}/unlock", response_model=schemas.StoreUserRead)
def unlock_store_user(
    user_id: str,
    request: Request,
    db: Session = Depends(get_db),
    current_admin: models.Admin = Depends(_manager_or_hq),
):
    user = _get_store_user_for_admin(db, current_admin, user_id)
    return services.unlock_store_user(
        db,
        user,
        admin=current_admin,
        ip=_client_ip(request),
        user_agent=_user_agent(request),
    )


@router.post(
    "/store-users/{user_id}/temp-password",
    response_model=schemas.TempPasswordIssued,
    status_code=status.HTTP_201_CREATED,
)
def issue_temp_password(
    user_id: str,
    request: Request,
    db: Session = Depends(get_db),
    current_admin: models.Admin = Depends(_manager_or_hq),
):
    user = _get_store_user_for_admin(db, current_admin, user_id)
    if not user.is_active:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Store user is inactive")
    record, email_log = email_auth.deliver_temp_password(
        db,
        user=user,
        admin_id=current_admin.id,
        ip=_client_ip(request),
        user_agent=_user_agent(request),
    )
    return schemas.TempPasswordIssued(
        temp_password_id=record.id,
        expires_at=record.expires_at,
        delivery_status=email_log.status.value,
        masked_email=services.mask_email(user.email),
    )


@router.post("/temp-passwords/cleanup", response_model=schemas.TempPasswordCleanupResult)
def cleanup_temp_passwords(
    db: Session = Depends(get_db),
    current_admin: models.Admin = Depends(require_headquarters_admin),
):
    return schemas.TempPasswordCleanupResult(deleted=services.cleanup_expired_temp_passwords(db))
