from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session

from storedb.database import get_db
from storedb.security import StoreContext, get_current_active_admin, require_current_password
from storedb.apps.accounts.models import Admin
from storedb.apps.stores import services as store_services

from . import services

router = APIRouter(tags=["exports"])


def _csv_response(filename: str, content: str) -> StreamingResponse:
    return StreamingResponse(
        iter([content]),
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get("/stores/{store_slug}/exports/inventories.csv")
def export_store_inventories(
    request: Request,
    db: Session = Depends(get_db),
    context: StoreContext = Depends(require_current_password),
):
    filename, content = services.export_store_inventories(
        db,
        store=context.store,
        actor_type="store_user",
        actor_id=context.user.id,
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    )
    db.commit()
    return _csv_response(filename, content)


@router.get("/admin/stores/{store_id}/exports/inventories.csv")
def admin_export_store_inventories(
    store_id: str,
    request: Request,
    db: Session = Depends(get_db),
    current_admin: Admin = Depends(get_current_active_admin),
):
    store = store_services.get_store(db, store_id)
    if not current_admin.can_access_store(store.id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Store not found")
    filename, content = services.export_store_inventories(
        db,
        store=store,
        actor_type="admin",
        actor_id=current_admin.id,
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    )
    db.commit()
    return _csv_response(filename, content)
