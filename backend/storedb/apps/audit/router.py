from __future__ import annotations

from datetime import datetime, timedelta
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session

from storedb.security import require_admin_roles, require_headquarters_admin
from storedb.apps.accounts.models import Admin, AdminRole
from storedb.database import get_db

from . import schemas, services


router = APIRouter(prefix="/admin/audit-logs", tags=["audit"])

_auditor = require_admin_roles(AdminRole.STORE_MANAGER, AdminRole.PHARMACIST)


@router.get("", response_model=List[schemas.AuditLogRead])
def list_audit_logs(
    store_id: Optional[str] = None,
    auditable_type: Optional[str] = None,
    auditable_id: Optional[str] = None,
    action: Optional[str] = None,
    actor_id: Optional[str] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    limit: int = Query(200, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    current_admin: Admin = Depends(_auditor),
):
    store_ids = current_admin.accessible_store_ids
    if store_id:
        store_ids = [store_id] if current_admin.can_access_store(store_id) else []
    return services.list_audit_logs(
        db,
        store_ids=store_ids,
        auditable_type=auditable_type,
        auditable_id=auditable_id,
        action=action,
        actor_id=actor_id,
        start=start,
        end=end,
        limit=limit,
        offset=offset,
    )


@router.get("/export")
def export_audit_logs(
    auditable_type: Optional[str] = None,
    action: Optional[str] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    db: Session = Depends(get_db),
    current_admin: Admin = Depends(_auditor),
):
    rows = services.list_audit_logs(
        db,
        store_ids=current_admin.accessible_store_ids,
        auditable_type=auditable_type,
        action=action,
        start=start,
        end=end,
        limit=100000,
    )
    payload = services.audit_logs_to_csv(rows)
    services.log_event(
        db,
        store_id=current_admin.store_id,
        actor_type="admin",
        actor_id=current_admin.id,
        auditable_type="audit_log",
        auditable_id="export",
        action="export",
        message=f"Exported {len(rows)} audit log rows",
        details={"rows": len(rows)},
        critical=True,
    )
    db.commit()
    filename = f"audit_logs_{datetime.utcnow():%Y%m%d%H%M%S}.csv"
    return StreamingResponse(
        iter([payload]),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.post("/cleanup", response_model=schemas.AuditCleanupResult)
def cleanup_audit_logs(
    days: int = Query(90, ge=1),
    db: Session = Depends(get_db),
    current_admin: Admin = Depends(require_headquarters_admin),
):
    now = datetime.utcnow()
    deleted = services.cleanup_old_logs(db, days=days, now=now)
    db.commit()
    return schemas.AuditCleanupResult(deleted=deleted, cutoff=now - timedelta(days=days))
