from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy import func
from sqlalchemy.orm import Query as SAQuery, Session

from storedb.security import require_admin_roles
from storedb.apps.accounts.models import Admin, AdminRole
from storedb.database import get_read_db

from . import models, schemas


router = APIRouter(prefix="/admin/notifications", tags=["notifications"])


def _apply_filters(
    qs: SAQuery,
    *,
    store_ids: Optional[List[str]],
    kind: Optional[models.NotificationKind] = None,
    status: Optional[models.EmailStatus] = None,
    template_key: Optional[str] = None,
    transfer_id: Optional[int] = None,
    recipient: Optional[str] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
) -> SAQuery:
    log = models.EmailLog
    conditions = []
    if store_ids is not None:
        conditions.append(log.store_id.in_(store_ids))
    if kind:
        conditions.append(log.kind == kind)
    if status:
        conditions.append(log.status == status)
    if template_key:
        conditions.append(log.template_key == template_key)
    if transfer_id is not None:
        conditions.append(log.transfer_id == transfer_id)
    if recipient:
        conditions.append(log.recipient.ilike(f"%{recipient}%"))
    if start:
        conditions.append(log.created_at >= start)
    if end:
        conditions.append(log.created_at <= end)
    return qs.filter(*conditions) if conditions else qs


@router.get("/email-logs", response_model=List[schemas.EmailLogRead])
def list_email_logs(
    kind: Optional[models.NotificationKind] = None,
    status: Optional[models.EmailStatus] = None,
    template_key: Optional[str] = None,
    transfer_id: Optional[int] = None,
    recipient: Optional[str] = None,
    start: Optional[datetime] = Query(None),
    end: Optional[datetime] = Query(None),
    limit: int = Query(200, ge=1, le=1000),
    db: Session = Depends(get_read_db),
    current_admin: Admin = Depends(require_admin_roles(AdminRole.STORE_MANAGER)),
):
    """Delivery attempts, newest first. Store managers only see their own store."""
    qs = _apply_filters(
        db.query(models.EmailLog),
        store_ids=current_admin.accessible_store_ids,
        kind=kind,
        status=status,
        template_key=template_key,
        transfer_id=transfer_id,
        recipient=recipient,
        start=start,
        end=end,
    )
    return qs.order_by(models.EmailLog.created_at.desc()).limit(limit).all()


@router.get("/email-logs/summary", response_model=List[schemas.EmailLogSummary])
def email_log_summary(
    start: Optional[datetime] = Query(None),
    end: Optional[datetime] = Query(None),
    db: Session = Depends(get_read_db),
    current_admin: Admin = Depends(require_admin_roles(AdminRole.STORE_MANAGER)),
):
    log = models.EmailLog
    qs = _apply_filters(
        db.query(log.kind, log.status, func.count(log.id)),
        store_ids=current_admin.accessible_store_ids,
        start=start,
        end=end,
    )
    counts: dict = {}
    for kind, status, total in qs.group_by(log.kind, log.status).all():
        counts.setdefault(kind, {})[status] = total

    rows = []
    for kind in sorted(counts, key=lambda k: k.value):
        by_status = counts[kind]
        rows.append(
            schemas.EmailLogSummary(
                kind=kind,
                total=sum(by_status.values()),
                sent=by_status.get(models.EmailStatus.SENT, 0),
                failed=by_status.get(models.EmailStatus.FAILED, 0),
                skipped=by_status.get(models.EmailStatus.SKIPPED_NO_PROVIDER, 0),
            )
        )
    return rows
