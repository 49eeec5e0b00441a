from __future__ import annotations

from datetime import datetime, timedelta
import csv
import io
import logging
from typing import Iterable, List, Optional, Sequence

from sqlalchemy.orm import Session

from . import models, schemas

logger = logging.getLogger(__name__)

CSV_HEADER = [
    "ID",
    "OccurredAt",
    "StoreID",
    "AuditableType",
    "AuditableID",
    "ActorType",
    "ActorID",
    "Action",
    "Message",
    "IPAddress",
]


def create_audit_log(db: Session, *, data: schemas.AuditLogCreate) -> models.AuditLog:
    entry = models.AuditLog(
        store_id=data.store_id,
        auditable_type=data.auditable_type,
        auditable_id=data.auditable_id,
        actor_type=data.actor_type,
        actor_id=data.actor_id,
        action=data.action,
        message=data.message,
        details=data.details,
        ip_address=data.ip_address,
        user_agent=data.user_agent,
        correlation_id=data.correlation_id,
    )
    if data.occurred_at is not None:
        entry.occurred_at = data.occurred_at
    db.add(entry)
    db.flush()
    return entry


def log_event(
    db: Session,
    *,
    store_id: Optional[str],
    actor_type: Optional[str],
    actor_id: Optional[str],
    auditable_type: Optional[str],
    auditable_id: Optional[str],
    action: str,
    message: str,
    details: Optional[dict] = None,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
    correlation_id: Optional[str] = None,
    critical: bool = False,
) -> Optional[models.AuditLog]:
    """
    Best-effort audit logger.
    - For critical actions (exports, imports, transfer transitions), raise on failure.
    - For non-critical actions, log a warning and continue.
    """
    try:
        return create_audit_log(
            db,
            data=schemas.AuditLogCreate(
                store_id=store_id,
                auditable_type=auditable_type,
                auditable_id=str(auditable_id) if auditable_id is not None else None,
                actor_type=actor_type,
                actor_id=actor_id,
                action=action,
                message=message,
                details=details,
                ip_address=ip_address,
                user_agent=user_agent,
                correlation_id=correlation_id,
            ),
        )
    except Exception:
        logger.warning(
            "Failed to write audit log",
            extra={
                "store_id": store_id,
                "auditable_type": auditable_type,
                "auditable_id": auditable_id,
                "action": action,
                "critical": critical,
            },
        )
        if critical:
            raise
        return None


def list_audit_logs(
    db: Session,
    *,
    store_ids: Optional[Iterable[str]] = None,
    auditable_type: Optional[str] = None,
    auditable_id: Optional[str] = None,
    action: Optional[str] = None,
    actor_id: Optional[str] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    limit: int = 200,
    offset: int = 0,
) -> Sequence[models.AuditLog]:
    """
    `store_ids=None` means no tenant restriction (headquarters view).
    """
    query = db.query(models.AuditLog)
    if store_ids is not None:
        query = query.filter(models.AuditLog.store_id.in_(list(store_ids)))
    if auditable_type:
        query = query.filter(models.AuditLog.auditable_type == auditable_type)
    if auditable_id:
        query = query.filter(models.AuditLog.auditable_id == auditable_id)
    if action:
        query = query.filter(models.AuditLog.action == action)
    if actor_id:
        query = query.filter(models.AuditLog.actor_id == actor_id)
    if start:
        query = query.filter(models.AuditLog.occurred_at >= start)
    if end:
        query = query.filter(models.AuditLog.occurred_at <= end)
    return (
        query.order_by(models.AuditLog.occurred_at.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )


def cleanup_old_logs(
    db: Session,
    *,
    days: int = 90,
    batch_size: int = 1000,
    now: Optional[datetime] = None,
) -> int:
    cutoff = (now or datetime.utcnow()) - timedelta(days=days)
    deleted = 0
    while True:
        ids = [
            row.id
            for row in db.query(models.AuditLog.id)
            .filter(models.AuditLog.occurred_at < cutoff)
            .limit(batch_size)
            .all()
        ]
        if not ids:
            break
        deleted += (
            db.query(models.AuditLog)
            .filter(models.AuditLog.id.in_(ids))
            .delete(synchronize_session=False)
        )
    logger.info("Audit log cleanup finished", extra={"deleted": deleted, "retention_days": days})
    return deleted


def audit_logs_to_csv(rows: Iterable[models.AuditLog]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow(CSV_HEADER)
    for row in rows:
        writer.writerow(
            [
                row.id,
                row.occurred_at.isoformat() if row.occurred_at else "",
                row.store_id or "",
                row.auditable_type or "",
                row.auditable_id or "",
                row.actor_type or "",
                row.actor_id or "",
                row.action,
                row.message,
                row.ip_address or "",
            ]
        )
    return buffer.getvalue()
