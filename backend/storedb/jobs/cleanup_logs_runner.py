"""Retention cleanup for inventory and audit logs.

Bulk deletes bypass the ORM, so the append-only guard on inventory logs does
not fire here; this runner is the only path that removes log rows.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from storedb.database import WriteSessionLocal
from storedb.apps.audit import services as audit_services
from storedb.apps.inventory import models as inventory_models

logger = logging.getLogger(__name__)


def delete_inventory_logs_before(db: Session, cutoff: datetime, *, batch_size: int = 1000) -> int:
    deleted = 0
    while True:
        ids = [
            row.id
            for row in db.query(inventory_models.InventoryLog.id)
            .filter(inventory_models.InventoryLog.created_at < cutoff)
            .limit(batch_size)
            .all()
        ]
        if not ids:
            break
        deleted += (
            db.query(inventory_models.InventoryLog)
            .filter(inventory_models.InventoryLog.id.in_(ids))
            .delete(synchronize_session=False)
        )
        db.commit()
    return deleted


def run(retention_days: int = 90, batch_size: int = 1000, now: Optional[datetime] = None) -> dict:
    now = now or datetime.utcnow()
    cutoff = now - timedelta(days=retention_days)
    db = WriteSessionLocal()
    try:
        inventory_deleted = delete_inventory_logs_before(db, cutoff, batch_size=batch_size)
        audit_deleted = audit_services.cleanup_old_logs(db, days=retention_days, batch_size=batch_size, now=now)
        db.commit()
        summary = {
            "cutoff": cutoff.isoformat(),
            "inventory_logs_deleted": inventory_deleted,
            "audit_logs_deleted": audit_deleted,
        }
        logger.info("Log cleanup finished", extra=summary)
        return summary
    finally:
        db.close()


if __name__ == "__main__":
    result = run()
    print("Log cleanup runner completed:", result)
