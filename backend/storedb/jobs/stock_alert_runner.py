"""Low / out-of-stock alert runner.

Safe to run from cron; emails go out only when `enable_email` is set.
"""

from __future__ import annotations

import logging
from datetime import date
from typing import List, Optional, Sequence

from sqlalchemy.orm import Session

from storedb.database import WriteSessionLocal
from storedb.apps.accounts import models as account_models
from storedb.apps.inventory import services as inventory_services
from storedb.apps.notifications import models as notification_models
from storedb.apps.notifications import service as notification_service

logger = logging.getLogger(__name__)

MAX_LISTED_ITEMS = 20


def alert_recipients(db: Session, admin_ids: Optional[Sequence[str]] = None) -> List[account_models.Admin]:
    query = db.query(account_models.Admin).filter(account_models.Admin.is_active.is_(True))
    if admin_ids:
        query = query.filter(account_models.Admin.id.in_(list(admin_ids)))
    else:
        query = query.filter(account_models.Admin.role == account_models.AdminRole.HEADQUARTERS_ADMIN)
    return query.order_by(account_models.Admin.email.asc()).all()


def notify(
    db: Session,
    *,
    template_key: str,
    subject: str,
    context: dict,
    admin_ids: Optional[Sequence[str]],
    correlation_id: str,
) -> int:
    sent = 0
    for admin in alert_recipients(db, admin_ids):
        log = notification_service.send_email(
            template_key,
            admin.email,
            subject,
            context,
            correlation_id,
            store_id=admin.store_id,
            db=db,
        )
        if log.status == notification_models.EmailStatus.SENT:
            sent += 1
    return sent


def run(
    threshold: int = 10,
    admin_ids: Optional[Sequence[str]] = None,
    enable_email: bool = False,
) -> dict:
    db = WriteSessionLocal()
    try:
        low = inventory_services.low_stock_items(db, threshold)
        out = inventory_services.out_of_stock_items(db)

        notifications_sent = 0
        if enable_email and (low or out):
            lines = [f"- {i.name}: {i.quantity}" for i in (out + low)[:MAX_LISTED_ITEMS]]
            notifications_sent = notify(
                db,
                template_key="stock_alert",
                subject=f"Stock alert: {len(low) + len(out)} item(s) need attention",
                context={
                    "low_stock_count": len(low),
                    "out_of_stock_count": len(out),
                    "threshold": threshold,
                    "items": "\n".join(lines),
                },
                admin_ids=admin_ids,
                correlation_id=f"stock-alert-{date.today().isoformat()}",
            )
        db.commit()

        summary = {
            "threshold": threshold,
            "low_stock_count": len(low),
            "out_of_stock_count": len(out),
            "notifications_sent": notifications_sent,
        }
        logger.info("Stock alert run finished", extra=summary)
        return summary
    finally:
        db.close()


if __name__ == "__main__":
    result = run()
    print("Stock alert runner completed:", result)
