from __future__ import annotations

import logging
from datetime import date
from typing import Optional, Sequence

from storedb.database import WriteSessionLocal
from storedb.apps.inventory import services as inventory_services

from .stock_alert_runner import MAX_LISTED_ITEMS, notify

logger = logging.getLogger(__name__)


def run(
    days_ahead: int = 30,
    admin_ids: Optional[Sequence[str]] = None,
    enable_email: bool = False,
    today: Optional[date] = None,
) -> dict:
    today = today or date.today()
    db = WriteSessionLocal()
    try:
        expiring = inventory_services.expiring_batches(db, days=days_ahead, today=today)
        expired = inventory_services.expired_batches(db, today=today)

        notifications_sent = 0
        if enable_email and (expiring or expired):
            lines = [
                f"- {b.inventory.name} lot {b.lot_code}: {b.quantity} (expires {b.expires_on.isoformat()})"
                for b in (expired + expiring)[:MAX_LISTED_ITEMS]
            ]
            notifications_sent = notify(
                db,
                template_key="expiry_alert",
                subject=f"Expiry alert: {len(expiring)} expiring, {len(expired)} expired",
                context={
                    "expiring_count": len(expiring),
                    "expired_count": len(expired),
                    "days_ahead": days_ahead,
                    "items": "\n".join(lines),
                },
                admin_ids=admin_ids,
                correlation_id=f"expiry-check-{today.isoformat()}",
            )
        db.commit()

        summary = {
            "days_ahead": days_ahead,
            "expiring_count": len(expiring),
            "expired_count": len(expired),
            "expiring_quantity": sum(b.quantity for b in expiring),
            "expired_quantity": sum(b.quantity for b in expired),
            "notifications_sent": notifications_sent,
        }
        logger.info("Expiry check finished", extra=summary)
        return summary
    finally:
        db.close()


if __name__ == "__main__":
    result = run()
    print("Expiry check runner completed:", result)
