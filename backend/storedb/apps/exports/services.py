from __future__ import annotations

import csv
import io
from datetime import datetime
from typing import Iterable, Optional, Tuple

from sqlalchemy.orm import Session

from storedb.apps.audit import services as audit_services
from storedb.apps.inventory import models as inventory_models
from storedb.apps.stores import models as store_models
from storedb.apps.stores.models import StockLevelStatusEnum
from storedb.apps.stores.services import categorize_by_name

UTF8_BOM = "\ufeff"
PLACEHOLDER = "---"
TURNOVER_DAILY_USAGE = 5

STORE_INVENTORY_HEADER = [
    "Name",
    "SKU",
    "Category",
    "Quantity",
    "Safety Stock Level",
    "Unit Price",
    "Stock Value",
    "Status",
    "Turnover Days",
    "Last Updated",
]

STATUS_LABELS = {
    StockLevelStatusEnum.OUT_OF_STOCK: "Out of stock",
    StockLevelStatusEnum.CRITICAL: "Low stock",
    StockLevelStatusEnum.LOW: "Low stock",
    StockLevelStatusEnum.EXCESS: "Excess",
    StockLevelStatusEnum.OPTIMAL: "Optimal",
}


def turnover_days(quantity: int) -> str:
    if not quantity:
        return PLACEHOLDER
    return str(round(quantity / TURNOVER_DAILY_USAGE))


def _format_timestamp(value: Optional[datetime]) -> str:
    return value.strftime("%Y/%m/%d %H:%M") if value else PLACEHOLDER


def store_inventory_csv(rows: Iterable[store_models.StoreInventory]) -> str:
    buffer = io.StringIO()
    buffer.write(UTF8_BOM)
    writer = csv.writer(buffer)
    writer.writerow(STORE_INVENTORY_HEADER)
    for row in rows:
        inventory = row.inventory
        price = float(inventory.price or 0)
        writer.writerow(
            [
                inventory.name,
                inventory.sku or PLACEHOLDER,
                categorize_by_name(inventory.name),
                row.quantity,
                row.safety_stock_level,
                f"{price:.2f}",
                f"{row.quantity * price:.2f}",
                STATUS_LABELS[row.stock_level_status],
                turnover_days(row.quantity),
                _format_timestamp(row.last_updated_at),
            ]
        )
    return buffer.getvalue()


def export_store_inventories(
    db: Session,
    *,
    store: store_models.Store,
    actor_type: str,
    actor_id: Optional[str],
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Tuple[str, str]:
    """Build the store's inventory CSV and audit the export. Returns (filename, content)."""
    rows = (
        db.query(store_models.StoreInventory)
        .join(inventory_models.Inventory, inventory_models.Inventory.id == store_models.StoreInventory.inventory_id)
        .filter(store_models.StoreInventory.store_id == store.id)
        .order_by(inventory_models.Inventory.name.asc())
        .all()
    )
    content = store_inventory_csv(rows)
    audit_services.log_event(
        db,
        store_id=store.id,
        actor_type=actor_type,
        actor_id=actor_id,
        auditable_type="store_inventory",
        auditable_id=store.id,
        action="export",
        message=f"Exported {len(rows)} inventory rows for {store.display_name}",
        details={"rows": len(rows), "format": "csv"},
        ip_address=ip_address,
        user_agent=user_agent,
        critical=True,
    )
    filename = f"{store.code}_inventories_{(now or datetime.utcnow()):%Y%m%d%H%M%S}.csv"
    return filename, content
