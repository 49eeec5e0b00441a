from __future__ import annotations

import argparse
import logging
from pathlib import Path
from typing import Optional

from storedb.database import WriteSessionLocal
from storedb.apps.audit import services as audit_services
from storedb.apps.inventory import services as inventory_services

logger = logging.getLogger(__name__)


def run(
    path: str,
    update_existing: bool = False,
    unique_key: str = "name",
    admin_id: Optional[str] = None,
) -> dict:
    content = Path(path).read_text(encoding="utf-8-sig")
    db = WriteSessionLocal()
    try:
        result = inventory_services.import_inventories_csv(
            db,
            content=content,
            update_existing=update_existing,
            unique_key=unique_key,
            actor_id=admin_id,
        )
        audit_services.log_event(
            db,
            store_id=None,
            actor_type="admin" if admin_id else "system",
            actor_id=admin_id,
            auditable_type="inventory",
            auditable_id="import",
            action="import",
            message=f"CSV import from {Path(path).name}",
            details={
                "valid_count": result.valid_count,
                "update_count": result.update_count,
                "invalid_count": len(result.invalid_records),
                "unique_key": unique_key,
                "update_existing": update_existing,
            },
        )
        db.commit()
        return {
            "valid_count": result.valid_count,
            "update_count": result.update_count,
            "invalid_records": [r.model_dump() for r in result.invalid_records],
        }
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Import inventory items from a CSV file.")
    parser.add_argument("path")
    parser.add_argument("--update-existing", action="store_true")
    parser.add_argument("--unique-key", default="name", choices=inventory_services.IMPORT_UNIQUE_KEYS)
    parser.add_argument("--admin-id", default=None)
    return parser.parse_args()


if __name__ == "__main__":
    args = _parse_args()
    result = run(args.path, args.update_existing, args.unique_key, args.admin_id)
    print(
        f"Imported {result['valid_count']} new, updated {result['update_count']}, "
        f"{len(result['invalid_records'])} invalid row(s)"
    )
