from __future__ import annotations

import csv
import io
from datetime import datetime

from storedb.apps.audit import models as audit_models
from storedb.apps.exports import services as export_services
from storedb.apps.inventory import models as inventory_models
from storedb.apps.stores import models as store_models

NOW = datetime(2026, 1, 2, 3, 4, 5)


def _seed(db):
    store = store_models.Store(name="Export Pharmacy", code="PH-EXP", slug="ph-exp")
    syrup = inventory_models.Inventory(name="Amoxicillin syrup", sku="AMX-S", price=2.5, quantity=0)
    gloves = inventory_models.Inventory(name="Nitrile glove box", price=1.0, quantity=0)
    db.add_all([store, syrup, gloves])
    db.flush()
    db.add_all(
        [
            store_models.StoreInventory(
                store_id=store.id,
                inventory_id=syrup.id,
                quantity=12,
                safety_stock_level=5,
                last_updated_at=datetime(2026, 1, 1, 9, 30),
            ),
            store_models.StoreInventory(store_id=store.id, inventory_id=gloves.id, quantity=0, safety_stock_level=5),
        ]
    )
    db.commit()
    return store


def test_export_writes_bom_header_and_formatted_rows(db_session):
    store = _seed(db_session)
    filename, content = export_services.export_store_inventories(
        db_session, store=store, actor_type="admin", actor_id="admin-1", ip_address="203.0.113.5", now=NOW
    )
    db_session.commit()

    assert filename == "PH-EXP_inventories_20260102030405.csv"
    assert content.startswith(export_services.UTF8_BOM)

    rows = list(csv.reader(io.StringIO(content[len(export_services.UTF8_BOM):])))
    assert rows[0] == export_services.STORE_INVENTORY_HEADER
    assert rows[1] == [
        "Amoxicillin syrup",
        "AMX-S",
        "medicine",
        "12",
        "5",
        "2.50",
        "30.00",
        "Excess",
        "2",
        "2026/01/01 09:30",
    ]
    assert rows[2] == [
        "Nitrile glove box",
        "---",
        "consumable",
        "0",
        "5",
        "1.00",
        "0.00",
        "Out of stock",
        "---",
        "---",
    ]

    entry = db_session.query(audit_models.AuditLog).filter(audit_models.AuditLog.action == "export").one()
    assert entry.store_id == store.id
    assert entry.details == {"rows": 2, "format": "csv"}
    assert entry.ip_address == "203.0.113.5"


def test_turnover_days():
    assert export_services.turnover_days(0) == "---"
    assert export_services.turnover_days(23) == "5"
