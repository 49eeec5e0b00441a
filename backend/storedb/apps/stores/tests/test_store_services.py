from __future__ import annotations

import pytest
from fastapi import HTTPException

from storedb.apps.audit import models as audit_models
from storedb.apps.inventory import models as inventory_models
from storedb.apps.stores import models as store_models
from storedb.apps.stores import schemas as store_schemas
from storedb.apps.stores import services as store_services
from storedb.apps.transfers import models as transfer_models


def _store(db, code: str, **kwargs) -> store_models.Store:
    store = store_services.create_store(
        db,
        payload=store_schemas.StoreCreate(name=kwargs.pop("name", f"Store {code}"), code=code, **kwargs),
        actor_id="admin-1",
    )
    db.commit()
    return store


def _item(db, name: str, price: float = 10.0) -> inventory_models.Inventory:
    item = inventory_models.Inventory(name=name, price=price, quantity=0)
    db.add(item)
    db.commit()
    return item


def _stock(db, store, item, quantity: int, safety: int = 5) -> store_models.StoreInventory:
    row = store_services.add_store_inventory(
        db,
        store=store,
        payload=store_schemas.StoreInventoryCreate(inventory_id=item.id, quantity=quantity, safety_stock_level=safety),
        actor_type="admin",
        actor_id="admin-1",
    )
    db.commit()
    return row


def test_create_store_normalises_code_and_slug(db_session):
    store = _store(db_session, " ph_north-01 ", name=" North ")
    assert store.code == "PH_NORTH-01"
    assert store.slug == "ph-north-01"
    assert store.display_name == "PH_NORTH-01 - North"

    audit = db_session.query(audit_models.AuditLog).filter(audit_models.AuditLog.auditable_id == store.id).one()
    assert audit.action == "create"


def test_duplicate_and_invalid_codes_are_rejected(db_session):
    _store(db_session, "PH-001")
    with pytest.raises(HTTPException) as exc_info:
        _store(db_session, "ph-001")
    assert exc_info.value.status_code == 409

    with pytest.raises(HTTPException) as exc_info:
        _store(db_session, "PH 001")
    assert exc_info.value.status_code == 400

    with pytest.raises(HTTPException):
        _store(db_session, "PH-002", phone="call me")


def test_slug_collision_gets_suffix(db_session):
    _store(db_session, "PH-A")
    second = _store(db_session, "PH_A")
    assert second.slug == "ph-a-1"


def test_update_store_records_changes(db_session):
    store = _store(db_session, "PH-100")
    store_services.update_store(
        db_session,
        store=store,
        payload=store_schemas.StoreUpdate(code="PH-101", region="North"),
        actor_id="admin-1",
    )
    db_session.commit()

    assert store.code == "PH-101"
    assert store.slug == "ph-101"
    update = (
        db_session.query(audit_models.AuditLog)
        .filter(audit_models.AuditLog.action == "update", audit_models.AuditLog.store_id == store.id)
        .one()
    )
    assert update.details["changes"]["code"] == ["PH-100", "PH-101"]
    assert update.details["changes"]["region"] == [None, "North"]


def test_deactivate_store_blocked_by_open_transfers(db_session):
    source = _store(db_session, "PH-S")
    destination = _store(db_session, "PH-D")
    item = _item(db_session, "Aspirin 100mg tablet")
    db_session.add(
        transfer_models.InterStoreTransfer(
            source_store_id=source.id,
            destination_store_id=destination.id,
            inventory_id=item.id,
            quantity=1,
            reason="Top up",
            requested_by_id="admin-1",
        )
    )
    db_session.commit()

    with pytest.raises(HTTPException) as exc_info:
        store_services.deactivate_store(db_session, store=source)
    assert exc_info.value.status_code == 409

    other = _store(db_session, "PH-X")
    store_services.deactivate_store(db_session, store=other)
    assert other.is_active is False


def test_stock_level_status_thresholds():
    row = store_models.StoreInventory(quantity=0, reserved_quantity=0, safety_stock_level=10)
    assert row.stock_level_status == store_models.StockLevelStatusEnum.OUT_OF_STOCK
    row.quantity = 5
    assert row.stock_level_status == store_models.StockLevelStatusEnum.CRITICAL
    row.quantity = 10
    assert row.stock_level_status == store_models.StockLevelStatusEnum.LOW
    row.quantity = 20
    assert row.stock_level_status == store_models.StockLevelStatusEnum.OPTIMAL
    row.quantity = 21
    assert row.stock_level_status == store_models.StockLevelStatusEnum.EXCESS
    assert row.needs_replenishment is False


def test_add_update_remove_store_inventory(db_session):
    store = _store(db_session, "PH-INV")
    item = _item(db_session, "Vitamin C 500mg", price=2.5)
    row = _stock(db_session, store, item, quantity=3)

    assert store.low_stock_items_count == 1
    assert row.inventory_value == 7.5

    with pytest.raises(HTTPException) as exc_info:
        _stock(db_session, store, item, quantity=1)
    assert exc_info.value.status_code == 409

    row.reserved_quantity = 2
    db_session.commit()
    with pytest.raises(HTTPException) as exc_info:
        store_services.update_store_inventory(
            db_session,
            row=row,
            payload=store_schemas.StoreInventoryUpdate(quantity=1),
            actor_type="admin",
            actor_id="admin-1",
        )
    assert exc_info.value.status_code == 400

    store_services.update_store_inventory(
        db_session,
        row=row,
        payload=store_schemas.StoreInventoryUpdate(quantity=30),
        actor_type="admin",
        actor_id="admin-1",
    )
    db_session.commit()
    assert store.low_stock_items_count == 0

    with pytest.raises(HTTPException) as exc_info:
        store_services.remove_store_inventory(db_session, row=row, actor_type="admin", actor_id="admin-1")
    assert exc_info.value.status_code == 409

    row.reserved_quantity = 0
    store_services.remove_store_inventory(db_session, row=row, actor_type="admin", actor_id="admin-1")
    db_session.commit()
    assert db_session.query(store_models.StoreInventory).count() == 0


def test_list_store_inventories_filters_and_sorts(db_session):
    store = _store(db_session, "PH-LIST")
    _stock(db_session, store, _item(db_session, "Paracetamol 500mg tablet"), quantity=0)
    _stock(db_session, store, _item(db_session, "Surgical mask"), quantity=4)
    _stock(db_session, store, _item(db_session, "Digital thermometer"), quantity=50)

    out = store_services.list_store_inventories(db_session, store=store, stock_level_eq="out_of_stock")
    assert [i.inventory_name for i in out.items] == ["Paracetamol 500mg tablet"]

    low = store_services.list_store_inventories(db_session, store=store, stock_level_eq="low_stock")
    assert [i.inventory_name for i in low.items] == ["Surgical mask"]

    devices = store_services.list_store_inventories(db_session, store=store, category_eq="medical_device")
    assert devices.total == 1
    assert devices.items[0].category == "medical_device"

    by_qty = store_services.list_store_inventories(db_session, store=store, sort="quantity", direction="desc")
    assert [i.quantity for i in by_qty.items] == [50, 4, 0]

    with pytest.raises(HTTPException):
        store_services.list_store_inventories(db_session, store=store, stock_level_eq="bogus")


@pytest.mark.parametrize(
    "name, expected",
    [
        ("Blood pressure monitor", "medical_device"),
        ("Nitrile glove box", "consumable"),
        ("Fish oil capsule", "supplement"),
        ("Amoxicillin syrup", "medicine"),
        ("Gift card", "other"),
        (None, "other"),
    ],
)
def test_categorize_by_name(name, expected):
    assert store_services.categorize_by_name(name) == expected


def test_summary_and_active_stats(db_session):
    store = _store(db_session, "PH-SUM")
    _stock(db_session, store, _item(db_session, "Aspirin", price=1.0), quantity=0)
    _stock(db_session, store, _item(db_session, "Gauze", price=2.0), quantity=40, safety=5)

    summary = store_services.store_summary(store)
    assert summary.total_items == 2
    assert summary.total_value == 80.0
    assert summary.out_of_stock_count == 1
    assert summary.overstocked_count == 1

    stats = store_services.active_stores_stats(db_session)
    assert stats.total_stores == 1
    assert stats.stores_with_low_stock == 1
    assert stats.total_inventory_value == 80.0


def test_recent_store_cookie_handling():
    assert store_services.parse_recent_stores("a, b,,A,bad slug!,c") == ["a", "b", "c"]
    cookie = store_services.remember_store("a,b,c,d,e", "c")
    assert cookie == "c,a,b,d,e"
    assert store_services.remember_store("a,b,c,d,e", "z").split(",") == ["z", "a", "b", "c", "d"]


def test_store_selection_groups_by_type(db_session):
    _store(db_session, "WH-1", store_type=store_models.StoreTypeEnum.WAREHOUSE)
    _store(db_session, "PH-1")
    selection = store_services.store_selection(db_session, recent_cookie="wh-1,missing")

    assert {g.store_type for g in selection.groups} == {
        store_models.StoreTypeEnum.PHARMACY,
        store_models.StoreTypeEnum.WAREHOUSE,
    }
    assert [s.slug for s in selection.recent_stores] == ["wh-1"]


def test_store_metrics_and_replenishment_flags(db_session):
    store = _store(db_session, "PH-MET")
    row = _stock(db_session, store, _item(db_session, "Omega 3 capsule", price=4.0), quantity=30, safety=20)
    _stock(db_session, store, _item(db_session, "Gauze pad", price=1.0), quantity=0)
    row.reserved_quantity = 10
    db_session.commit()

    assert store.total_inventory_value == 120.0
    assert store.out_of_stock_items_count == 1
    assert store.available_items_count == 1
    assert row.available_value == 80.0
    assert row.reserved_value == 40.0
    assert row.days_of_stock_remaining == 10.0
    assert row.needs_replenishment is False

    row.quantity = 10
    assert row.needs_urgent_replenishment is True
