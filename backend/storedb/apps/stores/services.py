from __future__ import annotations

from collections import OrderedDict
from datetime import datetime
import logging
import re
from typing import Dict, List, Optional, Sequence, Tuple

from fastapi import HTTPException, status
from sqlalchemy import func
from sqlalchemy.orm import Session

from storedb.apps.audit import services as audit_services
from storedb.apps.inventory import models as inventory_models
from storedb.apps.transfers import models as transfer_models
from . import models, schemas

logger = logging.getLogger(__name__)

CODE_PATTERN = re.compile(r"^[A-Z0-9_-]+$")
SLUG_PATTERN = re.compile(r"^[a-z0-9-]+$")
PHONE_PATTERN = re.compile(r"^[0-9\-+()\s]*$")

RECENT_STORES_COOKIE = "recent_stores"
RECENT_STORES_LIMIT = 5

MAX_PER_PAGE = 100
SORTABLE_COLUMNS = {"name", "sku", "quantity", "safety_stock_level", "last_updated_at"}

STOCK_LEVEL_FILTERS = ("out_of_stock", "low_stock", "normal_stock", "excess_stock")

# Checked in order; the first matching category wins.
CATEGORY_KEYWORDS: "OrderedDict[str, Tuple[str, ...]]" = OrderedDict(
    [
        ("medical_device", ("blood pressure monitor", "thermometer", "pulse oximeter", "stethoscope", "meter")),
        ("consumable", ("mask", "glove", "alcohol", "gauze", "needle")),
        ("supplement", ("vitamin", "supplement", "omega", "probiotic", "fish oil")),
        (
            "medicine",
            (
                "tablet", "capsule", "ointment", "eye drop", "suppository", "injection",
                "syrup", "granule", "powder", "solution", "mg", "iu", "aspirin",
                "paracetamol", "omeprazole", "amlodipine", "insulin", "antibiotic",
                "antiseptic", "prednisolone", "extract",
            ),
        ),
    ]
)
CATEGORY_OTHER = "other"


def _utcnow() -> datetime:
    return datetime.utcnow()


def categorize_by_name(name: Optional[str]) -> str:
    text = (name or "").lower()
    for category, keywords in CATEGORY_KEYWORDS.items():
        if any(re.search(rf"\b{re.escape(k)}\b", text) for k in keywords):
            return category
    return CATEGORY_OTHER


# ---------------------------------------------------------------------------
# Stores
# ---------------------------------------------------------------------------


def _normalise_code(code: str) -> str:
    code = (code or "").strip().upper()
    if not code or not CODE_PATTERN.match(code):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Store code may only contain A-Z, 0-9, '_' and '-'.",
        )
    return code


def _validate_phone(phone: Optional[str]) -> None:
    if phone and not PHONE_PATTERN.match(phone):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid phone number.")


def generate_slug(db: Session, code: str, *, exclude_store_id: Optional[str] = None) -> str:
    """Lower-cased code with runs of non-alphanumerics collapsed to '-'; suffixed on collision."""
    base = re.sub(r"[^a-z0-9]+", "-", (code or "").lower()).strip("-") or "store"
    candidate = base
    counter = 0
    while True:
        query = db.query(models.Store.id).filter(models.Store.slug == candidate)
        if exclude_store_id:
            query = query.filter(models.Store.id != exclude_store_id)
        if query.first() is None:
            return candidate
        counter += 1
        candidate = f"{base}-{counter}"


def _ensure_unique_code(db: Session, code: str, *, exclude_store_id: Optional[str] = None) -> None:
    query = db.query(models.Store.id).filter(func.upper(models.Store.code) == code)
    if exclude_store_id:
        query = query.filter(models.Store.id != exclude_store_id)
    if query.first() is not None:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Store code already exists.")


def get_store(db: Session, store_id: str) -> models.Store:
    store = db.query(models.Store).filter(models.Store.id == store_id).first()
    if not store:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Store not found")
    return store


def get_store_by_slug(db: Session, slug: str, *, active_only: bool = True) -> models.Store:
    query = db.query(models.Store).filter(models.Store.slug == (slug or "").strip().lower())
    if active_only:
        query = query.filter(models.Store.is_active.is_(True))
    store = query.first()
    if not store:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Store not found")
    return store


def list_stores(
    db: Session,
    *,
    active: Optional[bool] = True,
    store_type: Optional[models.StoreTypeEnum] = None,
    search: Optional[str] = None,
    store_ids: Optional[Sequence[str]] = None,
) -> List[models.Store]:
    query = db.query(models.Store)
    if active is not None:
        query = query.filter(models.Store.is_active.is_(active))
    if store_type is not None:
        query = query.filter(models.Store.store_type == store_type)
    if search:
        pattern = f"%{search.strip()}%"
        query = query.filter(
            models.Store.name.ilike(pattern)
            | models.Store.code.ilike(pattern)
            | models.Store.region.ilike(pattern)
        )
    if store_ids is not None:
        query = query.filter(models.Store.id.in_(list(store_ids)))
    return query.order_by(models.Store.store_type.asc(), models.Store.name.asc()).all()


def create_store(
    db: Session,
    *,
    payload: schemas.StoreCreate,
    actor_id: Optional[str] = None,
) -> models.Store:
    code = _normalise_code(payload.code)
    _ensure_unique_code(db, code)
    _validate_phone(payload.phone)

    store = models.Store(
        name=payload.name.strip(),
        code=code,
        store_type=payload.store_type,
        region=payload.region,
        address=payload.address,
        phone=payload.phone,
        email=payload.email,
        manager_name=payload.manager_name,
        is_active=payload.is_active,
        slug=generate_slug(db, code),
    )
    db.add(store)
    db.flush()
    audit_services.log_event(
        db,
        store_id=store.id,
        actor_type="admin",
        actor_id=actor_id,
        auditable_type="store",
        auditable_id=store.id,
        action="create",
        message=f"Store {store.display_name} created",
        details={"code": store.code, "store_type": store.store_type.value},
    )
    return store


def update_store(
    db: Session,
    *,
    store: models.Store,
    payload: schemas.StoreUpdate,
    actor_id: Optional[str] = None,
) -> models.Store:
    data = payload.model_dump(exclude_unset=True)
    changes: Dict[str, object] = {}

    if "code" in data and data["code"] is not None:
        code = _normalise_code(data.pop("code"))
        if code != store.code:
            _ensure_unique_code(db, code, exclude_store_id=store.id)
            changes["code"] = [store.code, code]
            store.code = code
            store.slug = generate_slug(db, code, exclude_store_id=store.id)
    if "phone" in data:
        _validate_phone(data["phone"])

    for field, value in data.items():
        if value is None and field in {"name", "store_type", "is_active"}:
            continue
        if field == "name":
            value = value.strip()
        if getattr(store, field) != value:
            before = getattr(store, field)
            changes[field] = [
                before.value if hasattr(before, "value") else before,
                value.value if hasattr(value, "value") else value,
            ]
            setattr(store, field, value)

    db.flush()
    if changes:
        audit_services.log_event(
            db,
            store_id=store.id,
            actor_type="admin",
            actor_id=actor_id,
            auditable_type="store",
            auditable_id=store.id,
            action="update",
            message=f"Store {store.display_name} updated",
            details={"changes": changes},
        )
    return store


def deactivate_store(db: Session, *, store: models.Store, actor_id: Optional[str] = None) -> models.Store:
    open_transfers = (
        db.query(func.count(transfer_models.InterStoreTransfer.id))
        .filter(
            (transfer_models.InterStoreTransfer.source_store_id == store.id)
            | (transfer_models.InterStoreTransfer.destination_store_id == store.id),
            transfer_models.InterStoreTransfer.status.in_(transfer_models.OPEN_STATUSES),
        )
        .scalar()
    )
    if open_transfers:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Store has open transfers; complete or cancel them first.",
        )
    store.is_active = False
    db.flush()
    audit_services.log_event(
        db,
        store_id=store.id,
        actor_type="admin",
        actor_id=actor_id,
        auditable_type="store",
        auditable_id=store.id,
        action="delete",
        message=f"Store {store.display_name} deactivated",
    )
    return store


# ---------------------------------------------------------------------------
# Counters and aggregates
# ---------------------------------------------------------------------------


def refresh_store_counters(db: Session, store: models.Store) -> models.Store:
    pending = transfer_models.TransferStatusEnum.PENDING
    store.pending_outgoing_transfers_count = (
        db.query(func.count(transfer_models.InterStoreTransfer.id))
        .filter(
            transfer_models.InterStoreTransfer.source_store_id == store.id,
            transfer_models.InterStoreTransfer.status == pending,
        )
        .scalar()
        or 0
    )
    store.pending_incoming_transfers_count = (
        db.query(func.count(transfer_models.InterStoreTransfer.id))
        .filter(
            transfer_models.InterStoreTransfer.destination_store_id == store.id,
            transfer_models.InterStoreTransfer.status == pending,
        )
        .scalar()
        or 0
    )
    store.low_stock_items_count = (
        db.query(func.count(models.StoreInventory.id))
        .filter(
            models.StoreInventory.store_id == store.id,
            models.StoreInventory.quantity <= models.StoreInventory.safety_stock_level,
        )
        .scalar()
        or 0
    )
    db.flush()
    return store


def active_stores_stats(db: Session) -> schemas.ActiveStoresStats:
    stores = list_stores(db, active=True)
    store_ids = [s.id for s in stores]
    average_quantity = 0.0
    if store_ids:
        average_quantity = float(
            db.query(func.avg(models.StoreInventory.quantity))
            .filter(models.StoreInventory.store_id.in_(store_ids))
            .scalar()
            or 0.0
        )
    return schemas.ActiveStoresStats(
        total_stores=len(stores),
        total_inventory_value=round(sum(s.total_inventory_value for s in stores), 2),
        average_inventory_per_store=round(average_quantity, 2),
        stores_with_low_stock=sum(
            1
            for s in stores
            if any(si.quantity <= si.safety_stock_level for si in s.store_inventories)
        ),
    )


def store_summary(store: models.Store) -> schemas.StoreSummary:
    rows = list(store.store_inventories)
    return schemas.StoreSummary(
        total_items=len(rows),
        total_value=round(sum(si.inventory_value for si in rows), 2),
        available_value=round(sum(si.available_value for si in rows), 2),
        reserved_value=round(sum(si.reserved_value for si in rows), 2),
        low_stock_count=sum(1 for si in rows if si.quantity <= si.safety_stock_level),
        critical_stock_count=sum(1 for si in rows if si.quantity <= si.safety_stock_level * 0.5),
        out_of_stock_count=sum(1 for si in rows if si.quantity == 0),
        overstocked_count=sum(1 for si in rows if si.quantity > si.safety_stock_level * 3),
    )


def inventory_across_stores(db: Session, inventory_id: int) -> List[schemas.InventoryStoreStock]:
    rows = (
        db.query(models.StoreInventory)
        .join(models.Store, models.Store.id == models.StoreInventory.store_id)
        .filter(
            models.StoreInventory.inventory_id == inventory_id,
            models.Store.is_active.is_(True),
        )
        .order_by(models.Store.name.asc())
        .all()
    )
    return [
        schemas.InventoryStoreStock(
            store=schemas.StoreBrief.model_validate(si.store),
            quantity=si.quantity,
            reserved_quantity=si.reserved_quantity,
            available_quantity=si.available_quantity,
            stock_level_status=si.stock_level_status,
        )
        for si in rows
    ]


# ---------------------------------------------------------------------------
# Store selection
# ---------------------------------------------------------------------------


def parse_recent_stores(cookie_value: Optional[str]) -> List[str]:
    slugs: List[str] = []
    for raw in (cookie_value or "").split(","):
        slug = raw.strip().lower()
        if slug and SLUG_PATTERN.match(slug) and slug not in slugs:
            slugs.append(slug)
    return slugs[:RECENT_STORES_LIMIT]


def remember_store(cookie_value: Optional[str], slug: str) -> str:
    """Most recent first, de-duplicated, capped at RECENT_STORES_LIMIT."""
    slugs = [s for s in parse_recent_stores(cookie_value) if s != slug]
    return ",".join([slug] + slugs[: RECENT_STORES_LIMIT - 1])


def store_selection(db: Session, *, recent_cookie: Optional[str] = None) -> schemas.StoreSelection:
    stores = list_stores(db, active=True)
    groups: "OrderedDict[models.StoreTypeEnum, List[models.Store]]" = OrderedDict()
    for store in stores:
        groups.setdefault(store.store_type, []).append(store)

    by_slug = {s.slug: s for s in stores}
    recent = [by_slug[slug] for slug in parse_recent_stores(recent_cookie) if slug in by_slug]

    return schemas.StoreSelection(
        groups=[
            schemas.StoreSelectionGroup(
                store_type=store_type,
                stores=[schemas.StoreBrief.model_validate(s) for s in members],
            )
            for store_type, members in groups.items()
        ],
        recent_stores=[schemas.StoreBrief.model_validate(s) for s in recent],
    )


# ---------------------------------------------------------------------------
# Store inventories
# ---------------------------------------------------------------------------


def get_store_inventory(db: Session, *, store_id: str, inventory_id: int) -> models.StoreInventory:
    row = (
        db.query(models.StoreInventory)
        .filter(
            models.StoreInventory.store_id == store_id,
            models.StoreInventory.inventory_id == inventory_id,
        )
        .first()
    )
    if not row:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Item not stocked at this store")
    return row


def add_store_inventory(
    db: Session,
    *,
    store: models.Store,
    payload: schemas.StoreInventoryCreate,
    actor_type: str,
    actor_id: Optional[str],
) -> models.StoreInventory:
    inventory = (
        db.query(inventory_models.Inventory)
        .filter(inventory_models.Inventory.id == payload.inventory_id)
        .first()
    )
    if not inventory or inventory.status != inventory_models.InventoryStatusEnum.ACTIVE:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Inventory item not found")

    existing = (
        db.query(models.StoreInventory.id)
        .filter(
            models.StoreInventory.store_id == store.id,
            models.StoreInventory.inventory_id == inventory.id,
        )
        .first()
    )
    if existing:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Item is already stocked at this store")

    row = models.StoreInventory(
        store_id=store.id,
        inventory_id=inventory.id,
        quantity=payload.quantity,
        reserved_quantity=0,
        safety_stock_level=payload.safety_stock_level,
        last_updated_at=_utcnow(),
    )
    db.add(row)
    db.flush()
    refresh_store_counters(db, store)
    audit_services.log_event(
        db,
        store_id=store.id,
        actor_type=actor_type,
        actor_id=actor_id,
        auditable_type="store_inventory",
        auditable_id=row.id,
        action="create",
        message=f"{inventory.name} added to {store.display_name}",
        details={"quantity": row.quantity, "safety_stock_level": row.safety_stock_level},
    )
    return row


def update_store_inventory(
    db: Session,
    *,
    row: models.StoreInventory,
    payload: schemas.StoreInventoryUpdate,
    actor_type: str,
    actor_id: Optional[str],
) -> models.StoreInventory:
    changes: Dict[str, List[int]] = {}
    if payload.quantity is not None and payload.quantity != row.quantity:
        if payload.quantity < row.reserved_quantity:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Quantity cannot be lower than the reserved quantity ({row.reserved_quantity}).",
            )
        changes["quantity"] = [row.quantity, payload.quantity]
        row.quantity = payload.quantity
        row.last_updated_at = _utcnow()
    if payload.safety_stock_level is not None and payload.safety_stock_level != row.safety_stock_level:
        changes["safety_stock_level"] = [row.safety_stock_level, payload.safety_stock_level]
        row.safety_stock_level = payload.safety_stock_level

    db.flush()
    if changes:
        refresh_store_counters(db, row.store)
        audit_services.log_event(
            db,
            store_id=row.store_id,
            actor_type=actor_type,
            actor_id=actor_id,
            auditable_type="store_inventory",
            auditable_id=row.id,
            action="update",
            message=f"Stock of {row.inventory.name} updated",
            details={"changes": changes},
        )
    return row


def remove_store_inventory(
    db: Session,
    *,
    row: models.StoreInventory,
    actor_type: str,
    actor_id: Optional[str],
) -> None:
    if row.reserved_quantity > 0:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Item has reserved stock for open transfers and cannot be removed.",
        )
    store = row.store
    audit_services.log_event(
        db,
        store_id=row.store_id,
        actor_type=actor_type,
        actor_id=actor_id,
        auditable_type="store_inventory",
        auditable_id=row.id,
        action="delete",
        message=f"{row.inventory.name} removed from {store.display_name}",
        details={"quantity": row.quantity},
    )
    store.store_inventories.remove(row)
    db.delete(row)
    db.flush()
    refresh_store_counters(db, store)


def to_store_inventory_read(row: models.StoreInventory) -> schemas.StoreInventoryRead:
    inventory = row.inventory
    return schemas.StoreInventoryRead(
        id=row.id,
        store_id=row.store_id,
        inventory_id=row.inventory_id,
        inventory_name=inventory.name,
        sku=inventory.sku,
        manufacturer=inventory.manufacturer,
        category=categorize_by_name(inventory.name),
        quantity=row.quantity,
        reserved_quantity=row.reserved_quantity,
        available_quantity=row.available_quantity,
        safety_stock_level=row.safety_stock_level,
        stock_level_status=row.stock_level_status,
        inventory_value=row.inventory_value,
        last_updated_at=row.last_updated_at,
    )


def _stock_level_clause(stock_level: str):
    qty = models.StoreInventory.quantity
    safety = models.StoreInventory.safety_stock_level
    if stock_level == "out_of_stock":
        return qty == 0
    if stock_level == "low_stock":
        return (qty > 0) & (qty <= safety)
    if stock_level == "normal_stock":
        return (qty > safety) & (qty <= safety * 2)
    if stock_level == "excess_stock":
        return qty > safety * 2
    raise HTTPException(
        status_code=status.HTTP_400_BAD_REQUEST,
        detail=f"stock_level_eq must be one of {', '.join(STOCK_LEVEL_FILTERS)}",
    )


def list_store_inventories(
    db: Session,
    *,
    store: models.Store,
    name_cont: Optional[str] = None,
    category_eq: Optional[str] = None,
    manufacturer_eq: Optional[str] = None,
    stock_level_eq: Optional[str] = None,
    sort: str = "name",
    direction: str = "asc",
    page: int = 1,
    per_page: int = 20,
) -> schemas.StoreInventoryPage:
    query = (
        db.query(models.StoreInventory)
        .join(inventory_models.Inventory, inventory_models.Inventory.id == models.StoreInventory.inventory_id)
        .filter(models.StoreInventory.store_id == store.id)
    )
    if name_cont:
        query = query.filter(inventory_models.Inventory.name.ilike(f"%{name_cont.strip()}%"))
    if manufacturer_eq:
        query = query.filter(inventory_models.Inventory.manufacturer == manufacturer_eq)
    if stock_level_eq:
        query = query.filter(_stock_level_clause(stock_level_eq))

    sort = sort if sort in SORTABLE_COLUMNS else "name"
    if sort in {"name", "sku"}:
        column = getattr(inventory_models.Inventory, sort)
    else:
        column = getattr(models.StoreInventory, sort)
    order = column.desc() if direction == "desc" else column.asc()
    query = query.order_by(order, models.StoreInventory.id.asc())

    page = max(page, 1)
    per_page = min(max(per_page, 1), MAX_PER_PAGE)

    if category_eq:
        # Category is derived from the item name, so it is filtered in Python.
        rows = [r for r in query.all() if categorize_by_name(r.inventory.name) == category_eq]
        total = len(rows)
        rows = rows[(page - 1) * per_page : page * per_page]
    else:
        total = query.count()
        rows = query.offset((page - 1) * per_page).limit(per_page).all()

    return schemas.StoreInventoryPage(
        items=[to_store_inventory_read(r) for r in rows],
        total=total,
        page=page,
        per_page=per_page,
    )
