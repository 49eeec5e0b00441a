from __future__ import annotations

import enum
import math
from datetime import datetime

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from storedb.database import Base
from storedb.utils.identifiers import generate_uuid7


def _utcnow() -> datetime:
    return datetime.utcnow()


class StoreTypeEnum(str, enum.Enum):
    PHARMACY = "PHARMACY"
    WAREHOUSE = "WAREHOUSE"
    HEADQUARTERS = "HEADQUARTERS"


class StockLevelStatusEnum(str, enum.Enum):
    OUT_OF_STOCK = "out_of_stock"
    CRITICAL = "critical"
    LOW = "low"
    OPTIMAL = "optimal"
    EXCESS = "excess"


class Store(Base):
    """
    Physical location (pharmacy, warehouse or headquarters) holding inventory.

    Every store-scoped record carries `store_id`; the slug is the URL handle.
    """

    __tablename__ = "stores"
    __table_args__ = (
        Index("ix_stores_type_active", "store_type", "is_active"),
        Index("ix_stores_region", "region"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid7, index=True)
    name = Column(String(100), nullable=False)
    code = Column(String(20), nullable=False, unique=True, index=True)
    store_type = Column(
        SAEnum(StoreTypeEnum, name="store_type_enum", native_enum=False),
        nullable=False,
        default=StoreTypeEnum.PHARMACY,
        index=True,
    )
    region = Column(String(64), nullable=True)
    address = Column(Text, nullable=True)
    phone = Column(String(32), nullable=True)
    email = Column(String(255), nullable=True)
    manager_name = Column(String(100), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True, index=True)
    slug = Column(String(64), nullable=False, unique=True, index=True)

    pending_outgoing_transfers_count = Column(Integer, nullable=False, default=0)
    pending_incoming_transfers_count = Column(Integer, nullable=False, default=0)
    low_stock_items_count = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime, nullable=False, default=_utcnow)
    updated_at = Column(DateTime, nullable=False, default=_utcnow, onupdate=_utcnow)

    store_inventories = relationship(
        "StoreInventory",
        back_populates="store",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    @property
    def display_name(self) -> str:
        return f"{self.code} - {self.name}"

    @property
    def total_inventory_value(self) -> float:
        return round(sum(si.inventory_value for si in self.store_inventories), 2)

    @property
    def out_of_stock_items_count(self) -> int:
        return sum(1 for si in self.store_inventories if si.quantity == 0)

    @property
    def available_items_count(self) -> int:
        return sum(1 for si in self.store_inventories if si.quantity > si.reserved_quantity)

    def __repr__(self) -> str:
        return f"<Store {self.code} {self.name}>"


class StoreInventory(Base):
    """Per-store stock of an inventory item, with reservations and a safety level."""

    DEFAULT_SAFETY_STOCK_LEVEL = 5

    __tablename__ = "store_inventories"
    __table_args__ = (
        UniqueConstraint("store_id", "inventory_id", name="uq_store_inventory_pair"),
        CheckConstraint("quantity >= 0", name="ck_store_inventories_quantity_nonneg"),
        CheckConstraint("reserved_quantity >= 0", name="ck_store_inventories_reserved_nonneg"),
        CheckConstraint("safety_stock_level >= 0", name="ck_store_inventories_safety_nonneg"),
        CheckConstraint("reserved_quantity <= quantity", name="ck_store_inventories_reserved_le_quantity"),
        Index("ix_store_inventories_store_qty", "store_id", "quantity"),
    )

    id = Column(Integer, primary_key=True, index=True)
    store_id = Column(String(36), ForeignKey("stores.id", ondelete="CASCADE"), nullable=False, index=True)
    inventory_id = Column(Integer, ForeignKey("inventories.id", ondelete="CASCADE"), nullable=False, index=True)
    quantity = Column(Integer, nullable=False, default=0)
    reserved_quantity = Column(Integer, nullable=False, default=0)
    safety_stock_level = Column(Integer, nullable=False, default=DEFAULT_SAFETY_STOCK_LEVEL)
    last_updated_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, nullable=False, default=_utcnow)
    updated_at = Column(DateTime, nullable=False, default=_utcnow, onupdate=_utcnow)

    store = relationship("Store", back_populates="store_inventories", lazy="joined")
    inventory = relationship("Inventory", lazy="joined")

    @property
    def available_quantity(self) -> int:
        return (self.quantity or 0) - (self.reserved_quantity or 0)

    @property
    def stock_level_status(self) -> StockLevelStatusEnum:
        quantity = self.quantity or 0
        safety = self.safety_stock_level or 0
        if quantity == 0:
            return StockLevelStatusEnum.OUT_OF_STOCK
        if quantity <= safety * 0.5:
            return StockLevelStatusEnum.CRITICAL
        if quantity <= safety:
            return StockLevelStatusEnum.LOW
        if quantity <= safety * 2:
            return StockLevelStatusEnum.OPTIMAL
        return StockLevelStatusEnum.EXCESS

    @property
    def _unit_price(self) -> float:
        return float(self.inventory.price or 0) if self.inventory is not None else 0.0

    @property
    def inventory_value(self) -> float:
        return round((self.quantity or 0) * self._unit_price, 2)

    @property
    def reserved_value(self) -> float:
        return round((self.reserved_quantity or 0) * self._unit_price, 2)

    @property
    def available_value(self) -> float:
        return round(self.available_quantity * self._unit_price, 2)

    @property
    def days_of_stock_remaining(self) -> float:
        # No sales history yet; usage is estimated from the safety level.
        daily_usage = max((self.safety_stock_level or 0) * 0.1, 1.0)
        if daily_usage == 0:
            return math.inf
        return round(self.available_quantity / daily_usage, 1)

    @property
    def needs_replenishment(self) -> bool:
        return (self.quantity or 0) <= (self.safety_stock_level or 0)

    @property
    def needs_urgent_replenishment(self) -> bool:
        return (self.quantity or 0) <= (self.safety_stock_level or 0) * 0.5

    def __repr__(self) -> str:
        return f"<StoreInventory store={self.store_id} inventory={self.inventory_id} qty={self.quantity}>"
