from __future__ import annotations

import enum
from datetime import date, datetime, timedelta
from typing import Optional

from sqlalchemy import (
    CheckConstraint,
    Column,
    Date,
    DateTime,
    Enum as SAEnum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    event,
)
from sqlalchemy.orm import relationship

from storedb.database import Base


def _utcnow() -> datetime:
    return datetime.utcnow()


class InventoryStatusEnum(str, enum.Enum):
    ACTIVE = "ACTIVE"
    ARCHIVED = "ARCHIVED"


class InventoryOperationEnum(str, enum.Enum):
    ADD = "ADD"
    REMOVE = "REMOVE"
    ADJUST = "ADJUST"
    SHIP = "SHIP"
    RECEIVE = "RECEIVE"


class ImmutableRecordError(Exception):
    """Raised when code tries to update or delete an append-only row."""


class Inventory(Base):
    __tablename__ = "inventories"
    __table_args__ = (
        CheckConstraint("price >= 0", name="ck_inventories_price_nonneg"),
        CheckConstraint("quantity >= 0", name="ck_inventories_quantity_nonneg"),
        Index("ix_inventories_status_name", "status", "name"),
    )

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False, index=True)
    sku = Column(String(64), nullable=True, unique=True, index=True)
    manufacturer = Column(String(128), nullable=True, index=True)
    unit = Column(String(32), nullable=True)
    price = Column(Float, nullable=False, default=0.0)
    quantity = Column(Integer, nullable=False, default=0)
    status = Column(
        SAEnum(InventoryStatusEnum, name="inventory_status_enum", native_enum=False),
        nullable=False,
        default=InventoryStatusEnum.ACTIVE,
        index=True,
    )
    created_at = Column(DateTime, nullable=False, default=_utcnow)
    updated_at = Column(DateTime, nullable=False, default=_utcnow, onupdate=_utcnow)

    batches = relationship(
        "Batch",
        back_populates="inventory",
        cascade="all, delete-orphan",
        order_by="Batch.expires_on",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<Inventory id={self.id} name={self.name!r} qty={self.quantity}>"


class Batch(Base):
    """A lot of an inventory item with its own expiry date."""

    __tablename__ = "batches"
    __table_args__ = (
        UniqueConstraint("inventory_id", "lot_code", name="uq_batches_inventory_lot"),
        CheckConstraint("quantity >= 0", name="ck_batches_quantity_nonneg"),
        Index("ix_batches_expires_on", "expires_on"),
    )

    id = Column(Integer, primary_key=True, index=True)
    inventory_id = Column(Integer, ForeignKey("inventories.id", ondelete="CASCADE"), nullable=False, index=True)
    lot_code = Column(String(64), nullable=False)
    quantity = Column(Integer, nullable=False, default=0)
    expires_on = Column(Date, nullable=True)
    created_at = Column(DateTime, nullable=False, default=_utcnow)
    updated_at = Column(DateTime, nullable=False, default=_utcnow, onupdate=_utcnow)

    inventory = relationship("Inventory", back_populates="batches", lazy="joined")

    def is_expired(self, today: Optional[date] = None) -> bool:
        if self.expires_on is None:
            return False
        today = today or date.today()
        return self.expires_on < today

    def is_expiring_soon(self, days: int = 30, today: Optional[date] = None) -> bool:
        if self.expires_on is None:
            return False
        today = today or date.today()
        return not self.is_expired(today) and self.expires_on < today + timedelta(days=days)

    def days_until_expiry(self, today: Optional[date] = None) -> Optional[int]:
        if self.expires_on is None:
            return None
        today = today or date.today()
        return (self.expires_on - today).days

    def __repr__(self) -> str:
        return f"<Batch {self.lot_code} inventory={self.inventory_id} qty={self.quantity}>"


class InventoryLog(Base):
    """
    Append-only record of every quantity change on an inventory item.

    Rows may only be removed by the retention job (bulk DELETE).
    """

    __tablename__ = "inventory_logs"
    __table_args__ = (
        Index("ix_inventory_logs_inventory_created", "inventory_id", "created_at"),
        Index("ix_inventory_logs_operation_created", "operation_type", "created_at"),
    )

    id = Column(Integer, primary_key=True, index=True)
    inventory_id = Column(Integer, ForeignKey("inventories.id", ondelete="CASCADE"), nullable=False, index=True)
    delta = Column(Integer, nullable=False)
    operation_type = Column(
        SAEnum(InventoryOperationEnum, name="inventory_operation_enum", native_enum=False),
        nullable=False,
        index=True,
    )
    previous_quantity = Column(Integer, nullable=False)
    current_quantity = Column(Integer, nullable=False)
    user_id = Column(String(36), nullable=True, index=True)
    note = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=_utcnow, index=True)

    inventory = relationship("Inventory", lazy="joined")


@event.listens_for(InventoryLog, "before_update")
def _block_log_update(mapper, connection, target):
    raise ImmutableRecordError("Inventory logs cannot be modified.")


@event.listens_for(InventoryLog, "before_delete")
def _block_log_delete(mapper, connection, target):
    raise ImmutableRecordError("Inventory logs cannot be deleted.")
