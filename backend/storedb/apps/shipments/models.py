from __future__ import annotations

import enum
from datetime import datetime
from typing import Optional

from sqlalchemy import (
    CheckConstraint,
    Column,
    Date,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import relationship

from storedb.database import Base


def _utcnow() -> datetime:
    return datetime.utcnow()


class ShipmentStatusEnum(str, enum.Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    SHIPPED = "SHIPPED"
    DELIVERED = "DELIVERED"
    RETURNED = "RETURNED"
    CANCELLED = "CANCELLED"


class ReceiptStatusEnum(str, enum.Enum):
    EXPECTED = "EXPECTED"
    PARTIAL = "PARTIAL"
    COMPLETED = "COMPLETED"
    REJECTED = "REJECTED"
    DELAYED = "DELAYED"


CANCELLABLE_SHIPMENT_STATUSES = (ShipmentStatusEnum.PENDING, ShipmentStatusEnum.PROCESSING)
RETURNABLE_SHIPMENT_STATUSES = (ShipmentStatusEnum.SHIPPED, ShipmentStatusEnum.DELIVERED)
REJECTABLE_RECEIPT_STATUSES = (ReceiptStatusEnum.EXPECTED, ReceiptStatusEnum.PARTIAL)


class Shipment(Base):
    """Outbound stock leaving the central inventory for an outside destination."""

    __tablename__ = "shipments"
    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_shipments_quantity_positive"),
        CheckConstraint(
            "return_quantity IS NULL OR (return_quantity > 0 AND return_quantity <= quantity)",
            name="ck_shipments_return_quantity_range",
        ),
        Index("ix_shipments_inventory_status", "inventory_id", "status"),
        Index("ix_shipments_scheduled_date", "scheduled_date"),
    )

    id = Column(Integer, primary_key=True, index=True)
    inventory_id = Column(Integer, ForeignKey("inventories.id", ondelete="CASCADE"), nullable=False, index=True)
    quantity = Column(Integer, nullable=False)
    destination = Column(String(255), nullable=False)
    scheduled_date = Column(Date, nullable=False)
    status = Column(
        SAEnum(ShipmentStatusEnum, name="shipment_status_enum", native_enum=False),
        nullable=False,
        default=ShipmentStatusEnum.PENDING,
    )
    tracking_number = Column(String(128), nullable=True)
    carrier = Column(String(128), nullable=True)
    notes = Column(Text, nullable=True)

    return_quantity = Column(Integer, nullable=True)
    return_reason = Column(String(255), nullable=True)
    return_date = Column(Date, nullable=True)

    created_by_id = Column(String(36), nullable=True)
    created_at = Column(DateTime, nullable=False, default=_utcnow)
    updated_at = Column(DateTime, nullable=False, default=_utcnow, onupdate=_utcnow)

    inventory = relationship("Inventory", lazy="joined")

    @property
    def can_cancel(self) -> bool:
        return self.status in CANCELLABLE_SHIPMENT_STATUSES

    @property
    def can_return(self) -> bool:
        return self.status in RETURNABLE_SHIPMENT_STATUSES

    def __repr__(self) -> str:
        return f"<Shipment id={self.id} inventory={self.inventory_id} qty={self.quantity} status={self.status}>"


class Receipt(Base):
    """Inbound stock from a supplier or other outside source."""

    __tablename__ = "receipts"
    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_receipts_quantity_positive"),
        CheckConstraint("cost_per_unit IS NULL OR cost_per_unit >= 0", name="ck_receipts_cost_nonneg"),
        Index("ix_receipts_inventory_status", "inventory_id", "status"),
        Index("ix_receipts_receipt_date", "receipt_date"),
        Index("ix_receipts_source", "source"),
    )

    id = Column(Integer, primary_key=True, index=True)
    inventory_id = Column(Integer, ForeignKey("inventories.id", ondelete="CASCADE"), nullable=False, index=True)
    quantity = Column(Integer, nullable=False)
    source = Column(String(255), nullable=False)
    receipt_date = Column(Date, nullable=False)
    status = Column(
        SAEnum(ReceiptStatusEnum, name="receipt_status_enum", native_enum=False),
        nullable=False,
        default=ReceiptStatusEnum.COMPLETED,
    )
    batch_number = Column(String(64), nullable=True)
    purchase_order = Column(String(64), nullable=True)
    cost_per_unit = Column(Numeric(12, 2), nullable=True)
    notes = Column(Text, nullable=True)

    created_by_id = Column(String(36), nullable=True)
    created_at = Column(DateTime, nullable=False, default=_utcnow)
    updated_at = Column(DateTime, nullable=False, default=_utcnow, onupdate=_utcnow)

    inventory = relationship("Inventory", lazy="joined")

    @property
    def total_cost(self) -> Optional[float]:
        if self.cost_per_unit is None:
            return None
        return float(self.cost_per_unit) * self.quantity

    @property
    def can_reject(self) -> bool:
        return self.status in REJECTABLE_RECEIPT_STATUSES

    def __repr__(self) -> str:
        return f"<Receipt id={self.id} inventory={self.inventory_id} qty={self.quantity} status={self.status}>"
