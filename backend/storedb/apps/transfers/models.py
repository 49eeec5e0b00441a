from __future__ import annotations

import enum
from datetime import datetime, timedelta
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
    String,
    Text,
)
from sqlalchemy.orm import relationship

from storedb.database import Base


def _utcnow() -> datetime:
    return datetime.utcnow()


class TransferStatusEnum(str, enum.Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    IN_TRANSIT = "IN_TRANSIT"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class TransferPriorityEnum(str, enum.Enum):
    NORMAL = "NORMAL"
    URGENT = "URGENT"
    EMERGENCY = "EMERGENCY"


class RequesterTypeEnum(str, enum.Enum):
    ADMIN = "admin"
    STORE_USER = "store_user"


OPEN_STATUSES = (TransferStatusEnum.PENDING, TransferStatusEnum.APPROVED, TransferStatusEnum.IN_TRANSIT)


class InterStoreTransfer(Base):
    """
    Request to move stock of one item from a source store to a destination store.

    PENDING -> APPROVED -> IN_TRANSIT -> COMPLETED, with REJECTED / CANCELLED exits.
    The requested quantity stays reserved on the source while the transfer is open.
    """

    __tablename__ = "inter_store_transfers"
    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_transfers_quantity_positive"),
        CheckConstraint("source_store_id <> destination_store_id", name="ck_transfers_distinct_stores"),
        Index("ix_transfers_source_status", "source_store_id", "status"),
        Index("ix_transfers_destination_status", "destination_store_id", "status"),
        Index("ix_transfers_status_priority", "status", "priority"),
        Index("ix_transfers_requested_at", "requested_at"),
    )

    id = Column(Integer, primary_key=True, index=True)
    source_store_id = Column(String(36), ForeignKey("stores.id", ondelete="CASCADE"), nullable=False, index=True)
    destination_store_id = Column(String(36), ForeignKey("stores.id", ondelete="CASCADE"), nullable=False, index=True)
    inventory_id = Column(Integer, ForeignKey("inventories.id", ondelete="CASCADE"), nullable=False, index=True)
    quantity = Column(Integer, nullable=False)
    status = Column(
        SAEnum(TransferStatusEnum, name="transfer_status_enum", native_enum=False),
        nullable=False,
        default=TransferStatusEnum.PENDING,
        index=True,
    )
    priority = Column(
        SAEnum(TransferPriorityEnum, name="transfer_priority_enum", native_enum=False),
        nullable=False,
        default=TransferPriorityEnum.NORMAL,
        index=True,
    )
    reason = Column(Text, nullable=False)
    notes = Column(Text, nullable=True)
    requested_delivery_date = Column(Date, nullable=True)

    requested_by_type = Column(
        SAEnum(RequesterTypeEnum, name="transfer_requester_type_enum", native_enum=False),
        nullable=False,
        default=RequesterTypeEnum.ADMIN,
    )
    requested_by_id = Column(String(36), nullable=False, index=True)
    approved_by_id = Column(String(36), ForeignKey("admins.id", ondelete="SET NULL"), nullable=True)

    requested_at = Column(DateTime, nullable=False, default=_utcnow)
    approved_at = Column(DateTime, nullable=True)
    shipped_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    cancelled_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, nullable=False, default=_utcnow)
    updated_at = Column(DateTime, nullable=False, default=_utcnow, onupdate=_utcnow)

    source_store = relationship("Store", foreign_keys=[source_store_id], lazy="joined")
    destination_store = relationship("Store", foreign_keys=[destination_store_id], lazy="joined")
    inventory = relationship("Inventory", lazy="joined")
    approved_by = relationship("Admin", lazy="joined")

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_STATUSES

    @property
    def processing_time(self) -> Optional[timedelta]:
        if not self.completed_at or not self.requested_at:
            return None
        return self.completed_at - self.requested_at

    @property
    def transfer_summary(self) -> str:
        source = self.source_store.code if self.source_store else "?"
        destination = self.destination_store.code if self.destination_store else "?"
        name = self.inventory.name if self.inventory else "?"
        return f"{source} → {destination}: {name} × {self.quantity}"

    def __repr__(self) -> str:
        return f"<InterStoreTransfer id={self.id} status={self.status} qty={self.quantity}>"
