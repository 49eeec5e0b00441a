from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .models import ReceiptStatusEnum, ShipmentStatusEnum


def _required_text(value: Optional[str], label: str) -> str:
    value = str(value or "").strip()
    if not value:
        raise ValueError(f"{label} is required.")
    return value


class ShipmentCreate(BaseModel):
    inventory_id: int
    quantity: int = Field(..., gt=0)
    destination: str = Field(..., max_length=255)
    scheduled_date: Optional[date] = None
    status: ShipmentStatusEnum = ShipmentStatusEnum.PENDING
    tracking_number: Optional[str] = Field(default=None, max_length=128)
    carrier: Optional[str] = Field(default=None, max_length=128)
    notes: Optional[str] = None

    @field_validator("destination", mode="before")
    @classmethod
    def strip_destination(cls, value):
        return _required_text(value, "destination")

    @field_validator("status")
    @classmethod
    def open_status_only(cls, value: ShipmentStatusEnum) -> ShipmentStatusEnum:
        if value in (ShipmentStatusEnum.RETURNED, ShipmentStatusEnum.CANCELLED):
            raise ValueError("A new shipment cannot start as returned or cancelled.")
        return value


class ShipmentStatusUpdate(BaseModel):
    status: ShipmentStatusEnum
    tracking_number: Optional[str] = Field(default=None, max_length=128)
    carrier: Optional[str] = Field(default=None, max_length=128)


class ShipmentCancel(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=255)


class ShipmentReturn(BaseModel):
    quantity: int = Field(..., gt=0)
    reason: Optional[str] = Field(default=None, max_length=255)
    quality_check: bool = True


class ShipmentRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    inventory_id: int
    quantity: int
    destination: str
    scheduled_date: date
    status: ShipmentStatusEnum
    tracking_number: Optional[str] = None
    carrier: Optional[str] = None
    notes: Optional[str] = None
    return_quantity: Optional[int] = None
    return_reason: Optional[str] = None
    return_date: Optional[date] = None
    can_cancel: bool
    can_return: bool
    created_at: datetime


class ReceiptCreate(BaseModel):
    inventory_id: int
    quantity: int = Field(..., gt=0)
    source: str = Field(..., max_length=255)
    receipt_date: Optional[date] = None
    status: ReceiptStatusEnum = ReceiptStatusEnum.COMPLETED
    batch_number: Optional[str] = Field(default=None, max_length=64)
    purchase_order: Optional[str] = Field(default=None, max_length=64)
    cost_per_unit: Optional[Decimal] = Field(default=None, ge=0, max_digits=12, decimal_places=2)
    expiry_date: Optional[date] = None
    notes: Optional[str] = None

    @field_validator("source", mode="before")
    @classmethod
    def strip_source(cls, value):
        return _required_text(value, "source")


class ReceiptReject(BaseModel):
    reason: str = Field(..., max_length=255)

    @field_validator("reason", mode="before")
    @classmethod
    def strip_reason(cls, value):
        return _required_text(value, "reason")


class ReceiptRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    inventory_id: int
    quantity: int
    source: str
    receipt_date: date
    status: ReceiptStatusEnum
    batch_number: Optional[str] = None
    purchase_order: Optional[str] = None
    cost_per_unit: Optional[Decimal] = None
    total_cost: Optional[float] = None
    notes: Optional[str] = None
    can_reject: bool
    created_at: datetime


class ShipmentPage(BaseModel):
    items: List[ShipmentRead]
    total: int
    page: int
    per_page: int


class ReceiptPage(BaseModel):
    items: List[ReceiptRead]
    total: int
    page: int
    per_page: int


class PeriodTotal(BaseModel):
    """Per-item count and quantity of shipments or receipts dated inside a period."""

    inventory_id: int
    name: str
    count: int
    quantity: int


class StockRelocation(BaseModel):
    source_inventory_id: int
    target_inventory_id: int
    quantity: int = Field(..., gt=0)
    reference_number: Optional[str] = Field(default=None, max_length=64)


MovementSortField = Literal["shipped_quantity", "received_quantity", "net_change", "ship_count", "receive_count"]


class MovementReportItem(BaseModel):
    inventory_id: int
    name: str
    sku: Optional[str] = None
    shipped_quantity: int
    received_quantity: int
    net_change: int
    ship_count: int
    receive_count: int


class MovementReport(BaseModel):
    start_date: date
    end_date: date
    total_shipped: int
    total_received: int
    net_change: int
    items: List[MovementReportItem]
