from __future__ import annotations

from datetime import date, datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from storedb.apps.stores.schemas import StoreBrief

from .models import RequesterTypeEnum, TransferPriorityEnum, TransferStatusEnum


class _TransferRequestBase(BaseModel):
    reason: str = Field(..., min_length=1, max_length=1000)

    @field_validator("reason", mode="before")
    @classmethod
    def strip_reason(cls, value: str) -> str:
        if value is None:
            raise ValueError("reason is required.")
        return str(value).strip()


class TransferCreate(_TransferRequestBase):
    source_store_id: str
    destination_store_id: str
    inventory_id: int
    quantity: int = Field(..., gt=0)
    priority: TransferPriorityEnum = TransferPriorityEnum.NORMAL
    notes: Optional[str] = None
    requested_delivery_date: Optional[date] = None


class StoreTransferCreate(_TransferRequestBase):
    """Store-side request; the source is the caller's own store."""

    destination_store_id: str
    inventory_id: int
    quantity: int = Field(..., gt=0)
    priority: TransferPriorityEnum = TransferPriorityEnum.NORMAL
    notes: Optional[str] = None
    requested_delivery_date: Optional[date] = None


class TransferReject(BaseModel):
    reason: str = Field(..., max_length=1000)


class TransferInventoryBrief(BaseModel):
    id: int
    name: str
    sku: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class TransferRead(BaseModel):
    id: int
    source_store_id: str
    destination_store_id: str
    inventory_id: int
    quantity: int
    status: TransferStatusEnum
    priority: TransferPriorityEnum
    reason: str
    notes: Optional[str] = None
    requested_delivery_date: Optional[date] = None
    requested_by_type: RequesterTypeEnum
    requested_by_id: str
    approved_by_id: Optional[str] = None
    requested_at: datetime
    approved_at: Optional[datetime] = None
    shipped_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    transfer_summary: str

    source_store: Optional[StoreBrief] = None
    destination_store: Optional[StoreBrief] = None
    inventory: Optional[TransferInventoryBrief] = None

    model_config = ConfigDict(from_attributes=True)


class TransferPage(BaseModel):
    items: List[TransferRead]
    total: int
    page: int
    per_page: int


class TimelineEvent(BaseModel):
    event: str
    at: datetime
    actor_id: Optional[str] = None
    description: str


class TransferCounts(BaseModel):
    all: int
    outgoing: int
    incoming: int
    pending: int
    in_transit: int
    completed: int


class StoreTransferStats(BaseModel):
    period_days: int
    outgoing_count: int
    incoming_count: int
    outgoing_completed: int
    incoming_completed: int
    pending_approvals: int
    average_processing_hours: Optional[float] = None


class RequestedItem(BaseModel):
    inventory_id: int
    name: str
    request_count: int
    total_quantity: int


class TransferAnalytics(BaseModel):
    period_days: int
    total_requests: int
    approval_rate: float
    average_quantity: float
    by_priority: Dict[str, int]
    by_status: Dict[str, int]
    top_requested_items: List[RequestedItem]


class PendingStats(BaseModel):
    pending_count: int
    urgent_count: int
    emergency_count: int
    average_waiting_hours: float
