from __future__ import annotations

from datetime import date, datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from . import models


class InventoryBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    sku: Optional[str] = Field(default=None, max_length=64)
    manufacturer: Optional[str] = Field(default=None, max_length=128)
    unit: Optional[str] = Field(default=None, max_length=32)
    price: float = Field(0.0, ge=0)


class InventoryCreate(InventoryBase):
    quantity: int = Field(0, ge=0)
    status: models.InventoryStatusEnum = models.InventoryStatusEnum.ACTIVE


class InventoryUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    sku: Optional[str] = Field(default=None, max_length=64)
    manufacturer: Optional[str] = Field(default=None, max_length=128)
    unit: Optional[str] = Field(default=None, max_length=32)
    price: Optional[float] = Field(default=None, ge=0)
    quantity: Optional[int] = Field(default=None, ge=0)
    status: Optional[models.InventoryStatusEnum] = None
    note: Optional[str] = None


class BatchRead(BaseModel):
    id: int
    inventory_id: int
    lot_code: str
    quantity: int
    expires_on: Optional[date] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class InventoryRead(InventoryBase):
    id: int
    quantity: int
    status: models.InventoryStatusEnum
    created_at: datetime
    updated_at: datetime
    batches: List[BatchRead] = []

    model_config = ConfigDict(from_attributes=True)


class InventoryPage(BaseModel):
    items: List[InventoryRead]
    total: int
    page: int
    per_page: int


class QuantityAdjustment(BaseModel):
    delta: int
    operation_type: Optional[models.InventoryOperationEnum] = None
    note: Optional[str] = Field(default=None, max_length=1000)


class BatchCreate(BaseModel):
    quantity: int = Field(..., gt=0)
    expires_on: Optional[date] = None
    lot_code: Optional[str] = Field(default=None, max_length=64)


class BatchConsume(BaseModel):
    quantity: int = Field(..., gt=0)
    note: Optional[str] = None


class InventoryLogRead(BaseModel):
    id: int
    inventory_id: int
    delta: int
    operation_type: models.InventoryOperationEnum
    previous_quantity: int
    current_quantity: int
    user_id: Optional[str] = None
    note: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


# ---------------------------------------------------------------------------
# STATISTICS
# ---------------------------------------------------------------------------


class StockSummary(BaseModel):
    total_count: int
    total_value: float
    low_stock_count: int
    out_of_stock_count: int
    normal_stock_count: int


class AlertItem(BaseModel):
    id: int
    name: str
    quantity: int
    expires_on: Optional[date] = None


class AlertSummary(BaseModel):
    low_stock: List[AlertItem]
    out_of_stock: List[AlertItem]
    expiring_soon: List[AlertItem]


class ExpiryRiskBucket(BaseModel):
    days: int
    batch_count: int
    quantity: int
    value: float


class OperationSummaryRow(BaseModel):
    operation_type: models.InventoryOperationEnum
    count: int
    total_delta: int


class DailyTransactionRow(BaseModel):
    day: date
    count: int
    net_delta: int


class ProductActivityRow(BaseModel):
    inventory_id: int
    name: str
    count: int


# ---------------------------------------------------------------------------
# CSV IMPORT
# ---------------------------------------------------------------------------


class ImportRowError(BaseModel):
    row: int
    errors: List[str]
    data: Dict[str, Optional[str]] = {}


class ImportResult(BaseModel):
    valid_count: int
    update_count: int
    invalid_records: List[ImportRowError]
