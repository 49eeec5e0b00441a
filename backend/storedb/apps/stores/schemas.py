from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from .models import StockLevelStatusEnum, StoreTypeEnum


# ---------------------------------------------------------------------------
# STORES
# ---------------------------------------------------------------------------


class StoreBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    code: str = Field(..., min_length=1, max_length=20)
    store_type: StoreTypeEnum = StoreTypeEnum.PHARMACY
    region: Optional[str] = Field(default=None, max_length=64)
    address: Optional[str] = None
    phone: Optional[str] = Field(default=None, max_length=32)
    email: Optional[str] = Field(default=None, max_length=255)
    manager_name: Optional[str] = Field(default=None, max_length=100)


class StoreCreate(StoreBase):
    is_active: bool = True


class StoreUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    code: Optional[str] = Field(default=None, min_length=1, max_length=20)
    store_type: Optional[StoreTypeEnum] = None
    region: Optional[str] = Field(default=None, max_length=64)
    address: Optional[str] = None
    phone: Optional[str] = Field(default=None, max_length=32)
    email: Optional[str] = Field(default=None, max_length=255)
    manager_name: Optional[str] = Field(default=None, max_length=100)
    is_active: Optional[bool] = None


class StoreRead(StoreBase):
    id: str
    slug: str
    is_active: bool
    display_name: str
    pending_outgoing_transfers_count: int
    pending_incoming_transfers_count: int
    low_stock_items_count: int
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class StoreBrief(BaseModel):
    id: str
    code: str
    name: str
    slug: str
    store_type: StoreTypeEnum
    region: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class StoreSelectionGroup(BaseModel):
    store_type: StoreTypeEnum
    stores: List[StoreBrief]


class StoreSelection(BaseModel):
    groups: List[StoreSelectionGroup]
    recent_stores: List[StoreBrief]


class ActiveStoresStats(BaseModel):
    total_stores: int
    total_inventory_value: float
    average_inventory_per_store: float
    stores_with_low_stock: int


class StoreSummary(BaseModel):
    total_items: int
    total_value: float
    available_value: float
    reserved_value: float
    low_stock_count: int
    critical_stock_count: int
    out_of_stock_count: int
    overstocked_count: int


# ---------------------------------------------------------------------------
# STORE INVENTORIES
# ---------------------------------------------------------------------------


class StoreInventoryCreate(BaseModel):
    inventory_id: int
    quantity: int = Field(0, ge=0)
    safety_stock_level: int = Field(5, ge=0)


class StoreInventoryUpdate(BaseModel):
    quantity: Optional[int] = Field(default=None, ge=0)
    safety_stock_level: Optional[int] = Field(default=None, ge=0)


class StoreInventoryRead(BaseModel):
    id: int
    store_id: str
    inventory_id: int
    inventory_name: str
    sku: Optional[str] = None
    manufacturer: Optional[str] = None
    category: str
    quantity: int
    reserved_quantity: int
    available_quantity: int
    safety_stock_level: int
    stock_level_status: StockLevelStatusEnum
    inventory_value: float
    last_updated_at: Optional[datetime] = None


class StoreInventoryPage(BaseModel):
    items: List[StoreInventoryRead]
    total: int
    page: int
    per_page: int


class InventoryStoreStock(BaseModel):
    store: StoreBrief
    quantity: int
    reserved_quantity: int
    available_quantity: int
    stock_level_status: StockLevelStatusEnum
