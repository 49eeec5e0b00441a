from __future__ import annotations

from datetime import date
from typing import Dict, List, Optional

from pydantic import BaseModel

from storedb.apps.inventory.schemas import ExpiryRiskBucket
from storedb.apps.stores.schemas import ActiveStoresStats, StoreInventoryRead
from storedb.apps.transfers.schemas import PendingStats, TransferAnalytics, TransferRead


class DashboardStatistics(BaseModel):
    total_items: int
    total_quantity: int
    total_value: float
    low_stock_items: int
    out_of_stock_items: int
    pending_transfers_in: int
    pending_transfers_out: int


class DashboardBatch(BaseModel):
    inventory_id: int
    inventory_name: str
    lot_code: str
    quantity: int
    expires_on: Optional[date] = None
    days_until_expiry: Optional[int] = None


class StoreDashboard(BaseModel):
    statistics: DashboardStatistics
    low_stock_items: List[StoreInventoryRead]
    out_of_stock_items: List[StoreInventoryRead]
    expiring_batches: List[DashboardBatch]
    pending_incoming: List[TransferRead]
    pending_outgoing: List[TransferRead]
    recent_completed: List[TransferRead]
    category_distribution: Dict[str, int]


class StockAlerts(BaseModel):
    low_stock: List[StoreInventoryRead]
    critical_stock: List[StoreInventoryRead]
    out_of_stock: List[StoreInventoryRead]
    expired_batches: List[DashboardBatch]
    expiring_batches: List[DashboardBatch]
    expiry_risk: Dict[str, ExpiryRiskBucket]


class HeadquartersOverview(BaseModel):
    stores: ActiveStoresStats
    pending: PendingStats
    analytics: TransferAnalytics
