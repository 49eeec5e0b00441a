from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class AuditLogCreate(BaseModel):
    store_id: Optional[str] = None
    auditable_type: Optional[str] = None
    auditable_id: Optional[str] = None
    actor_type: Optional[str] = None
    actor_id: Optional[str] = None
    action: str
    message: str = Field(..., min_length=1)
    details: Optional[dict] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    correlation_id: Optional[str] = None
    occurred_at: Optional[datetime] = None


class AuditLogRead(BaseModel):
    id: str
    store_id: Optional[str] = None
    auditable_type: Optional[str] = None
    auditable_id: Optional[str] = None
    actor_type: Optional[str] = None
    actor_id: Optional[str] = None
    action: str
    message: str
    details: Optional[dict] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    correlation_id: Optional[str] = None
    occurred_at: datetime
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class AuditCleanupResult(BaseModel):
    deleted: int
    cutoff: datetime
