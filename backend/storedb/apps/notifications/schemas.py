from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict

from .models import EmailStatus, NotificationKind


class EmailLogRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    kind: NotificationKind
    template_key: str
    status: EmailStatus
    recipient: str
    subject: str
    store_id: Optional[str] = None
    transfer_id: Optional[int] = None
    correlation_id: Optional[str] = None
    error: Optional[str] = None
    context_json: Optional[dict] = None
    created_at: datetime
    sent_at: Optional[datetime] = None


class EmailLogSummary(BaseModel):
    """Delivery counts for one notification kind."""

    kind: NotificationKind
    total: int
    sent: int
    failed: int
    skipped: int
