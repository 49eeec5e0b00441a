from __future__ import annotations

from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Index, JSON, String, Text, desc

from ...database import Base
from ...utils.identifiers import generate_uuid7


def _utcnow() -> datetime:
    return datetime.utcnow()


class AuditLog(Base):
    """
    Append-only audit trail for inventory, transfer, export and login actions.

    `auditable_type`/`auditable_id` point at the affected record (polymorphic);
    system-wide events leave `store_id` empty.
    """

    __tablename__ = "audit_logs"
    __table_args__ = (
        Index("ix_audit_logs_store_auditable", "store_id", "auditable_type", "auditable_id"),
        Index("ix_audit_logs_store_action", "store_id", "action"),
        Index("ix_audit_logs_store_time", "store_id", "occurred_at"),
        Index("ix_audit_logs_time_desc", desc("occurred_at")),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid7, index=True)
    store_id = Column(String(36), ForeignKey("stores.id", ondelete="SET NULL"), nullable=True, index=True)
    auditable_type = Column(String(64), nullable=True, index=True)
    auditable_id = Column(String(64), nullable=True, index=True)
    actor_type = Column(String(32), nullable=True)
    actor_id = Column(String(36), nullable=True, index=True)
    action = Column(String(64), nullable=False, index=True)
    message = Column(Text, nullable=False)
    details = Column(JSON, nullable=True)
    ip_address = Column(String(64), nullable=True)
    user_agent = Column(Text, nullable=True)
    correlation_id = Column(String(64), nullable=True, index=True)
    occurred_at = Column(DateTime, nullable=False, default=_utcnow, index=True)
    created_at = Column(DateTime, nullable=False, default=_utcnow)

    def __repr__(self) -> str:
        return f"<AuditLog id={self.id} auditable={self.auditable_type}:{self.auditable_id} action={self.action}>"
