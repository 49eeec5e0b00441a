from __future__ import annotations

from datetime import datetime
import enum

from sqlalchemy import Column, DateTime, Enum as SAEnum, ForeignKey, Index, Integer, JSON, String, Text

from storedb.database import Base
from storedb.utils.identifiers import generate_uuid7


def _utcnow() -> datetime:
    return datetime.utcnow()


class EmailStatus(str, enum.Enum):
    QUEUED = "QUEUED"
    SENT = "SENT"
    FAILED = "FAILED"
    SKIPPED_NO_PROVIDER = "SKIPPED_NO_PROVIDER"


class NotificationKind(str, enum.Enum):
    """What an email is about. Stored beside the template so reports can group by purpose."""

    STOCK_ALERT = "STOCK_ALERT"
    EXPIRY_ALERT = "EXPIRY_ALERT"
    TEMP_PASSWORD = "TEMP_PASSWORD"
    PASSWORD_RESET = "PASSWORD_RESET"
    TRANSFER_UPDATE = "TRANSFER_UPDATE"
    OTHER = "OTHER"

    @classmethod
    def for_template(cls, template_key: str) -> "NotificationKind":
        try:
            return cls((template_key or "").upper())
        except ValueError:
            return cls.OTHER


class EmailLog(Base):
    """One delivery attempt to a store manager, clerk or headquarters admin."""

    __tablename__ = "email_logs"
    __table_args__ = (
        Index("ix_email_logs_store_created", "store_id", "created_at"),
        Index("ix_email_logs_kind_status", "kind", "status"),
        Index("ix_email_logs_transfer", "transfer_id"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid7, index=True)
    store_id = Column(String(36), ForeignKey("stores.id", ondelete="SET NULL"), nullable=True, index=True)
    transfer_id = Column(Integer, ForeignKey("inter_store_transfers.id", ondelete="SET NULL"), nullable=True)
    kind = Column(
        SAEnum(NotificationKind, name="notification_kind_enum", native_enum=False),
        nullable=False,
        default=NotificationKind.OTHER,
    )

    recipient = Column(String(255), nullable=False)
    subject = Column(String(255), nullable=False)
    template_key = Column(String(128), nullable=False)
    status = Column(
        SAEnum(EmailStatus, name="email_status_enum", native_enum=False),
        nullable=False,
    )
    error = Column(Text, nullable=True)
    context_json = Column(JSON, nullable=True)
    correlation_id = Column(String(64), nullable=True, index=True)

    created_at = Column(DateTime, nullable=False, default=_utcnow, index=True)
    sent_at = Column(DateTime, nullable=True)

    def __repr__(self) -> str:
        return f"<EmailLog id={self.id} kind={self.kind} recipient={self.recipient} status={self.status}>"
