# backend/storedb/apps/accounts/models.py

from __future__ import annotations

import enum
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import relationship

from storedb.database import Base
from storedb.utils.identifiers import generate_uuid7


def _utcnow() -> datetime:
    return datetime.utcnow()


# ---------------------------------------------------------------------------
# ENUMS
# ---------------------------------------------------------------------------


class AdminRole(str, enum.Enum):
    """Roles for back-office administrators.

    Headquarters admins see every store; everyone else is bound to `store_id`.
    """

    HEADQUARTERS_ADMIN = "HEADQUARTERS_ADMIN"
    STORE_MANAGER = "STORE_MANAGER"
    PHARMACIST = "PHARMACIST"
    STORE_USER = "STORE_USER"


class StoreUserRole(str, enum.Enum):
    STAFF = "STAFF"
    MANAGER = "MANAGER"


# ---------------------------------------------------------------------------
# ADMINS
# ---------------------------------------------------------------------------


class Admin(Base):
    """
    Back-office account (headquarters or store management).

    Admins approve transfers, manage store users and read audit trails.
    """

    __tablename__ = "admins"
    __table_args__ = (
        Index("idx_admins_role_active", "role", "is_active"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid7)
    email = Column(String(255), nullable=False, unique=True, index=True)
    name = Column(String(100), nullable=True)
    role = Column(
        Enum(AdminRole, name="admin_role_enum", native_enum=False),
        nullable=False,
        default=AdminRole.STORE_USER,
        index=True,
    )
    store_id = Column(
        String(36),
        ForeignKey("stores.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    hashed_password = Column(String(255), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True, index=True)

    failed_attempts = Column(Integer, nullable=False, default=0)
    lockout_count = Column(Integer, nullable=False, default=0)
    locked_until = Column(DateTime, nullable=True)
    last_login_at = Column(DateTime, nullable=True)
    last_login_ip = Column(String(64), nullable=True)

    created_at = Column(DateTime, nullable=False, default=_utcnow)
    updated_at = Column(DateTime, nullable=False, default=_utcnow, onupdate=_utcnow)

    store = relationship("Store", lazy="joined")

    @property
    def is_headquarters_admin(self) -> bool:
        return self.role == AdminRole.HEADQUARTERS_ADMIN

    @property
    def can_approve_transfers(self) -> bool:
        return self.role in {AdminRole.HEADQUARTERS_ADMIN, AdminRole.STORE_MANAGER}

    def can_manage_store(self, store_id: Optional[str]) -> bool:
        if self.is_headquarters_admin:
            return True
        return (
            self.role == AdminRole.STORE_MANAGER
            and store_id is not None
            and self.store_id == store_id
        )

    @property
    def accessible_store_ids(self) -> Optional[List[str]]:
        """None means every store."""
        if self.is_headquarters_admin:
            return None
        return [self.store_id] if self.store_id else []

    def can_access_store(self, store_id: Optional[str]) -> bool:
        if self.is_headquarters_admin:
            return True
        return store_id is not None and self.store_id == store_id

    def __repr__(self) -> str:
        return f"<Admin {self.email} role={self.role}>"


# ---------------------------------------------------------------------------
# STORE USERS
# ---------------------------------------------------------------------------


class StoreUser(Base):
    """
    Counter staff account scoped to exactly one store.

    Passwords expire after PASSWORD_EXPIRY_DAYS; `must_change_password` forces
    an immediate change (new accounts, temp-password logins).
    """

    PASSWORD_EXPIRY_DAYS = 90
    MAXIMUM_ATTEMPTS = 5
    UNLOCK_IN = timedelta(minutes=30)
    SESSION_TIMEOUT = timedelta(hours=8)

    __tablename__ = "store_users"
    __table_args__ = (
        UniqueConstraint("store_id", "email", name="uq_store_users_store_email"),
        UniqueConstraint("store_id", "employee_code", name="uq_store_users_store_employee_code"),
        Index("idx_store_users_store_role", "store_id", "role"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid7)
    store_id = Column(
        String(36),
        ForeignKey("stores.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    email = Column(String(255), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    role = Column(
        Enum(StoreUserRole, name="store_user_role_enum", native_enum=False),
        nullable=False,
        default=StoreUserRole.STAFF,
    )
    employee_code = Column(String(50), nullable=True)
    hashed_password = Column(String(255), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True, index=True)

    password_changed_at = Column(DateTime, nullable=True)
    must_change_password = Column(Boolean, nullable=False, default=True)

    failed_attempts = Column(Integer, nullable=False, default=0)
    locked_at = Column(DateTime, nullable=True)

    sign_in_count = Column(Integer, nullable=False, default=0)
    current_sign_in_at = Column(DateTime, nullable=True)
    last_sign_in_at = Column(DateTime, nullable=True)
    current_sign_in_ip = Column(String(64), nullable=True)
    last_sign_in_ip = Column(String(64), nullable=True)

    created_at = Column(DateTime, nullable=False, default=_utcnow)
    updated_at = Column(DateTime, nullable=False, default=_utcnow, onupdate=_utcnow)

    store = relationship("Store", lazy="joined")
    temp_passwords = relationship(
        "TempPassword",
        back_populates="store_user",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    @property
    def is_manager(self) -> bool:
        return self.role == StoreUserRole.MANAGER

    def password_expired(self, now: Optional[datetime] = None) -> bool:
        if self.must_change_password:
            return True
        if self.password_changed_at is None:
            return False
        now = now or _utcnow()
        return self.password_changed_at < now - timedelta(days=self.PASSWORD_EXPIRY_DAYS)

    def password_expires_in_days(self, now: Optional[datetime] = None) -> int:
        if self.password_changed_at is None:
            return 0
        now = now or _utcnow()
        expires_at = self.password_changed_at + timedelta(days=self.PASSWORD_EXPIRY_DAYS)
        return max(0, (expires_at - now).days)

    def is_locked(self, now: Optional[datetime] = None) -> bool:
        if self.locked_at is None:
            return False
        now = now or _utcnow()
        return self.locked_at + self.UNLOCK_IN > now

    def __repr__(self) -> str:
        return f"<StoreUser {self.email} store={self.store_id}>"


# ---------------------------------------------------------------------------
# TEMPORARY PASSWORDS (email login)
# ---------------------------------------------------------------------------


class TempPassword(Base):
    """
    Short-lived numeric password delivered by email.

    Only the hash is stored. At most one row per user is active at a time.
    """

    MAX_ATTEMPTS = 5
    DEFAULT_TTL = timedelta(minutes=15)
    CLEANUP_GRACE_PERIOD = timedelta(hours=24)

    __tablename__ = "temp_passwords"
    __table_args__ = (
        CheckConstraint(
            "usage_attempts >= 0 AND usage_attempts <= 10",
            name="ck_temp_passwords_usage_attempts_range",
        ),
        CheckConstraint("expires_at > created_at", name="ck_temp_passwords_expires_after_created"),
        Index("idx_temp_passwords_user_active", "store_user_id", "is_active"),
        Index(
            "uq_temp_passwords_one_active_per_user",
            "store_user_id",
            unique=True,
            postgresql_where=text("is_active"),
            sqlite_where=text("is_active = 1"),
        ),
        Index("idx_temp_passwords_expires", "expires_at"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid7)
    store_user_id = Column(
        String(36),
        ForeignKey("store_users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    password_hash = Column(String(255), nullable=False)
    expires_at = Column(DateTime, nullable=False)
    used_at = Column(DateTime, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    ip_address = Column(String(64), nullable=True)
    user_agent = Column(Text, nullable=True)
    generated_by_admin_id = Column(
        String(36),
        ForeignKey("admins.id", ondelete="SET NULL"),
        nullable=True,
    )
    usage_attempts = Column(Integer, nullable=False, default=0)
    last_attempt_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, nullable=False, default=_utcnow)
    updated_at = Column(DateTime, nullable=False, default=_utcnow, onupdate=_utcnow)

    store_user = relationship("StoreUser", back_populates="temp_passwords", lazy="joined")

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        now = now or _utcnow()
        return self.expires_at <= now

    def is_used(self) -> bool:
        return self.used_at is not None

    def is_locked(self) -> bool:
        return (self.usage_attempts or 0) >= self.MAX_ATTEMPTS

    def valid_for_authentication(self, now: Optional[datetime] = None) -> bool:
        return (
            bool(self.is_active)
            and not self.is_expired(now)
            and not self.is_used()
            and not self.is_locked()
        )

    def time_until_expiry(self, now: Optional[datetime] = None) -> int:
        """Seconds until expiry (0 when already expired)."""
        now = now or _utcnow()
        return max(0, int((self.expires_at - now).total_seconds()))

    def __repr__(self) -> str:
        return f"<TempPassword user={self.store_user_id} active={self.is_active}>"


# ---------------------------------------------------------------------------
# PASSWORD RESET TOKENS (admins)
# ---------------------------------------------------------------------------


class PasswordResetToken(Base):
    """
    One-time password reset token for admins.

    - We store only a hash of the token (raw token is emailed).
    - Tokens expire and are marked used once redeemed.
    """

    __tablename__ = "password_reset_tokens"
    __table_args__ = (
        Index("idx_reset_tokens_admin_expires", "admin_id", "expires_at"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid7)
    admin_id = Column(
        String(36),
        ForeignKey("admins.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    token_hash = Column(String(255), nullable=False, index=True)
    issued_at = Column(DateTime, nullable=False, default=_utcnow)
    expires_at = Column(DateTime, nullable=False)
    used_at = Column(DateTime, nullable=True)

    request_ip = Column(String(64), nullable=True)
    request_user_agent = Column(Text, nullable=True)

    admin = relationship("Admin", lazy="joined")

    def is_active(self, now: datetime | None = None) -> bool:
        now = now or _utcnow()
        if self.used_at is not None:
            return False
        return self.expires_at >= now


# ---------------------------------------------------------------------------
# SECURITY EVENTS
# ---------------------------------------------------------------------------


class AccountSecurityEvent(Base):
    """
    Focused security trail (logins, lockouts, temp passwords, password changes).

    Kept apart from the general audit log to make security reviews easier.
    """

    __tablename__ = "account_security_events"
    __table_args__ = (
        Index("idx_security_events_principal_created", "principal_id", "event_type", "created_at"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid7)
    principal_type = Column(String(32), nullable=True, doc="'admin' or 'store_user'")
    principal_id = Column(String(36), nullable=True, index=True)
    store_id = Column(
        String(36),
        ForeignKey("stores.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    event_type = Column(
        String(64),
        nullable=False,
        doc="e.g. 'LOGIN_SUCCESS', 'LOGIN_FAILED', 'LOCKOUT', 'TEMP_PASSWORD_USED'",
    )
    description = Column(Text, nullable=True)
    ip_address = Column(String(64), nullable=True)
    user_agent = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=_utcnow)

    def __repr__(self) -> str:
        return f"<SecurityEvent {self.event_type} principal={self.principal_id}>"


# ---------------------------------------------------------------------------
# IDEMPOTENCY KEYS
# ---------------------------------------------------------------------------


class IdempotencyKey(Base):
    __tablename__ = "idempotency_keys"
    __table_args__ = (
        UniqueConstraint("scope", "key", name="uq_idempotency_scope_key"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid7)
    scope = Column(String(128), nullable=False)
    key = Column(String(128), nullable=False)
    payload_hash = Column(String(64), nullable=False)
    resource_id = Column(String(64), nullable=True)
    created_at = Column(DateTime, nullable=False, default=_utcnow)
