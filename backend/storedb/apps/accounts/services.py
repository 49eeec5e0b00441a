from __future__ import annotations

from datetime import datetime, timedelta
from typing import List, Optional, Tuple, Union

import hashlib
import ipaddress
import json
import secrets
import string

from sqlalchemy import func
from sqlalchemy.orm import Session

from storedb.security import (
    ACCESS_TOKEN_EXPIRE_MINUTES,
    PRINCIPAL_ADMIN,
    PRINCIPAL_STORE_USER,
    create_access_token,
    get_password_hash,
    verify_password,
)
from storedb.apps.audit import services as audit_services
from storedb.apps.stores import models as store_models
from . import models, schemas


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

PASSWORD_RESET_TOKEN_TTL_MINUTES = 60 * 24  # 24 hours
MAX_LOGIN_ATTEMPTS = 3
LOCKOUT_SCHEDULE_SECONDS = (30, 90, 900)
MIN_PASSWORD_LENGTH = 12
TEMP_PASSWORD_DIGITS = 6


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class AuthenticationError(Exception):
    """Raised when login credentials are invalid or account is locked."""

    def __init__(
        self,
        message: str,
        *,
        retry_after_seconds: Optional[int] = None,
    ) -> None:
        super().__init__(message)
        self.retry_after_seconds = retry_after_seconds


class AuthorisationError(Exception):
    """Raised when a principal tries to perform an action they are not authorised for."""


class IdempotencyError(Exception):
    """Raised when an idempotency key is reused with conflicting payload."""


class TempPasswordError(Exception):
    """Temp-password login failed; `reason` is a stable machine-readable code."""

    def __init__(self, reason: str, message: Optional[str] = None) -> None:
        super().__init__(message or reason)
        self.reason = reason


def _utcnow() -> datetime:
    return datetime.utcnow()


# ---------------------------------------------------------------------------
# Normalisation helpers
# ---------------------------------------------------------------------------


def _normalise_email(value: str) -> str:
    return value.strip().lower()


def _normalise_employee_code(value: Optional[str]) -> Optional[str]:
    value = (value or "").strip().upper()
    return value or None


def mask_email(email: Optional[str]) -> str:
    """Mask an address for logs and responses (`a***z@example.com`)."""
    if not email or not email.strip():
        return "[NO_EMAIL]"
    if "@" not in email:
        return "[INVALID_EMAIL]"

    local, domain = email.strip().split("@", 1)
    if len(local) <= 1:
        masked = f"{local}***"
    elif len(local) == 2:
        masked = f"{local[0]}*"
    else:
        masked = f"{local[0]}***{local[-1]}"
    return f"{masked}@{domain}"


def _validate_ip(value: Optional[str]) -> None:
    if value is None:
        return
    try:
        ipaddress.ip_address(value)
    except ValueError:
        raise ValueError("Invalid IP address format.")


# ---------------------------------------------------------------------------
# Password policy
# ---------------------------------------------------------------------------


def _validate_password_strength(password: str) -> None:
    if not password or len(password) < MIN_PASSWORD_LENGTH:
        raise ValueError(
            f"Password must be at least {MIN_PASSWORD_LENGTH} characters long."
        )

    has_upper = any(ch.isupper() for ch in password)
    has_lower = any(ch.islower() for ch in password)
    has_digit = any(ch.isdigit() for ch in password)
    has_symbol = any(not ch.isalnum() for ch in password)

    if not (has_upper and has_lower and has_digit and has_symbol):
        raise ValueError(
            "Password must include upper and lower case letters, a number, and a symbol."
        )


# ---------------------------------------------------------------------------
# Security event helper
# ---------------------------------------------------------------------------


def _log_security_event(
    db: Session,
    *,
    principal_type: Optional[str],
    principal_id: Optional[str],
    store_id: Optional[str],
    event_type: str,
    description: Optional[str],
    ip: Optional[str],
    user_agent: Optional[str],
) -> None:
    event = models.AccountSecurityEvent(
        principal_type=principal_type,
        principal_id=principal_id,
        store_id=store_id,
        event_type=event_type,
        description=description,
        ip_address=ip,
        user_agent=user_agent,
    )
    db.add(event)
    db.commit()


def _admin_event(db: Session, admin: Optional[models.Admin], event_type: str, description: Optional[str], ip, user_agent) -> None:
    _log_security_event(
        db,
        principal_type=PRINCIPAL_ADMIN,
        principal_id=admin.id if admin else None,
        store_id=admin.store_id if admin else None,
        event_type=event_type,
        description=description,
        ip=ip,
        user_agent=user_agent,
    )


def _store_user_event(
    db: Session,
    user: Optional[models.StoreUser],
    event_type: str,
    description: Optional[str],
    ip,
    user_agent,
    *,
    store_id: Optional[str] = None,
) -> None:
    _log_security_event(
        db,
        principal_type=PRINCIPAL_STORE_USER,
        principal_id=user.id if user else None,
        store_id=user.store_id if user else store_id,
        event_type=event_type,
        description=description,
        ip=ip,
        user_agent=user_agent,
    )


# ---------------------------------------------------------------------------
# Admin lifecycle
# ---------------------------------------------------------------------------


def get_admin_by_id(db: Session, admin_id: str) -> Optional[models.Admin]:
    return db.query(models.Admin).filter(models.Admin.id == admin_id).first()


def get_active_admin_by_email(db: Session, email: str) -> Optional[models.Admin]:
    return (
        db.query(models.Admin)
        .filter(
            models.Admin.email == _normalise_email(email),
            models.Admin.is_active.is_(True),
        )
        .first()
    )


def create_admin(db: Session, data: schemas.AdminCreate) -> models.Admin:
    email = _normalise_email(data.email)

    if data.role != models.AdminRole.HEADQUARTERS_ADMIN and not data.store_id:
        raise ValueError("Store is required unless the admin is a headquarters admin.")
    if data.store_id:
        store = db.query(store_models.Store).filter(store_models.Store.id == data.store_id).first()
        if not store:
            raise ValueError("Invalid store id.")

    if db.query(models.Admin).filter(models.Admin.email == email).first():
        raise ValueError("An admin with this email already exists.")

    _validate_password_strength(data.password)

    admin = models.Admin(
        email=email,
        name=(data.name or "").strip() or None,
        role=data.role,
        store_id=data.store_id,
        hashed_password=get_password_hash(data.password),
        is_active=True,
    )
    db.add(admin)
    db.commit()
    db.refresh(admin)
    return admin


# ---------------------------------------------------------------------------
# Admin authentication
# ---------------------------------------------------------------------------


def _is_admin_locked(admin: models.Admin, now: Optional[datetime] = None) -> bool:
    if not admin.locked_until:
        return False
    return admin.locked_until > (now or _utcnow())


def _seconds_until_unlock(admin: models.Admin, now: Optional[datetime] = None) -> Optional[int]:
    if not admin.locked_until:
        return None
    remaining = admin.locked_until - (now or _utcnow())
    return max(0, int(remaining.total_seconds()))


def _register_failed_admin_login(
    db: Session,
    admin: models.Admin,
    ip: Optional[str],
    user_agent: Optional[str],
) -> None:
    admin.failed_attempts = (admin.failed_attempts or 0) + 1

    _admin_event(db, admin, "LOGIN_FAILED", "Invalid password.", ip, user_agent)

    if admin.failed_attempts < MAX_LOGIN_ATTEMPTS:
        db.add(admin)
        db.commit()
        return

    admin.failed_attempts = 0
    admin.lockout_count = (admin.lockout_count or 0) + 1
    lockout_index = min(admin.lockout_count - 1, len(LOCKOUT_SCHEDULE_SECONDS) - 1)
    lockout_seconds = LOCKOUT_SCHEDULE_SECONDS[lockout_index]
    admin.locked_until = _utcnow() + timedelta(seconds=lockout_seconds)
    db.add(admin)
    db.commit()

    _admin_event(
        db,
        admin,
        "LOCKOUT",
        f"Account locked for {lockout_seconds} seconds after repeated failures.",
        ip,
        user_agent,
    )


def _reset_failed_admin_logins(
    db: Session,
    admin: models.Admin,
    ip: Optional[str],
    user_agent: Optional[str],
) -> None:
    admin.failed_attempts = 0
    admin.locked_until = None
    admin.lockout_count = 0
    admin.last_login_at = _utcnow()
    admin.last_login_ip = ip
    db.add(admin)
    db.commit()

    _admin_event(db, admin, "LOGIN_SUCCESS", None, ip, user_agent)


def authenticate_admin(
    db: Session,
    *,
    email: str,
    password: str,
    ip: Optional[str],
    user_agent: Optional[str],
) -> models.Admin:
    """
    Email + password login for back-office admins.

    Every third consecutive failure locks the account; lockouts escalate
    through LOCKOUT_SCHEDULE_SECONDS.
    """
    admin = get_active_admin_by_email(db, email)
    if not admin:
        _admin_event(db, None, "LOGIN_FAILED", "Unknown admin or inactive account.", ip, user_agent)
        raise AuthenticationError("Invalid credentials.")

    if _is_admin_locked(admin):
        _admin_event(db, admin, "LOCKOUT", "Account locked due to repeated failed logins.", ip, user_agent)
        raise AuthenticationError(
            "Account locked due to repeated failed attempts.",
            retry_after_seconds=_seconds_until_unlock(admin),
        )

    if not verify_password(password, admin.hashed_password):
        _register_failed_admin_login(db, admin, ip, user_agent)
        raise AuthenticationError("Invalid credentials.")

    _reset_failed_admin_logins(db, admin, ip, user_agent)
    return admin


def issue_access_token_for_admin(admin: models.Admin) -> Tuple[str, int]:
    """Returns (token_string, expires_in_seconds)."""
    expires_delta = timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)
    payload = {
        "sub": str(admin.id),
        "kind": PRINCIPAL_ADMIN,
        "store_id": admin.store_id,
        "role": admin.role.value if hasattr(admin.role, "value") else str(admin.role),
    }
    token = create_access_token(data=payload, expires_delta=expires_delta)
    return token, int(ACCESS_TOKEN_EXPIRE_MINUTES * 60)


# ---------------------------------------------------------------------------
# Store users
# ---------------------------------------------------------------------------


def find_active_store_by_slug(db: Session, store_slug: str) -> Optional[store_models.Store]:
    slug = (store_slug or "").strip().lower()
    if not slug:
        return None
    return (
        db.query(store_models.Store)
        .filter(
            store_models.Store.slug == slug,
            store_models.Store.is_active.is_(True),
        )
        .first()
    )


def get_store_user(db: Session, user_id: str) -> Optional[models.StoreUser]:
    return db.query(models.StoreUser).filter(models.StoreUser.id == user_id).first()


def get_store_user_by_email(db: Session, *, store_id: str, email: str) -> Optional[models.StoreUser]:
    return (
        db.query(models.StoreUser)
        .filter(
            models.StoreUser.store_id == store_id,
            func.lower(models.StoreUser.email) == _normalise_email(email),
        )
        .first()
    )


def list_store_users(
    db: Session,
    *,
    store_ids: Optional[List[str]] = None,
    include_inactive: bool = False,
) -> List[models.StoreUser]:
    query = db.query(models.StoreUser)
    if store_ids is not None:
        query = query.filter(models.StoreUser.store_id.in_(store_ids))
    if not include_inactive:
        query = query.filter(models.StoreUser.is_active.is_(True))
    return query.order_by(models.StoreUser.store_id.asc(), models.StoreUser.name.asc()).all()


def create_store_user(
    db: Session,
    *,
    store: store_models.Store,
    data: schemas.StoreUserCreate,
) -> models.StoreUser:
    email = _normalise_email(data.email)
    employee_code = _normalise_employee_code(data.employee_code)

    if get_store_user_by_email(db, store_id=store.id, email=email):
        raise ValueError("A user with this email already exists in this store.")
    if employee_code and (
        db.query(models.StoreUser)
        .filter(
            models.StoreUser.store_id == store.id,
            models.StoreUser.employee_code == employee_code,
        )
        .first()
    ):
        raise ValueError("A user with this employee code already exists in this store.")

    _validate_password_strength(data.password)

    user = models.StoreUser(
        store_id=store.id,
        email=email,
        name=data.name.strip(),
        role=data.role,
        employee_code=employee_code,
        hashed_password=get_password_hash(data.password),
        is_active=True,
        must_change_password=True,
        password_changed_at=_utcnow(),
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def update_store_user(
    db: Session,
    user: models.StoreUser,
    data: schemas.StoreUserUpdate,
) -> models.StoreUser:
    if data.name is not None:
        user.name = data.name.strip()
    if data.role is not None:
        user.role = data.role
    if data.employee_code is not None:
        employee_code = _normalise_employee_code(data.employee_code)
        if employee_code and (
            db.query(models.StoreUser)
            .filter(
                models.StoreUser.store_id == user.store_id,
                models.StoreUser.employee_code == employee_code,
                models.StoreUser.id != user.id,
            )
            .first()
        ):
            raise ValueError("A user with this employee code already exists in this store.")
        user.employee_code = employee_code
    if data.is_active is not None:
        user.is_active = data.is_active

    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def _track_sign_in(user: models.StoreUser, ip: Optional[str], now: datetime) -> None:
    user.sign_in_count = (user.sign_in_count or 0) + 1
    user.last_sign_in_at = user.current_sign_in_at
    user.last_sign_in_ip = user.current_sign_in_ip
    user.current_sign_in_at = now
    user.current_sign_in_ip = ip
    user.failed_attempts = 0
    user.locked_at = None


def authenticate_store_user(
    db: Session,
    *,
    store_slug: str,
    email: str,
    password: str,
    ip: Optional[str],
    user_agent: Optional[str],
) -> models.StoreUser:
    """
    Store-scoped password login.

    MAXIMUM_ATTEMPTS consecutive failures lock the account; the lock lifts
    on its own after StoreUser.UNLOCK_IN.
    """
    now = _utcnow()
    store = find_active_store_by_slug(db, store_slug)
    user = get_store_user_by_email(db, store_id=store.id, email=email) if store else None
    if not user or not user.is_active:
        _store_user_event(
            db,
            None,
            "LOGIN_FAILED",
            "Unknown store user or inactive account.",
            ip,
            user_agent,
            store_id=store.id if store else None,
        )
        raise AuthenticationError("Invalid credentials.")

    if user.is_locked(now):
        _store_user_event(db, user, "LOCKOUT", "Account locked due to repeated failed logins.", ip, user_agent)
        remaining = (user.locked_at + models.StoreUser.UNLOCK_IN) - now
        raise AuthenticationError(
            "Account locked due to repeated failed attempts.",
            retry_after_seconds=max(0, int(remaining.total_seconds())),
        )
    if user.locked_at is not None:
        user.locked_at = None
        user.failed_attempts = 0

    if not verify_password(password, user.hashed_password):
        user.failed_attempts = (user.failed_attempts or 0) + 1
        locked = user.failed_attempts >= models.StoreUser.MAXIMUM_ATTEMPTS
        if locked:
            user.locked_at = now
        db.add(user)
        db.commit()
        _store_user_event(db, user, "LOGIN_FAILED", "Invalid password.", ip, user_agent)
        if locked:
            _store_user_event(
                db,
                user,
                "LOCKOUT",
                f"Account locked for {int(models.StoreUser.UNLOCK_IN.total_seconds())} seconds.",
                ip,
                user_agent,
            )
        raise AuthenticationError("Invalid credentials.")

    _track_sign_in(user, ip, now)
    db.add(user)
    db.commit()
    _store_user_event(db, user, "LOGIN_SUCCESS", None, ip, user_agent)
    return user


def unlock_store_user(
    db: Session,
    user: models.StoreUser,
    *,
    admin: models.Admin,
    ip: Optional[str] = None,
    user_agent: Optional[str] = None,
) -> models.StoreUser:
    user.failed_attempts = 0
    user.locked_at = None
    db.add(user)
    db.commit()
    _store_user_event(db, user, "UNLOCKED", f"Unlocked by admin {admin.id}.", ip, user_agent)
    return user


def issue_access_token_for_store_user(user: models.StoreUser) -> Tuple[str, int]:
    """Returns (token_string, expires_in_seconds)."""
    expires_delta = timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)
    payload = {
        "sub": str(user.id),
        "kind": PRINCIPAL_STORE_USER,
        "store_id": user.store_id,
        "role": user.role.value if hasattr(user.role, "value") else str(user.role),
    }
    token = create_access_token(data=payload, expires_delta=expires_delta)
    return token, int(ACCESS_TOKEN_EXPIRE_MINUTES * 60)


# ---------------------------------------------------------------------------
# Password change
# ---------------------------------------------------------------------------


def change_password(
    db: Session,
    *,
    principal: Union[models.Admin, models.StoreUser],
    current_password: str,
    new_password: str,
    ip: Optional[str] = None,
    user_agent: Optional[str] = None,
) -> None:
    if not verify_password(current_password, principal.hashed_password):
        raise ValueError("Current password is incorrect.")
    _validate_password_strength(new_password)
    if verify_password(new_password, principal.hashed_password):
        raise ValueError("New password must differ from the current password.")

    principal.hashed_password = get_password_hash(new_password)
    if isinstance(principal, models.StoreUser):
        principal.password_changed_at = _utcnow()
        principal.must_change_password = False
    db.add(principal)
    db.commit()

    if isinstance(principal, models.StoreUser):
        _store_user_event(db, principal, "PASSWORD_CHANGED", None, ip, user_agent)
    else:
        _admin_event(db, principal, "PASSWORD_CHANGED", None, ip, user_agent)


# ---------------------------------------------------------------------------
# Password reset (admins)
# ---------------------------------------------------------------------------


def _generate_reset_token_raw(length: int = 32) -> str:
    alphabet = string.ascii_letters + string.digits
    return "".join(secrets.choice(alphabet) for _ in range(length))


def create_password_reset_token(
    db: Session,
    admin: models.Admin,
    *,
    ip: Optional[str] = None,
    user_agent: Optional[str] = None,
) -> str:
    """
    Create a one-time password reset token.

    Returns the raw token string (only this should be sent to the admin).
    """
    raw_token = _generate_reset_token_raw()
    token_row = models.PasswordResetToken(
        admin_id=admin.id,
        token_hash=get_password_hash(raw_token),
        expires_at=_utcnow() + timedelta(minutes=PASSWORD_RESET_TOKEN_TTL_MINUTES),
        request_ip=ip,
        request_user_agent=user_agent,
    )
    db.add(token_row)
    db.commit()

    _admin_event(db, admin, "PASSWORD_RESET_REQUEST", "Password reset requested.", ip, user_agent)
    return raw_token


def _find_matching_reset_token(
    db: Session,
    raw_token: str,
) -> Optional[models.PasswordResetToken]:
    now = _utcnow()
    candidate_tokens: List[models.PasswordResetToken] = (
        db.query(models.PasswordResetToken)
        .filter(
            models.PasswordResetToken.used_at.is_(None),
            models.PasswordResetToken.expires_at >= now,
        )
        .order_by(models.PasswordResetToken.issued_at.desc())
        .all()
    )
    for token in candidate_tokens:
        if verify_password(raw_token, token.token_hash):
            return token
    return None


def redeem_password_reset_token(
    db: Session,
    *,
    raw_token: str,
    new_password: str,
) -> Optional[models.Admin]:
    """Returns the admin on success, or None if the token is invalid/expired."""
    token = _find_matching_reset_token(db, raw_token)
    if not token:
        return None

    admin = token.admin
    if not admin or not admin.is_active:
        token.used_at = _utcnow()
        db.commit()
        return None

    _validate_password_strength(new_password)
    token.used_at = _utcnow()
    admin.hashed_password = get_password_hash(new_password)
    admin.failed_attempts = 0
    admin.locked_until = None
    db.add(admin)
    db.commit()
    db.refresh(admin)

    _admin_event(
        db,
        admin,
        "PASSWORD_RESET",
        "Password reset via token.",
        token.request_ip,
        token.request_user_agent,
    )
    return admin


# ---------------------------------------------------------------------------
# Temporary passwords
# ---------------------------------------------------------------------------


def _generate_numeric_password(digits: int = TEMP_PASSWORD_DIGITS) -> str:
    return f"{secrets.randbelow(10 ** digits):0{digits}d}"


def generate_temp_password(
    db: Session,
    *,
    user: models.StoreUser,
    admin_id: Optional[str] = None,
    ip: Optional[str] = None,
    user_agent: Optional[str] = None,
    ttl: Optional[timedelta] = None,
    now: Optional[datetime] = None,
) -> Tuple[models.TempPassword, str]:
    """
    Issue a fresh temp password for `user`, deactivating any active one.

    Returns (record, raw_password). Only the hash is persisted.
    """
    _validate_ip(ip)
    ttl = models.TempPassword.DEFAULT_TTL if ttl is None else ttl
    if ttl <= timedelta(0):
        raise ValueError("Temp password must expire in the future.")
    now = now or _utcnow()

    for existing in (
        db.query(models.TempPassword)
        .filter(
            models.TempPassword.store_user_id == user.id,
            models.TempPassword.is_active.is_(True),
        )
        .all()
    ):
        existing.is_active = False
    db.flush()

    raw_password = _generate_numeric_password()
    record = models.TempPassword(
        store_user_id=user.id,
        password_hash=get_password_hash(raw_password),
        expires_at=now + ttl,
        is_active=True,
        ip_address=ip,
        user_agent=user_agent,
        generated_by_admin_id=admin_id,
        usage_attempts=0,
        created_at=now,
    )
    db.add(record)
    db.flush()

    _store_user_event(
        db,
        user,
        "temp_password_generated",
        f"Temp password {record.id} issued (expires {record.expires_at.isoformat()}).",
        ip,
        user_agent,
    )
    return record, raw_password


def verify_temp_password(
    record: models.TempPassword,
    password: str,
    *,
    now: Optional[datetime] = None,
) -> bool:
    if not record.is_active or record.is_expired(now) or record.is_locked():
        return False
    return verify_password(password, record.password_hash)


def mark_temp_password_used(
    db: Session,
    record: models.TempPassword,
    *,
    now: Optional[datetime] = None,
) -> None:
    record.used_at = now or _utcnow()
    record.is_active = False
    db.flush()


def increment_usage_attempts(
    db: Session,
    record: models.TempPassword,
    *,
    ip: Optional[str] = None,
    now: Optional[datetime] = None,
) -> None:
    record.usage_attempts = (record.usage_attempts or 0) + 1
    record.last_attempt_at = now or _utcnow()
    if record.usage_attempts >= models.TempPassword.MAX_ATTEMPTS:
        record.is_active = False
    db.flush()
    if record.is_locked():
        _store_user_event(
            db,
            record.store_user,
            "temp_password_locked",
            f"Temp password {record.id} locked after {record.usage_attempts} attempts.",
            ip,
            None,
        )


def find_valid_temp_password(
    db: Session,
    user: models.StoreUser,
    *,
    now: Optional[datetime] = None,
) -> Optional[models.TempPassword]:
    now = now or _utcnow()
    return (
        db.query(models.TempPassword)
        .filter(
            models.TempPassword.store_user_id == user.id,
            models.TempPassword.is_active.is_(True),
            models.TempPassword.used_at.is_(None),
            models.TempPassword.expires_at > now,
            models.TempPassword.usage_attempts < models.TempPassword.MAX_ATTEMPTS,
        )
        .order_by(models.TempPassword.created_at.desc())
        .first()
    )


def _latest_temp_password(db: Session, user: models.StoreUser) -> Optional[models.TempPassword]:
    return (
        db.query(models.TempPassword)
        .filter(models.TempPassword.store_user_id == user.id)
        .order_by(models.TempPassword.created_at.desc())
        .first()
    )


def cleanup_expired_temp_passwords(db: Session, *, now: Optional[datetime] = None) -> int:
    """
    Delete expired rows past the grace period and used rows past twice the grace period.
    """
    now = now or _utcnow()
    grace = models.TempPassword.CLEANUP_GRACE_PERIOD

    expired = (
        db.query(models.TempPassword)
        .filter(models.TempPassword.expires_at < now - grace)
        .delete(synchronize_session=False)
    )
    used = (
        db.query(models.TempPassword)
        .filter(
            models.TempPassword.used_at.isnot(None),
            models.TempPassword.used_at < now - grace * 2,
        )
        .delete(synchronize_session=False)
    )
    deleted = expired + used
    _log_security_event(
        db,
        principal_type=None,
        principal_id=None,
        store_id=None,
        event_type="temp_passwords_cleanup",
        description=f"Removed {deleted} temp password records.",
        ip=None,
        user_agent=None,
    )
    return deleted


def authenticate_with_temp_password(
    db: Session,
    *,
    store_slug: str,
    email: str,
    password: str,
    ip: Optional[str],
    user_agent: Optional[str],
    now: Optional[datetime] = None,
) -> models.StoreUser:
    """
    Log a store user in with an emailed temp password.

    On success the temp password becomes the account password and
    `must_change_password` is set, so the user has to choose a new one
    before any store screen opens.
    """
    now = now or _utcnow()
    store = find_active_store_by_slug(db, store_slug)
    user = get_store_user_by_email(db, store_id=store.id, email=email) if store else None
    if not user or not user.is_active:
        raise TempPasswordError("no_valid_temp_password")

    record = _latest_temp_password(db, user)
    if record is None:
        raise TempPasswordError("no_valid_temp_password")
    if record.is_used():
        raise TempPasswordError("already_used")
    if record.is_locked():
        raise TempPasswordError("locked")
    if record.is_expired(now):
        raise TempPasswordError("expired")
    if not record.is_active:
        raise TempPasswordError("no_valid_temp_password")

    _store_user_event(db, user, "temp_password_attempt", f"Temp password {record.id}.", ip, user_agent)

    if not verify_temp_password(record, password, now=now):
        increment_usage_attempts(db, record, ip=ip, now=now)
        db.commit()
        _store_user_event(
            db,
            user,
            "temp_password_failed",
            f"Invalid temp password ({record.usage_attempts}/{models.TempPassword.MAX_ATTEMPTS}).",
            ip,
            user_agent,
        )
        raise TempPasswordError("invalid_password")

    mark_temp_password_used(db, record, now=now)
    user.hashed_password = record.password_hash
    user.must_change_password = True
    _track_sign_in(user, ip, now)
    db.add(user)

    audit_services.log_event(
        db,
        store_id=user.store_id,
        actor_type=PRINCIPAL_STORE_USER,
        actor_id=user.id,
        auditable_type="store_user",
        auditable_id=user.id,
        action="temp_password_login",
        message=f"Temp password login for {mask_email(user.email)}",
        details={"temp_password_id": record.id},
        ip_address=ip,
        user_agent=user_agent,
    )
    db.commit()
    _store_user_event(db, user, "temp_password_used", f"Temp password {record.id} used.", ip, user_agent)
    return user


# ---------------------------------------------------------------------------
# Idempotency
# ---------------------------------------------------------------------------


def _hash_payload(payload: dict) -> str:
    return hashlib.sha256(
        json.dumps(payload, sort_keys=True, default=str).encode("utf-8")
    ).hexdigest()


def register_idempotency_key(
    db: Session,
    *,
    scope: str,
    key: str,
    payload: dict,
) -> models.IdempotencyKey:
    """
    Record (scope, key) for a write. A repeat with the same payload returns
    the existing row; `resource_id` is set once the write has produced a record.
    """
    if not key:
        raise ValueError("idempotency key is required")

    payload_hash = _hash_payload(payload)
    existing = (
        db.query(models.IdempotencyKey)
        .filter(
            models.IdempotencyKey.scope == scope,
            models.IdempotencyKey.key == key,
        )
        .first()
    )
    if existing:
        if existing.payload_hash != payload_hash:
            raise IdempotencyError("Idempotency key reuse with different payload.")
        return existing

    idem = models.IdempotencyKey(
        scope=scope,
        key=key,
        payload_hash=payload_hash,
    )
    db.add(idem)
    db.flush()
    return idem
