# backend/storedb/security.py

"""
Security helpers for the store portal.

Responsibilities:
- Password hashing and verification
- JWT access token creation and decoding
- FastAPI dependencies for the two principal kinds:
  * admins (back office, optionally bound to one store)
  * store users (counter staff, always bound to one store)
- Role-based access helpers for router dependencies
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional, Set, Union

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from sqlalchemy.orm import Session

from argon2 import PasswordHasher
from argon2.exceptions import VerifyMismatchError, VerificationError, InvalidHash
import bcrypt

from .database import get_db
from storedb.apps.accounts import models as account_models
from storedb.apps.accounts.models import AdminRole
from storedb.apps.stores import models as store_models

# ---------------------------------------------------------------------------
# CONFIG
# ---------------------------------------------------------------------------

# In production, ALWAYS override these via environment variables.
SECRET_KEY = os.getenv("SECRET_KEY", "CHANGE_ME_IN_PRODUCTION")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")

try:
    ACCESS_TOKEN_EXPIRE_MINUTES: int = int(
        os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "60")
    )
except ValueError:
    ACCESS_TOKEN_EXPIRE_MINUTES = 60

PRINCIPAL_ADMIN = "admin"
PRINCIPAL_STORE_USER = "store_user"

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/admin/login")


# ---------------------------------------------------------------------------
# PASSWORD HASHING
# ---------------------------------------------------------------------------

_pwd_hasher = PasswordHasher(
    time_cost=int(os.getenv("ARGON2_TIME_COST", "3")),
    memory_cost=int(os.getenv("ARGON2_MEMORY_COST", "65536")),  # KiB (64MB)
    parallelism=int(os.getenv("ARGON2_PARALLELISM", "2")),
    hash_len=int(os.getenv("ARGON2_HASH_LEN", "32")),
    salt_len=int(os.getenv("ARGON2_SALT_LEN", "16")),
)


def _is_argon2_hash(hashed_password: str) -> bool:
    return isinstance(hashed_password, str) and hashed_password.startswith("$argon2")


def _is_bcrypt_hash(hashed_password: str) -> bool:
    return isinstance(hashed_password, str) and hashed_password.startswith(("$2a$", "$2b$", "$2y$"))


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Return True if the plain password matches the hash."""
    if not plain_password or not hashed_password:
        return False

    if _is_argon2_hash(hashed_password):
        try:
            return _pwd_hasher.verify(hashed_password, plain_password)
        except (VerifyMismatchError, VerificationError, InvalidHash):
            return False

    # Accounts migrated from the previous platform still carry bcrypt hashes.
    if _is_bcrypt_hash(hashed_password):
        try:
            return bcrypt.checkpw(
                plain_password.encode("utf-8"),
                hashed_password.encode("utf-8"),
            )
        except ValueError:
            return False

    return False


def get_password_hash(password: str) -> str:
    """Hash a password for storing in the database (Argon2id)."""
    return _pwd_hasher.hash(password)


# ---------------------------------------------------------------------------
# JWT TOKENS
# ---------------------------------------------------------------------------


def create_access_token(
    *,
    data: dict,
    expires_delta: Optional[timedelta] = None,
) -> str:
    """
    Create a signed JWT.

    The `data` dict should already include the subject and principal kind, e.g.:
        {"sub": admin.id, "kind": "admin", "store_id": admin.store_id}
    """
    to_encode = data.copy()

    expire = datetime.utcnow() + (
        expires_delta
        if expires_delta is not None
        else timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)
    )
    to_encode.update({"exp": expire})

    return jwt.encode(to_encode, SECRET_KEY, algorithm=JWT_ALGORITHM)


def _credentials_exception() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )


def decode_access_token(token: str, *, expected_kind: str) -> dict:
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[JWT_ALGORITHM])
    except JWTError:
        raise _credentials_exception()
    if payload.get("sub") is None or payload.get("kind") != expected_kind:
        raise _credentials_exception()
    return payload


# ---------------------------------------------------------------------------
# ADMIN DEPENDENCIES
# ---------------------------------------------------------------------------


def get_current_admin(
    token: str = Depends(oauth2_scheme),
    db: Session = Depends(get_db),
) -> account_models.Admin:
    payload = decode_access_token(token, expected_kind=PRINCIPAL_ADMIN)
    admin = (
        db.query(account_models.Admin)
        .filter(account_models.Admin.id == str(payload["sub"]).strip())
        .first()
    )
    if admin is None:
        raise _credentials_exception()
    return admin


def get_current_active_admin(
    current_admin: account_models.Admin = Depends(get_current_admin),
) -> account_models.Admin:
    if not current_admin.is_active:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Inactive admin account",
        )
    return current_admin


def require_admin_roles(
    *allowed_roles: Union[AdminRole, str],
) -> Callable[[account_models.Admin], account_models.Admin]:
    """
    Dependency factory to enforce that the current admin has one of the given roles.

    Usage:
        @router.post(...)
        def endpoint(
            current_admin: Admin = Depends(require_admin_roles(AdminRole.STORE_MANAGER))
        ):
            ...

    HEADQUARTERS_ADMIN always passes, even if not explicitly listed.
    """
    normalised_roles: Set[AdminRole] = set()
    for r in allowed_roles:
        if isinstance(r, AdminRole):
            normalised_roles.add(r)
        else:
            try:
                normalised_roles.add(AdminRole(r))
            except ValueError:
                raise ValueError(f"Unknown role {r!r} passed to require_admin_roles()")

    def dependency(
        current_admin: account_models.Admin = Depends(get_current_active_admin),
    ) -> account_models.Admin:
        if current_admin.is_headquarters_admin:
            return current_admin

        if current_admin.role not in normalised_roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient permissions for this operation",
            )
        return current_admin

    return dependency


def require_headquarters_admin(
    current_admin: account_models.Admin = Depends(get_current_active_admin),
) -> account_models.Admin:
    if not current_admin.is_headquarters_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Headquarters admin required",
        )
    return current_admin


# ---------------------------------------------------------------------------
# STORE USER DEPENDENCIES
# ---------------------------------------------------------------------------


@dataclass
class StoreContext:
    store: store_models.Store
    user: account_models.StoreUser


def get_current_store_user(
    token: str = Depends(oauth2_scheme),
    db: Session = Depends(get_db),
) -> account_models.StoreUser:
    payload = decode_access_token(token, expected_kind=PRINCIPAL_STORE_USER)
    user = (
        db.query(account_models.StoreUser)
        .filter(account_models.StoreUser.id == str(payload["sub"]).strip())
        .first()
    )
    if user is None or not user.is_active:
        raise _credentials_exception()
    if payload.get("store_id") != user.store_id:
        raise _credentials_exception()

    signed_in_at = user.current_sign_in_at
    if signed_in_at and signed_in_at + account_models.StoreUser.SESSION_TIMEOUT < datetime.utcnow():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Session expired; please sign in again.",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user


def get_current_store_context(
    store_slug: str,
    db: Session = Depends(get_db),
    current_user: account_models.StoreUser = Depends(get_current_store_user),
) -> StoreContext:
    """
    Resolve `/stores/{store_slug}/...` and make sure the signed-in user belongs there.
    """
    store = (
        db.query(store_models.Store)
        .filter(
            store_models.Store.slug == (store_slug or "").strip().lower(),
            store_models.Store.is_active.is_(True),
        )
        .first()
    )
    if store is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Store not found")
    if current_user.store_id != store.id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You do not have access to this store",
        )
    return StoreContext(store=store, user=current_user)


def require_current_password(
    context: StoreContext = Depends(get_current_store_context),
) -> StoreContext:
    """Block store screens until an expired or temporary password is replaced."""
    if context.user.password_expired():
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Password change required",
        )
    return context
