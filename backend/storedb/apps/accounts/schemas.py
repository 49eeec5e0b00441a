from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from .models import AdminRole, StoreUserRole


# ---------------------------------------------------------------------------
# ADMINS
# ---------------------------------------------------------------------------


class AdminBase(BaseModel):
    email: EmailStr
    name: Optional[str] = Field(default=None, max_length=100)
    role: AdminRole = AdminRole.STORE_USER
    store_id: Optional[str] = None


class AdminCreate(AdminBase):
    password: str


class AdminRead(AdminBase):
    id: str
    is_active: bool
    last_login_at: Optional[datetime] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


# ---------------------------------------------------------------------------
# STORE USERS
# ---------------------------------------------------------------------------


class StoreUserBase(BaseModel):
    email: EmailStr
    name: str = Field(..., min_length=1, max_length=100)
    role: StoreUserRole = StoreUserRole.STAFF
    employee_code: Optional[str] = Field(default=None, max_length=50)


class StoreUserCreate(StoreUserBase):
    password: str


class StoreUserUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    role: Optional[StoreUserRole] = None
    employee_code: Optional[str] = Field(default=None, max_length=50)
    is_active: Optional[bool] = None


class StoreUserRead(StoreUserBase):
    id: str
    store_id: str
    is_active: bool
    must_change_password: bool
    password_changed_at: Optional[datetime] = None
    locked_at: Optional[datetime] = None
    sign_in_count: int
    last_sign_in_at: Optional[datetime] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class StoreUserProfile(BaseModel):
    user: StoreUserRead
    store_slug: str
    store_name: str
    password_expired: bool
    password_expires_in_days: int


# ---------------------------------------------------------------------------
# LOGIN / TOKENS
# ---------------------------------------------------------------------------


class AdminLoginRequest(BaseModel):
    email: EmailStr
    password: str


class StoreLoginRequest(BaseModel):
    store_slug: str
    email: EmailStr
    password: str


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int
    principal_type: str
    principal_id: str
    store_id: Optional[str] = None
    must_change_password: bool = False


class PasswordChangeRequest(BaseModel):
    current_password: str
    new_password: str


class PasswordResetRequest(BaseModel):
    email: EmailStr


class PasswordResetConfirm(BaseModel):
    token: str
    new_password: str


# ---------------------------------------------------------------------------
# TEMPORARY PASSWORDS
# ---------------------------------------------------------------------------


class TempPasswordRequest(BaseModel):
    store_slug: str
    email: EmailStr


class TempPasswordVerify(BaseModel):
    store_slug: str
    email: EmailStr
    password: str = Field(..., min_length=1, max_length=32)


class TempPasswordRequestResult(BaseModel):
    message: str
    masked_email: str


class TempPasswordIssued(BaseModel):
    temp_password_id: str
    expires_at: datetime
    delivery_status: str
    masked_email: str


class TempPasswordCleanupResult(BaseModel):
    deleted: int
