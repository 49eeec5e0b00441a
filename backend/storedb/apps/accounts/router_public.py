# backend/storedb/apps/accounts/router_public.py

from __future__ import annotations

import os
import threading
import time
from collections import deque
from typing import Deque, Dict

from fastapi import APIRouter, Depends, HTTPException, status, Request
from sqlalchemy.orm import Session

from storedb.database import get_db
from storedb.security import get_current_active_admin, get_current_store_user
from storedb.apps.notifications import service as notification_service
from . import email_auth, models, schemas, services
from .rate_limit import RateLimiter

router = APIRouter(prefix="/auth", tags=["auth"])

_AUTH_RATE_LIMIT_MAX_ATTEMPTS = int(os.getenv("AUTH_RATE_LIMIT_MAX_ATTEMPTS", "10"))
_AUTH_RATE_LIMIT_WINDOW_SECONDS = int(os.getenv("AUTH_RATE_LIMIT_WINDOW_SECONDS", "300"))
_RATE_LIMIT_STATE: Dict[str, Deque[float]] = {}
_RATE_LIMIT_LOCK = threading.Lock()

GENERIC_RESET_MESSAGE = "If the account exists, a reset token will be sent."


def _client_ip(request: Request) -> str | None:
    return request.client.host if request.client else None


def _user_agent(request: Request) -> str | None:
    return request.headers.get("user-agent")


def _enforce_auth_rate_limit(request: Request, scope: str) -> None:
    """Sliding-window limit per client IP and endpoint scope."""
    key = f"{scope}:{_client_ip(request) or 'unknown'}"
    now = time.monotonic()
    with _RATE_LIMIT_LOCK:
        hits = _RATE_LIMIT_STATE.setdefault(key, deque())
        while hits and hits[0] <= now - _AUTH_RATE_LIMIT_WINDOW_SECONDS:
            hits.popleft()
        if len(hits) >= _AUTH_RATE_LIMIT_MAX_ATTEMPTS:
            retry_after = int(hits[0] + _AUTH_RATE_LIMIT_WINDOW_SECONDS - now) + 1
            raise HTTPException(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                detail="Too many attempts. Please try again later.",
                headers={"Retry-After": str(retry_after)},
            )
        hits.append(now)


def _store_login_limiter(db: Session, store_slug: str, email: str) -> RateLimiter:
    """Per store-and-email login throttle for store users."""
    limiter = RateLimiter("login", f"{store_slug.strip().lower()}:{email.strip().lower()}", db=db)
    if not limiter.allowed():
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Too many login attempts. Please try again later.",
            headers={"Retry-After": str(limiter.time_until_unblock())},
        )
    return limiter


def _authentication_failed(exc: services.AuthenticationError) -> HTTPException:
    if exc.retry_after_seconds is not None:
        return HTTPException(
            status_code=status.HTTP_423_LOCKED,
            detail=str(exc),
            headers={"Retry-After": str(exc.retry_after_seconds)},
        )
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=str(exc) or "Incorrect email or password.",
    )


# ---------------------------------------------------------------------------
# ADMIN LOGIN
# ---------------------------------------------------------------------------


@router.post(
    "/admin/login",
    response_model=schemas.Token,
    summary="Admin login with email and password",
)
def admin_login(
    payload: schemas.AdminLoginRequest,
    request: Request,
    db: Session = Depends(get_db),
):
    # per-account protection comes from the escalating lockout in authenticate_admin
    _enforce_auth_rate_limit(request, "admin-login")

    try:
        admin = services.authenticate_admin(
            db,
            email=payload.email,
            password=payload.password,
            ip=_client_ip(request),
            user_agent=_user_agent(request),
        )
    except services.AuthenticationError as exc:
        db.commit()
        raise _authentication_failed(exc)

    token, expires_in = services.issue_access_token_for_admin(admin)
    return schemas.Token(
        access_token=token,
        expires_in=expires_in,
        principal_type="admin",
        principal_id=admin.id,
        store_id=admin.store_id,
    )


# ---------------------------------------------------------------------------
# STORE LOGIN
# ---------------------------------------------------------------------------


@router.post(
    "/store/login",
    response_model=schemas.Token,
    summary="Store user login with store slug, email and password",
)
def store_login(
    payload: schemas.StoreLoginRequest,
    request: Request,
    db: Session = Depends(get_db),
):
    _enforce_auth_rate_limit(request, "store-login")
    limiter = _store_login_limiter(db, payload.store_slug, payload.email)

    try:
        user = services.authenticate_store_user(
            db,
            store_slug=payload.store_slug,
            email=payload.email,
            password=payload.password,
            ip=_client_ip(request),
            user_agent=_user_agent(request),
        )
    except services.AuthenticationError as exc:
        limiter.track()
        db.commit()
        raise _authentication_failed(exc)

    limiter.reset()
    token, expires_in = services.issue_access_token_for_store_user(user)
    return schemas.Token(
        access_token=token,
        expires_in=expires_in,
        principal_type="store_user",
        principal_id=user.id,
        store_id=user.store_id,
        must_change_password=user.password_expired(),
    )


# ---------------------------------------------------------------------------
# TEMPORARY PASSWORDS (email login)
# ---------------------------------------------------------------------------


@router.post(
    "/store/temp-password/request",
    response_model=schemas.TempPasswordRequestResult,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Email a one-time temporary password",
)
def request_temp_password(
    payload: schemas.TempPasswordRequest,
    request: Request,
    db: Session = Depends(get_db),
):
    """
    Always answers with the same message so the endpoint cannot be used to
    discover which addresses have accounts.
    """
    _enforce_auth_rate_limit(request, "temp-password-request")
    try:
        return email_auth.request_temp_password(
            db,
            store_slug=payload.store_slug,
            email=payload.email,
            ip=_client_ip(request),
            user_agent=_user_agent(request),
        )
    except email_auth.EmailAuthRateLimited as exc:
        db.commit()
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail=str(exc),
            headers={"Retry-After": str(exc.retry_after_seconds)},
        )


@router.post(
    "/store/temp-password/verify",
    response_model=schemas.Token,
    summary="Log in with an emailed temporary password",
)
def verify_temp_password(
    payload: schemas.TempPasswordVerify,
    request: Request,
    db: Session = Depends(get_db),
):
    _enforce_auth_rate_limit(request, "temp-password-verify")
    try:
        user = services.authenticate_with_temp_password(
            db,
            store_slug=payload.store_slug,
            email=payload.email,
            password=payload.password,
            ip=_client_ip(request),
            user_agent=_user_agent(request),
        )
    except services.TempPasswordError as exc:
        raise HTTPException(
            status_code=(
                status.HTTP_423_LOCKED if exc.reason == "locked" else status.HTTP_401_UNAUTHORIZED
            ),
            detail={"reason": exc.reason, "message": "Temporary password authentication failed."},
        )

    token, expires_in = services.issue_access_token_for_store_user(user)
    return schemas.Token(
        access_token=token,
        expires_in=expires_in,
        principal_type="store_user",
        principal_id=user.id,
        store_id=user.store_id,
        must_change_password=True,
    )


# ---------------------------------------------------------------------------
# PASSWORD CHANGE
# ---------------------------------------------------------------------------


@router.post("/admin/password", summary="Change the signed-in admin's password")
def change_admin_password(
    payload: schemas.PasswordChangeRequest,
    request: Request,
    db: Session = Depends(get_db),
    current_admin: models.Admin = Depends(get_current_active_admin),
):
    try:
        services.change_password(
            db,
            principal=current_admin,
            current_password=payload.current_password,
            new_password=payload.new_password,
            ip=_client_ip(request),
            user_agent=_user_agent(request),
        )
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    return {"message": "Password updated."}


@router.post("/store/password", summary="Change the signed-in store user's password")
def change_store_password(
    payload: schemas.PasswordChangeRequest,
    request: Request,
    db: Session = Depends(get_db),
    current_user: models.StoreUser = Depends(get_current_store_user),
):
    try:
        services.change_password(
            db,
            principal=current_user,
            current_password=payload.current_password,
            new_password=payload.new_password,
            ip=_client_ip(request),
            user_agent=_user_agent(request),
        )
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    return {"message": "Password updated."}


# ---------------------------------------------------------------------------
# PASSWORD RESET (admins)
# ---------------------------------------------------------------------------


@router.post(
    "/admin/password-reset/request",
    status_code=status.HTTP_202_ACCEPTED,
    summary="Request an admin password reset email",
)
def request_password_reset(
    payload: schemas.PasswordResetRequest,
    request: Request,
    db: Session = Depends(get_db),
):
    """We do NOT reveal whether the account exists."""
    _enforce_auth_rate_limit(request, "password-reset-request")
    limiter = RateLimiter("password_reset", payload.email.strip().lower(), db=db)
    if not limiter.allowed():
        return {"message": GENERIC_RESET_MESSAGE}
    limiter.track()

    admin = services.get_active_admin_by_email(db, payload.email)
    if not admin:
        db.commit()
        return {"message": GENERIC_RESET_MESSAGE}

    raw_token = services.create_password_reset_token(
        db,
        admin,
        ip=_client_ip(request),
        user_agent=_user_agent(request),
    )
    notification_service.send_email(
        "password_reset",
        admin.email,
        "Reset your Store Portal password",
        {"token": raw_token},
        correlation_id=None,
        store_id=admin.store_id,
        db=db,
    )
    db.commit()
    return {"message": GENERIC_RESET_MESSAGE}


@router.post(
    "/admin/password-reset/confirm",
    status_code=status.HTTP_200_OK,
    summary="Confirm admin password reset using token",
)
def confirm_password_reset(
    payload: schemas.PasswordResetConfirm,
    request: Request,
    db: Session = Depends(get_db),
):
    _enforce_auth_rate_limit(request, "password-reset-confirm")
    try:
        admin = services.redeem_password_reset_token(
            db,
            raw_token=payload.token,
            new_password=payload.new_password,
        )
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        )
    if not admin:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid or expired reset token.",
        )
    return {"message": "Password has been reset successfully."}


# ---------------------------------------------------------------------------
# CURRENT PRINCIPAL
# ---------------------------------------------------------------------------


@router.get("/admin/me", response_model=schemas.AdminRead, summary="Get current admin")
def read_current_admin(
    current_admin: models.Admin = Depends(get_current_active_admin),
):
    return current_admin


@router.get("/store/me", response_model=schemas.StoreUserProfile, summary="Get current store user")
def read_current_store_user(
    current_user: models.StoreUser = Depends(get_current_store_user),
):
    return schemas.StoreUserProfile(
        user=schemas.StoreUserRead.model_validate(current_user),
        store_slug=current_user.store.slug,
        store_name=current_user.store.name,
        password_expired=current_user.password_expired(),
        password_expires_in_days=current_user.password_expires_in_days(),
    )
