"""
Email-based temp-password login for store users.

The request step never reveals whether an account exists: unknown, inactive
or locked users get the same answer as a successful request.
"""

from __future__ import annotations

import logging
from typing import Optional, Tuple

from sqlalchemy.orm import Session

from storedb.apps.notifications import models as notification_models
from storedb.apps.notifications import service as notification_service
from . import models, schemas, services
from .rate_limit import RateLimiter

logger = logging.getLogger(__name__)

GENERIC_REQUEST_MESSAGE = (
    "If the address belongs to an account at this store, a temporary password has been sent."
)


class EmailAuthRateLimited(Exception):
    def __init__(self, retry_after_seconds: int) -> None:
        super().__init__("Too many temporary password requests.")
        self.retry_after_seconds = retry_after_seconds


def _limiters(db: Session, email: str, ip: Optional[str]) -> Tuple[RateLimiter, ...]:
    return (
        RateLimiter("email_auth", email, db=db),
        RateLimiter("email_auth_daily", email, db=db),
        RateLimiter("email_auth", f"{email}|{ip or 'unknown'}", db=db),
    )


def _enforce_rate_limits(db: Session, email: str, ip: Optional[str]) -> None:
    limiters = _limiters(db, email, ip)
    blocked = [limiter for limiter in limiters if not limiter.allowed()]
    if blocked:
        raise EmailAuthRateLimited(max(limiter.time_until_unblock() for limiter in blocked))
    for limiter in limiters:
        limiter.track()


def deliver_temp_password(
    db: Session,
    *,
    user: models.StoreUser,
    admin_id: Optional[str] = None,
    ip: Optional[str] = None,
    user_agent: Optional[str] = None,
) -> Tuple[models.TempPassword, notification_models.EmailLog]:
    """Generate a temp password and email it. A failed delivery deactivates it."""
    record, raw_password = services.generate_temp_password(
        db,
        user=user,
        admin_id=admin_id,
        ip=ip,
        user_agent=user_agent,
    )
    store = user.store
    email_log = notification_service.send_email(
        "temp_password",
        user.email,
        "Your temporary password",
        {
            "store_name": store.name if store else "",
            "temp_password": raw_password,
            "expires_at": record.expires_at.strftime("%Y-%m-%d %H:%M"),
        },
        correlation_id=record.id,
        store_id=user.store_id,
        db=db,
    )
    if email_log.status == notification_models.EmailStatus.FAILED:
        record.is_active = False
        logger.warning(
            "Temp password delivery failed",
            extra={"store_user_id": user.id, "recipient": services.mask_email(user.email)},
        )
    db.commit()
    return record, email_log


def request_temp_password(
    db: Session,
    *,
    store_slug: str,
    email: str,
    ip: Optional[str],
    user_agent: Optional[str],
) -> schemas.TempPasswordRequestResult:
    email = services._normalise_email(email)
    _enforce_rate_limits(db, email, ip)

    result = schemas.TempPasswordRequestResult(
        message=GENERIC_REQUEST_MESSAGE,
        masked_email=services.mask_email(email),
    )

    store = services.find_active_store_by_slug(db, store_slug)
    user = services.get_store_user_by_email(db, store_id=store.id, email=email) if store else None
    if not user or not user.is_active or user.is_locked():
        logger.info(
            "Temp password requested for unavailable account",
            extra={"store_slug": store_slug, "recipient": services.mask_email(email)},
        )
        return result

    deliver_temp_password(db, user=user, ip=ip, user_agent=user_agent)
    return result
