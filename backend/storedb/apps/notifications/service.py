from __future__ import annotations

from datetime import datetime
import logging
from typing import Optional

from sqlalchemy.orm import Session

from storedb.database import WriteSessionLocal

from . import models, providers

logger = logging.getLogger(__name__)

SECRET_CONTEXT_KEYS = frozenset({"temp_password", "token", "password"})


def _utcnow() -> datetime:
    return datetime.utcnow()


def _loggable_context(context: Optional[dict]) -> dict:
    return {key: ("[FILTERED]" if key in SECRET_CONTEXT_KEYS else value) for key, value in (context or {}).items()}


def _attempt_delivery(log: models.EmailLog, context: dict) -> Optional[Exception]:
    """Run the configured provider and stamp `log` with the outcome."""
    provider, configured = providers.get_email_provider()
    if not configured:
        log.status = models.EmailStatus.SKIPPED_NO_PROVIDER
        log.error = "No provider configured"
        return None
    try:
        provider.send(
            template_key=log.template_key,
            recipient=log.recipient,
            subject=log.subject,
            context=context,
            correlation_id=log.correlation_id,
        )
    except Exception as exc:
        log.status = models.EmailStatus.FAILED
        log.error = str(exc)
        logger.warning(
            "Email delivery failed",
            extra={"template_key": log.template_key, "store_id": log.store_id, "error": str(exc)},
        )
        return exc
    log.status = models.EmailStatus.SENT
    log.sent_at = _utcnow()
    return None


def send_email(
    template_key: str,
    recipient: str,
    subject: str,
    context: dict,
    correlation_id: Optional[str],
    critical: bool = False,
    *,
    store_id: Optional[str] = None,
    transfer_id: Optional[int] = None,
    db: Optional[Session] = None,
) -> models.EmailLog:
    """
    Deliver one email and record the attempt in `email_logs`.

    Secrets in `context` are filtered before the row is written. Delivery
    failures are recorded as FAILED and only re-raised when `critical`.
    When no session is passed the attempt is committed in a session of its own.
    The notification kind is derived from `template_key`.
    """
    owns_session = db is None
    session = db or WriteSessionLocal()
    try:
        log = models.EmailLog(
            store_id=store_id,
            transfer_id=transfer_id,
            kind=models.NotificationKind.for_template(template_key),
            recipient=recipient,
            subject=subject,
            template_key=template_key,
            status=models.EmailStatus.QUEUED,
            context_json=_loggable_context(context),
            correlation_id=correlation_id,
        )
        session.add(log)
        session.flush()

        error = _attempt_delivery(log, context or {})
        session.flush()
        if owns_session:
            session.commit()
        if error is not None and critical:
            raise error
        return log
    finally:
        if owns_session:
            session.close()
