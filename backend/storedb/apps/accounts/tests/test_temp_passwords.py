from __future__ import annotations

from datetime import datetime, timedelta

import pytest
from sqlalchemy.exc import IntegrityError

from storedb.apps.accounts import email_auth
from storedb.apps.accounts import models as account_models
from storedb.apps.accounts import schemas as account_schemas
from storedb.apps.accounts import services as account_services
from storedb.apps.notifications import models as notification_models
from storedb.apps.stores import models as store_models

CLIENT_IP = "203.0.113.5"


def _create_user(db) -> account_models.StoreUser:
    store = store_models.Store(name="Harbour Pharmacy", code="PH-010", slug="ph-010")
    db.add(store)
    db.commit()
    return account_services.create_store_user(
        db,
        store=store,
        data=account_schemas.StoreUserCreate(email="staff@example.com", name="Staff", password="Str0ng!Passw0rd"),
    )


def test_generate_deactivates_previous_temp_password(db_session):
    user = _create_user(db_session)
    first, _ = account_services.generate_temp_password(db_session, user=user, ip=CLIENT_IP)
    second, raw = account_services.generate_temp_password(db_session, user=user, ip=CLIENT_IP)
    db_session.commit()

    assert first.is_active is False
    assert second.is_active is True
    assert len(raw) == account_services.TEMP_PASSWORD_DIGITS
    assert raw.isdigit()
    assert second.password_hash != raw


def test_generate_rejects_malformed_ip(db_session):
    user = _create_user(db_session)
    with pytest.raises(ValueError):
        account_services.generate_temp_password(db_session, user=user, ip="not-an-ip")


def test_temp_password_login_becomes_account_password(db_session):
    user = _create_user(db_session)
    user.must_change_password = False
    db_session.commit()
    record, raw = account_services.generate_temp_password(db_session, user=user, ip=CLIENT_IP)
    db_session.commit()

    signed_in = account_services.authenticate_with_temp_password(
        db_session,
        store_slug="PH-010",
        email="Staff@example.com",
        password=raw,
        ip=CLIENT_IP,
        user_agent="pytest",
    )

    assert signed_in.id == user.id
    assert signed_in.hashed_password == record.password_hash
    assert signed_in.must_change_password is True
    assert signed_in.sign_in_count == 1
    assert record.used_at is not None
    assert record.is_active is False

    with pytest.raises(account_services.TempPasswordError) as exc_info:
        account_services.authenticate_with_temp_password(
            db_session, store_slug="ph-010", email=user.email, password=raw, ip=CLIENT_IP, user_agent=None
        )
    assert exc_info.value.reason == "already_used"


def test_temp_password_locks_after_max_attempts(db_session):
    user = _create_user(db_session)
    record, raw = account_services.generate_temp_password(db_session, user=user, ip=CLIENT_IP)
    db_session.commit()
    wrong = "000000" if raw != "000000" else "111111"

    for _ in range(account_models.TempPassword.MAX_ATTEMPTS):
        with pytest.raises(account_services.TempPasswordError) as exc_info:
            account_services.authenticate_with_temp_password(
                db_session, store_slug="ph-010", email=user.email, password=wrong, ip=CLIENT_IP, user_agent=None
            )
        assert exc_info.value.reason == "invalid_password"

    assert record.usage_attempts == account_models.TempPassword.MAX_ATTEMPTS
    assert record.is_locked()

    with pytest.raises(account_services.TempPasswordError) as exc_info:
        account_services.authenticate_with_temp_password(
            db_session, store_slug="ph-010", email=user.email, password=raw, ip=CLIENT_IP, user_agent=None
        )
    assert exc_info.value.reason == "locked"


def test_expired_temp_password_is_refused(db_session):
    user = _create_user(db_session)
    past = datetime.utcnow() - timedelta(hours=1)
    _, raw = account_services.generate_temp_password(db_session, user=user, ip=CLIENT_IP, now=past)
    db_session.commit()

    with pytest.raises(account_services.TempPasswordError) as exc_info:
        account_services.authenticate_with_temp_password(
            db_session, store_slug="ph-010", email=user.email, password=raw, ip=CLIENT_IP, user_agent=None
        )
    assert exc_info.value.reason == "expired"
    assert account_services.find_valid_temp_password(db_session, user) is None


def test_cleanup_removes_stale_rows_only(db_session):
    user = _create_user(db_session)
    now = datetime.utcnow()
    stale, _ = account_services.generate_temp_password(db_session, user=user, ip=CLIENT_IP, now=now - timedelta(days=3))
    fresh, _ = account_services.generate_temp_password(db_session, user=user, ip=CLIENT_IP, now=now)
    db_session.commit()
    stale_id, fresh_id = stale.id, fresh.id

    deleted = account_services.cleanup_expired_temp_passwords(db_session, now=now)
    db_session.commit()

    remaining = {row.id for row in db_session.query(account_models.TempPassword).all()}
    assert deleted == 1
    assert stale_id not in remaining
    assert fresh_id in remaining


def test_request_temp_password_hides_unknown_accounts(db_session):
    _create_user(db_session)
    result = email_auth.request_temp_password(
        db_session, store_slug="ph-010", email="nobody@example.com", ip=CLIENT_IP, user_agent=None
    )
    assert result.message == email_auth.GENERIC_REQUEST_MESSAGE
    assert result.masked_email == "n***y@example.com"
    assert db_session.query(notification_models.EmailLog).count() == 0


def test_request_temp_password_emails_known_user_without_leaking_secret(db_session):
    user = _create_user(db_session)
    result = email_auth.request_temp_password(
        db_session, store_slug="ph-010", email=user.email, ip=CLIENT_IP, user_agent=None
    )
    assert result.message == email_auth.GENERIC_REQUEST_MESSAGE

    log = db_session.query(notification_models.EmailLog).one()
    assert log.template_key == "temp_password"
    assert log.kind == notification_models.NotificationKind.TEMP_PASSWORD
    assert log.status == notification_models.EmailStatus.SKIPPED_NO_PROVIDER
    assert log.context_json["temp_password"] == "[FILTERED]"
    assert account_services.find_valid_temp_password(db_session, user) is not None


def test_request_temp_password_is_rate_limited(db_session):
    user = _create_user(db_session)
    for _ in range(3):
        email_auth.request_temp_password(
            db_session, store_slug="ph-010", email=user.email, ip=CLIENT_IP, user_agent=None
        )

    with pytest.raises(email_auth.EmailAuthRateLimited) as exc_info:
        email_auth.request_temp_password(
            db_session, store_slug="ph-010", email=user.email, ip=CLIENT_IP, user_agent=None
        )
    assert exc_info.value.retry_after_seconds > 0


@pytest.mark.parametrize("ttl", [timedelta(0), timedelta(minutes=-5)])
def test_generate_refuses_non_positive_ttl(db_session, ttl):
    user = _create_user(db_session)
    with pytest.raises(ValueError):
        account_services.generate_temp_password(db_session, user=user, ip=CLIENT_IP, ttl=ttl)
    assert db_session.query(account_models.TempPassword).count() == 0


def test_database_allows_one_active_temp_password_per_user(db_session):
    user = _create_user(db_session)
    record, _ = account_services.generate_temp_password(db_session, user=user, ip=CLIENT_IP)
    db_session.commit()

    now = datetime.utcnow()
    db_session.add(
        account_models.TempPassword(
            store_user_id=user.id,
            password_hash="x",
            expires_at=now + timedelta(minutes=15),
            is_active=True,
            created_at=now,
        )
    )
    with pytest.raises(IntegrityError):
        db_session.flush()
    db_session.rollback()

    db_session.add(
        account_models.TempPassword(
            store_user_id=user.id,
            password_hash="x",
            expires_at=now + timedelta(minutes=15),
            is_active=False,
            created_at=now,
        )
    )
    db_session.flush()
    assert db_session.query(account_models.TempPassword).filter_by(store_user_id=user.id).count() == 2


def test_database_refuses_expiry_before_creation(db_session):
    user = _create_user(db_session)
    now = datetime.utcnow()
    db_session.add(
        account_models.TempPassword(
            store_user_id=user.id,
            password_hash="x",
            expires_at=now - timedelta(seconds=1),
            is_active=True,
            created_at=now,
        )
    )
    with pytest.raises(IntegrityError):
        db_session.flush()
    db_session.rollback()
