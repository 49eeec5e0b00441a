from __future__ import annotations

import pytest

from storedb.apps.notifications import models as notification_models
from storedb.apps.notifications import providers as notification_providers
from storedb.apps.notifications import service as notification_service
from storedb.apps.stores import models as store_models


def _create_store(db) -> store_models.Store:
    store = store_models.Store(name="Notify Pharmacy", code="PH-NOTIFY", slug="ph-notify")
    db.add(store)
    db.commit()
    return store


def _send(db, store, **kwargs):
    return notification_service.send_email(
        "stock_alert",
        "manager@example.com",
        "Stock alert",
        {"low_stock_count": 2, "out_of_stock_count": 1, "items": "- Aspirin"},
        correlation_id="stock-alert:1",
        store_id=store.id,
        db=db,
        **kwargs,
    )


def test_send_email_no_provider_marks_skipped(db_session, monkeypatch):
    store = _create_store(db_session)
    monkeypatch.setattr(
        notification_providers,
        "get_email_provider",
        lambda: (notification_providers.NoopProvider(), False),
    )

    log = _send(db_session, store)
    db_session.commit()

    assert log.status == notification_models.EmailStatus.SKIPPED_NO_PROVIDER
    assert log.error
    assert log.sent_at is None
    assert log.store_id == store.id


def test_send_email_provider_success(db_session, monkeypatch):
    store = _create_store(db_session)
    sent = []

    class FakeProvider(notification_providers.EmailProvider):
        def send(self, **kwargs):
            sent.append(kwargs)

    monkeypatch.setattr(notification_providers, "get_email_provider", lambda: (FakeProvider(), True))

    log = _send(db_session, store)
    db_session.commit()

    assert log.status == notification_models.EmailStatus.SENT
    assert log.sent_at is not None
    assert log.error is None
    assert sent[0]["correlation_id"] == "stock-alert:1"


def test_send_email_provider_failure_best_effort(db_session, monkeypatch):
    store = _create_store(db_session)

    class FailingProvider(notification_providers.EmailProvider):
        def send(self, **kwargs):
            raise RuntimeError("boom")

    monkeypatch.setattr(notification_providers, "get_email_provider", lambda: (FailingProvider(), True))

    log = _send(db_session, store)
    db_session.commit()

    assert log.status == notification_models.EmailStatus.FAILED
    assert log.error == "boom"


def test_send_email_provider_failure_critical_raises(db_session, monkeypatch):
    store = _create_store(db_session)

    class FailingProvider(notification_providers.EmailProvider):
        def send(self, **kwargs):
            raise RuntimeError("boom")

    monkeypatch.setattr(notification_providers, "get_email_provider", lambda: (FailingProvider(), True))

    with pytest.raises(RuntimeError):
        _send(db_session, store, critical=True)


def test_secrets_are_filtered_from_logged_context(db_session):
    store = _create_store(db_session)
    log = notification_service.send_email(
        "temp_password",
        "clerk@example.com",
        "Your temporary password",
        {"temp_password": "123456", "store_name": store.name},
        correlation_id=None,
        store_id=store.id,
        db=db_session,
    )
    assert log.context_json == {"temp_password": "[FILTERED]", "store_name": "Notify Pharmacy"}


def test_render_body_fills_template_and_ignores_missing_keys():
    body = notification_providers.render_body("stock_alert", {"low_stock_count": 3})
    assert body.startswith("Stock alert: 3 low stock and  out of stock items.")
    assert notification_providers.render_body("anything", {"body": "custom"}) == "custom"
    assert notification_providers.render_body("unknown", {"b": 2, "a": 1}) == "a: 1\nb: 2"


def test_unknown_provider_name_raises(monkeypatch):
    monkeypatch.setenv("EMAIL_PROVIDER", "carrier-pigeon")
    with pytest.raises(ValueError):
        notification_providers.get_email_provider()


def test_smtp_provider_requires_host_port_and_sender(monkeypatch):
    monkeypatch.setenv("EMAIL_PROVIDER", "smtp")
    monkeypatch.delenv("SMTP_HOST", raising=False)
    provider, configured = notification_providers.get_email_provider()
    assert not configured

    monkeypatch.setenv("SMTP_HOST", "smtp.example.com")
    monkeypatch.setenv("SMTP_PORT", "587")
    monkeypatch.setenv("SMTP_FROM", "alerts@example.com")
    provider, configured = notification_providers.get_email_provider()
    assert configured
    assert isinstance(provider, notification_providers.SmtpProvider)
    assert provider.port == 587


def test_kind_is_derived_from_template_key(db_session):
    store = _create_store(db_session)
    log = _send(db_session, store)
    assert log.kind == notification_models.NotificationKind.STOCK_ALERT
    assert log.transfer_id is None

    assert notification_models.NotificationKind.for_template("password_reset") == (
        notification_models.NotificationKind.PASSWORD_RESET
    )
    assert notification_models.NotificationKind.for_template("weekly_digest") == (
        notification_models.NotificationKind.OTHER
    )
