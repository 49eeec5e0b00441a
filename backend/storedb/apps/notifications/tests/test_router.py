from __future__ import annotations

from datetime import datetime, timedelta

from storedb.apps.accounts import models as account_models
from storedb.apps.accounts import services as account_services
from storedb.apps.notifications import models as notification_models
from storedb.apps.stores import models as store_models


def _auth(admin) -> dict:
    token, _ = account_services.issue_access_token_for_admin(admin)
    return {"Authorization": f"Bearer {token}"}


def _log(db, store, status, created_at, template_key="stock_alert"):
    db.add(
        notification_models.EmailLog(
            store_id=store.id,
            kind=notification_models.NotificationKind.for_template(template_key),
            recipient="manager@example.com",
            subject="Stock alert",
            template_key=template_key,
            status=status,
            created_at=created_at,
        )
    )


def test_email_logs_are_scoped_and_filtered(client, db_session):
    north = store_models.Store(name="North", code="PH-N", slug="ph-n")
    south = store_models.Store(name="South", code="PH-S", slug="ph-s")
    db_session.add_all([north, south])
    db_session.commit()

    base = datetime(2026, 5, 1, 9, 0, 0)
    _log(db_session, north, notification_models.EmailStatus.SENT, base)
    _log(db_session, north, notification_models.EmailStatus.FAILED, base + timedelta(hours=1), "expiry_alert")
    _log(db_session, south, notification_models.EmailStatus.SENT, base + timedelta(hours=2))

    manager = account_models.Admin(
        email="north.manager@example.com",
        role=account_models.AdminRole.STORE_MANAGER,
        store_id=north.id,
        hashed_password="x",
    )
    hq = account_models.Admin(
        email="hq@example.com", role=account_models.AdminRole.HEADQUARTERS_ADMIN, hashed_password="x"
    )
    db_session.add_all([manager, hq])
    db_session.commit()

    response = client.get("/admin/notifications/email-logs", headers=_auth(manager))
    assert response.status_code == 200
    rows = response.json()
    assert [row["template_key"] for row in rows] == ["expiry_alert", "stock_alert"]
    assert {row["store_id"] for row in rows} == {north.id}

    response = client.get(
        "/admin/notifications/email-logs", params={"status": "SENT"}, headers=_auth(hq)
    )
    assert response.status_code == 200
    assert [row["store_id"] for row in response.json()] == [south.id, north.id]

    response = client.get("/admin/notifications/email-logs", params={"limit": 1}, headers=_auth(hq))
    assert len(response.json()) == 1


def test_email_logs_filter_by_kind_and_summary(client, db_session):
    store = store_models.Store(name="Kinds", code="PH-K", slug="ph-k")
    db_session.add(store)
    db_session.commit()

    base = datetime(2026, 5, 1, 9, 0, 0)
    _log(db_session, store, notification_models.EmailStatus.SENT, base)
    _log(db_session, store, notification_models.EmailStatus.FAILED, base + timedelta(minutes=1))
    _log(db_session, store, notification_models.EmailStatus.SKIPPED_NO_PROVIDER, base, "expiry_alert")
    _log(db_session, store, notification_models.EmailStatus.SENT, base, "weekly_digest")
    hq = account_models.Admin(
        email="hq.kinds@example.com", role=account_models.AdminRole.HEADQUARTERS_ADMIN, hashed_password="x"
    )
    db_session.add(hq)
    db_session.commit()

    response = client.get(
        "/admin/notifications/email-logs", params={"kind": "STOCK_ALERT"}, headers=_auth(hq)
    )
    assert response.status_code == 200
    assert [row["status"] for row in response.json()] == ["FAILED", "SENT"]
    assert {row["kind"] for row in response.json()} == {"STOCK_ALERT"}

    response = client.get("/admin/notifications/email-logs/summary", headers=_auth(hq))
    assert response.status_code == 200
    summary = {row["kind"]: row for row in response.json()}
    assert summary["STOCK_ALERT"] == {"kind": "STOCK_ALERT", "total": 2, "sent": 1, "failed": 1, "skipped": 0}
    assert summary["EXPIRY_ALERT"]["skipped"] == 1
    assert summary["OTHER"]["total"] == 1
