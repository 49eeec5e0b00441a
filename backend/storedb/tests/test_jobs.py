from __future__ import annotations

from datetime import date, datetime, timedelta

import pytest
from sqlalchemy.orm import sessionmaker

from storedb.apps.accounts import models as account_models
from storedb.apps.audit import models as audit_models
from storedb.apps.inventory import models as inventory_models
from storedb.apps.notifications import models as notification_models
from storedb.apps.notifications import providers as notification_providers
from storedb.jobs import (
    cleanup_logs_runner,
    expiry_check_runner,
    import_inventories_runner,
    stock_alert_runner,
    temp_password_cleanup_runner,
)

TODAY = date(2026, 4, 1)
NOW = datetime(2026, 4, 1, 6, 0, 0)


@pytest.fixture
def job_sessions(db_session, monkeypatch):
    """Point every runner at the test database."""
    factory = sessionmaker(bind=db_session.get_bind(), autoflush=False, autocommit=False, expire_on_commit=False)
    for runner in (
        cleanup_logs_runner,
        expiry_check_runner,
        import_inventories_runner,
        stock_alert_runner,
        temp_password_cleanup_runner,
    ):
        monkeypatch.setattr(runner, "WriteSessionLocal", factory)
    return factory


@pytest.fixture
def sent_mail(monkeypatch):
    sent = []

    class RecordingProvider(notification_providers.EmailProvider):
        def send(self, **kwargs):
            sent.append(kwargs)

    monkeypatch.setattr(notification_providers, "get_email_provider", lambda: (RecordingProvider(), True))
    return sent


def _items(db, *pairs):
    rows = [inventory_models.Inventory(name=name, price=1.0, quantity=quantity) for name, quantity in pairs]
    db.add_all(rows)
    db.commit()
    return rows


def _hq_admin(db):
    admin = account_models.Admin(
        email="hq@example.com", role=account_models.AdminRole.HEADQUARTERS_ADMIN, hashed_password="x"
    )
    db.add(admin)
    db.commit()
    return admin


def test_stock_alert_counts_without_email(db_session, job_sessions):
    _items(db_session, ("Empty", 0), ("Short", 3), ("Plenty", 50))
    summary = stock_alert_runner.run(threshold=5)
    assert summary == {"threshold": 5, "low_stock_count": 1, "out_of_stock_count": 1, "notifications_sent": 0}


def test_stock_alert_emails_headquarters(db_session, job_sessions, sent_mail):
    _hq_admin(db_session)
    _items(db_session, ("Empty", 0), ("Short", 3))

    summary = stock_alert_runner.run(threshold=5, enable_email=True)

    assert summary["notifications_sent"] == 1
    assert sent_mail[0]["recipient"] == "hq@example.com"
    log = db_session.query(notification_models.EmailLog).one()
    assert log.template_key == "stock_alert"
    assert log.kind == notification_models.NotificationKind.STOCK_ALERT
    assert log.correlation_id.startswith("stock-alert-")


def test_expiry_check_summarises_batches(db_session, job_sessions, sent_mail):
    _hq_admin(db_session)
    (item,) = _items(db_session, ("Eye drop solution", 0))
    db_session.add_all(
        [
            inventory_models.Batch(inventory_id=item.id, lot_code="OLD", quantity=2, expires_on=TODAY - timedelta(days=1)),
            inventory_models.Batch(inventory_id=item.id, lot_code="SOON", quantity=6, expires_on=TODAY + timedelta(days=10)),
            inventory_models.Batch(inventory_id=item.id, lot_code="LATER", quantity=9, expires_on=TODAY + timedelta(days=200)),
        ]
    )
    db_session.commit()

    summary = expiry_check_runner.run(days_ahead=30, enable_email=True, today=TODAY)

    assert (summary["expiring_count"], summary["expiring_quantity"]) == (1, 6)
    assert (summary["expired_count"], summary["expired_quantity"]) == (1, 2)
    assert summary["notifications_sent"] == 1
    assert sent_mail[0]["correlation_id"] == "expiry-check-2026-04-01"


def test_cleanup_removes_old_inventory_and_audit_logs(db_session, job_sessions):
    (item,) = _items(db_session, ("Gauze", 0))
    for created_at in (NOW - timedelta(days=120), NOW - timedelta(days=5)):
        db_session.add(
            inventory_models.InventoryLog(
                inventory_id=item.id,
                delta=1,
                operation_type=inventory_models.InventoryOperationEnum.ADD,
                previous_quantity=0,
                current_quantity=1,
                created_at=created_at,
            )
        )
        db_session.add(audit_models.AuditLog(action="update", message="m", occurred_at=created_at))
    db_session.commit()

    summary = cleanup_logs_runner.run(retention_days=90, batch_size=10, now=NOW)

    assert summary["inventory_logs_deleted"] == 1
    assert summary["audit_logs_deleted"] == 1
    assert db_session.query(inventory_models.InventoryLog).count() == 1
    assert db_session.query(audit_models.AuditLog).count() == 1


def test_import_runner_reads_file_and_audits(db_session, job_sessions, tmp_path):
    path = tmp_path / "items.csv"
    path.write_text("name,quantity,price\nAspirin,10,1.5\nBroken,x,1\nZinc,2,\n", encoding="utf-8-sig")

    result = import_inventories_runner.run(str(path), admin_id="admin-1")

    assert result["valid_count"] == 2
    assert result["update_count"] == 0
    assert [r["row"] for r in result["invalid_records"]] == [2]

    audit = db_session.query(audit_models.AuditLog).filter(audit_models.AuditLog.action == "import").one()
    assert audit.details["valid_count"] == 2
    assert audit.message == "CSV import from items.csv"


def test_temp_password_cleanup_runner(db_session, job_sessions):
    assert temp_password_cleanup_runner.run() == {"deleted": 0}
