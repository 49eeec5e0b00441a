from __future__ import annotations

from datetime import datetime, timedelta

import pytest

from storedb.apps.audit import models as audit_models
from storedb.apps.audit import services as audit_services
from storedb.apps.stores import models as store_models

NOW = datetime(2026, 6, 1, 12, 0, 0)


def _store(db, code: str) -> store_models.Store:
    store = store_models.Store(name=f"Store {code}", code=code, slug=code.lower())
    db.add(store)
    db.commit()
    return store


def _event(db, store, action: str = "update", **kwargs):
    return audit_services.log_event(
        db,
        store_id=store.id if store else None,
        actor_type="admin",
        actor_id=kwargs.pop("actor_id", "admin-1"),
        auditable_type=kwargs.pop("auditable_type", "store"),
        auditable_id=kwargs.pop("auditable_id", 1),
        action=action,
        message=kwargs.pop("message", f"{action} happened"),
        **kwargs,
    )


def test_log_event_stores_identifiers_as_strings(db_session):
    store = _store(db_session, "PH-AUD")
    entry = _event(db_session, store, auditable_id=42, details={"field": ["a", "b"]}, ip_address="203.0.113.5")
    db_session.commit()

    assert entry.auditable_id == "42"
    assert entry.details == {"field": ["a", "b"]}
    assert entry.occurred_at is not None


def test_log_event_failure_is_best_effort_unless_critical(db_session, monkeypatch):
    def explode(db, *, data):
        raise RuntimeError("db down")

    monkeypatch.setattr(audit_services, "create_audit_log", explode)
    assert _event(db_session, None) is None
    with pytest.raises(RuntimeError):
        _event(db_session, None, critical=True)


def test_list_audit_logs_scopes_by_store_and_filters(db_session):
    north = _store(db_session, "PH-N")
    south = _store(db_session, "PH-S")
    _event(db_session, north, "create")
    _event(db_session, north, "update", actor_id="admin-2")
    _event(db_session, south, "update")
    _event(db_session, None, "security_event", auditable_type=None, auditable_id=None)
    db_session.commit()

    assert len(audit_services.list_audit_logs(db_session)) == 4
    assert len(audit_services.list_audit_logs(db_session, store_ids=[north.id])) == 2
    assert audit_services.list_audit_logs(db_session, store_ids=[]) == []

    rows = audit_services.list_audit_logs(db_session, action="update", actor_id="admin-2")
    assert [r.store_id for r in rows] == [north.id]


def test_cleanup_removes_only_expired_rows_in_batches(db_session):
    store = _store(db_session, "PH-OLD")
    for days_ago in (200, 120, 95, 10):
        entry = _event(db_session, store)
        entry.occurred_at = NOW - timedelta(days=days_ago)
    db_session.commit()

    deleted = audit_services.cleanup_old_logs(db_session, days=90, batch_size=2, now=NOW)
    db_session.commit()

    assert deleted == 3
    (remaining,) = db_session.query(audit_models.AuditLog).all()
    assert remaining.occurred_at == NOW - timedelta(days=10)


def test_audit_logs_to_csv(db_session):
    store = _store(db_session, "PH-CSV")
    _event(db_session, store, "export", message="Exported, with comma")
    db_session.commit()

    text = audit_services.audit_logs_to_csv(audit_services.list_audit_logs(db_session))
    header, line = text.strip().splitlines()
    assert header.split(",") == audit_services.CSV_HEADER
    assert '"Exported, with comma"' in line
    assert f",{store.id},store,1,admin,admin-1,export," in line
