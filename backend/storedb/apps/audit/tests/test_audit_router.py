from __future__ import annotations

import csv
import io

from storedb.apps.accounts import models as account_models
from storedb.apps.accounts import services as account_services
from storedb.apps.audit import models as audit_models

from .test_audit_services import _event, _store


def _headers(admin) -> dict:
    token, _ = account_services.issue_access_token_for_admin(admin)
    return {"Authorization": f"Bearer {token}"}


def _seed(db):
    north = _store(db, "PH-NORTH")
    south = _store(db, "PH-SOUTH")
    _event(db, north, "update", message="north change")
    _event(db, north, "delete", message="north removal")
    _event(db, south, "update", message="south change")
    _event(db, None, "security_event", message="rate limit")
    manager = account_models.Admin(
        email="north.audit@example.com",
        role=account_models.AdminRole.STORE_MANAGER,
        store_id=north.id,
        hashed_password="x",
    )
    hq = account_models.Admin(
        email="hq.audit@example.com", role=account_models.AdminRole.HEADQUARTERS_ADMIN, hashed_password="x"
    )
    clerk = account_models.Admin(
        email="clerk.audit@example.com",
        role=account_models.AdminRole.STORE_USER,
        store_id=north.id,
        hashed_password="x",
    )
    db.add_all([manager, hq, clerk])
    db.commit()
    return north, south, manager, hq, clerk


def test_store_manager_only_sees_own_store(client, db_session):
    north, south, manager, hq, clerk = _seed(db_session)

    response = client.get("/admin/audit-logs", headers=_headers(manager))
    assert response.status_code == 200
    assert sorted(row["message"] for row in response.json()) == ["north change", "north removal"]
    assert {row["store_id"] for row in response.json()} == {north.id}

    response = client.get("/admin/audit-logs", params={"store_id": south.id}, headers=_headers(manager))
    assert response.status_code == 200
    assert response.json() == []

    response = client.get("/admin/audit-logs", params={"action": "delete"}, headers=_headers(manager))
    assert [row["message"] for row in response.json()] == ["north removal"]


def test_headquarters_sees_every_store(client, db_session):
    north, south, manager, hq, clerk = _seed(db_session)

    response = client.get("/admin/audit-logs", headers=_headers(hq))
    assert len(response.json()) == 4

    response = client.get("/admin/audit-logs", params={"store_id": south.id}, headers=_headers(hq))
    assert [row["message"] for row in response.json()] == ["south change"]


def test_audit_routes_require_manager_role(client, db_session):
    north, south, manager, hq, clerk = _seed(db_session)
    assert client.get("/admin/audit-logs", headers=_headers(clerk)).status_code == 403
    assert client.get("/admin/audit-logs").status_code == 401


def test_export_is_scoped_and_audited(client, db_session):
    north, south, manager, hq, clerk = _seed(db_session)

    response = client.get("/admin/audit-logs/export", headers=_headers(manager))
    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/csv")
    rows = list(csv.reader(io.StringIO(response.text)))
    assert len(rows) == 3
    assert {row[2] for row in rows[1:]} == {north.id}

    export_entry = (
        db_session.query(audit_models.AuditLog)
        .filter(audit_models.AuditLog.auditable_type == "audit_log", audit_models.AuditLog.action == "export")
        .one()
    )
    assert export_entry.store_id == north.id
    assert export_entry.details == {"rows": 2}
