from __future__ import annotations

import csv
import io

from storedb.apps.accounts import models as account_models
from storedb.apps.accounts import services as account_services
from storedb.apps.audit import models as audit_models
from storedb.apps.exports import services as export_services

from .test_exports import _seed


def _rows(response) -> list:
    assert response.content.startswith(export_services.UTF8_BOM.encode("utf-8"))
    return list(csv.reader(io.StringIO(response.content.decode("utf-8-sig"))))


def test_store_user_downloads_inventory_csv(client, db_session):
    store = _seed(db_session)
    clerk = account_models.StoreUser(
        store_id=store.id, email="clerk@example.com", name="Clerk", hashed_password="x", must_change_password=False
    )
    db_session.add(clerk)
    db_session.commit()
    token, _ = account_services.issue_access_token_for_store_user(clerk)

    response = client.get(
        "/stores/ph-exp/exports/inventories.csv",
        headers={"Authorization": f"Bearer {token}", "User-Agent": "export-test"},
    )

    assert response.status_code == 200
    assert response.headers["content-type"] == "text/csv; charset=utf-8"
    disposition = response.headers["content-disposition"]
    assert disposition.startswith('attachment; filename="PH-EXP_inventories_')
    assert disposition.endswith('.csv"')

    rows = _rows(response)
    assert rows[0] == export_services.STORE_INVENTORY_HEADER
    assert [row[0] for row in rows[1:]] == ["Amoxicillin syrup", "Nitrile glove box"]
    assert rows[2][7] == "Out of stock"

    entry = db_session.query(audit_models.AuditLog).filter(audit_models.AuditLog.action == "export").one()
    assert (entry.actor_type, entry.actor_id) == ("store_user", clerk.id)
    assert entry.ip_address == "testclient"
    assert entry.user_agent == "export-test"


def test_admin_export_is_limited_to_accessible_stores(client, db_session):
    store = _seed(db_session)
    outsider = account_models.Admin(
        email="other.manager@example.com", role=account_models.AdminRole.STORE_MANAGER, hashed_password="x"
    )
    hq = account_models.Admin(
        email="hq.export@example.com", role=account_models.AdminRole.HEADQUARTERS_ADMIN, hashed_password="x"
    )
    db_session.add_all([outsider, hq])
    db_session.commit()

    def _get(admin):
        token, _ = account_services.issue_access_token_for_admin(admin)
        return client.get(
            f"/admin/stores/{store.id}/exports/inventories.csv", headers={"Authorization": f"Bearer {token}"}
        )

    assert _get(outsider).status_code == 404
    assert db_session.query(audit_models.AuditLog).filter(audit_models.AuditLog.action == "export").count() == 0

    response = _get(hq)
    assert response.status_code == 200
    assert len(_rows(response)) == 3
