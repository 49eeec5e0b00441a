from __future__ import annotations

from storedb.apps.accounts import models as account_models
from storedb.apps.accounts import services as account_services
from storedb.apps.stores import models as store_models


def _admin(db, role, store=None) -> account_models.Admin:
    admin = account_models.Admin(
        email=f"{role.value.lower()}@example.com",
        role=role,
        store_id=store.id if store else None,
        hashed_password="x",
    )
    db.add(admin)
    db.commit()
    return admin


def _auth(admin) -> dict:
    token, _ = account_services.issue_access_token_for_admin(admin)
    return {"Authorization": f"Bearer {token}"}


def test_headquarters_overview_requires_headquarters_role(client, db_session):
    store = store_models.Store(name="North", code="PH-N", slug="ph-n")
    db_session.add(store)
    db_session.commit()
    hq = _admin(db_session, account_models.AdminRole.HEADQUARTERS_ADMIN)
    manager = _admin(db_session, account_models.AdminRole.STORE_MANAGER, store)

    response = client.get("/admin/dashboard/overview", headers=_auth(hq))
    assert response.status_code == 200
    body = response.json()
    assert body["stores"]["total_stores"] == 1
    assert body["pending"]["pending_count"] == 0

    assert client.get("/admin/dashboard/overview", headers=_auth(manager)).status_code == 403


def test_admin_cannot_open_other_store_dashboard(client, db_session):
    north = store_models.Store(name="North", code="PH-N", slug="ph-n")
    south = store_models.Store(name="South", code="PH-S", slug="ph-s")
    db_session.add_all([north, south])
    db_session.commit()
    manager = _admin(db_session, account_models.AdminRole.STORE_MANAGER, north)

    own = client.get(f"/admin/stores/{north.id}/dashboard", headers=_auth(manager))
    assert own.status_code == 200
    assert own.json()["statistics"]["total_items"] == 0

    other = client.get(f"/admin/stores/{south.id}/dashboard", headers=_auth(manager))
    assert other.status_code == 404
