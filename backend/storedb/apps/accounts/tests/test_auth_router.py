from __future__ import annotations

from datetime import datetime, timedelta

from storedb.apps.accounts import models as account_models
from storedb.apps.accounts import schemas as account_schemas
from storedb.apps.accounts import router_public
from storedb.apps.accounts import services as account_services
from storedb.apps.stores import models as store_models

PASSWORD = "Str0ng!Passw0rd"


def _seed(db):
    store = store_models.Store(name="Riverside Pharmacy", code="PH-020", slug="ph-020")
    db.add(store)
    db.commit()
    admin = account_services.create_admin(
        db,
        account_schemas.AdminCreate(
            email="hq@example.com", role=account_models.AdminRole.HEADQUARTERS_ADMIN, password=PASSWORD
        ),
    )
    user = account_services.create_store_user(
        db,
        store=store,
        data=account_schemas.StoreUserCreate(email="clerk@example.com", name="Clerk", password=PASSWORD),
    )
    return store, admin, user


def test_admin_login_and_me(client, db_session):
    _, admin, _ = _seed(db_session)

    response = client.post("/auth/admin/login", json={"email": "hq@example.com", "password": PASSWORD})
    assert response.status_code == 200
    body = response.json()
    assert body["principal_type"] == "admin"
    assert body["principal_id"] == admin.id

    me = client.get("/auth/admin/me", headers={"Authorization": f"Bearer {body['access_token']}"})
    assert me.status_code == 200
    assert me.json()["email"] == "hq@example.com"


def test_admin_login_wrong_password_is_unauthorised(client, db_session):
    _seed(db_session)
    response = client.post("/auth/admin/login", json={"email": "hq@example.com", "password": "wrong"})
    assert response.status_code == 401


def test_store_login_failures_are_throttled_per_account(client, db_session):
    store, _, _ = _seed(db_session)
    credentials = {"store_slug": store.slug, "email": "ghost@example.com", "password": "wrong"}
    statuses = [client.post("/auth/store/login", json=credentials).status_code for _ in range(6)]
    assert statuses[:5] == [401] * 5
    assert statuses[5] == 429


def test_admin_lockout_escalates_over_http(client, db_session, monkeypatch):
    _, admin, _ = _seed(db_session)
    monkeypatch.setattr(router_public, "_AUTH_RATE_LIMIT_MAX_ATTEMPTS", 100)
    wrong = {"email": "hq@example.com", "password": "wrong"}

    for expected_lock in (30, 90, 900):
        statuses = [client.post("/auth/admin/login", json=wrong).status_code for _ in range(3)]
        assert statuses == [401, 401, 401]

        locked = client.post("/auth/admin/login", json=wrong)
        assert locked.status_code == 423
        assert expected_lock - 5 <= int(locked.headers["Retry-After"]) <= expected_lock

        admin.locked_until = datetime.utcnow() - timedelta(seconds=1)
        db_session.commit()

    # the schedule tops out at its last step
    for _ in range(3):
        client.post("/auth/admin/login", json=wrong)
    assert int(client.post("/auth/admin/login", json=wrong).headers["Retry-After"]) > 800

    admin.locked_until = datetime.utcnow() - timedelta(seconds=1)
    db_session.commit()
    response = client.post("/auth/admin/login", json={"email": "hq@example.com", "password": PASSWORD})
    assert response.status_code == 200
    db_session.refresh(admin)
    assert admin.lockout_count == 0


def test_store_token_cannot_open_admin_routes(client, db_session):
    store, _, user = _seed(db_session)
    token, _ = account_services.issue_access_token_for_store_user(user)
    response = client.get("/auth/admin/me", headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 401


def test_store_login_forces_password_change(client, db_session):
    store, _, _ = _seed(db_session)
    response = client.post(
        "/auth/store/login",
        json={"store_slug": store.slug, "email": "clerk@example.com", "password": PASSWORD},
    )
    assert response.status_code == 200
    body = response.json()
    assert body["must_change_password"] is True

    blocked = client.get(
        f"/stores/{store.slug}/transfers",
        headers={"Authorization": f"Bearer {body['access_token']}"},
    )
    assert blocked.status_code == 403
    assert blocked.json()["detail"] == "Password change required"
