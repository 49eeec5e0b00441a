from __future__ import annotations

from datetime import datetime, timedelta

import pytest
from fastapi import HTTPException
from pydantic import ValidationError

from storedb.apps.accounts import models as account_models
from storedb.apps.audit import models as audit_models
from storedb.apps.inventory import models as inventory_models
from storedb.apps.notifications import models as notification_models
from storedb.apps.stores import models as store_models
from storedb.apps.transfers import models as transfer_models
from storedb.apps.transfers import schemas as transfer_schemas
from storedb.apps.transfers import services as transfer_services
from storedb.apps.workflow import TransitionError

Status = transfer_models.TransferStatusEnum
Requester = transfer_models.RequesterTypeEnum


@pytest.fixture
def setup(db_session):
    source = store_models.Store(name="Source Pharmacy", code="PH-SRC", slug="ph-src")
    destination = store_models.Store(name="Destination Pharmacy", code="PH-DST", slug="ph-dst")
    item = inventory_models.Inventory(name="Amoxicillin 250mg", price=4.0, quantity=0)
    db_session.add_all([source, destination, item])
    db_session.flush()
    stock = store_models.StoreInventory(
        store_id=source.id, inventory_id=item.id, quantity=20, reserved_quantity=0, safety_stock_level=5
    )
    hq = account_models.Admin(
        email="hq@example.com", role=account_models.AdminRole.HEADQUARTERS_ADMIN, hashed_password="x"
    )
    source_manager = account_models.Admin(
        email="src-manager@example.com",
        role=account_models.AdminRole.STORE_MANAGER,
        store_id=source.id,
        hashed_password="x",
    )
    destination_manager = account_models.Admin(
        email="dst-manager@example.com",
        role=account_models.AdminRole.STORE_MANAGER,
        store_id=destination.id,
        hashed_password="x",
    )
    db_session.add_all([stock, hq, source_manager, destination_manager])
    db_session.commit()
    return {
        "source": source,
        "destination": destination,
        "item": item,
        "stock": stock,
        "hq": hq,
        "source_manager": source_manager,
        "destination_manager": destination_manager,
    }


def _store_user(db, store, email: str, role=account_models.StoreUserRole.STAFF) -> account_models.StoreUser:
    user = account_models.StoreUser(store_id=store.id, email=email, name=email.split("@")[0], role=role, hashed_password="x")
    db.add(user)
    db.commit()
    return user


def _request(db, setup, quantity: int = 5, *, requester=None, key=None, priority=None):
    payload = transfer_schemas.TransferCreate(
        source_store_id=setup["source"].id,
        destination_store_id=setup["destination"].id,
        inventory_id=setup["item"].id,
        quantity=quantity,
        reason="Weekend demand",
        priority=priority or transfer_models.TransferPriorityEnum.NORMAL,
    )
    requester = requester or setup["hq"]
    requester_type = Requester.STORE_USER if isinstance(requester, account_models.StoreUser) else Requester.ADMIN
    transfer = transfer_services.create_transfer(
        db,
        payload=payload,
        requested_by_type=requester_type,
        requested_by_id=requester.id,
        idempotency_key=key,
    )
    db.commit()
    return transfer


def test_create_reserves_stock_and_updates_counters(db_session, setup):
    transfer = _request(db_session, setup)

    assert transfer.status == Status.PENDING
    assert setup["stock"].reserved_quantity == 5
    assert setup["stock"].available_quantity == 15
    assert setup["source"].pending_outgoing_transfers_count == 1
    assert setup["destination"].pending_incoming_transfers_count == 1
    assert transfer.transfer_summary == "PH-SRC → PH-DST: Amoxicillin 250mg × 5"

    created = (
        db_session.query(audit_models.AuditLog)
        .filter(audit_models.AuditLog.auditable_type == "inter_store_transfer", audit_models.AuditLog.action == "create")
        .one()
    )
    assert created.store_id == setup["source"].id


def test_create_rejects_overdraw_and_same_store(db_session, setup):
    _request(db_session, setup, quantity=15)
    with pytest.raises(HTTPException) as exc_info:
        _request(db_session, setup, quantity=6)
    assert exc_info.value.status_code == 400
    assert "available 5" in exc_info.value.detail

    with pytest.raises(HTTPException) as exc_info:
        transfer_services.create_transfer(
            db_session,
            payload=transfer_schemas.TransferCreate(
                source_store_id=setup["source"].id,
                destination_store_id=setup["source"].id,
                inventory_id=setup["item"].id,
                quantity=1,
                reason="Loop",
            ),
            requested_by_type=Requester.ADMIN,
            requested_by_id=setup["hq"].id,
        )
    assert exc_info.value.status_code == 400


def test_create_requires_active_stores_and_stocked_item(db_session, setup):
    other_item = inventory_models.Inventory(name="Unstocked", price=1.0, quantity=0)
    db_session.add(other_item)
    db_session.commit()
    with pytest.raises(HTTPException) as exc_info:
        transfer_services.create_transfer(
            db_session,
            payload=transfer_schemas.TransferCreate(
                source_store_id=setup["source"].id,
                destination_store_id=setup["destination"].id,
                inventory_id=other_item.id,
                quantity=1,
                reason="Top up",
            ),
            requested_by_type=Requester.ADMIN,
            requested_by_id=setup["hq"].id,
        )
    assert exc_info.value.status_code == 400

    setup["destination"].is_active = False
    db_session.commit()
    with pytest.raises(HTTPException) as exc_info:
        _request(db_session, setup)
    assert exc_info.value.detail == "Destination store is inactive"


def test_idempotent_create_returns_same_transfer(db_session, setup):
    first = _request(db_session, setup, key="req-1")
    second = _request(db_session, setup, key="req-1")
    assert first.id == second.id
    assert setup["stock"].reserved_quantity == 5

    with pytest.raises(HTTPException) as exc_info:
        _request(db_session, setup, quantity=2, key="req-1")
    assert exc_info.value.status_code == 409


def test_approval_permissions(db_session, setup):
    transfer = _request(db_session, setup)

    with pytest.raises(HTTPException) as exc_info:
        transfer_services.approve_transfer(db_session, transfer=transfer, approver=setup["source_manager"])
    assert exc_info.value.status_code == 403

    transfer_services.approve_transfer(db_session, transfer=transfer, approver=setup["destination_manager"])
    db_session.commit()
    assert transfer.status == Status.APPROVED
    assert transfer.approved_by_id == setup["destination_manager"].id
    assert setup["stock"].reserved_quantity == 5

    transition = (
        db_session.query(audit_models.AuditLog)
        .filter(audit_models.AuditLog.action == "transition")
        .one()
    )
    assert transition.details["before"]["status"] == "PENDING"
    assert transition.details["after"]["status"] == "APPROVED"

    with pytest.raises(TransitionError):
        transfer_services.approve_transfer(db_session, transfer=transfer, approver=setup["hq"])


def test_reject_appends_reason_and_releases_reservation(db_session, setup):
    transfer = _request(db_session, setup)

    with pytest.raises(HTTPException) as exc_info:
        transfer_services.reject_transfer(db_session, transfer=transfer, approver=setup["hq"], reason="  ")
    assert exc_info.value.status_code == 400

    transfer_services.reject_transfer(db_session, transfer=transfer, approver=setup["hq"], reason="Stock needed here")
    db_session.commit()

    assert transfer.status == Status.REJECTED
    assert transfer.reason == f"Weekend demand{transfer_services.REJECTION_MARKER}Stock needed here"
    assert setup["stock"].reserved_quantity == 0
    assert setup["source"].pending_outgoing_transfers_count == 0
    assert [e.event for e in transfer_services.timeline(transfer)] == ["requested", "rejected"]


def test_cancel_by_requester_or_source_manager_only(db_session, setup):
    clerk = _store_user(db_session, setup["source"], "clerk@example.com")
    colleague = _store_user(db_session, setup["source"], "colleague@example.com")
    outsider = _store_user(
        db_session, setup["destination"], "boss@example.com", role=account_models.StoreUserRole.MANAGER
    )
    transfer = _request(db_session, setup, requester=clerk)
    assert transfer.requested_by_type == Requester.STORE_USER

    for user in (colleague, outsider):
        with pytest.raises(HTTPException) as exc_info:
            transfer_services.cancel_transfer(db_session, transfer=transfer, store_user=user)
        assert exc_info.value.status_code == 403

    transfer_services.cancel_transfer(db_session, transfer=transfer, store_user=clerk)
    db_session.commit()
    assert transfer.status == Status.CANCELLED
    assert transfer.cancelled_at is not None
    assert setup["stock"].reserved_quantity == 0

    with pytest.raises(TransitionError):
        transfer_services.cancel_transfer(db_session, transfer=transfer, admin=setup["hq"])


def test_full_flow_moves_stock_to_destination(db_session, setup):
    shipper = _store_user(db_session, setup["source"], "src-boss@example.com", role=account_models.StoreUserRole.MANAGER)
    receiver = _store_user(
        db_session, setup["destination"], "dst-boss@example.com", role=account_models.StoreUserRole.MANAGER
    )
    transfer = _request(db_session, setup, quantity=8)
    transfer_services.approve_transfer(db_session, transfer=transfer, approver=setup["hq"])

    with pytest.raises(HTTPException):
        transfer_services.ship_transfer(db_session, transfer=transfer, store_user=receiver)
    transfer_services.ship_transfer(db_session, transfer=transfer, store_user=shipper)
    assert transfer.status == Status.IN_TRANSIT

    with pytest.raises(HTTPException):
        transfer_services.complete_transfer(db_session, transfer=transfer, store_user=shipper)
    transfer_services.complete_transfer(db_session, transfer=transfer, store_user=receiver)
    db_session.commit()

    assert transfer.status == Status.COMPLETED
    assert (setup["stock"].quantity, setup["stock"].reserved_quantity) == (12, 0)
    received = (
        db_session.query(store_models.StoreInventory)
        .filter_by(store_id=setup["destination"].id, inventory_id=setup["item"].id)
        .one()
    )
    assert received.quantity == 8
    assert received.safety_stock_level == store_models.StoreInventory.DEFAULT_SAFETY_STOCK_LEVEL
    assert [e.event for e in transfer_services.timeline(transfer)] == ["requested", "approved", "shipped", "completed"]

    transitions = db_session.query(audit_models.AuditLog).filter(audit_models.AuditLog.action == "transition").all()
    (completion,) = [t for t in transitions if t.details["after"]["status"] == "COMPLETED"]
    assert completion.details["after"]["source_note"] == "SHIP: Amoxicillin 250mg × 8 to PH-DST"
    assert completion.details["after"]["destination_note"] == "RECEIVE: Amoxicillin 250mg × 8 from PH-SRC"


def test_pending_transfer_cannot_be_completed(db_session, setup):
    transfer = _request(db_session, setup)
    with pytest.raises(TransitionError) as exc_info:
        transfer_services.complete_transfer(db_session, transfer=transfer, admin=setup["hq"])
    assert exc_info.value.code == "invalid_transition"


def test_list_and_counts_by_direction(db_session, setup):
    _request(db_session, setup, quantity=2)
    second = _request(db_session, setup, quantity=3)
    transfer_services.approve_transfer(db_session, transfer=second, approver=setup["hq"])
    db_session.commit()

    outgoing = transfer_services.list_transfers(
        db_session, store_id=setup["source"].id, direction_eq="outgoing"
    )
    assert outgoing.total == 2
    incoming = transfer_services.list_transfers(
        db_session, store_id=setup["source"].id, direction_eq="incoming"
    )
    assert incoming.total == 0
    named = transfer_services.list_transfers(db_session, inventory_name_cont="amoxi", status_eq=Status.APPROVED)
    assert [t.id for t in named.items] == [second.id]

    counts = transfer_services.transfer_counts(db_session, setup["destination"])
    assert (counts.all, counts.incoming, counts.outgoing, counts.pending) == (2, 2, 0, 1)


def test_stats_and_analytics(db_session, setup):
    urgent = _request(db_session, setup, quantity=4, priority=transfer_models.TransferPriorityEnum.URGENT)
    done = _request(db_session, setup, quantity=6)
    transfer_services.approve_transfer(db_session, transfer=done, approver=setup["hq"])
    transfer_services.complete_transfer(db_session, transfer=done, admin=setup["hq"])
    db_session.commit()

    stats = transfer_services.store_transfer_stats(db_session, setup["destination"])
    assert stats.incoming_count == 2
    assert stats.incoming_completed == 1
    assert stats.pending_approvals == 1
    assert stats.average_processing_hours is not None

    analytics = transfer_services.transfer_analytics(db_session, store_ids=[setup["source"].id])
    assert analytics.total_requests == 2
    assert analytics.approval_rate == 50.0
    assert analytics.average_quantity == 5.0
    assert analytics.by_status == {"PENDING": 1, "COMPLETED": 1}
    assert analytics.by_priority == {"URGENT": 1, "NORMAL": 1}
    assert analytics.top_requested_items[0].total_quantity == 10

    pending = transfer_services.pending_stats(db_session, now=urgent.requested_at + timedelta(hours=3))
    assert pending.pending_count == 1
    assert pending.urgent_count == 1
    assert pending.average_waiting_hours == 3.0

    empty = transfer_services.transfer_analytics(db_session, now=datetime.utcnow() + timedelta(days=60))
    assert empty.total_requests == 0
    assert empty.approval_rate == 0.0


@pytest.mark.parametrize(
    "quantity, reserved, safety, expected",
    [(20, 0, 5, 8), (20, 10, 5, 3), (5, 0, 5, 0), (3, 0, 5, 0)],
)
def test_suggested_quantity(quantity, reserved, safety, expected):
    stock = store_models.StoreInventory(quantity=quantity, reserved_quantity=reserved, safety_stock_level=safety)
    assert transfer_services.suggested_quantity(stock) == expected


@pytest.mark.parametrize("reason", ["", "   ", "\n\t "])
def test_blank_reason_is_refused(db_session, setup, reason):
    fields = dict(
        source_store_id=setup["source"].id,
        destination_store_id=setup["destination"].id,
        inventory_id=setup["item"].id,
        quantity=2,
        reason=reason,
    )
    with pytest.raises(ValidationError):
        transfer_schemas.TransferCreate(**fields)
    with pytest.raises(ValidationError):
        transfer_schemas.StoreTransferCreate(
            destination_store_id=setup["destination"].id, inventory_id=setup["item"].id, quantity=2, reason=reason
        )

    with pytest.raises(HTTPException) as exc_info:
        transfer_services.create_transfer(
            db_session,
            payload=transfer_schemas.TransferCreate.model_construct(
                **fields, priority=transfer_models.TransferPriorityEnum.NORMAL
            ),
            requested_by_type=Requester.ADMIN,
            requested_by_id=setup["hq"].id,
        )
    assert exc_info.value.status_code == 400
    assert db_session.query(transfer_models.InterStoreTransfer).count() == 0
    assert setup["stock"].reserved_quantity == 0


def test_reason_is_stored_trimmed(db_session, setup):
    payload = transfer_schemas.TransferCreate(
        source_store_id=setup["source"].id,
        destination_store_id=setup["destination"].id,
        inventory_id=setup["item"].id,
        quantity=2,
        reason="  Flu season  ",
    )
    assert payload.reason == "Flu season"


def test_decisions_notify_the_requester(db_session, setup):
    clerk = _store_user(db_session, setup["destination"], "dst-clerk@example.com")
    approved = _request(db_session, setup, 2, requester=clerk)
    rejected = _request(db_session, setup, 3)

    transfer_services.approve_transfer(db_session, transfer=approved, approver=setup["hq"])
    transfer_services.reject_transfer(db_session, transfer=rejected, approver=setup["hq"], reason="Keep it local")
    db_session.commit()

    logs = {
        log.transfer_id: log
        for log in db_session.query(notification_models.EmailLog)
        .filter(notification_models.EmailLog.kind == notification_models.NotificationKind.TRANSFER_UPDATE)
        .all()
    }
    assert logs[approved.id].recipient == "dst-clerk@example.com"
    assert logs[approved.id].subject == f"Transfer #{approved.id} approved"
    assert logs[approved.id].store_id == setup["destination"].id
    assert logs[rejected.id].recipient == "hq@example.com"
    assert logs[rejected.id].context_json["note"] == "Reason: Keep it local"
