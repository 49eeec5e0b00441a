from __future__ import annotations

import pytest

from storedb.apps.accounts.rate_limit import LIMITS, RateLimiter
from storedb.apps.audit import models as audit_models


class _Clock:
    def __init__(self, start: float = 1_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now


def test_unknown_limit_type_is_rejected():
    with pytest.raises(ValueError):
        RateLimiter("nonsense", "x")


def test_limiter_blocks_when_limit_reached_and_recovers():
    clock = _Clock()
    limiter = RateLimiter("login", "admin:someone@example.com", clock=clock)
    rule = LIMITS["login"]

    for _ in range(rule.limit - 1):
        assert limiter.track() is True
    assert limiter.allowed()
    assert limiter.remaining_attempts() == 1

    assert limiter.track() is False
    assert limiter.is_blocked()
    assert not limiter.allowed()
    assert limiter.time_until_unblock() == rule.block_seconds

    clock.now += rule.block_seconds + 1
    assert not limiter.is_blocked()
    assert limiter.allowed()
    assert limiter.current_count() == 0


def test_counter_window_expires():
    clock = _Clock()
    limiter = RateLimiter("transfer_request", "store_user:1", clock=clock)
    limiter.track()
    limiter.track()
    assert limiter.current_count() == 2

    clock.now += LIMITS["transfer_request"].period_seconds
    assert limiter.current_count() == 0


def test_identifiers_are_isolated_and_reset_clears():
    clock = _Clock()
    first = RateLimiter("api", "a", clock=clock)
    second = RateLimiter("api", "b", clock=clock)
    first.track()
    assert second.current_count() == 0

    first.reset()
    assert first.current_count() == 0


def test_block_is_recorded_in_audit_log(db_session):
    limiter = RateLimiter("password_reset", "hq@example.com", db=db_session)
    for _ in range(LIMITS["password_reset"].limit):
        limiter.track()
    db_session.commit()

    entry = db_session.query(audit_models.AuditLog).filter(audit_models.AuditLog.action == "security_event").one()
    assert entry.details["event_type"] == "rate_limit_exceeded"
    assert entry.details["key_type"] == "password_reset"
