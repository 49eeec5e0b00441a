from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Tuple

from sqlalchemy.orm import Session

from storedb.apps.audit import services as audit_services

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitRule:
    limit: int
    period_seconds: int
    block_seconds: int


LIMITS: Dict[str, RateLimitRule] = {
    "login": RateLimitRule(limit=5, period_seconds=15 * 60, block_seconds=30 * 60),
    "password_reset": RateLimitRule(limit=3, period_seconds=3600, block_seconds=3600),
    "email_auth": RateLimitRule(limit=3, period_seconds=3600, block_seconds=3600),
    "email_auth_daily": RateLimitRule(limit=10, period_seconds=86400, block_seconds=3600),
    "api": RateLimitRule(limit=100, period_seconds=3600, block_seconds=3600),
    "transfer_request": RateLimitRule(limit=20, period_seconds=86400, block_seconds=3600),
    "file_upload": RateLimitRule(limit=10, period_seconds=3600, block_seconds=30 * 60),
}

# counter key -> (count, window_expires_at); block key -> blocked_until
_COUNTERS: Dict[str, Tuple[int, float]] = {}
_BLOCKS: Dict[str, float] = {}
_LOCK = threading.Lock()


def reset_all() -> None:
    with _LOCK:
        _COUNTERS.clear()
        _BLOCKS.clear()


class RateLimiter:
    """
    Fixed-window limiter with a block period once the limit is hit.

    State lives in-process; each API worker keeps its own counters.
    """

    def __init__(
        self,
        key_type: str,
        identifier: str,
        *,
        db: Optional[Session] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if key_type not in LIMITS:
            raise ValueError(f"Unknown rate limit type: {key_type}")
        self.key_type = key_type
        self.identifier = identifier
        self.rule = LIMITS[key_type]
        self._db = db
        self._clock = clock

    @property
    def counter_key(self) -> str:
        return f"rate_limit:{self.key_type}:{self.identifier}:count"

    @property
    def block_key(self) -> str:
        return f"rate_limit:{self.key_type}:{self.identifier}:blocked"

    def _current(self, now: float) -> int:
        entry = _COUNTERS.get(self.counter_key)
        if entry is None:
            return 0
        count, expires_at = entry
        if expires_at <= now:
            _COUNTERS.pop(self.counter_key, None)
            return 0
        return count

    def current_count(self) -> int:
        with _LOCK:
            return self._current(self._clock())

    def is_blocked(self) -> bool:
        with _LOCK:
            blocked_until = _BLOCKS.get(self.block_key)
            if blocked_until is None:
                return False
            if blocked_until <= self._clock():
                _BLOCKS.pop(self.block_key, None)
                return False
            return True

    def allowed(self) -> bool:
        if self.is_blocked():
            return False
        return self.current_count() < self.rule.limit

    def remaining_attempts(self) -> int:
        return max(self.rule.limit - self.current_count(), 0)

    def time_until_unblock(self) -> int:
        with _LOCK:
            blocked_until = _BLOCKS.get(self.block_key)
            if blocked_until is None:
                return 0
            return max(0, int(blocked_until - self._clock()))

    def track(self) -> bool:
        """Count one attempt. Returns False when the caller is (now) blocked."""
        if self.is_blocked():
            return False
        with _LOCK:
            now = self._clock()
            count = self._current(now)
            expires_at = _COUNTERS.get(self.counter_key, (0, now + self.rule.period_seconds))[1]
            count += 1
            _COUNTERS[self.counter_key] = (count, expires_at)
            hit_limit = count >= self.rule.limit
            if hit_limit:
                _BLOCKS[self.block_key] = now + self.rule.block_seconds
        if hit_limit:
            self._record_block()
            return False
        return True

    def reset(self) -> None:
        with _LOCK:
            _COUNTERS.pop(self.counter_key, None)
            _BLOCKS.pop(self.block_key, None)

    def _record_block(self) -> None:
        logger.warning(
            "Rate limit exceeded",
            extra={"key_type": self.key_type, "identifier": self.identifier},
        )
        if self._db is None:
            return
        audit_services.log_event(
            self._db,
            store_id=None,
            actor_type=None,
            actor_id=None,
            auditable_type=None,
            auditable_id=None,
            action="security_event",
            message=f"Rate limit exceeded: {self.key_type}",
            details={
                "event_type": "rate_limit_exceeded",
                "key_type": self.key_type,
                "identifier": self.identifier,
                "limit": self.rule.limit,
                "period_seconds": self.rule.period_seconds,
                "block_seconds": self.rule.block_seconds,
                "severity": "warning",
            },
        )
