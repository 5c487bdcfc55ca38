"""Failed sign-in tracking with a temporary lockout."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Optional
import logging
import math

from shopcore.storage import parse_iso, to_iso, utc_now

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 3
LOCKOUT_MINUTES = 15


def normalise_email(value: str | None) -> str:
    return (value or "").strip().lower()


@dataclass(frozen=True, slots=True)
class LockStatus:
    is_locked: bool
    remaining_minutes: int = 0
    attempts: int = 0


@dataclass(slots=True)
class LoginAttemptService:
    store: object
    clock: Callable[[], datetime] = utc_now
    max_attempts: int = MAX_ATTEMPTS
    lockout_minutes: int = LOCKOUT_MINUTES
    _attempts: object = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self._attempts = self.store.collection("login_attempts")

    def get(self, email: str) -> Optional[dict]:
        """Return the attempt record, clearing it once its lockout has passed."""

        key = normalise_email(email)
        record = self._attempts.get(key)
        if not record:
            return None
        locked_until = parse_iso(record.get("locked_until"))
        if locked_until and locked_until <= self.clock():
            self.reset(key)
            return None
        return record

    def record_failure(self, email: str) -> LockStatus:
        key = normalise_email(email)
        now = self.clock()
        record = self.get(key) or {"email": key, "attempts": 0}
        attempts = int(record.get("attempts", 0)) + 1
        data = {"email": key, "attempts": attempts, "last_attempt": to_iso(now), "locked_until": None}
        if attempts >= self.max_attempts:
            data["locked_until"] = to_iso(now + timedelta(minutes=self.lockout_minutes))
            logger.warning("Locking sign-in for %s after %s failed attempts", key, attempts)
        self._attempts.set(key, data)
        return self.status(key)

    def reset(self, email: str) -> None:
        self._attempts.delete(normalise_email(email))

    def status(self, email: str) -> LockStatus:
        record = self.get(email)
        if not record:
            return LockStatus(is_locked=False)
        attempts = int(record.get("attempts", 0))
        locked_until = parse_iso(record.get("locked_until"))
        if not locked_until:
            return LockStatus(is_locked=False, attempts=attempts)
        remaining = (locked_until - self.clock()).total_seconds() / 60
        return LockStatus(is_locked=True, remaining_minutes=max(1, math.ceil(remaining)), attempts=attempts)
