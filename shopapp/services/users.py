"""User documents, roles and password accounts.

Profiles live on ``users`` keyed by uid. Password hashes are kept apart on
``credentials`` so listing users never reads them.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, Optional
from uuid import uuid4
import logging

from werkzeug.security import check_password_hash, generate_password_hash

from shopcore.storage import to_iso, utc_now

from ..errors import (
    AccountLocked,
    DuplicateEmail,
    InvalidCredentials,
    NotFoundError,
    PermissionDenied,
    ServiceError,
)
from .catalog import newest_first
from .login_attempts import LoginAttemptService, normalise_email

logger = logging.getLogger(__name__)

ROLES = ("admin", "customer")


@dataclass(slots=True)
class UserService:
    store: object
    logins: LoginAttemptService
    clock: Callable[[], datetime] = utc_now
    admin_email: str = ""
    _users: object = field(init=False, repr=False)
    _credentials: object = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self._users = self.store.collection("users")
        self._credentials = self.store.collection("credentials")

    def _now(self) -> str:
        return to_iso(self.clock())

    # ------------------------------------------------------------------
    # Profiles
    # ------------------------------------------------------------------
    def create(self, uid: str, name: str, email: str, role: str = "customer", is_active: bool = True) -> dict:
        if role not in ROLES:
            raise ServiceError(f"Unknown role: {role}")
        now = self._now()
        self._users.set(
            uid,
            {
                "uid": uid,
                "name": name,
                "email": normalise_email(email),
                "role": role,
                "is_active": is_active,
                "created_at": now,
                "updated_at": now,
                "last_login": None,
            },
        )
        logger.info("User %s created with role %s", uid, role)
        return self.get(uid)

    def get(self, uid: str) -> Optional[dict]:
        return self._users.get(uid)

    def require(self, uid: str) -> dict:
        user = self.get(uid)
        if not user:
            raise NotFoundError("User not found")
        return user

    def update(self, uid: str, updates: Dict) -> dict:
        self.require(uid)
        cleaned = {k: v for k, v in updates.items() if v is not None and k not in ("uid", "created_at")}
        if "email" in cleaned:
            cleaned["email"] = normalise_email(cleaned["email"])
        cleaned["updated_at"] = self._now()
        self._users.update(uid, cleaned)
        return self.require(uid)

    def update_last_login(self, uid: str) -> None:
        now = self._now()
        self._users.update(uid, {"last_login": now, "updated_at": now})

    def all(self) -> list[dict]:
        return newest_first(self._users.all())

    def by_role(self, role: str) -> list[dict]:
        return newest_first(self._users.where(role=role))

    def email_exists(self, email: str) -> bool:
        target = normalise_email(email)
        return any(normalise_email(user.get("email")) == target for user in self._users.all())

    def is_admin(self, uid: str) -> bool:
        return self.role_of(uid) == "admin"

    def role_of(self, uid: str) -> Optional[str]:
        try:
            user = self.get(uid)
        except Exception as exc:
            logger.warning("Could not look up role for %s: %s", uid, exc)
            return None
        return user.get("role") if user else None

    def _require_admin(self, admin_uid: str) -> None:
        if not self.is_admin(admin_uid):
            raise PermissionDenied("Only admins can manage users")

    def update_role(self, uid: str, role: str, admin_uid: str) -> dict:
        self._require_admin(admin_uid)
        if role not in ROLES:
            raise ServiceError(f"Unknown role: {role}")
        if uid == admin_uid and role != "admin":
            raise PermissionDenied("Admins cannot remove their own admin role")
        self.require(uid)
        self._users.update(uid, {"role": role, "updated_at": self._now()})
        logger.info("User %s role set to %s by %s", uid, role, admin_uid)
        return self.require(uid)

    def delete(self, uid: str, admin_uid: str) -> None:
        self._require_admin(admin_uid)
        if uid == admin_uid:
            raise PermissionDenied("Admins cannot delete their own account")
        self.require(uid)
        self._users.delete(uid)
        self._credentials.delete(uid)
        logger.info("User %s deleted by %s", uid, admin_uid)

    # ------------------------------------------------------------------
    # Password accounts
    # ------------------------------------------------------------------
    def _credentials_for(self, email: str) -> Optional[dict]:
        rows = self._credentials.where(email=normalise_email(email))
        return rows[0] if rows else None

    def register(self, email: str, password: str, name: str = "") -> dict:
        email = normalise_email(email)
        if self._credentials_for(email) or self.email_exists(email):
            raise DuplicateEmail("Email already exists")
        uid = str(uuid4())
        now = self._now()
        self._credentials.set(
            uid,
            {
                "email": email,
                "password_hash": generate_password_hash(password),
                "created_at": now,
                "updated_at": now,
            },
        )
        role = "admin" if self.admin_email and email == normalise_email(self.admin_email) else "customer"
        return self.create(uid, name, email, role=role)

    def authenticate(self, email: str, password: str) -> dict:
        email = normalise_email(email)
        lock = self.logins.status(email)
        if lock.is_locked:
            raise AccountLocked(lock.remaining_minutes)

        record = self._credentials_for(email)
        if not record or not check_password_hash(record.get("password_hash", ""), password):
            lock = self.logins.record_failure(email)
            if lock.is_locked:
                raise AccountLocked(lock.remaining_minutes)
            raise InvalidCredentials(remaining_attempts=max(0, self.logins.max_attempts - lock.attempts))

        self.logins.reset(email)
        user = self.get(record["id"])
        if not user or not user.get("is_active", True):
            raise PermissionDenied("This account has been disabled")
        self.update_last_login(user["id"])
        return self.require(user["id"])
