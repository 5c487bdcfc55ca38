"""Configuration helpers for the shop service.

Every tunable lives on :class:`ShopConfig` so the Flask app, the services and
the tests read the same values. ``load_shop_config`` primes the environment
from ``<base_dir>/.env`` and then lets an explicit mapping win, which keeps
tests independent of the developer's shell.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Mapping
import os

from dotenv import load_dotenv

DEFAULT_ORIGINS = (
    "https://localhost",
    "https://127.0.0.1",
    "http://localhost",
    "http://127.0.0.1",
)


@dataclass(frozen=True)
class ShopConfig:
    """Strongly typed configuration for the shop service."""

    base_dir: Path
    data_dir: Path
    secret_key: str
    field_secret_key: str
    admin_email: str
    session_max_days: int
    allowed_origins: tuple[str, ...]
    force_tls: bool
    use_firestore: str
    max_login_attempts: int
    lockout_minutes: int
    currency_symbol: str
    log_level: str
    store_backups: int

    @property
    def session_cookie_name(self) -> str:
        return "shop_session"

    @property
    def session_max_age(self) -> int:
        return self.session_max_days * 24 * 60 * 60


def _coerce_origins(raw: str | Iterable[str]) -> tuple[str, ...]:
    if isinstance(raw, str):
        items = [piece.strip() for piece in raw.split(",")]
    else:
        items = [piece.strip() for piece in raw]
    return tuple(filter(None, items)) or DEFAULT_ORIGINS


def _coerce_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _coerce_firestore_mode(value: str | None) -> str:
    mode = (value or "auto").strip().lower()
    if mode in {"1", "true", "yes", "on"}:
        return "on"
    if mode in {"0", "false", "no", "off"}:
        return "off"
    return "auto"


def load_shop_config(base_dir: Path, env: Mapping[str, str] | None = None) -> ShopConfig:
    """Load shop configuration from the given base directory and env mapping."""

    base_dir = Path(base_dir)
    load_dotenv(base_dir / ".env")
    env_map = dict(env if env is not None else os.environ)

    secret_key = env_map.get("SECRET_KEY", "dev-change-me")
    data_dir = env_map.get("DATA_DIR", "").strip()

    return ShopConfig(
        base_dir=base_dir,
        data_dir=Path(data_dir) if data_dir else base_dir / "data",
        secret_key=secret_key,
        field_secret_key=env_map.get("FIELD_SECRET_KEY", "").strip() or secret_key,
        admin_email=env_map.get("ADMIN_EMAIL", "").strip().lower(),
        session_max_days=int(env_map.get("SESSION_MAX_DAYS", "5")),
        allowed_origins=_coerce_origins(env_map.get("ALLOWED_ORIGINS", "")),
        force_tls=_coerce_bool(env_map.get("FORCE_TLS"), False),
        use_firestore=_coerce_firestore_mode(env_map.get("USE_FIRESTORE")),
        max_login_attempts=int(env_map.get("MAX_LOGIN_ATTEMPTS", "3")),
        lockout_minutes=int(env_map.get("LOCKOUT_MINUTES", "15")),
        currency_symbol=env_map.get("CURRENCY_SYMBOL", "฿"),
        log_level=env_map.get("LOG_LEVEL", "INFO").strip().upper() or "INFO",
        store_backups=max(0, int(env_map.get("STORE_BACKUPS", "2"))),
    )
