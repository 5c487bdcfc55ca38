"""Firebase helpers used by the shop service."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Mapping, Optional
import json
import logging

import firebase_admin
from firebase_admin import credentials, firestore

logger = logging.getLogger(__name__)

CREDENTIAL_FILES = ("firebase-auth.json", "clientSecret.json")
ENV_KEYS = ("FIREBASE_PROJECT_ID", "FIREBASE_PRIVATE_KEY", "FIREBASE_CLIENT_EMAIL")


def _account_from_file(path: Path) -> Optional[dict[str, Any]]:
    try:
        account = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        return None
    except json.JSONDecodeError:
        logger.warning("Skipping unreadable service account file %s", path.name)
        return None
    return account if account.get("type") == "service_account" else None


def _account_from_env(env: Mapping[str, str]) -> Optional[dict[str, Any]]:
    project_id, private_key, client_email = ((env.get(key) or "").strip() for key in ENV_KEYS)
    if not (project_id and private_key and client_email):
        return None
    return {
        "type": "service_account",
        "project_id": project_id,
        # .env files store the PEM on one line with escaped newlines
        "private_key": private_key.replace("\\n", "\n"),
        "client_email": client_email,
        "token_uri": "https://oauth2.googleapis.com/token",
    }


def load_service_account(base_dir: Path, env: Mapping[str, str] | None = None) -> Optional[dict[str, Any]]:
    """Find shop service account credentials.

    Files in ``base_dir`` win over ``FIREBASE_*`` variables; malformed files
    are skipped rather than treated as fatal.
    """

    for name in CREDENTIAL_FILES:
        account = _account_from_file(Path(base_dir) / name)
        if account:
            return account
    return _account_from_env(env or {})


def init_firestore(base_dir: Path, env: Mapping[str, str] | None = None):
    """Return a Firestore client, or ``None`` when Firebase is unavailable.

    ``firebase_admin`` keeps a process-wide default app, so repeated calls
    reuse it instead of initialising a second one.
    """

    account = load_service_account(base_dir, env)
    if account is None:
        logger.warning("Firebase credentials not found; Firestore disabled")
        return None
    try:
        try:
            app = firebase_admin.get_app()
        except ValueError:
            app = firebase_admin.initialize_app(credentials.Certificate(account))
        client = firestore.client(app)
    except Exception as exc:  # firebase_admin raises a mix of ValueError/GoogleAuthError
        logger.warning("Firestore disabled: %s", exc)
        return None
    logger.info("Firestore client initialised for project %s", account.get("project_id"))
    return client
