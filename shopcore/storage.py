"""Document storage for the shop service.

Every service talks to a *collection*: a named bag of JSON documents keyed
by id, with the handful of calls the shop needs (add/set/get/update/delete,
list and equality filters). Two implementations share that surface:

* :class:`LocalCollection` keeps each collection in a :class:`JsonStore`
  file with atomic writes and rotating backups. It is used for self-hosted
  installs without Firebase credentials and throughout the test-suite.
* :class:`FirestoreCollection` forwards to a ``firebase_admin`` Firestore
  collection reference.

Timestamps are stored as ISO-8601 UTC strings in both backends so that
documents sort and compare the same way wherever they live.
"""
from __future__ import annotations

import base64
import datetime as _dt
import hashlib
import json
import logging
import os
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional
from uuid import uuid4

from cryptography.fernet import Fernet, InvalidToken
from google.api_core.exceptions import NotFound
from google.cloud.firestore_v1.base_query import FieldFilter

from .config import ShopConfig
from .firebase import init_firestore

logger = logging.getLogger(__name__)


class StoreError(RuntimeError):
    """Raised when a persistence operation fails."""


class DocumentNotFound(StoreError):
    """Raised when updating a document that does not exist."""

    def __init__(self, collection: str, doc_id: str):
        super().__init__(f"{collection}/{doc_id} not found")
        self.collection = collection
        self.doc_id = doc_id


def utc_now() -> _dt.datetime:
    return _dt.datetime.now(_dt.timezone.utc)


def to_iso(moment: _dt.datetime) -> str:
    return moment.astimezone(_dt.timezone.utc).isoformat()


def parse_iso(value: Any) -> Optional[_dt.datetime]:
    """Parse a stored timestamp; naive values are assumed to be UTC."""

    if isinstance(value, _dt.datetime):
        moment = value
    elif isinstance(value, str) and value:
        try:
            moment = _dt.datetime.fromisoformat(value)
        except ValueError:
            return None
    else:
        return None
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=_dt.timezone.utc)
    return moment


def new_id() -> str:
    return uuid4().hex[:20]


def _apply_updates(document: Dict[str, Any], updates: Mapping[str, Any]) -> None:
    """Apply Firestore-style updates where ``a.b`` addresses a nested map."""

    for key, value in updates.items():
        parts = key.split(".")
        target = document
        for part in parts[:-1]:
            child = target.get(part)
            if not isinstance(child, dict):
                child = {}
                target[part] = child
            target = child
        target[parts[-1]] = value


def _strip_id(data: Mapping[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in data.items() if k != "id"}


class JsonStore:
    """Tiny JSON document store keyed by identifier.

    The store maintains a configurable number of backup files (``.bakN``) and
    uses atomic writes to reduce the risk of corruption. When loading, it
    falls back to the newest readable backup.
    """

    def __init__(self, path: Path | str, backups: int = 2, *, recovery_label: str | None = None):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.backups = max(0, backups)
        self._recovery_label = recovery_label or self.path.stem

    # ------------------------------------------------------------------
    # Persistence helpers
    # ------------------------------------------------------------------
    def _backup_path(self, index: int) -> Path:
        return self.path.with_suffix(self.path.suffix + f".bak{index}")

    def _candidate_paths(self) -> list[Path]:
        return [self.path] + [self._backup_path(idx) for idx in range(1, self.backups + 1)]

    def _read_json(self, path: Path) -> Dict[str, Any] | None:
        if not path.exists():
            return None
        try:
            raw = path.read_text(encoding="utf-8")
        except OSError as exc:  # pragma: no cover - propagated for visibility
            raise StoreError(str(exc)) from exc
        if not raw:
            return {}
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            return None
        return data if isinstance(data, dict) else None

    def _write_json(self, path: Path, data: Dict[str, Any]) -> None:
        payload = json.dumps(data, indent=2, ensure_ascii=False)
        tmp_path = path.with_suffix(path.suffix + ".tmp")
        try:
            with tmp_path.open("w", encoding="utf-8") as fh:
                fh.write(payload)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp_path, path)
        except OSError as exc:  # pragma: no cover - bubbled up to callers
            raise StoreError(str(exc)) from exc
        finally:
            tmp_path.unlink(missing_ok=True)

    def _rotate_backups(self) -> None:
        if self.backups <= 0:
            return
        for idx in range(self.backups, 0, -1):
            src = self.path if idx == 1 else self._backup_path(idx - 1)
            if src.exists():
                try:
                    os.replace(src, self._backup_path(idx))
                except OSError:
                    # Rotation is best effort; the new write still lands.
                    continue

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def load(self) -> Dict[str, Any]:
        for candidate in self._candidate_paths():
            data = self._read_json(candidate)
            if data is not None:
                if candidate != self.path:
                    logger.warning("Recovered %s from backup %s", self._recovery_label, candidate.name)
                return data
        return {}

    def save(self, data: Dict[str, Any]) -> None:
        self._rotate_backups()
        self._write_json(self.path, data)

    def mutate(self, mutator: Callable[[Dict[str, Any]], None]) -> Dict[str, Any]:
        snapshot = self.load()
        mutator(snapshot)
        self.save(snapshot)
        return snapshot

    def get(self, key: str, default: Any | None = None) -> Any:
        return self.load().get(key, default)

    def put(self, key: str, value: Dict[str, Any]) -> Dict[str, Any]:
        self.mutate(lambda data: data.__setitem__(key, value))
        return value

    def remove(self, key: str) -> None:
        data = self.load()
        if key in data:
            del data[key]
            self.save(data)

    def all(self) -> Dict[str, Any]:
        return self.load()


class LocalCollection:
    """Collection backed by one :class:`JsonStore` file."""

    def __init__(self, name: str, store: JsonStore):
        self.name = name
        self._store = store

    def add(self, data: Mapping[str, Any]) -> str:
        doc_id = new_id()
        self._store.put(doc_id, _strip_id(data))
        return doc_id

    def set(self, doc_id: str, data: Mapping[str, Any]) -> None:
        self._store.put(str(doc_id), _strip_id(data))

    def get(self, doc_id: str) -> Optional[Dict[str, Any]]:
        record = self._store.get(str(doc_id))
        if not isinstance(record, dict):
            return None
        return {**record, "id": str(doc_id)}

    def update(self, doc_id: str, updates: Mapping[str, Any]) -> None:
        target = str(doc_id)

        def mutator(data: Dict[str, Any]) -> None:
            record = data.get(target)
            if not isinstance(record, dict):
                raise DocumentNotFound(self.name, target)
            _apply_updates(record, _strip_id(updates))

        self._store.mutate(mutator)

    def delete(self, doc_id: str) -> None:
        self._store.remove(str(doc_id))

    def all(self) -> List[Dict[str, Any]]:
        return [
            {**record, "id": doc_id}
            for doc_id, record in self._store.all().items()
            if isinstance(record, dict)
        ]

    def where(self, **equals: Any) -> List[Dict[str, Any]]:
        return [
            doc
            for doc in self.all()
            if all(doc.get(field) == value for field, value in equals.items())
        ]


class FirestoreCollection:
    """Collection backed by a Firestore collection reference."""

    def __init__(self, name: str, ref):
        self.name = name
        self._ref = ref

    @staticmethod
    def _to_dict(snapshot) -> Dict[str, Any]:
        return {**(snapshot.to_dict() or {}), "id": snapshot.id}

    def add(self, data: Mapping[str, Any]) -> str:
        _, doc_ref = self._ref.add(_strip_id(data))
        return doc_ref.id

    def set(self, doc_id: str, data: Mapping[str, Any]) -> None:
        self._ref.document(str(doc_id)).set(_strip_id(data))

    def get(self, doc_id: str) -> Optional[Dict[str, Any]]:
        snapshot = self._ref.document(str(doc_id)).get()
        if not snapshot.exists:
            return None
        return self._to_dict(snapshot)

    def update(self, doc_id: str, updates: Mapping[str, Any]) -> None:
        try:
            self._ref.document(str(doc_id)).update(_strip_id(updates))
        except NotFound as exc:
            raise DocumentNotFound(self.name, str(doc_id)) from exc

    def delete(self, doc_id: str) -> None:
        self._ref.document(str(doc_id)).delete()

    def all(self) -> List[Dict[str, Any]]:
        return [self._to_dict(snapshot) for snapshot in self._ref.stream()]

    def where(self, **equals: Any) -> List[Dict[str, Any]]:
        query = self._ref
        for field, value in equals.items():
            query = query.where(filter=FieldFilter(field, "==", value))
        return [self._to_dict(snapshot) for snapshot in query.stream()]


class LocalDocumentStore:
    """Directory of JSON collections, one file per collection."""

    def __init__(self, data_dir: Path | str, backups: int = 2):
        self.data_dir = Path(data_dir)
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.backups = backups
        self._collections: Dict[str, LocalCollection] = {}

    def collection(self, name: str) -> LocalCollection:
        if name not in self._collections:
            store = JsonStore(self.data_dir / f"{name}.json", backups=self.backups, recovery_label=name)
            self._collections[name] = LocalCollection(name, store)
        return self._collections[name]


class FirestoreDocumentStore:
    def __init__(self, client):
        self._client = client

    def collection(self, name: str) -> FirestoreCollection:
        return FirestoreCollection(name, self._client.collection(name))


def open_document_store(config: ShopConfig, env: Mapping[str, str] | None = None):
    """Pick Firestore when configured and reachable, otherwise local files."""

    if config.use_firestore != "off":
        client = init_firestore(config.base_dir, env if env is not None else os.environ)
        if client is not None:
            return FirestoreDocumentStore(client)
        if config.use_firestore == "on":
            raise StoreError("USE_FIRESTORE is on but Firebase could not be initialised")
    logger.info("Using local document store at %s", config.data_dir)
    return LocalDocumentStore(config.data_dir, backups=config.store_backups)


def _derive_key(secret: str) -> bytes:
    if not secret:
        secret = "shop-dev-secret"
    digest = hashlib.sha256(secret.encode("utf-8")).digest()
    return base64.urlsafe_b64encode(digest)


class FieldCipher:
    """Encrypts individual string fields with Fernet symmetric encryption."""

    PREFIX = "enc:"

    def __init__(self, secret: str):
        self._fernet = Fernet(_derive_key(secret))

    def encrypt(self, value: str | None) -> str | None:
        if not value:
            return value
        token = self._fernet.encrypt(value.encode("utf-8")).decode("ascii")
        return f"{self.PREFIX}{token}"

    def decrypt(self, value: str | None) -> str | None:
        if not value or not value.startswith(self.PREFIX):
            # plaintext written before encryption was enabled
            return value
        try:
            return self._fernet.decrypt(value[len(self.PREFIX):].encode("ascii")).decode("utf-8")
        except InvalidToken as exc:
            raise StoreError("Unable to decrypt stored field") from exc
