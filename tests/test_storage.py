import json
from unittest import mock

import pytest
from google.api_core.exceptions import NotFound

from shopcore.config import load_shop_config
from shopcore.storage import (
    DocumentNotFound,
    FieldCipher,
    FirestoreCollection,
    JsonStore,
    LocalDocumentStore,
    StoreError,
    open_document_store,
    parse_iso,
)


def test_json_store_rotates_backups_and_recovers(tmp_path):
    target = tmp_path / "orders.json"
    store = JsonStore(target, backups=2)

    store.put("a", {"total": 1})
    store.put("b", {"total": 2})
    assert (tmp_path / "orders.json.bak1").exists()

    # Corrupt the primary file to trigger fallback recovery.
    target.write_text("not-json", encoding="utf-8")
    assert store.load() == {"a": {"total": 1}}


def test_local_collection_crud_and_filters(tmp_path):
    products = LocalDocumentStore(tmp_path).collection("products")

    rice = products.add({"name": "Rice", "category": "Groceries", "is_active": True, "id": "ignored"})
    products.add({"name": "Tea", "category": "Drinks", "is_active": True})
    products.set("fixed-id", {"name": "Soap", "category": "Household", "is_active": False})

    assert products.get(rice)["id"] == rice
    assert "ignored" not in json.dumps(json.loads((tmp_path / "products.json").read_text(encoding="utf-8")))
    assert [p["name"] for p in products.where(is_active=True, category="Drinks")] == ["Tea"]
    assert products.get("fixed-id")["name"] == "Soap"
    assert len(products.all()) == 3

    products.delete("fixed-id")
    assert products.get("fixed-id") is None
    products.delete("fixed-id")


def test_local_update_supports_nested_paths(tmp_path):
    orders = LocalDocumentStore(tmp_path).collection("orders")
    order_id = orders.add({"payment_details": {"method": "cash", "notes": ""}})

    orders.update(order_id, {"payment_details.method": "transfer", "payment_details.paid_at": "now"})

    assert orders.get(order_id)["payment_details"] == {"method": "transfer", "notes": "", "paid_at": "now"}
    with pytest.raises(DocumentNotFound):
        orders.update("missing", {"status": "shipped"})


def test_firestore_collection_forwards_calls():
    ref = mock.MagicMock()
    snapshot = mock.MagicMock(id="doc-1", exists=True)
    snapshot.to_dict.return_value = {"name": "Rice"}
    ref.document.return_value.get.return_value = snapshot
    ref.add.return_value = (None, mock.MagicMock(id="new-id"))
    ref.where.return_value.stream.return_value = [snapshot]

    products = FirestoreCollection("products", ref)

    assert products.add({"name": "Rice", "id": "dropped"}) == "new-id"
    ref.add.assert_called_once_with({"name": "Rice"})
    assert products.get("doc-1") == {"name": "Rice", "id": "doc-1"}
    assert products.where(category="Groceries") == [{"name": "Rice", "id": "doc-1"}]

    ref.document.return_value.update.side_effect = NotFound("gone")
    with pytest.raises(DocumentNotFound):
        products.update("doc-1", {"stock": 1})


def test_field_cipher_round_trip_and_plaintext_passthrough():
    cipher = FieldCipher("secret")
    token = cipher.encrypt("1234567890")

    assert token.startswith("enc:")
    assert "1234567890" not in token
    assert cipher.decrypt(token) == "1234567890"
    assert cipher.decrypt("legacy-plain") == "legacy-plain"
    assert cipher.encrypt("") == ""

    with pytest.raises(StoreError):
        FieldCipher("other-secret").decrypt(token)


def test_parse_iso_assumes_utc_for_naive_values():
    moment = parse_iso("2025-09-08T10:00:00")
    assert moment.utcoffset().total_seconds() == 0
    assert parse_iso("yesterday") is None
    assert parse_iso(None) is None


def test_open_document_store_falls_back_to_local(tmp_path):
    config = load_shop_config(tmp_path, {"USE_FIRESTORE": "auto", "DATA_DIR": str(tmp_path / "data")})
    store = open_document_store(config, env={})
    assert isinstance(store, LocalDocumentStore)


def test_open_document_store_requires_firebase_when_forced(tmp_path):
    config = load_shop_config(tmp_path, {"USE_FIRESTORE": "on"})
    with pytest.raises(StoreError):
        open_document_store(config, env={})
