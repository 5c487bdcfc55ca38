"""Common helpers shared across the shop service."""

from .config import ShopConfig, load_shop_config
from .storage import (  # noqa: F401
    DocumentNotFound,
    FieldCipher,
    FirestoreDocumentStore,
    JsonStore,
    LocalDocumentStore,
    StoreError,
    open_document_store,
    utc_now,
)

__all__ = [
    "ShopConfig",
    "load_shop_config",
    "DocumentNotFound",
    "FieldCipher",
    "FirestoreDocumentStore",
    "JsonStore",
    "LocalDocumentStore",
    "StoreError",
    "open_document_store",
    "utc_now",
]
