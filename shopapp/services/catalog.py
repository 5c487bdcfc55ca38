"""Product catalog operations on the ``products`` collection."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, Iterable, Optional
import logging

from shopcore.storage import DocumentNotFound, to_iso, utc_now

from ..errors import NotFoundError
from .sync import StockSync

logger = logging.getLogger(__name__)


def newest_first(items: list[dict], key: str = "created_at") -> list[dict]:
    return sorted(items, key=lambda item: item.get(key) or "", reverse=True)


@dataclass(slots=True)
class ProductCatalog:
    """High-level operations for the product collection."""

    store: object
    sync: StockSync
    clock: Callable[[], datetime] = utc_now
    _products: object = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self._products = self.store.collection("products")

    def _now(self) -> str:
        return to_iso(self.clock())

    # ------------------------------------------------------------------
    # Basic CRUD operations
    # ------------------------------------------------------------------
    def all(self) -> list[dict]:
        return newest_first(self._products.all())

    def active(self) -> list[dict]:
        return newest_first(self._products.where(is_active=True))

    def get(self, product_id: str) -> Optional[dict]:
        return self._products.get(product_id)

    def require(self, product_id: str) -> dict:
        product = self.get(product_id)
        if not product:
            raise NotFoundError("Product not found")
        return product

    def create(self, payload: Dict) -> dict:
        now = self._now()
        record = dict(payload)
        record.setdefault("description", "")
        record.setdefault("category", "")
        record.setdefault("stock", 0)
        record["is_active"] = record.get("is_active", True) is not False
        record["created_at"] = now
        record["updated_at"] = now
        product_id = self._products.add(record)
        product = self.require(product_id)

        if product.get("stock", 0) > 0:
            self._sync_inventory(product)
        return product

    def update(self, product_id: str, updates: Dict) -> dict:
        cleaned = {k: v for k, v in updates.items() if v is not None}
        cleaned["updated_at"] = self._now()
        try:
            self._products.update(product_id, cleaned)
        except DocumentNotFound as exc:
            raise NotFoundError("Product not found") from exc
        product = self.require(product_id)
        self._sync_inventory(product)
        return product

    def update_stock(self, product_id: str, stock: int) -> dict:
        try:
            self.sync.update_product_stock_only(product_id, stock)
        except DocumentNotFound as exc:
            raise NotFoundError("Product not found") from exc
        return self.require(product_id)

    def delete(self, product_id: str) -> None:
        self.require(product_id)
        try:
            self.sync.delete_inventory_for_product(product_id)
        except Exception as exc:
            logger.warning("Could not delete inventory for product %s: %s", product_id, exc)
        self._products.delete(product_id)

    def _sync_inventory(self, product: dict) -> None:
        try:
            self.sync.sync_inventory_from_product(
                product["id"],
                product.get("name", ""),
                product.get("category", ""),
                int(product.get("stock", 0) or 0),
            )
        except Exception as exc:
            logger.warning("Could not sync inventory for product %s: %s", product["id"], exc)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    def search(self, term: str) -> list[dict]:
        needle = (term or "").strip().lower()
        if not needle:
            return self.all()
        return [
            product
            for product in self.all()
            if needle in (product.get("name") or "").lower()
            or needle in (product.get("category") or "").lower()
            or needle in (product.get("description") or "").lower()
        ]

    def by_category(self, category: str) -> list[dict]:
        return newest_first(self._products.where(category=category, is_active=True))

    # ------------------------------------------------------------------
    # Order stock adjustments
    # ------------------------------------------------------------------
    def reduce_stock_for_order(self, items: Iterable[dict]) -> None:
        for item in items:
            product = self.get(item["product_id"])
            if not product:
                logger.warning("Product not found for ID %s", item["product_id"])
                continue
            current = int(product.get("stock", 0) or 0)
            new_stock = max(0, current - int(item["quantity"]))
            logger.info("Reducing %s: %s - %s = %s", product.get("name"), current, item["quantity"], new_stock)
            self.sync.update_product_stock_only(product["id"], new_stock)

    def restore_stock_for_order(self, items: Iterable[dict]) -> None:
        for item in items:
            product = self.get(item["product_id"])
            if not product:
                logger.warning("Product not found for ID %s", item["product_id"])
                continue
            current = int(product.get("stock", 0) or 0)
            new_stock = current + int(item["quantity"])
            logger.info("Restoring %s: %s + %s = %s", product.get("name"), current, item["quantity"], new_stock)
            self.sync.update_product_stock_only(product["id"], new_stock)
