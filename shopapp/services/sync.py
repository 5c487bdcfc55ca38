"""Keeps ``products.stock`` and ``inventory.quantity`` in step.

Both collections carry the stock figure. Writes go to one side and then
mirror to the other with plain sequential updates; there is no transaction
spanning the two, so callers treat a failed mirror as a warning.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable
import logging

from shopcore.storage import to_iso, utc_now

logger = logging.getLogger(__name__)

DEFAULT_MIN_STOCK = 10
DEFAULT_MAX_STOCK = 1000


@dataclass(slots=True)
class StockSync:
    store: object
    clock: Callable[[], datetime] = utc_now
    _products: object = field(init=False, repr=False)
    _inventory: object = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self._products = self.store.collection("products")
        self._inventory = self.store.collection("inventory")

    def _now(self) -> str:
        return to_iso(self.clock())

    def update_product_stock_only(self, product_id: str, stock: int) -> None:
        self._products.update(product_id, {"stock": int(stock), "updated_at": self._now()})

    def update_inventory_quantity_only(self, inventory_id: str, quantity: int) -> None:
        now = self._now()
        updates = {"quantity": int(quantity), "updated_at": now}
        if quantity > 0:
            updates["last_restocked"] = now
        self._inventory.update(inventory_id, updates)

    def sync_inventory_from_product(
        self,
        product_id: str,
        product_name: str,
        product_category: str,
        stock: int,
    ) -> None:
        """Mirror a product's stock into its inventory row, creating one if needed."""

        now = self._now()
        existing = self._inventory.where(product_id=product_id)
        if existing:
            self._inventory.update(
                existing[0]["id"],
                {
                    "product_name": product_name,
                    "product_category": product_category,
                    "quantity": int(stock),
                    "updated_at": now,
                },
            )
        elif stock > 0:
            self._inventory.add(
                {
                    "product_id": product_id,
                    "product_name": product_name,
                    "product_category": product_category,
                    "quantity": int(stock),
                    "min_stock": DEFAULT_MIN_STOCK,
                    "max_stock": DEFAULT_MAX_STOCK,
                    "last_restocked": now,
                    "created_at": now,
                    "updated_at": now,
                }
            )
            logger.info("Created inventory row for product %s", product_id)

    def delete_inventory_for_product(self, product_id: str) -> int:
        rows = self._inventory.where(product_id=product_id)
        for row in rows:
            self._inventory.delete(row["id"])
        return len(rows)
