"""Inventory rows on the ``inventory`` collection."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, Iterable, Optional
import logging

from shopcore.storage import DocumentNotFound, to_iso, utc_now

from ..errors import NotFoundError
from .catalog import newest_first
from .sync import StockSync

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class InventoryService:
    store: object
    sync: StockSync
    clock: Callable[[], datetime] = utc_now
    _inventory: object = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self._inventory = self.store.collection("inventory")

    def _now(self) -> str:
        return to_iso(self.clock())

    def _mirror_to_product(self, product_id: str, quantity: int) -> None:
        try:
            self.sync.update_product_stock_only(product_id, quantity)
        except Exception as exc:
            logger.warning("Could not sync stock for product %s: %s", product_id, exc)

    def all(self) -> list[dict]:
        return newest_first(self._inventory.all(), key="updated_at")

    def get(self, item_id: str) -> Optional[dict]:
        return self._inventory.get(item_id)

    def require(self, item_id: str) -> dict:
        item = self.get(item_id)
        if not item:
            raise NotFoundError("Inventory item not found")
        return item

    def by_product_id(self, product_id: str) -> Optional[dict]:
        rows = self._inventory.where(product_id=product_id)
        return rows[0] if rows else None

    def create(self, payload: Dict) -> dict:
        now = self._now()
        record = {
            **payload,
            "last_restocked": now,
            "created_at": now,
            "updated_at": now,
        }
        item_id = self._inventory.add(record)
        self._mirror_to_product(payload["product_id"], int(payload.get("quantity", 0)))
        return self.require(item_id)

    def update(self, item_id: str, updates: Dict) -> dict:
        cleaned = {k: v for k, v in updates.items() if v is not None}
        cleaned["updated_at"] = self._now()
        try:
            self._inventory.update(item_id, cleaned)
        except DocumentNotFound as exc:
            raise NotFoundError("Inventory item not found") from exc
        item = self.require(item_id)
        if "quantity" in cleaned:
            self._mirror_to_product(item["product_id"], int(cleaned["quantity"]))
        return item

    def update_quantity(self, item_id: str, quantity: int) -> dict:
        current = self.require(item_id)
        self.sync.update_inventory_quantity_only(item_id, quantity)
        self._mirror_to_product(current["product_id"], quantity)
        return self.require(item_id)

    def delete(self, item_id: str) -> None:
        current = self.get(item_id)
        self._inventory.delete(item_id)
        if current:
            self._mirror_to_product(current["product_id"], 0)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    def low_stock(self, threshold: int | None = None) -> list[dict]:
        return [
            item
            for item in self.all()
            if item.get("quantity", 0) <= (threshold if threshold is not None else item.get("min_stock", 0))
        ]

    def out_of_stock(self) -> list[dict]:
        return [item for item in self.all() if item.get("quantity", 0) == 0]

    def search(self, term: str) -> list[dict]:
        needle = (term or "").strip().lower()
        return [
            item
            for item in self.all()
            if needle in (item.get("product_name") or "").lower()
            or needle in (item.get("product_category") or "").lower()
        ]

    def stats(self) -> dict:
        inventory = self.all()
        categories = sorted({item.get("product_category") or "" for item in inventory})
        return {
            "total_items": len(inventory),
            "total_quantity": sum(item.get("quantity", 0) for item in inventory),
            "low_stock_count": len(self.low_stock()),
            "out_of_stock_count": len(self.out_of_stock()),
            "categories_count": len(categories),
            "categories": categories,
        }

    # ------------------------------------------------------------------
    # Order stock adjustments
    # ------------------------------------------------------------------
    def reduce_for_order(self, items: Iterable[dict]) -> list[dict]:
        """Subtract ordered quantities; returns items without an inventory row."""

        untracked: list[dict] = []
        for item in items:
            row = self.by_product_id(item["product_id"])
            if not row:
                logger.warning("No inventory found for product ID %s", item["product_id"])
                untracked.append(item)
                continue
            new_quantity = max(0, row.get("quantity", 0) - int(item["quantity"]))
            logger.info(
                "Reducing %s: %s - %s = %s",
                row.get("product_name"), row.get("quantity", 0), item["quantity"], new_quantity,
            )
            self.update_quantity(row["id"], new_quantity)
        return untracked

    def restore_for_order(self, items: Iterable[dict]) -> list[dict]:
        """Add ordered quantities back; returns items without an inventory row."""

        untracked: list[dict] = []
        for item in items:
            row = self.by_product_id(item["product_id"])
            if not row:
                logger.warning("No inventory found for product ID %s", item["product_id"])
                untracked.append(item)
                continue
            new_quantity = row.get("quantity", 0) + int(item["quantity"])
            logger.info(
                "Restoring %s: %s + %s = %s",
                row.get("product_name"), row.get("quantity", 0), item["quantity"], new_quantity,
            )
            self.update_quantity(row["id"], new_quantity)
        return untracked
