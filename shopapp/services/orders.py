"""Order placement and the order lifecycle.

Orders move forward along ``pending → confirmed → processing → shipped →
delivered``; ``cancelled`` can be reached from any state that is not yet
terminal and is itself terminal. Stock is taken when an order is placed and
handed back at most once, either on cancellation or when an unpaid order is
deleted. ``stock_restored`` on the order records that the hand-back happened.

Stock and notification writes after the order document is saved are
sequential and best effort: a failure is logged and the order stands.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, Optional
import json
import logging

from shopcore.storage import DocumentNotFound, to_iso, utc_now

from ..errors import InsufficientStock, InvalidTransition, NotFoundError, OrderTooLarge
from .catalog import ProductCatalog, newest_first
from .inventory import InventoryService
from .notifications import NotificationService

logger = logging.getLogger(__name__)

ORDER_FLOW = ("pending", "confirmed", "processing", "shipped", "delivered")
ORDER_STATUSES = ORDER_FLOW + ("cancelled",)
TERMINAL_STATUSES = frozenset({"delivered", "cancelled"})
PAYMENT_STATUSES = ("unpaid", "paid", "refunded", "failed")

# Firestore caps documents at 1 MiB; keep a margin for field overhead.
MAX_ORDER_BYTES = 900_000

EDITABLE_FIELDS = ("shipping_address", "notes", "payment_method")


def can_transition(current: str, new: str) -> bool:
    """Return whether an order may move from ``current`` to ``new``."""

    if new not in ORDER_STATUSES:
        return False
    if current == new:
        return True
    if current in TERMINAL_STATUSES:
        return False
    if new == "cancelled":
        return True
    if current not in ORDER_FLOW:
        return False
    return ORDER_FLOW.index(new) > ORDER_FLOW.index(current)


@dataclass(slots=True)
class OrderService:
    store: object
    catalog: ProductCatalog
    inventory: InventoryService
    notifications: NotificationService
    clock: Callable[[], datetime] = utc_now
    _orders: object = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self._orders = self.store.collection("orders")

    def _now(self) -> str:
        return to_iso(self.clock())

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    def get(self, order_id: str) -> Optional[dict]:
        return self._orders.get(order_id)

    def require(self, order_id: str) -> dict:
        order = self.get(order_id)
        if not order:
            raise NotFoundError("Order not found")
        return order

    def all(self, status: str | None = None) -> list[dict]:
        orders = self._orders.where(status=status) if status else self._orders.all()
        return newest_first(orders)

    def for_user(self, user_id: str) -> list[dict]:
        return newest_first(self._orders.where(user_id=user_id))

    def stats(self) -> dict:
        orders = self._orders.all()
        delivered = [order for order in orders if order.get("status") == "delivered"]
        return {
            "total_orders": len(orders),
            "pending_orders": sum(1 for order in orders if order.get("status") == "pending"),
            "completed_orders": len(delivered),
            "total_revenue": sum(order.get("total_amount", 0) for order in delivered),
        }

    # ------------------------------------------------------------------
    # Placement
    # ------------------------------------------------------------------
    def _build_items(self, requested: list[dict]) -> list[dict]:
        wanted: Dict[str, int] = {}
        for line in requested:
            wanted[line["product_id"]] = wanted.get(line["product_id"], 0) + int(line["quantity"])

        items: list[dict] = []
        for product_id, quantity in wanted.items():
            product = self.catalog.get(product_id)
            if not product or not product.get("is_active", True):
                raise NotFoundError(f"Product {product_id} is not available")
            stock = int(product.get("stock", 0) or 0)
            if quantity > stock:
                raise InsufficientStock(
                    f"Only {stock} of {product.get('name', product_id)} left in stock"
                )
            items.append(
                {
                    "product_id": product_id,
                    "product_name": product.get("name", ""),
                    "category": product.get("category", ""),
                    "quantity": quantity,
                    "price": float(product.get("price", 0) or 0),
                    "image_url": product.get("image_url") or "",
                }
            )
        return items

    def create(self, payload: Dict) -> dict:
        items = self._build_items(payload["items"])
        now = self._now()
        payment_method = payload.get("payment_method") or "transfer"
        record = {
            "user_id": payload["user_id"],
            "user_name": payload.get("user_name", ""),
            "user_email": payload.get("user_email", ""),
            "items": items,
            "total_amount": round(sum(item["price"] * item["quantity"] for item in items), 2),
            "status": "pending",
            "payment_status": "unpaid",
            "payment_method": payment_method,
            "payment_details": {
                "method": payment_method,
                "transaction_id": "",
                "bank_account": "",
                "slip_image_url": "",
                "notes": "",
            },
            "shipping_address": dict(payload.get("shipping_address") or {}),
            "notes": payload.get("notes", ""),
            "stock_restored": False,
            "created_at": now,
            "updated_at": now,
        }

        estimated_size = len(json.dumps(record, ensure_ascii=False).encode("utf-8"))
        logger.debug("Estimated order size: %s bytes", estimated_size)
        if estimated_size > MAX_ORDER_BYTES:
            raise OrderTooLarge("Order data is too large; reduce the number of items or image sizes")

        order_id = self._orders.add(record)
        logger.info("Order %s created for user %s", order_id, record["user_id"])

        try:
            self._take_stock(items)
        except Exception as exc:
            logger.error(
                "Order %s created but stock reduction failed; manual adjustment may be needed: %s",
                order_id, exc,
            )

        try:
            self.notifications.notify_new_order(order_id, record["user_name"] or record["user_email"], record["total_amount"])
            self._warn_low_stock(items)
        except Exception as exc:
            logger.warning("Could not send notifications for order %s: %s", order_id, exc)

        return self.require(order_id)

    def _take_stock(self, items: list[dict]) -> None:
        untracked = self.inventory.reduce_for_order(items)
        if untracked:
            self.catalog.reduce_stock_for_order(untracked)

    def _return_stock(self, items: list[dict]) -> None:
        untracked = self.inventory.restore_for_order(items)
        if untracked:
            self.catalog.restore_stock_for_order(untracked)

    def _warn_low_stock(self, items: list[dict]) -> None:
        for item in items:
            row = self.inventory.by_product_id(item["product_id"])
            if row and row.get("quantity", 0) <= row.get("min_stock", 0):
                self.notifications.notify_low_inventory(
                    row.get("product_name", item["product_name"]),
                    row.get("quantity", 0),
                    row.get("min_stock", 0),
                )

    def _restore_once(self, order: dict) -> bool:
        """Hand an order's stock back unless that already happened."""

        if order.get("stock_restored"):
            return False
        # Claim the restore before touching stock so a retry cannot repeat it.
        self._orders.update(order["id"], {"stock_restored": True})
        try:
            self._return_stock(order.get("items", []))
        except Exception as exc:
            logger.error(
                "Stock restore for order %s failed; manual adjustment may be needed: %s",
                order["id"], exc,
            )
            self._orders.update(order["id"], {"stock_restored": False})
            return False
        return True

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def _notify_status(self, order: dict, new_status: str, old_status: str) -> None:
        try:
            self.notifications.notify_order_status_change(order["user_id"], order["id"], new_status, old_status)
        except Exception as exc:
            logger.warning("Could not notify customer about order %s: %s", order["id"], exc)

    def update_status(self, order_id: str, new_status: str) -> dict:
        if new_status not in ORDER_STATUSES:
            raise InvalidTransition(f"Unknown order status: {new_status}")
        order = self.require(order_id)
        old_status = order.get("status", "pending")
        if old_status == new_status:
            return order
        if not can_transition(old_status, new_status):
            raise InvalidTransition(f"Cannot move order from {old_status} to {new_status}")

        self._orders.update(order_id, {"status": new_status, "updated_at": self._now()})
        logger.info("Order %s: %s -> %s", order_id, old_status, new_status)
        if new_status == "cancelled":
            self._restore_once(order)
        self._notify_status(order, new_status, old_status)
        return self.require(order_id)

    def confirm_payment(
        self,
        order_id: str,
        confirmed_by: str,
        *,
        transaction_id: str = "",
        bank_account: str = "",
        slip_image_url: str = "",
        notes: str = "",
    ) -> dict:
        order = self.require(order_id)
        old_status = order.get("status", "pending")
        if old_status == "cancelled":
            raise InvalidTransition("Cannot confirm payment for a cancelled order")

        details = order.get("payment_details") or {}
        now = self._now()
        updates = {
            "payment_status": "paid",
            "payment_details.paid_at": now,
            "payment_details.confirmed_by": confirmed_by,
            "payment_details.transaction_id": transaction_id or details.get("transaction_id", ""),
            "payment_details.bank_account": bank_account or details.get("bank_account", ""),
            "payment_details.slip_image_url": slip_image_url or details.get("slip_image_url", ""),
            "payment_details.notes": notes or details.get("notes", ""),
            "updated_at": now,
        }
        if old_status == "pending":
            updates["status"] = "confirmed"
        self._orders.update(order_id, updates)
        logger.info("Payment confirmed for order %s by %s", order_id, confirmed_by)
        if updates.get("status") == "confirmed":
            self._notify_status(order, "confirmed", old_status)
        return self.require(order_id)

    def update_payment_status(self, order_id: str, payment_status: str, admin_id: str) -> dict:
        if payment_status not in PAYMENT_STATUSES:
            raise InvalidTransition(f"Unknown payment status: {payment_status}")
        if payment_status == "paid":
            return self.confirm_payment(order_id, admin_id)
        self.require(order_id)
        self._orders.update(order_id, {"payment_status": payment_status, "updated_at": self._now()})
        return self.require(order_id)

    def upload_payment_slip(self, order_id: str, slip_image_url: str, transaction_id: str = "") -> dict:
        order = self.require(order_id)
        if order.get("status") == "cancelled":
            raise InvalidTransition("Cannot upload a payment slip for a cancelled order")
        now = self._now()
        self._orders.update(
            order_id,
            {
                "payment_details.slip_image_url": slip_image_url,
                "payment_details.transaction_id": transaction_id,
                "payment_details.method": "transfer",
                "payment_details.uploaded_at": now,
                "updated_at": now,
            },
        )
        return self.require(order_id)

    def update(self, order_id: str, updates: Dict) -> dict:
        cleaned = {k: v for k, v in updates.items() if k in EDITABLE_FIELDS and v is not None}
        cleaned["updated_at"] = self._now()
        try:
            self._orders.update(order_id, cleaned)
        except DocumentNotFound as exc:
            raise NotFoundError("Order not found") from exc
        return self.require(order_id)

    def delete(self, order_id: str) -> bool:
        """Delete an order; returns whether stock was handed back."""

        order = self.require(order_id)
        restored = False
        # Paid orders count as sold; cancelled ones were already restored.
        if order.get("payment_status") != "paid" and order.get("status") != "cancelled":
            restored = self._restore_once(order)
        self._orders.delete(order_id)
        logger.info("Order %s deleted (stock restored: %s)", order_id, restored)
        return restored
