"""In-app notifications stored on the ``notifications`` collection.

Admins are addressed one document per active admin account; customers get a
single document per event. Clients poll ``for_user``/``unread_count``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, Optional
import logging

from shopcore.storage import DocumentNotFound, to_iso, utc_now

from ..errors import NotFoundError
from .catalog import newest_first

logger = logging.getLogger(__name__)

NOTIFICATION_TYPES = ("order_new", "order_status_change", "inventory_low", "system")

STATUS_LABELS = {
    "pending": "Awaiting confirmation",
    "confirmed": "Confirmed",
    "processing": "Being prepared",
    "shipped": "Shipped",
    "delivered": "Delivered",
    "cancelled": "Cancelled",
}


def format_amount(amount: float, symbol: str = "฿") -> str:
    return f"{symbol}{amount:,.2f}"


@dataclass(slots=True)
class NotificationService:
    store: object
    clock: Callable[[], datetime] = utc_now
    currency_symbol: str = "฿"
    _notifications: object = field(init=False, repr=False)
    _users: object = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self._notifications = self.store.collection("notifications")
        self._users = self.store.collection("users")

    def _now(self) -> str:
        return to_iso(self.clock())

    def create(self, payload: Dict) -> str:
        record = {
            "type": payload.get("type", "system"),
            "title": payload.get("title", ""),
            "message": payload.get("message", ""),
            "user_id": payload["user_id"],
            "user_role": payload.get("user_role", "customer"),
            "related_id": payload.get("related_id"),
            "related_type": payload.get("related_type"),
            "is_read": False,
            "created_at": self._now(),
        }
        notification_id = self._notifications.add(record)
        logger.debug("Notification %s created for %s", notification_id, record["user_id"])
        return notification_id

    def get(self, notification_id: str) -> Optional[dict]:
        return self._notifications.get(notification_id)

    def for_user(self, user_id: str, limit: int = 20) -> list[dict]:
        return newest_first(self._notifications.where(user_id=user_id))[:limit]

    def for_role(self, role: str, limit: int = 20) -> list[dict]:
        return newest_first(self._notifications.where(user_role=role))[:limit]

    def unread_count(self, user_id: str) -> int:
        return len(self._notifications.where(user_id=user_id, is_read=False))

    def mark_read(self, notification_id: str) -> None:
        try:
            self._notifications.update(notification_id, {"is_read": True, "read_at": self._now()})
        except DocumentNotFound as exc:
            raise NotFoundError("Notification not found") from exc

    def mark_all_read(self, user_id: str) -> int:
        unread = self._notifications.where(user_id=user_id, is_read=False)
        now = self._now()
        for notification in unread:
            self._notifications.update(notification["id"], {"is_read": True, "read_at": now})
        return len(unread)

    def delete(self, notification_id: str) -> None:
        self._notifications.delete(notification_id)

    def delete_all(self, user_id: str) -> int:
        owned = self._notifications.where(user_id=user_id)
        for notification in owned:
            self._notifications.delete(notification["id"])
        return len(owned)

    # ------------------------------------------------------------------
    # Event helpers
    # ------------------------------------------------------------------
    def _active_admins(self) -> list[dict]:
        return self._users.where(role="admin", is_active=True)

    def notify_new_order(self, order_id: str, customer_name: str, total_amount: float) -> list[str]:
        created = [
            self.create(
                {
                    "type": "order_new",
                    "title": "New order",
                    "message": (
                        f"New order from {customer_name} worth "
                        f"{format_amount(total_amount, self.currency_symbol)}"
                    ),
                    "user_id": admin["id"],
                    "user_role": "admin",
                    "related_id": order_id,
                    "related_type": "order",
                }
            )
            for admin in self._active_admins()
        ]
        logger.info("New order notifications sent: %s", len(created))
        return created

    def notify_order_status_change(
        self,
        customer_id: str,
        order_id: str,
        new_status: str,
        old_status: str,
    ) -> str:
        label = STATUS_LABELS.get(new_status, new_status)
        previous = STATUS_LABELS.get(old_status, old_status)
        return self.create(
            {
                "type": "order_status_change",
                "title": "Order status updated",
                "message": f'Order #{order_id[-8:]} changed from "{previous}" to "{label}"',
                "user_id": customer_id,
                "user_role": "customer",
                "related_id": order_id,
                "related_type": "order",
            }
        )

    def notify_low_inventory(self, product_name: str, current_stock: int, min_stock: int) -> list[str]:
        return [
            self.create(
                {
                    "type": "inventory_low",
                    "title": "Low stock",
                    "message": f'"{product_name}" has only {current_stock} left (minimum {min_stock})',
                    "user_id": admin["id"],
                    "user_role": "admin",
                    "related_type": "inventory",
                }
            )
            for admin in self._active_admins()
        ]
