"""Bank-transfer payment slips submitted by customers.

Account numbers are encrypted with :class:`shopcore.storage.FieldCipher`
before they reach the store and decrypted on the way out.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, Optional
import logging
import re

from shopcore.storage import FieldCipher, to_iso, utc_now

from ..errors import InvalidTransition, NotFoundError, PermissionDenied
from .catalog import newest_first
from .orders import OrderService

logger = logging.getLogger(__name__)

SLIP_STATUSES = ("pending_verification", "verified", "rejected")
DEFAULT_BANK_NAME = "Kasikornbank"
BUDDHIST_ERA_OFFSET = 543

_ACCOUNT_FIELDS = ("from_account", "to_account")
_YEAR = re.compile(r"\b(\d{4})\b")


def to_gregorian_date(value: str) -> str:
    """Rewrite Thai Buddhist-era years (2400 and later) as Gregorian years."""

    def replace(match: re.Match) -> str:
        year = int(match.group(1))
        return str(year - BUDDHIST_ERA_OFFSET) if year >= 2400 else match.group(1)

    return _YEAR.sub(replace, value or "")


def mask_account(value: str | None) -> str:
    if not value:
        return ""
    digits = value.replace("-", "").replace(" ", "")
    if len(digits) <= 4:
        return digits
    return "x" * (len(digits) - 4) + digits[-4:]


@dataclass(slots=True)
class PaymentSlipService:
    store: object
    orders: OrderService
    cipher: FieldCipher
    clock: Callable[[], datetime] = utc_now
    _slips: object = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self._slips = self.store.collection("payment_slips")

    def _now(self) -> str:
        return to_iso(self.clock())

    def _decrypt(self, slip: dict) -> dict:
        for key in _ACCOUNT_FIELDS:
            slip[key] = self.cipher.decrypt(slip.get(key)) or ""
        return slip

    @staticmethod
    def masked(slip: dict) -> dict:
        """Return a copy safe to show the customer."""

        view = dict(slip)
        for key in _ACCOUNT_FIELDS:
            view[key] = mask_account(view.get(key))
        return view

    def save(self, payload: Dict) -> str:
        record = {
            "order_id": payload["order_id"],
            "customer_id": payload["customer_id"],
            "customer_email": payload.get("customer_email", ""),
            "customer_name": payload.get("customer_name", ""),
            "slip_image_url": payload.get("slip_image_url", ""),
            "amount": float(payload.get("amount", 0) or 0),
            "transfer_date": payload.get("transfer_date", ""),
            "transfer_time": payload.get("transfer_time", ""),
            "from_account": self.cipher.encrypt(payload.get("from_account", "")),
            "to_account": self.cipher.encrypt(payload.get("to_account", "")),
            "bank_name": payload.get("bank_name", ""),
            "reference_number": payload.get("reference_number", ""),
            "transaction_id": payload.get("transaction_id", ""),
            "notes": payload.get("notes", ""),
            "status": "pending_verification",
            "created_at": self._now(),
        }
        slip_id = self._slips.add(record)
        logger.info("Payment slip %s saved for order %s", slip_id, record["order_id"])
        return slip_id

    def create_from_image_data(self, payload: Dict) -> str:
        """Save a slip read off a banking app screenshot."""

        data = dict(payload)
        data["transfer_date"] = to_gregorian_date(data.get("transfer_date", ""))
        data["bank_name"] = data.get("bank_name") or DEFAULT_BANK_NAME
        data["transaction_id"] = data.get("transaction_id") or data.get("reference_number", "")
        return self.save(data)

    def submit_for_order(self, order_id: str, customer: dict, payload: Dict) -> dict:
        order = self.orders.require(order_id)
        if order.get("user_id") != customer["uid"]:
            raise PermissionDenied("You can only submit slips for your own orders")

        slip_image_url = payload.get("slip_image_url", "")
        transaction_id = payload.get("transaction_id") or payload.get("reference_number", "")
        self.orders.upload_payment_slip(order_id, slip_image_url, transaction_id)

        data = dict(payload)
        data.update(
            {
                "order_id": order_id,
                "customer_id": customer["uid"],
                "customer_email": customer.get("email", ""),
                "customer_name": customer.get("name", ""),
                "transaction_id": transaction_id,
            }
        )
        if not data.get("amount"):
            data["amount"] = order.get("total_amount", 0)
        slip_id = self.create_from_image_data(data)
        return self.require(slip_id)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    def get(self, slip_id: str) -> Optional[dict]:
        slip = self._slips.get(slip_id)
        return self._decrypt(slip) if slip else None

    def require(self, slip_id: str) -> dict:
        slip = self.get(slip_id)
        if not slip:
            raise NotFoundError("Payment slip not found")
        return slip

    def all(self) -> list[dict]:
        return [self._decrypt(slip) for slip in newest_first(self._slips.all())]

    def for_order(self, order_id: str) -> list[dict]:
        return [self._decrypt(slip) for slip in newest_first(self._slips.where(order_id=order_id))]

    # ------------------------------------------------------------------
    # Review
    # ------------------------------------------------------------------
    def _require_pending(self, slip_id: str) -> dict:
        slip = self.require(slip_id)
        if slip.get("status") != "pending_verification":
            raise InvalidTransition(f"Payment slip is already {slip.get('status')}")
        return slip

    def verify(self, slip_id: str, verified_by: str) -> dict:
        slip = self._require_pending(slip_id)
        # The order must accept the payment before the slip is marked verified.
        self.orders.confirm_payment(
            slip["order_id"],
            verified_by,
            transaction_id=slip.get("transaction_id", ""),
            bank_account=slip.get("to_account", ""),
            slip_image_url=slip.get("slip_image_url", ""),
            notes=slip.get("notes", ""),
        )
        self._slips.update(
            slip_id,
            {"status": "verified", "verified_at": self._now(), "verified_by": verified_by},
        )
        logger.info("Payment slip %s verified by %s", slip_id, verified_by)
        return self.require(slip_id)

    def reject(self, slip_id: str, reason: str, rejected_by: str) -> dict:
        self._require_pending(slip_id)
        self._slips.update(
            slip_id,
            {
                "status": "rejected",
                "rejection_reason": reason,
                "verified_at": self._now(),
                "verified_by": rejected_by,
            },
        )
        logger.info("Payment slip %s rejected by %s", slip_id, rejected_by)
        return self.require(slip_id)
