"""Back-office dashboard figures and reports.

Revenue figures only count orders whose ``payment_status`` is ``paid``.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable
import logging

from shopcore.storage import parse_iso, utc_now

logger = logging.getLogger(__name__)

RECENT_DAYS = 30
TOP_SELLING_LIMIT = 10
MONTHS_SHOWN = 12

_PRIORITY_RANK = {"critical": 3, "warning": 2, "reorder": 1}


def _is_paid(order: dict) -> bool:
    return order.get("payment_status") == "paid"


def stock_status(quantity: int, min_stock: int) -> str:
    if quantity == 0:
        return "out_of_stock"
    if quantity <= min_stock:
        return "low_stock"
    return "in_stock"


def restock_priority(quantity: int, min_stock: int) -> str:
    if quantity == 0:
        return "critical"
    if quantity <= min_stock * 0.5:
        return "warning"
    return "reorder"


def top_selling_products(orders: list[dict], products: list[dict]) -> list[dict]:
    catalog = {product["id"]: product for product in products}
    sales: dict[str, dict] = {}
    for order in filter(_is_paid, orders):
        for item in order.get("items", []):
            product_id = item["product_id"]
            if product_id not in sales:
                product = catalog.get(product_id) or {}
                sales[product_id] = {
                    "product_id": product_id,
                    "product_name": product.get("name") or item.get("product_name", ""),
                    "category": product.get("category") or "Unknown",
                    "total_sold": 0,
                    "revenue": 0.0,
                }
            sales[product_id]["total_sold"] += item.get("quantity", 0)
            sales[product_id]["revenue"] += item.get("quantity", 0) * item.get("price", 0)
    ranked = sorted(sales.values(), key=lambda row: row["total_sold"], reverse=True)
    return ranked[:TOP_SELLING_LIMIT]


def inventory_report(inventory: list[dict], products: list[dict]) -> list[dict]:
    catalog = {product["id"]: product for product in products}
    rows = []
    for item in inventory:
        product = catalog.get(item.get("product_id")) or {}
        quantity = item.get("quantity", 0)
        min_stock = item.get("min_stock", 0)
        rows.append(
            {
                "product_id": item.get("product_id"),
                "product_name": product.get("name") or item.get("product_name", ""),
                "category": product.get("category") or item.get("product_category", ""),
                "current_stock": quantity,
                "min_stock": min_stock,
                "max_stock": item.get("max_stock", 0),
                "status": stock_status(quantity, min_stock),
                "last_restocked": item.get("last_restocked"),
            }
        )
    return sorted(rows, key=lambda row: row["product_name"].lower())


def sales_report(orders: list[dict]) -> list[dict]:
    rows = [
        {
            "order_id": order["id"],
            "customer_name": order.get("user_name", ""),
            "customer_email": order.get("user_email", ""),
            "total_amount": order.get("total_amount", 0),
            "status": order.get("status"),
            "payment_status": order.get("payment_status"),
            "order_date": order.get("created_at"),
            "items": [
                {
                    "product_name": item.get("product_name", ""),
                    "quantity": item.get("quantity", 0),
                    "price": item.get("price", 0),
                }
                for item in order.get("items", [])
            ],
        }
        for order in orders
        if _is_paid(order)
    ]
    return sorted(rows, key=lambda row: row["order_date"] or "", reverse=True)


def low_stock_report(inventory: list[dict]) -> list[dict]:
    rows = []
    for item in inventory:
        quantity = item.get("quantity", 0)
        min_stock = item.get("min_stock", 0)
        if quantity > min_stock:
            continue
        rows.append(
            {
                "product_id": item.get("product_id"),
                "product_name": item.get("product_name", ""),
                "current_stock": quantity,
                "min_stock": min_stock,
                "difference": min_stock - quantity,
                "priority": restock_priority(quantity, min_stock),
            }
        )
    return sorted(rows, key=lambda row: _PRIORITY_RANK[row["priority"]], reverse=True)


def monthly_revenue(orders: list[dict]) -> list[dict]:
    months: dict[str, dict] = {}
    for order in filter(_is_paid, orders):
        created = parse_iso(order.get("created_at"))
        if not created:
            continue
        key = created.strftime("%Y-%m")
        bucket = months.setdefault(key, {"month": key, "revenue": 0.0, "orders": 0})
        bucket["revenue"] += order.get("total_amount", 0)
        bucket["orders"] += 1
    return [months[key] for key in sorted(months)][-MONTHS_SHOWN:]


@dataclass(slots=True)
class DashboardService:
    store: object
    clock: Callable[[], datetime] = utc_now

    def stats(self) -> dict:
        products = self.store.collection("products").all()
        inventory = self.store.collection("inventory").all()
        orders = self.store.collection("orders").all()

        cutoff = self.clock() - timedelta(days=RECENT_DAYS)
        recent = [
            order
            for order in orders
            if (created := parse_iso(order.get("created_at"))) is not None and created >= cutoff
        ]
        logger.debug("Dashboard built from %s orders", len(orders))
        return {
            "total_products": len(products),
            "total_orders": len(orders),
            "total_revenue": sum(order.get("total_amount", 0) for order in orders if _is_paid(order)),
            "low_stock_count": sum(
                1 for item in inventory if 0 < item.get("quantity", 0) <= item.get("min_stock", 0)
            ),
            "out_of_stock_count": sum(1 for item in inventory if item.get("quantity", 0) == 0),
            "recent_orders_count": len(recent),
            "top_selling_products": top_selling_products(orders, products),
            "inventory_report": inventory_report(inventory, products),
            "sales_report": sales_report(orders),
            "low_stock_report": low_stock_report(inventory),
            "monthly_revenue": monthly_revenue(orders),
        }
