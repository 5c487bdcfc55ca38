"""Storefront popularity rankings and per-product sales analytics."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Optional
import logging

from shopcore.storage import parse_iso, utc_now

from .catalog import newest_first

logger = logging.getLogger(__name__)

SALE_STATUSES = frozenset({"confirmed", "processing", "shipped", "delivered"})
UNCATEGORISED = "Uncategorised"
POPULAR_WINDOW_DAYS = 30
NEW_PRODUCT_SCORE = 50
CATEGORY_BOOST = 20
REPEAT_PENALTY = 10


def popularity_score(total_sold: int, order_count: int, revenue: float) -> float:
    """Weighted blend of volume, frequency, revenue and a flat recency bonus."""

    return (
        total_sold * 0.4
        + (order_count * 2) * 0.3
        + (revenue / 1000) * 0.2
        + 10 * 0.1
    )


@dataclass(slots=True)
class AnalyticsService:
    store: object
    clock: Callable[[], datetime] = utc_now
    _orders: object = field(init=False, repr=False)
    _products: object = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self._orders = self.store.collection("orders")
        self._products = self.store.collection("products")

    def _sales_since(self, days: int) -> list[tuple[dict, datetime]]:
        cutoff = self.clock() - timedelta(days=days)
        sales = []
        for order in self._orders.all():
            created = parse_iso(order.get("created_at"))
            if created is None or created < cutoff or order.get("status") not in SALE_STATUSES:
                continue
            sales.append((order, created))
        return sales

    def popular_products(self, limit: int = 10) -> list[dict]:
        totals: dict[str, dict] = {}
        for order, _ in self._sales_since(POPULAR_WINDOW_DAYS):
            for item in order.get("items", []):
                row = totals.setdefault(
                    item["product_id"],
                    {
                        "id": item["product_id"],
                        "name": item.get("product_name", ""),
                        "category": item.get("category") or UNCATEGORISED,
                        "price": item.get("price", 0),
                        "total_sold": 0,
                        "order_count": 0,
                        "revenue": 0.0,
                    },
                )
                row["total_sold"] += item.get("quantity", 0)
                row["order_count"] += 1
                row["revenue"] += item.get("quantity", 0) * item.get("price", 0)

        catalog = {product["id"]: product for product in self._products.all()}
        for row in totals.values():
            product = catalog.get(row["id"]) or {}
            row["stock"] = product.get("stock", 0) or 0
            row["image_url"] = product.get("image_url") or ""
            row["popularity_score"] = popularity_score(row["total_sold"], row["order_count"], row["revenue"])

        ranked = sorted(totals.values(), key=lambda row: row["popularity_score"], reverse=True)
        return ranked[:limit]

    def recommended_products(self, user_id: str, limit: int = 8) -> list[dict]:
        try:
            categories: set[str] = set()
            bought: set[str] = set()
            for order in self._orders.where(user_id=user_id):
                if order.get("status") not in SALE_STATUSES:
                    continue
                for item in order.get("items", []):
                    categories.add(item.get("category") or UNCATEGORISED)
                    bought.add(item["product_id"])

            if not categories:
                return self.popular_products(limit)

            recommended = []
            for product in self.popular_products(50):
                boost = 0
                if product["category"] in categories:
                    boost += CATEGORY_BOOST
                if product["id"] in bought:
                    boost -= REPEAT_PENALTY
                recommended.append({**product, "popularity_score": product["popularity_score"] + boost})
            recommended.sort(key=lambda row: row["popularity_score"], reverse=True)
            return recommended[:limit]
        except Exception as exc:
            logger.error("Could not build recommendations for %s: %s", user_id, exc)
            return self.popular_products(limit)

    def new_products(self, limit: int = 6) -> list[dict]:
        return [
            {
                "id": product["id"],
                "name": product.get("name", ""),
                "category": product.get("category", ""),
                "price": product.get("price", 0),
                "stock": product.get("stock", 0) or 0,
                "image_url": product.get("image_url") or "",
                "total_sold": 0,
                "order_count": 0,
                "revenue": 0.0,
                "popularity_score": NEW_PRODUCT_SCORE,
            }
            for product in newest_first(self._products.all())[:limit]
        ]

    def popular_by_category(self, category: str, limit: int = 12) -> list[dict]:
        return [product for product in self.popular_products(100) if product["category"] == category][:limit]

    def product_analytics(self, days: int = 30) -> list[dict]:
        report: dict[str, dict] = {}
        last_seen: dict[str, Optional[datetime]] = {}
        for order, created in self._sales_since(days):
            for item in order.get("items", []):
                product_id = item["product_id"]
                row = report.setdefault(
                    product_id,
                    {
                        "product_id": product_id,
                        "product_name": item.get("product_name", ""),
                        "category": item.get("category") or UNCATEGORISED,
                        "price": item.get("price", 0),
                        "image_url": item.get("image_url") or "",
                        "total_orders": 0,
                        "total_quantity_sold": 0,
                        "total_revenue": 0.0,
                    },
                )
                row["total_orders"] += 1
                row["total_quantity_sold"] += item.get("quantity", 0)
                row["total_revenue"] += item.get("quantity", 0) * item.get("price", 0)
                if last_seen.get(product_id) is None or created > last_seen[product_id]:
                    last_seen[product_id] = created

        for product_id, row in report.items():
            row["average_order_value"] = row["total_revenue"] / row["total_orders"]
            row["last_order_date"] = last_seen[product_id].isoformat()
        return sorted(report.values(), key=lambda row: row["total_revenue"], reverse=True)
