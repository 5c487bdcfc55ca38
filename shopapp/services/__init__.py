"""Domain services wired over one document store."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Callable

from shopcore.config import ShopConfig
from shopcore.storage import FieldCipher, utc_now

from .analytics import AnalyticsService
from .catalog import ProductCatalog
from .dashboard import DashboardService
from .inventory import InventoryService
from .login_attempts import LoginAttemptService
from .notifications import NotificationService
from .orders import OrderService
from .payment_slips import PaymentSlipService
from .sync import StockSync
from .users import UserService


@dataclass(slots=True)
class ShopServices:
    catalog: ProductCatalog
    inventory: InventoryService
    orders: OrderService
    payment_slips: PaymentSlipService
    users: UserService
    logins: LoginAttemptService
    notifications: NotificationService
    dashboard: DashboardService
    analytics: AnalyticsService

    @classmethod
    def build(cls, store, config: ShopConfig, clock: Callable[[], datetime] = utc_now) -> "ShopServices":
        sync = StockSync(store, clock)
        catalog = ProductCatalog(store, sync, clock)
        inventory = InventoryService(store, sync, clock)
        notifications = NotificationService(store, clock, currency_symbol=config.currency_symbol)
        orders = OrderService(store, catalog, inventory, notifications, clock)
        logins = LoginAttemptService(
            store,
            clock,
            max_attempts=config.max_login_attempts,
            lockout_minutes=config.lockout_minutes,
        )
        return cls(
            catalog=catalog,
            inventory=inventory,
            orders=orders,
            payment_slips=PaymentSlipService(store, orders, FieldCipher(config.field_secret_key), clock),
            users=UserService(store, logins, clock, admin_email=config.admin_email),
            logins=logins,
            notifications=notifications,
            dashboard=DashboardService(store, clock),
            analytics=AnalyticsService(store, clock),
        )


__all__ = ["ShopServices"]
