"""Flask JSON API for the community shop storefront and back-office.

- Documents live in Firestore when service-account credentials are present,
  otherwise in local JSON collections with rotating backups.
- Shoppers and admins sign in with an e-mail and password checked by the
  API. The session is a signed cookie carrying the uid; roles are read from
  the ``users`` collection on every request.
- Repeated failed sign-ins lock the account for a while.
"""

from __future__ import annotations

import datetime
import logging
import os
from functools import wraps
from pathlib import Path

from flask import Flask, jsonify, make_response, request
from flask_cors import CORS
from flask_talisman import Talisman
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer
from pydantic import BaseModel, ValidationError

from shopcore.config import load_shop_config
from shopcore.storage import StoreError, open_document_store

from .errors import InvalidTransition, NotFoundError, PermissionDenied, ServiceError
from .models import (
    ConfirmPaymentModel,
    InventoryModel,
    InventoryUpdateModel,
    LoginModel,
    OrderCreateModel,
    OrderStatusModel,
    OrderUpdateModel,
    PaymentSlipModel,
    PaymentStatusModel,
    ProductModel,
    ProductUpdateModel,
    QuantityModel,
    RegisterModel,
    RoleModel,
    SlipRejectModel,
    StockModel,
    UserUpdateModel,
)
from .services import ShopServices

BASE_DIR = Path(__file__).resolve().parent
ROOT_DIR = BASE_DIR.parent

# ---------------------------------------------------------------------------
# Config / services
# ---------------------------------------------------------------------------
CONFIG = load_shop_config(ROOT_DIR)

logging.basicConfig(
    level=CONFIG.log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

API_HOST = os.environ.get("API_HOST", "0.0.0.0")
API_PORT = int(os.environ.get("API_PORT", "7890"))

STORE = open_document_store(CONFIG)
SERVICES = ShopServices.build(STORE, CONFIG)

SESSION_SERIALIZER = URLSafeTimedSerializer(CONFIG.secret_key, salt="shop-user-session")

# ---------------------------------------------------------------------------
# Flask app
# ---------------------------------------------------------------------------
app = Flask(__name__)
app.config.update(
    SECRET_KEY=CONFIG.secret_key,
    SESSION_COOKIE_SAMESITE="Lax",
    SESSION_COOKIE_SECURE=CONFIG.force_tls,
    PREFERRED_URL_SCHEME="https" if CONFIG.force_tls else "http",
)
app.json.ensure_ascii = False

CORS(app, resources={r"/*": {"origins": list(CONFIG.allowed_origins)}}, supports_credentials=True)

# Security headers
Talisman(app, content_security_policy=None, force_https=CONFIG.force_tls, frame_options="DENY")


@app.errorhandler(ServiceError)
def handle_service_error(exc: ServiceError):
    return jsonify(exc.payload()), exc.status_code


@app.errorhandler(ValidationError)
def handle_validation_error(err: ValidationError):
    return jsonify({"error": err.errors(include_url=False, include_context=False)}), 400


@app.errorhandler(StoreError)
def handle_store_error(exc: StoreError):
    logger.error("Storage failure on %s %s: %s", request.method, request.path, exc)
    return jsonify({"error": str(exc)}), 500


def _payload(model: type[BaseModel]):
    return model.model_validate(request.get_json(force=True, silent=True) or {})


def _count_arg(name: str, default: int) -> int:
    # Negative values would turn list slices into "all but the last N".
    return max(0, request.args.get(name, default=default, type=int))


# ---------------------------------------------------------------------------
# Session helpers
# ---------------------------------------------------------------------------
def _set_session_cookie(resp, uid: str, email: str):
    payload = {
        "uid": uid,
        "email": email,
        "issued_at": datetime.datetime.now(datetime.UTC).timestamp(),
    }
    resp.set_cookie(
        CONFIG.session_cookie_name,
        SESSION_SERIALIZER.dumps(payload),
        max_age=CONFIG.session_max_age,
        httponly=True,
        secure=CONFIG.force_tls,
        samesite="Lax",
    )


def _clear_session_cookie(resp):
    resp.delete_cookie(CONFIG.session_cookie_name, samesite="Lax")


def current_user_from_cookie():
    cookie = request.cookies.get(CONFIG.session_cookie_name)
    if not cookie:
        return None
    try:
        decoded = SESSION_SERIALIZER.loads(cookie, max_age=CONFIG.session_max_age)
    except (BadSignature, SignatureExpired):
        return None
    uid = decoded.get("uid")
    if not uid:
        return None
    user = SERVICES.users.get(uid)
    if not user or not user.get("is_active", True):
        return None
    return user


def _is_admin(user: dict | None) -> bool:
    return bool(user) and user.get("role") == "admin"


def user_required(fn):
    @wraps(fn)
    def wrapper(*args, **kwargs):
        user = current_user_from_cookie()
        if not user:
            return jsonify({"error": "Authentication required"}), 401
        kwargs["current_user"] = user
        return fn(*args, **kwargs)

    return wrapper


def admin_required(fn):
    @wraps(fn)
    def wrapper(*args, **kwargs):
        user = current_user_from_cookie()
        if not user:
            return jsonify({"error": "Authentication required"}), 401
        if not _is_admin(user):
            return jsonify({"error": "Admin privileges required"}), 403
        kwargs["current_user"] = user
        return fn(*args, **kwargs)

    return wrapper


def _order_for(order_id: str, user: dict) -> dict:
    order = SERVICES.orders.require(order_id)
    if order.get("user_id") != user["uid"] and not _is_admin(user):
        raise PermissionDenied("You do not have access to this order")
    return order


# ---------------------------------------------------------------------------
# Auth routes
# ---------------------------------------------------------------------------
@app.route("/auth/register", methods=["POST"])
def auth_register():
    registration = _payload(RegisterModel)
    user = SERVICES.users.register(registration.email, registration.password, registration.name)
    resp = make_response(jsonify(user), 201)
    _set_session_cookie(resp, user["uid"], user["email"])
    return resp


@app.route("/auth/login", methods=["POST"])
def auth_login():
    credentials = _payload(LoginModel)
    user = SERVICES.users.authenticate(credentials.email, credentials.password)
    resp = make_response(jsonify(user))
    _set_session_cookie(resp, user["uid"], user["email"])
    return resp


@app.route("/auth/logout", methods=["POST"])
def auth_logout():
    resp = make_response(jsonify({"ok": True}))
    _clear_session_cookie(resp)
    return resp


@app.route("/auth/me", methods=["GET"])
def auth_me():
    user = current_user_from_cookie()
    if not user:
        return jsonify({"error": "Not authenticated"}), 401
    return jsonify(user)


# ---------------------------------------------------------------------------
# Routes: Products
# ---------------------------------------------------------------------------
@app.route("/products", methods=["GET"])
def get_products():
    term = request.args.get("q", "").strip()
    category = request.args.get("category", "").strip()
    if category:
        products = SERVICES.catalog.by_category(category)
    elif term:
        products = [p for p in SERVICES.catalog.search(term) if p.get("is_active", True)]
    else:
        products = SERVICES.catalog.active()
    return jsonify(products)


@app.route("/products/all", methods=["GET"])
@admin_required
def get_all_products(current_user):
    return jsonify(SERVICES.catalog.all())


@app.route("/products/<product_id>", methods=["GET"])
def get_product(product_id):
    product = SERVICES.catalog.require(product_id)
    if not product.get("is_active", True) and not _is_admin(current_user_from_cookie()):
        raise NotFoundError("Product not found")
    return jsonify(product)


@app.route("/products", methods=["POST"])
@admin_required
def create_product(current_user):
    product = _payload(ProductModel)
    return jsonify(SERVICES.catalog.create(product.model_dump())), 201


@app.route("/products/<product_id>", methods=["PUT"])
@admin_required
def update_product(product_id, current_user):
    updates = _payload(ProductUpdateModel)
    return jsonify(SERVICES.catalog.update(product_id, updates.model_dump(exclude_none=True)))


@app.route("/products/<product_id>/stock", methods=["PATCH"])
@admin_required
def update_product_stock(product_id, current_user):
    stock = _payload(StockModel)
    return jsonify(SERVICES.catalog.update_stock(product_id, stock.stock))


@app.route("/products/<product_id>", methods=["DELETE"])
@admin_required
def delete_product(product_id, current_user):
    SERVICES.catalog.delete(product_id)
    return jsonify({"ok": True})


# ---------------------------------------------------------------------------
# Routes: Inventory (admin)
# ---------------------------------------------------------------------------
@app.route("/inventory", methods=["GET"])
@admin_required
def get_inventory(current_user):
    term = request.args.get("q", "").strip()
    return jsonify(SERVICES.inventory.search(term) if term else SERVICES.inventory.all())


@app.route("/inventory/low-stock", methods=["GET"])
@admin_required
def get_low_stock(current_user):
    threshold = request.args.get("threshold", type=int)
    return jsonify(SERVICES.inventory.low_stock(threshold))


@app.route("/inventory/out-of-stock", methods=["GET"])
@admin_required
def get_out_of_stock(current_user):
    return jsonify(SERVICES.inventory.out_of_stock())


@app.route("/inventory/stats", methods=["GET"])
@admin_required
def get_inventory_stats(current_user):
    return jsonify(SERVICES.inventory.stats())


@app.route("/inventory/<item_id>", methods=["GET"])
@admin_required
def get_inventory_item(item_id, current_user):
    return jsonify(SERVICES.inventory.require(item_id))


@app.route("/inventory", methods=["POST"])
@admin_required
def create_inventory_item(current_user):
    item = _payload(InventoryModel)
    return jsonify(SERVICES.inventory.create(item.model_dump())), 201


@app.route("/inventory/<item_id>", methods=["PUT"])
@admin_required
def update_inventory_item(item_id, current_user):
    updates = _payload(InventoryUpdateModel)
    return jsonify(SERVICES.inventory.update(item_id, updates.model_dump(exclude_none=True)))


@app.route("/inventory/<item_id>/quantity", methods=["PATCH"])
@admin_required
def update_inventory_quantity(item_id, current_user):
    quantity = _payload(QuantityModel)
    return jsonify(SERVICES.inventory.update_quantity(item_id, quantity.quantity))


@app.route("/inventory/<item_id>", methods=["DELETE"])
@admin_required
def delete_inventory_item(item_id, current_user):
    SERVICES.inventory.require(item_id)
    SERVICES.inventory.delete(item_id)
    return jsonify({"ok": True})


# ---------------------------------------------------------------------------
# Routes: Orders
# ---------------------------------------------------------------------------
@app.route("/orders", methods=["POST"])
@user_required
def create_order(current_user):
    order = _payload(OrderCreateModel)
    data = order.model_dump()
    data.update(
        user_id=current_user["uid"],
        user_name=current_user.get("name", ""),
        user_email=current_user.get("email", ""),
    )
    return jsonify(SERVICES.orders.create(data)), 201


@app.route("/orders", methods=["GET"])
@user_required
def get_my_orders(current_user):
    return jsonify(SERVICES.orders.for_user(current_user["uid"]))


@app.route("/admin/orders", methods=["GET"])
@admin_required
def get_all_orders(current_user):
    status = request.args.get("status", "").strip() or None
    return jsonify(SERVICES.orders.all(status))


@app.route("/orders/stats", methods=["GET"])
@admin_required
def get_order_stats(current_user):
    return jsonify(SERVICES.orders.stats())


@app.route("/orders/<order_id>", methods=["GET"])
@user_required
def get_order(order_id, current_user):
    return jsonify(_order_for(order_id, current_user))


@app.route("/orders/<order_id>", methods=["PUT"])
@user_required
def update_order(order_id, current_user):
    order = _order_for(order_id, current_user)
    if not _is_admin(current_user) and order.get("status") != "pending":
        raise InvalidTransition("Only pending orders can be edited")
    updates = _payload(OrderUpdateModel)
    return jsonify(SERVICES.orders.update(order_id, updates.model_dump(exclude_none=True)))


@app.route("/orders/<order_id>/status", methods=["PATCH"])
@admin_required
def update_order_status(order_id, current_user):
    status = _payload(OrderStatusModel)
    return jsonify(SERVICES.orders.update_status(order_id, status.status))


@app.route("/orders/<order_id>/confirm-payment", methods=["POST"])
@admin_required
def confirm_order_payment(order_id, current_user):
    details = _payload(ConfirmPaymentModel)
    return jsonify(SERVICES.orders.confirm_payment(order_id, current_user["uid"], **details.model_dump()))


@app.route("/orders/<order_id>/payment-status", methods=["PATCH"])
@admin_required
def update_order_payment_status(order_id, current_user):
    payment = _payload(PaymentStatusModel)
    return jsonify(
        SERVICES.orders.update_payment_status(order_id, payment.payment_status, current_user["uid"])
    )


@app.route("/orders/<order_id>", methods=["DELETE"])
@admin_required
def delete_order(order_id, current_user):
    restored = SERVICES.orders.delete(order_id)
    return jsonify({"ok": True, "stock_restored": restored})


# ---------------------------------------------------------------------------
# Routes: Payment slips
# ---------------------------------------------------------------------------
@app.route("/orders/<order_id>/payment-slips", methods=["POST"])
@user_required
def submit_payment_slip(order_id, current_user):
    slip = _payload(PaymentSlipModel)
    saved = SERVICES.payment_slips.submit_for_order(order_id, current_user, slip.model_dump())
    return jsonify(SERVICES.payment_slips.masked(saved)), 201


@app.route("/orders/<order_id>/payment-slips", methods=["GET"])
@user_required
def get_order_payment_slips(order_id, current_user):
    _order_for(order_id, current_user)
    slips = SERVICES.payment_slips.for_order(order_id)
    if not _is_admin(current_user):
        slips = [SERVICES.payment_slips.masked(slip) for slip in slips]
    return jsonify(slips)


@app.route("/payment-slips", methods=["GET"])
@admin_required
def get_payment_slips(current_user):
    return jsonify(SERVICES.payment_slips.all())


@app.route("/payment-slips/<slip_id>/verify", methods=["POST"])
@admin_required
def verify_payment_slip(slip_id, current_user):
    return jsonify(SERVICES.payment_slips.verify(slip_id, current_user["uid"]))


@app.route("/payment-slips/<slip_id>/reject", methods=["POST"])
@admin_required
def reject_payment_slip(slip_id, current_user):
    rejection = _payload(SlipRejectModel)
    return jsonify(SERVICES.payment_slips.reject(slip_id, rejection.reason, current_user["uid"]))


# ---------------------------------------------------------------------------
# Routes: Users (admin)
# ---------------------------------------------------------------------------
@app.route("/users", methods=["GET"])
@admin_required
def get_users(current_user):
    role = request.args.get("role", "").strip()
    return jsonify(SERVICES.users.by_role(role) if role else SERVICES.users.all())


@app.route("/users/<uid>", methods=["GET"])
@admin_required
def get_user(uid, current_user):
    return jsonify(SERVICES.users.require(uid))


@app.route("/users/<uid>", methods=["PUT"])
@admin_required
def update_user(uid, current_user):
    updates = _payload(UserUpdateModel)
    if uid == current_user["uid"] and updates.is_active is False:
        raise PermissionDenied("Admins cannot disable their own account")
    return jsonify(SERVICES.users.update(uid, updates.model_dump(exclude_none=True)))


@app.route("/users/<uid>/role", methods=["PATCH"])
@admin_required
def update_user_role(uid, current_user):
    role = _payload(RoleModel)
    return jsonify(SERVICES.users.update_role(uid, role.role, current_user["uid"]))


@app.route("/users/<uid>", methods=["DELETE"])
@admin_required
def delete_user(uid, current_user):
    SERVICES.users.delete(uid, current_user["uid"])
    return jsonify({"ok": True})


# ---------------------------------------------------------------------------
# Routes: Notifications
# ---------------------------------------------------------------------------
def _own_notification(notification_id: str, user: dict) -> dict:
    notification = SERVICES.notifications.get(notification_id)
    if not notification or notification.get("user_id") != user["uid"]:
        raise NotFoundError("Notification not found")
    return notification


@app.route("/notifications", methods=["GET"])
@user_required
def get_notifications(current_user):
    limit = _count_arg("limit", 20)
    return jsonify(SERVICES.notifications.for_user(current_user["uid"], limit))


@app.route("/notifications/unread-count", methods=["GET"])
@user_required
def get_unread_count(current_user):
    return jsonify({"count": SERVICES.notifications.unread_count(current_user["uid"])})


@app.route("/notifications/<notification_id>/read", methods=["POST"])
@user_required
def mark_notification_read(notification_id, current_user):
    _own_notification(notification_id, current_user)
    SERVICES.notifications.mark_read(notification_id)
    return jsonify({"ok": True})


@app.route("/notifications/read-all", methods=["POST"])
@user_required
def mark_all_notifications_read(current_user):
    return jsonify({"updated": SERVICES.notifications.mark_all_read(current_user["uid"])})


@app.route("/notifications/<notification_id>", methods=["DELETE"])
@user_required
def delete_notification(notification_id, current_user):
    _own_notification(notification_id, current_user)
    SERVICES.notifications.delete(notification_id)
    return jsonify({"ok": True})


@app.route("/notifications", methods=["DELETE"])
@user_required
def delete_all_notifications(current_user):
    return jsonify({"deleted": SERVICES.notifications.delete_all(current_user["uid"])})


# ---------------------------------------------------------------------------
# Routes: Dashboard / analytics
# ---------------------------------------------------------------------------
@app.route("/dashboard", methods=["GET"])
@admin_required
def get_dashboard(current_user):
    return jsonify(SERVICES.dashboard.stats())


@app.route("/analytics/popular", methods=["GET"])
def get_popular_products():
    limit = _count_arg("limit", 10)
    return jsonify(SERVICES.analytics.popular_products(limit))


@app.route("/analytics/new", methods=["GET"])
def get_new_products():
    limit = _count_arg("limit", 6)
    return jsonify(SERVICES.analytics.new_products(limit))


@app.route("/analytics/category/<category>", methods=["GET"])
def get_popular_by_category(category):
    limit = _count_arg("limit", 12)
    return jsonify(SERVICES.analytics.popular_by_category(category, limit))


@app.route("/analytics/recommended", methods=["GET"])
@user_required
def get_recommended_products(current_user):
    limit = _count_arg("limit", 8)
    return jsonify(SERVICES.analytics.recommended_products(current_user["uid"], limit))


@app.route("/analytics/products", methods=["GET"])
@admin_required
def get_product_analytics(current_user):
    days = _count_arg("days", 30)
    return jsonify(SERVICES.analytics.product_analytics(days))


@app.after_request
def secure_headers(resp):
    resp.headers["X-Content-Type-Options"] = "nosniff"
    return resp


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------
if __name__ == "__main__":
    app.run(host=API_HOST, port=API_PORT, ssl_context="adhoc" if CONFIG.force_tls else None)
