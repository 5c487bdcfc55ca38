import json

import pytest

from conftest import make_product, make_user, place_order
from shopapp.errors import InvalidTransition, NotFoundError, PermissionDenied
from shopapp.services.payment_slips import mask_account, to_gregorian_date


def test_to_gregorian_date_converts_buddhist_years():
    assert to_gregorian_date("8/9/2568") == "8/9/2025"
    assert to_gregorian_date("2568-09-08") == "2025-09-08"
    assert to_gregorian_date("8/9/2025") == "8/9/2025"
    assert to_gregorian_date("") == ""


def test_mask_account_keeps_last_four():
    assert mask_account("123-4-56789-0") == "xxxxxx7890"
    assert mask_account("1234") == "1234"
    assert mask_account("") == ""


def _slip_payload(**overrides):
    payload = {
        "slip_image_url": "https://cdn.example.com/slips/1.jpg",
        "transfer_date": "8/9/2568",
        "transfer_time": "14:32",
        "from_account": "1234567890",
        "to_account": "0987654321",
        "reference_number": "REF-001",
    }
    payload.update(overrides)
    return payload


def test_submit_for_order_encrypts_accounts_and_defaults_fields(services, config):
    rice = make_product(services, price=250.0)
    user = make_user(services)
    order = place_order(services, user, (rice, 2))

    slip = services.payment_slips.submit_for_order(order["id"], user, _slip_payload())

    assert slip["status"] == "pending_verification"
    assert slip["amount"] == 500.0
    assert slip["transfer_date"] == "8/9/2025"
    assert slip["bank_name"] == "Kasikornbank"
    assert slip["transaction_id"] == "REF-001"
    assert slip["from_account"] == "1234567890"
    assert slip["customer_email"] == "shopper@example.com"

    raw = json.loads((config.data_dir / "payment_slips.json").read_text(encoding="utf-8"))
    stored = raw[slip["id"]]
    assert stored["from_account"].startswith("enc:")
    assert "1234567890" not in json.dumps(raw)

    refreshed = services.orders.get(order["id"])
    assert refreshed["payment_details"]["slip_image_url"] == "https://cdn.example.com/slips/1.jpg"
    assert refreshed["payment_details"]["transaction_id"] == "REF-001"
    assert refreshed["payment_details"]["method"] == "transfer"


def test_submit_for_someone_elses_order_is_denied(services):
    rice = make_product(services)
    owner = make_user(services)
    other = make_user(services, email="other@example.com", name="Other")
    order = place_order(services, owner, (rice, 1))

    with pytest.raises(PermissionDenied):
        services.payment_slips.submit_for_order(order["id"], other, _slip_payload())


def test_verify_confirms_order_payment(services):
    rice = make_product(services)
    user = make_user(services)
    order = place_order(services, user, (rice, 1))
    slip = services.payment_slips.submit_for_order(order["id"], user, _slip_payload())

    verified = services.payment_slips.verify(slip["id"], "admin-1")

    assert verified["status"] == "verified"
    assert verified["verified_by"] == "admin-1"
    refreshed = services.orders.get(order["id"])
    assert refreshed["payment_status"] == "paid"
    assert refreshed["status"] == "confirmed"
    assert refreshed["payment_details"]["bank_account"] == "0987654321"

    with pytest.raises(InvalidTransition):
        services.payment_slips.reject(slip["id"], "duplicate", "admin-1")


def test_verify_for_cancelled_order_leaves_slip_pending(services):
    rice = make_product(services)
    user = make_user(services)
    order = place_order(services, user, (rice, 1))
    slip = services.payment_slips.submit_for_order(order["id"], user, _slip_payload())
    services.orders.update_status(order["id"], "cancelled")

    with pytest.raises(InvalidTransition):
        services.payment_slips.verify(slip["id"], "admin-1")

    assert services.payment_slips.get(slip["id"])["status"] == "pending_verification"
    assert services.orders.get(order["id"])["payment_status"] == "unpaid"
    rejected = services.payment_slips.reject(slip["id"], "Order was cancelled", "admin-1")
    assert rejected["status"] == "rejected"


def test_verify_for_deleted_order_leaves_slip_pending(services):
    rice = make_product(services)
    user = make_user(services)
    order = place_order(services, user, (rice, 1))
    slip = services.payment_slips.submit_for_order(order["id"], user, _slip_payload())
    services.orders.delete(order["id"])

    with pytest.raises(NotFoundError):
        services.payment_slips.verify(slip["id"], "admin-1")

    assert services.payment_slips.get(slip["id"])["status"] == "pending_verification"

def test_reject_leaves_order_unpaid(services):
    rice = make_product(services)
    user = make_user(services)
    order = place_order(services, user, (rice, 1))
    slip = services.payment_slips.submit_for_order(order["id"], user, _slip_payload(amount=1.0))

    rejected = services.payment_slips.reject(slip["id"], "Amount does not match", "admin-1")

    assert rejected["status"] == "rejected"
    assert rejected["rejection_reason"] == "Amount does not match"
    assert services.orders.get(order["id"])["payment_status"] == "unpaid"
    with pytest.raises(InvalidTransition):
        services.payment_slips.verify(slip["id"], "admin-1")


def test_listing_is_newest_first(services, clock):
    rice = make_product(services)
    user = make_user(services)
    order = place_order(services, user, (rice, 1))
    first = services.payment_slips.submit_for_order(order["id"], user, _slip_payload())
    clock.advance(minutes=3)
    second = services.payment_slips.submit_for_order(order["id"], user, _slip_payload(reference_number="REF-002"))

    assert [s["id"] for s in services.payment_slips.for_order(order["id"])] == [second["id"], first["id"]]
    assert [s["id"] for s in services.payment_slips.all()] == [second["id"], first["id"]]
    assert services.payment_slips.all()[0]["to_account"] == "0987654321"
