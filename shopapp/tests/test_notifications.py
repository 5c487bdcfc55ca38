import pytest

from conftest import make_user
from shopapp.errors import NotFoundError
from shopapp.services.notifications import format_amount


def test_format_amount():
    assert format_amount(1234.5) == "฿1,234.50"
    assert format_amount(10, "$") == "$10.00"


def test_new_order_goes_to_active_admins_only(services):
    admin = make_user(services, email="admin@example.com", name="Admin")
    second = make_user(services, email="ops@example.com", name="Ops")
    retired = make_user(services, email="old@example.com", name="Old")
    services.users.update_role(second["uid"], "admin", admin["uid"])
    services.users.update_role(retired["uid"], "admin", admin["uid"])
    services.users.update(retired["uid"], {"is_active": False})

    created = services.notifications.notify_new_order("order-123", "Somchai", 99.0)

    assert len(created) == 2
    assert services.notifications.unread_count(admin["uid"]) == 1
    assert services.notifications.unread_count(second["uid"]) == 1
    assert services.notifications.unread_count(retired["uid"]) == 0
    assert len(services.notifications.for_role("admin")) == 2


def test_status_change_message(services):
    services.notifications.notify_order_status_change("cust-1", "abcdefgh12345678", "shipped", "confirmed")

    [notification] = services.notifications.for_user("cust-1")
    assert notification["type"] == "order_status_change"
    assert notification["related_id"] == "abcdefgh12345678"
    assert "#12345678" in notification["message"]
    assert '"Confirmed"' in notification["message"]
    assert '"Shipped"' in notification["message"]


def test_read_and_delete(services, clock):
    for title in ("one", "two", "three"):
        services.notifications.create({"user_id": "cust-1", "title": title})
        clock.advance(seconds=1)
    services.notifications.create({"user_id": "cust-2", "title": "other"})

    latest = services.notifications.for_user("cust-1", limit=2)
    assert [n["title"] for n in latest] == ["three", "two"]

    services.notifications.mark_read(latest[0]["id"])
    assert services.notifications.unread_count("cust-1") == 2
    assert services.notifications.get(latest[0]["id"])["read_at"]
    assert services.notifications.mark_all_read("cust-1") == 2
    assert services.notifications.unread_count("cust-1") == 0

    with pytest.raises(NotFoundError):
        services.notifications.mark_read("ghost")

    services.notifications.delete(latest[1]["id"])
    assert len(services.notifications.for_user("cust-1")) == 2
    assert services.notifications.delete_all("cust-1") == 2
    assert services.notifications.for_user("cust-1") == []
    assert len(services.notifications.for_user("cust-2")) == 1
