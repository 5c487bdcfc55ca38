import pytest

from conftest import make_product, make_user, place_order
from shopapp.services.analytics import popularity_score


def _sold(services, user, *lines, status="confirmed"):
    order = place_order(services, user, *lines)
    services.orders.update_status(order["id"], status)
    return order


def test_popularity_score_weights():
    # 5 sold, 2 orders, 1000 revenue: 2.0 + 1.2 + 0.2 + 1.0
    assert popularity_score(5, 2, 1000.0) == pytest.approx(4.4)


def test_popular_products_counts_recent_sales_only(services, clock):
    rice = make_product(services, name="Rice", price=100.0, stock=100, image_url="rice.jpg")
    tea = make_product(services, name="Tea", price=20.0, stock=100, category="Drinks")
    user = make_user(services)

    _sold(services, user, (tea, 50))
    clock.advance(days=31)
    _sold(services, user, (rice, 2))
    _sold(services, user, (rice, 1), status="delivered")
    place_order(services, user, (tea, 3))

    popular = services.analytics.popular_products()

    assert [p["id"] for p in popular] == [rice["id"]]
    [top] = popular
    assert top["total_sold"] == 3
    assert top["order_count"] == 2
    assert top["revenue"] == 300.0
    assert top["stock"] == 97
    assert top["image_url"] == "rice.jpg"
    assert top["popularity_score"] == pytest.approx(popularity_score(3, 2, 300.0))


def test_recommendations_boost_known_categories(services):
    rice = make_product(services, name="Rice", price=50.0, stock=100, category="Groceries")
    noodles = make_product(services, name="Noodles", price=10.0, stock=100, category="Groceries")
    tea = make_product(services, name="Tea", price=10.0, stock=100, category="Drinks")
    regular = make_user(services)
    newcomer = make_user(services, email="new@example.com", name="New")

    other = make_user(services, email="other@example.com", name="Other")
    _sold(services, other, (tea, 10))
    _sold(services, other, (noodles, 1))
    _sold(services, regular, (rice, 1))

    assert services.analytics.recommended_products(newcomer["uid"]) == services.analytics.popular_products(8)

    recommended = services.analytics.recommended_products(regular["uid"])
    assert [p["id"] for p in recommended][:2] == [noodles["id"], rice["id"]]
    by_id = {p["id"]: p for p in recommended}
    base = {p["id"]: p for p in services.analytics.popular_products(50)}
    assert by_id[noodles["id"]]["popularity_score"] == pytest.approx(base[noodles["id"]]["popularity_score"] + 20)
    assert by_id[rice["id"]]["popularity_score"] == pytest.approx(base[rice["id"]]["popularity_score"] + 10)
    assert by_id[tea["id"]]["popularity_score"] == pytest.approx(base[tea["id"]]["popularity_score"])


def test_new_products_and_category_filter(services, clock):
    make_product(services, name="Rice")
    clock.advance(minutes=1)
    tea = make_product(services, name="Tea", category="Drinks")
    user = make_user(services)
    _sold(services, user, (tea, 1))

    newest = services.analytics.new_products(limit=1)
    assert [p["name"] for p in newest] == ["Tea"]
    assert newest[0]["popularity_score"] == 50

    assert [p["name"] for p in services.analytics.popular_by_category("Drinks")] == ["Tea"]
    assert services.analytics.popular_by_category("Groceries") == []


def test_product_analytics(services, clock):
    rice = make_product(services, name="Rice", price=100.0, stock=100)
    tea = make_product(services, name="Tea", price=20.0, stock=100)
    user = make_user(services)

    _sold(services, user, (rice, 1))
    clock.advance(days=1)
    _sold(services, user, (rice, 3), (tea, 2), status="shipped")
    _sold(services, user, (tea, 5), status="cancelled")

    report = services.analytics.product_analytics(days=7)

    assert [row["product_id"] for row in report] == [rice["id"], tea["id"]]
    assert report[0]["total_orders"] == 2
    assert report[0]["total_quantity_sold"] == 4
    assert report[0]["average_order_value"] == 200.0
    assert report[0]["last_order_date"] == clock().isoformat()
    assert report[1]["total_revenue"] == 40.0
